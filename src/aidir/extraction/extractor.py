"""FactExtractor: career timeline and course extraction with dedup-on-write.

Pipeline:
  1. Build a bounded corpus from the content items written in this run.
  2. One structured request per fact kind (timeline, courses). A response
     that fails schema validation is discarded entirely.
  3. Drop low-confidence records, sort by recency, cap the count.
  4. Write: a career event matching an existing (organization, role
     substring, dateless-or-same period) record is not re-inserted; when
     the existing record is dateless its dates are filled in instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from aidir.content.hashing import hash_text, hash_url
from aidir.extraction.client import SchemaValidationError
from aidir.extraction.corpus import Corpus, build_corpus
from aidir.extraction.dates import normalize_partial_date, normalize_range
from aidir.extraction.prompts import (
    MAX_TIMELINE_EVENTS,
    build_course_prompt,
    build_timeline_prompt,
)
from aidir.extraction.schemas import (
    CourseEntry,
    CoursePlatform,
    CourseResponse,
    CourseType,
    TimelineEntry,
    TimelineResponse,
)
from aidir.models import PersonIdentity
from aidir.store import normalize_org_name

if TYPE_CHECKING:
    from aidir.config import EnrichmentConfig
    from aidir.extraction.client import StructuredGenerator
    from aidir.identity.knowledgebase import CareerFact
    from aidir.store import AsyncPersonStore

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.5
MAX_COURSES = 10
LLM_SOURCE = "llm_extraction"
KB_SOURCE = "knowledgebase"

_PLATFORM_HOSTS: tuple[tuple[str, CoursePlatform], ...] = (
    ("coursera.org", CoursePlatform.COURSERA),
    ("edx.org", CoursePlatform.EDX),
    ("udacity.com", CoursePlatform.UDACITY),
    ("youtube.com", CoursePlatform.YOUTUBE),
    ("youtu.be", CoursePlatform.YOUTUBE),
    ("fast.ai", CoursePlatform.FASTAI),
    ("stanford.edu", CoursePlatform.STANFORD),
    ("mit.edu", CoursePlatform.MIT),
    ("udemy.com", CoursePlatform.UDEMY),
    ("deeplearning.ai", CoursePlatform.DEEPLEARNING_AI),
)

_PLATFORM_TYPES: dict[CoursePlatform, CourseType] = {
    CoursePlatform.YOUTUBE: CourseType.FREE,
    CoursePlatform.FASTAI: CourseType.FREE,
    CoursePlatform.STANFORD: CourseType.FREE,
    CoursePlatform.MIT: CourseType.FREE,
    CoursePlatform.COURSERA: CourseType.FREEMIUM,
    CoursePlatform.EDX: CourseType.FREEMIUM,
    CoursePlatform.UDEMY: CourseType.PAID,
    CoursePlatform.UDACITY: CourseType.PAID,
}


def infer_platform(url: str | None) -> CoursePlatform:
    lowered = (url or "").lower()
    for host, platform in _PLATFORM_HOSTS:
        if host in lowered:
            return platform
    return CoursePlatform.OTHER


def infer_course_type(platform: CoursePlatform) -> CourseType:
    return _PLATFORM_TYPES.get(platform, CourseType.PAID)


def _recency_key(entry: TimelineEntry) -> str:
    return normalize_partial_date(entry.start_date) or ""


def _roles_match(existing: str, new: str) -> bool:
    a, b = existing.casefold().strip(), new.casefold().strip()
    if not a or not b:
        return a == b
    return a in b or b in a


@dataclass
class CareerWriteStats:
    inserted: int = 0
    dates_filled: int = 0
    duplicates: int = 0


@dataclass
class ExtractionReport:
    """Diagnostics for one extraction pass."""

    corpus_item_ids: list[int] = field(default_factory=list)
    timeline_extracted: int = 0
    courses_extracted: int = 0
    career: CareerWriteStats = field(default_factory=CareerWriteStats)
    courses_inserted: int = 0
    schema_failures: list[str] = field(default_factory=list)
    skipped_reason: str | None = None


class FactExtractor:
    """Extracts structured facts from person content and writes them idempotently.

    Args:
        generator: Structured text-generation backend (None disables LLM extraction).
        store: Async person store.
        config: Corpus bounds.
    """

    def __init__(
        self,
        generator: StructuredGenerator | None,
        store: AsyncPersonStore,
        config: EnrichmentConfig,
    ) -> None:
        self._generator = generator
        self._store = store
        self._config = config

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    async def extract_timeline(self, person: PersonIdentity, corpus: str) -> list[TimelineEntry]:
        """Extract career events; raises SchemaValidationError on bad output."""
        if self._generator is None or not corpus.strip():
            return []
        system, user = build_timeline_prompt(person, corpus)
        response = await self._generator.generate_structured(system, user, TimelineResponse)
        entries = [e for e in response.events if e.confidence >= MIN_CONFIDENCE]
        entries.sort(key=_recency_key, reverse=True)
        return entries[:MAX_TIMELINE_EVENTS]

    async def extract_courses(self, person: PersonIdentity, corpus: str) -> list[CourseEntry]:
        """Extract courses with platform and type inferred from the URL when missing."""
        if self._generator is None or not corpus.strip():
            return []
        system, user = build_course_prompt(person, corpus)
        response = await self._generator.generate_structured(system, user, CourseResponse)
        courses = []
        for course in response.courses:
            if course.confidence < MIN_CONFIDENCE:
                continue
            inferred = infer_platform(course.url)
            if course.platform is None or (
                course.platform == CoursePlatform.OTHER and inferred != CoursePlatform.OTHER
            ):
                course.platform = inferred
            if course.course_type is None:
                course.course_type = infer_course_type(course.platform)
            courses.append(course)
        return courses[:MAX_COURSES]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _write_event(
        self,
        person_id: int,
        organization: str,
        role: str,
        event_type: str,
        start: str | None,
        end: str | None,
        confidence: float,
        source: str,
        existing: list[dict],
        stats: CareerWriteStats,
    ) -> None:
        rng = normalize_range(start, end, event_type)
        normalized = normalize_org_name(organization)
        period = rng.start_date[:4] if rng.start_date else None

        for event in existing:
            if event["normalized_name"] != normalized or not _roles_match(event["role"], role):
                continue
            existing_period = event["start_date"][:4] if event["start_date"] else None
            if existing_period is None or period is None or existing_period == period:
                if existing_period is None and period is not None:
                    await self._store.fill_career_dates(
                        event["id"], rng.start_date, rng.end_date, rng.is_current
                    )
                    event["start_date"] = rng.start_date
                    stats.dates_filled += 1
                else:
                    stats.duplicates += 1
                return

        org_id = await self._store.get_or_create_organization(organization)
        event_id = await self._store.insert_career_event(
            person_id=person_id,
            organization_id=org_id,
            role=role,
            event_type=event_type,
            start_date=rng.start_date,
            end_date=rng.end_date,
            is_current=rng.is_current,
            start_unknown=rng.start_unknown,
            end_unknown=rng.end_unknown,
            confidence=confidence,
            source=source,
        )
        if event_id is None:
            stats.duplicates += 1
            return
        stats.inserted += 1
        existing.append({
            "id": event_id,
            "normalized_name": normalized,
            "role": role,
            "start_date": rng.start_date,
        })

    async def write_timeline(
        self, person_id: int, entries: list[TimelineEntry], source: str = LLM_SOURCE
    ) -> CareerWriteStats:
        stats = CareerWriteStats()
        existing = await self._store.list_career_events(person_id)
        for entry in entries:
            await self._write_event(
                person_id, entry.organization, entry.role, entry.event_type.value,
                entry.start_date, entry.end_date, entry.confidence, source, existing, stats,
            )
        return stats

    async def write_knowledge_base_career(
        self, person_id: int, facts: list[CareerFact]
    ) -> CareerWriteStats:
        """Write structured knowledge-base facts (full confidence, KB provenance)."""
        stats = CareerWriteStats()
        existing = await self._store.list_career_events(person_id)
        for fact in facts:
            await self._write_event(
                person_id, fact.organization, fact.role or "", fact.event_type,
                fact.start_date, fact.end_date, 1.0, KB_SOURCE, existing, stats,
            )
        logger.info(
            "Knowledge-base career for person %d: %d inserted, %d filled, %d duplicates",
            person_id, stats.inserted, stats.dates_filled, stats.duplicates,
        )
        return stats

    async def write_courses(self, person_id: int, courses: list[CourseEntry]) -> int:
        inserted = 0
        for course in courses:
            url_hash = (hash_url(course.url) if course.url else None) or hash_text(course.title)
            added = await self._store.insert_course(
                person_id,
                {
                    "title": course.title,
                    "platform": (course.platform or CoursePlatform.OTHER).value,
                    "url": course.url,
                    "url_hash": url_hash,
                    "course_type": (course.course_type or CourseType.PAID).value,
                    "level": course.level.value if course.level else None,
                    "description": course.description,
                    "confidence": course.confidence,
                    "source": LLM_SOURCE,
                },
            )
            inserted += int(added)
        return inserted

    # ------------------------------------------------------------------
    # Full pass
    # ------------------------------------------------------------------

    def build_corpus(self, person: PersonIdentity, items: list[dict]) -> Corpus:
        return build_corpus(
            person,
            items,
            max_items=self._config.max_corpus_items,
            chars_per_item=self._config.corpus_chars_per_source,
            max_chars=self._config.corpus_max_chars,
        )

    async def run(self, person: PersonIdentity, items: list[dict]) -> ExtractionReport:
        """Extract and write timeline and courses from *items*.

        Schema failures are recorded and skipped. Credit exhaustion and
        transport errors propagate to the caller.
        """
        report = ExtractionReport()
        if self._generator is None:
            report.skipped_reason = "text generation not configured"
            return report

        corpus = self.build_corpus(person, items)
        if not corpus:
            report.skipped_reason = "no new text content"
            return report
        report.corpus_item_ids = corpus.item_ids

        try:
            entries = await self.extract_timeline(person, corpus.text)
        except SchemaValidationError as e:
            logger.warning("Discarding timeline output for person %d: %s", person.person_id, e)
            report.schema_failures.append(f"timeline: {e}")
            entries = []
        report.timeline_extracted = len(entries)
        report.career = await self.write_timeline(person.person_id, entries)

        try:
            courses = await self.extract_courses(person, corpus.text)
        except SchemaValidationError as e:
            logger.warning("Discarding course output for person %d: %s", person.person_id, e)
            report.schema_failures.append(f"courses: {e}")
            courses = []
        report.courses_extracted = len(courses)
        report.courses_inserted = await self.write_courses(person.person_id, courses)

        logger.info(
            "Extraction for person %d: %d events (%d new), %d courses (%d new)",
            person.person_id, report.timeline_extracted, report.career.inserted,
            report.courses_extracted, report.courses_inserted,
        )
        return report
