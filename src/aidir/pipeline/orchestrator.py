"""Enrichment orchestrator: one run per person event.

Composes the resolver collaborator, source adapters, normalizer, fact
extractor and scorer into a run that:

* Takes the ``building`` status as an advisory lock (one run per person)
* Invalidates generated content when the identity key changes
* Fans adapters out concurrently under ``asyncio.Semaphore`` with a
  per-stage timeout; any adapter failure is a soft-skip
* Only lets fatal conditions (identity resolution, persistence) move the
  person to ``error``; partial data written before that is kept
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from aidir.config import EnrichmentConfig
from aidir.content.normalizer import ContentNormalizer
from aidir.extraction.client import MistralClient
from aidir.extraction.extractor import FactExtractor
from aidir.extraction.validator import validate_timeline
from aidir.identity.knowledgebase import KnowledgeBaseError, WikidataClient
from aidir.models import (
    FetchStatus,
    PersonIdentity,
    PersonStatus,
    StageOutcome,
)
from aidir.pipeline.events import EnrichmentEvent
from aidir.pipeline.fsm import create_fsm
from aidir.scoring import ScoreResult, influence_score, score
from aidir.sources.base import SourceAdapter, SourceResult
from aidir.sources.registry import build_adapters
from aidir.store import AsyncPersonStore, PersistenceError, PersonBusyError

logger = logging.getLogger(__name__)

# Adapter signals persisted on the person row for the influence score
SIGNAL_FIELDS = ("citation_count", "h_index", "follower_count")


class FatalRunError(Exception):
    """Raised inside a run when it cannot continue (identity resolution failed)."""


@dataclass
class RunReport:
    """Structured diagnostics of one run.

    ``stages`` maps stage name (``resolve``, ``invalidate``, ``source:<kind>``,
    ``career``, ``extract``, ``validate``, ``score``) to a dict holding at
    least an ``outcome`` (:class:`StageOutcome` value).
    """

    person_id: int
    event: str
    run_id: int | None = None
    status: PersonStatus = PersonStatus.BUILDING
    identity_key: str | None = None
    identity_changed: bool = False
    stages: dict[str, dict[str, Any]] = field(default_factory=dict)
    completeness: int | None = None
    influence: float | None = None
    error: str | None = None

    def outcome(self, stage: str) -> StageOutcome | None:
        entry = self.stages.get(stage)
        return StageOutcome(entry["outcome"]) if entry else None

    def record(self, stage: str, outcome: StageOutcome, **detail: Any) -> None:
        self.stages[stage] = {"outcome": outcome.value, **detail}


_FETCH_OUTCOMES = {
    FetchStatus.OK: StageOutcome.SUCCESS,
    FetchStatus.UNCONFIGURED: StageOutcome.SKIPPED,
    FetchStatus.SKIPPED: StageOutcome.SKIPPED,
    FetchStatus.FAILED: StageOutcome.FAILED,
}


class EnrichmentOrchestrator:
    """Runs the enrichment pipeline for one person per event.

    Usage::

        orchestrator = EnrichmentOrchestrator(store, config, adapters, knowledge_base=kb)
        report = await orchestrator.handle_event(
            {"event": "person/refresh", "personId": 7, "identity": "Q42"}
        )

    Args:
        store: Connected async store (the only write path).
        config: Enrichment configuration.
        adapters: Source adapters to fan out to.
        knowledge_base: Knowledge-base client used to resolve the identity
            key and fetch structured career facts (None skips both).
        extractor: Fact extractor; defaults to one without a text
            generator, which still writes knowledge-base career facts.
        normalizer: Content normalizer; defaults to one over *store*.
    """

    def __init__(
        self,
        store: AsyncPersonStore,
        config: EnrichmentConfig,
        adapters: list[SourceAdapter],
        knowledge_base: WikidataClient | None = None,
        extractor: FactExtractor | None = None,
        normalizer: ContentNormalizer | None = None,
    ) -> None:
        self._store = store
        self._config = config
        self._adapters = list(adapters)
        self._knowledge_base = knowledge_base
        self._extractor = extractor or FactExtractor(None, store, config)
        self._normalizer = normalizer or ContentNormalizer(store)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_event(self, event: EnrichmentEvent | dict[str, Any]) -> RunReport:
        """Validate an inbound ``{event, personId, identity, aliases, links}`` message and run it."""
        if not isinstance(event, EnrichmentEvent):
            event = EnrichmentEvent.model_validate(event)
        return await self.run(event)

    async def run(self, event: EnrichmentEvent) -> RunReport:
        """Execute one enrichment run.

        Raises:
            LookupError: The person does not exist.
            PersonBusyError: A run for this person is already in flight.
        """
        person_id = event.person_id
        status = await self._store.get_status(person_id)
        if status is None:
            raise LookupError(f"Person {person_id} not found")

        fsm = create_fsm(status.value)
        if not await self._store.try_begin_build(person_id):
            raise PersonBusyError(f"Person {person_id} is already building")
        fsm.begin_build()

        report = RunReport(person_id=person_id, event=event.event.value)
        logger.info("Run started for person %d (%s)", person_id, event.event.value)

        try:
            report.run_id = await self._store.start_run(
                person_id, event.event.value, event.identity
            )
            await self._run_stages(event, report)
        except (FatalRunError, PersistenceError) as exc:
            logger.error("Run for person %d failed: %s", person_id, exc)
            await self._fail(fsm, report, str(exc))
            return report
        except Exception as exc:
            logger.exception("Unexpected error in run for person %d", person_id)
            await self._fail(fsm, report, f"{type(exc).__name__}: {exc}")
            raise

        fsm.complete_build()
        report.status = PersonStatus(fsm.current_state_value)
        await self._store.finish_build(person_id, PersonStatus.READY)
        await self._store.finish_run(report.run_id, report.status.value, report.stages)
        logger.info(
            "Run finished for person %d: ready, completeness %s, influence %s",
            person_id, report.completeness, report.influence,
        )
        return report

    async def _fail(self, fsm: Any, report: RunReport, message: str) -> None:
        fsm.fail_build()
        report.status = PersonStatus(fsm.current_state_value)
        report.error = message
        await self._store.finish_build(report.person_id, PersonStatus.ERROR, message)
        if report.run_id is not None:
            await self._store.finish_run(
                report.run_id, report.status.value, report.stages, message
            )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run_stages(self, event: EnrichmentEvent, report: RunReport) -> None:
        person_id = event.person_id
        person = await self._store.get_identity(person_id)
        if person is None:
            raise PersistenceError(f"Person {person_id} disappeared during run")

        previous_key = person.identity_key
        identity_key = event.identity or previous_key
        report.identity_key = identity_key
        report.identity_changed = bool(
            event.identity and previous_key and event.identity != previous_key
        )

        entity = await self._resolve(identity_key, report)

        if report.identity_changed:
            removed = await self._store.clear_generated_content(person_id)
            report.record("invalidate", StageOutcome.SUCCESS, removed=removed)
            logger.info(
                "Identity for person %d changed %s -> %s, generated content cleared",
                person_id, previous_key, identity_key,
            )

        if identity_key != previous_key:
            await self._store.set_identity_key(person_id, identity_key)
        if entity is not None:
            await self._store.apply_entity(person_id, entity)
        if event.aliases or event.links:
            await self._store.merge_aliases_and_links(person_id, event.aliases, event.links)

        person = await self._store.get_identity(person_id)
        if person is None:
            raise PersistenceError(f"Person {person_id} disappeared during run")

        incremental = not (report.identity_changed or event.force_refresh)
        await self._fetch_sources(person, report, incremental)
        await self._write_career_facts(person, report)
        await self._extract(person, report)
        await self._validate(person_id, report)
        result, influence = await self.rescore(person_id)
        report.completeness = result.total
        report.influence = influence
        report.record(
            "score", StageOutcome.SUCCESS,
            total=result.total, grade=result.grade, influence=influence,
        )

    async def _resolve(self, identity_key: str | None, report: RunReport) -> Any:
        if not identity_key:
            report.record("resolve", StageOutcome.SKIPPED, reason="no identity key")
            return None
        if self._knowledge_base is None:
            report.record("resolve", StageOutcome.SKIPPED, reason="knowledge base not configured")
            return None

        try:
            entity = await asyncio.wait_for(
                self._knowledge_base.get_entity(identity_key),
                timeout=self._config.stage_timeout_seconds,
            )
        except (KnowledgeBaseError, ValueError, TimeoutError) as exc:
            report.record("resolve", StageOutcome.FAILED, error=str(exc) or type(exc).__name__)
            raise FatalRunError(f"identity resolution failed for {identity_key}: {exc}") from exc
        if entity is None:
            report.record("resolve", StageOutcome.FAILED, error="entity not found")
            raise FatalRunError(f"identity resolution failed: {identity_key} not found")

        report.record("resolve", StageOutcome.SUCCESS, label=entity.label)
        return entity

    async def _fetch_one(
        self,
        adapter: SourceAdapter,
        person: PersonIdentity,
        incremental: bool,
        semaphore: asyncio.Semaphore,
    ) -> SourceResult:
        since = None
        if incremental:
            since = await self._store.get_last_success(person.person_id, adapter.kind)
            window = self._config.refresh_intervals.get(adapter.kind.value, 0)
            if since is not None and window > 0:
                age = datetime.now(timezone.utc) - since
                if age < timedelta(hours=window):
                    logger.info(
                        "[%s] fetched %s ago, within %dh refresh window, skipping",
                        adapter.kind.value, age, window,
                    )
                    return SourceResult(
                        adapter.kind, FetchStatus.SKIPPED, error="within refresh window"
                    )

        async with semaphore:
            try:
                return await asyncio.wait_for(
                    adapter.fetch_candidates(person, since),
                    timeout=self._config.stage_timeout_seconds,
                )
            except TimeoutError:
                logger.warning(
                    "[%s] timed out after %.0fs, skipping",
                    adapter.kind.value, self._config.stage_timeout_seconds,
                )
                return SourceResult(adapter.kind, FetchStatus.FAILED, error="stage timed out")
            except Exception as exc:
                logger.warning("[%s] fetch failed, skipping: %s", adapter.kind.value, exc)
                return SourceResult(
                    adapter.kind, FetchStatus.FAILED, error=str(exc) or type(exc).__name__
                )

    async def _fetch_sources(
        self, person: PersonIdentity, report: RunReport, incremental: bool
    ) -> None:
        semaphore = asyncio.Semaphore(self._config.max_concurrent_sources)
        results = await asyncio.gather(
            *(self._fetch_one(a, person, incremental, semaphore) for a in self._adapters)
        )

        signals: dict[str, int] = {}
        for result in results:
            stage = f"source:{result.source.value}"
            outcome = _FETCH_OUTCOMES[result.status]
            if result.status != FetchStatus.OK:
                if result.status == FetchStatus.FAILED:
                    await self._store.record_fetch(person.person_id, result.source, result.status.value)
                report.record(stage, outcome, status=result.status.value, error=result.error)
                continue

            try:
                stats = await self._normalizer.normalize_and_upsert(
                    person, result.source, result.items, run_id=report.run_id
                )
                await self._store.record_fetch(person.person_id, result.source, result.status.value)
            except PersistenceError:
                raise
            except Exception as exc:
                logger.warning(
                    "[%s] normalization failed, skipping source: %s", result.source.value, exc
                )
                report.record(
                    stage, StageOutcome.FAILED, status=FetchStatus.FAILED.value,
                    error=f"{type(exc).__name__}: {exc}",
                )
                continue
            for name in SIGNAL_FIELDS:
                if name in result.signals:
                    signals[name] = result.signals[name]
            report.record(
                stage, outcome, status=result.status.value,
                fetched=len(result.items), **stats.to_dict(),
            )
            logger.info(
                "[%s] %d fetched, %d inserted, %d updated, %d rejected",
                result.source.value, len(result.items), stats.inserted,
                stats.updated, stats.rejected,
            )

        if signals:
            await self._store.update_person_fields(person.person_id, **signals)

    async def _write_career_facts(self, person: PersonIdentity, report: RunReport) -> None:
        if not person.identity_key or self._knowledge_base is None:
            report.record("career", StageOutcome.SKIPPED)
            return
        try:
            facts = await asyncio.wait_for(
                self._knowledge_base.get_career(person.identity_key),
                timeout=self._config.stage_timeout_seconds,
            )
        except (KnowledgeBaseError, TimeoutError) as exc:
            logger.warning("Knowledge-base career facts unavailable: %s", exc)
            report.record("career", StageOutcome.FAILED, error=str(exc) or type(exc).__name__)
            return
        stats = await self._extractor.write_knowledge_base_career(person.person_id, facts)
        report.record(
            "career", StageOutcome.SUCCESS,
            inserted=stats.inserted, dates_filled=stats.dates_filled, duplicates=stats.duplicates,
        )

    async def _extract(self, person: PersonIdentity, report: RunReport) -> None:
        items = await self._store.list_content_items(person.person_id, run_id=report.run_id)
        try:
            extraction = await self._extractor.run(person, items)
        except PersistenceError:
            raise
        except Exception as exc:
            logger.warning("Fact extraction skipped for person %d: %s", person.person_id, exc)
            report.record("extract", StageOutcome.FAILED, error=str(exc) or type(exc).__name__)
            return

        if extraction.skipped_reason:
            report.record("extract", StageOutcome.SKIPPED, reason=extraction.skipped_reason)
            return
        outcome = StageOutcome.PARTIAL if extraction.schema_failures else StageOutcome.SUCCESS
        report.record(
            "extract", outcome,
            events=extraction.timeline_extracted,
            events_inserted=extraction.career.inserted,
            courses=extraction.courses_extracted,
            courses_inserted=extraction.courses_inserted,
            schema_failures=extraction.schema_failures,
        )

    async def _validate(self, person_id: int, report: RunReport) -> None:
        events = await self._store.list_career_events(person_id)
        result = validate_timeline(events)
        if not result.is_valid:
            logger.warning(
                "Timeline for person %d looks implausible (score %.2f): %s",
                person_id, result.score, "; ".join(result.issues),
            )
        report.record(
            "validate", StageOutcome.SUCCESS,
            is_valid=result.is_valid, score=result.score, issues=result.issues,
        )

    # ------------------------------------------------------------------
    # Scoring and sweep
    # ------------------------------------------------------------------

    async def rescore(self, person_id: int) -> tuple[ScoreResult, float]:
        """Recompute and store completeness and influence for one person."""
        snapshot = await self._store.get_snapshot(person_id)
        if snapshot is None:
            raise LookupError(f"Person {person_id} not found")
        result = score(snapshot)
        influence = influence_score(snapshot)
        await self._store.update_scores(person_id, result.total, result.breakdown, influence)
        return result, influence

    async def sweep(self, threshold: int = 50, limit: int = 10) -> list[RunReport]:
        """Rescore everyone, then refresh the lowest scorers below *threshold*.

        People already ``building`` are skipped.
        """
        scored: list[tuple[int, int]] = []
        for person_id in await self._store.list_person_ids():
            result, _ = await self.rescore(person_id)
            scored.append((result.total, person_id))

        low = sorted(entry for entry in scored if entry[0] < threshold)[:limit]
        logger.info(
            "Sweep: %d people scored, %d below %d queued for refresh",
            len(scored), len(low), threshold,
        )

        reports = []
        for _, person_id in low:
            try:
                reports.append(await self.run(EnrichmentEvent.refresh(person_id)))
            except PersonBusyError:
                logger.info("Sweep: person %d is already building, skipped", person_id)
        return reports


def build_orchestrator(
    store: AsyncPersonStore,
    config: EnrichmentConfig,
    client: httpx.AsyncClient,
) -> EnrichmentOrchestrator:
    """Wire the production collaborators from *config* around one HTTP client."""
    knowledge_base = WikidataClient(client, config)
    generator = None
    api_key = config.credential("mistral_api_key")
    if api_key:
        generator = MistralClient(
            api_key,
            model=config.llm_model,
            temperature=config.llm_temperature,
            rate_limit_rpm=config.llm_rate_limit_rpm,
        )
    else:
        logger.warning("mistral_api_key not configured, fact extraction disabled")
    return EnrichmentOrchestrator(
        store,
        config,
        build_adapters(config, client, knowledge_base),
        knowledge_base=knowledge_base,
        extractor=FactExtractor(generator, store, config),
    )
