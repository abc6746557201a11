"""Tests for the enrichment orchestrator.

Adapters are in-memory fakes and the knowledge base is an AsyncMock, so
each test drives a full run (lock, resolve, fetch, normalize, career,
extract, validate, score) against a real temporary database.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from aidir.content.normalizer import ContentNormalizer
from aidir.identity.knowledgebase import CareerFact, KnowledgeBaseError
from aidir.models import (
    FetchStatus,
    KnowledgeBaseEntity,
    PersonStatus,
    RawCandidateItem,
    SourceKind,
    StageOutcome,
)
from aidir.pipeline.events import EnrichmentEvent
from aidir.pipeline.orchestrator import EnrichmentOrchestrator
from aidir.scoring import diminishing_credit
from aidir.sources.base import SourceResult
from aidir.store import PersistenceError, PersonBusyError


class FakeAdapter:
    """Adapter double returning fixed items (or raising) and recording ``since``."""

    def __init__(
        self,
        kind: SourceKind,
        items: list[RawCandidateItem] | None = None,
        error: Exception | None = None,
        signals: dict[str, int] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.kind = kind
        self.items = items or []
        self.error = error
        self.signals = signals or {}
        self.delay = delay
        self.calls: list[datetime | None] = []

    async def fetch_candidates(self, person, since=None) -> SourceResult:
        self.calls.append(since)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return SourceResult(self.kind, FetchStatus.OK, list(self.items), signals=self.signals)


def repo(name: str, url: str | None = None, stars: int = 10) -> RawCandidateItem:
    return RawCandidateItem(
        url=url or f"https://github.com/janeq/{name}",
        title=f"janeq/{name}",
        text=f"{name}: tools for evaluating reasoning agents",
        source_metadata={"stars": stars, "is_official": True},
    )


def entity_for(qid: str) -> KnowledgeBaseEntity:
    return KnowledgeBaseEntity(
        id=qid,
        label="Jane Q. Researcher",
        description="computer scientist",
        organizations=["Acme Labs"],
    )


@pytest.fixture
def kb() -> AsyncMock:
    kb = AsyncMock()
    kb.get_entity.side_effect = lambda qid: entity_for(qid)
    kb.get_career.return_value = [
        CareerFact("career", "Acme Labs", "Research Scientist", "2019-01-01"),
    ]
    return kb


@pytest.fixture
async def person_id(store) -> int:
    return await store.create_person(
        "Jane Q. Researcher", identity_key="Q1", links=["https://github.com/janeq"]
    )


@pytest.fixture
def code_adapter() -> FakeAdapter:
    # Two of the three repos collapse to the same canonical URL
    return FakeAdapter(
        SourceKind.CODE,
        [
            repo("agents", stars=120),
            repo("agents-mirror", url="http://www.github.com/janeq/agents/"),
            repo("evals", stars=30),
        ],
    )


class TestSuccessfulRun:
    """A normal run ends ``ready`` with deduplicated content and fresh scores."""

    async def test_end_to_end(self, store, config, kb, person_id, code_adapter):
        orchestrator = EnrichmentOrchestrator(store, config, [code_adapter], knowledge_base=kb)

        report = await orchestrator.run(EnrichmentEvent.refresh(person_id))

        assert report.status == PersonStatus.READY
        assert await store.get_status(person_id) == PersonStatus.READY
        assert await store.count_content_items(person_id) == {"code": 2}
        assert report.outcome("resolve") == StageOutcome.SUCCESS
        assert report.outcome("source:code") == StageOutcome.SUCCESS
        assert report.stages["source:code"]["inserted"] == 2
        assert report.outcome("career") == StageOutcome.SUCCESS
        assert report.outcome("extract") == StageOutcome.SKIPPED

        person = await store.get_person(person_id)
        assert person["organizations"] == ["Acme Labs"]
        assert person["score_breakdown"]["organization"] == 8
        assert person["score_breakdown"]["content"] == round(diminishing_credit(2, 20, 20), 2)
        assert person["completeness_score"] == report.completeness
        assert report.influence > 0

    async def test_rerun_is_idempotent_and_incremental(
        self, store, config, kb, person_id, code_adapter
    ):
        orchestrator = EnrichmentOrchestrator(store, config, [code_adapter], knowledge_base=kb)

        await orchestrator.run(EnrichmentEvent.refresh(person_id))
        report = await orchestrator.run(EnrichmentEvent.refresh(person_id))

        assert report.status == PersonStatus.READY
        assert await store.count_content_items(person_id) == {"code": 2}
        assert len(await store.list_career_events(person_id)) == 1
        assert code_adapter.calls[0] is None
        assert code_adapter.calls[1] is not None

    async def test_force_refresh_fetches_everything(
        self, store, config, kb, person_id, code_adapter
    ):
        orchestrator = EnrichmentOrchestrator(store, config, [code_adapter], knowledge_base=kb)

        await orchestrator.run(EnrichmentEvent.refresh(person_id))
        await orchestrator.run(EnrichmentEvent.refresh(person_id, force_refresh=True))

        assert code_adapter.calls == [None, None]

    async def test_failing_adapter_is_soft_skipped(self, store, config, kb, person_id, code_adapter):
        broken = FakeAdapter(SourceKind.VIDEO, error=RuntimeError("quota exceeded"))
        orchestrator = EnrichmentOrchestrator(
            store, config, [broken, code_adapter], knowledge_base=kb
        )

        report = await orchestrator.run(EnrichmentEvent.refresh(person_id))

        assert report.status == PersonStatus.READY
        assert report.outcome("source:video") == StageOutcome.FAILED
        assert "quota exceeded" in report.stages["source:video"]["error"]
        assert await store.count_content_items(person_id) == {"code": 2}

    async def test_source_breaking_normalization_is_soft_skipped(
        self, store, config, kb, person_id, code_adapter
    ):
        broken = FakeAdapter(SourceKind.WEBSEARCH, [repo("odd")])
        normalizer = ContentNormalizer(store)
        real_upsert = normalizer.normalize_and_upsert

        async def upsert(person, source, items, run_id=None):
            if source == SourceKind.WEBSEARCH:
                raise TypeError("unhashable item")
            return await real_upsert(person, source, items, run_id=run_id)

        normalizer.normalize_and_upsert = upsert
        orchestrator = EnrichmentOrchestrator(
            store, config, [broken, code_adapter], knowledge_base=kb, normalizer=normalizer
        )

        report = await orchestrator.run(EnrichmentEvent.refresh(person_id))

        assert report.status == PersonStatus.READY
        assert report.outcome("source:websearch") == StageOutcome.FAILED
        assert "unhashable item" in report.stages["source:websearch"]["error"]
        assert await store.count_content_items(person_id) == {"code": 2}

    async def test_bad_port_url_does_not_fail_the_run(self, store, config, kb, person_id, code_adapter):
        web = FakeAdapter(
            SourceKind.WEBSEARCH,
            [RawCandidateItem(
                url="https://janeq.dev:abc/x",
                title="About",
                text="Jane Q. Researcher homepage",
                source_metadata={"is_official": True},
            )],
        )
        orchestrator = EnrichmentOrchestrator(
            store, config, [web, code_adapter], knowledge_base=kb
        )

        report = await orchestrator.run(EnrichmentEvent.refresh(person_id))

        assert report.status == PersonStatus.READY
        assert await store.count_content_items(person_id) == {"code": 2, "websearch": 1}

    async def test_fresh_source_skipped_within_refresh_window(
        self, store, config, kb, person_id, code_adapter
    ):
        config.refresh_intervals = {SourceKind.CODE.value: 24}
        orchestrator = EnrichmentOrchestrator(store, config, [code_adapter], knowledge_base=kb)

        await orchestrator.run(EnrichmentEvent.refresh(person_id))
        report = await orchestrator.run(EnrichmentEvent.refresh(person_id))

        assert report.status == PersonStatus.READY
        assert report.outcome("source:code") == StageOutcome.SKIPPED
        assert report.stages["source:code"]["error"] == "within refresh window"
        assert code_adapter.calls == [None]
        assert await store.count_content_items(person_id) == {"code": 2}

        await orchestrator.run(EnrichmentEvent.refresh(person_id, force_refresh=True))
        assert code_adapter.calls == [None, None]

    async def test_slow_adapter_times_out(self, store, config, kb, person_id, code_adapter):
        config.stage_timeout_seconds = 0.05
        slow = FakeAdapter(SourceKind.WEBSEARCH, delay=5)
        orchestrator = EnrichmentOrchestrator(
            store, config, [slow, code_adapter], knowledge_base=kb
        )

        report = await orchestrator.run(EnrichmentEvent.refresh(person_id))

        assert report.status == PersonStatus.READY
        assert report.stages["source:websearch"]["error"] == "stage timed out"

    async def test_signals_persisted(self, store, config, kb, person_id):
        academic = FakeAdapter(SourceKind.ACADEMIC, signals={"citation_count": 900, "h_index": 20})
        orchestrator = EnrichmentOrchestrator(store, config, [academic], knowledge_base=kb)

        report = await orchestrator.run(EnrichmentEvent.refresh(person_id))

        person = await store.get_person(person_id)
        assert person["citation_count"] == 900
        assert person["h_index"] == 20
        assert report.influence > 0

    async def test_without_knowledge_base(self, store, config, person_id, code_adapter):
        orchestrator = EnrichmentOrchestrator(store, config, [code_adapter])

        report = await orchestrator.run(EnrichmentEvent.created(person_id))

        assert report.status == PersonStatus.READY
        assert report.outcome("resolve") == StageOutcome.SKIPPED
        assert report.outcome("career") == StageOutcome.SKIPPED


class TestIdentityCorrection:
    async def test_changed_identity_clears_previous_content(
        self, store, config, kb, person_id, code_adapter
    ):
        orchestrator = EnrichmentOrchestrator(store, config, [code_adapter], knowledge_base=kb)
        await orchestrator.run(EnrichmentEvent.refresh(person_id))

        code_adapter.items = [repo("correct-person")]
        report = await orchestrator.run(EnrichmentEvent.refresh(person_id, identity="Q2"))

        assert report.identity_changed
        assert report.outcome("invalidate") == StageOutcome.SUCCESS
        assert report.stages["invalidate"]["removed"]["content_items"] == 2
        urls = [item["url"] for item in await store.list_content_items(person_id)]
        assert urls == ["https://github.com/janeq/correct-person"]
        assert await store.find_person_by_identity("Q2") == person_id
        assert code_adapter.calls[1] is None

    async def test_same_identity_is_not_a_change(self, store, config, kb, person_id, code_adapter):
        orchestrator = EnrichmentOrchestrator(store, config, [code_adapter], knowledge_base=kb)

        report = await orchestrator.run(EnrichmentEvent.refresh(person_id, identity="Q1"))

        assert not report.identity_changed
        assert report.outcome("invalidate") is None


class TestFailures:
    """Only fatal conditions move a person to ``error``."""

    async def test_person_busy(self, store, config, kb, person_id, code_adapter):
        await store.try_begin_build(person_id)
        orchestrator = EnrichmentOrchestrator(store, config, [code_adapter], knowledge_base=kb)

        with pytest.raises(PersonBusyError):
            await orchestrator.run(EnrichmentEvent.refresh(person_id))
        assert await store.get_status(person_id) == PersonStatus.BUILDING
        assert code_adapter.calls == []

    async def test_unknown_person(self, store, config):
        orchestrator = EnrichmentOrchestrator(store, config, [])
        with pytest.raises(LookupError):
            await orchestrator.run(EnrichmentEvent.refresh(999))

    async def test_identity_resolution_failure_is_fatal(
        self, store, config, kb, person_id, code_adapter
    ):
        kb.get_entity.side_effect = KnowledgeBaseError("service down")
        orchestrator = EnrichmentOrchestrator(store, config, [code_adapter], knowledge_base=kb)

        report = await orchestrator.run(EnrichmentEvent.refresh(person_id))

        assert report.status == PersonStatus.ERROR
        assert "service down" in report.error
        assert report.outcome("resolve") == StageOutcome.FAILED
        assert await store.get_status(person_id) == PersonStatus.ERROR
        assert code_adapter.calls == []

    async def test_unknown_entity_is_fatal(self, store, config, kb, person_id, code_adapter):
        kb.get_entity.side_effect = None
        kb.get_entity.return_value = None
        orchestrator = EnrichmentOrchestrator(store, config, [code_adapter], knowledge_base=kb)

        report = await orchestrator.run(EnrichmentEvent.refresh(person_id))

        assert report.status == PersonStatus.ERROR

    async def test_persistence_failure_keeps_partial_data(
        self, store, config, kb, person_id, code_adapter
    ):
        store.update_scores = AsyncMock(side_effect=PersistenceError("disk full"))
        orchestrator = EnrichmentOrchestrator(store, config, [code_adapter], knowledge_base=kb)

        report = await orchestrator.run(EnrichmentEvent.refresh(person_id))

        assert report.status == PersonStatus.ERROR
        assert report.error == "disk full"
        assert await store.get_status(person_id) == PersonStatus.ERROR
        assert await store.count_content_items(person_id) == {"code": 2}

    async def test_unexpected_error_marks_error_and_propagates(
        self, store, config, kb, person_id, code_adapter
    ):
        kb.get_career.side_effect = RuntimeError("bug")
        orchestrator = EnrichmentOrchestrator(store, config, [code_adapter], knowledge_base=kb)

        with pytest.raises(RuntimeError):
            await orchestrator.run(EnrichmentEvent.refresh(person_id))
        assert await store.get_status(person_id) == PersonStatus.ERROR

    async def test_error_person_can_be_rebuilt(self, store, config, kb, person_id, code_adapter):
        orchestrator = EnrichmentOrchestrator(store, config, [code_adapter], knowledge_base=kb)
        kb.get_entity.side_effect = KnowledgeBaseError("service down")
        await orchestrator.run(EnrichmentEvent.refresh(person_id))

        kb.get_entity.side_effect = lambda qid: entity_for(qid)
        report = await orchestrator.run(EnrichmentEvent.refresh(person_id))

        assert report.status == PersonStatus.READY


class TestEvents:
    async def test_handle_event_dict(self, store, config, kb, person_id, code_adapter):
        orchestrator = EnrichmentOrchestrator(store, config, [code_adapter], knowledge_base=kb)

        report = await orchestrator.handle_event({
            "event": "person/refresh",
            "personId": person_id,
            "aliases": ["JQR"],
            "links": {"x": "https://x.com/janeq_ai"},
        })

        assert report.event == "person/refresh"
        identity = await store.get_identity(person_id)
        assert "JQR" in identity.aliases
        assert any(link.handle == "janeq_ai" for link in identity.links)

    async def test_invalid_event_rejected(self, store, config):
        orchestrator = EnrichmentOrchestrator(store, config, [])
        with pytest.raises(ValueError):
            await orchestrator.handle_event({"event": "person/deleted", "personId": 1})


class TestSweep:
    async def test_refreshes_lowest_scorers(self, store, config, code_adapter):
        first = await store.create_person("Jane Q. Researcher", links=["https://github.com/janeq"])
        second = await store.create_person("John Roe", links=["https://github.com/jroe"])
        orchestrator = EnrichmentOrchestrator(store, config, [code_adapter])

        reports = await orchestrator.sweep(threshold=50, limit=1)

        assert len(reports) == 1
        assert reports[0].person_id in (first, second)
        assert reports[0].event == "person/refresh"

    async def test_building_people_skipped(self, store, config, code_adapter):
        busy = await store.create_person("Jane Q. Researcher")
        idle = await store.create_person("John Roe")
        await store.try_begin_build(busy)
        orchestrator = EnrichmentOrchestrator(store, config, [code_adapter])

        reports = await orchestrator.sweep(threshold=101)

        assert [r.person_id for r in reports] == [idle]
