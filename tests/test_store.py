"""Tests for the async person store and the read-side Database."""

from __future__ import annotations

import pytest

from aidir.database import Database
from aidir.models import KnowledgeBaseEntity, LinkKind, OfficialLink, PersonStatus, SourceKind
from aidir.store import AsyncPersonStore, PersistenceError, normalize_org_name


class TestPeople:
    """Person rows, identity context and link normalization."""

    async def test_create_person_starts_pending(self, store: AsyncPersonStore):
        person_id = await store.create_person("Jane Q. Researcher", identity_key="Q1")
        assert await store.get_status(person_id) == PersonStatus.PENDING
        assert await store.find_person_by_identity("Q1") == person_id

    async def test_links_normalized_from_map_shape(self, store: AsyncPersonStore):
        person_id = await store.create_person(
            "Jane Q. Researcher",
            links={"github": "github.com/janeq", "x": "https://x.com/janeq_ai"},
        )
        identity = await store.get_identity(person_id)
        assert identity.handle_for(LinkKind.CODE, "github.com") == "janeq"
        assert identity.handle_for(LinkKind.SOCIAL) == "janeq_ai"
        assert all(isinstance(link, OfficialLink) for link in identity.links)

    async def test_aliases_drop_display_name_and_duplicates(self, store: AsyncPersonStore):
        person_id = await store.create_person(
            "Jane Q. Researcher", aliases=["jane q. researcher", "JQR", "jqr"]
        )
        await store.merge_aliases_and_links(person_id, ["Jane R."], [])
        identity = await store.get_identity(person_id)
        assert identity.aliases == ["JQR", "Jane R."]

    async def test_apply_entity_keeps_existing_values(self, store: AsyncPersonStore):
        person_id = await store.create_person("Jane Q. Researcher", description="Local bio")
        entity = KnowledgeBaseEntity(
            id="Q1",
            label="Jane Q. Researcher",
            organizations=["Acme Labs"],
            occupations=["computer scientist"],
            country="Canada",
        )
        await store.apply_entity(person_id, entity)
        person = await store.get_person(person_id)
        assert person["description"] == "Local bio"
        assert person["organizations"] == ["Acme Labs"]
        assert person["country"] == "Canada"

    async def test_update_person_fields_rejects_unknown_columns(self, store: AsyncPersonStore):
        person_id = await store.create_person("Jane Q. Researcher")
        with pytest.raises(ValueError, match="status"):
            await store.update_person_fields(person_id, status="ready")


class TestAdvisoryLock:
    """``building`` acts as the per-person run lock."""

    async def test_second_begin_is_rejected(self, store: AsyncPersonStore):
        person_id = await store.create_person("Jane Q. Researcher")
        assert await store.try_begin_build(person_id) is True
        assert await store.try_begin_build(person_id) is False

    async def test_finish_releases_lock(self, store: AsyncPersonStore):
        person_id = await store.create_person("Jane Q. Researcher")
        await store.try_begin_build(person_id)
        await store.finish_build(person_id, PersonStatus.READY)
        assert await store.get_status(person_id) == PersonStatus.READY
        assert await store.try_begin_build(person_id) is True

    async def test_finish_requires_terminal_status(self, store: AsyncPersonStore):
        person_id = await store.create_person("Jane Q. Researcher")
        with pytest.raises(ValueError):
            await store.finish_build(person_id, PersonStatus.PENDING)

    async def test_status_changes_are_logged(self, store: AsyncPersonStore, db_path):
        person_id = await store.create_person("Jane Q. Researcher")
        await store.try_begin_build(person_id)
        await store.finish_build(person_id, PersonStatus.ERROR, "boom")
        with Database(db_path) as db:
            history = db.get_status_history(person_id)
        assert [(h["old_status"], h["new_status"]) for h in history] == [
            ("pending", "building"),
            ("building", "error"),
        ]


class TestContentAndCareer:
    """Unique keys on content items and career events."""

    async def test_content_item_unique_per_person_hash(self, store: AsyncPersonStore):
        person_id = await store.create_person("Jane Q. Researcher")
        first = await store.insert_content_item(
            person_id, SourceKind.CODE, "abc", "https://github.com/janeq/a", "a", "text", None, {}
        )
        second = await store.insert_content_item(
            person_id, SourceKind.CODE, "abc", "https://github.com/janeq/a", "a", "text", None, {}
        )
        assert first is not None
        assert second is None
        assert await store.count_content_items(person_id) == {"code": 1}

    async def test_clear_generated_content_keeps_manual_events(self, store: AsyncPersonStore):
        person_id = await store.create_person("Jane Q. Researcher")
        await store.insert_content_item(
            person_id, SourceKind.VIDEO, "h1", None, "t", "x", None, {}
        )
        await store.add_card(person_id, "Card")
        org_id = await store.get_or_create_organization("Acme Labs")
        await store.insert_career_event(
            person_id, org_id, "Scientist", "career", "2019-01-01", None,
            True, False, False, 0.9, "llm_extraction",
        )
        await store.insert_career_event(
            person_id, org_id, "Advisor", "career", None, None,
            False, True, True, 1.0, "manual",
        )

        removed = await store.clear_generated_content(person_id)

        assert removed["content_items"] == 1
        assert removed["cards"] == 1
        assert removed["career_events"] == 1
        events = await store.list_career_events(person_id)
        assert [e["source"] for e in events] == ["manual"]

    async def test_organizations_dedup_by_normalized_name(self, store: AsyncPersonStore):
        first = await store.get_or_create_organization("Acme Labs, Inc.")
        second = await store.get_or_create_organization("acme labs inc")
        assert first == second
        assert normalize_org_name("Acme Labs, Inc.") == "acme labs inc"

    async def test_fill_career_dates_only_fills_missing(self, store: AsyncPersonStore):
        person_id = await store.create_person("Jane Q. Researcher")
        org_id = await store.get_or_create_organization("Acme Labs")
        event_id = await store.insert_career_event(
            person_id, org_id, "Scientist", "career", None, None,
            False, True, True, 0.8, "llm_extraction",
        )
        await store.fill_career_dates(event_id, "2019-01-01", None, True)
        (event,) = await store.list_career_events(person_id)
        assert event["start_date"] == "2019-01-01"
        assert event["start_period"] == "2019"
        assert event["start_unknown"] == 0
        assert event["is_current"] == 1

    async def test_snapshot_counts(self, store: AsyncPersonStore):
        person_id = await store.create_person("Jane Q. Researcher")
        await store.insert_content_item(
            person_id, SourceKind.CODE, "h1", "https://github.com/janeq/a", "a", "x", None,
            {"stars": 40},
        )
        await store.insert_content_item(
            person_id, SourceKind.CODE, "h2", "https://github.com/janeq/b", "b", "y", None,
            {"stars": 2},
        )
        snapshot = await store.get_snapshot(person_id)
        assert snapshot["content_counts"] == {"code": 2}
        assert snapshot["code_stars"] == 42
        assert snapshot["career_event_count"] == 0


class TestFetchState:
    async def test_last_success_survives_failure(self, store: AsyncPersonStore):
        person_id = await store.create_person("Jane Q. Researcher")
        assert await store.get_last_success(person_id, SourceKind.CODE) is None
        await store.record_fetch(person_id, SourceKind.CODE, "ok")
        first = await store.get_last_success(person_id, SourceKind.CODE)
        await store.record_fetch(person_id, SourceKind.CODE, "failed")
        assert first is not None
        assert await store.get_last_success(person_id, SourceKind.CODE) == first


class TestPersistenceErrors:
    async def test_constraint_violation_maps_to_persistence_error(self, store: AsyncPersonStore):
        await store.create_person("Jane Q. Researcher", identity_key="Q1")
        with pytest.raises(PersistenceError):
            await store.create_person("Someone Else", identity_key="Q1")


class TestDatabaseReads:
    async def test_summary_renders_partial_profile(self, store: AsyncPersonStore, db_path):
        person_id = await store.create_person("Jane Q. Researcher")
        await store.try_begin_build(person_id)
        await store.finish_build(person_id, PersonStatus.ERROR, "identity resolution failed")
        with Database(db_path) as db:
            summary = db.get_person_summary(person_id)
        assert summary["status"] == "error"
        assert summary["content_count"] == 0
        assert summary["last_run"] is None
