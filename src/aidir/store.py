"""Async SQLite store: the pipeline's only write path.

Wraps aiosqlite with narrow, individually idempotent operations: upsert
by unique key, count/aggregate queries, and the ``building`` advisory
lock. Each write method commits immediately; no transaction is held
across ``await`` boundaries, so a failed stage can simply be re-run.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone

import aiosqlite

from aidir.database import SCHEMA_SQL, person_row_to_dict
from aidir.links import links_to_json, normalize_links
from aidir.models import (
    KnowledgeBaseEntity,
    OfficialLink,
    OrganizationType,
    PersonIdentity,
    PersonStatus,
    SourceKind,
)

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when the store rejects a required write."""


class PersonBusyError(Exception):
    """Raised when a run is requested for a person already ``building``."""


def normalize_org_name(name: str) -> str:
    """Dedup key for organizations: casefolded, whitespace and punctuation collapsed."""
    folded = name.casefold().strip()
    for ch in ",.()'\"":
        folded = folded.replace(ch, " ")
    return " ".join(folded.split())


_UNIVERSITY_MARKERS = (
    "university", "college", "institute of technology", "school", "大学", "学院",
)
_COMPANY_MARKERS = (
    "inc", "corp", "ltd", "llc", "labs", "lab", "technologies", "ai",
)


def classify_organization(name: str) -> OrganizationType:
    lowered = normalize_org_name(name)
    if any(marker in lowered for marker in _UNIVERSITY_MARKERS):
        return OrganizationType.UNIVERSITY
    tokens = set(lowered.split())
    if tokens & set(_COMPANY_MARKERS) or "公司" in lowered:
        return OrganizationType.COMPANY
    return OrganizationType.OTHER


class AsyncPersonStore:
    """Async repository over the people directory schema.

    Usage::

        async with AsyncPersonStore("data/directory.db") as store:
            person_id = await store.create_person("Jane Q. Researcher")
            if await store.try_begin_build(person_id):
                ...
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = str(db_path)
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open an aiosqlite connection with WAL mode and foreign keys."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA synchronous=NORMAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await self._db.executescript(SCHEMA_SQL)
        await self._db.commit()

    async def close(self) -> None:
        """Close the connection if open."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> AsyncPersonStore:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Not connected -- use 'async with' or call connect()")
        return self._db

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")

    async def _write(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Execute one write and commit, mapping sqlite failures to PersistenceError."""
        db = self._ensure_connected()
        try:
            cursor = await db.execute(sql, params)
            await db.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Write failed: {e}") from e
        return cursor

    # ------------------------------------------------------------------
    # People
    # ------------------------------------------------------------------

    async def create_person(
        self,
        name: str,
        identity_key: str | None = None,
        aliases: list[str] | None = None,
        description: str | None = None,
        links: object = None,
    ) -> int:
        """Insert a new ``pending`` person and return its id."""
        cursor = await self._write(
            """INSERT INTO people (name, identity_key, aliases_json, description, links_json)
               VALUES (?, ?, ?, ?, ?)""",
            (
                name,
                identity_key,
                json.dumps(_clean_aliases(name, aliases or []), ensure_ascii=False),
                description,
                links_to_json(normalize_links(links)),
            ),
        )
        logger.info("Created person %d: %s (%s)", cursor.lastrowid, name, identity_key)
        return cursor.lastrowid  # type: ignore[return-value]

    async def get_person(self, person_id: int) -> dict | None:
        db = self._ensure_connected()
        cursor = await db.execute("SELECT * FROM people WHERE id = ?", (person_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        person = person_row_to_dict(row)
        person["links"] = normalize_links(person["links"])
        return person

    async def find_person_by_identity(self, identity_key: str) -> int | None:
        db = self._ensure_connected()
        cursor = await db.execute(
            "SELECT id FROM people WHERE identity_key = ?", (identity_key,)
        )
        row = await cursor.fetchone()
        return row["id"] if row else None

    async def list_match_candidates(self) -> list[dict]:
        """Return id/name/english_name/aliases for every person (local matching)."""
        db = self._ensure_connected()
        cursor = await db.execute(
            "SELECT id, name, english_name, aliases_json, identity_key, description, links_json FROM people"
        )
        rows = await cursor.fetchall()
        result = []
        for row in rows:
            result.append({
                "id": row["id"],
                "name": row["name"],
                "english_name": row["english_name"],
                "aliases": json.loads(row["aliases_json"] or "[]"),
                "identity_key": row["identity_key"],
                "description": row["description"],
                "links": normalize_links(row["links_json"]),
            })
        return result

    async def list_person_ids(self) -> list[int]:
        db = self._ensure_connected()
        cursor = await db.execute("SELECT id FROM people ORDER BY id")
        return [row["id"] for row in await cursor.fetchall()]

    async def get_identity(self, person_id: int) -> PersonIdentity | None:
        """Build the fetch/filter context for a person from its stored row."""
        person = await self.get_person(person_id)
        if person is None:
            return None
        return PersonIdentity(
            person_id=person_id,
            name=person["name"],
            identity_key=person["identity_key"],
            english_name=person["english_name"],
            aliases=person["aliases"],
            organizations=person["organizations"],
            occupations=person["occupations"],
            links=person["links"],
            orcid=person["orcid"],
        )

    async def set_identity_key(self, person_id: int, identity_key: str | None) -> None:
        await self._write(
            "UPDATE people SET identity_key = ? WHERE id = ?", (identity_key, person_id)
        )

    async def merge_aliases_and_links(
        self,
        person_id: int,
        aliases: list[str],
        links: list[OfficialLink],
    ) -> None:
        """Union event-supplied aliases/links into the stored profile."""
        person = await self.get_person(person_id)
        if person is None:
            raise PersistenceError(f"Person {person_id} not found")
        merged_aliases = _clean_aliases(person["name"], person["aliases"] + aliases)
        merged_links = normalize_links(list(person["links"]) + list(links))
        await self._write(
            "UPDATE people SET aliases_json = ?, links_json = ? WHERE id = ?",
            (
                json.dumps(merged_aliases, ensure_ascii=False),
                links_to_json(merged_links),
                person_id,
            ),
        )

    async def apply_entity(self, person_id: int, entity: KnowledgeBaseEntity) -> None:
        """Refresh profile fields from a knowledge-base entity.

        Existing non-empty values win for fields the entity lacks; links
        and aliases are unioned.
        """
        person = await self.get_person(person_id)
        if person is None:
            raise PersistenceError(f"Person {person_id} not found")

        aliases = _clean_aliases(person["name"], person["aliases"] + entity.aliases + [entity.label])
        links = normalize_links(list(person["links"]) + list(entity.links))
        await self._write(
            """UPDATE people SET
                   english_name = COALESCE(?, english_name),
                   aliases_json = ?,
                   description = COALESCE(NULLIF(?, ''), description),
                   occupations_json = ?,
                   organizations_json = ?,
                   links_json = ?,
                   avatar_url = COALESCE(?, avatar_url),
                   orcid = COALESCE(?, orcid),
                   gender = COALESCE(?, gender),
                   birth_year = COALESCE(?, birth_year),
                   country = COALESCE(?, country)
               WHERE id = ?""",
            (
                entity.label or None,
                json.dumps(aliases, ensure_ascii=False),
                entity.description,
                json.dumps(entity.occupations or person["occupations"], ensure_ascii=False),
                json.dumps(entity.organizations or person["organizations"], ensure_ascii=False),
                links_to_json(links),
                entity.image_url,
                entity.orcid,
                entity.gender,
                entity.birth_year,
                entity.country,
                person_id,
            ),
        )
        logger.debug("Applied knowledge-base entity %s to person %d", entity.id, person_id)

    async def update_person_fields(self, person_id: int, **fields: object) -> None:
        """Update plain scalar columns (e.g. citation_count, follower_count)."""
        allowed = {
            "description", "avatar_url", "citation_count", "h_index",
            "follower_count", "influence_override", "english_name",
        }
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{name} = ?" for name in fields)
        await self._write(
            f"UPDATE people SET {assignments} WHERE id = ?",
            (*fields.values(), person_id),
        )

    # ------------------------------------------------------------------
    # Lifecycle / advisory lock
    # ------------------------------------------------------------------

    async def get_status(self, person_id: int) -> PersonStatus | None:
        db = self._ensure_connected()
        cursor = await db.execute("SELECT status FROM people WHERE id = ?", (person_id,))
        row = await cursor.fetchone()
        return PersonStatus(row["status"]) if row else None

    async def try_begin_build(self, person_id: int) -> bool:
        """Atomically move a person into ``building``.

        A single conditional UPDATE acts as the advisory lock: it only
        matches when the person is not already ``building``.

        Returns:
            True if this caller now owns the run.
        """
        cursor = await self._write(
            """UPDATE people SET status = 'building', error_message = NULL
               WHERE id = ? AND status != 'building'""",
            (person_id,),
        )
        return cursor.rowcount == 1

    async def finish_build(
        self,
        person_id: int,
        status: PersonStatus,
        error_message: str | None = None,
    ) -> None:
        """Move a ``building`` person to a terminal status."""
        if status not in (PersonStatus.READY, PersonStatus.ERROR):
            raise ValueError(f"Not a terminal status: {status}")
        await self._write(
            """UPDATE people SET status = ?, error_message = ?
               WHERE id = ? AND status = 'building'""",
            (status.value, error_message, person_id),
        )

    # ------------------------------------------------------------------
    # Content items
    # ------------------------------------------------------------------

    async def get_content_item(self, person_id: int, content_hash: str) -> dict | None:
        db = self._ensure_connected()
        cursor = await db.execute(
            """SELECT id, source, url, content_hash, title, text, metadata_json
               FROM content_items WHERE person_id = ? AND content_hash = ?""",
            (person_id, content_hash),
        )
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def insert_content_item(
        self,
        person_id: int,
        source: SourceKind,
        content_hash: str,
        url: str | None,
        title: str,
        text: str,
        published_at: str | None,
        metadata: dict,
        run_id: int | None = None,
    ) -> int | None:
        """Insert a content item; returns None if (person, hash) already exists."""
        cursor = await self._write(
            """INSERT INTO content_items
                   (person_id, source, url, content_hash, title, text,
                    published_at, metadata_json, run_id, fetched_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(person_id, content_hash) DO NOTHING""",
            (
                person_id, source.value, url, content_hash, title, text,
                published_at, json.dumps(metadata, ensure_ascii=False, default=str),
                run_id, self._now_iso(),
            ),
        )
        return cursor.lastrowid if cursor.rowcount == 1 else None

    async def update_content_item(
        self,
        item_id: int,
        title: str,
        text: str,
        published_at: str | None,
        metadata: dict,
        run_id: int | None = None,
    ) -> None:
        """Replace text/metadata of an existing item and refresh its fetch timestamp."""
        await self._write(
            """UPDATE content_items
               SET title = ?, text = ?, published_at = COALESCE(?, published_at),
                   metadata_json = ?, run_id = ?, fetched_at = ?,
                   fetch_status = 'updated'
               WHERE id = ?""",
            (
                title, text, published_at,
                json.dumps(metadata, ensure_ascii=False, default=str),
                run_id, self._now_iso(), item_id,
            ),
        )

    async def list_content_items(
        self,
        person_id: int,
        run_id: int | None = None,
        source: SourceKind | None = None,
    ) -> list[dict]:
        """List content items for a person, optionally only those written by *run_id*."""
        db = self._ensure_connected()
        sql = """SELECT id, source, url, content_hash, title, text, published_at,
                        metadata_json, run_id, fetched_at
                 FROM content_items WHERE person_id = ?"""
        params: list[object] = [person_id]
        if run_id is not None:
            sql += " AND run_id = ?"
            params.append(run_id)
        if source is not None:
            sql += " AND source = ?"
            params.append(source.value)
        sql += " ORDER BY id"
        cursor = await db.execute(sql, tuple(params))
        items = []
        for row in await cursor.fetchall():
            item = dict(row)
            item["metadata"] = json.loads(item.pop("metadata_json") or "{}")
            items.append(item)
        return items

    async def delete_content_items(self, item_ids: list[int]) -> int:
        if not item_ids:
            return 0
        placeholders = ",".join("?" for _ in item_ids)
        cursor = await self._write(
            f"DELETE FROM content_items WHERE id IN ({placeholders})", tuple(item_ids)
        )
        return cursor.rowcount

    async def count_content_items(self, person_id: int) -> dict[str, int]:
        db = self._ensure_connected()
        cursor = await db.execute(
            "SELECT source, COUNT(*) AS n FROM content_items WHERE person_id = ? GROUP BY source",
            (person_id,),
        )
        return {row["source"]: row["n"] for row in await cursor.fetchall()}

    async def clear_generated_content(self, person_id: int) -> dict[str, int]:
        """Invalidate everything derived from a previous identity.

        Removes content items, cards, courses and machine-derived career
        events. Manually entered career events (``source = 'manual'``)
        are kept.
        """
        db = self._ensure_connected()
        removed: dict[str, int] = {}
        try:
            for table, where in (
                ("content_items", "person_id = ?"),
                ("cards", "person_id = ?"),
                ("courses", "person_id = ?"),
                ("career_events", "person_id = ? AND source != 'manual'"),
                ("source_fetch_state", "person_id = ?"),
            ):
                cursor = await db.execute(f"DELETE FROM {table} WHERE {where}", (person_id,))
                removed[table] = cursor.rowcount
            await db.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to clear content for person {person_id}: {e}") from e
        logger.info("Cleared generated content for person %d: %s", person_id, removed)
        return removed

    # ------------------------------------------------------------------
    # Organizations and career events
    # ------------------------------------------------------------------

    async def get_or_create_organization(self, name: str) -> int:
        normalized = normalize_org_name(name)
        if not normalized:
            raise ValueError("Organization name is empty")
        await self._write(
            """INSERT INTO organizations (name, normalized_name, org_type)
               VALUES (?, ?, ?)
               ON CONFLICT(normalized_name) DO NOTHING""",
            (name.strip(), normalized, classify_organization(name).value),
        )
        db = self._ensure_connected()
        cursor = await db.execute(
            "SELECT id FROM organizations WHERE normalized_name = ?", (normalized,)
        )
        row = await cursor.fetchone()
        return row["id"]

    async def list_career_events(self, person_id: int) -> list[dict]:
        db = self._ensure_connected()
        cursor = await db.execute(
            """SELECT e.id, e.organization_id, o.name AS organization, o.normalized_name,
                      e.role, e.event_type, e.start_date, e.end_date, e.start_period,
                      e.is_current, e.start_unknown, e.end_unknown, e.confidence, e.source
               FROM career_events e JOIN organizations o ON o.id = e.organization_id
               WHERE e.person_id = ? ORDER BY e.id""",
            (person_id,),
        )
        return [dict(row) for row in await cursor.fetchall()]

    async def insert_career_event(
        self,
        person_id: int,
        organization_id: int,
        role: str,
        event_type: str,
        start_date: str | None,
        end_date: str | None,
        is_current: bool,
        start_unknown: bool,
        end_unknown: bool,
        confidence: float,
        source: str,
    ) -> int | None:
        """Insert a career event; returns None when the dedup key already exists."""
        start_period = start_date[:4] if start_date else ""
        cursor = await self._write(
            """INSERT INTO career_events
                   (person_id, organization_id, role, event_type, start_date, end_date,
                    start_period, is_current, start_unknown, end_unknown, confidence, source)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(person_id, organization_id, role, start_period) DO NOTHING""",
            (
                person_id, organization_id, role, event_type, start_date, end_date,
                start_period, int(is_current), int(start_unknown), int(end_unknown),
                confidence, source,
            ),
        )
        return cursor.lastrowid if cursor.rowcount == 1 else None

    async def fill_career_dates(
        self, event_id: int, start_date: str | None, end_date: str | None, is_current: bool
    ) -> None:
        """Fill in dates on a previously dateless event (never overwrites known dates)."""
        await self._write(
            """UPDATE career_events SET
                   start_date = COALESCE(start_date, ?),
                   start_period = CASE WHEN start_date IS NULL AND ? IS NOT NULL
                                       THEN substr(?, 1, 4) ELSE start_period END,
                   start_unknown = CASE WHEN start_date IS NULL AND ? IS NULL THEN 1 ELSE 0 END,
                   end_date = COALESCE(end_date, ?),
                   is_current = CASE WHEN end_date IS NULL THEN ? ELSE is_current END
               WHERE id = ?""",
            (
                start_date, start_date, start_date, start_date,
                end_date, int(is_current), event_id,
            ),
        )

    # ------------------------------------------------------------------
    # Courses and cards
    # ------------------------------------------------------------------

    async def insert_course(self, person_id: int, course: dict) -> bool:
        cursor = await self._write(
            """INSERT INTO courses
                   (person_id, title, platform, url, url_hash, course_type,
                    level, description, confidence, source)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(person_id, url_hash) DO NOTHING""",
            (
                person_id, course["title"], course["platform"], course.get("url"),
                course["url_hash"], course["course_type"], course.get("level"),
                course.get("description"), course.get("confidence", 1.0),
                course.get("source", "llm_extraction"),
            ),
        )
        return cursor.rowcount == 1

    async def list_courses(self, person_id: int) -> list[dict]:
        db = self._ensure_connected()
        cursor = await db.execute(
            "SELECT * FROM courses WHERE person_id = ? ORDER BY id", (person_id,)
        )
        return [dict(row) for row in await cursor.fetchall()]

    async def add_card(self, person_id: int, title: str, content: str = "", card_type: str = "insight") -> int:
        cursor = await self._write(
            "INSERT INTO cards (person_id, card_type, title, content) VALUES (?, ?, ?, ?)",
            (person_id, card_type, title, content),
        )
        return cursor.lastrowid  # type: ignore[return-value]

    async def count_cards(self, person_id: int) -> int:
        db = self._ensure_connected()
        cursor = await db.execute("SELECT COUNT(*) FROM cards WHERE person_id = ?", (person_id,))
        return (await cursor.fetchone())[0]

    # ------------------------------------------------------------------
    # Runs and incremental fetch state
    # ------------------------------------------------------------------

    async def start_run(self, person_id: int, event_type: str, identity_key: str | None) -> int:
        cursor = await self._write(
            """INSERT INTO enrichment_runs (person_id, event_type, identity_key, started_at)
               VALUES (?, ?, ?, ?)""",
            (person_id, event_type, identity_key, self._now_iso()),
        )
        return cursor.lastrowid  # type: ignore[return-value]

    async def finish_run(
        self,
        run_id: int,
        status: str,
        stages: dict[str, dict],
        error_detail: str | None = None,
    ) -> None:
        await self._write(
            """UPDATE enrichment_runs
               SET status = ?, stages_json = ?, error_detail = ?, finished_at = ?
               WHERE id = ?""",
            (
                status, json.dumps(stages, ensure_ascii=False, default=str),
                error_detail, self._now_iso(), run_id,
            ),
        )

    async def get_last_success(self, person_id: int, source: SourceKind) -> datetime | None:
        db = self._ensure_connected()
        cursor = await db.execute(
            """SELECT last_success_at FROM source_fetch_state
               WHERE person_id = ? AND source = ?""",
            (person_id, source.value),
        )
        row = await cursor.fetchone()
        if row is None or row["last_success_at"] is None:
            return None
        return datetime.strptime(row["last_success_at"], "%Y-%m-%dT%H:%M:%S.%f").replace(
            tzinfo=timezone.utc
        )

    async def record_fetch(self, person_id: int, source: SourceKind, status: str) -> None:
        now = self._now_iso()
        success_at = now if status == "ok" else None
        await self._write(
            """INSERT INTO source_fetch_state
                   (person_id, source, last_status, last_success_at, last_attempt_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(person_id, source) DO UPDATE SET
                   last_status = excluded.last_status,
                   last_success_at = COALESCE(excluded.last_success_at,
                                              source_fetch_state.last_success_at),
                   last_attempt_at = excluded.last_attempt_at""",
            (person_id, source.value, status, success_at, now),
        )

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    async def get_snapshot(self, person_id: int) -> dict | None:
        """Profile fields plus related-record counts, as consumed by the scorer."""
        person = await self.get_person(person_id)
        if person is None:
            return None
        db = self._ensure_connected()
        person["content_counts"] = await self.count_content_items(person_id)

        cursor = await db.execute(
            """SELECT COUNT(*) AS total, COALESCE(SUM(start_unknown), 0) AS dateless
               FROM career_events WHERE person_id = ?""",
            (person_id,),
        )
        row = await cursor.fetchone()
        person["career_event_count"] = row["total"]
        person["career_events_without_start"] = row["dateless"]
        person["card_count"] = await self.count_cards(person_id)

        cursor = await db.execute(
            "SELECT metadata_json FROM content_items WHERE person_id = ? AND source = 'code'",
            (person_id,),
        )
        stars = 0
        for star_row in await cursor.fetchall():
            value = json.loads(star_row["metadata_json"] or "{}").get("stars") or 0
            stars += int(value)
        person["code_stars"] = stars
        return person

    async def update_scores(
        self,
        person_id: int,
        completeness: int,
        breakdown: dict[str, float],
        influence: float,
    ) -> None:
        await self._write(
            """UPDATE people
               SET completeness_score = ?, score_breakdown_json = ?, influence_score = ?
               WHERE id = ?""",
            (completeness, json.dumps(breakdown), influence, person_id),
        )

    # ------------------------------------------------------------------
    # Identity resolution sessions
    # ------------------------------------------------------------------

    async def record_search_session(
        self,
        query: str,
        status: str,
        local_hits: list[int],
        candidates: list[dict],
        diagnostic: str | None = None,
    ) -> int:
        cursor = await self._write(
            """INSERT INTO search_sessions (query, status, local_hits_json, candidates_json, diagnostic)
               VALUES (?, ?, ?, ?, ?)""",
            (
                query, status, json.dumps(local_hits),
                json.dumps(candidates, ensure_ascii=False), diagnostic,
            ),
        )
        return cursor.lastrowid  # type: ignore[return-value]


def _clean_aliases(name: str, aliases: list[str]) -> list[str]:
    """Deduplicate aliases case-insensitively and drop the display name itself."""
    seen = {name.casefold().strip()}
    result = []
    for alias in aliases:
        if not alias:
            continue
        alias = alias.strip()
        key = alias.casefold()
        if not alias or key in seen:
            continue
        seen.add(key)
        result.append(alias)
    return result
