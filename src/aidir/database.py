"""SQLite schema and read-side database layer for the people directory.

Owns schema initialization (WAL pragmas, tables, triggers) and the
read-only queries used by presentation layers and the CLI. All writes
made by the enrichment pipeline go through :mod:`aidir.store`.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Canonical person profiles
CREATE TABLE IF NOT EXISTS people (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    identity_key TEXT UNIQUE,
    name TEXT NOT NULL,
    english_name TEXT,
    aliases_json TEXT NOT NULL DEFAULT '[]',
    description TEXT,
    occupations_json TEXT NOT NULL DEFAULT '[]',
    organizations_json TEXT NOT NULL DEFAULT '[]',
    links_json TEXT NOT NULL DEFAULT '[]',
    avatar_url TEXT,
    orcid TEXT,
    gender TEXT,
    birth_year INTEGER,
    country TEXT,

    status TEXT NOT NULL DEFAULT 'pending'
        CHECK(status IN ('pending', 'building', 'ready', 'error')),
    error_message TEXT,

    completeness_score INTEGER NOT NULL DEFAULT 0
        CHECK(completeness_score BETWEEN 0 AND 100),
    score_breakdown_json TEXT,
    influence_score REAL NOT NULL DEFAULT 0,
    influence_override REAL,
    citation_count INTEGER NOT NULL DEFAULT 0,
    h_index INTEGER NOT NULL DEFAULT 0,
    follower_count INTEGER NOT NULL DEFAULT 0,
    view_count INTEGER NOT NULL DEFAULT 0,

    created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    updated_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_people_status ON people(status);
CREATE INDEX IF NOT EXISTS idx_people_completeness ON people(completeness_score);

CREATE TRIGGER IF NOT EXISTS update_people_timestamp
    AFTER UPDATE ON people
    FOR EACH ROW
    WHEN OLD.updated_at = NEW.updated_at
    BEGIN
        UPDATE people SET updated_at = strftime('%Y-%m-%dT%H:%M:%f', 'now')
        WHERE id = NEW.id;
    END;

-- Lifecycle transition audit log
CREATE TABLE IF NOT EXISTS _status_log (
    log_id INTEGER PRIMARY KEY AUTOINCREMENT,
    person_id INTEGER NOT NULL,
    old_status TEXT,
    new_status TEXT,
    timestamp TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    FOREIGN KEY (person_id) REFERENCES people(id) ON DELETE CASCADE
);

CREATE TRIGGER IF NOT EXISTS log_person_status_change
    AFTER UPDATE OF status ON people
    FOR EACH ROW
    WHEN OLD.status != NEW.status
    BEGIN
        INSERT INTO _status_log(person_id, old_status, new_status)
        VALUES (NEW.id, OLD.status, NEW.status);
    END;

-- Normalized fetched content, one row per (person, content hash)
CREATE TABLE IF NOT EXISTS content_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    person_id INTEGER NOT NULL,
    source TEXT NOT NULL
        CHECK(source IN ('knowledgebase', 'code', 'video', 'social', 'academic', 'websearch')),
    url TEXT,
    content_hash TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    text TEXT NOT NULL DEFAULT '',
    published_at TEXT,
    fetch_status TEXT NOT NULL DEFAULT 'fetched',
    metadata_json TEXT NOT NULL DEFAULT '{}',
    run_id INTEGER,
    fetched_at TEXT,
    created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    UNIQUE(person_id, content_hash),
    FOREIGN KEY (person_id) REFERENCES people(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_content_person_source ON content_items(person_id, source);
CREATE INDEX IF NOT EXISTS idx_content_run ON content_items(run_id);

-- Organizations, deduplicated by normalized name
CREATE TABLE IF NOT EXISTS organizations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    normalized_name TEXT NOT NULL UNIQUE,
    org_type TEXT NOT NULL DEFAULT 'other'
        CHECK(org_type IN ('company', 'university', 'other'))
);

-- Timeline entries
CREATE TABLE IF NOT EXISTS career_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    person_id INTEGER NOT NULL,
    organization_id INTEGER NOT NULL,
    role TEXT NOT NULL DEFAULT '',
    event_type TEXT NOT NULL DEFAULT 'career'
        CHECK(event_type IN ('career', 'education', 'founding', 'award')),
    start_date TEXT,
    end_date TEXT,
    start_period TEXT NOT NULL DEFAULT '',
    is_current INTEGER NOT NULL DEFAULT 0,
    start_unknown INTEGER NOT NULL DEFAULT 0,
    end_unknown INTEGER NOT NULL DEFAULT 0,
    confidence REAL NOT NULL DEFAULT 1.0,
    source TEXT NOT NULL,
    created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    UNIQUE(person_id, organization_id, role, start_period),
    FOREIGN KEY (person_id) REFERENCES people(id) ON DELETE CASCADE,
    FOREIGN KEY (organization_id) REFERENCES organizations(id)
);

CREATE INDEX IF NOT EXISTS idx_career_person ON career_events(person_id);

-- Courses taught or created by a person
CREATE TABLE IF NOT EXISTS courses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    person_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    platform TEXT NOT NULL DEFAULT 'other',
    url TEXT,
    url_hash TEXT NOT NULL,
    course_type TEXT NOT NULL DEFAULT 'paid'
        CHECK(course_type IN ('free', 'paid', 'freemium')),
    level TEXT,
    description TEXT,
    confidence REAL NOT NULL DEFAULT 1.0,
    source TEXT NOT NULL,
    created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    UNIQUE(person_id, url_hash),
    FOREIGN KEY (person_id) REFERENCES people(id) ON DELETE CASCADE
);

-- Generated learning cards (produced downstream, counted and cleared here)
CREATE TABLE IF NOT EXISTS cards (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    person_id INTEGER NOT NULL,
    card_type TEXT NOT NULL DEFAULT 'insight',
    title TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    FOREIGN KEY (person_id) REFERENCES people(id) ON DELETE CASCADE
);

-- One row per orchestrator pass
CREATE TABLE IF NOT EXISTS enrichment_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    person_id INTEGER NOT NULL,
    event_type TEXT NOT NULL,
    identity_key TEXT,
    status TEXT NOT NULL DEFAULT 'running'
        CHECK(status IN ('running', 'ready', 'error')),
    stages_json TEXT NOT NULL DEFAULT '{}',
    error_detail TEXT,
    started_at TEXT NOT NULL,
    finished_at TEXT,
    FOREIGN KEY (person_id) REFERENCES people(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_runs_person ON enrichment_runs(person_id);

-- Incremental fetch cursor per (person, source)
CREATE TABLE IF NOT EXISTS source_fetch_state (
    person_id INTEGER NOT NULL,
    source TEXT NOT NULL,
    last_status TEXT NOT NULL,
    last_success_at TEXT,
    last_attempt_at TEXT NOT NULL,
    PRIMARY KEY (person_id, source),
    FOREIGN KEY (person_id) REFERENCES people(id) ON DELETE CASCADE
);

-- Identity resolution attempts (analytics only)
CREATE TABLE IF NOT EXISTS search_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    query TEXT NOT NULL,
    status TEXT NOT NULL,
    local_hits_json TEXT NOT NULL DEFAULT '[]',
    candidates_json TEXT NOT NULL DEFAULT '[]',
    diagnostic TEXT,
    created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
);
"""

_JSON_LIST_COLUMNS = ("aliases_json", "occupations_json", "organizations_json", "links_json")


def person_row_to_dict(row: sqlite3.Row | dict) -> dict:
    """Decode a ``people`` row, expanding JSON columns into Python lists."""
    person = dict(row)
    for column in _JSON_LIST_COLUMNS:
        raw = person.pop(column, None)
        person[column.removesuffix("_json")] = json.loads(raw) if raw else []
    breakdown = person.pop("score_breakdown_json", None)
    person["score_breakdown"] = json.loads(breakdown) if breakdown else {}
    return person


class Database:
    """Synchronous SQLite wrapper for schema setup and presentation reads.

    Usage:
        with Database("data/directory.db") as db:
            people = db.list_people(status="ready")
            summary = db.get_person_summary(people[0]["id"])
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = sqlite3.connect(
            self.db_path,
            autocommit=sqlite3.LEGACY_TRANSACTION_CONTROL,
        )
        self.conn.row_factory = sqlite3.Row
        self._setup_pragmas()
        self._setup_schema()

    def _setup_pragmas(self) -> None:
        """Configure SQLite pragmas for performance and reliability."""
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA synchronous=NORMAL")
        self.conn.execute("PRAGMA foreign_keys=ON")

        result = self.conn.execute("PRAGMA journal_mode").fetchone()[0]
        if result != "wal":
            logger.warning("WAL mode not enabled, got: %s", result)

    def _setup_schema(self) -> None:
        """Create tables, indexes, and triggers if they don't exist."""
        self.conn.executescript(SCHEMA_SQL)
        self.conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

    # ------------------------------------------------------------------
    # Presentation reads
    # ------------------------------------------------------------------

    def get_person(self, person_id: int) -> dict | None:
        row = self.conn.execute("SELECT * FROM people WHERE id = ?", (person_id,)).fetchone()
        return person_row_to_dict(row) if row else None

    def list_people(self, status: str | None = None, limit: int = 100) -> list[dict]:
        """List people ordered by completeness (highest first)."""
        if status:
            rows = self.conn.execute(
                """SELECT * FROM people WHERE status = ?
                   ORDER BY completeness_score DESC, id LIMIT ?""",
                (status, limit),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM people ORDER BY completeness_score DESC, id LIMIT ?",
                (limit,),
            ).fetchall()
        return [person_row_to_dict(row) for row in rows]

    def get_person_summary(self, person_id: int) -> dict | None:
        """Return a person with nested related-record counts.

        Renders regardless of status: ``error`` and partially enriched
        profiles return whatever fields are populated.
        """
        person = self.get_person(person_id)
        if person is None:
            return None

        content_rows = self.conn.execute(
            """SELECT source, COUNT(*) AS n FROM content_items
               WHERE person_id = ? GROUP BY source""",
            (person_id,),
        ).fetchall()
        person["content_counts"] = {row["source"]: row["n"] for row in content_rows}
        person["content_count"] = sum(person["content_counts"].values())

        for table, key in (
            ("career_events", "career_event_count"),
            ("courses", "course_count"),
            ("cards", "card_count"),
        ):
            person[key] = self.conn.execute(
                f"SELECT COUNT(*) FROM {table} WHERE person_id = ?", (person_id,)
            ).fetchone()[0]

        last_run = self.conn.execute(
            """SELECT id, event_type, status, stages_json, error_detail,
                      started_at, finished_at
               FROM enrichment_runs WHERE person_id = ?
               ORDER BY id DESC LIMIT 1""",
            (person_id,),
        ).fetchone()
        if last_run is not None:
            run = dict(last_run)
            run["stages"] = json.loads(run.pop("stages_json") or "{}")
            person["last_run"] = run
        else:
            person["last_run"] = None
        return person

    def get_timeline(self, person_id: int) -> list[dict]:
        """Career events joined with organization names, most recent first."""
        rows = self.conn.execute(
            """SELECT e.id, o.name AS organization, o.org_type, e.role, e.event_type,
                      e.start_date, e.end_date, e.is_current, e.start_unknown,
                      e.confidence, e.source
               FROM career_events e
               JOIN organizations o ON o.id = e.organization_id
               WHERE e.person_id = ?
               ORDER BY COALESCE(e.start_date, '') DESC, e.id DESC""",
            (person_id,),
        ).fetchall()
        return [dict(row) for row in rows]

    def get_status_counts(self) -> dict[str, int]:
        rows = self.conn.execute(
            "SELECT status, COUNT(*) AS n FROM people GROUP BY status"
        ).fetchall()
        return {row["status"]: row["n"] for row in rows}

    def get_status_history(self, person_id: int) -> list[dict]:
        rows = self.conn.execute(
            """SELECT old_status, new_status, timestamp FROM _status_log
               WHERE person_id = ? ORDER BY log_id""",
            (person_id,),
        ).fetchall()
        return [dict(row) for row in rows]

    def list_search_sessions(self, limit: int = 20) -> list[dict]:
        rows = self.conn.execute(
            """SELECT id, query, status, local_hits_json, candidates_json,
                      diagnostic, created_at
               FROM search_sessions ORDER BY id DESC LIMIT ?""",
            (limit,),
        ).fetchall()
        sessions = []
        for row in rows:
            session = dict(row)
            session["local_hits"] = json.loads(session.pop("local_hits_json"))
            session["candidates"] = json.loads(session.pop("candidates_json"))
            sessions.append(session)
        return sessions

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object) -> None:
        self.close()
