"""Shared pytest fixtures for the enrichment pipeline tests.

Provides a temporary file-backed database, a connected async store,
a fast test configuration (no retry backoff, no request delays) and
helpers for building identities and mock HTTP clients.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from aidir.config import EnrichmentConfig
from aidir.database import Database
from aidir.links import normalize_links
from aidir.models import PersonIdentity
from aidir.store import AsyncPersonStore

ALL_CREDENTIALS = {
    "github_token": "gh-test-token",
    "youtube_api_key": "yt-test-key",
    "xai_api_key": "xai-test-key",
    "exa_api_key": "exa-test-key",
    "openalex_email": "tests@example.org",
}


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "directory.db"


@pytest.fixture
def tmp_db(db_path: Path) -> Database:
    """Create a temporary SQLite database (file-based for WAL support)."""
    db = Database(db_path)
    yield db
    db.close()


@pytest.fixture
async def store(db_path: Path):
    """Connected AsyncPersonStore over a fresh database."""
    person_store = AsyncPersonStore(str(db_path))
    await person_store.connect()
    yield person_store
    await person_store.close()


@pytest.fixture
def config(db_path: Path) -> EnrichmentConfig:
    """Configuration with every credential set and no waiting between calls."""
    return EnrichmentConfig(
        db_path=db_path,
        credentials=dict(ALL_CREDENTIALS),
        max_http_retries=2,
        retry_backoff_seconds=0,
        kb_request_delay_seconds=0,
        code_request_delay_seconds=0,
        stage_timeout_seconds=5,
        refresh_intervals={},
    )


@pytest.fixture
def bare_config(db_path: Path) -> EnrichmentConfig:
    """Configuration without any credentials."""
    return EnrichmentConfig(
        db_path=db_path,
        retry_backoff_seconds=0,
        kb_request_delay_seconds=0,
        code_request_delay_seconds=0,
    )


def make_identity(
    name: str = "Jane Q. Researcher",
    person_id: int = 1,
    **kwargs,
) -> PersonIdentity:
    """Build a PersonIdentity; ``links`` may be given in any stored shape."""
    links = normalize_links(kwargs.pop("links", None))
    return PersonIdentity(person_id=person_id, name=name, links=links, **kwargs)


@pytest.fixture
def identity() -> PersonIdentity:
    return make_identity(
        english_name="Jane Q. Researcher",
        aliases=["J. Q. Researcher"],
        organizations=["Acme Labs"],
        occupations=["computer scientist"],
        links=["https://github.com/janeq", "https://x.com/janeq_ai", "https://janeq.dev"],
    )


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    """AsyncClient whose every request is answered by *handler*."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
