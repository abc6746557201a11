"""Credential lookup and enrichment configuration.

Credentials are resolved once (system keyring first, then environment
variable fallback) into an explicit :class:`EnrichmentConfig` that is
injected into every adapter. Adapters never read process state.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import keyring
from keyring.errors import KeyringError

from aidir.models import SourceKind

logger = logging.getLogger(__name__)

SERVICE_NAME = "aidir"

# Credential names understood by the adapters and extractor.
# Environment fallback is the upper-cased name (e.g. GITHUB_TOKEN).
CREDENTIAL_NAMES: tuple[str, ...] = (
    "github_token",
    "youtube_api_key",
    "xai_api_key",
    "exa_api_key",
    "mistral_api_key",
    "openalex_email",
)

# Incremental fetch windows per source, in hours
DEFAULT_REFRESH_INTERVALS: dict[str, int] = {
    SourceKind.WEBSEARCH.value: 24,
    SourceKind.SOCIAL.value: 24,
    SourceKind.VIDEO.value: 24,
    SourceKind.CODE.value: 24,
    SourceKind.ACADEMIC.value: 24 * 7,
    SourceKind.KNOWLEDGEBASE.value: 24 * 7,
}

CODE_RESULTS_HARD_CAP = 30


def get_credential(name: str) -> str | None:
    """Get a credential: system keyring first, then environment variable.

    Args:
        name: One of :data:`CREDENTIAL_NAMES`.

    Returns:
        The credential string, or None when not configured anywhere.
    """
    try:
        value = keyring.get_password(SERVICE_NAME, name)
    except KeyringError:
        logger.debug("Keyring unavailable while reading %s", name, exc_info=True)
        value = None
    if value:
        return value

    value = os.environ.get(name.upper())
    if value:
        return value
    return None


def load_credentials(names: tuple[str, ...] = CREDENTIAL_NAMES) -> dict[str, str]:
    """Resolve every known credential, omitting the ones that are not set."""
    resolved: dict[str, str] = {}
    for name in names:
        value = get_credential(name)
        if value:
            resolved[name] = value
    missing = sorted(set(names) - set(resolved))
    if missing:
        logger.info("Credentials not configured: %s", ", ".join(missing))
    return resolved


@dataclass
class EnrichmentConfig:
    """Settings for one enrichment process.

    Attributes:
        db_path: SQLite database path.
        credentials: Resolved credentials keyed by credential name.
        http_timeout_seconds: Timeout applied to every outbound HTTP call.
        stage_timeout_seconds: Upper bound for a whole adapter stage.
        retry_backoff_seconds: Base of the exponential wait between HTTP retries.
        max_concurrent_sources: Adapters fetched at once for one person.
        max_concurrent_queries: Concurrent queries inside one adapter.
        code_max_results: Repositories kept per person (never above 30).
        kb_request_delay_seconds: Delay between knowledge-base requests.
        code_request_delay_seconds: Delay between code-hosting requests.
        llm_rate_limit_rpm: Text-generation requests per minute.
        llm_temperature: Sampling temperature for extraction (kept low).
    """

    db_path: Path = field(default_factory=lambda: Path("data/directory.db"))
    credentials: dict[str, str] = field(default_factory=dict)
    http_timeout_seconds: float = 15.0
    stage_timeout_seconds: float = 120.0
    max_concurrent_sources: int = 4
    max_concurrent_queries: int = 2
    max_http_retries: int = 3
    retry_backoff_seconds: float = 0.5
    code_max_results: int = 20
    video_max_results: int = 15
    social_max_posts: int = 15
    academic_max_results: int = 20
    websearch_max_results: int = 10
    kb_request_delay_seconds: float = 1.0
    code_request_delay_seconds: float = 0.5
    llm_model: str = "mistral-medium-latest"
    llm_rate_limit_rpm: int = 60
    llm_temperature: float = 0.1
    corpus_chars_per_source: int = 4000
    corpus_max_chars: int = 16000
    max_corpus_items: int = 8
    refresh_intervals: dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_REFRESH_INTERVALS)
    )

    def __post_init__(self) -> None:
        if isinstance(self.db_path, str):
            self.db_path = Path(self.db_path)
        if self.code_max_results > CODE_RESULTS_HARD_CAP:
            logger.warning(
                "code_max_results=%d exceeds cap, using %d",
                self.code_max_results, CODE_RESULTS_HARD_CAP,
            )
            self.code_max_results = CODE_RESULTS_HARD_CAP

    def credential(self, name: str) -> str | None:
        return self.credentials.get(name)


def load_config(config_path: Path | None = None, with_credentials: bool = True) -> EnrichmentConfig:
    """Build an EnrichmentConfig, merging a JSON file over defaults.

    Unknown keys in the file are ignored with a warning.

    Args:
        config_path: Optional path to a JSON config file.
        with_credentials: Resolve credentials from keyring/environment.
    """
    kwargs: dict[str, object] = {}
    if config_path is not None:
        with open(config_path, encoding="utf-8") as f:
            data = json.load(f)
        known = {fld.name for fld in fields(EnrichmentConfig)}
        for key, value in data.items():
            if key in known:
                kwargs[key] = value
            else:
                logger.warning("Ignoring unknown config key %r in %s", key, config_path)

    config = EnrichmentConfig(**kwargs)  # type: ignore[arg-type]
    if with_credentials:
        merged = load_credentials()
        merged.update(config.credentials)
        config.credentials = merged
    return config
