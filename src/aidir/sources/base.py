"""Shared adapter contract, result type and resilient HTTP helper.

Every adapter talks to exactly one external system and translates its
schema into :class:`~aidir.models.RawCandidateItem`. Adapters perform no
deduplication or persistence. Missing credentials never raise: the
adapter returns a ``SourceResult`` with status ``unconfigured``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Protocol

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from aidir.config import EnrichmentConfig
from aidir.models import FetchStatus, PersonIdentity, RawCandidateItem, SourceKind

logger = logging.getLogger(__name__)

USER_AGENT = "aidir/0.1 (AI people directory enrichment; https://github.com/aidir)"

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class SourceUnavailableError(Exception):
    """Raised on permanent failures (bad credentials, 4xx other than 429)."""


class TransientSourceError(Exception):
    """Raised on timeouts, transport errors, 429 and 5xx; retried before surfacing."""


# ---------------------------------------------------------------------------
# Result and protocol
# ---------------------------------------------------------------------------


@dataclass
class SourceResult:
    """What one adapter fetch produced.

    ``signals`` carries numeric profile facts discovered on the way
    (citation count, h-index, follower count) for the influence score.
    """

    source: SourceKind
    status: FetchStatus
    items: list[RawCandidateItem] = field(default_factory=list)
    error: str | None = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    signals: dict[str, int] = field(default_factory=dict)


class SourceAdapter(Protocol):
    kind: SourceKind

    async def fetch_candidates(
        self, person: PersonIdentity, since: datetime | None = None
    ) -> SourceResult: ...


# ---------------------------------------------------------------------------
# HTTP helper
# ---------------------------------------------------------------------------


def _raise_for_status(response: httpx.Response) -> None:
    status = response.status_code
    if status == 429 or status >= 500:
        raise TransientSourceError(f"HTTP {status} from {response.request.url.host}")
    if status >= 400:
        raise SourceUnavailableError(
            f"HTTP {status} from {response.request.url.host}: {response.text[:200]}"
        )


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    config: EnrichmentConfig,
    *,
    params: dict[str, Any] | None = None,
    json: Any = None,
    headers: dict[str, str] | None = None,
) -> Any:
    """Perform one JSON request with a bounded timeout and retries.

    Transient failures are retried with exponential backoff up to
    ``config.max_http_retries`` attempts, then re-raised as
    :class:`TransientSourceError`.

    Raises:
        TransientSourceError: Retries exhausted.
        SourceUnavailableError: Permanent HTTP failure or non-JSON body.
    """
    merged_headers = {"User-Agent": USER_AGENT}
    if headers:
        merged_headers.update(headers)

    async for attempt in AsyncRetrying(
        wait=wait_exponential(multiplier=config.retry_backoff_seconds, max=8),
        stop=stop_after_attempt(max(1, config.max_http_retries)),
        retry=retry_if_exception_type(TransientSourceError),
        reraise=True,
    ):
        with attempt:
            try:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=merged_headers,
                    timeout=config.http_timeout_seconds,
                )
            except httpx.TimeoutException as e:
                raise TransientSourceError(f"Timeout calling {url}") from e
            except httpx.TransportError as e:
                raise TransientSourceError(f"Transport error calling {url}: {e}") from e
            _raise_for_status(response)
            try:
                return response.json()
            except ValueError as e:
                raise SourceUnavailableError(f"Non-JSON response from {url}") from e


# ---------------------------------------------------------------------------
# Base adapter
# ---------------------------------------------------------------------------


class HttpSourceAdapter:
    """Base for adapters backed by an injected ``httpx.AsyncClient``.

    Subclasses set ``kind`` and ``required_credentials`` and implement
    :meth:`_fetch`. :meth:`skip_reason` lets an adapter decline a person
    it has nothing to query for (e.g. no code-hosting handle).
    """

    kind: ClassVar[SourceKind]
    required_credentials: ClassVar[tuple[str, ...]] = ()
    request_delay_seconds: float = 0.0

    def __init__(self, config: EnrichmentConfig, client: httpx.AsyncClient) -> None:
        self._config = config
        self._client = client
        self._throttle = asyncio.Lock()
        self._last_request = 0.0

    @property
    def name(self) -> str:
        return self.kind.value

    def missing_credentials(self) -> list[str]:
        return [name for name in self.required_credentials if not self._config.credential(name)]

    def skip_reason(self, person: PersonIdentity) -> str | None:
        return None

    async def fetch_candidates(
        self, person: PersonIdentity, since: datetime | None = None
    ) -> SourceResult:
        missing = self.missing_credentials()
        if missing:
            logger.warning("[%s] unconfigured (missing %s)", self.name, ", ".join(missing))
            return SourceResult(
                source=self.kind,
                status=FetchStatus.UNCONFIGURED,
                error=f"missing credentials: {', '.join(missing)}",
            )
        reason = self.skip_reason(person)
        if reason:
            logger.info("[%s] skipped for person %d: %s", self.name, person.person_id, reason)
            return SourceResult(source=self.kind, status=FetchStatus.SKIPPED, error=reason)

        result = await self._fetch(person, since)
        logger.info("[%s] %d candidates for %s", self.name, len(result.items), person.search_name)
        return result

    async def _fetch(self, person: PersonIdentity, since: datetime | None) -> SourceResult:
        raise NotImplementedError

    def _ok(self, items: list[RawCandidateItem], **signals: int) -> SourceResult:
        return SourceResult(
            source=self.kind,
            status=FetchStatus.OK,
            items=items,
            signals={k: v for k, v in signals.items() if v is not None},
        )

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        if self.request_delay_seconds > 0:
            async with self._throttle:
                loop = asyncio.get_running_loop()
                wait = self._last_request + self.request_delay_seconds - loop.time()
                if wait > 0:
                    await asyncio.sleep(wait)
                self._last_request = loop.time()
        return await request_json(self._client, method, url, self._config, **kwargs)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse ISO-8601 timestamps as returned by the source APIs."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def iso_z(value: datetime) -> str:
    """Format a datetime as ``YYYY-MM-DDTHH:MM:SSZ`` (UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
