"""Web search adapter (Exa): articles, interviews and pages about the person."""

from __future__ import annotations

import logging
from datetime import datetime

from aidir.links import in_scope, link_domain
from aidir.models import PersonIdentity, RawCandidateItem, SourceKind
from aidir.sources.base import HttpSourceAdapter, SourceResult, iso_z, parse_timestamp

logger = logging.getLogger(__name__)

EXA_API_URL = "https://api.exa.ai"
TEXT_MAX_CHARS = 5000


def _query(person: PersonIdentity) -> str:
    parts = [f'"{person.search_name}"']
    if person.organizations:
        parts.append(person.organizations[0])
    parts.append("AI")
    return " ".join(parts)


class ExaAdapter(HttpSourceAdapter):
    """Search results with page text inline; seed-domain pages are official."""

    kind = SourceKind.WEBSEARCH
    required_credentials = ("exa_api_key",)

    async def _fetch(self, person: PersonIdentity, since: datetime | None) -> SourceResult:
        body: dict[str, object] = {
            "query": _query(person),
            "numResults": self._config.websearch_max_results,
            "type": "auto",
            "contents": {"text": {"maxCharacters": TEXT_MAX_CHARS}},
        }
        if since is not None:
            body["startPublishedDate"] = iso_z(since)

        data = await self._request_json(
            "POST",
            f"{EXA_API_URL}/search",
            headers={"x-api-key": self._config.credential("exa_api_key")},
            json=body,
        )

        scopes = person.seed_scopes
        items = []
        for result in data.get("results") or []:
            url = result.get("url")
            if not url:
                continue
            domain = link_domain(url)
            official = in_scope(url, scopes)
            items.append(
                RawCandidateItem(
                    url=url,
                    title=result.get("title") or url,
                    text=result.get("text") or "",
                    published_at=parse_timestamp(result.get("publishedDate")),
                    source_metadata={
                        "domain": domain,
                        "author": result.get("author"),
                        "is_official": official,
                    },
                )
            )
        return self._ok(items)
