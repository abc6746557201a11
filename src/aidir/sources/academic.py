"""Academic adapter (OpenAlex).

Prefers the ORCID persistent identifier when the person has one
(confidence 0.9, works treated as official); otherwise falls back to an
author name search (confidence 0.6, works filtered downstream).
"""

from __future__ import annotations

import logging
from datetime import datetime

from aidir.models import PersonIdentity, RawCandidateItem, SourceKind
from aidir.sources.base import HttpSourceAdapter, SourceResult, SourceUnavailableError, parse_timestamp

logger = logging.getLogger(__name__)

OPENALEX_API_URL = "https://api.openalex.org"

ORCID_CONFIDENCE = 0.9
NAME_SEARCH_CONFIDENCE = 0.6
ABSTRACT_MAX_CHARS = 2000


def inverted_index_to_text(inverted_index: dict[str, list[int]] | None) -> str:
    """Rebuild abstract text from OpenAlex's ``abstract_inverted_index``."""
    if not inverted_index:
        return ""
    positioned = [
        (position, word)
        for word, positions in inverted_index.items()
        for position in positions
    ]
    positioned.sort()
    return " ".join(word for _, word in positioned)[:ABSTRACT_MAX_CHARS]


def _clean_orcid(orcid: str) -> str:
    return orcid.strip().removeprefix("https://orcid.org/").removeprefix("http://orcid.org/")


class OpenAlexAdapter(HttpSourceAdapter):
    kind = SourceKind.ACADEMIC

    def _params(self, **params: object) -> dict[str, object]:
        email = self._config.credential("openalex_email")
        if email:
            params["mailto"] = email
        return params

    async def _resolve_author(self, person: PersonIdentity) -> tuple[dict | None, float]:
        if person.orcid:
            try:
                author = await self._request_json(
                    "GET",
                    f"{OPENALEX_API_URL}/authors/orcid:{_clean_orcid(person.orcid)}",
                    params=self._params(),
                )
            except SourceUnavailableError:
                logger.info("[academic] ORCID %s unknown to OpenAlex; using name search", person.orcid)
            else:
                if author and author.get("id"):
                    return author, ORCID_CONFIDENCE

        data = await self._request_json(
            "GET",
            f"{OPENALEX_API_URL}/authors",
            params=self._params(search=person.search_name, per_page=5),
        )
        results = data.get("results") or []
        if not results:
            return None, 0.0
        return results[0], NAME_SEARCH_CONFIDENCE

    async def _fetch(self, person: PersonIdentity, since: datetime | None) -> SourceResult:
        author, confidence = await self._resolve_author(person)
        if author is None:
            logger.info("[academic] no author found for %s", person.search_name)
            return self._ok([])

        author_id = str(author["id"]).removeprefix("https://openalex.org/")
        work_filter = f"author.id:{author_id}"
        if since is not None:
            work_filter += f",from_publication_date:{since.date().isoformat()}"

        data = await self._request_json(
            "GET",
            f"{OPENALEX_API_URL}/works",
            params=self._params(
                filter=work_filter,
                sort="cited_by_count:desc",
                per_page=self._config.academic_max_results,
            ),
        )

        items = []
        for work in data.get("results") or []:
            title = work.get("title") or work.get("display_name")
            if not title:
                continue
            doi = work.get("doi")
            url = doi if doi and doi.startswith("http") else (f"https://doi.org/{doi}" if doi else work.get("id"))
            authors = [
                (a.get("author") or {}).get("display_name")
                for a in (work.get("authorships") or [])[:8]
            ]
            authors = [a for a in authors if a]
            venue = ((work.get("primary_location") or {}).get("source") or {}).get("display_name")
            abstract = inverted_index_to_text(work.get("abstract_inverted_index"))

            lines = [abstract or title]
            if authors:
                lines.append("Authors: " + ", ".join(authors))
            if venue:
                lines.append(f"Venue: {venue}")

            items.append(
                RawCandidateItem(
                    url=url,
                    title=title,
                    text="\n".join(lines),
                    published_at=parse_timestamp(work.get("publication_date")),
                    source_metadata={
                        "openalex_id": work.get("id"),
                        "author_id": author_id,
                        "cited_by_count": work.get("cited_by_count") or 0,
                        "venue": venue,
                        "authors": authors,
                        "confidence": confidence,
                        "is_official": confidence >= ORCID_CONFIDENCE,
                    },
                )
            )

        summary = author.get("summary_stats") or {}
        return self._ok(
            items,
            citation_count=author.get("cited_by_count"),
            h_index=summary.get("h_index"),
        )
