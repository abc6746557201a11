"""IdentityResolver: local-first name resolution with knowledge-base fallback.

Resolution order:
  1. Local store: case/width/diacritic-insensitive substring match of the
     query against every person's name, English name and aliases. A hit
     returns immediately, without any knowledge-base call.
  2. Knowledge base: ranked search candidates returned for confirmation.
     A Person is never created here.

Every attempt is recorded as a search session. Knowledge-base failures
degrade to NOT_FOUND with a diagnostic instead of propagating.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rapidfuzz import fuzz

from aidir.identity.knowledgebase import KnowledgeBaseError
from aidir.models import (
    KnowledgeBaseCandidate,
    ResolutionResult,
    ResolutionStatus,
)
from aidir.text import fold_compact

if TYPE_CHECKING:
    from aidir.identity.knowledgebase import WikidataClient
    from aidir.store import AsyncPersonStore

logger = logging.getLogger(__name__)

# Folded queries shorter than this never match locally
MIN_QUERY_CHARS = 2


def _names(record: dict) -> list[str]:
    return [n for n in (record["name"], record.get("english_name"), *record["aliases"]) if n]


def _best_ratio(query: str, names: list[str]) -> float:
    return max((fuzz.token_set_ratio(query, fold_compact(n)) for n in names), default=0.0)


class IdentityResolver:
    """Resolve a free-text name to a local person or knowledge-base candidates.

    Usage:
        resolver = IdentityResolver(store, kb)
        result = await resolver.resolve("Jane Q. Researcher")
        if result.status is ResolutionStatus.LOCAL:
            ...
    """

    def __init__(
        self,
        store: AsyncPersonStore,
        knowledge_base: WikidataClient | None = None,
        candidate_limit: int = 10,
    ) -> None:
        self.store = store
        self.knowledge_base = knowledge_base
        self.candidate_limit = candidate_limit

    async def match_local(self, query: str) -> list[dict]:
        """Return local person records whose names contain *query* (folded).

        An exact folded match on any name wins over substring matches.
        Results are ordered by fuzzy similarity, best first.
        """
        folded = fold_compact(query)
        if len(folded) < MIN_QUERY_CHARS:
            return []

        exact: list[dict] = []
        partial: list[dict] = []
        for record in await self.store.list_match_candidates():
            folded_names = [fold_compact(n) for n in _names(record)]
            if folded in folded_names:
                exact.append(record)
            elif any(folded in n for n in folded_names):
                partial.append(record)

        hits = exact or partial
        hits.sort(key=lambda r: _best_ratio(folded, _names(r)), reverse=True)
        return hits

    def _rank_candidates(
        self, query: str, candidates: list[KnowledgeBaseCandidate]
    ) -> list[KnowledgeBaseCandidate]:
        folded = fold_compact(query)
        scored = [
            (_best_ratio(folded, [c.label, *c.aliases]), index, c)
            for index, c in enumerate(candidates)
        ]
        # Stable on ties: keep the knowledge base's own relevance order
        scored.sort(key=lambda t: (-t[0], t[1]))
        return [c for _, _, c in scored]

    async def resolve(self, query: str) -> ResolutionResult:
        """Resolve *query*; see the module docstring for the order."""
        query = query.strip()
        if not query:
            raise ValueError("Query must not be empty")

        hits = await self.match_local(query)
        if hits:
            if len(hits) == 1:
                record = hits[0]
                result = ResolutionResult(
                    status=ResolutionStatus.LOCAL,
                    query=query,
                    identity_key=record["identity_key"],
                    canonical_name=record["name"],
                    aliases=record["aliases"],
                    description=record["description"],
                    links=record["links"],
                    person_ids=[record["id"]],
                )
            else:
                result = ResolutionResult(
                    status=ResolutionStatus.AMBIGUOUS,
                    query=query,
                    person_ids=[r["id"] for r in hits],
                )
            logger.info("Resolved %r locally: %s (%d hits)", query, result.status.value, len(hits))
            return await self._record(result)

        if self.knowledge_base is None:
            result = ResolutionResult(
                status=ResolutionStatus.NOT_FOUND,
                query=query,
                diagnostic="knowledge base not configured",
            )
            return await self._record(result)

        try:
            candidates = await self.knowledge_base.search(query, limit=self.candidate_limit)
        except KnowledgeBaseError as e:
            logger.warning("Knowledge-base search failed for %r: %s", query, e)
            result = ResolutionResult(
                status=ResolutionStatus.NOT_FOUND,
                query=query,
                diagnostic=f"knowledge base error: {e}",
            )
            return await self._record(result)

        candidates = self._rank_candidates(query, candidates)
        if not candidates:
            result = ResolutionResult(status=ResolutionStatus.NOT_FOUND, query=query)
        elif len(candidates) == 1:
            only = candidates[0]
            result = ResolutionResult(
                status=ResolutionStatus.CANDIDATES,
                query=query,
                identity_key=only.id,
                canonical_name=only.label,
                aliases=list(only.aliases),
                description=only.description,
                candidates=[only],
            )
        else:
            result = ResolutionResult(
                status=ResolutionStatus.AMBIGUOUS,
                query=query,
                candidates=candidates,
            )
        logger.info(
            "Resolved %r via knowledge base: %s (%d candidates)",
            query, result.status.value, len(candidates),
        )
        return await self._record(result)

    async def _record(self, result: ResolutionResult) -> ResolutionResult:
        result.session_id = await self.store.record_search_session(
            query=result.query,
            status=result.status.value,
            local_hits=result.person_ids,
            candidates=[
                {"id": c.id, "label": c.label, "description": c.description}
                for c in result.candidates
            ],
            diagnostic=result.diagnostic,
        )
        return result
