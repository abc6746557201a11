"""Knowledge-base adapter: one official profile item from the Wikidata entity."""

from __future__ import annotations

from datetime import datetime

import httpx

from aidir.config import EnrichmentConfig
from aidir.identity.knowledgebase import WIKIDATA_ENTITY_URL, WikidataClient
from aidir.models import KnowledgeBaseEntity, PersonIdentity, RawCandidateItem, SourceKind
from aidir.sources.base import HttpSourceAdapter, SourceResult


def entity_profile_text(entity: KnowledgeBaseEntity) -> str:
    lines = [entity.label]
    if entity.description:
        lines.append(entity.description)
    if entity.occupations:
        lines.append("Occupation: " + ", ".join(entity.occupations))
    if entity.organizations:
        lines.append("Organization: " + ", ".join(entity.organizations))
    if entity.country:
        lines.append(f"Country: {entity.country}")
    return "\n".join(lines)


class KnowledgeBaseAdapter(HttpSourceAdapter):
    kind = SourceKind.KNOWLEDGEBASE

    def __init__(
        self,
        config: EnrichmentConfig,
        client: httpx.AsyncClient,
        knowledge_base: WikidataClient | None = None,
    ) -> None:
        super().__init__(config, client)
        self.knowledge_base = knowledge_base or WikidataClient(client, config)

    def skip_reason(self, person: PersonIdentity) -> str | None:
        if not person.identity_key:
            return "no identity key"
        return None

    async def _fetch(self, person: PersonIdentity, since: datetime | None) -> SourceResult:
        entity = await self.knowledge_base.get_entity(person.identity_key)
        if entity is None:
            return self._ok([])
        item = RawCandidateItem(
            url=WIKIDATA_ENTITY_URL.format(qid=entity.id),
            title=entity.label,
            text=entity_profile_text(entity),
            source_metadata={
                "kind": "profile",
                "qid": entity.id,
                "occupations": entity.occupations,
                "organizations": entity.organizations,
                "is_official": True,
            },
        )
        return self._ok([item])
