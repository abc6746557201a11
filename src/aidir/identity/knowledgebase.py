"""Wikidata client: entity search, entity details and career facts.

Usage::

    async with httpx.AsyncClient() as http:
        kb = WikidataClient(http, config)
        candidates = await kb.search("Jane Q. Researcher")
        entity = await kb.get_entity(candidates[0].id)
        facts = await kb.get_career(entity.id)
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from aidir.config import EnrichmentConfig
from aidir.links import normalize_links
from aidir.models import KnowledgeBaseCandidate, KnowledgeBaseEntity
from aidir.sources.base import SourceUnavailableError, TransientSourceError, request_json

logger = logging.getLogger(__name__)

WIKIDATA_API_ENDPOINT = "https://www.wikidata.org/w/api.php"
WIKIDATA_SPARQL_ENDPOINT = "https://query.wikidata.org/sparql"
WIKIDATA_ENTITY_URL = "https://www.wikidata.org/wiki/{qid}"

MAX_CLAIM_LABELS = 5

_QID = re.compile(r"^Q\d+$")

_GENDERS = {"Q6581097": "male", "Q6581072": "female", "Q1097630": "intersex"}

# (property, link type, url template) for official links
_LINK_PROPERTIES: tuple[tuple[str, str, str], ...] = (
    ("P856", "website", "{value}"),
    ("P2002", "x", "https://x.com/{value}"),
    ("P2397", "youtube", "https://www.youtube.com/channel/{value}"),
    ("P4003", "linkedin", "https://www.linkedin.com/in/{value}"),
    ("P2037", "github", "https://github.com/{value}"),
)

CAREER_SPARQL = """
SELECT ?type ?itemLabel ?roleLabel ?start ?end WHERE {{
  BIND(wd:{qid} AS ?person)
  {{
    ?person p:P69 ?stmt .
    ?stmt ps:P69 ?item .
    OPTIONAL {{ ?stmt pq:P512 ?role . }}
    OPTIONAL {{ ?stmt pq:P580 ?start . }}
    OPTIONAL {{ ?stmt pq:P582 ?end . }}
    BIND("education" AS ?type)
  }}
  UNION
  {{
    ?person p:P108 ?stmt .
    ?stmt ps:P108 ?item .
    OPTIONAL {{ ?stmt pq:P39 ?role . }}
    OPTIONAL {{ ?stmt pq:P580 ?start . }}
    OPTIONAL {{ ?stmt pq:P582 ?end . }}
    BIND("career" AS ?type)
  }}
  UNION
  {{
    ?person p:P166 ?stmt .
    ?stmt ps:P166 ?item .
    OPTIONAL {{ ?stmt pq:P585 ?start . }}
    BIND("award" AS ?type)
  }}
  SERVICE wikibase:label {{ bd:serviceParam wikibase:language "en,zh". }}
}}
ORDER BY DESC(?start)
"""


class KnowledgeBaseError(Exception):
    """Raised when the knowledge base cannot be reached or answers garbage."""


@dataclass
class CareerFact:
    """One structured career/education/award fact from the knowledge base."""

    event_type: str
    organization: str
    role: str | None = None
    start_date: str | None = None
    end_date: str | None = None


def wikimedia_thumbnail_url(filename: str, width: int = 200) -> str:
    """Commons thumbnail URL for an image file name (md5 path scheme)."""
    clean = filename.replace(" ", "_")
    digest = hashlib.md5(clean.encode("utf-8")).hexdigest()
    quoted = quote(clean)
    return (
        f"https://upload.wikimedia.org/wikipedia/commons/thumb/"
        f"{digest[0]}/{digest[:2]}/{quoted}/{width}px-{quoted}"
    )


def _claim_values(claims: dict[str, Any], prop: str) -> list[Any]:
    values = []
    for claim in claims.get(prop, []) or []:
        value = (claim.get("mainsnak") or {}).get("datavalue", {}).get("value")
        if value is not None:
            values.append(value)
    return values


def _item_ids(claims: dict[str, Any], prop: str, limit: int = MAX_CLAIM_LABELS) -> list[str]:
    ids = [v.get("id") for v in _claim_values(claims, prop) if isinstance(v, dict)]
    return [i for i in ids if i][:limit]


def _birth_year(claims: dict[str, Any]) -> int | None:
    for value in _claim_values(claims, "P569"):
        match = re.match(r"^[+-]?(\d{4})", str(value.get("time", "")) if isinstance(value, dict) else "")
        if match:
            return int(match.group(1))
    return None


def _label(entity: dict[str, Any], *languages: str) -> str | None:
    labels = entity.get("labels") or {}
    for lang in languages:
        value = (labels.get(lang) or {}).get("value")
        if value:
            return value
    return None


def _sparql_date(binding: dict[str, Any], key: str) -> str | None:
    value = (binding.get(key) or {}).get("value")
    if not value:
        return None
    match = re.match(r"^(\d{4}-\d{2}-\d{2})", value)
    return match.group(1) if match else None


class WikidataClient:
    """Knowledge-base lookup collaborator backed by the Wikidata APIs.

    All requests share one throttle: consecutive calls are spaced at
    least ``config.kb_request_delay_seconds`` apart.
    """

    def __init__(self, client: httpx.AsyncClient, config: EnrichmentConfig) -> None:
        self._client = client
        self._config = config
        self._throttle = asyncio.Lock()
        self._last_request = 0.0

    async def _get(self, url: str, params: dict[str, Any], accept: str | None = None) -> dict:
        async with self._throttle:
            loop = asyncio.get_running_loop()
            wait = self._last_request + self._config.kb_request_delay_seconds - loop.time()
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_request = loop.time()
        headers = {"Accept": accept} if accept else None
        try:
            data = await request_json(
                self._client, "GET", url, self._config, params=params, headers=headers
            )
        except (SourceUnavailableError, TransientSourceError) as e:
            raise KnowledgeBaseError(str(e)) from e
        if not isinstance(data, dict):
            raise KnowledgeBaseError(f"Unexpected payload from {url}")
        return data

    async def search(self, name: str, limit: int = 10) -> list[KnowledgeBaseCandidate]:
        """Search entities by name (English labels and aliases)."""
        data = await self._get(
            WIKIDATA_API_ENDPOINT,
            {
                "action": "wbsearchentities",
                "search": name,
                "language": "en",
                "uselang": "en",
                "type": "item",
                "limit": limit,
                "format": "json",
            },
        )
        if "error" in data:
            raise KnowledgeBaseError(f"Search failed: {data['error']}")
        candidates = []
        for hit in data.get("search", []):
            if not hit.get("id"):
                continue
            candidates.append(
                KnowledgeBaseCandidate(
                    id=hit["id"],
                    label=hit.get("label") or hit["id"],
                    description=hit.get("description") or "",
                    aliases=list(hit.get("aliases") or []),
                )
            )
        logger.debug("Knowledge-base search %r returned %d candidates", name, len(candidates))
        return candidates

    async def _labels(self, qids: list[str]) -> dict[str, str]:
        if not qids:
            return {}
        data = await self._get(
            WIKIDATA_API_ENDPOINT,
            {
                "action": "wbgetentities",
                "ids": "|".join(dict.fromkeys(qids)),
                "languages": "en|zh",
                "props": "labels",
                "format": "json",
            },
        )
        entities = data.get("entities") or {}
        return {qid: _label(entities.get(qid) or {}, "en", "zh") or qid for qid in qids}

    async def get_entity(self, qid: str) -> KnowledgeBaseEntity | None:
        """Fetch a full entity, or None when the id does not exist."""
        qid = qid.strip().upper()
        if not _QID.match(qid):
            raise ValueError(f"Not a knowledge-base id: {qid!r}")

        data = await self._get(
            WIKIDATA_API_ENDPOINT,
            {
                "action": "wbgetentities",
                "ids": qid,
                "languages": "en|zh",
                "props": "labels|descriptions|aliases|claims",
                "format": "json",
            },
        )
        entity = (data.get("entities") or {}).get(qid)
        if not entity or "missing" in entity:
            return None

        claims = entity.get("claims") or {}
        descriptions = entity.get("descriptions") or {}
        aliases = [
            a["value"]
            for lang in ("en", "zh")
            for a in (entity.get("aliases") or {}).get(lang, [])
            if a.get("value")
        ]
        zh_label = _label(entity, "zh")
        if zh_label:
            aliases.append(zh_label)

        occupation_ids = _item_ids(claims, "P106")
        employer_ids = _item_ids(claims, "P108")
        country_ids = _item_ids(claims, "P27", limit=1)
        labels = await self._labels(occupation_ids + employer_ids + country_ids)

        gender_ids = _item_ids(claims, "P21", limit=1)
        images = [v for v in _claim_values(claims, "P18") if isinstance(v, str)]
        orcids = [str(v) for v in _claim_values(claims, "P496")]

        raw_links = []
        for prop, link_type, template in _LINK_PROPERTIES:
            for value in _claim_values(claims, prop)[:1]:
                raw_links.append({
                    "type": link_type,
                    "url": template.format(value=value),
                    "handle": None if link_type == "website" else str(value),
                })

        return KnowledgeBaseEntity(
            id=qid,
            label=_label(entity, "en", "zh") or qid,
            description=(descriptions.get("en") or descriptions.get("zh") or {}).get("value", ""),
            aliases=list(dict.fromkeys(aliases)),
            occupations=[labels[i] for i in occupation_ids],
            organizations=[labels[i] for i in employer_ids],
            links=normalize_links(raw_links),
            image_url=wikimedia_thumbnail_url(images[0]) if images else None,
            orcid=orcids[0] if orcids else None,
            gender=_GENDERS.get(gender_ids[0]) if gender_ids else None,
            birth_year=_birth_year(claims),
            country=labels[country_ids[0]] if country_ids else None,
        )

    async def get_career(self, qid: str) -> list[CareerFact]:
        """Education, employment and award facts with their qualifiers."""
        data = await self._get(
            WIKIDATA_SPARQL_ENDPOINT,
            {"query": CAREER_SPARQL.format(qid=qid), "format": "json"},
            accept="application/sparql-results+json",
        )
        facts = []
        for binding in (data.get("results") or {}).get("bindings", []):
            organization = (binding.get("itemLabel") or {}).get("value")
            if not organization or _QID.match(organization):
                continue
            role = (binding.get("roleLabel") or {}).get("value")
            facts.append(
                CareerFact(
                    event_type=(binding.get("type") or {}).get("value", "career"),
                    organization=organization,
                    role=None if role and _QID.match(role) else role,
                    start_date=_sparql_date(binding, "start"),
                    end_date=_sparql_date(binding, "end"),
                )
            )
        return facts
