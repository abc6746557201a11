"""Tests for identity resolution and the Wikidata client."""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from aidir.database import Database
from aidir.identity.knowledgebase import CareerFact, KnowledgeBaseError, WikidataClient
from aidir.identity.resolver import IdentityResolver
from aidir.models import KnowledgeBaseCandidate, LinkKind, ResolutionStatus

from conftest import mock_client


@pytest.fixture
def kb() -> AsyncMock:
    return AsyncMock()


class TestLocalResolution:
    """Local matches short-circuit the knowledge base."""

    async def test_exact_match_wins_over_substring(self, store, kb):
        jane = await store.create_person("Jane Q. Researcher", identity_key="Q1")
        await store.create_person("Jane Q. Researcher-Smith")

        result = await IdentityResolver(store, kb).resolve("jane q researcher")

        assert result.status == ResolutionStatus.LOCAL
        assert result.person_ids == [jane]
        assert result.identity_key == "Q1"
        kb.search.assert_not_awaited()

    async def test_diacritics_and_aliases(self, store, kb):
        person_id = await store.create_person("José García", aliases=["Pepe García"])
        resolver = IdentityResolver(store, kb)

        assert (await resolver.resolve("jose garcia")).person_ids == [person_id]
        assert (await resolver.resolve("PEPE")).person_ids == [person_id]

    async def test_several_local_hits_are_ambiguous(self, store, kb):
        first = await store.create_person("Jane Q. Researcher")
        second = await store.create_person("Jane Doe")

        result = await IdentityResolver(store, kb).resolve("Jane")

        assert result.status == ResolutionStatus.AMBIGUOUS
        assert sorted(result.person_ids) == sorted([first, second])

    async def test_empty_query_rejected(self, store, kb):
        with pytest.raises(ValueError):
            await IdentityResolver(store, kb).resolve("   ")


class TestKnowledgeBaseResolution:
    async def test_no_knowledge_base(self, store):
        result = await IdentityResolver(store, None).resolve("Nobody Here")
        assert result.status == ResolutionStatus.NOT_FOUND
        assert result.diagnostic == "knowledge base not configured"

    async def test_knowledge_base_error_degrades_to_not_found(self, store, kb):
        kb.search.side_effect = KnowledgeBaseError("service down")

        result = await IdentityResolver(store, kb).resolve("Jane Q. Researcher")

        assert result.status == ResolutionStatus.NOT_FOUND
        assert "service down" in result.diagnostic

    async def test_single_candidate(self, store, kb):
        kb.search.return_value = [
            KnowledgeBaseCandidate(id="Q42", label="Jane Q. Researcher", description="computer scientist")
        ]

        result = await IdentityResolver(store, kb).resolve("Jane Q. Researcher")

        assert result.status == ResolutionStatus.CANDIDATES
        assert result.identity_key == "Q42"
        assert result.canonical_name == "Jane Q. Researcher"

    async def test_several_candidates_ranked_by_similarity(self, store, kb):
        kb.search.return_value = [
            KnowledgeBaseCandidate(id="Q2", label="Janet Smithers"),
            KnowledgeBaseCandidate(id="Q1", label="Jane Q. Researcher"),
        ]

        result = await IdentityResolver(store, kb).resolve("Jane Q. Researcher")

        assert result.status == ResolutionStatus.AMBIGUOUS
        assert [c.id for c in result.candidates] == ["Q1", "Q2"]

    async def test_no_candidates(self, store, kb):
        kb.search.return_value = []
        result = await IdentityResolver(store, kb).resolve("Jane Q. Researcher")
        assert result.status == ResolutionStatus.NOT_FOUND
        assert result.diagnostic is None

    async def test_sessions_recorded(self, store, kb, db_path):
        kb.search.return_value = [KnowledgeBaseCandidate(id="Q42", label="Jane Q. Researcher")]

        result = await IdentityResolver(store, kb).resolve("Jane Q. Researcher")

        with Database(db_path) as db:
            (session,) = db.list_search_sessions()
        assert session["id"] == result.session_id
        assert session["status"] == "candidates"
        assert session["candidates"][0]["id"] == "Q42"


# ======================================================================
# Wikidata client
# ======================================================================


def _claim(value) -> dict:
    return {"mainsnak": {"datavalue": {"value": value}}}


ENTITY = {
    "id": "Q1",
    "labels": {"en": {"value": "Jane Q. Researcher"}, "zh": {"value": "简研究"}},
    "descriptions": {"en": {"value": "computer scientist"}},
    "aliases": {"en": [{"value": "J. Q. Researcher"}]},
    "claims": {
        "P106": [_claim({"id": "Q82594"})],
        "P108": [_claim({"id": "Q95"})],
        "P27": [_claim({"id": "Q16"})],
        "P21": [_claim({"id": "Q6581072"})],
        "P569": [_claim({"time": "+1985-04-02T00:00:00Z"})],
        "P18": [_claim("Jane Researcher.jpg")],
        "P496": [_claim("0000-0002-1825-0097")],
        "P2037": [_claim("janeq")],
        "P856": [_claim("https://janeq.dev")],
    },
}

LABELS = {
    "Q82594": {"labels": {"en": {"value": "computer scientist"}}},
    "Q95": {"labels": {"en": {"value": "Acme Labs"}}},
    "Q16": {"labels": {"en": {"value": "Canada"}}},
}


def _wikidata_handler(request: httpx.Request) -> httpx.Response:
    params = request.url.params
    if params.get("action") == "wbgetentities" and params.get("props") == "labels":
        return httpx.Response(200, json={"entities": LABELS})
    if params.get("action") == "wbgetentities":
        if params["ids"] == "Q1":
            return httpx.Response(200, json={"entities": {"Q1": ENTITY}})
        return httpx.Response(200, json={"entities": {params["ids"]: {"id": params["ids"], "missing": ""}}})
    if params.get("action") == "wbsearchentities":
        return httpx.Response(200, json={"search": [
            {"id": "Q1", "label": "Jane Q. Researcher", "description": "computer scientist"},
            {"label": "no id"},
        ]})
    if request.url.host == "query.wikidata.org":
        assert request.headers["Accept"] == "application/sparql-results+json"
        return httpx.Response(200, json={"results": {"bindings": [
            {"type": {"value": "career"}, "itemLabel": {"value": "Acme Labs"},
             "roleLabel": {"value": "Q123"}, "start": {"value": "2019-01-01T00:00:00Z"}},
            {"type": {"value": "education"}, "itemLabel": {"value": "Q999"}},
            {"type": {"value": "award"}, "itemLabel": {"value": "Best Paper Award"},
             "start": {"value": "2021-06-01T00:00:00Z"}},
        ]}})
    return httpx.Response(404)


class TestWikidataClient:
    async def test_get_entity(self, config):
        async with mock_client(_wikidata_handler) as client:
            entity = await WikidataClient(client, config).get_entity("q1")

        assert entity.id == "Q1"
        assert entity.label == "Jane Q. Researcher"
        assert entity.description == "computer scientist"
        assert entity.aliases == ["J. Q. Researcher", "简研究"]
        assert entity.occupations == ["computer scientist"]
        assert entity.organizations == ["Acme Labs"]
        assert entity.country == "Canada"
        assert entity.gender == "female"
        assert entity.birth_year == 1985
        assert entity.orcid == "0000-0002-1825-0097"
        assert entity.image_url.startswith("https://upload.wikimedia.org/wikipedia/commons/thumb/")
        code = [link for link in entity.links if link.kind == LinkKind.CODE]
        assert code[0].handle == "janeq"

    async def test_missing_entity(self, config):
        async with mock_client(_wikidata_handler) as client:
            assert await WikidataClient(client, config).get_entity("Q999") is None

    async def test_invalid_id(self, config):
        async with mock_client(_wikidata_handler) as client:
            with pytest.raises(ValueError):
                await WikidataClient(client, config).get_entity("not-an-id")

    async def test_search_skips_hits_without_id(self, config):
        async with mock_client(_wikidata_handler) as client:
            candidates = await WikidataClient(client, config).search("Jane Q. Researcher")
        assert [c.id for c in candidates] == ["Q1"]

    async def test_career_facts(self, config):
        async with mock_client(_wikidata_handler) as client:
            facts = await WikidataClient(client, config).get_career("Q1")

        assert facts == [
            CareerFact(event_type="career", organization="Acme Labs", start_date="2019-01-01"),
            CareerFact(event_type="award", organization="Best Paper Award", start_date="2021-06-01"),
        ]

    async def test_server_errors_become_knowledge_base_error(self, config):
        async with mock_client(lambda request: httpx.Response(502)) as client:
            with pytest.raises(KnowledgeBaseError):
                await WikidataClient(client, config).search("Jane Q. Researcher")
