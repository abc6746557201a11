"""Adapter registry."""

from __future__ import annotations

import httpx

from aidir.config import EnrichmentConfig
from aidir.identity.knowledgebase import WikidataClient
from aidir.sources.academic import OpenAlexAdapter
from aidir.sources.base import SourceAdapter
from aidir.sources.github import GitHubAdapter
from aidir.sources.knowledgebase import KnowledgeBaseAdapter
from aidir.sources.social import SocialAdapter
from aidir.sources.websearch import ExaAdapter
from aidir.sources.youtube import YouTubeAdapter


def build_adapters(
    config: EnrichmentConfig,
    client: httpx.AsyncClient,
    knowledge_base: WikidataClient | None = None,
) -> list[SourceAdapter]:
    """Construct every adapter around one shared HTTP client and config."""
    return [
        KnowledgeBaseAdapter(config, client, knowledge_base),
        GitHubAdapter(config, client),
        YouTubeAdapter(config, client),
        SocialAdapter(config, client),
        OpenAlexAdapter(config, client),
        ExaAdapter(config, client),
    ]
