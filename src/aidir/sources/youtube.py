"""Video adapter (YouTube Data API v3 search)."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from aidir.models import LinkKind, PersonIdentity, RawCandidateItem, SourceKind
from aidir.sources.base import HttpSourceAdapter, SourceResult, iso_z, parse_timestamp
from aidir.text import fold_compact, is_ascii_name

logger = logging.getLogger(__name__)

YOUTUBE_API_URL = "https://www.googleapis.com/youtube/v3"

MAX_ALIAS_QUERIES = 2


def search_queries(person: PersonIdentity) -> list[str]:
    """Display name first, then up to two distinct aliases."""
    queries = [person.search_name]
    seen = {fold_compact(person.search_name)}
    for alias in [person.name, *person.aliases]:
        if len(queries) > MAX_ALIAS_QUERIES:
            break
        key = fold_compact(alias)
        if not key or key in seen:
            continue
        # Single-token Latin aliases ("Jane") are too broad for video search
        if is_ascii_name(alias) and " " not in alias.strip():
            continue
        seen.add(key)
        queries.append(alias)
    return queries


class YouTubeAdapter(HttpSourceAdapter):
    """One ``search.list`` query per name variant, merged by video id."""

    kind = SourceKind.VIDEO
    required_credentials = ("youtube_api_key",)

    async def _search(
        self, query: str, since: datetime | None, semaphore: asyncio.Semaphore
    ) -> list[dict]:
        params = {
            "part": "snippet",
            "q": query,
            "type": "video",
            "order": "relevance",
            "maxResults": min(self._config.video_max_results, 50),
            "key": self._config.credential("youtube_api_key"),
        }
        if since is not None:
            params["publishedAfter"] = iso_z(since)
        async with semaphore:
            data = await self._request_json("GET", f"{YOUTUBE_API_URL}/search", params=params)
        return data.get("items", [])

    async def _fetch(self, person: PersonIdentity, since: datetime | None) -> SourceResult:
        queries = search_queries(person)
        semaphore = asyncio.Semaphore(self._config.max_concurrent_queries)
        batches = await asyncio.gather(*(self._search(q, since, semaphore) for q in queries))

        own_channel = person.handle_for(LinkKind.VIDEO)
        merged: dict[str, RawCandidateItem] = {}
        for batch in batches:
            for hit in batch:
                video_id = (hit.get("id") or {}).get("videoId")
                if not video_id or video_id in merged:
                    continue
                snippet = hit.get("snippet") or {}
                channel_id = snippet.get("channelId")
                merged[video_id] = RawCandidateItem(
                    url=f"https://www.youtube.com/watch?v={video_id}",
                    title=snippet.get("title") or video_id,
                    text=snippet.get("description") or "",
                    published_at=parse_timestamp(snippet.get("publishedAt")),
                    source_metadata={
                        "video_id": video_id,
                        "channel_id": channel_id,
                        "channel_title": snippet.get("channelTitle"),
                        "thumbnail": ((snippet.get("thumbnails") or {}).get("medium") or {}).get("url"),
                        "is_official": bool(own_channel and channel_id == own_channel),
                    },
                )

        logger.debug("[video] %d queries merged into %d videos", len(queries), len(merged))
        return self._ok(list(merged.values())[: self._config.video_max_results])
