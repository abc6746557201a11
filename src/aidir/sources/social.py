"""Social adapter: X activity through Grok chat completions with live search.

Emits exactly one profile-summary item per person (always kept, marked
official) followed by individual post items, which go through the normal
relevance filtering downstream.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime

from aidir.extraction.parser import parse_json_text
from aidir.models import LinkKind, PersonIdentity, RawCandidateItem, SourceKind
from aidir.sources.base import (
    HttpSourceAdapter,
    SourceResult,
    SourceUnavailableError,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

XAI_API_URL = "https://api.x.ai/v1"
GROK_MODEL = "grok-3"

_STATUS_URL = re.compile(r"^https://(?:x|twitter)\.com/([^/]+)/status/(\d+)")

SYSTEM_PROMPT = """You are a research assistant with live access to X.
Look up the X account @{handle} ({name}).

Return a STRICT JSON object with two keys:
- "profile": {{"display_name": string, "bio": string, "followers": integer or null}}
- "posts": an array of at most {limit} recent posts about artificial intelligence,
  machine learning, AI products or research. Each post: {{"date": "YYYY-MM-DD",
  "text": exact post text, "url": direct https://x.com/{handle}/status/... link}}

Ignore posts unrelated to technology. Output raw JSON only, no markdown."""


class SocialAdapter(HttpSourceAdapter):
    kind = SourceKind.SOCIAL
    required_credentials = ("xai_api_key",)

    def skip_reason(self, person: PersonIdentity) -> str | None:
        if not self._handle(person):
            return "no social handle"
        return None

    @staticmethod
    def _handle(person: PersonIdentity) -> str | None:
        return person.handle_for(LinkKind.SOCIAL, "x.com") or person.handle_for(
            LinkKind.SOCIAL, "twitter.com"
        )

    async def _fetch(self, person: PersonIdentity, since: datetime | None) -> SourceResult:
        handle = self._handle(person)
        limit = self._config.social_max_posts
        search_parameters: dict[str, object] = {
            "mode": "on",
            "return_citations": True,
            "max_search_results": limit,
            "sources": [{"type": "x", "included_x_handles": [handle]}],
        }
        if since is not None:
            search_parameters["from_date"] = since.date().isoformat()

        data = await self._request_json(
            "POST",
            f"{XAI_API_URL}/chat/completions",
            headers={"Authorization": f"Bearer {self._config.credential('xai_api_key')}"},
            json={
                "model": GROK_MODEL,
                "messages": [
                    {
                        "role": "system",
                        "content": SYSTEM_PROMPT.format(
                            handle=handle, name=person.search_name, limit=limit
                        ),
                    },
                    {"role": "user", "content": f"Recent AI-related posts from @{handle}."},
                ],
                "search_parameters": search_parameters,
                "temperature": 0.1,
                "response_format": {"type": "json_object"},
            },
        )

        try:
            content = data["choices"][0]["message"]["content"] or ""
            payload = parse_json_text(content)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise SourceUnavailableError(f"Unparseable social response: {e}") from e

        profile = payload.get("profile") or {}
        followers = profile.get("followers")
        followers = followers if isinstance(followers, int) and followers >= 0 else None
        bio = str(profile.get("bio") or "").strip()
        display_name = str(profile.get("display_name") or person.search_name)

        items = [
            RawCandidateItem(
                url=f"https://x.com/{handle}",
                title=f"{display_name} (@{handle})",
                text=bio or f"{display_name} on X",
                source_metadata={
                    "kind": "profile",
                    "handle": handle,
                    "followers": followers,
                    "is_official": True,
                },
            )
        ]

        for post in (payload.get("posts") or [])[:limit]:
            if not isinstance(post, dict):
                continue
            url = str(post.get("url") or "")
            text = str(post.get("text") or "").strip()
            match = _STATUS_URL.match(url)
            if not match or not text:
                logger.debug("[social] dropping post without status url or text: %r", url)
                continue
            items.append(
                RawCandidateItem(
                    url=url,
                    title=text[:80],
                    text=text,
                    published_at=parse_timestamp(post.get("date")),
                    source_metadata={
                        "kind": "post",
                        "post_id": match.group(2),
                        "author": match.group(1),
                    },
                )
            )

        return self._ok(items, follower_count=followers)
