"""Code-hosting adapter (GitHub): the person's repositories, most-starred first."""

from __future__ import annotations

import logging
from datetime import datetime

import httpx

from aidir.config import CODE_RESULTS_HARD_CAP, EnrichmentConfig
from aidir.models import LinkKind, PersonIdentity, RawCandidateItem, SourceKind
from aidir.sources.base import HttpSourceAdapter, SourceResult, parse_timestamp

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"


def _repo_text(repo: dict) -> str:
    parts = [repo.get("description") or ""]
    if repo.get("language"):
        parts.append(f"Language: {repo['language']}")
    if repo.get("topics"):
        parts.append("Topics: " + ", ".join(repo["topics"]))
    return "\n".join(p for p in parts if p)


class GitHubAdapter(HttpSourceAdapter):
    """Ranks repositories by stars (descending) and caps the result set.

    The token is optional; without it the unauthenticated rate limit
    applies. A person without a code-hosting handle is skipped.
    """

    kind = SourceKind.CODE

    def __init__(self, config: EnrichmentConfig, client: httpx.AsyncClient) -> None:
        super().__init__(config, client)
        self.request_delay_seconds = config.code_request_delay_seconds

    def skip_reason(self, person: PersonIdentity) -> str | None:
        if not person.handle_for(LinkKind.CODE, "github.com"):
            return "no code-hosting handle"
        return None

    @property
    def limit(self) -> int:
        return min(self._config.code_max_results, CODE_RESULTS_HARD_CAP)

    async def _fetch(self, person: PersonIdentity, since: datetime | None) -> SourceResult:
        handle = person.handle_for(LinkKind.CODE, "github.com")
        query = f"user:{handle}"
        if since is not None:
            query += f" pushed:>{since.date().isoformat()}"

        headers = {"Accept": "application/vnd.github+json"}
        token = self._config.credential("github_token")
        if token:
            headers["Authorization"] = f"Bearer {token}"

        data = await self._request_json(
            "GET",
            f"{GITHUB_API_URL}/search/repositories",
            params={
                "q": query,
                "sort": "stars",
                "order": "desc",
                "per_page": self.limit,
            },
            headers=headers,
        )

        repos = [r for r in data.get("items", []) if r.get("html_url")]
        repos.sort(key=lambda r: r.get("stargazers_count") or 0, reverse=True)

        items = [
            RawCandidateItem(
                url=repo["html_url"],
                title=repo.get("full_name") or repo.get("name") or repo["html_url"],
                text=_repo_text(repo),
                published_at=parse_timestamp(repo.get("pushed_at") or repo.get("updated_at")),
                source_metadata={
                    "stars": repo.get("stargazers_count") or 0,
                    "forks": repo.get("forks_count") or 0,
                    "language": repo.get("language"),
                    "topics": repo.get("topics") or [],
                    "is_official": True,
                },
            )
            for repo in repos[: self.limit]
        ]
        return self._ok(items)
