"""Data models and enums for the AI people directory enrichment pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum


class PersonStatus(str, Enum):
    """Lifecycle status of a person profile."""

    PENDING = "pending"
    BUILDING = "building"
    READY = "ready"
    ERROR = "error"


class SourceKind(str, Enum):
    """External source a content item was fetched from."""

    KNOWLEDGEBASE = "knowledgebase"
    CODE = "code"
    VIDEO = "video"
    SOCIAL = "social"
    ACADEMIC = "academic"
    WEBSEARCH = "websearch"


class LinkKind(str, Enum):
    """Kind tag of an official link."""

    CODE = "code"
    SOCIAL = "social"
    VIDEO = "video"
    ACADEMIC = "academic"
    OTHER = "other"


class FetchStatus(str, Enum):
    """Outcome of one adapter fetch."""

    OK = "ok"
    UNCONFIGURED = "unconfigured"
    SKIPPED = "skipped"
    FAILED = "failed"


class StageOutcome(str, Enum):
    """Per-stage outcome recorded on an enrichment run."""

    SUCCESS = "success"
    PARTIAL = "partial"
    SKIPPED = "skipped"
    FAILED = "failed"


class ResolutionStatus(str, Enum):
    """Result category of an identity resolution attempt."""

    LOCAL = "local"
    CANDIDATES = "candidates"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"


class OrganizationType(str, Enum):
    COMPANY = "company"
    UNIVERSITY = "university"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class OfficialLink:
    """Normalized official link: one tagged variant for every historical shape."""

    kind: LinkKind
    url: str
    handle: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {"kind": self.kind.value, "url": self.url, "handle": self.handle}


@dataclass
class PersonIdentity:
    """Context describing who a fetch or filter is about.

    Built from the stored Person row plus any identity/aliases/links
    carried on the triggering event.
    """

    person_id: int
    name: str
    identity_key: str | None = None
    english_name: str | None = None
    aliases: list[str] = field(default_factory=list)
    organizations: list[str] = field(default_factory=list)
    occupations: list[str] = field(default_factory=list)
    links: list[OfficialLink] = field(default_factory=list)
    orcid: str | None = None

    def handle_for(self, kind: LinkKind, host: str | None = None) -> str | None:
        """Return the first handle of the given link kind (optionally on *host*)."""
        for link in self.links:
            if link.kind != kind or not link.handle:
                continue
            if host is None or host in link.url:
                return link.handle
        return None

    @property
    def search_name(self) -> str:
        return self.english_name or self.name

    @property
    def seed_scopes(self) -> list[tuple[str, str]]:
        """``(host, path prefix)`` of each official website link."""
        from aidir.links import link_scope

        scopes = []
        for link in self.links:
            if link.kind == LinkKind.OTHER:
                scope = link_scope(link.url)
                if scope:
                    scopes.append(scope)
        return scopes


@dataclass
class RawCandidateItem:
    """One piece of content as returned by a source adapter, before dedup."""

    url: str | None
    title: str
    text: str
    published_at: datetime | None = None
    source_metadata: dict[str, object] = field(default_factory=dict)

    @property
    def is_official(self) -> bool:
        return bool(self.source_metadata.get("is_official"))


@dataclass
class UpsertStats:
    """Counts returned by the normalizer for one batch."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    rejected_language: int = 0
    rejected_identity: int = 0
    malformed: int = 0

    @property
    def rejected(self) -> int:
        return self.rejected_language + self.rejected_identity

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(slots=True)
class KnowledgeBaseCandidate:
    """One knowledge-base search hit offered to the caller for confirmation."""

    id: str
    label: str
    description: str = ""
    aliases: list[str] = field(default_factory=list)


@dataclass
class KnowledgeBaseEntity:
    """Full knowledge-base entity used to seed or refresh a Person."""

    id: str
    label: str
    description: str = ""
    aliases: list[str] = field(default_factory=list)
    occupations: list[str] = field(default_factory=list)
    organizations: list[str] = field(default_factory=list)
    links: list[OfficialLink] = field(default_factory=list)
    image_url: str | None = None
    orcid: str | None = None
    gender: str | None = None
    birth_year: int | None = None
    country: str | None = None


@dataclass
class ResolutionResult:
    """Outcome of IdentityResolver.resolve().

    ``LOCAL`` and ``CANDIDATES`` carry a single identity in the flat
    fields. ``AMBIGUOUS`` carries several ``person_ids`` (local) or
    ``candidates`` (knowledge base) for the caller to choose from.
    ``NOT_FOUND`` may carry a ``diagnostic`` when the knowledge base failed.
    """

    status: ResolutionStatus
    query: str
    identity_key: str | None = None
    canonical_name: str | None = None
    aliases: list[str] = field(default_factory=list)
    description: str | None = None
    links: list[OfficialLink] = field(default_factory=list)
    session_id: int | None = None
    person_ids: list[int] = field(default_factory=list)
    candidates: list[KnowledgeBaseCandidate] = field(default_factory=list)
    diagnostic: str | None = None

    @property
    def found(self) -> bool:
        return self.status in (ResolutionStatus.LOCAL, ResolutionStatus.CANDIDATES)
