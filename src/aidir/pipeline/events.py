"""Inbound trigger model for enrichment runs."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from aidir.links import normalize_links
from aidir.models import OfficialLink


class EventName(str, Enum):
    CREATED = "person/created"
    REFRESH = "person/refresh"


class EnrichmentEvent(BaseModel):
    """``{event, personId, identity, aliases, links}`` message that starts a run.

    ``identity`` is the knowledge-base identity key (e.g. ``Q42``). When it
    differs from the stored key the run is an identity correction.
    ``links`` accepts every historical shape and is normalized on entry.
    """

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    event: EventName
    person_id: int = Field(alias="personId", gt=0)
    identity: str | None = None
    aliases: list[str] = Field(default_factory=list)
    links: list[OfficialLink] = Field(default_factory=list)
    force_refresh: bool = Field(default=False, alias="forceRefresh")

    @field_validator("identity", mode="before")
    @classmethod
    def _strip_identity(cls, value: Any) -> str | None:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator("aliases", mode="before")
    @classmethod
    def _clean_aliases(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [str(a).strip() for a in value if a and str(a).strip()]

    @field_validator("links", mode="before")
    @classmethod
    def _normalize_links(cls, value: Any) -> list[OfficialLink]:
        return normalize_links(value)

    @classmethod
    def created(cls, person_id: int, **kwargs: Any) -> EnrichmentEvent:
        return cls(event=EventName.CREATED, person_id=person_id, **kwargs)

    @classmethod
    def refresh(cls, person_id: int, **kwargs: Any) -> EnrichmentEvent:
        return cls(event=EventName.REFRESH, person_id=person_id, **kwargs)
