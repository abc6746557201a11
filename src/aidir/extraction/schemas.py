"""Pydantic models for structured fact extraction output.

The text-generation backend must return exactly these shapes. A response
that fails validation is discarded as a whole; nothing is partially
trusted.
"""

from __future__ import annotations

import re
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# YYYY, YYYY-MM or YYYY-MM-DD
_PARTIAL_DATE = re.compile(r"^\d{4}(?:-\d{2}(?:-\d{2})?)?$")

# Spellings of an open-ended end date, normalized to "present"
PRESENT_TOKENS = frozenset({"present", "current", "now", "ongoing", "today", "至今", "现在"})


class EventType(str, Enum):
    """Kind of timeline entry."""

    CAREER = "career"
    EDUCATION = "education"
    FOUNDING = "founding"
    AWARD = "award"


class CoursePlatform(str, Enum):
    COURSERA = "coursera"
    EDX = "edx"
    UDACITY = "udacity"
    YOUTUBE = "youtube"
    FASTAI = "fast.ai"
    STANFORD = "stanford"
    MIT = "mit"
    UDEMY = "udemy"
    DEEPLEARNING_AI = "deeplearning.ai"
    OTHER = "other"


class CourseType(str, Enum):
    FREE = "free"
    PAID = "paid"
    FREEMIUM = "freemium"


class CourseLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


def _check_partial_date(value: object, allow_present: bool) -> str | None:
    if value is None:
        return None
    if isinstance(value, int):
        value = str(value)
    if not isinstance(value, str):
        raise ValueError(f"date must be a string, got {type(value).__name__}")
    text = value.strip()
    if not text or text.lower() in {"unknown", "null", "none", "n/a"}:
        return None
    if text.lower() in PRESENT_TOKENS:
        if not allow_present:
            raise ValueError("start date cannot be 'present'")
        return "present"
    if not _PARTIAL_DATE.match(text):
        raise ValueError(f"date {text!r} is not YYYY, YYYY-MM or YYYY-MM-DD")
    return text


class TimelineEntry(BaseModel):
    """One extracted career/education/founding/award fact."""

    organization: str = Field(
        min_length=1,
        validation_alias=AliasChoices("organization", "title", "org"),
        description="Company, university or awarding body",
    )
    role: str = Field(default="", description="Position, degree or award name")
    start_date: str | None = Field(default=None, description="YYYY, YYYY-MM or YYYY-MM-DD")
    end_date: str | None = Field(default=None, description="YYYY, YYYY-MM, YYYY-MM-DD or 'present'")
    event_type: EventType = Field(
        default=EventType.CAREER, validation_alias=AliasChoices("event_type", "type")
    )
    confidence: float = Field(ge=0.0, le=1.0)

    model_config = ConfigDict(extra="ignore")

    @field_validator("organization", "role", mode="before")
    @classmethod
    def strip_text(cls, v: object) -> object:
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v

    @field_validator("start_date", mode="before")
    @classmethod
    def check_start(cls, v: object) -> str | None:
        return _check_partial_date(v, allow_present=False)

    @field_validator("end_date", mode="before")
    @classmethod
    def check_end(cls, v: object) -> str | None:
        return _check_partial_date(v, allow_present=True)


class TimelineResponse(BaseModel):
    events: list[TimelineEntry] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class CourseEntry(BaseModel):
    """One course taught or created by the person."""

    title: str = Field(min_length=1)
    url: str | None = None
    platform: CoursePlatform | None = None
    course_type: CourseType | None = Field(
        default=None, validation_alias=AliasChoices("course_type", "type")
    )
    level: CourseLevel | None = None
    description: str | None = None
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)

    model_config = ConfigDict(extra="ignore")

    @field_validator("url")
    @classmethod
    def check_url(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"course url must be absolute: {v!r}")
        return v


class CourseResponse(BaseModel):
    courses: list[CourseEntry] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")
