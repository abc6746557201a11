"""Prompt templates for timeline and course extraction.

Prompt version tracks breaking changes so extracted facts can be traced
back to the instructions that produced them.
"""

from __future__ import annotations

import hashlib
import json

from aidir.extraction.schemas import (
    CourseLevel,
    CoursePlatform,
    CourseResponse,
    CourseType,
    EventType,
    TimelineResponse,
)
from aidir.models import PersonIdentity

PROMPT_VERSION = "1.0.0"

MAX_TIMELINE_EVENTS = 10

_PERSONA = (
    "You are a meticulous biographical researcher for a directory of people "
    "in artificial intelligence. Return ONLY valid JSON matching the schema below."
)

_RULES = """RULES:
  1. Extract only facts stated explicitly in the source texts. No speculation,
     no facts from memory, no inferred dates.
  2. Translate organization and role names into Simplified Chinese only when the
     translation is standard and unambiguous; otherwise keep the original name.
  3. Dates: "YYYY", "YYYY-MM" or "YYYY-MM-DD". Use "present" for an end date that
     is explicitly ongoing. Use null when a date is not stated.
  4. confidence: 0.0-1.0, how clearly the texts state the fact."""


def _person_header(person: PersonIdentity) -> str:
    lines = [f"Person: {person.search_name}"]
    if person.name != person.search_name:
        lines.append(f"Also known as: {person.name}")
    if person.aliases:
        lines.append("Aliases: " + ", ".join(person.aliases[:5]))
    if person.organizations:
        lines.append("Known organizations: " + ", ".join(person.organizations[:5]))
    return "\n".join(lines)


def build_timeline_prompt(person: PersonIdentity, corpus: str) -> tuple[str, str]:
    """Return (system_prompt, user_prompt) for career timeline extraction."""
    event_types = ", ".join(t.value for t in EventType)
    system = f"""{_PERSONA}

Extract the career timeline of the person described below.

JSON Schema:
{json.dumps(TimelineResponse.model_json_schema(), ensure_ascii=False)}

EVENT TYPE (exactly 1 per event): {event_types}

{_RULES}
  5. Return at most {MAX_TIMELINE_EVENTS} events, most recent first.

Example output:
{{"events": [{{"organization": "Acme Labs", "role": "Chief Scientist", "start_date": "2019",
  "end_date": "present", "event_type": "career", "confidence": 0.9}}]}}

If no events are found, return {{"events": []}}."""

    user = f"{_person_header(person)}\n\nSOURCE TEXTS:\n\n{corpus}"
    return system, user


def build_course_prompt(person: PersonIdentity, corpus: str) -> tuple[str, str]:
    """Return (system_prompt, user_prompt) for course extraction."""
    platforms = ", ".join(p.value for p in CoursePlatform)
    types = ", ".join(t.value for t in CourseType)
    levels = ", ".join(lv.value for lv in CourseLevel)
    system = f"""{_PERSONA}

Extract online courses that the person below created or is the primary
instructor of. Do not include courses they merely mention or attended.

JSON Schema:
{json.dumps(CourseResponse.model_json_schema(), ensure_ascii=False)}

PLATFORM: {platforms}
COURSE TYPE: {types}
LEVEL: {levels}

{_RULES}
  5. Only include a url when it appears in the source texts.

If no courses are found, return {{"courses": []}}."""

    user = f"{_person_header(person)}\n\nSOURCE TEXTS:\n\n{corpus}"
    return system, user


def hash_extraction_config(model: str, temperature: float) -> str:
    """Deterministic hash of the extraction configuration (model, temperature, prompt version).

    Returns:
        SHA256 hexdigest truncated to 16 characters.
    """
    config = {
        "model": model,
        "temperature": temperature,
        "prompt_version": PROMPT_VERSION,
    }
    canonical = json.dumps(config, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()[:16]
