"""Bounded extraction corpus built from the most relevant content items."""

from __future__ import annotations

from dataclasses import dataclass, field

from aidir.content.identity_filter import identity_score
from aidir.models import PersonIdentity, SourceKind

# Most trustworthy biographical sources first
SOURCE_PRIORITY: tuple[SourceKind, ...] = (
    SourceKind.KNOWLEDGEBASE,
    SourceKind.WEBSEARCH,
    SourceKind.ACADEMIC,
    SourceKind.SOCIAL,
    SourceKind.VIDEO,
    SourceKind.CODE,
)

_SEPARATOR = "\n\n---\n\n"


@dataclass
class Corpus:
    text: str = ""
    item_ids: list[int] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.text.strip())


def _priority(source: str) -> int:
    try:
        return SOURCE_PRIORITY.index(SourceKind(source))
    except ValueError:
        return len(SOURCE_PRIORITY)


def rank_items(person: PersonIdentity, items: list[dict]) -> list[dict]:
    """Order items by source priority, then identity score, then recency."""
    by_recency = sorted(items, key=lambda i: i.get("published_at") or "", reverse=True)
    return sorted(
        by_recency,
        key=lambda i: (
            _priority(i["source"]),
            -identity_score(f"{i.get('title') or ''}\n{i.get('text') or ''}", person),
        ),
    )


def build_corpus(
    person: PersonIdentity,
    items: list[dict],
    max_items: int = 8,
    chars_per_item: int = 4000,
    max_chars: int = 16000,
) -> Corpus:
    """Concatenate the top-ranked items, truncating each and the whole."""
    corpus = Corpus()
    parts: list[str] = []
    used = 0
    for item in rank_items(person, items)[:max_items]:
        body = (item.get("text") or "").strip()
        if not body:
            continue
        header = f"[{item['source']}] {item.get('title') or ''}".rstrip()
        if item.get("url"):
            header += f"\n{item['url']}"
        block = f"{header}\n{body[:chars_per_item]}"

        remaining = max_chars - used - (len(_SEPARATOR) if parts else 0)
        if remaining <= len(header):
            break
        block = block[:remaining]
        parts.append(block)
        corpus.item_ids.append(item["id"])
        used += len(block) + (len(_SEPARATOR) if len(parts) > 1 else 0)

    corpus.text = _SEPARATOR.join(parts)
    return corpus
