"""Content normalizer and deduplicator.

Turns raw adapter output into stored content items:

1. Validate the item shape (malformed items are skipped and logged).
2. Language filter, then identity filter (official items skip the latter).
3. Compute the content hash (canonical URL, else leading cleaned text).
4. Upsert by (person, hash): insert when absent, update when the text
   changed, skip when unchanged.

Running the same batch twice never creates duplicate rows.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from aidir.content.hashing import clean_text, content_hash
from aidir.content.identity_filter import evaluate
from aidir.content.language import is_target_language
from aidir.models import PersonIdentity, RawCandidateItem, SourceKind, UpsertStats

if TYPE_CHECKING:
    from aidir.store import AsyncPersonStore

logger = logging.getLogger(__name__)

MAX_TITLE_CHARS = 500


class MalformedItemError(ValueError):
    """Raised for a raw item that cannot be normalized."""


def _iso(value: datetime | str | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if not isinstance(value, datetime):
        raise MalformedItemError(f"published_at must be a datetime, not {type(value).__name__}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


def _validate(item: object) -> RawCandidateItem:
    if not isinstance(item, RawCandidateItem):
        raise MalformedItemError(f"Unexpected item type {type(item).__name__}")
    if item.url is not None and not isinstance(item.url, str):
        raise MalformedItemError("url must be a string")
    if not isinstance(item.title, str) or not isinstance(item.text, str):
        raise MalformedItemError("title and text must be strings")
    if not item.url and not clean_text(item.text) and not clean_text(item.title):
        raise MalformedItemError("item has neither url nor text")
    if not isinstance(item.source_metadata, dict):
        raise MalformedItemError("source_metadata must be a mapping")
    return item


class ContentNormalizer:
    """Filters, hashes and upserts raw candidate items for one store.

    Usage::

        normalizer = ContentNormalizer(store)
        stats = await normalizer.normalize_and_upsert(
            identity, SourceKind.CODE, raw_items, run_id=run_id
        )
    """

    def __init__(self, store: AsyncPersonStore) -> None:
        self._store = store

    async def normalize_and_upsert(
        self,
        person: PersonIdentity | int,
        source_kind: SourceKind,
        raw_items: list[RawCandidateItem],
        run_id: int | None = None,
    ) -> UpsertStats:
        """Normalize *raw_items* and upsert them for a person.

        Args:
            person: Identity context, or a person id (context is then
                loaded from the store).
            source_kind: Source the items came from.
            raw_items: Adapter output.
            run_id: Enrichment run that wrote the rows.

        Returns:
            UpsertStats with inserted/updated/skipped and rejection counts.
        """
        if isinstance(person, int):
            identity = await self._store.get_identity(person)
            if identity is None:
                raise ValueError(f"Person {person} not found")
        else:
            identity = person

        stats = UpsertStats()
        seen_hashes: set[str] = set()

        for raw in raw_items:
            try:
                item = _validate(raw)
                title = clean_text(item.title)[:MAX_TITLE_CHARS]
                text = item.text.strip()
                combined = f"{title}\n{text}"
                hashed = content_hash(item.url, text or title)
                published = _iso(item.published_at)
            except (ValueError, TypeError) as e:
                stats.malformed += 1
                logger.warning("[%s] Skipping malformed item: %s", source_kind.value, e)
                continue

            if not is_target_language(combined):
                stats.rejected_language += 1
                logger.debug("[%s] Rejected (language): %s", source_kind.value, item.url or title[:60])
                continue

            if not item.is_official:
                decision = evaluate(combined, identity)
                if not decision.accepted:
                    stats.rejected_identity += 1
                    logger.debug(
                        "[%s] Rejected (%s): %s",
                        source_kind.value, decision.reason, item.url or title[:60],
                    )
                    continue

            if hashed in seen_hashes:
                stats.skipped += 1
                continue
            seen_hashes.add(hashed)

            metadata = dict(item.source_metadata)
            existing = await self._store.get_content_item(identity.person_id, hashed)

            if existing is None:
                inserted_id = await self._store.insert_content_item(
                    person_id=identity.person_id,
                    source=source_kind,
                    content_hash=hashed,
                    url=item.url,
                    title=title,
                    text=text,
                    published_at=published,
                    metadata=metadata,
                    run_id=run_id,
                )
                if inserted_id is None:
                    stats.skipped += 1
                else:
                    stats.inserted += 1
            elif existing["text"] != text:
                await self._store.update_content_item(
                    existing["id"], title, text, published, metadata, run_id=run_id
                )
                stats.updated += 1
            else:
                stats.skipped += 1

        logger.info(
            "[%s] person %d: %d inserted, %d updated, %d skipped, %d rejected, %d malformed",
            source_kind.value, identity.person_id, stats.inserted, stats.updated,
            stats.skipped, stats.rejected, stats.malformed,
        )
        return stats

    async def reevaluate(self, person_id: int) -> int:
        """Re-run the filters over stored items against the current profile.

        Items that no longer pass (e.g. after the organization tags
        changed) are retracted. Official items are only re-checked for
        language. Idempotent: a second call retracts nothing.

        Returns:
            Number of items retracted.
        """
        identity = await self._store.get_identity(person_id)
        if identity is None:
            raise ValueError(f"Person {person_id} not found")

        retract: list[int] = []
        for item in await self._store.list_content_items(person_id):
            combined = f"{item['title']}\n{item['text']}"
            if not is_target_language(combined):
                retract.append(item["id"])
                continue
            if item["metadata"].get("is_official"):
                continue
            if not evaluate(combined, identity).accepted:
                retract.append(item["id"])

        removed = await self._store.delete_content_items(retract)
        if removed:
            logger.info("Retracted %d content items for person %d", removed, person_id)
        return removed
