"""Unicode text folding shared by the resolver and the content filters."""

from __future__ import annotations

import re
import unicodedata

_PUNCT = re.compile(r"[\s\-_.,'’\"()·・]+")


def fold(text: str) -> str:
    """Case-, width- and diacritic-insensitive form of *text*.

    NFKC folds full-width forms to ASCII, NFKD plus combining-mark removal
    strips accents (``José`` -> ``jose``), casefold handles case.
    """
    if not text:
        return ""
    text = unicodedata.normalize("NFKC", text)
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return unicodedata.normalize("NFC", stripped).casefold()


def fold_compact(text: str) -> str:
    """:func:`fold` with whitespace and name punctuation collapsed to single spaces."""
    return _PUNCT.sub(" ", fold(text)).strip()


def is_ascii_name(text: str) -> bool:
    return all(ord(ch) < 128 for ch in text)


def has_han(text: str) -> bool:
    return any("一" <= ch <= "鿿" for ch in text)
