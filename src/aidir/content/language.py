"""Script-based language filter.

The directory targets Chinese and English readers. Every letter that is
neither Latin nor Han (kana, Hangul, Cyrillic, Arabic, Thai, Greek,
Hebrew, Devanagari, ...) counts against the text; Latin and Han text is
accepted regardless of length.
"""

from __future__ import annotations

import re

_HAN = re.compile("[\u4e00-\u9fff\u3400-\u4dbf\uf900-\ufaff\U00020000-\U0002ebef]")
# Includes fullwidth forms and the ordinal and micro signs common in technical English
_LATIN = re.compile("[A-Za-z\u00aa\u00b5\u00ba\u00c0-\u024f\u1e00-\u1eff\uff21-\uff3a\uff41-\uff5a]")

# Share of letters that must be excluded-script for rejection
EXCLUDED_SHARE_THRESHOLD = 0.2


def script_counts(text: str) -> dict[str, int]:
    """Count letters by script class.

    The katakana middle dot (U+30FB), which Chinese uses inside
    transliterated foreign names, is punctuation and never counted.
    """
    han = latin = other = 0
    for char in text:
        if not char.isalpha():
            continue
        if _HAN.match(char):
            han += 1
        elif _LATIN.match(char):
            latin += 1
        else:
            other += 1
    return {"han": han, "latin": latin, "excluded": other}


def excluded_share(text: str) -> float:
    """Fraction of letters that belong to excluded scripts."""
    counts = script_counts(text)
    total = counts["han"] + counts["latin"] + counts["excluded"]
    if total == 0:
        return 0.0
    return counts["excluded"] / total


def is_target_language(text: str) -> bool:
    """True when *text* is Chinese/English (or carries no letters at all)."""
    if not text or not text.strip():
        return True
    return excluded_share(text) < EXCLUDED_SHARE_THRESHOLD
