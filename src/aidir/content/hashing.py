"""Stable identity hashes for content items."""

from __future__ import annotations

import hashlib
import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

# Characters of cleaned text that participate in a text-only hash
TEXT_HASH_CHARS = 1000

_WHITESPACE = re.compile(r"\s+")


def _is_youtube_watch(host: str, path: str) -> bool:
    return (host == "youtube.com" or host.endswith(".youtube.com")) and path.startswith("/watch")


def canonical_url(url: str) -> str | None:
    """Canonicalize a URL for hashing.

    Lowercases scheme and host, strips ``www.``, drops the fragment and
    the query string (except the ``v`` parameter of YouTube watch URLs)
    and removes a trailing slash. Returns None for values that are not
    absolute http(s) URLs or whose port is invalid.
    """
    url = url.strip()
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if scheme not in ("http", "https") or not parts.hostname:
        return None

    host = parts.hostname.lower().removeprefix("www.")
    if port and port not in (80, 443):
        host = f"{host}:{port}"
    path = re.sub(r"/{2,}", "/", parts.path or "")

    query = ""
    if _is_youtube_watch(host, path):
        video = [(k, v) for k, v in parse_qsl(parts.query) if k == "v"]
        query = urlencode(video[:1])

    # http and https name the same resource
    canonical = urlunsplit(("https", host, path, query, ""))
    return canonical.rstrip("/")


def clean_text(text: str) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()


def hash_url(url: str) -> str | None:
    canonical = canonical_url(url)
    if canonical is None:
        return None
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()


def hash_text(text: str) -> str:
    return hashlib.md5(clean_text(text)[:TEXT_HASH_CHARS].encode("utf-8")).hexdigest()


def content_hash(url: str | None, text: str) -> str:
    """URL hash when the item has a usable URL, otherwise a text hash."""
    if url:
        hashed = hash_url(url)
        if hashed is not None:
            return hashed
    return hash_text(text)
