"""Official link normalization at the store boundary.

Historical records carry official links as a list of ``{type, url, handle}``
dicts, a ``{"x": url, "github": url}`` map, or bare URL strings, with
mixed key names (``type``/``kind``/``platform``). Everything is converted
once into :class:`~aidir.models.OfficialLink` here; nothing downstream
branches on the raw shape.
"""

from __future__ import annotations

import json
import logging
from urllib.parse import urlsplit

from aidir.models import LinkKind, OfficialLink

logger = logging.getLogger(__name__)

# Platform labels seen in stored data, mapped to the link kind tag
_PLATFORM_KINDS: dict[str, LinkKind] = {
    "github": LinkKind.CODE,
    "gitlab": LinkKind.CODE,
    "code": LinkKind.CODE,
    "x": LinkKind.SOCIAL,
    "twitter": LinkKind.SOCIAL,
    "linkedin": LinkKind.SOCIAL,
    "social": LinkKind.SOCIAL,
    "youtube": LinkKind.VIDEO,
    "video": LinkKind.VIDEO,
    "openalex": LinkKind.ACADEMIC,
    "orcid": LinkKind.ACADEMIC,
    "scholar": LinkKind.ACADEMIC,
    "academic": LinkKind.ACADEMIC,
}

_HOST_KINDS: dict[str, LinkKind] = {
    "github.com": LinkKind.CODE,
    "gitlab.com": LinkKind.CODE,
    "x.com": LinkKind.SOCIAL,
    "twitter.com": LinkKind.SOCIAL,
    "linkedin.com": LinkKind.SOCIAL,
    "youtube.com": LinkKind.VIDEO,
    "youtu.be": LinkKind.VIDEO,
    "openalex.org": LinkKind.ACADEMIC,
    "orcid.org": LinkKind.ACADEMIC,
    "scholar.google.com": LinkKind.ACADEMIC,
}


def link_domain(url: str) -> str | None:
    """Return the lowercase host of *url* without a ``www.`` prefix."""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    return host.lower().removeprefix("www.")


def link_scope(url: str) -> tuple[str, str] | None:
    """Return ``(host, path prefix)`` of an official website link.

    The prefix drops a trailing slash and a trailing file name
    (``/~jane/index.html`` scopes to ``/~jane``).
    """
    host = link_domain(url)
    if host is None:
        return None
    path = urlsplit(url).path.rstrip("/")
    head, _, last = path.rpartition("/")
    if "." in last:
        path = head
    return host, path


def in_scope(url: str, scopes: list[tuple[str, str]]) -> bool:
    """True when *url* lives under one of *scopes*.

    A site-root scope also covers subdomains (``blog.janeq.dev`` under
    ``janeq.dev``). A scope with a path, such as a personal page on a
    shared university host, covers only that host and path subtree.
    """
    host = link_domain(url)
    if host is None:
        return False
    path = urlsplit(url).path.rstrip("/")
    for seed_host, prefix in scopes:
        if prefix:
            if host == seed_host and (path == prefix or path.startswith(prefix + "/")):
                return True
        elif host == seed_host or host.endswith("." + seed_host):
            return True
    return False


def _kind_for(label: str | None, url: str) -> LinkKind:
    if label:
        kind = _PLATFORM_KINDS.get(label.strip().lower())
        if kind is not None:
            return kind
    host = link_domain(url) or ""
    for known, kind in _HOST_KINDS.items():
        if host == known or host.endswith("." + known):
            return kind
    return LinkKind.OTHER


def _handle_from_url(kind: LinkKind, url: str) -> str | None:
    """Derive a handle from the first path segment for code/social links."""
    if kind not in (LinkKind.CODE, LinkKind.SOCIAL, LinkKind.VIDEO):
        return None
    path = urlsplit(url).path.strip("/")
    if not path:
        return None
    parts = path.split("/")
    # youtube.com/channel/<id>, linkedin.com/in/<id>
    if parts[0] in ("channel", "in", "c", "user") and len(parts) > 1:
        return parts[1]
    return parts[0].lstrip("@")


def _one(entry: object, label: str | None = None) -> OfficialLink | None:
    if isinstance(entry, OfficialLink):
        return entry
    if isinstance(entry, str):
        url, handle = entry.strip(), None
    elif isinstance(entry, dict):
        url = str(entry.get("url") or entry.get("href") or "").strip()
        handle = entry.get("handle") or entry.get("username")
        label = str(
            entry.get("kind") or entry.get("type") or entry.get("platform") or label or ""
        ) or None
    else:
        logger.debug("Ignoring unrecognized link entry: %r", entry)
        return None

    if not url:
        return None
    if not url.startswith(("http://", "https://")):
        url = "https://" + url

    kind = _kind_for(label, url)
    if handle:
        handle = str(handle).strip().lstrip("@")
    else:
        handle = _handle_from_url(kind, url)
    return OfficialLink(kind=kind, url=url, handle=handle or None)


def normalize_links(raw: object) -> list[OfficialLink]:
    """Normalize any stored or inbound link shape into tagged variants.

    Accepts a JSON string, a list of dicts/strings, or a mapping of
    platform label to URL. Duplicate URLs are dropped (first wins).
    """
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            raw = [raw]

    entries: list[OfficialLink | None]
    if isinstance(raw, dict):
        entries = [_one(value, label=key) for key, value in raw.items()]
    elif isinstance(raw, (list, tuple)):
        entries = [_one(entry) for entry in raw]
    else:
        logger.warning("Unsupported official link payload type: %s", type(raw).__name__)
        return []

    seen: set[str] = set()
    result: list[OfficialLink] = []
    for link in entries:
        if link is None or link.url in seen:
            continue
        seen.add(link.url)
        result.append(link)
    return result


def links_to_json(links: list[OfficialLink]) -> str:
    return json.dumps([link.to_dict() for link in links], ensure_ascii=False)
