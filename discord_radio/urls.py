from __future__ import annotations

import re
from typing import Iterable, List
from urllib.parse import urlsplit, urlunsplit


TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "gclid",
        "fbclid",
    }
)

URL_PATTERN = re.compile(r"https?://[^\s<>()\[\]\"']+")

SOCIAL_HOSTS = ("x.com", "twitter.com")


def normalize_url(raw: str) -> str:
    """Canonical form used to deduplicate shared links.

    Pure and total: anything that does not parse as an absolute URL is
    returned unchanged.
    """
    try:
        parts = urlsplit(raw)
        if not parts.scheme or not parts.netloc:
            return raw
        # Accessing .port validates it and raises on garbage
        parts.port
        netloc = parts.netloc
        host = parts.hostname or ""
        if "@" in netloc:
            userinfo, _, hostport = netloc.rpartition("@")
            netloc = f"{userinfo}@{hostport.lower()}"
        else:
            netloc = netloc.lower()
        if not host:
            return raw

        # Untouched params keep their original encoding and order
        kept = [
            pair
            for pair in parts.query.split("&")
            if pair and pair.split("=", 1)[0] not in TRACKING_PARAMS
        ]
        query = "&".join(kept)

        path = parts.path
        if len(path) > 1 and path.endswith("/"):
            path = path[:-1]
        if not path:
            path = "/"
        return urlunsplit((parts.scheme.lower(), netloc, path, query, ""))
    except ValueError:
        return raw


def extract_candidates(text: str) -> List[str]:
    if not text:
        return []
    return URL_PATTERN.findall(text)


def dedupe_urls(urls: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    ordered: List[str] = []
    for u in urls:
        key = normalize_url(u)
        if key not in seen:
            seen.add(key)
            ordered.append(key)
    return ordered


def is_social_post_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    host = (parts.hostname or "").lower()
    on_social = any(host == h or host.endswith("." + h) for h in SOCIAL_HOSTS)
    return on_social and "/status/" in parts.path
