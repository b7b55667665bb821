"""URL helpers for ad containers found in SERP markup."""

from __future__ import annotations

import re
import urllib.parse
from typing import Iterator, NamedTuple

# Absolute URL with a path segment. The optional ``www.`` sits outside the host
# group, so the captured domain never carries it.
AD_URL_RE = re.compile(r"https?://(?:www\.)?([^/\s\"'<>]+)/[^\"'\s]*", re.IGNORECASE)


class FoundUrl(NamedTuple):
    url: str
    domain: str


def iter_absolute_urls(markup: str) -> Iterator[FoundUrl]:
    """Yield every absolute URL in document order with its lower-cased domain."""

    for match in AD_URL_RE.finditer(markup or ""):
        yield FoundUrl(match.group(0), match.group(1).lower())


def first_absolute_url(markup: str) -> FoundUrl | None:
    return next(iter_absolute_urls(markup), None)


def domain_of(url: str) -> str | None:
    """Domain as captured by :data:`AD_URL_RE` (``www.`` dropped), or ``None``."""

    match = AD_URL_RE.match(url or "")
    if not match:
        return None
    return match.group(1).lower()


def hostname_of(url: str) -> str | None:
    """Hostname exactly as the URL parser reports it (``www.`` kept)."""

    try:
        return urllib.parse.urlparse(url).hostname
    except ValueError:
        return None


__all__ = [
    "AD_URL_RE",
    "FoundUrl",
    "domain_of",
    "first_absolute_url",
    "hostname_of",
    "iter_absolute_urls",
]
