"""Text normalization for titles and descriptions pulled out of SERP markup."""

from __future__ import annotations

import re

TAG_RE = re.compile(r"<[^>]*>")
WS_RE = re.compile(r"\s+")

# Order matters: ``&amp;`` first so ``&amp;lt;`` decodes the way browsers display it.
ENTITIES: tuple[tuple[str, str], ...] = (
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&nbsp;", " "),
)


def clean_text(text: str | None) -> str:
    """One cleaning pass: strip tags, decode common entities, collapse whitespace."""

    if not text:
        return ""
    cleaned = TAG_RE.sub("", text)
    for entity, char in ENTITIES:
        cleaned = cleaned.replace(entity, char)
    return WS_RE.sub(" ", cleaned).strip()


def normalize_text(text: str | None) -> str:
    """Apply :func:`clean_text` until the output is stable.

    A single pass can surface new tags or entities (``&lt;b&gt;`` decodes to
    ``<b>``), so the fixed point is what makes the normalizer idempotent. Each
    pass that changes the string either shortens it or only rewrites
    whitespace, so the loop terminates.
    """

    current = clean_text(text)
    while True:
        nxt = clean_text(current)
        if nxt == current:
            return current
        current = nxt


__all__ = ["clean_text", "normalize_text"]
