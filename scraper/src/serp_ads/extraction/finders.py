"""Locate ad containers in SERP markup.

Container detection is a prioritized list of independent rules. Structural
rules are regexes over known ad-container markup; every structural rule runs
and their matches are concatenated in rule order. Fallback rules only run when
no structural rule matched anything, and cut a fixed window of text around an
anchor label. New markup variants are handled by adding a rule, not by
branching inside the engine.

Anything implementing :class:`ContainerFinder` can replace the regex finder
(e.g. a real HTML parser) without touching the engine or the metrics pass.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol, Sequence, Union

from ..config import FALLBACK_WINDOW_CHARS

_FLAGS = re.IGNORECASE | re.DOTALL


@dataclass(frozen=True)
class StructuralRule:
    name: str
    pattern: re.Pattern[str]
    kind: str = "structural"


@dataclass(frozen=True)
class FallbackRule:
    name: str
    anchor: str
    window: int = FALLBACK_WINDOW_CHARS
    kind: str = "fallback"

    @property
    def block_re(self) -> re.Pattern[str]:
        return re.compile(r"<div[^>]*>.*?" + re.escape(self.anchor) + r".*?</div>", _FLAGS)


Rule = Union[StructuralRule, FallbackRule]


@dataclass(frozen=True)
class ContainerSpan:
    """A slice of markup believed to hold one ad.

    ``start``/``end`` are offsets into the scanned markup. Fallback spans are
    stitched from the text on both sides of an anchor block, so their
    ``text`` is not a contiguous slice of ``markup[start:end]``.
    """

    text: str
    start: int
    end: int
    rule: str


class ContainerFinder(Protocol):
    def find_containers(self, markup: str) -> list[ContainerSpan]: ...


def _structural(name: str, pattern: str) -> StructuralRule:
    return StructuralRule(name=name, pattern=re.compile(pattern, _FLAGS))


TEXT_AD_RULES: tuple[Rule, ...] = (
    _structural("text-ad-attribute", r"<div[^>]*?(?:data-text-ad|commercial|ads-ad)[^>]*?>.*?</div>"),
    _structural("ad-container-class", r"<div[^>]*?class=\"[^\"]*?ad-container[^\"]*?\"[^>]*?>.*?</div>"),
    _structural("ad-unit-class", r"<div[^>]*?class=\"[^\"]*?(?:ad_|adUnit)[^\"]*?\"[^>]*?>.*?</div>"),
    _structural("sponsored-class", r"<div[^>]*?class=\"[^\"]*?(?:Sponsored)[^\"]*?\"[^>]*?>.*?</div>"),
    FallbackRule(name="sponsored-label", anchor="Sponsored"),
)

SHOPPING_AD_RULES: tuple[Rule, ...] = (
    _structural("shopping-results", r"<div[^>]*?shopping-results[^>]*?>.*?</div>"),
    _structural("shopping-pla-class", r"<div[^>]*?class=\"[^\"]*?(?:shopping|pla-unit)[^\"]*?\"[^>]*?>.*?</div>"),
    _structural(
        "commercial-unit-shopping",
        r"<div[^>]*?class=\"[^\"]*?commercial-unit-desktop-shopping[^\"]*?\"[^>]*?>.*?</div>",
    ),
)


def _fallback_spans(markup: str, rule: FallbackRule) -> list[ContainerSpan]:
    blocks = list(rule.block_re.finditer(markup))
    spans: list[ContainerSpan] = []
    prev_end = 0
    for i, block in enumerate(blocks):
        before = markup[prev_end : block.start()]
        next_start = blocks[i + 1].start() if i + 1 < len(blocks) else len(markup)
        after = markup[block.end() : next_start]
        head = before[-rule.window :] if rule.window else ""
        tail = after[: rule.window]
        spans.append(
            ContainerSpan(
                text=head + tail,
                start=block.start() - len(head),
                end=block.end() + len(tail),
                rule=rule.name,
            )
        )
        prev_end = block.end()
    return spans


@dataclass(frozen=True)
class PatternFinder:
    """Regex-backed :class:`ContainerFinder` driven by an ordered rule list."""

    rules: Sequence[Rule]

    def find_containers(self, markup: str) -> list[ContainerSpan]:
        if not markup:
            return []
        found: list[ContainerSpan] = []
        for rule in self.rules:
            if isinstance(rule, StructuralRule):
                found.extend(
                    ContainerSpan(text=m.group(0), start=m.start(), end=m.end(), rule=rule.name)
                    for m in rule.pattern.finditer(markup)
                )
        if found:
            return found
        for rule in self.rules:
            if isinstance(rule, FallbackRule):
                found.extend(_fallback_spans(markup, rule))
        return found


TEXT_AD_FINDER = PatternFinder(TEXT_AD_RULES)
SHOPPING_AD_FINDER = PatternFinder(SHOPPING_AD_RULES)


__all__ = [
    "ContainerFinder",
    "ContainerSpan",
    "FallbackRule",
    "PatternFinder",
    "Rule",
    "SHOPPING_AD_FINDER",
    "SHOPPING_AD_RULES",
    "StructuralRule",
    "TEXT_AD_FINDER",
    "TEXT_AD_RULES",
]
