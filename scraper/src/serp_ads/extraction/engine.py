"""Turn raw SERP markup into structured ad records and metrics."""

from __future__ import annotations

import re
from typing import Any

from ..config import TOP_AD_CUTOFF
from ..logging import EventLog, jlog
from ..normalize import normalize_text
from ..params import mine_parameters
from ..urls import first_absolute_url, hostname_of, iter_absolute_urls
from .finders import SHOPPING_AD_FINDER, TEXT_AD_FINDER, ContainerFinder
from .metrics import compute_metrics
from .models import AdGroup, AdRecord, ExtractionResult, ShoppingAdRecord

# Cheap substring pre-check; case-sensitive on purpose.
AD_MARKERS: tuple[str, ...] = (
    "data-text-ad",
    "commercial",
    "shopping-results",
    "Sponsored",
    "ads-ad",
    "adsbygoogle",
)

UNKNOWN_DOMAIN = "unknown"

_F = re.IGNORECASE | re.DOTALL
TITLE_RES = (
    re.compile(r"<h3[^>]*>(.*?)</h3>", _F),
    re.compile(r"<a[^>]*?class=\"[^\"]*?ad-title[^\"]*?\"[^>]*?>(.*?)</a>", _F),
)
DESCRIPTION_RES = (
    re.compile(r"<div[^>]*?class=\"[^\"]*?ad-description[^\"]*?\"[^>]*?>(.*?)</div>", _F),
    re.compile(r"<div[^>]*?class=\"[^\"]*?ad-text[^\"]*?\"[^>]*?>(.*?)</div>", _F),
    re.compile(r"<span[^>]*?class=\"[^\"]*?ad-desc[^\"]*?\"[^>]*?>(.*?)</span>", _F),
)
SITELINKS_RE = re.compile(r"<ul[^>]*?class=\"[^\"]*?(?:sitelinks|ad-links)[^\"]*?\"[^>]*?>", re.IGNORECASE)
PHONE_RE = re.compile(r"(?:\+\d{1,4}[\s-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}")
PRODUCT_TITLE_RE = re.compile(r"<div[^>]*?class=\"[^\"]*?(?:product-title|shopping-title)[^\"]*?\"[^>]*?>(.*?)</div>", _F)


def has_ad_markers(markup: str) -> bool:
    return any(marker in markup for marker in AD_MARKERS)


def _first_group(patterns: tuple[re.Pattern[str], ...], text: str) -> str:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return normalize_text(match.group(1))
    return ""


def parse_text_ad(container: str, position: int) -> AdRecord:
    """Build one text ad from a container; missing fields come back empty."""

    found = first_absolute_url(container)
    return AdRecord(
        position=position,
        title=_first_group(TITLE_RES, container),
        description=_first_group(DESCRIPTION_RES, container),
        destination_url=found.url if found else "",
        advertiser_domain=found.domain if found else "",
        has_sitelinks="sitelink" in container or SITELINKS_RE.search(container) is not None,
        has_phone_number=PHONE_RE.search(container) is not None,
        group=AdGroup.TOP if position <= TOP_AD_CUTOFF else AdGroup.BOTTOM,
    )


def parse_shopping_ad(container: str, position: int) -> ShoppingAdRecord:
    urls = tuple(found.url for found in iter_absolute_urls(container))
    titles = tuple(normalize_text(m.group(1)) for m in PRODUCT_TITLE_RE.finditer(container))
    domain = (hostname_of(urls[0]) if urls else None) or UNKNOWN_DOMAIN
    return ShoppingAdRecord(position=position, product_titles=titles, product_urls=urls, advertiser_domain=domain)


class ExtractionEngine:
    """Extract ad records from SERP markup using swappable container finders."""

    def __init__(
        self,
        text_finder: ContainerFinder = TEXT_AD_FINDER,
        shopping_finder: ContainerFinder = SHOPPING_AD_FINDER,
        *,
        log: EventLog = jlog,
    ) -> None:
        self._text_finder = text_finder
        self._shopping_finder = shopping_finder
        self._log = log

    def extract(self, markup: Any) -> ExtractionResult:
        """Return the ads in ``markup``. Never raises; bad input yields the empty result."""

        if not isinstance(markup, str) or not markup:
            return ExtractionResult.empty()
        if not has_ad_markers(markup):
            return ExtractionResult.empty()

        text_spans = self._text_finder.find_containers(markup)
        text_ads = [parse_text_ad(span.text, i) for i, span in enumerate(text_spans, start=1)]
        top = tuple(ad for ad in text_ads if ad.group is AdGroup.TOP)
        bottom = tuple(ad for ad in text_ads if ad.group is AdGroup.BOTTOM)

        shopping_spans = self._shopping_finder.find_containers(markup)
        shopping = tuple(parse_shopping_ad(span.text, i) for i, span in enumerate(shopping_spans, start=1))

        result = ExtractionResult(
            top_ads=top,
            bottom_ads=bottom,
            shopping_ads=shopping,
            ad_params=mine_parameters(markup),
            metrics=compute_metrics(top, bottom, shopping),
            markers_found=True,
        )
        self._log(
            "debug",
            event="ads_extracted",
            total_ads=result.metrics.total_ads,
            top=len(top),
            bottom=len(bottom),
            shopping=len(shopping),
            rules=sorted({span.rule for span in (*text_spans, *shopping_spans)}),
        )
        return result


_default_engine = ExtractionEngine()


def extract(markup: Any) -> ExtractionResult:
    """Module-level shortcut over a default :class:`ExtractionEngine`."""

    return _default_engine.extract(markup)


__all__ = [
    "AD_MARKERS",
    "ExtractionEngine",
    "UNKNOWN_DOMAIN",
    "extract",
    "has_ad_markers",
    "parse_shopping_ad",
    "parse_text_ad",
]
