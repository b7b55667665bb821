"""Aggregate metrics computed from already-extracted ad records."""

from __future__ import annotations

from typing import Iterable, Sequence

from ..urls import domain_of
from .models import AdMetrics, AdRecord, ShoppingAdRecord


def rounded_mean(lengths: Iterable[int]) -> int:
    """Mean rounded half-up, or 0 without samples."""

    total = count = 0
    for n in lengths:
        total += n
        count += 1
    if not count:
        return 0
    return (2 * total + count) // (2 * count)


def compute_metrics(
    top_ads: Sequence[AdRecord],
    bottom_ads: Sequence[AdRecord],
    shopping_ads: Sequence[ShoppingAdRecord],
) -> AdMetrics:
    """Summarize ad records; a pure function of its inputs, never re-parses markup."""

    text_ads = [*top_ads, *bottom_ads]

    domains = {ad.advertiser_domain for ad in text_ads if ad.advertiser_domain}
    for shopping in shopping_ads:
        domains.update(d for d in (domain_of(url) for url in shopping.product_urls) if d)

    titles = [len(ad.title) for ad in text_ads if ad.title]
    titles += [len(t) for ad in shopping_ads for t in ad.product_titles if t]
    descriptions = [len(ad.description) for ad in text_ads if ad.description]

    total = len(top_ads) + len(bottom_ads) + len(shopping_ads)
    return AdMetrics(
        total_ads=total,
        has_ads=total > 0,
        ad_positions=tuple(ad.position for ad in text_ads),
        ad_domains=frozenset(domains),
        has_sitelinks=any(ad.has_sitelinks for ad in text_ads),
        has_phone_number=any(ad.has_phone_number for ad in text_ads),
        avg_title_length=rounded_mean(titles),
        avg_description_length=rounded_mean(descriptions),
    )


__all__ = ["compute_metrics", "rounded_mean"]
