"""Value types produced by the extraction engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class AdGroup(str, Enum):
    TOP = "top"
    BOTTOM = "bottom"
    SHOPPING = "shopping"


@dataclass(frozen=True)
class AdRecord:
    position: int
    title: str
    description: str
    destination_url: str
    advertiser_domain: str
    has_sitelinks: bool
    has_phone_number: bool
    group: AdGroup

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "title": self.title,
            "description": self.description,
            "destination_url": self.destination_url,
            "advertiser_domain": self.advertiser_domain,
            "has_sitelinks": self.has_sitelinks,
            "has_phone_number": self.has_phone_number,
            "group": self.group.value,
        }


@dataclass(frozen=True)
class ShoppingAdRecord:
    position: int
    product_titles: tuple[str, ...]
    product_urls: tuple[str, ...]
    advertiser_domain: str  # host of the first product URL, or "unknown"
    group: AdGroup = AdGroup.SHOPPING

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "product_titles": list(self.product_titles),
            "product_urls": list(self.product_urls),
            "advertiser_domain": self.advertiser_domain,
            "group": self.group.value,
        }


AnyAdRecord = Union[AdRecord, ShoppingAdRecord]


@dataclass(frozen=True)
class AdMetrics:
    total_ads: int = 0
    has_ads: bool = False
    ad_positions: tuple[int, ...] = ()
    ad_domains: frozenset[str] = frozenset()
    has_sitelinks: bool = False
    has_phone_number: bool = False
    avg_title_length: int = 0
    avg_description_length: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_ads": self.total_ads,
            "has_ads": self.has_ads,
            "ad_positions": list(self.ad_positions),
            "ad_domains": sorted(self.ad_domains),
            "has_sitelinks": self.has_sitelinks,
            "has_phone_number": self.has_phone_number,
            "avg_title_length": self.avg_title_length,
            "avg_description_length": self.avg_description_length,
        }


@dataclass(frozen=True)
class ExtractionResult:
    top_ads: tuple[AdRecord, ...] = ()
    bottom_ads: tuple[AdRecord, ...] = ()
    shopping_ads: tuple[ShoppingAdRecord, ...] = ()
    ad_params: dict[str, list[str]] = field(default_factory=dict)
    metrics: AdMetrics = field(default_factory=AdMetrics)
    markers_found: bool = False

    @classmethod
    def empty(cls) -> "ExtractionResult":
        return cls()

    @property
    def text_ads(self) -> tuple[AdRecord, ...]:
        return self.top_ads + self.bottom_ads

    @property
    def all_ads(self) -> tuple[AnyAdRecord, ...]:
        return (*self.top_ads, *self.bottom_ads, *self.shopping_ads)

    def to_dict(self) -> dict[str, Any]:
        return {
            "top_ads": [ad.to_dict() for ad in self.top_ads],
            "bottom_ads": [ad.to_dict() for ad in self.bottom_ads],
            "shopping_ads": [ad.to_dict() for ad in self.shopping_ads],
            "ad_params": {k: list(v) for k, v in self.ad_params.items()},
            "ad_metrics": self.metrics.to_dict(),
            "markers_found": self.markers_found,
        }


__all__ = ["AdGroup", "AdMetrics", "AdRecord", "AnyAdRecord", "ExtractionResult", "ShoppingAdRecord"]
