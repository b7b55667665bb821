"""Ad extraction: container finders, record parsing and metrics."""

from .engine import AD_MARKERS, UNKNOWN_DOMAIN, ExtractionEngine, extract, has_ad_markers
from .finders import (
    SHOPPING_AD_FINDER,
    TEXT_AD_FINDER,
    ContainerFinder,
    ContainerSpan,
    FallbackRule,
    PatternFinder,
    StructuralRule,
)
from .metrics import compute_metrics
from .models import AdGroup, AdMetrics, AdRecord, ExtractionResult, ShoppingAdRecord

__all__ = [
    "AD_MARKERS",
    "AdGroup",
    "AdMetrics",
    "AdRecord",
    "ContainerFinder",
    "ContainerSpan",
    "ExtractionEngine",
    "ExtractionResult",
    "FallbackRule",
    "PatternFinder",
    "SHOPPING_AD_FINDER",
    "ShoppingAdRecord",
    "StructuralRule",
    "TEXT_AD_FINDER",
    "UNKNOWN_DOMAIN",
    "compute_metrics",
    "extract",
    "has_ad_markers",
]
