"""Pipeline version resolution helpers."""

from __future__ import annotations

import os

PACKAGE_VERSION = "2025.06.1"


def get_pipeline_version(component: str, version: str = PACKAGE_VERSION) -> str:
    """Return ``component:version`` unless ``SERP_ADS_VERSION`` overrides it."""

    return os.getenv("SERP_ADS_VERSION", f"{component}:{version}")


__all__ = ["PACKAGE_VERSION", "get_pipeline_version"]
