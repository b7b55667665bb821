#!/usr/bin/env python3
"""CLI shim for the SERP job tracker."""
from __future__ import annotations

import sys

from serp_ads.cli import main

if __name__ == "__main__":
    sys.exit(main())
