"""Click-tracking parameter mining over raw SERP markup."""

from __future__ import annotations

import re
import urllib.parse
from typing import Callable

_VALUE = r"=([^&\"'\s]+)"


def _param_re(*spellings: str) -> re.Pattern[str]:
    return re.compile("(?:" + "|".join(re.escape(s) for s in spellings) + ")" + _VALUE)


# Output key -> (pattern, value transform). Synonymous spellings share one pattern
# so their occurrences come out interleaved in document order.
PARAMETERS: dict[str, tuple[re.Pattern[str], Callable[[str], str] | None]] = {
    "gclid": (_param_re("gclid"), None),
    "gclsrc": (_param_re("gclsrc"), None),
    "campaignId": (_param_re("campaignid", "campaign_id"), None),
    "adGroupId": (_param_re("adgroupid", "adgroup_id"), None),
    "creativeId": (_param_re("creative"), None),
    "keyword": (_param_re("keyword"), urllib.parse.unquote),
    "matchType": (_param_re("matchtype"), None),
    "network": (_param_re("network"), None),
    "device": (_param_re("device"), None),
    "adPosition": (_param_re("adposition"), None),
}


def mine_parameters(markup: str) -> dict[str, list[str]]:
    """Return every known tracking parameter value found in ``markup``.

    Values keep document order and are not de-duplicated. Keys with no
    occurrence are omitted rather than mapped to an empty list.
    """

    if not isinstance(markup, str) or not markup:
        return {}
    found: dict[str, list[str]] = {}
    for key, (pattern, transform) in PARAMETERS.items():
        values = [m.group(1) for m in pattern.finditer(markup)]
        if not values:
            continue
        found[key] = [transform(v) for v in values] if transform else values
    return found


__all__ = ["PARAMETERS", "mine_parameters"]
