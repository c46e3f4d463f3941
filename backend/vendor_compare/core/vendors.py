from __future__ import annotations

import re
from typing import Any, Optional, Set

# Values models emit when they could not find a vendor name
PLACEHOLDER_VENDORS: Set[str] = {
    "",
    "-",
    "n/a",
    "na",
    "none",
    "null",
    "unknown",
    "unknown vendor",
    "vendor name",
}


def clean_vendor_name(vendor: Any) -> Optional[str]:
    """
    Normalize vendor strings coming back from extraction so:
      - "  Acme   Supply Co. " => "Acme Supply Co."
      - "Unknown", "N/A", "null" => None (caller falls back to the filename)
    """
    if not isinstance(vendor, str):
        return None

    s = re.sub(r"\s+", " ", vendor).strip()

    if s.lower() in PLACEHOLDER_VENDORS:
        return None
    return s
