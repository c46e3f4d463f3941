from __future__ import annotations

import math
import re
from typing import Any, Optional

_NUMBER_RE = re.compile(r"-?\d[\d,]*\.?\d*")
_EXPONENT_RE = re.compile(r"-?\d+(?:\.\d+)?[eE][+\-]?\d+")


def _finite(num: Any) -> Optional[float]:
    try:
        v = float(num)
    except (OverflowError, ValueError):
        return None
    return v if math.isfinite(v) else None


def parse_amount(value: Any) -> Optional[float]:
    """
    Converts extractor output like 599.99, "$599.99", "USD 1,402.58", "-$25.00", "1.5e3" to float.
    Returns None if not parseable or not finite. Sign is kept so negative amounts stay negative.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _finite(value)

    s = str(value)
    m = _EXPONENT_RE.search(s)
    if m:
        return _finite(m.group(0))

    s = re.sub(r"[^\d.,\-]", "", s)
    m = _NUMBER_RE.search(s)
    if not m:
        return None
    return _finite(m.group(0).replace(",", "").rstrip("."))
