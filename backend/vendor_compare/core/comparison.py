"""
Quote comparison across one upload batch.

normalize() turns a loosely-typed extraction record into something comparable,
compare() ranks the whole batch. Both are pure: records that failed extraction or
carry junk totals are excluded from the price statistics, never raised on.
"""
from __future__ import annotations

import logging
import math
from typing import Any, List, Optional, Sequence

from vendor_compare.schemas.quotes import (
    AnnotatedQuote,
    BestDeal,
    ComparableQuote,
    ComparisonResult,
    PriceComparison,
    RawExtractionRecord,
)

logger = logging.getLogger(__name__)


def _positive_amount(value: Any) -> Optional[float]:
    """
    Returns value as float if it is a real, finite number > 0, else None.
    Strings are not coerced here; the extractor does that before records are built.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        v = float(value)
    except OverflowError:
        # ints beyond float range
        return None
    if not math.isfinite(v) or v <= 0:
        return None
    return v


def _resolve_vendor(raw: RawExtractionRecord) -> str:
    if isinstance(raw.vendor, str) and raw.vendor.strip():
        return raw.vendor
    return raw.filename


def _resolve_total(raw: RawExtractionRecord) -> float:
    # total wins over subtotal; anything else is "no price"
    for candidate in (raw.total, raw.subtotal):
        amount = _positive_amount(candidate)
        if amount is not None:
            return amount
    return 0.0


def normalize(raw: RawExtractionRecord) -> ComparableQuote:
    total = _resolve_total(raw)
    return ComparableQuote(
        filename=raw.filename,
        vendor=_resolve_vendor(raw),
        total=total,
        is_valid=raw.error is None and total > 0,
    )


def _annotate(raw: RawExtractionRecord, is_best_deal: bool, savings: float) -> AnnotatedQuote:
    data = raw.model_dump()
    data.pop("isBestDeal", None)
    data["is_best_deal"] = is_best_deal
    data["savings"] = savings
    return AnnotatedQuote.model_validate(data)


def compare(raw_records: Sequence[RawExtractionRecord]) -> ComparisonResult:
    """
    Compares a complete batch of extraction records.

    - quotes keep input order, failed ones included (isBestDeal=False, savings=0)
    - statistics cover valid quotes only; all zeros and no bestDeal if none are valid
    - the first valid quote (input order) at the lowest total is the best deal
    """
    normalized = [normalize(r) for r in raw_records]
    valid = [q for q in normalized if q.is_valid]

    if not valid:
        logger.debug("No valid quotes among %d record(s)", len(normalized))
        return ComparisonResult(
            quotes=[_annotate(r, False, 0.0) for r in raw_records],
            comparison=PriceComparison(),
            best_deal=None,
        )

    totals = [q.total for q in valid]
    lowest = min(totals)
    highest = max(totals)
    comparison = PriceComparison(
        lowest_price=lowest,
        highest_price=highest,
        average_price=sum(totals) / len(totals),
        price_range=highest - lowest,
    )

    best_index = next(i for i, q in enumerate(normalized) if q.is_valid and q.total == lowest)

    quotes: List[AnnotatedQuote] = []
    for i, (raw, q) in enumerate(zip(raw_records, normalized)):
        savings = highest - q.total if q.is_valid else 0.0
        quotes.append(_annotate(raw, i == best_index, savings))

    best = normalized[best_index]
    best_deal = BestDeal(
        filename=best.filename,
        vendor=best.vendor,
        total=best.total,
        savings=highest - best.total,
    )

    logger.debug(
        "Compared %d record(s), %d valid; best=%s at %.2f",
        len(normalized), len(valid), best.vendor, best.total,
    )
    return ComparisonResult(quotes=quotes, comparison=comparison, best_deal=best_deal)
