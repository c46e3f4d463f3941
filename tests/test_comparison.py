"""
test_comparison.py — Tests for quote normalization and batch comparison.

Pure logic, no network, no Gemini. Covers the resolution rules for vendor and
total, the partial / total failure cases, tie-breaking and the price statistics.

Run with:
    python -m pytest tests/test_comparison.py -v
"""

from __future__ import annotations

import math

from vendor_compare.core.comparison import compare, normalize
from vendor_compare.schemas.quotes import RawExtractionRecord


def _rec(filename: str = "quote.pdf", **kw) -> RawExtractionRecord:
    return RawExtractionRecord(filename=filename, **kw)


# ── normalize ─────────────────────────────────────────────────────────────

def test_normalize_uses_total_when_present():
    q = normalize(_rec(vendor="Acme", subtotal=90, total=100))
    assert q.vendor == "Acme"
    assert q.total == 100
    assert q.is_valid


def test_normalize_falls_back_to_subtotal():
    """Scenario 4: missing total resolves through subtotal."""
    q = normalize(_rec(vendor="A", subtotal=100))
    assert q.total == 100
    assert q.is_valid


def test_normalize_invalid_total_falls_back_to_subtotal():
    for bad in (0, -5, "250", float("nan"), float("inf"), True, None):
        q = normalize(_rec(subtotal=80, total=bad))
        assert q.total == 80, f"total={bad!r} should fall through to subtotal"


def test_normalize_no_usable_amount_is_invalid():
    for bad in (None, 0, -1, "abc", [], {}):
        q = normalize(_rec(total=bad, subtotal=bad))
        assert q.total == 0
        assert not q.is_valid


def test_normalize_error_marks_invalid_even_with_total():
    q = normalize(_rec(total=300, error="parse failed"))
    assert q.total == 300
    assert not q.is_valid


def test_normalize_vendor_falls_back_to_filename():
    """Scenario 6: empty vendor name resolves to the filename."""
    assert normalize(_rec("quote3.pdf", vendor="", total=400)).vendor == "quote3.pdf"
    assert normalize(_rec("quote3.pdf", vendor="   ", total=400)).vendor == "quote3.pdf"
    assert normalize(_rec("quote3.pdf", total=400)).vendor == "quote3.pdf"


# ── compare: scenarios ────────────────────────────────────────────────────

def test_two_valid_quotes():
    """Scenario 1."""
    result = compare([
        _rec("a.pdf", vendor="A", total=250),
        _rec("b.pdf", vendor="B", total=300),
    ])
    assert result.best_deal is not None
    assert result.best_deal.vendor == "A"
    assert result.best_deal.total == 250
    assert result.best_deal.savings == 50

    c = result.comparison
    assert (c.lowest_price, c.highest_price, c.average_price, c.price_range) == (250, 300, 275, 50)

    assert [q.is_best_deal for q in result.quotes] == [True, False]
    assert [q.savings for q in result.quotes] == [50, 0]


def test_one_valid_one_failed():
    """Scenario 2: the failed file stays in the output with no savings."""
    result = compare([
        _rec("a.pdf", vendor="A", total=250),
        _rec("b.pdf", vendor="B", error="parse failed"),
    ])
    assert result.best_deal.vendor == "A"
    assert result.best_deal.total == 250
    assert result.best_deal.savings == 0

    b = result.quotes[1]
    assert b.vendor == "B"
    assert b.error == "parse failed"
    assert b.is_best_deal is False
    assert b.savings == 0


def test_all_failed():
    """Scenario 3: not an error, just no best deal."""
    result = compare([
        _rec("a.pdf", vendor="A", error="x"),
        _rec("b.pdf", vendor="B", error="y"),
    ])
    assert result.best_deal is None
    c = result.comparison
    assert c.lowest_price == c.highest_price == c.average_price == c.price_range == 0
    assert all(not q.is_best_deal and q.savings == 0 for q in result.quotes)
    assert len(result.quotes) == 2


def test_single_quote_from_subtotal():
    """Scenario 4: degenerate one-file batch."""
    result = compare([_rec("a.pdf", vendor="A", subtotal=100)])
    c = result.comparison
    assert c.lowest_price == c.highest_price == 100
    assert c.price_range == 0
    assert result.best_deal.total == 100
    assert result.best_deal.savings == 0
    assert result.quotes[0].savings == 0
    assert result.quotes[0].is_best_deal


def test_tie_goes_to_first_in_input_order():
    """Scenario 5."""
    result = compare([
        _rec("b.pdf", vendor="B", total=200),
        _rec("a.pdf", vendor="A", total=200),
    ])
    assert result.best_deal.vendor == "B"
    assert [q.is_best_deal for q in result.quotes] == [True, False]


def test_best_deal_uses_resolved_vendor():
    """Scenario 6 through compare."""
    result = compare([
        _rec("quote3.pdf", vendor="", total=400),
        _rec("quote4.pdf", vendor="Other", total=500),
    ])
    assert result.best_deal.vendor == "quote3.pdf"
    assert result.best_deal.filename == "quote3.pdf"
    # raw vendor is echoed unchanged on the annotated quote
    assert result.quotes[0].vendor == ""


def test_empty_batch():
    result = compare([])
    assert result.quotes == []
    assert result.best_deal is None
    assert result.comparison.price_range == 0


# ── compare: properties ───────────────────────────────────────────────────

MIXED_BATCH = [
    dict(filename="1.pdf", vendor="North", total=1200.5),
    dict(filename="2.pdf", vendor="South", total=0),
    dict(filename="3.pdf", vendor="East", subtotal=980.25),
    dict(filename="4.pdf", vendor="West", total=-10),
    dict(filename="5.pdf", vendor="Err", total=50, error="timeout"),
    dict(filename="6.pdf", vendor="Mid", total=1100),
    dict(filename="3.pdf", vendor="East again", total="n/a"),
]


def test_order_and_length_preserved():
    records = [RawExtractionRecord(**d) for d in MIXED_BATCH]
    result = compare(records)
    assert len(result.quotes) == len(records)
    assert [q.filename for q in result.quotes] == [r.filename for r in records]
    assert [q.vendor for q in result.quotes] == [r.vendor for r in records]


def test_average_ignores_invalid_records():
    result = compare([RawExtractionRecord(**d) for d in MIXED_BATCH])
    valid_totals = [1200.5, 980.25, 1100]
    assert math.isclose(result.comparison.average_price, sum(valid_totals) / 3)
    assert result.comparison.lowest_price == 980.25
    assert result.comparison.highest_price == 1200.5
    assert math.isclose(result.comparison.price_range, 1200.5 - 980.25)


def test_savings_bounds_and_invalid_zero():
    result = compare([RawExtractionRecord(**d) for d in MIXED_BATCH])
    pr = result.comparison.price_range
    valid_names = {"North", "East", "Mid"}
    for q in result.quotes:
        if q.vendor in valid_names:
            assert 0 <= q.savings <= pr
        else:
            assert q.savings == 0
            assert q.is_best_deal is False

    # the most expensive valid quote saves nothing
    north = next(q for q in result.quotes if q.vendor == "North")
    assert north.savings == 0


def test_exactly_one_best_deal_matching_lowest():
    result = compare([RawExtractionRecord(**d) for d in MIXED_BATCH])
    flagged = [q for q in result.quotes if q.is_best_deal]
    assert len(flagged) == 1
    assert flagged[0].vendor == "East"
    assert result.best_deal.total == result.comparison.lowest_price


def test_input_records_are_not_mutated():
    records = [_rec("a.pdf", vendor="A", total=10), _rec("b.pdf", vendor="B", total=20)]
    before = [r.model_dump() for r in records]
    compare(records)
    assert [r.model_dump() for r in records] == before


def test_extra_fields_pass_through():
    result = compare([
        _rec("a.pdf", vendor="A", total=10, currency="USD", items=[{"description": "Bolts", "unitPrice": 2.5}]),
        _rec("b.pdf", vendor="B", total=20, notes="net 30"),
    ])
    a, b = result.quotes
    assert a.currency == "USD"
    assert a.items[0].unit_price == 2.5
    assert b.model_dump()["notes"] == "net 30"


def test_wire_format_is_camel_case():
    result = compare([_rec("a.pdf", vendor="A", total=10), _rec("b.pdf", vendor="B", total=30)])
    data = result.model_dump(by_alias=True)
    assert set(data) == {"quotes", "comparison", "bestDeal"}
    assert set(data["comparison"]) == {"lowestPrice", "highestPrice", "averagePrice", "priceRange"}
    assert data["quotes"][0]["isBestDeal"] is True
    assert data["bestDeal"] == {"filename": "a.pdf", "vendor": "A", "total": 10, "savings": 20}


def test_normalize_int_beyond_float_range_is_invalid():
    """Huge integer totals can't become floats; they fall through like any bad value."""
    q = normalize(_rec(total=10**400, subtotal=5))
    assert q.total == 5
    assert q.is_valid

    q = normalize(_rec(total=10**400, subtotal=-(10**400)))
    assert q.total == 0
    assert not q.is_valid


def test_compare_survives_huge_integer_total():
    result = compare([
        _rec("a.pdf", vendor="A", total=10**400),
        _rec("b.pdf", vendor="B", total=40),
    ])
    assert result.best_deal.vendor == "B"
    assert result.quotes[0].savings == 0
    assert result.quotes[0].is_best_deal is False
