"""Unit matcher: exact match first, then shortest contains-match, never fuzzy."""

import pytest

from orderflow.schemas.catalog import UnitConversion
from orderflow.services.unit_matcher import match_unit


def _units(*pairs):
    return [
        UnitConversion(id=f"u{idx}", name=name, conversion_factor=factor)
        for idx, (name, factor) in enumerate(pairs)
    ]


def test_exact_match_is_case_insensitive():
    units = _units(("Chai", 1), ("Lốc", 6), ("Thùng", 72))
    assert match_unit(units, "lốc").name == "Lốc"


def test_exact_match_ignores_surrounding_whitespace():
    units = _units(("Chai", 1), ("Lốc", 6))
    assert match_unit(units, "  CHAI ").name == "Chai"


def test_shortest_contains_match_wins():
    units = _units(("Thùng 24 lon", 24), ("Lon", 1))
    assert match_unit(units, "lon").name == "Lon"


def test_contains_match_without_exact_hit():
    units = _units(("Thùng 24 lon", 24), ("Lốc 6 lon", 6), ("Chai", 1))
    assert match_unit(units, "lon").name == "Lốc 6 lon"


def test_equal_length_tie_keeps_catalog_order():
    units = _units(("Hộp A", 1), ("Hộp B", 10))
    assert match_unit(units, "hộp").id == "u0"
    assert match_unit(list(reversed(units)), "hộp").id == "u1"


def test_no_match_returns_none():
    units = _units(("Chai", 1), ("Lốc", 6), ("Thùng", 72))
    assert match_unit(units, "hộp") is None


@pytest.mark.parametrize("spoken", [None, "", "   "])
def test_empty_spoken_name(spoken):
    assert match_unit(_units(("Chai", 1)), spoken) is None


def test_empty_units():
    assert match_unit([], "chai") is None


def test_deterministic_and_member_of_input():
    units = _units(("Lon", 1), ("Thùng 24 lon", 24), ("Lốc 6 lon", 6))
    first = match_unit(units, "lon")
    for _ in range(5):
        assert match_unit(units, "lon") is first
    assert first in units
