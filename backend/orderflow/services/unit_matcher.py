"""Deterministic mapping of a spoken unit name onto a product's unit conversions."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Optional

from orderflow.schemas.catalog import UnitConversion


def _fold(value: str) -> str:
    return value.strip().casefold()


def match_unit(units: Sequence[UnitConversion], spoken_name: Optional[str]) -> Optional[UnitConversion]:
    """Return the best unit for *spoken_name* or ``None`` when it stays unresolved.

    Exact (case-insensitive, trimmed) name match wins. Otherwise units whose
    name contains the spoken token are candidates; the shortest name wins and
    equal lengths keep the order of *units*. No fuzzy matching.
    """
    if not spoken_name or not units:
        return None
    needle = _fold(spoken_name)
    if not needle:
        return None

    for unit in units:
        if _fold(unit.name) == needle:
            return unit

    contains = [unit for unit in units if needle in _fold(unit.name)]
    if not contains:
        return None
    # sorted() is stable, so equal-length names keep catalog order.
    return sorted(contains, key=lambda unit: len(unit.name.strip()))[0]
