"""Line/document money totals and base-unit stock checks (pure, no I/O)."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional

from orderflow.schemas.transaction import ResolvedLine


@dataclass(frozen=True)
class DocumentTotals:
    before_vat: float
    vat: float
    after_vat: float


def line_subtotal(line: ResolvedLine) -> float:
    return (line.quantity or 0) * (line.unit_price or 0)


def line_vat_amount(line: ResolvedLine) -> float:
    return line_subtotal(line) * ((line.vat_percent or 0) / 100)


def document_totals(lines: Iterable[ResolvedLine]) -> DocumentTotals:
    before_vat = 0.0
    vat = 0.0
    for line in lines:
        before_vat += line_subtotal(line)
        vat += line_vat_amount(line)
    return DocumentTotals(before_vat=before_vat, vat=vat, after_vat=before_vat + vat)


def required_base_stock(line: ResolvedLine) -> float:
    """Base units consumed by *line*. Factor 1 until a unit is selected (display only)."""
    unit = line.selected_unit()
    factor = unit.conversion_factor if unit else 1
    return (line.quantity or 0) * factor


def has_sufficient_stock(line: ResolvedLine) -> bool:
    """Unknown inventory counts as unconstrained."""
    inventory = line.inventory_base_quantity
    if not isinstance(inventory, (int, float)) or isinstance(inventory, bool):
        return True
    return required_base_stock(line) <= inventory


def format_currency(value: Optional[float]) -> str:
    """``58000 -> "58.000 VND"``; missing values render as ``"0 VND"``."""
    if value is None or value != value:
        return "0 VND"
    rounded = round(float(value), 2)
    if rounded.is_integer():
        body = f"{int(rounded):,}".replace(",", ".")
    else:
        whole, _, frac = f"{rounded:,.2f}".partition(".")
        body = f"{whole.replace(',', '.')},{frac.rstrip('0')}"
    return f"{body} VND"
