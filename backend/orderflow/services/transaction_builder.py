"""Validate resolved document state and assemble immutable transaction payloads.

Builders never perform I/O and never emit a partial payload: a result carries
either a payload or the full list of violations (one per field or line, the
first failing rule within a line).
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from typing import Optional

from orderflow.core.config import get_settings
from orderflow.core.errors import StockInsufficientError, ValidationError
from orderflow.schemas.catalog import AttributeType, AttributeValue
from orderflow.schemas.transaction import (
    ImportSlipPayload,
    OrderPayload,
    PayloadLine,
    ProductPayload,
    Reason,
    ResolvedLine,
    TransactionPayload,
    UnitConversionSpec,
    Violation,
)

from .calculator import has_sufficient_stock, required_base_stock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildResult:
    """``Valid(payload)`` when ``violations`` is empty, otherwise ``Invalid(violations)``."""

    payload: Optional[TransactionPayload] = None
    violations: tuple[Violation, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.violations

    @property
    def is_pending(self) -> bool:
        """Only in-flight resolutions block the document."""
        return bool(self.violations) and all(v.reason == Reason.PENDING for v in self.violations)

    def violation_dicts(self) -> list[dict]:
        return [v.to_dict() for v in self.violations]

    def raise_for_violations(self) -> TransactionPayload:
        if self.is_valid:
            return self.payload
        violations = list(self.violations)
        for violation in violations:
            if violation.reason == Reason.STOCK_INSUFFICIENT:
                raise StockInsufficientError(
                    violations,
                    line=violation.field,
                    required=violation.required,
                    available=violation.available,
                )
        raise ValidationError(violations)


@dataclass(frozen=True)
class AttributeSelection:
    """One attribute line of a product draft as seen by the validator."""

    type: Optional[AttributeType] = None
    value: Optional[AttributeValue] = None
    value_text: str = field(default="", compare=False)


def _line_violation(
    idx: int,
    line: ResolvedLine,
    *,
    check_stock: bool,
    pending: Collection[str],
) -> Optional[Violation]:
    name = f"line{idx}"
    label = line.label or name
    if name in pending:
        return Violation(field=name, reason=Reason.PENDING, message=f"{label}: product is still resolving")
    if line.is_fetching_units:
        return Violation(field=name, reason=Reason.PENDING, message=f"{label}: units are still loading")
    if not line.product_id:
        return Violation(field=name, reason=Reason.MISSING_PRODUCT, message=f"{label}: no product selected")
    if not line.unit_conversion_id:
        return Violation(field=name, reason=Reason.MISSING_UNIT, message=f"{label} is missing a unit")
    if line.selected_unit() is None:
        return Violation(
            field=name,
            reason=Reason.UNIT_NOT_IN_PRODUCT,
            message=f"{label}: unit does not belong to the product",
        )
    if line.quantity is None:
        return Violation(field=name, reason=Reason.MISSING_QUANTITY, message=f"{label} is missing a quantity")
    if line.quantity <= 0:
        return Violation(field=name, reason=Reason.INVALID_QUANTITY, message=f"{label}: quantity must be positive")
    if line.unit_price is None:
        return Violation(field=name, reason=Reason.MISSING_PRICE, message=f"{label} is missing a price")
    if line.vat_percent is None:
        return Violation(field=name, reason=Reason.MISSING_VAT, message=f"{label} is missing VAT")
    if check_stock and not has_sufficient_stock(line):
        return Violation(
            field=name,
            reason=Reason.STOCK_INSUFFICIENT,
            message=f"{label}: out of stock",
            required=required_base_stock(line),
            available=line.inventory_base_quantity,
        )
    return None


def _required(name: str, pending: Collection[str]) -> Violation:
    """A missing field whose slot is still searching is not yet a failure."""
    return Violation(field=name, reason=Reason.PENDING if name in pending else Reason.REQUIRED)


def _validate_lines(
    counterparty_field: str,
    counterparty_id: Optional[str],
    lines: Sequence[ResolvedLine],
    *,
    check_stock: bool,
    pending: Collection[str],
) -> list[Violation]:
    violations: list[Violation] = []
    if not counterparty_id:
        violations.append(_required(counterparty_field, pending))
    if not lines:
        violations.append(Violation(field="lines", reason=Reason.REQUIRED, message="Add at least one line"))
    for idx, line in enumerate(lines):
        violation = _line_violation(idx, line, check_stock=check_stock, pending=pending)
        if violation is not None:
            violations.append(violation)
    return violations


def _payload_lines(lines: Sequence[ResolvedLine]) -> tuple[PayloadLine, ...]:
    return tuple(
        PayloadLine(
            product_id=line.product_id,
            unit_conversion_id=line.unit_conversion_id,
            quantity=line.quantity,
            unit_price=line.unit_price,
            vat_percent=line.vat_percent,
        )
        for line in lines
    )


def build_order(
    customer_id: Optional[str],
    lines: Sequence[ResolvedLine],
    *,
    delivery_type: Optional[str] = None,
    notes: Optional[str] = None,
    pending: Collection[str] = (),
) -> BuildResult:
    """*pending* names fields (``customer``, ``line0``, ...) whose search is still in flight."""
    violations = _validate_lines("customer", customer_id, lines, check_stock=True, pending=pending)
    if violations:
        logger.debug("Order invalid: %s", [v.to_dict() for v in violations])
        return BuildResult(violations=tuple(violations))
    payload = OrderPayload(
        customer_id=customer_id,
        lines=_payload_lines(lines),
        delivery_type=delivery_type or get_settings().default_delivery_type,
        notes=notes or None,
    )
    return BuildResult(payload=payload)


def build_import_slip(
    supplier_id: Optional[str],
    lines: Sequence[ResolvedLine],
    *,
    import_type: Optional[str] = None,
    pending: Collection[str] = (),
) -> BuildResult:
    violations = _validate_lines("supplier", supplier_id, lines, check_stock=False, pending=pending)
    if violations:
        logger.debug("Import slip invalid: %s", [v.to_dict() for v in violations])
        return BuildResult(violations=tuple(violations))
    payload = ImportSlipPayload(
        supplier_id=supplier_id,
        lines=_payload_lines(lines),
        import_type=import_type or get_settings().default_import_type,
    )
    return BuildResult(payload=payload)


def _unit_violation(idx: int, unit: UnitConversionSpec) -> Optional[Violation]:
    name = f"unit{idx}"
    if not unit.unit_name.strip():
        return Violation(field=name, reason=Reason.MISSING_NAME, message="Unit name is required")
    if unit.price is None:
        return Violation(field=name, reason=Reason.MISSING_PRICE, message=f"{unit.unit_name} is missing a price")
    if unit.conversion_factor is None or unit.conversion_factor <= 0:
        return Violation(
            field=name,
            reason=Reason.INVALID_CONVERSION_FACTOR,
            message=f"{unit.unit_name}: conversion factor must be positive",
        )
    return None


def _attribute_violation(
    idx: int,
    attribute: AttributeSelection,
    catalog_ids: Sequence[str],
    pending: Collection[str] = (),
) -> Optional[Violation]:
    name = f"attribute{idx}"
    if name in pending:
        return Violation(field=name, reason=Reason.PENDING, message="Attribute is still resolving")
    if (attribute.type is None) != (attribute.value is None):
        return Violation(
            field=name,
            reason=Reason.HALF_RESOLVED_ATTRIBUTE,
            message="Choose both an attribute type and a value, or neither",
        )
    if attribute.type is None:
        return None
    if attribute.value.type_id and attribute.value.type_id != attribute.type.id:
        return Violation(
            field=name,
            reason=Reason.ATTRIBUTE_TYPE_MISMATCH,
            message=f"{attribute.value.name} is not a value of {attribute.type.name}",
        )
    if attribute.type.catalog_ids and catalog_ids and not attribute.type.catalog_ids & set(catalog_ids):
        return Violation(
            field=name,
            reason=Reason.ATTRIBUTE_CATALOG_MISMATCH,
            message=f"{attribute.type.name} does not apply to the selected catalogs",
        )
    return None


def build_product(
    name: str,
    brand_id: Optional[str],
    catalog_ids: Sequence[str],
    unit_conversions: Sequence[UnitConversionSpec],
    attributes: Sequence[AttributeSelection] = (),
    *,
    pending: Collection[str] = (),
) -> BuildResult:
    violations: list[Violation] = []
    if not (name or "").strip():
        violations.append(Violation(field="name", reason=Reason.REQUIRED))
    if not brand_id:
        violations.append(_required("brand", pending))
    if not catalog_ids:
        violations.append(_required("catalogs", pending))

    if not unit_conversions:
        violations.append(Violation(field="units", reason=Reason.REQUIRED, message="Add at least one unit"))
    else:
        for idx, unit in enumerate(unit_conversions):
            violation = _unit_violation(idx, unit)
            if violation is not None:
                violations.append(violation)
        base_units = sum(1 for unit in unit_conversions if unit.conversion_factor == 1)
        if base_units != 1:
            violations.append(
                Violation(
                    field="units",
                    reason=Reason.BASE_UNIT_COUNT,
                    message=f"Exactly one unit must have conversion factor 1, found {base_units}",
                )
            )

    value_ids: list[str] = []
    for idx, attribute in enumerate(attributes):
        violation = _attribute_violation(idx, attribute, catalog_ids, pending)
        if violation is not None:
            violations.append(violation)
        elif attribute.value is not None and attribute.value.id not in value_ids:
            value_ids.append(attribute.value.id)

    if violations:
        logger.debug("Product invalid: %s", [v.to_dict() for v in violations])
        return BuildResult(violations=tuple(violations))

    payload = ProductPayload(
        name=name.strip(),
        brand_id=brand_id,
        catalog_ids=tuple(catalog_ids),
        attribute_value_ids=tuple(value_ids),
        unit_conversions=tuple(unit_conversions),
    )
    return BuildResult(payload=payload)
