"""Candidate document -> working lines / product seeds. Never resolves identities."""

from __future__ import annotations

import itertools
import logging
from typing import Optional, Union

from orderflow.core.errors import ExtractionUnclearError
from orderflow.schemas.extraction import (
    LINE_INTENTS,
    CandidateAttribute,
    CandidateDocument,
    CandidateLine,
    CandidateUnitConversion,
    Intent,
)
from orderflow.schemas.transaction import NormalizedProduct, ResolvedLine, UnitConversionSpec

logger = logging.getLogger(__name__)

_line_keys = itertools.count()


def next_line_key() -> str:
    return f"item-{next(_line_keys)}"


def _clean_text(value: Optional[str]) -> str:
    return (value or "").strip()


def _positive_or(value: Optional[float], default: float) -> float:
    if value is None or value <= 0:
        return default
    return value


def normalize_line(candidate: CandidateLine) -> ResolvedLine:
    vat = candidate.vat_percent if candidate.vat_percent is not None else 0
    unit_text = _clean_text(candidate.unit_name_text) or None
    name = _clean_text(candidate.item_name_text)
    return ResolvedLine(
        key=next_line_key(),
        item_name_text=name,
        unit_name_text=unit_text,
        initial_unit_price=candidate.unit_price,
        initial_vat_percent=vat,
        product_name=name,
        quantity=candidate.quantity,
        unit_price=candidate.unit_price,
        vat_percent=vat,
    )


def normalize_unit_conversion(candidate: CandidateUnitConversion) -> UnitConversionSpec:
    unit_name = _clean_text(candidate.unit_name)
    return UnitConversionSpec(
        unit_name=unit_name,
        conversion_factor=_positive_or(candidate.conversion_factor, 1),
        base_unit_name=_clean_text(candidate.base_unit_name) or unit_name,
        price=candidate.price if candidate.price is not None else 0,
        vat_percent=candidate.vat_percent if candidate.vat_percent is not None else 0,
    )


def normalize_product(doc: CandidateDocument) -> NormalizedProduct:
    product = doc.product
    if product is None:
        return NormalizedProduct()
    attributes = tuple(
        CandidateAttribute(type_name=_clean_text(attr.type_name), value_name=_clean_text(attr.value_name))
        for attr in product.attributes
        if _clean_text(attr.type_name)
    )
    return NormalizedProduct(
        name=_clean_text(product.name),
        brand_seed=_clean_text(product.brand_name),
        catalog_seed=_clean_text(product.catalog_name),
        attribute_seeds=attributes,
        unit_conversions=tuple(normalize_unit_conversion(unit) for unit in product.unit_conversions),
    )


def normalize(doc: CandidateDocument) -> Union[list[ResolvedLine], NormalizedProduct]:
    """Prepare working state for *doc* according to its intent."""
    if doc.intent in LINE_INTENTS:
        lines = [normalize_line(candidate) for candidate in doc.lines]
        logger.debug("Normalized %d candidate lines for %s", len(lines), doc.intent.value)
        return lines
    if doc.intent == Intent.CREATE_PRODUCT:
        return normalize_product(doc)
    raise ExtractionUnclearError("No structured data could be extracted from the capture")


def counterparty_seed(doc: CandidateDocument) -> str:
    return _clean_text(doc.counterparty_name)
