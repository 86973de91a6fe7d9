"""Working lines, validation violations and the immutable transaction payloads."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .catalog import UnitConversion
from .extraction import CandidateAttribute


class ResolvedLine(BaseModel):
    """Mutable working state of one order/import line, owned by a draft."""

    key: str
    item_name_text: str = ""
    unit_name_text: Optional[str] = None
    initial_unit_price: Optional[float] = None
    initial_vat_percent: Optional[float] = None

    product_id: Optional[str] = None
    product_name: str = ""
    available_units: list[UnitConversion] = Field(default_factory=list)
    unit_conversion_id: Optional[str] = None
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    vat_percent: Optional[float] = None
    inventory_base_quantity: Optional[float] = None
    is_fetching_units: bool = False

    def selected_unit(self) -> Optional[UnitConversion]:
        if not self.unit_conversion_id:
            return None
        for unit in self.available_units:
            if unit.id == self.unit_conversion_id:
                return unit
        return None

    @property
    def label(self) -> str:
        return self.product_name or self.item_name_text


class UnitConversionSpec(BaseModel):
    """A unit conversion declared for a product that does not exist yet."""

    model_config = ConfigDict(frozen=True)

    unit_name: str = ""
    conversion_factor: Optional[float] = 1
    base_unit_name: str = ""
    price: Optional[float] = 0
    vat_percent: Optional[float] = 0

    def to_api(self) -> dict[str, Any]:
        return {
            "name_unit": self.unit_name,
            "conversion_factor": self.conversion_factor,
            "unit_default": self.base_unit_name,
            "price": self.price,
            "vat": self.vat_percent,
        }


class NormalizedProduct(BaseModel):
    """Search seeds and cleaned unit conversions for a product-creation document."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    brand_seed: str = ""
    catalog_seed: str = ""
    attribute_seeds: tuple[CandidateAttribute, ...] = Field(default_factory=tuple)
    unit_conversions: tuple[UnitConversionSpec, ...] = Field(default_factory=tuple)


class Reason(str, Enum):
    REQUIRED = "Required"
    PENDING = "Pending"
    MISSING_PRODUCT = "MissingProduct"
    MISSING_UNIT = "MissingUnit"
    UNIT_NOT_IN_PRODUCT = "UnitNotInProduct"
    MISSING_QUANTITY = "MissingQuantity"
    INVALID_QUANTITY = "InvalidQuantity"
    MISSING_PRICE = "MissingPrice"
    MISSING_VAT = "MissingVat"
    STOCK_INSUFFICIENT = "StockInsufficient"
    MISSING_NAME = "MissingName"
    INVALID_CONVERSION_FACTOR = "InvalidConversionFactor"
    BASE_UNIT_COUNT = "BaseUnitCount"
    HALF_RESOLVED_ATTRIBUTE = "HalfResolvedAttribute"
    ATTRIBUTE_TYPE_MISMATCH = "AttributeTypeMismatch"
    ATTRIBUTE_CATALOG_MISMATCH = "AttributeCatalogMismatch"


class Violation(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    reason: Reason
    message: str = ""
    required: Optional[float] = None
    available: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"field": self.field, "reason": self.reason.value}
        if self.required is not None:
            data["required"] = self.required
        if self.available is not None:
            data["available"] = self.available
        return data


class PayloadLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    unit_conversion_id: str
    quantity: float
    unit_price: float
    vat_percent: float

    def to_api(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "unit_conversions_id": self.unit_conversion_id,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "vat": self.vat_percent,
        }


class OrderPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    customer_id: str
    lines: tuple[PayloadLine, ...]
    delivery_type: str = ""
    notes: Optional[str] = None

    def to_api_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "customer_id": self.customer_id,
            "order_details": [line.to_api() for line in self.lines],
            "delivery_type": self.delivery_type,
        }
        if self.notes:
            payload["notes"] = self.notes
        return payload


class ImportSlipPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    supplier_id: str
    lines: tuple[PayloadLine, ...]
    import_type: str = ""

    def to_api_payload(self) -> dict[str, Any]:
        return {
            "supplier_id": self.supplier_id,
            "import_type": self.import_type,
            "import_slip_details": [line.to_api() for line in self.lines],
        }


class ProductPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    brand_id: str
    catalog_ids: tuple[str, ...]
    attribute_value_ids: tuple[str, ...] = ()
    unit_conversions: tuple[UnitConversionSpec, ...]

    def to_api_payload(self) -> dict[str, Any]:
        return {
            "product_name": self.name,
            "brand": {"id": self.brand_id},
            "catalogs": [{"id": cid} for cid in self.catalog_ids],
            "attributes": [{"id": vid} for vid in self.attribute_value_ids],
            "unit_conversions": [unit.to_api() for unit in self.unit_conversions],
        }


TransactionPayload = Union[OrderPayload, ProductPayload, ImportSlipPayload]
