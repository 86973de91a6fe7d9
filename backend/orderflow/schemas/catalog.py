"""Canonical catalog records: read-only snapshots of the external store."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EntityKind(str, Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    BRAND = "brand"
    CATALOG = "catalog"
    ATTRIBUTE_TYPE = "attribute_type"
    ATTRIBUTE_VALUE = "attribute_value"
    PRODUCT = "product"


class CanonicalRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class UnitConversion(CanonicalRecord):
    """One sellable unit of a product; ``conversion_factor`` base units per unit."""

    product_id: Optional[str] = None
    conversion_factor: float = 1
    base_unit_name: str = ""
    price: float = 0
    vat_percent: Optional[float] = None

    @property
    def unit_name(self) -> str:
        return self.name

    @property
    def is_base_unit(self) -> bool:
        return self.conversion_factor == 1


class Customer(CanonicalRecord):
    phone_number: str = ""


class Supplier(CanonicalRecord):
    address: str = ""


class Brand(CanonicalRecord):
    pass


class Catalog(CanonicalRecord):
    pass


class AttributeType(CanonicalRecord):
    catalog_ids: frozenset[str] = frozenset()


class AttributeValue(CanonicalRecord):
    type_id: Optional[str] = None


class Product(CanonicalRecord):
    brand_id: Optional[str] = None
    catalog_ids: frozenset[str] = frozenset()
    attribute_value_ids: frozenset[str] = frozenset()
    inventory_base_quantity: Optional[float] = None
    unit_conversions: tuple[UnitConversion, ...] = Field(default_factory=tuple)

    @field_validator("inventory_base_quantity", mode="before")
    @classmethod
    def _blank_inventory(cls, v):
        if v == "":
            return None
        return v

    def base_unit(self) -> Optional[UnitConversion]:
        for unit in self.unit_conversions:
            if unit.is_base_unit:
                return unit
        return None


AnyRecord = Union[Customer, Supplier, Brand, Catalog, AttributeType, AttributeValue, Product]

RECORD_TYPES: dict[EntityKind, type[CanonicalRecord]] = {
    EntityKind.CUSTOMER: Customer,
    EntityKind.SUPPLIER: Supplier,
    EntityKind.BRAND: Brand,
    EntityKind.CATALOG: Catalog,
    EntityKind.ATTRIBUTE_TYPE: AttributeType,
    EntityKind.ATTRIBUTE_VALUE: AttributeValue,
    EntityKind.PRODUCT: Product,
}
