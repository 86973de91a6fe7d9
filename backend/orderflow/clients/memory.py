"""In-memory catalog and persistence gateways.

Deterministic stand-ins for the Teable tables and the backend API, used by the
test-suite and as an offline fallback when no table ids are configured.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterable, Mapping
from typing import Any, Optional

from orderflow.schemas.catalog import (
    RECORD_TYPES,
    AttributeType,
    AttributeValue,
    CanonicalRecord,
    EntityKind,
    Product,
    UnitConversion,
)
from orderflow.schemas.transaction import (
    ImportSlipPayload,
    OrderPayload,
    ProductPayload,
    TransactionPayload,
)

from .base import CatalogGateway, PersistenceGateway

logger = logging.getLogger(__name__)


class InMemoryCatalogGateway(CatalogGateway):
    def __init__(self, records: Optional[Iterable[CanonicalRecord]] = None) -> None:
        self._records: dict[EntityKind, list[CanonicalRecord]] = {kind: [] for kind in EntityKind}
        self._units: dict[str, list[UnitConversion]] = {}
        self._ids = itertools.count(1)
        self.search_log: list[tuple[EntityKind, str]] = []
        for record in records or ():
            self.add(record)

    def add(self, record: CanonicalRecord) -> CanonicalRecord:
        kind = _kind_of(record)
        self._records[kind].append(record)
        if isinstance(record, Product):
            for unit in record.unit_conversions:
                self.add_unit(unit.model_copy(update={"product_id": record.id}))
        return record

    def add_unit(self, unit: UnitConversion) -> UnitConversion:
        if not unit.product_id:
            raise ValueError("unit conversion needs a product_id")
        self._units.setdefault(unit.product_id, []).append(unit)
        return unit

    def set_inventory(self, product_id: str, quantity: Optional[float]) -> None:
        products = self._records[EntityKind.PRODUCT]
        for idx, product in enumerate(products):
            if product.id == product_id:
                products[idx] = product.model_copy(update={"inventory_base_quantity": quantity})
                return
        raise KeyError(product_id)

    def records(self, kind: EntityKind) -> list[CanonicalRecord]:
        return list(self._records[kind])

    async def search(
        self,
        kind: EntityKind,
        query: str,
        scope: Optional[Mapping[str, Any]] = None,
    ) -> list[CanonicalRecord]:
        self.search_log.append((kind, query))
        needle = (query or "").strip().casefold()
        results = []
        for record in self._records[kind]:
            if needle not in record.name.casefold():
                continue
            if not _in_scope(record, scope):
                continue
            results.append(record)
        return results

    async def create(self, kind: EntityKind, fields: Mapping[str, Any]) -> CanonicalRecord:
        data = dict(fields)
        name = str(data.pop("name", "") or "").strip()
        if not name:
            raise ValueError("name is required")
        record_id = f"{kind.value}-{next(self._ids)}"
        record = RECORD_TYPES[kind](id=record_id, name=name, **data)
        self._records[kind].append(record)
        logger.info("Created %s %s (%s)", kind.value, record_id, name)
        return record

    async def get_unit_conversions(self, product_id: str) -> list[UnitConversion]:
        return list(self._units.get(product_id, []))

    async def get_product(self, product_id: str) -> Optional[Product]:
        for record in self._records[EntityKind.PRODUCT]:
            if record.id == product_id:
                return record
        return None


class InMemoryPersistenceGateway(PersistenceGateway):
    """Records submitted payloads; product payloads are also added to *catalog*."""

    def __init__(self, catalog: Optional[InMemoryCatalogGateway] = None) -> None:
        self._catalog = catalog
        self._ids = itertools.count(1)
        self.submitted: list[TransactionPayload] = []

    async def submit(self, payload: TransactionPayload) -> str:
        self.submitted.append(payload)
        if isinstance(payload, OrderPayload):
            record_id = f"order-{next(self._ids)}"
        elif isinstance(payload, ImportSlipPayload):
            record_id = f"import-{next(self._ids)}"
        else:
            record_id = f"product-new-{next(self._ids)}"
            if self._catalog is not None:
                self._catalog.add(_product_from_payload(record_id, payload))
        return record_id


def _product_from_payload(record_id: str, payload: ProductPayload) -> Product:
    units = tuple(
        UnitConversion(
            id=f"{record_id}-u{idx}",
            name=spec.unit_name,
            product_id=record_id,
            conversion_factor=spec.conversion_factor or 1,
            base_unit_name=spec.base_unit_name,
            price=spec.price or 0,
            vat_percent=spec.vat_percent,
        )
        for idx, spec in enumerate(payload.unit_conversions)
    )
    return Product(
        id=record_id,
        name=payload.name,
        brand_id=payload.brand_id,
        catalog_ids=frozenset(payload.catalog_ids),
        attribute_value_ids=frozenset(payload.attribute_value_ids),
        unit_conversions=units,
    )


def _kind_of(record: CanonicalRecord) -> EntityKind:
    for kind, record_type in RECORD_TYPES.items():
        if type(record) is record_type:
            return kind
    raise TypeError(f"Unsupported record type {type(record).__name__}")


def _in_scope(record: CanonicalRecord, scope: Optional[Mapping[str, Any]]) -> bool:
    if not scope:
        return True
    if "catalog_ids" in scope and isinstance(record, AttributeType):
        if not record.catalog_ids & set(scope["catalog_ids"] or ()):
            return False
    if "type_id" in scope and isinstance(record, AttributeValue):
        if record.type_id != scope["type_id"]:
            return False
    return True
