"""Explicit document drafts driven by the host form.

A draft owns the resolver slots and working lines for one document. It seeds
them from a ``CandidateDocument``, applies unit/pricing rules when a product
is chosen and hands the resolved state to the transaction builder.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any, Optional, Union

from orderflow.clients.base import CatalogGateway, PersistenceGateway
from orderflow.core.errors import ExtractionUnclearError, TransientSearchError
from orderflow.schemas.catalog import CanonicalRecord, EntityKind, Product, UnitConversion
from orderflow.schemas.extraction import CandidateDocument, Intent
from orderflow.schemas.transaction import NormalizedProduct, ResolvedLine, UnitConversionSpec

from .calculator import DocumentTotals, document_totals
from .normalizer import counterparty_seed, next_line_key, normalize
from .resolver import DependencyGraph, ResolverSlot
from .transaction_builder import (
    AttributeSelection,
    BuildResult,
    build_import_slip,
    build_order,
    build_product,
)
from .unit_matcher import match_unit

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class Draft(abc.ABC):
    intent: Intent

    @abc.abstractmethod
    def build(self) -> BuildResult:
        """Validate the current state. Empty fields still being searched come back as ``Pending``."""

    @abc.abstractmethod
    def slots(self) -> list[ResolverSlot]:
        """Every resolver slot owned by the draft."""

    def close(self) -> None:
        """Supersede all searches still running for this draft."""
        for slot in self.slots():
            slot.invalidate()

    async def submit(self, persistence: PersistenceGateway) -> str:
        """Validate and persist. Raises ``ValidationError`` without calling *persistence*."""
        payload = self.build().raise_for_violations()
        record_id = await persistence.submit(payload)
        logger.info("Submitted %s as %s", self.intent.value, record_id)
        return record_id


class LineDraft:
    """A working line plus the product slot that resolves it."""

    def __init__(self, line: ResolvedLine) -> None:
        self.line = line
        self.product: Optional[ResolverSlot] = None
        self.unit_error: Optional[TransientSearchError] = None
        self._unit_seq = 0

    @property
    def key(self) -> str:
        return self.line.key


class LinesDraft(Draft):
    """Shared behaviour of order and import-slip drafts."""

    counterparty_kind: EntityKind
    _auto_pick_single_unit = False

    def __init__(self, gateway: CatalogGateway, *, debounce_seconds: Optional[float] = None) -> None:
        self._gateway = gateway
        self._debounce = debounce_seconds
        self.counterparty = ResolverSlot(self.counterparty_kind, gateway, debounce_seconds=debounce_seconds)
        self.line_drafts: list[LineDraft] = []

    @property
    def lines(self) -> list[ResolvedLine]:
        return [ld.line for ld in self.line_drafts]

    def get(self, key: str) -> LineDraft:
        for ld in self.line_drafts:
            if ld.key == key:
                return ld
        raise KeyError(key)

    def _attach(self, line: ResolvedLine) -> LineDraft:
        ld = LineDraft(line)

        async def on_product(record: CanonicalRecord) -> None:
            await self._apply_product(ld, record)

        ld.product = ResolverSlot(
            EntityKind.PRODUCT,
            self._gateway,
            on_select=on_product,
            debounce_seconds=self._debounce,
            label=f"product:{line.key}",
        )
        ld.product.query = line.item_name_text
        ld.product.subscribe(lambda slot: self._product_changed(ld, slot))
        self.line_drafts.append(ld)
        return ld

    async def seed(self, document: CandidateDocument) -> None:
        """Search the counterparty and every line's product concurrently."""
        if document.intent != self.intent:
            raise ValueError(f"{type(self).__name__} cannot be seeded from intent {document.intent.value}")
        for line in normalize(document):
            self._attach(line)
        searches = [self.counterparty.search_now(counterparty_seed(document))]
        searches.extend(ld.product.search_now(ld.line.item_name_text) for ld in self.line_drafts)
        await asyncio.gather(*searches)

    # -- product / unit --------------------------------------------------

    async def select_product(self, key: str, product: CanonicalRecord) -> None:
        await self.get(key).product.choose(product)

    def _product_changed(self, ld: LineDraft, slot: ResolverSlot) -> None:
        if slot.selected is not None:
            return
        ld._unit_seq += 1
        line = ld.line
        line.product_id = None
        line.available_units = []
        line.unit_conversion_id = None
        line.inventory_base_quantity = None
        line.is_fetching_units = False

    async def _apply_product(self, ld: LineDraft, record: CanonicalRecord) -> None:
        ld._unit_seq += 1
        seq = ld._unit_seq
        line = ld.line
        line.product_id = record.id
        line.product_name = record.name
        line.available_units = []
        line.unit_conversion_id = None
        line.inventory_base_quantity = None
        line.is_fetching_units = True
        ld.unit_error = None

        try:
            units, snapshot = await asyncio.gather(
                self._gateway.get_unit_conversions(record.id),
                self._gateway.get_product(record.id),
            )
        except TransientSearchError as exc:
            if seq == ld._unit_seq:
                logger.warning("Could not load units for %s: %s", record.name, exc)
                ld.unit_error = exc
                line.is_fetching_units = False
            return

        if seq != ld._unit_seq:
            logger.debug("Discarding stale unit fetch for line %s", line.key)
            return

        line.available_units = list(units)
        if snapshot is not None:
            line.inventory_base_quantity = snapshot.inventory_base_quantity
        line.is_fetching_units = False

        unit = match_unit(line.available_units, line.unit_name_text)
        if unit is None and self._auto_pick_single_unit and len(line.available_units) == 1:
            unit = line.available_units[0]
        if unit is not None:
            self._apply_unit(line, unit)

    @abc.abstractmethod
    def _apply_unit(self, line: ResolvedLine, unit: UnitConversion) -> None:
        """Copy the unit (and whatever pricing the document takes from it) onto *line*."""

    def set_unit(self, key: str, unit_id: str) -> None:
        line = self.get(key).line
        for unit in line.available_units:
            if unit.id == unit_id:
                self._apply_unit(line, unit)
                return
        raise ValueError(f"Unit {unit_id} does not belong to {line.label}")

    # -- editing ---------------------------------------------------------

    def update_line(
        self,
        key: str,
        *,
        quantity: Optional[float] = _UNSET,
        unit_price: Optional[float] = _UNSET,
        vat_percent: Optional[float] = _UNSET,
    ) -> ResolvedLine:
        line = self.get(key).line
        if quantity is not _UNSET:
            line.quantity = quantity
        if unit_price is not _UNSET:
            line.unit_price = unit_price
        if vat_percent is not _UNSET:
            line.vat_percent = vat_percent
        return line

    def add_line(self) -> LineDraft:
        return self._attach(ResolvedLine(key=next_line_key(), quantity=1, unit_price=0, vat_percent=0))

    def remove_line(self, key: str) -> None:
        ld = self.get(key)
        ld._unit_seq += 1
        ld.product.invalidate()
        self.line_drafts.remove(ld)

    def totals(self) -> DocumentTotals:
        return document_totals(self.lines)

    def slots(self) -> list[ResolverSlot]:
        return [self.counterparty, *(ld.product for ld in self.line_drafts)]

    def close(self) -> None:
        for ld in self.line_drafts:
            ld._unit_seq += 1
        super().close()

    def _pending_fields(self) -> set[str]:
        pending = {f"line{idx}" for idx, ld in enumerate(self.line_drafts) if ld.product.is_pending}
        if self.counterparty.is_pending:
            pending.add(self.counterparty_kind.value)
        return pending


class OrderDraft(LinesDraft):
    intent = Intent.CREATE_ORDER
    counterparty_kind = EntityKind.CUSTOMER

    def __init__(self, gateway: CatalogGateway, *, debounce_seconds: Optional[float] = None) -> None:
        super().__init__(gateway, debounce_seconds=debounce_seconds)
        self.delivery_type: Optional[str] = None
        self.notes: Optional[str] = None

    def _apply_unit(self, line: ResolvedLine, unit: UnitConversion) -> None:
        # sale price and VAT come from the catalog unit
        line.unit_conversion_id = unit.id
        line.unit_price = unit.price
        if unit.vat_percent is not None:
            line.vat_percent = unit.vat_percent

    def build(self) -> BuildResult:
        return build_order(
            self.counterparty.selected_id,
            self.lines,
            delivery_type=self.delivery_type,
            notes=self.notes,
            pending=self._pending_fields(),
        )


class ImportSlipDraft(LinesDraft):
    intent = Intent.CREATE_IMPORT_SLIP
    counterparty_kind = EntityKind.SUPPLIER

    def __init__(self, gateway: CatalogGateway, *, debounce_seconds: Optional[float] = None) -> None:
        super().__init__(gateway, debounce_seconds=debounce_seconds)
        self.import_type: Optional[str] = None

    def _apply_unit(self, line: ResolvedLine, unit: UnitConversion) -> None:
        # dictated cost price stays; VAT falls back to the dictated rate
        line.unit_conversion_id = unit.id
        if unit.vat_percent is not None:
            line.vat_percent = unit.vat_percent
        elif line.initial_vat_percent is not None:
            line.vat_percent = line.initial_vat_percent

    def build(self) -> BuildResult:
        return build_import_slip(
            self.counterparty.selected_id,
            self.lines,
            import_type=self.import_type,
            pending=self._pending_fields(),
        )


class ImportSlipForNewProductDraft(ImportSlipDraft):
    """One-line import slip for a product that was just created."""

    _auto_pick_single_unit = True

    async def start(self, product: Union[Product, str], *, supplier_name: str = "") -> LineDraft:
        if isinstance(product, str):
            record = await self._gateway.get_product(product)
            if record is None:
                raise KeyError(product)
            product = record
        ld = self.add_line()
        ld.product.query = product.name
        searches = [ld.product.choose(product)]
        if supplier_name.strip():
            searches.append(self.counterparty.search_now(supplier_name))
        await asyncio.gather(*searches)
        return ld


class AttributeLineDraft:
    """Attribute type slot scoped by the product's catalogs; value slot scoped by the type."""

    def __init__(
        self,
        gateway: CatalogGateway,
        catalogs: ResolverSlot,
        graph: DependencyGraph,
        *,
        debounce_seconds: Optional[float] = None,
    ) -> None:
        self._catalogs = catalogs
        self._graph = graph
        self.type = ResolverSlot(
            EntityKind.ATTRIBUTE_TYPE,
            gateway,
            scope=self._type_scope,
            on_select=self._type_chosen,
            debounce_seconds=debounce_seconds,
        )
        self.value = ResolverSlot(
            EntityKind.ATTRIBUTE_VALUE,
            gateway,
            scope=self._value_scope,
            debounce_seconds=debounce_seconds,
        )
        graph.add_edge(catalogs, self.type)
        graph.add_edge(self.type, self.value)

    def _type_scope(self):
        if not self._catalogs.selected_ids:
            return None
        return {"catalog_ids": self._catalogs.selected_ids}

    def _value_scope(self):
        if self.type.selected_id is None:
            return None
        return {"type_id": self.type.selected_id}

    async def _type_chosen(self, record: CanonicalRecord) -> None:
        if self.value.query.strip():
            await self.value.search_now()

    async def create_type(self, name: str) -> CanonicalRecord:
        if not self._catalogs.selected_ids:
            raise ValueError("Select a catalog before creating an attribute type")
        return await self.type.create(name, catalog_ids=self._catalogs.selected_ids)

    async def create_value(self, name: str) -> CanonicalRecord:
        if self.type.selected_id is None:
            raise ValueError("Select an attribute type before creating a value")
        return await self.value.create(name, type_id=self.type.selected_id)

    def detach(self) -> None:
        self._graph.remove_slot(self.value)
        self._graph.remove_slot(self.type)
        self.type.invalidate()
        self.value.invalidate()

    @property
    def is_pending(self) -> bool:
        return self.type.is_pending or self.value.is_pending

    def selection(self) -> AttributeSelection:
        return AttributeSelection(type=self.type.selected, value=self.value.selected, value_text=self.value.query)


class ProductDraft(Draft):
    intent = Intent.CREATE_PRODUCT

    def __init__(self, gateway: CatalogGateway, *, debounce_seconds: Optional[float] = None) -> None:
        self._gateway = gateway
        self._debounce = debounce_seconds
        self.name = ""
        self.graph = DependencyGraph()
        self.brand = ResolverSlot(EntityKind.BRAND, gateway, debounce_seconds=debounce_seconds)
        self.catalogs = ResolverSlot(
            EntityKind.CATALOG,
            gateway,
            multi=True,
            on_select=self._catalog_added,
            debounce_seconds=debounce_seconds,
        )
        self.attributes: list[AttributeLineDraft] = []
        self.unit_conversions: list[UnitConversionSpec] = []

    async def seed(self, seed: Union[CandidateDocument, NormalizedProduct]) -> None:
        if isinstance(seed, CandidateDocument):
            if seed.intent != Intent.CREATE_PRODUCT:
                raise ValueError(f"ProductDraft cannot be seeded from intent {seed.intent.value}")
            seed = normalize(seed)
        self.name = seed.name
        self.unit_conversions = list(seed.unit_conversions)
        for attr in seed.attribute_seeds:
            line = self.add_attribute()
            line.type.query = attr.type_name
            line.value.query = attr.value_name
        # attribute types are catalog scoped, so catalogs resolve first
        await asyncio.gather(
            self.brand.search_now(seed.brand_seed),
            self.catalogs.search_now(seed.catalog_seed),
        )
        await self._search_attribute_types()

    async def _catalog_added(self, record: CanonicalRecord) -> None:
        await self._search_attribute_types()

    async def _search_attribute_types(self) -> None:
        pending = [
            line.type.search_now()
            for line in self.attributes
            if line.type.query.strip() and line.type.selected is None
        ]
        if pending:
            await asyncio.gather(*pending)

    # -- catalogs --------------------------------------------------------

    async def add_catalog(self, record: CanonicalRecord) -> bool:
        return await self.catalogs.choose(record)

    def remove_catalog(self, catalog_id: str) -> bool:
        return self.catalogs.remove(catalog_id)

    # -- attributes ------------------------------------------------------

    def add_attribute(self) -> AttributeLineDraft:
        line = AttributeLineDraft(self._gateway, self.catalogs, self.graph, debounce_seconds=self._debounce)
        self.attributes.append(line)
        return line

    def remove_attribute(self, idx: int) -> None:
        self.attributes.pop(idx).detach()

    # -- unit conversions ------------------------------------------------

    def add_unit(
        self,
        unit_name: str = "",
        *,
        conversion_factor: Optional[float] = 1,
        base_unit_name: str = "",
        price: Optional[float] = 0,
        vat_percent: Optional[float] = 0,
    ) -> UnitConversionSpec:
        unit = UnitConversionSpec(
            unit_name=unit_name,
            conversion_factor=conversion_factor,
            base_unit_name=base_unit_name or self._default_base_unit(unit_name),
            price=price,
            vat_percent=vat_percent,
        )
        self.unit_conversions.append(unit)
        return unit

    def _default_base_unit(self, unit_name: str) -> str:
        # new units share the base unit of the first one
        if self.unit_conversions and self.unit_conversions[0].base_unit_name:
            return self.unit_conversions[0].base_unit_name
        return unit_name or "Đơn vị"

    def update_unit(self, idx: int, **changes: Any) -> UnitConversionSpec:
        unit = UnitConversionSpec.model_validate({**self.unit_conversions[idx].model_dump(), **changes})
        self.unit_conversions[idx] = unit
        return unit

    def remove_unit(self, idx: int) -> None:
        del self.unit_conversions[idx]

    def slots(self) -> list[ResolverSlot]:
        attribute_slots = [slot for line in self.attributes for slot in (line.type, line.value)]
        return [self.brand, self.catalogs, *attribute_slots]

    def _pending_fields(self) -> set[str]:
        pending = {f"attribute{idx}" for idx, line in enumerate(self.attributes) if line.is_pending}
        if self.brand.is_pending:
            pending.add("brand")
        if self.catalogs.is_pending:
            pending.add("catalogs")
        return pending

    def build(self) -> BuildResult:
        return build_product(
            self.name,
            self.brand.selected_id,
            self.catalogs.selected_ids,
            self.unit_conversions,
            [line.selection() for line in self.attributes],
            pending=self._pending_fields(),
        )


DRAFT_TYPES: dict[Intent, type[Draft]] = {
    Intent.CREATE_ORDER: OrderDraft,
    Intent.CREATE_IMPORT_SLIP: ImportSlipDraft,
    Intent.CREATE_PRODUCT: ProductDraft,
}


def open_draft(
    document: CandidateDocument,
    gateway: CatalogGateway,
    *,
    debounce_seconds: Optional[float] = None,
) -> Draft:
    """New, unseeded draft matching *document*'s intent."""
    try:
        draft_type = DRAFT_TYPES[document.intent]
    except KeyError:
        raise ExtractionUnclearError("No structured data could be extracted from the capture") from None
    return draft_type(gateway, debounce_seconds=debounce_seconds)
