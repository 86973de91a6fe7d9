"""Abstract collaborator contracts: canonical catalog access and persistence."""

from __future__ import annotations

import abc
from collections.abc import Mapping
from typing import Any, Optional

from orderflow.schemas.catalog import CanonicalRecord, EntityKind, Product, UnitConversion
from orderflow.schemas.transaction import TransactionPayload


class CatalogGateway(abc.ABC):
    """Search/create canonical entities and read product stock snapshots."""

    @abc.abstractmethod
    async def search(
        self,
        kind: EntityKind,
        query: str,
        scope: Optional[Mapping[str, Any]] = None,
    ) -> list[CanonicalRecord]:
        """Contains-match on the display name, exact-match on *scope* filters.

        Supported scope keys: ``catalog_ids`` (attribute types sharing any of
        these catalogs) and ``type_id`` (attribute values of that type).
        """

    @abc.abstractmethod
    async def create(self, kind: EntityKind, fields: Mapping[str, Any]) -> CanonicalRecord:
        """Create a record; ``fields["name"]`` is the display name."""

    @abc.abstractmethod
    async def get_unit_conversions(self, product_id: str) -> list[UnitConversion]:
        ...

    @abc.abstractmethod
    async def get_product(self, product_id: str) -> Optional[Product]:
        """Product snapshot including the current inventory (base units)."""


class PersistenceGateway(abc.ABC):
    @abc.abstractmethod
    async def submit(self, payload: TransactionPayload) -> str:
        """Persist *payload* and return the created record id.

        Raises ``PersistenceError`` when the submission is rejected.
        """
