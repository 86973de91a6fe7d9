"""Teable REST client for the canonical catalog tables."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Optional

import httpx

from orderflow.core.config import Settings, get_settings
from orderflow.core.errors import ConfigurationError, PersistenceError, TransientSearchError
from orderflow.schemas.catalog import (
    AttributeType,
    AttributeValue,
    Brand,
    CanonicalRecord,
    Catalog,
    Customer,
    EntityKind,
    Product,
    Supplier,
    UnitConversion,
)

from .base import CatalogGateway

logger = logging.getLogger(__name__)

TABLE_SETTINGS = {
    EntityKind.CUSTOMER: "table_customer_id",
    EntityKind.SUPPLIER: "table_supplier_id",
    EntityKind.BRAND: "table_brand_id",
    EntityKind.CATALOG: "table_catalog_id",
    EntityKind.ATTRIBUTE_TYPE: "table_attribute_type_id",
    EntityKind.ATTRIBUTE_VALUE: "table_attribute_id",
    EntityKind.PRODUCT: "table_product_id",
}

DISPLAY_FIELDS = {
    EntityKind.CUSTOMER: "fullname",
    EntityKind.SUPPLIER: "supplier_name",
    EntityKind.BRAND: "name",
    EntityKind.CATALOG: "name",
    EntityKind.ATTRIBUTE_TYPE: "name",
    EntityKind.ATTRIBUTE_VALUE: "value_attribute",
    EntityKind.PRODUCT: "product_name",
}

# scope key -> (link field, filter operator)
SCOPE_FILTERS = {
    "catalog_ids": ("catalog", "hasAnyOf"),
    "type_id": ("attribute_type", "is"),
}


def _link_ids(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, dict):
        value = [value]
    if not isinstance(value, list):
        return [str(value)]
    ids = []
    for item in value:
        if isinstance(item, dict):
            if item.get("id"):
                ids.append(str(item["id"]))
        elif item:
            ids.append(str(item))
    return ids


def _number(value: Any, default: Optional[float] = None) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _unit_from_raw(raw: Mapping[str, Any], product_id: Optional[str] = None) -> UnitConversion:
    fields = raw.get("fields", {}) or {}
    linked = _link_ids(fields.get("product"))
    return UnitConversion(
        id=str(raw["id"]),
        name=str(fields.get("name_unit") or raw.get("name") or ""),
        product_id=product_id or (linked[0] if linked else None),
        conversion_factor=_number(fields.get("conversion_factor"), 1),
        base_unit_name=str(fields.get("unit_default") or ""),
        price=_number(fields.get("price"), 0),
        vat_percent=_number(fields.get("vat_rate")),
    )


def record_from_raw(kind: EntityKind, raw: Mapping[str, Any]) -> CanonicalRecord:
    """Map a Teable record (``fieldKeyType=dbFieldName``) onto a catalog model."""
    fields = raw.get("fields", {}) or {}
    record_id = str(raw["id"])
    name = str(fields.get(DISPLAY_FIELDS[kind]) or raw.get("name") or "")

    if kind == EntityKind.CUSTOMER:
        return Customer(id=record_id, name=name, phone_number=str(fields.get("phone_number") or ""))
    if kind == EntityKind.SUPPLIER:
        return Supplier(id=record_id, name=name, address=str(fields.get("address") or ""))
    if kind == EntityKind.BRAND:
        return Brand(id=record_id, name=name)
    if kind == EntityKind.CATALOG:
        return Catalog(id=record_id, name=name)
    if kind == EntityKind.ATTRIBUTE_TYPE:
        return AttributeType(id=record_id, name=name, catalog_ids=frozenset(_link_ids(fields.get("catalog"))))
    if kind == EntityKind.ATTRIBUTE_VALUE:
        types = _link_ids(fields.get("attribute_type"))
        return AttributeValue(id=record_id, name=name, type_id=types[0] if types else None)

    brands = _link_ids(fields.get("brand"))
    units = tuple(
        _unit_from_raw(unit, record_id)
        for unit in fields.get("unit_conversions") or []
        if isinstance(unit, dict) and unit.get("fields")
    )
    return Product(
        id=record_id,
        name=name,
        brand_id=brands[0] if brands else None,
        catalog_ids=frozenset(_link_ids(fields.get("catalogs"))),
        attribute_value_ids=frozenset(_link_ids(fields.get("attributes"))),
        inventory_base_quantity=_number(fields.get("inventory")),
        unit_conversions=units,
    )


def fields_for_create(kind: EntityKind, fields: Mapping[str, Any]) -> dict[str, Any]:
    data = {DISPLAY_FIELDS[kind]: fields["name"]}
    if kind == EntityKind.CUSTOMER and fields.get("phone_number"):
        data["phone_number"] = fields["phone_number"]
    if kind == EntityKind.SUPPLIER and fields.get("address"):
        data["address"] = fields["address"]
    if kind == EntityKind.ATTRIBUTE_TYPE and fields.get("catalog_ids"):
        data["catalog"] = [{"id": cid} for cid in fields["catalog_ids"]]
    if kind == EntityKind.ATTRIBUTE_VALUE and fields.get("type_id"):
        data["attribute_type"] = [{"id": fields["type_id"]}]
    return data


class TeableCatalogClient(CatalogGateway):
    """Catalog gateway over ``GET/POST /{tableId}/record``."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            if not self._settings.teable_base_api_url:
                raise ConfigurationError("teable_base_api_url")
            self._client = httpx.AsyncClient(
                base_url=self._settings.teable_base_api_url.rstrip("/"),
                headers={
                    "Authorization": f"Bearer {self._settings.teable_auth_token}",
                    "Accept": "application/json",
                },
                timeout=self._settings.http_timeout_seconds,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "TeableCatalogClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _table_id(self, kind: EntityKind) -> str:
        setting = TABLE_SETTINGS[kind]
        table_id = getattr(self._settings, setting)
        if not table_id:
            raise ConfigurationError(setting, f"{kind.value} table ID is not configured")
        return table_id

    def _unit_table_id(self) -> str:
        if not self._settings.table_unit_conversions_id:
            raise ConfigurationError("table_unit_conversions_id", "Unit conversions table ID is not configured")
        return self._settings.table_unit_conversions_id

    async def _get_records(
        self,
        table_id: str,
        filter_set: list[dict[str, Any]],
        *,
        kind: str,
        query: str,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {
            "fieldKeyType": "dbFieldName",
            "take": self._settings.search_page_size,
        }
        if filter_set:
            params["filter"] = json.dumps({"conjunction": "and", "filterSet": filter_set}, ensure_ascii=False)
        try:
            resp = await self._http().get(f"/{table_id}/record", params=params)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TransientSearchError(kind, query, exc) from exc
        return list(data.get("records") or [])

    async def search(
        self,
        kind: EntityKind,
        query: str,
        scope: Optional[Mapping[str, Any]] = None,
    ) -> list[CanonicalRecord]:
        table_id = self._table_id(kind)
        filter_set = []
        if query and query.strip():
            filter_set.append({"fieldId": DISPLAY_FIELDS[kind], "operator": "contains", "value": query.strip()})
        for key, value in (scope or {}).items():
            if key not in SCOPE_FILTERS:
                logger.warning("Ignoring unsupported scope filter %r for %s", key, kind.value)
                continue
            field, operator = SCOPE_FILTERS[key]
            if operator == "hasAnyOf":
                value = list(value or [])
            filter_set.append({"fieldId": field, "operator": operator, "value": value})

        raw_records = await self._get_records(table_id, filter_set, kind=kind.value, query=query)
        return [record_from_raw(kind, raw) for raw in raw_records]

    async def create(self, kind: EntityKind, fields: Mapping[str, Any]) -> CanonicalRecord:
        table_id = self._table_id(kind)
        body = {
            "fieldKeyType": "dbFieldName",
            "typecast": True,
            "records": [{"fields": fields_for_create(kind, fields)}],
        }
        try:
            resp = await self._http().post(f"/{table_id}/record", json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise PersistenceError(
                _error_message(exc.response, f"Could not create {kind.value}"),
                status_code=exc.response.status_code,
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise PersistenceError(f"Could not create {kind.value}: {exc}") from exc

        records = data.get("records") or []
        if not records:
            raise PersistenceError(f"Could not create {kind.value}: empty response", body=data)
        record = record_from_raw(kind, records[0])
        logger.info("Created %s record %s", kind.value, record.id)
        return record

    async def get_unit_conversions(self, product_id: str) -> list[UnitConversion]:
        table_id = self._unit_table_id()
        filter_set = [{"fieldId": "product", "operator": "is", "value": product_id}]
        raw_records = await self._get_records(table_id, filter_set, kind="unit_conversion", query=product_id)
        return [_unit_from_raw(raw, product_id) for raw in raw_records]

    async def get_product(self, product_id: str) -> Optional[Product]:
        table_id = self._table_id(EntityKind.PRODUCT)
        try:
            resp = await self._http().get(
                f"/{table_id}/record/{product_id}",
                params={"fieldKeyType": "dbFieldName"},
            )
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TransientSearchError(EntityKind.PRODUCT.value, product_id, exc) from exc
        return record_from_raw(EntityKind.PRODUCT, data)


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return fallback
    if isinstance(data, dict):
        return str(data.get("message") or data.get("detail") or fallback)
    return fallback
