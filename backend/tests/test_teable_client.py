import json

import httpx
import pytest

from orderflow.clients.teable import TeableCatalogClient, fields_for_create, record_from_raw
from orderflow.core.config import Settings
from orderflow.core.errors import ConfigurationError, PersistenceError, TransientSearchError
from orderflow.schemas.catalog import AttributeType, EntityKind, Product

BASE_URL = "https://teable.test/api/table"


def _settings(**overrides):
    data = dict(
        teable_base_api_url=BASE_URL,
        teable_auth_token="tok",
        table_customer_id="tblCustomer",
        table_brand_id="tblBrand",
        table_attribute_type_id="tblAttrType",
        table_product_id="tblProduct",
        table_unit_conversions_id="tblUnits",
    )
    data.update(overrides)
    return Settings(**data)


def _client(handler, **overrides):
    http = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return TeableCatalogClient(_settings(**overrides), client=http)


@pytest.mark.asyncio
async def test_search_sends_contains_filter_and_maps_records():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(
            200,
            json={"records": [{"id": "rec1", "fields": {"fullname": "Trần Minh Long", "phone_number": "0901"}}]},
        )

    client = _client(handler)
    results = await client.search(EntityKind.CUSTOMER, " Long ")

    assert seen["path"] == "/api/table/tblCustomer/record"
    assert seen["params"]["fieldKeyType"] == "dbFieldName"
    assert seen["params"]["take"] == "20"
    assert json.loads(seen["params"]["filter"]) == {
        "conjunction": "and",
        "filterSet": [{"fieldId": "fullname", "operator": "contains", "value": "Long"}],
    }
    assert [(r.id, r.name, r.phone_number) for r in results] == [("rec1", "Trần Minh Long", "0901")]


@pytest.mark.asyncio
async def test_scoped_attribute_type_search():
    captured = {}

    def handler(request):
        captured["filter"] = json.loads(request.url.params["filter"])
        return httpx.Response(
            200,
            json={"records": [{"id": "at1", "fields": {"name": "Dung tích", "catalog": [{"id": "cat-bia"}]}}]},
        )

    client = _client(handler)
    (record,) = await client.search(EntityKind.ATTRIBUTE_TYPE, "Dung", {"catalog_ids": ["cat-bia"]})

    assert captured["filter"]["filterSet"][1] == {"fieldId": "catalog", "operator": "hasAnyOf", "value": ["cat-bia"]}
    assert isinstance(record, AttributeType)
    assert record.catalog_ids == frozenset({"cat-bia"})


@pytest.mark.asyncio
async def test_missing_table_id_is_configuration_error():
    client = _client(lambda request: httpx.Response(200, json={"records": []}))
    with pytest.raises(ConfigurationError) as exc:
        await client.search(EntityKind.SUPPLIER, "Tân")
    assert exc.value.setting == "table_supplier_id"


def test_missing_base_url_is_configuration_error():
    client = TeableCatalogClient(_settings(teable_base_api_url=""))
    with pytest.raises(ConfigurationError):
        client._http()


@pytest.mark.asyncio
async def test_server_error_is_transient():
    client = _client(lambda request: httpx.Response(503, json={"message": "busy"}))
    with pytest.raises(TransientSearchError) as exc:
        await client.search(EntityKind.BRAND, "Tiger")
    assert exc.value.kind == "brand"
    assert exc.value.query == "Tiger"


@pytest.mark.asyncio
async def test_create_posts_typecast_record():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"records": [{"id": "recNew", "fields": {"name": "Màu sắc"}}]})

    client = _client(handler)
    record = await client.create(EntityKind.ATTRIBUTE_TYPE, {"name": "Màu sắc", "catalog_ids": ["cat-giay"]})

    assert bodies == [
        {
            "fieldKeyType": "dbFieldName",
            "typecast": True,
            "records": [{"fields": {"name": "Màu sắc", "catalog": [{"id": "cat-giay"}]}}],
        }
    ]
    assert record.id == "recNew"


@pytest.mark.asyncio
async def test_create_rejection_is_persistence_error():
    client = _client(lambda request: httpx.Response(400, json={"message": "field is required"}))
    with pytest.raises(PersistenceError) as exc:
        await client.create(EntityKind.BRAND, {"name": "Tiger"})
    assert exc.value.status_code == 400
    assert exc.value.detail == "field is required"


@pytest.mark.asyncio
async def test_unit_conversions_and_product_snapshot():
    def handler(request):
        if request.url.path.endswith("/tblUnits/record"):
            assert json.loads(request.url.params["filter"])["filterSet"] == [
                {"fieldId": "product", "operator": "is", "value": "prod-tiger"}
            ]
            return httpx.Response(
                200,
                json={
                    "records": [
                        {
                            "id": "uc-loc",
                            "fields": {
                                "name_unit": "Lốc",
                                "conversion_factor": 6,
                                "unit_default": "Lon",
                                "price": "58000",
                                "vat_rate": 0,
                            },
                        }
                    ]
                },
            )
        if request.url.path.endswith("/tblProduct/record/prod-tiger"):
            return httpx.Response(
                200,
                json={
                    "id": "prod-tiger",
                    "fields": {
                        "product_name": "Bia Tiger",
                        "brand": {"id": "brand-tiger"},
                        "catalogs": [{"id": "cat-bia"}],
                        "inventory": 100,
                    },
                },
            )
        return httpx.Response(404, json={"message": "not found"})

    client = _client(handler)
    (unit,) = await client.get_unit_conversions("prod-tiger")
    assert (unit.name, unit.conversion_factor, unit.price, unit.vat_percent, unit.product_id) == (
        "Lốc",
        6,
        58000,
        0,
        "prod-tiger",
    )

    product = await client.get_product("prod-tiger")
    assert isinstance(product, Product)
    assert product.brand_id == "brand-tiger"
    assert product.inventory_base_quantity == 100
    assert await client.get_product("missing") is None


def test_record_mapping_defaults():
    product = record_from_raw(EntityKind.PRODUCT, {"id": "p1", "fields": {"product_name": "Sting", "inventory": ""}})
    assert product.inventory_base_quantity is None
    assert product.catalog_ids == frozenset()

    value = record_from_raw(
        EntityKind.ATTRIBUTE_VALUE,
        {"id": "v1", "fields": {"value_attribute": "Đen", "attribute_type": [{"id": "at-mau"}]}},
    )
    assert (value.name, value.type_id) == ("Đen", "at-mau")


def test_fields_for_create_customer():
    assert fields_for_create(EntityKind.CUSTOMER, {"name": "Nam", "phone_number": "0912"}) == {
        "fullname": "Nam",
        "phone_number": "0912",
    }
