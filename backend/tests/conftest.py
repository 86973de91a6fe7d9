import pytest
import pytest_asyncio

from orderflow.clients.memory import InMemoryCatalogGateway, InMemoryPersistenceGateway
from orderflow.core.config import get_settings
from orderflow.schemas.catalog import (
    AttributeType,
    AttributeValue,
    Brand,
    Catalog,
    Customer,
    Product,
    Supplier,
    UnitConversion,
)
from orderflow.schemas.extraction import CandidateDocument, CandidateLine, Intent


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # Tests patch env vars; never leak a cached Settings instance across tests.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def tiger_product(inventory=100) -> Product:
    return Product(
        id="prod-tiger",
        name="Bia Tiger",
        brand_id="brand-tiger",
        catalog_ids=frozenset({"cat-bia"}),
        inventory_base_quantity=inventory,
        unit_conversions=(
            UnitConversion(id="uc-lon", name="Lon", conversion_factor=1, base_unit_name="Lon", price=10000, vat_percent=0),
            UnitConversion(id="uc-loc", name="Lốc", conversion_factor=6, base_unit_name="Lon", price=58000, vat_percent=0),
        ),
    )


def seeded_catalog(inventory=100) -> InMemoryCatalogGateway:
    return InMemoryCatalogGateway(
        [
            Customer(id="cus-long", name="Trần Minh Long", phone_number="0901234567"),
            Customer(id="cus-lan", name="Nguyễn Thị Lan"),
            Supplier(id="sup-thp", name="Tân Hiệp Phát", address="Bình Dương"),
            Brand(id="brand-tiger", name="Tiger"),
            Brand(id="brand-sting", name="Sting"),
            Catalog(id="cat-bia", name="Bia"),
            Catalog(id="cat-nuoc", name="Nước ngọt"),
            Catalog(id="cat-giay", name="Giày"),
            AttributeType(id="at-dungtich", name="Dung tích", catalog_ids=frozenset({"cat-bia", "cat-nuoc"})),
            AttributeType(id="at-mau", name="Màu sắc", catalog_ids=frozenset({"cat-giay"})),
            AttributeValue(id="av-330", name="330ml", type_id="at-dungtich"),
            AttributeValue(id="av-den", name="Đen", type_id="at-mau"),
            tiger_product(inventory),
            Product(
                id="prod-sting",
                name="Sting dâu",
                brand_id="brand-sting",
                catalog_ids=frozenset({"cat-nuoc"}),
                inventory_base_quantity=None,
                unit_conversions=(
                    UnitConversion(id="uc-chai", name="Chai", conversion_factor=1, base_unit_name="Chai", price=12000, vat_percent=8),
                ),
            ),
        ]
    )


@pytest.fixture
def catalog():
    return seeded_catalog()


@pytest.fixture
def persistence(catalog):
    return InMemoryPersistenceGateway(catalog)


@pytest.fixture
def tiger_order_document():
    return CandidateDocument(
        raw_text="Anh Trần Minh Long lấy 5 lốc bia Tiger",
        intent=Intent.CREATE_ORDER,
        counterparty_name="Trần Minh Long",
        lines=(CandidateLine(item_name_text="Tiger", quantity=5, unit_name_text="lốc"),),
    )


@pytest_asyncio.fixture
async def tiger_order_draft(catalog, tiger_order_document):
    from orderflow.services.drafts import OrderDraft

    draft = OrderDraft(catalog, debounce_seconds=0)
    await draft.seed(tiger_order_document)
    return draft
