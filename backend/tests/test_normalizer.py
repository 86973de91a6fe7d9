import pytest

from orderflow.core.errors import ExtractionUnclearError
from orderflow.schemas.extraction import (
    CandidateAttribute,
    CandidateDocument,
    CandidateLine,
    CandidateProduct,
    CandidateUnitConversion,
    Intent,
)
from orderflow.schemas.transaction import NormalizedProduct
from orderflow.services.normalizer import counterparty_seed, normalize


def test_order_lines_default_vat_and_keep_unknowns():
    doc = CandidateDocument(
        intent=Intent.CREATE_ORDER,
        counterparty_name=" Trần Minh Long ",
        lines=(
            CandidateLine(item_name_text=" Tiger ", quantity=5, unit_name_text="lốc"),
            CandidateLine(item_name_text="Sting", quantity=None, unit_name_text="", unit_price=12000, vat_percent=8),
        ),
    )
    lines = normalize(doc)

    assert len(lines) == 2
    tiger, sting = lines
    assert tiger.item_name_text == "Tiger"
    assert tiger.unit_name_text == "lốc"
    assert tiger.quantity == 5
    assert tiger.unit_price is None
    assert tiger.vat_percent == 0
    assert tiger.product_id is None
    assert tiger.unit_conversion_id is None

    assert sting.quantity is None
    assert sting.unit_name_text is None
    assert sting.initial_unit_price == 12000
    assert sting.vat_percent == 8
    assert tiger.key != sting.key

    assert counterparty_seed(doc) == "Trần Minh Long"


def test_import_slip_keeps_dictated_price():
    doc = CandidateDocument(
        intent=Intent.CREATE_IMPORT_SLIP,
        lines=(CandidateLine(item_name_text="Tiger", quantity=10, unit_name_text="thùng", unit_price=140000),),
    )
    (line,) = normalize(doc)
    assert line.unit_price == 140000
    assert line.initial_unit_price == 140000
    assert line.vat_percent == 0


def test_product_units_are_normalized():
    doc = CandidateDocument(
        intent=Intent.CREATE_PRODUCT,
        product=CandidateProduct(
            name="Bia Sài Gòn Special",
            brand_name=" Sài Gòn ",
            catalog_name="Bia",
            attributes=(
                CandidateAttribute(type_name="Dung tích", value_name="330ml"),
                CandidateAttribute(type_name="Nồng độ", value_name=""),
                CandidateAttribute(type_name="  ", value_name="x"),
            ),
            unit_conversions=(
                CandidateUnitConversion(unit_name="Lon", conversion_factor=1, base_unit_name="Lon", price=15000),
                CandidateUnitConversion(unit_name="Thùng", conversion_factor=0, base_unit_name="Lon", price=None),
                CandidateUnitConversion(unit_name="Lốc", conversion_factor=None, price=80000, vat_percent=None),
            ),
        ),
    )
    product = normalize(doc)

    assert isinstance(product, NormalizedProduct)
    assert product.brand_seed == "Sài Gòn"
    assert product.catalog_seed == "Bia"
    assert [a.type_name for a in product.attribute_seeds] == ["Dung tích", "Nồng độ"]
    lon, thung, loc = product.unit_conversions
    assert lon.price == 15000
    assert thung.conversion_factor == 1
    assert thung.price == 0
    assert loc.conversion_factor == 1
    assert loc.vat_percent == 0
    assert loc.base_unit_name == "Lốc"


def test_normalizer_never_resolves_identities():
    doc = CandidateDocument(
        intent=Intent.CREATE_ORDER,
        lines=(CandidateLine(item_name_text="Tiger", quantity=1, unit_name_text="lon"),),
    )
    (line,) = normalize(doc)
    assert line.product_id is None
    assert line.available_units == []


def test_unclear_document_raises():
    with pytest.raises(ExtractionUnclearError):
        normalize(CandidateDocument.unclear(raw_text="..."))


def test_candidate_document_rejects_mismatched_payload():
    with pytest.raises(ValueError):
        CandidateDocument(intent=Intent.CREATE_ORDER, product=CandidateProduct(name="x"))
