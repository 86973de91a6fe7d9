"""Extraction scope contracts: the raw JSON the model is asked to return.

Field names follow the prompt (``ten_hang_hoa``, ``don_vi_tinh``, ...); the
result is mapped onto a ``CandidateDocument`` keeping only the payload that
matches the detected intent.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from orderflow.schemas.extraction import (
    CandidateAttribute,
    CandidateDocument,
    CandidateLine,
    CandidateProduct,
    CandidateUnitConversion,
    Intent,
)

INTENT_ALIASES = {
    "create_invoice": Intent.CREATE_ORDER,
    "create_order": Intent.CREATE_ORDER,
    "create_product": Intent.CREATE_PRODUCT,
    "create_import_slip": Intent.CREATE_IMPORT_SLIP,
    "unclear": Intent.UNCLEAR,
}

# prompt vocabulary for each intent
PROMPT_INTENTS = {
    Intent.CREATE_ORDER: "create_invoice",
    Intent.CREATE_PRODUCT: "create_product",
    Intent.CREATE_IMPORT_SLIP: "create_import_slip",
    Intent.UNCLEAR: "unclear",
}


def _optional_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(" ", "")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


class _RawModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class RawExtractedItem(_RawModel):
    ten_hang_hoa: str = ""
    don_vi_tinh: Optional[str] = None
    so_luong: Optional[float] = None
    don_gia: Optional[float] = None
    vat: Optional[float] = None

    @field_validator("so_luong", "don_gia", "vat", mode="before")
    @classmethod
    def numeric(cls, v):
        return _optional_number(v)

    @field_validator("ten_hang_hoa", mode="before")
    @classmethod
    def text(cls, v):
        return "" if v is None else str(v)

    def to_candidate(self) -> CandidateLine:
        return CandidateLine(
            item_name_text=self.ten_hang_hoa.strip(),
            quantity=self.so_luong,
            unit_name_text=(self.don_vi_tinh or "").strip() or None,
            unit_price=self.don_gia,
            vat_percent=self.vat,
        )


class RawInvoiceData(_RawModel):
    language: Optional[str] = None
    transcription: str = ""
    customer_name: Optional[str] = ""
    extracted: Optional[list[RawExtractedItem]] = None


class RawImportSlipData(_RawModel):
    supplier_name: Optional[str] = ""
    extracted: Optional[list[RawExtractedItem]] = None


class RawUnitConversion(_RawModel):
    name_unit: str = ""
    conversion_factor: Optional[float] = None
    unit_default: str = ""
    price: Optional[float] = None
    vat: Optional[float] = None

    @field_validator("conversion_factor", "price", "vat", mode="before")
    @classmethod
    def numeric(cls, v):
        return _optional_number(v)

    @field_validator("name_unit", "unit_default", mode="before")
    @classmethod
    def text(cls, v):
        return "" if v is None else str(v)


class RawAttribute(_RawModel):
    type: str = ""
    value: str = ""

    @field_validator("type", "value", mode="before")
    @classmethod
    def text(cls, v):
        return "" if v is None else str(v)


class RawProductData(_RawModel):
    product_name: str = ""
    brand_name: Optional[str] = None
    catalog: Optional[str] = None
    unit_conversions: Optional[list[RawUnitConversion]] = None
    attributes: Optional[list[RawAttribute]] = None

    def to_candidate(self) -> CandidateProduct:
        return CandidateProduct(
            name=(self.product_name or "").strip(),
            brand_name=self.brand_name,
            catalog_name=self.catalog,
            attributes=tuple(
                CandidateAttribute(type_name=attr.type, value_name=attr.value) for attr in self.attributes or []
            ),
            unit_conversions=tuple(
                CandidateUnitConversion(
                    unit_name=unit.name_unit,
                    conversion_factor=unit.conversion_factor,
                    base_unit_name=unit.unit_default,
                    price=unit.price,
                    vat_percent=unit.vat,
                )
                for unit in self.unit_conversions or []
            ),
        )


class RawExtractionOutput(_RawModel):
    """Top-level model output for audio and image extraction."""

    intent: Intent = Intent.UNCLEAR
    transcription: str = ""
    language: Optional[str] = None
    invoice_data: Optional[RawInvoiceData] = None
    product_data: Optional[RawProductData] = None
    import_slip_data: Optional[RawImportSlipData] = None

    @field_validator("intent", mode="before")
    @classmethod
    def known_intent(cls, v):
        return INTENT_ALIASES.get(str(v or "").strip().lower(), Intent.UNCLEAR)

    @field_validator("transcription", mode="before")
    @classmethod
    def text(cls, v):
        return "" if v is None else str(v)

    def to_candidate_document(self) -> CandidateDocument:
        """Keep only the payload matching ``intent``; the others are dropped."""
        language = self.language or (self.invoice_data.language if self.invoice_data else None) or "vi-VN"
        common = {"detected_language": language, "raw_text": self.transcription, "intent": self.intent}

        if self.intent == Intent.CREATE_ORDER:
            data = self.invoice_data or RawInvoiceData()
            return CandidateDocument(
                **common,
                counterparty_name=(data.customer_name or "").strip(),
                lines=tuple(item.to_candidate() for item in data.extracted or []),
            )
        if self.intent == Intent.CREATE_IMPORT_SLIP:
            data = self.import_slip_data or RawImportSlipData()
            return CandidateDocument(
                **common,
                counterparty_name=(data.supplier_name or "").strip(),
                lines=tuple(item.to_candidate() for item in data.extracted or []),
            )
        if self.intent == Intent.CREATE_PRODUCT:
            data = self.product_data or RawProductData()
            return CandidateDocument(**common, product=data.to_candidate())
        return CandidateDocument.unclear(raw_text=self.transcription, detected_language=language)
