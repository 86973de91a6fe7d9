"""Candidate documents produced by the upstream AI extraction step."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Intent(str, Enum):
    CREATE_ORDER = "create_order"
    CREATE_PRODUCT = "create_product"
    CREATE_IMPORT_SLIP = "create_import_slip"
    UNCLEAR = "unclear"


LINE_INTENTS = frozenset({Intent.CREATE_ORDER, Intent.CREATE_IMPORT_SLIP})


class MediaPayload(BaseModel):
    """Recorded audio or a photographed document handed to the extractor."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str = "audio/webm"

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


class CandidateLine(BaseModel):
    """One spoken or photographed item before resolution."""

    model_config = ConfigDict(frozen=True)

    item_name_text: str = ""
    quantity: Optional[float] = None
    unit_name_text: Optional[str] = None
    unit_price: Optional[float] = None
    vat_percent: Optional[float] = None


class CandidateUnitConversion(BaseModel):
    model_config = ConfigDict(frozen=True)

    unit_name: str = ""
    conversion_factor: Optional[float] = None
    base_unit_name: str = ""
    price: Optional[float] = None
    vat_percent: Optional[float] = None


class CandidateAttribute(BaseModel):
    model_config = ConfigDict(frozen=True)

    type_name: str = ""
    value_name: str = ""


class CandidateProduct(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    brand_name: Optional[str] = None
    catalog_name: Optional[str] = None
    attributes: tuple[CandidateAttribute, ...] = Field(default_factory=tuple)
    unit_conversions: tuple[CandidateUnitConversion, ...] = Field(default_factory=tuple)


class CandidateDocument(BaseModel):
    """Immutable output of one capture/extraction cycle."""

    model_config = ConfigDict(frozen=True)

    detected_language: str = "vi-VN"
    raw_text: str = ""
    intent: Intent = Intent.UNCLEAR
    counterparty_name: str = ""
    lines: tuple[CandidateLine, ...] = Field(default_factory=tuple)
    product: Optional[CandidateProduct] = None

    @model_validator(mode="after")
    def payload_matches_intent(self):
        if self.intent != Intent.CREATE_PRODUCT and self.product is not None:
            raise ValueError(f"product payload is not allowed for intent {self.intent.value}")
        if self.intent not in LINE_INTENTS and self.lines:
            raise ValueError(f"line payload is not allowed for intent {self.intent.value}")
        return self

    @classmethod
    def unclear(cls, raw_text: str = "", detected_language: str = "vi-VN") -> "CandidateDocument":
        return cls(intent=Intent.UNCLEAR, raw_text=raw_text, detected_language=detected_language)
