from functools import lru_cache
import json
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_list_value(value) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if raw == "":
            return []
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        except ValueError:
            pass
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        validate_by_name=True,
        populate_by_name=True,
    )

    # Teable tables (canonical catalog store)
    teable_base_api_url: str = Field(
        default="",
        validation_alias=AliasChoices("TEABLE_BASE_API_URL", "NEXT_PUBLIC_TEABLE_BASE_API_URL"),
    )
    teable_auth_token: str = Field(
        default="",
        validation_alias=AliasChoices("TEABLE_AUTH_TOKEN", "NEXT_PUBLIC_TEABLE_AUTH_TOKEN"),
    )
    table_customer_id: str = ""
    table_supplier_id: str = ""
    table_brand_id: str = ""
    table_catalog_id: str = ""
    table_attribute_type_id: str = ""
    table_attribute_id: str = ""
    table_product_id: str = ""
    table_unit_conversions_id: str = ""
    table_order_id: str = ""
    table_order_detail_id: str = ""

    # Backend API (persistence)
    backend_api_base_url: str = Field(
        default="",
        validation_alias=AliasChoices("BACKEND_API_BASE_URL", "NEXT_PUBLIC_API_BASE_URL"),
    )
    http_timeout_seconds: float = 10.0
    search_page_size: int = 20

    # Resolution / capture behaviour
    search_debounce_seconds: float = 0.3
    max_recording_seconds: int = 60
    default_import_type: str = "Nhập mua"
    default_delivery_type: str = "Giao ngay"

    # AI extraction collaborator
    ai_extraction_provider: str = "mock"
    ai_extraction_model: str = ""
    ai_extraction_timeout_seconds: float = 30.0
    ai_extraction_budget_seconds: float = 60.0
    ai_extraction_max_retries: int = 1
    ai_temperature: float = 0.1
    ai_max_tokens: int = 4096
    ai_allowed_providers_raw: str = Field(
        default="mock,gemini,openai",
        validation_alias=AliasChoices("AI_ALLOWED_PROVIDERS"),
    )
    ai_allowed_models_raw: str = Field(
        default="",
        validation_alias=AliasChoices("AI_ALLOWED_MODELS"),
    )
    enable_ai_overrides: bool = False
    gemini_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    )
    openai_api_key: str = ""

    @field_validator("search_debounce_seconds", "http_timeout_seconds")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @property
    def ai_allowed_providers(self) -> list[str]:
        return [item.lower() for item in _parse_list_value(self.ai_allowed_providers_raw)]

    @property
    def ai_allowed_models(self) -> dict[str, list[str]]:
        """``AI_ALLOWED_MODELS`` entries look like ``gemini:gemini-1.5-flash``."""
        models: dict[str, list[str]] = {}
        for entry in _parse_list_value(self.ai_allowed_models_raw):
            provider, sep, model = entry.partition(":")
            if not sep or not model.strip():
                continue
            models.setdefault(provider.strip().lower(), []).append(model.strip())
        return models


@lru_cache

def get_settings() -> Settings:
    return Settings()
