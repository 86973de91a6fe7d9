"""Persistence client posting built payloads to the backend API."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from orderflow.core.config import Settings, get_settings
from orderflow.core.errors import ConfigurationError, PersistenceError
from orderflow.schemas.transaction import (
    ImportSlipPayload,
    OrderPayload,
    ProductPayload,
    TransactionPayload,
)

from .base import PersistenceGateway

logger = logging.getLogger(__name__)

ENDPOINTS = {
    OrderPayload: "/create-order",
    ProductPayload: "/create-product",
    ImportSlipPayload: "/create-import-slip",
}


class BackendApiClient(PersistenceGateway):
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
            if not self._settings.backend_api_base_url:
                raise ConfigurationError("backend_api_base_url")
            self._client = httpx.AsyncClient(
                base_url=self._settings.backend_api_base_url.rstrip("/"),
                timeout=self._settings.http_timeout_seconds,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def body_for(self, payload: TransactionPayload) -> dict[str, Any]:
        body = payload.to_api_payload()
        if isinstance(payload, OrderPayload):
            for key, setting in (("order_table_id", "table_order_id"), ("detail_table_id", "table_order_detail_id")):
                value = getattr(self._settings, setting)
                if not value:
                    raise ConfigurationError(setting)
                body[key] = value
        return body

    async def submit(self, payload: TransactionPayload) -> str:
        endpoint = ENDPOINTS[type(payload)]
        body = self.body_for(payload)
        try:
            resp = await self._http().post(endpoint, json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            detail, error_body = _error_detail(exc.response)
            logger.warning("%s rejected with %s: %s", endpoint, exc.response.status_code, detail)
            raise PersistenceError(detail, status_code=exc.response.status_code, body=error_body) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("%s failed: %s", endpoint, exc)
            raise PersistenceError(f"Request to {endpoint} failed: {exc}") from exc

        record_id = None
        if isinstance(data, dict):
            record_id = data.get("recordId") or data.get("id")
        if not record_id:
            raise PersistenceError(f"{endpoint} did not return a record id", body=data)
        logger.info("%s created record %s", endpoint, record_id)
        return str(record_id)


def _error_detail(response: httpx.Response) -> tuple[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return (response.text or response.reason_phrase or "Request failed"), None
    if isinstance(data, dict):
        detail = data.get("message") or data.get("detail") or data.get("error")
        if detail:
            return str(detail), data
    return "Request failed", data
