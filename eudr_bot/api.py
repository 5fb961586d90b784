"""HTTP client for the declarations service.

Each call opens its own short-lived aiohttp session.  Transport errors,
timeouts and non-2xx answers all surface as ``ApiError``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp

from eudr_bot.models import (
    Counterparty,
    CounterpartyKind,
    DeclarationDetail,
    DeclarationType,
    Product,
    SourceDeclaration,
)

logger = logging.getLogger(__name__)

_COUNTERPARTY_PATHS = {
    CounterpartyKind.CUSTOMER: "/customers",
    CounterpartyKind.SUPPLIER: "/suppliers",
}


class ApiError(Exception):
    def __init__(self, message: str, status: int | None = None) -> None:
        self.message = message
        self.status = status
        super().__init__(f"[{status}] {message}" if status else message)


class DeclarationsApi:
    def __init__(self, base_url: str, token: str | None = None, timeout: float = 15) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout, headers=self._headers()) as session:
                async with session.request(method, url, json=json, params=params) as resp:
                    if resp.status >= 400:
                        body = await resp.text()
                        logger.warning("%s %s -> %s: %s", method, path, resp.status, body[:500])
                        raise ApiError(_error_message(body) or resp.reason or "request failed", resp.status)
                    if resp.status == 204:
                        return None
                    return await resp.json(content_type=None)
        except aiohttp.ClientError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise ApiError(str(exc) or type(exc).__name__) from exc
        except asyncio.TimeoutError as exc:
            logger.warning("%s %s timed out after %ss", method, path, self.timeout)
            raise ApiError(f"timed out after {self.timeout}s") from exc

    # ── declarations ─────────────────────────────────────────────

    async def create_declaration(self, payload: dict[str, Any]) -> dict[str, Any]:
        created = await self._request("POST", "/declarations", json=payload)
        if not isinstance(created, dict) or "id" not in created:
            raise ApiError("declaration service returned no id")
        return created

    async def list_source_declarations(self) -> list[SourceDeclaration]:
        """Approved inbound declarations that can seed an outbound one."""
        rows = await self._request("GET", "/declarations", params={"type": DeclarationType.INBOUND.value})
        records = [SourceDeclaration.model_validate(r) for r in rows or []]
        return [
            r for r in records
            if r.type == DeclarationType.INBOUND.value and r.status.lower() == "approved"
        ]

    async def get_declaration(self, declaration_id: int) -> DeclarationDetail:
        row = await self._request("GET", f"/declarations/{declaration_id}")
        return DeclarationDetail.model_validate(row)

    # ── counterparties ───────────────────────────────────────────

    async def list_counterparties(self, kind: CounterpartyKind) -> list[Counterparty]:
        rows = await self._request("GET", _COUNTERPARTY_PATHS[kind])
        return [Counterparty.from_record(r, kind) for r in rows or []]

    # ── products ─────────────────────────────────────────────────

    async def search_products(self, query: str) -> list[Product]:
        """Canonical products matching ``query``; fewer than 2 characters match nothing."""
        query = query.strip()
        if len(query) < 2:
            return []
        rows = await self._request("GET", "/products/search", params={"q": query})
        return [Product.model_validate(r) for r in rows or []]


def _error_message(body: str) -> str:
    """Pull ``message`` out of a JSON error body if there is one."""
    try:
        data = json.loads(body)
    except ValueError:
        return body.strip()[:200]
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or "")
    return ""
