"""ERP stock lookup over HTTP."""

from __future__ import annotations

import uuid
from typing import Optional

import httpx

from volt_bot.adapters.base import Availability
from volt_bot.core.errors import AdapterUnavailable
from volt_bot.log import get_logger

logger = get_logger(__name__)


class HttpStockLookup:
    """Posts ``{"id", "query"}`` to the ERP bridge and reads ``{"id", "stock_info", "error"}``."""

    name = "erp"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)

    async def lookup_stock(self, query: str) -> Availability:
        request_id = str(uuid.uuid4())
        try:
            resp = await self._client.post("/stock", json={"id": request_id, "query": query})
            resp.raise_for_status()
            payload = resp.json()
        except httpx.TimeoutException as e:
            raise AdapterUnavailable(self.name, "request timeout") from e
        except httpx.HTTPStatusError as e:
            raise AdapterUnavailable(self.name, f"HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise AdapterUnavailable(self.name, str(e) or type(e).__name__) from e

        if not isinstance(payload, dict):
            raise AdapterUnavailable(self.name, "unexpected response body")
        if payload.get("id") not in (None, request_id):
            raise AdapterUnavailable(self.name, "response id does not match request")
        if payload.get("error"):
            raise AdapterUnavailable(self.name, str(payload["error"]))

        stock_info = str(payload.get("stock_info") or "").strip()
        logger.debug("stock_lookup_done", request_id=request_id, chars=len(stock_info))
        return Availability(query=query, stock_info=stock_info or "No matching items found.")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
