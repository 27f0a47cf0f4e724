"""Async HTTP client for the external fulfillment API"""

from typing import Any

import httpx

from orderqueue.config.logging import get_logger
from orderqueue.config.settings import Settings
from orderqueue.v1.core.exceptions import FulfillmentAPIError

logger = get_logger(__name__)


class FulfillmentClient:
    """
    Thin wrapper over the fulfillment API.

    Every failure mode (transport error, non-2xx status, body that is not a
    JSON object) surfaces as FulfillmentAPIError so job handlers have one
    exception type to treat as transient.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Content-Type": "application/json", "x-api-key": api_key},
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "FulfillmentClient":
        return cls(
            base_url=settings.fulfillment_api_base_url,
            api_key=settings.fulfillment_api_key,
            timeout=settings.fulfillment_api_timeout_s,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def _handle_response(self, response: httpx.Response) -> dict[str, Any]:
        """Validate the response and extract its JSON object."""
        if response.is_error:
            raise FulfillmentAPIError(
                f"API error: {response.status_code} - {response.text}",
                upstream_status=response.status_code,
            )

        if not response.content:
            return {}

        try:
            data = response.json()
        except ValueError:
            raise FulfillmentAPIError(
                f"Invalid JSON response: {response.text[:200]}",
                upstream_status=response.status_code,
            ) from None

        if not isinstance(data, dict):
            raise FulfillmentAPIError(
                "Unexpected response body: expected a JSON object",
                upstream_status=response.status_code,
            )
        return data

    async def _request(
        self, method: str, path: str, json: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            response = await self.client.request(method, path, json=json)
        except httpx.HTTPError as e:
            logger.warning(
                "Fulfillment API request failed", method=method, path=path, error=str(e)
            )
            raise FulfillmentAPIError(f"Connection failed: {e}") from e
        return self._handle_response(response)

    async def create_order(
        self,
        post_id: str,
        like_count: int = 0,
        save_count: int = 0,
        comment_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Place an order; the response carries the remote order_id."""
        body: dict[str, Any] = {
            "post_id": post_id,
            "like_count": like_count,
            "save_count": save_count,
        }
        if comment_data:
            body["comment_data"] = comment_data
        return await self._request("POST", "/orders/create", json=body)

    async def get_order_status(self, order_id: str) -> dict[str, Any]:
        """Fetch status and per-interaction progress of an order."""
        return await self._request("GET", f"/orders/{order_id}/status")
