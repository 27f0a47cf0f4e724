"""Base HTTP Client for the Order Queue API"""

from typing import Any

import httpx
from rich.console import Console
from rich.panel import Panel

console = Console()


class OrderQueueError(Exception):
    """Base exception for Order Queue API errors"""

    pass


class APIClient:
    """HTTP client for the Order Queue API"""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: int = 30,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_headers = headers or {}
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            headers=self.default_headers,
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.client.close()

    def _handle_response(self, response: httpx.Response) -> Any:
        """Handle API response and extract data"""
        try:
            data = response.json()
        except ValueError:
            console.print(f"[red]Failed to parse response: {response.text}[/red]")
            raise OrderQueueError(
                f"Invalid JSON response: {response.status_code}"
            ) from None

        if response.status_code >= 400:
            error = data.get("error") if isinstance(data, dict) else None
            if isinstance(error, dict):
                error_msg = error.get("message", "Unknown error")
            else:
                error_msg = str(data.get("detail", "Unknown error"))
            console.print(Panel(f"[red]{error_msg}[/red]", title="API Error"))
            raise OrderQueueError(f"API Error {response.status_code}: {error_msg}")

        # Handle envelope format (with "ok" field)
        if isinstance(data, dict) and "ok" in data:
            if not data.get("ok", False):
                error_msg = data.get("error", {}).get("message", "Request failed")
                console.print(Panel(f"[red]{error_msg}[/red]", title="Request Failed"))
                raise OrderQueueError(error_msg)
            return data.get("data", {})

        # Handle direct response format (no envelope)
        return data

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        try:
            # Merge request-specific headers with default headers
            request_headers = {**self.default_headers, **(headers or {})}
            response = self.client.request(
                method, f"/v1{path}", params=params, json=json, headers=request_headers
            )
        except httpx.RequestError as e:
            console.print(f"[red]Connection error: {e}[/red]")
            raise OrderQueueError(f"Connection failed: {e}") from None
        return self._handle_response(response)

    def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Make GET request"""
        return self.request("GET", path, params=params)

    def post(
        self,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Make POST request"""
        return self.request("POST", path, params=params, json=json)
