"""API Endpoint Wrappers - Typed API calls"""

from typing import Any

import httpx

from ..utils.config_manager import config
from .base import APIClient


class OrderQueueClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_headers = headers or api_config.get("headers") or {}

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers={k: str(v) for k, v in final_headers.items()},
            transport=transport,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    # Jobs Endpoints
    def submit_job(
        self,
        type: str,
        payload: dict[str, Any],
        priority: int = 0,
        max_attempts: int | None = None,
    ) -> dict[str, Any]:
        """Submit a job to the queue"""
        data: dict[str, Any] = {"type": type, "payload": payload, "priority": priority}
        if max_attempts is not None:
            data["max_attempts"] = max_attempts
        return self.api.post("/jobs", data)

    def list_jobs(
        self,
        status: str | None = None,
        type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List jobs with filters"""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        if type:
            params["type"] = type
        return self.api.get("/jobs", params)

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Get a specific job by ID"""
        return self.api.get(f"/jobs/{job_id}")

    def get_job_logs(self, job_id: str) -> list[dict[str, Any]]:
        """Get log entries of a job"""
        return self.api.get(f"/jobs/{job_id}/logs")

    def cancel_job(self, job_id: str) -> dict[str, Any]:
        """Cancel a pending or processing job"""
        return self.api.post(f"/jobs/{job_id}/cancel")

    def get_stats(self) -> dict[str, Any]:
        """Get queue statistics"""
        return self.api.get("/jobs/stats")
