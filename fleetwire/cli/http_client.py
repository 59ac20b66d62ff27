"""HTTP client for the Fleetwire API.

Thin wrapper around httpx used by the CLI. Error responses raise
FleetwireClientError, never typer.Exit, so the client is reusable for
scripts and tests.
"""

import logging
import os
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class FleetwireClientError(Exception):
    """Raised when the API returns an error response or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(message)


def _error_from_body(body: Any) -> tuple[str | None, str | None]:
    """Pull (code, message) out of any of the API's error envelopes."""
    if not isinstance(body, dict):
        return None, None
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("code"), error.get("message")
    if "error_code" in body:
        return body["error_code"], body.get("message")
    if "errorCode" in body:
        return body["errorCode"], error
    if "detail" in body:
        return None, str(body["detail"])
    if isinstance(error, str):
        return None, error
    return None, None


class HttpClient:
    """Async client for the Fleetwire API."""

    def __init__(self, base_url: str = "http://127.0.0.1:8000", timeout: float = 45.0):
        """Initialize with the API base URL.

        Args:
            base_url: The server's HTTP base URL.
            timeout: Request timeout; longer than the server-side send deadline.
        """
        self._base_url = base_url
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None
        self._api_key = os.environ.get("FLEETWIRE_API_KEY", "").strip()
        self._cron_secret = os.environ.get("CRON_SECRET", "").strip()

    async def __aenter__(self):
        headers = {}
        if self._api_key:
            headers["X-API-Key"] = self._api_key
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=headers,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._client:
            await self._client.aclose()

    def _raise_for_status(self, resp: httpx.Response) -> None:
        """Raise FleetwireClientError on non-2xx responses."""
        if resp.status_code >= 400:
            try:
                code, message = _error_from_body(resp.json())
            except ValueError:
                code, message = None, None
            raise FleetwireClientError(
                message=message or resp.text or f"HTTP {resp.status_code}",
                status_code=resp.status_code,
                code=code,
            )

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise FleetwireClientError(f"Cannot reach Fleetwire at {self._base_url}: {e}") from e
        self._raise_for_status(resp)
        return resp.json()

    async def health(self) -> dict[str, Any]:
        return await self._request("GET", "/health")

    async def get_status(self, organization_id: str | None) -> dict[str, Any]:
        params = {"organizationId": organization_id} if organization_id else None
        return await self._request("GET", "/api/v1/whatsapp/status", params=params)

    async def initialize(self, organization_id: str | None) -> dict[str, Any]:
        return await self._request(
            "POST", "/api/v1/whatsapp/initialize", json={"organizationId": organization_id}
        )

    async def disconnect(self, organization_id: str | None, logout: bool = False) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/api/v1/whatsapp/disconnect",
            json={"organizationId": organization_id, "logout": logout},
        )

    async def send(self, phone_number: str, message: str, organization_id: str | None) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/api/v1/whatsapp/send",
            json={"phoneNumber": phone_number, "message": message, "organizationId": organization_id},
        )

    async def run_sweep(self, sweep: str, organization_id: str | None) -> dict[str, Any]:
        """Trigger a cron sweep ("invoice-reminders" or "trip-notifications")."""
        headers = {"Authorization": f"Bearer {self._cron_secret}"} if self._cron_secret else None
        params = {"organizationId": organization_id} if organization_id else None
        return await self._request("POST", f"/api/v1/cron/{sweep}", params=params, headers=headers)
