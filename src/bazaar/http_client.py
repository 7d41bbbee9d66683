"""Shared async HTTP plumbing for the registry and payout adapters."""

from __future__ import annotations

from typing import Any

import httpx


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------


class ServiceError(Exception):
    """Base exception for collaborator service calls."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ServiceAuthError(ServiceError):
    """401/403 — authentication or authorization failure."""


class ServiceNotFoundError(ServiceError):
    """404 — resource not found."""


class ServiceValidationError(ServiceError):
    """422 — request validation failure."""


class ServiceServerError(ServiceError):
    """5xx — server-side error."""


class ServiceConnectionError(ServiceError):
    """Network/DNS failure."""


class ServiceTimeoutError(ServiceError):
    """Request timeout."""


_STATUS_MAP: dict[int, type[ServiceError]] = {
    401: ServiceAuthError,
    403: ServiceAuthError,
    404: ServiceNotFoundError,
    422: ServiceValidationError,
}


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class ServiceClient:
    """Async JSON client for a collaborator service's ``/api/v1`` API.

    Constructor accepts explicit params and does no env-var loading.
    Uses ``token`` auth header.
    """

    def __init__(self, host: str, api_key: str) -> None:
        base_url = host.rstrip("/") + "/api/v1"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"token {api_key}"},
            timeout=httpx.Timeout(connect=5.0, read=15.0, write=10.0, pool=5.0),
        )

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and map errors to the ServiceError hierarchy."""
        try:
            response = await self._client.request(method, endpoint, json=json_data)
        except httpx.ConnectError as exc:
            raise ServiceConnectionError(str(exc)) from exc
        except httpx.TimeoutException as exc:
            raise ServiceTimeoutError(str(exc)) from exc

        if response.status_code >= 400:
            body = response.text
            exc_cls = _STATUS_MAP.get(response.status_code)
            if exc_cls is not None:
                raise exc_cls(body, status_code=response.status_code)
            if response.status_code >= 500:
                raise ServiceServerError(body, status_code=response.status_code)
            raise ServiceError(body, status_code=response.status_code)

        return response.json()

    async def health_check(self) -> dict[str, Any]:
        """GET /health — service health status."""
        return await self._request("GET", "/health")

    # -- lifecycle ------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> ServiceClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
