"""Shared async HTTP plumbing for the OAuth-scoped provider APIs.

Each call carries the caller's bearer token; there is no client-wide
credential, so one client instance serves every user.  Calls are *not*
retried here: a failed provider call is reported back to the model, which
may decide to try again.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from mnemo.services.credentials import InvalidTokenError
from mnemo.services.metrics import metrics

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 15.0


class ProviderAPIError(Exception):
    """Raised when a provider API call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class ProviderClient:
    """Thin async wrapper that authenticates, times and checks each call."""

    provider: str = ""
    default_headers: dict[str, str] = {}

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        token: str,
        *,
        operation: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body (``None`` if empty).

        401 means the token was revoked upstream and raises
        ``InvalidTokenError``; every other failure raises ``ProviderAPIError``.
        """
        headers = {**self.default_headers, "Authorization": f"Bearer {token}"}
        async with metrics.track(self.provider, operation):
            try:
                response = await self._client.request(
                    method, url, params=params, json=json_body, headers=headers,
                )
            except httpx.HTTPError as exc:
                logger.error("%s %s failed: %s", self.provider, operation, exc)
                raise ProviderAPIError(f"{self.provider} request failed: {exc}") from exc

            if response.status_code == 401:
                raise InvalidTokenError(self.provider, f"{self.provider} rejected the access token")
            if response.status_code >= 400:
                logger.warning(
                    "%s %s returned %d: %s",
                    self.provider, operation, response.status_code, response.text[:200],
                )
                raise ProviderAPIError(
                    f"{self.provider} API error {response.status_code}",
                    status_code=response.status_code,
                )

        if not response.content:
            return None
        return response.json()
