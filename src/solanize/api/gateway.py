"""Single chokepoint for every HTTP call to the backend gateway."""

from __future__ import annotations

import logging
from typing import Any, Callable

import httpx

from solanize.storage.token_store import TokenStore

logger = logging.getLogger("solanize.api.gateway")

# Endpoints that must never carry a bearer token.
PUBLIC_ENDPOINTS = ("/auth/challenge", "/auth/verify")

UnauthorizedHandler = Callable[[], None]


class GatewayClient:
    """Attaches credentials and centralizes expiry handling.

    On a ``401`` from an authenticated endpoint the stored token is cleared
    (only if it is still the token the request carried) and the registered
    unauthorized handler is invoked. The raw response is always returned;
    callers interpret every other status code themselves.

    Transport failures propagate as :class:`httpx.HTTPError`.
    """

    def __init__(
        self,
        base_url: str,
        token_store: TokenStore,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.tokens = token_store
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, transport=transport
        )
        self._on_unauthorized: UnauthorizedHandler | None = None

    def set_unauthorized_handler(self, handler: UnauthorizedHandler) -> None:
        self._on_unauthorized = handler

    @staticmethod
    def is_public(endpoint: str) -> bool:
        return endpoint.startswith(PUBLIC_ENDPOINTS)

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        json: Any = None,
        params: dict | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        public = self.is_public(endpoint)
        token = None if public else self.tokens.load()

        merged = {"Content-Type": "application/json"}
        if token:
            merged["Authorization"] = f"Bearer {token}"
        if headers:
            merged.update(headers)

        logger.debug(f"{method} {endpoint}")
        response = await self._client.request(
            method, endpoint, json=json, params=params, headers=merged
        )

        if response.status_code == 401 and not public:
            self._handle_unauthorized(endpoint, token)
        return response

    def _handle_unauthorized(self, endpoint: str, token: str | None) -> None:
        if not self.tokens.clear_if_matches(token):
            # A newer credential was stored while this request was in flight.
            logger.info(f"Ignoring stale 401 from {endpoint}")
            return
        logger.warning(f"Credential rejected by {endpoint}; re-authentication required")
        if self._on_unauthorized:
            self._on_unauthorized()

    async def get(self, endpoint: str, **kwargs) -> httpx.Response:
        return await self.request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, **kwargs) -> httpx.Response:
        return await self.request("POST", endpoint, **kwargs)

    async def delete(self, endpoint: str, **kwargs) -> httpx.Response:
        return await self.request("DELETE", endpoint, **kwargs)

    async def close(self) -> None:
        await self._client.aclose()
