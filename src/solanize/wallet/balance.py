"""Wallet-data collaborator: SOL balance over Solana JSON-RPC."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable

import httpx

logger = logging.getLogger("solanize.wallet.balance")

LAMPORTS_PER_SOL = Decimal(1_000_000_000)


class BalanceTracker:
    """Caches the connected wallet's SOL balance.

    *address_fn* is read on every refresh so the tracker follows wallet
    switches. Errors are logged and kept in :attr:`error`; a failed refresh
    keeps the last known balance.
    """

    def __init__(
        self,
        rpc_url: str,
        address_fn: Callable[[], str | None],
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.rpc_url = rpc_url
        self._address_fn = address_fn
        self._transport = transport
        self._timeout = timeout
        self.balance: Decimal | None = None
        self.error: str | None = None
        self.refresh_count = 0

    async def get_balance(self, address: str) -> Decimal:
        """Return the balance of *address* in SOL."""
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getBalance",
            "params": [address],
        }
        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
            resp = await client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        if "error" in data:
            raise RuntimeError(data["error"].get("message", "RPC error"))
        lamports = data["result"]["value"]
        return Decimal(lamports) / LAMPORTS_PER_SOL

    async def refresh(self) -> Decimal | None:
        self.refresh_count += 1
        address = self._address_fn()
        if address is None:
            self.balance = None
            return None
        try:
            self.balance = await self.get_balance(address)
            self.error = None
        except (httpx.HTTPError, RuntimeError, KeyError) as e:
            logger.warning(f"Failed to refresh balance for {address}: {e}")
            self.error = str(e)
        return self.balance
