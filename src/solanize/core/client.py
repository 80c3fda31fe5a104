"""SolanizeClient - wires wallet, auth, gateway, chat and transactions together."""

from __future__ import annotations

import logging
from pathlib import Path

import httpx

from solanize.api.chat_api import ChatApi
from solanize.api.gateway import GatewayClient
from solanize.auth.controller import AuthController
from solanize.chat.store import ChatSessionStore
from solanize.config import ClientConfig, get_home_dir, load_config
from solanize.storage.models import AuthState
from solanize.storage.token_store import TokenStore
from solanize.transactions.orchestrator import TransactionOrchestrator
from solanize.wallet.adapter import WalletAdapter
from solanize.wallet.balance import BalanceTracker
from solanize.wallet.networks import resolve_rpc_url

logger = logging.getLogger("solanize.client")


class SolanizeClient:
    """One client process: a single auth controller, store and orchestrator.

    Data flows wallet -> auth -> gateway -> chat store -> orchestrator and
    back into the chat store. Losing the wallet identity resets the chat
    state so nothing from the previous identity leaks into the next one.
    """

    def __init__(
        self,
        config: ClientConfig,
        home_dir: Path,
        wallet: WalletAdapter,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        rpc_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.home_dir = home_dir
        self.wallet = wallet
        self.tokens = TokenStore(home_dir)
        self.gateway = GatewayClient(
            config.api.base_url,
            self.tokens,
            timeout=config.api.timeout_seconds,
            transport=transport,
        )
        self.auth = AuthController(
            wallet,
            self.gateway,
            self.tokens,
            auto_authenticate=config.auth.auto_authenticate,
            refresh_leeway_seconds=config.auth.refresh_leeway_seconds,
        )
        self.chat = ChatSessionStore(ChatApi(self.gateway), lambda: self.auth.is_authenticated)
        self.balances = BalanceTracker(
            resolve_rpc_url(config.solana.network, config.solana.rpc_url),
            lambda: wallet.public_key,
            transport=rpc_transport,
        )
        self.transactions = TransactionOrchestrator(
            wallet,
            self.chat,
            wallet_data=self.balances,
            confirmation_delay=config.transactions.confirmation_delay_seconds,
        )

        self.chat.add_transaction_listener(self.transactions.accept)
        self.chat.add_session_removed_listener(self.transactions.drop_session)
        self.auth.add_listener(self._on_auth_state)

    @classmethod
    def load(
        cls,
        wallet: WalletAdapter,
        base_path: Path | None = None,
        **kwargs,
    ) -> SolanizeClient:
        """Build a client from ``.solanize/config.yaml`` (defaults if absent)."""
        home_dir = get_home_dir(base_path)
        config = load_config(home_dir / "config.yaml")
        return cls(config=config, home_dir=home_dir, wallet=wallet, **kwargs)

    def _on_auth_state(self, old: AuthState, new: AuthState) -> None:
        if new == AuthState.DISCONNECTED and old != AuthState.DISCONNECTED:
            logger.info("Wallet identity lost; clearing chat state")
            self.chat.reset()
            self.transactions.clear()

    async def shutdown(self) -> None:
        await self.transactions.close()
        await self.gateway.close()
