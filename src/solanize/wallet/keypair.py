"""Local wallet backed by a Solana CLI keypair file."""

from __future__ import annotations

import inspect
import json
import logging
from pathlib import Path
from typing import Awaitable, Callable, Union

from solders.keypair import Keypair
from solders.transaction import Transaction

from solanize.core.events import WalletEventBus
from solanize.errors import WalletError, WalletNotConnectedError, WalletRejectedError
from solanize.wallet.adapter import WalletAdapter

logger = logging.getLogger("solanize.wallet.keypair")

# Receives a short description of what is about to be signed.
ApproveFn = Callable[[str], Union[bool, Awaitable[bool]]]


def load_keypair(keypair_path: str | Path) -> Keypair:
    """Load a keypair from a JSON array of 64 secret-key bytes.

    Raises
    ------
    FileNotFoundError
        If the keypair file does not exist.
    ValueError
        If the file contains invalid data.
    """
    expanded = Path(keypair_path).expanduser()
    if not expanded.exists():
        raise FileNotFoundError(f"Keypair file not found: {expanded}")
    try:
        secret_key = json.loads(expanded.read_text(encoding="utf-8"))
        return Keypair.from_bytes(bytes(secret_key))
    except (json.JSONDecodeError, ValueError, TypeError) as e:
        raise ValueError(f"Invalid keypair file format: {e}") from e


class KeypairWallet(WalletAdapter):
    """Signs with a local keypair, asking *approve* before every signature.

    When *approve* returns ``False`` the request fails with
    :class:`WalletRejectedError`, the same way a browser wallet reports a
    user declining the popup.
    """

    NAME = "keypair"

    def __init__(
        self,
        keypair_path: str | Path | None = None,
        *,
        keypair: Keypair | None = None,
        approve: ApproveFn | None = None,
        events: WalletEventBus | None = None,
    ) -> None:
        super().__init__(events)
        self._keypair_path = keypair_path
        self._keypair = keypair
        self._approve = approve
        self._selected = self.NAME

    @property
    def wallets(self) -> list[str]:
        return [self.NAME]

    async def _do_connect(self) -> str:
        if self._keypair is None:
            if self._keypair_path is None:
                raise WalletNotConnectedError("No keypair configured")
            self._keypair = load_keypair(self._keypair_path)
        public_key = str(self._keypair.pubkey())
        logger.info(f"Keypair wallet connected: {public_key}")
        return public_key

    async def _confirm(self, description: str) -> None:
        if self._approve is None:
            return
        decision = self._approve(description)
        if inspect.isawaitable(decision):
            decision = await decision
        if not decision:
            raise WalletRejectedError("User rejected the request")

    def _require_keypair(self) -> Keypair:
        if not self.connected or self._keypair is None:
            raise WalletNotConnectedError("Wallet not connected")
        return self._keypair

    async def sign_message(self, message: bytes) -> bytes:
        keypair = self._require_keypair()
        await self._confirm("Sign message")
        return bytes(keypair.sign_message(message))

    async def sign_transaction(self, transaction: Transaction) -> Transaction:
        keypair = self._require_keypair()
        message = transaction.message
        signers = message.account_keys[: message.header.num_required_signatures]
        if keypair.pubkey() not in signers:
            raise WalletError(
                f"Transaction does not require a signature from {keypair.pubkey()}"
            )
        await self._confirm("Sign transaction")
        transaction.partial_sign([keypair], transaction.message.recent_blockhash)
        return transaction
