"""Wallet adapter surface consumed by the auth and transaction layers."""

from __future__ import annotations

import abc

from solders.transaction import Transaction

from solanize.core.events import CONNECT, DISCONNECT, WalletEvent, WalletEventBus


class WalletAdapter(abc.ABC):
    """Abstract wallet: connection state plus user-interactive signing.

    ``connect``, ``sign_message`` and ``sign_transaction`` may suspend for a
    long time (the user is being asked) and may raise
    :class:`~solanize.errors.WalletRejectedError`. Connection changes are
    announced on :attr:`events` so listeners never poll.
    """

    def __init__(self, events: WalletEventBus | None = None) -> None:
        self.events = events or WalletEventBus()
        self.connecting = False
        self._public_key: str | None = None
        self._selected: str | None = None

    @property
    def connected(self) -> bool:
        return self._public_key is not None

    @property
    def public_key(self) -> str | None:
        """Base58 public key of the connected account."""
        return self._public_key

    @property
    @abc.abstractmethod
    def wallets(self) -> list[str]:
        """Names of the wallets this adapter can select."""

    def select(self, name: str) -> None:
        if name not in self.wallets:
            raise ValueError(f"Unknown wallet '{name}'. Available: {self.wallets}")
        self._selected = name

    async def connect(self) -> str:
        """Connect and announce it; returns the public key."""
        self.connecting = True
        try:
            public_key = await self._do_connect()
        finally:
            self.connecting = False
        self._public_key = public_key
        await self.events.publish(WalletEvent(kind=CONNECT, public_key=public_key))
        return public_key

    async def disconnect(self) -> None:
        self._public_key = None
        await self.events.publish(WalletEvent(kind=DISCONNECT))

    @abc.abstractmethod
    async def _do_connect(self) -> str:
        """Open the underlying wallet and return its base58 public key."""

    @abc.abstractmethod
    async def sign_message(self, message: bytes) -> bytes:
        """Return the 64-byte ed25519 signature over *message*."""

    @abc.abstractmethod
    async def sign_transaction(self, transaction: Transaction) -> Transaction:
        """Return *transaction* carrying this wallet's signature."""
