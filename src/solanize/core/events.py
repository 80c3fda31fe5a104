"""In-process async event bus for wallet connection changes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable


logger = logging.getLogger("solanize.events")

CONNECT = "connect"
DISCONNECT = "disconnect"


@dataclass
class WalletEvent:
    kind: str  # CONNECT | DISCONNECT
    public_key: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def connected(self) -> bool:
        return self.kind == CONNECT and self.public_key is not None


Callback = Callable[[WalletEvent], Awaitable[None]]


class WalletEventBus:
    """Async pub/sub bus; subscribers are awaited in registration order."""

    def __init__(self):
        self._subscribers: list[Callback] = []

    def subscribe(self, callback: Callback) -> None:
        self._subscribers.append(callback)

    async def publish(self, event: WalletEvent) -> None:
        for callback in list(self._subscribers):
            try:
                await callback(event)
            except Exception as e:
                logger.error(f"Wallet event subscriber error on '{event.kind}': {e}")
