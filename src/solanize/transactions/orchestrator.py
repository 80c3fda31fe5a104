"""Turns agent-prepared transactions into wallet-signed, submitted ones."""

from __future__ import annotations

import asyncio
import base64
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Protocol

from solders.transaction import Transaction

from solanize.chat.store import ChatSessionStore
from solanize.errors import (
    ChatError,
    ErrorKind,
    TransactionNotPendingError,
    WalletError,
)
from solanize.storage.models import PreparedTransaction
from solanize.wallet.adapter import WalletAdapter

logger = logging.getLogger("solanize.transactions")


class WalletDataSource(Protocol):
    async def refresh(self) -> object: ...


def decode_transaction(encoded: str) -> Transaction:
    """Parse a base64 wire-format transaction. Raises ``ValueError``."""
    raw = base64.b64decode(encoded, validate=True)
    return Transaction.from_bytes(raw)


def encode_transaction(transaction: Transaction) -> str:
    return base64.b64encode(bytes(transaction)).decode("ascii")


@dataclass
class PendingTransaction:
    id: str  # client-local, distinct from the backend's transaction_id
    session_id: str | None
    prepared: PreparedTransaction
    created_at: float = field(default_factory=time.time)
    signing: bool = False


class TransactionOrchestrator:
    """Owns the client-side pending set of prepared transactions.

    An entry leaves the set only after its signed transaction was accepted
    by the chat backend, so a failed or declined attempt can be retried and
    a completed one can never be signed again.
    """

    def __init__(
        self,
        wallet: WalletAdapter,
        store: ChatSessionStore,
        *,
        wallet_data: WalletDataSource | None = None,
        confirmation_delay: float = 2.0,
    ) -> None:
        self.wallet = wallet
        self.store = store
        self.wallet_data = wallet_data
        self.confirmation_delay = confirmation_delay
        self._pending: dict[str, PendingTransaction] = {}
        self._refresh_tasks: set[asyncio.Task] = set()
        self.last_error: ChatError | None = None
        self.last_signature: str | None = None

    # ------------------------------------------------------------------
    # Pending set
    # ------------------------------------------------------------------

    @property
    def pending(self) -> list[PendingTransaction]:
        return list(self._pending.values())

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def get(self, local_id: str) -> PendingTransaction | None:
        return self._pending.get(local_id)

    def find(self, transaction_id: str) -> PendingTransaction | None:
        for entry in self._pending.values():
            if entry.prepared.transaction_id == transaction_id:
                return entry
        return None

    def accept(self, prepared: PreparedTransaction, session_id: str | None = None) -> str:
        """Add *prepared* and return its local id (existing id if already pending)."""
        existing = self.find(prepared.transaction_id)
        if existing is not None:
            return existing.id
        local_id = f"tx-{uuid.uuid4().hex[:12]}"
        self._pending[local_id] = PendingTransaction(
            id=local_id, session_id=session_id, prepared=prepared
        )
        logger.info(
            f"Transaction {prepared.transaction_id} ({prepared.transaction_type}) "
            f"awaiting signature (id={local_id})"
        )
        return local_id

    def cancel(self, local_id: str) -> bool:
        """Drop a pending entry without contacting the backend."""
        entry = self._pending.pop(local_id, None)
        if entry is None:
            return False
        self.store.pending_transactions.remove(entry.prepared.transaction_id)
        logger.info(f"Transaction {local_id} cancelled")
        return True

    def drop_session(self, session_id: str) -> None:
        """Forget entries proposed in a session that no longer exists."""
        dropped = [k for k, e in self._pending.items() if e.session_id == session_id]
        for local_id in dropped:
            del self._pending[local_id]
        if dropped:
            logger.info(f"Dropped {len(dropped)} pending transaction(s) of session {session_id}")

    def clear(self) -> None:
        self._pending.clear()

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    async def sign_and_send(self, local_id: str) -> bool:
        """Sign the pending entry with the wallet and report it to the agent.

        Raises :class:`TransactionNotPendingError` if *local_id* is not (or no
        longer) pending. Other failures return ``False`` with
        :attr:`last_error` set and the entry left in place.
        """
        entry = self._pending.get(local_id)
        if entry is None:
            raise TransactionNotPendingError(f"Transaction {local_id} is not pending")
        if entry.signing:
            logger.warning(f"Transaction {local_id} is already being signed")
            return False

        async def retry() -> bool:
            return await self.sign_and_send(local_id)

        entry.signing = True
        self.last_error = None
        try:
            transaction = decode_transaction(entry.prepared.unsigned_transaction)
            signed = await self.wallet.sign_transaction(transaction)
            encoded = encode_transaction(signed)
            sent = await self.store.sign_transaction(
                entry.prepared.transaction_id, encoded, entry.session_id
            )
        except WalletError as exc:
            logger.warning(f"Wallet did not sign transaction {local_id}: {exc}")
            self.last_error = ChatError.from_exception(exc, "sign transaction", retry)
            return False
        except ValueError as exc:
            logger.error(f"Transaction {local_id} has an invalid payload: {exc}")
            self.last_error = ChatError(
                f"Invalid transaction payload: {exc}", ErrorKind.VALIDATION
            )
            return False
        except Exception as exc:
            logger.error(f"Signing transaction {local_id} failed: {exc}")
            self.last_error = ChatError(
                f"Could not sign transaction: {exc}", ErrorKind.UNKNOWN, retry
            )
            return False
        finally:
            entry.signing = False

        if not sent:
            store_error = self.store.error
            self.last_error = ChatError(
                store_error.message if store_error else "Failed to submit transaction",
                store_error.kind if store_error else ErrorKind.UNKNOWN,
                retry,
            )
            return False

        self._pending.pop(local_id, None)
        if signed.signatures:
            self.last_signature = str(signed.signatures[0])
        logger.info(f"Transaction {entry.prepared.transaction_id} signed and submitted")
        self._schedule_refresh()
        return True

    # ------------------------------------------------------------------
    # Wallet data refresh
    # ------------------------------------------------------------------

    def _schedule_refresh(self) -> None:
        if self.wallet_data is None:
            return
        task = asyncio.get_running_loop().create_task(self._delayed_refresh())
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _delayed_refresh(self) -> None:
        # Give the chain time to confirm before reading balances.
        await asyncio.sleep(self.confirmation_delay)
        await self.wallet_data.refresh()

    async def close(self) -> None:
        for task in list(self._refresh_tasks):
            task.cancel()
        if self._refresh_tasks:
            await asyncio.gather(*self._refresh_tasks, return_exceptions=True)
