"""Chat sessions and messages with optimistic-update semantics.

Confirmed messages (server ids) and optimistic ones (``temp-`` ids, never
persisted) are kept as two ordered sequences per session and merged by
:func:`merge_messages`. Every mutation after an ``await`` first checks that
its target is still relevant: results are dropped if the store was reset
(identity change) or the session was deleted while the call was in flight.
"""

from __future__ import annotations

import contextlib
import logging
from collections import Counter
from typing import Any, Callable, Iterable, Optional

from solanize.api.chat_api import ChatApi
from solanize.chat.pending import PendingItems
from solanize.errors import ChatApiError, ChatError, ErrorKind, RetryFn
from solanize.storage.models import (
    ActionResponse,
    ChatMessage,
    ChatSession,
    MessageRole,
    PreparedTransaction,
    ProposedAction,
    SendMessageRequest,
    SendMessageResponse,
    TEMP_PREFIX,
    temp_id,
    utcnow_iso,
)

logger = logging.getLogger("solanize.chat")

LOADING_KEYS = (
    "sessions",
    "messages",
    "sending",
    "creating",
    "processing_action",
    "signing_transaction",
)

TransactionListener = Callable[[PreparedTransaction, str], None]
SessionListener = Callable[[str], None]


def merge_messages(
    confirmed: Optional[Iterable[Optional[ChatMessage]]],
    optimistic: Optional[Iterable[Optional[ChatMessage]]],
) -> list[ChatMessage]:
    """Confirmed messages then optimistic ones, with ``None`` entries dropped."""
    merged = [*(confirmed or ()), *(optimistic or ())]
    return [m for m in merged if m is not None]


class ChatSessionStore:
    """In-memory owner of sessions, messages and pending proposals."""

    def __init__(self, api: ChatApi, is_authenticated: Callable[[], bool]) -> None:
        self.api = api
        self._is_authenticated = is_authenticated

        self.sessions: list[ChatSession] = []
        self.current_session_id: str | None = None
        self.messages: dict[str, list[ChatMessage]] = {}
        self.optimistic: dict[str, list[ChatMessage]] = {}
        self.pending_actions: PendingItems[ProposedAction] = PendingItems()
        self.pending_transactions: PendingItems[PreparedTransaction] = PendingItems()
        self.error: ChatError | None = None

        self._busy: Counter[str] = Counter()
        self._generation = 0
        self._deleted: set[str] = set()
        self._inflight_ids: set[str] = set()
        self._loading_sessions: set[str] = set()
        # Sessions whose server history has been fetched at least once.
        self._fetched: set[str] = set()
        self._transaction_listeners: list[TransactionListener] = []
        self._session_removed_listeners: list[SessionListener] = []

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    @property
    def loading(self) -> dict[str, bool]:
        return {key: self._busy[key] > 0 for key in LOADING_KEYS}

    @property
    def is_loading(self) -> bool:
        return any(self.loading.values())

    @property
    def has_any_sessions(self) -> bool:
        return bool(self.sessions)

    @contextlib.contextmanager
    def _track(self, key: str):
        self._busy[key] += 1
        try:
            yield
        finally:
            self._busy[key] -= 1

    def _set_error(self, exc: Exception, operation: str, retry: RetryFn | None = None) -> None:
        logger.error(f"Chat API error during {operation}: {exc}")
        self.error = ChatError.from_exception(exc, operation, retry)

    def clear_error(self) -> None:
        self.error = None

    def _stale(self, generation: int, session_id: str | None, what: str) -> bool:
        if generation != self._generation:
            logger.warning(f"Dropping {what} result: chat state was reset meanwhile")
            return True
        if session_id is not None and session_id in self._deleted:
            logger.warning(f"Dropping {what} result: session {session_id} was deleted")
            return True
        return False

    def add_transaction_listener(self, listener: TransactionListener) -> None:
        """Call ``listener(prepared, session_id)`` for each new prepared transaction."""
        self._transaction_listeners.append(listener)

    def add_session_removed_listener(self, listener: SessionListener) -> None:
        """Call ``listener(session_id)`` after a session is deleted."""
        self._session_removed_listeners.append(listener)

    def reset(self) -> None:
        """Forget everything; in-flight results will be ignored."""
        self._generation += 1
        self.sessions = []
        self.current_session_id = None
        self.messages = {}
        self.optimistic = {}
        self.pending_actions.clear()
        self.pending_transactions.clear()
        self.error = None
        self._deleted.clear()
        self._inflight_ids.clear()
        self._fetched.clear()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def load_sessions(self) -> list[ChatSession] | None:
        if not self._is_authenticated():
            self.sessions = []
            self.current_session_id = None
            return []

        generation = self._generation
        with self._track("sessions"):
            self.error = None
            try:
                fetched = await self.api.get_sessions()
            except ChatApiError as exc:
                self._set_error(exc, "load sessions", self.load_sessions)
                return None

        if self._stale(generation, None, "load sessions"):
            return None
        placeholders = [s for s in self.sessions if s.is_placeholder]
        self.sessions = placeholders + [s for s in fetched if s.id not in self._deleted]
        sessions = self.sessions
        if self.current_session_id is None and sessions:
            self.current_session_id = sessions[0].id
        current = self.current_session_id
        if current is not None and not current.startswith(TEMP_PREFIX):
            await self._ensure_messages(current)
        return sessions

    async def create_session(self, title: str | None = None) -> ChatSession | None:
        if not self._is_authenticated():
            return None

        generation = self._generation
        previous = self.current_session_id
        placeholder = ChatSession(id=temp_id("session"), title=title or "New chat")
        self.sessions = [placeholder, *self.sessions]
        self.current_session_id = placeholder.id

        with self._track("creating"):
            self.error = None
            try:
                session = await self.api.create_session(title)
            except ChatApiError as exc:
                if generation == self._generation:
                    self.sessions = [s for s in self.sessions if s.id != placeholder.id]
                    if self.current_session_id == placeholder.id:
                        self.current_session_id = previous
                self._set_error(exc, "create session", lambda: self.create_session(title))
                return None

        if self._stale(generation, None, "create session"):
            return None
        self.sessions = [session if s.id == placeholder.id else s for s in self.sessions]
        if self.current_session_id == placeholder.id:
            self.current_session_id = session.id
        self.messages.setdefault(session.id, [])
        self._fetched.add(session.id)
        return session

    async def load_messages(self, session_id: str) -> list[ChatMessage] | None:
        """Fetch (or re-fetch) the confirmed messages of *session_id*."""
        if not self._is_authenticated() or not session_id:
            return None

        generation = self._generation
        with self._track("messages"):
            self.error = None
            try:
                fetched = await self.api.get_messages(session_id)
            except ChatApiError as exc:
                self._set_error(
                    exc, "load messages", lambda: self.load_messages(session_id)
                )
                return None

        if self._stale(generation, session_id, "load messages"):
            return None
        fetched = [m for m in fetched if m is not None]
        known = {m.id for m in fetched}
        # Keep replies confirmed by sends that finished after the fetch began.
        local = [m for m in self.messages.get(session_id, []) if m.id not in known]
        self.messages[session_id] = fetched + local
        self._fetched.add(session_id)
        return self.messages[session_id]

    async def switch_session(self, session_id: str) -> None:
        """Make *session_id* current, fetching its messages the first time only."""
        self.current_session_id = session_id
        await self._ensure_messages(session_id)

    async def _ensure_messages(self, session_id: str) -> None:
        # Local replies may already sit in self.messages; only a fetch counts.
        if session_id in self._fetched or session_id in self._loading_sessions:
            return
        self._loading_sessions.add(session_id)
        try:
            await self.load_messages(session_id)
        finally:
            self._loading_sessions.discard(session_id)

    async def delete_session(self, session_id: str) -> bool:
        if not self._is_authenticated() or not session_id:
            return False

        generation = self._generation
        try:
            await self.api.delete_session(session_id)
        except ChatApiError as exc:
            self._set_error(exc, "delete session", lambda: self.delete_session(session_id))
            return False

        if self._stale(generation, None, "delete session"):
            return False
        self._deleted.add(session_id)
        remaining = [s for s in self.sessions if s.id != session_id]
        self.sessions = remaining
        self.messages.pop(session_id, None)
        self.optimistic.pop(session_id, None)
        self.pending_actions.drop_session(session_id)
        self.pending_transactions.drop_session(session_id)
        self._fetched.discard(session_id)
        if self.current_session_id == session_id:
            self.current_session_id = remaining[0].id if remaining else None
        for listener in list(self._session_removed_listeners):
            listener(session_id)
        return True

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(
        self,
        content: str,
        session_id: str | None = None,
        *,
        action_response: ActionResponse | None = None,
        signed_transaction: str | None = None,
        transaction_id: str | None = None,
    ) -> bool:
        """Send a user turn and record the agent's reply.

        Plain messages appear immediately as an optimistic entry. Turns that
        carry an action response or a signed transaction do not.
        """
        message = content.strip()
        if not message:
            return False

        if session_id is None:
            session_id = self.current_session_id
        if session_id is None:
            session = await self.create_session(message[:50])
            if session is None:
                return False
            session_id = session.id
        if session_id.startswith(TEMP_PREFIX):
            logger.warning(f"Refusing to send to unconfirmed session {session_id}")
            self.error = ChatError("Session is still being created", ErrorKind.VALIDATION)
            return False

        async def retry() -> bool:
            return await self.send_message(
                content,
                session_id,
                action_response=action_response,
                signed_transaction=signed_transaction,
                transaction_id=transaction_id,
            )

        carries_payload = action_response is not None or signed_transaction is not None
        generation = self._generation
        optimistic_id: str | None = None
        if not carries_payload:
            optimistic = ChatMessage(id=temp_id("user"), content=message, role=MessageRole.USER)
            optimistic_id = optimistic.id
            self._inflight_ids.add(optimistic_id)
            self.optimistic[session_id] = [*self.optimistic.get(session_id, []), optimistic]

        request = SendMessageRequest(
            content=message,
            action_response=action_response,
            signed_transaction=signed_transaction,
            transaction_id=transaction_id if signed_transaction is not None else None,
        )

        with self._track("sending"):
            self.error = None
            try:
                response = await self.api.send_message(session_id, request)
            except ChatApiError as exc:
                if optimistic_id:
                    self._inflight_ids.discard(optimistic_id)
                if self._stale(generation, session_id, "send message"):
                    return False
                if not carries_payload:
                    self._append_error_message(session_id, exc)
                self._set_error(exc, "send message", retry)
                return False

        if optimistic_id:
            self._inflight_ids.discard(optimistic_id)
        if self._stale(generation, session_id, "send message"):
            return False
        self._apply_reply(session_id, response, action_response, request.transaction_id)
        return True

    def _append_error_message(self, session_id: str, exc: Exception) -> None:
        error_message = ChatMessage(
            id=temp_id("error"),
            content=f"Sorry, I encountered an error: {exc}. Please try again.",
            role=MessageRole.ASSISTANT,
        )
        self.optimistic[session_id] = [*self.optimistic.get(session_id, []), error_message]

    def _apply_reply(
        self,
        session_id: str,
        response: SendMessageResponse,
        action_response: ActionResponse | None,
        signed_transaction_id: str | None,
    ) -> None:
        self.messages[session_id] = [
            *self.messages.get(session_id, []),
            response.user_message,
            response.ai_message,
        ]
        # Entries of sends still in flight survive; settled failures are replaced.
        self.optimistic[session_id] = [
            m for m in self.optimistic.get(session_id, []) if m.id in self._inflight_ids
        ]

        if action_response is not None:
            self.pending_actions.remove(action_response.action_id)
        if signed_transaction_id is not None:
            self.pending_transactions.remove(signed_transaction_id)

        if response.proposed_actions is not None:
            action = response.proposed_actions
            self.pending_actions.add(action.action_id, action, session_id)
        if response.prepared_transaction is not None:
            prepared = response.prepared_transaction
            self.pending_transactions.add(prepared.transaction_id, prepared, session_id)
            for listener in list(self._transaction_listeners):
                listener(prepared, session_id)

        now = utcnow_iso()
        self.sessions = [
            s.model_copy(update={"updated_at": now}) if s.id == session_id else s
            for s in self.sessions
        ]

    # ------------------------------------------------------------------
    # Proposed actions and transactions
    # ------------------------------------------------------------------

    def _session_for(self, pending: PendingItems, key: str, session_id: str | None) -> str | None:
        return session_id or pending.session_of(key) or self.current_session_id

    async def approve_action(
        self,
        action_id: str,
        modified_params: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> bool:
        if action_id not in self.pending_actions:
            logger.warning(f"Action {action_id} is not pending")
            return False
        session_id = self._session_for(self.pending_actions, action_id, session_id)
        if session_id is None:
            return False
        with self._track("processing_action"):
            return await self.send_message(
                "User approved actions",
                session_id,
                action_response=ActionResponse(
                    action_id=action_id, approved=True, modified_params=modified_params
                ),
            )

    async def reject_action(self, action_id: str, session_id: str | None = None) -> bool:
        if action_id not in self.pending_actions:
            logger.warning(f"Action {action_id} is not pending")
            return False
        session_id = self._session_for(self.pending_actions, action_id, session_id)
        if session_id is None:
            return False
        with self._track("processing_action"):
            return await self.send_message(
                "User rejected the proposed actions",
                session_id,
                action_response=ActionResponse(action_id=action_id, approved=False),
            )

    async def sign_transaction(
        self,
        transaction_id: str,
        signed_transaction: str,
        session_id: str | None = None,
    ) -> bool:
        """Report a wallet-signed transaction back into the conversation."""
        if not transaction_id or not signed_transaction:
            return False
        if transaction_id not in self.pending_transactions:
            logger.warning(f"Transaction {transaction_id} is not pending")
            return False
        session_id = self._session_for(self.pending_transactions, transaction_id, session_id)
        if session_id is None:
            return False
        with self._track("signing_transaction"):
            return await self.send_message(
                "Transaction signed",
                session_id,
                signed_transaction=signed_transaction,
                transaction_id=transaction_id,
            )

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def current_messages(self) -> list[ChatMessage]:
        if self.current_session_id is None:
            return []
        return merge_messages(
            self.messages.get(self.current_session_id),
            self.optimistic.get(self.current_session_id),
        )

    def current_session(self) -> ChatSession | None:
        for session in self.sessions:
            if session.id == self.current_session_id:
                return session
        return None

    def current_pending_actions(self) -> list[ProposedAction]:
        if self.current_session_id is None:
            return []
        return self.pending_actions.for_session(self.current_session_id)

    def current_pending_transactions(self) -> list[PreparedTransaction]:
        if self.current_session_id is None:
            return []
        return self.pending_transactions.for_session(self.current_session_id)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def get_models(self) -> list[str] | None:
        try:
            return await self.api.get_models()
        except ChatApiError as exc:
            self._set_error(exc, "fetch models", self.get_models)
            return None

    async def health_check(self) -> dict | None:
        try:
            return await self.api.health_check()
        except ChatApiError as exc:
            self._set_error(exc, "check health", self.health_check)
            return None
