"""Chat session state: sessions, messages and pending agent proposals."""

from solanize.chat.pending import PendingItems
from solanize.chat.store import ChatSessionStore, merge_messages

__all__ = ["ChatSessionStore", "PendingItems", "merge_messages"]
