"""Keyed collection of items awaiting a user decision."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Iterator, TypeVar

T = TypeVar("T")


@dataclass
class PendingEntry(Generic[T]):
    key: str
    item: T
    session_id: str | None = None


class PendingItems(Generic[T]):
    """Insertion-ordered map of pending proposals, tagged with their session."""

    def __init__(self) -> None:
        self._entries: dict[str, PendingEntry[T]] = {}

    def add(self, key: str, item: T, session_id: str | None = None) -> None:
        self._entries[key] = PendingEntry(key=key, item=item, session_id=session_id)

    def remove(self, key: str) -> T | None:
        """Remove and return the item; ``None`` if it was not pending."""
        entry = self._entries.pop(key, None)
        return entry.item if entry else None

    def get(self, key: str) -> T | None:
        entry = self._entries.get(key)
        return entry.item if entry else None

    def session_of(self, key: str) -> str | None:
        entry = self._entries.get(key)
        return entry.session_id if entry else None

    def for_session(self, session_id: str | None) -> list[T]:
        return [e.item for e in self._entries.values() if e.session_id == session_id]

    def drop_session(self, session_id: str) -> None:
        self._entries = {
            k: e for k, e in self._entries.items() if e.session_id != session_id
        }

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        return list(self._entries)

    def values(self) -> list[T]:
        return [e.item for e in self._entries.values()]

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))
