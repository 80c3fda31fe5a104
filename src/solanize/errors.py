"""Exception hierarchy and the error kinds surfaced to the user."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional


class ErrorKind(str, Enum):
    NETWORK = "network"
    AUTH = "auth"
    VALIDATION = "validation"
    WALLET_REJECTION = "wallet-rejection"
    UNKNOWN = "unknown"


class SolanizeError(Exception):
    """Base class for all client errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class ChatApiError(SolanizeError):
    """A failed gateway call, classified once at the API boundary.

    ``status`` is ``0`` when no response was received at all.
    """

    def __init__(self, message: str, status: int, response: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.response = response
        self.kind = classify_status(status, response)


def classify_status(status: int, body: Any = None) -> ErrorKind:
    """Map an HTTP status (and whether the body was structured) to a kind."""
    if status == 0:
        return ErrorKind.NETWORK
    if status == 401:
        return ErrorKind.AUTH
    structured = isinstance(body, dict) and bool(body)
    if 400 <= status < 500 and structured:
        return ErrorKind.VALIDATION
    if status >= 400 and not structured:
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


class AuthenticationError(SolanizeError):
    """The challenge-response exchange failed."""

    kind = ErrorKind.AUTH


class WalletError(SolanizeError):
    kind = ErrorKind.AUTH


class WalletNotConnectedError(WalletError):
    pass


class WalletRejectedError(WalletError):
    """The user (or the wallet) declined a signing request."""

    kind = ErrorKind.WALLET_REJECTION


class TransactionNotPendingError(SolanizeError):
    """Signing was requested for an entry no longer in the pending set."""


RetryFn = Callable[[], Awaitable[Any]]


@dataclass
class ChatError:
    """An error as shown to the user, optionally with a retry closure."""

    message: str
    kind: ErrorKind
    retry: Optional[RetryFn] = None

    @classmethod
    def from_exception(
        cls, exc: BaseException, operation: str, retry: RetryFn | None = None
    ) -> ChatError:
        if isinstance(exc, SolanizeError):
            return cls(message=str(exc), kind=exc.kind, retry=retry)
        return cls(
            message=f"Failed to {operation}. Please try again.",
            kind=ErrorKind.UNKNOWN,
            retry=retry,
        )
