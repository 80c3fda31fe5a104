"""Solanize storage layer -- persisted token and Pydantic payload models."""

from solanize.storage.models import (
    ActionResponse,
    AuthState,
    ChatMessage,
    ChatSession,
    EndpointCall,
    MessageRole,
    PreparedTransaction,
    ProposedAction,
    RiskLevel,
    SendMessageRequest,
    SendMessageResponse,
)
from solanize.storage.token_store import TokenStore

__all__ = [
    "TokenStore",
    "ActionResponse",
    "AuthState",
    "ChatMessage",
    "ChatSession",
    "EndpointCall",
    "MessageRole",
    "PreparedTransaction",
    "ProposedAction",
    "RiskLevel",
    "SendMessageRequest",
    "SendMessageResponse",
]
