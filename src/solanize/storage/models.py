"""Pydantic models mirroring the chat gateway's JSON payloads."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class AuthState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    ERROR = "error"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

TEMP_PREFIX = "temp-"


def temp_id(kind: str) -> str:
    """Generate a local id such as ``temp-user-3f9a1c0b2d4e``."""
    return f"{TEMP_PREFIX}{kind}-{uuid.uuid4().hex[:12]}"


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Chat records
# ---------------------------------------------------------------------------

class ChatSession(BaseModel):
    id: str
    title: str = ""
    created_at: str = Field(default_factory=utcnow_iso)
    updated_at: str = Field(default_factory=utcnow_iso)

    @property
    def is_placeholder(self) -> bool:
        return self.id.startswith(TEMP_PREFIX)


class ChatMessage(BaseModel):
    id: str
    content: str
    role: MessageRole
    created_at: str = Field(default_factory=utcnow_iso)

    @property
    def is_optimistic(self) -> bool:
        """Locally synthesized, never persisted by the backend."""
        return self.id.startswith(TEMP_PREFIX)


# ---------------------------------------------------------------------------
# Agent proposals
# ---------------------------------------------------------------------------

class EndpointCall(BaseModel):
    """One API operation the agent wants to run on the user's behalf."""

    endpoint: str
    method: str = "POST"
    description: str = ""
    params: dict[str, Any] = Field(default_factory=dict)
    risk_level: RiskLevel = RiskLevel.LOW


class ProposedAction(BaseModel):
    action_id: str
    intent_description: str = ""
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    endpoints_to_call: list[EndpointCall] = Field(default_factory=list)
    estimated_cost: float = 0.0
    warnings: list[str] = Field(default_factory=list)

    @property
    def high_risk_calls(self) -> list[EndpointCall]:
        return [c for c in self.endpoints_to_call if c.risk_level == RiskLevel.HIGH]


class PreparedTransaction(BaseModel):
    """A server-built transaction awaiting the user's signature.

    ``unsigned_transaction`` is the base64 wire encoding.
    """

    transaction_id: str
    transaction_type: str
    unsigned_transaction: str
    from_address: str
    to_address: Optional[str] = None
    amount: Optional[float] = None
    token: Optional[str] = None
    fee_estimate: float = 0.0


# ---------------------------------------------------------------------------
# Request / response bodies
# ---------------------------------------------------------------------------

class ActionResponse(BaseModel):
    action_id: str
    approved: bool
    modified_params: Optional[dict[str, Any]] = None


class SendMessageRequest(BaseModel):
    content: str
    role: MessageRole = MessageRole.USER
    action_response: Optional[ActionResponse] = None
    signed_transaction: Optional[str] = None
    transaction_id: Optional[str] = None

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class SendMessageResponse(BaseModel):
    user_message: ChatMessage
    ai_message: ChatMessage
    proposed_actions: Optional[ProposedAction] = None
    prepared_transaction: Optional[PreparedTransaction] = None
