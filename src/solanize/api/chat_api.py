"""Typed wrapper over the gateway's ``/chat`` endpoints."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import TypeAdapter, ValidationError

from solanize.api.gateway import GatewayClient
from solanize.errors import ChatApiError
from solanize.storage.models import (
    ChatMessage,
    ChatSession,
    SendMessageRequest,
    SendMessageResponse,
)

logger = logging.getLogger("solanize.api.chat")

_SESSIONS = TypeAdapter(list[ChatSession])
_MESSAGES = TypeAdapter(list[ChatMessage])


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {}


def _raise_for_status(response: httpx.Response, what: str) -> None:
    if response.is_success:
        return
    body = _error_body(response)
    message = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("detail")
    if not isinstance(message, str):
        message = f"Failed to {what}: {response.reason_phrase}"
    raise ChatApiError(message, response.status_code, body)


class ChatApi:
    """Every method raises :class:`ChatApiError`; transport failures get status 0."""

    def __init__(self, gateway: GatewayClient) -> None:
        self.gateway = gateway

    async def _call(self, what: str, method: str, endpoint: str, **kwargs) -> httpx.Response:
        try:
            response = await self.gateway.request(method, endpoint, **kwargs)
        except httpx.HTTPError as exc:
            logger.error(f"Network error while trying to {what}: {exc}")
            raise ChatApiError(f"Network error while trying to {what}", 0) from exc
        _raise_for_status(response, what)
        return response

    @staticmethod
    def _parse(adapter_or_model, response: httpx.Response, what: str):
        try:
            data = response.json()
            if isinstance(adapter_or_model, TypeAdapter):
                return adapter_or_model.validate_python(data)
            return adapter_or_model.model_validate(data)
        except (ValueError, ValidationError) as exc:
            raise ChatApiError(
                f"Unexpected response while trying to {what}", response.status_code
            ) from exc

    async def get_sessions(self) -> list[ChatSession]:
        response = await self._call("fetch sessions", "GET", "/chat/sessions")
        return self._parse(_SESSIONS, response, "fetch sessions")

    async def create_session(self, title: str | None = None) -> ChatSession:
        body = {"title": title} if title else {}
        response = await self._call("create session", "POST", "/chat/sessions", json=body)
        return self._parse(ChatSession, response, "create session")

    async def get_messages(self, session_id: str) -> list[ChatMessage]:
        response = await self._call(
            "fetch messages", "GET", f"/chat/sessions/{session_id}/messages"
        )
        return self._parse(_MESSAGES, response, "fetch messages")

    async def send_message(
        self, session_id: str, request: SendMessageRequest
    ) -> SendMessageResponse:
        response = await self._call(
            "send message",
            "POST",
            f"/chat/sessions/{session_id}/messages",
            json=request.to_payload(),
        )
        return self._parse(SendMessageResponse, response, "send message")

    async def delete_session(self, session_id: str) -> None:
        """Delete a session; an already-missing session counts as deleted."""
        try:
            await self._call("delete session", "DELETE", f"/chat/sessions/{session_id}")
        except ChatApiError as exc:
            if exc.status != 404:
                raise

    async def get_models(self) -> list[str]:
        response = await self._call("fetch models", "GET", "/chat/models")
        return self._parse(TypeAdapter(list[str]), response, "fetch models")

    async def health_check(self) -> dict:
        response = await self._call("check health", "GET", "/chat/health")
        return self._parse(TypeAdapter(dict), response, "check health")
