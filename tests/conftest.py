# tests/conftest.py
import asyncio
import base64
import inspect
import json
import time
from typing import Callable

import httpx
import jwt
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from solanize.api.chat_api import ChatApi
from solanize.api.gateway import GatewayClient
from solanize.chat.store import ChatSessionStore
from solanize.errors import WalletRejectedError
from solanize.storage.token_store import TokenStore
from solanize.wallet.adapter import WalletAdapter

BASE_URL = "http://gateway.test/api/v1"
PREFIX = "/api/v1"


def make_jwt(expires_in: float = 3600, **claims) -> str:
    payload = {"sub": "wallet", "exp": int(time.time() + expires_in), **claims}
    return jwt.encode(payload, "test-secret", algorithm="HS256")


def make_unsigned_transaction(payer: Keypair, lamports: int = 1_000) -> str:
    """Base64 wire encoding of an unsigned SOL transfer paid by *payer*."""
    ix = transfer(
        TransferParams(
            from_pubkey=payer.pubkey(),
            to_pubkey=Keypair().pubkey(),
            lamports=lamports,
        )
    )
    message = Message.new_with_blockhash([ix], payer.pubkey(), Hash.default())
    tx = Transaction.new_unsigned(message)
    return base64.b64encode(bytes(tx)).decode("ascii")


def message_json(id: str, content: str, role: str = "user") -> dict:
    return {
        "id": id,
        "content": content,
        "role": role,
        "created_at": "2024-01-01T00:00:00+00:00",
    }


def session_json(id: str, title: str = "Chat") -> dict:
    return {
        "id": id,
        "title": title,
        "created_at": "2024-01-01T00:00:00+00:00",
        "updated_at": "2024-01-01T00:00:00+00:00",
    }


def reply_json(user_id: str, ai_id: str, content: str, answer: str = "ok", **extra) -> dict:
    return {
        "user_message": message_json(user_id, content, "user"),
        "ai_message": message_json(ai_id, answer, "assistant"),
        **extra,
    }


async def wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeBackend:
    """Scriptable stand-in for the chat gateway, served via MockTransport.

    Routes are keyed by ``(method, path)`` with the ``/api/v1`` prefix
    stripped. A route is either a response body (served with 200), a
    ``(status, body)`` tuple, or a callable taking the request; callables
    may be async.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], object] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, route) -> None:
        self.routes[(method, path)] = route

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and self._path(r) == path]

    def count(self, method: str, path: str) -> int:
        return len(self.calls(method, path))

    @staticmethod
    def _path(request: httpx.Request) -> str:
        path = request.url.path
        return path[len(PREFIX):] if path.startswith(PREFIX) else path

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, self._path(request)))
        if route is None:
            return httpx.Response(404, json={"detail": "Not Found"})
        if callable(route):
            result = route(request)
            if inspect.isawaitable(result):
                result = await result
        else:
            result = route
        if isinstance(result, httpx.Response):
            return result
        if isinstance(result, tuple):
            status, body = result
            return httpx.Response(status, json=body)
        return httpx.Response(200, json=result)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


def request_json(request: httpx.Request) -> dict:
    return json.loads(request.content or b"{}")


class FakeWallet(WalletAdapter):
    """In-memory wallet; set ``reject`` to decline, ``failure`` to raise it,
    ``gate`` to hold signing.
    """

    def __init__(self, keypair: Keypair | None = None):
        super().__init__()
        self.keypair = keypair or Keypair()
        self.reject = False
        self.failure: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.messages_signed: list[bytes] = []
        self.transactions_signed = 0

    @property
    def wallets(self) -> list[str]:
        return ["fake"]

    async def _do_connect(self) -> str:
        return str(self.keypair.pubkey())

    def use_account(self, keypair: Keypair) -> None:
        self.keypair = keypair

    async def sign_message(self, message: bytes) -> bytes:
        self.messages_signed.append(message)
        if self.gate is not None:
            await self.gate.wait()
        if self.failure is not None:
            raise self.failure
        if self.reject:
            raise WalletRejectedError("User rejected the request")
        return bytes(self.keypair.sign_message(message))

    async def sign_transaction(self, transaction: Transaction) -> Transaction:
        self.transactions_signed += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.failure is not None:
            raise self.failure
        if self.reject:
            raise WalletRejectedError("User rejected the request")
        transaction.partial_sign([self.keypair], transaction.message.recent_blockhash)
        return transaction


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def tokens(tmp_path):
    return TokenStore(tmp_path)


@pytest.fixture
def gateway(backend, tokens):
    return GatewayClient(BASE_URL, tokens, transport=backend.transport)


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def store(gateway, tokens):
    tokens.save(make_jwt())
    return ChatSessionStore(ChatApi(gateway), lambda: True)
