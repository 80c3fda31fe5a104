"""Wallet challenge-response authentication state machine.

One :class:`AuthController` per client owns the only :class:`AuthState`.
It listens to wallet connection events and drives its own transitions::

    Disconnected -> Connected -> Authenticating -> Authenticated
                                      |
                                      +-> Error --retry()--> Connected

The exchange is: ``POST /auth/challenge/{address}`` for a challenge, the
wallet signs its UTF-8 bytes, then ``POST /auth/verify`` with the base58
signature returns a bearer token. Any failure discards the partial state
and lands in ``Error``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import base58
import httpx

from solanize.api.gateway import GatewayClient
from solanize.core.events import WalletEvent
from solanize.errors import AuthenticationError, WalletError, WalletRejectedError
from solanize.storage.models import AuthState
from solanize.storage.token_store import TokenStore
from solanize.wallet.adapter import WalletAdapter

logger = logging.getLogger("solanize.auth")

StateListener = Callable[[AuthState, AuthState], None]

_TOKEN_KEYS = ("jwt", "token", "access_token")


class _Superseded(Exception):
    """The wallet session changed while an exchange was suspended."""


def _extract_token(data: object) -> str:
    if isinstance(data, dict):
        for key in _TOKEN_KEYS:
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    raise AuthenticationError("Authentication failed: no token in response")


class AuthController:
    """Single source of truth for wallet identity and credential status."""

    def __init__(
        self,
        wallet: WalletAdapter,
        gateway: GatewayClient,
        token_store: TokenStore,
        *,
        auto_authenticate: bool = True,
        refresh_leeway_seconds: float = 60.0,
    ) -> None:
        self.wallet = wallet
        self.gateway = gateway
        self.tokens = token_store
        self.auto_authenticate = auto_authenticate
        self.refresh_leeway_seconds = refresh_leeway_seconds

        self._state = AuthState.DISCONNECTED
        self._address: str | None = None
        self.error: str | None = None
        self._inflight: asyncio.Task | None = None
        # Bumped whenever the wallet session ends; exchanges started under an
        # older epoch must not write state.
        self._epoch = 0
        self._listeners: list[StateListener] = []

        gateway.set_unauthorized_handler(self.handle_credential_rejected)
        wallet.events.subscribe(self._on_wallet_event)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state == AuthState.AUTHENTICATED

    @property
    def is_authenticating(self) -> bool:
        return self._state == AuthState.AUTHENTICATING

    @property
    def has_error(self) -> bool:
        return self._state == AuthState.ERROR

    @property
    def wallet_address(self) -> str | None:
        return self._address

    def add_listener(self, listener: StateListener) -> None:
        """Register ``listener(old, new)``, called after every transition."""
        self._listeners.append(listener)

    def _transition(self, new: AuthState, error: str | None = None) -> None:
        old = self._state
        self._state = new
        self.error = error
        if old != new:
            logger.info(f"Auth state {old.value} -> {new.value}")
        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception as e:
                logger.error(f"Auth state listener error: {e}")

    # ------------------------------------------------------------------
    # Wallet events
    # ------------------------------------------------------------------

    async def _on_wallet_event(self, event: WalletEvent) -> None:
        if not event.connected:
            self._force_disconnected()
            return

        if self._address is not None and event.public_key != self._address:
            logger.info("Wallet account changed; dropping previous identity")
            self._force_disconnected()

        if self._state != AuthState.DISCONNECTED:
            return
        self._address = event.public_key
        self._transition(AuthState.CONNECTED)
        if self.restore_session():
            return
        if self.auto_authenticate:
            self._start_exchange()

    def _force_disconnected(self) -> None:
        self._epoch += 1
        self._address = None
        self.tokens.clear()
        self._transition(AuthState.DISCONNECTED)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def restore_session(self) -> bool:
        """Adopt a previously stored, unexpired token for the connected wallet."""
        if not self.wallet.connected:
            return False
        if self._state == AuthState.DISCONNECTED:
            self._address = self.wallet.public_key
            self._transition(AuthState.CONNECTED)
        if self._state != AuthState.CONNECTED:
            return self.is_authenticated

        token = self.tokens.load()
        if token is None:
            return False
        if self.tokens.is_expired(token):
            logger.info("Stored token has expired; discarding it")
            self.tokens.clear()
            return False
        self._transition(AuthState.AUTHENTICATED)
        return True

    async def authenticate(self) -> bool:
        """Run the challenge-response exchange, or join the one in flight.

        Returns ``True`` when the controller ends up ``Authenticated``.
        """
        if self._inflight is not None and not self._inflight.done():
            return await asyncio.shield(self._inflight)

        if not self.wallet.connected:
            logger.warning("Cannot authenticate: wallet not connected")
            return False
        if self._state == AuthState.DISCONNECTED:
            self._address = self.wallet.public_key
            self._transition(AuthState.CONNECTED)
        if self._state == AuthState.AUTHENTICATED:
            return True

        return await asyncio.shield(self._start_exchange())

    async def retry(self) -> bool:
        """Re-enter ``Connected`` from ``Error`` and authenticate again."""
        if self._state != AuthState.ERROR:
            return self.is_authenticated
        self._transition(AuthState.CONNECTED)
        return await self.authenticate()

    def logout(self) -> None:
        self._epoch += 1
        self.tokens.clear()
        if self.wallet.connected:
            self._transition(AuthState.CONNECTED)
        else:
            self._address = None
            self._transition(AuthState.DISCONNECTED)

    def handle_credential_rejected(self) -> None:
        """Demote to ``Connected`` after the server rejected the credential.

        Idempotent; an exchange already in flight is left to finish.
        """
        if self._state == AuthState.AUTHENTICATED:
            self._transition(AuthState.CONNECTED)

    async def refresh_token(self) -> bool:
        """Rotate the stored token. Failure is non-fatal and keeps the old one."""
        token = self.tokens.load()
        if token is None:
            return False
        try:
            response = await self.gateway.post("/auth/refresh")
            if not response.is_success:
                logger.warning(f"Token refresh rejected: HTTP {response.status_code}")
                return False
            new_token = _extract_token(response.json())
        except (httpx.HTTPError, ValueError, AuthenticationError) as e:
            logger.warning(f"Token refresh failed: {e}")
            return False

        if self.tokens.load() != token:
            logger.info("Token changed during refresh; keeping the newer one")
            return False
        self.tokens.save(new_token)
        return True

    async def refresh_if_expiring(self) -> bool:
        token = self.tokens.load()
        if token is None or not self.tokens.is_expired(token, self.refresh_leeway_seconds):
            return False
        return await self.refresh_token()

    # ------------------------------------------------------------------
    # Challenge-response exchange
    # ------------------------------------------------------------------

    def _start_exchange(self) -> asyncio.Task:
        address = self._address or self.wallet.public_key
        self._transition(AuthState.AUTHENTICATING)
        task = asyncio.get_running_loop().create_task(self._exchange(address, self._epoch))
        self._inflight = task
        task.add_done_callback(self._clear_inflight)
        return task

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None

    def _check_current(self, epoch: int) -> None:
        if epoch != self._epoch or self._state != AuthState.AUTHENTICATING:
            raise _Superseded()

    async def _exchange(self, address: str | None, epoch: int) -> bool:
        try:
            if address is None:
                raise WalletError("Wallet not connected")
            challenge = await self._request_challenge(address)
            self._check_current(epoch)

            signature = await self.wallet.sign_message(challenge.encode("utf-8"))
            self._check_current(epoch)

            token = await self._verify(address, signature, challenge)
            self._check_current(epoch)
        except _Superseded:
            logger.warning("Discarding authentication result for a superseded wallet session")
            return False
        except WalletRejectedError as e:
            return self._fail(epoch, f"Signature request rejected: {e}")
        except (AuthenticationError, WalletError) as e:
            return self._fail(epoch, str(e))
        except httpx.HTTPError as e:
            return self._fail(epoch, f"Network error during authentication: {e}")
        except asyncio.CancelledError:
            self._fail(epoch, "Authentication was cancelled")
            raise
        except Exception as e:
            return self._fail(epoch, f"Authentication failed: {e}")

        self.tokens.save(token)
        self._transition(AuthState.AUTHENTICATED)
        return True

    def _fail(self, epoch: int, message: str) -> bool:
        logger.error(f"Authentication failed: {message}")
        if epoch == self._epoch and self._state == AuthState.AUTHENTICATING:
            self._transition(AuthState.ERROR, message)
        return False

    async def _request_challenge(self, address: str) -> str:
        response = await self.gateway.post(f"/auth/challenge/{address}")
        if not response.is_success:
            raise AuthenticationError(f"Failed to get challenge: {response.reason_phrase}")
        try:
            data = response.json()
        except ValueError as e:
            raise AuthenticationError("Failed to get challenge: malformed response") from e
        challenge = None
        if isinstance(data, dict):
            challenge = data.get("challenge") or data.get("message")
        if not isinstance(challenge, str) or not challenge:
            raise AuthenticationError("Failed to get challenge: empty challenge")
        return challenge

    async def _verify(self, address: str, signature: bytes, challenge: str) -> str:
        response = await self.gateway.post(
            "/auth/verify",
            json={
                "wallet_address": address,
                "signature": base58.b58encode(signature).decode("ascii"),
                "challenge": challenge,
            },
        )
        if not response.is_success:
            raise AuthenticationError(f"Authentication failed: {response.reason_phrase}")
        try:
            data = response.json()
        except ValueError as e:
            raise AuthenticationError("Authentication failed: malformed response") from e
        return _extract_token(data)
