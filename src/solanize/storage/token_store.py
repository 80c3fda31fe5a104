"""Durable storage for the gateway bearer token."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path

import jwt

logger = logging.getLogger("solanize.storage.token_store")


class TokenStore:
    """Persists one bearer token in ``<home>/auth.json``.

    The token is global to the client, not keyed per wallet. The most recent
    ``save()`` or ``clear()`` wins. Callers must treat a loaded token as
    potentially stale: the server's 401 is the only authority on validity.
    """

    FILENAME = "auth.json"

    def __init__(self, home_dir: Path) -> None:
        self.path = Path(home_dir) / self.FILENAME

    def load(self) -> str | None:
        """Return the stored token, or ``None`` if there is none."""
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(f"Ignoring unreadable token file {self.path}: {exc}")
            return None
        token = data.get("token")
        return token or None

    def save(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"token": token, "saved_at": int(time.time())}
        self.path.write_text(json.dumps(payload), encoding="utf-8")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)

    def clear_if_matches(self, token: str | None) -> bool:
        """Clear only if the stored token is still *token*.

        Returns ``True`` when the stored token was cleared (or was already
        gone). A newer token written since *token* was read is left alone.
        """
        current = self.load()
        if current is None:
            return True
        if current != token:
            return False
        self.clear()
        return True

    @staticmethod
    def expires_at(token: str) -> float | None:
        """Return the JWT ``exp`` claim, or ``None`` if absent or unparseable."""
        try:
            payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return None
        exp = payload.get("exp")
        return float(exp) if exp is not None else None

    @classmethod
    def is_expired(cls, token: str, leeway: float = 0.0) -> bool:
        """Best-effort local expiry check; opaque tokens never count as expired."""
        exp = cls.expires_at(token)
        if exp is None:
            return False
        return time.time() + leeway >= exp
