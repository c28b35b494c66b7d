"""Password hashing and signed access tokens."""
from __future__ import annotations

import base64
import hashlib
import json
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from cryptography.fernet import Fernet, InvalidToken
from passlib.context import CryptContext

from .errors import Unauthorized


class PasswordHasher:
    """Salted bcrypt hashing backed by passlib."""

    def __init__(self, *, rounds: int = 12) -> None:
        self._context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)
        self._dummy_hash: str | None = None

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, hashed: str) -> bool:
        try:
            return self._context.verify(password, hashed)
        except ValueError:
            return False

    def verify_dummy(self, password: str) -> bool:
        """Spend the same effort as :meth:`verify` when no account matched.

        Always returns ``False``.
        """

        if self._dummy_hash is None:
            self._dummy_hash = self.hash(secrets.token_urlsafe(16))
        self.verify(password, self._dummy_hash)
        return False


@dataclass(frozen=True)
class AccessToken:
    token: str
    user_id: str
    expires_at: datetime


def _build_cipher(secret: str) -> Fernet:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


class TokenManager:
    """Issue and verify time-limited bearer tokens.

    Tokens are Fernet messages (AES-CBC with an HMAC-SHA256 signature)
    carrying ``{"sub": <user id>, "exp": <unix time>}``.
    """

    def __init__(self, secret: str, *, ttl_seconds: int = 3600, clock: Callable[[], float] = time.time) -> None:
        if not secret:
            raise ValueError("A token signing secret must be provided")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._cipher = _build_cipher(secret)
        self._ttl = ttl_seconds
        self._clock = clock

    def issue(self, user_id: str) -> AccessToken:
        now = int(self._clock())
        expires = now + self._ttl
        payload = json.dumps({"sub": user_id, "exp": expires}, separators=(",", ":")).encode("utf-8")
        token = self._cipher.encrypt_at_time(payload, now).decode("ascii")
        return AccessToken(
            token=token,
            user_id=user_id,
            expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
        )

    def verify(self, token: str) -> str:
        """Return the user id carried by ``token`` or raise :class:`Unauthorized`."""

        now = int(self._clock())
        try:
            raw = self._cipher.decrypt_at_time(token.encode("ascii"), self._ttl, now)
            payload = json.loads(raw)
        except (InvalidToken, UnicodeError, ValueError) as exc:
            raise Unauthorized("Invalid or expired token") from exc

        if not isinstance(payload, dict):
            raise Unauthorized("Invalid or expired token")
        user_id = payload.get("sub")
        expires = payload.get("exp")
        if not isinstance(user_id, str) or not isinstance(expires, int) or expires <= now:
            raise Unauthorized("Invalid or expired token")
        return user_id


__all__ = ["AccessToken", "PasswordHasher", "TokenManager"]
