"""User registration, login and token verification."""
from __future__ import annotations

import logging

from email_validator import EmailNotValidError, validate_email

from .database import Database
from .errors import NotFound, Unauthorized, ValidationError
from .models import User
from .security import AccessToken, PasswordHasher, TokenManager

logger = logging.getLogger("leveragepay.users")

USERNAME_MAX_LENGTH = 64
# bcrypt only reads the first 72 bytes of its input.
PASSWORD_MAX_BYTES = 72

_INVALID_CREDENTIALS = "Invalid credentials"


def normalize_username(username: str) -> str:
    normalized = username.strip()
    if not normalized:
        raise ValidationError("username must not be empty")
    if len(normalized) > USERNAME_MAX_LENGTH:
        raise ValidationError(f"username must be at most {USERNAME_MAX_LENGTH} characters")
    if "@" in normalized:
        raise ValidationError("username must not contain '@'")
    return normalized


def normalize_email(email: str) -> str:
    stripped = email.strip()
    if not stripped:
        raise ValidationError("email must not be empty")
    try:
        validated = validate_email(stripped, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError(f"email is not valid: {exc}") from exc
    return validated.normalized.lower()


class UserService:
    """Registers accounts and exchanges credentials for access tokens."""

    def __init__(
        self,
        database: Database,
        *,
        hasher: PasswordHasher,
        tokens: TokenManager,
        password_min_length: int = 8,
    ) -> None:
        self._database = database
        self._hasher = hasher
        self._tokens = tokens
        self._password_min_length = password_min_length

    def _check_password(self, password: str) -> None:
        if not password:
            raise ValidationError("password must not be empty")
        if len(password) < self._password_min_length:
            raise ValidationError(
                f"password must be at least {self._password_min_length} characters"
            )
        if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
            raise ValidationError(f"password must be at most {PASSWORD_MAX_BYTES} bytes")

    def register(self, username: str, email: str, password: str) -> User:
        """Create an account and return its public view.

        Raises :class:`ValidationError` for malformed input and
        :class:`~leveragepay.errors.Conflict` when the username or email is
        already taken.
        """

        normalized_username = normalize_username(username)
        normalized_email = normalize_email(email)
        self._check_password(password)

        password_hash = self._hasher.hash(password)
        user = self._database.insert_user(normalized_username, normalized_email, password_hash)
        logger.info("Registered user %s (%s)", user.id, user.username)
        return user

    def login(self, username_or_email: str, password: str) -> AccessToken:
        """Verify credentials and issue an access token.

        Unknown accounts and wrong passwords are indistinguishable to the caller.
        """

        identifier = username_or_email.strip()
        if not identifier or not password:
            raise Unauthorized(_INVALID_CREDENTIALS)

        if "@" in identifier:
            try:
                email = normalize_email(identifier)
            except ValidationError as exc:
                self._hasher.verify_dummy(password)
                logger.warning("Failed login attempt with malformed email")
                raise Unauthorized(_INVALID_CREDENTIALS) from exc
            record = self._database.get_user_credentials(email=email)
        else:
            record = self._database.get_user_credentials(username=identifier)

        if record is None:
            self._hasher.verify_dummy(password)
            logger.warning("Failed login attempt for unknown account %s", identifier)
            raise Unauthorized(_INVALID_CREDENTIALS)

        user, password_hash = record
        if not self._hasher.verify(password, password_hash):
            logger.warning("Failed login attempt for user %s", user.id)
            raise Unauthorized(_INVALID_CREDENTIALS)

        token = self._tokens.issue(user.id)
        logger.info("User %s logged in", user.id)
        return token

    def verify_token(self, token: str) -> str:
        return self._tokens.verify(token)

    def get_user(self, user_id: str) -> User:
        user = self._database.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        return user


__all__ = ["UserService", "normalize_email", "normalize_username"]
