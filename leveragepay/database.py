"""SQLite-backed persistence for users and payments."""
from __future__ import annotations

import logging
import queue
import re
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .errors import Conflict, NotFound, Unavailable
from .models import Payment, PaymentStatus, User

logger = logging.getLogger("leveragepay.database")

_UNIQUE_FAILURE = re.compile(r"UNIQUE constraint failed: \w+\.(\w+)")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS payments (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id),
    amount TEXT NOT NULL,
    currency TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'completed', 'failed')),
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_payments_user_created ON payments(user_id, created_at);
"""


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    # Fixed-width so that lexical order in SQL matches chronological order.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _generate_id() -> str:
    return uuid.uuid4().hex


class Database:
    """SQLite wrapper with a bounded connection pool.

    The handle must be opened with :meth:`initialize` before use and released
    with :meth:`close`. Every call waits at most ``timeout`` seconds for a
    pooled connection and for SQLite's write lock.
    """

    def __init__(self, path: Path, *, timeout: float = 5.0, pool_size: int = 5) -> None:
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        _ensure_directory(path)
        self._path = path
        self._timeout = timeout
        self._pool_size = pool_size
        self._pool: "queue.Queue[Optional[sqlite3.Connection]]" = queue.Queue(maxsize=pool_size)
        self._lock = threading.Lock()
        self._open = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._open

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=self._timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create the required tables and open the connection pool."""

        with self._lock:
            if self._open:
                return
            try:
                conn = self._connect()
                try:
                    conn.execute("PRAGMA journal_mode = WAL")
                    conn.executescript(_SCHEMA)
                    conn.commit()
                finally:
                    conn.close()
            except sqlite3.Error as exc:
                raise Unavailable(f"Unable to open database at {self._path}") from exc

            for _ in range(self._pool_size):
                self._pool.put_nowait(None)
            self._open = True
        logger.info("Database opened at %s", self._path)

    def close(self) -> None:
        """Close every pooled connection. The handle may be re-opened later."""

        with self._lock:
            if not self._open:
                return
            self._open = False
            while True:
                try:
                    conn = self._pool.get_nowait()
                except queue.Empty:
                    break
                if conn is not None:
                    conn.close()
        logger.info("Database at %s closed", self._path)

    def __enter__(self) -> "Database":
        self.initialize()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        if not self._open:
            raise Unavailable("Database is not open")
        try:
            conn = self._pool.get(timeout=self._timeout)
        except queue.Empty as exc:
            raise Unavailable("Timed out waiting for a database connection") from exc

        try:
            if conn is None:
                conn = self._connect()
            with conn:
                yield conn
        except sqlite3.DatabaseError as exc:
            logger.warning("Database operation failed: %s", exc)
            raise Unavailable("Database is unavailable") from exc
        finally:
            if self._open:
                self._pool.put_nowait(conn)
            elif conn is not None:
                conn.close()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def insert_user(self, username: str, email: str, password_hash: str) -> User:
        """Insert a user, relying on the UNIQUE indexes to reject duplicates."""

        user_id = _generate_id()
        created_at = _current_timestamp()
        with self._connection() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO users (id, username, email, password_hash, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (user_id, username, email, password_hash, _serialize_datetime(created_at)),
                )
            except sqlite3.IntegrityError as exc:
                match = _UNIQUE_FAILURE.search(str(exc))
                field = match.group(1) if match else None
                if field:
                    raise Conflict(f"A user with that {field} already exists", field=field) from exc
                raise Conflict("User already exists") from exc

        return User(id=user_id, username=username, email=email, created_at=created_at)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def user_exists(self, user_id: str) -> bool:
        with self._connection() as conn:
            row = conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone()
        return row is not None

    def get_user_credentials(self, *, username: Optional[str] = None, email: Optional[str] = None) -> Optional[Tuple[User, str]]:
        """Return the user and stored password hash matching ``username`` or ``email``."""

        if (username is None) == (email is None):
            raise ValueError("Exactly one of username or email must be given")

        column, value = ("username", username) if username is not None else ("email", email)
        with self._connection() as conn:
            row = conn.execute(f"SELECT * FROM users WHERE {column} = ?", (value,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row), row["password_hash"]

    def list_users(self) -> List[User]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at, rowid").fetchall()
        return [self._row_to_user(row) for row in rows]

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------
    def insert_payment(self, user_id: str, amount: Decimal, currency: str) -> Payment:
        payment_id = _generate_id()
        created_at = _current_timestamp()
        with self._connection() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO payments (id, user_id, amount, currency, status, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        payment_id,
                        user_id,
                        str(amount),
                        currency,
                        PaymentStatus.PENDING.value,
                        _serialize_datetime(created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise NotFound("User not found") from exc

        return Payment(
            id=payment_id,
            user_id=user_id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING,
            created_at=created_at,
        )

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM payments WHERE id = ?", (payment_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_payment(row)

    def list_payments_for_user(self, user_id: str) -> List[Payment]:
        """Return the user's payments, oldest first, from a single snapshot."""

        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM payments WHERE user_id = ? ORDER BY created_at, rowid",
                (user_id,),
            ).fetchall()
        return [self._row_to_payment(row) for row in rows]

    def update_payment_status(self, payment_id: str, status: PaymentStatus) -> Optional[Payment]:
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE payments SET status = ? WHERE id = ?",
                (status.value, payment_id),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM payments WHERE id = ?", (payment_id,)).fetchone()
        return self._row_to_payment(row)

    # ------------------------------------------------------------------
    # Row conversion helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            created_at=_parse_datetime(row["created_at"]),
        )

    @staticmethod
    def _row_to_payment(row: sqlite3.Row) -> Payment:
        return Payment(
            id=row["id"],
            user_id=row["user_id"],
            amount=Decimal(row["amount"]),
            currency=row["currency"],
            status=PaymentStatus(row["status"]),
            created_at=_parse_datetime(row["created_at"]),
        )


__all__ = ["Database"]
