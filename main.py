"""Command-line interface for the LeveragePay service."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from getpass import getpass
from pathlib import Path
from typing import Sequence

from leveragepay.application import build_database
from leveragepay.config import Settings, load_settings
from leveragepay.database import Database
from leveragepay.errors import ServiceError, Unavailable
from leveragepay.models import PaymentStatus

logger = logging.getLogger("leveragepay.main")

_STARTUP_ATTEMPTS = 3
_STARTUP_BACKOFF_SECONDS = 1.0


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="LeveragePay service utilities")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional YAML configuration file (defaults to LEVERAGEPAY_CONFIG)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the database schema")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: LEVERAGEPAY_HOST or 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=None, help="Listening port (default: PORT or 4000)")

    subparsers.add_parser("create-user", help="Register a user interactively")
    subparsers.add_parser("list-users", help="List registered users")

    status_parser = subparsers.add_parser(
        "set-payment-status",
        help="Record a settlement outcome for a payment",
    )
    status_parser.add_argument("payment_id", help="Identifier of the payment to update")
    status_parser.add_argument("status", choices=[status.value for status in PaymentStatus])

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "create-user", "list-users", "set-payment-status"}

    # Global options may precede the subcommand; anything else unknown belongs to ``serve``.
    head: list[str] = []
    rest = list(args_list)
    while rest and rest[0] == "--config" and len(rest) >= 2:
        head.extend(rest[:2])
        rest = rest[2:]

    if not rest:
        rest = ["serve"]
    else:
        first = rest[0]
        if first not in known_commands and first not in ("-h", "--help"):
            if not any(flag in rest for flag in ("-h", "--help")):
                rest = ["serve", *rest]

    return parser.parse_args([*head, *rest])


def _initialise_database(settings: Settings) -> Database:
    database = build_database(settings)
    delay = _STARTUP_BACKOFF_SECONDS
    for attempt in range(1, _STARTUP_ATTEMPTS + 1):
        try:
            database.initialize()
        except Unavailable as exc:
            if attempt == _STARTUP_ATTEMPTS:
                raise SystemExit(f"Database unavailable after {attempt} attempts: {exc}") from exc
            logger.warning("Database unavailable (attempt %s/%s), retrying in %.1fs", attempt, _STARTUP_ATTEMPTS, delay)
            time.sleep(delay)
            delay *= 2
        else:
            break
    logger.info("Database initialised at %s", database.path)
    return database


def _serve(settings: Settings, *, host: str | None, port: int | None) -> None:
    from leveragepay.api import create_app
    import uvicorn

    if not settings.secret_key:
        raise SystemExit("LEVERAGEPAY_SECRET_KEY must be set before starting the API.")

    database = _initialise_database(settings)
    bind_host = host or settings.host
    bind_port = port or settings.port
    logger.info("Starting LeveragePay API on http://%s:%s", bind_host, bind_port)

    app = create_app(database=database, settings=settings)
    uvicorn.run(app, host=bind_host, port=bind_port, log_level=settings.log_level.lower())


def _prompt_for_password(min_length: int) -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {min_length} characters): ")
        if len(password) < min_length:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _create_user(settings: Settings, database: Database) -> int:
    from leveragepay.security import PasswordHasher, TokenManager
    from leveragepay.users import UserService

    username = input("Username: ").strip()
    email = input("Email address: ").strip()
    password = _prompt_for_password(settings.password_min_length)
    if password is None:
        print("Aborted creating user.")
        return 1

    # Tokens are never issued here; the secret only has to be non-empty.
    service = UserService(
        database,
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        tokens=TokenManager(settings.secret_key or "unused"),
        password_min_length=settings.password_min_length,
    )
    try:
        user = service.register(username, email, password)
    except ServiceError as exc:
        print(f"Failed to create user: {exc.message}", file=sys.stderr)
        return 1

    print(f"Created user {user.id}: {user.username} <{user.email}>")
    return 0


def _list_users(database: Database) -> int:
    users = database.list_users()
    if not users:
        print("No users are currently registered.")
        return 0

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':<32}  {'Username':<24}  {'Email':<32}  Created")
    print("-" * 110)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        print(f"{user.id:<32}  {user.username:<24}  {user.email:<32}  {created}")
    return 0


def _set_payment_status(database: Database, payment_id: str, status: str) -> int:
    from leveragepay.payments import PaymentService

    try:
        payment = PaymentService(database).update_status(payment_id, status)
    except ServiceError as exc:
        print(f"Failed to update payment: {exc.message}", file=sys.stderr)
        return 1

    print(f"Payment {payment.id} is now {payment.status.value}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = load_settings(args.config)
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command == "serve":
        _serve(settings, host=args.host, port=args.port)
        return 0

    database = _initialise_database(settings)
    try:
        if args.command == "init-db":
            return 0
        if args.command == "create-user":
            return _create_user(settings, database)
        if args.command == "list-users":
            return _list_users(database)
        if args.command == "set-payment-status":
            return _set_payment_status(database, args.payment_id, args.status)
    finally:
        database.close()

    raise SystemExit(f"Unknown command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())
