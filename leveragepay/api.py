"""FastAPI application exposing the user and payment endpoints."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings
from .database import Database
from .errors import Forbidden, NotFound, ServiceError, Unauthorized
from .models import Payment, PaymentStatus, User
from .payments import PaymentService
from .security import PasswordHasher, TokenManager
from .users import USERNAME_MAX_LENGTH, UserService

logger = logging.getLogger("leveragepay.api")

_HTTP_ERROR_KINDS = {
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "method_not_allowed",
}


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(_Schema):
    username: str = Field(..., min_length=1, max_length=USERNAME_MAX_LENGTH)
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginRequest(_Schema):
    username_or_email: str = Field(..., min_length=1, max_length=320)
    password: str = Field(..., min_length=1)


class CreatePaymentRequest(_Schema):
    user_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    currency: str = Field(..., pattern=r"^[A-Za-z]{3}$")


class UserResponse(_Schema):
    id: str
    username: str
    email: str
    created_at: datetime


class TokenResponse(_Schema):
    token: str
    token_type: str = "bearer"
    expires_at: datetime


class PaymentResponse(_Schema):
    id: str
    user_id: str
    amount: Decimal
    currency: str
    status: PaymentStatus
    created_at: datetime


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(id=user.id, username=user.username, email=user.email, created_at=user.created_at)


def _payment_to_response(payment: Payment) -> PaymentResponse:
    return PaymentResponse(
        id=payment.id,
        user_id=payment.user_id,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status,
        created_at=payment.created_at,
    )


def _describe_validation_errors(exc: RequestValidationError) -> str:
    # Only locations and messages; submitted values may contain passwords.
    parts: List[str] = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        message = str(error.get("msg", "invalid value"))
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        headers: Optional[Dict[str, str]] = None
        if isinstance(exc, Unauthorized):
            headers = {"WWW-Authenticate": "Bearer"}
        if exc.status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "validation_error", "message": _describe_validation_errors(exc)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": _HTTP_ERROR_KINDS.get(exc.status_code, "http_error"), "message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )


def _build_auth_dependency(users: UserService) -> Callable[..., str]:
    bearer_security = HTTPBearer(auto_error=False)

    def dependency(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_security),
    ) -> str:
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise Unauthorized("Missing bearer token")
        return users.verify_token(credentials.credentials)

    return dependency


def _require_self(current_user_id: str, user_id: str) -> None:
    if current_user_id != user_id:
        raise Forbidden("You may only act on your own account")


def register_api_routes(
    app: FastAPI,
    users: UserService,
    payments: PaymentService,
    *,
    current_user: Callable[..., str],
) -> None:
    """Expose the JSON API endpoints on the provided FastAPI application."""

    @app.get("/healthz")
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post(
        "/api/users/register",
        response_model=UserResponse,
        status_code=status.HTTP_201_CREATED,
    )
    def register(request: RegisterRequest) -> UserResponse:
        user = users.register(request.username, request.email, request.password)
        return _user_to_response(user)

    @app.post("/api/users/login", response_model=TokenResponse)
    def login(request: LoginRequest) -> TokenResponse:
        token = users.login(request.username_or_email, request.password)
        return TokenResponse(token=token.token, expires_at=token.expires_at)

    @app.get("/api/users/me", response_model=UserResponse)
    def me(user_id: str = Depends(current_user)) -> UserResponse:
        try:
            user = users.get_user(user_id)
        except NotFound as exc:
            raise Unauthorized("User no longer exists") from exc
        return _user_to_response(user)

    @app.post(
        "/api/payments",
        response_model=PaymentResponse,
        status_code=status.HTTP_201_CREATED,
    )
    def create_payment(
        request: CreatePaymentRequest,
        user_id: str = Depends(current_user),
    ) -> PaymentResponse:
        _require_self(user_id, request.user_id)
        payment = payments.create_payment(request.user_id, request.amount, request.currency)
        return _payment_to_response(payment)

    @app.get("/api/payments/user/{owner_id}", response_model=List[PaymentResponse])
    def list_payments(owner_id: str, user_id: str = Depends(current_user)) -> List[PaymentResponse]:
        _require_self(user_id, owner_id)
        history = payments.list_payments_for_user(owner_id)
        return [_payment_to_response(payment) for payment in history]

    @app.get("/api/payments/{payment_id}", response_model=PaymentResponse)
    def get_payment(payment_id: str, user_id: str = Depends(current_user)) -> PaymentResponse:
        payment = payments.get_payment(payment_id)
        if payment.user_id != user_id:
            raise NotFound("Payment not found")
        return _payment_to_response(payment)


def create_app(
    *,
    database: Database,
    settings: Settings | None = None,
    tokens: TokenManager | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application around an injected database handle.

    The database is opened when the application starts and closed on shutdown.
    """

    config = settings or Settings()
    if tokens is None:
        if not config.secret_key:
            raise ValueError("A secret key is required to sign access tokens")
        tokens = TokenManager(config.secret_key, ttl_seconds=config.token_ttl_seconds)

    users = UserService(
        database,
        hasher=PasswordHasher(rounds=config.bcrypt_rounds),
        tokens=tokens,
        password_min_length=config.password_min_length,
    )
    payments = PaymentService(database)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        database.initialize()
        try:
            yield
        finally:
            database.close()

    app = FastAPI(
        title="LeveragePay API",
        version="0.1.0",
        description="User accounts and payment records.",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.database = database
    app.state.settings = config
    app.state.users = users
    app.state.payments = payments

    _register_error_handlers(app)
    register_api_routes(app, users, payments, current_user=_build_auth_dependency(users))
    return app


__all__ = ["create_app", "register_api_routes"]
