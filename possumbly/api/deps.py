"""
possumbly.api.deps — FastAPI dependency injection
==================================================

Engine, config and audit logger providers plus the three authorization
guards.  Each guard resolves to a typed context carrying the reloaded
:class:`~possumbly.database.models.User`, so a handler that declares
``ctx: AdminContext = Depends(require_admin)`` can only run once the admin
check has passed.

    Unauthenticated < AuthContext < InvitedContext < AdminContext
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Annotated, Any

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from possumbly.config import PossumblyConfig, load_config
from possumbly.database.engine import create_db_engine
from possumbly.database.models import AuditAction, User
from possumbly.services.audit_service import AuditLogger
from possumbly.services.identity_service import find_user

logger = logging.getLogger(__name__)

_WEAK_SECRETS = frozenset({
    "possumbly-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"
SESSION_COOKIE = "possumbly_session"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> PossumblyConfig:
    return load_config()


def get_audit(request: Request) -> AuditLogger:
    """The audit logger the lifespan attached to ``app.state``."""
    audit: AuditLogger | None = getattr(request.app.state, "audit", None)
    if audit is None:
        raise RuntimeError("Audit logger is not initialised; the app lifespan has not run")
    return audit


# ---------------------------------------------------------------------------
# Request metadata
# ---------------------------------------------------------------------------
def client_ip(request: Request) -> str | None:
    """First ``X-Forwarded-For`` hop, else the direct peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@dataclass(frozen=True, slots=True)
class RequestMeta:
    ip: str | None
    user_agent: str | None

    def audit_fields(self) -> dict[str, Any]:
        return {"ip": self.ip, "user_agent": self.user_agent}


def request_meta(request: Request) -> RequestMeta:
    return RequestMeta(client_ip(request), request.headers.get("user-agent"))


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------
def issue_session_token(user_id: str, hours: int) -> str:
    now = datetime.now(UTC)
    payload = {"sub": user_id, "iat": now, "exp": now + timedelta(hours=hours)}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def _session_user_id(request: Request, authorization: str | None) -> str | None:
    if authorization and authorization.startswith("Bearer "):
        token = authorization.split(" ", 1)[1]
    else:
        token = request.cookies.get(SESSION_COOKIE)
    if not token:
        return None
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        return None
    sub = payload.get("sub")
    return sub if isinstance(sub, str) else None


def get_optional_user(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
    engine: Engine = Depends(get_engine),
) -> User | None:
    """The session's user, reloaded from the database, or None."""
    user_id = _session_user_id(request, authorization)
    if user_id is None:
        return None
    return find_user(engine, user_id)


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AuthContext:
    """Proof that the request carries a valid session."""

    user: User
    meta: RequestMeta

    def audit_fields(self) -> dict[str, Any]:
        """``user_id`` / ``ip`` / ``user_agent`` keywords for ``AuditLogger.record``."""
        return {"user_id": self.user.id, **self.meta.audit_fields()}


@dataclass(frozen=True, slots=True)
class InvitedContext(AuthContext):
    """Proof that the user has redeemed an invite or is an admin."""


@dataclass(frozen=True, slots=True)
class AdminContext(InvitedContext):
    """Proof that the user is an admin."""


def require_user(
    meta: RequestMeta = Depends(request_meta),
    user: User | None = Depends(get_optional_user),
) -> AuthContext:
    if user is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    return AuthContext(user, meta)


def require_invite(ctx: AuthContext = Depends(require_user)) -> InvitedContext:
    if not ctx.user.has_access:
        raise HTTPException(
            status.HTTP_403_FORBIDDEN,
            {"error": "Invite code required", "code": "INVITE_REQUIRED"},
        )
    return InvitedContext(ctx.user, ctx.meta)


def require_admin(ctx: AuthContext = Depends(require_user)) -> AdminContext:
    if not ctx.user.is_admin:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Admin access required")
    return AdminContext(ctx.user, ctx.meta)


def audit_denied(audit: AuditLogger, ctx: AuthContext, resource: str, reason: str) -> None:
    """Record an ``access.denied`` entry for an ownership or visibility refusal."""
    audit.record(
        AuditAction.ACCESS_DENIED,
        details={"resource": resource, "reason": reason},
        success=False,
        **ctx.audit_fields(),
    )
