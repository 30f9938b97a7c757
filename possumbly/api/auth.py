"""
possumbly.api.auth — OAuth2 login + session issuance
=====================================================

``GET /auth/{provider}`` redirects to the provider's consent screen with a
one-time ``state`` token; the callback consumes it, finds or creates the
local user, sets the ``possumbly_session`` cookie and redirects to the
frontend (``/redeem-invite`` until the user has access, ``/`` after).
"""

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime, timedelta

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import delete

from possumbly.api.deps import (
    SESSION_COOKIE,
    AuthContext,
    RequestMeta,
    get_audit,
    get_config,
    get_engine,
    get_optional_user,
    issue_session_token,
    request_meta,
    require_user,
)
from possumbly.api.providers import IdentityProvider, ProviderError, get_identity_providers
from possumbly.api.rate_limit import rate_limit
from possumbly.config import PossumblyConfig
from possumbly.database.engine import get_session, run_db
from possumbly.database.models import AuditAction, OAuthState, User
from possumbly.services.audit_service import AuditLogger
from possumbly.services.identity_service import find_or_create_user

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/auth", tags=["auth"], dependencies=[Depends(rate_limit("auth"))]
)

OAUTH_STATE_TTL_SECONDS = 600


def _store_oauth_state(engine, state: str, provider: str) -> None:
    """Persist an OAuth state token and prune stale entries."""
    cutoff = datetime.now(UTC) - timedelta(seconds=OAUTH_STATE_TTL_SECONDS)
    with get_session(engine) as session:
        session.execute(delete(OAuthState).where(OAuthState.created_at < cutoff))
        session.add(OAuthState(state=state, provider=provider))


def _consume_oauth_state(engine, state: str, provider: str) -> bool:
    """Consume a one-time OAuth state token if valid, unexpired and issued for *provider*."""
    cutoff = datetime.now(UTC) - timedelta(seconds=OAUTH_STATE_TTL_SECONDS)
    with get_session(engine) as session:
        session.execute(delete(OAuthState).where(OAuthState.created_at < cutoff))
        row = session.get(OAuthState, state)
        if row is None:
            return False
        session.delete(row)
        return row.provider == provider


def _provider_or_404(providers: dict[str, IdentityProvider], name: str) -> IdentityProvider:
    provider = providers.get(name)
    if provider is None:
        raise HTTPException(404, "Unknown or unconfigured login provider")
    return provider


def me_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "avatar_url": user.avatar_url,
        "provider": user.provider,
        "role": user.role,
        "invite_redeemed": bool(user.invite_redeemed),
    }


# ---------------------------------------------------------------------------
# Session endpoints, declared before /{provider} so they are not captured
# ---------------------------------------------------------------------------
@router.get("/me")
def me(ctx: AuthContext = Depends(require_user)):
    """Return the current user's profile."""
    return me_dict(ctx.user)


@router.get("/status")
def auth_status(user: User | None = Depends(get_optional_user)):
    if user is None:
        return {"authenticated": False, "inviteRedeemed": False}
    return {"authenticated": True, "inviteRedeemed": user.has_access}


@router.post("/logout")
def logout(
    user: User | None = Depends(get_optional_user),
    meta: RequestMeta = Depends(request_meta),
    audit: AuditLogger = Depends(get_audit),
):
    audit.record(
        AuditAction.AUTH_LOGOUT,
        user_id=user.id if user else None,
        **meta.audit_fields(),
    )
    response = JSONResponse({"success": True})
    response.delete_cookie(SESSION_COOKIE, path="/")
    return response


# ---------------------------------------------------------------------------
# OAuth round trip
# ---------------------------------------------------------------------------
@router.get("/{provider}")
async def login(
    provider: str,
    engine=Depends(get_engine),
    providers: dict[str, IdentityProvider] = Depends(get_identity_providers),
):
    """Redirect to the provider's OAuth2 consent screen."""
    idp = _provider_or_404(providers, provider)
    state = secrets.token_urlsafe(32)
    await run_db(_store_oauth_state, engine, state, idp.name)
    return RedirectResponse(idp.authorize_url(state))


@router.get("/{provider}/callback")
async def callback(
    provider: str,
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    cfg: PossumblyConfig = Depends(get_config),
    engine=Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
    providers: dict[str, IdentityProvider] = Depends(get_identity_providers),
):
    """Complete the OAuth flow, set the session cookie and redirect."""
    idp = _provider_or_404(providers, provider)
    meta = request_meta(request)

    def _fail(reason: str) -> RedirectResponse:
        audit.record(
            AuditAction.AUTH_LOGIN_FAILED,
            details={"reason": reason, "provider": idp.name},
            success=False,
            **meta.audit_fields(),
        )
        return RedirectResponse(f"{cfg.public_url}/login?error={idp.name}_failed")

    if error:
        return _fail(f"provider_error:{error}")
    if not code or not state:
        return _fail("missing_code")
    if not await run_db(_consume_oauth_state, engine, state, idp.name):
        return _fail("invalid_state")

    try:
        identity = await idp.complete(code)
    except (ProviderError, httpx.HTTPError, KeyError, ValueError) as exc:
        logger.warning("%s login failed: %s", idp.name, exc)
        return _fail("exchange_failed")

    user, created = await run_db(find_or_create_user, engine, identity)
    if created:
        audit.record(
            AuditAction.USER_CREATED,
            user_id=user.id,
            resource_type="user",
            resource_id=user.id,
            details={"provider": idp.name},
            **meta.audit_fields(),
        )
    audit.record(
        AuditAction.AUTH_LOGIN,
        user_id=user.id,
        details={"provider": idp.name},
        **meta.audit_fields(),
    )

    destination = "/" if user.has_access else "/redeem-invite"
    response = RedirectResponse(f"{cfg.public_url}{destination}")
    response.set_cookie(
        SESSION_COOKIE,
        issue_session_token(user.id, cfg.session_hours),
        max_age=cfg.session_hours * 3600,
        httponly=True,
        secure=cfg.production,
        samesite="lax",
        path="/",
    )
    return response
