"""
possumbly.api.routes.invites — Invite ledger endpoints
=======================================================
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import Engine

from possumbly.api.deps import (
    AdminContext,
    AuthContext,
    get_audit,
    get_engine,
    require_admin,
    require_user,
)
from possumbly.api.rate_limit import rate_limit
from possumbly.database.models import AuditAction, as_utc
from possumbly.engine.validation import require_id
from possumbly.errors import InvalidInviteError
from possumbly.services import invite_service
from possumbly.services.audit_service import AuditLogger

router = APIRouter(prefix="/invites", tags=["invites"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RedeemBody(BaseModel):
    # Left untyped so a non-string code gets our message instead of a 422
    code: Any = None


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------
@router.post("", status_code=201)
def create_invite(
    ctx: AdminContext = Depends(require_admin),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    """Mint a new single-use invite code."""
    invite = invite_service.create_invite(engine, ctx.user.id)
    audit.record(
        AuditAction.INVITE_CREATED,
        resource_type="invite",
        resource_id=invite.id,
        **ctx.audit_fields(),
    )
    return {
        "id": invite.id,
        "code": invite.code,
        "created_at": as_utc(invite.created_at).isoformat(),
    }


@router.get("")
def list_invites(
    ctx: AdminContext = Depends(require_admin),
    engine: Engine = Depends(get_engine),
):
    return invite_service.list_invites(engine)


@router.delete("/{invite_id}")
def delete_invite(
    invite_id: str,
    ctx: AdminContext = Depends(require_admin),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    require_id(invite_id, "invite")
    invite_service.delete_invite(engine, invite_id)
    audit.record(
        AuditAction.INVITE_DELETED,
        resource_type="invite",
        resource_id=invite_id,
        **ctx.audit_fields(),
    )
    return {"success": True}


# ---------------------------------------------------------------------------
# Redemption (any signed-in user)
# ---------------------------------------------------------------------------
@router.post("/redeem", dependencies=[Depends(rate_limit("invite_redeem"))])
def redeem_invite(
    body: RedeemBody,
    ctx: AuthContext = Depends(require_user),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    """Exchange an invite code for workshop access."""
    try:
        code = invite_service.redeem_invite(engine, ctx.user.id, body.code)
    except InvalidInviteError as exc:
        audit.record(
            AuditAction.INVITE_REDEEM_FAILED,
            details={"reason": exc.reason},
            success=False,
            **ctx.audit_fields(),
        )
        raise HTTPException(400, str(exc)) from exc

    audit.record(
        AuditAction.USER_INVITE_REDEEMED,
        details={"inviteCodePrefix": code[:4] + "..."},
        **ctx.audit_fields(),
    )
    return {"success": True, "message": "Invite code redeemed successfully"}
