"""
possumbly.api.routes.memes — Meme CRUD, render & visibility
============================================================

All routes require an invited user; everything past listing one's own
memes also requires ownership (or admin).
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import Engine

from possumbly.api.deps import (
    InvitedContext,
    audit_denied,
    get_audit,
    get_engine,
    require_invite,
)
from possumbly.api.rate_limit import rate_limit
from possumbly.database.engine import run_db
from possumbly.database.models import AuditAction
from possumbly.engine.validation import require_id
from possumbly.errors import ForbiddenError
from possumbly.services import meme_service
from possumbly.services.audit_service import AuditLogger

router = APIRouter(prefix="/memes", tags=["memes"])


# ---------------------------------------------------------------------------
# Pydantic schemas: fields stay loose, the service layer validates
# ---------------------------------------------------------------------------
class MemeCreate(BaseModel):
    template_id: Any = None
    editor_state: Any = None


class MemeUpdate(BaseModel):
    editor_state: Any = None


class RenderBody(BaseModel):
    imageData: Any = None


class VisibilityBody(BaseModel):
    is_public: Any = None


def _denied(audit: AuditLogger, ctx: InvitedContext, meme_id: str) -> None:
    audit_denied(audit, ctx, f"meme:{meme_id}", "not owner")


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
@router.get("")
def list_memes(
    ctx: InvitedContext = Depends(require_invite),
    engine: Engine = Depends(get_engine),
):
    """The caller's own memes."""
    return meme_service.list_memes(engine, ctx.user.id)


@router.get("/{meme_id}")
def get_meme(
    meme_id: str,
    ctx: InvitedContext = Depends(require_invite),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    require_id(meme_id, "meme")
    try:
        return meme_service.get_meme(engine, meme_id, ctx.user)
    except ForbiddenError:
        _denied(audit, ctx, meme_id)
        raise


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
@router.post("", status_code=201)
def create_meme(
    body: MemeCreate,
    ctx: InvitedContext = Depends(require_invite),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    meme = meme_service.create_meme(engine, ctx.user.id, body.template_id, body.editor_state)
    audit.record(
        AuditAction.MEME_CREATED,
        resource_type="meme",
        resource_id=meme.id,
        details={"templateId": meme.template_id},
        **ctx.audit_fields(),
    )
    return meme_service.meme_dict(meme)


@router.put("/{meme_id}")
def update_meme(
    meme_id: str,
    body: MemeUpdate,
    ctx: InvitedContext = Depends(require_invite),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    require_id(meme_id, "meme")
    try:
        meme = meme_service.update_meme(engine, meme_id, ctx.user, body.editor_state)
    except ForbiddenError:
        _denied(audit, ctx, meme_id)
        raise
    audit.record(
        AuditAction.MEME_UPDATED,
        resource_type="meme",
        resource_id=meme_id,
        **ctx.audit_fields(),
    )
    return meme_service.meme_dict(meme)


@router.post("/{meme_id}/render", dependencies=[Depends(rate_limit("render"))])
async def render_meme(
    meme_id: str,
    body: RenderBody,
    ctx: InvitedContext = Depends(require_invite),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    """Store the client-rendered PNG / JPEG / WebP for a meme."""
    require_id(meme_id, "meme")
    try:
        filename = await run_db(meme_service.save_render, engine, meme_id, ctx.user, body.imageData)
    except ForbiddenError:
        _denied(audit, ctx, meme_id)
        raise
    return {"success": True, "filename": filename}


@router.patch("/{meme_id}/visibility")
def set_visibility(
    meme_id: str,
    body: VisibilityBody,
    ctx: InvitedContext = Depends(require_invite),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    require_id(meme_id, "meme")
    try:
        result = meme_service.set_visibility(engine, meme_id, ctx.user, body.is_public)
    except ForbiddenError:
        _denied(audit, ctx, meme_id)
        raise
    audit.record(
        AuditAction.MEME_VISIBILITY_CHANGED,
        resource_type="meme",
        resource_id=meme_id,
        details={"isPublic": body.is_public},
        **ctx.audit_fields(),
    )
    return result


@router.delete("/{meme_id}", dependencies=[Depends(rate_limit("delete"))])
def delete_meme(
    meme_id: str,
    ctx: InvitedContext = Depends(require_invite),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    require_id(meme_id, "meme")
    try:
        meme_service.delete_meme(engine, meme_id, ctx.user)
    except ForbiddenError:
        _denied(audit, ctx, meme_id)
        raise
    audit.record(
        AuditAction.MEME_DELETED,
        resource_type="meme",
        resource_id=meme_id,
        **ctx.audit_fields(),
    )
    return {"success": True}
