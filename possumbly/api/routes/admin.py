"""
possumbly.api.routes.admin — Admin dashboard endpoints
=======================================================

Users, roles, stats and the audit log.  Everything here requires an admin
session except ``POST /admin/bootstrap``, which only works while the
system has no admin at all.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import Engine

from possumbly.api.deps import (
    AdminContext,
    RequestMeta,
    get_audit,
    get_config,
    get_engine,
    get_optional_user,
    request_meta,
    require_admin,
)
from possumbly.config import PossumblyConfig
from possumbly.constants import DEFAULT_AUDIT_QUERY_LIMIT
from possumbly.database.models import AuditAction, User
from possumbly.engine.validation import require_id
from possumbly.services import admin_service, audit_service, retention_service
from possumbly.services.audit_service import AuditLogger

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


class RoleUpdate(BaseModel):
    role: Any = None


# ---------------------------------------------------------------------------
# Users & stats
# ---------------------------------------------------------------------------
@router.get("/users")
def list_users(
    ctx: AdminContext = Depends(require_admin),
    engine: Engine = Depends(get_engine),
):
    return admin_service.list_users(engine)


@router.patch("/users/{user_id}/role")
def update_role(
    user_id: str,
    body: RoleUpdate,
    ctx: AdminContext = Depends(require_admin),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    require_id(user_id, "user")
    old_role, new_role = admin_service.set_role(engine, ctx.user, user_id, body.role)
    audit.record(
        AuditAction.USER_ROLE_CHANGED,
        resource_type="user",
        resource_id=user_id,
        details={"oldRole": old_role, "newRole": new_role},
        **ctx.audit_fields(),
    )
    return {"success": True}


@router.get("/stats")
def stats(
    ctx: AdminContext = Depends(require_admin),
    engine: Engine = Depends(get_engine),
):
    return admin_service.get_stats(engine)


# ---------------------------------------------------------------------------
# Bootstrap: no guard, "admin exists" is checked before authentication
# ---------------------------------------------------------------------------
@router.post("/bootstrap")
def bootstrap(
    user: User | None = Depends(get_optional_user),
    meta: RequestMeta = Depends(request_meta),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    """Promote the caller to admin if no admin exists yet."""
    if admin_service.admin_exists(engine):
        raise admin_service.AdminExistsError()
    if user is None:
        raise HTTPException(401, "Must be authenticated to bootstrap admin")

    admin_service.bootstrap_admin(engine, user.id)
    audit.record(
        AuditAction.ADMIN_BOOTSTRAP,
        user_id=user.id,
        resource_type="user",
        resource_id=user.id,
        details={"message": "First admin created via bootstrap"},
        **meta.audit_fields(),
    )
    return {"success": True, "message": "You are now an admin"}


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------
@router.get("/audit")
def browse_audit(
    user_id: str | None = None,
    action: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    security: bool = False,
    since: datetime | None = None,
    limit: int = Query(DEFAULT_AUDIT_QUERY_LIMIT, ge=1, le=1000),
    ctx: AdminContext = Depends(require_admin),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    """Filtered audit entries, newest first, plus retention stats."""
    if action is not None and action not in {a.value for a in AuditAction}:
        raise HTTPException(400, "Unknown audit action")

    audit.flush()
    entries = audit_service.query_entries(
        engine,
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        security_only=security,
        since=since,
        limit=limit,
    )
    return {
        "entries": [audit_service.entry_dict(e) for e in entries],
        "stats": retention_service.get_retention_stats(engine),
    }


@router.delete("/audit")
def sweep_audit(
    ctx: AdminContext = Depends(require_admin),
    engine: Engine = Depends(get_engine),
    cfg: PossumblyConfig = Depends(get_config),
    audit: AuditLogger = Depends(get_audit),
):
    """Run the retention sweep now."""
    audit.flush()
    deleted = retention_service.run_retention_cleanup(engine, cfg.audit_retention_days)
    return {"deleted": deleted, "retention_days": cfg.audit_retention_days}
