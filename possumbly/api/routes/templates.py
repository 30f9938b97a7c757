"""
possumbly.api.routes.templates — Template catalogue & upload
=============================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
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
from possumbly.engine.validation import require_id, sanitize_template_name
from possumbly.errors import ForbiddenError
from possumbly.services import template_service, upload_service
from possumbly.services.audit_service import AuditLogger

router = APIRouter(prefix="/templates", tags=["templates"])
logger = logging.getLogger(__name__)


@router.get("")
def list_templates(
    ctx: InvitedContext = Depends(require_invite),
    engine: Engine = Depends(get_engine),
):
    return template_service.list_templates(engine)


@router.get("/{template_id}")
def get_template(
    template_id: str,
    ctx: InvitedContext = Depends(require_invite),
    engine: Engine = Depends(get_engine),
):
    require_id(template_id, "template")
    return template_service.template_dict(template_service.get_template(engine, template_id))


@router.post("", status_code=201, dependencies=[Depends(rate_limit("upload"))])
async def upload_template(
    image: UploadFile | None = File(None),
    name: str | None = Form(None),
    ctx: InvitedContext = Depends(require_invite),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    """Upload a new template image (multipart ``image`` + ``name``)."""
    if image is None:
        raise HTTPException(400, "No image file provided")
    clean_name = sanitize_template_name(name)

    content = await image.read()
    filename, width, height = await upload_service.save_template_upload(
        image.filename, content, image.content_type
    )

    try:
        template = await run_db(
            template_service.create_template,
            engine,
            name=clean_name,
            filename=filename,
            width=width,
            height=height,
            uploaded_by=ctx.user.id,
        )
    except Exception:
        upload_service.delete_stored(upload_service.TEMPLATES, filename)
        raise

    audit.record(
        AuditAction.TEMPLATE_CREATED,
        resource_type="template",
        resource_id=template.id,
        details={"name": clean_name},
        **ctx.audit_fields(),
    )
    return template_service.template_dict(template)


@router.delete("/{template_id}", dependencies=[Depends(rate_limit("delete"))])
def delete_template(
    template_id: str,
    ctx: InvitedContext = Depends(require_invite),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    """Delete a template (uploader or admin only)."""
    require_id(template_id, "template")
    try:
        template_service.delete_template(engine, template_id, ctx.user)
    except ForbiddenError:
        audit_denied(audit, ctx, f"template:{template_id}", "not owner")
        raise
    audit.record(
        AuditAction.TEMPLATE_DELETED,
        resource_type="template",
        resource_id=template_id,
        **ctx.audit_fields(),
    )
    return {"success": True}
