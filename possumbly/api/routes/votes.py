"""
possumbly.api.routes.votes — Up/down votes on public memes
===========================================================
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
from possumbly.constants import UPVOTE
from possumbly.database.models import AuditAction
from possumbly.engine.validation import require_id
from possumbly.errors import ForbiddenError
from possumbly.services import vote_service
from possumbly.services.audit_service import AuditLogger

router = APIRouter(prefix="/votes", tags=["votes"])


class VoteBody(BaseModel):
    # Checked in the service; must be exactly 1 or -1
    vote: Any = None


@router.get("/{meme_id}")
def get_votes(
    meme_id: str,
    ctx: InvitedContext = Depends(require_invite),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    """Counts plus the caller's own vote."""
    require_id(meme_id, "meme")
    try:
        counts = vote_service.get_counts(engine, meme_id, ctx.user)
    except ForbiddenError:
        audit_denied(audit, ctx, f"meme:{meme_id}", "private meme")
        raise
    return counts.to_dict()


@router.post("/{meme_id}", dependencies=[Depends(rate_limit("vote"))])
def cast_vote(
    meme_id: str,
    body: VoteBody,
    ctx: InvitedContext = Depends(require_invite),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    require_id(meme_id, "meme")
    try:
        counts = vote_service.cast_vote(engine, meme_id, ctx.user.id, body.vote)
    except ForbiddenError:
        audit_denied(audit, ctx, f"meme:{meme_id}", "vote on private meme")
        raise
    audit.record(
        AuditAction.VOTE_CAST,
        resource_type="meme",
        resource_id=meme_id,
        details={"voteType": "upvote" if body.vote == UPVOTE else "downvote"},
        **ctx.audit_fields(),
    )
    return counts.to_dict()


@router.delete("/{meme_id}", dependencies=[Depends(rate_limit("vote"))])
def remove_vote(
    meme_id: str,
    ctx: InvitedContext = Depends(require_invite),
    engine: Engine = Depends(get_engine),
    audit: AuditLogger = Depends(get_audit),
):
    require_id(meme_id, "meme")
    counts = vote_service.remove_vote(engine, meme_id, ctx.user.id)
    audit.record(
        AuditAction.VOTE_REMOVED,
        resource_type="meme",
        resource_id=meme_id,
        **ctx.audit_fields(),
    )
    return counts.to_dict()
