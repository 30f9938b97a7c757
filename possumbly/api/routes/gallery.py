"""
possumbly.api.routes.gallery — Ranked public gallery
=====================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import Engine

from possumbly.api.deps import InvitedContext, get_engine, require_invite
from possumbly.api.rate_limit import rate_limit
from possumbly.engine.ranking import clamp_limit, clamp_page
from possumbly.services.gallery_service import list_gallery

router = APIRouter(prefix="/gallery", tags=["gallery"])


@router.get("", dependencies=[Depends(rate_limit("gallery"))])
def gallery(
    period: str = "all",
    sort: str = "hot",
    page: str = "1",
    limit: str = "20",
    ctx: InvitedContext = Depends(require_invite),
    engine: Engine = Depends(get_engine),
):
    """Public memes filtered by *period*, ordered by *sort*, one page at a time.

    *page* and *limit* arrive as raw strings so garbage falls back to the
    defaults instead of failing validation.
    """
    result = list_gallery(
        engine,
        ctx.user.id,
        period=period,
        sort=sort,
        page=clamp_page(page),
        limit=clamp_limit(limit),
    )
    return {"items": result.items, "pagination": result.pagination()}
