"""
possumbly.services.gallery_service — Public Gallery Listing
============================================================

Loads every public meme in insertion order, attaches template / creator
info and live vote counts, then hands the list to
:mod:`possumbly.engine.ranking` for period filtering, sorting and
pagination.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from sqlalchemy import Engine, select

from possumbly.constants import GALLERY_PERIODS_MS, GALLERY_SORTS
from possumbly.database.engine import get_session
from possumbly.database.models import Meme, Template, User, to_millis
from possumbly.engine.ranking import Page, paginate, sort_items, within_period
from possumbly.errors import BadRequestError
from possumbly.services.vote_service import tally_many, user_votes

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def list_gallery(
    engine: Engine,
    viewer_id: str,
    *,
    period: str = "all",
    sort: str = "hot",
    page: int = 1,
    limit: int = 20,
    now_ms: int | None = None,
) -> Page:
    """One page of public memes for *viewer_id*.

    *page* and *limit* must already be clamped
    (see :func:`~possumbly.engine.ranking.clamp_page`).
    """
    if period not in GALLERY_PERIODS_MS:
        raise BadRequestError("Invalid period. Must be 7d, 30d, year, or all")
    if sort not in GALLERY_SORTS:
        raise BadRequestError("Invalid sort. Must be hot, top, or new")

    now_ms = _now_ms() if now_ms is None else now_ms

    with get_session(engine) as session:
        rows = session.execute(
            select(Meme, Template, User)
            .outerjoin(Template, Template.id == Meme.template_id)
            .outerjoin(User, User.id == Meme.created_by)
            .where(Meme.is_public.is_(True))
            .order_by(Meme.created_at.asc(), Meme.id.asc())
        ).all()

        meme_ids = [meme.id for meme, _, _ in rows]
        tallies = tally_many(session, meme_ids)
        mine = user_votes(session, meme_ids, viewer_id)

    items: list[dict[str, Any]] = []
    for meme, template, creator in rows:
        created_ms = to_millis(meme.created_at)
        if not within_period(created_ms, now_ms, period):
            continue
        up, down = tallies.get(meme.id, (0, 0))
        items.append({
            "id": meme.id,
            "template_id": meme.template_id,
            "created_by": meme.created_by,
            "output_filename": meme.output_filename,
            "is_public": meme.is_public,
            "created_at": created_ms,
            "template_name": template.name if template else None,
            "template_filename": template.filename if template else None,
            "creator_name": creator.display_name if creator else None,
            "creator_avatar": creator.avatar_url if creator else None,
            "upvotes": up,
            "downvotes": down,
            "score": up - down,
            "userVote": mine.get(meme.id),
        })

    logger.debug(
        "Gallery: %d public memes match period=%s sort=%s", len(items), period, sort
    )
    return paginate(sort_items(items, sort), page, limit)
