"""
possumbly.services.meme_service — Meme Lifecycle
=================================================

A meme is a saved editor layout on top of a template, optionally with a
rendered image.  Memes start private; the owner (or an admin) may publish
them to the gallery.  Every mutation requires ownership or the admin role.

Deleting a meme removes its votes explicitly in the same transaction, then
its rendered file.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Engine, delete, select
from sqlalchemy.orm import Session

from possumbly.constants import RENDER_FILENAME_PATTERN
from possumbly.database.engine import get_session
from possumbly.database.models import Meme, Template, User, Vote, to_millis
from possumbly.engine.validation import (
    is_valid_id,
    parse_editor_state,
    validate_editor_state,
)
from possumbly.errors import BadRequestError, ForbiddenError, NotFoundError
from possumbly.services import upload_service
from possumbly.services.vote_service import tally_many

logger = logging.getLogger(__name__)


def meme_dict(meme: Meme) -> dict[str, Any]:
    return {
        "id": meme.id,
        "template_id": meme.template_id,
        "created_by": meme.created_by,
        "editor_state": parse_editor_state(meme.editor_state),
        "output_filename": meme.output_filename,
        "is_public": meme.is_public,
        "created_at": to_millis(meme.created_at),
    }


def _owned_meme(session: Session, meme_id: str, actor: User, verb: str) -> Meme:
    meme = session.get(Meme, meme_id)
    if meme is None:
        raise NotFoundError("Meme")
    if meme.created_by != actor.id and not actor.is_admin:
        raise ForbiddenError(f"Not authorized to {verb} this meme")
    return meme


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def list_memes(engine: Engine, user_id: str) -> list[dict[str, Any]]:
    """The caller's own memes, newest first, with template info and counts."""
    with get_session(engine) as session:
        rows = session.execute(
            select(Meme, Template)
            .outerjoin(Template, Template.id == Meme.template_id)
            .where(Meme.created_by == user_id)
            .order_by(Meme.created_at.desc(), Meme.id.desc())
        ).all()
        tallies = tally_many(session, [meme.id for meme, _ in rows])

    result = []
    for meme, template in rows:
        up, down = tallies.get(meme.id, (0, 0))
        result.append({
            **meme_dict(meme),
            "template_name": template.name if template else None,
            "template_filename": template.filename if template else None,
            "upvotes": up,
            "downvotes": down,
            "score": up - down,
        })
    return result


def get_meme(engine: Engine, meme_id: str, actor: User) -> dict[str, Any]:
    with get_session(engine) as session:
        meme = _owned_meme(session, meme_id, actor, "view")
        template = session.get(Template, meme.template_id) if meme.template_id else None

    return {
        **meme_dict(meme),
        "template_name": template.name if template else None,
        "template_filename": template.filename if template else None,
        "template_width": template.width if template else None,
        "template_height": template.height if template else None,
    }


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def create_meme(engine: Engine, user_id: str, template_id: Any, editor_state: Any) -> Meme:
    if not template_id or not isinstance(template_id, str):
        raise BadRequestError("Template ID is required")
    if not is_valid_id(template_id):
        raise BadRequestError("Invalid template ID format")
    serialized = validate_editor_state(editor_state)

    with get_session(engine) as session:
        if session.get(Template, template_id) is None:
            raise NotFoundError("Template")
        meme = Meme(template_id=template_id, created_by=user_id, editor_state=serialized)
        session.add(meme)

    logger.info("Meme %s created by %s", meme.id, user_id)
    return meme


def update_meme(engine: Engine, meme_id: str, actor: User, editor_state: Any) -> Meme:
    with get_session(engine) as session:
        meme = _owned_meme(session, meme_id, actor, "update")
        meme.editor_state = validate_editor_state(editor_state)
    return meme


def save_render(engine: Engine, meme_id: str, actor: User, image_data: Any) -> str:
    """Store a rendered image for the meme; returns the new filename."""
    with get_session(engine) as session:
        meme = _owned_meme(session, meme_id, actor, "save")
        fmt, data = upload_service.decode_render(image_data)
        filename = upload_service.write_render(
            meme.id, fmt, data, previous=meme.output_filename
        )
        meme.output_filename = filename

    logger.info("Meme %s rendered as %s", meme_id, filename)
    return filename


def set_visibility(engine: Engine, meme_id: str, actor: User, is_public: Any) -> dict[str, Any]:
    """Publish or unpublish a meme; returns it with current vote counts."""
    if not isinstance(is_public, bool):
        raise BadRequestError("is_public must be a boolean")

    with get_session(engine) as session:
        meme = _owned_meme(session, meme_id, actor, "update")
        meme.is_public = is_public
        session.flush()
        up, down = tally_many(session, [meme.id])[meme.id]

    return {**meme_dict(meme), "upvotes": up, "downvotes": down, "score": up - down}


def delete_meme(engine: Engine, meme_id: str, actor: User) -> Meme:
    with get_session(engine) as session:
        meme = _owned_meme(session, meme_id, actor, "delete")
        session.execute(delete(Vote).where(Vote.meme_id == meme_id))
        session.delete(meme)

    if meme.output_filename and RENDER_FILENAME_PATTERN.fullmatch(meme.output_filename):
        upload_service.delete_stored(upload_service.MEMES, meme.output_filename)
    logger.info("Meme %s deleted by %s", meme_id, actor.id)
    return meme
