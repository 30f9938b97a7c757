"""
possumbly.services.template_service — Template Catalogue
=========================================================

Templates are shared base images.  Any invited user may upload one; only
the uploader or an admin may delete it.  Deleting a template detaches the
memes built on it (``template_id`` becomes NULL) rather than deleting them.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Engine, select, update

from possumbly.constants import TEMPLATE_FILENAME_PATTERN
from possumbly.database.engine import get_session
from possumbly.database.models import Meme, Template, User, as_utc
from possumbly.errors import ForbiddenError, NotFoundError, PossumblyError
from possumbly.services import upload_service

logger = logging.getLogger(__name__)


def template_dict(template: Template) -> dict[str, Any]:
    return {
        "id": template.id,
        "name": template.name,
        "filename": template.filename,
        "width": template.width,
        "height": template.height,
        "uploaded_by": template.uploaded_by,
        "created_at": as_utc(template.created_at).isoformat(),
    }


def list_templates(engine: Engine) -> list[dict[str, Any]]:
    """All templates, newest first."""
    with get_session(engine) as session:
        templates = session.scalars(
            select(Template).order_by(Template.created_at.desc(), Template.id.desc())
        ).all()
        return [template_dict(t) for t in templates]


def get_template(engine: Engine, template_id: str) -> Template:
    with get_session(engine) as session:
        template = session.get(Template, template_id)
    if template is None:
        raise NotFoundError("Template")
    return template


def create_template(
    engine: Engine, *, name: str, filename: str, width: int, height: int, uploaded_by: str
) -> Template:
    """Insert a template row for an image already stored on disk."""
    with get_session(engine) as session:
        template = Template(
            name=name,
            filename=filename,
            width=width,
            height=height,
            uploaded_by=uploaded_by,
        )
        session.add(template)
    logger.info("Template %s uploaded by %s", template.id, uploaded_by)
    return template


def delete_template(engine: Engine, template_id: str, actor: User) -> Template:
    """Delete a template and its image file.

    Raises
    ------
    NotFoundError
        No such template.
    ForbiddenError
        *actor* is neither the uploader nor an admin.
    PossumblyError
        The stored filename is not one this service would have written.
    """
    with get_session(engine) as session:
        template = session.get(Template, template_id)
        if template is None:
            raise NotFoundError("Template")
        if template.uploaded_by != actor.id and not actor.is_admin:
            raise ForbiddenError("Not authorized to delete this template")
        if not TEMPLATE_FILENAME_PATTERN.fullmatch(template.filename):
            logger.error("Invalid filename in database: %r", template.filename)
            raise PossumblyError("Invalid template data")

        session.execute(
            update(Meme).where(Meme.template_id == template_id).values(template_id=None)
        )
        session.delete(template)

    upload_service.delete_stored(upload_service.TEMPLATES, template.filename)
    logger.info("Template %s deleted by %s", template_id, actor.id)
    return template
