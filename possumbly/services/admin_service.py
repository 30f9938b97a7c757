"""
possumbly.services.admin_service — User Administration
=======================================================

Role management, dashboard statistics and the one-time admin bootstrap.

Bootstrap promotes the caller only while **no** admin exists.  The check
and the promotion are one conditional ``UPDATE … WHERE NOT EXISTS (admin)``
so two racing callers cannot both become the first admin.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Engine, func, select, update
from sqlalchemy.orm import aliased

from possumbly.constants import ROLE_ADMIN, ROLES
from possumbly.database.engine import get_session
from possumbly.database.models import InviteCode, User, as_utc
from possumbly.errors import BadRequestError, ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)


class AdminExistsError(ForbiddenError):
    """Bootstrap refused because an admin is already present."""

    def __init__(self):
        super().__init__("Admin already exists")


def user_dict(user: User) -> dict[str, Any]:
    """Safe projection of a user: no provider ids."""
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "avatar_url": user.avatar_url,
        "provider": user.provider,
        "role": user.role,
        "invite_redeemed": bool(user.invite_redeemed),
        "created_at": as_utc(user.created_at).isoformat(),
    }


def list_users(engine: Engine) -> list[dict[str, Any]]:
    with get_session(engine) as session:
        users = session.scalars(
            select(User).order_by(User.created_at.desc(), User.id.desc())
        ).all()
        return [user_dict(u) for u in users]


def set_role(engine: Engine, actor: User, user_id: str, role: Any) -> tuple[str, str]:
    """Change *user_id*'s role; returns ``(old_role, new_role)``.

    Raises
    ------
    BadRequestError
        Unknown role, or an admin demoting themselves.
    NotFoundError
        No such user.
    """
    if not role or role not in ROLES:
        raise BadRequestError('Invalid role. Must be "admin" or "user"')

    with get_session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("User")
        if actor.id == user_id and role != ROLE_ADMIN:
            raise BadRequestError("Cannot demote yourself")
        old_role = user.role
        user.role = role

    logger.info("User %s role %s → %s (by %s)", user_id, old_role, role, actor.id)
    return old_role, role


def get_stats(engine: Engine) -> dict[str, int]:
    with get_session(engine) as session:
        def count(*criteria) -> int:
            return session.scalar(select(func.count()).select_from(User).where(*criteria)) or 0

        total_users = count()
        admin_users = count(User.role == ROLE_ADMIN)
        active_users = count((User.invite_redeemed.is_(True)) | (User.role == ROLE_ADMIN))
        total_invites = session.scalar(select(func.count()).select_from(InviteCode)) or 0
        used_invites = session.scalar(
            select(func.count()).select_from(InviteCode).where(InviteCode.used_by.is_not(None))
        ) or 0

    return {
        "totalUsers": total_users,
        "adminUsers": admin_users,
        "activeUsers": active_users,
        "pendingUsers": total_users - active_users,
        "totalInvites": total_invites,
        "usedInvites": used_invites,
        "availableInvites": total_invites - used_invites,
    }


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------
def admin_exists(engine: Engine) -> bool:
    with get_session(engine) as session:
        return session.scalar(
            select(User.id).where(User.role == ROLE_ADMIN).limit(1)
        ) is not None


def bootstrap_admin(engine: Engine, user_id: str) -> None:
    """Promote *user_id* to admin if and only if no admin exists yet.

    Raises :class:`AdminExistsError` when another admin is (or just became)
    present.
    """
    existing_admin = aliased(User)
    with get_session(engine) as session:
        promoted = session.execute(
            update(User)
            .where(
                User.id == user_id,
                ~select(existing_admin.id)
                .where(existing_admin.role == ROLE_ADMIN)
                .exists(),
            )
            .values(role=ROLE_ADMIN, invite_redeemed=True)
            .execution_options(synchronize_session=False)
        ).rowcount

    if promoted != 1:
        raise AdminExistsError()
    logger.warning("User %s bootstrapped as the first admin", user_id)
