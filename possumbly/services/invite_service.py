"""
possumbly.services.invite_service — Invite Ledger
==================================================

Invite codes are single-use capability tokens: 6 bytes from the OS CSPRNG,
rendered as 12 upper-case hex characters.

Redemption rules:

* malformed, unknown and already-used codes all fail with the **same**
  generic :class:`~possumbly.errors.InvalidInviteError`, so nobody can
  probe which codes exist;
* a caller who already has access gets a distinct message;
* marking the invite used and flagging the user happen in one
  transaction.  The mark is a conditional ``UPDATE … WHERE used_by IS
  NULL`` so two racing redemptions cannot both succeed.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any

from sqlalchemy import Engine, select, update
from sqlalchemy.orm import selectinload

from possumbly.constants import INVITE_CODE_BYTES
from possumbly.database.engine import get_session
from possumbly.database.models import InviteCode, User, as_utc, utcnow
from possumbly.engine.validation import is_valid_invite_code, normalize_invite_code
from possumbly.errors import BadRequestError, InvalidInviteError, NotFoundError

logger = logging.getLogger(__name__)


class AlreadyRedeemedError(BadRequestError):
    """The caller already has workshop access."""

    def __init__(self):
        super().__init__("You already have access")


class InviteUsedError(BadRequestError):
    """Used invites are permanent ledger entries and cannot be deleted."""

    def __init__(self):
        super().__init__("Cannot delete a used invite code")


def generate_invite_code() -> str:
    return secrets.token_hex(INVITE_CODE_BYTES).upper()


# ---------------------------------------------------------------------------
# Ledger operations
# ---------------------------------------------------------------------------
def create_invite(engine: Engine, admin_id: str) -> InviteCode:
    with get_session(engine) as session:
        invite = InviteCode(code=generate_invite_code(), created_by=admin_id)
        session.add(invite)
    logger.info("Invite %s created by %s", invite.id, admin_id)
    return invite


def redeem_invite(engine: Engine, user_id: str, raw_code: Any) -> str:
    """Redeem *raw_code* for *user_id*; returns the normalized code.

    Raises
    ------
    BadRequestError
        ``Invite code is required`` for a missing / non-string code.
    InvalidInviteError
        Malformed, unknown or already-used code (one shared message).
        Its ``reason`` attribute carries the internal cause.
    AlreadyRedeemedError
        The user is already invited or is an admin.
    """
    if not raw_code or not isinstance(raw_code, str):
        raise BadRequestError("Invite code is required")

    code = normalize_invite_code(raw_code)
    if not is_valid_invite_code(code):
        raise InvalidInviteError("bad_format")

    with get_session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("User")
        if user.has_access:
            raise AlreadyRedeemedError()

        invite = session.scalar(select(InviteCode).where(InviteCode.code == code))
        if invite is None:
            raise InvalidInviteError("not_found")
        if invite.used_by is not None:
            raise InvalidInviteError("already_used")

        claimed = session.execute(
            update(InviteCode)
            .where(InviteCode.id == invite.id, InviteCode.used_by.is_(None))
            .values(used_by=user_id, used_at=utcnow())
        ).rowcount
        if claimed != 1:
            raise InvalidInviteError("already_used")

        user.invite_redeemed = True

    logger.info("User %s redeemed invite %s", user_id, invite.id)
    return code


def delete_invite(engine: Engine, invite_id: str) -> None:
    """Delete an unredeemed invite.

    Raises :class:`NotFoundError` or :class:`InviteUsedError`.
    """
    with get_session(engine) as session:
        invite = session.get(InviteCode, invite_id)
        if invite is None:
            raise NotFoundError("Invite code")
        if invite.used_by is not None:
            raise InviteUsedError()
        session.delete(invite)


def list_invites(engine: Engine) -> list[dict[str, Any]]:
    """All invites, newest first, with creator / redeemer display names."""
    with get_session(engine) as session:
        invites = session.scalars(
            select(InviteCode)
            .options(selectinload(InviteCode.creator), selectinload(InviteCode.redeemer))
            .order_by(InviteCode.created_at.desc(), InviteCode.id.desc())
        ).all()
        return [invite_dict(i) for i in invites]


def invite_dict(invite: InviteCode) -> dict[str, Any]:
    return {
        "id": invite.id,
        "code": invite.code,
        "created_by": invite.created_by,
        "used_by": invite.used_by,
        "created_at": as_utc(invite.created_at).isoformat(),
        "used_at": as_utc(invite.used_at).isoformat() if invite.used_at else None,
        "created_by_name": invite.creator.display_name if invite.creator else None,
        "used_by_name": invite.redeemer.display_name if invite.redeemer else None,
    }
