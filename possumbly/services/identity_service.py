"""
possumbly.services.identity_service — OAuth Identity → Local User
==================================================================

Provider-agnostic find-or-create keyed by ``(provider, provider_id)``.
The provider name is only ever persisted, never branched on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError

from possumbly.database.engine import get_session
from possumbly.database.models import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ExternalIdentity:
    """What an identity provider hands back after a completed OAuth flow."""

    provider: str
    provider_id: str
    email: str | None = None
    name: str | None = None
    avatar_url: str | None = None


def find_user(engine: Engine, user_id: str) -> User | None:
    with get_session(engine) as session:
        return session.get(User, user_id)


def _find_by_identity(engine: Engine, identity: ExternalIdentity) -> User | None:
    with get_session(engine) as session:
        return session.scalar(
            select(User).where(
                User.provider == identity.provider,
                User.provider_id == identity.provider_id,
            )
        )


def _email_taken(engine: Engine, email: str) -> bool:
    with get_session(engine) as session:
        return session.scalar(select(User.id).where(User.email == email)) is not None


def find_or_create_user(engine: Engine, identity: ExternalIdentity) -> tuple[User, bool]:
    """Return ``(user, created)`` for *identity*.

    Emails are unique across providers; when the same address already
    belongs to another provider identity the new account is created
    without one.  A concurrent callback that wins the insert race is
    picked up by re-reading.
    """
    user = _find_by_identity(engine, identity)
    if user is not None:
        return user, False

    email = identity.email
    if email and _email_taken(engine, email):
        logger.info(
            "Email already linked to another identity — creating %s user without it",
            identity.provider,
        )
        email = None

    try:
        with get_session(engine) as session:
            user = User(
                email=email,
                name=identity.name,
                avatar_url=identity.avatar_url,
                provider=identity.provider,
                provider_id=identity.provider_id,
            )
            session.add(user)
    except IntegrityError:
        existing = _find_by_identity(engine, identity)
        if existing is None:
            raise
        return existing, False

    logger.info("Created user %s via %s", user.id, identity.provider)
    return user, True
