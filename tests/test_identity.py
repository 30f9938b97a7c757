"""
tests/test_identity.py — OAuth identity → local user
=====================================================
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from possumbly.database.models import User
from possumbly.services.identity_service import (
    ExternalIdentity,
    find_or_create_user,
    find_user,
)


def _user_count(engine) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(User))


class TestFindOrCreate:
    def test_creates_new_user(self, db_engine):
        identity = ExternalIdentity("google", "g-1", "possum@example.test", "Possum", None)
        user, created = find_or_create_user(db_engine, identity)

        assert created is True
        assert user.provider == "google"
        assert user.role == "user"
        assert user.invite_redeemed is False
        assert find_user(db_engine, user.id).email == "possum@example.test"

    def test_same_identity_returns_existing(self, db_engine):
        identity = ExternalIdentity("github", "42", "p@example.test", "P")
        first, _ = find_or_create_user(db_engine, identity)
        second, created = find_or_create_user(db_engine, identity)

        assert created is False
        assert second.id == first.id
        assert _user_count(db_engine) == 1

    def test_same_provider_id_on_other_provider_is_distinct(self, db_engine):
        find_or_create_user(db_engine, ExternalIdentity("github", "42"))
        _, created = find_or_create_user(db_engine, ExternalIdentity("discord", "42"))
        assert created is True
        assert _user_count(db_engine) == 2

    def test_email_collision_drops_email(self, db_engine):
        find_or_create_user(db_engine, ExternalIdentity("google", "g-1", "shared@example.test"))
        user, created = find_or_create_user(
            db_engine, ExternalIdentity("discord", "d-1", "shared@example.test", "Other")
        )
        assert created is True
        assert user.email is None
        assert user.name == "Other"

    def test_missing_user(self, db_engine):
        assert find_user(db_engine, "nobody") is None
