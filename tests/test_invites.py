"""
tests/test_invites.py — Invite ledger: minting, redemption, deletion
=====================================================================
"""

from __future__ import annotations

import re

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from possumbly.database.models import AuditAction, AuditLog, InviteCode, User
from possumbly.errors import BadRequestError, InvalidInviteError, NotFoundError
from possumbly.services import invite_service
from possumbly.services.invite_service import AlreadyRedeemedError, InviteUsedError

CODE = "A1B2C3D4E5F6"


def _add_invite(engine, admin, code=CODE) -> InviteCode:
    invite = InviteCode(code=code, created_by=admin.id)
    with Session(engine, expire_on_commit=False) as session:
        session.add(invite)
        session.commit()
    return invite


# ===========================================================================
# Service
# ===========================================================================

class TestGenerate:
    def test_code_shape(self):
        for _ in range(20):
            assert re.fullmatch(r"[A-F0-9]{12}", invite_service.generate_invite_code())

    def test_create_invite_persists(self, db_engine, make_user):
        admin = make_user(role="admin")
        invite = invite_service.create_invite(db_engine, admin.id)
        with Session(db_engine) as session:
            row = session.get(InviteCode, invite.id)
        assert row.code == invite.code
        assert row.created_by == admin.id
        assert row.used_by is None


class TestRedeem:
    def test_lowercase_code_redeems(self, db_engine, make_user):
        admin = make_user(role="admin")
        invite = _add_invite(db_engine, admin)
        user = make_user()

        assert invite_service.redeem_invite(db_engine, user.id, "a1b2c3d4e5f6") == CODE

        with Session(db_engine) as session:
            assert session.get(User, user.id).invite_redeemed is True
            row = session.get(InviteCode, invite.id)
            assert row.used_by == user.id
            assert row.used_at is not None

    def test_second_user_cannot_reuse(self, db_engine, make_user):
        admin = make_user(role="admin")
        invite = _add_invite(db_engine, admin)
        first, second = make_user(), make_user()
        invite_service.redeem_invite(db_engine, first.id, CODE)

        with pytest.raises(InvalidInviteError) as exc_info:
            invite_service.redeem_invite(db_engine, second.id, CODE)

        assert str(exc_info.value) == "Invalid invite code"
        assert exc_info.value.reason == "already_used"
        with Session(db_engine) as session:
            assert session.get(InviteCode, invite.id).used_by == first.id
            assert session.get(User, second.id).invite_redeemed is False

    def test_malformed_and_unknown_share_message(self, db_engine, make_user):
        user = make_user()
        with pytest.raises(InvalidInviteError) as bad:
            invite_service.redeem_invite(db_engine, user.id, "not-a-code")
        with pytest.raises(InvalidInviteError) as unknown:
            invite_service.redeem_invite(db_engine, user.id, "FFFFFFFFFFFF")
        assert str(bad.value) == str(unknown.value) == "Invalid invite code"
        assert bad.value.reason == "bad_format"
        assert unknown.value.reason == "not_found"

    @pytest.mark.parametrize("raw", [None, "", 123])
    def test_missing_code(self, db_engine, make_user, raw):
        user = make_user()
        with pytest.raises(BadRequestError, match="Invite code is required") as exc_info:
            invite_service.redeem_invite(db_engine, user.id, raw)
        assert not isinstance(exc_info.value, InvalidInviteError)

    def test_already_invited(self, db_engine, make_user):
        admin = make_user(role="admin")
        _add_invite(db_engine, admin)
        user = make_user(invited=True)
        with pytest.raises(AlreadyRedeemedError, match="You already have access"):
            invite_service.redeem_invite(db_engine, user.id, CODE)

    def test_admin_already_has_access(self, db_engine, make_user):
        admin = make_user(role="admin")
        _add_invite(db_engine, admin)
        with pytest.raises(AlreadyRedeemedError):
            invite_service.redeem_invite(db_engine, admin.id, CODE)


class TestDeleteAndList:
    def test_delete_unused(self, db_engine, make_user):
        admin = make_user(role="admin")
        invite = _add_invite(db_engine, admin)
        invite_service.delete_invite(db_engine, invite.id)
        with Session(db_engine) as session:
            assert session.get(InviteCode, invite.id) is None

    def test_delete_used_refused(self, db_engine, make_user):
        admin = make_user(role="admin")
        invite = _add_invite(db_engine, admin)
        invite_service.redeem_invite(db_engine, make_user().id, CODE)
        with pytest.raises(InviteUsedError, match="Cannot delete a used invite code"):
            invite_service.delete_invite(db_engine, invite.id)

    def test_delete_missing(self, db_engine):
        with pytest.raises(NotFoundError, match="Invite code not found"):
            invite_service.delete_invite(db_engine, "nope")

    def test_list_includes_display_names(self, db_engine, make_user):
        admin = make_user(role="admin", name="Root Possum")
        _add_invite(db_engine, admin)
        redeemer = make_user(name="", email="quiet@example.test")
        invite_service.redeem_invite(db_engine, redeemer.id, CODE)

        [entry] = invite_service.list_invites(db_engine)
        assert entry["created_by_name"] == "Root Possum"
        assert entry["used_by_name"] == "quiet@example.test"
        assert entry["used_at"] is not None


# ===========================================================================
# API
# ===========================================================================

class TestInviteEndpoints:
    def test_admin_mints_invite(self, client, make_user, auth):
        admin = make_user(role="admin")
        resp = client.post("/api/invites", headers=auth(admin))
        assert resp.status_code == 201
        body = resp.json()
        assert re.fullmatch(r"[A-F0-9]{12}", body["code"])
        assert set(body) == {"id", "code", "created_at"}

    def test_non_admin_forbidden(self, client, make_user, auth):
        user = make_user(invited=True)
        resp = client.post("/api/invites", headers=auth(user))
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Admin access required"

    def test_anonymous_unauthorized(self, client):
        assert client.post("/api/invites").status_code == 401

    def test_redeem_success_audited_with_prefix(self, client, db_engine, audit, make_user, auth):
        admin = make_user(role="admin")
        _add_invite(db_engine, admin)
        user = make_user()

        resp = client.post("/api/invites/redeem", json={"code": "a1b2c3d4e5f6"}, headers=auth(user))

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Invite code redeemed successfully"}
        audit.flush()
        with Session(db_engine) as session:
            row = session.scalar(
                select(AuditLog).where(AuditLog.action == AuditAction.USER_INVITE_REDEEMED.value)
            )
        assert row.user_id == user.id
        assert row.details == {"inviteCodePrefix": "A1B2..."}

    def test_failed_redeem_audited(self, client, db_engine, audit, make_user, auth):
        user = make_user()
        resp = client.post("/api/invites/redeem", json={"code": "FFFFFFFFFFFF"}, headers=auth(user))

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid invite code"
        audit.flush()
        with Session(db_engine) as session:
            row = session.scalar(
                select(AuditLog).where(AuditLog.action == AuditAction.INVITE_REDEEM_FAILED.value)
            )
        assert row.success is False
        assert row.details == {"reason": "not_found"}

    def test_already_redeemed_message(self, client, db_engine, make_user, auth):
        admin = make_user(role="admin")
        _add_invite(db_engine, admin)
        user = make_user(invited=True)
        resp = client.post("/api/invites/redeem", json={"code": CODE}, headers=auth(user))
        assert resp.status_code == 400
        assert resp.json()["detail"] == "You already have access"

    def test_delete_used_is_bad_request(self, client, db_engine, make_user, auth):
        admin = make_user(role="admin")
        invite = _add_invite(db_engine, admin)
        invite_service.redeem_invite(db_engine, make_user().id, CODE)
        resp = client.delete(f"/api/invites/{invite.id}", headers=auth(admin))
        assert resp.status_code == 400

    def test_list_invites(self, client, db_engine, make_user, auth):
        admin = make_user(role="admin")
        _add_invite(db_engine, admin)
        resp = client.get("/api/invites", headers=auth(admin))
        assert resp.status_code == 200
        assert [i["code"] for i in resp.json()] == [CODE]
