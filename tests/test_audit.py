"""
tests/test_audit.py — Buffered audit logger, queries & retention
=================================================================
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from possumbly.database.models import AuditAction, AuditLog, utcnow
from possumbly.services import audit_service
from possumbly.services.audit_service import AuditLogger, query_entries
from possumbly.services.retention_service import get_retention_stats, run_retention_cleanup


def _row_count(engine) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(AuditLog))


def _insert(engine, **fields) -> AuditLog:
    row = AuditLog(**fields)
    with Session(engine, expire_on_commit=False) as session:
        session.add(row)
        session.commit()
    return row


# ===========================================================================
# Buffering
# ===========================================================================

class TestAuditLogger:
    def test_record_buffers_until_flush(self, db_engine):
        audit = AuditLogger(db_engine)
        audit.record(AuditAction.AUTH_LOGIN, user_id="u1", ip="10.0.0.1")

        assert audit.pending == 1
        assert _row_count(db_engine) == 0

        assert audit.flush() == 1
        assert audit.pending == 0
        assert _row_count(db_engine) == 1

    def test_flush_with_nothing_queued(self, db_engine):
        assert AuditLogger(db_engine).flush() == 0

    def test_user_agent_truncated(self, db_engine):
        audit = AuditLogger(db_engine)
        audit.record(AuditAction.AUTH_LOGIN, user_agent="M" * 800)
        audit.flush()
        [row] = query_entries(db_engine)
        assert len(row.user_agent) == 500

    def test_unknown_action_rejected(self, db_engine):
        with pytest.raises(ValueError):
            AuditLogger(db_engine).record("meme.eaten")

    def test_failed_flush_requeues(self, db_engine, monkeypatch):
        audit = AuditLogger(db_engine)
        audit.record(AuditAction.AUTH_LOGIN)
        audit.record(AuditAction.AUTH_LOGOUT)

        @contextmanager
        def broken_session(engine):
            raise OperationalError("INSERT", {}, Exception("database is locked"))
            yield  # pragma: no cover

        monkeypatch.setattr(audit_service, "get_session", broken_session)
        assert audit.flush() == 0
        assert audit.pending == 2

        monkeypatch.undo()
        assert audit.flush() == 2
        assert [r.action for r in query_entries(db_engine, limit=10)].count("auth.login") == 1

    def test_fields_persisted(self, db_engine):
        audit = AuditLogger(db_engine)
        audit.record(
            AuditAction.MEME_DELETED,
            user_id="u1",
            resource_type="meme",
            resource_id="m1",
            details={"reason": "cleanup"},
            ip="203.0.113.9",
            user_agent="pytest",
            success=False,
        )
        audit.flush()
        [row] = query_entries(db_engine)
        entry = audit_service.entry_dict(row)
        assert entry["action"] == "meme.deleted"
        assert entry["resource_type"] == "meme"
        assert entry["resource_id"] == "m1"
        assert entry["details"] == {"reason": "cleanup"}
        assert entry["ip_address"] == "203.0.113.9"
        assert entry["success"] is False


# ===========================================================================
# Queries
# ===========================================================================

class TestQueries:
    @pytest.fixture
    def journal(self, db_engine):
        now = utcnow()
        _insert(db_engine, action="auth.login", user_id="alice", timestamp=now - timedelta(hours=3))
        _insert(
            db_engine, action="meme.created", user_id="alice", resource_type="meme",
            resource_id="m1", timestamp=now - timedelta(hours=2),
        )
        _insert(
            db_engine, action="access.denied", user_id="bob", resource_type="meme",
            resource_id="m1", success=False, timestamp=now - timedelta(hours=1),
        )
        return now

    def test_newest_first(self, db_engine, journal):
        actions = [r.action for r in query_entries(db_engine)]
        assert actions == ["access.denied", "meme.created", "auth.login"]

    def test_by_user(self, db_engine, journal):
        assert [r.action for r in audit_service.find_by_user(db_engine, "alice")] == [
            "meme.created",
            "auth.login",
        ]

    def test_by_action(self, db_engine, journal):
        assert len(audit_service.find_by_action(db_engine, "auth.login")) == 1

    def test_by_resource(self, db_engine, journal):
        rows = audit_service.find_by_resource(db_engine, "meme", "m1")
        assert {r.user_id for r in rows} == {"alice", "bob"}

    def test_security_events(self, db_engine, journal):
        actions = [r.action for r in audit_service.security_events(db_engine)]
        assert actions == ["access.denied", "auth.login"]

    def test_since_and_limit(self, db_engine, journal):
        since = journal - timedelta(minutes=150)
        assert len(query_entries(db_engine, since=since)) == 2
        assert len(query_entries(db_engine, limit=1)) == 1


# ===========================================================================
# Retention
# ===========================================================================

class TestRetention:
    def test_cleanup_removes_only_expired(self, db_engine):
        now = utcnow()
        _insert(db_engine, action="auth.login", timestamp=now - timedelta(days=31))
        _insert(db_engine, action="auth.login", timestamp=now - timedelta(days=90))
        _insert(db_engine, action="auth.login", timestamp=now - timedelta(days=29))

        assert run_retention_cleanup(db_engine, 30) == 2
        assert _row_count(db_engine) == 1

    def test_cleanup_nothing_to_do(self, db_engine):
        assert run_retention_cleanup(db_engine, 30) == 0

    def test_invalid_retention(self, db_engine):
        with pytest.raises(ValueError):
            run_retention_cleanup(db_engine, 0)

    def test_stats(self, db_engine):
        assert get_retention_stats(db_engine) == {
            "total_entries": 0,
            "oldest_entry": None,
            "newest_entry": None,
        }
        _insert(db_engine, action="auth.login")
        stats = get_retention_stats(db_engine)
        assert stats["total_entries"] == 1
        assert stats["oldest_entry"] == stats["newest_entry"]


# ===========================================================================
# Request metadata captured by routes
# ===========================================================================

class TestRequestMetadata:
    def test_forwarded_for_first_hop(self, client, db_engine, audit, make_user, auth):
        user = make_user()
        client.post(
            "/auth/logout",
            headers={
                **auth(user),
                "X-Forwarded-For": "203.0.113.5, 10.0.0.1",
                "User-Agent": "possum-browser/1.0",
            },
        )
        audit.flush()
        [row] = query_entries(db_engine, action="auth.logout")
        assert row.ip_address == "203.0.113.5"
        assert row.user_agent == "possum-browser/1.0"
        assert row.user_id == user.id


class TestAuditDependency:
    @staticmethod
    def _request(app):
        from starlette.requests import Request

        return Request({"type": "http", "method": "GET", "path": "/", "headers": [], "app": app})

    def test_reads_logger_from_app_state(self, db_engine):
        from fastapi import FastAPI

        from possumbly.api.deps import get_audit

        app = FastAPI()
        logger = AuditLogger(db_engine)
        app.state.audit = logger
        assert get_audit(self._request(app)) is logger

    def test_missing_logger_is_an_error(self):
        from fastapi import FastAPI

        from possumbly.api.deps import get_audit

        with pytest.raises(RuntimeError, match="not initialised"):
            get_audit(self._request(FastAPI()))
