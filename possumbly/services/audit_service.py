"""
possumbly.services.audit_service — Buffered Append-Only Audit Log
==================================================================

Security-relevant events (logins, role changes, invite use, deletions,
denied access …) are recorded into ``audit_logs``.

Writes are **buffered**: :meth:`AuditLogger.record` only appends to an
in-memory list.  The list is persisted in one batch by :meth:`flush`, which
runs

* every ``flush_seconds`` from a background task started in the API
  lifespan,
* on shutdown,
* before any audit query, so readers always see what was recorded.

Durability is therefore best-effort: a crash loses at most one flush
interval of entries.  A failed flush keeps the batch for the next attempt.

Usage::

    audit = AuditLogger(engine)
    audit.record(AuditAction.INVITE_CREATED, user_id=admin.id,
                 resource_type="invite", resource_id=invite.id, ip="10.0.0.1")
    audit.flush()
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, select

from possumbly.constants import DEFAULT_AUDIT_QUERY_LIMIT, MAX_USER_AGENT_LENGTH
from possumbly.database.engine import get_session
from possumbly.database.models import (
    SECURITY_ACTIONS,
    AuditAction,
    AuditLog,
    as_utc,
    new_id,
    utcnow,
)

logger = logging.getLogger(__name__)


class AuditLogger:
    """Batches audit entries in memory and writes them on :meth:`flush`."""

    def __init__(self, engine: Engine, flush_seconds: int = 30) -> None:
        self.engine = engine
        self.flush_seconds = flush_seconds
        self._pending: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._flush_task: asyncio.Task | None = None

    # -- writing -----------------------------------------------------------
    def record(
        self,
        action: AuditAction,
        *,
        user_id: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
        success: bool = True,
    ) -> None:
        """Queue one entry; *action* must be an :class:`AuditAction` value."""
        entry = {
            "id": new_id(),
            "timestamp": utcnow(),
            "user_id": user_id,
            "action": AuditAction(action).value,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "details": details,
            "ip_address": ip,
            "user_agent": user_agent[:MAX_USER_AGENT_LENGTH] if user_agent else None,
            "success": success,
        }
        with self._lock:
            self._pending.append(entry)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def flush(self) -> int:
        """Persist all queued entries; returns how many were written."""
        with self._lock:
            batch, self._pending = self._pending, []
        if not batch:
            return 0
        try:
            with get_session(self.engine) as session:
                session.add_all(AuditLog(**entry) for entry in batch)
        except Exception:
            logger.exception("Audit flush failed — requeueing %d entries", len(batch))
            with self._lock:
                self._pending[:0] = batch
            return 0
        logger.debug("Audit flush wrote %d entries", len(batch))
        return len(batch)

    # -- background flushing -----------------------------------------------
    def start(self) -> None:
        """Start the periodic flush task on the running loop."""
        if self._flush_task is not None:
            return

        async def _flush_loop() -> None:
            while True:
                await asyncio.sleep(self.flush_seconds)
                await asyncio.to_thread(self.flush)

        self._flush_task = asyncio.get_running_loop().create_task(
            _flush_loop(), name="audit-flush"
        )

    async def stop(self) -> None:
        """Cancel the flush task and write whatever is still queued."""
        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None
        await asyncio.to_thread(self.flush)


# ---------------------------------------------------------------------------
# Queries (newest first)
# ---------------------------------------------------------------------------
def entry_dict(row: AuditLog) -> dict[str, Any]:
    return {
        "id": row.id,
        "timestamp": as_utc(row.timestamp).isoformat(),
        "user_id": row.user_id,
        "action": row.action,
        "resource_type": row.resource_type,
        "resource_id": row.resource_id,
        "details": row.details,
        "ip_address": row.ip_address,
        "user_agent": row.user_agent,
        "success": row.success,
    }


def query_entries(
    engine: Engine,
    *,
    user_id: str | None = None,
    action: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    security_only: bool = False,
    since: datetime | None = None,
    limit: int = DEFAULT_AUDIT_QUERY_LIMIT,
) -> list[AuditLog]:
    """Filtered audit read; with no filters returns the most recent entries."""
    stmt = select(AuditLog)
    if user_id is not None:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action is not None:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type is not None:
        stmt = stmt.where(AuditLog.resource_type == resource_type)
    if resource_id is not None:
        stmt = stmt.where(AuditLog.resource_id == resource_id)
    if security_only:
        stmt = stmt.where(AuditLog.action.in_([a.value for a in SECURITY_ACTIONS]))
    if since is not None:
        stmt = stmt.where(AuditLog.timestamp >= since)
    stmt = stmt.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit)

    with get_session(engine) as session:
        return list(session.scalars(stmt).all())


def find_by_user(engine: Engine, user_id: str, limit: int = DEFAULT_AUDIT_QUERY_LIMIT) -> list[AuditLog]:
    return query_entries(engine, user_id=user_id, limit=limit)


def find_by_action(engine: Engine, action: str, limit: int = DEFAULT_AUDIT_QUERY_LIMIT) -> list[AuditLog]:
    return query_entries(engine, action=action, limit=limit)


def find_by_resource(
    engine: Engine, resource_type: str, resource_id: str, limit: int = DEFAULT_AUDIT_QUERY_LIMIT
) -> list[AuditLog]:
    return query_entries(
        engine, resource_type=resource_type, resource_id=resource_id, limit=limit
    )


def security_events(engine: Engine, limit: int = DEFAULT_AUDIT_QUERY_LIMIT) -> list[AuditLog]:
    return query_entries(engine, security_only=True, limit=limit)
