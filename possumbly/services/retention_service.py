"""
possumbly.services.retention_service — Audit Log Retention Sweep
=================================================================

Deletes ``audit_logs`` rows older than the retention window (default 30
days, ``audit_retention_days`` in ``config.yaml``).  The API lifespan runs
the sweep once a day; admins can also trigger it from
``DELETE /api/admin/audit``.

**Deletion is batched** so a large backlog never holds a long lock:
rows are removed in chunks of ``BATCH_SIZE``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from sqlalchemy import Engine, delete, func, select

from possumbly.database.engine import get_session
from possumbly.database.models import AuditLog, as_utc, utcnow

logger = logging.getLogger(__name__)

BATCH_SIZE = 5_000
SWEEP_INTERVAL_SECONDS = 24 * 60 * 60


def run_retention_cleanup(engine: Engine, retention_days: int = 30) -> int:
    """Delete audit entries older than ``retention_days``; returns the count."""
    if retention_days < 1:
        raise ValueError("retention_days must be at least 1")

    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = 0

    while True:
        with get_session(engine) as session:
            ids = session.scalars(
                select(AuditLog.id)
                .where(AuditLog.timestamp < cutoff)
                .limit(BATCH_SIZE)
            ).all()

            if not ids:
                break

            result = session.execute(delete(AuditLog).where(AuditLog.id.in_(ids)))
            deleted += result.rowcount  # type: ignore[operator]

    logger.info(
        "Audit retention complete — %d entries removed (retention_days=%d, cutoff=%s)",
        deleted, retention_days, cutoff.isoformat(),
    )
    return deleted


def get_retention_stats(engine: Engine) -> dict:
    """Size and age range of the audit log for the admin dashboard."""
    with get_session(engine) as session:
        total = session.scalar(select(func.count()).select_from(AuditLog)) or 0
        oldest = session.scalar(select(func.min(AuditLog.timestamp)))
        newest = session.scalar(select(func.max(AuditLog.timestamp)))

    return {
        "total_entries": total,
        "oldest_entry": as_utc(oldest).isoformat() if oldest else None,
        "newest_entry": as_utc(newest).isoformat() if newest else None,
    }


async def retention_loop(engine: Engine, retention_days: int) -> None:
    """Run the sweep now and then once per :data:`SWEEP_INTERVAL_SECONDS`."""
    while True:
        try:
            await asyncio.to_thread(run_retention_cleanup, engine, retention_days)
        except Exception:
            logger.exception("Audit retention sweep failed")
        await asyncio.sleep(SWEEP_INTERVAL_SECONDS)
