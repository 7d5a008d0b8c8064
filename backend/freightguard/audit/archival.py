"""
Archival Manager

Flags aging history rows as archived. Rows are never deleted and there is
no way back: the only transition is is_archived false -> true.
"""
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from freightguard.audit.constants import AuditActions, AuditTargetTypes
from freightguard.audit.history import log_audit_event
from freightguard.core.errors import ValidationError
from freightguard.core.logging import archive_logger, log_operation
from freightguard.db.database import utcnow
from freightguard.db.enums import HistoryKind
from freightguard.db.models import HISTORY_MODELS


@log_operation("archive_older_than", archive_logger)
async def archive_older_than(
    db: AsyncSession,
    days: int,
    kinds: Optional[Iterable[HistoryKind]] = None,
    now: Optional[datetime] = None,
    actor_id: Optional[int] = None,
) -> int:
    """
    Archive every non-archived history row older than ``days``.

    One conditional UPDATE per table, so rows inserted or archived by a
    concurrent run are never overwritten. Running it again with the same
    ``days`` archives nothing new. Returns the number of rows flipped.
    """
    if days is None or days < 0:
        raise ValidationError("days must be zero or a positive number")

    now = now or utcnow()
    cutoff = now - timedelta(days=days)
    selected = [HistoryKind(k) for k in kinds] if kinds else list(HISTORY_MODELS)

    counts = {}
    for kind in selected:
        model = HISTORY_MODELS[kind]
        result = await db.execute(
            update(model)
            .where(model.is_archived == False, model.timestamp < cutoff)  # noqa: E712
            .values(is_archived=True, archived_at=now)
            .execution_options(synchronize_session=False)
        )
        counts[kind.value] = result.rowcount or 0

    total = sum(counts.values())
    if total:
        # The audit row is written after the updates so it is never itself archived by this run
        await log_audit_event(
            db,
            action=AuditActions.HISTORY_ARCHIVE,
            target_type=AuditTargetTypes.SYSTEM,
            target_id="history",
            description=f"Archived {total} history records older than {days} days",
            actor_id=actor_id,
            meta={"days": days, "cutoff": cutoff.isoformat(), "counts": counts},
            commit=False,
        )
    await db.commit()

    archive_logger.info("history_archived", days=days, cutoff=cutoff.isoformat(), **counts)
    return total
