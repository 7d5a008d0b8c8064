"""
History writers for load_history, message_history and audit_logs.

All three tables share one shape; rows are appended here and afterwards only
the archival flag ever changes.
"""
from functools import wraps
from typing import Any, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from freightguard.audit.constants import AuditTargetTypes
from freightguard.core.logging import audit_logger, request_id_var
from freightguard.db.database import utcnow
from freightguard.db.enums import HistoryKind
from freightguard.db.models import HISTORY_MODELS, _dumps


async def append_history(
    db: AsyncSession,
    kind: HistoryKind,
    subject_type: str,
    subject_id: Any,
    action_type: str,
    content: str = "",
    actor_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
    status: Optional[str] = None,
    commit: bool = True,
):
    """
    Append one history row.

    Args:
        kind: Which history table to write (load, message or audit)
        subject_type: Type of entity affected (e.g. 'load', 'role', 'chat')
        subject_id: ID of the affected entity
        action_type: What happened (e.g. 'STATUS_CHANGE', 'role.create')
        content: Human-readable text; the only field free-text search looks at
        actor_id: User who performed the action (None for system)
        details: Structured payload (before/after, metadata)
        status: Optional state label shown in exports
        commit: Commit immediately; pass False to join the caller's transaction
    """
    model = HISTORY_MODELS[HistoryKind(kind)]
    payload = dict(details or {})
    req_id = request_id_var.get()
    if req_id and "request_id" not in payload:
        payload["request_id"] = req_id

    row = model(
        subject_type=subject_type,
        subject_id=str(subject_id),
        actor_id=actor_id,
        action_type=action_type,
        status=status,
        content=content or "",
        details=_dumps(payload) if payload else None,
        timestamp=utcnow(),
        is_archived=False,
    )
    db.add(row)
    if commit:
        await db.commit()
        await db.refresh(row)
    else:
        await db.flush()

    audit_logger.info(
        "history_appended",
        kind=model.kind.value,
        action_type=action_type,
        subject_type=subject_type,
        subject_id=str(subject_id),
        actor_id=actor_id,
    )
    return row


async def log_load_action(
    db: AsyncSession,
    load_id: Any,
    user_id: Optional[int],
    action_type: str,
    description: str,
    before: Any = None,
    after: Any = None,
    metadata: Optional[Dict[str, Any]] = None,
    commit: bool = True,
):
    """Record an action against a load in load_history."""
    details = {"before": before, "after": after, "description": description}
    if metadata:
        details["metadata"] = metadata
    return await append_history(
        db,
        HistoryKind.load,
        subject_type=AuditTargetTypes.LOAD,
        subject_id=load_id,
        action_type=action_type,
        content=description,
        actor_id=user_id,
        details=details,
        commit=commit,
    )


async def log_message(
    db: AsyncSession,
    chat_id: Any,
    sender_id: Optional[int],
    content: str,
    message_type: str = "text",
    status: str = "sent",
    metadata: Optional[Dict[str, Any]] = None,
    commit: bool = True,
):
    """Record a chat message in message_history."""
    return await append_history(
        db,
        HistoryKind.message,
        subject_type=AuditTargetTypes.CHAT,
        subject_id=chat_id,
        action_type=message_type,
        content=content,
        actor_id=sender_id,
        details={"metadata": metadata or {}},
        status=status,
        commit=commit,
    )


async def log_audit_event(
    db: AsyncSession,
    action: str,
    target_type: str,
    target_id: Any,
    description: str,
    actor_id: Optional[int] = None,
    meta: Optional[Dict[str, Any]] = None,
    commit: bool = True,
):
    """Record a privileged action in audit_logs."""
    return await append_history(
        db,
        HistoryKind.audit,
        subject_type=target_type,
        subject_id=target_id,
        action_type=action,
        content=description,
        actor_id=actor_id,
        details=meta,
        commit=commit,
    )


def with_load_history(action_type: str, describe: Callable[[Any, Any], str], snapshot: Callable):
    """
    Wrap an async load mutation so it leaves a load_history row behind.

    The wrapped function must accept ``db``, ``load_id`` and ``user_id`` as
    keyword arguments. ``snapshot(db, load_id)`` is awaited before and after
    the mutation to capture state; ``describe(before, after)`` builds the
    human-readable line.

    Usage:
        @with_load_history("STATUS_CHANGE", lambda b, a: f"Status {b['status']} -> {a['status']}", get_load)
        async def update_status(*, db, load_id, user_id, status):
            ...
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            db = kwargs["db"]
            load_id = kwargs["load_id"]
            user_id = kwargs.get("user_id")

            before = await snapshot(db, load_id)
            result = await func(*args, **kwargs)
            after = await snapshot(db, load_id)

            await log_load_action(
                db,
                load_id=load_id,
                user_id=user_id,
                action_type=action_type,
                description=describe(before, after),
                before=before,
                after=after,
                metadata={"args": {k: v for k, v in kwargs.items() if k != "db"}},
            )
            return result

        return wrapper

    return decorator
