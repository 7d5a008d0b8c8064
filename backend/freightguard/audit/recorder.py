"""
Event Recorder

Appends immutable events against loads. Callers are the domain mutations
themselves; the recorder trusts their before/after payloads and never
deduplicates: every call is a real occurrence and produces a new row.
"""
from typing import Any, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from freightguard.audit.constants import AuditTargetTypes, EventTypes
from freightguard.core.logging import audit_logger
from freightguard.db.database import utcnow
from freightguard.db.enums import NotificationType
from freightguard.db.models import Event, _dumps
from freightguard.services.notifications import (
    DatabaseNotificationSink,
    NotificationRequest,
    NotificationSink,
)


async def record_event(
    db: AsyncSession,
    load_id: Any,
    user_id: Optional[int],
    event_type: str,
    previous_value: Any = None,
    new_value: Any = None,
    notes: Optional[str] = None,
    commit: bool = True,
) -> int:
    """Append one event and return its id."""
    now = utcnow()
    event = Event(
        load_id=str(load_id),
        user_id=user_id,
        event_type=event_type,
        previous_value=_dumps(previous_value),
        new_value=_dumps(new_value),
        timestamp=now,
        notes=notes,
        created_at=now,
    )
    db.add(event)
    if commit:
        await db.commit()
        await db.refresh(event)
    else:
        await db.flush()

    audit_logger.info(
        "event_recorded",
        event_id=event.id,
        load_id=event.load_id,
        event_type=event_type,
        user_id=user_id,
    )
    return event.id


async def record_rating_created(
    db: AsyncSession,
    load_id: Any,
    rating_id: Any,
    rating: int,
    rater_id: int,
    rater_name: str,
    rated_user_id: int,
    sink: Optional[NotificationSink] = None,
) -> int:
    """Record a submitted rating and tell the rated user about it."""
    sink = sink or DatabaseNotificationSink(db)

    event_id = await record_event(
        db,
        load_id=load_id,
        user_id=rater_id,
        event_type=EventTypes.RATING_CREATED,
        previous_value=None,
        new_value={"rating_id": str(rating_id), "rating": rating},
        notes=f"Rating of {rating}/5 submitted by {rater_name}",
        commit=False,
    )
    await sink.send(NotificationRequest(
        user_id=rated_user_id,
        type=NotificationType.rating_received,
        title="New Rating Received",
        message=f"You received a {rating}-star rating from {rater_name}",
        related_id=str(load_id),
        related_type=AuditTargetTypes.LOAD,
    ))
    await db.commit()
    return event_id


# new status -> (notification type, title, message template, who is told)
_STATUS_NOTIFICATIONS = {
    "assigned": (NotificationType.load_assigned, "Load Assigned",
                 "Load {ref} has been assigned.", ("carrier", "driver")),
    "in_transit": (NotificationType.load_in_transit, "Load In Transit",
                   "Load {ref} is now in transit.", ("shipper", "carrier")),
    "delivered": (NotificationType.load_delivered, "Load Delivered",
                  "Load {ref} has been delivered.", ("shipper", "carrier")),
}


async def record_status_change(
    db: AsyncSession,
    load_id: Any,
    user_id: Optional[int],
    previous_status: Optional[str],
    new_status: str,
    reference_number: Optional[str] = None,
    shipper_id: Optional[int] = None,
    carrier_user_ids: Iterable[int] = (),
    driver_id: Optional[int] = None,
    sink: Optional[NotificationSink] = None,
) -> int:
    """
    Record a load status transition and notify the parties involved.

    assigned    -> carrier users and the driver
    in_transit  -> shipper and carrier users
    delivered   -> shipper and carrier users
    other       -> shipper only, as a generic status update
    """
    sink = sink or DatabaseNotificationSink(db)
    ref = reference_number or str(load_id)

    event_id = await record_event(
        db,
        load_id=load_id,
        user_id=user_id,
        event_type=EventTypes.STATUS_CHANGED,
        previous_value={"status": previous_status},
        new_value={"status": new_status},
        notes=f"Status changed from {previous_status or 'none'} to {new_status}",
        commit=False,
    )

    parties = {
        "shipper": [shipper_id] if shipper_id is not None else [],
        "carrier": list(carrier_user_ids),
        "driver": [driver_id] if driver_id is not None else [],
    }
    if new_status in _STATUS_NOTIFICATIONS:
        ntype, title, template, audience = _STATUS_NOTIFICATIONS[new_status]
        message = template.format(ref=ref)
    else:
        ntype, title, audience = NotificationType.load_status_changed, "Load Status Updated", ("shipper",)
        message = f"Load {ref} status changed to {new_status}."

    recipients = []
    for party in audience:
        for uid in parties[party]:
            if uid not in recipients:
                recipients.append(uid)

    for uid in recipients:
        await sink.send(NotificationRequest(
            user_id=uid,
            type=ntype,
            title=title,
            message=message,
            related_id=str(load_id),
            related_type=AuditTargetTypes.LOAD,
        ))

    await db.commit()
    audit_logger.info(
        "status_change_recorded",
        load_id=str(load_id),
        new_status=new_status,
        notified=len(recipients),
    )
    return event_id
