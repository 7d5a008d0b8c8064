"""
Audit/History Query Engine

Read-only, filtered views over events and the history tables. Nothing here
writes, so every call is safe to retry.

Event pages are ordered newest first; the cursor is the timestamp of the last
item seen and the next page holds strictly older rows.

History reads without a limit return the full filtered result. When that
result is larger than SEARCH_MAX_ROWS they fail instead of returning a prefix.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, asc, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from freightguard.audit.constants import ROLE_VISIBLE_EVENT_TYPES, EventTypes
from freightguard.audit.schemas import (
    AdminEventView, EventOut, EventPage, EventView, HistorySearch, PartyEventView,
)
from freightguard.core.config import settings
from freightguard.core.errors import ValidationError
from freightguard.db.enums import HistoryKind, LegacyRole
from freightguard.db.models import HISTORY_MODELS, Event
from freightguard.permissions import repository


def _page_size(limit: Optional[int]) -> int:
    if limit is None:
        return settings.DEFAULT_PAGE_SIZE
    if limit < 1:
        raise ValidationError("limit must be at least 1")
    if limit > settings.MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be at most {settings.MAX_PAGE_SIZE}")
    return limit


def _check_range(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start is not None and end is not None and start > end:
        raise ValidationError("start must not be after end")


async def _count(db: AsyncSession, query) -> int:
    return await db.scalar(select(func.count()).select_from(query.subquery()))


async def _result_limit(db: AsyncSession, query, limit: Optional[int], offset: int = 0) -> Optional[int]:
    """Row limit for a history read; ``None`` means the whole result fits under the cap."""
    if limit is not None:
        return _page_size(limit)
    remaining = max(await _count(db, query) - offset, 0)
    if remaining > settings.SEARCH_MAX_ROWS:
        raise ValidationError(
            f"Query matches {remaining} records, more than {settings.SEARCH_MAX_ROWS}; "
            "narrow the filters or page with limit and offset"
        )
    return None


async def _event_page(db: AsyncSession, conditions: list, limit: Optional[int], cursor: Optional[datetime]) -> EventPage:
    size = _page_size(limit)
    if cursor is not None:
        conditions = conditions + [Event.timestamp < cursor]

    query = select(Event)
    if conditions:
        query = query.where(and_(*conditions))
    query = query.order_by(desc(Event.timestamp), desc(Event.id)).limit(size)

    result = await db.execute(query)
    items = [EventOut.from_event(e) for e in result.scalars().all()]
    next_cursor = items[-1].timestamp if len(items) == size else None
    return EventPage(items=items, next_cursor=next_cursor)


async def query_by_entity(
    db: AsyncSession,
    load_id: str,
    event_type: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: Optional[int] = None,
    cursor: Optional[datetime] = None,
) -> EventPage:
    """Events for one load, optionally narrowed by type and time range."""
    _check_range(start, end)
    conditions = [Event.load_id == str(load_id)]
    if event_type:
        conditions.append(Event.event_type == event_type)
    if start is not None:
        conditions.append(Event.timestamp >= start)
    if end is not None:
        conditions.append(Event.timestamp <= end)
    return await _event_page(db, conditions, limit, cursor)


async def query_by_user(
    db: AsyncSession,
    user_id: int,
    limit: Optional[int] = None,
    cursor: Optional[datetime] = None,
) -> EventPage:
    return await _event_page(db, [Event.user_id == user_id], limit, cursor)


async def query_by_type(
    db: AsyncSession,
    event_type: str,
    limit: Optional[int] = None,
    cursor: Optional[datetime] = None,
) -> EventPage:
    return await _event_page(db, [Event.event_type == event_type], limit, cursor)


async def query_by_time_range(
    db: AsyncSession,
    start: datetime,
    end: datetime,
    load_id: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: Optional[int] = None,
    cursor: Optional[datetime] = None,
) -> EventPage:
    """Events across all loads with start <= timestamp <= end."""
    _check_range(start, end)
    conditions = [Event.timestamp >= start, Event.timestamp <= end]
    if load_id is not None:
        conditions.append(Event.load_id == str(load_id))
    if event_type:
        conditions.append(Event.event_type == event_type)
    return await _event_page(db, conditions, limit, cursor)


async def recent_events(
    db: AsyncSession,
    limit: Optional[int] = None,
    cursor: Optional[datetime] = None,
) -> EventPage:
    return await _event_page(db, [], limit, cursor)


def describe_event(event: Event) -> str:
    """Human-readable line for parties who must not see raw values."""
    if event.notes:
        return event.notes
    if event.event_type == EventTypes.STATUS_CHANGED:
        before = (event.previous_value_data or {}).get("status")
        after = (event.new_value_data or {}).get("status")
        if after:
            return f"Status changed from {before or 'none'} to {after}"
    return event.event_type.replace("_", " ").capitalize()


async def query_by_role(
    db: AsyncSession,
    load_id: str,
    viewer_id: int,
    role: str,
    event_type: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[EventView]:
    """
    A load's timeline as seen by one party.

    Visibility is keyed off ``role`` only; callers are expected to have
    checked access to the load already. ``event_type``, ``start`` and ``end``
    narrow the view further and never widen it: asking for a type the role
    cannot see yields nothing. Admins see the actor and the raw before/after
    values, everyone else a description.
    """
    await repository.get_user_or_404(db, viewer_id)
    try:
        party = LegacyRole(role)
    except ValueError:
        raise ValidationError(f"Unknown viewer role '{role}'")
    _check_range(start, end)

    visible = ROLE_VISIBLE_EVENT_TYPES[party]
    query = select(Event).where(Event.load_id == str(load_id))
    if visible is not None:
        query = query.where(Event.event_type.in_(sorted(visible)))
    if event_type:
        query = query.where(Event.event_type == event_type)
    if start is not None:
        query = query.where(Event.timestamp >= start)
    if end is not None:
        query = query.where(Event.timestamp <= end)
    query = query.order_by(desc(Event.timestamp), desc(Event.id))

    result = await db.execute(query)
    events = result.scalars().all()

    if party == LegacyRole.admin:
        return [
            AdminEventView(
                id=e.id,
                event_type=e.event_type,
                timestamp=e.timestamp,
                user_id=e.user_id,
                previous_value=e.previous_value_data,
                new_value=e.new_value_data,
                notes=e.notes,
            )
            for e in events
        ]
    return [
        PartyEventView(id=e.id, event_type=e.event_type, timestamp=e.timestamp, description=describe_event(e))
        for e in events
    ]


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_history_query(params: HistorySearch):
    """Select statement for ``params`` without ordering or paging."""
    model = HISTORY_MODELS[params.kind]
    conditions = []

    # Archived rows drop out before any other predicate is applied
    if not params.include_archived:
        conditions.append(model.is_archived == False)  # noqa: E712
    if params.search_term:
        conditions.append(model.content.ilike(f"%{_escape_like(params.search_term)}%", escape="\\"))
    if params.entity_ids:
        conditions.append(model.subject_id.in_([str(i) for i in params.entity_ids]))
    if params.subject_type:
        conditions.append(model.subject_type == params.subject_type)
    if params.actor_ids:
        conditions.append(model.actor_id.in_(params.actor_ids))
    if params.action_types:
        conditions.append(model.action_type.in_(params.action_types))
    if params.start_date is not None:
        conditions.append(model.timestamp >= params.start_date)
    if params.end_date is not None:
        conditions.append(model.timestamp <= params.end_date)

    query = select(model)
    if conditions:
        query = query.where(and_(*conditions))
    return model, query


async def count_history(db: AsyncSession, params: HistorySearch) -> int:
    """Number of records matching ``params``, ignoring limit and offset."""
    _, query = build_history_query(params)
    return await _count(db, query)


async def search(db: AsyncSession, params: HistorySearch) -> list:
    """
    History records matching every given filter, newest first.

    Without ``limit`` this is the full filtered result from ``offset`` on.
    """
    _check_range(params.start_date, params.end_date)
    model, query = build_history_query(params)
    limit = await _result_limit(db, query, params.limit, params.offset)

    query = query.order_by(desc(model.timestamp), desc(model.id))
    if params.offset:
        query = query.offset(params.offset)
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_audit_trail(
    db: AsyncSession,
    subject_type: str,
    subject_id: str,
    kind: HistoryKind = HistoryKind.audit,
    include_archived: bool = False,
    limit: Optional[int] = None,
) -> list:
    """Everything recorded against one subject, oldest first."""
    model = HISTORY_MODELS[HistoryKind(kind)]
    query = select(model).where(
        model.subject_type == subject_type,
        model.subject_id == str(subject_id),
    )
    if not include_archived:
        query = query.where(model.is_archived == False)  # noqa: E712
    limit = await _result_limit(db, query, limit)

    query = query.order_by(asc(model.timestamp), asc(model.id))
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())
