from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from freightguard.audit import query
from freightguard.audit.recorder import record_event, record_rating_created, record_status_change
from freightguard.audit.schemas import EventCreate, EventPage, RatingCreate, StatusChangeCreate
from freightguard.db.database import get_db
from freightguard.db.models import User
from freightguard.permissions.dependencies import require_permission

router = APIRouter()

CURSOR_HELP = "Timestamp of the last event already seen"


@router.post("", status_code=201)
async def create_event(
    request: EventCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("update:loads")),
):
    event_id = await record_event(
        db,
        load_id=request.load_id,
        user_id=user.id,
        event_type=request.event_type,
        previous_value=request.previous_value,
        new_value=request.new_value,
        notes=request.notes,
    )
    return {"id": event_id}


@router.post("/status-changes", status_code=201)
async def create_status_change(
    request: StatusChangeCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("update:loads")),
):
    """Record a status transition and queue notifications for the parties."""
    event_id = await record_status_change(
        db,
        load_id=request.load_id,
        user_id=user.id,
        previous_status=request.previous_status,
        new_status=request.new_status,
        reference_number=request.reference_number,
        shipper_id=request.shipper_id,
        carrier_user_ids=request.carrier_user_ids,
        driver_id=request.driver_id,
    )
    return {"id": event_id}


@router.post("/ratings", status_code=201)
async def create_rating(
    request: RatingCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("read:loads")),
):
    event_id = await record_rating_created(
        db,
        load_id=request.load_id,
        rating_id=request.rating_id,
        rating=request.rating,
        rater_id=user.id,
        rater_name=user.name or user.email,
        rated_user_id=request.rated_user_id,
    )
    return {"id": event_id}


@router.get("/recent", response_model=EventPage)
async def list_recent_events(
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[datetime] = Query(None, description=CURSOR_HELP),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("view:audit")),
):
    return await query.recent_events(db, limit=limit, cursor=cursor)


@router.get("/range", response_model=EventPage)
async def list_events_in_range(
    start: datetime,
    end: datetime,
    load_id: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[datetime] = Query(None, description=CURSOR_HELP),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("view:audit")),
):
    return await query.query_by_time_range(
        db, start, end, load_id=load_id, event_type=event_type, limit=limit, cursor=cursor,
    )


@router.get("/users/{user_id}", response_model=EventPage)
async def list_user_events(
    user_id: int,
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[datetime] = Query(None, description=CURSOR_HELP),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("view:audit")),
):
    return await query.query_by_user(db, user_id, limit=limit, cursor=cursor)


@router.get("/types/{event_type}", response_model=EventPage)
async def list_events_of_type(
    event_type: str,
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[datetime] = Query(None, description=CURSOR_HELP),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("view:audit")),
):
    return await query.query_by_type(db, event_type, limit=limit, cursor=cursor)


@router.get("/loads/{load_id}", response_model=EventPage)
async def list_load_events(
    load_id: str,
    event_type: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[datetime] = Query(None, description=CURSOR_HELP),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("read:loads")),
):
    return await query.query_by_entity(
        db, load_id, event_type=event_type, start=start, end=end, limit=limit, cursor=cursor,
    )


@router.get("/loads/{load_id}/view")
async def view_load_timeline(
    load_id: str,
    role: str = Query(..., description="admin, shipper, carrier or driver"),
    event_type: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("read:loads")),
):
    views = await query.query_by_role(
        db, load_id, viewer_id=user.id, role=role, event_type=event_type, start=start, end=end,
    )
    return [v.model_dump(mode="json") for v in views]
