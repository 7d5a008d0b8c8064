from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from freightguard.db.enums import HistoryKind
from freightguard.db.models import Event


class EventCreate(BaseModel):
    load_id: str = Field(..., min_length=1, max_length=64)
    event_type: str = Field(..., min_length=1, max_length=100)
    previous_value: Any = None
    new_value: Any = None
    notes: Optional[str] = None


class EventOut(BaseModel):
    id: int
    load_id: str
    user_id: Optional[int]
    event_type: str
    previous_value: Any = None
    new_value: Any = None
    timestamp: datetime
    notes: Optional[str] = None

    @classmethod
    def from_event(cls, event: Event) -> "EventOut":
        return cls(
            id=event.id,
            load_id=event.load_id,
            user_id=event.user_id,
            event_type=event.event_type,
            previous_value=event.previous_value_data,
            new_value=event.new_value_data,
            timestamp=event.timestamp,
            notes=event.notes,
        )


class EventPage(BaseModel):
    items: List[EventOut]
    next_cursor: Optional[datetime] = None


class AdminEventView(BaseModel):
    """Full view: actor and raw before/after values."""
    id: int
    event_type: str
    timestamp: datetime
    user_id: Optional[int]
    previous_value: Any = None
    new_value: Any = None
    notes: Optional[str] = None


class PartyEventView(BaseModel):
    """Shipper/carrier view: what happened, never who or the raw diff."""
    id: int
    event_type: str
    timestamp: datetime
    description: str


EventView = Union[AdminEventView, PartyEventView]


class HistorySearch(BaseModel):
    """Conjunctive filters over one history table."""
    kind: HistoryKind = HistoryKind.load
    search_term: Optional[str] = None
    entity_ids: List[str] = Field(default_factory=list)
    subject_type: Optional[str] = None
    actor_ids: List[int] = Field(default_factory=list)
    action_types: List[str] = Field(default_factory=list)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    include_archived: bool = False
    limit: Optional[int] = Field(None, ge=1)
    offset: int = Field(0, ge=0)


class HistoryRecordOut(BaseModel):
    id: int
    kind: HistoryKind
    subject_type: str
    subject_id: str
    actor_id: Optional[int]
    action_type: str
    status: Optional[str]
    content: str
    details: Dict[str, Any]
    timestamp: datetime
    is_archived: bool
    archived_at: Optional[datetime]

    @classmethod
    def from_record(cls, record) -> "HistoryRecordOut":
        return cls(
            id=record.id,
            kind=record.kind,
            subject_type=record.subject_type,
            subject_id=record.subject_id,
            actor_id=record.actor_id,
            action_type=record.action_type,
            status=record.status,
            content=record.content or "",
            details=record.details_data,
            timestamp=record.timestamp,
            is_archived=record.is_archived,
            archived_at=record.archived_at,
        )


class HistoryListResponse(BaseModel):
    records: List[HistoryRecordOut]
    total: int


class ArchiveRequest(BaseModel):
    older_than_days: Optional[int] = Field(None, ge=0)
    kinds: Optional[List[HistoryKind]] = None


class ArchiveResponse(BaseModel):
    archived: int
    older_than_days: int


class RatingCreate(BaseModel):
    load_id: str = Field(..., min_length=1, max_length=64)
    rating_id: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    rated_user_id: int


class StatusChangeCreate(BaseModel):
    load_id: str = Field(..., min_length=1, max_length=64)
    previous_status: Optional[str] = None
    new_status: str = Field(..., min_length=1, max_length=50)
    reference_number: Optional[str] = None
    shipper_id: Optional[int] = None
    carrier_user_ids: List[int] = Field(default_factory=list)
    driver_id: Optional[int] = None
