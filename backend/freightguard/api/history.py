"""
History search, compliance export and archival endpoints.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from freightguard.audit import query
from freightguard.audit.archival import archive_older_than
from freightguard.audit.export import export_history
from freightguard.audit.schemas import (
    ArchiveRequest,
    ArchiveResponse,
    HistoryListResponse,
    HistoryRecordOut,
    HistorySearch,
)
from freightguard.core.config import settings
from freightguard.db.database import get_db
from freightguard.db.enums import ExportFormat, HistoryKind
from freightguard.db.models import User
from freightguard.permissions.dependencies import require_permission

router = APIRouter()


def history_filters(
    kind: HistoryKind = HistoryKind.load,
    q: Optional[str] = Query(None, description="Case-insensitive text contained in the record content"),
    entity_ids: List[str] = Query([]),
    subject_type: Optional[str] = None,
    actor_ids: List[int] = Query([]),
    action_types: List[str] = Query([]),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    include_archived: bool = False,
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
) -> HistorySearch:
    return HistorySearch(
        kind=kind,
        search_term=q,
        entity_ids=entity_ids,
        subject_type=subject_type,
        actor_ids=actor_ids,
        action_types=action_types,
        start_date=start_date,
        end_date=end_date,
        include_archived=include_archived,
        limit=limit,
        offset=offset,
    )


@router.get("/search", response_model=HistoryListResponse)
async def search_history(
    params: HistorySearch = Depends(history_filters),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("view:audit")),
):
    records = await query.search(db, params)
    return HistoryListResponse(
        records=[HistoryRecordOut.from_record(r) for r in records],
        total=await query.count_history(db, params),
    )


@router.get("/export")
async def export(
    format: ExportFormat = ExportFormat.csv,
    params: HistorySearch = Depends(history_filters),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("export:reports")),
):
    result = await export_history(db, params, format)
    return Response(
        content=result.content,
        media_type=result.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"'
        },
    )


@router.post("/archive", response_model=ArchiveResponse)
async def archive(
    request: Optional[ArchiveRequest] = Body(None),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("manage:settings")),
):
    days = settings.ARCHIVE_RETENTION_DAYS
    kinds = None
    if request is not None:
        if request.older_than_days is not None:
            days = request.older_than_days
        kinds = request.kinds
    archived = await archive_older_than(db, days, kinds=kinds, actor_id=user.id)
    return ArchiveResponse(archived=archived, older_than_days=days)


@router.get("/audit-trail/{subject_type}/{subject_id}", response_model=HistoryListResponse)
async def audit_trail(
    subject_type: str,
    subject_id: str,
    kind: HistoryKind = HistoryKind.audit,
    include_archived: bool = False,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("view:audit")),
):
    """The full trail for one subject, oldest first."""
    records = await query.get_audit_trail(
        db, subject_type, subject_id, kind=kind, include_archived=include_archived,
    )
    return HistoryListResponse(
        records=[HistoryRecordOut.from_record(r) for r in records],
        total=len(records),
    )
