"""
Export Engine

Compliance downloads of one history table, always scoped to explicit
entities. Output is all-or-nothing: an export that would exceed
EXPORT_MAX_ROWS is refused instead of truncated.
"""
import csv
import io
import json
import re
from dataclasses import dataclass

from sqlalchemy import desc
from sqlalchemy.ext.asyncio import AsyncSession

from freightguard.audit.query import build_history_query, count_history
from freightguard.audit.schemas import HistoryRecordOut, HistorySearch
from freightguard.core.config import settings
from freightguard.core.errors import ScopeRequired, ValidationError
from freightguard.core.logging import audit_logger
from freightguard.db.enums import ExportFormat

CSV_COLUMNS = ["id", "timestamp", "actorId", "actionType", "status", "content"]
CSV_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

MEDIA_TYPES = {
    ExportFormat.csv: "text/csv",
    ExportFormat.json: "application/json",
}


@dataclass(frozen=True)
class ExportResult:
    content: bytes
    media_type: str
    filename: str


def export_filename(params: HistorySearch, fmt: ExportFormat) -> str:
    if len(params.entity_ids) == 1:
        scope = re.sub(r"[^A-Za-z0-9_.-]", "_", str(params.entity_ids[0]))
    else:
        scope = params.kind.value
    return f"{scope}-history.{fmt.value}"


def render_csv(records) -> bytes:
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for record in records:
        writer.writerow([
            record.id,
            record.timestamp.strftime(CSV_TIMESTAMP_FORMAT),
            record.actor_id if record.actor_id is not None else "system",
            record.action_type,
            record.status or "recorded",
            record.content or "",
        ])
    return output.getvalue().encode("utf-8")


def render_json(records) -> bytes:
    rows = [HistoryRecordOut.from_record(r).model_dump(mode="json") for r in records]
    return json.dumps(rows, indent=2).encode("utf-8")


async def export_history(db: AsyncSession, params: HistorySearch, fmt: ExportFormat) -> ExportResult:
    """
    Render every record matching ``params`` as CSV or JSON.

    ``entity_ids`` is mandatory; limit/offset on ``params`` are ignored so
    the download always holds the full filtered set.
    """
    if not params.entity_ids:
        raise ScopeRequired()
    fmt = ExportFormat(fmt)

    model, query = build_history_query(params)
    total = await count_history(db, params)
    if total > settings.EXPORT_MAX_ROWS:
        raise ValidationError(
            f"Export matches {total} records, more than the limit of {settings.EXPORT_MAX_ROWS}; narrow the filters"
        )

    result = await db.execute(query.order_by(desc(model.timestamp), desc(model.id)))
    records = list(result.scalars().all())

    content = render_csv(records) if fmt == ExportFormat.csv else render_json(records)
    audit_logger.info(
        "history_exported",
        kind=params.kind.value,
        format=fmt.value,
        entity_ids=params.entity_ids,
        rows=len(records),
    )
    return ExportResult(
        content=content,
        media_type=MEDIA_TYPES[fmt],
        filename=export_filename(params, fmt),
    )
