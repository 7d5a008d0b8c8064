import csv
import io
import json
from datetime import datetime

import pytest

from freightguard.audit.export import export_history
from freightguard.audit.schemas import HistorySearch
from freightguard.core.config import settings
from freightguard.core.errors import ScopeRequired, ValidationError
from freightguard.db.enums import ExportFormat, HistoryKind
from freightguard.db.models import LoadHistory, MessageHistory, _dumps


async def seed(db):
    db.add_all([
        LoadHistory(
            subject_type="load", subject_id="L1", actor_id=7, action_type="STATUS_CHANGE",
            status="in_transit", content='Driver said "running late", ETA 5pm',
            details=_dumps({"before": {"status": "assigned"}, "after": {"status": "in_transit"}}),
            timestamp=datetime(2024, 5, 2, 8, 30, 0), is_archived=False,
        ),
        LoadHistory(
            subject_type="load", subject_id="L1", actor_id=None, action_type="LOAD_CREATED",
            content="Line one\nLine two " + "x" * 5000,
            timestamp=datetime(2024, 5, 1, 9, 0, 0), is_archived=False,
        ),
        LoadHistory(
            subject_type="load", subject_id="L2", actor_id=3, action_type="LOAD_CREATED",
            content="Other load", timestamp=datetime(2024, 5, 3, 9, 0, 0), is_archived=False,
        ),
    ])
    await db.commit()


@pytest.mark.anyio
@pytest.mark.parametrize("fmt", [ExportFormat.csv, ExportFormat.json])
async def test_unscoped_export_is_refused(test_session, fmt):
    await seed(test_session)

    with pytest.raises(ScopeRequired):
        await export_history(test_session, HistorySearch(search_term="load"), fmt)


@pytest.mark.anyio
async def test_csv_export(test_session):
    await seed(test_session)

    result = await export_history(test_session, HistorySearch(entity_ids=["L1"]), ExportFormat.csv)

    assert result.media_type == "text/csv"
    assert result.filename == "L1-history.csv"

    text = result.content.decode("utf-8")
    assert text.splitlines()[0] == '"id","timestamp","actorId","actionType","status","content"'
    assert '"Driver said ""running late"", ETA 5pm"' in text

    rows = list(csv.reader(io.StringIO(text)))
    assert len(rows) == 3
    newest, oldest = rows[1], rows[2]
    assert newest[1:5] == ["2024-05-02 08:30:00", "7", "STATUS_CHANGE", "in_transit"]
    assert newest[5] == 'Driver said "running late", ETA 5pm'
    assert oldest[2] == "system"
    assert oldest[4] == "recorded"
    assert oldest[5] == "Line one\nLine two " + "x" * 5000


@pytest.mark.anyio
async def test_json_export_keeps_details(test_session):
    await seed(test_session)

    result = await export_history(test_session, HistorySearch(entity_ids=["L1", "L2"]), ExportFormat.json)

    assert result.media_type == "application/json"
    assert result.filename == "load-history.json"
    assert result.content.decode("utf-8").startswith("[\n  {")

    rows = json.loads(result.content)
    assert [r["subject_id"] for r in rows] == ["L2", "L1", "L1"]
    assert rows[1]["details"] == {"before": {"status": "assigned"}, "after": {"status": "in_transit"}}
    assert rows[1]["kind"] == "load"
    assert "is_archived" in rows[1]


@pytest.mark.anyio
async def test_export_respects_other_filters(test_session):
    await seed(test_session)
    test_session.add(MessageHistory(
        subject_type="chat", subject_id="L1", action_type="text", content="chat about L1",
        timestamp=datetime(2024, 5, 1), is_archived=False,
    ))
    await test_session.commit()

    result = await export_history(
        test_session,
        HistorySearch(kind=HistoryKind.load, entity_ids=["L1"], action_types=["LOAD_CREATED"]),
        ExportFormat.json,
    )

    rows = json.loads(result.content)
    assert len(rows) == 1
    assert rows[0]["action_type"] == "LOAD_CREATED"


@pytest.mark.anyio
async def test_export_over_limit_fails_instead_of_truncating(test_session, monkeypatch):
    await seed(test_session)
    monkeypatch.setattr(settings, "EXPORT_MAX_ROWS", 1)

    with pytest.raises(ValidationError):
        await export_history(test_session, HistorySearch(entity_ids=["L1"]), ExportFormat.csv)
