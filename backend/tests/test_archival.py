from datetime import timedelta

import pytest
from sqlalchemy import func, select

from freightguard.audit.archival import archive_older_than
from freightguard.audit.query import get_audit_trail, search
from freightguard.audit.schemas import HistorySearch
from freightguard.core.errors import ValidationError
from freightguard.db.database import utcnow
from freightguard.db.enums import HistoryKind
from freightguard.db.models import LoadHistory, MessageHistory


async def seed_load_history(db, now, days=120, load_id="L1"):
    # One row per day, each an hour past the day boundary
    for i in range(days):
        db.add(LoadHistory(
            subject_type="load",
            subject_id=load_id,
            actor_id=1,
            action_type="STATUS_CHANGE",
            content=f"day {i}",
            timestamp=now - timedelta(days=i, hours=1),
            is_archived=False,
        ))
    await db.commit()


async def archived_ids(db, model=LoadHistory):
    result = await db.execute(
        select(model.id).where(model.is_archived == True).order_by(model.id)  # noqa: E712
    )
    return [row[0] for row in result.fetchall()]


@pytest.mark.anyio
async def test_archive_ninety_day_window(session_factory):
    now = utcnow()
    async with session_factory() as db:
        await seed_load_history(db, now)

    async with session_factory() as db:
        archived = await archive_older_than(db, 90, now=now)
    assert archived == 30

    async with session_factory() as db:
        visible = await search(db, HistorySearch(entity_ids=["L1"]))
        assert len(visible) == 90
        assert not any(r.is_archived for r in visible)
        oldest_visible = min(r.timestamp for r in visible)
        assert oldest_visible >= now - timedelta(days=90)

        everything = await search(db, HistorySearch(entity_ids=["L1"], include_archived=True))
        assert len(everything) == 120


@pytest.mark.anyio
async def test_archival_is_monotonic_and_rerunnable(session_factory):
    now = utcnow()
    async with session_factory() as db:
        await seed_load_history(db, now)

    async with session_factory() as db:
        first = await archive_older_than(db, 90, now=now)
        before = await archived_ids(db)

    async with session_factory() as db:
        second = await archive_older_than(db, 90, now=now)
        after = await archived_ids(db)

    assert first == 30
    assert second == 0
    assert after == before

    # A shorter window only ever adds to the archived set
    async with session_factory() as db:
        third = await archive_older_than(db, 30, now=now)
        widened = await archived_ids(db)
    assert third == 60
    assert set(before) < set(widened)


@pytest.mark.anyio
async def test_archival_covers_each_history_table(session_factory):
    now = utcnow()
    async with session_factory() as db:
        db.add(MessageHistory(
            subject_type="chat", subject_id="C1", action_type="text",
            content="old message", timestamp=now - timedelta(days=200), is_archived=False,
        ))
        await db.commit()
        await seed_load_history(db, now, days=100)

    async with session_factory() as db:
        only_messages = await archive_older_than(db, 90, kinds=[HistoryKind.message], now=now)
    assert only_messages == 1

    async with session_factory() as db:
        rest = await archive_older_than(db, 90, now=now)
        assert await archived_ids(db, MessageHistory) != []
    assert rest == 10


@pytest.mark.anyio
async def test_archival_writes_audit_record(session_factory):
    now = utcnow()
    async with session_factory() as db:
        await seed_load_history(db, now, days=95)

    async with session_factory() as db:
        await archive_older_than(db, 90, now=now, actor_id=8)

    async with session_factory() as db:
        trail = await get_audit_trail(db, "system", "history")
    assert len(trail) == 1
    assert trail[0].action_type == "history.archive"
    assert trail[0].actor_id == 8
    assert trail[0].details_data["counts"]["load"] == 5


@pytest.mark.anyio
async def test_nothing_to_archive_returns_zero(test_session):
    assert await archive_older_than(test_session, 90) == 0
    count = await test_session.scalar(select(func.count(LoadHistory.id)))
    assert count == 0


@pytest.mark.anyio
async def test_negative_days_rejected(test_session):
    with pytest.raises(ValidationError):
        await archive_older_than(test_session, -1)
