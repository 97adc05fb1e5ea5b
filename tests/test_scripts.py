from datetime import timedelta

import pytest
from tortoise import timezone

from sheetpipe.models.event import SheetEvent, EventStatus
from sheetpipe.models.sheet import ApiUser, Column, Sheet
from sheetpipe.scripts import seed_data
from sheetpipe.services import event_queue


@pytest.mark.asyncio
async def test_seed_is_idempotent(db):
    first = await seed_data.seed()
    second = await seed_data.seed()

    assert first.id == second.id
    assert await ApiUser.filter(api_key=seed_data.DEMO_API_KEY).count() == 1
    assert await Sheet.filter(user_id=seed_data.DEMO_USER).count() == 1
    titles = [c.title for c in await Column.filter(sheet_id=first.id).order_by("position")]
    assert titles == ["City", "Weather", "Top News"]


@pytest.mark.asyncio
async def test_release_stale_events_script(sheet, owner, monkeypatch):
    from sheetpipe.scripts import release_stale_events

    event = await event_queue.enqueue(sheet.id, owner, event_queue.CELL_UPDATE, {})
    await event_queue.claim_batch(1)
    await SheetEvent.filter(id=event.id).update(claimed_at=timezone.now() - timedelta(minutes=10))

    async def noop():
        return None

    # The test database is already open
    monkeypatch.setattr(release_stale_events, "init_db", noop)
    monkeypatch.setattr(release_stale_events, "close_db", noop)

    await release_stale_events.main(older_than=60)

    assert (await SheetEvent.get(id=event.id)).status == EventStatus.PENDING
