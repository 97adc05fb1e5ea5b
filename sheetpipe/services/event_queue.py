import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from tortoise import timezone
from tortoise.expressions import F, Q
from tortoise.transactions import in_transaction

from sheetpipe.core.config import STATUS_SNAPSHOT_LIMIT
from sheetpipe.core.errors import EventNotFound
from sheetpipe.models.event import SheetEvent, EventStatus, TERMINAL_STATUSES

log = logging.getLogger("sheetpipe.queue")

CELL_UPDATE = "cell_update"

ACTIVE_STATUSES = (EventStatus.PENDING, EventStatus.PROCESSING)


async def enqueue(sheet_id: UUID, user_id: str, event_type: str, payload: Dict[str, Any]) -> SheetEvent:
    """Creates a pending event. Only storage failures propagate."""
    event = await SheetEvent.create(
        sheet_id=sheet_id,
        user_id=user_id,
        event_type=event_type,
        payload=payload,
        status=EventStatus.PENDING,
        retry_count=0,
    )
    log.info(f"Enqueued {event_type} event {event.id} for sheet {sheet_id}")
    return event


async def enqueue_many(sheet_id: UUID, user_id: str, items: Iterable[Tuple[str, Dict[str, Any]]]) -> List[SheetEvent]:
    """Enqueues several events in one transaction (bulk row import)."""
    events = []
    async with in_transaction() as conn:
        for event_type, payload in items:
            event = await SheetEvent.create(
                sheet_id=sheet_id,
                user_id=user_id,
                event_type=event_type,
                payload=payload,
                status=EventStatus.PENDING,
                using_db=conn,
            )
            events.append(event)
    log.info(f"Enqueued {len(events)} events for sheet {sheet_id}")
    return events


def _claimable():
    now = timezone.now()
    return Q(status=EventStatus.PENDING) & (Q(available_at__isnull=True) | Q(available_at__lte=now))


async def claim_batch(limit: int, sheet_id: Optional[UUID] = None) -> List[SheetEvent]:
    """
    Atomically moves up to `limit` due pending events to `processing`, oldest first.

    Rows are locked where the backend supports it, and every transition is a
    conditional update on `status == pending`, so an event id is returned by
    at most one caller even when claims race. A storage failure rolls back
    the whole claim.
    """
    if limit <= 0:
        return []

    claimed: List[SheetEvent] = []
    async with in_transaction() as conn:
        query = SheetEvent.filter(_claimable())
        if sheet_id is not None:
            query = query.filter(sheet_id=sheet_id)

        candidates = await (
            query.order_by("created_at")
            .limit(limit)
            .select_for_update(skip_locked=True)
            .using_db(conn)
        )

        claimed_at = timezone.now()
        for event in candidates:
            updated = await SheetEvent.filter(id=event.id, status=EventStatus.PENDING).using_db(conn).update(
                status=EventStatus.PROCESSING,
                claimed_at=claimed_at,
            )
            if updated != 1:
                # Another claimer won the race for this row
                continue
            event.status = EventStatus.PROCESSING
            event.claimed_at = claimed_at
            claimed.append(event)

    if claimed:
        log.info(f"Claimed {len(claimed)} events")
    return claimed


async def _get_or_raise(event_id: UUID) -> SheetEvent:
    event = await SheetEvent.get_or_none(id=event_id)
    if not event:
        raise EventNotFound(f"Event {event_id} not found")
    return event


async def mark_completed(event_id: UUID) -> bool:
    """Terminal transition to `completed`. No-op (returns False) if already terminal."""
    updated = await SheetEvent.filter(id=event_id).exclude(status__in=TERMINAL_STATUSES).update(
        status=EventStatus.COMPLETED,
        processed_at=timezone.now(),
    )
    if not updated:
        await _get_or_raise(event_id)
        log.info(f"Event {event_id} already terminal, completion ignored")
        return False
    return True


async def mark_failed(event_id: UUID, error: str) -> bool:
    """Terminal transition to `failed`, recording the error. No-op if already terminal."""
    updated = await SheetEvent.filter(id=event_id).exclude(status__in=TERMINAL_STATUSES).update(
        status=EventStatus.FAILED,
        last_error=error,
        retry_count=F("retry_count") + 1,
        processed_at=timezone.now(),
    )
    if not updated:
        await _get_or_raise(event_id)
        log.info(f"Event {event_id} already terminal, failure ignored")
        return False
    return True


async def schedule_retry(event_id: UUID, error: str, delay_seconds: float) -> bool:
    """Puts a claimed event back to `pending`, not claimable until the backoff elapses."""
    updated = await SheetEvent.filter(id=event_id, status=EventStatus.PROCESSING).update(
        status=EventStatus.PENDING,
        last_error=error,
        retry_count=F("retry_count") + 1,
        available_at=timezone.now() + timedelta(seconds=delay_seconds),
        claimed_at=None,
    )
    if not updated:
        await _get_or_raise(event_id)
        return False
    return True


async def release_stale(older_than_seconds: int) -> int:
    """Returns events stuck in `processing` (abandoned claims) to `pending`."""
    cutoff = timezone.now() - timedelta(seconds=older_than_seconds)
    released = await SheetEvent.filter(status=EventStatus.PROCESSING, claimed_at__lt=cutoff).update(
        status=EventStatus.PENDING,
        claimed_at=None,
    )
    if released:
        log.warning(f"Released {released} stale processing events")
    return released


async def get_event(event_id: UUID) -> SheetEvent:
    return await _get_or_raise(event_id)


async def list_pending(sheet_id: UUID) -> List[SheetEvent]:
    """Read-only view of pending and processing events for reporting. Never used to claim."""
    return await SheetEvent.filter(
        sheet_id=sheet_id,
        status__in=ACTIVE_STATUSES,
    ).order_by("created_at")


async def list_events(sheet_id: UUID, limit: int = 100) -> List[SheetEvent]:
    return await SheetEvent.filter(sheet_id=sheet_id).order_by("created_at").limit(limit)


def serialize_event(event: SheetEvent) -> Dict[str, Any]:
    return {
        "id": str(event.id),
        "eventType": event.event_type,
        "status": EventStatus(event.status).value,
        "retryCount": event.retry_count,
        "lastError": event.last_error,
        "createdAt": event.created_at.isoformat() if event.created_at else None,
    }


async def status_snapshot(sheet_id: UUID, limit: int = STATUS_SNAPSHOT_LIMIT) -> Dict[str, Any]:
    """
    Current queue state for one sheet, as pushed in `status_update` messages.

    `pendingEvents` always lists pending and processing events first (FIFO).
    Failed events, newest first, only fill the space left under `limit`.
    """
    events = await SheetEvent.filter(sheet_id=sheet_id, status__in=ACTIVE_STATUSES).order_by("created_at").limit(limit)
    if len(events) < limit:
        events += await SheetEvent.filter(sheet_id=sheet_id, status=EventStatus.FAILED).order_by("-created_at").limit(limit - len(events))
    pending = await SheetEvent.filter(sheet_id=sheet_id, status=EventStatus.PENDING).count()
    processing = await SheetEvent.filter(sheet_id=sheet_id, status=EventStatus.PROCESSING).count()
    failed = await SheetEvent.filter(sheet_id=sheet_id, status=EventStatus.FAILED).count()
    return {
        "pendingEvents": [serialize_event(e) for e in events],
        "pendingCount": pending,
        "processingCount": processing,
        "failedCount": failed,
    }
