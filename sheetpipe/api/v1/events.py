import logging
from typing import Any, AsyncIterator, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from uuid import UUID

from sheetpipe.core.auth import current_user_id
from sheetpipe.core.config import STREAM_KEEPALIVE
from sheetpipe.events.broadcaster import StatusBroadcaster, Subscription
from sheetpipe.schemas.cell import CellUpdatePayload, EnqueueRequest, EnqueuedResponse, ProcessResponse
from sheetpipe.schemas.response import FailureResponse, SuccessResponse
from sheetpipe.schemas.stream import SSE_KEEPALIVE, encode_sse
from sheetpipe.services import event_queue
from sheetpipe.services.sheet_service import get_owned_sheet

router = APIRouter()
processing_router = APIRouter()
log = logging.getLogger("sheetpipe.api.events")

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no", # Disable nginx buffering
}


def _validated_payload(event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Rejects cell positions the processor could never act on, before anything is queued."""
    if event_type != event_queue.CELL_UPDATE:
        return payload
    try:
        cell = CellUpdatePayload.model_validate(payload)
    except ValidationError as e:
        raise RequestValidationError([{**err, "loc": ("body", "payload", *err["loc"])} for err in e.errors()])
    return {**payload, **cell.model_dump(exclude_none=True)}


@router.post("/{sheet_id}/events", status_code=status.HTTP_202_ACCEPTED, response_model=SuccessResponse)
async def enqueue_event_endpoint(sheet_id: UUID, payload: EnqueueRequest, request: Request, user_id: str = Depends(current_user_id)):
    """Queues an event of any registered type for background processing."""
    await get_owned_sheet(sheet_id, user_id)
    if not request.app.state.processor.handles(payload.eventType):
        raise HTTPException(status_code=400, detail=f'Unknown event type "{payload.eventType}"')
    event_payload = _validated_payload(payload.eventType, payload.payload)
    try:
        event = await event_queue.enqueue(sheet_id, user_id, payload.eventType, event_payload)
    except Exception as e:
        log.error(f"Error enqueueing {payload.eventType} on sheet {sheet_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to enqueue event.")

    await request.app.state.broadcaster.publish_status(sheet_id)
    data = EnqueuedResponse(eventId=event.id, status=event.status.value, message="Event queued.").model_dump()
    return SuccessResponse(data=data)


@router.get("/{sheet_id}/events", response_model=SuccessResponse)
async def list_events_endpoint(sheet_id: UUID, limit: int = Query(100, ge=1, le=100), user_id: str = Depends(current_user_id)):
    await get_owned_sheet(sheet_id, user_id)
    events = await event_queue.list_events(sheet_id, limit=limit)
    log.info(f"Fetched {len(events)} events for sheet {sheet_id}")
    return SuccessResponse(data=[event_queue.serialize_event(e) for e in events])


@router.get("/{sheet_id}/status", response_model=SuccessResponse)
async def status_endpoint(sheet_id: UUID, user_id: str = Depends(current_user_id)):
    """Point-in-time queue snapshot, same shape as the stream's status_update."""
    await get_owned_sheet(sheet_id, user_id)
    return SuccessResponse(data=await event_queue.status_snapshot(sheet_id))


async def sse_stream(
    subscription: Subscription,
    broadcaster: StatusBroadcaster,
    request: Request,
    keepalive: float = STREAM_KEEPALIVE,
) -> AsyncIterator[str]:
    """Formats a subscription as Server-Sent Events until either side goes away."""
    try:
        while not await request.is_disconnected():
            try:
                message = await subscription.next(timeout=keepalive)
            except StopAsyncIteration:
                break
            yield SSE_KEEPALIVE if message is None else encode_sse(message)
    finally:
        broadcaster.unsubscribe(subscription)


@router.get("/{sheet_id}/events/stream")
async def stream_events_endpoint(sheet_id: UUID, request: Request, user_id: str = Depends(current_user_id)):
    """
    Live status stream for one sheet: `connected`, then a `status_update`
    snapshot, then cell and status changes as they happen. Reconnecting
    clients get a fresh snapshot, nothing is replayed.
    """
    await get_owned_sheet(sheet_id, user_id)
    broadcaster: StatusBroadcaster = request.app.state.broadcaster
    subscription = await broadcaster.subscribe(sheet_id)
    return StreamingResponse(
        sse_stream(subscription, broadcaster, request),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@processing_router.post("/process", response_model=SuccessResponse)
async def process_events_endpoint(request: Request, sheetId: Optional[UUID] = None, user_id: str = Depends(current_user_id)):
    """Runs one processor batch synchronously ("process now")."""
    if sheetId is not None:
        await get_owned_sheet(sheetId, user_id)

    processor = request.app.state.processor
    try:
        result = await processor.run_once(sheet_id=sheetId)
    except Exception as e:
        log.error(f"Error processing events: {e}")
        body = FailureResponse(
            error={"code": "processing_error", "message": str(e)},
            data={"processedCount": 0},
        )
        return JSONResponse(status_code=500, content=body.model_dump())

    log.info(f"Processing complete: {result}")
    data = ProcessResponse(
        processedCount=result.processed_count,
        completed=result.completed,
        failed=result.failed,
        retried=result.retried,
    ).model_dump()
    return SuccessResponse(data=data)
