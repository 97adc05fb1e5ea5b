import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status
from uuid import UUID

from sheetpipe.core.auth import current_user_id
from sheetpipe.schemas.cell import CellResponse, CellUpdateRequest, ClearRightRequest, EnqueuedResponse
from sheetpipe.schemas.response import SuccessResponse
from sheetpipe.schemas.stream import CellStatus
from sheetpipe.services import cell_store, event_queue
from sheetpipe.services.sheet_service import get_columns, get_owned_sheet, has_target_column

router = APIRouter()
log = logging.getLogger("sheetpipe.api.cells")


@router.post("/{sheet_id}/cells", status_code=status.HTTP_202_ACCEPTED, response_model=SuccessResponse)
async def update_cell_endpoint(sheet_id: UUID, payload: CellUpdateRequest, request: Request, user_id: str = Depends(current_user_id)):
    """
    Writes the edited cell and queues a cell_update event for enrichment.
    Returns 202 Accepted because enrichment happens in the background.
    """
    await get_owned_sheet(sheet_id, user_id)
    try:
        await cell_store.upsert(sheet_id, payload.rowIndex, payload.colIndex, payload.content, user_id=user_id)
        event = await event_queue.enqueue(
            sheet_id,
            user_id,
            event_queue.CELL_UPDATE,
            {"rowIndex": payload.rowIndex, "colIndex": payload.colIndex, "content": payload.content},
        )
    except ValueError as e:
        log.error(f"Value error updating cell: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error updating cell on sheet {sheet_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to queue cell update.")

    broadcaster = request.app.state.broadcaster
    if has_target_column(await get_columns(sheet_id), payload.colIndex):
        broadcaster.publish_cell(sheet_id, payload.rowIndex, payload.colIndex + 1, CellStatus.PENDING, progress=0)
    await broadcaster.publish_status(sheet_id)

    log.info(f"Cell ({payload.rowIndex}, {payload.colIndex}) updated on sheet {sheet_id}, event {event.id} queued.")
    data = EnqueuedResponse(eventId=event.id, status=event.status.value, message="Cell saved. Enrichment queued.").model_dump()
    return SuccessResponse(data=data)


@router.put("/{sheet_id}/cells/raw", response_model=SuccessResponse)
async def update_cell_without_event_endpoint(sheet_id: UUID, payload: CellUpdateRequest, user_id: str = Depends(current_user_id)):
    """Writes a cell without queueing enrichment."""
    await get_owned_sheet(sheet_id, user_id)
    try:
        await cell_store.upsert(sheet_id, payload.rowIndex, payload.colIndex, payload.content, user_id=user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SuccessResponse(data={"rowIndex": payload.rowIndex, "colIndex": payload.colIndex})


@router.delete("/{sheet_id}/cells/{row_index}/{col_index}", response_model=SuccessResponse)
async def clear_cell_endpoint(sheet_id: UUID, row_index: int, col_index: int, user_id: str = Depends(current_user_id)):
    await get_owned_sheet(sheet_id, user_id)
    try:
        await cell_store.upsert(sheet_id, row_index, col_index, "", user_id=user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    log.info(f"Cell cleared at ({row_index}, {col_index}) on sheet {sheet_id}")
    return SuccessResponse(data={"rowIndex": row_index, "colIndex": col_index})


@router.post("/{sheet_id}/rows/{row_index}/clear-right", response_model=SuccessResponse)
async def clear_cells_to_right_endpoint(sheet_id: UUID, row_index: int, payload: ClearRightRequest, user_id: str = Depends(current_user_id)):
    """Empties every cell in the row to the right of `startColIndex`."""
    await get_owned_sheet(sheet_id, user_id)
    try:
        cleared = await cell_store.clear_cells_to_right(sheet_id, row_index, payload.startColIndex)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SuccessResponse(data={"cleared": cleared})


@router.get("/{sheet_id}/cells", response_model=SuccessResponse)
async def list_cells_endpoint(sheet_id: UUID, user_id: str = Depends(current_user_id)):
    await get_owned_sheet(sheet_id, user_id)
    try:
        cells = await cell_store.list_cells(sheet_id)
    except Exception as e:
        log.error(f"Error fetching cells for sheet {sheet_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch cells.")

    data = [
        CellResponse(
            rowIndex=c.row_index,
            colIndex=c.col_index,
            content=c.content or "",
            updatedAt=str(c.updated_at) if c.updated_at else None,
        ).model_dump()
        for c in cells
    ]
    return SuccessResponse(data=data)
