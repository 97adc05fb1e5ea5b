import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response
from typing import Dict, List, Tuple
from uuid import UUID

from sheetpipe.core.auth import current_user_id
from sheetpipe.schemas.cell import RowsAddedResponse, RowsRequest
from sheetpipe.schemas.response import SuccessResponse
from sheetpipe.services import cell_store, event_queue, export_service
from sheetpipe.services.sheet_service import get_owned_sheet

router = APIRouter()
log = logging.getLogger("sheetpipe.api.sheets")


@router.get("/{sheet_id}/data")
async def export_sheet_endpoint(sheet_id: UUID, format: str = "json", user_id: str = Depends(current_user_id)):
    """Exports the sheet grid as JSON or as a CSV download."""
    export_service.check_format(format)
    sheet = await get_owned_sheet(sheet_id, user_id)
    export = await export_service.build_export(sheet)

    if format == "csv":
        filename = export_service.export_filename(sheet.name)
        return Response(
            content=export_service.to_csv(export),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    return SuccessResponse(data=export.model_dump(mode="json"))


def _parse_rows(rows: List, starting_row: int) -> List[Tuple[int, int, str]]:
    """Flattens array or {"<col>": value} rows into (row, col, content), skipping blanks."""
    cells = []
    for offset, row in enumerate(rows):
        if isinstance(row, list):
            items: Dict = dict(enumerate(row))
        else:
            items = row
        for key, value in items.items():
            try:
                col = int(key)
            except (TypeError, ValueError):
                raise ValueError(f'Invalid column index "{key}" in row {offset}')
            if col < 0:
                raise ValueError(f'Invalid column index "{key}" in row {offset}')
            content = "" if value is None else str(value).strip()
            if not content:
                continue
            cells.append((starting_row + offset, col, content))
    return cells


@router.post("/{sheet_id}/rows", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def add_rows_endpoint(sheet_id: UUID, payload: RowsRequest, request: Request, user_id: str = Depends(current_user_id)):
    """Appends rows after the last populated row and queues enrichment for each non-empty cell."""
    await get_owned_sheet(sheet_id, user_id)
    if not payload.rows:
        raise HTTPException(status_code=400, detail="Rows array is empty")

    starting_row = await cell_store.next_row_index(sheet_id)
    try:
        cells = _parse_rows(payload.rows, starting_row)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not cells:
        raise HTTPException(status_code=400, detail="No valid cells to insert (all cells were empty)")

    await cell_store.upsert_many(sheet_id, cells, user_id=user_id)
    await event_queue.enqueue_many(
        sheet_id,
        user_id,
        [
            (event_queue.CELL_UPDATE, {"rowIndex": row, "colIndex": col, "content": content})
            for row, col, content in cells
        ],
    )
    await request.app.state.broadcaster.publish_status(sheet_id)

    data = RowsAddedResponse(
        rowsAdded=len(payload.rows),
        cellsCreated=len(cells),
        startingRow=starting_row,
        message=f"Added {len(payload.rows)} rows starting at row {starting_row}. Cells will be enriched automatically.",
    ).model_dump()
    return SuccessResponse(data=data)
