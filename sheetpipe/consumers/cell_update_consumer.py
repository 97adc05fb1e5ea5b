import asyncio
import logging
from typing import Optional

from sheetpipe.consumers.enrichment import Enricher, EnrichmentRequest
from sheetpipe.core.errors import EnrichmentError, InvalidEventPayload
from sheetpipe.events.broadcaster import StatusBroadcaster
from sheetpipe.models.event import SheetEvent
from sheetpipe.schemas.stream import CellStatus
from sheetpipe.services import cell_store
from sheetpipe.services.sheet_service import get_columns, has_target_column

log = logging.getLogger("sheetpipe.consumers.cell_update")


def _position(payload, key: str) -> int:
    value = payload.get(key)
    if value is None:
        raise InvalidEventPayload(f"cell_update payload is missing '{key}'")
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise InvalidEventPayload(f"cell_update payload has non-integer '{key}': {value!r}")
    if value < 0:
        raise InvalidEventPayload(f"cell_update payload has negative '{key}'")
    return value


class CellUpdateHandler:
    """
    Handler for 'cell_update' events: enriches the edited cell and writes
    the result into the column to its right, same row.
    """

    def __init__(self, enricher: Enricher, broadcaster: Optional[StatusBroadcaster] = None):
        self.enricher = enricher
        self.broadcaster = broadcaster

    def _notify(self, event: SheetEvent, row: int, col: int, status: CellStatus, **kwargs):
        if self.broadcaster:
            self.broadcaster.publish_cell(event.sheet_id, row, col, status, **kwargs)

    async def __call__(self, event: SheetEvent):
        payload = event.payload or {}
        row = _position(payload, "rowIndex")
        source_col = _position(payload, "colIndex")
        target_col = source_col + 1

        columns = await get_columns(event.sheet_id)
        if not has_target_column(columns, source_col):
            # Last column edited: nothing to the right to fill
            log.info(f"Row {row} already complete, nothing to enrich for event {event.id}")
            return

        row_data = await cell_store.read_row(event.sheet_id, row)
        query = payload.get("content")
        if query is None:
            query = row_data.get(source_col, "")
        target_column = columns[target_col] if target_col < len(columns) else None

        request = EnrichmentRequest(
            sheet_id=event.sheet_id,
            row_index=row,
            source_col_index=source_col,
            target_col_index=target_col,
            query=str(query),
            row_data=row_data,
            column_title=target_column.title if target_column else None,
            column_prompt=target_column.prompt if target_column else None,
        )

        self._notify(event, row, target_col, CellStatus.PROCESSING, progress=0, message="Enriching")
        try:
            result = await self.enricher.enrich(request)
            if not result.content:
                raise EnrichmentError("Enricher returned empty content")
            await cell_store.upsert(event.sheet_id, row, target_col, result.content, user_id=event.user_id)
        except asyncio.CancelledError:
            # Timed out by the processor
            self._notify(event, row, target_col, CellStatus.ERROR, message="Enrichment cancelled")
            raise
        except Exception as e:
            self._notify(event, row, target_col, CellStatus.ERROR, message=str(e) or type(e).__name__)
            raise

        self._notify(event, row, target_col, CellStatus.COMPLETED, content=result.content, progress=100)
        log.info(f"Event {event.id}: wrote enrichment to ({row}, {target_col})")
