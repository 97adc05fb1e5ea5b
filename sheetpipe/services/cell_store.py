import logging
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from tortoise import timezone

from sheetpipe.models.cell import Cell

log = logging.getLogger("sheetpipe.cells")

# Conflict target of the upsert, matches Cell.Meta.unique_together
CELL_IDENTITY = ["sheet_id", "row_index", "col_index"]


def _check_position(row: int, col: int):
    if row < 0 or col < 0:
        raise ValueError(f"Invalid cell position ({row}, {col}). Indexes must be non-negative.")


async def upsert(sheet_id: UUID, row: int, col: int, content: Optional[str], user_id: Optional[str] = None) -> None:
    """
    Writes one cell as a single INSERT ... ON CONFLICT DO UPDATE statement.
    Last write wins, there is no read-then-write window.
    """
    await upsert_many(sheet_id, [(row, col, content)], user_id=user_id)


async def upsert_many(sheet_id: UUID, cells: Iterable[Tuple[int, int, Optional[str]]], user_id: Optional[str] = None) -> int:
    now = timezone.now()
    rows = []
    for row, col, content in cells:
        _check_position(row, col)
        rows.append(Cell(
            sheet_id=sheet_id,
            row_index=row,
            col_index=col,
            content=content if content is not None else "",
            user_id=user_id,
            created_at=now,
            updated_at=now,
        ))
    if not rows:
        return 0

    await Cell.bulk_create(
        rows,
        on_conflict=CELL_IDENTITY,
        update_fields=["content", "updated_at", "user_id"],
    )
    log.debug(f"Upserted {len(rows)} cells on sheet {sheet_id}")
    return len(rows)


async def get_cell(sheet_id: UUID, row: int, col: int) -> Optional[Cell]:
    return await Cell.get_or_none(sheet_id=sheet_id, row_index=row, col_index=col)


async def read_row(sheet_id: UUID, row: int) -> Dict[int, str]:
    cells = await Cell.filter(sheet_id=sheet_id, row_index=row)
    return {cell.col_index: cell.content or "" for cell in cells}


async def list_cells(sheet_id: UUID) -> List[Cell]:
    return await Cell.filter(sheet_id=sheet_id).order_by("row_index", "col_index")


async def read_grid(sheet_id: UUID, column_count: Optional[int] = None) -> List[List[str]]:
    """
    Materializes the sheet as rows x cols of strings.

    Rows run from 0 to the highest populated row. Width is the known column
    count when there is one, otherwise the highest populated column + 1.
    Unset positions are empty strings.
    """
    cells = await list_cells(sheet_id)
    if not cells:
        return []

    max_row = max(cell.row_index for cell in cells)
    if column_count:
        width = column_count
    else:
        width = max(cell.col_index for cell in cells) + 1

    grid = [["" for _ in range(width)] for _ in range(max_row + 1)]
    for cell in cells:
        if cell.col_index < width:
            grid[cell.row_index][cell.col_index] = cell.content or ""
    return grid


async def clear_cells_to_right(sheet_id: UUID, row: int, start_col: int) -> int:
    _check_position(row, start_col)
    cleared = await Cell.filter(sheet_id=sheet_id, row_index=row, col_index__gt=start_col).update(
        content="",
        updated_at=timezone.now(),
    )
    log.info(f"Cleared {cleared} cells to the right of column {start_col} in row {row}")
    return cleared


async def next_row_index(sheet_id: UUID) -> int:
    last = await Cell.filter(sheet_id=sheet_id).order_by("-row_index").first()
    return last.row_index + 1 if last else 0
