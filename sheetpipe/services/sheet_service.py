from typing import List
from uuid import UUID

from sheetpipe.core.errors import SheetNotFound
from sheetpipe.models.sheet import Sheet, Column


async def get_owned_sheet(sheet_id: UUID, user_id: str) -> Sheet:
    """Read-only ownership check. Sheet CRUD lives outside this service."""
    sheet = await Sheet.get_or_none(id=sheet_id, user_id=user_id)
    if not sheet:
        raise SheetNotFound()
    return sheet


async def get_columns(sheet_id: UUID) -> List[Column]:
    return await Column.filter(sheet_id=sheet_id).order_by("position")


def has_target_column(columns: List[Column], source_col: int) -> bool:
    """Whether an edit at `source_col` has a column to its right to enrich. Sheets without columns accept any position."""
    return not columns or source_col < len(columns) - 1
