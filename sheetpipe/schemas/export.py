import uuid
from typing import List
from pydantic import BaseModel


class ExportColumn(BaseModel):
    title: str
    position: int


class ExportData(BaseModel):
    """Structured grid export of a sheet."""
    sheetId: uuid.UUID
    sheetName: str
    columns: List[ExportColumn]
    rows: List[List[str]]
    rowCount: int
    columnCount: int
