import uuid
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Union


class CellUpdatePayload(BaseModel):
    """Payload of a queued cell_update event."""
    rowIndex: int = Field(..., ge=0)
    colIndex: int = Field(..., ge=0)
    content: Optional[str] = None


class CellUpdateRequest(CellUpdatePayload):
    """Schema for a user edit of one cell."""
    content: str


class ClearRightRequest(BaseModel):
    startColIndex: int = Field(..., ge=0)


class EnqueueRequest(BaseModel):
    """Generic enqueue of a handler-specific payload."""
    eventType: str = Field(..., min_length=1, max_length=100)
    payload: Dict[str, Any] = Field(default_factory=dict)


class RowsRequest(BaseModel):
    """Rows as arrays (["a", "b"]) or objects keyed by column index ({"0": "a"})."""
    rows: List[Union[List[Any], Dict[str, Any]]]


class EnqueuedResponse(BaseModel):
    eventId: uuid.UUID
    status: str
    message: str


class CellResponse(BaseModel):
    rowIndex: int
    colIndex: int
    content: str
    updatedAt: Optional[str] = None


class RowsAddedResponse(BaseModel):
    rowsAdded: int
    cellsCreated: int
    startingRow: int
    message: str


class ProcessResponse(BaseModel):
    processedCount: int
    completed: int = 0
    failed: int = 0
    retried: int = 0
