import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class MessageType(str, Enum):
    CONNECTED = "connected"
    STATUS_UPDATE = "status_update"
    CELL_UPDATE = "cell_update"
    ERROR = "error"


class CellStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


class CellUpdate(BaseModel):
    rowIndex: int
    colIndex: int
    status: CellStatus
    content: Optional[str] = None
    progress: Optional[int] = None
    message: Optional[str] = None


class StreamMessage(BaseModel):
    """One message of the per-sheet status stream."""
    type: MessageType
    timestamp: str = Field(default_factory=_now_iso)
    message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    sequence: int = 0

    def to_dict(self) -> Dict[str, Any]:
        # Optional top-level keys are omitted; nulls inside `data` are kept
        body = self.model_dump(mode="json")
        return {key: value for key, value in body.items() if value is not None}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def encode_sse(message: StreamMessage) -> str:
    return f"data: {message.to_json()}\n\n"


SSE_KEEPALIVE = ": keepalive\n\n"
