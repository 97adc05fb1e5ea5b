# sheetpipe/models/__init__.py
from .sheet import ApiUser, Sheet, Column
from .cell import Cell
from .event import SheetEvent, EventStatus, TERMINAL_STATUSES

# Export all models
__all__ = [
    "ApiUser",
    "Sheet",
    "Column",
    "Cell",
    "SheetEvent",
    "EventStatus",
    "TERMINAL_STATUSES",
]
