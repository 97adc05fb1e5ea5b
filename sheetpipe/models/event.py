from enum import Enum
from tortoise import fields, models
import uuid


class EventStatus(str, Enum):
    PENDING = "pending"  # Enqueued, waiting to be claimed
    PROCESSING = "processing" # Claimed by exactly one processor run
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (EventStatus.COMPLETED, EventStatus.FAILED)


class SheetEvent(models.Model):
    """
    One queued unit of asynchronous work against a sheet.
    The table is the single source of truth for "what work remains".
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    sheet = fields.ForeignKeyField("models.Sheet", related_name="events")
    user_id = fields.CharField(max_length=255)
    event_type = fields.CharField(max_length=100) # e.g., 'cell_update'
    payload = fields.JSONField()
    status = fields.CharEnumField(EventStatus, max_length=20, default=EventStatus.PENDING)
    retry_count = fields.IntField(default=0)
    last_error = fields.TextField(null=True)
    available_at = fields.DatetimeField(null=True) # Backoff: not claimable before this time
    created_at = fields.DatetimeField(auto_now_add=True)
    claimed_at = fields.DatetimeField(null=True)
    processed_at = fields.DatetimeField(null=True) # Set only on terminal transition

    class Meta:
        table = "event_queue"
        indexes = [
            ("status",),
            ("created_at",),
            ("sheet_id", "status"),      # Per-sheet status snapshots
            ("status", "created_at"),    # FIFO claim scan
        ]

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
