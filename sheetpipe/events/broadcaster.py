import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
from uuid import UUID

from sheetpipe.core.config import SUBSCRIBER_QUEUE_SIZE
from sheetpipe.schemas.stream import CellStatus, CellUpdate, MessageType, StreamMessage

log = logging.getLogger("sheetpipe.broadcaster")

SnapshotLoader = Callable[[UUID], Awaitable[Dict[str, Any]]]

_CLOSED = object()


class Subscription:
    """
    One open viewer connection. Yields StreamMessages in publish order until
    it is closed, by the viewer disconnecting or by the broadcaster.
    """

    def __init__(self, sheet_id: UUID, queue_size: int):
        self.sheet_id = sheet_id
        self.last_seen_sequence = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size + 1) # One slot reserved for the close marker
        self._capacity = queue_size
        self.closed = False
        # Messages published while the opening snapshot loads; None once primed
        self._backlog: Optional[List[StreamMessage]] = []

    def _offer(self, message: StreamMessage) -> bool:
        if self.closed:
            return False
        if self._backlog is not None:
            # Two slots stay free for `connected` and the snapshot
            if len(self._backlog) >= self._capacity - 2:
                return False
            self._backlog.append(message)
            return True
        if self._queue.qsize() >= self._capacity:
            return False
        self._queue.put_nowait(message)
        return True

    def _prime(self, *opening: StreamMessage):
        """Delivers the opening messages, then everything published while they were prepared."""
        backlog, self._backlog = self._backlog or [], None
        if self.closed:
            return
        for message in (*opening, *backlog):
            self._queue.put_nowait(message)

    def close(self):
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_CLOSED)

    async def next(self, timeout: Optional[float] = None) -> Optional[StreamMessage]:
        """Next message, or None when `timeout` elapses first. Raises StopAsyncIteration once closed."""
        try:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        if item is _CLOSED:
            # Keep the marker so later calls also stop
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        self.last_seen_sequence = item.sequence
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> StreamMessage:
        return await self.next()


class StatusBroadcaster:
    """
    Per-sheet fan-out of queue and cell state to connected viewers.

    Knows nothing about the transport: the SSE route only formats what a
    Subscription yields. Publishing never blocks and never raises into the
    processor.
    """

    def __init__(self, snapshot_loader: SnapshotLoader, queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self._snapshot_loader = snapshot_loader
        self._queue_size = queue_size
        self._subscriptions: Dict[UUID, Set[Subscription]] = {}
        self._sequences: Dict[UUID, int] = {}

    def _stamp(self, sheet_id: UUID, message: StreamMessage) -> StreamMessage:
        sequence = self._sequences.get(sheet_id, 0) + 1
        self._sequences[sheet_id] = sequence
        message.sequence = sequence
        return message

    async def subscribe(self, sheet_id: UUID) -> Subscription:
        """
        Opens a subscription primed with `connected` and the current status snapshot.

        The subscription is registered before the snapshot loads, so anything
        published meanwhile is held back and delivered right after the snapshot.
        """
        subscription = Subscription(sheet_id, self._queue_size)
        self._subscriptions.setdefault(sheet_id, set()).add(subscription)
        # Sequence numbers are reserved now to stay ahead of the held-back messages
        connected = self._stamp(sheet_id, StreamMessage(type=MessageType.CONNECTED))
        status = self._stamp(sheet_id, StreamMessage(type=MessageType.STATUS_UPDATE))
        try:
            status.data = await self._snapshot_loader(sheet_id)
        except Exception:
            self.unsubscribe(subscription)
            raise

        subscription._prime(connected, status)
        log.info(f"Viewer subscribed to sheet {sheet_id} ({self.subscriber_count(sheet_id)} open)")
        return subscription

    def unsubscribe(self, subscription: Subscription):
        subscription.close()
        subscribers = self._subscriptions.get(subscription.sheet_id)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscriptions[subscription.sheet_id]
            self._sequences.pop(subscription.sheet_id, None)
        log.info(f"Viewer left sheet {subscription.sheet_id}")

    def subscriber_count(self, sheet_id: UUID) -> int:
        return len(self._subscriptions.get(sheet_id, ()))

    def publish(self, sheet_id: UUID, message: StreamMessage) -> int:
        """Pushes a message to every viewer of the sheet. Returns the number of deliveries."""
        subscribers = self._subscriptions.get(sheet_id)
        if not subscribers:
            return 0

        self._stamp(sheet_id, message)
        delivered = 0
        for subscription in list(subscribers):
            if subscription._offer(message):
                delivered += 1
                continue
            # Slow or gone viewer: drop it, a reconnect gets a fresh snapshot
            log.warning(f"Dropping lagging viewer on sheet {sheet_id} at sequence {message.sequence}")
            self.unsubscribe(subscription)
        return delivered

    async def publish_status(self, sheet_id: UUID) -> int:
        if not self.subscriber_count(sheet_id):
            return 0
        try:
            snapshot = await self._snapshot_loader(sheet_id)
        except Exception as e:
            log.error(f"Could not load status snapshot for sheet {sheet_id}: {e}")
            return self.publish(sheet_id, StreamMessage(type=MessageType.ERROR, message=str(e)))
        return self.publish(sheet_id, StreamMessage(type=MessageType.STATUS_UPDATE, data=snapshot))

    def publish_cell(
        self,
        sheet_id: UUID,
        row: int,
        col: int,
        status: CellStatus,
        content: Optional[str] = None,
        progress: Optional[int] = None,
        message: Optional[str] = None,
    ) -> int:
        update = CellUpdate(rowIndex=row, colIndex=col, status=status, content=content, progress=progress, message=message)
        return self.publish(
            sheet_id,
            StreamMessage(
                type=MessageType.CELL_UPDATE,
                data={"cellUpdate": update.model_dump(mode="json", exclude_none=True)},
            ),
        )

    def close_all(self):
        for subscribers in list(self._subscriptions.values()):
            for subscription in list(subscribers):
                self.unsubscribe(subscription)
