import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional
from uuid import UUID

from sheetpipe.core.config import (
    BATCH_SIZE,
    HANDLER_TIMEOUT,
    MAX_ATTEMPTS,
    POLLING_INTERVAL,
    RETRY_BASE_DELAY,
    RETRY_MAX_DELAY,
)
from sheetpipe.consumers.cell_update_consumer import CellUpdateHandler
from sheetpipe.consumers.enrichment import Enricher
from sheetpipe.core.errors import PermanentEventError
from sheetpipe.events.broadcaster import StatusBroadcaster
from sheetpipe.models.event import SheetEvent
from sheetpipe.services import event_queue

log = logging.getLogger("sheetpipe.processor")

Handler = Callable[[SheetEvent], Awaitable[None]]


class UnknownEventType(PermanentEventError):
    pass


@dataclass
class RetryPolicy:
    """Bounded exponential backoff keyed on the event's retry_count."""
    max_attempts: int = MAX_ATTEMPTS
    base_delay: float = RETRY_BASE_DELAY
    max_delay: float = RETRY_MAX_DELAY

    def should_retry(self, event: SheetEvent) -> bool:
        # retry_count counts failed attempts before the current one
        return event.retry_count + 1 < self.max_attempts

    def delay_for(self, event: SheetEvent) -> float:
        return min(self.base_delay * (2 ** event.retry_count), self.max_delay)


@dataclass
class ProcessResult:
    processed_count: int = 0
    completed: int = 0
    failed: int = 0
    retried: int = 0


class BackgroundProcessor:
    """
    Drains the event queue. One instance per process, owned by the app.

    `run_once` is the whole unit of work and can be called directly (tests,
    the "process now" endpoint); `start` wraps it in a cancellable polling
    task.
    """

    def __init__(
        self,
        handlers: Dict[str, Handler],
        broadcaster: Optional[StatusBroadcaster] = None,
        batch_size: int = BATCH_SIZE,
        poll_interval: float = POLLING_INTERVAL,
        handler_timeout: float = HANDLER_TIMEOUT,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.handlers = dict(handlers)
        self.broadcaster = broadcaster
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.handler_timeout = handler_timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._run_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None

    def register(self, event_type: str, handler: Handler):
        self.handlers[event_type] = handler

    def handles(self, event_type: str) -> bool:
        return event_type in self.handlers

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _dispatch(self, event: SheetEvent):
        """Routes an event to the handler registered for its type."""
        handler = self.handlers.get(event.event_type)
        if handler is None:
            raise UnknownEventType(f"No handler found for event type: {event.event_type}")
        log.info(f"Processor DISPATCHING: {event.event_type} (ID: {event.id.hex[:8]}...)")
        await asyncio.wait_for(handler(event), timeout=self.handler_timeout)

    async def _notify_status(self, sheet_ids):
        if not self.broadcaster:
            return
        for sheet_id in sheet_ids:
            await self.broadcaster.publish_status(sheet_id)

    async def _process_event(self, event: SheetEvent, result: ProcessResult):
        try:
            await self._dispatch(event)
        except asyncio.TimeoutError:
            error = f"Handler timed out after {self.handler_timeout}s"
            retryable = True
        except PermanentEventError as e:
            error = str(e)
            retryable = False
        except Exception as e:
            error = str(e) or type(e).__name__
            retryable = True
        else:
            await event_queue.mark_completed(event.id)
            result.completed += 1
            return

        log.error(f"Event {event.id} ({event.event_type}) failed: {error}")
        if retryable and self.retry_policy.should_retry(event):
            delay = self.retry_policy.delay_for(event)
            await event_queue.schedule_retry(event.id, error, delay)
            log.info(f"Event {event.id} will be retried in {delay:.1f}s (attempt {event.retry_count + 2}/{self.retry_policy.max_attempts})")
            result.retried += 1
        else:
            await event_queue.mark_failed(event.id, error)
            result.failed += 1

    async def run_once(self, sheet_id: Optional[UUID] = None) -> ProcessResult:
        """
        Claims one batch and processes it sequentially. Handler failures are
        recorded on the event; storage failures propagate to the caller.
        """
        async with self._run_lock:
            events: List[SheetEvent] = await event_queue.claim_batch(self.batch_size, sheet_id=sheet_id)
            result = ProcessResult()
            if not events:
                return result

            log.info(f"Processing batch of {len(events)} events")
            sheet_ids = list(dict.fromkeys(e.sheet_id for e in events))
            await self._notify_status(sheet_ids)

            for event in events:
                await self._process_event(event, result)
                result.processed_count += 1
                await self._notify_status([event.sheet_id])

            return result

    async def _loop(self, stopping: asyncio.Event):
        log.info("--- Background Processor Started ---")
        while not stopping.is_set():
            try:
                result = await self.run_once()
            except Exception as e:
                log.error(f"Processor encountered a critical DB error: {e}.")
                result = None

            # A full batch means there is probably more waiting
            if result is not None and result.processed_count >= self.batch_size:
                continue
            try:
                await asyncio.wait_for(stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    def start(self) -> bool:
        """Starts the polling task. A second call while running is a logged no-op."""
        if self.is_running:
            log.info("Background Processor already running")
            return False
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stopping), name="sheetpipe-processor")
        return True

    async def stop(self):
        """Stops polling after the in-flight batch, if any, has finished."""
        task, self._task = self._task, None
        if task is None:
            return
        self._stopping.set()
        await task
        log.info("Background Processor stopped.")


def build_processor(broadcaster: Optional[StatusBroadcaster], enricher: Enricher, **options) -> BackgroundProcessor:
    """Processor with the built-in handlers registered."""
    handlers = {
        event_queue.CELL_UPDATE: CellUpdateHandler(enricher, broadcaster),
    }
    return BackgroundProcessor(handlers, broadcaster=broadcaster, **options)
