# SPDX-License-Identifier: MIT
"""Operation queue processor: FIFO dispatch with retry, backoff and status."""

import asyncio
import copy
import uuid
from collections import deque
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from .broadcaster import StatusBroadcaster, StatusListener
from .config import SyncConfig
from .enums import OperationStatus, ResourceType
from .exceptions import RateLimitError
from .integrity import format_validation_errors
from .logging_config import get_detail_logger, get_status_logger
from .models import OperationRequest, SyncOperation, SyncStatus
from .network import NetworkMonitor
from .registry import DataSourceRegistry
from .scheduler import AsyncioScheduler, Scheduler, TimerHandle, backoff_delay, utc_now
from .writer import MultiDestinationWriter


def default_operation_id() -> str:
    return f"sync_{uuid.uuid4().hex}"


class SyncEngine:
    """Drains queued operations one at a time into the multi-destination writer.

    Callers only ``enqueue`` and observe ``SyncStatus``; no dispatch failure
    ever reaches them. A failed attempt is retried after an exponential
    backoff delay by moving the operation to the tail of the queue, so a
    persistently failing operation cannot starve the ones behind it. After
    ``max_retries`` attempts it is dropped into a bounded dead-letter list and
    reported in ``SyncStatus.errors``.

    All queue mutation happens on the event loop thread. A ``processing`` flag
    keeps drains from overlapping, so at most one operation is in progress.

    Examples:
        >>> engine = create_sync_engine(config)
        >>> await engine.start()
        >>> op_id = engine.enqueue(
        ...     {"type": "create", "resource": "business_plan",
        ...      "payload": {"title": "Acme"}}
        ... )
        >>> await engine.force_sync()
        >>> engine.get_status().pending_operations
        0
    """

    def __init__(
        self,
        writer: MultiDestinationWriter,
        config: SyncConfig | None = None,
        network: NetworkMonitor | None = None,
        scheduler: Scheduler | None = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = default_operation_id,
    ) -> None:
        self.writer = writer
        self.config = config or SyncConfig()
        self.network = network or NetworkMonitor()
        self.scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._clock = clock
        self._id_factory = id_factory

        self._queue: list[SyncOperation] = []
        self._failed: deque[SyncOperation] = deque(
            maxlen=self.config.max_failed_operations
        )
        self._status = SyncStatus(is_online=self.network.is_online())
        self._broadcaster = StatusBroadcaster()

        self._processing = False
        self._running = False
        self._drain_task: asyncio.Task[None] | None = None
        self._retry_timers: dict[str, TimerHandle] = {}
        self._tick_handle: TimerHandle | None = None
        self._unsubscribe_network: Callable[[], None] | None = None

        self.detail_logger = get_detail_logger()
        self.status_logger = get_status_logger()
        self._subscribe_network()

    @property
    def registry(self) -> DataSourceRegistry:
        return self.writer.registry

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enqueue(self, request: OperationRequest | dict[str, Any]) -> str:
        """Queue an operation and return its id without waiting for it.

        A malformed request (unknown type or resource, missing fields) is not
        queued; it is reported in ``SyncStatus.errors`` under a fresh id
        like any other failed operation.

        Args:
            request: Operation type, resource and payload

        Returns:
            Id of the queued (or rejected) operation
        """
        if not isinstance(request, OperationRequest):
            try:
                request = OperationRequest.model_validate(request)
            except ValidationError as e:
                return self._reject(request, e)

        operation = SyncOperation(
            id=self._id_factory(),
            type=request.type,
            resource=request.resource,
            payload=copy.deepcopy(request.payload),
            enqueued_at=self._clock(),
        )
        self._queue.append(operation)
        self.detail_logger.debug(
            f"Queued {operation.type.value} {operation.resource.value} "
            f"as {operation.id} (queue length {len(self._queue)})"
        )
        self._notify()
        self._trigger_drain()
        return operation.id

    def get_status(self) -> SyncStatus:
        """Snapshot of the current sync status."""
        self._status.pending_operations = len(self._queue)
        return self._status.model_copy(deep=True)

    def on_status_change(self, listener: StatusListener) -> Callable[[], None]:
        """Subscribe to status changes.

        Returns:
            Function that removes the listener again
        """
        return self._broadcaster.subscribe(listener)

    async def force_sync(self) -> None:
        """Drain now instead of waiting for the periodic tick.

        Joins the drain already running, if any, and returns once it is done.
        Operations waiting out a backoff delay are not hurried.
        """
        if not self._status.is_online or not self._queue:
            return
        task = self._trigger_drain()
        if task is not None:
            await task

    async def join(self) -> None:
        """Wait for the drain currently running, if any."""
        task = self._drain_task
        if task is not None and not task.done():
            await task

    def retry_failed_operations(self) -> int:
        """Give every dropped operation a fresh set of attempts.

        Returns:
            Number of operations put back on the queue
        """
        revived = list(self._failed)
        self._failed.clear()
        for operation in revived:
            operation.retry_count = 0
            operation.status = OperationStatus.PENDING
            operation.next_attempt_at = None
            self._queue.append(operation)

        if revived:
            self.status_logger.info(f"Retrying {len(revived)} failed operations")
            self._notify()
            self._trigger_drain()
        return len(revived)

    def clear_errors(self) -> None:
        self._status.errors = []
        self._notify()

    def pending(self) -> list[SyncOperation]:
        """Copies of the queued operations in queue order."""
        return [operation.model_copy(deep=True) for operation in self._queue]

    def failed_operations(self) -> list[SyncOperation]:
        """Copies of the dropped operations, oldest first."""
        return [operation.model_copy(deep=True) for operation in self._failed]

    async def read(
        self, resource: ResourceType | str, entity_id: str
    ) -> dict[str, Any] | None:
        """Read an entity through the writer (local cache fallback included)."""
        return await self.writer.read(resource, entity_id)

    async def start(self) -> None:
        """Arm the periodic tick and start draining what is already queued."""
        if self._running:
            return
        self._running = True
        self._subscribe_network()
        self._schedule_tick()
        self.detail_logger.debug(
            f"Sync engine started (tick every {self.config.sync_interval_seconds}s)"
        )
        self._trigger_drain()

    async def stop(self) -> None:
        """Disarm timers and wait for the in-flight operation to finish.

        Operations that were backing off stay queued and become ready again.
        """
        self._running = False
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

        for operation_id, handle in list(self._retry_timers.items()):
            handle.cancel()
            operation = self._find(operation_id)
            if operation is not None:
                operation.next_attempt_at = None
        self._retry_timers.clear()

        if self._unsubscribe_network is not None:
            self._unsubscribe_network()
            self._unsubscribe_network = None

        await self.join()
        self.detail_logger.debug("Sync engine stopped")

    # ------------------------------------------------------------------
    # Draining
    # ------------------------------------------------------------------

    def _trigger_drain(self) -> "asyncio.Task[None] | None":
        """Start a drain task when online, idle and something is ready."""
        if self._drain_task is not None and not self._drain_task.done():
            return self._drain_task
        if not self._status.is_online or self._next_ready() is None:
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.detail_logger.debug("No running event loop; drain deferred")
            return None

        self._drain_task = loop.create_task(self._drain(), name="charter-sync-drain")
        return self._drain_task

    async def _drain(self) -> None:
        if self._processing:
            return

        self._processing = True
        try:
            while self._status.is_online:
                operation = self._next_ready()
                if operation is None:
                    break
                await self._process(operation)
        finally:
            self._processing = False

    async def _process(self, operation: SyncOperation) -> None:
        operation.status = OperationStatus.IN_PROGRESS
        self._status.is_syncing = True
        self._notify()

        try:
            await self.writer.write(operation)
        except asyncio.CancelledError:
            operation.status = OperationStatus.PENDING
            raise
        except Exception as e:
            self._handle_failure(operation, e)
        else:
            self._handle_success(operation)
        finally:
            self._status.is_syncing = False
            self._notify()

    def _handle_success(self, operation: SyncOperation) -> None:
        self._queue.remove(operation)
        operation.status = OperationStatus.COMPLETED
        operation.last_error = None
        self._status.last_sync_time = self._clock()
        self._status.errors = [
            error for error in self._status.errors if operation.id not in error
        ]
        self.detail_logger.info(
            f"Operation {operation.id} ({operation.resource.value}) completed "
            f"after {operation.retry_count} retries"
        )

    def _handle_failure(self, operation: SyncOperation, error: Exception) -> None:
        operation.retry_count += 1
        reason = str(error) or type(error).__name__
        operation.last_error = reason

        if operation.retry_count >= self.config.max_retries:
            self._queue.remove(operation)
            operation.status = OperationStatus.FAILED
            self._failed.append(operation)
            self._record_error(
                f"Operation {operation.id} ({operation.resource.value}) failed: {reason}"
            )
            self.status_logger.error(
                f"Dropping operation {operation.id} after "
                f"{operation.retry_count} attempts: {reason}"
            )
            return

        # base * 2 ** (retry_count - 1): 1s after the first failure, then 2s
        delay = backoff_delay(
            operation.retry_count,
            self.config.base_delay_seconds,
            self.config.max_delay_seconds,
        )
        if isinstance(error, RateLimitError) and error.retry_after:
            delay = max(delay, float(error.retry_after))
        operation.status = OperationStatus.PENDING
        operation.next_attempt_at = self.scheduler.time() + delay
        self._retry_timers[operation.id] = self.scheduler.call_later(
            delay, lambda: self._requeue(operation.id)
        )
        self.detail_logger.warning(
            f"Operation {operation.id} failed (attempt {operation.retry_count}/"
            f"{self.config.max_retries}): {reason}. Retrying in {delay:.1f}s"
        )

    def _requeue(self, operation_id: str) -> None:
        """Backoff elapsed: move the operation to the tail and drain."""
        self._retry_timers.pop(operation_id, None)
        operation = self._find(operation_id)
        if operation is None:
            return

        self._queue.remove(operation)
        operation.next_attempt_at = None
        self._queue.append(operation)
        self.detail_logger.debug(f"Operation {operation_id} moved to the queue tail")
        self._trigger_drain()

    def _record_error(self, message: str) -> None:
        self._status.errors.append(message)
        overflow = len(self._status.errors) - self.config.max_errors
        if overflow > 0:
            del self._status.errors[:overflow]

    def _reject(self, request: Any, error: ValidationError) -> str:
        operation_id = self._id_factory()
        resource = request.get("resource") if isinstance(request, dict) else None
        reason = "Invalid operation request: " + "; ".join(
            format_validation_errors(error)
        )
        self._record_error(
            f"Operation {operation_id} ({resource or 'unknown'}) failed: {reason}"
        )
        self.status_logger.error(f"Rejected operation {operation_id}: {reason}")
        self._notify()
        return operation_id

    def _next_ready(self) -> SyncOperation | None:
        for operation in self._queue:
            if operation.is_ready:
                return operation
        return None

    def _find(self, operation_id: str) -> SyncOperation | None:
        for operation in self._queue:
            if operation.id == operation_id:
                return operation
        return None

    def _notify(self) -> None:
        self._status.pending_operations = len(self._queue)
        self._broadcaster.notify(self._status)

    # ------------------------------------------------------------------
    # Timers and network
    # ------------------------------------------------------------------

    def _schedule_tick(self) -> None:
        self._tick_handle = self.scheduler.call_later(
            self.config.sync_interval_seconds, self._on_tick
        )

    def _on_tick(self) -> None:
        self._tick_handle = None
        if not self._running:
            return
        if self._status.is_online and not self._processing and self._queue:
            self._trigger_drain()
        self._schedule_tick()

    def _subscribe_network(self) -> None:
        if self._unsubscribe_network is None:
            self._unsubscribe_network = self.network.subscribe(self._on_network_change)
        self._status.is_online = self.network.is_online()

    def _on_network_change(self, online: bool) -> None:
        self._status.is_online = online
        self.detail_logger.info(f"Network state changed: online={online}")
        self._notify()
        if online:
            self._trigger_drain()
