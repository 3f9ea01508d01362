"""Durable FIFO of queueable operations awaiting delivery.

The queue never talks to the network itself.  :meth:`OfflineQueue.drain`
receives a ``send`` coroutine from the dispatcher and replays operations
through it strictly oldest-first, one at a time.
"""

from __future__ import annotations

import logging
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import List
from typing import Optional

from relay.config import Settings
from relay.core.interfaces import QueueStorage
from relay.errors import AuthError
from relay.errors import HttpStatusError
from relay.errors import SessionExpired
from relay.events import EventBus
from relay.events import EventType
from relay.metrics import offline_queue_depth
from relay.metrics import operations_failed_total
from relay.metrics import operations_queued_total
from relay.metrics import operations_sent_total
from relay.models.enums import DrainHalt
from relay.models.enums import FailureReason
from relay.schemas.schemas import DrainReport
from relay.schemas.schemas import Operation
from relay.services.connectivity import ConnectivityMonitor
from relay.utils.retry import is_retryable_failure

logger = logging.getLogger(__name__)

SendFn = Callable[[Operation], Awaitable[Any]]

# Owner key used before anyone has signed in
ANONYMOUS_OWNER = "anonymous"


class OfflineQueue:
    """Per-user persisted queue with single-pass draining."""

    def __init__(
        self,
        storage: QueueStorage,
        connectivity: ConnectivityMonitor,
        settings: Settings,
        *,
        event_bus: Optional[EventBus] = None,
        owner_id: Optional[str] = None,
    ):
        self._storage = storage
        self._connectivity = connectivity
        self._settings = settings
        self._event_bus = event_bus
        self._owner_id = owner_id or ANONYMOUS_OWNER
        self._draining = False

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def is_draining(self) -> bool:
        return self._draining

    def bind_owner(self, owner_id: Optional[str]) -> None:
        """Switch to *owner_id*'s queue (``None`` selects the anonymous queue)."""
        self._owner_id = owner_id or ANONYMOUS_OWNER
        logger.debug("Offline queue bound to owner %s", self._owner_id)

    # ------------------------------------------------------------------
    # Storage helpers
    # ------------------------------------------------------------------

    async def enqueue(self, operation: Operation) -> None:
        if not operation.queueable:
            raise ValueError(f"Operation {operation.id} is not queueable")

        await self._storage.append(self._owner_id, operation)
        operations_queued_total.inc()
        await self._refresh_depth()
        logger.info(
            "Queued operation for later delivery",
            extra={"operation_id": operation.id, "method": operation.method.value, "path": operation.path},
        )
        await self._publish(
            EventType.OPERATION_QUEUED,
            {"operation_id": operation.id, "method": operation.method.value, "path": operation.path},
        )

    async def pending(self) -> List[Operation]:
        return await self._storage.load_all(self._owner_id)

    async def count(self) -> int:
        return await self._storage.count(self._owner_id)

    async def clear(self) -> int:
        removed = await self._storage.clear(self._owner_id)
        offline_queue_depth.set(0)
        if removed:
            logger.info("Cleared %d queued operation(s)", removed)
        return removed

    # ------------------------------------------------------------------
    # Drain
    # ------------------------------------------------------------------

    async def drain(self, send: SendFn) -> DrainReport:
        """Replay queued operations through *send*, oldest first.

        Returns a report flagged ``skipped`` when another pass is running.
        The pass stops when the device goes offline, when the head operation
        fails transiently (it stays at the head with its retry count bumped)
        or when the session expires.
        """

        if self._draining:
            logger.debug("Drain already in progress; skipping")
            return DrainReport(skipped=True)
        self._draining = True

        report = DrainReport()
        try:
            await self._drain_pass(send, report)
        finally:
            self._draining = False

        report.remaining = await self.count()
        offline_queue_depth.set(report.remaining)

        if report.halted is None and report.remaining == 0 and (report.sent or report.failed):
            logger.info("Offline queue drained", extra={"sent": report.sent, "failed": report.failed})
            await self._publish(EventType.QUEUE_DRAINED, {"sent": report.sent, "failed": report.failed})
        return report

    async def _drain_pass(self, send: SendFn, report: DrainReport) -> None:
        owner = self._owner_id
        max_retries = self._settings.max_queue_retries

        while True:
            if not self._connectivity.is_online():
                report.halted = DrainHalt.OFFLINE
                return

            operation = await self._storage.peek_oldest(owner)
            if operation is None:
                return

            # Left over from a pass that was interrupted after the last bump
            if operation.retry_count >= max_retries:
                if await self._discard(owner, operation, FailureReason.MAX_RETRIES, None):
                    report.failed += 1
                continue

            try:
                await send(operation)
            except (SessionExpired, AuthError) as exc:
                if not is_retryable_failure(exc):
                    logger.warning("Drain stopped: session expired", extra={"operation_id": operation.id})
                    report.halted = DrainHalt.SESSION_EXPIRED
                    return
                if await self._record_transient_failure(owner, operation, exc, report):
                    return
                continue
            except Exception as exc:
                if is_retryable_failure(exc):
                    if await self._record_transient_failure(owner, operation, exc, report):
                        return
                    continue
                if isinstance(exc, HttpStatusError):
                    logger.warning(
                        "Queued operation rejected with HTTP %s; discarding",
                        exc.status_code,
                        extra={"operation_id": operation.id},
                    )
                    if await self._discard(owner, operation, FailureReason.REJECTED, exc.message):
                        report.failed += 1
                    continue
                raise

            await self._storage.remove(owner, operation.id)
            report.sent += 1
            operations_sent_total.labels("queue").inc()
            logger.info("Delivered queued operation", extra={"operation_id": operation.id})
            await self._publish(EventType.OPERATION_SENT, {"operation_id": operation.id, "source": "queue"})

    async def _record_transient_failure(
        self,
        owner: str,
        operation: Operation,
        exc: Exception,
        report: DrainReport,
    ) -> bool:
        """Bump the retry count; return *True* when the pass must stop."""

        retry_count = operation.retry_count + 1
        if retry_count >= self._settings.max_queue_retries:
            if await self._discard(owner, operation, FailureReason.MAX_RETRIES, str(exc)):
                report.failed += 1
            return False

        await self._storage.update_retry_count(owner, operation.id, retry_count, last_error=str(exc))
        logger.info(
            "Queued operation failed transiently (attempt %d/%d)",
            retry_count,
            self._settings.max_queue_retries,
            extra={"operation_id": operation.id},
        )
        report.halted = DrainHalt.TRANSIENT_FAILURE
        return True

    async def _discard(
        self,
        owner: str,
        operation: Operation,
        reason: FailureReason,
        last_error: Optional[str],
    ) -> bool:
        # Only the call that actually removed the row reports the failure
        removed = await self._storage.remove(owner, operation.id)
        if not removed:
            return False

        operations_failed_total.labels(reason.value).inc()
        logger.warning(
            "Discarded queued operation (%s)",
            reason.value,
            extra={"operation_id": operation.id, "path": operation.path},
        )
        await self._publish(
            EventType.OPERATION_FAILED,
            {
                "operation_id": operation.id,
                "method": operation.method.value,
                "path": operation.path,
                "reason": reason.value,
                "retry_count": operation.retry_count,
                "error": last_error,
            },
        )
        return True

    async def _refresh_depth(self) -> None:
        offline_queue_depth.set(await self.count())

    async def _publish(self, event_type: EventType, data: dict) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(event_type, data)
