"""Single entry point feature services use to talk to the backend.

``RequestDispatcher.execute`` decides, per operation, whether to send now,
queue for later or fail; attaches credentials; and retries a request
exactly once after a coordinated token refresh.  Queued operations are
replayed when connectivity returns, after every successful send, and (with
back-off) after a pass that stopped on a transient failure.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from relay.config import Settings
from relay.core.implementations import SqlCredentialStore
from relay.core.implementations import SqlQueueStorage
from relay.core.implementations import session_factory_from_settings
from relay.core.interfaces import CredentialStore
from relay.core.interfaces import QueueStorage
from relay.core.interfaces import Transport
from relay.errors import AuthError
from relay.errors import DispatchError
from relay.errors import HttpStatusError
from relay.errors import NetworkError
from relay.errors import OfflineError
from relay.errors import QueuedForLater
from relay.errors import RefreshUnavailableError
from relay.errors import ServerError
from relay.errors import SessionExpired
from relay.errors import TransportNetworkError
from relay.events import EventBus
from relay.events import EventType
from relay.metrics import operations_sent_total
from relay.models.enums import DrainHalt
from relay.schemas.schemas import CredentialPair
from relay.schemas.schemas import DrainReport
from relay.schemas.schemas import Operation
from relay.schemas.schemas import Response
from relay.services.connectivity import ConnectivityMonitor
from relay.services.offline_queue import OfflineQueue
from relay.services.refresh_coordinator import RefreshCoordinator
from relay.services.transport import HttpxTransport
from relay.utils.crypto import TokenCipher
from relay.utils.retry import backoff_delay

logger = logging.getLogger(__name__)


class RequestDispatcher:
    """Send, queue or fail operations; orchestrate refresh-and-retry."""

    def __init__(
        self,
        *,
        settings: Settings,
        transport: Transport,
        credentials: CredentialStore,
        queue_storage: QueueStorage,
        connectivity: ConnectivityMonitor,
        event_bus: Optional[EventBus] = None,
    ):
        self._settings = settings
        self._transport = transport
        self._credentials = credentials
        self._connectivity = connectivity
        self._event_bus = event_bus

        self.coordinator = RefreshCoordinator(credentials, transport, settings, event_bus=event_bus)
        self.queue = OfflineQueue(
            queue_storage,
            connectivity,
            settings,
            event_bus=event_bus,
            owner_id=credentials.owner_id(),
        )

        self._started = False
        self._session_expired = False
        self._drain_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._retry_attempt = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        connectivity: Optional[ConnectivityMonitor] = None,
        event_bus: Optional[EventBus] = None,
    ) -> RequestDispatcher:
        """Wire the production stack: httpx transport, SQL queue, encrypted credentials."""

        session_factory = session_factory_from_settings(settings)
        return cls(
            settings=settings,
            transport=HttpxTransport(settings),
            credentials=SqlCredentialStore(session_factory, TokenCipher(settings.fernet_secret)),
            queue_storage=SqlQueueStorage(session_factory),
            connectivity=connectivity or ConnectivityMonitor(event_bus=event_bus),
            event_bus=event_bus,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to connectivity changes and replay anything left from a previous run."""
        if self._started:
            return
        self._started = True
        self._connectivity.subscribe(self._on_connectivity_change)
        logger.info("Request dispatcher started", extra={"owner_id": self.queue.owner_id})

        if self._connectivity.is_online():
            await self.drain()

    async def close(self) -> None:
        self._connectivity.unsubscribe(self._on_connectivity_change)
        self._started = False
        await self._cancel_retry()
        if self._drain_task is not None:
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
            self._drain_task = None
        await self._transport.aclose()
        logger.info("Request dispatcher closed")

    async def sign_in(self, pair: CredentialPair, user_id: str) -> None:
        """Install credentials from login/signup and switch to that user's queue."""
        if not user_id:
            raise ValueError("sign_in requires the signed-in user's id")
        self._credentials.set(pair, owner_id=user_id)
        self.queue.bind_owner(user_id)
        self._session_expired = False
        logger.info("Signed in", extra={"owner_id": self.queue.owner_id})

        if self._started and self._connectivity.is_online():
            await self.drain()

    async def sign_out(self) -> None:
        """Forget credentials and this user's queued operations."""
        await self._cancel_retry()
        await self.queue.clear()
        self._credentials.clear()
        self.queue.bind_owner(None)
        logger.info("Signed out")

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    async def execute(self, operation: Operation) -> Response:
        """Deliver *operation* or raise a :class:`~relay.errors.DispatchError`.

        ``QueuedForLater`` is raised when the operation was persisted for
        replay; callers present it as an optimistic success.
        """

        if not self._connectivity.is_online():
            if operation.queueable:
                await self.queue.enqueue(operation)
                raise QueuedForLater(operation.id)
            logger.info("Offline; refusing non-queueable operation", extra={"operation_id": operation.id})
            raise OfflineError()

        if operation.queueable and await self.queue.count() > 0:
            # Older queued writes are delivered first
            logger.info("Queue not empty; queueing behind pending operations", extra={"operation_id": operation.id})
            await self.queue.enqueue(operation)
            self._spawn_drain()
            raise QueuedForLater(operation.id)

        try:
            response = await self._deliver(operation)
        except (TransportNetworkError, RefreshUnavailableError) as exc:
            raise await self._network_failure(operation, exc) from exc
        except HttpStatusError as exc:
            raise ServerError(exc.status_code, exc.message) from exc

        operations_sent_total.labels("direct").inc()
        await self._publish(EventType.OPERATION_SENT, {"operation_id": operation.id, "source": "direct"})
        self._spawn_drain()
        return response

    async def _network_failure(self, operation: Operation, exc: Exception) -> DispatchError:
        """Queue a queueable operation; return the error to raise to the caller."""
        if operation.queueable:
            logger.info("Network failure; queueing operation", extra={"operation_id": operation.id})
            await self.queue.enqueue(operation)
            return QueuedForLater(operation.id)

        cause = exc.cause if isinstance(exc, RefreshUnavailableError) else exc
        return NetworkError(str(exc), cause=cause)

    async def _deliver(self, operation: Operation) -> Response:
        """Send with current credentials; on 401 refresh once and retry once.

        Used for direct sends and as the queue's replay function.  Raises
        transport errors unchanged, ``RefreshUnavailableError`` when the
        refresh endpoint is unreachable and ``SessionExpired`` once the
        session is over.
        """

        pair = self._credentials.get()
        try:
            return await self._send(operation, pair)
        except HttpStatusError as exc:
            # Without credentials a 401 is an ordinary rejection (bad login)
            if not exc.is_auth_failure or pair is None:
                raise

        logger.info("Access token rejected; refreshing", extra={"operation_id": operation.id})
        try:
            fresh = await self.coordinator.ensure_fresh_credentials(operation.id, stale_access_token=pair.access_token)
        except RefreshUnavailableError:
            raise
        except AuthError as exc:
            await self._expire_session(type(exc).__name__)
            raise SessionExpired() from exc

        try:
            return await self._send(operation, fresh)
        except HttpStatusError as exc:
            if exc.is_auth_failure:
                logger.warning("Request rejected again after refresh", extra={"operation_id": operation.id})
                await self._expire_session("rejected_after_refresh")
                raise SessionExpired() from exc
            raise

    async def _send(self, operation: Operation, pair: Optional[CredentialPair]) -> Response:
        headers = pair.authorization_header() if pair is not None else {}
        return await self._transport.send(
            operation.method.value,
            operation.path,
            body=operation.body,
            headers=headers,
            timeout=self._settings.timeout_for(operation.timeout_class),
            params=operation.params,
        )

    async def _expire_session(self, reason: str) -> None:
        self._credentials.clear()
        await self.queue.clear()
        await self._cancel_retry()

        if self._session_expired:
            return
        self._session_expired = True
        logger.warning("Session expired (%s); credentials and queue cleared", reason)
        await self._publish(EventType.SESSION_EXPIRED, {"reason": reason})

    # ------------------------------------------------------------------
    # Draining
    # ------------------------------------------------------------------

    async def drain(self) -> DrainReport:
        """Run one drain pass now and schedule a back-off retry if it stalled."""

        report = await self.queue.drain(self._deliver)
        if report.skipped:
            return report

        if report.halted == DrainHalt.TRANSIENT_FAILURE:
            self._schedule_retry()
        elif report.halted is None:
            self._retry_attempt = 0
        return report

    async def wait_idle(self) -> None:
        """Wait for a background drain started by :meth:`execute` to finish."""
        task = self._drain_task
        if task is not None and not task.done():
            await task

    def _spawn_drain(self) -> None:
        if self._drain_task is not None and not self._drain_task.done():
            return
        self._drain_task = asyncio.create_task(self._background_drain())

    async def _background_drain(self) -> None:
        try:
            await self.drain()
        except Exception as e:
            logger.exception("Background drain failed", exc_info=e)

    def _schedule_retry(self) -> None:
        if not self._settings.drain_retry_enabled:
            return
        if self._retry_task is not None and not self._retry_task.done():
            return

        self._retry_attempt += 1
        delay = backoff_delay(
            self._retry_attempt,
            base_delay=self._settings.drain_retry_base_delay,
            max_delay=self._settings.drain_retry_max_delay,
        )
        logger.info("Scheduling drain retry in %.1fs (attempt %d)", delay, self._retry_attempt)
        self._retry_task = asyncio.create_task(self._retry_after(delay))

    async def _retry_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._retry_task = None
        if not self._connectivity.is_online():
            return
        try:
            await self.drain()
        except Exception as e:
            logger.exception("Drain retry failed", exc_info=e)

    async def _cancel_retry(self) -> None:
        task = self._retry_task
        self._retry_task = None
        self._retry_attempt = 0
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _on_connectivity_change(self, online: bool) -> None:
        if online:
            logger.info("Back online; draining offline queue")
            await self.drain()

    async def _publish(self, event_type: EventType, data: dict) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(event_type, data)
