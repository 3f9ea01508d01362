"""Connectivity observer: online/offline state plus transition listeners.

The platform layer (OS reachability callbacks) pushes state through
:meth:`ConnectivityMonitor.set_online`.  Where no such signal exists,
:class:`HealthProbe` polls the backend's health endpoint and feeds the
result into the monitor.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable
from typing import Callable
from typing import List
from typing import Optional

from relay.config import Settings
from relay.core.interfaces import Transport
from relay.errors import HttpStatusError
from relay.errors import TransportNetworkError
from relay.events import EventBus
from relay.events import EventType

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], Awaitable[None]]


class ConnectivityMonitor:
    """Tracks the current connectivity state and notifies on transitions."""

    def __init__(self, *, online: bool = True, event_bus: Optional[EventBus] = None):
        self._online = online
        self._listeners: List[ConnectivityListener] = []
        self._event_bus = event_bus

    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: ConnectivityListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: ConnectivityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def set_online(self, online: bool) -> bool:
        """Record the new state; notify listeners only on an actual transition.

        Returns whether a transition happened.
        """
        if online == self._online:
            return False

        # State flips before any listener runs so they observe the new value
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")

        if self._event_bus is not None:
            await self._event_bus.publish(EventType.CONNECTIVITY_CHANGED, {"online": online})

        for listener in list(self._listeners):
            try:
                await listener(online)
            except Exception as e:
                logger.exception("Connectivity listener failed", exc_info=e)
        return True


class HealthProbe:
    """Periodically probe the backend and update a :class:`ConnectivityMonitor`."""

    def __init__(self, monitor: ConnectivityMonitor, transport: Transport, settings: Settings):
        self._monitor = monitor
        self._transport = transport
        self._settings = settings
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the probe loop."""
        if self._running:
            logger.warning("Health probe already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._probe_loop())
        logger.info("Health probe started")

    async def stop(self) -> None:
        """Stop the probe loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Health probe stopped")

    async def check_once(self) -> bool:
        """Probe once and push the result into the monitor."""
        try:
            await self._transport.send(
                "GET",
                self._settings.health_path,
                timeout=self._settings.default_timeout,
            )
            reachable = True
        except TransportNetworkError:
            reachable = False
        except HttpStatusError:
            # Any HTTP answer proves the network path works
            reachable = True

        await self._monitor.set_online(reachable)
        return reachable

    async def _probe_loop(self) -> None:
        while self._running:
            try:
                await self.check_once()
            except Exception as e:
                logger.exception("Error in health probe loop", exc_info=e)

            await asyncio.sleep(self._settings.health_interval)
