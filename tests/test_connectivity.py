"""Tests for the connectivity monitor and health probe."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from relay.errors import HttpStatusError
from relay.errors import TransportConnectionError
from relay.events import EventType
from relay.services.connectivity import ConnectivityMonitor
from relay.services.connectivity import HealthProbe


@pytest.mark.asyncio
async def test_listeners_fire_only_on_transitions(connectivity, events):
    seen = []

    async def listener(online):
        seen.append((online, connectivity.is_online()))

    connectivity.subscribe(listener)

    assert await connectivity.set_online(True) is False
    assert await connectivity.set_online(False) is True
    assert await connectivity.set_online(False) is False
    assert await connectivity.set_online(True) is True

    # The monitor already reports the new state while listeners run
    assert seen == [(False, False), (True, True)]
    assert events.of(EventType.CONNECTIVITY_CHANGED) == [{"online": False}, {"online": True}]


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others():
    monitor = ConnectivityMonitor(online=False)
    calls = []

    async def broken(online):
        raise RuntimeError("boom")

    async def healthy(online):
        calls.append(online)

    monitor.subscribe(broken)
    monitor.subscribe(healthy)

    await monitor.set_online(True)

    assert calls == [True]


@pytest.mark.asyncio
async def test_unsubscribed_listener_is_not_called():
    monitor = ConnectivityMonitor()
    calls = []

    async def listener(online):
        calls.append(online)

    monitor.subscribe(listener)
    monitor.subscribe(listener)
    monitor.unsubscribe(listener)
    await monitor.set_online(False)

    assert calls == []


@pytest.mark.asyncio
async def test_probe_marks_offline_on_network_error(connectivity, transport, settings):
    transport.set_handler(lambda request: TransportConnectionError("unreachable"))
    probe = HealthProbe(connectivity, transport, settings)

    assert await probe.check_once() is False
    assert not connectivity.is_online()
    assert transport.calls[0].path == "/health"


@pytest.mark.asyncio
async def test_probe_treats_any_http_answer_as_online(transport, settings):
    monitor = ConnectivityMonitor(online=False)
    transport.set_handler(lambda request: HttpStatusError(503, "maintenance"))
    probe = HealthProbe(monitor, transport, settings)

    assert await probe.check_once() is True
    assert monitor.is_online()


@pytest.mark.asyncio
async def test_probe_loop_runs_until_stopped(connectivity, transport, settings):
    probe = HealthProbe(connectivity, transport, settings.override(health_interval=0.01))

    await probe.start()
    await asyncio.sleep(0.05)
    await probe.stop()

    calls = len(transport.calls_to("/health"))
    assert calls >= 2
    await asyncio.sleep(0.03)
    assert len(transport.calls_to("/health")) == calls


@pytest.mark.asyncio
async def test_listener_receives_new_state():
    monitor = ConnectivityMonitor()
    listener = AsyncMock()
    monitor.subscribe(listener)

    await monitor.set_online(False)

    listener.assert_awaited_once_with(False)
