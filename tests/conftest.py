from typing import Any
from typing import Dict
from typing import List
from typing import Tuple

import pytest

from relay.config import Settings
from relay.core.test_implementations import InMemoryCredentialStore
from relay.core.test_implementations import InMemoryQueueStorage
from relay.core.test_implementations import ScriptedTransport
from relay.database import initialize_database
from relay.database import make_engine
from relay.database import make_sessionmaker
from relay.events import EventBus
from relay.events import EventType
from relay.schemas.schemas import CredentialPair
from relay.services.connectivity import ConnectivityMonitor
from relay.services.dispatcher import RequestDispatcher

# Deterministic Fernet key used only by the test-suite
TEST_FERNET_SECRET = "Mj7MFJspDPjiFBGHZJ5hnx70XAFJ_En6ofIEhn3BoXw="


class EventRecorder:
    """Collects every event published on a bus, in order."""

    def __init__(self):
        self.events: List[Tuple[EventType, Dict[str, Any]]] = []

    def attach(self, bus: EventBus) -> None:
        for event_type in EventType:
            bus.subscribe(event_type, self._handler_for(event_type))

    def _handler_for(self, event_type: EventType):
        async def _record(data: Dict[str, Any]) -> None:
            self.events.append((event_type, data))

        return _record

    def of(self, event_type: EventType) -> List[Dict[str, Any]]:
        return [data for kind, data in self.events if kind == event_type]


@pytest.fixture
def settings():
    """Settings for unit tests: no delayed drain retries, in-memory database."""
    return Settings(
        api_base_url="http://testserver/api",
        database_url="sqlite:///:memory:",
        fernet_secret=TEST_FERNET_SECRET,
        drain_retry_enabled=False,
    )


@pytest.fixture
def session_factory():
    """Fresh in-memory SQLite database per test."""
    engine = make_engine("sqlite:///:memory:")
    initialize_database(engine)
    yield make_sessionmaker(engine)
    engine.dispose()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def events(bus):
    recorder = EventRecorder()
    recorder.attach(bus)
    return recorder


@pytest.fixture
def transport():
    return ScriptedTransport()


@pytest.fixture
def credentials():
    return InMemoryCredentialStore(
        CredentialPair(access_token="access-1", refresh_token="refresh-1"),
        owner_id="user-1",
    )


@pytest.fixture
def queue_storage():
    return InMemoryQueueStorage()


@pytest.fixture
def connectivity(bus):
    return ConnectivityMonitor(online=True, event_bus=bus)


@pytest.fixture
def dispatcher(settings, transport, credentials, queue_storage, connectivity, bus):
    return RequestDispatcher(
        settings=settings,
        transport=transport,
        credentials=credentials,
        queue_storage=queue_storage,
        connectivity=connectivity,
        event_bus=bus,
    )
