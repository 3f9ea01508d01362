"""Tests for the persisted offline queue and its drain pass."""

import asyncio

import pytest
from pydantic import ValidationError

from relay.core.implementations import SqlQueueStorage
from relay.errors import HttpStatusError
from relay.errors import SessionExpired
from relay.errors import TransportConnectionError
from relay.errors import TransportTimeout
from relay.events import EventType
from relay.models.enums import DrainHalt
from relay.models.enums import HttpMethod
from relay.schemas.schemas import Operation
from relay.schemas.schemas import Response
from relay.services.offline_queue import ANONYMOUS_OWNER
from relay.services.offline_queue import OfflineQueue


def _chat(text):
    return Operation(method=HttpMethod.POST, path="/ai/chat", body={"message": text}, queueable=True)


@pytest.fixture
def queue(queue_storage, connectivity, settings, bus):
    return OfflineQueue(queue_storage, connectivity, settings, event_bus=bus, owner_id="user-1")


class RecordingSender:
    """``send`` callable that records operations and answers from a script."""

    def __init__(self, outcome=None):
        self.sent = []
        self._outcome = outcome or (lambda op: Response(status_code=200, body={"success": True}))

    async def __call__(self, operation):
        self.sent.append(operation)
        result = self._outcome(operation)
        if isinstance(result, Exception):
            raise result
        return result

    @property
    def messages(self):
        return [op.body["message"] for op in self.sent]


@pytest.mark.asyncio
async def test_drain_replays_in_fifo_order(queue, events):
    for text in ("first", "second", "third"):
        await queue.enqueue(_chat(text))
    sender = RecordingSender()

    report = await queue.drain(sender)

    assert sender.messages == ["first", "second", "third"]
    assert report.sent == 3
    assert report.remaining == 0
    assert report.halted is None
    assert len(events.of(EventType.OPERATION_QUEUED)) == 3
    assert len(events.of(EventType.OPERATION_SENT)) == 3
    assert len(events.of(EventType.QUEUE_DRAINED)) == 1


@pytest.mark.asyncio
async def test_concurrent_drain_is_skipped(queue):
    for text in ("a", "b"):
        await queue.enqueue(_chat(text))

    gate = asyncio.Event()
    sent = []

    async def slow_send(operation):
        await gate.wait()
        sent.append(operation.id)
        return Response(status_code=200)

    first = asyncio.create_task(queue.drain(slow_send))
    await asyncio.sleep(0)
    assert queue.is_draining

    second = await queue.drain(slow_send)
    assert second.skipped

    gate.set()
    report = await first

    assert report.sent == 2
    assert len(sent) == len(set(sent)) == 2
    assert not queue.is_draining


@pytest.mark.asyncio
async def test_transient_failure_keeps_operation_at_head(queue, queue_storage):
    await queue.enqueue(_chat("first"))
    await queue.enqueue(_chat("second"))
    sender = RecordingSender(lambda op: HttpStatusError(503, "unavailable"))

    report = await queue.drain(sender)

    assert report.halted == DrainHalt.TRANSIENT_FAILURE
    assert sender.messages == ["first"]
    pending = await queue.pending()
    assert [op.body["message"] for op in pending] == ["first", "second"]
    assert pending[0].retry_count == 1
    assert queue_storage.last_errors[pending[0].id] == "HTTP 503: unavailable"


@pytest.mark.asyncio
async def test_operation_evicted_after_max_retries_with_one_failure_event(queue, events):
    await queue.enqueue(_chat("doomed"))
    sender = RecordingSender(lambda op: TransportTimeout("timed out"))

    reports = [await queue.drain(sender) for _ in range(4)]

    assert [r.halted for r in reports[:2]] == [DrainHalt.TRANSIENT_FAILURE] * 2
    assert reports[2].failed == 1
    assert reports[2].remaining == 0
    assert len(sender.sent) == 3

    failures = events.of(EventType.OPERATION_FAILED)
    assert len(failures) == 1
    assert failures[0]["reason"] == "max_retries"
    assert await queue.count() == 0


@pytest.mark.asyncio
async def test_exhausted_operation_from_previous_run_is_discarded_unsent(queue, queue_storage, events):
    stale = _chat("left over").with_retry_count(3)
    await queue_storage.append("user-1", stale)
    await queue.enqueue(_chat("fresh"))
    sender = RecordingSender()

    report = await queue.drain(sender)

    assert sender.messages == ["fresh"]
    assert report.failed == 1
    assert [e["operation_id"] for e in events.of(EventType.OPERATION_FAILED)] == [stale.id]


@pytest.mark.asyncio
async def test_rejected_operation_is_dropped_and_drain_continues(queue, events):
    await queue.enqueue(_chat("bad"))
    await queue.enqueue(_chat("good"))

    def outcome(op):
        if op.body["message"] == "bad":
            return HttpStatusError(422, {"message": "Message too long"})
        return Response(status_code=200)

    report = await queue.drain(RecordingSender(outcome))

    assert report.sent == 1
    assert report.failed == 1
    failure = events.of(EventType.OPERATION_FAILED)[0]
    assert failure["reason"] == "rejected"
    assert failure["error"] == "Message too long"


@pytest.mark.asyncio
async def test_drain_stops_when_offline(queue, connectivity):
    await queue.enqueue(_chat("waiting"))
    await connectivity.set_online(False)
    sender = RecordingSender()

    report = await queue.drain(sender)

    assert report.halted == DrainHalt.OFFLINE
    assert sender.sent == []
    assert report.remaining == 1


@pytest.mark.asyncio
async def test_drain_stops_on_session_expiry(queue, events):
    await queue.enqueue(_chat("first"))
    await queue.enqueue(_chat("second"))
    sender = RecordingSender(lambda op: SessionExpired())

    report = await queue.drain(sender)

    assert report.halted == DrainHalt.SESSION_EXPIRED
    assert len(sender.sent) == 1
    assert (await queue.pending())[0].retry_count == 0
    assert events.of(EventType.QUEUE_DRAINED) == []


@pytest.mark.asyncio
async def test_drain_of_empty_queue_publishes_nothing(queue, events):
    report = await queue.drain(RecordingSender())

    assert report.sent == 0
    assert events.events == []


@pytest.mark.asyncio
async def test_non_queueable_operation_is_refused(queue):
    with pytest.raises(ValueError):
        await queue.enqueue(Operation(method=HttpMethod.POST, path="/conversations", body={}))

    assert await queue.count() == 0


def test_reads_and_deletes_cannot_be_marked_queueable():
    with pytest.raises(ValidationError):
        Operation(method=HttpMethod.GET, path="/conversations", queueable=True)
    with pytest.raises(ValidationError):
        Operation(method=HttpMethod.DELETE, path="/conversations/1", queueable=True)


def test_operation_body_is_detached_from_caller():
    payload = {"message": "hello", "tags": ["a"]}
    op = Operation(method=HttpMethod.POST, path="/ai/chat", body=payload, queueable=True)

    payload["message"] = "changed"
    payload["tags"].append("b")

    assert op.body == {"message": "hello", "tags": ["a"]}


@pytest.mark.asyncio
async def test_queues_are_isolated_per_owner(queue):
    await queue.enqueue(_chat("from user 1"))

    queue.bind_owner("user-2")
    assert await queue.pending() == []
    await queue.enqueue(_chat("from user 2"))
    assert await queue.clear() == 1

    queue.bind_owner("user-1")
    assert [op.body["message"] for op in await queue.pending()] == ["from user 1"]

    queue.bind_owner(None)
    assert queue.owner_id == ANONYMOUS_OWNER


@pytest.mark.asyncio
async def test_sql_queue_survives_restart(session_factory, connectivity, settings):
    first_run = OfflineQueue(SqlQueueStorage(session_factory), connectivity, settings, owner_id="user-1")
    for text in ("one", "two"):
        await first_run.enqueue(_chat(text))
    await first_run.drain(RecordingSender(lambda op: TransportConnectionError("no route")))

    # New storage and queue objects over the same database
    second_run = OfflineQueue(SqlQueueStorage(session_factory), connectivity, settings, owner_id="user-1")
    pending = await second_run.pending()

    assert [op.body["message"] for op in pending] == ["one", "two"]
    assert [op.retry_count for op in pending] == [1, 0]
    assert all(op.queueable and op.method == HttpMethod.POST for op in pending)

    sender = RecordingSender()
    report = await second_run.drain(sender)
    assert sender.messages == ["one", "two"]
    assert report.remaining == 0


@pytest.mark.asyncio
async def test_sql_queue_keeps_owners_apart(session_factory, connectivity, settings):
    storage = SqlQueueStorage(session_factory)
    await storage.append("user-1", _chat("mine"))
    await storage.append("user-2", _chat("theirs"))

    assert await storage.count("user-1") == 1
    assert (await storage.peek_oldest("user-2")).body == {"message": "theirs"}
    assert await storage.clear("user-1") == 1
    assert await storage.count("user-2") == 1
