"""
Tests for the BatchingSink engine.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from batchsink.batching.core import BatchingSink
from batchsink.batching.routing import PriorityRouter
from batchsink.config import SinkConfig
from batchsink.exceptions import ExhaustedBatchError, MalformedMessageError, SinkClosedError
from batchsink.models import DerivedKey, FixedKey
from tests.mocks.transports import FailingTransport, RecordingTransport

MESSAGE = {"test": True}


def raw(message: dict) -> bytes:
    return json.dumps(message).encode("utf-8")


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def sink(transport: RecordingTransport) -> BatchingSink:
    """
    Create a sink with a spied dispatch.

    Returns
    -------
    BatchingSink
        Sink flushing after 10 messages or 1 second.
    """
    config = SinkConfig.load({"stream_name": "test", "buffer": {"timeout_ms": 1000}})
    sink = BatchingSink(config=config, transport=transport)
    sink.dispatcher.dispatch = AsyncMock()
    return sink


def test_default_configuration(transport: RecordingTransport):
    sink = BatchingSink(config=SinkConfig.load({"stream_name": "test"}), transport=transport)

    assert sink.stream_name == "test"
    assert not sink.object_mode
    assert isinstance(sink.router, PriorityRouter)
    assert isinstance(sink.partition_key, DerivedKey)
    assert sink.accumulator.pending == 0
    assert sink.accumulator.size_threshold == 10
    assert sink.dispatcher.max_retries == 2


def test_object_mode_and_fixed_key(transport: RecordingTransport):
    config = SinkConfig.load(
        {"stream_name": "test", "object_mode": True, "partition_key": "tenant-1"}
    )
    sink = BatchingSink(config=config, transport=transport)

    assert sink.object_mode
    assert sink.partition_key == FixedKey(value="tenant-1")


@pytest.mark.asyncio
async def test_priority_message_dispatched_immediately(sink: BatchingSink):
    sink.router = PriorityRouter(predicate=lambda message: True)

    sink.write(raw(MESSAGE))

    sink.dispatcher.dispatch.assert_called_once_with((MESSAGE,))
    assert sink.accumulator.pending == 0
    assert not sink.accumulator.timer_armed
    await sink.wait_idle()


@pytest.mark.asyncio
async def test_message_queued_with_timer(sink: BatchingSink):
    sink.write(raw(MESSAGE))

    sink.dispatcher.dispatch.assert_not_called()
    assert sink.accumulator.timer_armed
    assert sink.accumulator.pending == 1
    sink.accumulator.close()


@pytest.mark.asyncio
async def test_threshold_dispatches_once(sink: BatchingSink):
    for _ in range(10):
        sink.write(raw(MESSAGE))

    sink.dispatcher.dispatch.assert_called_once_with((MESSAGE,) * 10)
    assert sink.accumulator.pending == 0
    await sink.wait_idle()


@pytest.mark.asyncio
async def test_timer_dispatches_once(transport: RecordingTransport):
    """Messages written within the window are dispatched together, once."""
    config = SinkConfig.load({"stream_name": "test", "buffer": {"timeout_ms": 200}})
    sink = BatchingSink(config=config, transport=transport)
    sink.dispatcher.dispatch = AsyncMock()

    sink.write(raw(MESSAGE))
    await asyncio.sleep(0.1)
    sink.write(raw(MESSAGE))
    await asyncio.sleep(0.05)
    sink.write(raw(MESSAGE))

    await asyncio.sleep(0.1)
    sink.dispatcher.dispatch.assert_called_once_with((MESSAGE, MESSAGE, MESSAGE))

    await asyncio.sleep(0.3)
    sink.dispatcher.dispatch.assert_called_once_with((MESSAGE, MESSAGE, MESSAGE))


@pytest.mark.asyncio
async def test_flush_dispatches_below_threshold(sink: BatchingSink):
    for n in (1, 2, 3):
        sink.accumulator.enqueue(n)

    await sink.flush()

    sink.dispatcher.dispatch.assert_awaited_once_with((1, 2, 3))
    assert not sink.accumulator.timer_armed


@pytest.mark.asyncio
async def test_flush_empty_queue(transport: RecordingTransport):
    sink = BatchingSink(config=SinkConfig.load({"stream_name": "test"}), transport=transport)

    result = await sink.flush()

    assert result.ok
    assert result.batch == ()
    assert transport.calls == []


@pytest.mark.asyncio
async def test_object_mode_passes_values_through(transport: RecordingTransport):
    config = SinkConfig.load({"stream_name": "test", "object_mode": True})
    sink = BatchingSink(config=config, transport=transport)
    message = {"nested": [1, 2]}

    sink.write(message)
    await sink.flush()

    assert transport.payloads == [[message]]


@pytest.mark.asyncio
async def test_write_decodes_str_input(transport: RecordingTransport):
    sink = BatchingSink(config=SinkConfig.load({"stream_name": "test"}), transport=transport)

    sink.write('{"from": "str"}')
    await sink.flush()

    assert transport.payloads == [[{"from": "str"}]]


@pytest.mark.asyncio
async def test_write_rejects_malformed_input(sink: BatchingSink):
    with pytest.raises(MalformedMessageError):
        sink.write(b"{not json")
    with pytest.raises(MalformedMessageError):
        sink.write({"already": "decoded"})

    assert sink.accumulator.pending == 0


@pytest.mark.asyncio
async def test_exhausted_batch_reported_to_observers():
    """A 2-message batch against a failing transport: 3 calls, one error event."""
    transport = FailingTransport()
    config = SinkConfig.load({"stream_name": "test", "object_mode": True})
    sink = BatchingSink(config=config, transport=transport)
    observed: list[ExhaustedBatchError] = []
    sink.on_error(observed.append)

    sink.write(MESSAGE)
    sink.write(MESSAGE)
    result = await sink.flush()

    assert result.error is not None
    assert len(transport.calls) == 3
    assert observed == [result.error]
    assert len(observed[0].records) == 2


@pytest.mark.asyncio
async def test_unresolvable_partition_key_reported_to_observers(transport: RecordingTransport):
    config = SinkConfig.load(
        {
            "stream_name": "test",
            "object_mode": True,
            "partition_key": lambda message: message["user"],
            "buffer": {"size_threshold": 2},
        }
    )
    sink = BatchingSink(config=config, transport=transport)
    observed: list[ExhaustedBatchError] = []
    sink.on_error(observed.append)

    sink.write({"user": "a"})
    sink.write({"nouser": 1})
    await sink.wait_idle()

    assert transport.calls == []
    assert len(observed) == 1
    assert observed[0].records == ({"user": "a"}, {"nouser": 1})
    assert isinstance(observed[0].__cause__, KeyError)


@pytest.mark.asyncio
async def test_background_dispatch_reaches_transport(transport: RecordingTransport):
    config = SinkConfig.load({"stream_name": "test", "buffer": {"size_threshold": 2}})
    sink = BatchingSink(config=config, transport=transport)

    sink.write(raw({"n": 1}))
    sink.write(raw({"n": 2}))
    sink.write(raw({"n": 3}))
    assert sink.inflight == 1
    await sink.wait_idle()

    assert transport.payloads == [[{"n": 1}, {"n": 2}]]
    assert sink.accumulator.pending == 1
    await sink.close()
    assert transport.payloads == [[{"n": 1}, {"n": 2}], [{"n": 3}]]


@pytest.mark.asyncio
async def test_close_flushes_and_rejects_writes(transport: RecordingTransport):
    sink = BatchingSink(
        config=SinkConfig.load({"stream_name": "test"}),
        transport=transport,
        owns_transport=True,
    )
    async with sink:
        sink.write(raw(MESSAGE))

    assert sink.closed
    assert transport.payloads == [[MESSAGE]]
    assert transport.closed
    assert not sink.accumulator.timer_armed
    with pytest.raises(SinkClosedError):
        sink.write(raw(MESSAGE))
    await sink.close()
    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_close_leaves_borrowed_transport_open(transport: RecordingTransport):
    sink = BatchingSink(config=SinkConfig.load({"stream_name": "test"}), transport=transport)

    await sink.close()

    assert not transport.closed


@pytest.mark.asyncio
async def test_writes_continue_while_dispatch_in_flight():
    release = asyncio.Event()

    class SlowTransport(RecordingTransport):
        async def put_records(self, *, stream_name, records):
            await release.wait()
            await super().put_records(stream_name=stream_name, records=records)

    transport = SlowTransport()
    config = SinkConfig.load(
        {"stream_name": "test", "object_mode": True, "buffer": {"size_threshold": 2}}
    )
    sink = BatchingSink(config=config, transport=transport)

    for n in range(4):
        sink.write(n)
    await asyncio.sleep(0)

    assert sink.inflight == 2
    release.set()
    await sink.wait_idle()
    assert sorted(transport.payloads) == [[0, 1], [2, 3]]
