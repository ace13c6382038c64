"""
Core engine wiring the priority router, the accumulator and the dispatcher.

Messages written to the sink are either dispatched alone right away (priority
messages) or buffered until the accumulator hands out a batch. Dispatches run
as background tasks so writers are never blocked by the bulk-put call.
"""

from __future__ import annotations

import asyncio
import json
import typing as t
import uuid

import structlog

from batchsink.batching.accumulator import BatchAccumulator
from batchsink.batching.dispatcher import Dispatcher, ErrorObserver
from batchsink.batching.routing import PriorityRouter
from batchsink.config import SinkConfig
from batchsink.exceptions import MalformedMessageError, SinkClosedError
from batchsink.logging import logging_context
from batchsink.models import Batch, DispatchResult, Message, PartitionKeySource
from batchsink.transports.base import BulkPutTransport

log = structlog.get_logger(__name__)


class BatchingSink:
    """
    Batch messages and forward them to a bulk ingestion endpoint.

    Parameters
    ----------
    config : SinkConfig
        Validated sink configuration.
    transport : BulkPutTransport
        Bulk-put client used by the dispatcher.
    router : PriorityRouter | None, optional
        Decides which messages bypass batching. Everything is batched by default.
    owns_transport : bool, optional
        Close the transport when the sink closes.

    Notes
    -----
    A sink has a single writer and lives on one event loop. ``write`` must be
    called from inside that running loop.
    """

    def __init__(
        self,
        config: SinkConfig,
        *,
        transport: BulkPutTransport,
        router: PriorityRouter | None = None,
        owns_transport: bool = False,
    ) -> None:
        self._config = config
        self._transport = transport
        self._owns_transport = owns_transport
        self.router = router or PriorityRouter()
        self._dispatcher = Dispatcher(
            transport=transport,
            stream_name=config.stream_name,
            partition_key=config.partition_key,
            max_retries=config.buffer.max_retries,
            retry_backoff_ms=config.buffer.retry_backoff_ms,
        )
        self._accumulator = BatchAccumulator(
            size_threshold=config.buffer.size_threshold,
            timeout_ms=config.buffer.timeout_ms,
            on_batch=self._dispatch_in_background,
        )
        self._inflight: set[asyncio.Task[DispatchResult]] = set()
        self._closed = False

        log.debug(
            event="Initialized BatchingSink",
            stream_name=config.stream_name,
            object_mode=config.object_mode,
            size_threshold=config.buffer.size_threshold,
            timeout_ms=config.buffer.timeout_ms,
            max_retries=config.buffer.max_retries,
        )

    @property
    def config(self) -> SinkConfig:
        return self._config

    @property
    def stream_name(self) -> str:
        return self._config.stream_name

    @property
    def object_mode(self) -> bool:
        return self._config.object_mode

    @property
    def partition_key(self) -> PartitionKeySource:
        return self._dispatcher.partition_key

    @property
    def transport(self) -> BulkPutTransport:
        return self._transport

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    @property
    def accumulator(self) -> BatchAccumulator:
        return self._accumulator

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    @property
    def closed(self) -> bool:
        return self._closed

    def on_error(self, observer: ErrorObserver) -> None:
        """Register an observer notified once per batch whose retries ran out."""
        self._dispatcher.add_error_observer(observer)

    def has_priority(self, message: Message) -> bool:
        return self.router.has_priority(message)

    def normalize(self, raw_input: t.Any) -> Message:
        """
        Turn raw input into a message.

        Parameters
        ----------
        raw_input : typing.Any
            JSON encoded ``bytes`` or ``str``, or any value in object mode.

        Returns
        -------
        Message
            Decoded message, or ``raw_input`` itself in object mode.

        Raises
        ------
        MalformedMessageError
            When raw input is not valid JSON.
        """
        if self._config.object_mode:
            return raw_input
        if not isinstance(raw_input, (bytes, bytearray, str)):
            raise MalformedMessageError(
                f"Expected bytes or str outside object mode, got {type(raw_input).__name__}"
            )
        try:
            return json.loads(raw_input)
        except ValueError as e:
            log.warning(event="Rejected undecodable message", error=str(object=e))
            raise MalformedMessageError(f"Message is not valid JSON: {e}") from e

    def write(self, raw_input: t.Any) -> None:
        """
        Accept one message.

        Priority messages are dispatched immediately as a single-message
        batch, the others are queued in the accumulator.

        Parameters
        ----------
        raw_input : typing.Any
            Raw message, see ``normalize``.
        """
        if self._closed:
            raise SinkClosedError("Cannot write to a closed sink")
        message = self.normalize(raw_input=raw_input)
        with logging_context(stream_name=self._config.stream_name):
            if self.has_priority(message):
                log.debug(event="Dispatching priority message")
                self._dispatch_in_background((message,))
                return
            self._accumulator.enqueue(message)

    async def flush(self) -> DispatchResult:
        """
        Dispatch everything currently queued, whatever its size.

        Returns
        -------
        DispatchResult
            Outcome of the dispatch. Empty queues produce an empty result.
        """
        with logging_context(stream_name=self._config.stream_name):
            batch = self._accumulator.drain()
            log.debug(event="Manual flush", record_count=len(batch))
            return await self._dispatcher.dispatch(batch)

    async def wait_idle(self) -> None:
        """Wait until every background dispatch has finished."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def close(self) -> None:
        """
        Stop accepting messages and dispatch what is left.

        Notes
        -----
        The window timer is cancelled, remaining messages are dispatched and
        every in-flight dispatch is awaited. Calling ``close`` twice is a no-op.
        """
        if self._closed:
            return
        self._closed = True
        with logging_context(stream_name=self._config.stream_name):
            batch = self._accumulator.close()
            if batch:
                log.info(event="Submitting final batch on close", record_count=len(batch))
                self._dispatch_in_background(batch)
            await self.wait_idle()
            if self._owns_transport:
                aclose = getattr(self._transport, "aclose", None)
                if aclose is not None:
                    await aclose()
            log.debug(event="BatchingSink closed")

    async def __aenter__(self) -> BatchingSink:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        await self.close()

    def _dispatch_in_background(self, batch: Batch) -> None:
        task = asyncio.create_task(
            coro=self._dispatcher.dispatch(batch),
            name=f"batchsink_dispatch_{uuid.uuid4()}",
        )
        self._inflight.add(task)
        task.add_done_callback(self._on_dispatch_done)

    def _on_dispatch_done(self, task: asyncio.Task[DispatchResult]) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            log.warning(event="Dispatch cancelled", stream_name=self._config.stream_name)
            return
        error = task.exception()
        if error is not None:
            log.error(
                event="Dispatch crashed",
                stream_name=self._config.stream_name,
                error=str(object=error),
            )
