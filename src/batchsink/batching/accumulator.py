"""
Pending message buffer with size and time based flushing.
"""

from __future__ import annotations

import asyncio
import typing as t

import structlog

from batchsink.models import Batch, Message

log = structlog.get_logger(__name__)

BatchCallback = t.Callable[[Batch], None]


class BatchAccumulator:
    """
    Own the pending queue and its flush timer.

    A batch is handed to ``on_batch`` when either:
    - The queue reaches ``size_threshold`` messages, OR
    - ``timeout_ms`` elapses after the first message of the batch was queued

    Whichever happens first cancels the other. A timer task exists if and only
    if the queue holds between one and ``size_threshold - 1`` messages.

    Notes
    -----
    All methods must run on the event loop thread. ``enqueue`` must be called
    from inside a running loop since it may start the timer task.
    """

    def __init__(
        self,
        *,
        size_threshold: int,
        timeout_ms: int,
        on_batch: BatchCallback,
    ) -> None:
        """
        Initialize the accumulator.

        Parameters
        ----------
        size_threshold : int
            Drain synchronously when this many messages are queued.
        timeout_ms : int
            Drain this many milliseconds after the queue became non-empty.
        on_batch : BatchCallback
            Receives every batch drained by the threshold or the timer.
        """
        if size_threshold <= 0:
            raise ValueError("size_threshold must be > 0")
        if timeout_ms < 0:
            raise ValueError("timeout_ms must be >= 0")
        self._size_threshold = size_threshold
        self._timeout_seconds = timeout_ms / 1000.0
        self._on_batch = on_batch
        self._queue: list[Message] = []
        self._timer: asyncio.Task[None] | None = None

    @property
    def size_threshold(self) -> int:
        return self._size_threshold

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def enqueue(self, message: Message) -> None:
        """
        Append one message and flush if the size threshold is reached.

        Parameters
        ----------
        message : Message
            Normalized message.
        """
        self._queue.append(message)
        pending_count = len(self._queue)
        log.debug(event="Pending queue updated", pending_count=pending_count)

        if pending_count >= self._size_threshold:
            log.debug(event="Batch size reached", size_threshold=self._size_threshold)
            self._on_batch(self.drain())
            return

        # Start window timer if this is the first message
        if pending_count == 1:
            log.debug(
                event="Starting batch window timer",
                timeout_seconds=self._timeout_seconds,
            )
            self._timer = asyncio.create_task(
                coro=self._window_timer(),
                name="batchsink_window_timer",
            )

    def drain(self) -> Batch:
        """
        Take the whole queue as one batch and cancel the window timer.

        Returns
        -------
        Batch
            Queued messages in insertion order. Empty when nothing was queued.
        """
        timer = self._timer
        self._timer = None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

        batch = tuple(self._queue)
        self._queue = []
        log.debug(event="Drained pending queue", drained_count=len(batch))
        return batch

    def close(self) -> Batch:
        """Cancel the timer and return whatever is still queued."""
        return self.drain()

    async def _window_timer(self) -> None:
        """Drain and forward the queue once the window elapses."""
        try:
            await asyncio.sleep(delay=self._timeout_seconds)
        except asyncio.CancelledError:
            log.debug(event="Window timer cancelled")
            raise
        log.debug(event="Batch window elapsed, flushing", pending_count=len(self._queue))
        self._on_batch(self.drain())
