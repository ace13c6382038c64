"""
Turn batches into bulk-put requests with bounded whole-batch retry.
"""

from __future__ import annotations

import inspect
import typing as t

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_none,
)

from batchsink.exceptions import ExhaustedBatchError
from batchsink.models import (
    Batch,
    DispatchResult,
    Message,
    PartitionKeySource,
    partition_key_source,
)
from batchsink.serializer import encode
from batchsink.transports.base import BulkPutTransport, TransportRecord

log = structlog.get_logger(__name__)

ErrorObserver = t.Callable[[ExhaustedBatchError], t.Awaitable[None] | None]


class Dispatcher:
    """
    Send batches through a bulk-put transport.

    A failed bulk put is retried with the entire, unmodified batch until it
    succeeds or ``max_retries`` additional attempts have been made. Partial
    and total failures are treated the same way.

    Parameters
    ----------
    transport : BulkPutTransport
        Bulk ingestion client.
    stream_name : str
        Destination stream.
    partition_key : PartitionKeySource | str | typing.Callable | None, optional
        Key source applied to every message. A random key per message by default.
    max_retries : int, optional
        Additional attempts after the first failure.
    retry_backoff_ms : int, optional
        Base delay before a retry, doubled after every failure. ``0`` retries
        immediately.
    """

    def __init__(
        self,
        *,
        transport: BulkPutTransport,
        stream_name: str,
        partition_key: PartitionKeySource | str | t.Callable[[Message], str] | None = None,
        max_retries: int = 2,
        retry_backoff_ms: int = 0,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._transport = transport
        self._stream_name = stream_name
        self._partition_key = partition_key_source(value=partition_key)
        self._max_retries = max_retries
        self._retry_backoff_seconds = retry_backoff_ms / 1000.0
        self._error_observers: list[ErrorObserver] = []

    @property
    def partition_key(self) -> PartitionKeySource:
        return self._partition_key

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def add_error_observer(self, observer: ErrorObserver) -> None:
        """
        Register a callable notified once per exhausted batch.

        Parameters
        ----------
        observer : ErrorObserver
            Sync or async callable receiving the ``ExhaustedBatchError``.
        """
        self._error_observers.append(observer)

    def build_records(self, batch: Batch) -> list[TransportRecord]:
        """
        Build transport records for a batch, preserving its order.

        Parameters
        ----------
        batch : Batch
            Messages to encode.

        Returns
        -------
        list[TransportRecord]
            One record per message.
        """
        return [
            TransportRecord(
                partition_key=self._partition_key.resolve(message),
                data=encode(message),
            )
            for message in batch
        ]

    async def dispatch(self, batch: Batch) -> DispatchResult:
        """
        Put a batch, retrying the whole batch on failure.

        Parameters
        ----------
        batch : Batch
            Messages to send. An empty batch is a no-op.

        Returns
        -------
        DispatchResult
            Outcome of the dispatch. ``error`` is set once every attempt failed,
            or with ``attempts=0`` when a partition key could not be resolved;
            registered error observers have been notified by then.
        """
        if not batch:
            log.debug(event="Skipping empty batch")
            return DispatchResult(batch=batch, attempts=0)

        try:
            records = self.build_records(batch=batch)
        except Exception as e:
            # a key function failing is not retryable
            return await self._fail(batch=batch, attempts=0, cause=e)

        attempts = 0
        try:
            async for attempt in self._retrying():
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    await self._transport.put_records(
                        stream_name=self._stream_name,
                        records=records,
                    )
        except Exception as e:
            return await self._fail(batch=batch, attempts=attempts, cause=e)

        log.debug(
            event="Bulk put succeeded",
            stream_name=self._stream_name,
            attempt=attempts,
            record_count=len(records),
        )
        return DispatchResult(batch=batch, attempts=attempts)

    def _retrying(self) -> AsyncRetrying:
        if self._retry_backoff_seconds:
            wait = wait_exponential(multiplier=self._retry_backoff_seconds)
        else:
            wait = wait_none()
        return AsyncRetrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait,
            retry=retry_if_exception_type(Exception),
            after=self._log_failed_attempt,
            reraise=True,
        )

    def _log_failed_attempt(self, retry_state: RetryCallState) -> None:
        log.warning(
            event="Bulk put failed",
            stream_name=self._stream_name,
            attempt=retry_state.attempt_number,
            total_attempts=self._max_retries + 1,
            error=str(object=retry_state.outcome.exception()),
        )

    async def _fail(self, *, batch: Batch, attempts: int, cause: Exception) -> DispatchResult:
        error = ExhaustedBatchError(records=batch, attempts=attempts)
        error.__cause__ = cause
        log.error(
            event="Dropping batch",
            stream_name=self._stream_name,
            attempts=attempts,
            record_count=len(batch),
            error=str(object=cause),
        )
        await self._notify_error(error=error)
        return DispatchResult(batch=batch, attempts=attempts, error=error)

    async def _notify_error(self, *, error: ExhaustedBatchError) -> None:
        for observer in list(self._error_observers):
            try:
                outcome = observer(error)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                log.error(
                    event="Error observer failed",
                    observer=getattr(observer, "__name__", repr(observer)),
                    error=str(object=e),
                )
