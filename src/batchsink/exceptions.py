"""
Batchsink-specific runtime exceptions.
"""

from __future__ import annotations

import typing as t


class SinkError(Exception):
    """Base class for every error raised by batchsink."""


class ConfigurationError(SinkError, ValueError):
    """
    Raised synchronously when a sink is built from missing or invalid settings.

    Parameters
    ----------
    field : str
        Name of the offending configuration field.
    message : str
        Human readable reason.
    """

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field


class MalformedMessageError(SinkError, ValueError):
    """Raised by ``write`` when raw input cannot be decoded into a message."""


class SinkClosedError(SinkError, RuntimeError):
    """Raised when writing to a sink that has been closed."""


class TransportError(SinkError):
    """A bulk-put call failed. Recoverable through retry."""


class PartialFailureError(TransportError):
    """
    The endpoint accepted the request but rejected some of its records.

    Parameters
    ----------
    failed_count : int
        Number of rejected records.
    total_count : int
        Number of records in the request.
    """

    def __init__(self, failed_count: int, total_count: int) -> None:
        super().__init__(f"{failed_count} of {total_count} record(s) were rejected")
        self.failed_count = failed_count
        self.total_count = total_count


class ExhaustedBatchError(SinkError):
    """
    Every dispatch attempt for a batch failed.

    Parameters
    ----------
    records : tuple[typing.Any, ...]
        The batch that could not be delivered, in dispatch order.
    attempts : int
        Number of transport calls made for the batch.

    Notes
    -----
    The last transport failure is available as ``__cause__``.
    """

    def __init__(self, records: tuple[t.Any, ...], attempts: int) -> None:
        super().__init__(
            f"Failed to put {len(records)} record(s) after {attempts} attempt(s)"
        )
        self.records = records
        self.attempts = attempts
