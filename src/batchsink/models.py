from __future__ import annotations

import typing as t
import uuid
from dataclasses import dataclass

if t.TYPE_CHECKING:
    from batchsink.exceptions import ExhaustedBatchError

Message = t.Any
Batch = tuple[Message, ...]


@dataclass(frozen=True)
class FixedKey:
    """Use the same partition key for every record."""

    value: str

    def resolve(self, message: Message) -> str:
        return self.value


@dataclass(frozen=True)
class DerivedKey:
    """Compute the partition key of each record from its message."""

    fn: t.Callable[[Message], str]

    def resolve(self, message: Message) -> str:
        return str(self.fn(message))


PartitionKeySource = FixedKey | DerivedKey


def _random_key(message: Message) -> str:
    return str(object=uuid.uuid4())


def partition_key_source(
    value: str | t.Callable[[Message], str] | PartitionKeySource | None = None,
) -> PartitionKeySource:
    """
    Coerce a user supplied partition key setting into a key source.

    Parameters
    ----------
    value : str | typing.Callable | PartitionKeySource | None
        Fixed key, key function, existing source, or ``None`` for a fresh
        random key per message.

    Returns
    -------
    PartitionKeySource
        Resolved key source.
    """
    if value is None:
        return DerivedKey(fn=_random_key)
    if isinstance(value, (FixedKey, DerivedKey)):
        return value
    if isinstance(value, str):
        return FixedKey(value=value)
    if callable(value):
        return DerivedKey(fn=value)
    raise TypeError(f"Unsupported partition key source: {type(value).__name__}")


@dataclass(frozen=True)
class DispatchResult:
    """
    Outcome of dispatching one batch.

    Parameters
    ----------
    batch : Batch
        The dispatched batch.
    attempts : int
        Number of transport calls made. ``0`` for an empty batch.
    error : ExhaustedBatchError | None
        Set when every attempt failed.
    """

    batch: Batch
    attempts: int
    error: ExhaustedBatchError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
