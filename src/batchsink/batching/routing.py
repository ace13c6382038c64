"""
Decide which messages skip the batching buffer.
"""

from __future__ import annotations

import typing as t

from batchsink.models import Message

PriorityPredicate = t.Callable[[Message], bool]


def never_prioritize(message: Message) -> bool:
    return False


class PriorityRouter:
    """
    Route messages either to the buffer or straight to the dispatcher.

    Parameters
    ----------
    predicate : PriorityPredicate | None, optional
        Returns ``True`` for messages that must be dispatched alone and
        immediately. Defaults to batching everything.

    Notes
    -----
    Subclasses may override ``has_priority`` instead of passing a predicate.
    The predicate must be free of side effects: it is evaluated exactly once
    per inbound message, before any queueing.
    """

    def __init__(self, predicate: PriorityPredicate | None = None) -> None:
        self._predicate = predicate or never_prioritize

    def has_priority(self, message: Message) -> bool:
        return bool(self._predicate(message))
