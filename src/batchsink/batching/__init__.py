from batchsink.batching.accumulator import BatchAccumulator
from batchsink.batching.api import create_sink
from batchsink.batching.core import BatchingSink
from batchsink.batching.dispatcher import Dispatcher
from batchsink.batching.routing import PriorityRouter

__all__ = [
    "BatchAccumulator",
    "BatchingSink",
    "Dispatcher",
    "PriorityRouter",
    "create_sink",
]
