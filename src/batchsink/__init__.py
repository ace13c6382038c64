from .batching import BatchAccumulator as BatchAccumulator
from .batching import BatchingSink as BatchingSink
from .batching import Dispatcher as Dispatcher
from .batching import PriorityRouter as PriorityRouter
from .batching import create_sink as create_sink
from .config import BufferConfig as BufferConfig
from .config import SinkConfig as SinkConfig
from .config import TransportConfig as TransportConfig
from .exceptions import ConfigurationError as ConfigurationError
from .exceptions import ExhaustedBatchError as ExhaustedBatchError
from .exceptions import MalformedMessageError as MalformedMessageError
from .exceptions import PartialFailureError as PartialFailureError
from .exceptions import SinkClosedError as SinkClosedError
from .exceptions import SinkError as SinkError
from .exceptions import TransportError as TransportError
from .models import DerivedKey as DerivedKey
from .models import DispatchResult as DispatchResult
from .models import FixedKey as FixedKey
from .serializer import encode as encode

__all__ = [
    "BatchAccumulator",
    "BatchingSink",
    "BufferConfig",
    "ConfigurationError",
    "DerivedKey",
    "DispatchResult",
    "Dispatcher",
    "ExhaustedBatchError",
    "FixedKey",
    "MalformedMessageError",
    "PartialFailureError",
    "PriorityRouter",
    "SinkClosedError",
    "SinkConfig",
    "SinkError",
    "TransportConfig",
    "TransportError",
    "create_sink",
    "encode",
]
