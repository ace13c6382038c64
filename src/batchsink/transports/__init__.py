from batchsink.transports.base import BulkPutTransport, TransportRecord
from batchsink.transports.http import HttpBulkPutTransport

__all__ = [
    "BulkPutTransport",
    "HttpBulkPutTransport",
    "TransportRecord",
]
