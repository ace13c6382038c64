from __future__ import annotations

import typing as t
from dataclasses import dataclass


@dataclass(frozen=True)
class TransportRecord:
    """
    One record of a bulk-put request.

    Parameters
    ----------
    partition_key : str
        Key used by the endpoint to group records.
    data : bytes
        Encoded message payload.
    """

    partition_key: str
    data: bytes


@t.runtime_checkable
class BulkPutTransport(t.Protocol):
    """
    Boundary to the remote record-ingestion endpoint.

    Implementations return normally when every record was persisted and raise
    on any failure, total or partial. The dispatcher does not tell the two
    apart and retries the whole batch either way.
    """

    async def put_records(
        self,
        *,
        stream_name: str,
        records: t.Sequence[TransportRecord],
    ) -> None: ...
