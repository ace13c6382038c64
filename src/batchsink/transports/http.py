from __future__ import annotations

import base64
import typing as t

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from batchsink.config import TransportConfig
from batchsink.exceptions import ConfigurationError, PartialFailureError, TransportError
from batchsink.transports.base import TransportRecord

log = structlog.get_logger(__name__)

PUT_RECORDS_TARGET = "Kinesis_20131202.PutRecords"
CONTENT_TYPE = "application/x-amz-json-1.1"


class PutRecordsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    failed_record_count: int = Field(default=0, alias="FailedRecordCount")
    records: list[dict[str, t.Any]] = Field(default_factory=list, alias="Records")


class HttpBulkPutTransport:
    """
    Bulk-put transport speaking the Kinesis ``PutRecords`` JSON protocol over httpx.

    Requests are sent unsigned, which suits local emulators and gateways that
    authenticate upstream.

    Parameters
    ----------
    config : TransportConfig
        Endpoint and client settings. ``endpoint`` is required.
    """

    def __init__(self, config: TransportConfig) -> None:
        if not config.endpoint:
            raise ConfigurationError(field="transport.endpoint", message="is required")
        self._config = config
        self._endpoint = config.endpoint.rstrip("/") + "/"
        self._client: httpx.AsyncClient | None = None
        self._client_factory: t.Callable[[], httpx.AsyncClient] = lambda: httpx.AsyncClient(
            timeout=config.timeout_seconds
        )

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def _build_payload(
        self,
        *,
        stream_name: str,
        records: t.Sequence[TransportRecord],
    ) -> dict[str, t.Any]:
        """
        Build the ``PutRecords`` request body.

        Parameters
        ----------
        stream_name : str
            Destination stream.
        records : typing.Sequence[TransportRecord]
            Records in request order.

        Returns
        -------
        dict[str, typing.Any]
            JSON body with base64 encoded record data.
        """
        return {
            "StreamName": stream_name,
            "Records": [
                {
                    "Data": base64.b64encode(record.data).decode("ascii"),
                    "PartitionKey": record.partition_key,
                }
                for record in records
            ],
        }

    async def put_records(
        self,
        *,
        stream_name: str,
        records: t.Sequence[TransportRecord],
    ) -> None:
        """
        Send one ``PutRecords`` request.

        Raises
        ------
        TransportError
            On any HTTP or protocol failure.
        PartialFailureError
            When the endpoint reports rejected records.
        """
        if self._client is None:
            self._client = self._client_factory()
        headers = {
            **self._config.headers,
            "Content-Type": CONTENT_TYPE,
            "X-Amz-Target": PUT_RECORDS_TARGET,
        }
        try:
            response = await self._client.post(
                url=self._endpoint,
                json=self._build_payload(stream_name=stream_name, records=records),
                headers=headers,
            )
            response.raise_for_status()
            result = PutRecordsResponse.model_validate(response.json())
        except httpx.HTTPError as e:
            raise TransportError(f"PutRecords request failed: {e}") from e
        except (ValueError, ValidationError) as e:
            raise TransportError(f"Unreadable PutRecords response: {e}") from e

        if result.failed_record_count:
            log.debug(
                event="PutRecords partially failed",
                stream_name=stream_name,
                failed_count=result.failed_record_count,
                record_count=len(records),
            )
            raise PartialFailureError(
                failed_count=result.failed_record_count,
                total_count=len(records),
            )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
