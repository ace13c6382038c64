"""
Main endpoint for users.
Exposes a `create_sink` function that builds a ready-to-use BatchingSink from
configuration, with an HTTP transport unless one is provided.
"""

import typing as t
from collections.abc import Mapping

from batchsink.batching.core import BatchingSink
from batchsink.batching.routing import PriorityPredicate, PriorityRouter
from batchsink.config import SinkConfig, TransportConfig
from batchsink.transports.base import BulkPutTransport
from batchsink.transports.http import HttpBulkPutTransport


def create_sink(
    config: SinkConfig | t.Mapping[str, t.Any] | None = None,
    *,
    transport: BulkPutTransport | TransportConfig | t.Mapping[str, t.Any] | None = None,
    has_priority: PriorityPredicate | PriorityRouter | None = None,
    **overrides: t.Any,
) -> BatchingSink:
    """
    Build a batching sink.

    Parameters
    ----------
    config : SinkConfig | typing.Mapping[str, typing.Any] | None
        Sink configuration. Keyword overrides are merged on top of it.
    transport : BulkPutTransport | TransportConfig | typing.Mapping | None, optional
        Bulk-put client, or transport settings. When omitted or given as
        settings, an ``HttpBulkPutTransport`` is built from ``config.transport``
        and closed together with the sink.
    has_priority : PriorityPredicate | PriorityRouter | None, optional
        Predicate or router selecting messages that skip batching.
    **overrides : typing.Any
        Top-level configuration fields, e.g. ``stream_name="events"``.

    Returns
    -------
    BatchingSink
        Configured sink.

    Raises
    ------
    ConfigurationError
        When required settings are missing, e.g. ``stream_name``.

    Notes
    -----
    >>> sink = create_sink(stream_name="events", transport=my_transport)
    >>> async with sink:
    ...     sink.write(b'{"hello": "world"}')
    """
    if isinstance(transport, (Mapping, TransportConfig)):
        # transport settings rather than a client
        overrides["transport"] = transport
        transport = None
    sink_config = SinkConfig.load(config, **overrides)

    owns_transport = transport is None
    if transport is None:
        transport = HttpBulkPutTransport(config=sink_config.transport)

    if isinstance(has_priority, PriorityRouter):
        router = has_priority
    else:
        router = PriorityRouter(predicate=has_priority)

    return BatchingSink(
        config=sink_config,
        transport=transport,
        router=router,
        owns_transport=owns_transport,
    )
