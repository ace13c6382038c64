"""
Cycle-safe JSON encoding of arbitrary message payloads.
"""

from __future__ import annotations

import dataclasses
import json
import math
import typing as t
from collections.abc import Mapping

import structlog
from pydantic import BaseModel

log = structlog.get_logger(__name__)

CIRCULAR_MARKER = "[Circular]"

_SCALARS = (str, int, float, bool, type(None))


def sanitize(value: t.Any) -> t.Any:
    """
    Convert a value into a JSON-compatible structure without cycles.

    Parameters
    ----------
    value : typing.Any
        Arbitrary payload, possibly self-referential.

    Returns
    -------
    typing.Any
        Structure made of dicts, lists and scalars only. Any container already
        present on the current ancestor path is replaced by ``"[Circular]"``.
        Non-finite floats become ``None``.

    Notes
    -----
    Only ancestor cycles are replaced. A container reachable twice through
    non-cyclic paths is encoded twice.
    """
    return _sanitize(value=value, ancestors=set())


def _sanitize(*, value: t.Any, ancestors: set[int]) -> t.Any:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")

    value_id = id(value)
    if value_id in ancestors:
        return CIRCULAR_MARKER

    if isinstance(value, BaseModel):
        fields: t.Any = value.model_dump(mode="python")
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = {field.name: getattr(value, field.name) for field in dataclasses.fields(value)}
    elif isinstance(value, (Mapping, list, tuple, set, frozenset)):
        fields = value
    else:
        try:
            return str(value)
        except Exception:
            return object.__repr__(value)

    ancestors.add(value_id)
    try:
        if isinstance(fields, Mapping):
            return {
                key if isinstance(key, str) else str(key): _sanitize(
                    value=item, ancestors=ancestors
                )
                for key, item in fields.items()
            }
        return [_sanitize(value=item, ancestors=ancestors) for item in fields]
    finally:
        ancestors.discard(value_id)


def encode(value: t.Any) -> bytes:
    """
    Encode a message payload to compact UTF-8 JSON bytes.

    Never raises: cycles are replaced by ``"[Circular]"`` and values that
    cannot be traversed fall back to the JSON string of their default ``repr``.

    Parameters
    ----------
    value : typing.Any
        Message payload.

    Returns
    -------
    bytes
        Encoded payload, keys kept in insertion order.
    """
    try:
        return json.dumps(
            sanitize(value=value), separators=(",", ":"), allow_nan=False
        ).encode("utf-8")
    except Exception as error:
        log.warning(
            event="Falling back to repr encoding",
            value_type=type(value).__name__,
            error=str(object=error),
        )
        return json.dumps(object.__repr__(value)).encode("utf-8")
