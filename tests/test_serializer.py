"""
Tests for cycle-safe payload encoding.
"""

import datetime
import json
from dataclasses import dataclass

from pydantic import BaseModel

from batchsink.serializer import CIRCULAR_MARKER, encode, sanitize


def test_encode_self_reference():
    """A direct self-reference becomes the circular marker."""
    message = {"hi": "hello"}
    message["message"] = message

    assert encode(message) == b'{"hi":"hello","message":"[Circular]"}'


def test_encode_mutual_reference():
    """Mutually referencing containers terminate."""
    a: dict = {"name": "a"}
    b: dict = {"name": "b", "peer": a}
    a["peer"] = b

    assert json.loads(encode(a)) == {
        "name": "a",
        "peer": {"name": "b", "peer": CIRCULAR_MARKER},
    }


def test_encode_self_referencing_list():
    items: list = [1, 2]
    items.append(items)

    assert encode(items) == b'[1,2,"[Circular]"]'


def test_shared_reference_is_not_circular():
    """A value reachable twice through non-cyclic paths is encoded twice."""
    shared = {"value": 1}
    message = {"left": shared, "right": [shared, shared]}

    assert json.loads(encode(message)) == {
        "left": {"value": 1},
        "right": [{"value": 1}, {"value": 1}],
    }


def test_encode_keeps_insertion_order():
    message = {"z": 1, "a": 2, "m": 3}

    assert encode(message) == b'{"z":1,"a":2,"m":3}'


def test_encode_scalars():
    assert encode("text") == b'"text"'
    assert encode(3) == b"3"
    assert encode(None) == b"null"
    assert encode(True) == b"true"


def test_encode_unknown_values_as_strings():
    message = {
        "at": datetime.date(2024, 1, 2),
        "raw": b"bytes",
        "tags": ("a", "b"),
        1: "int key",
    }

    assert json.loads(encode(message)) == {
        "at": "2024-01-02",
        "raw": "bytes",
        "tags": ["a", "b"],
        "1": "int key",
    }


def test_encode_models_and_dataclasses():
    class Event(BaseModel):
        name: str
        count: int

    @dataclass
    class Wrapper:
        event: Event
        note: str

    assert json.loads(encode(Wrapper(event=Event(name="click", count=2), note="n"))) == {
        "event": {"name": "click", "count": 2},
        "note": "n",
    }


def test_encode_dataclass_cycle():
    @dataclass
    class Node:
        name: str
        child: object = None

    node = Node(name="root")
    node.child = node

    assert json.loads(encode(node)) == {"name": "root", "child": CIRCULAR_MARKER}


def test_encode_never_raises_on_broken_str():
    class Broken:
        def __str__(self) -> str:
            raise RuntimeError("boom")

    encoded = encode({"ok": 1, "value": Broken()})

    decoded = json.loads(encoded)
    assert decoded["ok"] == 1
    assert decoded["value"].startswith("<")
    assert "Broken object at" in decoded["value"]


def test_non_finite_floats_become_null():
    encoded = encode({"nan": float("nan"), "inf": [float("inf"), -float("inf")], "x": 1.5})

    assert encoded == b'{"nan":null,"inf":[null,null],"x":1.5}'


def test_sanitize_does_not_mutate_input():
    message = {"hi": "hello"}
    message["message"] = message

    sanitized = sanitize(message)

    assert sanitized == {"hi": "hello", "message": CIRCULAR_MARKER}
    assert message["message"] is message
