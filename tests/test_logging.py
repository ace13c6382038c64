import structlog

from batchsink.logging import logging_context


def test_logging_context_binds_missing_keys():
    with logging_context(stream_name="events"):
        assert structlog.contextvars.get_contextvars() == {"stream_name": "events"}
    assert structlog.contextvars.get_contextvars() == {}


def test_logging_context_keeps_outer_binding():
    with logging_context(stream_name="outer"):
        with logging_context(stream_name="inner", attempt=1):
            assert structlog.contextvars.get_contextvars() == {
                "stream_name": "outer",
                "attempt": 1,
            }
        assert structlog.contextvars.get_contextvars() == {"stream_name": "outer"}
