import pytest


@pytest.fixture(autouse=True)
def test_clear_env(monkeypatch):
    for name in (
        "BATCHSINK_STREAM_NAME",
        "BATCHSINK_OBJECT_MODE",
        "BATCHSINK_PARTITION_KEY",
        "BATCHSINK_SIZE_THRESHOLD",
        "BATCHSINK_TIMEOUT_MS",
        "BATCHSINK_MAX_RETRIES",
        "BATCHSINK_RETRY_BACKOFF_MS",
        "BATCHSINK_ENDPOINT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def test_skip_dotenv(monkeypatch):
    monkeypatch.setattr("batchsink.config.load_dotenv", lambda *args, **kwargs: False)
