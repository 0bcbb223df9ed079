from vstream.settings import Settings


def test_defaults():
    config = Settings(_env_file=None)
    assert config.VALKEY_HOST == "localhost"
    assert config.VALKEY_PORT == 6379
    assert config.STREAM_MAX_LENGTH == 10_000
    assert config.READ_BATCH_SIZE == 1000
    assert config.POLL_INTERVAL_MS == 500
    assert config.OTEL_ENABLED is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("VALKEY_HOST", "valkey.internal")
    monkeypatch.setenv("VALKEY_PORT", "6380")
    monkeypatch.setenv("CONSUMER_GROUP_NAME", "billing")
    monkeypatch.setenv("OTEL_ENABLED", "true")

    config = Settings(_env_file=None)

    assert config.VALKEY_HOST == "valkey.internal"
    assert config.VALKEY_PORT == 6380
    assert config.CONSUMER_GROUP_NAME == "billing"
    assert config.OTEL_ENABLED is True
