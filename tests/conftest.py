import pytest

from dex_monitor.config import Settings


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        STREAM_WSS="wss://stream.test",
        DB_DSN="sqlite+aiosqlite://",
        RECONNECT_DELAY_MS=1,
        WALLET_REFRESH_SEC=3600,
        STATUS_LOG_SEC=3600,
        SHUTDOWN_GRACE_SEC=1,
    )
