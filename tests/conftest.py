"""Shared test fixtures and configuration for the stream client tests."""
import os
import tempfile

# Keep per-run log files out of the working tree.
os.environ.setdefault("MATCHCHAT_LOG_DIR", tempfile.mkdtemp(prefix="matchchat-logs-"))

import pytest  # noqa: E402

from shared.config.stream import StreamSettings  # noqa: E402
from tests.fakes import FakeChannelFactory, FakeLoop  # noqa: E402


@pytest.fixture
def loop():
    return FakeLoop()


@pytest.fixture
def channels():
    return FakeChannelFactory()


@pytest.fixture
def settings():
    """Default timings: 45s heartbeat, 3s x attempt backoff, 5 attempts."""
    return StreamSettings(
        heartbeat_timeout_seconds=45.0,
        reconnect_base_delay_seconds=3.0,
        max_reconnect_attempts=5,
        near_bottom_tolerance_px=50,
    )
