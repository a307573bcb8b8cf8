"""Shared fixtures for authgate tests."""

from datetime import datetime, timedelta

import pytest

from authgate.core.config import reset_config
from authgate.security.audit.logger import AuditLogger
from authgate.security.audit.monitor import SecurityMonitor
from authgate.security.types import AuthenticationRequest


DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
CURL_UA = "curl/8.4.0"


class FakeClock:
    """Manually advanced clock. Starts on a Wednesday at 10:00."""

    def __init__(self, start: datetime = datetime(2024, 5, 15, 10, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def audit(clock):
    return AuditLogger(exporters=[], clock=clock)


@pytest.fixture
def monitor(clock):
    return SecurityMonitor(clock=clock)


@pytest.fixture
def make_request(clock):
    """Build a request stamped with the fake clock's current time."""

    def _make(user_id="alice", ip_address="10.0.0.5", user_agent=DESKTOP_UA, **kwargs):
        kwargs.setdefault("timestamp", clock())
        return AuthenticationRequest(
            user_id=user_id,
            password="correct horse",
            ip_address=ip_address,
            user_agent=user_agent,
            **kwargs,
        )

    return _make


@pytest.fixture(autouse=True)
def _reset_global_config():
    yield
    reset_config()
