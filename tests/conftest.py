"""
Shared fixtures: a controllable clock, in-memory collaborators and a
fully wired AuthenticationService.
"""

import pytest

APP_ID = "demo"
APP_SECRET = "demo-secret"
PHONE = "+15551234567"
OTHER_PHONE = "+15559999999"
CLIENT_IP = "203.0.113.7"


class FakeClock:
    """Injectable clock returning a fixed, manually advanced epoch time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    from smsotp_core.config import AuthConfig

    return AuthConfig(
        environment="test",
        app_credentials={APP_ID: APP_SECRET},
        auth_token_secret="test-token-secret",
    )


@pytest.fixture
def store(clock):
    from smsotp_core.storage import InMemoryStore

    return InMemoryStore(clock=clock)


@pytest.fixture
def queue():
    from smsotp_core.queue import InMemoryQueue

    return InMemoryQueue()


@pytest.fixture
def service(config, store, queue, clock):
    from smsotp_core.auth import AuthenticationService

    return AuthenticationService(config, store, queue, clock=clock)


@pytest.fixture
def ctx():
    from smsotp_core.auth import RequestContext

    return RequestContext(request_id="req-1", source_ip=CLIENT_IP, user_agent="pytest")
