import os
import sys
import pytest

# ──────────────────────────────────────────────────────────────────────────────
# Make sure the `relay/` dir (the parent of tests/) is on sys.path so that
# `import services.rate_limiter` (and all the other imports) work.
# ──────────────────────────────────────────────────────────────────────────────
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# fmt: off
from services.admission import AdmissionController
from services.config import AdmissionConfig
# fmt: on


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHeaders(dict):
    """Case-insensitive enough for the handful of headers the handlers read."""

    def get(self, key, default=None):
        for k, v in self.items():
            if k.lower() == key.lower():
                return v
        return default


class FakeRequest:
    def __init__(self, path="/", headers=None):
        self.path = path
        self.headers = FakeHeaders(headers or {})


class FakeResponse:
    def __init__(self, status, body):
        self.status_code = status
        self.body = body
        self.headers = FakeHeaders()


class FakeConnection:
    """Stands in for a websockets ServerConnection."""

    _next_id = 0

    def __init__(self, frames=(), ip="198.51.100.1", headers=None):
        FakeConnection._next_id += 1
        self.id = f"conn-{FakeConnection._next_id}"
        self.remote_address = (ip, 50000)
        self.request = FakeRequest(headers={"Upgrade": "websocket", **(headers or {})})
        self.frames = list(frames)
        self.sent = []
        self.closed = None

    def respond(self, status, text):
        return FakeResponse(status, text)

    async def send(self, message):
        self.sent.append(message)

    async def close(self, code=1000, reason=""):
        self.closed = (code, reason)

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for frame in self.frames:
            if self.closed is not None:
                return
            yield frame


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return AdmissionConfig(
        window_seconds=5, max_messages=10, ban_threshold=6,
        ban_seconds=120, forgiveness_seconds=20, max_message_length=500,
        sweep_interval=60,
    )


@pytest.fixture
def admission(config, clock):
    return AdmissionController(config, clock=clock)
