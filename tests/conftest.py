import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app import create_app  # noqa: E402
from core.config import AppConfig  # noqa: E402
from core.scheduler import CodeSession  # noqa: E402

# ASCII "12345678901234567890" from RFC 4226 / RFC 6238, Base32-encoded
RFC_SECRET_ASCII = b"12345678901234567890"
RFC_SECRET_B32 = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


class FakeClock:
    """Settable wall clock."""

    def __init__(self, now: float = 59.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return AppConfig(
        secret=RFC_SECRET_B32,
        database_file=str(tmp_path / "smartdrop.db"),
        history_limit=3,
    )


@pytest.fixture
def session(config, clock):
    return CodeSession(config.secret, digits=config.digits, clock=clock)


@pytest.fixture
def app(config, session):
    app = create_app(config, session=session)
    app.config.update(TESTING=True)
    return app


@pytest.fixture
def client(app):
    return app.test_client()
