"""pytest configuration and shared fakes for netwatch tests."""

import asyncio
import json

import pytest

from netwatch.core.exceptions import BroadcastSendError
from netwatch.crud.device import DeviceRegistry
from netwatch.db.database import create_db_engine, create_session_factory, init_db
from netwatch.monitor.prober import ProbeResult


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


class FakeProber:
    """Prober whose answers are set by the test through ``alive``."""

    def __init__(self, alive=None):
        self.alive = dict(alive or {})
        self.calls = []
        self.gate = None

    async def probe(self, ips, timeout=None, max_concurrency=None):
        targets = sorted(set(ips))
        self.calls.append(targets)
        if self.gate is not None:
            await self.gate.wait()
        return {
            ip: ProbeResult(alive=True, latency_ms=1.0)
            if self.alive.get(ip)
            else ProbeResult(alive=False, error="timeout")
            for ip in targets
        }


class FakeSubscriber:
    """In-memory subscriber recording every decoded snapshot it receives."""

    def __init__(self, fail=False, delay=0.0):
        self.snapshots = []
        self.fail = fail
        self.delay = delay
        self.open = True

    @property
    def is_open(self):
        return self.open

    async def send_text(self, data):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise BroadcastSendError("transport closed")
        self.snapshots.append(json.loads(data))


@pytest.fixture()
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'test.db'}"


@pytest.fixture()
def engine(db_url):
    engine = create_db_engine(db_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def registry(engine):
    return DeviceRegistry(create_session_factory(engine))


@pytest.fixture()
def prober():
    return FakeProber()


@pytest.fixture()
def subscriber_factory():
    return FakeSubscriber
