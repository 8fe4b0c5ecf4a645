"""Pytest configuration and shared fixtures for EdgeLog tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import httpx
import pytest

from edgelog.actor import LogActor
from edgelog.backoff import JitterSource
from edgelog.config import ShipperConfig
from edgelog.delivery import BatchSender
from edgelog.storage import MemoryStorage
from tests.mocks import CollectorStub, FakeClock, RecordingAlarm

COLLECTOR_URL = "https://collector.test/ingest"


@pytest.fixture
def clock() -> FakeClock:
    """Controllable epoch-ms clock."""
    return FakeClock()


@pytest.fixture
def config() -> ShipperConfig:
    """Default shipper settings pointing at the stub collector."""
    return ShipperConfig(endpoint=COLLECTOR_URL)


@pytest.fixture
def collector() -> CollectorStub:
    """Scriptable collector answering 200 unless told otherwise."""
    return CollectorStub()


@pytest.fixture
async def sender(collector: CollectorStub) -> AsyncGenerator[BatchSender, None]:
    """BatchSender whose requests go to the stub collector."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(collector.handler))
    yield BatchSender(client=client)
    await client.aclose()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def alarms() -> RecordingAlarm:
    return RecordingAlarm()


@pytest.fixture
def actor(storage, alarms, config, sender, clock) -> LogActor:
    """Fresh actor instance wired to in-memory fakes."""
    return LogActor(storage, alarms, config, sender, clock=clock, jitter=JitterSource(seed=7))


@pytest.fixture
def sample_record() -> dict:
    """Return a sample edge request record."""
    return {
        "EdgeStartTimestamp": "2024-01-15T10:30:00+00:00",
        "ClientIP": "203.0.113.9",
        "ClientCountry": "NL",
        "ClientCity": "Amsterdam",
        "ClientRequestScheme": "https",
        "ClientRequestHost": "shop.example.com",
        "ClientRequestURI": "/cart?item=42",
        "ClientRequestMethod": "GET",
        "ClientRequestUserAgent": "Mozilla/5.0",
        "ClientRequestReferer": "",
        "EdgeResponseStatus": 200,
    }


@pytest.fixture
def sample_records(sample_record: dict) -> list[dict]:
    """Return a batch of distinct sample records."""
    return [
        {**sample_record, "ClientRequestURI": f"/page/{i}", "EdgeResponseStatus": status}
        for i, status in enumerate([200, 404, 500])
    ]
