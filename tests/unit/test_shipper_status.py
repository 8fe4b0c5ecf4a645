"""
Tests for the shipper status CLI helpers.
"""

import pytest
from rich.console import Console

from edgelog.storage import MemoryBackend
from tools import shipper_status
from tools.shipper_status import format_deadline, read_actor_status
from tests.mocks import START_MS, MockFactory


@pytest.fixture
def console(monkeypatch):
    recording = Console(record=True, width=120)
    monkeypatch.setattr(shipper_status, "console", recording)
    return recording


class TestReadActorStatus:
    @pytest.mark.asyncio
    async def test_empty_actor(self):
        status = await read_actor_status(MemoryBackend(), "global")

        assert status == {
            "actor": "global",
            "pending": [],
            "backoff_ms": 0,
            "backoff_until": 0,
            "alarm": None,
        }

    @pytest.mark.asyncio
    async def test_actor_in_backoff(self):
        backend = MemoryBackend()
        storage = backend.storage_for("global")
        records = MockFactory.create_records(2)
        await storage.put("pending", records)
        await storage.put("backoffMs", 4000)
        await storage.put("backoffUntil", START_MS + 4100)
        await storage.set_alarm(START_MS + 4100)

        status = await read_actor_status(backend, "global")

        assert status["pending"] == records
        assert status["backoff_ms"] == 4000
        assert status["backoff_until"] == START_MS + 4100
        assert status["alarm"] == START_MS + 4100


class TestFormatDeadline:
    def test_none(self):
        assert format_deadline(None, START_MS) == "None"
        assert format_deadline(0, START_MS) == "None"

    def test_future(self):
        assert format_deadline(START_MS + 2500, START_MS).endswith("(in 2.5s)")

    def test_overdue(self):
        assert format_deadline(START_MS - 1000, START_MS).endswith("(1.0s overdue)")


class TestDisplay:
    def test_status_table(self, console):
        status = {
            "actor": "global",
            "pending": MockFactory.create_records(3),
            "backoff_ms": 2000,
            "backoff_until": START_MS + 2000,
            "alarm": START_MS + 2000,
        }

        shipper_status.display_status_table([status], START_MS)

        output = console.export_text()
        assert "global" in output
        assert "2000ms" in output

    def test_records_panel(self, console):
        status = {"actor": "global", "pending": MockFactory.create_records(5)}

        shipper_status.display_records(status, 2)

        output = console.export_text()
        assert "oldest 2 of 5 pending" in output
        assert "/item/0" in output
        assert "/item/2" not in output

    def test_no_records(self, console):
        shipper_status.display_records({"actor": "global", "pending": []}, 5)
        assert "no pending records" in console.export_text()
