from __future__ import annotations

import asyncio

import pytest

from fakes import DEVICE_PATH, characteristic_paths, plejd_bus
from plejdble.core.errors import TransportError
from plejdble.core.keepalive import KeepaliveMonitor, PingError, ping

PING_PATH = characteristic_paths(DEVICE_PATH)["ping"]


def test_ping_expects_incremented_reply() -> None:
    bus = plejd_bus()
    assert asyncio.run(ping(bus, PING_PATH, value=10)) == 11
    assert asyncio.run(ping(bus, PING_PATH, value=255)) == 0


def test_ping_mismatch_raises() -> None:
    bus = plejd_bus()
    bus.responders[PING_PATH] = lambda last: last or b""

    with pytest.raises(PingError, match="plejd ping failed 10 - 10"):
        asyncio.run(ping(bus, PING_PATH, value=10))


def test_ping_write_error_raises() -> None:
    bus = plejd_bus()
    bus.fail("write_value", TransportError("gone"))

    with pytest.raises(PingError, match="write error"):
        asyncio.run(ping(bus, PING_PATH))


def test_monitor_keeps_pinging_while_replies_are_good() -> None:
    bus = plejd_bus()
    failures: list[str] = []

    async def scenario() -> None:
        monitor = KeepaliveMonitor(bus, failures.append, interval=0)
        monitor.start(PING_PATH)
        for _ in range(20):
            await asyncio.sleep(0)
        assert monitor.is_running
        monitor.stop()

    asyncio.run(scenario())
    assert failures == []
    assert len(bus.writes_to(PING_PATH)) >= 2


def test_monitor_reports_failure_once_and_stops() -> None:
    bus = plejd_bus()
    bus.responders[PING_PATH] = lambda last: last or b""
    failures: list[str] = []

    async def scenario() -> KeepaliveMonitor:
        monitor = KeepaliveMonitor(bus, failures.append, interval=0)
        monitor.start(PING_PATH)
        for _ in range(20):
            await asyncio.sleep(0)
        return monitor

    monitor = asyncio.run(scenario())
    assert len(failures) == 1
    assert failures[0].startswith("plejd ping failed")
    assert not monitor.is_running
