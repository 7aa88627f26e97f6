"""Ping-based liveness check on the Plejd ping characteristic."""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Callable

from plejdble.core.errors import TransportError
from plejdble.core.log_config import VERBOSE
from plejdble.transports.base import BluetoothBus

PING_INTERVAL = 3.0

LOGGER = logging.getLogger(__name__)


class PingError(Exception):
    """Raised when the ping reply is missing or wrong."""


async def ping(bus: BluetoothBus, characteristic_path: str, value: int | None = None) -> int:
    """Write one byte to the ping characteristic and expect it back incremented."""
    sent = secrets.randbelow(256) if value is None else value
    try:
        await bus.write_value(characteristic_path, bytes([sent]))
        reply = await bus.read_value(characteristic_path)
    except TransportError as exc:
        LOGGER.error("writing to plejd: %s", exc)
        raise PingError("write error") from exc

    if not reply or reply[0] != (sent + 1) & 0xFF:
        LOGGER.error("plejd ping failed")
        got = reply[0] if reply else None
        raise PingError(f"plejd ping failed {sent} - {got}")
    return reply[0]


class KeepaliveMonitor:
    def __init__(
        self,
        bus: BluetoothBus,
        on_failure: Callable[[str], None],
        *,
        interval: float = PING_INTERVAL,
    ) -> None:
        self._bus = bus
        self._on_failure = on_failure
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, characteristic_path: str) -> None:
        LOGGER.info("startPing()")
        self.stop()
        self._task = asyncio.ensure_future(self._loop(characteristic_path))

    def stop(self) -> None:
        if self._task is not None and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
        self._task = None

    async def _loop(self, characteristic_path: str) -> None:
        while True:
            await asyncio.sleep(self._interval)
            LOGGER.log(VERBOSE, "ping")
            try:
                pong = await ping(self._bus, characteristic_path)
            except PingError as exc:
                LOGGER.debug("onPingFailed(%s)", exc)
                self._task = None
                self._on_failure(str(exc))
                return
            LOGGER.log(VERBOSE, "pong: %d", pong)
