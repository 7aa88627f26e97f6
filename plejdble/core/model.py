"""Core data models shared by the session engine, config loader, and CLI."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from plejdble.core.log_config import LogConfig

DEFAULT_CONNECTION_TIMEOUT = 2.0
DEFAULT_WRITE_QUEUE_WAIT_TIME = 400


@dataclass(frozen=True)
class DeviceDescriptor:
    id: int
    serial_number: str
    name: str
    dimmable: bool = False


@dataclass
class BlePeerCandidate:
    path: str
    rssi: int | None = None
    device: DeviceDescriptor | None = None
    inspected: bool = False


@dataclass(frozen=True)
class PlejdCharacteristics:
    data: str
    last_data: str
    auth: str
    ping: str


@dataclass(frozen=True)
class Session:
    address: bytes
    service_path: str
    device_path: str
    characteristics: PlejdCharacteristics


@dataclass(frozen=True)
class DeviceRuntimeState:
    state: int | None
    dim: int

    @property
    def brightness(self) -> int | None:
        """Brightness a transition starts from: 0 when off, else the last dim level."""
        if self.state is None:
            return None
        return self.dim if self.state else 0


@dataclass
class WriteQueueItem:
    device_id: int
    payload: bytes
    should_retry: bool
    label: str
    retry_count: int = 0


@dataclass
class TransitionTimer:
    device_id: int
    started_at: float
    initial: int
    target: int
    duration: float
    task: asyncio.Task[None] | None = field(default=None, repr=False)


@dataclass(frozen=True)
class StateChange:
    state: int | None
    brightness: int | None = None


@dataclass(frozen=True)
class GatewayConfig:
    crypto_key: bytes
    devices: tuple[DeviceDescriptor, ...]
    connection_timeout: float = DEFAULT_CONNECTION_TIMEOUT
    write_queue_wait_time: int = DEFAULT_WRITE_QUEUE_WAIT_TIME
    keep_alive: bool = True
    log: LogConfig = field(default_factory=LogConfig)
