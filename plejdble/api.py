"""Stable public API for building bridges on top of plejdble.

This module is the supported integration surface for home-automation
bridges. Avoid importing from private/internal modules unless intentionally
depending on non-stable internals.
"""

from __future__ import annotations

from pathlib import Path

from plejdble.core.config_loader import load_config
from plejdble.core.errors import (
    ConfigLoadError,
    ConfigValidationError,
    DeviceLookupError,
    PlejdError,
    SessionNotReadyError,
    TransportBusyError,
    TransportConnectError,
    TransportError,
)
from plejdble.core.events import SceneManager, SessionListener
from plejdble.core.log_config import LogConfig
from plejdble.core.model import (
    BlePeerCandidate,
    DeviceDescriptor,
    DeviceRuntimeState,
    GatewayConfig,
    StateChange,
)
from plejdble.core.service import PlejdService, SessionState
from plejdble.transports.base import BluetoothBus
from plejdble.transports.bluez import BluezBus

__all__ = [
    "PlejdError",
    "ConfigLoadError",
    "ConfigValidationError",
    "DeviceLookupError",
    "SessionNotReadyError",
    "TransportError",
    "TransportBusyError",
    "TransportConnectError",
    "BlePeerCandidate",
    "DeviceDescriptor",
    "DeviceRuntimeState",
    "GatewayConfig",
    "LogConfig",
    "StateChange",
    "SceneManager",
    "SessionListener",
    "SessionState",
    "BluetoothBus",
    "BluezBus",
    "PlejdService",
    "Gateway",
]


class Gateway:
    """Public entry point for running a Plejd session.

    A `Gateway` wraps config loading, the BlueZ bus and the session engine
    behind a small async API. Events arrive on the `SessionListener` given at
    construction.

    Usage:
        async with Gateway.from_config_file(listener=MyListener()) as gateway:
            gateway.turn_on(11, brightness=128, transition=3)
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        bus: BluetoothBus | None = None,
        listener: SessionListener | None = None,
        scene_manager: SceneManager | None = None,
    ) -> None:
        self._service = PlejdService(
            config,
            bus=bus or BluezBus(),
            listener=listener,
            scene_manager=scene_manager,
        )

    @classmethod
    def from_config_file(cls, path: Path | None = None, **kwargs) -> "Gateway":
        return cls(load_config(path), **kwargs)

    @property
    def service(self) -> PlejdService:
        return self._service

    @property
    def devices(self) -> tuple[DeviceDescriptor, ...]:
        return self._service.devices

    @property
    def is_ready(self) -> bool:
        return self._service.is_ready

    async def __aenter__(self) -> "Gateway":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def start(self) -> None:
        await self._service.init()

    async def stop(self) -> None:
        await self._service.close()

    async def reconnect(self, delay: float = 0) -> None:
        await self._service.throttled_init(delay)

    def turn_on(self, device_id: int, brightness: int | None = None, transition: float | None = None) -> None:
        self._service.turn_on(device_id, brightness=brightness, transition=transition)

    def turn_off(self, device_id: int, transition: float | None = None) -> None:
        self._service.turn_off(device_id, transition=transition)

    def trigger_scene(self, scene_index: int) -> None:
        self._service.trigger_scene(scene_index)
