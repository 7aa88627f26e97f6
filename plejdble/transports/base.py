"""Transport interfaces.

The session engine only talks to the Bluetooth stack through
:class:`BluetoothBus`. Objects are addressed by their BlueZ object path and
property values are plain Python values (no D-Bus variants).
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

BLUEZ_SERVICE_NAME = "org.bluez"
ADAPTER_INTERFACE = "org.bluez.Adapter1"
DEVICE_INTERFACE = "org.bluez.Device1"
GATT_SERVICE_INTERFACE = "org.bluez.GattService1"
GATT_CHARACTERISTIC_INTERFACE = "org.bluez.GattCharacteristic1"

ManagedObjects = dict[str, dict[str, dict[str, Any]]]
InterfacesAddedCallback = Callable[[str, dict[str, dict[str, Any]]], None]
PropertiesChangedCallback = Callable[[str, dict[str, Any], list[str]], None]


class BluetoothBus(Protocol):
    async def get_managed_objects(self) -> ManagedObjects:
        """Return ``{path: {interface: {property: value}}}`` for every BlueZ object."""

    def on_interfaces_added(self, callback: InterfacesAddedCallback) -> None:
        ...

    def clear_interfaces_added(self) -> None:
        ...

    async def set_discovery_filter(self, adapter_path: str, uuids: list[str], transport: str) -> None:
        ...

    async def start_discovery(self, adapter_path: str) -> None:
        ...

    async def stop_discovery(self, adapter_path: str) -> None:
        ...

    async def remove_device(self, adapter_path: str, device_path: str) -> None:
        ...

    async def connect_device(self, device_path: str) -> None:
        ...

    async def disconnect_device(self, device_path: str) -> None:
        ...

    async def get_property(self, path: str, interface: str, name: str) -> Any:
        ...

    async def read_value(self, characteristic_path: str) -> bytes:
        ...

    async def write_value(self, characteristic_path: str, data: bytes) -> None:
        ...

    async def start_notify(self, characteristic_path: str) -> None:
        ...

    async def on_properties_changed(self, path: str, callback: PropertiesChangedCallback) -> None:
        ...

    def off_properties_changed(self, path: str, callback: PropertiesChangedCallback) -> None:
        ...

    async def close(self) -> None:
        ...
