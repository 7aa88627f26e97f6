"""BlueZ transport over the D-Bus system bus (dbus-next)."""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from dbus_next import BusType, Variant
from dbus_next.aio import MessageBus, ProxyInterface, ProxyObject
from dbus_next.errors import DBusError

from plejdble.core.errors import TransportBusyError, TransportConnectError, TransportError
from plejdble.transports.base import (
    ADAPTER_INTERFACE,
    BLUEZ_SERVICE_NAME,
    DEVICE_INTERFACE,
    GATT_CHARACTERISTIC_INTERFACE,
    InterfacesAddedCallback,
    ManagedObjects,
    PropertiesChangedCallback,
)

OBJECT_MANAGER_INTERFACE = "org.freedesktop.DBus.ObjectManager"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"
IN_PROGRESS_ERROR = "org.bluez.Error.InProgress"

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def unwrap(value: Any) -> Any:
    """Strip D-Bus variants from a property value, recursing into containers."""
    if isinstance(value, Variant):
        return unwrap(value.value)
    if isinstance(value, dict):
        return {key: unwrap(item) for key, item in value.items()}
    if isinstance(value, list):
        return [unwrap(item) for item in value]
    return value


def translate_error(exc: Exception, action: str) -> TransportError:
    if isinstance(exc, DBusError):
        if exc.type == IN_PROGRESS_ERROR or exc.text == "In Progress":
            return TransportBusyError(f"{action}: In Progress")
        return TransportError(f"{action} failed: {exc.type}: {exc.text}")
    return TransportError(f"{action} failed: {exc}")


class BluezBus:
    def __init__(self, *, bus_type: BusType = BusType.SYSTEM) -> None:
        self._bus_type = bus_type
        self._bus: MessageBus | None = None
        self._proxies: dict[str, ProxyObject] = {}
        self._object_manager: ProxyInterface | None = None
        self._interfaces_added: list[Any] = []
        self._properties_changed: dict[tuple[str, int], tuple[ProxyInterface, Any]] = {}

    async def connect(self) -> "BluezBus":
        if self._bus is not None:
            return self
        try:
            self._bus = await MessageBus(bus_type=self._bus_type).connect()
        except Exception as exc:
            raise TransportConnectError(f"Could not connect to the D-Bus system bus: {exc}") from exc
        return self

    async def close(self) -> None:
        if self._bus is None:
            return
        self.clear_interfaces_added()
        self._bus.disconnect()
        self._bus = None
        self._proxies.clear()
        self._properties_changed.clear()
        self._object_manager = None

    async def _call(self, action: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except TransportError:
            raise
        except Exception as exc:
            raise translate_error(exc, action) from exc

    async def _proxy(self, path: str) -> ProxyObject:
        if self._bus is None:
            await self.connect()
        if self._bus is None:
            raise TransportConnectError("D-Bus system bus connection is closed")
        proxy = self._proxies.get(path)
        if proxy is None:
            introspection = await self._call(
                f"Introspect {path}", self._bus.introspect(BLUEZ_SERVICE_NAME, path)
            )
            proxy = self._bus.get_proxy_object(BLUEZ_SERVICE_NAME, path, introspection)
            self._proxies[path] = proxy
        return proxy

    async def _interface(self, path: str, interface: str) -> ProxyInterface:
        proxy = await self._proxy(path)
        try:
            return proxy.get_interface(interface)
        except Exception as exc:
            raise translate_error(exc, f"Get interface {interface} on {path}") from exc

    async def _manager(self) -> ProxyInterface:
        if self._object_manager is None:
            self._object_manager = await self._interface("/", OBJECT_MANAGER_INTERFACE)
        return self._object_manager

    def _forget(self, path: str) -> None:
        for known in list(self._proxies):
            if known == path or known.startswith(path + "/"):
                del self._proxies[known]

    async def get_managed_objects(self) -> ManagedObjects:
        manager = await self._manager()
        objects = await self._call("GetManagedObjects", manager.call_get_managed_objects())
        return {
            path: {interface: unwrap(props) for interface, props in interfaces.items()}
            for path, interfaces in objects.items()
        }

    def on_interfaces_added(self, callback: InterfacesAddedCallback) -> None:
        if self._object_manager is None:
            raise TransportError("Object manager is not available; call get_managed_objects() first")

        def _handler(path: str, interfaces: dict[str, dict[str, Variant]]) -> None:
            callback(path, {name: unwrap(props) for name, props in interfaces.items()})

        self._object_manager.on_interfaces_added(_handler)
        self._interfaces_added.append(_handler)

    def clear_interfaces_added(self) -> None:
        if self._object_manager is not None:
            for handler in self._interfaces_added:
                self._object_manager.off_interfaces_added(handler)
        self._interfaces_added.clear()

    async def set_discovery_filter(self, adapter_path: str, uuids: list[str], transport: str) -> None:
        adapter = await self._interface(adapter_path, ADAPTER_INTERFACE)
        await self._call(
            "SetDiscoveryFilter",
            adapter.call_set_discovery_filter(
                {"UUIDs": Variant("as", uuids), "Transport": Variant("s", transport)}
            ),
        )

    async def start_discovery(self, adapter_path: str) -> None:
        adapter = await self._interface(adapter_path, ADAPTER_INTERFACE)
        await self._call("StartDiscovery", adapter.call_start_discovery())

    async def stop_discovery(self, adapter_path: str) -> None:
        adapter = await self._interface(adapter_path, ADAPTER_INTERFACE)
        await self._call("StopDiscovery", adapter.call_stop_discovery())

    async def remove_device(self, adapter_path: str, device_path: str) -> None:
        adapter = await self._interface(adapter_path, ADAPTER_INTERFACE)
        await self._call(f"RemoveDevice {device_path}", adapter.call_remove_device(device_path))
        self._forget(device_path)

    async def connect_device(self, device_path: str) -> None:
        device = await self._interface(device_path, DEVICE_INTERFACE)
        await self._call(f"Connect {device_path}", device.call_connect())

    async def disconnect_device(self, device_path: str) -> None:
        device = await self._interface(device_path, DEVICE_INTERFACE)
        await self._call(f"Disconnect {device_path}", device.call_disconnect())

    async def get_property(self, path: str, interface: str, name: str) -> Any:
        properties = await self._interface(path, PROPERTIES_INTERFACE)
        value = await self._call(f"Get {interface}.{name} on {path}", properties.call_get(interface, name))
        return unwrap(value)

    async def read_value(self, characteristic_path: str) -> bytes:
        characteristic = await self._interface(characteristic_path, GATT_CHARACTERISTIC_INTERFACE)
        value = await self._call(f"ReadValue {characteristic_path}", characteristic.call_read_value({}))
        return bytes(value)

    async def write_value(self, characteristic_path: str, data: bytes) -> None:
        characteristic = await self._interface(characteristic_path, GATT_CHARACTERISTIC_INTERFACE)
        await self._call(
            f"WriteValue {characteristic_path}",
            characteristic.call_write_value(bytes(data), {}),
        )

    async def start_notify(self, characteristic_path: str) -> None:
        characteristic = await self._interface(characteristic_path, GATT_CHARACTERISTIC_INTERFACE)
        await self._call(f"StartNotify {characteristic_path}", characteristic.call_start_notify())

    async def on_properties_changed(self, path: str, callback: PropertiesChangedCallback) -> None:
        properties = await self._interface(path, PROPERTIES_INTERFACE)

        def _handler(interface: str, changed: dict[str, Variant], invalidated: list[str]) -> None:
            callback(interface, unwrap(changed), invalidated)

        properties.on_properties_changed(_handler)
        self._properties_changed[(path, id(callback))] = (properties, _handler)
        LOGGER.debug("Subscribed to PropertiesChanged on %s", path)

    def off_properties_changed(self, path: str, callback: PropertiesChangedCallback) -> None:
        registration = self._properties_changed.pop((path, id(callback)), None)
        if registration is None:
            return
        properties, handler = registration
        properties.off_properties_changed(handler)
        LOGGER.debug("Unsubscribed from PropertiesChanged on %s", path)
