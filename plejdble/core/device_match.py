"""Device registry lookups."""

from __future__ import annotations

from collections.abc import Iterable

from plejdble.core.model import DeviceDescriptor

_SEPARATORS = ("_", ":", "-")


def normalize_address(value: str) -> str:
    """Turn a BlueZ object path or a radio address into a bare upper-case hex string.

    ``/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF`` and ``aa:bb:cc:dd:ee:ff`` both
    become ``AABBCCDDEEFF``.
    """
    tail = value.rsplit("/", 1)[-1]
    if tail.startswith("dev_"):
        tail = tail[len("dev_"):]
    for separator in _SEPARATORS:
        tail = tail.replace(separator, "")
    return tail.upper()


def device_by_id(devices: Iterable[DeviceDescriptor], device_id: int) -> DeviceDescriptor | None:
    for device in devices:
        if device.id == device_id:
            return device
    return None


def device_by_address(devices: Iterable[DeviceDescriptor], address: str) -> DeviceDescriptor | None:
    wanted = normalize_address(address)
    for device in devices:
        if normalize_address(device.serial_number) == wanted:
            return device
    return None


def device_name(devices: Iterable[DeviceDescriptor], device_id: int) -> str | None:
    device = device_by_id(devices, device_id)
    return device.name if device else None
