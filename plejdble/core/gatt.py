"""Resolve a BlueZ GATT service to the Plejd characteristics."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from plejdble.core.model import PlejdCharacteristics, Session
from plejdble.transports.base import (
    GATT_CHARACTERISTIC_INTERFACE,
    GATT_SERVICE_INTERFACE,
    BluetoothBus,
)

PLEJD_SERVICE = "31ba0001-6085-4726-be45-040c957391b5"
DATA_UUID = "31ba0004-6085-4726-be45-040c957391b5"
LAST_DATA_UUID = "31ba0005-6085-4726-be45-040c957391b5"
AUTH_UUID = "31ba0009-6085-4726-be45-040c957391b5"
PING_UUID = "31ba000a-6085-4726-be45-040c957391b5"

_DEVICE_PATH_RE = re.compile(r"dev_([0-9A-Fa-f_]+)$")

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class GattBinding:
    service_path: str
    device_path: str
    address: bytes
    data: str | None = None
    last_data: str | None = None
    auth: str | None = None
    ping: str | None = None

    @property
    def missing(self) -> tuple[str, ...]:
        names = ("data", "last_data", "auth", "ping")
        return tuple(name for name in names if getattr(self, name) is None)

    def session(self) -> Session | None:
        if self.data is None or self.last_data is None or self.auth is None or self.ping is None:
            return None
        return Session(
            address=self.address,
            service_path=self.service_path,
            device_path=self.device_path,
            characteristics=PlejdCharacteristics(
                data=self.data,
                last_data=self.last_data,
                auth=self.auth,
                ping=self.ping,
            ),
        )


def address_from_device_path(device_path: str) -> bytes:
    """Parse ``.../dev_AA_BB_CC_DD_EE_FF`` into the reversed 6-byte radio address."""
    match = _DEVICE_PATH_RE.search(device_path)
    if not match:
        raise ValueError(f"No radio address in device path {device_path!r}")
    cleaned = match.group(1).replace("_", "").replace("-", "").replace(":", "")
    return bytes(reversed(bytes.fromhex(cleaned)))


async def bind_plejd_service(
    bus: BluetoothBus,
    service_path: str,
    characteristic_paths: Iterable[str],
) -> GattBinding | None:
    uuid = await bus.get_property(service_path, GATT_SERVICE_INTERFACE, "UUID")
    if str(uuid).lower() != PLEJD_SERVICE:
        LOGGER.error("%s is not a Plejd device.", service_path)
        return None

    device_path = str(await bus.get_property(service_path, GATT_SERVICE_INTERFACE, "Device"))
    try:
        address = address_from_device_path(device_path)
    except ValueError as exc:
        LOGGER.error("Cannot bind %s: %s", service_path, exc)
        return None

    found: dict[str, str] = {}

    for path in characteristic_paths:
        char_uuid = str(await bus.get_property(path, GATT_CHARACTERISTIC_INTERFACE, "UUID")).lower()
        if char_uuid == DATA_UUID:
            LOGGER.debug("found DATA characteristic.")
            found["data"] = path
        elif char_uuid == LAST_DATA_UUID:
            LOGGER.debug("found LAST_DATA characteristic.")
            found["last_data"] = path
        elif char_uuid == AUTH_UUID:
            LOGGER.debug("found AUTH characteristic.")
            found["auth"] = path
        elif char_uuid == PING_UUID:
            LOGGER.debug("found PING characteristic.")
            found["ping"] = path

    return GattBinding(
        service_path=service_path,
        device_path=device_path,
        address=address,
        **found,
    )
