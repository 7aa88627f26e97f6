"""Plejd mesh command payloads.

Every outbound command is ``<device id><0110><command code><args>``.
"""

from __future__ import annotations

from dataclasses import dataclass

MAX_BRIGHTNESS = 255

_PREFIX = bytes.fromhex("0110")
_STATE_CHANGE = bytes.fromhex("0097")
_DIM_CHANGE = bytes.fromhex("0098")


@dataclass(frozen=True)
class Command:
    device_id: int
    payload: bytes
    label: str


def _header(device_id: int, code: bytes) -> bytes:
    return bytes([device_id]) + _PREFIX + code


def turn_off(device_id: int) -> Command:
    return Command(device_id, _header(device_id, _STATE_CHANGE) + b"\x00", "OFF")


def turn_on_restore(device_id: int) -> Command:
    """Turn on at whatever level the device last had."""
    return Command(device_id, _header(device_id, _STATE_CHANGE) + b"\x01", "ON")


def dim(device_id: int, brightness: int) -> Command:
    brightness = min(brightness, MAX_BRIGHTNESS)
    value = (brightness << 8) | brightness
    payload = _header(device_id, _DIM_CHANGE) + b"\x01" + value.to_bytes(2, "big")
    return Command(device_id, payload, f"DIM {brightness}")


def brightness_command(device_id: int, brightness: int | None) -> Command:
    """Map a requested brightness to a command: None restores, <= 0 turns off."""
    if brightness is None:
        return turn_on_restore(device_id)
    if brightness <= 0:
        return turn_off(device_id)
    return dim(device_id, brightness)
