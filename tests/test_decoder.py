from __future__ import annotations

from plejdble.core.decoder import NotificationDecoder, parse_notification
from plejdble.core.events import SessionListener
from plejdble.core.model import DeviceRuntimeState, StateChange


class RecordingListener(SessionListener):
    def __init__(self) -> None:
        self.events: list[tuple] = []

    def state_changed(self, device_id: int, change: StateChange) -> None:
        self.events.append(("state", device_id, change))

    def scene_triggered(self, device_id: int, scene_id: int) -> None:
        self.events.append(("scene", device_id, scene_id))


def _decoder() -> tuple[NotificationDecoder, RecordingListener, dict[int, DeviceRuntimeState]]:
    listener = RecordingListener()
    states: dict[int, DeviceRuntimeState] = {}
    return NotificationDecoder(listener, states), listener, states


def test_state_change_reports_state_only() -> None:
    decoder, listener, states = _decoder()
    decoder.handle(bytes.fromhex("0c0000009701"))
    assert listener.events == [("state", 12, StateChange(state=1))]
    assert states[12] == DeviceRuntimeState(state=1, dim=0)


def test_dim_change_reports_brightness() -> None:
    decoder, listener, states = _decoder()
    decoder.handle(bytes.fromhex("0b000000c8018080"))
    assert listener.events == [("state", 11, StateChange(state=1, brightness=128))]
    assert states[11].brightness == 128


def test_dim2_change_is_handled_like_dim() -> None:
    decoder, listener, _ = _decoder()
    decoder.handle(bytes.fromhex("0b00000098004000"))
    assert listener.events == [("state", 11, StateChange(state=0, brightness=64))]


def test_off_device_has_zero_transition_start() -> None:
    decoder, _, states = _decoder()
    decoder.handle(bytes.fromhex("0b000000c800ff00"))
    assert states[11].brightness == 0


def test_scene_trigger() -> None:
    decoder, listener, _ = _decoder()
    decoder.handle(bytes.fromhex("000000002105"))
    assert listener.events == [("scene", 0, 5)]


def test_short_and_chatter_notifications_are_ignored() -> None:
    decoder, listener, _ = _decoder()
    assert decoder.handle(bytes.fromhex("0b0000")) is None
    assert decoder.handle(bytes.fromhex("0b0000001b00")) is not None
    assert decoder.handle(bytes.fromhex("0b000000ff01")) is not None
    assert listener.events == []


def test_parse_notification_without_trailing_bytes() -> None:
    notification = parse_notification(bytes.fromhex("0c00000097"))
    assert notification is not None
    assert notification.command == "0097"
    assert notification.state is None
    assert notification.data2 is None


def test_scene_id_uses_full_byte_value() -> None:
    decoder, listener, _ = _decoder()
    decoder.handle(bytes.fromhex("010000002115"))
    assert listener.events == [("scene", 1, 0x15)]
