"""Decode last-data notifications into state and scene events."""

from __future__ import annotations

import logging
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass

from plejdble.core.events import SessionListener
from plejdble.core.log_config import VERBOSE
from plejdble.core.model import DeviceRuntimeState, StateChange

BLE_CMD_DIM_CHANGE = "00c8"
BLE_CMD_DIM2_CHANGE = "0098"
BLE_CMD_STATE_CHANGE = "0097"
BLE_CMD_SCENE_TRIG = "0021"
BLE_CMD_MESH_CHATTER = "001b"

MIN_NOTIFICATION_LENGTH = 5

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    device_id: int
    command: str
    state: int | None
    data2: int | None
    raw: bytes


def parse_notification(decoded: bytes) -> Notification | None:
    """Split a decrypted notification into its fields; None when too short.

    Layout: ``[device id][?][?][command:2][state][data2:2]...``. Bytes 1 and 2
    are not interpreted.
    """
    if len(decoded) < MIN_NOTIFICATION_LENGTH:
        return None
    # byte 5 is read as a plain byte value for every command; state and dim
    # notifications only carry 0 or 1 there, and scene triggers carry the scene id
    state = decoded[5] if len(decoded) > 5 else None
    data2 = int.from_bytes(decoded[6:8], "big") >> 8 if len(decoded) > 6 else None
    return Notification(
        device_id=decoded[0],
        command=decoded[3:5].hex(),
        state=state,
        data2=data2,
        raw=bytes(decoded),
    )


class NotificationDecoder:
    def __init__(
        self,
        listener: SessionListener,
        states: MutableMapping[int, DeviceRuntimeState],
        describe: Callable[[int], str | None] = lambda _: None,
    ) -> None:
        self._listener = listener
        self._states = states
        self._describe = describe

    def handle(self, decoded: bytes) -> Notification | None:
        notification = parse_notification(decoded)
        if notification is None:
            LOGGER.debug("Too short raw event ignored: %s", decoded.hex())
            return None

        device_id = notification.device_id
        LOGGER.log(VERBOSE, "Raw event received: %s", decoded.hex())
        LOGGER.log(
            VERBOSE,
            "Device %d, cmd %s, state %s, dim/data2 %s",
            device_id,
            notification.command,
            notification.state,
            notification.data2,
        )

        if notification.command in (BLE_CMD_DIM_CHANGE, BLE_CMD_DIM2_CHANGE):
            dim = notification.data2
            LOGGER.debug(
                "%s (%d) got state+dim update. S: %s, D: %s",
                self._describe(device_id),
                device_id,
                notification.state,
                dim,
            )
            self._listener.state_changed(device_id, StateChange(state=notification.state, brightness=dim))
            self._states[device_id] = DeviceRuntimeState(state=notification.state, dim=dim or 0)
        elif notification.command == BLE_CMD_STATE_CHANGE:
            LOGGER.debug(
                "%s (%d) got state update. S: %s",
                self._describe(device_id),
                device_id,
                notification.state,
            )
            self._listener.state_changed(device_id, StateChange(state=notification.state))
            self._states[device_id] = DeviceRuntimeState(state=notification.state, dim=0)
        elif notification.command == BLE_CMD_SCENE_TRIG:
            if notification.state is None:
                LOGGER.debug("Scene trigger without scene id ignored: %s", decoded.hex())
                return notification
            scene_id = notification.state
            LOGGER.debug(
                "%s (%d) scene triggered (device id %d). Name can be misleading if there is a "
                "device with the same numeric id.",
                self._describe(scene_id),
                scene_id,
                device_id,
            )
            self._listener.scene_triggered(device_id, scene_id)
        elif notification.command == BLE_CMD_MESH_CHATTER:
            pass
        else:
            LOGGER.log(
                VERBOSE,
                "Command %s unknown. Device %s (%d)",
                notification.command,
                self._describe(device_id),
                device_id,
            )
        return notification
