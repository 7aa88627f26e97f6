from __future__ import annotations

import asyncio
import gc

import pytest

from fakes import (
    ADAPTER_PATH,
    CHALLENGE,
    CRYPTO_KEY,
    DEVICE_PATH,
    OTHER_DEVICE_PATH,
    FakeBus,
    characteristic_paths,
    gateway_config,
    no_sleep,
    ping_echo,
    plejd_bus,
)
from plejdble.core.crypto import create_challenge_response, encrypt_decrypt
from plejdble.core.errors import DeviceLookupError, SessionNotReadyError, TransportBusyError, TransportError
from plejdble.core.events import SessionListener
from plejdble.core.gatt import PLEJD_SERVICE
from plejdble.core.model import StateChange
from plejdble.core.service import PlejdService, SessionState
from plejdble.transports.base import DEVICE_INTERFACE

PATHS = characteristic_paths(DEVICE_PATH)
ADDRESS = bytes.fromhex("ffeeddccbbaa")


class RecordingListener(SessionListener):
    def __init__(self) -> None:
        self.events: list[tuple] = []

    def state_changed(self, device_id: int, change: StateChange) -> None:
        self.events.append(("state", device_id, change))

    def scene_triggered(self, device_id: int, scene_id: int) -> None:
        self.events.append(("scene", device_id, scene_id))

    def connect_failed(self) -> None:
        self.events.append(("connect_failed",))


class RecordingSceneManager:
    def __init__(self) -> None:
        self.executed: list[int] = []

    def execute_scene(self, scene_index, service) -> None:
        self.executed.append(scene_index)


def _service(bus: FakeBus, listener: SessionListener | None = None, **overrides) -> PlejdService:
    ping_interval = overrides.pop("ping_interval", 0)
    scene_manager = overrides.pop("scene_manager", None)
    return PlejdService(
        gateway_config(**overrides),
        bus=bus,
        listener=listener,
        scene_manager=scene_manager,
        sleep=no_sleep,
        ping_interval=ping_interval,
    )


def _connects(bus: FakeBus) -> list[str]:
    return [call[1] for call in bus.calls if call[0] == "connect_device"]


def test_init_connects_strongest_peer_and_authenticates() -> None:
    bus = plejd_bus(rssi=-40)
    bus.add_peer(OTHER_DEVICE_PATH, rssi=-80)

    async def scenario() -> PlejdService:
        service = _service(bus)
        await service.init()
        return service

    service = asyncio.run(scenario())

    assert _connects(bus) == [DEVICE_PATH]
    assert service.is_ready
    assert service.state is SessionState.READY
    assert service.session is not None
    assert service.session.address == ADDRESS
    assert service.connected_device is not None
    assert service.connected_device.name == "Kitchen"
    assert bus.writes_to(PATHS["auth"]) == [b"\x00", create_challenge_response(CRYPTO_KEY, CHALLENGE)]
    assert PATHS["last_data"] in bus.notifying
    assert bus.discovery_filter == ([PLEJD_SERVICE], "le")
    assert ("stop_discovery", ADAPTER_PATH) in bus.calls


def test_init_removes_stale_plejd_devices() -> None:
    bus = plejd_bus()
    stale = "/org/bluez/hci0/dev_01_02_03_04_05_06"
    foreign = "/org/bluez/hci0/dev_0A_0B_0C_0D_0E_0F"
    bus.objects[stale] = {DEVICE_INTERFACE: {"UUIDs": [PLEJD_SERVICE], "Connected": True}}
    bus.objects[foreign] = {DEVICE_INTERFACE: {"UUIDs": [], "Connected": True}}

    asyncio.run(_service(bus).init())

    assert ("disconnect_device", stale) in bus.calls
    assert ("remove_device", stale) in bus.calls
    assert ("remove_device", foreign) not in bus.calls
    assert foreign in bus.objects


def test_init_without_adapter_returns() -> None:
    bus = FakeBus(objects={})

    async def scenario() -> PlejdService:
        service = _service(bus)
        await service.init()
        return service

    service = asyncio.run(scenario())
    assert service.state is SessionState.IDLE
    assert not service.is_ready
    assert not any(call[0] == "start_discovery" for call in bus.calls)


def test_init_returns_when_discovery_is_rejected() -> None:
    bus = plejd_bus()
    bus.fail("start_discovery", TransportBusyError("StartDiscovery: In Progress"))

    async def scenario() -> PlejdService:
        service = _service(bus)
        await service.init()
        return service

    service = asyncio.run(scenario())
    assert service.state is SessionState.IDLE
    assert _connects(bus) == []


def test_connect_failure_moves_to_next_candidate() -> None:
    bus = plejd_bus(rssi=-40)
    bus.add_peer(OTHER_DEVICE_PATH, rssi=-80)
    bus.fail("connect_device", TransportError("Connect failed"))

    async def scenario() -> PlejdService:
        service = _service(bus)
        await service.init()
        return service

    service = asyncio.run(scenario())
    assert _connects(bus) == [DEVICE_PATH, OTHER_DEVICE_PATH]
    assert service.is_ready
    assert service.connected_device is not None
    assert service.connected_device.name == "Hall"


def test_candidate_without_rssi_is_skipped() -> None:
    bus = plejd_bus()
    del bus.discoverable[DEVICE_PATH][DEVICE_INTERFACE]["RSSI"]

    asyncio.run(_service(bus).init())
    assert _connects(bus) == []


def test_missing_plejd_service_reports_connect_failed() -> None:
    bus = FakeBus()
    bus.add_peer(DEVICE_PATH, rssi=-40, gatt=False)
    listener = RecordingListener()

    async def scenario() -> PlejdService:
        service = _service(bus, listener)
        await service.init()
        return service

    service = asyncio.run(scenario())
    assert listener.events == [("connect_failed",)]
    assert not service.is_ready


def test_notifications_are_decrypted_and_decoded() -> None:
    bus = plejd_bus()
    listener = RecordingListener()

    async def scenario() -> PlejdService:
        service = _service(bus, listener)
        await service.init()
        bus.notify(PATHS["last_data"], encrypt_decrypt(CRYPTO_KEY, ADDRESS, bytes.fromhex("0b000000c8018080")))
        bus.notify(PATHS["last_data"], encrypt_decrypt(CRYPTO_KEY, ADDRESS, bytes.fromhex("000000002103")))
        return service

    service = asyncio.run(scenario())
    assert listener.events == [
        ("state", 11, StateChange(state=1, brightness=128)),
        ("scene", 0, 3),
    ]
    assert service.device_states[11].brightness == 128


def test_turn_on_and_off_write_encrypted_commands() -> None:
    bus = plejd_bus()

    async def scenario() -> None:
        service = _service(bus)
        await service.init()
        service.turn_on(11, brightness=128)
        await service.flush(1)
        service.turn_off(12)
        await service.flush(1)
        await service.close()

    asyncio.run(scenario())
    written = [encrypt_decrypt(CRYPTO_KEY, ADDRESS, data) for data in bus.writes_to(PATHS["data"])]
    assert written == [bytes.fromhex("0b01100098018080"), bytes.fromhex("0c0110009700")]
    assert bus.closed


def test_write_without_session_returns_false() -> None:
    service = _service(plejd_bus())
    assert asyncio.run(service.write(b"\x01")) is False


def test_write_failure_reconnects() -> None:
    bus = plejd_bus()

    async def scenario() -> tuple[PlejdService, bool]:
        service = _service(bus)
        await service.init()
        bus.fail("write_value", TransportError("WriteValue failed"))
        ok = await service.write(b"\x01")
        return service, ok

    service, ok = asyncio.run(scenario())
    assert ok is False
    assert _connects(bus) == [DEVICE_PATH, DEVICE_PATH]
    assert service.is_ready


def test_throttled_init_returns_pending_task() -> None:
    bus = plejd_bus()

    async def scenario() -> None:
        service = _service(bus)
        first = service.throttled_init(0)
        second = service.throttled_init(0)
        assert first is second
        await first
        assert service.is_ready

    asyncio.run(scenario())
    assert _connects(bus) == [DEVICE_PATH]


def test_ping_failure_reconnects() -> None:
    bus = plejd_bus()
    replies = {"bad": 1}

    def flaky_ping(last: bytes | None) -> bytes:
        if replies["bad"]:
            replies["bad"] -= 1
            return last or b""
        return ping_echo(last)

    async def scenario() -> None:
        service = _service(bus, keep_alive=True)
        await service.init()
        bus.responders[PATHS["ping"]] = flaky_ping
        for _ in range(200):
            if len(_connects(bus)) == 2 and service.is_ready:
                break
            await asyncio.sleep(0)
        await service.close()

    asyncio.run(scenario())
    assert _connects(bus) == [DEVICE_PATH, DEVICE_PATH]


def test_unknown_device_lookup_raises() -> None:
    service = _service(plejd_bus())
    assert service.device(11).name == "Kitchen"
    with pytest.raises(DeviceLookupError, match="Unknown device id 99"):
        service.device(99)


def test_wait_until_ready_times_out() -> None:
    service = _service(plejd_bus())
    with pytest.raises(SessionNotReadyError):
        asyncio.run(service.wait_until_ready(0.01))


def test_trigger_scene_uses_scene_manager() -> None:
    manager = RecordingSceneManager()
    service = _service(plejd_bus(), scene_manager=manager)
    service.trigger_scene(4)
    assert manager.executed == [4]

    _service(plejd_bus()).trigger_scene(4)


def test_scan_returns_candidates_without_connecting() -> None:
    bus = plejd_bus(rssi=-70)
    bus.add_peer(OTHER_DEVICE_PATH, rssi=-30)

    candidates = asyncio.run(_service(bus).scan())

    assert [candidate.path for candidate in candidates] == [OTHER_DEVICE_PATH, DEVICE_PATH]
    assert candidates[0].device is not None
    assert candidates[0].device.name == "Hall"
    assert _connects(bus) == []


def test_reconnects_keep_a_single_notification_handler() -> None:
    bus = plejd_bus()
    listener = RecordingListener()

    async def scenario() -> PlejdService:
        service = _service(bus, listener)
        for _ in range(5):
            await service.init()
        bus.notify(PATHS["last_data"], encrypt_decrypt(CRYPTO_KEY, ADDRESS, bytes.fromhex("0c0000009701")))
        await service.close()
        return service

    asyncio.run(scenario())
    assert len(listener.events) == 1
    assert bus.property_callbacks[PATHS["last_data"]] == []


def test_failed_background_reconnect_is_not_reported_as_unretrieved() -> None:
    bus = plejd_bus()
    bus.fail("get_managed_objects", TransportError("GetManagedObjects failed"))
    reported: list[dict] = []

    async def scenario() -> None:
        asyncio.get_running_loop().set_exception_handler(lambda loop, context: reported.append(context))
        service = _service(bus)
        task = service.throttled_init(0)
        while not task.done():
            await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert not task.cancelled()
        del task
        gc.collect()

    asyncio.run(scenario())
    assert reported == []
