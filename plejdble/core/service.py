"""Session engine used by the CLI and by home-automation bridges.

``PlejdService`` owns the single authenticated link to the Plejd mesh: it
scans for Plejd peripherals, connects to the strongest one, binds the GATT
characteristics, authenticates, and then keeps the link alive. Outbound
commands go through the write queue; inbound notifications are decrypted and
handed to the decoder. Every transient failure ends up in ``throttled_init``
so reconnects never overlap.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from plejdble.core.commands import brightness_command
from plejdble.core.crypto import create_challenge_response, encrypt_decrypt
from plejdble.core.decoder import NotificationDecoder
from plejdble.core.device_match import device_by_address, device_by_id, device_name
from plejdble.core.errors import (
    DeviceLookupError,
    SessionNotReadyError,
    TransportBusyError,
    TransportError,
)
from plejdble.core.events import SceneManager, SessionListener
from plejdble.core.gatt import PLEJD_SERVICE, GattBinding, bind_plejd_service
from plejdble.core.keepalive import PING_INTERVAL, KeepaliveMonitor
from plejdble.core.log_config import VERBOSE, apply_log_config
from plejdble.core.model import (
    BlePeerCandidate,
    DeviceDescriptor,
    DeviceRuntimeState,
    GatewayConfig,
    Session,
    WriteQueueItem,
)
from plejdble.core.single_flight import SingleFlight
from plejdble.core.transition import TransitionEngine
from plejdble.core.write_queue import WriteQueue
from plejdble.transports.base import (
    ADAPTER_INTERFACE,
    DEVICE_INTERFACE,
    GATT_CHARACTERISTIC_INTERFACE,
    GATT_SERVICE_INTERFACE,
    BluetoothBus,
    ManagedObjects,
    PropertiesChangedCallback,
)

LOGGER = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    GATHERING = "candidates_gathering"
    CONNECTING = "connecting"
    ENUMERATING = "enumerating"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    REINITIALIZING = "reinitializing"


def _advertises_plejd(device_props: dict[str, Any]) -> bool:
    uuids = device_props.get("UUIDs") or []
    return PLEJD_SERVICE in (str(uuid).lower() for uuid in uuids)


def _first_with_interface(objects: ManagedObjects, interface: str) -> str | None:
    for path, interfaces in objects.items():
        if interface in interfaces:
            return path
    return None


def _retrieve_init_result(task: asyncio.Task[None]) -> None:
    # logged in _delayed_init
    if not task.cancelled():
        task.exception()


class PlejdService:
    def __init__(
        self,
        config: GatewayConfig,
        *,
        bus: BluetoothBus,
        listener: SessionListener | None = None,
        scene_manager: SceneManager | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        ping_interval: float = PING_INTERVAL,
    ) -> None:
        apply_log_config(config.log)
        LOGGER.info("Starting Plejd BLE, resetting all device states.")

        self.config = config
        self.devices: tuple[DeviceDescriptor, ...] = config.devices
        self.session: Session | None = None
        self.connected_device: DeviceDescriptor | None = None
        self.device_states: dict[int, DeviceRuntimeState] = {}
        self.state = SessionState.IDLE

        self._bus = bus
        self._listener = listener or SessionListener()
        self._scene_manager = scene_manager
        self._sleep = sleep
        self._candidates: list[BlePeerCandidate] = []
        self._adapter_path: str | None = None
        self._ready = asyncio.Event()
        self._init_flight: SingleFlight[None] = SingleFlight()
        self._notify_subscription: tuple[str, PropertiesChangedCallback] | None = None

        self._write_queue = WriteQueue(
            self.write,
            wait_time=config.write_queue_wait_time / 1000,
            describe=self.device_name,
        )
        self._keepalive = KeepaliveMonitor(bus, self._on_ping_failed, interval=ping_interval)
        self._transitions = TransitionEngine(self._set_brightness)
        self._decoder = NotificationDecoder(self._listener, self.device_states, self.device_name)

    # Registry

    def device_name(self, device_id: int) -> str | None:
        return device_name(self.devices, device_id)

    def device(self, device_id: int) -> DeviceDescriptor:
        device = device_by_id(self.devices, device_id)
        if device is None:
            known = ", ".join(str(d.id) for d in self.devices) or "<none>"
            raise DeviceLookupError(f"Unknown device id {device_id}. Configured ids: {known}")
        return device

    @property
    def is_ready(self) -> bool:
        return self.state is SessionState.READY and self.session is not None

    @property
    def queue_length(self) -> int:
        return len(self._write_queue)

    # Discovery & connection

    def _reset(self) -> None:
        self._bus.clear_interfaces_added()
        if self._notify_subscription is not None:
            self._bus.off_properties_changed(*self._notify_subscription)
            self._notify_subscription = None
        self._candidates = []
        self.session = None
        self.connected_device = None
        self._ready.clear()
        self._keepalive.stop()
        self._write_queue.stop()
        self._transitions.cancel_all()
        self.state = SessionState.IDLE

    async def init(self) -> None:
        """Reset the adapter, scan for Plejd peripherals, connect, and authenticate.

        Returns early (after logging) when no adapter is found or discovery
        cannot start. Exceptions raised after the scan window are logged and
        re-raised.
        """
        self._reset()
        LOGGER.info("init()")

        adapter_path = await self._prepare_adapter()
        if adapter_path is None:
            return

        self.state = SessionState.GATHERING
        await self._sleep(self.config.connection_timeout)
        try:
            await self._internal_init(adapter_path)
        except Exception:
            LOGGER.exception("InternalInit exception! Will rethrow.")
            raise

    async def scan(self) -> list[BlePeerCandidate]:
        """Run discovery without connecting and return candidates, strongest first."""
        self._reset()
        adapter_path = await self._prepare_adapter()
        if adapter_path is None:
            return []
        self.state = SessionState.GATHERING
        await self._sleep(self.config.connection_timeout)
        candidates = await self._inspect_candidates()
        await self._stop_discovery(adapter_path)
        self._bus.clear_interfaces_added()
        self.state = SessionState.IDLE
        return candidates

    async def _prepare_adapter(self) -> str | None:
        objects = await self._bus.get_managed_objects()
        adapter_path = _first_with_interface(objects, ADAPTER_INTERFACE)
        if adapter_path is None:
            LOGGER.error("unable to find a bluetooth adapter that is compatible.")
            return None
        LOGGER.debug("Found BLE interface '%s' at %s", ADAPTER_INTERFACE, adapter_path)
        self._adapter_path = adapter_path

        for path, interfaces in objects.items():
            device_props = interfaces.get(DEVICE_INTERFACE)
            if device_props is None or not _advertises_plejd(device_props):
                continue
            try:
                if device_props.get("Connected"):
                    LOGGER.info("disconnecting %s", path)
                    await self._bus.disconnect_device(path)
                await self._bus.remove_device(adapter_path, path)
            except TransportError as exc:
                LOGGER.error("Failed to remove stale device %s: %s", path, exc)

        self._bus.on_interfaces_added(self._on_interfaces_added)
        self.state = SessionState.SCANNING
        try:
            await self._bus.set_discovery_filter(adapter_path, [PLEJD_SERVICE], "le")
            await self._bus.start_discovery(adapter_path)
        except TransportError as exc:
            LOGGER.error(
                "failed to start discovery. Make sure no other process is currently scanning. (%s)", exc
            )
            self.state = SessionState.IDLE
            return None
        return adapter_path

    def _on_interfaces_added(self, path: str, interfaces: dict[str, dict[str, Any]]) -> None:
        device_props = interfaces.get(DEVICE_INTERFACE)
        if device_props is None:
            return
        if not _advertises_plejd(device_props):
            LOGGER.debug("Ignoring %s, no Plejd service advertised", path)
            return
        if any(candidate.path == path for candidate in self._candidates):
            return
        LOGGER.debug("Found Plejd service on %s", path)
        self._candidates.append(BlePeerCandidate(path=path))

    async def _inspect_candidates(self) -> list[BlePeerCandidate]:
        LOGGER.debug("Got %d device(s).", len(self._candidates))
        for candidate in self._candidates:
            LOGGER.debug("Inspecting %s", candidate.path)
            try:
                candidate.rssi = await self._bus.get_property(candidate.path, DEVICE_INTERFACE, "RSSI")
            except TransportError as exc:
                LOGGER.error("Failed inspecting %s. %s", candidate.path, exc)
                continue
            candidate.device = device_by_address(self.devices, candidate.path)
            candidate.inspected = True
            LOGGER.debug("Discovered %s with rssi %s", candidate.path, candidate.rssi)

        inspected = [candidate for candidate in self._candidates if candidate.inspected]
        return sorted(
            inspected,
            key=lambda candidate: candidate.rssi if candidate.rssi is not None else -1000,
            reverse=True,
        )

    async def _connect_best(self, candidates: list[BlePeerCandidate]) -> BlePeerCandidate | None:
        self.state = SessionState.CONNECTING
        for candidate in candidates:
            try:
                LOGGER.info("Connecting to %s", candidate.path)
                await self._bus.connect_device(candidate.path)
                return candidate
            except TransportError as exc:
                LOGGER.error("Warning: unable to connect, will retry. %s", exc)
        LOGGER.warning("Could not connect to any of %d Plejd device(s).", len(candidates))
        return None

    async def _internal_init(self, adapter_path: str) -> None:
        candidates = await self._inspect_candidates()
        connected = await self._connect_best(candidates)
        await self._sleep(self.config.connection_timeout)
        await self.on_device_connected(connected)
        await self._stop_discovery(adapter_path)

    async def _stop_discovery(self, adapter_path: str) -> None:
        try:
            await self._bus.stop_discovery(adapter_path)
        except TransportError as exc:
            LOGGER.warning("Failed to stop discovery: %s", exc)

    async def on_device_connected(self, peer: BlePeerCandidate | None) -> None:
        LOGGER.info("onDeviceConnected()")
        LOGGER.debug("Device: %s", peer)
        if peer is None:
            LOGGER.error("No peer connected, looking for an already known Plejd service.")
        self.state = SessionState.ENUMERATING

        objects = await self._bus.get_managed_objects()
        characteristics = [
            path for path, interfaces in objects.items() if GATT_CHARACTERISTIC_INTERFACE in interfaces
        ]

        binding: GattBinding | None = None
        for path, interfaces in objects.items():
            if GATT_SERVICE_INTERFACE not in interfaces:
                continue
            nested = [c for c in characteristics if c.startswith(path + "/")]
            LOGGER.info("trying %d characteristics", len(nested))
            binding = await bind_plejd_service(self._bus, path, nested)
            if binding is not None:
                break

        if binding is None:
            LOGGER.info("warning: wasn't able to connect to Plejd, will retry.")
            self._listener.connect_failed()
            return

        session = binding.session()
        if session is None:
            LOGGER.error("unable to enumerate characteristics, missing %s.", ", ".join(binding.missing))
            self._listener.connect_failed()
            return

        self.session = session
        self.connected_device = peer.device if peer else None
        await self.authenticate()

    async def authenticate(self) -> None:
        LOGGER.info("authenticate()")
        session = self.session
        if session is None:
            LOGGER.error("authenticate() called without a session.")
            return
        self.state = SessionState.AUTHENTICATING
        auth = session.characteristics.auth

        try:
            LOGGER.debug("Sending challenge to device")
            await self._bus.write_value(auth, b"\x00")
            LOGGER.debug("Reading response from device")
            challenge = await self._bus.read_value(auth)
            response = create_challenge_response(self.config.crypto_key, challenge)
            LOGGER.debug("Responding to authenticate")
            await self._bus.write_value(auth, response)
        except TransportError as exc:
            LOGGER.error("Failed to authenticate: %s", exc)

        if self.config.keep_alive:
            self._keepalive.start(session.characteristics.ping)
        self._write_queue.start()

        last_data = session.characteristics.last_data

        def on_last_data(interface: str, changed: dict[str, Any], invalidated: list[str]) -> None:
            self._on_last_data_updated(session, interface, changed, invalidated)

        try:
            await self._bus.on_properties_changed(last_data, on_last_data)
            self._notify_subscription = (last_data, on_last_data)
            await self._bus.start_notify(last_data)
        except TransportError as exc:
            LOGGER.error("Failed to subscribe to %s: %s", last_data, exc)

        self.state = SessionState.READY
        self._ready.set()

    async def _delayed_init(self, delay: float) -> None:
        self.state = SessionState.REINITIALIZING
        await self._sleep(delay)
        try:
            await self.init()
        except Exception:
            LOGGER.exception("ThrottledInit exception calling init(). Will re-throw.")
            raise

    def throttled_init(self, delay: float) -> asyncio.Task[None]:
        """Schedule ``init()`` after ``delay`` seconds unless one is already pending.

        Every caller during the same window gets the same task back.
        """
        task, started = self._init_flight.run(lambda: self._delayed_init(delay))
        if started:
            task.add_done_callback(_retrieve_init_result)
        else:
            LOGGER.debug("ThrottledInit already in progress. Returning the pending reconnect.")
        return task

    # Keepalive & notifications

    def _on_ping_failed(self, reason: str) -> None:
        LOGGER.debug("onPingFailed(%s)", reason)
        LOGGER.info("ping failed, reconnecting.")
        self._keepalive.stop()
        self.throttled_init(0)

    def _on_last_data_updated(
        self,
        session: Session,
        interface: str,
        changed: dict[str, Any],
        invalidated: list[str],
    ) -> None:
        if session is not self.session:
            return
        if interface != GATT_CHARACTERISTIC_INTERFACE:
            return
        if not changed:
            return
        value = changed.get("Value")
        if not value:
            return

        decoded = encrypt_decrypt(self.config.crypto_key, session.address, bytes(value))
        self._decoder.handle(decoded)

    # Outbound

    async def write(self, data: bytes) -> bool:
        """Encrypt and write one payload; on bus errors schedule a reconnect and return False."""
        session = self.session
        if not data or session is None:
            LOGGER.debug("data or session not available. Cannot write()")
            return False

        try:
            LOGGER.log(VERBOSE, "Sending %d byte(s) of data to Plejd %s", len(data), data.hex())
            encrypted = encrypt_decrypt(self.config.crypto_key, session.address, data)
            await self._bus.write_value(session.characteristics.data, encrypted)
            return True
        except TransportBusyError as exc:
            LOGGER.debug("Write failed due to 'In progress' %s", exc)
        except TransportError as exc:
            LOGGER.debug("Write failed %s", exc)

        await asyncio.shield(self.throttled_init(self.config.connection_timeout))
        return False

    def turn_on(self, device_id: int, brightness: int | None = None, transition: float | None = None) -> None:
        LOGGER.info(
            "Plejd got turn on command for %s (%d), brightness %s%s",
            self.device_name(device_id),
            device_id,
            brightness,
            f", transition: {transition}" if transition else "",
        )
        self._transition_to(device_id, brightness, transition)

    def turn_off(self, device_id: int, transition: float | None = None) -> None:
        LOGGER.info(
            "Plejd got turn off command for %s (%d)%s",
            self.device_name(device_id),
            device_id,
            f", transition: {transition}" if transition else "",
        )
        self._transition_to(device_id, 0, transition)

    def trigger_scene(self, scene_index: int) -> None:
        LOGGER.info(
            "Triggering scene %s (%d). Scene name might be misleading if there is a device with "
            "the same numeric id.",
            self.device_name(scene_index),
            scene_index,
        )
        if self._scene_manager is None:
            LOGGER.error("No scene manager configured, cannot run scene %d.", scene_index)
            return
        self._scene_manager.execute_scene(scene_index, self)

    def _transition_to(self, device_id: int, target: int | None, transition: float | None) -> None:
        runtime = self.device_states.get(device_id)
        initial = runtime.brightness if runtime else None
        device = device_by_id(self.devices, device_id)
        self._transitions.transition_to(
            device_id,
            target,
            transition,
            initial=initial,
            dimmable=bool(device and device.dimmable),
        )

    def _set_brightness(self, device_id: int, brightness: int | None, should_retry: bool) -> None:
        command = brightness_command(device_id, brightness)
        LOGGER.debug("Queueing %s for %s (%d)", command.label, self.device_name(device_id), device_id)
        self._write_queue.push(
            WriteQueueItem(
                device_id=device_id,
                payload=command.payload,
                should_retry=should_retry,
                label=command.label,
            )
        )

    # Lifecycle

    async def wait_until_ready(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError as exc:
            raise SessionNotReadyError(f"No authenticated Plejd session after {timeout:g}s") from exc

    async def flush(self, timeout: float) -> None:
        """Wait until every queued command has been handled."""
        try:
            await asyncio.wait_for(self._write_queue.wait_empty(), timeout)
        except asyncio.TimeoutError as exc:
            raise SessionNotReadyError(
                f"{self.queue_length} command(s) still queued after {timeout:g}s"
            ) from exc

    async def close(self) -> None:
        self._init_flight.cancel()
        self._reset()
        if self._adapter_path is not None:
            try:
                await self._bus.stop_discovery(self._adapter_path)
            except TransportError as exc:
                LOGGER.debug("StopDiscovery on close: %s", exc)
        await self._bus.close()
