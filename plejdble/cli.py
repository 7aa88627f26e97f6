"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from pathlib import Path

import typer

from plejdble.core.config_loader import load_config
from plejdble.core.errors import PlejdError
from plejdble.core.events import SessionListener
from plejdble.core.log_config import LogConfig, configure_logging
from plejdble.core.model import GatewayConfig, StateChange
from plejdble.core.service import PlejdService, SessionState
from plejdble.transports.bluez import BluezBus

app = typer.Typer(help="Plejd lighting control over a single BLE mesh connection")

LOGGER = logging.getLogger(__name__)


class EchoListener(SessionListener):
    """Prints mesh events, one line each."""

    def __init__(self, service: PlejdService | None = None) -> None:
        self.service = service

    def state_changed(self, device_id: int, change: StateChange) -> None:
        line = f"state {device_id} state={change.state}"
        if change.brightness is not None:
            line += f" brightness={change.brightness}"
        typer.echo(line)

    def scene_triggered(self, device_id: int, scene_id: int) -> None:
        typer.echo(f"scene {device_id} {scene_id}")

    def connect_failed(self) -> None:
        typer.echo("connect-failed", err=True)
        if self.service is not None:
            self.service.throttled_init(self.service.config.connection_timeout)


class LoggingSceneManager:
    def execute_scene(self, scene_index: int, service: PlejdService) -> None:
        LOGGER.info("Scene %d requested, no scene definitions loaded.", scene_index)


def _load(config_path: Path | None, debug: bool, verbose: bool) -> GatewayConfig:
    config = load_config(config_path)
    if debug or verbose:
        log = LogConfig(debug=debug or config.log.debug, verbose=verbose or config.log.verbose)
        config = dataclasses.replace(config, log=log)
    configure_logging(config.log)
    return config


def _build_service(config: GatewayConfig, listener: SessionListener | None = None) -> PlejdService:
    return PlejdService(
        config,
        bus=BluezBus(),
        listener=listener,
        scene_manager=LoggingSceneManager(),
    )


async def _connect(service: PlejdService, timeout: float) -> None:
    await service.init()
    await service.wait_until_ready(timeout)


@app.command("devices")
def list_devices(
    config: Path | None = typer.Option(None, "--config", help="Path to config.yaml"),
) -> None:
    """List devices from the config file."""
    try:
        gateway_config = load_config(config)
        if not gateway_config.devices:
            typer.echo("No devices configured")
            return
        for device in gateway_config.devices:
            dimmable = "dimmable" if device.dimmable else "switch"
            typer.echo(f"{device.id}: {device.name} ({device.serial_number}, {dimmable})")
    except PlejdError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("scan")
def scan(
    config: Path | None = typer.Option(None, "--config", help="Path to config.yaml"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging"),
) -> None:
    """Scan for Plejd peripherals and show them strongest first."""

    async def _scan(gateway_config: GatewayConfig):
        service = _build_service(gateway_config)
        try:
            return await service.scan()
        finally:
            await service.close()

    try:
        gateway_config = _load(config, debug, verbose)
        candidates = asyncio.run(_scan(gateway_config))
        if not candidates:
            typer.echo("No Plejd devices found")
            return
        for candidate in candidates:
            matched = candidate.device.name if candidate.device else "<unknown>"
            typer.echo(f"{candidate.path} rssi={candidate.rssi} -> {matched}")
    except PlejdError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("run")
def run_session(
    config: Path | None = typer.Option(None, "--config", help="Path to config.yaml"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging"),
) -> None:
    """Connect to the mesh and print state and scene events until interrupted."""

    async def _run(gateway_config: GatewayConfig) -> None:
        listener = EchoListener()
        service = _build_service(gateway_config, listener)
        listener.service = service
        try:
            await service.init()
            if service.state is SessionState.IDLE:
                raise PlejdError("Bluetooth adapter unavailable or discovery could not start")
            while True:
                await asyncio.sleep(3600)
        finally:
            await service.close()

    try:
        gateway_config = _load(config, debug, verbose)
        asyncio.run(_run(gateway_config))
    except KeyboardInterrupt:
        typer.echo("Stopped")
    except PlejdError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def _send(gateway_config: GatewayConfig, device_id: int, timeout: float, action) -> None:
    async def _go() -> None:
        service = _build_service(gateway_config)
        try:
            service.device(device_id)
            await _connect(service, timeout)
            wait = action(service)
            if wait:
                await asyncio.sleep(wait)
            await service.flush(timeout)
        finally:
            await service.close()

    asyncio.run(_go())


@app.command("on")
def turn_on(
    device_id: int,
    brightness: int | None = typer.Option(None, "--brightness", min=0, max=255, help="Level 0-255"),
    transition: float | None = typer.Option(None, "--transition", min=0, help="Ramp duration in seconds"),
    timeout: float = typer.Option(30.0, "--timeout", help="Seconds to wait for the session"),
    config: Path | None = typer.Option(None, "--config", help="Path to config.yaml"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging"),
) -> None:
    """Turn a device on, optionally at a brightness and with a ramp."""

    def action(service: PlejdService) -> float | None:
        service.turn_on(device_id, brightness=brightness, transition=transition)
        return transition

    try:
        gateway_config = _load(config, debug, verbose)
        _send(gateway_config, device_id, timeout, action)
        level = f" brightness={brightness}" if brightness is not None else ""
        typer.echo(f"Sent ON to {device_id}{level}")
    except PlejdError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("off")
def turn_off(
    device_id: int,
    transition: float | None = typer.Option(None, "--transition", min=0, help="Ramp duration in seconds"),
    timeout: float = typer.Option(30.0, "--timeout", help="Seconds to wait for the session"),
    config: Path | None = typer.Option(None, "--config", help="Path to config.yaml"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging"),
) -> None:
    """Turn a device off."""

    def action(service: PlejdService) -> float | None:
        service.turn_off(device_id, transition=transition)
        return transition

    try:
        gateway_config = _load(config, debug, verbose)
        _send(gateway_config, device_id, timeout, action)
        typer.echo(f"Sent OFF to {device_id}")
    except PlejdError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
