from __future__ import annotations

import asyncio

from fakes import CRYPTO_KEY, DEVICE_PATH, characteristic_paths, gateway_config, plejd_bus
from plejdble import api
from plejdble.api import Gateway
from plejdble.core.crypto import encrypt_decrypt


def test_public_surface_exports() -> None:
    for name in ("Gateway", "PlejdService", "SessionListener", "GatewayConfig", "PlejdError"):
        assert name in api.__all__
        assert hasattr(api, name)


def test_gateway_context_manager_runs_session() -> None:
    bus = plejd_bus()
    data_path = characteristic_paths(DEVICE_PATH)["data"]

    async def scenario() -> None:
        gateway = Gateway(gateway_config(), bus=bus)
        async with gateway:
            assert gateway.is_ready
            assert [device.id for device in gateway.devices] == [11, 12]
            gateway.turn_off(11)
            await gateway.service.flush(1)

    asyncio.run(scenario())
    written = [encrypt_decrypt(CRYPTO_KEY, bytes.fromhex("ffeeddccbbaa"), data) for data in bus.writes_to(data_path)]
    assert written == [bytes.fromhex("0b0110009700")]
    assert bus.closed
