from __future__ import annotations

from plejdble.core.device_match import device_by_address, device_by_id, device_name, normalize_address
from plejdble.core.model import DeviceDescriptor

DEVICES = (
    DeviceDescriptor(id=11, serial_number="AABBCCDDEEFF", name="Kitchen", dimmable=True),
    DeviceDescriptor(id=12, serial_number="112233445566", name="Hall"),
)


def test_normalize_address_forms() -> None:
    assert normalize_address("/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF") == "AABBCCDDEEFF"
    assert normalize_address("aa:bb:cc:dd:ee:ff") == "AABBCCDDEEFF"
    assert normalize_address("aa-bb-cc-dd-ee-ff") == "AABBCCDDEEFF"


def test_device_by_address_matches_object_path() -> None:
    device = device_by_address(DEVICES, "/org/bluez/hci0/dev_11_22_33_44_55_66")
    assert device is not None
    assert device.name == "Hall"
    assert device_by_address(DEVICES, "/org/bluez/hci0/dev_00_00_00_00_00_00") is None


def test_device_lookup_by_id() -> None:
    assert device_by_id(DEVICES, 11) is DEVICES[0]
    assert device_by_id(DEVICES, 99) is None
    assert device_name(DEVICES, 12) == "Hall"
    assert device_name(DEVICES, 99) is None
