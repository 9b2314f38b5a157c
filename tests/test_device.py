import pytest

from statusblocks.battery.device import (
    BatteryDevice,
    BatteryDriver,
    BatteryInfo,
    BatteryStatus,
    DeviceName,
)
from statusblocks.core import StatusError


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Charging", BatteryStatus.CHARGING),
        ("Discharging", BatteryStatus.DISCHARGING),
        ("Empty", BatteryStatus.EMPTY),
        ("Full", BatteryStatus.FULL),
        ("Not charging", BatteryStatus.NOT_CHARGING),
        ("Unknown", BatteryStatus.UNKNOWN),
        ("something else", BatteryStatus.UNKNOWN),
        ("charging", BatteryStatus.UNKNOWN),
    ],
)
def test_status_parse(text, expected):
    assert BatteryStatus.parse(text) is expected


def test_driver_names():
    assert BatteryDriver("sysfs") is BatteryDriver.SYSFS
    assert BatteryDriver("apc_ups") is BatteryDriver.APC_UPS
    assert BatteryDriver("upower") is BatteryDriver.UPOWER


def test_any_device_name_matches_everything():
    name = DeviceName.new(None)
    assert name.matches("BAT0")
    assert name.matches("")
    assert name.exact() is None


def test_regex_device_name():
    name = DeviceName.new("BAT")
    assert name.matches("BAT0")
    assert name.matches("xBATx")
    assert not name.matches("AC")
    assert name.exact() == "BAT"


def test_invalid_regex_raises():
    with pytest.raises(StatusError, match="failed to parse regex"):
        DeviceName.new("(")


def test_battery_info_defaults():
    info = BatteryInfo(BatteryStatus.FULL, 100.0)
    assert info.power is None
    assert info.time_remaining is None


def test_battery_device_is_abstract():
    with pytest.raises(TypeError):
        BatteryDevice()