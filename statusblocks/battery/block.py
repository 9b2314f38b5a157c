"""The battery block: charge level, state and remaining time of a power supply."""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field, replace
from typing import Any

from statusblocks.battery import apc_ups, sysfs
from statusblocks.battery.device import (
    BatteryDevice,
    BatteryDriver,
    BatteryInfo,
    BatteryStatus,
    DeviceName,
)
from statusblocks.core import (
    CommonApi,
    State,
    StatusError,
    Value,
    Widget,
    parse_seconds,
    register_block,
    resolve_format,
)

DEFAULT_FORMAT = " $icon $percentage "
DEFAULT_ICON_FORMAT = " $icon "

_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1


def _parse_driver(value: Any) -> BatteryDriver:
    if isinstance(value, BatteryDriver):
        return value
    try:
        return BatteryDriver(value)
    except ValueError:
        raise StatusError(
            f"unknown variant `{value}`, expected one of `sysfs`, `apc_ups`, `upower`"
        ) from None


@dataclass
class Config:
    device: str | None = None
    driver: BatteryDriver = field(
        default=BatteryDriver.SYSFS, metadata={"parse": _parse_driver}
    )
    model: str | None = None
    interval: float = field(default=10.0, metadata={"parse": parse_seconds})
    format: str | None = None
    full_format: str | None = None
    charging_format: str | None = None
    empty_format: str | None = None
    not_charging_format: str | None = None
    missing_format: str | None = None
    info: float = 60.0
    good: float = 60.0
    warning: float = 30.0
    critical: float = 15.0
    full_threshold: float = 95.0
    empty_threshold: float = 7.5


def apply_thresholds(info: BatteryInfo, config: Config) -> BatteryInfo:
    """Mark the battery full or empty when its capacity crosses the configured thresholds."""
    if info.capacity >= config.full_threshold:
        return replace(info, status=BatteryStatus.FULL)
    if info.capacity <= config.empty_threshold:
        return replace(info, status=BatteryStatus.EMPTY)
    return info


def _to_i32(value: float) -> int:
    if math.isnan(value):
        return 0
    if value >= _I32_MAX:
        return _I32_MAX
    if value <= _I32_MIN:
        return _I32_MIN
    return int(value)


def format_time(seconds: float) -> str:
    """Render a duration as hours and zero-padded minutes, e.g. `2:05`."""
    hours = _to_i32(seconds / 3600.0)
    minutes = _to_i32(math.fmod(seconds, 3600.0) / 60.0)
    return f"{hours}:{minutes:02}"


def battery_icon_and_state(info: BatteryInfo, config: Config) -> tuple[str, float, State]:
    """The icon name, its progression value and the block state for a reading."""
    if info.status is BatteryStatus.EMPTY:
        return "bat", 0.0, State.CRITICAL
    if info.status in (BatteryStatus.FULL, BatteryStatus.NOT_CHARGING):
        return "bat", 1.0, State.IDLE

    charging = info.status is BatteryStatus.CHARGING
    capacity = info.capacity
    if charging:
        state = State.GOOD
    elif capacity <= config.critical:
        state = State.CRITICAL
    elif capacity <= config.warning:
        state = State.WARNING
    elif capacity <= config.info:
        state = State.INFO
    elif capacity > config.good:
        state = State.GOOD
    else:
        state = State.IDLE
    return ("bat_charging" if charging else "bat"), capacity / 100.0, state


def make_device(config: Config) -> BatteryDevice:
    """Create the battery device selected by the configured driver."""
    dev_name = DeviceName.new(config.device)
    if config.driver is BatteryDriver.SYSFS:
        return sysfs.Device(dev_name, config.model, config.interval)
    if config.driver is BatteryDriver.APC_UPS:
        return apc_ups.Device(dev_name, config.interval)
    raise StatusError(f"battery driver '{config.driver.value}' is not available")


async def _wait(device: BatteryDevice, api: CommonApi) -> None:
    change = asyncio.ensure_future(device.wait_for_change())
    update = asyncio.ensure_future(api.wait_for_update_request())
    try:
        done, _ = await asyncio.wait((change, update), return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (change, update):
            if not task.done():
                task.cancel()
    if change in done:
        change.result()


async def run(config: Config, api: CommonApi) -> None:
    fmt = resolve_format(config.format, DEFAULT_FORMAT)
    formats = {
        BatteryStatus.FULL: resolve_format(config.full_format, DEFAULT_ICON_FORMAT),
        BatteryStatus.CHARGING: resolve_format(config.charging_format, fmt),
        BatteryStatus.EMPTY: resolve_format(config.empty_format, DEFAULT_ICON_FORMAT),
        BatteryStatus.NOT_CHARGING: resolve_format(
            config.not_charging_format, DEFAULT_ICON_FORMAT
        ),
    }
    missing_format = resolve_format(config.missing_format, DEFAULT_ICON_FORMAT)

    device = make_device(config)

    while True:
        info = await device.get_info()

        if info is None:
            widget = Widget().with_format(missing_format).with_state(State.CRITICAL)
            widget.set_values({"icon": Value.icon("bat_not_available")})
            api.set_widget(widget)
        else:
            info = apply_thresholds(info, config)
            widget = Widget()
            widget.set_format(formats.get(info.status, fmt))

            values = {"percentage": Value.percents(info.capacity)}
            if info.power is not None:
                values["power"] = Value.watts(info.power)
            if info.time_remaining is not None:
                values["time"] = Value.text(format_time(info.time_remaining))

            icon_name, icon_value, state = battery_icon_and_state(info, config)
            values["icon"] = Value.icon_progression(icon_name, icon_value)
            widget.set_values(values)
            widget.state = state
            api.set_widget(widget)

        await _wait(device, api)


register_block("battery", Config, run)