"""Battery information read from the kernel's power supply class in sysfs."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

from statusblocks.battery.device import (
    BatteryDevice,
    BatteryInfo,
    BatteryStatus,
    DeviceName,
    _Ticker,
)
from statusblocks.core import StatusError

POWER_SUPPLY_DEVICES_PATH = "/sys/class/power_supply"

_log = logging.getLogger(__name__)


class CapacityLevel(Enum):
    """Coarse charge level reported by devices without an exact capacity."""

    FULL = "Full"
    HIGH = "High"
    NORMAL = "Normal"
    LOW = "Low"
    CRITICAL = "Critical"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, text: str) -> CapacityLevel:
        try:
            return cls(text)
        except ValueError:
            return cls.UNKNOWN

    def percentage(self) -> float | None:
        return _LEVEL_PERCENTAGES.get(self)


_LEVEL_PERCENTAGES = {
    CapacityLevel.FULL: 100.0,
    CapacityLevel.HIGH: 75.0,
    CapacityLevel.NORMAL: 50.0,
    CapacityLevel.LOW: 25.0,
    CapacityLevel.CRITICAL: 5.0,
}


def _percent(now: float, full: float) -> float:
    if full == 0:
        return math.nan if now == 0 else math.copysign(math.inf, now)
    return now / full * 100.0


def compute_capacity(
    charge_now: float | None,
    charge_full: float | None,
    energy_now: float | None,
    energy_full: float | None,
    capacity: float | None,
    capacity_level: CapacityLevel | None,
) -> float:
    """Charge in percent, preferring the now/full ratios over the reported capacity."""
    for now, full in ((charge_now, charge_full), (energy_now, energy_full)):
        if now is not None and full is not None:
            return _percent(now, full)
    if capacity is not None:
        return capacity
    if capacity_level is not None:
        level = capacity_level.percentage()
        if level is not None:
            return level
    raise StatusError("Failed to get capacity")


def compute_power(
    power_now: float | None, current_now: float | None, voltage_now: float | None
) -> float | None:
    """Power in watts from the reported power, or current times voltage; zero means unknown."""
    power = power_now
    if power is None and current_now is not None and voltage_now is not None:
        power = current_now * voltage_now
    if power is None or power == 0.0:
        return None
    return power


def _all_known(*values: float | None) -> bool:
    return all(value is not None for value in values)


def compute_time_remaining(
    status: BatteryStatus,
    time_to_full: float | None,
    time_to_empty: float | None,
    energy_now: float | None,
    energy_full: float | None,
    charge_now: float | None,
    charge_full: float | None,
    voltage_now: float | None,
    power: float | None,
) -> float | None:
    """Seconds until (dis)charged, from the reported times or from energy and power."""
    if status is BatteryStatus.CHARGING:
        if time_to_full is not None:
            return time_to_full
        if _all_known(energy_now, energy_full, power):
            return (energy_full - energy_now) / power * 3600.0
        if _all_known(charge_now, charge_full, voltage_now, power):
            return (charge_full - charge_now) * voltage_now / power * 3600.0
        return None
    if status is BatteryStatus.DISCHARGING:
        if time_to_empty is not None:
            return time_to_empty
        if _all_known(energy_now, power):
            return energy_now / power * 3600.0
        if _all_known(charge_now, voltage_now, power):
            return charge_now * voltage_now / power * 3600.0
        return None
    return None


def _parse_u8(text: str) -> int:
    value = int(text)
    if not 0 <= value <= 255:
        raise ValueError(f"{value} out of range")
    return value


async def _read_prop(path: Path, prop: str, parse: Callable[[str], Any]) -> Any:
    try:
        text = await asyncio.to_thread((path / prop).read_text)
    except (OSError, UnicodeDecodeError):
        return None
    try:
        return parse(text.strip())
    except ValueError:
        return None


async def _device_available(path: Path) -> bool:
    # HID devices report scope "Device"; their directory existing means they are present.
    if await _read_prop(path, "scope", str) == "Device":
        return True
    return await _read_prop(path, "present", _parse_u8) == 1


def _micro(value: float | None) -> float | None:
    return None if value is None else value * 1e-6


class Device(BatteryDevice):
    """A physical power supply device, as known to sysfs."""

    def __init__(
        self,
        dev_name: DeviceName,
        dev_model: str | None = None,
        interval: float = 10.0,
        root: str | Path = POWER_SUPPLY_DEVICES_PATH,
    ):
        self.dev_name = dev_name
        self.dev_model = dev_model
        self.dev_path: Path | None = None
        self.root = Path(root)
        self._interval = interval
        self._ticker: _Ticker | None = None

    async def get_device_path(self) -> Path | None:
        """The remembered device if still available, else the best matching battery."""
        if self.dev_path is not None and await _device_available(self.dev_path):
            _log.debug("battery '%s' is still available", self.dev_path)
            return self.dev_path

        try:
            entries = await asyncio.to_thread(lambda: sorted(self.root.iterdir()))
        except OSError as exc:
            raise StatusError(
                "failed to read /sys/class/power_supply directory", cause=exc
            ) from exc

        matching: Path | None = None
        for path in entries:
            name = path.name
            if (
                not self.dev_name.matches(name)
                or await _read_prop(path, "type", str) != "Battery"
                or not await _device_available(path)
            ):
                continue

            if self.dev_model is not None:
                model = await _read_prop(path, "model_name", str)
                if model != self.dev_model:
                    _log.debug("skipping '%s' based on model", path)
                    continue

            _log.debug("found matching battery '%s'", path)
            # System batteries usually start with BAT or CMB; prefer them to peripherals.
            if name.startswith(("BAT", "CMB")):
                self.dev_path = path
                return path
            matching = path

        if matching is None:
            _log.debug("no batteries found")
            return None
        self.dev_path = matching
        return matching

    async def get_info(self) -> BatteryInfo | None:
        path = await self.get_device_path()
        if path is None:
            return None

        status = await _read_prop(path, "status", BatteryStatus.parse)
        capacity_level = await _read_prop(path, "capacity_level", CapacityLevel.parse)
        capacity = await _read_prop(path, "capacity", float)
        charge_now = _micro(await _read_prop(path, "charge_now", float))
        charge_full = _micro(await _read_prop(path, "charge_full", float))
        energy_now = _micro(await _read_prop(path, "energy_now", float))
        energy_full = _micro(await _read_prop(path, "energy_full", float))
        power_now = _micro(await _read_prop(path, "power_now", float))
        current_now = _micro(await _read_prop(path, "current_now", float))
        voltage_now = _micro(await _read_prop(path, "voltage_now", float))
        time_to_empty = await _read_prop(path, "time_to_empty", float)
        time_to_full = await _read_prop(path, "time_to_full", float)

        if not await _device_available(path):
            _log.debug("battery suddenly unavailable")
            return None

        status = status or BatteryStatus.UNKNOWN
        capacity = compute_capacity(
            charge_now, charge_full, energy_now, energy_full, capacity, capacity_level
        )
        power = compute_power(power_now, current_now, voltage_now)
        time_remaining = compute_time_remaining(
            status,
            time_to_full,
            time_to_empty,
            energy_now,
            energy_full,
            charge_now,
            charge_full,
            voltage_now,
            power,
        )
        return BatteryInfo(status, capacity, power, time_remaining)

    async def wait_for_change(self) -> None:
        if self._ticker is None:
            self._ticker = _Ticker(self._interval)
        await self._ticker.tick()