"""Battery readings and the interface every battery driver implements."""

from __future__ import annotations

import asyncio
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from statusblocks.core import StatusError


class BatteryStatus(Enum):
    """Charging state of a battery."""

    CHARGING = "Charging"
    DISCHARGING = "Discharging"
    EMPTY = "Empty"
    FULL = "Full"
    NOT_CHARGING = "Not charging"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, text: str) -> BatteryStatus:
        """Parse a sysfs status string; anything unrecognised is UNKNOWN."""
        try:
            return cls(text)
        except ValueError:
            return cls.UNKNOWN


@dataclass
class BatteryInfo:
    """A snapshot of a battery."""

    status: BatteryStatus
    capacity: float
    power: float | None = None
    time_remaining: float | None = None


class BatteryDriver(Enum):
    """Where battery information is read from."""

    SYSFS = "sysfs"
    APC_UPS = "apc_ups"
    UPOWER = "upower"


@dataclass(frozen=True)
class DeviceName:
    """Either any device, or the devices whose name matches a regex."""

    regex: re.Pattern | None = None

    @classmethod
    def new(cls, pattern: str | None) -> DeviceName:
        if pattern is None:
            return cls()
        try:
            return cls(re.compile(pattern))
        except re.error as exc:
            raise StatusError("failed to parse regex", cause=exc) from exc

    def matches(self, name: str) -> bool:
        return self.regex is None or self.regex.search(name) is not None

    def exact(self) -> str | None:
        """The pattern as written, or None when any device will do."""
        return None if self.regex is None else self.regex.pattern


class BatteryDevice(ABC):
    """A source of battery information."""

    @abstractmethod
    async def get_info(self) -> BatteryInfo | None:
        """Current information, or None if the battery is not available."""

    @abstractmethod
    async def wait_for_change(self) -> None:
        """Return when the information may have changed."""


class _Ticker:
    """A periodic timer whose next tick is a full period after the previous one."""

    def __init__(self, period: float):
        self._period = period
        loop = asyncio.get_running_loop()
        self._deadline = None if math.isinf(period) else loop.time() + period

    async def tick(self) -> None:
        loop = asyncio.get_running_loop()
        if self._deadline is None:
            await loop.create_future()
        await asyncio.sleep(max(0.0, self._deadline - loop.time()))
        self._deadline = loop.time() + self._period