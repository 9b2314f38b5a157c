"""Display colour temperature, adjusted with an external hue shifting program."""

from __future__ import annotations

import asyncio
import shutil
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from statusblocks.core import (
    CommonApi,
    StatusError,
    Value,
    Widget,
    parse_seconds,
    register_block,
    resolve_format,
)

DEFAULT_FORMAT = " $temperature "
DEFAULT_TEMP = 6500
MAX_STEP = 500
HARD_MAX_TEMP = 10_000
HARD_MIN_TEMP = 1_000


class HueShifter(Enum):
    """Programs that can change the screen's colour temperature."""

    REDSHIFT = "redshift"
    SCT = "sct"
    GAMMASTEP = "gammastep"
    WLSUNSET = "wlsunset"
    WL_GAMMARELAY = "wl_gammarelay"
    WL_GAMMARELAY_RS = "wl_gammarelay_rs"


def _parse_u16(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 0xFFFF:
        raise StatusError(f"invalid value: {value!r}, expected an integer from 0 to 65535")
    return value


def _parse_hue_shifter(value: Any) -> HueShifter | None:
    if value is None or isinstance(value, HueShifter):
        return value
    try:
        return HueShifter(value)
    except ValueError:
        names = ", ".join(f"`{shifter.value}`" for shifter in HueShifter)
        raise StatusError(f"unknown variant `{value}`, expected one of {names}") from None


@dataclass
class Config:
    format: str | None = None
    interval: float = field(default=5.0, metadata={"parse": parse_seconds})
    max_temp: int = field(default=10_000, metadata={"parse": _parse_u16})
    min_temp: int = field(default=1_000, metadata={"parse": _parse_u16})
    current_temp: int = field(default=6_500, metadata={"parse": _parse_u16})
    hue_shifter: HueShifter | None = field(default=None, metadata={"parse": _parse_hue_shifter})
    step: int = field(default=100, metadata={"parse": _parse_u16})
    click_temp: int = field(default=6_500, metadata={"parse": _parse_u16})


def _spawn_process(program: str, args: list[str], error: str) -> None:
    try:
        subprocess.Popen(
            [program, *args],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as exc:
        raise StatusError(error, cause=exc) from exc


def _spawn_shell(command: str, error: str) -> None:
    _spawn_process("sh", ["-c", command], error)


class HueShiftDriver(ABC):
    """Controls the colour temperature through one program."""

    @abstractmethod
    async def get(self) -> int | None:
        """The current temperature, if the program can report it."""

    @abstractmethod
    async def update(self, temp: int) -> None:
        """Set the temperature in Kelvin."""

    @abstractmethod
    async def reset(self) -> None:
        """Restore the program's default temperature."""

    @abstractmethod
    async def receive_update(self) -> int:
        """Wait for the temperature to be changed from outside."""


class _PollingDriver(HueShiftDriver):
    """A driver that cannot read the temperature back or observe changes."""

    def __init__(self, interval: float = 5.0):
        self.interval = interval

    async def get(self) -> int | None:
        return None

    async def receive_update(self) -> int:
        await asyncio.sleep(self.interval)
        return await asyncio.get_running_loop().create_future()


class Redshift(_PollingDriver):
    _ERROR = "Failed to set new color temperature using redshift."

    async def update(self, temp: int) -> None:
        _spawn_process("redshift", ["-O", str(temp), "-P"], self._ERROR)

    async def reset(self) -> None:
        _spawn_process("redshift", ["-x"], self._ERROR)


class Sct(_PollingDriver):
    _ERROR = "Failed to set new color temperature using sct."

    async def update(self, temp: int) -> None:
        _spawn_shell(f"sct {temp} >/dev/null 2>&1", self._ERROR)

    async def reset(self) -> None:
        _spawn_process("sct", [], self._ERROR)


class Gammastep(_PollingDriver):
    _ERROR = "Failed to set new color temperature using gammastep."

    async def update(self, temp: int) -> None:
        _spawn_shell(f"killall gammastep; gammastep -O {temp} -P &", self._ERROR)

    async def reset(self) -> None:
        _spawn_process("gammastep", ["-x"], self._ERROR)


class Wlsunset(_PollingDriver):
    _ERROR = "Failed to set new color temperature using wlsunset."

    async def update(self, temp: int) -> None:
        # wlsunset has no one-shot mode and refuses equal day and night temperatures.
        _spawn_shell(f"killall wlsunset; wlsunset -T {temp + 1} -t {temp} &", self._ERROR)

    async def reset(self) -> None:
        # wlsunset has no reset option; stopping it restores the screen.
        _spawn_process("killall", ["wlsunset"], self._ERROR)


def limits(config: Config) -> tuple[int, int, int]:
    """The step, minimum and maximum temperature after applying the hard limits."""
    step = min(config.step, MAX_STEP)
    max_temp = min(config.max_temp, HARD_MAX_TEMP)
    if max_temp < HARD_MIN_TEMP:
        raise StatusError(f"max_temp must be at least {HARD_MIN_TEMP}")
    min_temp = min(max(config.min_temp, HARD_MIN_TEMP), max_temp)
    return step, min_temp, max_temp


_DETECTION_ORDER = (
    ("wl-gammarelay-rs", HueShifter.WL_GAMMARELAY_RS),
    ("wl-gammarelay", HueShifter.WL_GAMMARELAY),
    ("redshift", HueShifter.REDSHIFT),
    ("sct", HueShifter.SCT),
    ("gammastep", HueShifter.GAMMASTEP),
    ("wlsunset", HueShifter.WLSUNSET),
)


def detect_hue_shifter() -> HueShifter:
    """The first supported program found on the PATH."""
    for command, shifter in _DETECTION_ORDER:
        if shutil.which(command) is not None:
            return shifter
    raise StatusError("Could not detect driver program")


def make_driver(hue_shifter: HueShifter, interval: float) -> HueShiftDriver:
    """Create the driver for a hue shifting program."""
    drivers = {
        HueShifter.REDSHIFT: Redshift,
        HueShifter.SCT: Sct,
        HueShifter.GAMMASTEP: Gammastep,
        HueShifter.WLSUNSET: Wlsunset,
    }
    driver = drivers.get(hue_shifter)
    if driver is None:
        raise StatusError(f"hue shifter '{hue_shifter.value}' is not available")
    return driver(interval)


def next_temperature(
    action: str, current: int, step: int, min_temp: int, max_temp: int, click_temp: int
) -> tuple[int, bool] | None:
    """The temperature an action leads to and whether to reset; None for unknown actions."""
    if action == "set_click_temp":
        return click_temp, False
    if action == "reset":
        if max_temp > DEFAULT_TEMP:
            return DEFAULT_TEMP, True
        return max_temp, False
    if action == "temperature_up":
        return min(current + step, max_temp), False
    if action == "temperature_down":
        return max(max(current - step, 0), min_temp), False
    return None


async def _next_event(
    waiter: Awaitable[int], api: CommonApi, actions: asyncio.Queue
) -> tuple[str, Any]:
    tasks = {
        "update": asyncio.ensure_future(waiter),
        "request": asyncio.ensure_future(api.wait_for_update_request()),
        "action": asyncio.ensure_future(actions.get()),
    }
    try:
        done, _ = await asyncio.wait(tasks.values(), return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks.values():
            if not task.done():
                task.cancel()
    for kind, task in tasks.items():
        if task in done:
            return kind, task.result()
    raise StatusError("no event")


async def run(config: Config, api: CommonApi) -> None:
    actions = api.get_actions()
    api.set_default_actions(
        [
            ("left", None, "set_click_temp"),
            ("right", None, "reset"),
            ("up", None, "temperature_up"),
            ("down", None, "temperature_down"),
        ]
    )

    fmt = resolve_format(config.format, DEFAULT_FORMAT)
    step, min_temp, max_temp = limits(config)
    hue_shifter = config.hue_shifter or detect_hue_shifter()
    driver = make_driver(hue_shifter, config.interval)

    current = await driver.get()
    if current is None:
        current = config.current_temp

    while True:
        widget = Widget().with_format(fmt)
        widget.set_values({"temperature": Value.number(current)})
        api.set_widget(widget)

        kind, result = await _next_event(driver.receive_update(), api, actions)
        if kind == "update":
            current = result
        elif kind == "request":
            value = await driver.get()
            if value is not None:
                current = value
        else:
            outcome = next_temperature(
                result, current, step, min_temp, max_temp, config.click_temp
            )
            if outcome is None:
                continue
            current, reset = outcome
            if reset:
                await driver.reset()
            else:
                await driver.update(current)


register_block("hueshift", Config, run)