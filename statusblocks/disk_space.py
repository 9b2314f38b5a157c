"""Disk usage statistics."""

from __future__ import annotations

import asyncio
import math
import os
import re
from collections.abc import Awaitable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

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

DEFAULT_FORMAT = " $icon $available "

_UNIT_SCALES = {
    "TB": 1e-12,
    "GB": 1e-9,
    "MB": 1e-6,
    "KB": 1e-3,
    "B": 1.0,
}

_VARIABLE = re.compile(r"\$(?:\{(\w+)\}|(\w+))")


class InfoType(Enum):
    """Which quantity decides the block's state."""

    AVAILABLE = "available"
    FREE = "free"
    USED = "used"


def _parse_info_type(value: Any) -> InfoType:
    if isinstance(value, InfoType):
        return value
    try:
        return InfoType(value)
    except ValueError as exc:
        raise StatusError(
            f"unknown variant `{value}`, expected one of `available`, `free`, `used`"
        ) from exc


@dataclass
class Config:
    path: str = "/"
    info_type: InfoType = field(
        default=InfoType.AVAILABLE, metadata={"parse": _parse_info_type}
    )
    format: str | None = None
    format_alt: str | None = None
    alert_unit: str | None = None
    interval: float = field(default=20.0, metadata={"parse": parse_seconds})
    warning: float = 20.0
    alert: float = 10.0


@dataclass(frozen=True)
class DiskUsage:
    """Sizes of a filesystem, in bytes."""

    total: int
    used: int
    available: int
    free: int

    @classmethod
    def from_statvfs(cls, stat: Any) -> DiskUsage:
        return cls(
            total=stat.f_blocks * stat.f_frsize,
            used=(stat.f_blocks - stat.f_bfree) * stat.f_frsize,
            available=stat.f_bavail * stat.f_bsize,
            free=stat.f_bfree * stat.f_bsize,
        )


def parse_alert_unit(unit: str | None) -> float | None:
    """The factor turning bytes into the configured alert unit, or None for percents."""
    if unit is None:
        return None
    try:
        return _UNIT_SCALES[unit]
    except KeyError:
        raise StatusError(f"Unknown unit: '{unit}'") from None


def alert_value(result: float, percentage: float, unit: float | None) -> float:
    """The value compared against the thresholds, in the configured unit."""
    return percentage if unit is None else result * unit


def disk_state(info_type: InfoType, value: float, alert: float, warning: float) -> State:
    if info_type is InfoType.USED:
        if value >= alert:
            return State.CRITICAL
        if value >= warning:
            return State.WARNING
        return State.IDLE
    if value <= alert:
        return State.CRITICAL
    if value <= warning:
        return State.WARNING
    return State.IDLE


def _expand(path: str) -> str:
    expanded = os.path.expanduser(path)

    def substitute(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        if name not in os.environ:
            raise StatusError(f"Failed to expand '{path}': environment variable {name} not found")
        return os.environ[name]

    return _VARIABLE.sub(substitute, expanded)


def _percent_of(part: float, whole: float) -> float:
    if whole == 0:
        return math.nan if part == 0 else math.copysign(math.inf, part)
    return part / whole * 100.0


class _Ticker:
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


async def _next_event(waiter: Awaitable[Any], api: CommonApi, actions: asyncio.Queue) -> str | None:
    tasks = (
        asyncio.ensure_future(waiter),
        asyncio.ensure_future(api.wait_for_update_request()),
        asyncio.ensure_future(actions.get()),
    )
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
    action = tasks[2]
    return action.result() if action in done else None


async def run(config: Config, api: CommonApi) -> None:
    actions = api.get_actions()
    api.set_default_actions([("left", None, "toggle_format")])

    fmt = resolve_format(config.format, DEFAULT_FORMAT)
    fmt_alt = config.format_alt

    unit = parse_alert_unit(config.alert_unit)
    path = _expand(config.path)
    timer = _Ticker(config.interval)

    while True:
        widget = Widget().with_format(fmt)

        try:
            stat = await asyncio.to_thread(os.statvfs, path)
        except OSError as exc:
            raise StatusError("failed to retrieve statvfs", cause=exc) from exc
        usage = DiskUsage.from_statvfs(stat)

        result = float(
            {
                InfoType.AVAILABLE: usage.available,
                InfoType.FREE: usage.free,
                InfoType.USED: usage.used,
            }[config.info_type]
        )
        percentage = _percent_of(result, float(usage.total))

        widget.set_values(
            {
                "icon": Value.icon("disk_drive"),
                "path": Value.text(path),
                "percentage": Value.percents(percentage),
                "total": Value.bytes(float(usage.total)),
                "used": Value.bytes(float(usage.used)),
                "available": Value.bytes(float(usage.available)),
                "free": Value.bytes(float(usage.free)),
            }
        )
        widget.state = disk_state(
            config.info_type,
            alert_value(result, percentage, unit),
            config.alert,
            config.warning,
        )
        api.set_widget(widget)

        while True:
            action = await _next_event(timer.tick(), api, actions)
            if action is None:
                break
            if action == "toggle_format" and fmt_alt is not None:
                fmt, fmt_alt = fmt_alt, fmt
                break


register_block("disk_space", Config, run)