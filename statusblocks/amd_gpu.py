"""Utilization and memory statistics of an AMD GPU."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable
from dataclasses import dataclass, field
from pathlib import Path
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

DRM_ROOT = "/sys/class/drm"
AMD_PCI_ID = "PCI_ID=1002"
DEFAULT_FORMAT = " $icon $utilization "


@dataclass
class Config:
    device: str | None = None
    format: str | None = None
    format_alt: str | None = None
    interval: float = field(default=5.0, metadata={"parse": parse_seconds})


@dataclass(frozen=True)
class GpuInfo:
    utilization_percents: float
    vram_total_bytes: float
    vram_used_bytes: float


async def _read_file(path: Path) -> str:
    text = await asyncio.to_thread(path.read_text)
    return text.strip()


@dataclass(frozen=True)
class Device:
    """The sysfs directory of a DRM card."""

    path: Path

    @classmethod
    def from_name(cls, name: str, drm_root: str | Path = DRM_ROOT) -> Device:
        return cls(Path(drm_root) / name / "device")

    @classmethod
    async def default_card(cls, drm_root: str | Path = DRM_ROOT) -> Device | None:
        """The first card whose vendor is AMD, or None if there is none."""
        root = Path(drm_root)
        try:
            entries = await asyncio.to_thread(lambda: sorted(root.iterdir()))
        except OSError as exc:
            raise StatusError("failed to get default GPU", cause=exc) from exc
        for entry in entries:
            if not entry.name.startswith("card"):
                continue
            path = entry / "device"
            try:
                uevent = await _read_file(path / "uevent")
            except (OSError, UnicodeDecodeError):
                continue
            if AMD_PCI_ID in uevent:
                return cls(path)
        return None

    async def _read_prop(self, prop: str) -> float | None:
        try:
            return float(await _read_file(self.path / prop))
        except (OSError, ValueError):
            return None

    async def read_info(self) -> GpuInfo:
        readings = []
        for prop in ("gpu_busy_percent", "mem_info_vram_total", "mem_info_vram_used"):
            value = await self._read_prop(prop)
            if value is None:
                raise StatusError(f"Failed to read {prop}")
            readings.append(value)
        return GpuInfo(*readings)


def gpu_state(utilization: float) -> State:
    if utilization > 90.0:
        return State.CRITICAL
    if utilization > 60.0:
        return State.WARNING
    if utilization > 30.0:
        return State.INFO
    return State.IDLE


def _percent_of(part: float, whole: float) -> float:
    if whole == 0:
        return math.nan if part == 0 else math.copysign(math.inf, part)
    return part / whole * 100.0


async def _sleep(seconds: float) -> None:
    if math.isinf(seconds):
        await asyncio.get_running_loop().create_future()
    await asyncio.sleep(seconds)


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

    if config.device is not None:
        device = Device.from_name(config.device)
    else:
        found = await Device.default_card()
        if found is None:
            raise StatusError("no GPU found")
        device = found

    while True:
        widget = Widget().with_format(fmt)
        info = await device.read_info()
        widget.set_values(
            {
                "icon": Value.icon("gpu"),
                "utilization": Value.percents(info.utilization_percents),
                "vram_total": Value.bytes(info.vram_total_bytes),
                "vram_used": Value.bytes(info.vram_used_bytes),
                "vram_used_percents": Value.percents(
                    _percent_of(info.vram_used_bytes, info.vram_total_bytes)
                ),
            }
        )
        widget.state = gpu_state(info.utilization_percents)
        api.set_widget(widget)

        while True:
            action = await _next_event(_sleep(config.interval), api, actions)
            if action is None:
                break
            if action == "toggle_format" and fmt_alt is not None:
                fmt, fmt_alt = fmt_alt, fmt
                break


register_block("amd_gpu", Config, run)