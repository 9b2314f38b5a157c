"""CPU utilization, frequency and turbo boost statistics."""

from __future__ import annotations

import asyncio
import math
import re
from collections.abc import Awaitable, Sequence
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

CPU_BOOST_PATH = "/sys/devices/system/cpu/cpufreq/boost"
CPU_NO_TURBO_PATH = "/sys/devices/system/cpu/intel_pstate/no_turbo"
PROC_STAT_PATH = "/proc/stat"
CPUINFO_PATH = "/proc/cpuinfo"

DEFAULT_FORMAT = " $icon $utilization "
BOXCHARS = "▁▂▃▄▅▆▇█"

_LEADING_WORD = re.compile(r"^\S*")
_LEADING_NON_DIGITS = re.compile(r"^[^0-9]*")


@dataclass
class Config:
    format: str | None = None
    format_alt: str | None = None
    interval: float = field(default=5.0, metadata={"parse": parse_seconds})


def _parse_u64(token: str) -> int | None:
    digits = token[1:] if token.startswith("+") else token
    if not digits or not (digits.isascii() and digits.isdigit()):
        return None
    return int(digits)


@dataclass(frozen=True)
class CpuTime:
    """Idle and busy jiffies of one CPU line of /proc/stat."""

    idle: int
    non_idle: int

    @classmethod
    def from_str(cls, s: str) -> CpuTime | None:
        """Parse the numeric columns of a /proc/stat cpu line; None if malformed."""
        tokens = s.split()
        if len(tokens) < 7:
            return None
        numbers = [_parse_u64(token) for token in tokens[:7]]
        if any(number is None for number in numbers):
            return None
        user, nice, system, idle, iowait, irq, softirq = numbers
        return cls(idle=idle + iowait, non_idle=user + nice + system + irq + softirq)

    def utilization(self, old: CpuTime) -> float:
        """Fraction of time spent busy since `old`, between 0 and 1."""
        elapsed = max(0, (self.idle + self.non_idle) - (old.idle + old.non_idle))
        if elapsed == 0:
            return 0.0
        return min(max((self.non_idle - old.non_idle) / elapsed, 0.0), 1.0)


def parse_proc_stat(text: str) -> tuple[CpuTime, list[CpuTime]]:
    """Return the total and the per-core times found in /proc/stat contents."""
    total: CpuTime | None = None
    cores: list[CpuTime] = []
    for line in text.splitlines():
        data = _LEADING_WORD.sub("", line, count=1)
        if line.startswith("cpu "):
            total = _parsed(data)
        elif line.startswith("cpu"):
            cores.append(_parsed(data))
    if total is None:
        raise StatusError("failed to parse /proc/stat")
    return total, cores


def _parsed(data: str) -> CpuTime:
    time = CpuTime.from_str(data)
    if time is None:
        raise StatusError("failed to parse /proc/stat")
    return time


def parse_frequencies(text: str) -> list[float]:
    """Return every `cpu MHz` entry of /proc/cpuinfo contents, in Hz."""
    freqs = []
    for line in text.splitlines():
        if not line.startswith("cpu MHz"):
            continue
        number = _LEADING_NON_DIGITS.sub("", line.rstrip(), count=1)
        try:
            freqs.append(float(number) * 1e6)
        except ValueError as exc:
            raise StatusError("failed to parse /proc/cpuinfo", cause=exc) from exc
    return freqs


async def _read_file(path: str | Path) -> str:
    text = await asyncio.to_thread(Path(path).read_text)
    return text.strip()


async def read_proc_stat(path: str | Path = PROC_STAT_PATH) -> tuple[CpuTime, list[CpuTime]]:
    try:
        text = await asyncio.to_thread(Path(path).read_text)
    except (OSError, UnicodeDecodeError) as exc:
        raise StatusError("failed to read /proc/stat", cause=exc) from exc
    return parse_proc_stat(text)


async def read_frequencies(path: str | Path = CPUINFO_PATH) -> list[float]:
    try:
        text = await asyncio.to_thread(Path(path).read_text)
    except (OSError, UnicodeDecodeError) as exc:
        raise StatusError("failed to read /proc/cpuinfo", cause=exc) from exc
    return parse_frequencies(text)


def barchart(utilizations: Sequence[float]) -> str:
    """One box character per core, taller for busier cores."""
    return "".join(BOXCHARS[int(7.5 * utilization)] for utilization in utilizations)


async def boost_status(
    boost_path: str | Path = CPU_BOOST_PATH,
    no_turbo_path: str | Path = CPU_NO_TURBO_PATH,
) -> bool | None:
    """Turbo boost state from the kernel or intel_pstate interface, if known."""
    try:
        boost = await _read_file(boost_path)
    except (OSError, UnicodeDecodeError):
        pass
    else:
        return boost.startswith("1")
    try:
        no_turbo = await _read_file(no_turbo_path)
    except (OSError, UnicodeDecodeError):
        return None
    return no_turbo.startswith("0")


def cpu_state(utilization: float) -> State:
    if utilization > 0.9:
        return State.CRITICAL
    if utilization > 0.6:
        return State.WARNING
    if utilization > 0.3:
        return State.INFO
    return State.IDLE


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


async def _next_event(waiter: Awaitable[Any], api: CommonApi, actions: asyncio.Queue) -> str | None:
    """Wait for the timer, an update request or an action; return the action if one came."""
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

    total, core_times = await read_proc_stat()
    cores = len(core_times)
    if cores == 0:
        raise StatusError("/proc/stat reported zero cores")

    timer = _Ticker(config.interval)

    while True:
        freqs = await read_frequencies()

        new_total, new_cores = await read_proc_stat()
        utilization_avg = new_total.utilization(total)
        if len(new_cores) != cores:
            raise StatusError("new cputime length is incorrect")
        utilizations = [new.utilization(old) for new, old in zip(new_cores, core_times)]
        total, core_times = new_total, new_cores

        boost = await boost_status()

        values = {
            "icon": Value.icon_progression("cpu", utilization_avg),
            "barchart": Value.text(barchart(utilizations)),
            "utilization": Value.percents(utilization_avg * 100.0),
        }
        if freqs:
            values["frequency"] = Value.hertz(sum(freqs) / len(freqs))
            values["max_frequency"] = Value.hertz(max(freqs))
        if boost is not None:
            values["boost"] = Value.icon("cpu_boost_on" if boost else "cpu_boost_off")
        for index, freq in enumerate(freqs, start=1):
            values[f"frequency{index}"] = Value.hertz(freq)
        for index, utilization in enumerate(utilizations, start=1):
            values[f"utilization{index}"] = Value.percents(utilization * 100.0)

        widget = Widget().with_format(fmt)
        widget.set_values(values)
        widget.state = cpu_state(utilization_avg)
        api.set_widget(widget)

        while True:
            action = await _next_event(timer.tick(), api, actions)
            if action is None:
                break
            if action == "toggle_format" and fmt_alt is not None:
                fmt, fmt_alt = fmt_alt, fmt
                break


register_block("cpu", Config, run)