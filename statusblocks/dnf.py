"""Pending updates available for a Fedora system."""

from __future__ import annotations

import asyncio
import math
import os
import re
from contextlib import suppress
from dataclasses import dataclass, field

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

DEFAULT_FORMAT = " $icon $count.eng(w:1) "


@dataclass
class Config:
    interval: float = field(default=600.0, metadata={"parse": parse_seconds})
    format: str | None = None
    format_singular: str | None = None
    format_up_to_date: str | None = None
    warning_updates_regex: str | None = None
    critical_updates_regex: str | None = None


async def get_updates_list() -> str:
    """Run `dnf check-update` and return its output."""
    env = {**os.environ, "LC_LANG": "C"}
    try:
        process = await asyncio.create_subprocess_exec(
            "sh",
            "-c",
            "dnf check-update -q --skip-broken",
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await process.communicate()
    except OSError as exc:
        raise StatusError("Failed to run dnf check-update", cause=exc) from exc
    try:
        return stdout.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise StatusError("dnf produced non-UTF8 output", cause=exc) from exc


def get_update_count(updates: str) -> int:
    return sum(1 for line in updates.splitlines() if len(line.encode()) > 1)


def has_matching_update(updates: str, regex: re.Pattern) -> bool:
    return any(regex.search(line) for line in updates.splitlines())


def update_state(count: int, warning: bool, critical: bool) -> State:
    if count == 0:
        return State.IDLE
    if critical:
        return State.CRITICAL
    if warning:
        return State.WARNING
    return State.INFO


def _compile(pattern: str | None, message: str) -> re.Pattern | None:
    if pattern is None:
        return None
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise StatusError(message, cause=exc) from exc


async def _sleep_or_update(api: CommonApi, seconds: float) -> None:
    timeout = None if math.isinf(seconds) else seconds
    with suppress(TimeoutError):
        await asyncio.wait_for(api.wait_for_update_request(), timeout)


async def run(config: Config, api: CommonApi) -> None:
    many = resolve_format(config.format, DEFAULT_FORMAT)
    singular = resolve_format(config.format_singular, DEFAULT_FORMAT)
    up_to_date = resolve_format(config.format_up_to_date, DEFAULT_FORMAT)
    warning_regex = _compile(config.warning_updates_regex, "invalid warning updates regex")
    critical_regex = _compile(config.critical_updates_regex, "invalid critical updates regex")

    while True:
        updates = await get_updates_list()
        count = get_update_count(updates)

        widget = Widget()
        widget.set_format(up_to_date if count == 0 else singular if count == 1 else many)
        widget.set_values({"icon": Value.icon("update"), "count": Value.number(count)})
        warning = warning_regex is not None and has_matching_update(updates, warning_regex)
        critical = critical_regex is not None and has_matching_update(updates, critical_regex)
        widget.state = update_state(count, warning, critical)
        api.set_widget(widget)

        await _sleep_or_update(api, config.interval)


register_block("dnf", Config, run)