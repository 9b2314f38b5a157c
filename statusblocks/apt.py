"""Pending updates available for a Debian or Ubuntu based system."""

from __future__ import annotations

import asyncio
import math
import os
import re
import tempfile
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path

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
CACHE_DIR_NAME = "i3rs-apt"

_PACKAGE_NAME = re.compile(r"(.*)/.*")
_PHASED = re.compile(r".*\(phased (\d+)%\).*")


@dataclass
class Config:
    interval: float = field(default=600.0, metadata={"parse": parse_seconds})
    format: str | None = None
    format_singular: str | None = None
    format_up_to_date: str | None = None
    warning_updates_regex: str | None = None
    critical_updates_regex: str | None = None
    ignore_phased_updates: bool = False


def apt_config_text(cache_dir: Path | str) -> str:
    """Return an apt configuration that keeps state and cache in `cache_dir`."""
    return "\n".join(
        [
            f'Dir::State "{cache_dir}";',
            'Dir::State::lists "lists";',
            f'Dir::Cache "{cache_dir}";',
            'Dir::Cache::srcpkgcache "srcpkgcache.bin";',
            'Dir::Cache::pkgcache "pkgcache.bin";',
        ]
    )


def write_apt_config(cache_dir: Path | str) -> Path:
    """Create `cache_dir` and write an apt.conf into it; return the file's path."""
    cache_dir = Path(cache_dir)
    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StatusError("Failed to create temp dir", cause=exc) from exc
    config_file = cache_dir / "apt.conf"
    try:
        config_file.write_text(apt_config_text(cache_dir))
    except OSError as exc:
        raise StatusError("Failed to write to config file", cause=exc) from exc
    return config_file


async def _output(args: list[str], env: dict[str, str] | None, message: str) -> bytes:
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await process.communicate()
    except OSError as exc:
        raise StatusError(message, cause=exc) from exc
    return stdout


async def get_updates_list(config_path: str) -> str:
    """Refresh the private package lists and return `apt list --upgradable`."""
    try:
        process = await asyncio.create_subprocess_exec(
            "apt",
            "update",
            env={**os.environ, "APT_CONFIG": config_path},
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
        )
        await process.wait()
    except OSError as exc:
        raise StatusError("Failed to run `apt update`", cause=exc) from exc

    stdout = await _output(
        ["apt", "list", "--upgradable"],
        {**os.environ, "LANG": "C", "APT_CONFIG": config_path},
        "Problem running apt command",
    )
    try:
        return stdout.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise StatusError("apt produced non-UTF8 output", cause=exc) from exc


async def get_update_count(config_path: str, ignore_phased_updates: bool, updates: str) -> int:
    count = 0
    for line in updates.splitlines():
        if "[upgradable" not in line:
            continue
        if not ignore_phased_updates or not await is_phased_update(config_path, line):
            count += 1
    return count


def has_matching_update(updates: str, regex: re.Pattern) -> bool:
    return any(regex.search(line) for line in updates.splitlines())


def package_name(line: str) -> str:
    """Extract the package name from a line of `apt list` output."""
    match = _PACKAGE_NAME.match(line)
    if match is None:
        raise StatusError("Couldn't find package name")
    return match.group(1)


def is_phased_output(output: str) -> bool:
    """Whether `apt-cache policy` output shows an update that is still being phased."""
    match = _PHASED.search(output)
    return match is not None and match.group(1) != "100"


async def is_phased_update(config_path: str, package_line: str) -> bool:
    name = package_name(package_line)
    stdout = await _output(
        ["apt-cache", "-c", config_path, "policy", name],
        None,
        "Problem running apt-cache command",
    )
    try:
        output = stdout.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise StatusError("Problem capturing apt-cache command output", cause=exc) from exc
    return is_phased_output(output)


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

    cache_dir = Path(tempfile.gettempdir()) / CACHE_DIR_NAME
    config_file = str(write_apt_config(cache_dir))

    while True:
        updates = await get_updates_list(config_file)
        count = await get_update_count(config_file, config.ignore_phased_updates, updates)

        widget = Widget()
        widget.set_format(up_to_date if count == 0 else singular if count == 1 else many)
        widget.set_values({"count": Value.number(count), "icon": Value.icon("update")})

        warning = warning_regex is not None and has_matching_update(updates, warning_regex)
        critical = critical_regex is not None and has_matching_update(updates, critical_regex)
        if count == 0:
            widget.state = State.IDLE
        elif critical:
            widget.state = State.CRITICAL
        elif warning:
            widget.state = State.WARNING
        else:
            widget.state = State.INFO
        api.set_widget(widget)

        await _sleep_or_update(api, config.interval)


register_block("apt", Config, run)