"""The output of a custom shell command."""

from __future__ import annotations

import asyncio
import itertools
import json as jsonlib
import math
import os
import re
from collections.abc import Awaitable, Mapping
from contextlib import suppress
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

DEFAULT_FORMAT = "{ $icon|} $text.pango-str() "
WATCH_POLL_SECONDS = 0.5

_VARIABLE = re.compile(r"\$(?:\{(\w+)\}|(\w+))")
_STATES = {
    "idle": State.IDLE,
    "info": State.INFO,
    "good": State.GOOD,
    "warning": State.WARNING,
    "critical": State.CRITICAL,
}


@dataclass
class Config:
    format: str | None = None
    command: str | None = None
    persistent: bool = False
    cycle: list[str] | None = None
    interval: float = field(default=10.0, metadata={"parse": parse_seconds})
    json: bool = False
    hide_when_empty: bool = False
    shell: str | None = None
    watch_files: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Input:
    """The JSON object a command may print instead of plain text."""

    icon: str = ""
    state: State = State.IDLE
    text: str = ""
    short_text: str | None = None

    @classmethod
    def from_json(cls, text: str) -> Input:
        try:
            data = jsonlib.loads(text)
        except ValueError as exc:
            raise StatusError("Invalid JSON", cause=exc) from exc
        if not isinstance(data, Mapping):
            raise StatusError("Invalid JSON")

        kwargs: dict[str, Any] = {}
        for name in ("icon", "text"):
            if name in data:
                if not isinstance(data[name], str):
                    raise StatusError("Invalid JSON")
                kwargs[name] = data[name]
        if "short_text" in data:
            short_text = data["short_text"]
            if short_text is not None and not isinstance(short_text, str):
                raise StatusError("Invalid JSON")
            kwargs["short_text"] = short_text
        if "state" in data:
            state = data["state"]
            if not isinstance(state, str) or state.lower() not in _STATES:
                raise StatusError("Invalid JSON")
            kwargs["state"] = _STATES[state.lower()]
        return cls(**kwargs)


def resolve_shell(shell: str | None) -> str:
    """The configured shell, else $SHELL, else `sh`."""
    if shell is not None:
        return shell
    return os.environ.get("SHELL", "sh")


def update_bar(stdout: str, hide_when_empty: bool, json: bool, api: CommonApi, format: str) -> Any:
    """Show a command's output, or hide the block when it is empty and hiding is wanted."""
    widget = Widget().with_format(format)

    if json:
        try:
            parsed = Input.from_json(stdout)
        except StatusError as exc:
            return api.set_error(exc)
        text_empty = parsed.text == ""
        values = {"text": Value.text(parsed.text)}
        if parsed.icon:
            values["icon"] = Value.icon(parsed.icon)
        if parsed.short_text is not None:
            values["short_text"] = Value.text(parsed.short_text)
        widget.set_values(values)
        widget.state = parsed.state
    else:
        text_empty = stdout == ""
        widget.set_values({"text": Value.text(stdout)})

    if text_empty and hide_when_empty:
        return api.hide()
    return api.set_widget(widget)


def _expand(path: str) -> str:
    expanded = os.path.expanduser(path)

    def substitute(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        if name not in os.environ:
            raise StatusError(f"Failed to expand '{path}': environment variable {name} not found")
        return os.environ[name]

    return _VARIABLE.sub(substitute, expanded)


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


class _FileWatcher:
    """Reports modifications of a set of files by polling their metadata."""

    def __init__(self, paths: list[str]):
        self._paths = [Path(path) for path in paths]
        self._stamps: dict[Path, tuple[int, int] | None] = {}
        for path in self._paths:
            try:
                self._stamps[path] = self._stamp(path)
            except OSError as exc:
                raise StatusError("Failed to add file watch", cause=exc) from exc

    @staticmethod
    def _stamp(path: Path) -> tuple[int, int]:
        stat = path.stat()
        return stat.st_mtime_ns, stat.st_size

    async def changed(self) -> None:
        if not self._paths:
            await asyncio.get_running_loop().create_future()
        while True:
            await asyncio.sleep(WATCH_POLL_SECONDS)
            modified = False
            for path in self._paths:
                try:
                    stamp = self._stamp(path)
                except OSError:
                    stamp = None
                if stamp != self._stamps[path]:
                    self._stamps[path] = stamp
                    modified = True
            if modified:
                return


async def _next_event(api: CommonApi, actions: asyncio.Queue, *waiters: Awaitable[Any]) -> str | None:
    """Wait for any waiter, an update request or an action; return the action if one came."""
    action_task = asyncio.ensure_future(actions.get())
    tasks = (
        *(asyncio.ensure_future(waiter) for waiter in waiters),
        asyncio.ensure_future(api.wait_for_update_request()),
        action_task,
    )
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
    return action_task.result() if action_task in done else None


async def _run_command(shell: str, command: str) -> str:
    try:
        process = await asyncio.create_subprocess_exec(
            shell,
            "-c",
            command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await process.communicate()
    except OSError as exc:
        raise StatusError("failed to run command", cause=exc) from exc
    try:
        return stdout.decode("utf-8").strip()
    except UnicodeDecodeError as exc:
        raise StatusError("the output of command is invalid UTF-8", cause=exc) from exc


async def _run_persistent(config: Config, api: CommonApi, shell: str, fmt: str) -> None:
    if config.command is None:
        raise StatusError("'command' must be specified when 'persistent' is set")
    try:
        process = await asyncio.create_subprocess_exec(
            shell,
            "-c",
            config.command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise StatusError("failed to run command", cause=exc) from exc

    try:
        while True:
            try:
                raw = await process.stdout.readline()
                text = raw.decode("utf-8")
            except (OSError, ValueError) as exc:
                raise StatusError("error reading line from child process", cause=exc) from exc
            if not raw:
                raise StatusError("child process exited unexpectedly")
            line = text.removesuffix("\n").removesuffix("\r")
            update_bar(line, config.hide_when_empty, config.json, api, fmt)
    finally:
        if process.returncode is None:
            with suppress(ProcessLookupError):
                process.kill()
            await process.wait()


async def _run_cycle(
    config: Config,
    api: CommonApi,
    shell: str,
    fmt: str,
    timer: _Ticker,
    watcher: _FileWatcher,
) -> None:
    actions = api.get_actions()
    commands = config.cycle
    if commands is None and config.command is not None:
        commands = [config.command]
    if not commands:
        raise StatusError("either 'command' or 'cycle' must be specified")
    cycle = itertools.cycle(commands)
    command = next(cycle)

    while True:
        stdout = await _run_command(shell, command)
        update_bar(stdout, config.hide_when_empty, config.json, api, fmt)

        while True:
            action = await _next_event(api, actions, timer.tick(), watcher.changed())
            if action is None:
                break
            if action == "cycle":
                command = next(cycle)
                break


async def run(config: Config, api: CommonApi) -> None:
    api.set_default_actions([("left", None, "cycle")])
    fmt = resolve_format(config.format, DEFAULT_FORMAT)
    timer = _Ticker(config.interval)
    watcher = _FileWatcher([_expand(path) for path in config.watch_files])
    shell = resolve_shell(config.shell)

    if config.persistent:
        await _run_persistent(config, api, shell, fmt)
    else:
        await _run_cycle(config, api, shell, fmt, timer, watcher)


register_block("custom", Config, run)