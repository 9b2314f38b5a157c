"""Shared pieces of every block: values, widgets, the block API and configuration."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable, Mapping, Sequence
from contextlib import suppress
from dataclasses import MISSING, dataclass, field, fields
from enum import Enum, auto
from typing import Any


class State(Enum):
    """Colour state of a block."""

    IDLE = "idle"
    INFO = "info"
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"


class StatusError(Exception):
    """An error raised by a block, with an optional message and cause."""

    def __init__(self, message: str | None = None, cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.message and self.cause is not None:
            return f"{self.message}: {self.cause}"
        if self.message:
            return self.message
        if self.cause is not None:
            return str(self.cause)
        return "unknown error"


class BlockError(Exception):
    """An error which originates from a block."""

    def __init__(self, block_id: int, block_name: str, error: StatusError):
        super().__init__(block_id, block_name, error)
        self.block_id = block_id
        self.block_name = block_name
        self.error = error

    def __str__(self) -> str:
        return f"In block {self.block_name}: {self.error}"


@dataclass(frozen=True)
class Value:
    """A placeholder value shown by a widget."""

    kind: str
    value: Any = None
    unit: str | None = None
    progress: float | None = None

    @staticmethod
    def icon(name: str) -> Value:
        return Value("icon", name)

    @staticmethod
    def icon_progression(name: str, value: float) -> Value:
        return Value("icon", name, progress=value)

    @staticmethod
    def text(text: str) -> Value:
        return Value("text", text)

    @staticmethod
    def number(number: float) -> Value:
        return Value("number", number)

    @staticmethod
    def percents(number: float) -> Value:
        return Value("number", number, unit="%")

    @staticmethod
    def bytes(number: float) -> Value:
        return Value("number", number, unit="B")

    @staticmethod
    def watts(number: float) -> Value:
        return Value("number", number, unit="W")

    @staticmethod
    def hertz(number: float) -> Value:
        return Value("number", number, unit="Hz")

    @staticmethod
    def flag() -> Value:
        return Value("flag")


@dataclass
class Widget:
    """What a block wants displayed: a format, a state and placeholder values."""

    format: str | None = None
    state: State = State.IDLE
    values: dict[str, Value] = field(default_factory=dict)

    def with_format(self, format: str) -> Widget:
        self.format = format
        return self

    def with_state(self, state: State) -> Widget:
        self.state = state
        return self

    def set_format(self, format: str) -> None:
        self.format = format

    def set_values(self, values: Mapping[str, Value]) -> None:
        self.values = dict(values)


class RequestCmd(Enum):
    SET_WIDGET = auto()
    UNSET_WIDGET = auto()
    SET_ERROR = auto()
    SET_DEFAULT_ACTIONS = auto()
    SUBSCRIBE_TO_ACTIONS = auto()


@dataclass
class Request:
    block_id: int
    cmd: RequestCmd
    payload: Any = None


@dataclass
class CommonApi:
    """The handle a running block uses to talk to the bar."""

    id: int
    request_sender: asyncio.Queue
    error_interval: float = 5.0
    update_request: asyncio.Event = field(default_factory=asyncio.Event)

    def _send(self, cmd: RequestCmd, payload: Any = None) -> None:
        try:
            self.request_sender.put_nowait(Request(self.id, cmd, payload))
        except asyncio.QueueFull as exc:
            raise StatusError("Failed to send Request", cause=exc) from exc

    def set_widget(self, widget: Widget) -> None:
        """Send the widget to be displayed."""
        self._send(RequestCmd.SET_WIDGET, widget)

    def hide(self) -> None:
        """Hide the block until a new widget is sent."""
        self._send(RequestCmd.UNSET_WIDGET)

    def set_error(self, error: StatusError) -> None:
        """Send the error to be displayed."""
        self._send(RequestCmd.SET_ERROR, error)

    def set_default_actions(self, actions: Sequence[tuple[Any, str | None, str]]) -> None:
        self._send(RequestCmd.SET_DEFAULT_ACTIONS, tuple(actions))

    def get_actions(self) -> asyncio.Queue:
        """Subscribe to the block's actions; they arrive on the returned queue."""
        actions: asyncio.Queue = asyncio.Queue()
        self._send(RequestCmd.SUBSCRIBE_TO_ACTIONS, actions)
        return actions

    async def wait_for_update_request(self) -> None:
        await self.update_request.wait()
        self.update_request.clear()

    def request_update(self) -> None:
        """Wake the block that is waiting for an update request."""
        self.update_request.set()


def parse_seconds(value: Any) -> float:
    """Parse an interval: a non-negative number of seconds, or "once"."""
    if isinstance(value, str):
        if value == "once":
            return math.inf
        raise StatusError(f"invalid interval '{value}': expected a number or \"once\"")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise StatusError(f"invalid interval {value!r}: expected a number or \"once\"")
    if math.isnan(value) or value < 0:
        raise StatusError(f"invalid interval {value!r}: must not be negative")
    return float(value)


def resolve_format(configured: str | None, default: str) -> str:
    """Return the configured format, or the block's default when none is set."""
    return default if configured is None else configured


def config_from_table(cls: type, table: Mapping[str, Any]) -> Any:
    """Build a config dataclass from a table, rejecting unknown and missing fields."""
    known = {f.name: f for f in fields(cls) if f.init}
    for key in table:
        if key not in known:
            expected = ", ".join(f"`{name}`" for name in known)
            raise StatusError(f"unknown field `{key}`, expected one of {expected}")
    for name, spec in known.items():
        if name not in table and spec.default is MISSING and spec.default_factory is MISSING:
            raise StatusError(f"missing field `{name}`")
    kwargs = {}
    for key, value in table.items():
        parse = known[key].metadata.get("parse")
        kwargs[key] = parse(value) if parse is not None else value
    return cls(**kwargs)


BlockRun = Callable[[Any, CommonApi], Awaitable[None]]

_REGISTRY: dict[str, tuple[type, BlockRun]] = {}


def register_block(name: str, config_cls: type, run: BlockRun) -> None:
    """Make a block available to configuration under the given name."""
    _REGISTRY[name] = (config_cls, run)


async def _sleep_or_update(api: CommonApi, seconds: float) -> None:
    timeout = None if math.isinf(seconds) else seconds
    with suppress(TimeoutError):
        await asyncio.wait_for(api.wait_for_update_request(), timeout)


@dataclass
class BlockConfig:
    """A parsed block configuration, or the error that parsing it produced."""

    name: str
    config: Any = None
    error: StatusError | None = None
    run: BlockRun | None = None

    def spawn(self, api: CommonApi) -> asyncio.Task:
        """Start the block as a task that restarts it after every error."""
        return asyncio.create_task(self._drive(api))

    async def _drive(self, api: CommonApi) -> None:
        if self.error is not None or self.run is None:
            with suppress(StatusError):
                api.set_error(StatusError("Configuration error", cause=self.error))
            return
        while True:
            try:
                await self.run(self.config, api)
                return
            except StatusError as err:
                try:
                    api.set_error(err)
                except StatusError:
                    return
            await _sleep_or_update(api, api.error_interval)


def parse_block_config(table: Mapping[str, Any]) -> BlockConfig:
    """Parse one `[[block]]` table."""
    rest = dict(table)
    if "block" not in rest:
        raise StatusError("missing field `block`")
    name = rest.pop("block")
    if not isinstance(name, str):
        raise StatusError("block must be a string")
    if name not in _REGISTRY:
        raise StatusError(f"unknown block '{name}'")
    config_cls, run = _REGISTRY[name]
    try:
        config = config_from_table(config_cls, rest)
    except (StatusError, TypeError, ValueError) as exc:
        error = exc if isinstance(exc, StatusError) else StatusError(str(exc))
        return BlockConfig(name=name, error=error, run=run)
    return BlockConfig(name=name, config=config, run=run)