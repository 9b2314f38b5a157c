"""Container and image counts of the local docker daemon."""

from __future__ import annotations

import asyncio
import json
import math
import os
import re
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import httpx

from statusblocks.core import (
    CommonApi,
    StatusError,
    Value,
    Widget,
    parse_seconds,
    register_block,
    resolve_format,
)

DEFAULT_FORMAT = " $icon $running.eng(w:1) "
DEFAULT_SOCKET = "/var/run/docker.sock"

_VARIABLE = re.compile(r"\$(?:\{(\w+)\}|(\w+))")


@dataclass
class Config:
    interval: float = field(default=5.0, metadata={"parse": parse_seconds})
    format: str | None = None
    socket_path: str = DEFAULT_SOCKET


@dataclass(frozen=True)
class Status:
    """Counts reported by the daemon's `/info` endpoint."""

    total: int = field(metadata={"key": "Containers"})
    running: int = field(metadata={"key": "ContainersRunning"})
    stopped: int = field(metadata={"key": "ContainersStopped"})
    paused: int = field(metadata={"key": "ContainersPaused"})
    images: int = field(metadata={"key": "Images"})

    @classmethod
    def from_json(cls, data: Any) -> Status:
        if not isinstance(data, Mapping):
            raise StatusError("Failed to deserialize JSON")
        kwargs = {}
        for spec in fields(cls):
            key = spec.metadata["key"]
            value = data.get(key)
            if isinstance(value, bool) or not isinstance(value, int):
                raise StatusError(f"Failed to deserialize JSON: bad or missing field `{key}`")
            kwargs[spec.name] = value
        return cls(**kwargs)


async def fetch_status(socket_path: str | Path) -> Status:
    """Query the daemon listening on the unix socket at `socket_path`."""
    transport = httpx.AsyncHTTPTransport(uds=str(socket_path))
    async with httpx.AsyncClient(transport=transport) as client:
        try:
            response = await client.get("http://api/info", headers={"Host": "localhost"})
        except httpx.ConnectError as exc:
            raise StatusError("Failed to connect to socket", cause=exc) from exc
        except httpx.HTTPError as exc:
            raise StatusError("Failed to get response", cause=exc) from exc
    try:
        data = json.loads(response.content)
    except ValueError as exc:
        raise StatusError("Failed to deserialize JSON", cause=exc) from exc
    return Status.from_json(data)


def _expand(path: str) -> str:
    expanded = os.path.expanduser(path)

    def substitute(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        if name not in os.environ:
            raise StatusError(f"Failed to expand '{path}': environment variable {name} not found")
        return os.environ[name]

    return _VARIABLE.sub(substitute, expanded)


async def _sleep_or_update(api: CommonApi, seconds: float) -> None:
    timeout = None if math.isinf(seconds) else seconds
    with suppress(TimeoutError):
        await asyncio.wait_for(api.wait_for_update_request(), timeout)


async def run(config: Config, api: CommonApi) -> None:
    fmt = resolve_format(config.format, DEFAULT_FORMAT)
    socket_path = _expand(config.socket_path)

    while True:
        status = await fetch_status(socket_path)

        widget = Widget().with_format(fmt)
        widget.set_values(
            {
                "icon": Value.icon("docker"),
                "total": Value.number(status.total),
                "running": Value.number(status.running),
                "paused": Value.number(status.paused),
                "stopped": Value.number(status.stopped),
                "images": Value.number(status.images),
            }
        )
        api.set_widget(widget)

        await _sleep_or_update(api, config.interval)


register_block("docker", Config, run)