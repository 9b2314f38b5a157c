"""Battery information from an apcupsd network information server."""

from __future__ import annotations

import asyncio
import logging
import struct
from contextlib import suppress

from statusblocks.battery.device import (
    BatteryDevice,
    BatteryInfo,
    BatteryStatus,
    DeviceName,
    _Ticker,
)
from statusblocks.core import StatusError

DEFAULT_ADDR = "localhost:3551"

_log = logging.getLogger(__name__)


class PropertyMap(dict):
    """The `KEY : value` pairs reported by apcupsd."""

    def get_property(self, name: str, required_unit: str) -> float:
        """The numeric part of a property, checking that its unit is `required_unit`."""
        stat = self.get(name)
        if stat is None:
            raise StatusError(f"{name} not in apc ups data")
        value, sep, unit = stat.partition(" ")
        if not sep:
            raise StatusError(f"could not split {name}")
        if unit != required_unit:
            raise StatusError(
                f"Expected unit for {name} are {required_unit}, but got {unit}"
            )
        try:
            return float(value)
        except ValueError:
            raise StatusError("Could not parse data") from None


def _split_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise StatusError(f"Failed to connect to socket: invalid address '{addr}'")
    return host.strip("[]"), int(port)


class ApcConnection:
    """A connection speaking apcupsd's length-prefixed message protocol."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._reader = reader
        self._writer = writer

    @classmethod
    async def connect(cls, addr: str) -> ApcConnection:
        host, port = _split_addr(addr)
        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError as exc:
            raise StatusError("Failed to connect to socket", cause=exc) from exc
        return cls(reader, writer)

    async def write(self, msg: bytes) -> None:
        if len(msg) > 0xFFFF:
            raise StatusError("msg is too long, it must be less than 2^16 characters long")
        try:
            self._writer.write(struct.pack(">H", len(msg)) + msg)
            await self._writer.drain()
        except OSError as exc:
            raise StatusError("Could not write message to socket", cause=exc) from exc

    async def read_line(self) -> str | None:
        """The next message, or None at the zero-length end marker."""
        try:
            header = await self._reader.readexactly(2)
        except (asyncio.IncompleteReadError, OSError) as exc:
            raise StatusError("Could not read response length from socket", cause=exc) from exc
        (size,) = struct.unpack(">H", header)
        if size == 0:
            return None
        try:
            data = await self._reader.readexactly(size)
        except (asyncio.IncompleteReadError, OSError) as exc:
            raise StatusError("Could not read from socket", cause=exc) from exc
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise StatusError("invalid UTF8", cause=exc) from exc

    async def close(self) -> None:
        self._writer.close()
        with suppress(OSError):
            await self._writer.wait_closed()

    async def __aenter__(self) -> ApcConnection:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


def info_from_properties(props: PropertyMap) -> BatteryInfo | None:
    """Battery information from an apcupsd status report, or None if unavailable."""
    status_str = props.get("STATUS", "COMMLOST")
    # BCHARGE may be missing for a few seconds after apcupsd starts.
    try:
        capacity = props.get_property("BCHARGE", "Percent")
    except StatusError:
        return None
    if status_str == "COMMLOST":
        return None

    if status_str == "ONBATT":
        status = BatteryStatus.EMPTY if capacity == 0.0 else BatteryStatus.DISCHARGING
    elif status_str == "ONLINE":
        status = BatteryStatus.FULL if capacity == 100.0 else BatteryStatus.CHARGING
    else:
        status = BatteryStatus.UNKNOWN

    try:
        power = (
            props.get_property("NOMPOWER", "Watts")
            * props.get_property("LOADPCT", "Percent")
            / 100.0
        )
    except StatusError:
        power = None

    try:
        time_remaining = props.get_property("TIMELEFT", "Minutes") * 60.0
    except StatusError:
        time_remaining = None

    return BatteryInfo(status, capacity, power, time_remaining)


class Device(BatteryDevice):
    """A UPS monitored through apcupsd."""

    def __init__(self, dev_name: DeviceName, interval: float = 10.0):
        exact = dev_name.exact()
        self.addr = DEFAULT_ADDR if exact is None else exact
        self._interval = interval
        self._ticker: _Ticker | None = None

    async def get_status(self) -> PropertyMap:
        props = PropertyMap()
        async with await ApcConnection.connect(self.addr) as conn:
            await conn.write(b"status")
            while (line := await conn.read_line()) is not None:
                key, sep, value = line.partition(":")
                if sep:
                    props[key.strip()] = value.strip()
        return props

    async def get_info(self) -> BatteryInfo | None:
        try:
            props = await self.get_status()
        except StatusError as exc:
            _log.debug("%s", exc)
            props = PropertyMap()
        return info_from_properties(props)

    async def wait_for_change(self) -> None:
        if self._ticker is None:
            self._ticker = _Ticker(self._interval)
        await self._ticker.tick()