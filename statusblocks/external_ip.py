"""External IP address and information about its location."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field, fields
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from statusblocks.core import (
    CommonApi,
    StatusError,
    Value,
    Widget,
    parse_seconds,
    register_block,
    resolve_format,
)

API_ENDPOINT = "https://ipapi.co/json/"
DEFAULT_FORMAT = " $ip $country_flag "

_REGIONAL_INDICATOR_A = 0x1F1E6


@dataclass
class Config:
    format: str | None = None
    interval: float = field(default=300.0, metadata={"parse": parse_seconds})
    with_network_manager: bool = True
    use_ipv4: bool = False


@dataclass(frozen=True)
class IPAddressInfo:
    """What the lookup service reports about the current external address."""

    error: bool = False
    reason: str = ""
    ip: str = ""
    version: str = ""
    city: str = ""
    region: str = ""
    region_code: str = ""
    country: str = ""
    country_name: str = ""
    country_code: str = ""
    country_code_iso3: str = ""
    country_capital: str = ""
    country_tld: str = ""
    continent_code: str = ""
    in_eu: bool = False
    postal: str | None = None
    latitude: float = 0.0
    longitude: float = 0.0
    timezone: str = ""
    utc_offset: str = ""
    country_calling_code: str = ""
    currency: str = ""
    currency_name: str = ""
    languages: str = ""
    country_area: float = 0.0
    country_population: float = 0.0
    asn: str = ""
    org: str = ""

    @classmethod
    def from_json(cls, data: Any) -> IPAddressInfo:
        if not isinstance(data, Mapping):
            raise StatusError("Failed to parse JSON")
        kwargs = {}
        for spec in fields(cls):
            if spec.name in data:
                kwargs[spec.name] = _convert(spec.name, spec.default, data[spec.name])
        return cls(**kwargs)


def _convert(name: str, default: Any, value: Any) -> Any:
    if default is None:
        if value is None or isinstance(value, str):
            return value
    elif isinstance(default, bool):
        if isinstance(value, bool):
            return value
    elif isinstance(default, float):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif isinstance(value, str):
        return value
    raise StatusError(f"Failed to parse JSON: invalid type for field `{name}`")


def country_flag(code: str) -> str:
    """The flag glyph of a two-letter upper-case country code; other text is returned as is."""
    if len(code) != 2 or not all("A" <= letter <= "Z" for letter in code):
        return code
    return "".join(chr(_REGIONAL_INDICATOR_A + ord(letter) - ord("A")) for letter in code)


async def fetch_info(client: httpx.AsyncClient) -> IPAddressInfo:
    try:
        response = await client.get(API_ENDPOINT)
    except httpx.HTTPError as exc:
        raise StatusError("Failed to request current location", cause=exc) from exc
    try:
        data = response.json()
    except ValueError as exc:
        raise StatusError("Failed to parse JSON", cause=exc) from exc
    info = IPAddressInfo.from_json(data)
    if info.error:
        raise StatusError(info.reason)
    return info


def info_values(info: IPAddressInfo) -> dict[str, Value]:
    """The placeholder values the block shows for an address."""
    values = {
        "ip": Value.text(info.ip),
        "version": Value.text(info.version),
        "city": Value.text(info.city),
        "region": Value.text(info.region),
        "region_code": Value.text(info.region_code),
        "country": Value.text(info.country),
        "country_name": Value.text(info.country_name),
        "country_flag": Value.text(country_flag(info.country_code)),
        "country_code": Value.text(info.country_code),
        "country_code_iso3": Value.text(info.country_code_iso3),
        "country_capital": Value.text(info.country_capital),
        "country_tld": Value.text(info.country_tld),
        "continent_code": Value.text(info.continent_code),
        "latitude": Value.number(info.latitude),
        "longitude": Value.number(info.longitude),
        "timezone": Value.text(info.timezone),
        "utc_offset": Value.text(info.utc_offset),
        "country_calling_code": Value.text(info.country_calling_code),
        "currency": Value.text(info.currency),
        "currency_name": Value.text(info.currency_name),
        "languages": Value.text(info.languages),
        "country_area": Value.number(info.country_area),
        "country_population": Value.number(info.country_population),
        "asn": Value.text(info.asn),
        "org": Value.text(info.org),
    }
    if info.postal is not None:
        values["postal"] = Value.text(info.postal)
    if info.in_eu:
        values["in_eu"] = Value.flag()
    return values


async def _fetch_with_retry(client: httpx.AsyncClient) -> IPAddressInfo:
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=1, min=1, max=60),
        retry=retry_if_exception_type(StatusError),
        reraise=True,
    ):
        with attempt:
            return await fetch_info(client)
    raise StatusError("Failed to request current location")


def _make_client(use_ipv4: bool) -> httpx.AsyncClient:
    if use_ipv4:
        return httpx.AsyncClient(transport=httpx.AsyncHTTPTransport(local_address="0.0.0.0"))
    return httpx.AsyncClient()


async def _sleep_or_update(api: CommonApi, seconds: float) -> None:
    timeout = None if math.isinf(seconds) else seconds
    with suppress(TimeoutError):
        await asyncio.wait_for(api.wait_for_update_request(), timeout)


async def run(config: Config, api: CommonApi) -> None:
    fmt = resolve_format(config.format, DEFAULT_FORMAT)

    async with _make_client(config.use_ipv4) as client:
        while True:
            info = await _fetch_with_retry(client)
            widget = Widget().with_format(fmt)
            widget.set_values(info_values(info))
            api.set_widget(widget)
            await _sleep_or_update(api, config.interval)


register_block("external_ip", Config, run)