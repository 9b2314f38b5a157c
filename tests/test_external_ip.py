import httpx
import pytest
import respx

from statusblocks.core import StatusError
from statusblocks.external_ip import (
    API_ENDPOINT,
    IPAddressInfo,
    country_flag,
    fetch_info,
    info_values,
)

PAYLOAD = {
    "ip": "203.0.113.7",
    "version": "IPv4",
    "city": "San Francisco",
    "region": "California",
    "region_code": "CA",
    "country": "US",
    "country_name": "United States",
    "country_code": "US",
    "in_eu": False,
    "postal": None,
    "latitude": 37,
    "longitude": -122.5,
    "org": "Example Org",
}


def _decode_flag(flag):
    return "".join(chr(ord(glyph) - 0x1F1E6 + ord("A")) for glyph in flag)


@pytest.mark.parametrize("code", ["US", "DE", "JP"])
def test_country_flag_round_trip(code):
    flag = country_flag(code)
    assert len(flag) == 2
    assert flag != code
    assert _decode_flag(flag) == code


@pytest.mark.parametrize("code", ["", "us", "USA", "U1"])
def test_country_flag_passes_through_other_text(code):
    assert country_flag(code) == code


def test_from_json_defaults():
    assert IPAddressInfo.from_json({}) == IPAddressInfo()


def test_from_json_fields():
    info = IPAddressInfo.from_json({**PAYLOAD, "unknown": "ignored"})
    assert info.ip == PAYLOAD["ip"]
    assert info.city == PAYLOAD["city"]
    assert info.latitude == 37.0
    assert info.longitude == -122.5
    assert info.postal is None
    assert info.in_eu is False


@pytest.mark.parametrize(
    "data", [[], {"ip": 5}, {"in_eu": "yes"}, {"latitude": "north"}, {"postal": 1}, {"city": None}]
)
def test_from_json_rejects_bad_types(data):
    with pytest.raises(StatusError):
        IPAddressInfo.from_json(data)


def test_info_values_optional_keys():
    plain = info_values(IPAddressInfo.from_json(PAYLOAD))
    assert "postal" not in plain
    assert "in_eu" not in plain
    assert {"ip", "country_flag", "latitude", "org"} <= set(plain)

    extended = info_values(IPAddressInfo.from_json({**PAYLOAD, "postal": "94107", "in_eu": True}))
    assert set(extended) - set(plain) == {"postal", "in_eu"}


@pytest.mark.asyncio
async def test_fetch_info_parses_response():
    with respx.mock:
        route = respx.get(API_ENDPOINT).mock(return_value=httpx.Response(200, json=PAYLOAD))
        async with httpx.AsyncClient() as client:
            info = await fetch_info(client)
    assert route.called
    assert info.ip == PAYLOAD["ip"]
    assert info.country_code == "US"


@pytest.mark.asyncio
async def test_fetch_info_api_error():
    with respx.mock:
        respx.get(API_ENDPOINT).mock(
            return_value=httpx.Response(429, json={"error": True, "reason": "RateLimited"})
        )
        async with httpx.AsyncClient() as client:
            with pytest.raises(StatusError, match="RateLimited"):
                await fetch_info(client)


@pytest.mark.asyncio
async def test_fetch_info_invalid_json():
    with respx.mock:
        respx.get(API_ENDPOINT).mock(return_value=httpx.Response(200, text="not json"))
        async with httpx.AsyncClient() as client:
            with pytest.raises(StatusError, match="Failed to parse JSON"):
                await fetch_info(client)


@pytest.mark.asyncio
async def test_fetch_info_connection_failure():
    with respx.mock:
        respx.get(API_ENDPOINT).mock(side_effect=httpx.ConnectError("unreachable"))
        async with httpx.AsyncClient() as client:
            with pytest.raises(StatusError, match="Failed to request current location"):
                await fetch_info(client)