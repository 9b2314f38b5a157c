import asyncio
import math
from dataclasses import dataclass, field

import pytest

from statusblocks.core import (
    BlockError,
    CommonApi,
    RequestCmd,
    State,
    StatusError,
    Value,
    Widget,
    config_from_table,
    parse_block_config,
    parse_seconds,
    register_block,
    resolve_format,
)


@dataclass
class _SampleConfig:
    name: str
    interval: float = field(default=1.0, metadata={"parse": parse_seconds})


async def _noop(config, api):
    return None


def _api(maxsize=0, error_interval=0.01):
    return CommonApi(id=7, request_sender=asyncio.Queue(maxsize), error_interval=error_interval)


def test_value_constructors_keep_payload():
    assert Value.percents(5).value == 5
    assert Value.percents(5).kind == Value.number(5).kind
    assert Value.bytes(5).unit != Value.watts(5).unit
    assert Value.icon_progression("bat", 0.5).progress == 0.5
    assert Value.icon("bat").value == "bat"
    assert Value.flag().kind != Value.text("x").kind


def test_widget_chaining():
    widget = Widget().with_format(" $icon ").with_state(State.CRITICAL)
    assert widget.format == " $icon "
    assert widget.state is State.CRITICAL


def test_widget_set_values_copies():
    values = {"icon": Value.icon("update")}
    widget = Widget()
    widget.set_values(values)
    values["count"] = Value.number(1)
    assert list(widget.values) == ["icon"]


def test_set_widget_sends_request():
    api = _api()
    widget = Widget().with_format(" x ")
    api.set_widget(widget)
    request = api.request_sender.get_nowait()
    assert request.block_id == 7
    assert request.cmd is RequestCmd.SET_WIDGET
    assert request.payload is widget


def test_hide_sends_unset():
    api = _api()
    api.hide()
    assert api.request_sender.get_nowait().cmd is RequestCmd.UNSET_WIDGET


def test_full_queue_raises():
    api = _api(maxsize=1)
    api.hide()
    with pytest.raises(StatusError, match="Failed to send Request"):
        api.hide()


def test_default_actions_sent_as_tuple():
    api = _api()
    api.set_default_actions([("left", None, "toggle_format")])
    request = api.request_sender.get_nowait()
    assert request.cmd is RequestCmd.SET_DEFAULT_ACTIONS
    assert request.payload == (("left", None, "toggle_format"),)


@pytest.mark.asyncio
async def test_get_actions_subscribes():
    api = _api()
    actions = api.get_actions()
    request = api.request_sender.get_nowait()
    assert request.cmd is RequestCmd.SUBSCRIBE_TO_ACTIONS
    assert request.payload is actions


@pytest.mark.asyncio
async def test_update_request_wakes_waiter():
    api = _api()
    api.request_update()
    await asyncio.wait_for(api.wait_for_update_request(), 1)
    assert not api.update_request.is_set()
    with pytest.raises(TimeoutError):
        await asyncio.wait_for(api.wait_for_update_request(), 0.01)


def test_parse_seconds():
    assert parse_seconds(5) == 5.0
    assert parse_seconds("once") == math.inf
    for bad in (-1, "soon", True, None):
        with pytest.raises(StatusError):
            parse_seconds(bad)


def test_resolve_format():
    assert resolve_format(None, " $x ") == " $x "
    assert resolve_format("", " $x ") == ""


def test_config_from_table():
    config = config_from_table(_SampleConfig, {"name": "a", "interval": "once"})
    assert config == _SampleConfig(name="a", interval=math.inf)
    with pytest.raises(StatusError, match="unknown field `bogus`"):
        config_from_table(_SampleConfig, {"name": "a", "bogus": 1})
    with pytest.raises(StatusError, match="missing field `name`"):
        config_from_table(_SampleConfig, {})


def test_parse_block_config_errors():
    with pytest.raises(StatusError, match="missing field `block`"):
        parse_block_config({})
    with pytest.raises(StatusError, match="block must be a string"):
        parse_block_config({"block": 3})
    with pytest.raises(StatusError, match="unknown block 'nonexistent'"):
        parse_block_config({"block": "nonexistent"})


def test_parse_block_config_keeps_field_errors():
    register_block("sample_block", _SampleConfig, _noop)
    block = parse_block_config({"block": "sample_block"})
    assert block.name == "sample_block"
    assert block.config is None
    assert "missing field" in str(block.error)
    good = parse_block_config({"block": "sample_block", "name": "n"})
    assert good.config == _SampleConfig(name="n")


@pytest.mark.asyncio
async def test_spawn_retries_after_error():
    calls = []

    async def flaky(config, api):
        calls.append(config)
        if len(calls) == 1:
            raise StatusError("boom")

    register_block("flaky_block", _SampleConfig, flaky)
    block = parse_block_config({"block": "flaky_block", "name": "x"})
    api = _api()
    await asyncio.wait_for(block.spawn(api), 1)
    assert len(calls) == 2
    request = api.request_sender.get_nowait()
    assert request.cmd is RequestCmd.SET_ERROR
    assert str(request.payload) == "boom"


@pytest.mark.asyncio
async def test_spawn_reports_configuration_error():
    register_block("sample_block", _SampleConfig, _noop)
    block = parse_block_config({"block": "sample_block"})
    api = _api()
    await asyncio.wait_for(block.spawn(api), 1)
    request = api.request_sender.get_nowait()
    assert request.payload.message == "Configuration error"
    assert request.payload.cause is block.error


def test_block_error_message():
    err = BlockError(1, "dnf", StatusError("broken"))
    assert str(err) == "In block dnf: broken"