import asyncio
import os
from contextlib import suppress
from types import SimpleNamespace

import pytest

from statusblocks.core import (
    CommonApi,
    RequestCmd,
    State,
    StatusError,
    Value,
    config_from_table,
)
from statusblocks.disk_space import (
    Config,
    DiskUsage,
    InfoType,
    alert_value,
    disk_state,
    parse_alert_unit,
    run,
)


@pytest.mark.parametrize(
    "unit, scale",
    [("TB", 1e-12), ("GB", 1e-9), ("MB", 1e-6), ("KB", 1e-3), ("B", 1.0)],
)
def test_parse_alert_unit(unit, scale):
    assert parse_alert_unit(unit) == scale


def test_parse_alert_unit_none_means_percents():
    assert parse_alert_unit(None) is None


def test_parse_alert_unit_unknown():
    with pytest.raises(StatusError, match="Unknown unit: 'PB'"):
        parse_alert_unit("PB")


def test_alert_value_percentage_without_unit():
    assert alert_value(123456.0, 42.0, None) == 42.0


def test_alert_value_in_gigabytes():
    assert alert_value(2e9, 10.0, parse_alert_unit("GB")) == pytest.approx(2.0)


def test_alert_value_in_bytes_is_unchanged():
    assert alert_value(4096.0, 10.0, parse_alert_unit("B")) == 4096.0


@pytest.mark.parametrize(
    "value, state",
    [(15.0, State.CRITICAL), (10.0, State.CRITICAL), (7.0, State.WARNING), (5.0, State.WARNING), (1.0, State.IDLE)],
)
def test_disk_state_used(value, state):
    assert disk_state(InfoType.USED, value, alert=10.0, warning=5.0) is state


@pytest.mark.parametrize("info_type", [InfoType.FREE, InfoType.AVAILABLE])
@pytest.mark.parametrize(
    "value, state",
    [(5.0, State.CRITICAL), (10.0, State.CRITICAL), (15.0, State.WARNING), (20.0, State.WARNING), (50.0, State.IDLE)],
)
def test_disk_state_free_and_available(info_type, value, state):
    assert disk_state(info_type, value, alert=10.0, warning=20.0) is state


def test_from_statvfs_invariants():
    stat = SimpleNamespace(f_blocks=100, f_frsize=4096, f_bsize=4096, f_bfree=40, f_bavail=30)
    usage = DiskUsage.from_statvfs(stat)
    assert usage.total == usage.used + usage.free
    assert usage.available <= usage.free
    assert usage.total % stat.f_frsize == 0


def test_from_statvfs_full_disk():
    stat = SimpleNamespace(f_blocks=100, f_frsize=512, f_bsize=512, f_bfree=0, f_bavail=0)
    usage = DiskUsage.from_statvfs(stat)
    assert usage.used == usage.total
    assert usage.free == 0
    assert usage.available == 0


def test_from_statvfs_real_filesystem(tmp_path):
    usage = DiskUsage.from_statvfs(os.statvfs(tmp_path))
    assert usage.total > 0
    assert 0 <= usage.available <= usage.free
    assert usage.used <= usage.total


def test_config_defaults():
    config = config_from_table(Config, {})
    assert config.path == "/"
    assert config.info_type is InfoType.AVAILABLE
    assert config.interval == 20.0
    assert (config.warning, config.alert) == (20.0, 10.0)


def test_config_info_type_parsed():
    assert config_from_table(Config, {"info_type": "used"}).info_type is InfoType.USED


def test_config_info_type_invalid():
    with pytest.raises(StatusError, match="unknown variant"):
        config_from_table(Config, {"info_type": "spare"})


async def _cancel(task):
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_run_sends_widget_and_toggles_format(tmp_path):
    config = config_from_table(
        Config,
        {"path": str(tmp_path), "interval": "once", "format_alt": " $icon $total "},
    )
    queue = asyncio.Queue()
    api = CommonApi(id=3, request_sender=queue)
    task = asyncio.create_task(run(config, api))
    try:
        subscribe = await asyncio.wait_for(queue.get(), 5)
        assert subscribe.cmd is RequestCmd.SUBSCRIBE_TO_ACTIONS
        assert subscribe.block_id == 3
        actions = subscribe.payload

        defaults = await asyncio.wait_for(queue.get(), 5)
        assert defaults.cmd is RequestCmd.SET_DEFAULT_ACTIONS

        first = await asyncio.wait_for(queue.get(), 5)
        assert first.cmd is RequestCmd.SET_WIDGET
        assert first.payload.format == " $icon $available "
        assert first.payload.values["path"] == Value.text(str(tmp_path))
        assert first.payload.values["icon"] == Value.icon("disk_drive")

        actions.put_nowait("toggle_format")
        second = await asyncio.wait_for(queue.get(), 5)
        assert second.payload.format == " $icon $total "
    finally:
        await _cancel(task)


@pytest.mark.asyncio
async def test_run_refreshes_on_update_request(tmp_path):
    config = config_from_table(Config, {"path": str(tmp_path), "interval": "once"})
    queue = asyncio.Queue()
    api = CommonApi(id=0, request_sender=queue)
    task = asyncio.create_task(run(config, api))
    try:
        for _ in range(3):
            await asyncio.wait_for(queue.get(), 5)
        api.request_update()
        refreshed = await asyncio.wait_for(queue.get(), 5)
        assert refreshed.cmd is RequestCmd.SET_WIDGET
    finally:
        await _cancel(task)


@pytest.mark.asyncio
async def test_run_rejects_unknown_unit(tmp_path):
    config = config_from_table(Config, {"path": str(tmp_path), "alert_unit": "PB"})
    api = CommonApi(id=0, request_sender=asyncio.Queue())
    with pytest.raises(StatusError, match="Unknown unit"):
        await run(config, api)


@pytest.mark.asyncio
async def test_run_missing_path(tmp_path):
    config = config_from_table(Config, {"path": str(tmp_path / "missing")})
    api = CommonApi(id=0, request_sender=asyncio.Queue())
    with pytest.raises(StatusError, match="failed to retrieve statvfs"):
        await run(config, api)


@pytest.mark.asyncio
async def test_run_undefined_variable(tmp_path, monkeypatch):
    monkeypatch.delenv("STATUSBLOCKS_NO_SUCH_DIR", raising=False)
    config = config_from_table(Config, {"path": "$STATUSBLOCKS_NO_SUCH_DIR/data"})
    api = CommonApi(id=0, request_sender=asyncio.Queue())
    with pytest.raises(StatusError, match="STATUSBLOCKS_NO_SUCH_DIR"):
        await run(config, api)


@pytest.mark.asyncio
async def test_run_expands_variables(tmp_path, monkeypatch):
    monkeypatch.setenv("STATUSBLOCKS_DISK_DIR", str(tmp_path))
    config = config_from_table(Config, {"path": "${STATUSBLOCKS_DISK_DIR}", "interval": "once"})
    queue = asyncio.Queue()
    api = CommonApi(id=0, request_sender=queue)
    task = asyncio.create_task(run(config, api))
    try:
        for _ in range(2):
            await asyncio.wait_for(queue.get(), 5)
        widget = (await asyncio.wait_for(queue.get(), 5)).payload
        assert widget.values["path"] == Value.text(str(tmp_path))
    finally:
        await _cancel(task)