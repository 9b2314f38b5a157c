import asyncio
import json
import os
import shutil
import tempfile

import pytest

from statusblocks.core import CommonApi, RequestCmd, StatusError, Value, config_from_table
from statusblocks.docker import Config, Status, fetch_status, run

INFO = {
    "Containers": 7,
    "ContainersRunning": 4,
    "ContainersStopped": 2,
    "ContainersPaused": 1,
    "Images": 12,
    "Name": "host",
}


@pytest.fixture
def socket_dir():
    path = tempfile.mkdtemp(prefix="dk")
    yield path
    shutil.rmtree(path, ignore_errors=True)


async def _serve(path, body):
    requests = []

    async def handle(reader, writer):
        head = await reader.readuntil(b"\r\n\r\n")
        requests.append(head.decode())
        writer.write(
            b"HTTP/1.1 200 OK\r\nContent-Type: application/json\r\n"
            + f"Content-Length: {len(body)}\r\nConnection: close\r\n\r\n".encode()
            + body
        )
        await writer.drain()
        writer.close()

    server = await asyncio.start_unix_server(handle, path=path)
    return server, requests


def test_status_from_json():
    status = Status.from_json(INFO)
    assert status == Status(total=7, running=4, stopped=2, paused=1, images=12)


def test_status_missing_field():
    data = {key: value for key, value in INFO.items() if key != "Images"}
    with pytest.raises(StatusError):
        Status.from_json(data)


def test_status_rejects_non_integer():
    with pytest.raises(StatusError):
        Status.from_json({**INFO, "ContainersRunning": True})


def test_status_rejects_list():
    with pytest.raises(StatusError):
        Status.from_json([INFO])


def test_config_defaults():
    config = config_from_table(Config, {})
    assert config.socket_path == "/var/run/docker.sock"
    assert config.interval == 5.0


@pytest.mark.asyncio
async def test_fetch_status(socket_dir):
    path = os.path.join(socket_dir, "d.sock")
    server, requests = await _serve(path, json.dumps(INFO).encode())
    async with server:
        status = await fetch_status(path)
    assert status.running == INFO["ContainersRunning"]
    assert status.images == INFO["Images"]
    assert requests[0].startswith("GET /info HTTP/1.1")
    assert "host: localhost" in requests[0].lower()


@pytest.mark.asyncio
async def test_fetch_status_bad_json(socket_dir):
    path = os.path.join(socket_dir, "d.sock")
    server, _ = await _serve(path, b"not json")
    async with server:
        with pytest.raises(StatusError, match="deserialize"):
            await fetch_status(path)


@pytest.mark.asyncio
async def test_fetch_status_no_socket(socket_dir):
    with pytest.raises(StatusError, match="connect"):
        await fetch_status(os.path.join(socket_dir, "missing.sock"))


@pytest.mark.asyncio
async def test_run_sets_widget(socket_dir):
    path = os.path.join(socket_dir, "d.sock")
    server, _ = await _serve(path, json.dumps(INFO).encode())
    queue = asyncio.Queue()
    api = CommonApi(id=3, request_sender=queue)
    async with server:
        task = asyncio.create_task(run(Config(socket_path=path), api))
        try:
            request = await asyncio.wait_for(queue.get(), 5)
        finally:
            task.cancel()
    assert request.cmd is RequestCmd.SET_WIDGET
    assert request.block_id == 3
    widget = request.payload
    assert widget.format == " $icon $running.eng(w:1) "
    assert widget.values["icon"] == Value.icon("docker")
    assert widget.values["total"] == Value.number(INFO["Containers"])
    assert widget.values["paused"] == Value.number(INFO["ContainersPaused"])