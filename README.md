# statusblocks

Asynchronous status-bar blocks for Linux desktops. Each block gathers one
kind of information and reports it as a `Widget`. The blocks cover CPU load,
AMD GPU usage, disk space, battery charge, pending `apt` or `dnf` updates,
docker containers, GitHub notifications, the external IP address, the output
of a shell command and the screen colour temperature. Drawing the widgets is
left to the program that runs the blocks.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Concepts

- `statusblocks.core.CommonApi` is a block's channel to the bar. Every call
  puts a `Request` on the `asyncio.Queue` given as `request_sender`. A request
  carries the block id, a `RequestCmd` and a payload:
  - `set_widget(widget)` sends `SET_WIDGET` with the widget.
  - `hide()` sends `UNSET_WIDGET`.
  - `set_error(error)` sends `SET_ERROR` with a `StatusError`.
  - `set_default_actions(actions)` sends `SET_DEFAULT_ACTIONS` with tuples of
    `(button, widget, action)`. The buttons are the strings `"left"`,
    `"right"`, `"up"` and `"down"`.
  - `get_actions()` sends `SUBSCRIBE_TO_ACTIONS` with a queue. To trigger an
    action such as `"toggle_format"` or `"cycle"`, the bar puts the action's
    name on that queue.
  - `request_update()` wakes a block that is waiting, so it refreshes at once.
- `statusblocks.core.Widget` holds a format string, a `State` (`IDLE`,
  `INFO`, `GOOD`, `WARNING`, `CRITICAL`) and a mapping from placeholder names
  to `Value`s. A `Value` has a kind (icon, text, number or flag), an optional
  unit and, for icons, an optional progression between 0 and 1.
- `statusblocks.core.parse_block_config(table)` turns one `[[block]]` table
  into a `BlockConfig`. It raises `StatusError` when the `block` key is
  missing, when it is not a string, or when it names an unknown block.
  Unknown or missing fields in the table do not raise. They give a
  `BlockConfig` that reports `"Configuration error"` once it is spawned.
- `BlockConfig.spawn(api)` starts the block as an `asyncio.Task`. When the
  block raises a `StatusError`, the task reports the error and restarts the
  block after `api.error_interval` seconds, or sooner if an update is
  requested.
- A block becomes known to `parse_block_config` when its module is imported.
  Each module registers its block at import time.
- An `interval` is a number of seconds, or `"once"`. With `"once"`, the block
  refreshes only on update requests and actions.

## Example

```python
import asyncio
import tomllib

import statusblocks.cpu
import statusblocks.disk_space
from statusblocks.core import CommonApi, RequestCmd, parse_block_config

config_text = """
[[block]]
block = "cpu"
interval = 1

[[block]]
block = "disk_space"
path = "/"
alert_unit = "GB"
alert = 10.0
warning = 15.0
"""


async def main():
    tables = tomllib.loads(config_text)["block"]
    queue = asyncio.Queue()
    tasks = [
        parse_block_config(table).spawn(CommonApi(block_id, queue))
        for block_id, table in enumerate(tables)
    ]
    while True:
        request = await queue.get()
        if request.cmd is RequestCmd.SET_WIDGET:
            widget = request.payload
            print(request.block_id, widget.state, widget.values)
        elif request.cmd is RequestCmd.SET_ERROR:
            print(request.block_id, "error:", request.payload)


asyncio.run(main())
```

## Blocks

| Name          | Module                       | Notes |
|---------------|------------------------------|-------|
| `amd_gpu`     | `statusblocks.amd_gpu`       | reads `/sys/class/drm` |
| `apt`         | `statusblocks.apt`           | keeps a private apt state in the temp directory under `i3rs-apt` |
| `battery`     | `statusblocks.battery.block` | drivers `sysfs` and `apc_ups` |
| `cpu`         | `statusblocks.cpu`           | reads `/proc/stat` and `/proc/cpuinfo` |
| `custom`      | `statusblocks.custom`        | runs `command` or `cycle` through the shell |
| `disk_space`  | `statusblocks.disk_space`    | uses `os.statvfs` |
| `dnf`         | `statusblocks.dnf`           | runs `dnf check-update` |
| `docker`      | `statusblocks.docker`        | queries the daemon over its unix socket |
| `external_ip` | `statusblocks.external_ip`   | queries `https://ipapi.co/json/` |
| `github`      | `statusblocks.github`        | token from `token` or `I3RS_GITHUB_TOKEN` |
| `hueshift`    | `statusblocks.hueshift`      | drives `redshift`, `sct`, `gammastep` or `wlsunset` |

Each block module has a `Config` dataclass and an async `run(config, api)`
coroutine. The configuration keys and their defaults are the fields of the
`Config` class.

Some of these blocks have more specific behaviour:

- `custom` watches `watch_files` by checking their modification time and size
  every half second.
- `custom` with `json = true` reads an object with `icon`, `state`, `text`
  and `short_text` from the command's output. The `state` value ignores case.
- `hueshift` without a `hue_shifter` option picks the first supported program
  found on the `PATH`.

## What it does not do

- It is a library, not a bar. It installs no command, reads no configuration
  file of its own, and does not write the i3bar protocol.
- Format strings are stored as they are configured, in `Widget.format`. No
  placeholders are filled in and nothing is rendered.
- Click configuration (`[[block.click]]`), signals, icon sets and themes are
  not handled. The bar delivers actions through the queue from
  `get_actions()`.
- The `upower` battery driver is not available. Choosing it makes the block
  raise a `StatusError`.
- The `wl_gammarelay` and `wl_gammarelay_rs` hue shifters are not available.
  Choosing one makes the block raise a `StatusError`. Auto-detection may also
  pick one of them if it is installed, with the same result.
- `external_ip` accepts `with_network_manager`, but it does not listen for
  network changes. It refreshes on its interval and on update requests.