"""Unread GitHub notification counts."""

from __future__ import annotations

import asyncio
import math
import os
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

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

DEFAULT_FORMAT = " $icon $total.eng(w:1) "
API_URL = "https://api.github.com/notifications"
TOKEN_ENV = "I3RS_GITHUB_TOKEN"
MAX_PAGE = 100

REASONS = (
    "assign",
    "author",
    "comment",
    "ci_activity",
    "invitation",
    "manual",
    "mention",
    "review_requested",
    "security_alert",
    "state_change",
    "subscribed",
    "team_mention",
)


@dataclass
class Config:
    interval: float = field(default=60.0, metadata={"parse": parse_seconds})
    format: str | None = None
    token: str | None = None
    hide_if_total_is_zero: bool = False
    good: list[str] | None = None
    info: list[str] | None = None
    warning: list[str] | None = None
    critical: list[str] | None = None


def count_reasons(reasons: Iterable[str]) -> dict[str, int]:
    """Count notifications by reason, with `total` and every known reason present."""
    reasons = list(reasons)
    stats = dict(Counter(reasons))
    stats["total"] = len(reasons)
    for reason in REASONS:
        stats.setdefault(reason, 0)
    return stats


async def get_on_page(client: httpx.AsyncClient, token: str, page: int) -> list[str]:
    """The reasons of the notifications on one page of results."""
    try:
        response = await client.get(
            API_URL,
            params={"per_page": 100, "page": page},
            headers={"Authorization": f"token {token}"},
        )
    except httpx.HTTPError as exc:
        raise StatusError("Failed to send request", cause=exc) from exc
    try:
        data = response.json()
    except ValueError as exc:
        raise StatusError("Failed to get JSON", cause=exc) from exc

    if isinstance(data, list):
        reasons = []
        for notification in data:
            reason = notification.get("reason") if isinstance(notification, dict) else None
            if not isinstance(reason, str):
                raise StatusError("Failed to get JSON")
            reasons.append(reason)
        return reasons
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        raise StatusError(f"API error: {data['message']}")
    raise StatusError("Failed to get JSON")


async def _get_page_with_retry(client: httpx.AsyncClient, token: str, page: int) -> list[str]:
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=1, min=1, max=60),
        retry=retry_if_exception_type(StatusError),
        reraise=True,
    ):
        with attempt:
            return await get_on_page(client, token, page)
    raise StatusError("Failed to send request")


async def get_stats(client: httpx.AsyncClient, token: str) -> dict[str, int]:
    """Fetch every page of notifications and count them by reason."""
    reasons: list[str] = []
    for page in range(1, MAX_PAGE):
        on_page = await _get_page_with_retry(client, token, page)
        if not on_page:
            break
        reasons.extend(on_page)
    return count_reasons(reasons)


def notification_state(stats: Mapping[str, int], config: Config) -> State:
    """The state of the most severe list that names a reason with notifications."""
    for reasons, state in (
        (config.critical, State.CRITICAL),
        (config.warning, State.WARNING),
        (config.info, State.INFO),
        (config.good, State.GOOD),
    ):
        if reasons and any(stats.get(reason, 0) > 0 for reason in reasons):
            return state
    return State.IDLE


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


async def _tick_or_update(timer: _Ticker, api: CommonApi) -> None:
    tasks = (
        asyncio.ensure_future(timer.tick()),
        asyncio.ensure_future(api.wait_for_update_request()),
    )
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()


async def run(config: Config, api: CommonApi) -> None:
    fmt = resolve_format(config.format, DEFAULT_FORMAT)
    timer = _Ticker(config.interval)
    token = config.token if config.token is not None else os.environ.get(TOKEN_ENV)
    if token is None:
        raise StatusError("Github token not found")

    async with httpx.AsyncClient() as client:
        while True:
            stats = await get_stats(client, token)

            if stats.get("total", 0) > 0 or not config.hide_if_total_is_zero:
                widget = Widget().with_format(fmt)
                widget.state = notification_state(stats, config)
                values = {name: Value.number(count) for name, count in stats.items()}
                values["icon"] = Value.icon("github")
                widget.set_values(values)
                api.set_widget(widget)
            else:
                api.hide()

            await _tick_or_update(timer, api)


register_block("github", Config, run)