"""Live telemetry feed with pull and push modes.

LiveDataFeed starts by polling the latest-status RPC method. After a run
of consecutive pull failures it switches, once, to a dedicated push
stream and stays there until start() is called again.

The two modes heal differently:
- Pull mode retries on its normal interval and counts failures.
- Push mode reopens the stream after a fixed delay with no attempt limit.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from .config import LiveFeedOptions, NodepulseConfig
from .errors import NodepulseClientError, NodepulseProtocolError
from .snapshot import LiveDataBatch, from_rpc_result, from_stream_message
from .transport.ws import websocket_url
from .transport.ws_client import NodepulseWsClient, NodepulseWsMessageType

_LOGGER = logging.getLogger(__name__)

Caller = Callable[..., Awaitable[Any]]
DataCallback = Callable[[LiveDataBatch], None]
StatusCallback = Callable[[bool, "FeedMode"], None]


class FeedMode(str, Enum):
    """Source of the snapshots currently being emitted."""

    PULL = "pull"
    PUSH = "push"


class LiveDataFeed:
    """Deliver LiveDataBatch updates to subscribers.

    Usage:
        feed = LiveDataFeed(
            client.call,
            base_url="http://monitor.local:25774",
            on_data=render,
        )
        await feed.start()
        ...
        await feed.stop()
    """

    def __init__(
        self,
        caller: Caller,
        *,
        stream_url: str | None = None,
        base_url: str | None = None,
        options: LiveFeedOptions | None = None,
        on_data: DataCallback | None = None,
        on_status: StatusCallback | None = None,
    ) -> None:
        """Initialize feed.

        Args:
            caller: Coroutine function called as caller(method), e.g.
                RpcClient.call
            stream_url: ws(s):// URL of the push stream
            base_url: Server origin; the stream URL is derived from it and
                options.stream_path when stream_url is omitted
            options: Feed options (defaults when omitted)
            on_data: Initial data subscriber
            on_status: Initial status subscriber
        """
        self._caller = caller
        self._options = options or LiveFeedOptions()
        if stream_url is None:
            if base_url is None:
                raise ValueError("Either stream_url or base_url is required")
            stream_url = websocket_url(base_url, self._options.stream_path)
        self._stream_url = stream_url

        self._data_subscribers: set[DataCallback] = set()
        self._status_subscribers: set[StatusCallback] = set()
        if on_data is not None:
            self.subscribe(on_data)
        if on_status is not None:
            self.subscribe_status(on_status)

        self._mode = FeedMode.PULL
        self._running = False
        self._failure_count = 0
        self._connected = False
        self._latest: LiveDataBatch | None = None

        self._pull_task: asyncio.Task[None] | None = None
        self._stream_task: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None

    @classmethod
    def from_config(
        cls, config: NodepulseConfig, caller: Caller, **kwargs: Any
    ) -> LiveDataFeed:
        """Build a feed for the server and feed options in config."""
        return cls(caller, base_url=config.base_url, options=config.feed, **kwargs)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def stream_url(self) -> str:
        return self._stream_url

    @property
    def mode(self) -> FeedMode:
        return self._mode

    @property
    def failure_count(self) -> int:
        """Consecutive pull failures since the last success."""
        return self._failure_count

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def connected(self) -> bool:
        """Connectivity last reported to status subscribers."""
        return self._connected

    @property
    def latest(self) -> LiveDataBatch | None:
        return self._latest

    def subscribe(self, callback: DataCallback) -> Callable[[], None]:
        """Register a data callback. Returns a function that removes it."""
        self._data_subscribers.add(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: DataCallback) -> None:
        self._data_subscribers.discard(callback)

    def subscribe_status(self, callback: StatusCallback) -> Callable[[], None]:
        """Register a (connected, mode) callback. Returns a remover."""
        self._status_subscribers.add(callback)
        return lambda: self._status_subscribers.discard(callback)

    async def start(self) -> None:
        """Start, or restart, in pull mode with the first fetch immediate."""
        await self._teardown()
        self._mode = FeedMode.PULL
        self._failure_count = 0
        self._running = True
        _LOGGER.info("Starting live feed in pull mode")
        self._pull_task = asyncio.create_task(self._pull_loop())

    async def stop(self) -> None:
        """Stop polling and close the stream. Safe to call twice."""
        if not self._running:
            return
        self._running = False
        await self._teardown()
        _LOGGER.info("Live feed stopped")

    # -------------------------------------------------------------------------
    # Internal: Pull mode
    # -------------------------------------------------------------------------

    async def _pull_loop(self) -> None:
        """Fetch, then wait pull_interval after each attempt completes."""
        while self._mode is FeedMode.PULL:
            await self._fetch_latest()
            if self._mode is not FeedMode.PULL:
                return
            await asyncio.sleep(self._options.pull_interval)

    async def _fetch_latest(self) -> None:
        try:
            result = await self._caller(self._options.latest_status_method)
            batch = from_rpc_result(result)
        except Exception as err:
            # Every failure kind counts the same toward the threshold.
            self._failure_count += 1
            _LOGGER.warning(
                "Status pull failed (%d/%d): %s",
                self._failure_count,
                self._options.pull_failure_threshold,
                err,
            )
            self._set_status(False)
            if self._failure_count >= self._options.pull_failure_threshold:
                self._switch_to_push()
            return

        self._failure_count = 0
        self._set_status(True)
        self._publish(batch)

    def _switch_to_push(self) -> None:
        _LOGGER.info(
            "Switching to push stream %s after %d failed pulls",
            self._stream_url,
            self._failure_count,
        )
        self._mode = FeedMode.PUSH
        self._pull_task = None
        self._stream_task = asyncio.create_task(self._stream_loop())

    # -------------------------------------------------------------------------
    # Internal: Push mode
    # -------------------------------------------------------------------------

    async def _stream_loop(self) -> None:
        """Keep the push stream open, retrying forever at a fixed delay."""
        while self._mode is FeedMode.PUSH:
            ws = NodepulseWsClient()
            try:
                await ws.connect(self._stream_url, ping_interval=None)
            except NodepulseClientError as err:
                _LOGGER.warning("Stream connection failed: %s", err)
                self._set_status(False)
            else:
                await self._consume_stream(ws)

            _LOGGER.info(
                "Reopening stream in %.1fs", self._options.stream_reconnect_delay
            )
            await asyncio.sleep(self._options.stream_reconnect_delay)

    async def _consume_stream(self, ws: NodepulseWsClient) -> None:
        _LOGGER.info("Stream connected to %s", self._stream_url)
        self._set_status(True)
        self._keepalive_task = asyncio.create_task(self._keepalive_loop(ws))
        try:
            async for msg in ws:
                if msg.type is NodepulseWsMessageType.TEXT:
                    self._handle_stream_message(msg.data or "")
                    continue
                if msg.type is NodepulseWsMessageType.ERROR:
                    _LOGGER.warning("Stream error")
                else:
                    _LOGGER.warning("Stream closed by server")
                break
        except NodepulseClientError as err:
            _LOGGER.warning("Stream read failed: %s", err)
        finally:
            keepalive, self._keepalive_task = self._keepalive_task, None
            if keepalive is not None:
                keepalive.cancel()
                await asyncio.gather(keepalive, return_exceptions=True)
            await ws.close()

        self._set_status(False)

    async def _keepalive_loop(self, ws: NodepulseWsClient) -> None:
        interval = self._options.effective_keepalive_interval
        while True:
            await asyncio.sleep(interval)
            try:
                await ws.send_text(self._options.keepalive_payload)
                _LOGGER.debug("Stream keep-alive sent")
            except NodepulseClientError as err:
                _LOGGER.warning("Failed to send stream keep-alive: %s", err)

    def _handle_stream_message(self, data: str) -> None:
        try:
            batch = from_stream_message(data)
        except NodepulseProtocolError as err:
            _LOGGER.warning("Dropping malformed stream message: %s", err)
            return
        self._publish(batch)

    # -------------------------------------------------------------------------
    # Internal: Helpers
    # -------------------------------------------------------------------------

    async def _teardown(self) -> None:
        current = asyncio.current_task()
        tasks = [self._pull_task, self._stream_task, self._keepalive_task]
        self._pull_task = self._stream_task = self._keepalive_task = None

        waiting = [task for task in tasks if task is not None and task is not current]
        for task in waiting:
            task.cancel()
        if waiting:
            await asyncio.gather(*waiting, return_exceptions=True)

    def _publish(self, batch: LiveDataBatch) -> None:
        self._latest = batch
        for callback in list(self._data_subscribers):
            try:
                callback(batch)
            except Exception as err:
                _LOGGER.exception("Data subscriber error: %s", err)

    def _set_status(self, connected: bool) -> None:
        self._connected = connected
        for callback in list(self._status_subscribers):
            try:
                callback(connected, self._mode)
            except Exception as err:
                _LOGGER.exception("Status subscriber error: %s", err)
