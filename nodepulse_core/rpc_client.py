"""Dual-transport JSON-RPC call client.

RpcClient prefers a persistent WebSocket and falls back to a single HTTP
POST when the socket attempt fails. It handles:
- Socket lifecycle through ConnectionStateMachine
- Request id generation and response correlation
- Per-call timeouts
- Heartbeat notifications
- Bounded fixed-delay reconnection
- HTTP batch calls

Everything runs on one event loop; the correlation table is only touched
from loop callbacks and coroutines, so it needs no locking.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, fields
from typing import Any

import aiohttp

from .config import DEFAULT_RPC_PATH, NodepulseConfig, RpcClientOptions
from .errors import (
    NodepulseClientError,
    NodepulseConnectionError,
    NodepulseProtocolError,
    NodepulseTimeout,
)
from .protocol import (
    RequestId,
    RpcResponse,
    build_request,
    is_notification,
    is_response,
    parse_response,
)
from .state import ConnectionState, ConnectionStateMachine, StateListener
from .transport.http import NodepulseHttpClient
from .transport.ws import http_url, websocket_url
from .transport.ws_client import NodepulseWsClient, NodepulseWsMessageType

_LOGGER = logging.getLogger(__name__)

HEARTBEAT_METHOD = "rpc.ping"


@dataclass(slots=True)
class PendingRequest:
    """Correlated socket call awaiting its response."""

    id: RequestId
    method: str
    future: asyncio.Future[Any]
    timeout_handle: asyncio.TimerHandle | None = None

    def resolve(self, result: Any) -> None:
        self.cancel_timeout()
        if not self.future.done():
            self.future.set_result(result)

    def reject(self, error: BaseException) -> None:
        self.cancel_timeout()
        if not self.future.done():
            self.future.set_exception(error)

    def cancel_timeout(self) -> None:
        if self.timeout_handle is not None:
            self.timeout_handle.cancel()
            self.timeout_handle = None


@dataclass
class RpcEventListeners:
    """Optional callbacks surfaced to external collaborators."""

    on_connect: Callable[[], None] | None = None
    on_disconnect: Callable[[], None] | None = None
    on_error: Callable[[str], None] | None = None
    on_reconnecting: Callable[[int], None] | None = None
    on_message: Callable[[Any], None] | None = None


@dataclass(frozen=True)
class BatchRequest:
    """One entry of a batch call."""

    method: str
    params: Any = None
    notification: bool = False

    @classmethod
    def coerce(cls, value: BatchRequest | Mapping[str, Any]) -> BatchRequest:
        if isinstance(value, BatchRequest):
            return value
        return cls(
            method=value["method"],
            params=value.get("params"),
            notification=bool(value.get("notification", False)),
        )


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one non-notification batch entry."""

    id: RequestId
    result: Any = None
    error: NodepulseClientError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return the result or raise the entry's error."""
        if self.error is not None:
            raise self.error
        return self.result


class RpcClient:
    """JSON-RPC client preferring a WebSocket with HTTP fallback.

    Usage:
        async with RpcClient("http://monitor.local:25774") as client:
            nodes = await client.call("common:getNodes")
            results = await client.batch_call(
                [{"method": "a"}, {"method": "b", "notification": True}]
            )
    """

    def __init__(
        self,
        base_url: str,
        *,
        path: str = DEFAULT_RPC_PATH,
        options: RpcClientOptions | None = None,
        session: aiohttp.ClientSession | None = None,
        listeners: RpcEventListeners | None = None,
    ) -> None:
        """Initialize client.

        Args:
            base_url: Server origin, e.g. "https://monitor.example.com"
            path: Endpoint path shared by the socket and HTTP transports
            options: Client options (defaults when omitted)
            session: aiohttp session for HTTP calls; created on demand and
                owned by the client when omitted
            listeners: Initial event listeners
        """
        self._options = options or RpcClientOptions()
        self._ws_url = websocket_url(base_url, path)
        self._http_url = http_url(base_url, path)

        self._session = session
        self._owns_session = session is None
        self._http: NodepulseHttpClient | None = None

        # Socket state
        self._state = ConnectionStateMachine()
        self._ws: NodepulseWsClient | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._auto_reconnect = self._options.auto_reconnect
        self._reconnect_attempts = 0
        # Bumped by disconnect() so in-flight connects know they are stale.
        self._generation = 0
        # Cleared while a socket open is in flight.
        self._open_idle = asyncio.Event()
        self._open_idle.set()

        # Correlation
        self._request_id = 0
        self._pending: dict[RequestId, PendingRequest] = {}

        self._listeners = RpcEventListeners()
        if listeners is not None:
            self.set_event_listeners(listeners)

    @classmethod
    def from_config(cls, config: NodepulseConfig, **kwargs: Any) -> RpcClient:
        """Build a client for the endpoint and options in config."""
        return cls(config.base_url, path=config.rpc_path, options=config.rpc, **kwargs)

    async def __aenter__(self) -> RpcClient:
        if self._options.auto_connect:
            await self.warm_up()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Public API: State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state.state

    @property
    def is_connected(self) -> bool:
        return self._state.state is ConnectionState.CONNECTED

    @property
    def options(self) -> RpcClientOptions:
        return self._options

    @property
    def pending_count(self) -> int:
        """Number of socket calls awaiting a response."""
        return len(self._pending)

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    def set_event_listeners(self, listeners: RpcEventListeners) -> None:
        """Merge listeners; callbacks left as None keep their current value."""
        for item in fields(listeners):
            callback = getattr(listeners, item.name)
            if callback is not None:
                setattr(self._listeners, item.name, callback)

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        """Register a (old, new) state listener. Returns a remover."""
        return self._state.add_listener(listener)

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the socket.

        No-op while connected or connecting. An explicit connect re-arms
        auto-reconnect after a previous disconnect().

        Raises:
            NodepulseClientError: If the socket cannot be opened.
        """
        self._auto_reconnect = self._options.auto_reconnect
        if self._state.state is ConnectionState.RECONNECTING:
            self._cancel_reconnect()
            self._reconnect_attempts = 0
        await self._open()

    async def warm_up(self) -> bool:
        """Try to open the socket, logging instead of raising on failure."""
        if self._state.state is not ConnectionState.DISCONNECTED:
            return self.is_connected
        try:
            await self._open()
        except NodepulseClientError as err:
            _LOGGER.warning("Automatic connect failed: %s", err)
            return False
        return True

    async def disconnect(self) -> None:
        """Close the socket and settle every outstanding call.

        Disables auto-reconnect, cancels heartbeat and reconnect timers and
        rejects pending calls with "Connection closed". Safe to call twice.
        """
        self._auto_reconnect = False
        self._generation += 1
        self._reconnect_attempts = 0

        reconnect_task = self._reconnect_task
        self._cancel_reconnect()
        heartbeat_task = self._stop_heartbeat()
        reader_task, self._reader_task = self._reader_task, None
        ws, self._ws = self._ws, None

        if reader_task is not None and reader_task is not asyncio.current_task():
            reader_task.cancel()
        await _wait_cancelled(reconnect_task, heartbeat_task, reader_task)

        if ws is not None:
            try:
                await asyncio.wait_for(ws.close(), timeout=2.0)
            except TimeoutError:
                _LOGGER.warning("WebSocket close timed out")

        was_connected = self._state.state is ConnectionState.CONNECTED
        if self._state.state is not ConnectionState.DISCONNECTED:
            self._state.transition(ConnectionState.DISCONNECTED)
        self._reject_pending(NodepulseConnectionError("Connection closed"))

        # A close handler interrupted by this call leaves the state CONNECTED
        # with the socket already detached; it reports nothing itself.
        if was_connected:
            _LOGGER.info("Disconnected from %s", self._ws_url)
            self._emit(self._listeners.on_disconnect)

    async def close(self) -> None:
        """Disconnect and release the HTTP session if the client created it."""
        await self.disconnect()
        session, self._http = self._session, None
        if self._owns_session and session is not None:
            self._session = None
            await session.close()

    # -------------------------------------------------------------------------
    # Public API: Calls
    # -------------------------------------------------------------------------

    async def call(
        self,
        method: str,
        params: Any = None,
        *,
        timeout: float | None = None,
        notification: bool = False,
    ) -> Any:
        """Call method over the socket, falling back to HTTP once.

        The two transports never race: HTTP is only tried after the socket
        attempt has failed, and only when HTTP fallback is enabled.
        """
        try:
            await self._ensure_socket()
            return await self.call_via_socket(
                method, params, timeout=timeout, notification=notification
            )
        except NodepulseClientError as err:
            if not self._options.enable_http_fallback:
                raise
            _LOGGER.warning(
                "Socket call %s failed, falling back to HTTP: %s", method, err
            )

        return await self.call_via_http(
            method, params, timeout=timeout, notification=notification
        )

    async def call_via_socket(
        self,
        method: str,
        params: Any = None,
        *,
        timeout: float | None = None,
        notification: bool = False,
    ) -> Any:
        """Call method over the socket only.

        Raises:
            NodepulseConnectionError: Socket not connected, send failed or
                connection closed before the response arrived.
            NodepulseTimeout: No response within the timeout.
            NodepulseRpcError: Server returned an error object.
        """
        ws = self._ws
        if ws is None or self._state.state is not ConnectionState.CONNECTED:
            raise NodepulseConnectionError("WebSocket is not connected")

        if notification:
            await ws.send_json(build_request(method, params))
            return None

        request_id = self._next_request_id()
        loop = asyncio.get_running_loop()
        pending = PendingRequest(
            id=request_id, method=method, future=loop.create_future()
        )
        pending.timeout_handle = loop.call_later(
            self._timeout(timeout), self._expire_request, request_id
        )
        self._pending[request_id] = pending

        try:
            await ws.send_json(build_request(method, params, request_id))
            return await pending.future
        finally:
            # Already gone unless the send failed or the caller was cancelled.
            stale = self._pending.pop(request_id, None)
            if stale is not None:
                stale.cancel_timeout()

    async def call_via_http(
        self,
        method: str,
        params: Any = None,
        *,
        timeout: float | None = None,
        notification: bool = False,
    ) -> Any:
        """Call method with one HTTP request/response cycle.

        Raises:
            NodepulseResponseError: Non-2xx status.
            NodepulseProtocolError: Malformed response body.
            NodepulseRpcError: Server returned an error object.
        """
        request_id = None if notification else self._next_request_id()
        body = await self._http_client().post_json(
            build_request(method, params, request_id),
            timeout=self._timeout(timeout),
            expect_body=not notification,
        )
        if notification:
            return None
        return parse_response(body).unwrap()

    async def batch_call(
        self, requests: Sequence[BatchRequest | Mapping[str, Any]]
    ) -> list[BatchResult]:
        """Send requests as one HTTP batch.

        Returns:
            One BatchResult per non-notification request, in submission
            order. A failed entry carries its error instead of raising, so
            one bad entry does not invalidate the others.

        Raises:
            NodepulseClientError: Transport failure or a body that is not a
                batch response.
        """
        items = [BatchRequest.coerce(request) for request in requests]
        if not items:
            return []

        envelopes: list[dict[str, Any]] = []
        request_ids: list[RequestId] = []
        for item in items:
            request_id = None if item.notification else self._next_request_id()
            envelope = build_request(item.method, item.params, request_id)
            envelopes.append(envelope)
            if not is_notification(envelope):
                request_ids.append(envelope["id"])

        body = await self._http_client().post_json(
            envelopes,
            timeout=self._options.request_timeout,
            expect_body=bool(request_ids),
        )
        if not request_ids:
            return []

        if isinstance(body, Mapping):
            # Whole batch rejected with a single error object.
            parse_response(body).unwrap()
            raise NodepulseProtocolError("Batch response must be an array")
        if not isinstance(body, list):
            raise NodepulseProtocolError("Batch response must be an array")

        responses: dict[RequestId, RpcResponse] = {}
        for entry in body:
            try:
                response = parse_response(entry)
            except NodepulseProtocolError as err:
                _LOGGER.warning("Skipping malformed batch entry: %s", err)
                continue
            if response.id is not None:
                responses[response.id] = response

        results: list[BatchResult] = []
        for request_id in request_ids:
            response = responses.get(request_id)
            if response is None:
                results.append(
                    BatchResult(
                        id=request_id,
                        error=NodepulseProtocolError(
                            f"No response for request id {request_id}"
                        ),
                    )
                )
            else:
                results.append(
                    BatchResult(
                        id=request_id, result=response.result, error=response.error
                    )
                )
        return results

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    async def _ensure_socket(self) -> None:
        if self._state.state is ConnectionState.CONNECTED:
            return
        if not self._options.auto_connect:
            raise NodepulseConnectionError("WebSocket is not connected")
        await self._open()

    async def _open(self) -> None:
        """Open the socket unless already connected or connecting."""
        if self._state.state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            return

        generation = self._generation
        self._state.transition(ConnectionState.CONNECTING)
        self._open_idle.clear()
        _LOGGER.info("Connecting to %s", self._ws_url)

        ws = NodepulseWsClient()
        try:
            await ws.connect(
                self._ws_url,
                ping_interval=None,
                timeout=self._options.connect_timeout,
            )
        except NodepulseClientError as err:
            self._open_idle.set()
            if generation != self._generation:
                raise NodepulseConnectionError("Connection closed") from err
            _LOGGER.warning("Connection to %s failed: %s", self._ws_url, err)
            self._state.transition(ConnectionState.ERROR)
            self._emit(self._listeners.on_error, str(err))
            raise
        except asyncio.CancelledError:
            self._open_idle.set()
            if self._state.state is ConnectionState.CONNECTING:
                self._state.transition(ConnectionState.DISCONNECTED)
            raise

        if generation != self._generation:
            self._open_idle.set()
            await ws.close()
            raise NodepulseConnectionError("Connection closed")

        self._open_idle.set()
        self._ws = ws
        self._state.transition(ConnectionState.CONNECTED)
        self._reconnect_attempts = 0
        self._reader_task = asyncio.create_task(self._read_loop(ws))
        self._start_heartbeat()

        _LOGGER.info("Connected to %s", self._ws_url)
        self._emit(self._listeners.on_connect)

    async def _handle_socket_closed(self, ws: NodepulseWsClient) -> None:
        """React to a close the client did not ask for."""
        generation = self._generation
        self._ws = None
        self._reader_task = None
        await _wait_cancelled(self._stop_heartbeat())

        try:
            await asyncio.wait_for(ws.close(), timeout=2.0)
        except TimeoutError:
            _LOGGER.warning("WebSocket close timed out")

        if generation != self._generation:
            # disconnect() ran meanwhile and already settled everything.
            return
        self._state.transition(ConnectionState.DISCONNECTED)
        self._reject_pending(NodepulseConnectionError("Connection closed"))
        self._emit(self._listeners.on_disconnect)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> bool:
        """Schedule a fixed-delay reconnect if attempts remain."""
        if not self._auto_reconnect or self._reconnect_task is not None:
            return False

        max_attempts = self._options.max_reconnect_attempts
        if self._reconnect_attempts >= max_attempts:
            _LOGGER.error("Max reconnect attempts (%d) reached", max_attempts)
            if self._state.state is not ConnectionState.DISCONNECTED:
                self._state.transition(ConnectionState.DISCONNECTED)
            return False

        self._reconnect_attempts += 1
        attempt = self._reconnect_attempts
        self._state.transition(ConnectionState.RECONNECTING)
        _LOGGER.warning(
            "Reconnecting in %.1fs (attempt %d/%d)",
            self._options.reconnect_interval,
            attempt,
            max_attempts,
        )
        self._emit(self._listeners.on_reconnecting, attempt)

        self._reconnect_task = asyncio.create_task(
            self._reconnect_after_delay(self._options.reconnect_interval)
        )
        return True

    async def _reconnect_after_delay(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self._open()
            # A call() may have started its own connect while we slept.
            await self._open_idle.wait()
        except NodepulseClientError as err:
            _LOGGER.debug("Reconnect attempt failed: %s", err)

        self._reconnect_task = None
        if self._state.state is not ConnectionState.CONNECTED:
            self._schedule_reconnect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

    # -------------------------------------------------------------------------
    # Internal: Message Listener
    # -------------------------------------------------------------------------

    async def _read_loop(self, ws: NodepulseWsClient) -> None:
        """Read socket frames until the socket closes."""
        try:
            async for msg in ws:
                if msg.type is NodepulseWsMessageType.TEXT:
                    self._handle_text(msg.data or "")
                    continue
                if msg.type is NodepulseWsMessageType.ERROR:
                    _LOGGER.error("WebSocket error")
                    self._emit(self._listeners.on_error, "WebSocket connection error")
                else:
                    _LOGGER.warning("WebSocket closed by server")
                break
        except NodepulseClientError as err:
            _LOGGER.warning("Socket read failed: %s", err)

        if self._ws is ws:
            await self._handle_socket_closed(ws)

    def _handle_text(self, data: str) -> None:
        try:
            payload = json.loads(data)
        except ValueError as err:
            _LOGGER.warning("Invalid message: %s", err)
            return

        if isinstance(payload, list):
            for item in payload:
                self._dispatch_response(item)
        else:
            self._dispatch_response(payload)

        self._emit(self._listeners.on_message, payload)

    def _dispatch_response(self, payload: Any) -> None:
        """Settle the PendingRequest matching the response id, if any."""
        if not is_response(payload):
            return
        response_id = payload.get("id")
        if response_id is None:
            return

        pending = self._pending.pop(response_id, None)
        if pending is None:
            _LOGGER.debug("Dropping response for unknown id %s", response_id)
            return

        try:
            response = parse_response(payload)
        except NodepulseProtocolError as err:
            pending.reject(err)
            return

        if response.error is not None:
            pending.reject(response.error)
        else:
            pending.resolve(response.result)

    def _expire_request(self, request_id: RequestId) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        _LOGGER.warning("Request timed out: %s (id=%s)", pending.method, request_id)
        pending.reject(NodepulseTimeout(f"Request timed out: {pending.method}"))

    def _reject_pending(self, error: NodepulseClientError) -> None:
        pending, self._pending = self._pending, {}
        for request in pending.values():
            request.reject(error)
        if pending:
            _LOGGER.debug("Rejected %d pending requests: %s", len(pending), error)

    # -------------------------------------------------------------------------
    # Internal: Heartbeat
    # -------------------------------------------------------------------------

    def _start_heartbeat(self) -> None:
        if not self._options.enable_heartbeat:
            return
        self._stop_heartbeat()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    def _stop_heartbeat(self) -> asyncio.Task[None] | None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None:
            task.cancel()
        return task

    async def _heartbeat_loop(self) -> None:
        """Send rpc.ping notifications; the reader owns connectivity."""
        while True:
            await asyncio.sleep(self._options.heartbeat_interval)
            ws = self._ws
            if ws is None or self._state.state is not ConnectionState.CONNECTED:
                continue
            try:
                await ws.send_json(
                    build_request(
                        HEARTBEAT_METHOD, {"timestamp": int(time.time() * 1000)}
                    )
                )
                _LOGGER.debug("Heartbeat sent")
            except NodepulseClientError as err:
                _LOGGER.warning("Failed to send heartbeat: %s", err)

    # -------------------------------------------------------------------------
    # Internal: Helpers
    # -------------------------------------------------------------------------

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    def _timeout(self, timeout: float | None) -> float:
        return self._options.request_timeout if timeout is None else timeout

    def _http_client(self) -> NodepulseHttpClient:
        if self._http is None:
            if self._session is None:
                self._session = aiohttp.ClientSession()
                self._owns_session = True
            self._http = NodepulseHttpClient(
                self._session, self._http_url, headers=self._options.headers
            )
        return self._http

    @staticmethod
    def _emit(callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as err:
            _LOGGER.exception("Listener error: %s", err)


async def _wait_cancelled(*tasks: asyncio.Task[Any] | None) -> None:
    """Await cancelled tasks so none is left pending."""
    current = asyncio.current_task()
    waiting = [task for task in tasks if task is not None and task is not current]
    if waiting:
        await asyncio.gather(*waiting, return_exceptions=True)
