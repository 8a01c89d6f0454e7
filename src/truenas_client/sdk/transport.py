"""Client-side transport for the TrueNAS middleware.

One persistent connection carries every call, job update and subscription
event. The transport owns that connection and correlates each request with
its response by id.

Architecture:
- ClientTransport is the PROTOCOL (interface) consumed by the client layer
- BaseClientTransport implements correlation and the single read loop
- Implementations (WebSocket, mock) only move text frames

Routing on the read path:
- Responses resolve the pending request with the same id (never positional)
- Notifications are handed to registered notification handlers in order
- When the connection ends, pending requests fail and disconnect handlers run
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
import os
import ssl
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from ..errors import CallTimeoutError, ConnectionLostError, RemoteError
from ..protocol.messages import (
    CollectionUpdate,
    Method,
    Notification,
    Request,
    Response,
    parse_message,
)
from .subscriptions import OverflowPolicy

logger = logging.getLogger(__name__)

NotificationHandler = Callable[[Notification], Awaitable[None]]
DisconnectHandler = Callable[[BaseException | None], None]


class TransportState(str, Enum):
    """Connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")


@dataclass
class ClientTransportConfig:
    """Configuration for client transports."""

    # Connection mode
    mode: str = "websocket"  # "websocket" | "mock"

    # WebSocket settings
    url: str = "ws://localhost/api/current"
    verify_ssl: bool = True
    ping_interval: float | None = 20.0
    ping_timeout: float | None = 20.0
    max_message_size: int | None = 16 * 1024 * 1024

    # Authentication (optional; performed by the client after connect)
    username: str = "root"
    api_key: str | None = None

    # Default per-call timeout in seconds (None waits indefinitely)
    timeout: float | None = 30.0

    # Subscriptions
    subscription_buffer: int = 100
    overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST
    overflow_timeout: float = 1.0

    @classmethod
    def from_env(cls, **overrides: Any) -> ClientTransportConfig:
        """Build a config from TRUENAS_* environment variables.

        Recognized: TRUENAS_URL, TRUENAS_USERNAME, TRUENAS_API_KEY,
        TRUENAS_TIMEOUT, TRUENAS_VERIFY_SSL. Keyword overrides win.
        """
        values: dict[str, Any] = {}
        if url := os.getenv("TRUENAS_URL"):
            values["url"] = url
        if username := os.getenv("TRUENAS_USERNAME"):
            values["username"] = username
        if api_key := os.getenv("TRUENAS_API_KEY"):
            values["api_key"] = api_key
        if timeout := os.getenv("TRUENAS_TIMEOUT"):
            values["timeout"] = float(timeout)
        values["verify_ssl"] = _env_bool("TRUENAS_VERIFY_SSL", True)
        values.update(overrides)
        return cls(**values)


@runtime_checkable
class ClientTransport(Protocol):
    """Protocol for client transports.

    The transport handles:
    - Wire format (JSON-RPC text frames)
    - Request/response correlation
    - Fan-out of notifications to handlers on a single read path
    """

    config: ClientTransportConfig

    @property
    def state(self) -> TransportState:
        """Current connection state."""
        ...

    @property
    def is_connected(self) -> bool:
        """Check if transport is connected."""
        ...

    async def connect(self) -> None:
        """Establish the connection.

        Raises:
            ConnectionLostError: If connection fails
        """
        ...

    async def disconnect(self) -> None:
        """Close the connection gracefully."""
        ...

    async def request(self, method: str, params: Any = None, timeout: float | None = None) -> Any:
        """Send one request and return its raw result.

        Raises:
            InvalidParamsError: If method/params cannot be encoded
            ConnectionLostError: If not connected or the connection drops
            RemoteError: If the server rejects the call
            CallTimeoutError: If no response arrives within the timeout
        """
        ...

    def add_notification_handler(self, handler: NotificationHandler) -> None:
        """Register a coroutine called for every notification, in arrival order."""
        ...

    def add_disconnect_handler(self, handler: DisconnectHandler) -> None:
        """Register a callback run when the connection ends."""
        ...


@dataclass
class _PendingRequest:
    method: str
    future: asyncio.Future[Any]


class BaseClientTransport(ABC):
    """Base class for client transports with common functionality.

    Provides:
    - State management
    - Correlation of responses to pending requests
    - Background reader task and notification routing
    """

    def __init__(self, config: ClientTransportConfig):
        self.config = config
        self._state = TransportState.DISCONNECTED
        self._pending: dict[str, _PendingRequest] = {}
        self._notification_handlers: list[NotificationHandler] = []
        self._disconnect_handlers: list[DisconnectHandler] = []
        self._reader_task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> TransportState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if transport is connected."""
        return self._state == TransportState.CONNECTED

    @property
    def pending_count(self) -> int:
        """Number of requests awaiting a response."""
        return len(self._pending)

    def add_notification_handler(self, handler: NotificationHandler) -> None:
        self._notification_handlers.append(handler)

    def add_disconnect_handler(self, handler: DisconnectHandler) -> None:
        self._disconnect_handlers.append(handler)

    async def connect(self) -> None:
        """Establish connection."""
        async with self._lock:
            if self._state == TransportState.CONNECTED:
                return

            self._state = TransportState.CONNECTING
            try:
                await self._do_connect()
                self._state = TransportState.CONNECTED

                # Start background reader
                self._reader_task = asyncio.create_task(self._read_loop())

                logger.info(f"{self.__class__.__name__} connected")
            except Exception as e:
                self._state = TransportState.DISCONNECTED
                raise ConnectionLostError(f"Failed to connect: {e}") from e

    async def disconnect(self) -> None:
        """Close the connection."""
        async with self._lock:
            if self._state in (TransportState.DISCONNECTED, TransportState.CLOSED):
                return

            self._state = TransportState.CLOSED

            # Cancel reader task
            if self._reader_task:
                self._reader_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._reader_task
                self._reader_task = None

            self._fail_pending("Transport disconnected")
            self._notify_disconnect(None)

            await self._do_disconnect()
            self._state = TransportState.DISCONNECTED
            logger.info(f"{self.__class__.__name__} disconnected")

    async def request(self, method: str, params: Any = None, timeout: float | None = None) -> Any:
        """Send a request and wait for the correlated response."""
        # Encode first: malformed params are a local error even when offline
        request = Request.create(method, params)

        if not self.is_connected:
            raise ConnectionLostError("Transport not connected")

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request.id] = _PendingRequest(method=request.method, future=future)
        wait_timeout = self.config.timeout if timeout is None else timeout

        try:
            try:
                await self._do_send(request.to_wire())
            except ConnectionLostError:
                raise
            except Exception as e:
                raise ConnectionLostError(f"Failed to send {request.method}: {e}") from e

            logger.debug(f"-> {request.method} (id={request.id})")
            try:
                async with asyncio.timeout(wait_timeout):
                    return await future
            except TimeoutError as e:
                raise CallTimeoutError(request.method, wait_timeout or 0.0) from e
        finally:
            # A late response for this id is discarded by _resolve
            self._pending.pop(request.id, None)

    async def _read_loop(self) -> None:
        """Background task reading frames and routing them."""
        error: BaseException | None = None
        try:
            async for raw in self._receive_messages():
                await self._dispatch(raw)
        except asyncio.CancelledError:
            return
        except Exception as e:
            logger.error(f"Read loop error: {e}")
            error = e

        # Stream ended without disconnect() being called
        if self._state == TransportState.CONNECTED:
            await self._connection_lost(error)

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            message = parse_message(raw)
        except ValueError as e:
            logger.debug(f"Dropping undecodable frame: {e}")
            return

        if isinstance(message, Response):
            self._resolve(message)
            return

        for handler in list(self._notification_handlers):
            try:
                await handler(message)
            except Exception:
                logger.exception(f"Error in notification handler for {message.method}")

    def _resolve(self, response: Response) -> None:
        request_id = str(response.id) if response.id is not None else None
        pending = self._pending.pop(request_id, None) if request_id else None
        if pending is None or pending.future.done():
            logger.debug(f"Discarding response for unknown or abandoned request {response.id}")
            return

        if response.error is not None:
            pending.future.set_exception(RemoteError.from_wire(response.error, pending.method))
        else:
            logger.debug(f"<- {pending.method} (id={request_id})")
            pending.future.set_result(response.result)

    async def _connection_lost(self, error: BaseException | None) -> None:
        self._state = TransportState.DISCONNECTED
        detail = f": {error}" if error else ""
        logger.warning(f"{self.__class__.__name__} connection lost{detail}")

        self._fail_pending(f"Connection lost{detail}")
        self._notify_disconnect(error)

        try:
            await self._do_disconnect()
        except Exception as e:
            logger.debug(f"Error closing dead connection: {e}")

    def _fail_pending(self, message: str) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for entry in pending:
            if not entry.future.done():
                entry.future.set_exception(ConnectionLostError(message, sent=True))

    def _notify_disconnect(self, error: BaseException | None) -> None:
        for handler in list(self._disconnect_handlers):
            try:
                handler(error)
            except Exception:
                logger.exception("Error in disconnect handler")

    # Abstract methods for subclasses
    @abstractmethod
    async def _do_connect(self) -> None:
        """Implementation-specific connection logic."""
        ...

    @abstractmethod
    async def _do_disconnect(self) -> None:
        """Implementation-specific disconnection logic."""
        ...

    @abstractmethod
    async def _do_send(self, payload: str) -> None:
        """Implementation-specific send logic."""
        ...

    @abstractmethod
    def _receive_messages(self) -> AsyncIterator[str | bytes]:
        """Implementation-specific receive logic. Must be an async generator."""
        ...

    async def __aenter__(self) -> BaseClientTransport:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.disconnect()


class WebSocketClientTransport(BaseClientTransport):
    """Transport over a WebSocket to the middleware JSON-RPC endpoint.

    Wire format:
    - One JSON-RPC 2.0 object per text frame, both directions
    - Keepalive uses WebSocket ping/pong frames (``ping_interval``)
    """

    def __init__(self, config: ClientTransportConfig | None = None):
        super().__init__(config or ClientTransportConfig(mode="websocket"))
        self._ws: Any = None  # websockets ClientConnection

    async def _do_connect(self) -> None:
        """Open the WebSocket."""
        try:
            import websockets
        except ImportError as e:
            raise ImportError(
                "websockets package required. Install with: pip install websockets"
            ) from e

        url = self.config.url
        if url.startswith("http://") or url.startswith("https://"):
            url = url.replace("http://", "ws://").replace("https://", "wss://")

        options: dict[str, Any] = {
            "ping_interval": self.config.ping_interval,
            "ping_timeout": self.config.ping_timeout,
            "max_size": self.config.max_message_size,
        }
        if url.startswith("wss://") and not self.config.verify_ssl:
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            options["ssl"] = context

        self._ws = await websockets.connect(url, **options)
        logger.info(f"WebSocket connected to {url}")

    async def _do_disconnect(self) -> None:
        """Close the WebSocket."""
        if self._ws:
            await self._ws.close()
            self._ws = None

    async def _do_send(self, payload: str) -> None:
        if not self._ws:
            raise ConnectionLostError("WebSocket not connected")
        await self._ws.send(payload)

    async def _receive_messages(self) -> AsyncIterator[str | bytes]:
        """Yield frames until the socket closes.

        A clean close ends iteration; an abnormal close raises
        ``websockets.ConnectionClosedError`` into the read loop.
        """
        if not self._ws:
            raise ConnectionLostError("WebSocket not connected")

        async for data in self._ws:
            yield data


MockHandler = Callable[[Request], Any]
_DROP = object()


class MockClientTransport(BaseClientTransport):
    """Mock transport for testing.

    Plays the server side in memory: records requests, answers them with
    canned results/errors or handler output, and lets tests push
    notifications, raw frames, or a connection drop.

    Usage:
        transport = MockClientTransport()
        transport.set_response("app.create", 42)  # job id
        transport.set_error("app.delete", "[ENOENT] app does not exist")

        client = TrueNASClient(transport, version=Version(25, 4))
        await client.connect()
        task = asyncio.create_task(client.call_and_wait("app.create", {...}))
        await transport.wait_for_request("app.create")
        transport.push_job_update(42, "SUCCESS", result={"name": "plex"})

        assert transport.recorded_requests[-1].method == "app.create"
    """

    def __init__(self, config: ClientTransportConfig | None = None) -> None:
        super().__init__(config or ClientTransportConfig(mode="mock"))
        self._handlers: dict[str, MockHandler] = {}
        self._recorded_requests: list[Request] = []
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()

    @property
    def recorded_requests(self) -> list[Request]:
        """Get all requests sent through this transport."""
        return self._recorded_requests.copy()

    def requests_for(self, method: str) -> list[Request]:
        return [r for r in self._recorded_requests if r.method == method]

    def set_handler(self, method: str, handler: MockHandler) -> None:
        """Answer ``method`` with the handler's output.

        The handler receives the Request and returns an iterable of messages
        (Response, Notification, dict or raw str) queued in order. It may be
        a coroutine function.
        """
        self._handlers[method] = handler

    def set_response(self, method: str, result: Any) -> None:
        """Set a canned result for a method."""
        self.set_handler(method, lambda req: [Response.success(req.id, result)])

    def set_error(
        self,
        method: str,
        message: str,
        code: int = -32001,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Set a canned error response for a method."""
        self.set_handler(method, lambda req: [Response.failure(req.id, message, code, data)])

    def set_no_reply(self, method: str) -> None:
        """Never answer ``method`` (for timeout/cancellation tests)."""
        self.set_handler(method, lambda req: [])

    def inject(self, message: Response | Notification | dict[str, Any] | str | bytes) -> None:
        """Queue a server frame for the read loop."""
        self._incoming.put_nowait(_encode(message))

    def push_collection_update(
        self,
        collection: str,
        fields: Any = None,
        msg: str = "changed",
        item_id: Any = None,
    ) -> None:
        self.inject(CollectionUpdate.notification(collection, fields, msg=msg, item_id=item_id))

    def push_job_update(
        self,
        job_id: int,
        state: str,
        *,
        method: str | None = None,
        result: Any = None,
        error: str | None = None,
        progress: dict[str, Any] | None = None,
    ) -> None:
        """Push a ``core.get_jobs`` update as the middleware would."""
        fields: dict[str, Any] = {
            "id": job_id,
            "state": state,
            "result": result,
            "error": error,
        }
        if method:
            fields["method"] = method
        if progress is not None:
            fields["progress"] = progress
        self.push_collection_update("core.get_jobs", fields, item_id=job_id)

    def drop_connection(self) -> None:
        """End the incoming stream as if the server went away."""
        self._incoming.put_nowait(_DROP)

    async def wait_for_request(self, method: str, timeout: float = 1.0) -> Request:
        """Wait until a request for ``method`` has been sent."""
        async with asyncio.timeout(timeout):
            while True:
                for request in self._recorded_requests:
                    if request.method == method:
                        return request
                await asyncio.sleep(0.005)

    def clear(self) -> None:
        """Clear recorded requests and handlers."""
        self._recorded_requests.clear()
        self._handlers.clear()

    async def _do_connect(self) -> None:
        """No-op for mock."""
        pass

    async def _do_disconnect(self) -> None:
        """No-op for mock."""
        pass

    async def _do_send(self, payload: str) -> None:
        """Record request and queue its reply."""
        request = Request.model_validate_json(payload)
        self._recorded_requests.append(request)

        handler = self._handlers.get(request.method, _default_reply)
        replies = handler(request)
        if inspect.isawaitable(replies):
            replies = await replies
        for message in replies or ():
            self._incoming.put_nowait(_encode(message))

    async def _receive_messages(self) -> AsyncIterator[str | bytes]:
        """Yield queued frames until a drop is requested."""
        while True:
            item = await self._incoming.get()
            if item is _DROP:
                break
            yield item


def _default_reply(request: Request) -> Iterable[Response]:
    if request.method == Method.CORE_SUBSCRIBE.value:
        return [Response.success(request.id, f"sub_{uuid.uuid4().hex[:12]}")]
    if request.method == Method.CORE_PING.value:
        return [Response.success(request.id, "pong")]
    return [Response.success(request.id, None)]


def _encode(message: Any) -> str | bytes:
    if isinstance(message, (str, bytes)):
        return message
    if isinstance(message, (Response, Notification)):
        return message.to_wire()
    return json.dumps(message)


# Factory functions


def create_websocket_transport(
    url: str = "ws://localhost/api/current",
    api_key: str | None = None,
    username: str = "root",
    timeout: float | None = 30.0,
    verify_ssl: bool = True,
) -> WebSocketClientTransport:
    """Create a WebSocket transport for the middleware API.

    Args:
        url: Endpoint URL (http(s):// is converted to ws(s)://)
        api_key: Optional API key used by the client to log in
        username: User the API key belongs to
        timeout: Default per-call timeout
        verify_ssl: Verify TLS certificates for wss://

    Returns:
        WebSocketClientTransport for full-duplex communication
    """
    config = ClientTransportConfig(
        mode="websocket",
        url=url,
        api_key=api_key,
        username=username,
        timeout=timeout,
        verify_ssl=verify_ssl,
    )
    return WebSocketClientTransport(config)


def create_mock_transport(config: ClientTransportConfig | None = None) -> MockClientTransport:
    """Create a mock transport for testing.

    Returns:
        MockClientTransport for testing
    """
    return MockClientTransport(config)
