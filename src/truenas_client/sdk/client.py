"""TrueNAS client - the facade wrappers build on.

Ties one transport to its subscription registry and job tracker, so every
call, job wait and event stream shares the same connection.

Usage:
    transport = create_websocket_transport("wss://nas/api/current", api_key="...")
    async with TrueNASClient(transport) as client:
        apps = await client.call("app.query")
        await client.call_and_wait("app.start", "plex")

        async with await client.subscribe("app.stats", decode=decode_model_list(AppStats)) as sub:
            async for stats in sub:
                ...
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, TypeVar, runtime_checkable

from ..errors import AuthenticationError, UnsupportedOperationError
from ..protocol.messages import Method
from ..version import Version
from .files import WriteFileParams, chmod_recursive, chown, file_exists, write_file
from .jobs import JobTracker
from .subscriptions import Decoder, Subscription, SubscriptionRegistry
from .transport import (
    ClientTransport,
    MockClientTransport,
    create_mock_transport,
    create_websocket_transport,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class Caller(Protocol):
    """Anything that can make a plain call."""

    @property
    def version(self) -> Version: ...

    async def call(self, method: str, params: Any = None, *, timeout: float | None = None) -> Any: ...


@runtime_checkable
class AsyncCaller(Caller, Protocol):
    """A caller that can also wait for jobs."""

    async def call_and_wait(self, method: str, params: Any = None, *, timeout: float | None = None) -> Any: ...


@runtime_checkable
class SubscribeCaller(AsyncCaller, Protocol):
    """A caller that can also open event streams."""

    async def subscribe(
        self,
        collection: str,
        params: Any = None,
        *,
        decode: Decoder[T] | None = None,
    ) -> Subscription[T]: ...


@runtime_checkable
class FileCaller(AsyncCaller, Protocol):
    """A caller that can also manage files on the server."""

    async def write_file(self, path: str, params: WriteFileParams) -> None: ...

    async def read_file(self, path: str) -> bytes: ...

    async def delete_file(self, path: str) -> None: ...

    async def remove_dir(self, path: str) -> None: ...

    async def remove_all(self, path: str) -> None: ...

    async def file_exists(self, path: str) -> bool: ...

    async def chown(self, path: str, uid: int, gid: int) -> None: ...

    async def chmod_recursive(self, path: str, mode: int) -> None: ...

    async def mkdir_all(self, path: str, mode: int = 0o755) -> None: ...


class TrueNASClient:
    """Client for the TrueNAS middleware over one shared connection.

    Args:
        transport: Connection to the middleware
        version: Known server version; detected on connect() when omitted
        owns_transport: Whether close() also disconnects the transport
    """

    def __init__(
        self,
        transport: ClientTransport,
        version: Version | None = None,
        *,
        owns_transport: bool = True,
    ):
        self._transport = transport
        self._version = version
        self._owns_transport = owns_transport
        self.subscriptions = SubscriptionRegistry(transport)
        self.jobs = JobTracker(transport, self.subscriptions)

    @property
    def transport(self) -> ClientTransport:
        """Access the underlying transport."""
        return self._transport

    @property
    def version(self) -> Version:
        """Server version.

        Raises:
            RuntimeError: If no version was given and connect() has not run
        """
        if self._version is None:
            raise RuntimeError("TrueNAS version unknown: call connect() first")
        return self._version

    @property
    def is_connected(self) -> bool:
        """Check if transport is connected."""
        return self._transport.is_connected

    async def connect(self) -> None:
        """Connect, log in if an API key is configured, and detect the version.

        Raises:
            ConnectionLostError: If the connection cannot be established
            AuthenticationError: If the server refuses the API key
        """
        await self._transport.connect()

        config = self._transport.config
        if config.api_key:
            await self._login(config.username, config.api_key)

        if self._version is None:
            raw = await self.call(Method.SYSTEM_VERSION_SHORT.value)
            self._version = Version.parse(str(raw))
            logger.info(f"Connected to TrueNAS {self._version}")

    async def _login(self, username: str, api_key: str) -> None:
        result = await self.call(
            Method.AUTH_LOGIN_EX.value,
            {"mechanism": "API_KEY_PLAIN", "username": username, "api_key": api_key},
        )
        response_type = result.get("response_type") if isinstance(result, dict) else None
        if response_type != "SUCCESS":
            raise AuthenticationError(f"Login as {username!r} failed: {response_type or result}")
        logger.debug(f"Authenticated as {username}")

    async def close(self) -> None:
        """End every subscription and, if owned, close the connection."""
        await self.subscriptions.close_all()
        if self._owns_transport:
            await self._transport.disconnect()

    disconnect = close

    async def call(self, method: str, params: Any = None, *, timeout: float | None = None) -> Any:
        """Call a method and return its raw result.

        Query methods report "not found" as an empty list, returned as-is.
        """
        return await self._transport.request(method, params, timeout=timeout)

    async def call_and_wait(self, method: str, params: Any = None, *, timeout: float | None = None) -> Any:
        """Call a job-producing method and wait for the job's result."""
        return await self.jobs.call_and_wait(method, params, timeout=timeout)

    async def subscribe(
        self,
        collection: str,
        params: Any = None,
        *,
        decode: Decoder[T] | None = None,
    ) -> Subscription[T]:
        """Open a live event stream for a collection."""
        return await self.subscriptions.subscribe(collection, params, decode=decode)

    async def write_file(self, path: str, params: WriteFileParams) -> None:
        """Write a whole file on the server."""
        await write_file(self, path, params)

    async def file_exists(self, path: str) -> bool:
        return await file_exists(self, path)

    async def chown(self, path: str, uid: int, gid: int) -> None:
        await chown(self, path, uid, gid)

    async def chmod_recursive(self, path: str, mode: int) -> None:
        await chmod_recursive(self, path, mode)

    # No API method exists for these; they need shell access to the host.

    async def read_file(self, path: str) -> bytes:
        raise UnsupportedOperationError(f"Reading {path} needs shell access")

    async def delete_file(self, path: str) -> None:
        raise UnsupportedOperationError(f"Deleting {path} needs shell access")

    async def remove_dir(self, path: str) -> None:
        raise UnsupportedOperationError(f"Removing {path} needs shell access")

    async def remove_all(self, path: str) -> None:
        raise UnsupportedOperationError(f"Removing {path} needs shell access")

    async def mkdir_all(self, path: str, mode: int = 0o755) -> None:
        raise UnsupportedOperationError(f"Creating {path} needs shell access")

    async def __aenter__(self) -> TrueNASClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


class UnsupportedClient:
    """Placeholder client whose every operation is unsupported.

    Used where an operation needs a capability no configured client offers.
    """

    def __init__(self, version: Version | None = None):
        self._version = version or Version(0, 0)

    @property
    def version(self) -> Version:
        return self._version

    @property
    def is_connected(self) -> bool:
        return False

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def call(self, method: str, params: Any = None, *, timeout: float | None = None) -> Any:
        raise UnsupportedOperationError(f"{method} is not supported by this client")

    async def call_and_wait(self, method: str, params: Any = None, *, timeout: float | None = None) -> Any:
        raise UnsupportedOperationError(f"{method} is not supported by this client")

    async def subscribe(
        self,
        collection: str,
        params: Any = None,
        *,
        decode: Decoder[T] | None = None,
    ) -> Subscription[T]:
        raise UnsupportedOperationError(f"Subscribing to {collection} is not supported by this client")

    async def write_file(self, path: str, params: WriteFileParams) -> None:
        raise UnsupportedOperationError("Writing files is not supported by this client")

    async def read_file(self, path: str) -> bytes:
        raise UnsupportedOperationError("Reading files is not supported by this client")

    async def delete_file(self, path: str) -> None:
        raise UnsupportedOperationError("Deleting files is not supported by this client")

    async def remove_dir(self, path: str) -> None:
        raise UnsupportedOperationError("Removing directories is not supported by this client")

    async def remove_all(self, path: str) -> None:
        raise UnsupportedOperationError("Removing directories is not supported by this client")

    async def file_exists(self, path: str) -> bool:
        raise UnsupportedOperationError("Checking files is not supported by this client")

    async def chown(self, path: str, uid: int, gid: int) -> None:
        raise UnsupportedOperationError("Changing ownership is not supported by this client")

    async def chmod_recursive(self, path: str, mode: int) -> None:
        raise UnsupportedOperationError("Changing permissions is not supported by this client")

    async def mkdir_all(self, path: str, mode: int = 0o755) -> None:
        raise UnsupportedOperationError("Creating directories is not supported by this client")


# Factory functions


def create_client(
    url: str = "ws://localhost/api/current",
    api_key: str | None = None,
    username: str = "root",
    timeout: float | None = 30.0,
    verify_ssl: bool = True,
    version: Version | None = None,
) -> TrueNASClient:
    """Create a client over a WebSocket connection.

    Args:
        url: Endpoint URL
        api_key: API key for ``auth.login_ex`` (no login when None)
        username: User the API key belongs to
        timeout: Default per-call timeout
        verify_ssl: Verify TLS certificates for wss://
        version: Known server version (detected on connect when None)

    Returns:
        TrueNASClient with WebSocketClientTransport
    """
    transport = create_websocket_transport(
        url=url,
        api_key=api_key,
        username=username,
        timeout=timeout,
        verify_ssl=verify_ssl,
    )
    return TrueNASClient(transport, version=version)


def create_test_client(
    transport: MockClientTransport | None = None,
    version: Version | None = Version(25, 4),
) -> TrueNASClient:
    """Create a client for testing.

    Args:
        transport: Pre-configured mock transport (creates new if None)
        version: Server version to assume (None to exercise detection)

    Returns:
        TrueNASClient with MockClientTransport
    """
    return TrueNASClient(
        transport or create_mock_transport(),
        version=version,
        owns_transport=transport is None,
    )
