"""Unit tests for the TrueNAS client facade."""

from __future__ import annotations

import pytest

from truenas_client.errors import (
    AuthenticationError,
    RemoteError,
    UnsupportedOperationError,
    is_not_found_error,
)
from truenas_client.sdk import (
    AsyncCaller,
    Caller,
    ClientTransportConfig,
    FileCaller,
    MockClientTransport,
    SubscribeCaller,
    TrueNASClient,
    UnsupportedClient,
    WriteFileParams,
    create_client,
    create_test_client,
)
from truenas_client.sdk.transport import WebSocketClientTransport
from truenas_client.version import Version


class TestConnect:
    """Test connect(), login and version detection."""

    @pytest.mark.asyncio
    async def test_detects_version(self) -> None:
        transport = MockClientTransport()
        transport.set_response("system.version_short", "25.10.1")
        client = TrueNASClient(transport)

        await client.connect()

        assert client.version == Version(25, 10, 1)
        await client.close()
        assert not transport.is_connected

    @pytest.mark.asyncio
    async def test_known_version_skips_detection(self) -> None:
        transport = MockClientTransport()
        client = TrueNASClient(transport, version=Version(24, 10))

        await client.connect()

        assert transport.requests_for("system.version_short") == []
        assert client.version == Version(24, 10)
        await client.close()

    def test_version_before_connect(self) -> None:
        """Reading the version before detection fails fast."""
        client = TrueNASClient(MockClientTransport())

        with pytest.raises(RuntimeError):
            _ = client.version

    @pytest.mark.asyncio
    async def test_login_with_api_key(self) -> None:
        transport = MockClientTransport(ClientTransportConfig(mode="mock", username="admin", api_key="1-abc"))
        transport.set_response("auth.login_ex", {"response_type": "SUCCESS"})
        client = TrueNASClient(transport, version=Version(25, 4))

        await client.connect()

        [login] = transport.requests_for("auth.login_ex")
        assert login.params == [{"mechanism": "API_KEY_PLAIN", "username": "admin", "api_key": "1-abc"}]
        await client.close()

    @pytest.mark.asyncio
    async def test_login_refused(self) -> None:
        transport = MockClientTransport(ClientTransportConfig(mode="mock", api_key="bad"))
        transport.set_response("auth.login_ex", {"response_type": "AUTH_ERR"})
        client = TrueNASClient(transport, version=Version(25, 4))

        with pytest.raises(AuthenticationError, match="AUTH_ERR"):
            await client.connect()
        await client.close()

    @pytest.mark.asyncio
    async def test_no_login_without_api_key(self) -> None:
        async with create_test_client() as client:
            assert client.transport.recorded_requests == []  # type: ignore[attr-defined]

    @pytest.mark.asyncio
    async def test_shared_transport_left_open(self) -> None:
        """A client that does not own its transport leaves it connected."""
        transport = MockClientTransport()
        await transport.connect()

        async with create_test_client(transport):
            pass

        assert transport.is_connected
        await transport.disconnect()


class TestCalls:
    """Test call passthrough."""

    @pytest.mark.asyncio
    async def test_call(self, client: TrueNASClient, transport: MockClientTransport) -> None:
        transport.set_response("app.query", [])

        assert await client.call("app.query", [[["name", "=", "missing"]]]) == []

    @pytest.mark.asyncio
    async def test_call_timeout_passed(self, client: TrueNASClient, transport: MockClientTransport) -> None:
        transport.set_no_reply("app.query")

        with pytest.raises(TimeoutError):
            await client.call("app.query", timeout=0.02)

    def test_satisfies_caller_protocols(self) -> None:
        client = create_test_client()

        assert isinstance(client, Caller)
        assert isinstance(client, AsyncCaller)
        assert isinstance(client, SubscribeCaller)
        assert isinstance(client, FileCaller)

    def test_create_client(self) -> None:
        client = create_client("https://nas.local/api/current", api_key="1-abc", verify_ssl=False)

        assert isinstance(client.transport, WebSocketClientTransport)
        assert client.transport.config.api_key == "1-abc"
        assert client.transport.config.verify_ssl is False


class TestUnsupportedClient:
    """Test the placeholder client."""

    @pytest.mark.asyncio
    async def test_operations_unsupported(self) -> None:
        client = UnsupportedClient()

        with pytest.raises(UnsupportedOperationError):
            await client.call("app.query")
        with pytest.raises(UnsupportedOperationError):
            await client.call_and_wait("app.create")
        with pytest.raises(UnsupportedOperationError):
            await client.subscribe("app.stats")
        with pytest.raises(UnsupportedOperationError):
            await client.write_file("/a", WriteFileParams(content=b""))

    @pytest.mark.asyncio
    async def test_file_operations_unsupported(self) -> None:
        client = UnsupportedClient()
        operations = [
            client.read_file("/a"),
            client.delete_file("/a"),
            client.remove_dir("/d"),
            client.remove_all("/d"),
            client.file_exists("/a"),
            client.chown("/a", 568, 568),
            client.chmod_recursive("/d", 0o755),
            client.mkdir_all("/d/e"),
        ]

        for operation in operations:
            with pytest.raises(UnsupportedOperationError):
                await operation

    @pytest.mark.asyncio
    async def test_connect_and_close_are_noops(self) -> None:
        client = UnsupportedClient(Version(25, 4))

        await client.connect()
        await client.close()

        assert client.version == Version(25, 4)
        assert isinstance(client, FileCaller)


class TestNotFound:
    """Test is_not_found_error()."""

    @pytest.mark.parametrize(
        "message",
        [
            "[ENOENT] App 'plex' does not exist",
            "Dataset tank/missing not found",
            "no such instance: vm-9",
        ],
    )
    def test_not_found_messages(self, message: str) -> None:
        assert is_not_found_error(RemoteError(message))

    def test_errname(self) -> None:
        assert is_not_found_error(RemoteError("gone", data={"errname": "ENOENT"}))

    def test_other_errors(self) -> None:
        assert not is_not_found_error(RemoteError("[EACCES] Permission denied"))
        assert not is_not_found_error(ValueError("does not exist"))
        assert not is_not_found_error(None)
