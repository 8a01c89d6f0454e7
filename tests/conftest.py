"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncIterator

import pytest_asyncio

from truenas_client.sdk import MockClientTransport, TrueNASClient, create_mock_transport
from truenas_client.version import Version


@pytest_asyncio.fixture
async def transport() -> AsyncIterator[MockClientTransport]:
    """Connected mock transport."""
    transport = create_mock_transport()
    await transport.connect()
    yield transport
    await transport.disconnect()


@pytest_asyncio.fixture
async def client(transport: MockClientTransport) -> AsyncIterator[TrueNASClient]:
    """Client on a connected mock transport, assuming TrueNAS 25.04."""
    client = TrueNASClient(transport, version=Version(25, 4), owns_transport=False)
    yield client
    await client.close()
