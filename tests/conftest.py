import asyncio
import socket
from types import SimpleNamespace

import pytest
import pytest_asyncio
import websockets


async def _serve(handler):
    server = await websockets.serve(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, f"ws://127.0.0.1:{port}"


@pytest_asyncio.fixture
async def ack_server():
    """Records every message and answers each one with "ack"."""
    received = []

    async def handler(websocket):
        async for message in websocket:
            received.append(message)
            await websocket.send("ack")

    server, url = await _serve(handler)
    yield SimpleNamespace(url=url, received=received)
    server.close()
    await server.wait_closed()


@pytest_asyncio.fixture
async def closing_server():
    """Accepts the handshake then closes the connection right away."""

    async def handler(websocket):
        await websocket.close()

    server, url = await _serve(handler)
    yield SimpleNamespace(url=url)
    server.close()
    await server.wait_closed()


@pytest.fixture
def unused_url():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return f"ws://127.0.0.1:{port}"


@pytest.fixture
def wait_until():
    async def wait(predicate, timeout=2.0):
        async def poll():
            while not predicate():
                await asyncio.sleep(0.01)

        await asyncio.wait_for(poll(), timeout)

    return wait


@pytest_asyncio.fixture
async def aborting_server():
    """Completes the handshake then drops the TCP connection without a close frame."""

    async def handler(websocket):
        websocket.transport.abort()

    server, url = await _serve(handler)
    yield SimpleNamespace(url=url)
    server.close()
    await server.wait_closed()


@pytest_asyncio.fixture
async def silent_server():
    """Accepts TCP connections but never answers the opening handshake."""

    async def handler(reader, writer):
        await reader.read()
        writer.close()

    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    yield SimpleNamespace(url=f"ws://127.0.0.1:{port}")
    server.close()
    await server.wait_closed()
