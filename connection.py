import asyncio
import logging
from enum import Enum

import websockets

logger = logging.getLogger(__name__)

# Fixed server address
SERVER_URL = "ws://localhost:5000"


class ConnectionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    ERRORED = "errored"
    CLOSED = "closed"


class ConnectionNotOpenError(Exception):
    """Raised when a send is attempted while the connection is not open."""

    def __init__(self, state):
        super().__init__(f"Connection is {state.value}, cannot send.")
        self.state = state


class Connection:
    """
    The single WebSocket connection of the upload client.

    Created once and opened once by run(); it is never re-created or
    reconnected. Lifecycle events are delivered to a listener exposing
    on_open(), on_message(message), on_error(error) and on_close().
    """

    def __init__(self, url=SERVER_URL):
        self.url = url
        self.state = ConnectionState.CONNECTING
        self._websocket = None
        self._started = False
        self._task = None
        self._aborted = False
        self._reached = {state: asyncio.Event() for state in ConnectionState}
        self._reached[ConnectionState.CONNECTING].set()

    def is_open(self):
        return self.state is ConnectionState.OPEN

    def has_reached(self, state):
        return self._reached[state].is_set()

    def _set_state(self, state):
        logger.debug(f"Connection state: {self.state.value} -> {state.value}")
        self.state = state
        self._reached[state].set()

    async def wait_for(self, state):
        await self._reached[state].wait()

    async def send(self, data):
        """Send data as a single binary frame."""
        if not self.is_open():
            raise ConnectionNotOpenError(self.state)
        try:
            await self._websocket.send(bytes(data))
        except websockets.exceptions.ConnectionClosed as e:
            raise ConnectionNotOpenError(ConnectionState.CLOSED) from e
        logger.debug(f"Sent binary frame of {len(data)} bytes.")

    async def run(self, listener):
        if self._started:
            raise RuntimeError("Connection already started, it cannot be reopened.")
        self._started = True
        self._task = asyncio.current_task()

        logger.debug(f"Connecting to {self.url}...")
        try:
            async with websockets.connect(self.url, max_size=None, open_timeout=None) as websocket:
                self._websocket = websocket
                self._set_state(ConnectionState.OPEN)
                listener.on_open()

                async for message in websocket:
                    listener.on_message(message)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            # Handshake failure or transport error
            self._set_state(ConnectionState.ERRORED)
            listener.on_error(e)
        except asyncio.CancelledError:
            # close() during the handshake ends the run quietly
            if not self._aborted:
                raise
        finally:
            self._set_state(ConnectionState.CLOSED)
            listener.on_close()

    async def close(self):
        if self._websocket is not None:
            await self._websocket.close()
        elif self.state is ConnectionState.CONNECTING and self._task is not None:
            self._aborted = True
            self._task.cancel()
            await asyncio.wait([self._task])
