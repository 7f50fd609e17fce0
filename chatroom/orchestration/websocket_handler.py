"""
WebSocket Handler for the session-gated stream.
Binds each connection to a logged-in session and relays messages both ways.
"""

import asyncio
import logging
import uuid
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from chatroom.core.config import ConfigLoader, RelayConfig
from chatroom.core.exceptions import MalformedHandshake, RelayError, TransportError
from chatroom.orchestration.channel import Channel
from chatroom.orchestration.session_registry import SessionRegistry
from chatroom.schemas import UserWithTokenRequest, WebsocketWelcomeResponse

logger = logging.getLogger(__name__)

Frame = Union[str, bytes]


class RelayState(str, Enum):
    HANDSHAKING = "handshaking"
    BOUND = "bound"
    DRAINING = "draining"
    CLOSED = "closed"


class RelayConnection:
    """One accepted stream connection and its binding."""

    def __init__(self, websocket: WebSocket, config: RelayConfig):
        self.id = str(uuid.uuid4())
        self.websocket = websocket
        self.config = config
        self.state = RelayState.HANDSHAKING
        self.username: Optional[str] = None
        self.channel: Optional[Channel] = None
        # Replies use the frame kind of the handshake
        self.binary = False

    def transition(self, state: RelayState):
        logger.debug(f"Stream {self.id} ({self.username}): {self.state.value} -> {state.value}")
        self.state = state


class WebSocketHandler:
    """
    Handles stream connections.

    Lifecycle per connection: HANDSHAKING -> BOUND -> DRAINING -> CLOSED.
    """

    def __init__(self, registry: SessionRegistry, config_loader: Optional[ConfigLoader] = None):
        """
        Initialize WebSocket handler.

        Args:
            registry: Session registry shared with the login/logout endpoints
            config_loader: Source of relay settings, read once per connection
        """
        self.registry = registry
        self.config_loader = config_loader
        self.active_connections: Dict[str, RelayConnection] = {}

    def _relay_config(self) -> RelayConfig:
        if self.config_loader is None:
            return RelayConfig()
        return self.config_loader.get_relay_config()

    async def handle_connection(self, websocket: WebSocket):
        """
        Handle a stream connection lifecycle.

        Steps:
        1. Accept the WebSocket connection
        2. Bind it to a session from the handshake frame
        3. Run the relay pump until either side ends
        4. Detach and close
        """
        await websocket.accept()
        connection = RelayConnection(websocket, self._relay_config())
        self.active_connections[connection.id] = connection

        try:
            try:
                await self.bind(connection)
            except TransportError as e:
                logger.warning(f"Stream {connection.id} failed during handshake: {e}")
                return
            except WebSocketDisconnect:
                logger.info(f"Stream {connection.id} closed before handshake")
                return
            except RelayError as e:
                logger.info(f"Stream handshake rejected: {e.message}")
                await self._reject(connection, e)
                return

            await self.pump(connection)

        finally:
            connection.transition(RelayState.CLOSED)
            del self.active_connections[connection.id]

    async def bind(self, connection: RelayConnection) -> Channel:
        """
        Consume the handshake frame and attach a fresh channel to the session.

        Raises:
            MalformedHandshake: frame is not {"username", "token"}
            NotLoggedIn, InvalidToken, StreamAlreadyBound: from the registry
        """
        frame = await self._receive(connection)
        connection.binary = isinstance(frame, bytes)

        try:
            handshake = UserWithTokenRequest.model_validate_json(frame)
        except ValidationError as e:
            raise MalformedHandshake("; ".join(error["msg"] for error in e.errors()))

        channel = Channel(connection.config.channel_size)
        replaced = await self.registry.attach_channel(
            handshake.username,
            handshake.token,
            channel,
            replace=connection.config.on_conflict == "replace",
        )

        connection.username = handshake.username
        connection.channel = channel
        connection.transition(RelayState.BOUND)

        if replaced is not None:
            logger.info(f"Previous stream for user {handshake.username} superseded")
        logger.info(f"User {handshake.username} is now connected to the stream")
        return channel

    async def pump(self, connection: RelayConnection):
        """
        Run the outbound and inbound loops until one ends, then drain.

        The channel is detached in all cases, including transport failures
        and cancellation.
        """
        tasks = []
        close_code, reason = 1000, ""

        try:
            welcome = WebsocketWelcomeResponse(welcome=connection.username)
            await self._send(connection, welcome.model_dump_json())

            outbound = asyncio.create_task(self._outbound_loop(connection))
            inbound = asyncio.create_task(self._inbound_loop(connection))
            tasks = [outbound, inbound]

            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

            for task in done:
                close_code, reason = task.result()

        except TransportError as e:
            logger.warning(f"Transport error on stream for user {connection.username}: {e}")
            close_code, reason = 1011, ""

        finally:
            connection.transition(RelayState.DRAINING)

            for task in tasks:
                if not task.done():
                    task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)

            await self.registry.detach_channel(connection.username, connection.channel)
            await self._close(connection, close_code, reason)
            logger.info(f"Websocket connection closed for user {connection.username}")

    async def _outbound_loop(self, connection: RelayConnection) -> Tuple[int, str]:
        """Forward channel messages to the connection until the channel closes."""
        async for message in connection.channel:
            await self._send(connection, message)

        logger.info(f"Channel for user {connection.username} closed, ending stream")
        return 1000, "Session closed"

    async def _inbound_loop(self, connection: RelayConnection) -> Tuple[int, str]:
        """Echo client frames until the client disconnects or goes idle."""
        while True:
            try:
                frame = await asyncio.wait_for(
                    self._receive(connection), connection.config.idle_timeout
                )
            except asyncio.TimeoutError:
                logger.info(f"Closing idle stream for user {connection.username}")
                return 1001, "Idle timeout"
            except WebSocketDisconnect as e:
                logger.info(f"User {connection.username} disconnected from the stream ({e.code})")
                return e.code, ""

            if isinstance(frame, bytes):
                logger.debug(f"Message from {connection.username}: {frame!r}")
                await self._send(connection, b"Your message is: " + frame, binary=True)
            else:
                logger.debug(f"Message from {connection.username}: {frame}")
                await self._send(connection, f"Your message is: {frame}")

    async def _receive(self, connection: RelayConnection) -> Frame:
        """
        Read one frame.

        Raises:
            WebSocketDisconnect: the client closed the connection
            TransportError: the read failed
        """
        try:
            message = await connection.websocket.receive()
        except (RuntimeError, OSError) as e:
            raise TransportError(str(e)) from e

        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000))

        if message.get("text") is not None:
            return message["text"]
        return message.get("bytes") or b""

    async def _send(self, connection: RelayConnection, payload: Frame, binary: Optional[bool] = None):
        """
        Write one frame.

        Frames are text unless the stream (or binary) says otherwise, or the
        payload is not UTF-8.

        Raises:
            TransportError: the write failed
        """
        websocket = connection.websocket
        if binary is None:
            binary = connection.binary

        try:
            if binary:
                if isinstance(payload, str):
                    payload = payload.encode()
                await websocket.send_bytes(payload)
                return

            if isinstance(payload, bytes):
                try:
                    payload = payload.decode()
                except UnicodeDecodeError:
                    await websocket.send_bytes(payload)
                    return
            await websocket.send_text(payload)

        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            raise TransportError(f"write failed: {e!r}") from e

    async def _reject(self, connection: RelayConnection, error: RelayError):
        """Write the failure reason, best-effort, and close."""
        try:
            await self._send(connection, error.message)
        except TransportError as e:
            logger.warning(f"Could not send handshake error to stream {connection.id}: {e}")
        await self._close(connection, connection.config.close_code)

    async def _close(self, connection: RelayConnection, code: int = 1000, reason: str = ""):
        websocket = connection.websocket
        if (websocket.client_state == WebSocketState.DISCONNECTED
                or websocket.application_state == WebSocketState.DISCONNECTED):
            return
        try:
            await websocket.close(code=code, reason=reason or None)
        except (RuntimeError, OSError) as e:
            logger.debug(f"Error closing stream {connection.id}: {e}")
