"""
Session Registry: in-process store of logged-in users.
Maps each username to its token and, while a stream is bound, its delivery channel.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from chatroom.core.exceptions import ChannelClosed, InvalidToken, NotLoggedIn, StreamAlreadyBound
from chatroom.core.locks import ReaderWriterLock
from chatroom.orchestration.channel import Channel

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """A logged-in user."""
    username: str
    token: str
    channel: Optional[Channel] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_connected(self) -> bool:
        return self.channel is not None

    def token_matches(self, token: str) -> bool:
        return secrets.compare_digest(self.token.encode(), token.encode())


class SessionRegistry:
    """
    Concurrency-safe map of username -> Session.

    All mutations (insert, delete, channel attach and detach) take the write
    lock; lookups take the read lock. The lock is never held across network
    I/O. Methods documented as "caller must hold the lock" are the unlocked
    primitives used by SessionManager to run a whole check-and-mutate
    sequence under a single acquisition.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._lock = ReaderWriterLock()

    def read(self):
        """Shared lock context for lookups."""
        return self._lock.read()

    def write(self):
        """Exclusive lock context for mutations."""
        return self._lock.write()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, username: str) -> bool:
        return username in self._sessions

    # Unlocked primitives

    def lookup(self, username: str) -> Optional[Session]:
        """Return the session for username. Caller must hold the lock."""
        return self._sessions.get(username)

    def authenticate(self, username: str, token: str, invalid_message: str = "Invalid token") -> Session:
        """
        Return the session for username if token matches. Caller must hold the lock.

        Raises:
            NotLoggedIn: no session for username
            InvalidToken: token mismatch
        """
        session = self._sessions.get(username)
        if session is None:
            raise NotLoggedIn(username)
        if not session.token_matches(token):
            raise InvalidToken(username, invalid_message)
        return session

    def insert(self, session: Session):
        """Add a session. Caller must hold the write lock."""
        self._sessions[session.username] = session

    def delete(self, username: str) -> Optional[Session]:
        """
        Remove a session, closing its channel. Caller must hold the write lock.
        """
        session = self._sessions.pop(username, None)
        if session is not None and session.channel is not None:
            session.channel.close()
            logger.info(f"Channel for user {username} closed")
            session.channel = None
        return session

    # Locked operations

    async def count(self) -> int:
        async with self.read():
            return len(self._sessions)

    async def count_connected(self) -> int:
        async with self.read():
            return sum(1 for session in self._sessions.values() if session.is_connected)

    async def attach_channel(self, username: str, token: str, channel: Channel,
                             replace: bool = True) -> Optional[Channel]:
        """
        Validate username/token and bind channel to the session.

        Args:
            username: Session identity
            token: Token presented in the stream handshake
            channel: Fresh channel for the new stream
            replace: Close and replace an existing channel instead of refusing

        Returns:
            The replaced channel (already closed), or None

        Raises:
            NotLoggedIn, InvalidToken, StreamAlreadyBound
        """
        async with self.write():
            session = self.authenticate(
                username, token, invalid_message=f"Invalid token for user {username}"
            )

            previous = session.channel
            if previous is not None and not previous.closed:
                if not replace:
                    raise StreamAlreadyBound(username)
                previous.close()
                logger.info(f"Replacing open stream channel for user {username}")

            session.channel = channel
            return previous

    async def detach_channel(self, username: str, channel: Channel) -> bool:
        """
        Close channel and clear it from the session if it is still the bound one.

        Returns:
            True if the session's channel reference was cleared
        """
        async with self.write():
            channel.close()
            session = self._sessions.get(username)
            if session is None or session.channel is not channel:
                return False
            session.channel = None
            return True

    async def send(self, username: str, message: bytes) -> bool:
        """
        Deliver a message to the user's bound stream.

        The channel is looked up under the read lock; the send itself happens
        outside the lock since it may wait on the consumer.

        Returns:
            False if the user has no bound stream or the channel closed mid-send
        """
        async with self.read():
            session = self._sessions.get(username)
            channel = session.channel if session else None

        if channel is None:
            return False

        try:
            await channel.send(message)
        except ChannelClosed:
            logger.debug(f"Channel for user {username} closed before delivery")
            return False
        return True
