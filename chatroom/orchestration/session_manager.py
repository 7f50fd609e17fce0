"""
Session Manager for login and logout.
Creates and destroys session records in the in-process registry.
"""

import uuid
import logging
from typing import Optional

from chatroom.core.exceptions import AlreadyLoggedIn
from chatroom.orchestration.session_registry import Session, SessionRegistry

logger = logging.getLogger(__name__)

LOGOUT_MESSAGE = "User successfully logged out"


class SessionManager:
    """
    Manages user sessions.
    Each check-and-mutate sequence runs under a single write-lock acquisition.
    """

    def __init__(self, registry: Optional[SessionRegistry] = None):
        """
        Initialize SessionManager.

        Args:
            registry: Registry to operate on; a new one is created if omitted
        """
        self.registry = registry if registry is not None else SessionRegistry()

    async def login(self, username: str) -> str:
        """
        Create a session for username.

        Args:
            username: Identity to log in

        Returns:
            Fresh session token

        Raises:
            AlreadyLoggedIn: username already has a session
        """
        async with self.registry.write():
            if self.registry.lookup(username) is not None:
                raise AlreadyLoggedIn(username)

            token = str(uuid.uuid4())
            self.registry.insert(Session(username=username, token=token))

        logger.info(f"User {username} logged in with token {token[:8]}...")
        return token

    async def logout(self, username: str, token: str) -> str:
        """
        Destroy the session for username, closing any bound stream channel.

        Args:
            username: Identity to log out
            token: Token issued at login

        Returns:
            Confirmation message

        Raises:
            NotLoggedIn: username has no session
            InvalidToken: token mismatch
        """
        async with self.registry.write():
            self.registry.authenticate(username, token)
            self.registry.delete(username)

        logger.info(f"User {username} successfully logged out")
        return LOGOUT_MESSAGE

    async def get_active_sessions_count(self) -> int:
        """Number of logged-in users."""
        return await self.registry.count()

    async def get_connected_sessions_count(self) -> int:
        """Number of logged-in users with a bound stream."""
        return await self.registry.count_connected()
