"""
Session Manager tests: login and logout
"""
import asyncio

import pytest

from chatroom.core.exceptions import AlreadyLoggedIn, InvalidToken, NotLoggedIn
from chatroom.orchestration import Channel, SessionManager, SessionRegistry


pytestmark = pytest.mark.unit


class TestSessionManager:
    """Login/logout lifecycle"""

    @pytest.mark.asyncio
    async def test_login_creates_session(self, session_manager, registry):
        token = await session_manager.login("alice")

        session = registry.lookup("alice")
        assert session.token == token
        assert session.channel is None
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_second_login_fails_and_keeps_registry(self, session_manager, registry):
        token = await session_manager.login("alice")

        with pytest.raises(AlreadyLoggedIn) as exc:
            await session_manager.login("alice")

        assert exc.value.message == "User alice is already logged in"
        assert exc.value.status_code == 409
        assert len(registry) == 1
        assert registry.lookup("alice").token == token

    @pytest.mark.asyncio
    async def test_logout_unknown_user(self, session_manager, registry):
        with pytest.raises(NotLoggedIn) as exc:
            await session_manager.logout("alice", "some-token")

        assert exc.value.message == "User alice is not logged in"
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_logout_wrong_token_keeps_session(self, session_manager, registry):
        await session_manager.login("alice")

        with pytest.raises(InvalidToken) as exc:
            await session_manager.logout("alice", "wrong")

        assert exc.value.message == "Invalid token"
        assert "alice" in registry

    @pytest.mark.asyncio
    async def test_logout_then_login_issues_new_token(self, session_manager, registry):
        first = await session_manager.login("alice")

        message = await session_manager.logout("alice", first)
        assert message == "User successfully logged out"
        assert "alice" not in registry

        second = await session_manager.login("alice")
        assert second != first

    @pytest.mark.asyncio
    async def test_logout_closes_bound_channel(self, session_manager, registry):
        token = await session_manager.login("alice")
        channel = Channel()
        await registry.attach_channel("alice", token, channel)

        await session_manager.logout("alice", token)

        assert channel.closed
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_concurrent_logins_create_one_session(self, session_manager, registry):
        results = await asyncio.gather(
            *[session_manager.login("alice") for _ in range(10)],
            return_exceptions=True
        )

        tokens = [result for result in results if isinstance(result, str)]
        failures = [result for result in results if isinstance(result, AlreadyLoggedIn)]
        assert len(tokens) == 1
        assert len(failures) == 9
        assert registry.lookup("alice").token == tokens[0]

    @pytest.mark.asyncio
    async def test_session_counts(self, session_manager, registry):
        alice = await session_manager.login("alice")
        await session_manager.login("bob")
        await registry.attach_channel("alice", alice, Channel())

        assert await session_manager.get_active_sessions_count() == 2
        assert await session_manager.get_connected_sessions_count() == 1


def test_manager_uses_the_registry_it_is_given():
    registry = SessionRegistry()

    assert SessionManager(registry).registry is registry


@pytest.mark.asyncio
async def test_login_is_visible_to_stream_binding(registry, session_manager):
    token = await session_manager.login("alice")

    assert await registry.attach_channel("alice", token, Channel()) is None
    assert registry.lookup("alice").channel is not None
