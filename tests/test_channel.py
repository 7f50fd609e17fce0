"""
Channel tests
"""
import asyncio

import pytest

from chatroom.core.exceptions import ChannelClosed
from chatroom.orchestration.channel import Channel


pytestmark = pytest.mark.unit


class TestChannel:
    """Closable bounded delivery queue"""

    @pytest.mark.asyncio
    async def test_messages_are_delivered_in_order(self):
        channel = Channel(maxsize=3)
        for message in (b"one", b"two", b"three"):
            await channel.send(message)

        assert [await channel.receive() for _ in range(3)] == [b"one", b"two", b"three"]

    @pytest.mark.asyncio
    async def test_send_waits_while_buffer_is_full(self):
        channel = Channel(maxsize=1)
        await channel.send(b"first")

        pending = asyncio.create_task(channel.send(b"second"))
        await asyncio.sleep(0.01)
        assert not pending.done()

        assert await channel.receive() == b"first"
        await asyncio.wait_for(pending, 1.0)
        assert await channel.receive() == b"second"

    @pytest.mark.asyncio
    async def test_close_wakes_blocked_receiver(self):
        channel = Channel()
        receiver = asyncio.create_task(channel.receive())
        await asyncio.sleep(0.01)

        channel.close()

        with pytest.raises(ChannelClosed):
            await asyncio.wait_for(receiver, 1.0)

    @pytest.mark.asyncio
    async def test_close_wakes_blocked_sender(self):
        channel = Channel(maxsize=1)
        await channel.send(b"fills the buffer")
        sender = asyncio.create_task(channel.send(b"never queued"))
        await asyncio.sleep(0.01)

        channel.close()

        with pytest.raises(ChannelClosed):
            await asyncio.wait_for(sender, 1.0)
        assert channel.qsize() == 1

    @pytest.mark.asyncio
    async def test_send_after_close_fails(self):
        channel = Channel()
        channel.close()

        with pytest.raises(ChannelClosed):
            await channel.send(b"late")

    @pytest.mark.asyncio
    async def test_buffered_messages_drain_before_close_is_seen(self):
        channel = Channel(maxsize=2)
        await channel.send(b"a")
        await channel.send(b"b")
        channel.close()

        received = [message async for message in channel]

        assert received == [b"a", b"b"]

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        channel = Channel()
        channel.close()
        channel.close()

        assert channel.closed
        assert "closed" in repr(channel)
