"""
Closable delivery channel between server logic and a stream's outbound pump.
"""

import asyncio

from chatroom.core.exceptions import ChannelClosed


class Channel:
    """
    Bounded, ordered, single-consumer queue of byte-messages.

    Closing never blocks. Messages already buffered are still delivered after
    close; once the buffer is empty, receivers get ChannelClosed.
    """

    def __init__(self, maxsize: int = 1):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self):
        self._closed.set()

    async def send(self, message: bytes):
        """
        Put a message on the channel, waiting while the buffer is full.

        Raises:
            ChannelClosed: if the channel is closed before the message is queued
        """
        if self.closed:
            raise ChannelClosed()

        try:
            self._queue.put_nowait(message)
            return
        except asyncio.QueueFull:
            pass

        if not await self._race(self._queue.put(message)):
            raise ChannelClosed()

    async def receive(self) -> bytes:
        """
        Take the next message.

        Raises:
            ChannelClosed: once the channel is closed and drained
        """
        while True:
            if not self._queue.empty():
                return self._queue.get_nowait()
            if self.closed:
                raise ChannelClosed()

            getter = asyncio.ensure_future(self._queue.get())
            if await self._race(getter):
                return getter.result()

    async def _race(self, operation) -> bool:
        """Run a queue operation until it completes or the channel closes."""
        task = asyncio.ensure_future(operation)
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait({task, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed.cancel()
            if not task.done():
                task.cancel()
        return task in done

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        try:
            return await self.receive()
        except ChannelClosed:
            raise StopAsyncIteration

    def qsize(self) -> int:
        return self._queue.qsize()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<Channel {state} size={self.qsize()}>"

