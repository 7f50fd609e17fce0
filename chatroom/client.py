"""
Command-line client for the relay.
Logs in, opens the stream, sends stdin lines and prints what the server pushes.
Usage: chatroom-client --url http://localhost:8080 --username alice
"""

import argparse
import asyncio
import contextlib
import json
import logging
import sys
import threading
from typing import Optional

import httpx
import websockets

logger = logging.getLogger(__name__)


class ClientError(Exception):
    """Raised when the server refuses a request."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class RelayClient:
    """HTTP and stream access for one user."""

    def __init__(self, base_url: str, username: str, http: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.token: Optional[str] = None
        self.http = http or httpx.AsyncClient(base_url=self.base_url)

    @property
    def stream_url(self) -> str:
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):] + "/stream"
        return "ws://" + self.base_url.split("://", 1)[-1] + "/stream"

    async def login(self) -> str:
        response = await self.http.post("/login", json={"username": self.username})
        if response.status_code != 200:
            raise ClientError(response.status_code, response.text.strip())

        self.token = response.json()["token"]
        return self.token

    async def logout(self) -> str:
        if self.token is None:
            raise ClientError(409, f"User {self.username} is not logged in")

        response = await self.http.post(
            "/logout", json={"username": self.username, "token": self.token}
        )
        if response.status_code != 200:
            raise ClientError(response.status_code, response.text.strip())

        self.token = None
        return response.json()["message"]

    def handshake(self) -> str:
        return json.dumps({"username": self.username, "token": self.token})

    async def close(self):
        await self.http.aclose()


async def _print_incoming(websocket):
    async for message in websocket:
        print(f"< {message}")


def _stdin_lines(loop: asyncio.AbstractEventLoop) -> asyncio.Queue:
    """Feed stdin lines into a queue from a daemon thread; None marks end of input."""
    lines: asyncio.Queue = asyncio.Queue()

    def read():
        for line in sys.stdin:
            loop.call_soon_threadsafe(lines.put_nowait, line)
        loop.call_soon_threadsafe(lines.put_nowait, None)

    threading.Thread(target=read, daemon=True).start()
    return lines


async def relay_lines(websocket, lines: asyncio.Queue):
    """
    Send queued lines over the stream while printing what the server pushes.

    Returns when input ends or the server closes the stream.
    """
    reader = asyncio.create_task(_print_incoming(websocket))
    try:
        while True:
            next_line = asyncio.ensure_future(lines.get())
            done, _ = await asyncio.wait({reader, next_line}, return_when=asyncio.FIRST_COMPLETED)
            if reader in done:
                next_line.cancel()
                break

            line = next_line.result()
            if line is None:
                break
            await websocket.send(line.rstrip("\n"))
    finally:
        reader.cancel()
        with contextlib.suppress(asyncio.CancelledError, websockets.ConnectionClosed):
            await reader


async def run(url: str, username: str) -> int:
    client = RelayClient(url, username)
    try:
        try:
            await client.login()
        except ClientError as e:
            print(f"Login failed: {e.message}", file=sys.stderr)
            return 1

        print(f"Logged in as {username}")
        try:
            async with websockets.connect(client.stream_url) as websocket:
                await websocket.send(client.handshake())
                print(f"< {await websocket.recv()}")

                await relay_lines(websocket, _stdin_lines(asyncio.get_running_loop()))
        except websockets.ConnectionClosed as e:
            logger.info(f"Stream closed: {e}")
        finally:
            try:
                print(await client.logout())
            except ClientError as e:
                print(f"Logout failed: {e.message}", file=sys.stderr)
    finally:
        await client.close()

    return 0


def main():
    parser = argparse.ArgumentParser(description="Chat room relay client")
    parser.add_argument("-u", "--url", default="http://localhost:8080", help="Server base URL")
    parser.add_argument("-n", "--username", required=True, help="Username to log in as")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    sys.exit(asyncio.run(run(args.url, args.username)))


if __name__ == "__main__":
    main()
