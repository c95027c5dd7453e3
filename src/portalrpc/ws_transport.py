"""WebSocket transports for the portal bridge.

Each message travels as one JSON text frame. A reader loop parses incoming
frames and hands them to the registered handlers; frames that are not valid
envelopes are logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable

import aiohttp

from portalrpc.error import ProtocolError
from portalrpc.protocol import Message, parse_message, serialize_message
from portalrpc.types import MessageHandler

if TYPE_CHECKING:
    from aiohttp import ClientWebSocketResponse, web

logger = logging.getLogger(__name__)


class _WebSocketTransport:
    """Shared send/dispatch logic over an aiohttp WebSocket."""

    def __init__(self) -> None:
        self._ws: ClientWebSocketResponse | web.WebSocketResponse | None = None
        self._closed = False
        self._handlers: list[MessageHandler] = []
        self._close_callbacks: list[Callable[[], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def on_message(self, handler: MessageHandler) -> None:
        """Register a handler for messages from the peer."""
        self._handlers.append(handler)

    def on_close(self, callback: Callable[[], None]) -> None:
        """Register a callback run once when the connection ends."""
        self._close_callbacks.append(callback)

    async def send(self, message: Message) -> None:
        """Send a message to the peer."""
        if self._ws is None or self._closed:
            raise ConnectionError("WebSocket not connected")
        await self._ws.send_str(serialize_message(message))

    async def run(self) -> None:
        """Read frames until the connection closes."""
        if self._ws is None:
            raise RuntimeError("WebSocket not connected")

        ws = self._ws
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._dispatch(msg.data.decode("utf-8"))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.debug("WebSocket error: %s", ws.exception())
                    break
        finally:
            self._mark_closed()

    def _dispatch(self, data: str) -> None:
        try:
            message = parse_message(data)
        except ProtocolError as e:
            logger.warning("Dropping malformed message: %s", e)
            return

        for handler in list(self._handlers):
            handler(message)

    def _mark_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            callback()


class WebSocketClientTransport(_WebSocketTransport):
    """WebSocket transport for the connecting side.

    Example:
        ```python
        transport = WebSocketClientTransport("ws://localhost:8080/portal")
        await transport.connect()
        ```
    """

    def __init__(self, url: str) -> None:
        """Initialize the transport.

        Args:
            url: WebSocket URL (e.g., "ws://localhost:8080/portal")
        """
        super().__init__()
        self.url = url
        self._session: aiohttp.ClientSession | None = None
        self._reader_task: asyncio.Task[None] | None = None

    async def connect(self) -> None:
        """Connect to the WebSocket server and start reading."""
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(self.url)
        except Exception:
            await self._session.close()
            self._session = None
            raise
        self._reader_task = asyncio.create_task(self._read_loop())

    async def _read_loop(self) -> None:
        try:
            await self.run()
        except Exception:
            logger.exception("Error in WebSocket read loop")

    async def close(self) -> None:
        """Close the connection."""
        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        if self._ws:
            await self._ws.close()
            self._ws = None
        if self._session:
            await self._session.close()
            self._session = None
        self._mark_closed()


class WebSocketServerTransport(_WebSocketTransport):
    """WebSocket transport for the accepting side.

    Wraps an already prepared aiohttp ``WebSocketResponse``; the server
    handler drives it by awaiting ``run()``.
    """

    def __init__(self, ws: web.WebSocketResponse) -> None:
        """Initialize the transport.

        Args:
            ws: The aiohttp WebSocketResponse from the server handler
        """
        super().__init__()
        self._ws = ws

    async def close(self) -> None:
        """Close the connection."""
        if self._ws is not None:
            await self._ws.close()
        self._mark_closed()
