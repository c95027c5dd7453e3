"""In-process transport pair.

Two ``MemoryTransport`` objects wired back to back. A sent message is
delivered to the peer's handlers on a later iteration of the event loop,
never synchronously inside ``send``, which keeps the asynchronous character
of a real channel.
"""

from __future__ import annotations

import asyncio
import logging

from portalrpc.protocol import Message
from portalrpc.types import MessageHandler

logger = logging.getLogger(__name__)


class MemoryTransport:
    """One end of an in-memory channel."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.peer: MemoryTransport | None = None
        self.closed = False
        self.message_count = 0
        self._handlers: list[MessageHandler] = []

    def on_message(self, handler: MessageHandler) -> None:
        """Register a handler for messages from the peer."""
        self._handlers.append(handler)

    async def send(self, message: Message) -> None:
        """Send message to peer."""
        if self.closed:
            raise ConnectionError("Transport closed")
        peer = self.peer
        if peer is None or peer.closed:
            logger.debug("%s dropping message: no peer", self.name or "transport")
            return
        self.message_count += 1
        asyncio.get_running_loop().call_soon(peer.deliver, message)

    def deliver(self, message: Message) -> None:
        """Hand a message to every registered handler."""
        if self.closed:
            return
        for handler in list(self._handlers):
            handler(message)

    def close(self) -> None:
        """Close this end. Further sends raise, further deliveries drop."""
        self.closed = True


def create_transport_pair() -> tuple[MemoryTransport, MemoryTransport]:
    """Create a pair of connected transports."""
    a = MemoryTransport("A")
    b = MemoryTransport("B")
    a.peer = b
    b.peer = a
    return a, b
