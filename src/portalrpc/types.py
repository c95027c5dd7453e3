"""Core type definitions for portalrpc."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Protocol

if TYPE_CHECKING:
    from portalrpc.protocol import Message

MessageHandler = Callable[["Message"], None]


class Transport(Protocol):
    """Protocol for the channel between an Initiator and an Executor.

    The channel is one-way per call and may deliver messages out of order.
    Every sent message must be delivered at most once to the handlers on the
    other side; nothing else is assumed.

    Usage:
        class MyTransport:
            async def send(self, message: Message) -> None:
                ...

            def on_message(self, handler: MessageHandler) -> None:
                ...
    """

    async def send(self, message: Message) -> None:
        """Send a message to the peer.

        Args:
            message: The message to send

        Raises:
            Exception: If sending fails
        """
        ...

    def on_message(self, handler: MessageHandler) -> None:
        """Register a handler called with every message from the peer.

        Args:
            handler: Synchronous callback receiving each message
        """
        ...
