"""Pytest configuration for all tests."""

import asyncio
from dataclasses import dataclass
from typing import Callable

import pytest

from portalrpc.config import ExecutorConfig
from portalrpc.executor import Executor
from portalrpc.initiator import Initiator
from portalrpc.memory_transport import MemoryTransport
from portalrpc.protocol import Message


class RecordingTransport(MemoryTransport):
    """In-memory transport that remembers what it sent."""

    def __init__(self, name: str = "") -> None:
        super().__init__(name)
        self.sent_messages: list[Message] = []

    async def send(self, message: Message) -> None:
        self.sent_messages.append(message)
        await super().send(message)


class HoldingTransport(RecordingTransport):
    """Transport that parks outgoing messages until they are released.

    Lets a test decide the order in which the peer sees them.
    """

    def __init__(self, name: str = "") -> None:
        super().__init__(name)
        self.held: list[Message] = []

    async def send(self, message: Message) -> None:
        self.sent_messages.append(message)
        self.held.append(message)

    async def release(self, reverse: bool = False) -> None:
        """Deliver every held message, optionally in reverse order."""
        messages, self.held = self.held, []
        if reverse:
            messages.reverse()
        for message in messages:
            await MemoryTransport.send(self, message)


def connect(a: MemoryTransport, b: MemoryTransport) -> None:
    a.peer = b
    b.peer = a


@dataclass
class Bridge:
    """A connected Executor/Initiator pair."""

    executor: Executor
    initiator: Initiator
    executor_transport: RecordingTransport
    initiator_transport: RecordingTransport


def make_bridge(
    executor_transport: RecordingTransport | None = None,
    config: ExecutorConfig | None = None,
    start: bool = True,
) -> Bridge:
    executor_transport = executor_transport or RecordingTransport("executor")
    initiator_transport = RecordingTransport("initiator")
    connect(executor_transport, initiator_transport)

    executor = Executor(executor_transport, config or ExecutorConfig(namespace={"asyncio": asyncio}))
    if start:
        executor.start()
    initiator = Initiator(initiator_transport)
    return Bridge(executor, initiator, executor_transport, initiator_transport)


async def wait_until(predicate: Callable[[], bool], iterations: int = 200) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    for _ in range(iterations):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture
def bridge() -> Bridge:
    """A listening Executor connected to an Initiator."""
    return make_bridge()


@pytest.fixture
def bridge_factory() -> Callable[..., Bridge]:
    return make_bridge


@pytest.fixture
def waiter() -> Callable[..., object]:
    return wait_until


@pytest.fixture
def holding_transport() -> HoldingTransport:
    """Executor-side transport whose responses wait to be released."""
    return HoldingTransport("executor")
