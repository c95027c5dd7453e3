"""Deferred: a future settled from outside its producer."""

from __future__ import annotations

import asyncio
from typing import Any, Generator


class Deferred:
    """An ``asyncio.Future`` paired with resolve/reject capabilities.

    Only the first settlement counts; later calls to ``resolve`` or
    ``reject`` are silently ignored.

    Example:
        ```python
        deferred = Deferred()
        loop.call_later(1, deferred.resolve, 42)
        assert await deferred == 42
        ```
    """
    __slots__ = ('future',)

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        if loop is None:
            loop = asyncio.get_running_loop()
        self.future: asyncio.Future[Any] = loop.create_future()

    @property
    def done(self) -> bool:
        """Whether the deferred has been settled."""
        return self.future.done()

    def resolve(self, value: Any = None) -> None:
        """Settle successfully with ``value``."""
        if not self.future.done():
            self.future.set_result(value)

    def reject(self, error: BaseException) -> None:
        """Settle with ``error``."""
        if not self.future.done():
            self.future.set_exception(error)

    def __await__(self) -> Generator[Any, None, Any]:
        return self.future.__await__()

    def __repr__(self) -> str:
        state = "settled" if self.future.done() else "pending"
        return f"Deferred({state})"
