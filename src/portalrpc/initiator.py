"""The Initiator: the side of the bridge that issues requests.

The channel underneath is one-way and unordered, so every request carries a
fresh ``callbackId`` and parks a Deferred in the correlation table under
that id. Responses are matched by id alone, never by arrival order, and the
entry is removed as soon as its response arrives. A response nobody is
waiting for (stale, duplicate or foreign) is logged and dropped.

There is no built-in timeout. A call stays pending until its response
arrives or the Initiator is closed; wrap calls in ``asyncio.wait_for`` when
a deadline is needed.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from collections.abc import Mapping
from typing import Any, Callable

from portalrpc.config import InitiatorConfig
from portalrpc.deferred import Deferred
from portalrpc.error import ConnectionClosedError, RemoteError
from portalrpc.protocol import Action, Message, Source, request_message
from portalrpc.resolver import deep_resolve
from portalrpc.source import function_source
from portalrpc.stubs import RemoteAPI, RemoteFunction
from portalrpc.types import Transport

logger = logging.getLogger(__name__)

ApiSpec = Mapping[str, Callable[..., Any] | str]


class Initiator:
    """Issues requests to an Executor and settles them from its responses.

    Example:
        ```python
        initiator = Initiator(transport)
        api = await initiator.create_api({"sum": lambda a, b: a + b})
        assert await api.sum(10, 20) == 30
        assert await initiator.run_script("return 4") == 4
        ```
    """

    def __init__(
        self,
        transport: Transport,
        config: InitiatorConfig | None = None,
    ) -> None:
        """Initialize the Initiator.

        Args:
            transport: The message transport
            config: Optional Initiator configuration
        """
        self.transport = transport
        self._config = config or InitiatorConfig()

        self._id_prefix = self._config.callback_id_prefix or uuid.uuid4().hex
        self._id_counter = itertools.count(1)

        # Correlation table: callbackId -> Deferred
        self._pending: dict[str, Deferred] = {}

        self._close_reason: Exception | None = None

        transport.on_message(self._on_message)

    @property
    def pending_count(self) -> int:
        """Number of requests still waiting for a response."""
        return len(self._pending)

    @property
    def closed(self) -> bool:
        """Whether ``close()`` was called; new requests then fail at once."""
        return self._close_reason is not None

    def get_stats(self) -> dict[str, int]:
        """Get statistics about the Initiator.

        Returns:
            Dict with the 'pending' count
        """
        return {"pending": len(self._pending)}

    def close(self, reason: Exception | None = None) -> None:
        """Reject every outstanding call and refuse new ones.

        Args:
            reason: Optional error to reject with; defaults to a
                ConnectionClosedError
        """
        if self._close_reason is None:
            self._close_reason = reason or ConnectionClosedError("Initiator closed")

        pending = list(self._pending.values())
        self._pending.clear()
        for deferred in pending:
            deferred.reject(self._close_reason)

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def _next_callback_id(self) -> str:
        return f"{self._id_prefix}-{next(self._id_counter)}"

    async def request(self, action: str, payload: dict[str, Any]) -> Any:
        """Send a request and wait for its response.

        Args:
            action: The request action
            payload: A payload made only of ResolvedValues

        Returns:
            The ``result`` field of the successful response

        Raises:
            RemoteError: If the Executor reported a failure
            ConnectionClosedError: If the Initiator is or gets closed
        """
        if self._close_reason is not None:
            raise self._close_reason

        deferred = Deferred()
        callback_id = self._next_callback_id()
        self._pending[callback_id] = deferred

        message = request_message(action, payload, callback_id)
        logger.debug("Initiator sending %s", message)

        try:
            await self.transport.send(message)
        except Exception as e:
            self._pending.pop(callback_id, None)
            deferred.reject(e)

        return await deferred

    async def create_api(
        self,
        api: ApiSpec | Callable[[], ApiSpec],
    ) -> RemoteAPI:
        """Add every function of ``api`` to the Executor.

        All ``addFunction`` round trips run concurrently. The returned object
        is complete: it is only produced once every function was
        acknowledged, and the call fails if any one of them failed.

        Args:
            api: A mapping of name to function (or source text), or a
                zero-argument factory returning such a mapping

        Returns:
            A RemoteAPI with one RemoteFunction per name

        Raises:
            RemoteError: If the Executor refused a function
            FunctionSourceError: If a function has no retrievable source
        """
        if callable(api) and not isinstance(api, Mapping):
            return await self.create_api(api())

        if not isinstance(api, Mapping):
            raise TypeError(f"API must be a mapping or a factory, got {type(api).__name__}")

        sources = {name: function_source(fn) for name, fn in api.items()}
        remote_api = RemoteAPI()

        async def add_function(name: str, source: str) -> None:
            await self.request(Action.ADD_FUNCTION.value, {"name": name, "fnString": source})
            remote_api._install(RemoteFunction(self, name))

        await asyncio.gather(*(add_function(name, source) for name, source in sources.items()))
        return remote_api

    async def run_function(self, name: str, *args: Any) -> Any:
        """Call a function previously added to the Executor.

        Arguments are deep-resolved before they are sent.
        """
        params = await deep_resolve(list(args))
        return await self.request(Action.RUN_FUNCTION.value, {"name": name, "params": params})

    async def run_script(self, script: str) -> Any:
        """Run ``script`` in the Executor and return its resolved result."""
        return await self.request(Action.RUN_SCRIPT.value, {"script": script})

    # -------------------------------------------------------------------------
    # Responses
    # -------------------------------------------------------------------------

    def _on_message(self, message: Message) -> None:
        """Settle the pending call a response belongs to."""
        if message.source != Source.EXECUTOR or not message.action:
            return

        logger.debug("Initiator received %s", message)

        deferred = self._pending.pop(message.callback_id, None)
        if deferred is None:
            logger.error("No pending call for callbackId %r", message.callback_id)
            return

        if message.success:
            deferred.resolve(message.payload.get("result"))
        else:
            deferred.reject(RemoteError.from_payload(message.payload.get("error")))
