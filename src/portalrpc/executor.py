"""The Executor: the side of the bridge that runs code.

An Executor owns an evaluation namespace and a registry of function names.
The Initiator adds functions to it, calls them by name and submits scripts;
every result is deep-resolved before it is sent back, so nested awaitables
and callables reach the Initiator as plain values.

Security note: code received from the Initiator is compiled and executed
with no sandboxing or capability restriction of any kind. An Executor fully
trusts its peer. Run it only where that trust is warranted.
"""

from __future__ import annotations

import ast
import asyncio
import keyword
import logging
from enum import Enum
from typing import Any, Awaitable

from portalrpc.config import ExecutorConfig
from portalrpc.error import ExecutorValidationError, RemoteError
from portalrpc.protocol import (
    Action,
    Message,
    Source,
    error_message,
    success_message,
)
from portalrpc.resolver import deep_resolve
from portalrpc.source import compile_function
from portalrpc.types import Transport

logger = logging.getLogger(__name__)

SCRIPT_FUNCTION_NAME = "__portal_script__"


class ExecutorState(str, Enum):
    """Lifecycle states of an Executor."""

    STOPPED = "stopped"
    LISTENING = "listening"


class Executor:
    """Runs scripts and registered functions on behalf of an Initiator.

    The Executor subscribes to the transport on construction but ignores
    every message until ``start()`` is called, so it can be created before
    its owner is ready to serve and stopped without racing in-flight
    messages.

    Example:
        ```python
        executor = Executor(transport)
        executor.start()
        ```
    """

    def __init__(
        self,
        transport: Transport,
        config: ExecutorConfig | None = None,
    ) -> None:
        """Initialize the Executor.

        Args:
            transport: The message transport
            config: Optional Executor configuration
        """
        self.transport = transport
        self._config = config or ExecutorConfig()

        # Evaluation namespace: registered functions live here as globals
        self.namespace: dict[str, Any] = {"__name__": "__portal__"}
        if self._config.namespace:
            self.namespace.update(self._config.namespace)

        self._functions: list[str] = []
        self._state = ExecutorState.STOPPED
        self._script_count = 0

        # Request handler tasks, tracked for drain()
        self._pending_tasks: set[asyncio.Task[None]] = set()

        transport.on_message(self._on_message)

        if self._config.autostart:
            self.start()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ExecutorState:
        """The current lifecycle state."""
        return self._state

    @property
    def listening(self) -> bool:
        """Whether requests are currently answered."""
        return self._state is ExecutorState.LISTENING

    @property
    def functions(self) -> tuple[str, ...]:
        """Names of the functions added so far, in insertion order."""
        return tuple(self._functions)

    def start(self) -> None:
        """Start answering requests."""
        self._state = ExecutorState.LISTENING

    def stop(self) -> None:
        """Stop answering requests. Handlers already running finish normally."""
        self._state = ExecutorState.STOPPED

    async def drain(self) -> None:
        """Wait for every request handler currently running to finish."""
        if self._pending_tasks:
            await asyncio.gather(*self._pending_tasks, return_exceptions=True)

    def get_stats(self) -> dict[str, int]:
        """Get statistics about the Executor.

        Returns:
            Dict with 'functions' and 'pending' counts
        """
        return {
            "functions": len(self._functions),
            "pending": len(self._pending_tasks),
        }

    # -------------------------------------------------------------------------
    # Message handling
    # -------------------------------------------------------------------------

    def _on_message(self, message: Message) -> None:
        """Dispatch an inbound message to the matching operation."""
        if self._state is not ExecutorState.LISTENING:
            logger.debug("Executor ignoring message: not listening")
            return

        if message.source != Source.INITIATOR or not message.action:
            logger.debug("Executor ignoring message: unknown source or unspecified action")
            return

        logger.debug("Executor received %s", message)

        payload = message.payload
        callback_id = message.callback_id

        match message.action:
            case Action.ADD_FUNCTION:
                self._spawn(
                    self.add_function(payload.get("name"), payload.get("fnString"), callback_id),
                    "adding function",
                )
            case Action.RUN_FUNCTION:
                params = payload.get("params")
                if params is None:
                    params = []
                elif not isinstance(params, list):
                    params = [params]
                self._spawn(
                    self.run_function(payload.get("name"), callback_id, *params),
                    "running function",
                )
            case Action.RUN_SCRIPT:
                self._spawn(
                    self.run_script(payload.get("script"), callback_id),
                    "running script",
                )
            case action:
                self._spawn(
                    self._send(error_message(Action.ERROR.value, f"Unknown action '{action}'", callback_id)),
                    "answering unknown action",
                )

    def _spawn(self, operation: Awaitable[Any], what: str) -> None:
        task = asyncio.create_task(self._run_handler(operation, what))
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def _run_handler(self, operation: Awaitable[Any], what: str) -> None:
        # The peer has already been told about the failure; keep listening.
        try:
            await operation
        except Exception as e:
            logger.warning("Error %s: %s", what, e)

    async def _send(self, message: Message) -> None:
        logger.debug("Executor sending %s", message)
        await self.transport.send(message)

    def _error_payload(self, error: Exception) -> Any:
        """Convert an exception into the ``error`` field of a response."""
        if self._config.on_send_error is not None:
            try:
                transformed = self._config.on_send_error(error)
            except Exception as e:
                logger.warning("on_send_error callback failed, sending original error: %s", e)
                transformed = None
            if transformed is not None:
                error = transformed

        if isinstance(error, RemoteError):
            if error.name is None:
                return error.message
            return {"message": error.message, "name": error.name}
        return {"message": str(error), "name": type(error).__name__}

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def run_script(self, script: str, request_id: str) -> Any:
        """Run ``script`` in the evaluation namespace and report the result.

        The script is the body of a coroutine function, so it may use
        ``return`` and ``await``. Names it assigns stay local to the run
        unless declared ``global``; functions added earlier are reachable as
        globals.

        Args:
            script: Python statements
            request_id: Correlation id of the request

        Returns:
            The deep-resolved return value of the script

        Raises:
            Exception: Whatever the script (or resolving its result) raised,
                after it has been reported to the Initiator
        """
        try:
            result = await deep_resolve(self._evaluate(script))
        except Exception as e:
            await self._send(error_message(
                Action.RUN_SCRIPT_COMPLETE.value, self._error_payload(e), request_id
            ))
            raise

        await self._send(success_message(Action.RUN_SCRIPT_COMPLETE.value, result, request_id))
        return result

    async def add_function(self, name: str, function_source: str, request_id: str) -> str:
        """Compile ``function_source`` and bind it under ``name``.

        Args:
            name: Name to register the function under
            function_source: Source text of the function
            request_id: Correlation id of the request

        Returns:
            The registered name

        Raises:
            ExecutorValidationError: If ``name`` is not usable
            Exception: If the source cannot be compiled
        """
        error: str | None = None
        if not isinstance(name, str) or not name:
            error = "Function name must be a string"
        elif not name.isidentifier() or keyword.iskeyword(name):
            error = f"Function name must be a valid identifier: '{name}'"

        if error is not None:
            await self._send(error_message(Action.ADD_FUNCTION_COMPLETE.value, error, request_id))
            raise ExecutorValidationError(error)

        try:
            fn = compile_function(name, function_source, self.namespace, self._config.filename)
        except Exception as e:
            await self._send(error_message(
                Action.ADD_FUNCTION_COMPLETE.value, self._error_payload(e), request_id
            ))
            raise

        self.namespace[name] = fn
        if name not in self._functions:
            self._functions.append(name)

        await self._send(success_message(Action.ADD_FUNCTION_COMPLETE.value, name, request_id))
        return name

    async def run_function(self, name: str, request_id: str, *params: Any) -> Any:
        """Call a registered function and report the result.

        Parameters are deep-resolved before the call and passed positionally
        as values, so string arguments are never mistaken for code.

        Args:
            name: Name of a previously added function
            request_id: Correlation id of the request
            *params: Arguments for the function

        Returns:
            The deep-resolved return value

        Raises:
            ExecutorValidationError: If ``name`` was never added
            Exception: Whatever the function (or resolving its result) raised
        """
        if name not in self._functions:
            error = f"Unknown function '{name}'"
            await self._send(error_message(Action.RUN_FUNCTION_COMPLETE.value, error, request_id))
            raise ExecutorValidationError(error)

        try:
            args = await deep_resolve(list(params))
            result = await deep_resolve(self.namespace[name](*args))
        except Exception as e:
            await self._send(error_message(
                Action.RUN_FUNCTION_COMPLETE.value, self._error_payload(e), request_id
            ))
            raise

        await self._send(success_message(Action.RUN_FUNCTION_COMPLETE.value, result, request_id))
        return result

    def _evaluate(self, script: str) -> Any:
        """Compile ``script`` as a coroutine function body and start it."""
        if not isinstance(script, str):
            raise TypeError(f"Script must be a string, got {type(script).__name__}")
        self._script_count += 1
        filename = f"{self._config.filename}:script-{self._script_count}"

        # Top-level return and await parse fine; only compiling rejects them
        tree = ast.parse(script, filename, "exec")
        module = ast.parse(f"async def {SCRIPT_FUNCTION_NAME}():\n    pass\n", filename, "exec")
        if tree.body:
            module.body[0].body = tree.body
        ast.fix_missing_locations(module)

        code = compile(module, filename, "exec")
        defined: dict[str, Any] = {}
        exec(code, self.namespace, defined)
        return defined[SCRIPT_FUNCTION_NAME]()
