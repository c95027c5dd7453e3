"""Serving an Executor and connecting an Initiator over WebSockets.

``WebSocketExecutorServer`` runs an aiohttp application that gives every
connection its own listening Executor. ``WebSocketInitiatorClient`` connects
to such a server and exposes the Initiator operations.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from aiohttp import web

from portalrpc.config import (
    InitiatorConfig,
    WebSocketClientConfig,
    WebSocketServerConfig,
)
from portalrpc.error import ConnectionClosedError
from portalrpc.executor import Executor
from portalrpc.initiator import ApiSpec, Initiator
from portalrpc.stubs import RemoteAPI
from portalrpc.ws_transport import WebSocketClientTransport, WebSocketServerTransport

logger = logging.getLogger(__name__)


class WebSocketExecutorServer:
    """WebSocket server hosting one Executor per connection.

    Executors never share a namespace: functions added over one connection
    are invisible to the others.

    Example:
        ```python
        server = WebSocketExecutorServer(WebSocketServerConfig(port=8080))
        await server.start()
        # ... server is running ...
        await server.stop()
        ```
    """

    def __init__(self, config: WebSocketServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration
        """
        self._config = config or WebSocketServerConfig()
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._connections: list[tuple[Executor, WebSocketServerTransport]] = []

    @property
    def url(self) -> str:
        return f"ws://{self._config.host}:{self._config.port}{self._config.path}"

    @property
    def executors(self) -> list[Executor]:
        """Executors of the currently open connections."""
        return [executor for executor, _ in self._connections]

    async def start(self) -> None:
        """Start the server."""
        self._app = web.Application()
        self._app.router.add_get(self._config.path, self.handle_websocket)

        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await self._site.start()

        logger.info("WebSocket Executor server started on %s", self.url)

    async def stop(self) -> None:
        """Stop the server."""
        for executor, transport in list(self._connections):
            executor.stop()
            await transport.close()
        self._connections.clear()

        if self._site:
            await self._site.stop()
            self._site = None
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        self._app = None

    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Handle an incoming WebSocket connection.

        Usable directly as an aiohttp route handler.
        """
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        transport = WebSocketServerTransport(ws)
        executor = Executor(transport, self._config.executor)
        connection = (executor, transport)
        self._connections.append(connection)
        executor.start()

        try:
            await transport.run()
        except Exception as e:
            logger.debug("WebSocket session ended: %s", e)
        finally:
            executor.stop()
            if connection in self._connections:
                self._connections.remove(connection)

        return ws


class WebSocketInitiatorClient:
    """Initiator connected to a remote Executor over a WebSocket.

    Example:
        ```python
        async with WebSocketInitiatorClient("ws://localhost:8080/portal") as client:
            api = await client.create_api({"add": lambda a, b: a + b})
            print(await api.add(2, 3))
        ```
    """

    def __init__(self, config: WebSocketClientConfig | str) -> None:
        """Initialize the client.

        Args:
            config: Client configuration, or just the endpoint URL
        """
        if isinstance(config, str):
            config = WebSocketClientConfig(url=config)
        self._config = config
        self._transport: WebSocketClientTransport | None = None
        self._initiator: Initiator | None = None

    @property
    def initiator(self) -> Initiator:
        if self._initiator is None:
            raise RuntimeError("Client not connected")
        return self._initiator

    async def connect(self) -> None:
        """Connect to the server."""
        transport = WebSocketClientTransport(self._config.url)
        initiator = Initiator(transport, self._config.initiator or InitiatorConfig())
        transport.on_close(self._on_transport_closed(initiator))
        await transport.connect()
        self._transport = transport
        self._initiator = initiator

    @staticmethod
    def _on_transport_closed(initiator: Initiator) -> Callable[[], None]:
        def reject_pending() -> None:
            initiator.close(ConnectionClosedError("WebSocket closed"))
        return reject_pending

    async def close(self) -> None:
        """Close the connection, rejecting calls still in flight."""
        if self._initiator is not None:
            self._initiator.close(ConnectionClosedError("WebSocket closed"))
        if self._transport is not None:
            await self._transport.close()
            self._transport = None

    async def create_api(self, api: ApiSpec | Callable[[], ApiSpec]) -> RemoteAPI:
        """Add functions to the remote Executor. See ``Initiator.create_api``."""
        return await self.initiator.create_api(api)

    async def run_function(self, name: str, *args: Any) -> Any:
        """Call a function added earlier."""
        return await self.initiator.run_function(name, *args)

    async def run_script(self, script: str) -> Any:
        """Run a script in the remote Executor."""
        return await self.initiator.run_script(script)

    async def __aenter__(self) -> WebSocketInitiatorClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
