"""Calculator Executor served over WebSockets.

Every connection gets its own Executor; clients push their functions in
and call them by name.

Run:
    uv run python examples/calculator/server.py
"""

import asyncio
import logging
import math

from portalrpc import ExecutorConfig, WebSocketExecutorServer, WebSocketServerConfig


async def main() -> None:
    """Run the calculator server."""
    logging.basicConfig(level=logging.INFO)

    config = WebSocketServerConfig(
        host="127.0.0.1",
        port=8080,
        executor=ExecutorConfig(namespace={"math": math}, filename="<calculator>"),
    )
    server = WebSocketExecutorServer(config)
    await server.start()

    print(f"🧮 Calculator server running on {server.url}")
    print()
    print("Run client with: uv run python examples/calculator/client.py")
    print("Press Ctrl+C to stop")

    try:
        await asyncio.Event().wait()
    except KeyboardInterrupt:
        print("\nShutting down...")
    finally:
        await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
