"""Calculator client that ships its functions to a remote Executor.

Run (after starting server):
    uv run python examples/calculator/client.py
"""

import asyncio

from portalrpc import RemoteError, WebSocketInitiatorClient


def divide(a, b):
    if b == 0:
        raise ZeroDivisionError("Division by zero")
    return a / b


async def main() -> None:
    """Run the calculator client."""
    print("🧮 Calculator Client")
    print("=" * 40)

    async with WebSocketInitiatorClient("ws://127.0.0.1:8080/portal") as client:
        calc = await client.create_api({
            "add": lambda a, b: a + b,
            "subtract": lambda a, b: a - b,
            "hypot": "lambda a, b: math.hypot(a, b)",
            "divide": divide,
        })

        print("\nTesting add(5, 3)...")
        print(f"  5 + 3 = {await calc.add(5, 3)}")

        print("\nTesting subtract(10, 4)...")
        print(f"  10 - 4 = {await calc.subtract(10, 4)}")

        print("\nTesting hypot(3, 4)...")
        print(f"  hypot(3, 4) = {await calc.hypot(3, 4)}")

        print("\nTesting divide(20, 4)...")
        print(f"  20 ÷ 4 = {await calc.divide(20, 4)}")

        # Arguments are resolved locally before they are sent
        print("\nTesting add(add(1, 2), 3)...")
        print(f"  (1 + 2) + 3 = {await calc.add(calc.add(1, 2), 3)}")

        print("\nTesting divide(10, 0) - should fail...")
        try:
            result = await calc.divide(10, 0)
            print(f"  Unexpected success: {result}")
        except RemoteError as e:
            print(f"  Expected error: {e.name}: {e}")

        print("\nRunning a script...")
        total = await client.run_script("return sum(math.factorial(n) for n in range(5))")
        print(f"  0! + 1! + 2! + 3! + 4! = {total}")

    print("\n" + "=" * 40)
    print("✅ All tests completed!")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except Exception as e:
        print(f"\n❌ Error: {e}")
        print("Make sure the server is running: uv run python examples/calculator/server.py")
