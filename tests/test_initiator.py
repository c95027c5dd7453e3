"""End-to-end tests: an Initiator driving an Executor over an in-memory channel.

NO MOCKING - both peers are real and talk only through their transports.
"""

import asyncio
import logging
import math

import pytest

from portalrpc.config import InitiatorConfig
from portalrpc.error import ConnectionClosedError, FunctionSourceError, RemoteError
from portalrpc.initiator import Initiator
from portalrpc.memory_transport import MemoryTransport
from portalrpc.protocol import Message, success_message
from portalrpc.stubs import RemoteAPI, RemoteFunction


def throw_error():
    raise Exception("some error")


async def reject_promise():
    raise ValueError("because i said so")


HOST_API = {
    "returnString": lambda: "someString",
    "returnNumber": lambda: 123,
    "returnTrue": lambda: True,
    "returnFalse": lambda: False,
    "returnNone": lambda: None,
    "returnNaN": lambda: float("nan"),
    "returnArray": lambda: ["one", 2, True, False, None, {"sub": 1}, asyncio.sleep(0, 3), [1, 2, asyncio.sleep(0, 3)]],
    "returnPromise": lambda: asyncio.sleep(0, {"dale": 3}),
    "rejectPromise": reject_promise,
    "throwError": throw_error,
    "returnJSON": lambda: {"one": 1, "two": "too", "three": True},
    "echo": lambda message: f"{message}, {type(message).__name__}",
    "add": lambda a, b: a + b,
}


@pytest.mark.asyncio
class TestCreateAPI:

    async def test_installs_every_function(self, bridge) -> None:
        api = await bridge.initiator.create_api(HOST_API)

        assert isinstance(api, RemoteAPI)
        assert set(api) == set(HOST_API)
        assert len(api) == len(HOST_API)
        assert isinstance(api.add, RemoteFunction)
        assert api["add"] is api.add
        assert set(bridge.executor.functions) == set(HOST_API)

    async def test_factory(self, bridge) -> None:
        api = await bridge.initiator.create_api(lambda: {"sum": lambda a, b: a + b})
        assert "sum" in api
        assert await api.sum(10, 20) == 30

    async def test_source_strings(self, bridge) -> None:
        api = await bridge.initiator.create_api({
            "triple": "lambda x: x * 3",
            "greet": "def greet(name):\n    return 'Hello, ' + name\n",
        })
        assert await api.triple(3) == 9
        assert await api.greet("World") == "Hello, World"

    async def test_empty_api(self, bridge) -> None:
        api = await bridge.initiator.create_api({})
        assert len(api) == 0

    async def test_bad_name_fails_whole_call(self, bridge) -> None:
        with pytest.raises(RemoteError) as exc_info:
            await bridge.initiator.create_api({5: "lambda: 1", "ok": "lambda: 2"})

        assert exc_info.value.message == "Function name must be a string"
        assert exc_info.value.name is None
        assert 5 not in bridge.executor.functions

    async def test_unserializable_function(self, bridge) -> None:
        with pytest.raises(FunctionSourceError):
            await bridge.initiator.create_api({"length": len})
        assert bridge.initiator_transport.sent_messages == []

    async def test_not_a_mapping(self, bridge) -> None:
        with pytest.raises(TypeError):
            await bridge.initiator.create_api(lambda: [1, 2])

    async def test_api_is_read_only(self, bridge) -> None:
        api = await bridge.initiator.create_api({"one": lambda: 1})
        with pytest.raises(AttributeError):
            api.one = None
        with pytest.raises(AttributeError):
            api.missing


@pytest.mark.asyncio
class TestRemoteCalls:
    """Values of every kind come back resolved."""

    async def api(self, bridge) -> RemoteAPI:
        return await bridge.initiator.create_api(HOST_API)

    async def test_string(self, bridge) -> None:
        api = await self.api(bridge)
        assert await api.returnString() == "someString"

    async def test_number(self, bridge) -> None:
        api = await self.api(bridge)
        assert await api.returnNumber() == 123

    async def test_booleans(self, bridge) -> None:
        api = await self.api(bridge)
        assert await api.returnTrue() is True
        assert await api.returnFalse() is False

    async def test_none(self, bridge) -> None:
        api = await self.api(bridge)
        assert await api.returnNone() is None

    async def test_nan(self, bridge) -> None:
        api = await self.api(bridge)
        assert math.isnan(await api.returnNaN())

    async def test_array(self, bridge) -> None:
        api = await self.api(bridge)
        assert await api.returnArray() == [
            "one", 2, True, False, None, {"sub": 1}, 3, [1, 2, 3],
        ]

    async def test_promise(self, bridge) -> None:
        api = await self.api(bridge)
        assert await api.returnPromise() == {"dale": 3}

    async def test_rejected_promise(self, bridge) -> None:
        api = await self.api(bridge)
        with pytest.raises(RemoteError) as exc_info:
            await api.rejectPromise()
        assert exc_info.value.message == "because i said so"
        assert exc_info.value.name == "ValueError"

    async def test_throws_error(self, bridge) -> None:
        api = await self.api(bridge)
        with pytest.raises(RemoteError, match="some error"):
            await api.throwError()

    async def test_json(self, bridge) -> None:
        api = await self.api(bridge)
        assert await api.returnJSON() == {"one": 1, "two": "too", "three": True}

    async def test_parameters(self, bridge) -> None:
        api = await self.api(bridge)
        assert await api.add(2, 3) == 5
        assert await api.echo("some string") == "some string, str"
        assert await api.echo(1) == "1, int"
        assert await api.echo(True) == "True, bool"
        assert await api.echo(None) == "None, NoneType"

    async def test_awaitable_arguments_resolved_locally(self, bridge) -> None:
        api = await self.api(bridge)
        assert await api.add(asyncio.sleep(0, 2), lambda: 3) == 5
        params = bridge.initiator_transport.sent_messages[-1].payload["params"]
        assert params == [2, 3]

    async def test_call_returns_task(self, bridge) -> None:
        api = await self.api(bridge)
        call = api.add(1, 1)
        assert isinstance(call, asyncio.Task)
        assert await call == 2

    async def test_keyword_arguments_rejected(self, bridge) -> None:
        api = await self.api(bridge)
        with pytest.raises(NotImplementedError):
            api.add(a=1, b=2)

    async def test_run_function_unknown(self, bridge) -> None:
        with pytest.raises(RemoteError) as exc_info:
            await bridge.initiator.run_function("notfunction")
        assert exc_info.value.message == "Unknown function 'notfunction'"
        assert str(exc_info.value) == "Unknown function 'notfunction'"
        assert bridge.executor.functions == ()


@pytest.mark.asyncio
class TestRunScript:

    async def test_value(self, bridge, capsys) -> None:
        result = await bridge.initiator.run_script('print("test")\nreturn 4')
        assert result == 4
        assert capsys.readouterr().out == "test\n"

    async def test_error_object(self, bridge) -> None:
        with pytest.raises(RemoteError) as exc_info:
            await bridge.initiator.run_script("raise Exception('boom')")
        assert exc_info.value.message == "boom"
        assert exc_info.value.name == "Exception"

    async def test_uses_added_functions(self, bridge) -> None:
        await bridge.initiator.create_api({"add": lambda a, b: a + b})
        assert await bridge.initiator.run_script("return add(2, 5)") == 7

    async def test_nested_result(self, bridge) -> None:
        result = await bridge.initiator.run_script(
            "return {'a': [asyncio.sleep(0, 1), lambda: asyncio.sleep(0, 2)]}"
        )
        assert result == {"a": [1, 2]}


@pytest.mark.asyncio
class TestCorrelation:

    async def test_reverse_order_responses(self, bridge_factory, holding_transport, waiter) -> None:
        holding = holding_transport
        bridge = bridge_factory(executor_transport=holding)
        api_task = asyncio.create_task(bridge.initiator.create_api({"add": lambda a, b: a + b}))
        await waiter(lambda: len(holding.held) == 1)
        await holding.release()
        api = await api_task

        first = api.add(1, 2)
        second = api.add(10, 20)
        await waiter(lambda: len(holding.held) == 2)

        sent_ids = [m.callback_id for m in holding.held]
        await holding.release(reverse=True)

        assert await first == 3
        assert await second == 30
        assert sent_ids[0] != sent_ids[1]
        assert bridge.initiator.pending_count == 0

    async def test_many_concurrent_calls(self, bridge) -> None:
        api = await bridge.initiator.create_api({"square": lambda x: x * x})
        results = await asyncio.gather(*(api.square(i) for i in range(50)))
        assert results == [i * i for i in range(50)]
        assert bridge.initiator.pending_count == 0

    async def test_unique_callback_ids(self, bridge) -> None:
        api = await bridge.initiator.create_api({"one": lambda: 1})
        await asyncio.gather(*(api.one() for _ in range(20)))
        ids = [m.callback_id for m in bridge.initiator_transport.sent_messages]
        assert len(ids) == len(set(ids))

    async def test_callback_id_prefix(self) -> None:
        transport = MemoryTransport()
        initiator = Initiator(transport, InitiatorConfig(callback_id_prefix="tab1"))
        assert initiator._next_callback_id() == "tab1-1"
        assert initiator._next_callback_id() == "tab1-2"

    async def test_independent_initiators_do_not_collide(self) -> None:
        a = Initiator(MemoryTransport())
        b = Initiator(MemoryTransport())
        assert a._next_callback_id() != b._next_callback_id()

    async def test_unknown_callback_id_logged(self, bridge, caplog) -> None:
        with caplog.at_level(logging.ERROR, logger="portalrpc.initiator"):
            bridge.initiator._on_message(success_message("runScriptComplete", 1, "nobody"))
        assert "nobody" in caplog.text
        assert bridge.initiator.pending_count == 0

    async def test_duplicate_response_ignored(self, bridge) -> None:
        assert await bridge.initiator.run_script("return 1") == 1
        response = bridge.executor_transport.sent_messages[-1]
        bridge.initiator._on_message(response)
        assert bridge.initiator.pending_count == 0

    async def test_entry_removed_on_failure(self, bridge) -> None:
        with pytest.raises(RemoteError):
            await bridge.initiator.run_script("raise Exception('x')")
        assert bridge.initiator.pending_count == 0

    async def test_foreign_source_ignored(self, bridge_factory, waiter) -> None:
        bridge = bridge_factory(start=False)
        pending = asyncio.create_task(bridge.initiator.request("runScript", {"script": "return 1"}))
        await waiter(lambda: bool(bridge.initiator_transport.sent_messages))
        callback_id = bridge.initiator_transport.sent_messages[-1].callback_id

        bridge.initiator._on_message(Message("initiator", "runScriptComplete", {"result": 9}, callback_id))
        bridge.initiator._on_message(Message("executor", "", {"result": 9}, callback_id))
        assert bridge.initiator.pending_count == 1

        bridge.initiator._on_message(success_message("runScriptComplete", 5, callback_id))
        assert await pending == 5


@pytest.mark.asyncio
class TestErrorReconstruction:

    async def test_message_and_name(self, bridge) -> None:
        with pytest.raises(RemoteError) as exc_info:
            await bridge.initiator.run_script("raise KeyError('k')")
        assert exc_info.value.name == "KeyError"

    async def test_unknown_action_error_response(self, bridge) -> None:
        with pytest.raises(RemoteError) as exc_info:
            await bridge.initiator.request("explode", {})
        assert exc_info.value.message == "Unknown action 'explode'"


class TestRemoteErrorFromPayload:

    def test_from_payload_pair(self) -> None:
        error = RemoteError.from_payload({"message": "boom", "name": "TypeError"})
        assert (error.message, error.name) == ("boom", "TypeError")
        assert str(error) == "boom"

    def test_from_payload_raw(self) -> None:
        error = RemoteError.from_payload("plain text")
        assert error.message == "plain text"
        assert error.name is None

    def test_from_payload_partial_mapping_is_raw(self) -> None:
        raw = {"message": "only message"}
        error = RemoteError.from_payload(raw)
        assert error.message == raw
        assert error.name is None


@pytest.mark.asyncio
class TestTeardown:

    async def test_close_rejects_pending(self, bridge_factory) -> None:
        bridge = bridge_factory(start=False)
        pending = asyncio.create_task(bridge.initiator.run_script("return 1"))
        await asyncio.sleep(0)
        assert bridge.initiator.pending_count == 1

        bridge.initiator.close()

        with pytest.raises(ConnectionClosedError):
            await pending
        assert bridge.initiator.pending_count == 0
        assert bridge.initiator.closed

    async def test_closed_initiator_refuses_requests(self, bridge) -> None:
        bridge.initiator.close()
        with pytest.raises(ConnectionClosedError):
            await bridge.initiator.run_script("return 1")

    async def test_send_failure_rejects_call(self, bridge) -> None:
        bridge.initiator_transport.close()
        with pytest.raises(ConnectionError):
            await bridge.initiator.run_script("return 1")
        assert bridge.initiator.pending_count == 0

    async def test_no_default_timeout(self, bridge_factory) -> None:
        bridge = bridge_factory(start=False)
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(bridge.initiator.run_script("return 1"), timeout=0.05)
