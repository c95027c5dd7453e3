"""Message protocol for the portal bridge.

Every exchange is one ``Message`` envelope:

    {"source": ..., "action": ..., "payload": {...},
     "callbackId": ..., "success": ...}

Requests travel Initiator -> Executor, responses Executor -> Initiator. This
module only defines the envelope and its vocabulary; producing payloads that
are safe to transmit is the Resolver's job. ``serialize_message`` and
``parse_message`` are provided for text transports such as WebSockets.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from portalrpc.error import ProtocolError


class Source(str, Enum):
    """Which side of the bridge produced a message."""

    INITIATOR = "initiator"
    EXECUTOR = "executor"


class Action(str, Enum):
    """The fixed vocabulary of message actions."""

    # Initiator requests
    ADD_FUNCTION = "addFunction"
    RUN_FUNCTION = "runFunction"
    RUN_SCRIPT = "runScript"

    # Executor responses
    ADD_FUNCTION_COMPLETE = "addFunctionComplete"
    RUN_FUNCTION_COMPLETE = "runFunctionComplete"
    RUN_SCRIPT_COMPLETE = "runScriptComplete"
    ERROR = "error"


REQUEST_ACTIONS = frozenset({
    Action.ADD_FUNCTION.value,
    Action.RUN_FUNCTION.value,
    Action.RUN_SCRIPT.value,
})

RESPONSE_ACTIONS = frozenset({
    Action.ADD_FUNCTION_COMPLETE.value,
    Action.RUN_FUNCTION_COMPLETE.value,
    Action.RUN_SCRIPT_COMPLETE.value,
    Action.ERROR.value,
})


@dataclass(frozen=True, slots=True)
class Message:
    """A request or response envelope.

    ``source`` and ``action`` are kept as plain strings so that a message
    carrying an unknown action can still be represented and answered.
    ``success`` is only meaningful on responses.
    """

    source: str
    action: str
    payload: dict[str, Any] = field(default_factory=dict)
    callback_id: str = ""
    success: bool = True

    def to_json(self) -> dict[str, Any]:
        """Convert to the wire dict."""
        return {
            "source": self.source,
            "action": self.action,
            "payload": self.payload,
            "callbackId": self.callback_id,
            "success": self.success,
        }

    @staticmethod
    def from_json(data: Any) -> Message:
        """Parse from a wire dict.

        Only the envelope's structure is checked here. Whether the source and
        action make sense is decided by the receiving peer.
        """
        if not isinstance(data, dict):
            msg = f"Message must be an object, got {type(data).__name__}"
            raise ProtocolError(msg)

        source = data.get("source")
        if not isinstance(source, str):
            msg = f"Message source must be string, got {type(source).__name__}"
            raise ProtocolError(msg)

        action = data.get("action")
        if action is None:
            action = ""
        if not isinstance(action, str):
            msg = f"Message action must be string, got {type(action).__name__}"
            raise ProtocolError(msg)

        payload = data.get("payload")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            msg = f"Message payload must be an object, got {type(payload).__name__}"
            raise ProtocolError(msg)

        callback_id = data.get("callbackId", "")
        if not isinstance(callback_id, str):
            msg = f"Message callbackId must be string, got {type(callback_id).__name__}"
            raise ProtocolError(msg)

        success = data.get("success", True)
        if not isinstance(success, bool):
            msg = f"Message success must be boolean, got {type(success).__name__}"
            raise ProtocolError(msg)

        return Message(source, action, payload, callback_id, success)


def request_message(action: str, payload: dict[str, Any], callback_id: str) -> Message:
    """Build an Initiator request."""
    return Message(Source.INITIATOR.value, action, payload, callback_id)


def success_message(action: str, result: Any, callback_id: str) -> Message:
    """Build a successful Executor response carrying ``result``."""
    return Message(Source.EXECUTOR.value, action, {"result": result}, callback_id, True)


def error_message(action: str, error: Any, callback_id: str) -> Message:
    """Build a failed Executor response carrying ``error``."""
    return Message(Source.EXECUTOR.value, action, {"error": error}, callback_id, False)


def serialize_message(message: Message) -> str:
    """Encode a message as JSON text.

    NaN and the infinities use Python's JSON extensions so they survive a
    round trip.
    """
    return json.dumps(message.to_json())


def parse_message(data: str | bytes) -> Message:
    """Decode JSON text into a message.

    Raises:
        ProtocolError: If the text is not JSON or not a valid envelope
    """
    try:
        decoded = json.loads(data)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e
    return Message.from_json(decoded)
