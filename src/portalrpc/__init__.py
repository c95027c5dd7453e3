"""portalrpc - an asynchronous RPC bridge between two isolated contexts.

An Initiator registers functions inside an Executor, calls them and runs
scripts there, over any channel able to ``send`` a message and deliver
incoming ones to an ``on_message`` handler. Results come back fully
resolved, even when they are nested graphs of awaitables and callables.
"""

from portalrpc.config import (
    ExecutorConfig,
    InitiatorConfig,
    WebSocketClientConfig,
    WebSocketServerConfig,
)
from portalrpc.deferred import Deferred
from portalrpc.error import (
    ConnectionClosedError,
    ExecutorValidationError,
    FunctionSourceError,
    PortalError,
    ProtocolError,
    RemoteError,
    UnresolvableValueError,
)
from portalrpc.executor import Executor, ExecutorState
from portalrpc.initiator import Initiator
from portalrpc.memory_transport import MemoryTransport, create_transport_pair
from portalrpc.protocol import (
    Action,
    Message,
    Source,
    error_message,
    parse_message,
    request_message,
    serialize_message,
    success_message,
)
from portalrpc.resolver import deep_resolve
from portalrpc.source import compile_function, function_source
from portalrpc.stubs import RemoteAPI, RemoteFunction
from portalrpc.types import Transport
from portalrpc.ws_session import WebSocketExecutorServer, WebSocketInitiatorClient
from portalrpc.ws_transport import WebSocketClientTransport, WebSocketServerTransport

__version__ = "0.1.0"

__all__ = [
    # Peers
    "Executor",
    "ExecutorState",
    "Initiator",
    "RemoteAPI",
    "RemoteFunction",
    # Protocol
    "Action",
    "Message",
    "Source",
    "request_message",
    "success_message",
    "error_message",
    "serialize_message",
    "parse_message",
    # Building blocks
    "Deferred",
    "deep_resolve",
    "function_source",
    "compile_function",
    # Errors
    "PortalError",
    "ProtocolError",
    "ExecutorValidationError",
    "UnresolvableValueError",
    "FunctionSourceError",
    "RemoteError",
    "ConnectionClosedError",
    # Configuration (Pydantic models)
    "ExecutorConfig",
    "InitiatorConfig",
    "WebSocketServerConfig",
    "WebSocketClientConfig",
    # Transports
    "Transport",
    "MemoryTransport",
    "create_transport_pair",
    "WebSocketClientTransport",
    "WebSocketServerTransport",
    "WebSocketExecutorServer",
    "WebSocketInitiatorClient",
]
