"""Pydantic configuration models for portalrpc.

These models are only used at startup/initialization. Messages on the hot
path are plain frozen dataclasses (see ``portalrpc.protocol``).
"""

from __future__ import annotations

from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExecutorConfig(BaseModel):
    """Configuration for an Executor.

    Attributes:
        autostart: Start listening as soon as the Executor is constructed
        filename: Filename prefix used when compiling received code; shows
            up in tracebacks raised by scripts and functions
        namespace: Extra globals seeded into the evaluation namespace
        on_send_error: Optional callback to transform an exception before it
            is sent to the Initiator. Useful for redacting sensitive details.
            Returning None sends the original exception.
    """

    model_config = ConfigDict(
        frozen=False,  # Allow mutation for callback assignment
        arbitrary_types_allowed=True,  # Allow Callable types
    )

    autostart: bool = False
    filename: str = Field(default="<portal>", min_length=1)
    namespace: dict[str, Any] | None = None
    on_send_error: Callable[[Exception], Exception | None] | None = None


class InitiatorConfig(BaseModel):
    """Configuration for an Initiator.

    Attributes:
        callback_id_prefix: Prefix for correlation ids. Defaults to a random
            token so that independent Initiators never share an id space.
    """

    model_config = ConfigDict(frozen=True)

    callback_id_prefix: str | None = Field(
        default=None,
        description="Prefix for generated callback ids",
    )

    @field_validator("callback_id_prefix")
    @classmethod
    def validate_prefix(cls, v: str | None) -> str | None:
        """Validate the callback id prefix."""
        if v is None:
            return v
        if not v:
            raise ValueError("Callback id prefix cannot be empty")
        if any(c.isspace() for c in v):
            raise ValueError("Callback id prefix cannot contain whitespace")
        return v


class WebSocketServerConfig(BaseModel):
    """Configuration for the WebSocket Executor server.

    Attributes:
        host: Host to bind to
        port: Port to bind to
        path: WebSocket endpoint path
        executor: Configuration applied to each per-connection Executor
    """

    model_config = ConfigDict(
        frozen=False,
        arbitrary_types_allowed=True,
    )

    host: str = Field(default="localhost", description="Host to bind to")
    port: int = Field(default=8080, gt=0, le=65535, description="Port to bind to")
    path: str = Field(default="/portal", description="WebSocket endpoint path")
    executor: ExecutorConfig | None = None

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Validate the endpoint path."""
        if not v.startswith("/"):
            raise ValueError("Path must start with '/'")
        return v


class WebSocketClientConfig(BaseModel):
    """Configuration for the WebSocket Initiator client.

    Attributes:
        url: The Executor endpoint URL (ws:// or wss://)
        initiator: Optional Initiator configuration
    """

    model_config = ConfigDict(frozen=False)

    url: str = Field(..., description="Executor endpoint URL")
    initiator: InitiatorConfig | None = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate URL format."""
        if not v:
            raise ValueError("URL cannot be empty")

        valid_schemes = ("ws://", "wss://")
        if not any(v.startswith(scheme) for scheme in valid_schemes):
            raise ValueError(
                f"URL must start with one of: {', '.join(valid_schemes)}"
            )
        return v
