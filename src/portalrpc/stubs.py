"""User-facing proxy objects for functions added to an Executor.

``Initiator.create_api`` returns a ``RemoteAPI``: attribute or item access
yields a ``RemoteFunction``, and calling one performs a round trip to the
Executor.

Example:
    ```python
    api = await initiator.create_api({"add": lambda a, b: a + b})
    assert await api.add(2, 3) == 5
    assert await api["add"](2, 3) == 5
    ```
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Iterator

if TYPE_CHECKING:
    from portalrpc.initiator import Initiator


class RemoteFunction:
    """A function living in the Executor, callable from the Initiator."""
    __slots__ = ('_initiator', 'name')

    def __init__(self, initiator: Initiator, name: str) -> None:
        """Initialize the stub.

        Args:
            initiator: The Initiator performing the round trips
            name: The name the function was added under
        """
        self._initiator = initiator
        self.name = name

    def __call__(self, *args: Any, **kwargs: Any) -> asyncio.Task[Any]:
        """Call the remote function.

        The call starts immediately. Arguments are deep-resolved locally
        before they are sent, so awaitables and zero-argument callables may
        be passed.

        Args:
            *args: Positional arguments

        Returns:
            A task settling with the deep-resolved result, or failing with a
            RemoteError
        """
        if kwargs:
            msg = "Keyword arguments are not supported in remote calls"
            raise NotImplementedError(msg)
        return asyncio.ensure_future(self._initiator.run_function(self.name, *args))

    def __repr__(self) -> str:
        return f"RemoteFunction({self.name!r})"


class RemoteAPI:
    """The set of functions installed by ``Initiator.create_api``."""
    __slots__ = ('_functions',)

    def __init__(self, functions: dict[str, RemoteFunction] | None = None) -> None:
        # Use object.__setattr__ to avoid triggering __setattr__
        object.__setattr__(self, "_functions", dict(functions or {}))

    def _install(self, function: RemoteFunction) -> None:
        self._functions[function.name] = function

    def __getattr__(self, name: str) -> RemoteFunction:
        if name.startswith("_"):
            # Avoid infinite recursion for private attrs
            msg = f"'{type(self).__name__}' object has no attribute '{name}'"
            raise AttributeError(msg)
        try:
            return self._functions[name]
        except KeyError:
            msg = f"Remote API has no function '{name}'"
            raise AttributeError(msg) from None

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Remote API is read-only")

    def __getitem__(self, name: str) -> RemoteFunction:
        return self._functions[name]

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def __iter__(self) -> Iterator[str]:
        return iter(self._functions)

    def __len__(self) -> int:
        return len(self._functions)

    def __repr__(self) -> str:
        names = ", ".join(self._functions)
        return f"RemoteAPI({names})"
