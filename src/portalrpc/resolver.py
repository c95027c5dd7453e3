"""Deep resolution of value graphs.

``deep_resolve`` turns an arbitrary value into a ResolvedValue: a tree made
only of ``None``, ``str``, ``int``, ``float``, ``bool``, ``list`` and
``dict``. Awaitables are awaited and zero-argument callables are called, to
any depth, until nothing pending remains. This is what makes a result safe
to put on the channel.

Dispatch order matters and is:

1. list / tuple  -> every element resolved concurrently, order preserved
2. awaitable     -> awaited once per object, and the outcome resolved again
3. primitive     -> returned unchanged (NaN included)
4. callable      -> called with no arguments, and the outcome resolved again
5. mapping       -> every value resolved concurrently, same key set
   (dataclass instances are treated as mappings of their fields)
6. anything else -> UnresolvableValueError
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
from collections.abc import Awaitable, Mapping
from typing import Any

from portalrpc.error import UnresolvableValueError

ResolvedValue = None | str | int | float | bool | list[Any] | dict[str, Any]

# id(awaitable) -> (awaitable, future settling with its outcome)
_AwaitMemo = dict[int, tuple[Awaitable[Any], asyncio.Future[Any]]]


async def deep_resolve(value: Any) -> Any:
    """Resolve ``value`` until no awaitable or callable remains in it.

    Siblings are resolved concurrently. The first failure in any branch fails
    the whole call, and no partial result is returned. An awaitable that
    occurs more than once in the graph is awaited once and its outcome
    shared, so the same coroutine object may appear in several places.

    Args:
        value: Any value

    Returns:
        A ResolvedValue structurally equivalent to ``value``

    Raises:
        UnresolvableValueError: If a value of unknown kind is found
    """
    return await _resolve(value, {})


async def _resolve(value: Any, awaited: _AwaitMemo) -> Any:
    match value:
        case list() | tuple():
            return await _resolve_sequence(value, awaited)
        case _ if inspect.isawaitable(value):
            return await _resolve(await _shared_future(value, awaited), awaited)
        case None | str() | int() | float():
            return value
        case _ if callable(value):
            return await _resolve(value(), awaited)
        case Mapping():
            return await _resolve_mapping(value, awaited)
        case _ if dataclasses.is_dataclass(value) and not isinstance(value, type):
            fields = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
            return await _resolve_mapping(fields, awaited)
        case _:
            raise UnresolvableValueError(value)


def _shared_future(value: Awaitable[Any], awaited: _AwaitMemo) -> asyncio.Future[Any]:
    # The awaitable itself is kept in the memo so its id cannot be reused
    entry = awaited.get(id(value))
    if entry is None:
        entry = (value, asyncio.ensure_future(value))
        awaited[id(value)] = entry
    return entry[1]


async def _resolve_sequence(items: list[Any] | tuple[Any, ...], awaited: _AwaitMemo) -> list[Any]:
    if not items:
        return []
    return list(await asyncio.gather(*(_resolve(item, awaited) for item in items)))


async def _resolve_mapping(mapping: Mapping[Any, Any], awaited: _AwaitMemo) -> dict[Any, Any]:
    keys = list(mapping.keys())
    if not keys:
        return {}
    values = await asyncio.gather(*(_resolve(mapping[key], awaited) for key in keys))
    return dict(zip(keys, values))
