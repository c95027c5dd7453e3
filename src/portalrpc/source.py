"""Moving functions across the bridge as source text.

Only text crosses the channel. The Initiator turns each exported function
into source with ``function_source``; the Executor rebuilds a callable from
that text inside its own namespace with ``compile_function``. Values the
function captured from the Initiator's closure are not transported, so
exported functions must be self-contained.
"""

from __future__ import annotations

import ast
import inspect
import textwrap
from typing import Any, Callable

from portalrpc.error import FunctionSourceError


def function_source(fn: Callable[..., Any] | str) -> str:
    """Get transportable source text for ``fn``.

    Strings are taken to be source already and are returned unchanged.
    ``def`` functions yield their dedented definition; lambdas yield just the
    lambda expression, even when written inline inside a larger expression.

    Raises:
        FunctionSourceError: If ``fn`` has no retrievable source
    """
    if isinstance(fn, str):
        return fn
    if not callable(fn):
        raise FunctionSourceError(f"Expected a function or source string, got {type(fn).__name__}")

    if getattr(fn, "__name__", None) == "<lambda>":
        return _lambda_source(fn)

    try:
        return textwrap.dedent(inspect.getsource(fn))
    except (OSError, TypeError) as e:
        raise FunctionSourceError(f"Cannot get source for {fn!r}: {e}") from e


def _lambda_source(fn: Callable[..., Any]) -> str:
    """Find the exact text of a lambda in its defining file.

    ``inspect.getsource`` returns whole lines for a lambda, which is rarely
    valid code on its own (think ``"add": lambda a, b: a + b,``). Instead we
    parse the file and pick the lambda node starting on the same line with
    the same parameters.
    """
    try:
        lines, _ = inspect.findsource(fn)
    except (OSError, TypeError) as e:
        raise FunctionSourceError(f"Cannot get source for {fn!r}: {e}") from e

    module_source = "".join(lines)
    try:
        tree = ast.parse(module_source)
    except SyntaxError as e:
        raise FunctionSourceError(f"Cannot parse source for {fn!r}: {e}") from e

    code = fn.__code__
    lineno = code.co_firstlineno
    arg_count = code.co_argcount + code.co_kwonlyargcount
    arg_names = list(code.co_varnames[:arg_count])

    candidates = []
    for node in ast.walk(tree):
        if not isinstance(node, ast.Lambda) or node.lineno != lineno:
            continue
        args = node.args
        names = [a.arg for a in args.posonlyargs + args.args + args.kwonlyargs]
        if names == arg_names:
            candidates.append(node)

    if len(candidates) != 1:
        raise FunctionSourceError(
            f"Cannot locate source for lambda on line {lineno}: "
            f"{len(candidates)} candidates found"
        )

    segment = ast.get_source_segment(module_source, candidates[0])
    if segment is None:
        raise FunctionSourceError(f"Cannot locate source for lambda on line {lineno}")
    return segment


def compile_function(
    name: str,
    source: str,
    namespace: dict[str, Any],
    filename: str = "<portal>",
) -> Callable[..., Any]:
    """Build a callable from ``source`` inside ``namespace``.

    An expression (``lambda a, b: a + b``, or the name of something already
    in the namespace) is evaluated directly. Anything else is executed as
    statements in the namespace and the last top-level definition is used,
    so a ``def`` block works regardless of the name it was written under and
    may carry its own imports. Functions created here see ``namespace`` as
    their globals.

    Raises:
        SyntaxError: If ``source`` is not valid Python
        FunctionSourceError: If ``source`` does not produce a callable
    """
    filename = f"{filename}:{name}"
    try:
        code = compile(source, filename, "eval")
    except SyntaxError:
        code = None

    if code is not None:
        fn = eval(code, namespace)
    else:
        tree = ast.parse(source, filename, "exec")
        defined = _last_definition(tree)
        if defined is None:
            raise FunctionSourceError(f"Source for '{name}' does not define a function")
        exec(compile(tree, filename, "exec"), namespace)
        fn = namespace.get(defined)

    if not callable(fn):
        raise FunctionSourceError(f"Source for '{name}' evaluated to {type(fn).__name__}, not a function")
    return fn


def _last_definition(tree: ast.Module) -> str | None:
    """Name bound by the last top-level def, class or simple assignment."""
    for node in reversed(tree.body):
        match node:
            case ast.FunctionDef(name=name) | ast.AsyncFunctionDef(name=name) | ast.ClassDef(name=name):
                return name
            case ast.Assign(targets=[ast.Name(id=name)]):
                return name
    return None
