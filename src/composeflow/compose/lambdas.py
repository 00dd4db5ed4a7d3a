"""
Lambda nodes: plain Python functions used as graph nodes.

The input of the node is passed as the first positional argument. Extra
parameters are filled by name, the same way node functions of a state graph
receive ``state`` and ``config``:

- ``ctx``: the ``RunContext`` of the invocation;
- ``options``: the list of lambda options routed to this node;
- ``*opts``: the same options, as varargs.

Input and output types are read from the annotations unless passed
explicitly:

    >>> def add_role(kvs: Dict[str, Any], *opts) -> Dict[str, Any]:
    ...     return {**kvs, "role": "cat"}
    >>> node = invokable_lambda(add_role)
    >>> node.input_type, node.output_type
    (typing.Dict[str, typing.Any], typing.Dict[str, typing.Any])

A ``ctx`` first parameter is also accepted (``def fn(ctx, kvs)``); the input
then goes to the second positional parameter.
"""

import collections.abc
import inspect
import logging
from typing import Any, Callable, List, Optional, get_args, get_origin, get_type_hints

from composeflow.compose.adapter import NodeAdapter
from composeflow.schema.stream import StreamReader, stream_reader_from_iterable

logger = logging.getLogger(__name__)

_STREAM_ORIGINS = (
    StreamReader,
    collections.abc.Iterator,
    collections.abc.Iterable,
    collections.abc.Generator,
)


class Lambda:
    """
    A user function wrapped as a node.

    Attributes:
        adapter: Four-mode adapter built from the given functions.
        input_type: Declared input type (``Any`` when unknown).
        output_type: Declared output type (``Any`` when unknown).
        name: Display name, defaults to the function's name.
    """

    def __init__(self, adapter: NodeAdapter, input_type: Any, output_type: Any, name: str):
        self.adapter = adapter
        self.input_type = input_type
        self.output_type = output_type
        self.name = name

    def __repr__(self) -> str:
        return f"Lambda({self.name}, natives={list(self.adapter.natives)})"


def _element_type(tp: Any) -> Any:
    """``Iterator[str]`` -> ``str``; anything else is returned unchanged."""
    origin = get_origin(tp)
    if origin is None:
        return Any if tp in _STREAM_ORIGINS else tp
    try:
        is_stream = issubclass(origin, _STREAM_ORIGINS)
    except TypeError:
        return tp
    if is_stream:
        args = get_args(tp)
        return args[0] if args else Any
    return tp


def _signature_types(fn: Callable[..., Any]):
    try:
        hints = get_type_hints(fn)
        params = [
            p
            for p in inspect.signature(fn).parameters.values()
            if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
        ]
    except (TypeError, ValueError, NameError):
        return Any, Any
    if params and params[0].name == "ctx":
        params = params[1:]
    input_type = hints.get(params[0].name, Any) if params else Any
    return input_type, hints.get("return", Any)


def _bind(fn: Callable[..., Any]) -> Callable[[Any, Any, List[Any]], Any]:
    """
    Build the internal ``(ctx, input, opts)`` call of ``fn``.

    Raises:
        ValueError: If ``fn`` has required parameters that cannot be filled.
    """
    sig = inspect.signature(fn)
    positional = [
        p
        for p in sig.parameters.values()
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
    ]
    ctx_first = bool(positional) and positional[0].name == "ctx"
    if ctx_first:
        positional = positional[1:]
    if not positional:
        raise ValueError(
            f"lambda '{getattr(fn, '__name__', fn)}' must accept the node input as a positional parameter"
        )
    extra_positional = positional[1:]
    keyword_only = [
        p.name
        for p in sig.parameters.values()
        if p.kind == p.KEYWORD_ONLY and p.name in ("ctx", "options")
    ]
    varargs = any(p.kind == p.VAR_POSITIONAL for p in sig.parameters.values())

    for p in extra_positional:
        if p.name not in ("ctx", "options") and p.default is inspect.Parameter.empty:
            raise ValueError(
                f"Required parameter '{p.name}' not provided for function '{_name_of(fn)}'"
            )

    def call(ctx: Any, input: Any, opts: List[Any]) -> Any:
        available = {"ctx": ctx, "options": list(opts)}
        args = [ctx, input] if ctx_first else [input]
        for p in extra_positional:
            args.append(available[p.name] if p.name in available else p.default)
        kwargs = {name: available[name] for name in keyword_only}
        if varargs:
            args.extend(opts)
        return fn(*args, **kwargs)

    return call


def _as_stream(call: Callable[[Any, Any, List[Any]], Any]) -> Callable[[Any, Any, List[Any]], Any]:
    def stream_call(ctx: Any, input: Any, opts: List[Any]) -> StreamReader[Any]:
        result = call(ctx, input, opts)
        if isinstance(result, StreamReader):
            return result
        if isinstance(result, (str, bytes)) or not isinstance(result, collections.abc.Iterable):
            raise TypeError(
                f"stream lambda must return a StreamReader or an iterable, got {type(result).__name__}"
            )
        return stream_reader_from_iterable(result)

    return stream_call


def _name_of(fn: Any) -> str:
    return getattr(fn, "__name__", type(fn).__name__)


def invokable_lambda(
    fn: Callable[..., Any],
    input_type: Any = None,
    output_type: Any = None,
    name: Optional[str] = None,
) -> Lambda:
    """Wrap ``fn(input) -> output``."""
    in_t, out_t = _signature_types(fn)
    return Lambda(
        NodeAdapter(invoke=_bind(fn)),
        input_type if input_type is not None else in_t,
        output_type if output_type is not None else out_t,
        name or _name_of(fn),
    )


def streamable_lambda(
    fn: Callable[..., Any],
    input_type: Any = None,
    output_type: Any = None,
    name: Optional[str] = None,
) -> Lambda:
    """Wrap ``fn(input) -> Iterable[chunk]`` (a generator function, typically)."""
    in_t, out_t = _signature_types(fn)
    return Lambda(
        NodeAdapter(stream=_as_stream(_bind(fn))),
        input_type if input_type is not None else in_t,
        output_type if output_type is not None else _element_type(out_t),
        name or _name_of(fn),
    )


def collectable_lambda(
    fn: Callable[..., Any],
    input_type: Any = None,
    output_type: Any = None,
    name: Optional[str] = None,
) -> Lambda:
    """Wrap ``fn(StreamReader[input]) -> output``."""
    in_t, out_t = _signature_types(fn)
    return Lambda(
        NodeAdapter(collect=_bind(fn)),
        input_type if input_type is not None else _element_type(in_t),
        output_type if output_type is not None else out_t,
        name or _name_of(fn),
    )


def transformable_lambda(
    fn: Callable[..., Any],
    input_type: Any = None,
    output_type: Any = None,
    name: Optional[str] = None,
) -> Lambda:
    """Wrap ``fn(StreamReader[input]) -> Iterable[chunk]``."""
    in_t, out_t = _signature_types(fn)
    return Lambda(
        NodeAdapter(transform=_as_stream(_bind(fn))),
        input_type if input_type is not None else _element_type(in_t),
        output_type if output_type is not None else _element_type(out_t),
        name or _name_of(fn),
    )


def any_lambda(
    invoke: Optional[Callable[..., Any]] = None,
    stream: Optional[Callable[..., Any]] = None,
    collect: Optional[Callable[..., Any]] = None,
    transform: Optional[Callable[..., Any]] = None,
    input_type: Any = Any,
    output_type: Any = Any,
    name: str = "any_lambda",
) -> Lambda:
    """
    Wrap up to four functions, one per mode, as a single node.

    Types must be given explicitly since the functions may disagree.

    Raises:
        Unsupported: If no function is given.
    """
    adapter = NodeAdapter(
        invoke=_bind(invoke) if invoke else None,
        stream=_as_stream(_bind(stream)) if stream else None,
        collect=_bind(collect) if collect else None,
        transform=_as_stream(_bind(transform)) if transform else None,
    )
    return Lambda(adapter, input_type, output_type, name)
