"""
Four-mode node adapter.

A node natively implements some of the four call modes:

=========  ==========================  ==============
Mode       Signature                   Input / output
=========  ==========================  ==============
invoke     ``fn(ctx, input, opts)``    value -> value
stream     ``fn(ctx, input, opts)``    value -> stream
collect    ``fn(ctx, input, opts)``    stream -> value
transform  ``fn(ctx, input, opts)``    stream -> stream
=========  ==========================  ==============

``NodeAdapter`` fills in the missing ones so that the runtime can call any
node in any mode. A missing mode is derived from the closest native one
(invoke and stream are close, as are collect and transform), using
``concat_stream`` to turn a stream into a value and a single-element stream
to turn a value into a stream.
"""

from typing import Any, Callable, Dict, List, Optional

from composeflow.exceptions import Unsupported
from composeflow.schema.stream import (
    StreamReader,
    concat_stream,
    stream_reader_from_array,
)

NodeFn = Callable[[Any, Any, List[Any]], Any]

MODES = ("invoke", "stream", "collect", "transform")

# Derivation order per missing mode, closest native first.
_PREFERENCE: Dict[str, tuple] = {
    "invoke": ("stream", "collect", "transform"),
    "stream": ("invoke", "transform", "collect"),
    "collect": ("transform", "invoke", "stream"),
    "transform": ("stream", "collect", "invoke"),
}

_STREAM_IN = {"collect", "transform"}
_STREAM_OUT = {"stream", "transform"}


def _singleton(value: Any) -> StreamReader[Any]:
    return stream_reader_from_array([value])


def _derive(target: str, source: str, fn: NodeFn) -> NodeFn:
    wants_stream_in = target in _STREAM_IN
    wants_stream_out = target in _STREAM_OUT
    has_stream_in = source in _STREAM_IN
    has_stream_out = source in _STREAM_OUT

    def derived(ctx: Any, input: Any, opts: List[Any]) -> Any:
        if wants_stream_in and not has_stream_in:
            input = concat_stream(input)
        elif has_stream_in and not wants_stream_in:
            input = _singleton(input)
        output = fn(ctx, input, opts)
        if has_stream_out and not wants_stream_out:
            return concat_stream(output)
        if wants_stream_out and not has_stream_out:
            return _singleton(output)
        return output

    derived.__name__ = f"{target}_from_{source}"
    return derived


class NodeAdapter:
    """
    Holds the four call modes of a node.

    Attributes:
        natives: Modes implemented by the node itself.

    Raises:
        Unsupported: If no mode at all is given.

    Example:
        >>> adapter = NodeAdapter(invoke=lambda ctx, x, opts: x.upper())
        >>> concat_stream(adapter.stream(None, "hi", []))
        'HI'
    """

    def __init__(
        self,
        invoke: Optional[NodeFn] = None,
        stream: Optional[NodeFn] = None,
        collect: Optional[NodeFn] = None,
        transform: Optional[NodeFn] = None,
    ):
        given = {"invoke": invoke, "stream": stream, "collect": collect, "transform": transform}
        self.natives = tuple(mode for mode in MODES if given[mode] is not None)
        if not self.natives:
            raise Unsupported("node implements none of invoke, stream, collect, transform")
        self._fns: Dict[str, NodeFn] = {m: f for m, f in given.items() if f is not None}
        for mode in MODES:
            if mode in self._fns:
                continue
            source = next(s for s in _PREFERENCE[mode] if s in self.natives)
            self._fns[mode] = _derive(mode, source, given[source])

    def invoke(self, ctx: Any, input: Any, opts: List[Any]) -> Any:
        return self._fns["invoke"](ctx, input, opts)

    def stream(self, ctx: Any, input: Any, opts: List[Any]) -> StreamReader[Any]:
        return self._fns["stream"](ctx, input, opts)

    def collect(self, ctx: Any, input: StreamReader[Any], opts: List[Any]) -> Any:
        return self._fns["collect"](ctx, input, opts)

    def transform(
        self, ctx: Any, input: StreamReader[Any], opts: List[Any]
    ) -> StreamReader[Any]:
        return self._fns["transform"](ctx, input, opts)

    def method_for(self, mode: str) -> str:
        """
        Name of the native method that serves ``mode``.

        Used by the compiler to record which implementation the runtime
        will end up calling in each mode.
        """
        if mode in self.natives:
            return mode
        return next(s for s in _PREFERENCE[mode] if s in self.natives)

    def is_native(self, mode: str) -> bool:
        return mode in self.natives

    def __repr__(self) -> str:
        return f"NodeAdapter(natives={list(self.natives)})"


def passthrough_adapter() -> NodeAdapter:
    return NodeAdapter(
        invoke=lambda ctx, input, opts: input,
        transform=lambda ctx, input, opts: input,
    )
