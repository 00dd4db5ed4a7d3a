"""
Tool contract.

Every tool describes itself with ``info()``. Invokable tools return a string
result for a JSON-encoded argument object; streamable tools return a stream
of string chunks. A tool may implement both.
"""

from typing import Any, Protocol, runtime_checkable

from composeflow.components.option import (
    ComponentOption,
    apply_impl_specific_options,
)
from composeflow.schema.stream import StreamReader
from composeflow.schema.tool import ToolInfo


@runtime_checkable
class BaseTool(Protocol):
    def info(self) -> ToolInfo:
        ...


@runtime_checkable
class InvokableTool(BaseTool, Protocol):
    def invokable_run(self, arguments_in_json: str, *opts: "Option") -> str:
        ...


@runtime_checkable
class StreamableTool(BaseTool, Protocol):
    def streamable_run(
        self, arguments_in_json: str, *opts: "Option"
    ) -> StreamReader[str]:
        ...


class Option(ComponentOption):
    """Option passed to ``invokable_run`` / ``streamable_run``."""

    __slots__ = ()


def wrap_impl_specific_opt_fn(fn) -> Option:
    """
    Wrap a function mutating a tool's own options object.

    Example:
        >>> class GreetOptions:
        ...     greeting = "hello"
        >>> opt = wrap_impl_specific_opt_fn(lambda o: setattr(o, "greeting", "hi"))
        >>> get_impl_specific_options(GreetOptions(), opt).greeting
        'hi'
    """
    return Option(impl_specific=fn)


def get_impl_specific_options(base: Any, *opts: Any) -> Any:
    return apply_impl_specific_options(base, *opts)
