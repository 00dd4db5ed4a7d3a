"""
Chat model contract.

A chat model turns a list of messages into an assistant message, either at
once (``generate``) or as a stream of message chunks (``stream``). Tool
calling models additionally return a copy of themselves bound to a tool list
through ``with_tools``; the original instance is left untouched so that it can
be shared across concurrent invocations.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, runtime_checkable

from composeflow.components.option import (
    ComponentOption,
    apply_common_options,
    apply_impl_specific_options,
)
from composeflow.schema.message import Message
from composeflow.schema.stream import StreamReader
from composeflow.schema.tool import ToolInfo


@runtime_checkable
class BaseChatModel(Protocol):
    def generate(self, messages: List[Message], *opts: "Option") -> Message:
        ...

    def stream(
        self, messages: List[Message], *opts: "Option"
    ) -> StreamReader[Message]:
        ...


ChatModel = BaseChatModel


@runtime_checkable
class ToolCallingChatModel(BaseChatModel, Protocol):
    def with_tools(self, tools: List[ToolInfo]) -> "ToolCallingChatModel":
        ...


class Option(ComponentOption):
    """Option accepted by ``ChatModel.generate`` and ``ChatModel.stream``."""

    __slots__ = ()


@dataclass
class Options:
    """Common chat model options."""

    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    model: Optional[str] = None
    top_p: Optional[float] = None
    stop: Optional[List[str]] = None
    tools: Optional[List[ToolInfo]] = None
    tool_choice: Optional[str] = None
    extra: dict = field(default_factory=dict)


def with_temperature(temperature: float) -> Option:
    return Option(apply=lambda o: setattr(o, "temperature", temperature))


def with_max_tokens(max_tokens: int) -> Option:
    return Option(apply=lambda o: setattr(o, "max_tokens", max_tokens))


def with_model(name: str) -> Option:
    return Option(apply=lambda o: setattr(o, "model", name))


def with_top_p(top_p: float) -> Option:
    return Option(apply=lambda o: setattr(o, "top_p", top_p))


def with_stop(stop: List[str]) -> Option:
    return Option(apply=lambda o: setattr(o, "stop", list(stop)))


def with_tools(tools: List[ToolInfo]) -> Option:
    return Option(apply=lambda o: setattr(o, "tools", list(tools)))


def with_tool_choice(choice: str) -> Option:
    return Option(apply=lambda o: setattr(o, "tool_choice", choice))


def wrap_impl_specific_opt_fn(fn) -> Option:
    return Option(impl_specific=fn)


def get_common_options(base: Optional[Options], *opts: Any) -> Options:
    """Return ``base`` (or a fresh ``Options``) with ``opts`` applied."""
    return apply_common_options(base if base is not None else Options(), *opts)


def get_impl_specific_options(base: Any, *opts: Any) -> Any:
    return apply_impl_specific_options(base, *opts)
