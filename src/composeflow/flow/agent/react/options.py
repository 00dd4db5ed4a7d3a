"""
Options of a single agent run.

    >>> option, future = with_message_future()
    >>> agent.generate(
    ...     messages,
    ...     with_chat_model_options(model.with_temperature(0)),
    ...     with_tool_options(tool.wrap_impl_specific_opt_fn(set_locale)),
    ...     option,
    ... )
"""

from typing import Any, List, Optional, Tuple

from composeflow.flow.agent.react.future import MessageFuture


class AgentOption:
    """
    One agent run option.

    Attributes:
        model_opts: Options handed to every chat model call.
        tool_opts: Options handed to every tool call.
        tools: Tools replacing the configured ones (``None`` keeps them).
        future: Message future to publish the run's messages to.
    """

    __slots__ = ("model_opts", "tool_opts", "tools", "future")

    def __init__(
        self,
        model_opts: Tuple[Any, ...] = (),
        tool_opts: Tuple[Any, ...] = (),
        tools: Optional[List[Any]] = None,
        future: Optional[MessageFuture] = None,
    ):
        self.model_opts = tuple(model_opts)
        self.tool_opts = tuple(tool_opts)
        self.tools = tools
        self.future = future

    def __repr__(self) -> str:
        parts = []
        if self.model_opts:
            parts.append(f"model_opts={len(self.model_opts)}")
        if self.tool_opts:
            parts.append(f"tool_opts={len(self.tool_opts)}")
        if self.tools is not None:
            parts.append(f"tools={len(self.tools)}")
        if self.future is not None:
            parts.append("future")
        return f"AgentOption({', '.join(parts)})"


def with_chat_model_options(*opts: Any) -> AgentOption:
    return AgentOption(model_opts=opts)


def with_tool_options(*opts: Any) -> AgentOption:
    return AgentOption(tool_opts=opts)


def with_tool_list(*tools: Any) -> AgentOption:
    """
    Run with ``tools`` instead of the configured tools.

    The chat model is rebound to the new tools with ``with_tools``.
    """
    return AgentOption(tools=list(tools))


def with_message_future() -> Tuple[AgentOption, MessageFuture]:
    """Return an option publishing the run's messages, and the future to read them from."""
    future = MessageFuture()
    return AgentOption(future=future), future
