"""
ReAct agent with a message future.

    >>> from composeflow.flow.agent.react import AgentConfig, new_agent, with_message_future
"""

from .agent import (
    MODEL_NODE_KEY,
    TOOLS_NODE_KEY,
    Agent,
    AgentConfig,
    AgentGraph,
    first_chunk_stream_tool_call_checker,
    new_agent,
)
from .future import FutureIterator, MessageFuture
from .options import (
    AgentOption,
    with_chat_model_options,
    with_message_future,
    with_tool_list,
    with_tool_options,
)

__all__ = [
    "MODEL_NODE_KEY",
    "TOOLS_NODE_KEY",
    "Agent",
    "AgentConfig",
    "AgentGraph",
    "first_chunk_stream_tool_call_checker",
    "new_agent",
    "FutureIterator",
    "MessageFuture",
    "AgentOption",
    "with_chat_model_options",
    "with_message_future",
    "with_tool_list",
    "with_tool_options",
]
