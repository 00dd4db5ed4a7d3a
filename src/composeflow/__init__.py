"""
composeflow - compose LLM applications from typed components.

Chains, parallels, branches and graphs of chat models, prompts, retrievers,
tools and plain functions are compiled into a ``Runnable`` that can be
invoked, streamed, collected or transformed.

Example:
    >>> from composeflow import Chain, invokable_lambda
    >>> chain = Chain(str, int)
    >>> chain.append_lambda(invokable_lambda(len, str, int))
    >>> chain.compile().invoke("hello")
    5
"""

from .exceptions import (
    ComposeError,
    CompileError,
    PredicateError,
    NodeExecutionError,
    StepBudgetExceeded,
    Canceled,
    DeadlineExceeded,
    Unsupported,
    ToolError,
)
from .config import ComposeConfig, get_config, set_config
from .compose import (
    START,
    END,
    Chain,
    ChainBranch,
    StreamChainBranch,
    Parallel,
    Graph,
    GraphBranch,
    Runnable,
    CancellationToken,
    ToolsNode,
    ToolsNodeConfig,
    new_tool_node,
    invokable_lambda,
    streamable_lambda,
    collectable_lambda,
    transformable_lambda,
    any_lambda,
)
from .schema import (
    Message,
    Document,
    ToolInfo,
    StreamReader,
    pipe,
    stream_reader_from_array,
    concat_stream,
)

__all__ = [
    "ComposeError",
    "CompileError",
    "PredicateError",
    "NodeExecutionError",
    "StepBudgetExceeded",
    "Canceled",
    "DeadlineExceeded",
    "Unsupported",
    "ToolError",
    "ComposeConfig",
    "get_config",
    "set_config",
    "START",
    "END",
    "Chain",
    "ChainBranch",
    "StreamChainBranch",
    "Parallel",
    "Graph",
    "GraphBranch",
    "Runnable",
    "CancellationToken",
    "ToolsNode",
    "ToolsNodeConfig",
    "new_tool_node",
    "invokable_lambda",
    "streamable_lambda",
    "collectable_lambda",
    "transformable_lambda",
    "any_lambda",
    "Message",
    "Document",
    "ToolInfo",
    "StreamReader",
    "pipe",
    "stream_reader_from_array",
    "concat_stream",
    "__version__",
]

__version__ = "0.1.0"
