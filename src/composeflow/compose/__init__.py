"""
The compose engine: builders, compiler and runtime.

    >>> from composeflow.compose import Chain, Parallel, invokable_lambda
    >>> chain = Chain(str, str)
    >>> chain.append_lambda(invokable_lambda(lambda s: s.upper(), str, str))
    >>> chain.compile().invoke("hi")
    'HI'
"""

from .adapter import NodeAdapter
from .branch import ChainBranch, StreamChainBranch
from .callbacks import CallbackHandler, CallbackManager, RunInfo
from .chain import Chain
from .compiler import CompiledGraph, CompiledNode, compile_graph
from .context import CancellationToken, RunContext, StepCounter
from .graph import END, START, Graph, GraphBranch
from .lambdas import (
    Lambda,
    any_lambda,
    collectable_lambda,
    invokable_lambda,
    streamable_lambda,
    transformable_lambda,
)
from .nodes import GraphNode
from .options import (
    Option,
    OptionRouter,
    with_callbacks,
    with_chat_model_option,
    with_chat_template_option,
    with_document_transformer_option,
    with_embedding_option,
    with_graph_name,
    with_indexer_option,
    with_input_key,
    with_lambda_option,
    with_loader_option,
    with_max_run_steps,
    with_max_workers,
    with_node_key,
    with_node_name,
    with_output_key,
    with_retriever_option,
    with_tool_option,
)
from .parallel import Parallel
from .runnable import Runnable
from .tools_node import ToolsNode, ToolsNodeConfig, new_tool_node
from .types import Assignability, NodeKind, is_assignable

__all__ = [
    "NodeAdapter",
    "ChainBranch",
    "StreamChainBranch",
    "CallbackHandler",
    "CallbackManager",
    "RunInfo",
    "Chain",
    "CompiledGraph",
    "CompiledNode",
    "compile_graph",
    "CancellationToken",
    "RunContext",
    "StepCounter",
    "END",
    "START",
    "Graph",
    "GraphBranch",
    "Lambda",
    "any_lambda",
    "collectable_lambda",
    "invokable_lambda",
    "streamable_lambda",
    "transformable_lambda",
    "GraphNode",
    "Option",
    "OptionRouter",
    "with_callbacks",
    "with_chat_model_option",
    "with_chat_template_option",
    "with_document_transformer_option",
    "with_embedding_option",
    "with_graph_name",
    "with_indexer_option",
    "with_input_key",
    "with_lambda_option",
    "with_loader_option",
    "with_max_run_steps",
    "with_max_workers",
    "with_node_key",
    "with_node_name",
    "with_output_key",
    "with_retriever_option",
    "with_tool_option",
    "Parallel",
    "Runnable",
    "ToolsNode",
    "ToolsNodeConfig",
    "new_tool_node",
    "Assignability",
    "NodeKind",
    "is_assignable",
]
