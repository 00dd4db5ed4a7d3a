"""
Graph nodes and the conversion of components into nodes.

Every builder method (``Chain.append_chat_model``, ``Parallel.add_lambda``,
``Graph.add_retriever_node`` ...) goes through one of the ``to_*_node``
functions below, which record the node kind, its declared input and output
types, and a ``NodeAdapter`` calling the component.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from composeflow.compose.adapter import NodeAdapter, passthrough_adapter
from composeflow.compose.lambdas import Lambda
from composeflow.compose.options import NodeOptions, resolve_node_options
from composeflow.compose.types import NodeKind
from composeflow.schema.document import Document, Source
from composeflow.schema.message import Message
from composeflow.schema.stream import SkipChunk, stream_reader_with_convert

logger = logging.getLogger(__name__)


@dataclass
class GraphNode:
    """
    A node before compilation.

    Attributes:
        kind: What the node wraps.
        adapter: Four-mode adapter; ``None`` for subgraphs until compiled.
        input_type: Declared input type.
        output_type: Declared output type.
        name: Display name.
        options: Node options given to the builder call.
        subgraph: For ``GRAPH`` nodes, the nested builder or runnable.
        instance: The wrapped component, for inspection.
    """

    kind: NodeKind
    adapter: Optional[NodeAdapter]
    input_type: Any = Any
    output_type: Any = Any
    name: str = ""
    options: NodeOptions = field(default_factory=NodeOptions)
    subgraph: Any = None
    instance: Any = None

    @property
    def user_key(self) -> Optional[str]:
        return self.options.node_key


def _has(obj: Any, method: str) -> bool:
    return callable(getattr(obj, method, None))


def _component_name(obj: Any) -> str:
    return type(obj).__name__


def _require(obj: Any, method: str, what: str) -> None:
    if obj is None:
        raise ValueError(f"{what} is None")
    if not _has(obj, method):
        raise TypeError(f"{what} {_component_name(obj)} has no '{method}' method")


def _node(kind, adapter, input_type, output_type, instance, opts) -> GraphNode:
    options = resolve_node_options(opts)
    return GraphNode(
        kind=kind,
        adapter=adapter,
        input_type=input_type,
        output_type=output_type,
        name=options.node_name or _component_name(instance),
        options=options,
        instance=instance,
    )


def to_chat_model_node(model: Any, *opts: Any) -> GraphNode:
    _require(model, "generate", "chat model")
    adapter = NodeAdapter(
        invoke=lambda ctx, messages, o: model.generate(messages, *o),
        stream=(
            (lambda ctx, messages, o: model.stream(messages, *o))
            if _has(model, "stream")
            else None
        ),
    )
    return _node(NodeKind.CHAT_MODEL, adapter, List[Message], Message, model, opts)


def to_chat_template_node(template: Any, *opts: Any) -> GraphNode:
    _require(template, "format", "chat template")
    adapter = NodeAdapter(invoke=lambda ctx, variables, o: template.format(variables, *o))
    return _node(
        NodeKind.CHAT_TEMPLATE, adapter, Dict[str, Any], List[Message], template, opts
    )


def to_retriever_node(retriever: Any, *opts: Any) -> GraphNode:
    _require(retriever, "retrieve", "retriever")
    adapter = NodeAdapter(invoke=lambda ctx, query, o: retriever.retrieve(query, *o))
    return _node(NodeKind.RETRIEVER, adapter, str, List[Document], retriever, opts)


def to_indexer_node(indexer: Any, *opts: Any) -> GraphNode:
    _require(indexer, "store", "indexer")
    adapter = NodeAdapter(invoke=lambda ctx, docs, o: indexer.store(docs, *o))
    return _node(NodeKind.INDEXER, adapter, List[Document], List[str], indexer, opts)


def to_embedding_node(embedder: Any, *opts: Any) -> GraphNode:
    _require(embedder, "embed_strings", "embedder")
    adapter = NodeAdapter(invoke=lambda ctx, texts, o: embedder.embed_strings(texts, *o))
    return _node(
        NodeKind.EMBEDDING, adapter, List[str], List[List[float]], embedder, opts
    )


def to_loader_node(loader: Any, *opts: Any) -> GraphNode:
    _require(loader, "load", "loader")
    adapter = NodeAdapter(invoke=lambda ctx, src, o: loader.load(src, *o))
    return _node(NodeKind.LOADER, adapter, Source, List[Document], loader, opts)


def to_document_transformer_node(transformer: Any, *opts: Any) -> GraphNode:
    _require(transformer, "transform", "document transformer")
    adapter = NodeAdapter(invoke=lambda ctx, docs, o: transformer.transform(docs, *o))
    return _node(
        NodeKind.DOCUMENT_TRANSFORMER,
        adapter,
        List[Document],
        List[Document],
        transformer,
        opts,
    )


def to_tools_node(tools_node: Any, *opts: Any) -> GraphNode:
    _require(tools_node, "invoke", "tools node")
    adapter = NodeAdapter(
        invoke=lambda ctx, message, o: tools_node.invoke(message, *o, token=ctx.token),
        stream=lambda ctx, message, o: tools_node.stream(message, *o, token=ctx.token),
    )
    return _node(NodeKind.TOOLS_NODE, adapter, Message, List[Message], tools_node, opts)


def to_lambda_node(node: Lambda, *opts: Any) -> GraphNode:
    if not isinstance(node, Lambda):
        raise TypeError(
            f"lambda node must be created with invokable_lambda() and friends, got {type(node).__name__}"
        )
    graph_node = _node(
        NodeKind.LAMBDA, node.adapter, node.input_type, node.output_type, node, opts
    )
    if not graph_node.options.node_name:
        graph_node.name = node.name
    return graph_node


def to_passthrough_node(*opts: Any) -> GraphNode:
    node = _node(NodeKind.PASSTHROUGH, passthrough_adapter(), Any, Any, None, opts)
    node.name = node.options.node_name or "passthrough"
    return node


def to_graph_node(subgraph: Any, *opts: Any) -> GraphNode:
    """
    Wrap a nested chain, graph, compiled runnable or exported agent.

    Builders are compiled when the hosting graph is compiled.
    """
    if subgraph is None:
        raise ValueError("subgraph is None")
    if not (_has(subgraph, "compile") or _has(subgraph, "as_node_adapter")):
        raise TypeError(
            f"cannot use {type(subgraph).__name__} as a subgraph: expected a Chain, "
            "a Graph or a compiled Runnable"
        )
    node = _node(
        NodeKind.GRAPH,
        None,
        getattr(subgraph, "input_type", Any),
        getattr(subgraph, "output_type", Any),
        subgraph,
        opts,
    )
    node.subgraph = subgraph
    node.name = node.options.node_name or getattr(subgraph, "name", None) or node.name
    return node


# =============================================================================
# INPUT / OUTPUT KEYS
# =============================================================================


def _pick(input_key: str):
    def pick(value: Any) -> Any:
        if not isinstance(value, dict):
            raise TypeError(
                f"input key '{input_key}' requires a mapping input, got {type(value).__name__}"
            )
        if input_key not in value:
            raise KeyError(f"input key '{input_key}' not found in input")
        return value[input_key]

    return pick


def _pick_chunk(input_key: str):
    def pick(chunk: Any) -> Any:
        if isinstance(chunk, dict) and input_key in chunk:
            return chunk[input_key]
        raise SkipChunk()

    return pick


def with_io_keys(
    adapter: NodeAdapter, input_key: Optional[str], output_key: Optional[str]
) -> NodeAdapter:
    """
    Wrap ``adapter`` so that it reads ``input[input_key]`` and emits
    ``{output_key: output}``. Native modes stay native.
    """
    if not input_key and not output_key:
        return adapter

    def wrap(mode: str):
        stream_in = mode in ("collect", "transform")
        stream_out = mode in ("stream", "transform")
        fn = getattr(adapter, mode)

        def call(ctx: Any, input: Any, opts: List[Any]) -> Any:
            if input_key:
                if stream_in:
                    input = stream_reader_with_convert(input, _pick_chunk(input_key))
                else:
                    input = _pick(input_key)(input)
            output = fn(ctx, input, opts)
            if output_key:
                if stream_out:
                    return stream_reader_with_convert(output, lambda c: {output_key: c})
                return {output_key: output}
            return output

        return call

    return NodeAdapter(**{mode: wrap(mode) for mode in adapter.natives})


def effective_types(node: GraphNode):
    """Input and output types of ``node`` once its io keys are applied."""
    input_type = Dict[str, Any] if node.options.input_key else node.input_type
    output_type = (
        Dict[str, node.output_type] if node.options.output_key else node.output_type
    )
    return input_type, output_type
