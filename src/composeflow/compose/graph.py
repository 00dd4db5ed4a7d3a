"""
General DAG builder.

``Graph`` is the lowest-level builder: nodes are added under explicit keys
and connected with ``add_edge``, conditional branches and fan-in (join)
nodes. ``Chain`` is built on top of it.

Example:
    >>> graph = Graph(Dict[str, Any], str)
    >>> graph.add_chat_template_node("prompt", template)
    >>> graph.add_chat_model_node("model", model)
    >>> graph.add_lambda_node("content", invokable_lambda(lambda m: m.content, Message, str))
    >>> graph.set_entry_point("prompt")
    >>> graph.add_edge("prompt", "model")
    >>> graph.add_edge("model", "content")
    >>> graph.set_finish_point("content")
    >>> runnable = graph.compile()
    >>> runnable.invoke({"query": "hi"})
"""

import copy
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import networkx as nx

from composeflow.compose import nodes as node_factory
from composeflow.compose.nodes import GraphNode
from composeflow.compose.types import NodeKind

logger = logging.getLogger(__name__)

START = "__start__"
END = "__end__"


class GraphBranch:
    """
    Conditional routing out of a node.

    Args:
        predicate: ``fn(input) -> name`` selecting exactly one target. It may
            declare a ``ctx`` parameter. For stream branches the predicate
            receives a ``StreamReader`` of the input instead of the value.
        end_nodes: Target node keys, or a mapping from predicate results to
            target node keys.
        stream: Whether the predicate reads the input as a stream.
        input_type: Declared input type of the predicate.
    """

    def __init__(
        self,
        predicate: Callable[..., Any],
        end_nodes: Union[Iterable[str], Dict[str, str]],
        stream: bool = False,
        input_type: Any = Any,
    ):
        if predicate is None:
            raise ValueError("branch predicate is None")
        self.predicate = predicate
        if isinstance(end_nodes, dict):
            self.targets: Dict[str, str] = dict(end_nodes)
        else:
            self.targets = {key: key for key in end_nodes}
        self.stream = stream
        self.input_type = input_type

    def __repr__(self) -> str:
        return f"GraphBranch(targets={self.targets})"


class Graph:
    """
    A mutable graph of typed nodes.

    Build errors (duplicate keys, unknown nodes ...) are recorded and raised
    by ``compile()``; the first error wins.

    Attributes:
        input_type: Type of the values passed to ``invoke``.
        output_type: Type of the values returned by ``invoke``.
        name: Graph name used in logs and visualizations.
        graph: The underlying ``networkx.DiGraph``. Node attribute ``node``
            holds the ``GraphNode``; ``user_key`` tells whether the key was
            supplied by the caller. Edge attributes: ``output_key`` (edges
            into a join), ``branch`` / ``branch_value`` (conditional edges),
            ``parallel`` (edges into a parallel child).
    """

    def __init__(self, input_type: Any = Any, output_type: Any = Any, name: Optional[str] = None):
        self.input_type = input_type
        self.output_type = output_type
        self.name = name or type(self).__name__
        self.graph = nx.DiGraph()
        self.graph.add_node(START, node=None)
        self.graph.add_node(END, node=None)
        self.branches: Dict[str, GraphBranch] = {}
        self.errors: List[str] = []

    def _fail(self, message: str) -> "Graph":
        logger.debug(f"Graph '{self.name}' build error: {message}")
        self.errors.append(message)
        return self

    def add_node(self, key: str, node: GraphNode, user_key: bool = True) -> "Graph":
        """
        Add ``node`` under ``key``.

        Args:
            key: Node key; unique within the graph.
            node: The node, as built by ``composeflow.compose.nodes``.
            user_key: Whether ``key`` was chosen by the caller (user keys are
                also unique across nested subgraphs).
        """
        if not key or key in (START, END):
            return self._fail(f"invalid node key '{key}'")
        if key in self.graph.nodes:
            return self._fail(f"node '{key}' already exists in the graph")
        if node is None:
            return self._fail(f"node '{key}' is None")
        self.graph.add_node(key, node=node, user_key=user_key)
        return self

    def _add(self, key: str, factory: Callable[..., GraphNode], component: Any, opts) -> "Graph":
        try:
            node = factory(component, *opts)
        except (TypeError, ValueError) as e:
            return self._fail(f"node '{key}': {e}")
        return self.add_node(key, node)

    def add_chat_model_node(self, key: str, model: Any, *opts: Any) -> "Graph":
        return self._add(key, node_factory.to_chat_model_node, model, opts)

    def add_chat_template_node(self, key: str, template: Any, *opts: Any) -> "Graph":
        return self._add(key, node_factory.to_chat_template_node, template, opts)

    def add_retriever_node(self, key: str, retriever: Any, *opts: Any) -> "Graph":
        return self._add(key, node_factory.to_retriever_node, retriever, opts)

    def add_indexer_node(self, key: str, indexer: Any, *opts: Any) -> "Graph":
        return self._add(key, node_factory.to_indexer_node, indexer, opts)

    def add_embedding_node(self, key: str, embedder: Any, *opts: Any) -> "Graph":
        return self._add(key, node_factory.to_embedding_node, embedder, opts)

    def add_loader_node(self, key: str, loader: Any, *opts: Any) -> "Graph":
        return self._add(key, node_factory.to_loader_node, loader, opts)

    def add_document_transformer_node(self, key: str, transformer: Any, *opts: Any) -> "Graph":
        return self._add(key, node_factory.to_document_transformer_node, transformer, opts)

    def add_tools_node(self, key: str, tools_node: Any, *opts: Any) -> "Graph":
        return self._add(key, node_factory.to_tools_node, tools_node, opts)

    def add_lambda_node(self, key: str, node: Any, *opts: Any) -> "Graph":
        return self._add(key, node_factory.to_lambda_node, node, opts)

    def add_graph_node(self, key: str, subgraph: Any, *opts: Any) -> "Graph":
        return self._add(key, node_factory.to_graph_node, subgraph, opts)

    def add_passthrough_node(self, key: str, *opts: Any) -> "Graph":
        try:
            node = node_factory.to_passthrough_node(*opts)
        except TypeError as e:
            return self._fail(f"node '{key}': {e}")
        return self.add_node(key, node)

    def add_fan_in_node(self, key: str, user_key: bool = True) -> "Graph":
        """
        Add a join node collecting ``{output_key: value}`` from its inbound
        edges (see ``add_edge(..., output_key=...)``).
        """
        node = GraphNode(kind=NodeKind.PARALLEL_JOIN, adapter=None, name="join")
        return self.add_node(key, node, user_key=user_key)

    def add_edge(
        self,
        in_node: str,
        out_node: str,
        output_key: Optional[str] = None,
        parallel: bool = False,
    ) -> "Graph":
        """
        Add an unconditional edge between two nodes.

        Args:
            in_node: The source node.
            out_node: The target node.
            output_key: Slot filled by this edge when ``out_node`` is a join.
            parallel: Marks edges into a parallel child (affects error messages).
        """
        for key in (in_node, out_node):
            if key not in self.graph.nodes:
                return self._fail(f"edge {in_node} -> {out_node}: node '{key}' does not exist in the graph")
        if in_node == END or out_node == START:
            return self._fail(f"edge {in_node} -> {out_node} is not allowed")
        if self.graph.has_edge(in_node, out_node):
            return self._fail(f"edge {in_node} -> {out_node} already exists")
        target = self.graph.nodes[out_node]["node"]
        is_join = target is not None and target.kind == NodeKind.PARALLEL_JOIN
        if is_join and not output_key:
            return self._fail(f"edge {in_node} -> {out_node}: edges into a join need an output_key")
        if is_join:
            taken = [
                d.get("output_key") for _, _, d in self.graph.in_edges(out_node, data=True)
            ]
            if output_key in taken:
                return self._fail(
                    f"join '{out_node}': output_key[{output_key}] is duplicated"
                )
        self.graph.add_edge(in_node, out_node, output_key=output_key, parallel=parallel)
        return self

    def add_branch(self, in_node: str, branch: GraphBranch, key: Optional[str] = None, user_key: bool = True) -> "Graph":
        """
        Route the output of ``in_node`` to exactly one of ``branch.targets``.

        The branch becomes a node of its own (``<in_node>_branch`` unless
        ``key`` is given) so that errors and visualizations can name it.
        """
        if in_node not in self.graph.nodes:
            return self._fail(f"branch source '{in_node}' does not exist in the graph")
        if len(branch.targets) < 2:
            return self._fail(f"branch from '{in_node}' needs at least 2 targets")
        key = key or f"{in_node}_branch"
        node = GraphNode(
            kind=NodeKind.BRANCH,
            adapter=None,
            input_type=branch.input_type,
            name="branch",
            instance=branch,
        )
        before = len(self.errors)
        self.add_node(key, node, user_key=user_key)
        self.add_edge(in_node, key)
        if len(self.errors) > before:
            return self
        self.branches[key] = branch
        for value, target in branch.targets.items():
            if target not in self.graph.nodes:
                return self._fail(f"branch '{key}': target node '{target}' does not exist in the graph")
            self.graph.add_edge(key, target, output_key=None, parallel=False, branch=key, branch_value=value)
        return self

    def set_entry_point(self, key: str) -> "Graph":
        return self.add_edge(START, key)

    def set_finish_point(self, key: str) -> "Graph":
        return self.add_edge(key, END)

    def node(self, key: str) -> GraphNode:
        """
        Get the node stored under ``key``.

        Raises:
            KeyError: If the node is not found in the graph.
        """
        if key not in self.graph.nodes or key in (START, END):
            raise KeyError(f"Node '{key}' not found in the graph")
        return self.graph.nodes[key]["node"]

    def successors(self, key: str) -> List[str]:
        if key not in self.graph.nodes:
            raise KeyError(f"Node '{key}' not found in the graph")
        return list(self.graph.successors(key))

    def copy(self) -> "Graph":
        clone = copy.copy(self)
        clone.graph = self.graph.copy()
        clone.branches = dict(self.branches)
        clone.errors = list(self.errors)
        return clone

    def compile(self, *opts: Any):
        """
        Validate the graph and build an immutable ``Runnable``.

        Args:
            *opts: Compile options (``with_max_run_steps``, ``with_graph_name``,
                ``with_max_workers``).

        Raises:
            CompileError: On any structural or type error.
        """
        from composeflow.compose.compiler import compile_graph

        return compile_graph(self, *opts)
