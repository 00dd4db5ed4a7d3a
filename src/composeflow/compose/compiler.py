"""
Graph compiler.

``compile_graph`` turns a ``Graph`` builder into an immutable ``Runnable``.
Phases, in order:

1. recorded build errors are raised;
2. nested subgraphs are compiled and user node keys are checked for
   uniqueness across the whole runnable;
3. structure: every node is connected, reachable from ``START`` and reaches
   ``END``; the graph is a DAG;
4. type unification along every edge (see ``compose.types``); edges whose
   source is wider than their destination get a runtime check;
5. capability lowering: for each node, the native method serving each
   runtime mode is recorded.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import networkx as nx

from composeflow.compose.adapter import NodeAdapter
from composeflow.compose.graph import END, START, Graph, GraphBranch
from composeflow.compose.nodes import GraphNode, effective_types, with_io_keys
from composeflow.compose.options import resolve_compile_options
from composeflow.compose.types import (
    Assignability,
    NodeKind,
    is_assignable,
    join_type,
    type_name,
)
from composeflow.config import get_config
from composeflow.exceptions import CompileError

logger = logging.getLogger(__name__)


@dataclass
class CompiledNode:
    """
    A node of a compiled graph.

    Attributes:
        key: Node key.
        kind: Node kind.
        name: Display name.
        adapter: Adapter with io keys applied; ``None`` for joins and branches.
        input_type: Effective input type.
        output_type: Effective output type (inherited for passthroughs).
        user_key: Whether the key was supplied by the caller.
        branch: Routing of a ``BRANCH`` node.
        subgraph: Compiled runnable of a ``GRAPH`` node.
        methods: Native method used per runtime mode (``invoke``/``stream``).
    """

    key: str
    kind: NodeKind
    name: str
    adapter: Optional[NodeAdapter]
    input_type: Any = Any
    output_type: Any = Any
    user_key: bool = False
    branch: Optional[GraphBranch] = None
    subgraph: Any = None
    methods: Dict[str, str] = field(default_factory=dict)


@dataclass
class CompiledGraph:
    """
    Immutable result of compilation, executed by ``compose.runtime``.

    Attributes:
        name: Graph name.
        input_type: Graph input type.
        output_type: Graph output type.
        graph: Copy of the builder's DiGraph; edges may carry ``check_type``.
        nodes: Compiled nodes by key (``START``/``END`` excluded).
        order: Topological order, ``START`` first and ``END`` last.
        max_run_steps: Step budget of one invocation.
        max_workers: Worker threads of one invocation.
        user_keys: User keys of this graph and every nested subgraph.
    """

    name: str
    input_type: Any
    output_type: Any
    graph: nx.DiGraph
    nodes: Dict[str, CompiledNode]
    order: List[str]
    max_run_steps: int
    max_workers: Optional[int]
    user_keys: Set[str]


def _mismatch(src: str, dst: str, src_type: Any, dst_type: Any, parallel: bool) -> CompileError:
    detail = (
        f"start node's output type[{type_name(src_type)}] and "
        f"end node's input type[{type_name(dst_type)}] mismatch"
    )
    if parallel:
        return CompileError(f"add parallel edge failed, from={src}, to={dst}: {detail}")
    return CompileError(f"graph edge[{src}]-[{dst}]: {detail}")


def _common_type(types: List[Any]) -> Any:
    if types and all(tp == types[0] for tp in types):
        return types[0]
    return Any


class _Compiler:
    def __init__(self, graph: Graph, *opts: Any):
        self.builder = graph
        self.options = resolve_compile_options(opts)
        self.name = self.options.graph_name or graph.name
        self.nx = graph.graph.copy()
        self.keys = [k for k in self.nx.nodes if k not in (START, END)]
        self.user_keys: Dict[str, str] = {}
        self.nodes: Dict[str, CompiledNode] = {}

    def _claim(self, key: str, where: str) -> None:
        if key in self.user_keys:
            raise CompileError(
                f"node key '{key}' is duplicated: used in {self.user_keys[key]} and in {where}"
            )
        self.user_keys[key] = where

    def compile(self):
        from composeflow.compose.runnable import Runnable

        if self.builder.errors:
            raise CompileError(self.builder.errors[0])
        if not self.keys:
            raise CompileError(f"graph '{self.name}' has no nodes")

        self._build_nodes()
        order = self._check_structure()
        self._check_types(order)
        self._lower_capabilities()

        config = get_config()
        compiled = CompiledGraph(
            name=self.name,
            input_type=self.builder.input_type,
            output_type=self.builder.output_type,
            graph=self.nx,
            nodes=self.nodes,
            order=order,
            max_run_steps=self.options.max_run_steps or config.max_run_steps,
            max_workers=self.options.max_workers or config.max_workers,
            user_keys=set(self.user_keys),
        )
        logger.debug(
            f"Compiled graph '{self.name}': {len(self.nodes)} nodes, "
            f"{self.nx.number_of_edges()} edges, max_run_steps={compiled.max_run_steps}"
        )
        return Runnable(compiled)

    def _build_nodes(self) -> None:
        for key in self.keys:
            data = self.nx.nodes[key]
            node: GraphNode = data["node"]
            if data.get("user_key"):
                self._claim(key, f"graph '{self.name}'")

            compiled = CompiledNode(
                key=key,
                kind=node.kind,
                name=node.name,
                adapter=node.adapter,
                input_type=node.input_type,
                output_type=node.output_type,
                user_key=bool(data.get("user_key")),
            )
            if node.kind == NodeKind.BRANCH:
                compiled.branch = self.builder.branches[key]
            elif node.kind == NodeKind.GRAPH:
                runnable = self._compile_subgraph(key, node)
                compiled.subgraph = runnable
                compiled.adapter = runnable.as_node_adapter()
                compiled.input_type = runnable.input_type
                compiled.output_type = runnable.output_type
                for nested in runnable.user_keys:
                    self._claim(nested, f"subgraph '{key}'")

            if compiled.adapter is not None:
                compiled.adapter = with_io_keys(
                    compiled.adapter, node.options.input_key, node.options.output_key
                )
                resolved = GraphNode(
                    kind=node.kind,
                    adapter=None,
                    input_type=compiled.input_type,
                    output_type=compiled.output_type,
                    options=node.options,
                )
                compiled.input_type, compiled.output_type = effective_types(resolved)
            self.nodes[key] = compiled

    def _compile_subgraph(self, key: str, node: GraphNode):
        subgraph = node.subgraph
        if not callable(getattr(subgraph, "compile", None)):
            return subgraph
        try:
            return subgraph.compile()
        except CompileError as e:
            raise CompileError(f"failed to compile subgraph '{key}': {e}") from e

    def _check_structure(self) -> List[str]:
        g = self.nx
        if g.out_degree(START) == 0:
            raise CompileError(f"graph '{self.name}': start node is not connected, call set_entry_point()")
        if g.in_degree(END) == 0:
            raise CompileError(f"graph '{self.name}': end node is not connected, call set_finish_point()")
        for key in self.keys:
            if g.in_degree(key) == 0:
                raise CompileError(f"graph '{self.name}': node '{key}' has no inbound edge")
            if g.out_degree(key) == 0:
                raise CompileError(f"graph '{self.name}': node '{key}' has no outbound edge")

        try:
            cycle = nx.find_cycle(g, source=START)
        except nx.NetworkXNoCycle:
            cycle = None
        if cycle is None:
            try:
                cycle = nx.find_cycle(g)
            except nx.NetworkXNoCycle:
                cycle = None
        if cycle:
            path = " -> ".join([edge[0] for edge in cycle] + [cycle[-1][1]])
            raise CompileError(f"graph '{self.name}' has a cycle: {path}")

        reachable = nx.descendants(g, START)
        reaching_end = nx.ancestors(g, END)
        for key in self.keys:
            if key not in reachable:
                raise CompileError(f"graph '{self.name}': node '{key}' is not reachable from start")
            if key not in reaching_end:
                raise CompileError(f"graph '{self.name}': node '{key}' does not lead to end")

        order = list(nx.topological_sort(g))
        order.remove(START)
        order.remove(END)
        return [START] + order + [END]

    def _check_edge(self, src: str, dst: str, src_type: Any, dst_type: Any) -> None:
        data = self.nx.edges[src, dst]
        result = is_assignable(src_type, dst_type)
        if result == Assignability.NO:
            raise _mismatch(src, dst, src_type, dst_type, bool(data.get("parallel")))
        if result == Assignability.MAYBE:
            logger.debug(
                f"Edge {src} -> {dst}: {type_name(src_type)} checked at runtime against {type_name(dst_type)}"
            )
            data["check_type"] = dst_type

    def _check_types(self, order: List[str]) -> None:
        out_types: Dict[str, Any] = {START: self.builder.input_type}
        for key in order[1:]:
            preds = list(self.nx.predecessors(key))
            if key == END:
                for p in preds:
                    self._check_edge(p, END, out_types[p], self.builder.output_type)
                continue

            node = self.nodes[key]
            if node.kind == NodeKind.PARALLEL_JOIN:
                node.output_type = join_type([out_types[p] for p in preds])
                out_types[key] = node.output_type
                continue

            for p in preds:
                self._check_edge(p, key, out_types[p], node.input_type)

            if node.kind in (NodeKind.PASSTHROUGH, NodeKind.BRANCH):
                options = self.nx.nodes[key]["node"].options
                inherited = _common_type([out_types[p] for p in preds])
                if options.input_key:
                    inherited = Any
                if options.output_key:
                    inherited = Dict[str, inherited]
                node.output_type = inherited
                if node.kind == NodeKind.PASSTHROUGH and not options.input_key:
                    node.input_type = _common_type([out_types[p] for p in preds])
            out_types[key] = node.output_type

    def _lower_capabilities(self) -> None:
        for key, node in self.nodes.items():
            if node.adapter is None:
                continue
            node.methods = {
                "invoke": node.adapter.method_for("invoke"),
                "stream": node.adapter.method_for("transform"),
            }
            logger.debug(f"Node '{key}' ({node.kind.value}) natives={list(node.adapter.natives)} methods={node.methods}")


def compile_graph(graph: Graph, *opts: Any):
    """
    Compile ``graph`` into a ``Runnable``.

    Raises:
        CompileError: See the module documentation for the checks performed.
    """
    return _Compiler(graph, *opts).compile()
