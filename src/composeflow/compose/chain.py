"""
Chain builder: a linear sequence of steps.

Each ``append_*`` call adds one step. Steps get the key given with
``with_node_key`` or ``node_<i>``, where ``i`` is the position of the step in
the chain. Parallel children are keyed ``node_<i>_parallel_<idx>`` and
branch candidates ``node_<i>_branch_<name>``:

    >>> chain = Chain(Dict[str, Any], str)
    >>> chain.append_lambda(invokable_lambda(prepare))           # node_0
    >>> chain.append_branch(branch)                              # node_1_branch_b1, ...
    >>> chain.append_passthrough()                               # node_2
    >>> chain.append_parallel(parallel)                          # node_3_parallel_0, ...
    >>> chain.append_graph(role_play_chain)                      # node_4
    >>> runnable = chain.compile()

Build errors are recorded and raised by ``compile()``; the first one wins.
A parallel or branch cannot directly follow another parallel or branch;
insert ``append_passthrough()`` between them.
"""

import logging
from typing import Any, Callable, List, Optional

from composeflow.compose import nodes as node_factory
from composeflow.compose.branch import ChainBranch
from composeflow.compose.graph import END, START, Graph, GraphBranch
from composeflow.compose.nodes import GraphNode
from composeflow.compose.parallel import Parallel
from composeflow.exceptions import CompileError

logger = logging.getLogger(__name__)


class Chain:
    """
    Attributes:
        input_type: Type of the chain input.
        output_type: Type of the chain output.
        name: Chain name used in logs and visualizations.
    """

    def __init__(self, input_type: Any = Any, output_type: Any = Any, name: Optional[str] = None):
        self._graph = Graph(input_type, output_type, name or "Chain")
        self._tails: List[str] = [START]
        self._steps = 0
        self._last_fan: Optional[str] = None
        self.error: Optional[str] = None

    @property
    def input_type(self) -> Any:
        return self._graph.input_type

    @property
    def output_type(self) -> Any:
        return self._graph.output_type

    @property
    def name(self) -> str:
        return self._graph.name

    def __len__(self) -> int:
        return self._steps

    def _fail(self, message: str) -> "Chain":
        if self.error is None:
            logger.debug(f"Chain '{self.name}' build error: {message}")
            self.error = message
        return self

    def _connect(self, key: str, parallel: bool = False) -> None:
        for tail in self._tails:
            self._graph.add_edge(tail, key, parallel=parallel)

    def _append(self, factory: Callable[..., GraphNode], component: Any, opts) -> "Chain":
        if self.error is not None:
            return self
        try:
            node = factory(component, *opts)
        except (TypeError, ValueError) as e:
            return self._fail(f"chain step {self._steps}: {e}")
        key = node.user_key or f"node_{self._steps}"
        self._graph.add_node(key, node, user_key=node.user_key is not None)
        self._connect(key)
        self._tails = [key]
        self._steps += 1
        self._last_fan = None
        return self

    def append_chat_model(self, model: Any, *opts: Any) -> "Chain":
        return self._append(node_factory.to_chat_model_node, model, opts)

    def append_chat_template(self, template: Any, *opts: Any) -> "Chain":
        return self._append(node_factory.to_chat_template_node, template, opts)

    def append_tools_node(self, tools_node: Any, *opts: Any) -> "Chain":
        return self._append(node_factory.to_tools_node, tools_node, opts)

    def append_document_transformer(self, transformer: Any, *opts: Any) -> "Chain":
        return self._append(node_factory.to_document_transformer_node, transformer, opts)

    def append_lambda(self, node: Any, *opts: Any) -> "Chain":
        return self._append(node_factory.to_lambda_node, node, opts)

    def append_embedding(self, embedder: Any, *opts: Any) -> "Chain":
        return self._append(node_factory.to_embedding_node, embedder, opts)

    def append_retriever(self, retriever: Any, *opts: Any) -> "Chain":
        return self._append(node_factory.to_retriever_node, retriever, opts)

    def append_loader(self, loader: Any, *opts: Any) -> "Chain":
        return self._append(node_factory.to_loader_node, loader, opts)

    def append_indexer(self, indexer: Any, *opts: Any) -> "Chain":
        return self._append(node_factory.to_indexer_node, indexer, opts)

    def append_graph(self, subgraph: Any, *opts: Any) -> "Chain":
        """Append a nested ``Chain``, ``Graph``, compiled ``Runnable`` or exported agent."""
        return self._append(node_factory.to_graph_node, subgraph, opts)

    def append_passthrough(self, *opts: Any) -> "Chain":
        return self._append(lambda _, *o: node_factory.to_passthrough_node(*o), None, opts)

    def _check_fan(self, what: str) -> bool:
        if self._last_fan is not None:
            self._fail(
                f"{what} after {self._last_fan} is not supported, "
                "insert a passthrough node in between"
            )
            return False
        return True

    def append_parallel(self, parallel: Parallel) -> "Chain":
        """
        Fan the current output out to every child of ``parallel`` and join
        the results into ``{output_key: output}``.
        """
        if self.error is not None:
            return self
        if parallel is None:
            return self._fail("parallel is None")
        if parallel.error is not None:
            return self._fail(parallel.error)
        if len(parallel.nodes) < 2:
            return self._fail(
                f"parallel must have at least 2 nodes, got {len(parallel.nodes)}"
            )
        if not self._check_fan("parallel"):
            return self

        prefix = f"node_{self._steps}"
        join_key = f"{prefix}_parallel_join"
        self._graph.add_fan_in_node(join_key, user_key=False)
        for idx, (output_key, node) in enumerate(parallel.nodes):
            key = node.user_key or f"{prefix}_parallel_{idx}"
            self._graph.add_node(key, node, user_key=node.user_key is not None)
            self._connect(key, parallel=True)
            self._graph.add_edge(key, join_key, output_key=output_key)
        logger.debug(f"Chain '{self.name}': parallel of {len(parallel.nodes)} nodes at step {self._steps}")
        self._tails = [join_key]
        self._steps += 1
        self._last_fan = "parallel"
        return self

    def append_branch(self, branch: ChainBranch) -> "Chain":
        """Run exactly one candidate of ``branch``, selected by its predicate."""
        if self.error is not None:
            return self
        if branch is None:
            return self._fail("branch is None")
        if branch.error is not None:
            return self._fail(branch.error)
        if len(branch.nodes) < 2:
            return self._fail(
                f"branch must have at least 2 nodes, got {len(branch.nodes)}"
            )
        if not self._check_fan("branch"):
            return self

        prefix = f"node_{self._steps}"
        targets = {}
        for name, node in branch.nodes.items():
            key = node.user_key or f"{prefix}_branch_{name}"
            self._graph.add_node(key, node, user_key=node.user_key is not None)
            targets[name] = key

        branch_key = f"{prefix}_branch"
        graph_branch = GraphBranch(
            branch.predicate, targets, stream=branch.stream, input_type=branch.input_type
        )
        # Only a branch leaves several tails, and a branch cannot follow one.
        self._graph.add_branch(self._tails[0], graph_branch, key=branch_key, user_key=False)
        self._tails = list(targets.values())
        self._steps += 1
        self._last_fan = "branch"
        return self

    def to_graph(self) -> Graph:
        """
        Lower the chain to a ``Graph`` whose last step(s) lead to ``END``.

        Raises:
            CompileError: If the chain recorded a build error or is empty.
        """
        if self.error is not None:
            raise CompileError(self.error)
        if self._steps == 0:
            raise CompileError(f"chain '{self.name}' has no nodes")
        graph = self._graph.copy()
        for tail in self._tails:
            graph.add_edge(tail, END)
        return graph

    def compile(self, *opts: Any):
        """
        Compile the chain into an immutable ``Runnable``.

        The chain itself stays usable: it can be compiled again, or appended
        to several other chains and parallels.

        Raises:
            CompileError: On build errors, empty chains/parallels/subgraphs,
                duplicate keys or type mismatches along an edge.
        """
        from composeflow.compose.compiler import compile_graph

        return compile_graph(self.to_graph(), *opts)
