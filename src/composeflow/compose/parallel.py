"""
Parallel builder: fan the same input out to several nodes and join their
outputs into one mapping.

Example:
    >>> parallel = Parallel()
    >>> parallel.add_lambda("role", invokable_lambda(lambda kvs: kvs["role"], Dict[str, Any], str))
    >>> parallel.add_lambda("input", invokable_lambda(lambda kvs: "hello", Dict[str, Any], str))
    >>> chain.append_parallel(parallel)   # emits {"role": ..., "input": "hello"}

A parallel needs at least two children with distinct output keys.
"""

import logging
from typing import Any, Callable, List, Optional, Tuple

from composeflow.compose import nodes as node_factory
from composeflow.compose.nodes import GraphNode

logger = logging.getLogger(__name__)


class Parallel:
    """
    Attributes:
        nodes: ``(output_key, node)`` pairs in insertion order.
        error: First build error, raised when the hosting chain compiles.
    """

    def __init__(self):
        self.nodes: List[Tuple[str, GraphNode]] = []
        self.output_keys: set = set()
        self.error: Optional[str] = None

    def _add(self, output_key: str, factory: Callable[..., GraphNode], component: Any, opts) -> "Parallel":
        if self.error is not None:
            return self
        if not output_key:
            self.error = "parallel output_key must not be empty"
            return self
        if output_key in self.output_keys:
            self.error = f"parallel output_key[{output_key}] is duplicated"
            return self
        try:
            node = factory(component, *opts)
        except (TypeError, ValueError) as e:
            self.error = f"parallel node '{output_key}': {e}"
            return self
        self.output_keys.add(output_key)
        self.nodes.append((output_key, node))
        return self

    def add_chat_model(self, output_key: str, model: Any, *opts: Any) -> "Parallel":
        return self._add(output_key, node_factory.to_chat_model_node, model, opts)

    def add_chat_template(self, output_key: str, template: Any, *opts: Any) -> "Parallel":
        return self._add(output_key, node_factory.to_chat_template_node, template, opts)

    def add_tools_node(self, output_key: str, tools_node: Any, *opts: Any) -> "Parallel":
        return self._add(output_key, node_factory.to_tools_node, tools_node, opts)

    def add_lambda(self, output_key: str, node: Any, *opts: Any) -> "Parallel":
        return self._add(output_key, node_factory.to_lambda_node, node, opts)

    def add_embedding(self, output_key: str, embedder: Any, *opts: Any) -> "Parallel":
        return self._add(output_key, node_factory.to_embedding_node, embedder, opts)

    def add_retriever(self, output_key: str, retriever: Any, *opts: Any) -> "Parallel":
        return self._add(output_key, node_factory.to_retriever_node, retriever, opts)

    def add_loader(self, output_key: str, loader: Any, *opts: Any) -> "Parallel":
        return self._add(output_key, node_factory.to_loader_node, loader, opts)

    def add_indexer(self, output_key: str, indexer: Any, *opts: Any) -> "Parallel":
        return self._add(output_key, node_factory.to_indexer_node, indexer, opts)

    def add_document_transformer(self, output_key: str, transformer: Any, *opts: Any) -> "Parallel":
        return self._add(output_key, node_factory.to_document_transformer_node, transformer, opts)

    def add_graph(self, output_key: str, subgraph: Any, *opts: Any) -> "Parallel":
        return self._add(output_key, node_factory.to_graph_node, subgraph, opts)

    def add_passthrough(self, output_key: str, *opts: Any) -> "Parallel":
        return self._add(output_key, lambda _, *o: node_factory.to_passthrough_node(*o), None, opts)

    def __len__(self) -> int:
        return len(self.nodes)
