"""
Chain branches: run exactly one of several candidate nodes, chosen by a
predicate over the branch input.

Example:
    >>> def pick(kvs: Dict[str, Any]) -> str:
    ...     return "b1" if kvs.get("cat") else "b2"
    >>> branch = ChainBranch(pick)
    >>> branch.add_lambda("b1", invokable_lambda(set_cat))
    >>> branch.add_lambda("b2", invokable_lambda(set_dog))
    >>> chain.append_branch(branch)

``StreamChainBranch`` hands the predicate a stream of the input, so that it
can decide from the first chunks without waiting for the whole value.
"""

import inspect
import logging
from typing import Any, Callable, Dict, Optional, get_type_hints

from composeflow.compose import nodes as node_factory
from composeflow.compose.nodes import GraphNode

logger = logging.getLogger(__name__)


def _predicate_input_type(predicate: Callable[..., Any]) -> Any:
    try:
        hints = get_type_hints(predicate)
        params = [
            p
            for p in inspect.signature(predicate).parameters.values()
            if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD) and p.name != "ctx"
        ]
    except (TypeError, ValueError, NameError):
        return Any
    return hints.get(params[0].name, Any) if params else Any


class ChainBranch:
    """
    Attributes:
        predicate: ``fn(input) -> name`` returning one of the added names.
        nodes: Candidate nodes by name, in insertion order.
        error: First build error, raised when the hosting chain compiles.
    """

    stream = False

    def __init__(self, predicate: Callable[..., Any], input_type: Any = None):
        self.predicate = predicate
        self.nodes: Dict[str, GraphNode] = {}
        self.error: Optional[str] = None
        if predicate is None:
            self.error = "branch predicate is None"
            self.input_type = Any
        elif input_type is not None:
            self.input_type = input_type
        elif self.stream:
            # The predicate sees a StreamReader; the element type is unknown.
            self.input_type = Any
        else:
            self.input_type = _predicate_input_type(predicate)

    def _add(self, name: str, factory: Callable[..., GraphNode], component: Any, opts) -> "ChainBranch":
        if self.error is not None:
            return self
        if name in self.nodes:
            self.error = f"branch node '{name}' is duplicated"
            return self
        try:
            self.nodes[name] = factory(component, *opts)
        except (TypeError, ValueError) as e:
            self.error = f"branch node '{name}': {e}"
        return self

    def add_chat_model(self, name: str, model: Any, *opts: Any) -> "ChainBranch":
        return self._add(name, node_factory.to_chat_model_node, model, opts)

    def add_chat_template(self, name: str, template: Any, *opts: Any) -> "ChainBranch":
        return self._add(name, node_factory.to_chat_template_node, template, opts)

    def add_tools_node(self, name: str, tools_node: Any, *opts: Any) -> "ChainBranch":
        return self._add(name, node_factory.to_tools_node, tools_node, opts)

    def add_lambda(self, name: str, node: Any, *opts: Any) -> "ChainBranch":
        return self._add(name, node_factory.to_lambda_node, node, opts)

    def add_embedding(self, name: str, embedder: Any, *opts: Any) -> "ChainBranch":
        return self._add(name, node_factory.to_embedding_node, embedder, opts)

    def add_retriever(self, name: str, retriever: Any, *opts: Any) -> "ChainBranch":
        return self._add(name, node_factory.to_retriever_node, retriever, opts)

    def add_loader(self, name: str, loader: Any, *opts: Any) -> "ChainBranch":
        return self._add(name, node_factory.to_loader_node, loader, opts)

    def add_indexer(self, name: str, indexer: Any, *opts: Any) -> "ChainBranch":
        return self._add(name, node_factory.to_indexer_node, indexer, opts)

    def add_document_transformer(self, name: str, transformer: Any, *opts: Any) -> "ChainBranch":
        return self._add(name, node_factory.to_document_transformer_node, transformer, opts)

    def add_graph(self, name: str, subgraph: Any, *opts: Any) -> "ChainBranch":
        return self._add(name, node_factory.to_graph_node, subgraph, opts)

    def add_passthrough(self, name: str, *opts: Any) -> "ChainBranch":
        return self._add(name, lambda _, *o: node_factory.to_passthrough_node(*o), None, opts)


class StreamChainBranch(ChainBranch):
    """A ``ChainBranch`` whose predicate reads the input as a ``StreamReader``."""

    stream = True
