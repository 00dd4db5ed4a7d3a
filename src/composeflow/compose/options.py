"""
Invocation, node and compile options.

Invocation options (``with_lambda_option``, ``with_chat_model_option`` ...)
carry payloads for one kind of node. Without designation an option reaches
every node of its kind, nested subgraphs included; ``designate_node(*keys)``
restricts it to the named nodes:

    >>> runnable.invoke(
    ...     {},
    ...     with_lambda_option(with_info("normal")),
    ...     with_lambda_option(with_info("special")).designate_node("lambda_02"),
    ... )

Node options (``with_node_key`` ...) are passed to the builder ``append_*`` /
``add_*`` methods. Compile options (``with_max_run_steps`` ...) are passed
to ``compile()``.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from composeflow.compose.types import NodeKind

logger = logging.getLogger(__name__)

CALLBACKS = "callbacks"


class Option:
    """
    A routed invocation option.

    Attributes:
        kind: ``NodeKind`` value the payloads are meant for, or ``"callbacks"``.
        payloads: Values handed to matching nodes, in order.
        keys: Designated node keys; empty means every node of ``kind``.
    """

    __slots__ = ("kind", "payloads", "keys")

    def __init__(self, kind: str, payloads: Iterable[Any] = (), keys: Iterable[str] = ()):
        self.kind = kind.value if isinstance(kind, NodeKind) else kind
        self.payloads: Tuple[Any, ...] = tuple(payloads)
        self.keys: Tuple[str, ...] = tuple(keys)

    def designate_node(self, *keys: str) -> "Option":
        """Return a copy of this option that only reaches the nodes in ``keys``."""
        return Option(self.kind, self.payloads, self.keys + tuple(keys))

    def __repr__(self) -> str:
        target = f" -> {list(self.keys)}" if self.keys else ""
        return f"Option({self.kind}, {len(self.payloads)} payloads{target})"


def with_chat_model_option(*opts: Any) -> Option:
    return Option(NodeKind.CHAT_MODEL, opts)


def with_chat_template_option(*opts: Any) -> Option:
    return Option(NodeKind.CHAT_TEMPLATE, opts)


def with_tool_option(*opts: Any) -> Option:
    return Option(NodeKind.TOOLS_NODE, opts)


def with_lambda_option(*opts: Any) -> Option:
    return Option(NodeKind.LAMBDA, opts)


def with_retriever_option(*opts: Any) -> Option:
    return Option(NodeKind.RETRIEVER, opts)


def with_embedding_option(*opts: Any) -> Option:
    return Option(NodeKind.EMBEDDING, opts)


def with_indexer_option(*opts: Any) -> Option:
    return Option(NodeKind.INDEXER, opts)


def with_loader_option(*opts: Any) -> Option:
    return Option(NodeKind.LOADER, opts)


def with_document_transformer_option(*opts: Any) -> Option:
    return Option(NodeKind.DOCUMENT_TRANSFORMER, opts)


def with_callbacks(*handlers: Any) -> Option:
    """Install callback handlers for the invocation (or the designated nodes)."""
    return Option(CALLBACKS, handlers)


class OptionRouter:
    """
    Partition of an invocation's options into a global and per-key buckets.

    The router is read-only once built and is shared by every worker.
    """

    def __init__(
        self,
        options: Iterable[Option] = (),
        _global: Optional[List[Option]] = None,
        _designated: Optional[Dict[str, List[Option]]] = None,
    ):
        self.global_options: List[Option] = list(_global or [])
        self.designated: Dict[str, List[Option]] = {
            k: list(v) for k, v in (_designated or {}).items()
        }
        for opt in options:
            if not isinstance(opt, Option):
                raise TypeError(
                    f"invocation options must be created with with_*_option(), got {type(opt).__name__}"
                )
            if not opt.keys:
                self.global_options.append(opt)
                continue
            for key in opt.keys:
                self.designated.setdefault(key, []).append(opt)

    def _matching(self, key: str, kind: str) -> List[Option]:
        matched = [o for o in self.global_options if o.kind == kind]
        matched.extend(o for o in self.designated.get(key, ()) if o.kind == kind)
        return matched

    def options_for(self, key: str, kind: Any) -> List[Any]:
        """Payloads of ``global ∪ designated[key]`` options of ``kind``, in order."""
        kind = kind.value if isinstance(kind, NodeKind) else kind
        payloads: List[Any] = []
        for opt in self._matching(key, kind):
            payloads.extend(opt.payloads)
        return payloads

    def callbacks_for(self, key: str) -> List[Any]:
        return self.options_for(key, CALLBACKS)

    def enter(self, key: str, inner_keys: Iterable[str] = ()) -> "OptionRouter":
        """
        Router of the subgraph hosted by node ``key``.

        Options designated to ``key`` become global inside the subgraph.
        Designations of ``inner_keys``, the user keys of the subgraph and of
        its own nested subgraphs, keep travelling so that nodes nested at any
        depth can be addressed. Every other designation stays outside: an
        auto-generated key of the outer graph may name an unrelated node of
        the subgraph.
        """
        promoted = self.designated.get(key, [])
        if promoted:
            logger.debug(f"Promoting {len(promoted)} options designated to subgraph '{key}'")
        inner = set(inner_keys)
        designated = {k: v for k, v in self.designated.items() if k != key and k in inner}
        return OptionRouter(
            _global=self.global_options + [Option(o.kind, o.payloads) for o in promoted],
            _designated=designated,
        )

    @property
    def designated_keys(self) -> List[str]:
        return list(self.designated)


# =============================================================================
# NODE OPTIONS
# =============================================================================


@dataclass
class NodeOptions:
    """Resolved node options of one builder call."""

    node_key: Optional[str] = None
    node_name: Optional[str] = None
    input_key: Optional[str] = None
    output_key: Optional[str] = None


class NodeOption:
    __slots__ = ("field", "value")

    def __init__(self, field: str, value: Any):
        self.field = field
        self.value = value

    def __repr__(self) -> str:
        return f"NodeOption({self.field}={self.value!r})"


def with_node_key(key: str) -> NodeOption:
    """Give the node a user key; it must be unique within the whole runnable."""
    return NodeOption("node_key", key)


def with_node_name(name: str) -> NodeOption:
    return NodeOption("node_name", name)


def with_input_key(key: str) -> NodeOption:
    """The node reads ``input[key]`` instead of the whole input mapping."""
    return NodeOption("input_key", key)


def with_output_key(key: str) -> NodeOption:
    """The node's output is wrapped as ``{key: output}``."""
    return NodeOption("output_key", key)


def resolve_node_options(opts: Iterable[Any]) -> NodeOptions:
    resolved = NodeOptions()
    for opt in opts:
        if not isinstance(opt, NodeOption):
            raise TypeError(
                f"node options must be created with with_node_key() and friends, got {opt!r}"
            )
        setattr(resolved, opt.field, opt.value)
    return resolved


# =============================================================================
# COMPILE OPTIONS
# =============================================================================


@dataclass
class CompileOptions:
    max_run_steps: Optional[int] = None
    graph_name: Optional[str] = None
    max_workers: Optional[int] = None


class CompileOption:
    __slots__ = ("field", "value")

    def __init__(self, field: str, value: Any):
        self.field = field
        self.value = value


def with_max_run_steps(n: int) -> CompileOption:
    if n <= 0:
        raise ValueError(f"max run steps must be positive, got {n}")
    return CompileOption("max_run_steps", n)


def with_graph_name(name: str) -> CompileOption:
    return CompileOption("graph_name", name)


def with_max_workers(n: int) -> CompileOption:
    if n <= 0:
        raise ValueError(f"max workers must be positive, got {n}")
    return CompileOption("max_workers", n)


def resolve_compile_options(opts: Iterable[Any]) -> CompileOptions:
    resolved = CompileOptions()
    for opt in opts:
        if not isinstance(opt, CompileOption):
            raise TypeError(
                f"compile options must be created with with_max_run_steps() and friends, got {opt!r}"
            )
        setattr(resolved, opt.field, opt.value)
    return resolved
