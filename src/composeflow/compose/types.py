"""
Node kinds and type compatibility rules.

Node input and output types are ordinary ``typing`` objects (``str``,
``Dict[str, Any]``, ``List[Message]`` ...). Along every edge the compiler
asks ``is_assignable(src, dst)``, which answers one of:

- ``YES``: the edge is statically sound;
- ``MAYBE``: the source is wider than the destination (``Any`` flowing into
  a concrete type); the runtime checks each value with ``check_value``;
- ``NO``: compile error.
"""

from enum import Enum
from typing import Any, Dict, List, TypeVar, Union, get_args, get_origin
import collections.abc


class NodeKind(str, Enum):
    CHAT_MODEL = "chat_model"
    CHAT_TEMPLATE = "chat_template"
    RETRIEVER = "retriever"
    INDEXER = "indexer"
    EMBEDDING = "embedding"
    LOADER = "loader"
    DOCUMENT_TRANSFORMER = "document_transformer"
    TOOLS_NODE = "tools_node"
    LAMBDA = "lambda"
    PASSTHROUGH = "passthrough"
    GRAPH = "graph"
    BRANCH = "branch"
    PARALLEL_JOIN = "parallel_join"


class Assignability(Enum):
    YES = "yes"
    MAYBE = "maybe"
    NO = "no"


def _is_wildcard(tp: Any) -> bool:
    return tp is Any or tp is object or isinstance(tp, TypeVar)


def _combine(results: List[Assignability]) -> Assignability:
    if Assignability.NO in results:
        return Assignability.NO
    if Assignability.MAYBE in results:
        return Assignability.MAYBE
    return Assignability.YES


def is_assignable(src: Any, dst: Any) -> Assignability:
    """
    Decide whether values of type ``src`` may flow into an input of ``dst``.

    Example:
        >>> is_assignable(List[int], List[Any])
        <Assignability.YES: 'yes'>
        >>> is_assignable(Any, Dict[str, Any])
        <Assignability.MAYBE: 'maybe'>
        >>> is_assignable(str, Dict[str, Any])
        <Assignability.NO: 'no'>
    """
    if _is_wildcard(dst):
        return Assignability.YES
    if _is_wildcard(src):
        return Assignability.MAYBE
    if src == dst:
        return Assignability.YES

    if get_origin(dst) is Union:
        results = [is_assignable(src, member) for member in get_args(dst)]
        if Assignability.YES in results:
            return Assignability.YES
        if Assignability.MAYBE in results:
            return Assignability.MAYBE
        # Some members of a source union may still fit.
        if get_origin(src) is not Union:
            return Assignability.NO
    if get_origin(src) is Union:
        results = [is_assignable(member, dst) for member in get_args(src)]
        if all(r == Assignability.YES for r in results):
            return Assignability.YES
        if all(r == Assignability.NO for r in results):
            return Assignability.NO
        return Assignability.MAYBE

    src_origin = get_origin(src) or src
    dst_origin = get_origin(dst) or dst
    if not isinstance(src_origin, type) or not isinstance(dst_origin, type):
        return Assignability.MAYBE
    try:
        if not issubclass(src_origin, dst_origin):
            return Assignability.NO
    except TypeError:
        return Assignability.MAYBE

    dst_args = get_args(dst)
    if not dst_args or dst_origin is collections.abc.Callable:
        return Assignability.YES
    src_args = get_args(src)
    if not src_args:
        return Assignability.MAYBE
    if len(src_args) == len(dst_args):
        return _combine(
            [is_assignable(s, d) for s, d in zip(src_args, dst_args) if s is not ...]
        )
    if len(dst_args) == 1:
        # list[X] -> Sequence[X] and friends.
        return is_assignable(src_args[0], dst_args[0])
    return Assignability.MAYBE


def check_value(value: Any, tp: Any) -> bool:
    """
    Shallow runtime check used on ``MAYBE`` edges.

    Only the outer type is verified; ``None`` is always accepted.
    """
    if value is None or _is_wildcard(tp):
        return True
    origin = get_origin(tp)
    if origin is Union:
        return any(check_value(value, member) for member in get_args(tp))
    target = origin or tp
    if not isinstance(target, type):
        return True
    try:
        return isinstance(value, target)
    except TypeError:
        return True


def type_name(tp: Any) -> str:
    """Readable name of a type for error messages."""
    if tp is Any:
        return "Any"
    if isinstance(tp, type) and not get_args(tp):
        return tp.__qualname__
    return repr(tp).replace("typing.", "")


def join_type(output_types: List[Any]) -> Any:
    """Declared output type of a parallel join over children with ``output_types``."""
    first = output_types[0] if output_types else Any
    if output_types and all(tp == first for tp in output_types):
        return Dict[str, first]
    return Dict[str, Any]
