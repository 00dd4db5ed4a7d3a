"""
Chunk concatenation used to reduce a stream into a single value.

The reduction is kind-specific: strings are appended, messages are merged
with ``concat_messages``, dicts are merged key by key (values for the same
key are concatenated recursively) and lists are flattened. Other chunk types
can register their own reducer with ``register_stream_chunk_concat_func``.
"""

import threading
from typing import Any, Callable, Dict, List, Type

from composeflow.schema.message import Message, concat_messages

_registry: Dict[Type[Any], Callable[[List[Any]], Any]] = {}
_registry_lock = threading.Lock()


def register_stream_chunk_concat_func(
    chunk_type: Type[Any], func: Callable[[List[Any]], Any]
) -> None:
    """
    Register the reducer used for streams whose chunks are ``chunk_type``.

    Example:
        >>> register_stream_chunk_concat_func(Counter, lambda cs: sum(cs, Counter()))
    """
    with _registry_lock:
        _registry[chunk_type] = func


def _lookup(chunk_type: Type[Any]):
    with _registry_lock:
        for registered, func in _registry.items():
            if issubclass(chunk_type, registered):
                return func
    return None


def concat_items(items: List[Any]) -> Any:
    """
    Reduce a list of chunks into one value.

    Raises:
        ValueError: If the list is empty, or the chunks have a type with no
            known reducer and there is more than one of them.
    """
    if not items:
        raise ValueError("stream reader is empty, concat fail")
    if len(items) == 1:
        return items[0]

    non_null = [item for item in items if item is not None]
    if not non_null:
        return None
    if len(non_null) == 1:
        return non_null[0]

    first = non_null[0]
    func = _lookup(type(first))
    if func is not None:
        return func(non_null)
    if isinstance(first, str):
        return "".join(non_null)
    if isinstance(first, Message):
        return concat_messages(non_null)
    if isinstance(first, dict):
        return _concat_dicts(non_null)
    if isinstance(first, (list, tuple)):
        return _concat_lists(non_null)

    raise ValueError(
        f"cannot concat multiple chunks of type '{type(first).__name__}': "
        "register a concat function with register_stream_chunk_concat_func"
    )


def _concat_lists(items: List[Any]) -> List[Any]:
    merged: List[Any] = []
    for item in items:
        merged.extend(item)
    return merged


def _concat_dicts(items: List[Dict[Any, Any]]) -> Dict[Any, Any]:
    grouped: Dict[Any, List[Any]] = {}
    for item in items:
        if not isinstance(item, dict):
            raise ValueError(
                f"cannot concat dict chunk with '{type(item).__name__}' chunk"
            )
        for key, value in item.items():
            grouped.setdefault(key, []).append(value)

    merged: Dict[Any, Any] = {}
    for key, values in grouped.items():
        if len(values) == 1:
            merged[key] = values[0]
        else:
            merged[key] = concat_items(values)
    return merged
