"""
Indexer contract.

An indexer stores documents (optionally into sub indexes, optionally
vectorized with an embedder) and returns the ids of the stored documents.

Example:
    >>> opts = get_common_options(Options(), with_sub_indexes(["a"]))
    >>> opts.sub_indexes
    ['a']
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, runtime_checkable

from composeflow.components.option import (
    ComponentOption,
    apply_common_options,
    apply_impl_specific_options,
)
from composeflow.schema.document import Document


@runtime_checkable
class Indexer(Protocol):
    def store(self, docs: List[Document], *opts: "Option") -> List[str]:
        ...


class Option(ComponentOption):
    __slots__ = ()


@dataclass
class Options:
    sub_indexes: Optional[List[str]] = None
    embedding: Any = None


def with_sub_indexes(sub_indexes: List[str]) -> Option:
    return Option(apply=lambda o: setattr(o, "sub_indexes", sub_indexes))


def with_embedding(embedding: Any) -> Option:
    return Option(apply=lambda o: setattr(o, "embedding", embedding))


def wrap_impl_specific_opt_fn(fn) -> Option:
    return Option(impl_specific=fn)


def get_common_options(base: Optional[Options], *opts: Any) -> Options:
    return apply_common_options(base if base is not None else Options(), *opts)


def get_impl_specific_options(base: Any, *opts: Any) -> Any:
    return apply_impl_specific_options(base, *opts)
