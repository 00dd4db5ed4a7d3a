"""Retriever contract: a query string in, a list of documents out."""

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, runtime_checkable

from composeflow.components.option import (
    ComponentOption,
    apply_common_options,
    apply_impl_specific_options,
)
from composeflow.schema.document import Document


@runtime_checkable
class Retriever(Protocol):
    def retrieve(self, query: str, *opts: "Option") -> List[Document]:
        ...


class Option(ComponentOption):
    __slots__ = ()


@dataclass
class Options:
    """
    Common retriever options.

    Attributes:
        index: Name of the index to search.
        sub_index: Sub index inside ``index``.
        top_k: Maximum number of documents returned.
        score_threshold: Minimum score of a returned document.
        embedding: Embedder used to vectorize the query, if any.
    """

    index: Optional[str] = None
    sub_index: Optional[str] = None
    top_k: Optional[int] = None
    score_threshold: Optional[float] = None
    embedding: Any = None


def with_index(index: str) -> Option:
    return Option(apply=lambda o: setattr(o, "index", index))


def with_sub_index(sub_index: str) -> Option:
    return Option(apply=lambda o: setattr(o, "sub_index", sub_index))


def with_top_k(top_k: int) -> Option:
    return Option(apply=lambda o: setattr(o, "top_k", top_k))


def with_score_threshold(threshold: float) -> Option:
    return Option(apply=lambda o: setattr(o, "score_threshold", threshold))


def with_embedding(embedding: Any) -> Option:
    return Option(apply=lambda o: setattr(o, "embedding", embedding))


def wrap_impl_specific_opt_fn(fn) -> Option:
    return Option(impl_specific=fn)


def get_common_options(base: Optional[Options], *opts: Any) -> Options:
    return apply_common_options(base if base is not None else Options(), *opts)


def get_impl_specific_options(base: Any, *opts: Any) -> Any:
    return apply_impl_specific_options(base, *opts)
