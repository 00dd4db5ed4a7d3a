"""Embedder contract: texts in, one dense vector per text out."""

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, runtime_checkable

from composeflow.components.option import (
    ComponentOption,
    apply_common_options,
    apply_impl_specific_options,
)


@runtime_checkable
class Embedder(Protocol):
    def embed_strings(self, texts: List[str], *opts: "Option") -> List[List[float]]:
        ...


class Option(ComponentOption):
    __slots__ = ()


@dataclass
class Options:
    model: Optional[str] = None


def with_model(model: str) -> Option:
    return Option(apply=lambda o: setattr(o, "model", model))


def wrap_impl_specific_opt_fn(fn) -> Option:
    return Option(impl_specific=fn)


def get_common_options(base: Optional[Options], *opts: Any) -> Options:
    return apply_common_options(base if base is not None else Options(), *opts)


def get_impl_specific_options(base: Any, *opts: Any) -> Any:
    return apply_impl_specific_options(base, *opts)
