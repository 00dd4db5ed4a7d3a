"""
Document loader and transformer contracts.

Loaders read a ``Source`` into documents; transformers map a list of
documents to another (splitting, filtering, enriching metadata).
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, runtime_checkable

from composeflow.components.option import (
    ComponentOption,
    apply_common_options,
    apply_impl_specific_options,
)
from composeflow.schema.document import Document, Source


@runtime_checkable
class Loader(Protocol):
    def load(self, src: Source, *opts: "LoaderOption") -> List[Document]:
        ...


@runtime_checkable
class Transformer(Protocol):
    def transform(
        self, docs: List[Document], *opts: "TransformerOption"
    ) -> List[Document]:
        ...


class LoaderOption(ComponentOption):
    __slots__ = ()


class TransformerOption(ComponentOption):
    __slots__ = ()


@dataclass
class LoaderOptions:
    """Common loader options; ``parser`` turns raw bytes into documents."""

    parser: Any = None


def with_parser(parser: Any) -> LoaderOption:
    return LoaderOption(apply=lambda o: setattr(o, "parser", parser))


def wrap_loader_impl_specific_opt_fn(fn) -> LoaderOption:
    return LoaderOption(impl_specific=fn)


def wrap_transformer_impl_specific_opt_fn(fn) -> TransformerOption:
    return TransformerOption(impl_specific=fn)


def get_loader_common_options(
    base: Optional[LoaderOptions], *opts: Any
) -> LoaderOptions:
    return apply_common_options(base if base is not None else LoaderOptions(), *opts)


def get_impl_specific_options(base: Any, *opts: Any) -> Any:
    return apply_impl_specific_options(base, *opts)
