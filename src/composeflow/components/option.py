"""
Option carriers shared by every component contract.

Each component package (``model``, ``tool``, ``retriever`` ...) defines a
subclass of ``ComponentOption`` and a ``Options`` dataclass of common
settings. An option either applies to the common settings, or wraps an
implementation-specific function that concrete components read with
``get_impl_specific_options``:

    >>> from composeflow.components import model
    >>> opts = model.get_common_options(model.Options(), model.with_temperature(0.2))
    >>> opts.temperature
    0.2
"""

import inspect
import logging
from typing import Any, Callable, Optional, TypeVar, get_type_hints

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ComponentOption:
    """
    A single option for a component call.

    Attributes:
        apply: Function mutating the component's common ``Options``.
        impl_specific: Function mutating an implementation-specific options
            object; ignored by ``get_common_options``.
    """

    __slots__ = ("apply", "impl_specific")

    def __init__(
        self,
        apply: Optional[Callable[[Any], None]] = None,
        impl_specific: Optional[Callable[[Any], None]] = None,
    ):
        self.apply = apply
        self.impl_specific = impl_specific

    def __repr__(self) -> str:
        kind = "common" if self.apply is not None else "impl_specific"
        return f"{type(self).__name__}({kind})"


def apply_common_options(base: T, *opts: Any) -> T:
    """Apply the common part of ``opts`` to ``base`` and return it."""
    for opt in opts:
        if isinstance(opt, ComponentOption) and opt.apply is not None:
            opt.apply(base)
    return base


def _accepts(fn: Callable[[Any], None], base: Any) -> bool:
    try:
        params = list(inspect.signature(fn).parameters.values())
        hints = get_type_hints(fn)
    except (TypeError, ValueError, NameError):
        return True
    if not params:
        return False
    expected = hints.get(params[0].name)
    if expected is None or not isinstance(expected, type):
        return True
    return isinstance(base, expected)


def apply_impl_specific_options(base: T, *opts: Any) -> T:
    """
    Apply every implementation-specific function that targets ``type(base)``.

    A wrapped function targets a type through the annotation of its first
    parameter; unannotated functions are applied to any options object.
    """
    for opt in opts:
        if not isinstance(opt, ComponentOption) or opt.impl_specific is None:
            continue
        if _accepts(opt.impl_specific, base):
            opt.impl_specific(base)
        else:
            logger.debug(
                f"Skipping impl-specific option {opt.impl_specific!r} for {type(base).__name__}"
            )
    return base
