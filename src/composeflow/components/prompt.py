"""
Chat templates.

A chat template renders a mapping of variables into a list of messages. The
default implementation holds an ordered list of message templates, each of
which is either a ``Message`` whose content is a format string, or a
placeholder that splices a list of messages taken from the variables:

    >>> template = from_messages(
    ...     FormatType.FSTRING,
    ...     system_message("You are a {role}."),
    ...     messages_placeholder("history", optional=True),
    ...     user_message("{query}"),
    ... )
    >>> [m.content for m in template.format({"role": "poet", "query": "hi"})]
    ['You are a poet.', 'hi']

Two formats are supported: ``FSTRING`` uses ``str.format`` and ``JINJA2``
renders with a sandboxed jinja2 environment.
"""

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Union, runtime_checkable

from jinja2 import StrictUndefined
from jinja2.sandbox import SandboxedEnvironment

from composeflow.components.option import ComponentOption, apply_impl_specific_options
from composeflow.schema.message import Message

_jinja_env = SandboxedEnvironment(undefined=StrictUndefined, autoescape=False)


class FormatType(str, Enum):
    FSTRING = "fstring"
    JINJA2 = "jinja2"


def format_content(content: str, variables: Dict[str, Any], format_type: FormatType) -> str:
    """
    Render a single template string.

    Raises:
        KeyError: FString template referencing an unknown variable.
        jinja2.exceptions.UndefinedError: Same for a Jinja2 template.
        ValueError: Unknown format type.
    """
    if format_type == FormatType.FSTRING:
        return content.format(**variables)
    if format_type == FormatType.JINJA2:
        return _jinja_env.from_string(content).render(**variables)
    raise ValueError(f"unknown format type: {format_type}")


@dataclass
class MessagesPlaceholder:
    """Splices ``variables[key]`` (a message or list of messages) into the output."""

    key: str
    optional: bool = False

    def format(self, variables: Dict[str, Any], format_type: FormatType) -> List[Message]:
        if self.key not in variables:
            if self.optional:
                return []
            raise KeyError(f"messages placeholder '{self.key}' not found in variables")
        value = variables[self.key]
        if value is None:
            return []
        if isinstance(value, Message):
            return [value]
        if not isinstance(value, (list, tuple)) or not all(
            isinstance(m, Message) for m in value
        ):
            raise TypeError(
                f"messages placeholder '{self.key}' must hold a list of Message, "
                f"got {type(value).__name__}"
            )
        return list(value)


def messages_placeholder(key: str, optional: bool = False) -> MessagesPlaceholder:
    return MessagesPlaceholder(key=key, optional=optional)


MessagesTemplate = Union[Message, MessagesPlaceholder]


@runtime_checkable
class ChatTemplate(Protocol):
    def format(self, variables: Dict[str, Any], *opts: "Option") -> List[Message]:
        ...


class Option(ComponentOption):
    __slots__ = ()


def wrap_impl_specific_opt_fn(fn) -> Option:
    return Option(impl_specific=fn)


def get_impl_specific_options(base: Any, *opts: Any) -> Any:
    return apply_impl_specific_options(base, *opts)


class DefaultChatTemplate:
    """
    Ordered list of message templates rendered with one format type.

    Attributes:
        templates: Messages (content is a format string) and placeholders.
        format_type: How message contents are rendered.
    """

    def __init__(self, templates: List[MessagesTemplate], format_type: FormatType):
        self.templates = list(templates)
        self.format_type = format_type

    def format(self, variables: Optional[Dict[str, Any]], *opts: Any) -> List[Message]:
        variables = variables or {}
        result: List[Message] = []
        for template in self.templates:
            if isinstance(template, MessagesPlaceholder):
                result.extend(template.format(variables, self.format_type))
                continue
            rendered = copy.copy(template)
            rendered.content = format_content(template.content, variables, self.format_type)
            result.append(rendered)
        return result

    def __repr__(self) -> str:
        return f"DefaultChatTemplate({len(self.templates)} templates, {self.format_type.value})"


def from_messages(format_type: FormatType, *templates: MessagesTemplate) -> DefaultChatTemplate:
    return DefaultChatTemplate(list(templates), format_type)
