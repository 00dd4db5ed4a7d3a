"""
Message schema for chat-model pipelines.

Messages are plain dataclasses. Streaming chat models emit partial
``Message`` chunks that are merged back together by ``concat_messages``:
contents are appended, tool calls with the same ``index`` are merged by
appending their argument strings.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class RoleType(str, Enum):
    """Role of the author of a message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


System = RoleType.SYSTEM
User = RoleType.USER
Assistant = RoleType.ASSISTANT
Tool = RoleType.TOOL


@dataclass
class FunctionCall:
    """Name of the function to call and its JSON-encoded arguments."""

    name: str = ""
    arguments: str = ""


@dataclass
class ToolCall:
    """
    A single tool invocation requested by an assistant message.

    Attributes:
        id: Identifier echoed back in the tool message (``tool_call_id``).
        function: Function name and JSON arguments.
        index: Position of the call in a streamed response. Chunks carrying
            the same index are merged by ``concat_messages``.
        type: Always ``"function"`` for now.
    """

    id: str = ""
    function: FunctionCall = field(default_factory=FunctionCall)
    index: Optional[int] = None
    type: str = "function"
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ResponseMeta:
    """Provider metadata attached to a model response."""

    finish_reason: str = ""
    usage: Optional[Dict[str, int]] = None


@dataclass
class Message:
    """
    A chat message.

    Attributes:
        role: Author of the message.
        content: Text content.
        tool_calls: Tool calls requested by an assistant message.
        tool_call_id: For tool messages, the id of the call answered.
        name: Optional author / tool name.
        response_meta: Provider metadata for assistant messages.
        extra: Free-form extension fields.
    """

    role: RoleType = RoleType.USER
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_call_id: str = ""
    name: str = ""
    response_meta: Optional[ResponseMeta] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        text = f"{self.role.value}: {self.content}"
        if self.tool_calls:
            calls = ", ".join(
                f"{c.function.name}({c.function.arguments})" for c in self.tool_calls
            )
            text += f"\ntool_calls: {calls}"
        if self.tool_call_id:
            text += f"\ntool_call_id: {self.tool_call_id}"
        return text


def system_message(content: str) -> Message:
    return Message(role=RoleType.SYSTEM, content=content)


def user_message(content: str) -> Message:
    return Message(role=RoleType.USER, content=content)


def assistant_message(
    content: str, tool_calls: Optional[List[ToolCall]] = None
) -> Message:
    return Message(
        role=RoleType.ASSISTANT, content=content, tool_calls=list(tool_calls or [])
    )


def tool_message(content: str, tool_call_id: str, name: str = "") -> Message:
    return Message(
        role=RoleType.TOOL, content=content, tool_call_id=tool_call_id, name=name
    )


def concat_messages(msgs: List[Message]) -> Message:
    """
    Merge streamed message chunks into a single message.

    Args:
        msgs: Chunks in emission order. ``None`` entries are rejected.

    Returns:
        Message: A new message; the chunks are not modified.

    Raises:
        ValueError: If the list is empty, contains ``None``, or the chunks
            disagree on role, name or tool_call_id.
    """
    if not msgs:
        raise ValueError("cannot concat an empty list of messages")

    role: Optional[RoleType] = None
    name = ""
    tool_call_id = ""
    contents: List[str] = []
    tool_calls: List[ToolCall] = []
    response_meta: Optional[ResponseMeta] = None
    extra: Dict[str, Any] = {}

    for i, msg in enumerate(msgs):
        if msg is None:
            raise ValueError(f"unexpected None chunk in message stream at {i}")

        if msg.role:
            if role is None:
                role = msg.role
            elif role != msg.role:
                raise ValueError(
                    f"cannot concat messages with different roles: '{role.value}' '{msg.role.value}'"
                )
        if msg.name:
            if not name:
                name = msg.name
            elif name != msg.name:
                raise ValueError(
                    f"cannot concat messages with different names: '{name}' '{msg.name}'"
                )
        if msg.tool_call_id:
            if not tool_call_id:
                tool_call_id = msg.tool_call_id
            elif tool_call_id != msg.tool_call_id:
                raise ValueError(
                    "cannot concat messages with different tool_call_ids: "
                    f"'{tool_call_id}' '{msg.tool_call_id}'"
                )

        if msg.content:
            contents.append(msg.content)
        if msg.tool_calls:
            tool_calls.extend(msg.tool_calls)
        if msg.response_meta is not None:
            response_meta = copy.copy(msg.response_meta)
        if msg.extra:
            extra.update(msg.extra)

    return Message(
        role=role or RoleType.USER,
        content="".join(contents),
        tool_calls=_merge_tool_calls(tool_calls),
        tool_call_id=tool_call_id,
        name=name,
        response_meta=response_meta,
        extra=extra,
    )


def _merge_tool_calls(calls: List[ToolCall]) -> List[ToolCall]:
    merged: List[ToolCall] = []
    by_index: Dict[int, ToolCall] = {}

    for call in calls:
        if call.index is None:
            merged.append(copy.deepcopy(call))
            continue

        existing = by_index.get(call.index)
        if existing is None:
            existing = copy.deepcopy(call)
            by_index[call.index] = existing
            merged.append(existing)
            continue

        if call.id:
            if existing.id and existing.id != call.id:
                raise ValueError(
                    f"cannot concat tool calls with different ids at index {call.index}: "
                    f"'{existing.id}' '{call.id}'"
                )
            existing.id = call.id
        if call.function.name:
            existing.function.name = call.function.name
        existing.function.arguments += call.function.arguments
        existing.extra.update(call.extra)

    return merged
