"""
Tools node: executes the tool calls of an assistant message.

Input is the assistant ``Message``; output is one tool ``Message`` per tool
call, in the order of the calls. Calls run concurrently on a thread pool
unless ``execute_sequentially`` is set.

Example:
    >>> tools = ToolsNode(ToolsNodeConfig(tools=[weather_tool, search_tool]))
    >>> tools.invoke(assistant_message("", tool_calls=[call]))
    [Message(role=<RoleType.TOOL: 'tool'>, content='sunny', tool_call_id='call_1', ...)]

In stream mode the node emits ``List[Optional[Message]]`` chunks with one
slot per call; concatenating the stream yields the invoke output.
"""

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from jsonschema import Draft7Validator

from composeflow.compose.context import CancellationToken
from composeflow.exceptions import ComposeError, ToolError
from composeflow.schema.concat import concat_items, register_stream_chunk_concat_func
from composeflow.schema.message import Message, ToolCall, tool_message
from composeflow.schema.stream import (
    StreamReader,
    concat_stream,
    pipe,
    stream_reader_from_array,
)

logger = logging.getLogger(__name__)

UnknownToolsHandler = Callable[[str, str], str]


class ToolMessageSlots(list):
    """Stream chunk of a tools node: one slot per tool call, ``None`` where empty."""


def _concat_slots(chunks: List[ToolMessageSlots]) -> List[Optional[Message]]:
    width = len(chunks[0])
    slots: List[List[Message]] = [[] for _ in range(width)]
    for chunk in chunks:
        if len(chunk) != width:
            raise ValueError(f"tool message chunks have different widths: {width} and {len(chunk)}")
        for i, message in enumerate(chunk):
            if message is not None:
                slots[i].append(message)
    return [concat_items(messages) if messages else None for messages in slots]


register_stream_chunk_concat_func(ToolMessageSlots, _concat_slots)


@dataclass
class ToolsNodeConfig:
    """
    Configuration of a ``ToolsNode``.

    Attributes:
        tools: Tools implementing ``info()`` plus ``invokable_run`` and/or
            ``streamable_run``.
        unknown_tools_handler: ``fn(name, arguments_in_json) -> str`` answering
            calls of tools that are not registered. Without it such calls fail.
        execute_sequentially: Run the calls one after the other, in order.
        validate_arguments: Validate call arguments against ``ToolInfo.params``.
    """

    tools: Sequence[Any] = field(default_factory=list)
    unknown_tools_handler: Optional[UnknownToolsHandler] = None
    execute_sequentially: bool = False
    validate_arguments: bool = True


class ToolsNodeOption:
    """Option of ``ToolsNode.invoke``/``stream`` overriding the node's tools."""

    __slots__ = ("tools",)

    def __init__(self, tools: Sequence[Any]):
        self.tools = list(tools)


def with_tool_list(*tools: Any) -> ToolsNodeOption:
    """Use ``tools`` instead of the configured tools for one call."""
    return ToolsNodeOption(tools)


class _Tool:
    """A registered tool with its name and compiled argument validator."""

    def __init__(self, tool: Any, validate: bool):
        info = tool.info()
        self.tool = tool
        self.name = info.name
        self.invokable = callable(getattr(tool, "invokable_run", None))
        self.streamable = callable(getattr(tool, "streamable_run", None))
        if not (self.invokable or self.streamable):
            raise TypeError(f"tool '{self.name}' implements neither invokable_run nor streamable_run")
        self.validator = Draft7Validator(info.params) if validate and info.params else None

    def validate(self, arguments: str) -> None:
        if self.validator is None:
            return
        try:
            payload = json.loads(arguments or "{}")
        except json.JSONDecodeError as e:
            raise ValueError(f"arguments are not valid JSON: {e}") from e
        errors = sorted(self.validator.iter_errors(payload), key=lambda err: list(err.path))
        if errors:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err.absolute_path) or '<root>'}: {err.message}"
                for err in errors
            )
            raise ValueError(f"invalid arguments: {details}")


def _index_tools(tools: Sequence[Any], validate: bool) -> Dict[str, _Tool]:
    indexed: Dict[str, _Tool] = {}
    for tool in tools:
        entry = _Tool(tool, validate)
        if entry.name in indexed:
            raise ValueError(f"duplicate tool name '{entry.name}'")
        indexed[entry.name] = entry
    return indexed


class ToolsNode:
    """
    Runs the tools requested by an assistant message.

    Raises:
        ValueError: At construction, if two tools share a name.
        TypeError: At construction, if a tool can neither be invoked nor streamed.
    """

    def __init__(self, config: ToolsNodeConfig):
        self.config = config
        self._tools = _index_tools(config.tools, config.validate_arguments)

    @property
    def tool_names(self) -> List[str]:
        return list(self._tools)

    def _split(self, opts: Tuple[Any, ...]) -> Tuple[Dict[str, _Tool], List[Any]]:
        tools = self._tools
        tool_opts: List[Any] = []
        for opt in opts:
            if isinstance(opt, ToolsNodeOption):
                tools = _index_tools(opt.tools, self.config.validate_arguments)
            else:
                tool_opts.append(opt)
        return tools, tool_opts

    def _resolve(self, tools: Dict[str, _Tool], call: ToolCall) -> Optional[_Tool]:
        name = call.function.name
        entry = tools.get(name)
        if entry is None and self.config.unknown_tools_handler is None:
            raise ToolError(name, LookupError(f"not found in tools node, known tools: {sorted(tools)}"))
        if entry is not None:
            try:
                entry.validate(call.function.arguments)
            except ValueError as e:
                raise ToolError(name, e) from e
        return entry

    def _run_invoke(self, entry: Optional[_Tool], call: ToolCall, opts: List[Any], token: Optional[CancellationToken]) -> Message:
        name = call.function.name
        if token is not None:
            token.raise_if_cancelled()
        logger.debug(f"Running tool '{name}' (call {call.id})")
        try:
            if entry is None:
                content = self.config.unknown_tools_handler(name, call.function.arguments)
            elif entry.invokable:
                content = entry.tool.invokable_run(call.function.arguments, *opts)
            else:
                content = concat_stream(entry.tool.streamable_run(call.function.arguments, *opts))
        except (ComposeError, ToolError):
            raise
        except Exception as e:
            logger.error(f"Error in tool '{name}': {e}")
            raise ToolError(name, e) from e
        return tool_message(content, call.id, name=name)

    def _run_stream(self, entry: Optional[_Tool], call: ToolCall, opts: List[Any], token: Optional[CancellationToken]) -> StreamReader[str]:
        name = call.function.name
        if token is not None:
            token.raise_if_cancelled()
        logger.debug(f"Streaming tool '{name}' (call {call.id})")
        try:
            if entry is not None and entry.streamable:
                return entry.tool.streamable_run(call.function.arguments, *opts)
            return stream_reader_from_array([self._run_invoke(entry, call, opts, token).content])
        except (ComposeError, ToolError):
            raise
        except Exception as e:
            logger.error(f"Error in tool '{name}': {e}")
            raise ToolError(name, e) from e

    def _map(self, fn: Callable[[ToolCall], Any], calls: List[ToolCall]) -> List[Any]:
        if self.config.execute_sequentially or len(calls) < 2:
            return [fn(call) for call in calls]
        logger.info(f"Running {len(calls)} tool calls concurrently")
        with ThreadPoolExecutor(max_workers=len(calls), thread_name_prefix="composeflow-tools") as executor:
            futures = [executor.submit(fn, call) for call in calls]
            return [future.result() for future in futures]

    def invoke(self, message: Message, *opts: Any, token: Optional[CancellationToken] = None) -> List[Message]:
        """
        Execute every tool call of ``message``.

        Args:
            message: Assistant message carrying ``tool_calls``.
            *opts: Tool options, handed to every tool, or ``with_tool_list``.
            token: Cancellation token checked before each call.

        Returns:
            Tool messages, in the order of the tool calls.

        Raises:
            ToolError: A tool failed, is unknown, or got invalid arguments.
                The node hosting the tools node reports it as a
                ``NodeExecutionError`` under its own key.
        """
        tools, tool_opts = self._split(opts)
        calls = list(message.tool_calls)
        entries = [self._resolve(tools, call) for call in calls]
        by_id = {id(call): entry for call, entry in zip(calls, entries)}
        return self._map(lambda call: self._run_invoke(by_id[id(call)], call, tool_opts, token), calls)

    def stream(
        self, message: Message, *opts: Any, token: Optional[CancellationToken] = None
    ) -> StreamReader[List[Optional[Message]]]:
        """
        Execute every tool call of ``message`` and stream the results.

        Each chunk is a list with one slot per call; only the slot of the
        call that produced the chunk is set.
        """
        tools, tool_opts = self._split(opts)
        calls = list(message.tool_calls)
        entries = [self._resolve(tools, call) for call in calls]
        readers = [
            self._run_stream(entry, call, tool_opts, token) for entry, call in zip(entries, calls)
        ]
        reader, writer = pipe()
        n = len(calls)

        def drain(index: int, call: ToolCall, source: StreamReader[str]) -> None:
            try:
                for chunk in source:
                    slots = ToolMessageSlots([None] * n)
                    slots[index] = tool_message(chunk, call.id, name=call.function.name)
                    if writer.send(slots):
                        return
            except Exception as e:
                error = e if isinstance(e, (ComposeError, ToolError)) else ToolError(call.function.name, e)
                writer.send(None, error)
            finally:
                source.close()

        def produce() -> None:
            if self.config.execute_sequentially:
                for index, (call, source) in enumerate(zip(calls, readers)):
                    drain(index, call, source)
            else:
                threads = [
                    threading.Thread(target=drain, args=(i, call, source), daemon=True)
                    for i, (call, source) in enumerate(zip(calls, readers))
                ]
                for thread in threads:
                    thread.start()
                for thread in threads:
                    thread.join()
            writer.close()

        threading.Thread(target=produce, name="composeflow-tools-stream", daemon=True).start()
        return reader


def new_tool_node(config: ToolsNodeConfig) -> ToolsNode:
    return ToolsNode(config)
