"""
ReAct agent: a tool-calling chat model in a loop with a tools node.

Each round calls the model on the conversation so far. If the answer carries
tool calls, the tools node runs them (concurrently), the assistant message
and the tool messages are appended to the conversation, and the next round
starts. An answer without tool calls ends the run.

Example:
    >>> agent = new_agent(AgentConfig(
    ...     tool_calling_model=model,
    ...     tools_config=ToolsNodeConfig(tools=[weather_tool]),
    ...     max_step=6,
    ... ))
    >>> agent.generate([user_message("weather in Paris?")]).content
    'It is sunny in Paris.'

Every model call and every tools node call is one step; a run taking more
than ``max_step`` steps raises ``StepBudgetExceeded``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Set

from composeflow.compose.adapter import NodeAdapter
from composeflow.compose.context import CancellationToken, RunContext, StepCounter
from composeflow.compose.tools_node import ToolsNode, ToolsNodeConfig
from composeflow.compose.tools_node import with_tool_list as tools_node_with_tool_list
from composeflow.compose.types import NodeKind
from composeflow.config import get_config
from composeflow.exceptions import ComposeError, NodeExecutionError, ToolError
from composeflow.flow.agent.react.future import MessageFuture
from composeflow.flow.agent.react.options import AgentOption
from composeflow.schema.message import Message
from composeflow.schema.stream import (
    ReplayableStream,
    SkipChunk,
    StreamReader,
    concat_message_stream,
    concat_stream,
    stream_reader_with_convert,
)

logger = logging.getLogger(__name__)

MODEL_NODE_KEY = "chat"
TOOLS_NODE_KEY = "tools"

MessageModifier = Callable[[List[Message]], List[Message]]
StreamToolCallChecker = Callable[[StreamReader[Message]], bool]


def first_chunk_stream_tool_call_checker(reader: StreamReader[Message]) -> bool:
    """
    Decide from the first meaningful chunk whether a streamed answer calls tools.

    Returns ``True`` at the first chunk with tool calls and ``False`` at the
    first chunk with non-empty content (or at the end of the stream). Models
    emitting text before their tool calls need a custom checker.
    """
    try:
        for chunk in reader:
            if chunk.tool_calls:
                return True
            if chunk.content:
                return False
        return False
    finally:
        reader.close()


@dataclass
class AgentConfig:
    """
    Configuration of a ReAct agent.

    Attributes:
        tool_calling_model: Chat model implementing ``generate``/``stream``
            and ``with_tools``.
        tools_config: Tools the model may call.
        max_step: Step budget of one run (``ComposeConfig.agent_max_step`` if 0).
        message_modifier: ``fn(messages) -> messages`` applied to the
            conversation before every model call.
        tools_return_directly: Tool names whose result ends the run: the
            tool message becomes the agent's answer.
        stream_tool_call_checker: ``fn(reader) -> bool`` deciding in stream
            mode whether the model answer carries tool calls.
        graph_name: Name of the agent in logs and visualizations.
    """

    tool_calling_model: Any
    tools_config: ToolsNodeConfig = field(default_factory=ToolsNodeConfig)
    max_step: int = 0
    message_modifier: Optional[MessageModifier] = None
    tools_return_directly: Set[str] = field(default_factory=set)
    stream_tool_call_checker: Optional[StreamToolCallChecker] = None
    graph_name: str = "ReActAgent"


class _Run:
    """Resolved options of one run."""

    def __init__(self, agent: "Agent", opts: List[AgentOption], model_opts: List[Any], tool_opts: List[Any]):
        self.model = agent._model
        self.model_opts = list(model_opts)
        self.tool_opts = list(tool_opts)
        self.futures: List[MessageFuture] = []
        for opt in opts:
            if not isinstance(opt, AgentOption):
                raise TypeError(
                    f"agent options must be created with with_chat_model_options() and friends, got {opt!r}"
                )
            self.model_opts.extend(opt.model_opts)
            self.tool_opts.extend(opt.tool_opts)
            if opt.tools is not None:
                self.model = agent._bind_tools(opt.tools)
                self.tool_opts.append(tools_node_with_tool_list(*opt.tools))
            if opt.future is not None:
                self.futures.append(opt.future)

    def publish(self, message: Message) -> None:
        for future in self.futures:
            future.send_message(message)

    def publish_stream(self, stream: ReplayableStream) -> None:
        for future in self.futures:
            future.send_stream(stream)

    def close(self, error: Optional[BaseException] = None) -> None:
        for future in self.futures:
            future.close(error)


def _slot(index: int):
    def pick(chunk: List[Optional[Message]]) -> Message:
        message = chunk[index]
        if message is None:
            raise SkipChunk()
        return message

    return pick


def _tools_error(error: Exception) -> Exception:
    if isinstance(error, ToolError):
        return NodeExecutionError(TOOLS_NODE_KEY, error)
    return error


class Agent:
    """
    A ReAct agent.

    Attributes:
        name: Agent name.
        input_type: ``List[Message]``.
        output_type: ``Message``.

    Raises:
        ValueError: If no model is configured.
        TypeError: If tools are configured and the model has no ``with_tools``.
    """

    input_type = List[Message]
    output_type = Message

    def __init__(self, config: AgentConfig):
        if config.tool_calling_model is None:
            raise ValueError("agent needs a tool_calling_model")
        self.config = config
        self.name = config.graph_name
        self.max_step = config.max_step or get_config().agent_max_step
        self._base_model = config.tool_calling_model
        self._tools_node = ToolsNode(config.tools_config)
        self._model = self._bind_tools(config.tools_config.tools) if config.tools_config.tools else self._base_model
        self._checker = config.stream_tool_call_checker or first_chunk_stream_tool_call_checker
        logger.debug(
            f"Agent '{self.name}' created with tools {self._tools_node.tool_names}, max_step={self.max_step}"
        )

    def _bind_tools(self, tools: List[Any]) -> Any:
        with_tools = getattr(self._base_model, "with_tools", None)
        if not callable(with_tools):
            raise TypeError(
                f"chat model {type(self._base_model).__name__} has no 'with_tools' method"
            )
        return with_tools([tool.info() for tool in tools])

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def generate(
        self, messages: List[Message], *opts: AgentOption, token: Optional[CancellationToken] = None
    ) -> Message:
        """
        Run the agent until the model answers without tool calls.

        Args:
            messages: Conversation so far.
            *opts: Agent options (``with_chat_model_options`` ...).
            token: Cancellation token checked before every step.

        Raises:
            StepBudgetExceeded: The run took more than ``max_step`` steps.
            NodeExecutionError: The model (key ``chat``) or a tool (key ``tools``,
                cause ``ToolError``) failed.
            Canceled: ``token`` was cancelled.
        """
        run = _Run(self, list(opts), [], [])
        return self._execute(run, messages, token, stream=False)

    def stream(
        self, messages: List[Message], *opts: AgentOption, token: Optional[CancellationToken] = None
    ) -> StreamReader[Message]:
        """Run the agent with streaming model calls and return the final answer as a stream."""
        run = _Run(self, list(opts), [], [])
        return self._execute(run, messages, token, stream=True)

    def export_graph(self) -> "AgentGraph":
        """Return the agent as a subgraph for ``append_graph``/``add_graph_node``."""
        return AgentGraph(self)

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    def _execute(self, run: _Run, messages: List[Message], token: Optional[CancellationToken], stream: bool) -> Any:
        if token is None:
            token, detach = CancellationToken(), None
        else:
            token, detach = token.child()
        mode = "streaming" if stream else "generating"
        logger.info(f"Agent '{self.name}' {mode} with {len(messages)} input messages")
        try:
            output = self._loop(run, list(messages), token, stream)
        except BaseException as e:
            logger.error(f"Agent '{self.name}' failed: {e}")
            run.close(e)
            raise
        finally:
            if detach is not None:
                detach()
        run.close()
        logger.info(f"Agent '{self.name}' completed")
        return output

    def _call_model(self, run: _Run, history: List[Message], stream: bool) -> Any:
        prompt = self.config.message_modifier(list(history)) if self.config.message_modifier else history
        try:
            if stream:
                return run.model.stream(prompt, *run.model_opts)
            return run.model.generate(prompt, *run.model_opts)
        except ComposeError:
            raise
        except Exception as e:
            raise NodeExecutionError(MODEL_NODE_KEY, e) from e

    def _direct_return(self, message: Message) -> Optional[int]:
        for index, call in enumerate(message.tool_calls):
            if call.function.name in self.config.tools_return_directly:
                return index
        return None

    def _loop(self, run: _Run, history: List[Message], token: CancellationToken, stream: bool) -> Any:
        steps = StepCounter(self.max_step, self.name)
        while True:
            token.raise_if_cancelled()
            steps.increment()
            logger.debug(f"Agent '{self.name}' calling model (step {steps.count})")

            if stream:
                replay = ReplayableStream(self._call_model(run, history, stream=True))
                calls_tools = self._checker(replay.reader())
                run.publish_stream(replay)
                if not calls_tools:
                    return replay.reader()
                answer = concat_message_stream(replay.reader())
            else:
                answer = self._call_model(run, history, stream=False)
                run.publish(answer)
                if not answer.tool_calls:
                    return answer

            history.append(answer)
            token.raise_if_cancelled()
            steps.increment()
            logger.debug(f"Agent '{self.name}' running {len(answer.tool_calls)} tool call(s)")

            if stream:
                tool_streams = self._stream_tools(run, answer, token)
                for tool_stream in tool_streams:
                    run.publish_stream(tool_stream)
                tool_messages = [concat_message_stream(s.reader()) for s in tool_streams]
            else:
                try:
                    tool_messages = self._tools_node.invoke(answer, *run.tool_opts, token=token)
                except ToolError as e:
                    raise NodeExecutionError(TOOLS_NODE_KEY, e) from e
                for tool_msg in tool_messages:
                    run.publish(tool_msg)
            history.extend(tool_messages)

            direct = self._direct_return(answer)
            if direct is not None:
                logger.debug(f"Agent '{self.name}' returning tool '{answer.tool_calls[direct].function.name}' result directly")
                if stream:
                    return tool_streams[direct].reader()
                return tool_messages[direct]

    def _stream_tools(self, run: _Run, answer: Message, token: CancellationToken) -> List[ReplayableStream]:
        try:
            reader = self._tools_node.stream(answer, *run.tool_opts, token=token)
        except ToolError as e:
            raise NodeExecutionError(TOOLS_NODE_KEY, e) from e
        n = len(answer.tool_calls)
        copies = reader.copy(n)
        return [
            ReplayableStream(stream_reader_with_convert(copies[i], _slot(i), _tools_error))
            for i in range(n)
        ]


class AgentGraph:
    """
    An agent embedded in a chain or graph.

    The hosting node takes ``List[Message]`` and emits the final ``Message``.
    Invocation options reach the agent's model by kind
    (``with_chat_model_option(...)``) and its tools likewise
    (``with_tool_option(...)``), either global or designated to the hosting
    node.
    """

    input_type = List[Message]
    output_type = Message

    def __init__(self, agent: Agent):
        self.agent = agent
        self.name = agent.name

    @property
    def user_keys(self) -> Set[str]:
        return set()

    def _run(self, ctx: RunContext) -> _Run:
        return _Run(
            self.agent,
            [],
            ctx.router.options_for(MODEL_NODE_KEY, NodeKind.CHAT_MODEL),
            ctx.router.options_for(TOOLS_NODE_KEY, NodeKind.TOOLS_NODE),
        )

    def as_node_adapter(self) -> NodeAdapter:
        agent = self.agent

        def invoke(ctx: RunContext, messages: List[Message], opts: List[Any]) -> Message:
            return agent._execute(self._run(ctx), messages, ctx.token, stream=False)

        def transform(ctx: RunContext, messages: StreamReader[List[Message]], opts: List[Any]) -> StreamReader[Message]:
            return agent._execute(self._run(ctx), concat_stream(messages), ctx.token, stream=True)

        return NodeAdapter(invoke=invoke, transform=transform)


def new_agent(config: AgentConfig) -> Agent:
    return Agent(config)
