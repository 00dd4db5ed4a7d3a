"""
Compiled, immutable graphs.

A ``Runnable`` is what ``Chain.compile()`` and ``Graph.compile()`` return.
It can be called in four modes, concurrently from any number of threads:

    >>> runnable.invoke({"query": "hi"})                       # value -> value
    >>> for chunk in runnable.stream({"query": "hi"}): ...     # value -> stream
    >>> runnable.collect(stream_reader_from_array([...]))      # stream -> value
    >>> runnable.transform(stream_reader_from_array([...]))    # stream -> stream

Every call accepts routed invocation options (``with_lambda_option`` ...)
and an optional ``CancellationToken``.
"""

import logging
import threading
from typing import Any, Callable, List, Optional, Set, Tuple

import networkx as nx

from composeflow.compose.adapter import NodeAdapter
from composeflow.compose.compiler import CompiledGraph
from composeflow.compose.context import CancellationToken, RunContext
from composeflow.compose.options import OptionRouter
from composeflow.compose.runtime import Scheduler
from composeflow.compose.types import check_value, type_name
from composeflow.schema.stream import (
    StreamReader,
    concat_stream,
    pipe,
    stream_reader_from_array,
)

logger = logging.getLogger(__name__)


def _noop() -> None:
    return None


class _InvocationReader(StreamReader[Any]):
    """Output of ``stream``/``transform``; closing it cancels the invocation."""

    def __init__(self, reader: StreamReader[Any], token: CancellationToken):
        self._reader = reader
        self._token = token

    def recv(self) -> Any:
        return self._reader.recv()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._reader.close()
        self._token.cancel("output stream closed by the consumer")


class Runnable:
    """
    An executable graph.

    Attributes:
        input_type: Type accepted by ``invoke`` and ``stream``.
        output_type: Type returned by ``invoke`` and ``collect``.
        name: Graph name.
        user_keys: Caller-supplied node keys, nested subgraphs included.
    """

    def __init__(self, compiled: CompiledGraph):
        self._compiled = compiled

    @property
    def input_type(self) -> Any:
        return self._compiled.input_type

    @property
    def output_type(self) -> Any:
        return self._compiled.output_type

    @property
    def name(self) -> str:
        return self._compiled.name

    @property
    def user_keys(self) -> Set[str]:
        return set(self._compiled.user_keys)

    @property
    def compiled(self) -> CompiledGraph:
        return self._compiled

    @property
    def graph(self) -> nx.DiGraph:
        return self._compiled.graph

    def __repr__(self) -> str:
        return (
            f"Runnable({self.name!r}, {type_name(self.input_type)} -> "
            f"{type_name(self.output_type)}, {len(self._compiled.nodes)} nodes)"
        )

    def _start(self, opts: Tuple[Any, ...], token: Optional[CancellationToken]) -> Tuple[RunContext, Callable[[], None]]:
        if token is None:
            own, detach = CancellationToken(), _noop
        else:
            own, detach = token.child()
        ctx = RunContext(token=own, router=OptionRouter(opts), graph_name=self.name)
        return ctx, detach

    def _check_input(self, input: Any) -> None:
        if not check_value(input, self.input_type):
            raise TypeError(
                f"graph '{self.name}' expects input of type {type_name(self.input_type)}, "
                f"got {type(input).__name__}"
            )

    def invoke(self, input: Any, *opts: Any, token: Optional[CancellationToken] = None) -> Any:
        """
        Run the graph on ``input`` and return the value reaching ``END``.

        Runs on the calling thread; nodes run on a per-invocation pool.

        Args:
            input: Graph input.
            *opts: Invocation options (``with_lambda_option`` ...).
            token: Cancellation token; cancelling it aborts the invocation.

        Raises:
            NodeExecutionError: A node failed; the message names the node key.
            StepBudgetExceeded: The graph ran more steps than allowed.
            Canceled: ``token`` was cancelled (``DeadlineExceeded`` on timeout).
        """
        self._check_input(input)
        ctx, detach = self._start(opts, token)
        logger.info(f"Invoking graph '{self.name}'")
        try:
            output = Scheduler(self._compiled, ctx, stream=False).run(input)
        finally:
            detach()
        logger.info(f"Graph '{self.name}' completed")
        return output

    def collect(
        self, input: StreamReader[Any], *opts: Any, token: Optional[CancellationToken] = None
    ) -> Any:
        """Run the graph on a stream of input chunks and return the concatenated output."""
        ctx, detach = self._start(opts, token)
        logger.info(f"Collecting graph '{self.name}'")
        try:
            output = concat_stream(Scheduler(self._compiled, ctx, stream=True).run(input))
        finally:
            detach()
        logger.info(f"Graph '{self.name}' completed")
        return output

    def stream(
        self, input: Any, *opts: Any, token: Optional[CancellationToken] = None
    ) -> StreamReader[Any]:
        """
        Run the graph on ``input`` and return a stream of the output.

        The graph runs on a background thread. Closing the returned reader
        before the end cancels the invocation.
        """
        self._check_input(input)
        return self._serve(stream_reader_from_array([input]), opts, token)

    def transform(
        self, input: StreamReader[Any], *opts: Any, token: Optional[CancellationToken] = None
    ) -> StreamReader[Any]:
        """Run the graph on a stream of input chunks and return a stream of the output."""
        return self._serve(input, opts, token)

    def _serve(
        self, input: StreamReader[Any], opts: Tuple[Any, ...], token: Optional[CancellationToken]
    ) -> StreamReader[Any]:
        ctx, detach = self._start(opts, token)
        reader, writer = pipe()
        remove = ctx.token.on_cancel(writer.abort)
        logger.info(f"Streaming graph '{self.name}'")

        def pump() -> None:
            try:
                output = Scheduler(self._compiled, ctx, stream=True).run(input)
                try:
                    for chunk in output:
                        if writer.send(chunk):
                            logger.debug(f"Consumer of graph '{self.name}' stopped reading")
                            break
                finally:
                    output.close()
                writer.close()
                logger.info(f"Graph '{self.name}' completed")
            except Exception as e:
                logger.error(f"Graph '{self.name}' failed: {e}")
                # Chunks sent before the error stay readable.
                writer.send(None, e)
                writer.close()
            finally:
                remove()
                detach()

        thread = threading.Thread(target=pump, name=f"composeflow-stream-{self.name}", daemon=True)
        thread.start()
        return _InvocationReader(reader, ctx.token)

    def as_node_adapter(self) -> NodeAdapter:
        """
        Adapter running this graph as a node of an enclosing graph.

        The nested graph shares the caller's token and options (see
        ``RunContext.enter``) and counts its steps on its own.
        """

        def invoke(ctx: RunContext, input: Any, opts: List[Any]) -> Any:
            return Scheduler(self._compiled, ctx, stream=False).run(input)

        def transform(ctx: RunContext, input: StreamReader[Any], opts: List[Any]) -> StreamReader[Any]:
            return Scheduler(self._compiled, ctx, stream=True).run(input)

        return NodeAdapter(invoke=invoke, transform=transform)
