"""
Scheduler executing a compiled graph.

One ``Scheduler`` runs one graph once. Nodes are dispatched to a thread pool
as soon as every predecessor has reported; independent nodes (parallel
children, for instance) therefore run concurrently.

Each predecessor reports either a value or ``SKIP``. A branch node reports
its input to the selected target and ``SKIP`` to the others; a node whose
inputs are all ``SKIP`` is not run and forwards ``SKIP`` in turn, so that
the unselected side of a branch is pruned before it reaches a join or
``END``.

In stream mode every node is called through its ``transform`` method and
exchanges ``StreamReader`` objects with its neighbours. Readers are lazy:
chunks are produced when the consumer pulls them, and a node with several
successors hands each of them a copy of its output.
"""

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Tuple

from composeflow.compose.callbacks import CallbackManager, RunInfo
from composeflow.compose.compiler import CompiledGraph, CompiledNode
from composeflow.compose.context import RunContext, StepCounter
from composeflow.compose.graph import END, START
from composeflow.compose.lambdas import _bind
from composeflow.compose.types import NodeKind, check_value, type_name
from composeflow.config import get_config
from composeflow.exceptions import (
    ComposeError,
    NodeExecutionError,
    PredicateError,
)
from composeflow.schema.stream import (
    StreamReader,
    concat_stream,
    merge_named_stream_readers,
    merge_stream_readers,
    stream_reader_from_array,
    stream_reader_with_convert,
)

logger = logging.getLogger(__name__)


class _Skip:
    def __repr__(self) -> str:
        return "SKIP"


SKIP = _Skip()


def wrap_node_error(node_key: str, error: BaseException) -> BaseException:
    """Errors of the engine pass through; anything else is attributed to ``node_key``."""
    if isinstance(error, ComposeError):
        return error
    return NodeExecutionError(node_key, error)


def _type_error(src: str, dst: str, value: Any, expected: Any) -> TypeError:
    return TypeError(
        f"value of type {type(value).__name__} from '{src}' is not assignable "
        f"to input type {type_name(expected)}"
    )


class Scheduler:
    """
    Runs a ``CompiledGraph`` once, in invoke or stream mode.

    Args:
        graph: The compiled graph.
        ctx: Context of the caller. Its token and option router are used;
            the scheduler installs its own step counter.
        stream: Whether to exchange streams (``transform``) instead of
            values (``invoke``) between nodes.
    """

    def __init__(self, graph: CompiledGraph, ctx: RunContext, stream: bool = False):
        self.graph = graph
        self.stream = stream
        self.mode = "stream" if stream else "invoke"
        self.parent = ctx
        self.config = get_config()

    # -------------------------------------------------------------------------
    # Scheduling loop
    # -------------------------------------------------------------------------

    def run(self, input: Any) -> Any:
        """
        Execute the graph.

        Returns:
            The value reaching ``END`` in invoke mode, a ``StreamReader`` of
            it in stream mode.

        Raises:
            NodeExecutionError: A node (or branch predicate) failed.
            StepBudgetExceeded: More nodes ran than ``max_run_steps``.
            Canceled: The invocation was cancelled or its deadline passed.
        """
        token, detach = self.parent.token.child()
        self.ctx = RunContext(
            token=token,
            router=self.parent.router,
            steps=StepCounter(self.graph.max_run_steps, self.graph.name),
            path=self.parent.path,
            graph_name=self.graph.name,
        )
        canceled: Future = Future()
        remove = token.on_cancel(canceled.set_result)

        g = self.graph.graph
        self._preds: Dict[str, List[str]] = {k: list(g.predecessors(k)) for k in g.nodes}
        self._inbox: Dict[str, Dict[str, Any]] = {k: {} for k in g.nodes}
        self._ready: List[str] = []

        executor = ThreadPoolExecutor(
            max_workers=self.graph.max_workers,
            thread_name_prefix=f"composeflow-{self.graph.name}",
        )
        pending: Dict[Future, str] = {}
        failed = False
        try:
            self._emit(START, input)
            while True:
                while self._ready:
                    key = self._ready.pop(0)
                    if key == END:
                        logger.debug(f"Graph '{self.graph.name}' reached END after {self.ctx.steps.count} steps")
                        return self._assemble(END)
                    if all(v is SKIP for v in self._inbox[key].values()):
                        logger.debug(f"Node '{key}' skipped: not on the selected path")
                        self._emit(key, SKIP)
                        continue
                    node_input = self._assemble(key)
                    pending[executor.submit(self._execute, key, node_input)] = key

                if not pending:
                    raise ComposeError(f"graph '{self.graph.name}' stalled before reaching END")

                done, _ = wait(list(pending) + [canceled], return_when=FIRST_COMPLETED)
                if canceled in done:
                    raise token.error
                for future in done:
                    key = pending.pop(future)
                    output = future.result()
                    if self.graph.nodes[key].kind == NodeKind.BRANCH:
                        selected, output = output
                        self._emit(key, output, selected)
                    else:
                        self._emit(key, output)
        except BaseException as e:
            failed = True
            token.cancel(f"graph '{self.graph.name}' failed: {e}")
            raise
        finally:
            remove()
            detach()
            executor.shutdown(wait=not failed, cancel_futures=True)

    def _emit(self, src: str, output: Any, selected: Optional[str] = None) -> None:
        successors = list(self.graph.graph.successors(src))
        if output is SKIP:
            targets: List[str] = []
        elif selected is not None:
            targets = [selected]
        else:
            targets = successors

        values: List[Any] = [output] * len(targets)
        if self.stream and len(targets) > 1:
            values = output.copy(len(targets))
        if len(targets) > 1 and any(
            self.graph.graph.edges[src, t].get("parallel") for t in targets
        ):
            logger.info(f"Starting {len(targets)} parallel node(s) from '{src}'")

        delivered = dict(zip(targets, values))
        for successor in successors:
            self._deliver(successor, src, delivered.get(successor, SKIP))

    def _deliver(self, dst: str, src: str, value: Any) -> None:
        inbox = self._inbox[dst]
        inbox[src] = value
        if len(inbox) == len(self._preds[dst]):
            self._ready.append(dst)

    # -------------------------------------------------------------------------
    # Input assembly
    # -------------------------------------------------------------------------

    def _checked(self, src: str, dst: str, value: Any) -> Any:
        expected = self.graph.graph.edges[src, dst].get("check_type")
        if expected is None:
            return value
        if not self.stream:
            if not check_value(value, expected):
                raise NodeExecutionError(dst, _type_error(src, dst, value, expected))
            return value

        def check(chunk: Any) -> Any:
            if not check_value(chunk, expected):
                raise NodeExecutionError(dst, _type_error(src, dst, chunk, expected))
            return chunk

        return stream_reader_with_convert(value, check)

    def _assemble(self, key: str) -> Any:
        inbox = self._inbox[key]
        active: List[Tuple[str, Any]] = [
            (p, self._checked(p, key, inbox[p])) for p in self._preds[key] if inbox[p] is not SKIP
        ]
        if not active:
            raise ComposeError(f"graph '{self.graph.name}': no input reached '{key}'")

        node = self.graph.nodes.get(key)
        if node is not None and node.kind == NodeKind.PARALLEL_JOIN:
            named = {
                self.graph.graph.edges[p, key]["output_key"]: value for p, value in active
            }
            return merge_named_stream_readers(named) if self.stream else named

        if len(active) == 1:
            return active[0][1]
        if self.stream:
            owners: Dict[str, str] = {}
            return merge_stream_readers(
                [stream_reader_with_convert(value, self._claim_keys(key, src, owners)) for src, value in active]
            )

        merged: Dict[str, Any] = {}
        for src, value in active:
            if not isinstance(value, dict):
                raise NodeExecutionError(
                    key,
                    TypeError(
                        f"cannot merge inputs from {[p for p, _ in active]}: "
                        f"'{src}' emitted {type(value).__name__}, not a mapping"
                    ),
                )
            for k, v in value.items():
                if k in merged:
                    raise NodeExecutionError(
                        key, ValueError(f"duplicate key '{k}' while merging inputs")
                    )
                merged[k] = v
        return merged

    @staticmethod
    def _claim_keys(key: str, src: str, owners: Dict[str, str]) -> Callable[[Any], Any]:
        """Chunk check of a streamed input: a mapping key may come from one predecessor only."""

        def claim(chunk: Any) -> Any:
            if isinstance(chunk, dict):
                for k in chunk:
                    if owners.setdefault(k, src) != src:
                        raise NodeExecutionError(
                            key, ValueError(f"duplicate key '{k}' while merging inputs")
                        )
            return chunk

        return claim

    # -------------------------------------------------------------------------
    # Node execution (worker threads)
    # -------------------------------------------------------------------------

    def _execute(self, key: str, input: Any) -> Any:
        self.ctx.token.raise_if_cancelled()
        self.ctx.steps.increment()
        node = self.graph.nodes[key]
        logger.debug(f"Entering node: {key} ({node.kind.value})")
        if node.kind == NodeKind.PARALLEL_JOIN:
            return input
        if node.kind == NodeKind.BRANCH:
            return self._execute_branch(node, input)
        output = self._call(node, input)
        logger.debug(f"Node '{key}' completed")
        return output

    def _execute_branch(self, node: CompiledNode, input: Any) -> Tuple[str, Any]:
        branch = node.branch
        output = input
        try:
            if self.stream:
                peek, output = input.copy(2)
                if branch.stream:
                    decision_input = peek
                else:
                    decision_input = concat_stream(peek)
            elif branch.stream:
                peek = stream_reader_from_array([input])
                decision_input = peek
            else:
                decision_input = input
            try:
                name = _bind(branch.predicate)(self.ctx, decision_input, [])
            finally:
                if branch.stream:
                    peek.close()
        except ComposeError:
            raise
        except Exception as e:
            raise NodeExecutionError(node.key, PredicateError(str(e), node.key)) from e

        if name not in branch.targets:
            raise NodeExecutionError(
                node.key,
                PredicateError(
                    f"branch returned unknown target '{name}', expected one of {sorted(branch.targets)}",
                    node.key,
                ),
            )
        logger.debug(f"Branch '{node.key}' selected '{name}'")
        return branch.targets[name], output

    def _guard(self, node_key: str, reader: StreamReader[Any]) -> StreamReader[Any]:
        # Readers outlive run(), after which the scheduler token is detached.
        tokens = (self.ctx.token, self.parent.token)

        def chunk(c: Any) -> Any:
            for token in tokens:
                token.raise_if_cancelled()
            return c

        return stream_reader_with_convert(reader, chunk, lambda e: wrap_node_error(node_key, e))

    def _call(self, node: CompiledNode, input: Any) -> Any:
        key = node.key
        if node.kind == NodeKind.GRAPH:
            ctx = self.ctx.enter(key, getattr(node.subgraph, "user_keys", ()))
            opts: List[Any] = []
        else:
            ctx = self.ctx
            opts = self.ctx.router.options_for(key, node.kind)

        handlers = self.ctx.router.callbacks_for(key)
        callbacks = None
        info = None
        if handlers:
            callbacks = CallbackManager(handlers, timeout=self.config.callback_timeout)
            info = RunInfo(key, node.kind.value, node.name, self.graph.name)
            callbacks.fire_start(info, None if self.stream else input)

        try:
            if self.stream:
                output = self._guard(key, node.adapter.transform(ctx, input, opts))
            else:
                output = node.adapter.invoke(ctx, input, opts)
        except Exception as e:
            error = wrap_node_error(key, e)
            if error is e:
                logger.debug(f"Node '{key}' propagated: {e}")
            else:
                logger.error(f"Error in node '{key}': {e}")
            if callbacks is not None:
                callbacks.fire_error(info, error)
            if error is e:
                raise
            raise error from e

        if callbacks is not None:
            callbacks.fire_end(info, None if self.stream else output)
        return output
