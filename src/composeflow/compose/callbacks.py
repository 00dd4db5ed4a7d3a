"""
Node lifecycle callbacks.

Handlers are installed per invocation with ``with_callbacks(*handlers)``
(optionally designated to some nodes) and are notified when a node starts,
ends or fails. Handler methods are all optional.

Callback Safety:
    - Every handler call is wrapped in try/except; errors are logged and do
      not affect the invocation.
    - Handlers run with a timeout (``ComposeConfig.callback_timeout``,
      5s by default).

Example:
    >>> class Timer:
    ...     def on_start(self, info, input):
    ...         self.t0 = time.time()
    ...     def on_end(self, info, output):
    ...         print(f"{info.node_key} took {time.time() - self.t0:.3f}s")
    >>> runnable.invoke({"query": "hi"}, with_callbacks(Timer()))
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass
class RunInfo:
    """
    Identifies the node a callback fires for.

    Attributes:
        node_key: Key of the node in its graph.
        kind: ``NodeKind`` value of the node.
        name: Display name (``with_node_name`` or the component's name).
        graph_name: Name of the graph containing the node.
    """

    node_key: str
    kind: str
    name: str = ""
    graph_name: str = ""


@runtime_checkable
class CallbackHandler(Protocol):
    """
    Protocol for node lifecycle callbacks.

    In streaming modes ``on_start`` and ``on_end`` receive ``None``: input
    and output are streams that belong to the neighbouring nodes.
    """

    def on_start(self, info: RunInfo, input: Any) -> None:
        """Called before the node runs."""
        ...

    def on_end(self, info: RunInfo, output: Any) -> None:
        """Called after the node returned."""
        ...

    def on_error(self, info: RunInfo, error: Exception) -> None:
        """Called when the node raised."""
        ...


class CallbackManager:
    """
    Dispatches events to callback handlers with error isolation.

    Each handler call runs in a separate thread joined with ``timeout``;
    errors and timeouts are logged and never reach the node.

    Attributes:
        handlers: Handlers notified for one node.
        timeout: Maximum time for one handler call.
    """

    def __init__(self, handlers: List[CallbackHandler], timeout: float = 5.0):
        self.handlers: List[CallbackHandler] = list(handlers)
        self.timeout = timeout

    def _invoke_handler(
        self, handler: CallbackHandler, method_name: str, *args: Any
    ) -> None:
        method = getattr(handler, method_name, None)
        if method is None:
            return

        exception: List[Optional[BaseException]] = [None]

        def run_handler():
            try:
                method(*args)
            except Exception as e:
                exception[0] = e

        thread = threading.Thread(target=run_handler, daemon=True)
        thread.start()
        thread.join(timeout=self.timeout)

        if thread.is_alive():
            logger.warning(
                f"Callback {handler.__class__.__name__}.{method_name} "
                f"timed out after {self.timeout}s"
            )
        elif exception[0] is not None:
            logger.warning(
                f"Callback {handler.__class__.__name__}.{method_name} error: {exception[0]}"
            )

    def fire_event(self, method_name: str, *args: Any) -> None:
        for handler in self.handlers:
            self._invoke_handler(handler, method_name, *args)

    def fire_start(self, info: RunInfo, input: Any) -> None:
        self.fire_event("on_start", info, input)

    def fire_end(self, info: RunInfo, output: Any) -> None:
        self.fire_event("on_end", info, output)

    def fire_error(self, info: RunInfo, error: Exception) -> None:
        self.fire_event("on_error", info, error)
