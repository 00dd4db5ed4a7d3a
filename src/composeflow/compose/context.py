"""
Per-invocation execution context.

Every invocation of a ``Runnable`` owns one ``RunContext``: the cancellation
token shared by all workers, the step counter, the option router and the
callback handlers. Nodes receive it as their first argument; lambdas can ask
for it by declaring a ``ctx`` parameter.
"""

import logging
import threading
from typing import Any, Callable, Iterable, List, Optional, Tuple

from composeflow.exceptions import Canceled, DeadlineExceeded, StepBudgetExceeded

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Cooperative cancellation token.

    Python threads cannot be forcibly stopped, so workers check the token
    before each dispatch and between stream chunks. A token may carry a
    deadline; once it elapses the token cancels itself with
    ``DeadlineExceeded``.

    Thread Safety:
        The token is thread-safe and can be shared across workers and
        invocations.

    Example:
        >>> token = CancellationToken(timeout=2.0)
        >>> runnable.invoke({"query": "hi"}, token=token)
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Initialize the cancellation token.

        Args:
            timeout: Optional deadline in seconds, counted from now.
        """
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._error: Optional[Canceled] = None
        self._callbacks: List[Callable[[Canceled], None]] = []
        self._timer: Optional[threading.Timer] = None
        self.timeout = timeout
        if timeout is not None:
            self._timer = threading.Timer(timeout, self._expire)
            self._timer.daemon = True
            self._timer.start()

    def _expire(self) -> None:
        self._set(DeadlineExceeded(self.timeout))

    def cancel(self, reason: Optional[str] = None) -> None:
        """Signal cancellation. Thread-safe; only the first call has effect."""
        self._set(Canceled(reason))

    def _set(self, error: Canceled) -> None:
        with self._lock:
            if self._error is not None:
                return
            self._error = error
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        self._cancelled.set()
        if self._timer is not None:
            self._timer.cancel()
        for callback in callbacks:
            try:
                callback(error)
            except Exception as e:
                logger.warning(f"Cancellation callback {callback!r} error: {e}")

    def is_cancelled(self) -> bool:
        """Check if cancellation was requested. Thread-safe."""
        return self._cancelled.is_set()

    @property
    def error(self) -> Optional[Canceled]:
        return self._error

    def raise_if_cancelled(self) -> None:
        if self._error is not None:
            raise self._error

    def on_cancel(self, callback: Callable[[Canceled], None]) -> Callable[[], None]:
        """
        Register ``callback`` to run once the token is cancelled.

        If the token is already cancelled the callback runs immediately.

        Returns:
            A function unregistering the callback.
        """
        with self._lock:
            if self._error is None:
                self._callbacks.append(callback)
                registered = True
            else:
                registered = False
        if not registered:
            callback(self._error)
            return lambda: None

        def remove() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return remove

    def child(self) -> Tuple["CancellationToken", Callable[[], None]]:
        """
        Create a token cancelled together with this one.

        Cancelling the child leaves the parent untouched. The returned
        function detaches the child once it is no longer needed.
        """
        child = CancellationToken()
        detach = self.on_cancel(child._set)
        return child, detach


class StepCounter:
    """Thread-safe step budget shared by the workers of one invocation."""

    def __init__(self, max_steps: int, where: Optional[str] = None):
        self.max_steps = max_steps
        self.where = where
        self._count = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        """
        Count one step.

        Raises:
            StepBudgetExceeded: If more than ``max_steps`` steps were taken.
        """
        with self._lock:
            self._count += 1
            count = self._count
        if count > self.max_steps:
            raise StepBudgetExceeded(self.max_steps, self.where)
        return count

    @property
    def count(self) -> int:
        with self._lock:
            return self._count


class RunContext:
    """
    State shared by the nodes of one invocation.

    Attributes:
        token: Cancellation token of the invocation.
        router: ``OptionRouter`` holding the invocation options.
        steps: Step counter of the graph being executed.
        path: Keys of the subgraph nodes enclosing the current graph.
        graph_name: Name of the graph being executed.
    """

    def __init__(
        self,
        token: CancellationToken,
        router: Any,
        steps: Optional[StepCounter] = None,
        path: Tuple[str, ...] = (),
        graph_name: str = "",
    ):
        self.token = token
        self.router = router
        self.steps = steps
        self.path = path
        self.graph_name = graph_name

    def enter(self, node_key: str, inner_keys: Iterable[str] = ()) -> "RunContext":
        """
        Context of the subgraph hosted by ``node_key``.

        ``inner_keys`` are the user keys reachable inside the subgraph; see
        ``OptionRouter.enter``. The nested graph installs its own step
        counter and graph name.
        """
        return RunContext(
            token=self.token,
            router=self.router.enter(node_key, inner_keys),
            path=self.path + (node_key,),
        )

    def __repr__(self) -> str:
        path = "/".join(self.path) or "<root>"
        return f"RunContext(graph={self.graph_name!r}, path={path})"
