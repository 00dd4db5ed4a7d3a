"""
Core Exception Classes for composeflow.

This module provides the exception hierarchy raised by the compose engine.
These exceptions live here (rather than next to the compiler or runtime) so
that every layer, from stream primitives up to the agent loop, can raise and
catch them without circular imports.

Design Principle:
    exceptions.py (BASE - zero dependencies)
        ^
    schema/, components/ (DATA + CONTRACTS)
        ^
    compose/ (ENGINE)
        ^
    flow/ (AGENTS)
"""

from typing import Any, Optional


class ComposeError(Exception):
    """Base class for every error raised by composeflow."""


class CompileError(ComposeError):
    """
    Raised when a graph, chain or parallel cannot be compiled.

    Covers duplicate node keys, empty builders, type mismatches along an edge,
    cycles and dangling nodes. The message always names the offending node
    key(s) so it can be asserted on.

    Example:
        >>> chain = Chain(Dict[str, Any], Dict[str, Any])
        >>> chain.compile()
        Traceback (most recent call last):
        ...
        composeflow.exceptions.CompileError: chain has no nodes
    """


class PredicateError(ComposeError):
    """Raised when a branch predicate fails or returns an unknown key."""

    def __init__(self, message: str, branch_key: Optional[str] = None):
        self.branch_key = branch_key
        super().__init__(message)


class NodeExecutionError(ComposeError):
    """
    Wraps an exception raised while a node was running.

    Attributes:
        node_key: Key of the node that failed (user supplied or generated).
        cause: The original exception.

    The string form is ``node '<key>' failed: <cause>``, so the node key is
    always a substring of the error message.
    """

    def __init__(self, node_key: str, cause: Any):
        self.node_key = node_key
        self.cause = cause
        super().__init__(f"node '{node_key}' failed: {cause}")


class StepBudgetExceeded(ComposeError):
    """Raised when an invocation executes more node steps than allowed."""

    def __init__(self, max_steps: int, where: Optional[str] = None):
        self.max_steps = max_steps
        self.where = where
        location = f" in '{where}'" if where else ""
        super().__init__(f"exceeds max steps{location}: limit is {max_steps}")


class Canceled(ComposeError):
    """
    Raised when an invocation is cancelled.

    Attributes:
        reason: Optional human-readable reason passed to
            ``CancellationToken.cancel``.
    """

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(f"canceled: {reason}" if reason else "canceled")


class DeadlineExceeded(Canceled):
    """Raised when a token's deadline elapsed before the invocation finished."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"deadline of {timeout}s exceeded")


class Unsupported(ComposeError):
    """Raised when a node lacks a capability required by the caller."""


class ToolError(Exception):
    """
    Raised by a tools node when a tool call cannot be completed.

    Not a ``ComposeError``: the node hosting the tools node wraps it in a
    ``NodeExecutionError`` carrying the host key, as for any component
    failure, while ``tool_name`` keeps the tool that failed.

    Attributes:
        tool_name: Name of the called tool.
        cause: The original exception.
    """

    def __init__(self, tool_name: str, cause: Any):
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(f"tool '{tool_name}' failed: {cause}")
