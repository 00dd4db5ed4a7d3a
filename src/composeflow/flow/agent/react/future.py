"""
MessageFuture: the intermediate messages of one agent run.

The agent publishes, in order, every assistant message carrying tool calls,
every tool message and the final assistant message. Consumers read them with
iterators that may be created at any time, from any thread; each iterator
starts at the first message.

    >>> option, future = with_message_future()
    >>> answer = agent.generate(messages, option)
    >>> for message in future.get_messages():
    ...     print(message.role, message.content)

In stream mode the published items are message streams instead, read with
``get_message_streams()``; every call returns fresh readers starting at the
first chunk.
"""

import logging
import threading
from typing import Any, Generic, List, Optional, Tuple, TypeVar

from composeflow.schema.message import Message
from composeflow.schema.stream import ReplayableStream, StreamReader

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Channel:
    """Append-only list with end-of-data and error signalling."""

    def __init__(self):
        self.items: List[Any] = []
        self.cond = threading.Condition()
        self.closed = False
        self.error: Optional[BaseException] = None

    def send(self, item: Any) -> None:
        with self.cond:
            if self.closed:
                raise RuntimeError("send on a closed message future")
            self.items.append(item)
            self.cond.notify_all()

    def close(self, error: Optional[BaseException] = None) -> None:
        with self.cond:
            if self.closed:
                return
            self.closed = True
            self.error = error
            self.cond.notify_all()

    def get(self, index: int) -> Tuple[Any, bool]:
        with self.cond:
            while index >= len(self.items) and not self.closed:
                self.cond.wait()
            if index < len(self.items):
                return self.items[index], True
            if self.error is not None:
                raise self.error
            return None, False


class FutureIterator(Generic[T]):
    """
    Iterator over the items of a ``MessageFuture``.

    ``next()`` blocks until an item is available and returns
    ``(item, True)``, or ``(None, False)`` once the run is over. If the run
    failed, ``next()`` raises its error after the last published item. The
    Python iterator protocol is supported as well.
    """

    def __init__(self, channel: _Channel, stream: bool = False):
        self._channel = channel
        self._stream = stream
        self._index = 0

    def next(self) -> Tuple[Optional[T], bool]:
        item, has_next = self._channel.get(self._index)
        if not has_next:
            return None, False
        self._index += 1
        if self._stream:
            return item.reader(), True
        return item, True

    def __iter__(self) -> "FutureIterator[T]":
        return self

    def __next__(self) -> T:
        item, has_next = self.next()
        if not has_next:
            raise StopIteration
        return item


class MessageFuture:
    """
    Thread-safe, single-producer / multi-consumer record of an agent run.

    Only one of the two channels is filled per run: ``get_messages()`` in
    invoke mode (``Agent.generate``), ``get_message_streams()`` in stream
    mode (``Agent.stream``). Both are closed when the run ends.
    """

    def __init__(self):
        self._messages = _Channel()
        self._streams = _Channel()

    def get_messages(self) -> FutureIterator[Message]:
        return FutureIterator(self._messages)

    def get_message_streams(self) -> FutureIterator[StreamReader[Message]]:
        return FutureIterator(self._streams, stream=True)

    def send_message(self, message: Message) -> None:
        self._messages.send(message)

    def send_stream(self, stream: ReplayableStream[Message]) -> None:
        self._streams.send(stream)

    def close(self, error: Optional[BaseException] = None) -> None:
        if error is not None:
            logger.debug(f"Closing message future with error: {error}")
        self._messages.close(error)
        self._streams.close(error)

    @property
    def closed(self) -> bool:
        return self._messages.closed and self._streams.closed
