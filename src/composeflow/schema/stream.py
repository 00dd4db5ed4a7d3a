"""
Stream primitives for composeflow.

A stream is a finite, lazy sequence of chunks with a single terminal state:
it either ends normally or raises an error. ``StreamReader`` follows the
Python iterator protocol, so the usual way to consume one is a ``for`` loop:

    >>> reader = stream_reader_from_array(["a", "b", "c"])
    >>> "".join(reader)
    'abc'

This module provides:
- ``pipe()``: a thread-safe producer/consumer channel (optionally bounded)
- ``StreamReader.copy(n)``: fan-out to ``n`` independent readers
- ``ReplayableStream``: fan-out where late readers start from the first chunk
- ``stream_reader_with_convert()``: chunk-wise mapping and filtering
- ``merge_stream_readers()`` / ``merge_named_stream_readers()``
- ``concat_stream()``: reduce a whole stream into one chunk

Thread Safety:
    A single reader must be consumed by one thread at a time. Readers
    produced by ``copy()`` may be consumed from different threads
    concurrently; the shared source is read under a lock.
"""

import threading
from collections import deque
from typing import (
    Any,
    Callable,
    Deque,
    Dict,
    Generic,
    Iterable,
    Iterator,
    List,
    Optional,
    Tuple,
    TypeVar,
)

from composeflow.schema.concat import concat_items

T = TypeVar("T")
U = TypeVar("U")


class SkipChunk(Exception):
    """Raised by a convert function to drop the current chunk."""


class StreamReader(Generic[T]):
    """
    Base class of every stream reader.

    Subclasses implement ``recv()``, which returns the next chunk, raises
    ``StopIteration`` once the stream ended, or raises the stream's error.
    ``close()`` is idempotent; after it, ``recv()`` reports end of stream.
    """

    _closed: bool = False

    def recv(self) -> T:
        raise NotImplementedError

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator[T]:
        return self

    def __next__(self) -> T:
        return self.recv()

    def __enter__(self) -> "StreamReader[T]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def copy(self, n: int) -> List["StreamReader[T]"]:
        """
        Fan the stream out to ``n`` independent readers.

        Every reader sees every chunk, in the same order. Chunks are buffered
        until the slowest live reader consumed them; a reader closed early
        releases its tail without stalling the others. Once all copies are
        closed, the source is closed. ``self`` must not be used afterwards.
        """
        if n < 2:
            return [self]
        tee = _Tee(self, n)
        head = _Cell()
        return [_ChildReader(tee, head) for _ in range(n)]


class _ArrayReader(StreamReader[T]):
    def __init__(self, items: Iterable[T]):
        self._items = list(items)
        self._index = 0

    def recv(self) -> T:
        if self._closed or self._index >= len(self._items):
            raise StopIteration
        item = self._items[self._index]
        self._index += 1
        return item


class _IterableReader(StreamReader[T]):
    def __init__(self, iterable: Iterable[T]):
        self._iterator = iter(iterable)

    def recv(self) -> T:
        if self._closed:
            raise StopIteration
        return next(self._iterator)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        close = getattr(self._iterator, "close", None)
        if close is not None:
            close()


def stream_reader_from_array(items: Iterable[T]) -> StreamReader[T]:
    """Lift a finite sequence into a stream."""
    return _ArrayReader(items)


def stream_reader_from_iterable(iterable: Iterable[T]) -> StreamReader[T]:
    """
    Wrap any iterable (a generator, typically) as a stream.

    Closing the reader closes the generator. Passing a ``StreamReader``
    returns it unchanged.
    """
    if isinstance(iterable, StreamReader):
        return iterable
    return _IterableReader(iterable)


# =============================================================================
# PIPE
# =============================================================================


class _PipeState:
    def __init__(self, capacity: int):
        self.capacity = capacity
        self.items: Deque[Tuple[Any, Optional[BaseException]]] = deque()
        self.cond = threading.Condition()
        self.writer_closed = False
        self.reader_closed = False
        self.abort_error: Optional[BaseException] = None


class _PipeReader(StreamReader[T]):
    def __init__(self, state: _PipeState):
        self._state = state

    def recv(self) -> T:
        state = self._state
        with state.cond:
            while True:
                if state.abort_error is not None:
                    raise state.abort_error
                if state.items:
                    chunk, error = state.items.popleft()
                    state.cond.notify_all()
                    if error is not None:
                        raise error
                    return chunk
                if state.writer_closed or state.reader_closed:
                    raise StopIteration
                state.cond.wait()

    def close(self) -> None:
        state = self._state
        with state.cond:
            if state.reader_closed:
                return
            state.reader_closed = True
            self._closed = True
            state.items.clear()
            state.cond.notify_all()


class StreamWriter(Generic[T]):
    """
    Producer end of a ``pipe()``.

    ``send()`` returns ``True`` when the reader has been closed (or the pipe
    aborted), which tells the producer to stop.
    """

    def __init__(self, state: _PipeState):
        self._state = state

    def send(self, chunk: Optional[T], error: Optional[BaseException] = None) -> bool:
        state = self._state
        with state.cond:
            while (
                state.capacity > 0
                and len(state.items) >= state.capacity
                and not state.reader_closed
                and state.abort_error is None
            ):
                state.cond.wait()
            if state.reader_closed or state.abort_error is not None:
                return True
            if state.writer_closed:
                raise RuntimeError("send on a closed stream writer")
            state.items.append((chunk, error))
            state.cond.notify_all()
            return False

    def close(self) -> None:
        """Signal end of stream. Idempotent."""
        state = self._state
        with state.cond:
            state.writer_closed = True
            state.cond.notify_all()

    def abort(self, error: BaseException) -> None:
        """Make the reader raise ``error`` at once, even if chunks are queued."""
        state = self._state
        with state.cond:
            if state.abort_error is None and not state.reader_closed:
                state.abort_error = error
            state.writer_closed = True
            state.cond.notify_all()

    @property
    def reader_closed(self) -> bool:
        return self._state.reader_closed


def pipe(capacity: int = 0) -> Tuple[StreamReader[T], StreamWriter[T]]:
    """
    Create a connected reader/writer pair.

    Args:
        capacity: Maximum number of queued chunks before ``send()`` blocks.
            ``0`` means unbounded.
    """
    state = _PipeState(capacity)
    return _PipeReader(state), StreamWriter(state)


# =============================================================================
# FAN-OUT
# =============================================================================


class _Cell:
    __slots__ = ("filled", "value", "error", "eof", "next")

    def __init__(self):
        self.filled = False
        self.value: Any = None
        self.error: Optional[BaseException] = None
        self.eof = False
        self.next: Optional["_Cell"] = None


class _Tee:
    """Shared source of fan-out readers; chunks are linked cells."""

    def __init__(self, source: StreamReader[Any], children: Optional[int]):
        self.source = source
        self.lock = threading.Lock()
        self.open_children = children

    def fill(self, cell: _Cell) -> None:
        with self.lock:
            if cell.filled:
                return
            try:
                cell.value = self.source.recv()
            except StopIteration:
                cell.eof = True
            except Exception as e:
                cell.error = e
            if not cell.eof and cell.error is None:
                cell.next = _Cell()
            cell.filled = True

    def child_closed(self) -> None:
        if self.open_children is None:
            return
        with self.lock:
            self.open_children -= 1
            last = self.open_children == 0
        if last:
            self.source.close()


class _ChildReader(StreamReader[T]):
    def __init__(self, tee: _Tee, cell: _Cell):
        self._tee = tee
        self._cell: Optional[_Cell] = cell

    def recv(self) -> T:
        cell = self._cell
        if self._closed or cell is None:
            raise StopIteration
        if not cell.filled:
            self._tee.fill(cell)
        if cell.eof:
            raise StopIteration
        # An error ends the stream; later calls raise it again.
        if cell.error is not None:
            raise cell.error
        self._cell = cell.next
        return cell.value

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._cell = None
        self._tee.child_closed()


class ReplayableStream(Generic[T]):
    """
    Fan-out whose readers can be created at any time.

    Every reader returned by ``reader()`` starts at the first chunk, no
    matter how far the others have progressed. All chunks are retained for
    the lifetime of this object.
    """

    def __init__(self, source: StreamReader[T]):
        self._tee = _Tee(source, None)
        self._head = _Cell()

    def reader(self) -> StreamReader[T]:
        return _ChildReader(self._tee, self._head)

    def close(self) -> None:
        self._tee.source.close()


# =============================================================================
# CONVERT / MERGE / CONCAT
# =============================================================================


class _ConvertReader(StreamReader[U]):
    def __init__(
        self,
        source: StreamReader[T],
        convert: Optional[Callable[[T], U]],
        error_fn: Optional[Callable[[Exception], Exception]],
    ):
        self._source = source
        self._convert = convert
        self._error_fn = error_fn

    def recv(self) -> U:
        while True:
            try:
                chunk = self._source.recv()
            except StopIteration:
                raise
            except Exception as e:
                if self._error_fn is None:
                    raise
                wrapped = self._error_fn(e)
                if wrapped is e:
                    raise
                raise wrapped from e
            if self._convert is None:
                return chunk
            try:
                return self._convert(chunk)
            except SkipChunk:
                continue

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._source.close()


def stream_reader_with_convert(
    reader: StreamReader[T],
    convert: Optional[Callable[[T], U]] = None,
    error_fn: Optional[Callable[[Exception], Exception]] = None,
) -> StreamReader[U]:
    """
    Map every chunk of ``reader`` through ``convert``.

    ``convert`` may raise ``SkipChunk`` to drop a chunk. ``error_fn`` maps
    errors raised by the source before they reach the consumer.
    """
    return _ConvertReader(reader, convert, error_fn)


class _MergedReader(StreamReader[Any]):
    def __init__(self, sources: List[Tuple[Optional[str], StreamReader[Any]]]):
        self._sources = sources
        self._index = 0

    def recv(self) -> Any:
        while self._index < len(self._sources):
            name, source = self._sources[self._index]
            try:
                chunk = source.recv()
            except StopIteration:
                source.close()
                self._index += 1
                continue
            return chunk if name is None else {name: chunk}
        raise StopIteration

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for _, source in self._sources:
            source.close()


def merge_stream_readers(readers: List[StreamReader[T]]) -> StreamReader[T]:
    """Chain several streams into one; each source is drained in turn."""
    if len(readers) == 1:
        return readers[0]
    return _MergedReader([(None, r) for r in readers])


def merge_named_stream_readers(
    readers: Dict[str, StreamReader[Any]]
) -> StreamReader[Dict[str, Any]]:
    """
    Merge named streams into a stream of single-key dicts.

    Concatenating the result yields ``{name: concat(stream)}`` for every
    source, which is how parallel joins are streamed.
    """
    return _MergedReader(list(readers.items()))


def concat_stream(reader: StreamReader[T]) -> T:
    """
    Read ``reader`` to the end and reduce its chunks into one value.

    The reader is closed afterwards, also on error.

    Raises:
        ValueError: If the stream is empty or its chunks cannot be merged.
    """
    try:
        items = list(reader)
    finally:
        reader.close()
    return concat_items(items)


def concat_message_stream(reader: StreamReader[Any]) -> Any:
    """Alias of ``concat_stream`` for message streams."""
    return concat_stream(reader)
