"""Unbounded FIFO mailbox matching writes to predicate readers."""
from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable
from typing import Generic
from typing import NamedTuple
from typing import Optional
from typing import TypeVar

from peerlink.aio.exceptions import PipeClosedError

T = TypeVar('T')
R = TypeVar('R')


class _Reader(NamedTuple):
    predicate: Callable[[object], object]
    future: asyncio.Future[object]


class _Write(NamedTuple):
    value: object
    future: asyncio.Future[None]


class Pipe(Generic[T]):
    """FIFO mailbox that is both a sink and a source.

    Writes are queued until at least one reader is attached. The oldest
    write is then offered to the attached readers, oldest first. The first
    reader whose predicate returns anything other than `None` receives that
    result and is detached. If every reader declines, the value is dropped.
    Either way the write completes.

    Example:
        ```python
        from peerlink.aio.pipe import Pipe

        pipe: Pipe[bytes] = Pipe()
        pipe.write(b'ping')
        assert await pipe.attach(lambda data: data) == b'ping'

        pipe.close()
        assert await pipe.attach(lambda data: data) is None
        ```
    """

    def __init__(self) -> None:
        self._closed = False
        self._writes: deque[_Write] = deque()
        self._readers: list[_Reader] = []

    @property
    def closed(self) -> bool:
        """The pipe has been closed."""
        return self._closed

    def close(self) -> None:
        """Close the pipe.

        Attached readers resolve to `None`, queued writes fail with
        [`PipeClosedError`][peerlink.aio.exceptions.PipeClosedError].
        Closing an already closed pipe does nothing.
        """
        if self._closed:
            return
        self._closed = True
        self._flush()

    def write(self, value: T) -> asyncio.Future[None]:
        """Queue a value.

        Returns:
            Future completed once the value has been offered to a reader.

        Raises:
            PipeClosedError: If the pipe is closed.
        """
        if self._closed:
            raise PipeClosedError('Cannot write to a closed pipe.')

        future: asyncio.Future[None] = (
            asyncio.get_running_loop().create_future()
        )
        self._writes.append(_Write(value, future))
        self._flush()
        return future

    def attach(
        self,
        predicate: Callable[[T], Optional[R]],
    ) -> asyncio.Future[Optional[R]]:
        """Attach a reader.

        Returns:
            Future of the first value the predicate accepts, or `None` \
            once the pipe is closed. The future fails if the predicate
            raises.
        """
        future: asyncio.Future[Optional[R]] = (
            asyncio.get_running_loop().create_future()
        )
        if self._closed:
            future.set_result(None)
            return future

        reader = _Reader(predicate, future)  # type: ignore[arg-type]
        self._readers.append(reader)
        self._flush()
        return future

    def _offer(self, value: object) -> None:
        for reader in list(self._readers):
            try:
                result = reader.predicate(value)
            except Exception as e:
                self._readers.remove(reader)
                reader.future.set_exception(e)
                continue

            if result is not None:
                self._readers.remove(reader)
                reader.future.set_result(result)
                return

    def _flush(self) -> None:
        while True:
            # Readers whose future was cancelled no longer count as attached
            self._readers = [r for r in self._readers if not r.future.done()]
            if not (self._writes and self._readers):
                break

            write = self._writes.popleft()
            self._offer(write.value)
            if not write.future.done():
                write.future.set_result(None)

        if self._closed:
            for reader in self._readers:
                reader.future.set_result(None)
            self._readers.clear()

            for write in self._writes:
                if not write.future.done():
                    write.future.set_exception(
                        PipeClosedError('Pipe closed before write was read.'),
                    )
            self._writes.clear()
