"""Broadcast events with awaitable helpers.

An [`Emitter`][peerlink.aio.event.Emitter] owns the emitting side of an
[`Event`][peerlink.aio.event.Event] and hands the event to consumers, who can
register callbacks or await values.

Example:
    ```python
    from peerlink.aio.event import Emitter

    emitter: Emitter[int] = Emitter()

    async def wait_for_even() -> int:
        return await emitter.event.until(
            lambda value: value if value % 2 == 0 else None,
        )
    ```
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Generic
from typing import Optional
from typing import TypeVar
from typing import Union

from peerlink.aio.protocols import Source

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')

Listener = Callable[[T], None]
Unsubscribe = Callable[[], None]

# Strong references to tasks started by Event.from_source()
_source_tasks: set[asyncio.Future[Any]] = set()


class Event(Generic[T]):
    """Subscribable stream of values.

    Args:
        listen: Function that registers a listener and returns a callable
            that unregisters it.
    """

    def __init__(self, listen: Callable[[Listener[T]], Unsubscribe]) -> None:
        self._listen = listen

    def listen(self, callback: Listener[T]) -> Unsubscribe:
        """Register a callback invoked with every emitted value.

        Returns:
            Callable that unregisters the callback.
        """
        return self._listen(callback)

    def next(self) -> asyncio.Future[T]:
        """Future resolved with the next emitted value."""
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()

        def _on_value(value: T) -> None:
            unsubscribe()
            if not future.done():
                future.set_result(value)

        unsubscribe = self.listen(_on_value)
        future.add_done_callback(lambda _: unsubscribe())
        return future

    def until(
        self,
        predicate: Callable[[T], Union[Optional[R], Awaitable[Optional[R]]]],
    ) -> asyncio.Future[R]:
        """Future resolved with the first value the predicate accepts.

        The predicate accepts a value by returning anything other than
        `None`. It may also return an awaitable; further emissions are
        evaluated while it is pending and the first accepted result wins.

        Args:
            predicate: Called with each emitted value.

        Returns:
            Future of the accepted predicate result. The future fails if \
            the predicate raises.
        """
        future: asyncio.Future[R] = asyncio.get_running_loop().create_future()
        pending: set[asyncio.Future[Optional[R]]] = set()

        def _finish(
            result: Optional[R] = None,
            exception: BaseException | None = None,
        ) -> None:
            if future.done():
                return
            if exception is not None:
                future.set_exception(exception)
            elif result is not None:
                future.set_result(result)
            else:
                return
            unsubscribe()

        def _on_evaluated(task: asyncio.Future[Optional[R]]) -> None:
            pending.discard(task)
            if task.cancelled():
                return
            if task.exception() is not None:
                _finish(exception=task.exception())
            else:
                _finish(task.result())

        def _on_value(value: T) -> None:
            if future.done():
                return
            try:
                result = predicate(value)
            except Exception as e:
                _finish(exception=e)
                return

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                pending.add(task)
                task.add_done_callback(_on_evaluated)
            else:
                _finish(result)

        def _cleanup(_: asyncio.Future[R]) -> None:
            unsubscribe()
            for task in list(pending):
                task.cancel()

        unsubscribe = self.listen(_on_value)
        future.add_done_callback(_cleanup)
        return future

    @staticmethod
    def wrap(target: Any, key: str) -> Event[Any]:
        """Adapt an external event emitter.

        Supports emitters with `on()` and `remove_listener()` (e.g., the
        [pyee](https://pyee.readthedocs.io) emitters used by aiortc) and
        emitters with `add_event_listener()` and `remove_event_listener()`.
        Emissions without arguments are delivered as `None`.

        Args:
            target: Emitter to adapt.
            key: Name of the event on the emitter.

        Raises:
            TypeError: If `target` supports neither style.
        """
        if hasattr(target, 'on') and hasattr(target, 'remove_listener'):
            on, off = target.on, target.remove_listener
        elif hasattr(target, 'add_event_listener') and hasattr(
            target,
            'remove_event_listener',
        ):
            on, off = target.add_event_listener, target.remove_event_listener
        else:
            raise TypeError(
                f'{type(target).__name__} does not support on/remove_listener '
                'or add_event_listener/remove_event_listener.',
            )

        def _listen(callback: Listener[Any]) -> Unsubscribe:
            registered = True

            def _handler(*args: Any) -> None:
                callback(args[0] if args else None)

            def _unsubscribe() -> None:
                nonlocal registered
                if registered:
                    registered = False
                    off(key, _handler)

            on(key, _handler)
            return _unsubscribe

        return Event(_listen)

    @staticmethod
    def from_source(source: Source[T]) -> Event[Optional[T]]:
        """Re-broadcast every value read from a source.

        `None` is emitted once the source reaches the end of the stream.
        """
        emitter: Emitter[Optional[T]] = Emitter()

        def _tap(value: T) -> None:
            emitter.emit(value)

        def _on_done(task: asyncio.Future[Any]) -> None:
            _source_tasks.discard(task)
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    f'Source feeding event failed: {task.exception()!r}',
                )
            emitter.emit(None)

        task = asyncio.ensure_future(source.attach(_tap))
        _source_tasks.add(task)
        task.add_done_callback(_on_done)
        return emitter.event


class Emitter(Generic[T]):
    """Emitting side of an [`Event`][peerlink.aio.event.Event]."""

    def __init__(self) -> None:
        # Keyed by token so the same callback can be registered twice
        self._listeners: dict[object, Listener[T]] = {}
        self._event = Event(self._add_listener)

    def __len__(self) -> int:
        return len(self._listeners)

    @property
    def event(self) -> Event[T]:
        return self._event

    def _add_listener(self, callback: Listener[T]) -> Unsubscribe:
        token = object()
        self._listeners[token] = callback

        def _unsubscribe() -> None:
            self._listeners.pop(token, None)

        return _unsubscribe

    def emit(self, value: T) -> None:
        """Call every registered listener with `value`.

        Listeners run synchronously in registration order. Listeners added
        during the emission are not called for it and listeners removed
        during it are skipped.
        """
        for token, callback in list(self._listeners.items()):
            if token in self._listeners:
                callback(value)
