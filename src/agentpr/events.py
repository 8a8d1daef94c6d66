"""Progress delivery for a single run.

A ``ProgressChannel`` delivers events, in order, to exactly one observer.
The observer is a plain callable. If it raises ``ObserverDisconnected`` (or
fails in any other way) the channel stops delivering but the run goes on.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Iterator, Optional

from .models import ProgressEvent, Severity

logger = logging.getLogger(__name__)

Observer = Callable[[ProgressEvent], None]


class ObserverDisconnected(Exception):
    """Raised by an observer that can no longer receive events."""

    pass


class ChannelClosedError(RuntimeError):
    """Raised when emitting on a channel that was closed."""

    pass


class ProgressChannel:
    """Ordered, append-only event stream from one run to one observer."""

    def __init__(self, observer: Observer):
        self._observer = observer
        self._open = False
        self._closed = False
        self._disconnected = False
        self.delivered = 0
        self.dropped = 0

    @property
    def is_open(self) -> bool:
        return self._open and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    def open(self) -> None:
        if self._closed:
            raise ChannelClosedError("Channel already closed")
        self._open = True

    def disconnect(self) -> None:
        """Stop delivering events; emitting stays legal."""
        self._disconnected = True

    def emit(self, event: ProgressEvent) -> None:
        """Deliver an event before returning.

        Raises:
            ChannelClosedError: If the channel is not open.
        """
        if not self.is_open:
            raise ChannelClosedError("Cannot emit on a channel that is not open")

        if self._disconnected:
            self.dropped += 1
            return

        try:
            self._observer(event)
            self.delivered += 1
        except ObserverDisconnected:
            logger.info("Observer disconnected; dropping further events")
            self._disconnected = True
            self.dropped += 1
        except Exception as e:
            logger.warning(f"Observer failed, dropping further events: {e}")
            self._disconnected = True
            self.dropped += 1

    def info(self, message: str, payload: Optional[dict] = None) -> None:
        self.emit(ProgressEvent(Severity.INFO, message, payload))

    def success(self, message: str, payload: Optional[dict] = None) -> None:
        self.emit(ProgressEvent(Severity.SUCCESS, message, payload))

    def warning(self, message: str, payload: Optional[dict] = None) -> None:
        self.emit(ProgressEvent(Severity.WARNING, message, payload))

    def error(self, message: str, payload: Optional[dict] = None) -> None:
        self.emit(ProgressEvent(Severity.ERROR, message, payload))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        close = getattr(self._observer, "close", None)
        if callable(close):
            try:
                close()
            except Exception as e:
                logger.warning(f"Error closing observer: {e}")


class QueueObserver:
    """Observer that hands events to another thread as NDJSON lines.

    The run thread calls the observer; a consumer iterates ``lines()``
    until the channel closes. Calling ``disconnect`` from the consumer side
    makes the next delivery raise ``ObserverDisconnected``.
    """

    _DONE = object()

    def __init__(self) -> None:
        self._queue: queue.Queue = queue.Queue()
        self._disconnected = threading.Event()

    def __call__(self, event: ProgressEvent) -> None:
        if self._disconnected.is_set():
            raise ObserverDisconnected()
        self._queue.put(event)

    def close(self) -> None:
        self._queue.put(self._DONE)

    def disconnect(self) -> None:
        self._disconnected.set()

    def events(self) -> Iterator[ProgressEvent]:
        while True:
            item = self._queue.get()
            if item is self._DONE:
                return
            yield item

    def lines(self) -> Iterator[str]:
        """Yield one JSON document per event, newline terminated."""
        try:
            for event in self.events():
                yield event.to_json() + "\n"
        finally:
            self.disconnect()
