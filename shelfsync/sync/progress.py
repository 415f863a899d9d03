"""
Progress channel between a sync run and the client waiting on it.

The orchestrator is the only writer and the HTTP transport the only
reader. Exactly one terminal event (``complete`` or ``error``) is sent
and nothing may follow it. A reader that goes away cancels the run
through ``cancel()``.
"""

import queue
import threading
from typing import Iterator, List, Optional, Union

from shelfsync.sync.models import ErrorEvent, ProgressEvent, Stage

Event = Union[ProgressEvent, ErrorEvent]


class ChannelClosedError(RuntimeError):
    """An event was sent after the terminal event."""


class ProgressChannel:
    """Ordered queue of progress events for one sync run."""

    def __init__(self, cancel_event: Optional[threading.Event] = None):
        self._queue: "queue.Queue[Event]" = queue.Queue()
        self._lock = threading.Lock()
        self._terminated = False
        self.cancel_event = cancel_event or threading.Event()
        self.history: List[Event] = []

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def send(self, event: Event) -> None:
        with self._lock:
            if self._terminated:
                raise ChannelClosedError("Sync already finished, event not sent")
            self._terminated = event.is_terminal
            self.history.append(event)
            self._queue.put(event)

    def progress(
        self,
        stage: Stage,
        current: int,
        total: int,
        message: str,
        shelf: Optional[str] = None,
    ) -> None:
        self.send(ProgressEvent(stage=stage, current=current, total=total, message=message, shelf=shelf))

    def complete(self, current: int, total: int, message: str, **payload) -> None:
        self.send(ProgressEvent(
            stage=Stage.COMPLETE,
            current=current,
            total=total,
            message=message,
            payload=payload,
        ))

    def fail(self, message: str) -> None:
        self.send(ErrorEvent(error=message))

    def cancel(self) -> None:
        """Called by the reader when the client disconnects."""
        self.cancel_event.set()

    def __iter__(self) -> Iterator[Event]:
        """Yield events in order, stopping after the terminal one."""
        while True:
            event = self._queue.get()
            yield event
            if event.is_terminal:
                return
