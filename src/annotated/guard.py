"""Self-save suppression for annotation file change notifications.

The reconciler and the live tracker write the same annotation files that
the file watcher reports on. Before such a write the writer engages the
guard for the document; the guard stays engaged for a hold period after the
write finishes, and change events for that document are ignored meanwhile.
The guard is a counter so overlapping writers each keep it engaged for their
own hold window.
"""

import contextlib
import threading
from collections.abc import Generator
from threading import Timer

from annotated.logging import get_logger

DEFAULT_HOLD_SECONDS = 2.0


class SelfSaveGuard:
    """Per-document reentrant suppression counter with timed release."""

    def __init__(self, hold_seconds: float = DEFAULT_HOLD_SECONDS) -> None:
        self.hold_seconds = hold_seconds
        self._counts: dict[str, int] = {}
        self._timers: set[Timer] = set()
        self._lock = threading.Lock()

    def engage(self, document_path: str) -> None:
        with self._lock:
            self._counts[document_path] = self._counts.get(document_path, 0) + 1

    def release(self, document_path: str, after: float | None = None) -> None:
        """Drop one engagement, immediately or after ``after`` seconds.

        Args:
            document_path: Document whose guard to release
            after: Delay in seconds (defaults to the guard's hold period)
        """
        delay = self.hold_seconds if after is None else after
        if delay <= 0:
            self._decrement(document_path)
            return

        timer: Timer

        def fire() -> None:
            with self._lock:
                self._timers.discard(timer)
            self._decrement(document_path)

        timer = Timer(delay, fire)
        timer.daemon = True
        with self._lock:
            self._timers.add(timer)
        timer.start()

    def _decrement(self, document_path: str) -> None:
        with self._lock:
            count = self._counts.get(document_path, 0) - 1
            if count > 0:
                self._counts[document_path] = count
            else:
                self._counts.pop(document_path, None)

    def is_suppressed(self, document_path: str) -> bool:
        """True while a self-originated write to ``document_path`` is in flight."""
        with self._lock:
            return self._counts.get(document_path, 0) > 0

    @contextlib.contextmanager
    def suppress(self, document_path: str) -> Generator[None, None, None]:
        """Engage the guard around a write and release it after the hold period.

        Example:
            >>> with guard.suppress("notes/todo.md"):
            ...     store.save(annotation_file)
        """
        self.engage(document_path)
        get_logger().debug("Self-save guard engaged", document=document_path)
        try:
            yield
        finally:
            self.release(document_path)

    def shutdown(self) -> None:
        """Cancel pending releases and clear every engagement."""
        with self._lock:
            timers = list(self._timers)
            self._timers.clear()
            self._counts.clear()
        for timer in timers:
            timer.cancel()
