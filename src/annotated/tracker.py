"""Live position tracking for annotations in an open editing session.

While a document is being edited, each annotation's anchor line is carried
as a buffer offset and remapped through every edit. After a quiet period
(2 seconds by default) the offsets are converted back to line numbers and,
if they differ from what was last flushed, handed to a flush callback that
writes them through the annotation store.

States:
    IDLE      no flush scheduled
    PENDING   a debounce timer is running; a new edit restarts it
    FLUSHING  the timer fired (or flush() was called) and lines are written
    CLOSED    session torn down; timers cancelled, edits rejected
"""

import threading
from collections.abc import Callable, Iterable
from enum import Enum
from threading import Timer

from annotated.buffer import ChangeSet, TextBuffer
from annotated.logging import get_logger
from annotated.models import Annotation

DEFAULT_DEBOUNCE_SECONDS = 2.0

# (annotation id -> 1-indexed line, current document lines) -> whether it wrote
FlushCallback = Callable[[dict[str, int], list[str]], bool]


class TrackerState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    FLUSHING = "flushing"
    CLOSED = "closed"


class PositionTracker:
    """Per-session map of annotation id -> live buffer offset."""

    def __init__(
        self,
        buffer: TextBuffer,
        on_flush: FlushCallback,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        """Initialize the tracker.

        Args:
            buffer: Text of the document when the session opened
            on_flush: Called with changed line positions after the quiet period
            debounce_seconds: Quiet period after the last edit before flushing
        """
        self.buffer = buffer
        self.on_flush = on_flush
        self.debounce_seconds = debounce_seconds
        self.state = TrackerState.IDLE
        self.timer: Timer | None = None
        self._offsets: dict[str, int] = {}
        self._last_snapshot: dict[str, int] = {}
        self._generation = 0
        self._lock = threading.RLock()

    @property
    def offsets(self) -> dict[str, int]:
        with self._lock:
            return dict(self._offsets)

    def seed(self, annotations: Iterable[Annotation]) -> None:
        """Replace the position map from stored anchor start lines.

        The seeded lines become the baseline snapshot, so a flush only writes
        once an edit actually moved something. Annotations whose start line
        lies outside the buffer are not tracked.
        """
        with self._lock:
            offsets: dict[str, int] = {}
            for annotation in annotations:
                line = annotation.anchor.start_line
                if 1 <= line <= self.buffer.line_count:
                    offsets[annotation.id] = self.buffer.line_start(line)
            self._offsets = offsets
            self._last_snapshot = self.line_snapshot()

    def apply(self, changes: ChangeSet) -> TextBuffer:
        """Apply an edit: update the buffer, remap offsets, (re)schedule a flush.

        Raises:
            RuntimeError: If the session was closed
        """
        with self._lock:
            if self.state == TrackerState.CLOSED:
                raise RuntimeError("Cannot apply edits to a closed tracking session")
            self.buffer = self.buffer.apply(changes)
            self._offsets = {
                annotation_id: changes.map_pos(offset, 1)
                for annotation_id, offset in self._offsets.items()
            }
            self._schedule_flush()
            return self.buffer

    def _schedule_flush(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
        self._generation += 1
        self.timer = Timer(self.debounce_seconds, self._on_timer, args=(self._generation,))
        self.timer.daemon = True
        self.state = TrackerState.PENDING
        self.timer.start()

    def _on_timer(self, generation: int) -> None:
        try:
            self._flush(generation)
        except Exception as e:
            get_logger().exception("Failed to save tracked annotation positions", e)

    def line_snapshot(self) -> dict[str, int]:
        """Current id -> 1-indexed line, clamping offsets past the buffer end."""
        with self._lock:
            return {
                annotation_id: self.buffer.line_at(offset)
                for annotation_id, offset in self._offsets.items()
            }

    def flush(self) -> bool:
        """Write tracked lines through the flush callback if they changed.

        The callback runs outside the tracker lock so edits keep flowing
        while the store is written.

        Returns:
            True if the callback ran (the snapshot differed from the last one)
        """
        return self._flush(None)

    def _flush(self, generation: int | None) -> bool:
        with self._lock:
            if self.state == TrackerState.CLOSED:
                return False
            if generation is not None and generation != self._generation:
                return False  # superseded by a later edit
            if self.timer is not None:
                self.timer.cancel()
                self.timer = None
            snapshot = self.line_snapshot()
            if not snapshot or snapshot == self._last_snapshot:
                self.state = TrackerState.IDLE
                return False
            lines = self.buffer.lines
            self.state = TrackerState.FLUSHING

        get_logger().debug("Flushing tracked positions", count=len(snapshot))
        try:
            self.on_flush(snapshot, lines)
        finally:
            with self._lock:
                if self.state == TrackerState.FLUSHING:
                    self.state = TrackerState.IDLE
        with self._lock:
            self._last_snapshot = snapshot
        return True

    def close(self) -> None:
        """Tear down the session; a pending flush is cancelled, not run."""
        with self._lock:
            if self.timer is not None:
                self.timer.cancel()
                self.timer = None
            self.state = TrackerState.CLOSED
