"""Workspace: the annotation engine for every document under one root.

Wires the annotation store, reconciler, live tracking sessions and gutter
line maps together and exposes the operations a host (editor integration,
CLI, file watcher) drives:

- ``activate`` when a document is opened, switched to, or found open at
  startup: reconcile anchors against the current text, then refresh
- ``open_session`` / ``apply_edit`` / ``close_session`` while a document
  is being edited live
- ``add_annotation`` / ``add_reply`` / ``resolve`` / ``reopen`` /
  ``delete_annotation`` for user actions
- ``external_change`` / ``annotations_deleted`` / ``document_renamed`` for
  out-of-band changes reported by a file watcher
- ``subscribe`` for "annotations changed, re-render" notifications
"""

import threading
from collections.abc import Callable, Iterable
from pathlib import Path

from annotated.aggregate import LineMap, build_line_map, remap_line_map
from annotated.buffer import ChangeSet, TextBuffer
from annotated.config import Settings
from annotated.guard import SelfSaveGuard
from annotated.logging import get_logger
from annotated.models import Anchor, Annotation, AnnotationFile, ReconciliationReport, Reply
from annotated.reconcile import Reconciler, read_document_lines
from annotated.snippets import capture_snippet
from annotated.storage import AnnotationStore, normalize_document_path
from annotated.tracker import PositionTracker

RenderListener = Callable[[str], None]


class Workspace:
    """Annotation engine for the documents under ``root``."""

    def __init__(self, root: Path, settings: Settings | None = None) -> None:
        self.root = root
        self.settings = settings or Settings()
        self.store = AnnotationStore(root)
        self.guard = SelfSaveGuard(hold_seconds=self.settings.self_save_hold_seconds)
        self.reconciler = Reconciler(
            self.store,
            self.guard,
            radius=self.settings.relocation_radius,
            on_reconciled=self._on_reconciled,
        )
        self._sessions: dict[str, PositionTracker] = {}
        self._line_maps: dict[str, LineMap] = {}
        self._lock = threading.RLock()
        self._listeners: list[RenderListener] = []
        self._unsubscribe_store = self.store.subscribe(self._on_store_saved)

    # -- notifications ------------------------------------------------------

    def subscribe(self, listener: RenderListener) -> Callable[[], None]:
        """Register ``listener(document_path)`` for re-render notifications.

        Fired after every successful save and every reconciliation pass.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, document_path: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(document_path)
            except Exception as e:
                get_logger().exception(f"Render listener failed for {document_path}", e)

    def _on_store_saved(self, document_path: str) -> None:
        self.rebuild_line_map(document_path)
        self._emit(document_path)

    def _on_reconciled(self, document_path: str, report: ReconciliationReport) -> None:
        # A pass that saved has already rebuilt through _on_store_saved.
        if not report.saved:
            self._emit(document_path)

    # -- lookups ------------------------------------------------------------

    def document_path(self, path: str | Path) -> str:
        """Normalize a user-supplied path to a document path under the root."""
        return normalize_document_path(path, self.root)

    def get_store(self, document_path: str) -> AnnotationFile | None:
        return self.store.get(document_path)

    def session(self, document_path: str) -> PositionTracker | None:
        with self._lock:
            return self._sessions.get(document_path)

    def document_lines(self, document_path: str) -> list[str] | None:
        """Current text of a document: the live buffer if open, else the file."""
        tracker = self.session(document_path)
        if tracker is not None:
            return tracker.buffer.lines
        return read_document_lines(self.root / document_path)

    # -- line maps ----------------------------------------------------------

    def rebuild_line_map(self, document_path: str) -> LineMap:
        """Recompute the gutter line map of a document from its annotations."""
        annotation_file = self.store.get(document_path)
        if annotation_file is None or not self.settings.show_gutter_indicators:
            line_map: LineMap = {}
        else:
            line_map = build_line_map(annotation_file.comments, self.settings.filter_policy())
        with self._lock:
            self._line_maps[document_path] = line_map
        return line_map

    def line_map(self, document_path: str) -> LineMap:
        with self._lock:
            cached = self._line_maps.get(document_path)
        if cached is not None:
            return dict(cached)
        return dict(self.rebuild_line_map(document_path))

    def annotations_at_line(self, document_path: str, line: int) -> list[Annotation]:
        """Visible annotations anchored at ``line``, capped for popup display."""
        annotation_file = self.store.get(document_path)
        if annotation_file is None:
            return []
        policy = self.settings.filter_policy()
        found = [
            a
            for a in annotation_file.comments
            if a.anchor.start_line == line and policy.is_visible(a)
        ]
        return found[: self.settings.max_comments_in_popup]

    def refresh(self, document_path: str) -> None:
        """Rebuild the line map and reseed a live session from stored anchors."""
        self.rebuild_line_map(document_path)
        tracker = self.session(document_path)
        annotation_file = self.store.get(document_path)
        if tracker is not None:
            tracker.seed(annotation_file.comments if annotation_file is not None else [])

    # -- activation ---------------------------------------------------------

    def activate(self, document_path: str) -> ReconciliationReport | None:
        """Reconcile a document that became the active view, then refresh it."""
        tracker = self.session(document_path)
        lines = tracker.buffer.lines if tracker is not None else None
        report = self.reconciler.reconcile(document_path, document_lines=lines)
        self.refresh(document_path)
        return report

    def startup(self, document_paths: Iterable[str]) -> dict[str, ReconciliationReport | None]:
        """Activate every document that is already open when the host starts."""
        return {path: self.activate(path) for path in document_paths}

    # -- live editing -------------------------------------------------------

    def open_session(self, document_path: str, text: str | None = None) -> PositionTracker:
        """
        Start live tracking for a document and activate it.

        Args:
            document_path: Document being opened in an editor
            text: Editor text (read from disk when omitted)

        Raises:
            OSError: If ``text`` is omitted and the document cannot be read
        """
        if text is None:
            text = (self.root / document_path).read_text(encoding="utf-8")

        def flush(updates: dict[str, int], lines: list[str]) -> bool:
            return self.reconciler.write_line_updates(document_path, updates, lines)

        tracker = PositionTracker(
            TextBuffer(text), on_flush=flush, debounce_seconds=self.settings.debounce_seconds
        )
        with self._lock:
            previous = self._sessions.get(document_path)
            self._sessions[document_path] = tracker
        if previous is not None:
            previous.close()
        self.activate(document_path)
        return tracker

    def apply_edit(self, document_path: str, changes: ChangeSet) -> TextBuffer:
        """
        Feed one editor change into the document's live session.

        Raises:
            KeyError: If the document has no open session
        """
        tracker = self.session(document_path)
        if tracker is None:
            raise KeyError(f"No editing session open for {document_path}")
        old_buffer = tracker.buffer
        new_buffer = tracker.apply(changes)
        with self._lock:
            line_map = self._line_maps.get(document_path)
            if line_map is not None:
                self._line_maps[document_path] = remap_line_map(
                    line_map, changes, old_buffer, new_buffer
                )
        return new_buffer

    def close_session(self, document_path: str) -> None:
        with self._lock:
            tracker = self._sessions.pop(document_path, None)
        if tracker is not None:
            tracker.close()

    # -- user actions -------------------------------------------------------

    def _settle(self, document_path: str) -> None:
        # Pending tracked moves must land before a user action rewrites the file.
        tracker = self.session(document_path)
        if tracker is not None:
            tracker.flush()

    def add_annotation(
        self,
        document_path: str,
        start_line: int,
        content: str,
        end_line: int | None = None,
        author: str | None = None,
        start_char: int = 0,
        end_char: int = 0,
    ) -> Annotation:
        """
        Create an annotation anchored at ``start_line``..``end_line``.

        The snippet is captured from the current text of the start line.

        Raises:
            ValueError: If the lines are outside the document or reversed
        """
        lines = self.document_lines(document_path)
        if lines is not None and not 1 <= start_line <= len(lines):
            raise ValueError(
                f"Invalid start line: {start_line} (document has {len(lines)} lines)"
            )
        anchor = Anchor(
            start_line=start_line,
            start_char=start_char,
            end_line=start_line if end_line is None else end_line,
            end_char=end_char,
        )
        annotation = Annotation(
            author=author or self.settings.default_author,
            anchor=anchor,
            content=content,
            snippet=capture_snippet(lines[start_line - 1]) if lines is not None else None,
        )
        self._settle(document_path)
        self.store.add_annotation(document_path, annotation)
        self.refresh(document_path)
        return annotation

    def add_reply(
        self, document_path: str, annotation_id: str, content: str, author: str | None = None
    ) -> Reply:
        reply = Reply(author=author or self.settings.default_author, content=content)
        self._settle(document_path)
        self.store.add_reply(document_path, annotation_id, reply)
        self.refresh(document_path)
        return reply

    def resolve(
        self, document_path: str, annotation_id: str, resolved_by: str | None = None
    ) -> Annotation:
        self._settle(document_path)
        annotation = self.store.resolve(
            document_path, annotation_id, resolved_by or self.settings.default_author
        )
        self.refresh(document_path)
        return annotation

    def reopen(self, document_path: str, annotation_id: str) -> Annotation:
        self._settle(document_path)
        annotation = self.store.reopen(document_path, annotation_id)
        self.refresh(document_path)
        return annotation

    def delete_annotation(self, document_path: str, annotation_id: str) -> Annotation:
        self._settle(document_path)
        annotation = self.store.delete_annotation(document_path, annotation_id)
        self.refresh(document_path)
        return annotation

    # -- out-of-band changes ------------------------------------------------

    def external_change(self, document_path: str) -> bool:
        """
        Handle an annotation file changed on disk by someone else.

        Returns:
            False when the change was our own write (self-save guard engaged)
        """
        if self.guard.is_suppressed(document_path):
            get_logger().debug("Ignoring self-originated change", document=document_path)
            return False
        self.store.invalidate(document_path)
        self.refresh(document_path)
        self._emit(document_path)
        return True

    def annotations_deleted(self, document_path: str) -> None:
        self.store.invalidate(document_path)
        self.refresh(document_path)
        self._emit(document_path)

    def document_renamed(self, old_document_path: str, new_document_path: str) -> bool:
        """
        Follow a document rename: move its annotation file and live session.

        Returns:
            True if an annotation file was moved
        """
        self.guard.engage(old_document_path)
        self.guard.engage(new_document_path)
        try:
            moved = self.store.move(old_document_path, new_document_path)
        finally:
            self.guard.release(old_document_path)
            self.guard.release(new_document_path)

        with self._lock:
            tracker = self._sessions.pop(old_document_path, None)
            if tracker is not None:
                self._sessions[new_document_path] = tracker
            self._line_maps.pop(old_document_path, None)
        if tracker is not None:
            tracker.on_flush = lambda updates, lines: self.reconciler.write_line_updates(
                new_document_path, updates, lines
            )

        self.refresh(new_document_path)
        self._emit(new_document_path)
        return moved

    def shutdown(self) -> None:
        """Close every session, cancel guard timers and drop cached state."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._line_maps.clear()
        for tracker in sessions:
            tracker.close()
        self.guard.shutdown()
        self._unsubscribe_store()
        self.store.clear_all()
