"""Anchor reconciliation: re-verify and relocate annotations against document text.

Run when a document becomes active. For every annotation:
1. Legacy record without a snippet: backfill the snippet from the anchored line
2. Anchored line still starts with the snippet: verified, clear stale
3. Otherwise relocate the snippet near the old line and move the anchor
4. No confident match: mark stale (the annotation is kept, never dropped)

A pass writes the annotation file at most once, with the self-save guard
engaged so the file watcher does not treat the write as an external edit.
"""

from collections.abc import Callable
from enum import Enum
from pathlib import Path

from annotated.guard import SelfSaveGuard
from annotated.logging import get_logger
from annotated.models import Annotation, AnnotationFile, ReconciliationReport
from annotated.snippets import DEFAULT_RADIUS, capture_snippet, find_line_by_snippet
from annotated.storage import AnnotationStore

ReconciledCallback = Callable[[str, ReconciliationReport], None]


class AnchorOutcome(str, Enum):
    """What reconciliation did to one annotation."""

    BACKFILLED = "backfilled"
    VERIFIED = "verified"
    RELOCATED = "relocated"
    STALE = "stale"
    SKIPPED = "skipped"  # legacy record whose line is out of range


def move_to_line(annotation: Annotation, new_line: int, document_lines: list[str]) -> bool:
    """Move an annotation's anchor to 1-indexed ``new_line``.

    The end line shifts by the same delta so the span length is preserved;
    the snippet is recaptured from the new line when it exists and the stale
    flag is cleared. Shared by reconciliation and the live tracker flush.

    Returns:
        True if the annotation changed
    """
    changed = False
    delta = new_line - annotation.anchor.start_line
    if delta:
        annotation.anchor = annotation.anchor.shifted(delta)
        changed = True
    index = new_line - 1
    if 0 <= index < len(document_lines):
        snippet = capture_snippet(document_lines[index])
        if snippet != annotation.snippet:
            annotation.snippet = snippet
            changed = True
    if annotation.stale:
        annotation.stale = False
        changed = True
    return changed


def reconcile_annotation(
    annotation: Annotation, document_lines: list[str], radius: int = DEFAULT_RADIUS
) -> tuple[AnchorOutcome, bool]:
    """Reconcile a single annotation in place.

    Args:
        annotation: Annotation to verify (mutated in place)
        document_lines: Current document text as a list of lines
        radius: Relocation search radius in lines

    Returns:
        Tuple of (outcome, changed)
    """
    index = annotation.anchor.start_line - 1
    in_range = 0 <= index < len(document_lines)

    if annotation.snippet is None:
        if not in_range:
            return AnchorOutcome.SKIPPED, False
        annotation.snippet = capture_snippet(document_lines[index])
        return AnchorOutcome.BACKFILLED, True

    if in_range and document_lines[index].startswith(annotation.snippet):
        if annotation.stale:
            annotation.stale = False
            return AnchorOutcome.VERIFIED, True
        return AnchorOutcome.VERIFIED, False

    match = find_line_by_snippet(document_lines, annotation.snippet, index, radius=radius)
    if match is not None:
        old_line = annotation.anchor.start_line
        move_to_line(annotation, match.line + 1, document_lines)
        get_logger().debug(
            "Relocated annotation",
            id=annotation.id,
            old_line=old_line,
            new_line=annotation.anchor.start_line,
            confidence=round(match.confidence, 3),
        )
        return AnchorOutcome.RELOCATED, True

    if annotation.stale:
        return AnchorOutcome.STALE, False
    annotation.stale = True
    get_logger().debug("Marked annotation stale", id=annotation.id, line=annotation.anchor.start_line)
    return AnchorOutcome.STALE, True


def reconcile_file(
    annotation_file: AnnotationFile, document_lines: list[str], radius: int = DEFAULT_RADIUS
) -> tuple[ReconciliationReport, bool]:
    """Reconcile every annotation of a file in place.

    Returns:
        Tuple of (report, changed); ``report.saved`` is left False for the
        caller to set once the file was written
    """
    report = ReconciliationReport(
        document_path=annotation_file.document_path, total=len(annotation_file.comments)
    )
    changed = False
    for annotation in annotation_file.comments:
        outcome, annotation_changed = reconcile_annotation(annotation, document_lines, radius)
        changed = changed or annotation_changed
        if outcome == AnchorOutcome.VERIFIED:
            report.verified += 1
        elif outcome == AnchorOutcome.RELOCATED:
            report.relocated += 1
        elif outcome == AnchorOutcome.BACKFILLED:
            report.backfilled += 1
    report.stale = sum(1 for a in annotation_file.comments if a.stale)
    return report, changed


def apply_line_updates(
    annotation_file: AnnotationFile, updates: dict[str, int], document_lines: list[str]
) -> bool:
    """Move annotations to the tracked lines in ``updates`` (id -> 1-indexed line).

    Annotations whose start line already matches are left alone.

    Returns:
        True if any annotation changed
    """
    changed = False
    for annotation in annotation_file.comments:
        new_line = updates.get(annotation.id)
        if new_line is None or new_line == annotation.anchor.start_line:
            continue
        move_to_line(annotation, new_line, document_lines)
        changed = True
    return changed


def read_document_lines(path: Path) -> list[str] | None:
    """Read a document as lines, or None if it cannot be read as UTF-8 text."""
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        get_logger().warning(f"Cannot read document {path}: {e}")
        return None
    return text.split("\n")


class Reconciler:
    """Runs reconciliation passes and tracked-line write-backs for a store.

    Both write paths hold the store's document lock for the whole
    read-compute-write cycle, so passes for one document never overlap.
    """

    def __init__(
        self,
        store: AnnotationStore,
        guard: SelfSaveGuard,
        radius: int = DEFAULT_RADIUS,
        on_reconciled: ReconciledCallback | None = None,
    ) -> None:
        self.store = store
        self.guard = guard
        self.radius = radius
        self.on_reconciled = on_reconciled

    def _save_guarded(self, working: AnnotationFile) -> None:
        with self.guard.suppress(working.document_path):
            self.store.save(working)

    def reconcile(
        self, document_path: str, document_lines: list[str] | None = None
    ) -> ReconciliationReport | None:
        """
        Verify and relocate every anchor of one document.

        Args:
            document_path: Document to reconcile
            document_lines: Current text; read from disk when omitted

        Returns:
            ReconciliationReport, or None when the pass was skipped (no
            annotations, or the document text is empty or unavailable)
        """
        with self.store.lock(document_path):
            current = self.store.get(document_path)
            if current is None or not current.comments:
                return None

            if document_lines is None:
                document_lines = read_document_lines(self.store.root / document_path)
                if document_lines is None:
                    get_logger().warning(
                        f"Skipping reconciliation of {document_path}: document unreadable"
                    )
                    return None
            if document_lines == [""]:
                get_logger().debug("Skipping reconciliation of empty document", document=document_path)
                return None

            working = current.model_copy(deep=True)
            report, changed = reconcile_file(working, document_lines, self.radius)
            if changed:
                self._save_guarded(working)
                report.saved = True

        get_logger().debug(
            "Reconciled document",
            document=document_path,
            relocated=report.relocated,
            stale=report.stale,
            saved=report.saved,
        )
        if self.on_reconciled is not None:
            self.on_reconciled(document_path, report)
        return report

    def write_line_updates(
        self, document_path: str, updates: dict[str, int], document_lines: list[str]
    ) -> bool:
        """
        Persist tracked line positions for a document.

        Returns:
            True if the annotation file was written
        """
        with self.store.lock(document_path):
            current = self.store.get(document_path)
            if current is None:
                return False
            working = current.model_copy(deep=True)
            if not apply_line_updates(working, updates, document_lines):
                return False
            self._save_guarded(working)
        return True
