"""Annotation file I/O and the per-document annotation cache.

Each document ``D`` (a POSIX path relative to the workspace root) keeps its
annotations in ``<root>/D.comments.json``. ``AnnotationStore`` caches parsed
files by document path and funnels every mutation through ``save()``, which
recomputes metadata and writes atomically before the cache is touched.
"""

import json
import threading
from collections.abc import Callable
from pathlib import Path

from pydantic import ValidationError

from annotated.atomic_write import atomic_write_json
from annotated.logging import get_logger
from annotated.models import Annotation, AnnotationFile, Reply, utc_now

SIDECAR_SUFFIX = ".comments.json"

ChangeListener = Callable[[str], None]
UpdateFn = Callable[[AnnotationFile | None], AnnotationFile | None]


class AnnotationFileError(ValueError):
    """Raised when an annotation file is unreadable or fails validation."""


class AnnotationNotFound(KeyError):  # noqa: N818
    """Raised when an annotation id does not exist in a document's file."""


def normalize_document_path(path: str | Path, root: Path) -> str:
    """
    Normalize a document path to a POSIX path relative to ``root``.

    Relative paths are taken relative to ``root``; ``..`` components are
    resolved before the containment check.

    Args:
        path: Document path (relative or absolute)
        root: Workspace root directory

    Returns:
        Relative POSIX path string (e.g. "notes/todo.md")

    Raises:
        ValueError: If the resolved path is outside ``root``
    """
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()
    root_abs = root.resolve()
    try:
        relative = resolved.relative_to(root_abs)
    except ValueError:
        raise ValueError(
            f"Document is outside the workspace root:\n  Path: {resolved}\n  Root: {root_abs}"
        )
    return relative.as_posix()


def get_sidecar_path(document_path: str, root: Path) -> Path:
    """Map a document path to its annotation file (``<root>/<doc>.comments.json``)."""
    return root / f"{document_path}{SIDECAR_SUFFIX}"


def document_path_for_sidecar(sidecar_path: Path, root: Path) -> str | None:
    """Inverse of ``get_sidecar_path``; None for paths that are not annotation files."""
    if not sidecar_path.name.endswith(SIDECAR_SUFFIX):
        return None
    try:
        relative = normalize_document_path(sidecar_path, root)
    except ValueError:
        return None
    return relative[: -len(SIDECAR_SUFFIX)]


def read_annotation_file(path: Path) -> AnnotationFile:
    """
    Read and validate an annotation file.

    Args:
        path: Path to a ``*.comments.json`` file

    Returns:
        Parsed AnnotationFile

    Raises:
        FileNotFoundError: If the file does not exist
        AnnotationFileError: If JSON is invalid or fails schema validation
    """
    if not path.exists():
        raise FileNotFoundError(f"Annotation file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise AnnotationFileError(f"Invalid JSON in annotation file {path}: {e}") from e
    except OSError as e:
        raise AnnotationFileError(f"Failed to read annotation file {path}: {e}") from e

    try:
        return AnnotationFile.model_validate(data)
    except ValidationError as e:
        raise AnnotationFileError(f"Annotation file {path} failed schema validation: {e}") from e


def write_annotation_file(path: Path, annotation_file: AnnotationFile) -> None:
    """
    Write an annotation file atomically with deterministic JSON.

    Output uses sorted keys, 2-space indent and a trailing newline so the
    files diff cleanly under version control. Readers never observe a
    partial write.

    Raises:
        OSError: If the write or rename fails
    """
    try:
        atomic_write_json(annotation_file.model_dump(mode="json"), path)
    except OSError as e:
        raise OSError(f"Failed to write annotation file {path}: {e}") from e


class AnnotationStore:
    """Cached access to every document's annotation file under one root.

    Writers (user actions, the reconciler, the live tracker flush) must run
    their read-modify-write inside ``update()`` or hold ``lock(document)``
    themselves, which serializes them per document.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self._cache: dict[str, AnnotationFile] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._listeners: list[ChangeListener] = []

    # -- plumbing ---------------------------------------------------------

    def lock(self, document_path: str) -> threading.RLock:
        """Reentrant lock owning the critical section for ``document_path``."""
        with self._locks_guard:
            lock = self._locks.get(document_path)
            if lock is None:
                lock = self._locks[document_path] = threading.RLock()
            return lock

    def sidecar_path(self, document_path: str) -> Path:
        return get_sidecar_path(document_path, self.root)

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register ``listener(document_path)`` for successful saves.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, document_path: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(document_path)
            except Exception as e:
                get_logger().exception(f"Change listener failed for {document_path}", e)

    # -- reads ------------------------------------------------------------

    def read_file(self, document_path: str) -> AnnotationFile | None:
        """Return the cached file, loading it from disk on a cache miss.

        Returns:
            AnnotationFile, or None when the document has no annotation file

        Raises:
            AnnotationFileError: If the annotation file cannot be parsed
        """
        with self.lock(document_path):
            cached = self._cache.get(document_path)
            if cached is not None:
                return cached
            try:
                loaded = read_annotation_file(self.sidecar_path(document_path))
            except FileNotFoundError:
                return None
            self._cache[document_path] = loaded
            return loaded

    def get(self, document_path: str) -> AnnotationFile | None:
        """Like ``read_file`` but a malformed file is logged and treated as absent."""
        try:
            return self.read_file(document_path)
        except AnnotationFileError as e:
            get_logger().error(
                str(e), suggestion="Fix or remove the file; its annotations are hidden until then"
            )
            return None

    # -- writes -----------------------------------------------------------

    def save(self, annotation_file: AnnotationFile) -> AnnotationFile:
        """
        Persist an annotation file and refresh the cache.

        Metadata is recomputed from ``comments`` and ``updated_at`` is bumped
        on a copy; the cache only sees that copy after the write succeeded.

        Returns:
            The saved (and now cached) AnnotationFile

        Raises:
            OSError: If the write fails; the cache keeps its previous state
        """
        document_path = annotation_file.document_path
        prepared = annotation_file.model_copy(deep=True)
        prepared.refresh_metadata()
        prepared.updated_at = utc_now()

        with self.lock(document_path):
            write_annotation_file(self.sidecar_path(document_path), prepared)
            self._cache[document_path] = prepared

        get_logger().debug(
            "Saved annotations", document=document_path, total=prepared.metadata.total_comments
        )
        self._notify(document_path)
        return prepared

    def update(self, document_path: str, update_fn: UpdateFn) -> AnnotationFile | None:
        """
        Run one read-modify-write cycle for a document.

        ``update_fn`` receives a private copy of the current file (or None if
        the document has none) and returns the file to save, or None to skip
        the write. The whole cycle holds the document lock.

        Example:
            >>> def mark_stale(current):
            ...     current.comments[0].stale = True
            ...     return current
            >>> store.update("notes/todo.md", mark_stale)

        Returns:
            The saved file, or None when nothing was written
        """
        with self.lock(document_path):
            current = self.read_file(document_path)
            working = current.model_copy(deep=True) if current is not None else None
            updated = update_fn(working)
            if updated is None:
                return None
            return self.save(updated)

    def add_annotation(self, document_path: str, annotation: Annotation) -> Annotation:
        """Append an annotation, creating the document's file on first use."""

        def add(current: AnnotationFile | None) -> AnnotationFile:
            if current is None:
                current = AnnotationFile(document_path=document_path)
            current.comments.append(annotation)
            return current

        self.update(document_path, add)
        return annotation

    def _mutate(
        self, document_path: str, annotation_id: str, mutate: Callable[[Annotation], None]
    ) -> Annotation:
        found: list[Annotation] = []

        def apply(current: AnnotationFile | None) -> AnnotationFile:
            target = current.find(annotation_id) if current is not None else None
            if target is None:
                raise AnnotationNotFound(
                    f"Annotation {annotation_id} not found in {document_path}"
                )
            mutate(target)
            found.append(target)
            return current

        self.update(document_path, apply)
        return found[0]

    def add_reply(self, document_path: str, annotation_id: str, reply: Reply) -> Annotation:
        """
        Append a reply to an annotation; a resolved annotation is reopened.

        Raises:
            AnnotationNotFound: If the document has no such annotation
        """
        return self._mutate(document_path, annotation_id, lambda a: a.add_reply(reply))

    def resolve(self, document_path: str, annotation_id: str, resolved_by: str) -> Annotation:
        """Mark an annotation resolved by ``resolved_by``."""
        return self._mutate(document_path, annotation_id, lambda a: a.resolve(resolved_by))

    def reopen(self, document_path: str, annotation_id: str) -> Annotation:
        """Reopen a resolved annotation (ValueError if already open)."""
        return self._mutate(document_path, annotation_id, lambda a: a.reopen())

    def delete_annotation(self, document_path: str, annotation_id: str) -> Annotation:
        """Remove an annotation from its document's file and return it."""
        removed: list[Annotation] = []

        def remove(current: AnnotationFile | None) -> AnnotationFile:
            target = current.find(annotation_id) if current is not None else None
            if target is None:
                raise AnnotationNotFound(
                    f"Annotation {annotation_id} not found in {document_path}"
                )
            current.comments.remove(target)
            removed.append(target)
            return current

        self.update(document_path, remove)
        return removed[0]

    def move(self, old_document_path: str, new_document_path: str) -> bool:
        """
        Move a document's annotation file after the document was renamed.

        Rewrites ``document_path`` inside the file and drops both cache
        entries so the next ``get`` reloads from disk.

        Returns:
            True if an annotation file was moved, False if none existed

        Raises:
            AnnotationFileError: If the old file cannot be parsed
            OSError: If writing the new file fails
        """
        old_sidecar = self.sidecar_path(old_document_path)
        new_sidecar = self.sidecar_path(new_document_path)
        first, second = sorted((old_document_path, new_document_path))
        # Fixed order so opposite renames cannot deadlock
        with self.lock(first), self.lock(second):
            if not old_sidecar.exists():
                return False
            moved = read_annotation_file(old_sidecar)
            moved.document_path = new_document_path
            write_annotation_file(new_sidecar, moved)
            old_sidecar.unlink()
            self.invalidate(old_document_path)
            self.invalidate(new_document_path)
        get_logger().debug("Moved annotations", old=old_document_path, new=new_document_path)
        return True

    # -- cache control ----------------------------------------------------

    def invalidate(self, document_path: str) -> None:
        """Forget the cached file for one document."""
        with self.lock(document_path):
            self._cache.pop(document_path, None)

    def clear_all(self) -> None:
        """Forget every cached file."""
        with self._locks_guard:
            self._cache.clear()

    def cached_documents(self) -> list[str]:
        return sorted(self._cache)
