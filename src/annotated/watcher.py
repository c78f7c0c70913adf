"""Watch a workspace root for out-of-band annotation and document changes.

Annotation files edited, created or deleted by other tools invalidate the
cached copy and trigger a re-render; writes made by the workspace itself are
filtered by its self-save guard. A renamed document carries its annotation
file along.
"""

import time
from pathlib import Path
from threading import Event

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from annotated.atomic_write import TEMP_PREFIX
from annotated.logging import get_logger
from annotated.storage import SIDECAR_SUFFIX, document_path_for_sidecar, normalize_document_path
from annotated.workspace import Workspace


def _event_path(raw: str | bytes) -> Path:
    # src_path can be str or bytes depending on the observer backend
    return Path(raw if isinstance(raw, str) else raw.decode("utf-8"))


class AnnotationEventHandler(FileSystemEventHandler):
    """Routes file system events under a workspace root to the workspace."""

    def __init__(self, workspace: Workspace) -> None:
        self.workspace = workspace
        self.shutdown_event = Event()

    def _sidecar_document(self, event: FileSystemEvent) -> str | None:
        if event.is_directory:
            return None
        return document_path_for_sidecar(_event_path(event.src_path), self.workspace.root)

    def on_modified(self, event: FileSystemEvent) -> None:
        document_path = self._sidecar_document(event)
        if document_path is None:
            return
        if self.workspace.external_change(document_path):
            get_logger().info(f"Annotations changed externally: {document_path}")

    def on_created(self, event: FileSystemEvent) -> None:
        self.on_modified(event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        document_path = self._sidecar_document(event)
        if document_path is None:
            return
        get_logger().info(f"Annotations deleted: {document_path}")
        self.workspace.annotations_deleted(document_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        src = _event_path(event.src_path)
        dest = _event_path(event.dest_path)
        root = self.workspace.root

        if src.name.endswith(SIDECAR_SUFFIX) or dest.name.endswith(SIDECAR_SUFFIX):
            # Atomic writes arrive as temp file -> annotation file renames
            old_document = document_path_for_sidecar(src, root)
            if old_document is not None:
                self.workspace.annotations_deleted(old_document)
            new_document = document_path_for_sidecar(dest, root)
            if new_document is not None:
                self.workspace.external_change(new_document)
            return
        if src.name.startswith(TEMP_PREFIX):
            return

        try:
            old_document = normalize_document_path(src, root)
            new_document = normalize_document_path(dest, root)
        except ValueError:
            return
        if self.workspace.document_renamed(old_document, new_document):
            get_logger().info(f"Moved annotations: {old_document} -> {new_document}")

    def shutdown(self) -> None:
        self.shutdown_event.set()


def watch(workspace: Workspace, poll_seconds: float = 1.0) -> None:
    """
    Block watching ``workspace.root`` until interrupted.

    Args:
        workspace: Workspace that receives the events
        poll_seconds: How often the shutdown flag is checked
    """
    handler = AnnotationEventHandler(workspace)
    observer = Observer()
    observer.schedule(handler, str(workspace.root), recursive=True)
    get_logger().info(f"Watching {workspace.root} for annotation changes...")
    observer.start()
    try:
        while not handler.shutdown_event.is_set():
            time.sleep(poll_seconds)
    except KeyboardInterrupt:
        pass
    finally:
        observer.stop()
        observer.join()
        workspace.shutdown()
        get_logger().info("Watcher stopped")
