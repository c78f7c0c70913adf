"""Atomic file writes to prevent corruption from partial writes.

Annotation files, settings and exports are written through these helpers so
that readers (including file watchers) only ever see complete files.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

TEMP_PREFIX = ".tmp_"


def atomic_write_text(content: str, target_path: str | Path) -> None:
    """Write text content to target_path atomically.

    Uses temp file + rename pattern:
    1. Write to temporary file in same directory as target
    2. Rename temp file over the target (atomic on one filesystem)
    3. Clean up temp file on any failure

    Args:
        content: Text content to write (a trailing newline is ensured)
        target_path: Destination file path

    Raises:
        OSError: If write or rename fails
    """
    target_path = Path(target_path)
    dir_path = target_path.parent
    dir_path.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(dir=dir_path, prefix=TEMP_PREFIX, suffix=target_path.suffix)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            if not content.endswith("\n"):
                f.write("\n")
        os.chmod(temp_path, 0o644)
        os.replace(temp_path, target_path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass  # Temp file may already be gone
        raise


def atomic_write_json(data: Any, target_path: str | Path) -> None:
    """Write data as deterministic JSON (sorted keys, 2-space indent) atomically.

    Raises:
        OSError: If write or rename fails
        TypeError: If data is not JSON-serializable
    """
    atomic_write_text(json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False), target_path)
