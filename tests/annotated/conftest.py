"""Shared fixtures for annotation tests."""

from pathlib import Path

import pytest

from annotated.models import Anchor, Annotation, AnnotationFile

SAMPLE_TEXT = "\n".join(
    [
        "# Shopping list",
        "",
        "Buy apples and pears",
        "Call the plumber about the sink",
        "Return library books",
        "Renew passport before June",
    ]
)


def _make_annotation(
    start_line: int,
    content: str = "Note",
    end_line: int | None = None,
    snippet: str | None = None,
    **kwargs,
) -> Annotation:
    """Build an annotation anchored at ``start_line``."""
    return Annotation(
        author=kwargs.pop("author", "alice"),
        anchor=Anchor(start_line=start_line, end_line=end_line or start_line),
        content=content,
        snippet=snippet,
        **kwargs,
    )


@pytest.fixture
def make_annotation():
    """Factory for annotations anchored at a given line."""
    return _make_annotation


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    """Workspace root containing notes/list.md with SAMPLE_TEXT."""
    notes = tmp_path / "notes"
    notes.mkdir()
    (notes / "list.md").write_text(SAMPLE_TEXT, encoding="utf-8")
    return tmp_path


@pytest.fixture
def sample_file() -> AnnotationFile:
    """Annotation file for notes/list.md with two annotations."""
    return AnnotationFile(
        document_path="notes/list.md",
        comments=[
            _make_annotation(3, "Organic?", snippet="Buy apples and pears"),
            _make_annotation(4, "Urgent", snippet="Call the plumber about the sink", author="bob"),
        ],
    )


@pytest.fixture
def sample_lines() -> list[str]:
    """Lines of notes/list.md."""
    return SAMPLE_TEXT.split("\n")
