"""Tests for CLI interface."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from annotated import __version__
from annotated.cli import cli, parse_line_range
from annotated.storage import read_annotation_file

DOCUMENT = "notes/list.md"


@pytest.fixture
def runner():
    """Create a Click CLI test runner."""
    return CliRunner()


def _invoke(runner: CliRunner, root: Path, *args: str):
    return runner.invoke(cli, ["--root", str(root), *args], env={"NO_COLOR": "1"})


def _sidecar(root: Path) -> Path:
    return root / f"{DOCUMENT}.comments.json"


def _add(runner: CliRunner, root: Path, line_range: str = "3:3", body: str = "Organic?") -> str:
    result = _invoke(runner, root, "add", DOCUMENT, "-L", line_range, body)
    assert result.exit_code == 0, result.output
    return read_annotation_file(_sidecar(root)).comments[-1].id


# ============================================================================
# Unit Tests: parse_line_range()
# ============================================================================


def test_parse_line_range():
    """Ranges and single lines parse to (start, end)."""
    assert parse_line_range("10:15") == (10, 15)
    assert parse_line_range("7") == (7, 7)


@pytest.mark.parametrize("bad", ["5:2", "0:3", "a:b", "1:2:3"])
def test_parse_line_range_invalid(bad):
    """Malformed, reversed and zero-based ranges are rejected."""
    with pytest.raises(ValueError):
        parse_line_range(bad)


# ============================================================================
# Integration Tests: add
# ============================================================================


def test_add_creates_annotation(runner, workspace_root):
    """add writes the annotation file and reports the captured snippet."""
    result = _invoke(runner, workspace_root, "add", DOCUMENT, "-L", "3:4", "Organic?")

    assert result.exit_code == 0
    assert "Created annotation" in result.output
    assert f"File: {DOCUMENT}" in result.output
    assert "Lines 3–4" in result.output
    assert "Snippet: 'Buy apples and pears'" in result.output

    stored = read_annotation_file(_sidecar(workspace_root))
    assert stored.document_path == DOCUMENT
    assert stored.comments[0].content == "Organic?"
    assert stored.comments[0].author == "unknown"


def test_add_with_author(runner, workspace_root):
    """--author overrides the configured default."""
    result = _invoke(runner, workspace_root, "add", DOCUMENT, "-L", "1:1", "-a", "alice", "Title")
    assert result.exit_code == 0
    assert read_annotation_file(_sidecar(workspace_root)).comments[0].author == "alice"


def test_add_missing_document(runner, workspace_root):
    """Annotating a document that does not exist fails with exit code 1."""
    result = _invoke(runner, workspace_root, "add", "notes/missing.md", "-L", "1:1", "Hi")
    assert result.exit_code == 1
    assert "Document not found: notes/missing.md" in result.output


def test_add_outside_root(runner, workspace_root, tmp_path_factory):
    """Documents outside the workspace root are rejected."""
    outside = tmp_path_factory.mktemp("elsewhere") / "doc.md"
    outside.write_text("text")
    result = _invoke(runner, workspace_root, "add", str(outside), "-L", "1:1", "Hi")
    assert result.exit_code == 1
    assert "outside the workspace root" in result.output


@pytest.mark.parametrize(
    "line_range, message",
    [
        ("5:2", "must be >="),
        ("x:y", "must be integers"),
        ("40:40", "Invalid start line"),
    ],
)
def test_add_bad_range(runner, workspace_root, line_range, message):
    """Bad line ranges exit with code 1 and write nothing."""
    result = _invoke(runner, workspace_root, "add", DOCUMENT, "-L", line_range, "Hi")
    assert result.exit_code == 1
    assert message in result.output
    assert not _sidecar(workspace_root).exists()


def test_add_uses_settings_author(runner, workspace_root):
    """The default author comes from the settings file."""
    (workspace_root / ".annotated.json").write_text(json.dumps({"default_author": "carol"}))
    _add(runner, workspace_root)
    assert read_annotation_file(_sidecar(workspace_root)).comments[0].author == "carol"


def test_invalid_settings(runner, workspace_root):
    """A broken settings file stops every command."""
    (workspace_root / ".annotated.json").write_text("{broken")
    result = _invoke(runner, workspace_root, "list", DOCUMENT)
    assert result.exit_code == 1
    assert "Invalid JSON in settings file" in result.output


# ============================================================================
# Integration Tests: thread lifecycle
# ============================================================================


def test_resolve_reply_reopen(runner, workspace_root):
    """resolve hides an annotation; a reply brings it back."""
    annotation_id = _add(runner, workspace_root)

    result = _invoke(runner, workspace_root, "resolve", DOCUMENT, annotation_id, "--by", "bob")
    assert result.exit_code == 0
    assert f"Annotation {annotation_id} resolved by bob" in result.output

    result = _invoke(runner, workspace_root, "list", DOCUMENT)
    assert "No matching annotations found." in result.output

    result = _invoke(runner, workspace_root, "list", DOCUMENT, "--all")
    assert f"{annotation_id} [resolved]" in result.output

    result = _invoke(runner, workspace_root, "reply", DOCUMENT, annotation_id, "-a", "carol", "No")
    assert result.exit_code == 0
    assert f"to annotation {annotation_id}" in result.output

    result = _invoke(runner, workspace_root, "list", DOCUMENT)
    assert f"{annotation_id} [open] Line 3 unknown" in result.output
    assert "(1 replies)" in result.output
    assert "    Organic?" in result.output


def test_reopen(runner, workspace_root):
    """reopen works on resolved annotations and rejects open ones."""
    annotation_id = _add(runner, workspace_root)

    result = _invoke(runner, workspace_root, "reopen", DOCUMENT, annotation_id)
    assert result.exit_code == 1
    assert "already open" in result.output

    _invoke(runner, workspace_root, "resolve", DOCUMENT, annotation_id)
    result = _invoke(runner, workspace_root, "reopen", DOCUMENT, annotation_id)
    assert result.exit_code == 0
    assert f"Annotation {annotation_id} reopened" in result.output


def test_delete(runner, workspace_root):
    """delete removes the annotation from the file."""
    annotation_id = _add(runner, workspace_root)

    result = _invoke(runner, workspace_root, "delete", DOCUMENT, annotation_id)

    assert result.exit_code == 0
    assert f"Deleted annotation {annotation_id}" in result.output
    assert read_annotation_file(_sidecar(workspace_root)).comments == []


@pytest.mark.parametrize("command", ["resolve", "reopen", "delete"])
def test_unknown_id(runner, workspace_root, command):
    """Unknown annotation ids exit with code 1."""
    _add(runner, workspace_root)
    result = _invoke(runner, workspace_root, command, DOCUMENT, "nope")
    assert result.exit_code == 1
    assert "Annotation nope not found" in result.output


def test_reply_unknown_id(runner, workspace_root):
    _add(runner, workspace_root)
    result = _invoke(runner, workspace_root, "reply", DOCUMENT, "nope", "Hello")
    assert result.exit_code == 1


# ============================================================================
# Integration Tests: list
# ============================================================================


def test_list_sorted_by_line(runner, workspace_root):
    """Annotations list in line order by default."""
    _add(runner, workspace_root, "5:5", "Late line")
    _add(runner, workspace_root, "1:1", "Early line")

    result = _invoke(runner, workspace_root, "list", DOCUMENT)

    assert result.exit_code == 0
    assert result.output.index("Early line") < result.output.index("Late line")


def test_list_json(runner, workspace_root):
    """--json prints the annotations as a JSON array."""
    annotation_id = _add(runner, workspace_root)

    result = _invoke(runner, workspace_root, "list", DOCUMENT, "--json")

    data = json.loads(result.output)
    assert [a["id"] for a in data] == [annotation_id]
    assert data[0]["snippet"] == "Buy apples and pears"


def test_list_without_annotations(runner, workspace_root):
    result = _invoke(runner, workspace_root, "list", DOCUMENT)
    assert result.exit_code == 0
    assert "No matching annotations found." in result.output


def test_list_corrupted_file(runner, workspace_root):
    """An unparseable annotation file exits with code 2."""
    _sidecar(workspace_root).write_text("{not json")
    result = _invoke(runner, workspace_root, "list", DOCUMENT)
    assert result.exit_code == 2
    assert "Invalid JSON" in result.output


# ============================================================================
# Integration Tests: reconcile, gutter, export
# ============================================================================


def test_reconcile_relocates(runner, workspace_root, sample_lines):
    """reconcile moves anchors after the document shifted."""
    annotation_id = _add(runner, workspace_root)
    (workspace_root / DOCUMENT).write_text("\n".join(["New intro", ""] + sample_lines))

    result = _invoke(runner, workspace_root, "reconcile", DOCUMENT)

    assert result.exit_code == 0
    assert f"Reconciled {DOCUMENT}: 0 verified, 1 relocated, 0 backfilled, 0 stale" in result.output
    assert "Saved list.md.comments.json" in result.output
    stored = read_annotation_file(_sidecar(workspace_root)).find(annotation_id)
    assert stored.anchor.start_line == 5


def test_reconcile_nothing(runner, workspace_root):
    result = _invoke(runner, workspace_root, "reconcile", DOCUMENT)
    assert result.exit_code == 0
    assert f"Nothing to reconcile for {DOCUMENT}" in result.output


def test_gutter(runner, workspace_root):
    """gutter prints one summary line per annotated line."""
    _add(runner, workspace_root, "3:3", "One")
    _add(runner, workspace_root, "3:3", "Two")
    _add(runner, workspace_root, "5:5", "Three")

    result = _invoke(runner, workspace_root, "gutter", DOCUMENT)

    assert result.exit_code == 0
    assert result.output.splitlines() == ["    3: 2", "    5: 1"]


def test_gutter_empty(runner, workspace_root):
    result = _invoke(runner, workspace_root, "gutter", DOCUMENT)
    assert "No visible annotations." in result.output


def test_export_stdout(runner, workspace_root):
    """export prints markdown grouped by status."""
    _add(runner, workspace_root)

    result = _invoke(runner, workspace_root, "export", DOCUMENT)

    assert result.exit_code == 0
    assert result.output.startswith("# Comments: list.md\n\n## Open (1)\n\n### Line 3 — unknown (")
    assert "Organic?" in result.output
    assert "## Resolved (0)" in result.output


def test_export_to_file(runner, workspace_root, tmp_path):
    """-o writes the markdown to a file."""
    _add(runner, workspace_root)
    output = tmp_path / "out" / "comments.md"
    output.parent.mkdir()

    result = _invoke(runner, workspace_root, "export", DOCUMENT, "-o", str(output))

    assert result.exit_code == 0
    assert f"Exported 1 annotations to {output}" in result.output
    assert output.read_text(encoding="utf-8").startswith("# Comments: list.md")


def test_export_without_annotations(runner, workspace_root):
    result = _invoke(runner, workspace_root, "export", DOCUMENT)
    assert result.exit_code == 1
    assert f"No annotations for {DOCUMENT}" in result.output


def test_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output
