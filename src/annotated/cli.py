"""CLI entry point for line-anchored annotations."""

import json
import os
import sys
from pathlib import Path

import click

from annotated import __version__
from annotated.atomic_write import atomic_write_text
from annotated.config import load_settings, settings_path
from annotated.export import export_markdown
from annotated.formatting import (
    format_location,
    format_timestamp,
    sort_annotations,
    truncate_content,
)
from annotated.logging import init_logger
from annotated.models import Annotation, AnnotationStatus
from annotated.storage import AnnotationFileError, AnnotationNotFound
from annotated.watcher import watch
from annotated.workspace import Workspace


def parse_line_range(line_range: str) -> tuple[int, int]:
    """
    Parse a ``START:END`` (or single ``LINE``) range.

    Raises:
        ValueError: If the range is malformed or reversed
    """
    parts = line_range.split(":")
    if len(parts) > 2:
        raise ValueError(f"Invalid line range: {line_range} (expected START:END)")
    try:
        start = int(parts[0])
        end = int(parts[-1])
    except ValueError:
        raise ValueError(f"Line numbers must be integers: {line_range}")
    if start < 1:
        raise ValueError(f"Line numbers start at 1: {line_range}")
    if end < start:
        raise ValueError(f"End line ({end}) must be >= start line ({start})")
    return start, end


def _fail(message: str, code: int) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


def _not_found_message(e: AnnotationNotFound) -> str:
    return e.args[0] if e.args else "Annotation not found"


def _workspace(ctx: click.Context) -> Workspace:
    return ctx.obj


def _document(workspace: Workspace, file_path: Path) -> str:
    try:
        return workspace.document_path(file_path)
    except ValueError as e:
        _fail(str(e), 1)


def _existing_document(workspace: Workspace, file_path: Path) -> str:
    document = _document(workspace, file_path)
    if not (workspace.root / document).is_file():
        _fail(f"Document not found: {document}", 1)
    return document


@click.group()
@click.version_option(version=__version__, prog_name="annotated")
@click.option(
    "--root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    help="Workspace root holding the documents (default: current directory)",
)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.pass_context
def cli(ctx: click.Context, root: Path, verbose: bool):
    """Line-anchored annotation threads for plain-text documents."""
    init_logger(verbose=verbose, use_colors=os.environ.get("NO_COLOR") is None)
    root = root.resolve()
    try:
        settings = load_settings(settings_path(root))
    except ValueError as e:
        _fail(str(e), 1)
    workspace = Workspace(root, settings)
    ctx.obj = workspace
    ctx.call_on_close(workspace.shutdown)


@cli.command()
@click.argument("file_path", type=click.Path(path_type=Path))
@click.option(
    "-L",
    "--lines",
    "line_range",
    metavar="START:END",
    required=True,
    help="Line range to anchor the annotation (e.g., -L 10:15)",
)
@click.option("-a", "--author", default=None, help="Author name (defaults to settings)")
@click.argument("body", required=True)
@click.pass_context
def add(ctx: click.Context, file_path: Path, line_range: str, author: str | None, body: str):
    """
    Create an annotation anchored to a line range.

    Examples:

        annotated add notes/todo.md -L 3:3 "Needs a source"

        annotated add PLAN.md -L 10:12 --author=alice "Unclear"
    """
    workspace = _workspace(ctx)
    document = _existing_document(workspace, file_path)
    try:
        start, end = parse_line_range(line_range)
        annotation = workspace.add_annotation(
            document, start, body, end_line=end, author=author
        )
    except AnnotationFileError as e:
        _fail(str(e), 2)
    except ValueError as e:
        _fail(str(e), 1)
    except OSError as e:
        _fail(f"Failed to save annotation: {e}", 2)

    click.echo(f"Created annotation {annotation.id}")
    click.echo(f"  File: {document}")
    click.echo(f"  {format_location(annotation.anchor)}")
    click.echo(f"  Snippet: {annotation.snippet!r}")


@cli.command()
@click.argument("file_path", type=click.Path(path_type=Path))
@click.argument("annotation_id")
@click.option("-a", "--author", default=None, help="Author name (defaults to settings)")
@click.argument("body", required=True)
@click.pass_context
def reply(ctx: click.Context, file_path: Path, annotation_id: str, author: str | None, body: str):
    """Reply to an annotation. Replying to a resolved annotation reopens it."""
    workspace = _workspace(ctx)
    document = _document(workspace, file_path)
    try:
        new_reply = workspace.add_reply(document, annotation_id, body, author=author)
    except AnnotationNotFound as e:
        _fail(_not_found_message(e), 1)
    except AnnotationFileError as e:
        _fail(str(e), 2)
    except ValueError as e:
        _fail(str(e), 1)
    except OSError as e:
        _fail(f"Failed to save reply: {e}", 2)

    click.echo(f"Added reply {new_reply.id} to annotation {annotation_id}")


@cli.command()
@click.argument("file_path", type=click.Path(path_type=Path))
@click.argument("annotation_id")
@click.option("--by", "resolved_by", default=None, help="Who resolved it (defaults to settings)")
@click.pass_context
def resolve(ctx: click.Context, file_path: Path, annotation_id: str, resolved_by: str | None):
    """Mark an annotation resolved."""
    workspace = _workspace(ctx)
    document = _document(workspace, file_path)
    try:
        annotation = workspace.resolve(document, annotation_id, resolved_by)
    except AnnotationNotFound as e:
        _fail(_not_found_message(e), 1)
    except AnnotationFileError as e:
        _fail(str(e), 2)
    except OSError as e:
        _fail(f"Failed to save annotation: {e}", 2)

    click.echo(f"Annotation {annotation_id} resolved by {annotation.resolved_by}")


@cli.command()
@click.argument("file_path", type=click.Path(path_type=Path))
@click.argument("annotation_id")
@click.pass_context
def reopen(ctx: click.Context, file_path: Path, annotation_id: str):
    """Reopen a resolved annotation."""
    workspace = _workspace(ctx)
    document = _document(workspace, file_path)
    try:
        workspace.reopen(document, annotation_id)
    except AnnotationNotFound as e:
        _fail(_not_found_message(e), 1)
    except AnnotationFileError as e:
        _fail(str(e), 2)
    except ValueError as e:
        _fail(str(e), 1)
    except OSError as e:
        _fail(f"Failed to save annotation: {e}", 2)

    click.echo(f"Annotation {annotation_id} reopened")


@cli.command()
@click.argument("file_path", type=click.Path(path_type=Path))
@click.argument("annotation_id")
@click.pass_context
def delete(ctx: click.Context, file_path: Path, annotation_id: str):
    """Delete an annotation and its replies."""
    workspace = _workspace(ctx)
    document = _document(workspace, file_path)
    try:
        workspace.delete_annotation(document, annotation_id)
    except AnnotationNotFound as e:
        _fail(_not_found_message(e), 1)
    except AnnotationFileError as e:
        _fail(str(e), 2)
    except OSError as e:
        _fail(f"Failed to save annotations: {e}", 2)

    click.echo(f"Deleted annotation {annotation_id}")


def _list_line(annotation: Annotation) -> str:
    status = annotation.status.value
    if os.environ.get("NO_COLOR") is None:
        color = {
            AnnotationStatus.OPEN: "green",
            AnnotationStatus.RESOLVED: "blue",
            AnnotationStatus.ARCHIVED: "white",
        }[annotation.status]
        status = click.style(status, fg=color)
    stale = " [stale]" if annotation.stale else ""
    when = format_timestamp(annotation.last_activity_at or annotation.created_at)
    return (
        f"{annotation.id} [{status}]{stale} {format_location(annotation.anchor)} "
        f"{annotation.author}, {when} ({len(annotation.replies)} replies)"
    )


@cli.command(name="list")
@click.argument("file_path", type=click.Path(path_type=Path))
@click.option(
    "--sort",
    "sort_mode",
    type=click.Choice(["line", "oldest", "newest"], case_sensitive=False),
    default=None,
    help="Sort order (defaults to settings)",
)
@click.option("--all", "show_all", is_flag=True, help="Include resolved and archived annotations")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def list_annotations(
    ctx: click.Context, file_path: Path, sort_mode: str | None, show_all: bool, json_output: bool
):
    """
    List the annotations of a document.

    Examples:

        annotated list notes/todo.md

        annotated list notes/todo.md --all --sort=newest
    """
    workspace = _workspace(ctx)
    document = _document(workspace, file_path)
    try:
        annotation_file = workspace.store.read_file(document)
    except AnnotationFileError as e:
        _fail(str(e), 2)

    annotations = annotation_file.comments if annotation_file is not None else []
    if not show_all:
        policy = workspace.settings.filter_policy()
        annotations = [a for a in annotations if policy.is_visible(a)]
    annotations = sort_annotations(annotations, sort_mode or workspace.settings.default_sort_mode)

    if json_output:
        click.echo(json.dumps([a.model_dump(mode="json") for a in annotations], indent=2))
        return

    if not annotations:
        click.echo("No matching annotations found.")
        return
    for annotation in annotations:
        click.echo(_list_line(annotation))
        click.echo(f"    {truncate_content(annotation.content)}")


@cli.command()
@click.argument("file_path", type=click.Path(path_type=Path))
@click.pass_context
def reconcile(ctx: click.Context, file_path: Path):
    """Re-verify every anchor of a document and relocate drifted ones."""
    workspace = _workspace(ctx)
    document = _existing_document(workspace, file_path)
    try:
        report = workspace.activate(document)
    except OSError as e:
        _fail(f"Failed to save annotations: {e}", 2)

    if report is None:
        click.echo(f"Nothing to reconcile for {document}")
        return
    click.echo(
        f"Reconciled {document}: {report.verified} verified, {report.relocated} relocated, "
        f"{report.backfilled} backfilled, {report.stale} stale"
    )
    if report.saved:
        click.echo(f"  Saved {workspace.store.sidecar_path(document).name}")


@cli.command()
@click.argument("file_path", type=click.Path(path_type=Path))
@click.pass_context
def gutter(ctx: click.Context, file_path: Path):
    """Show the per-line annotation summary of a document."""
    workspace = _workspace(ctx)
    document = _document(workspace, file_path)
    line_map = workspace.line_map(document)
    if not line_map:
        click.echo("No visible annotations.")
        return
    for line in sorted(line_map):
        summary = line_map[line]
        flags = []
        if summary.has_stale:
            flags.append("stale")
        if summary.all_resolved:
            flags.append("resolved")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        click.echo(f"{line:>5}: {summary.count}{suffix}")


@cli.command()
@click.argument("file_path", type=click.Path(path_type=Path))
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write markdown to a file instead of stdout",
)
@click.pass_context
def export(ctx: click.Context, file_path: Path, output: Path | None):
    """Export a document's annotations as markdown."""
    workspace = _workspace(ctx)
    document = _document(workspace, file_path)
    try:
        annotation_file = workspace.store.read_file(document)
    except AnnotationFileError as e:
        _fail(str(e), 2)
    if annotation_file is None:
        _fail(f"No annotations for {document}", 1)

    markdown = export_markdown(annotation_file)
    if output is None:
        click.echo(markdown)
        return
    try:
        atomic_write_text(markdown, output)
    except OSError as e:
        _fail(f"Failed to write {output}: {e}", 2)
    click.echo(f"Exported {len(annotation_file.comments)} annotations to {output}")


@cli.command(name="watch")
@click.pass_context
def watch_root(ctx: click.Context):
    """Watch the workspace root and follow renames and external edits."""
    watch(_workspace(ctx))


if __name__ == "__main__":
    cli()
