"""Markdown export of a document's annotations."""

from pathlib import PurePosixPath

from annotated.formatting import format_location
from annotated.models import Annotation, AnnotationFile, AnnotationStatus

EM_DASH = "—"


def _date(value: str) -> str:
    return value[:10]


def format_annotation(annotation: Annotation) -> str:
    """One annotation as a markdown heading, body and quoted replies."""
    parts = [
        f"### {format_location(annotation.anchor)} {EM_DASH} "
        f"{annotation.author} ({_date(annotation.created_at)})",
        annotation.content,
    ]
    for reply in annotation.replies:
        parts.append(f"  > **{reply.author}** ({_date(reply.created_at)}): {reply.content}")
    return "\n".join(parts)


def export_markdown(annotation_file: AnnotationFile) -> str:
    """
    Render open and resolved annotations of a document as markdown.

    Example output::

        # Comments: todo.md

        ## Open (1)

        ### Line 3 — alice (2024-01-01)
        Needs a source

        ## Resolved (0)

    Returns:
        Markdown text without trailing whitespace
    """
    name = PurePosixPath(annotation_file.document_path).name
    open_items = [c for c in annotation_file.comments if c.status == AnnotationStatus.OPEN]
    resolved = [c for c in annotation_file.comments if c.status == AnnotationStatus.RESOLVED]

    md = f"# Comments: {name}\n\n"
    md += f"## Open ({len(open_items)})\n\n"
    if open_items:
        md += "\n\n".join(format_annotation(c) for c in open_items) + "\n\n"
    md += f"## Resolved ({len(resolved)})\n\n"
    if resolved:
        md += "\n\n".join(format_annotation(c) for c in resolved) + "\n\n"
    return md.rstrip()
