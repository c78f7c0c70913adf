"""Per-line annotation summaries for gutter rendering.

``build_line_map`` groups the visible annotations of a document by anchor
start line. ``remap_line_map`` carries an existing map through an edit
without a rebuild; buckets that land on the same line are merged with the
same algebra ``build_line_map`` uses (count sums, stale ORs, resolved ANDs).
"""

from collections.abc import Iterable
from typing import NamedTuple

from pydantic import BaseModel

from annotated.buffer import ChangeSet, TextBuffer
from annotated.models import Annotation, AnnotationStatus


class LineSummary(NamedTuple):
    """Display summary of every annotation bucketed at one line."""

    count: int
    has_stale: bool
    all_resolved: bool

    def merge(self, other: "LineSummary") -> "LineSummary":
        return LineSummary(
            count=self.count + other.count,
            has_stale=self.has_stale or other.has_stale,
            all_resolved=self.all_resolved and other.all_resolved,
        )


EMPTY_SUMMARY = LineSummary(count=0, has_stale=False, all_resolved=True)

LineMap = dict[int, LineSummary]


class FilterPolicy(BaseModel, frozen=True):
    """Which annotations are shown in the gutter."""

    hide_resolved: bool = True
    hide_archived: bool = True
    authors: frozenset[str] | None = None

    def is_visible(self, annotation: Annotation) -> bool:
        if self.hide_resolved and annotation.status == AnnotationStatus.RESOLVED:
            return False
        if self.hide_archived and annotation.status == AnnotationStatus.ARCHIVED:
            return False
        if self.authors is not None and annotation.author not in self.authors:
            return False
        return True


def summarize(annotation: Annotation) -> LineSummary:
    return LineSummary(count=1, has_stale=annotation.stale, all_resolved=annotation.is_resolved)


def _merge_into(line_map: LineMap, line: int, summary: LineSummary) -> None:
    line_map[line] = line_map.get(line, EMPTY_SUMMARY).merge(summary)


def build_line_map(
    annotations: Iterable[Annotation], policy: FilterPolicy | None = None
) -> LineMap:
    """Group visible annotations by 1-indexed anchor start line.

    Args:
        annotations: Annotations of one document
        policy: Visibility policy (default: hide resolved and archived)

    Returns:
        Mapping of line -> LineSummary
    """
    policy = policy or FilterPolicy()
    line_map: LineMap = {}
    for annotation in annotations:
        if policy.is_visible(annotation):
            _merge_into(line_map, annotation.anchor.start_line, summarize(annotation))
    return line_map


def remap_line_map(
    line_map: LineMap, changes: ChangeSet, old_buffer: TextBuffer, new_buffer: TextBuffer
) -> LineMap:
    """Carry a line map through one edit.

    Each line's start offset in ``old_buffer`` is mapped forward through
    ``changes`` and converted back to a line of ``new_buffer``. Lines that
    do not exist in ``old_buffer`` are dropped.

    Args:
        line_map: Summaries keyed by pre-edit line
        changes: The edit
        old_buffer: Text before the edit
        new_buffer: Text after the edit

    Returns:
        New mapping keyed by post-edit line
    """
    remapped: LineMap = {}
    for line, summary in line_map.items():
        if line < 1 or line > old_buffer.line_count:
            continue
        new_offset = changes.map_pos(old_buffer.line_start(line), 1)
        if new_offset > new_buffer.length:
            continue
        _merge_into(remapped, new_buffer.line_at(new_offset), summary)
    return remapped
