"""Text buffers and position-mapping edit transforms.

A ``ChangeSet`` is one edit event: a list of non-overlapping replacements
expressed in the coordinates of the text *before* the edit. ``map_pos``
carries an offset from the old text to the new one, which is all the live
tracker and gutter aggregates need to follow text as it moves.
"""

from bisect import bisect_right
from typing import NamedTuple


class Change(NamedTuple):
    """Replace ``text[start:end]`` with ``insert``."""

    start: int
    end: int
    insert: str = ""

    @classmethod
    def insertion(cls, at: int, text: str) -> "Change":
        return cls(at, at, text)

    @classmethod
    def deletion(cls, start: int, end: int) -> "Change":
        return cls(start, end, "")

    @property
    def delta(self) -> int:
        """Length difference this change introduces."""
        return len(self.insert) - (self.end - self.start)


class ChangeSet:
    """An edit event made of one or more changes to the same text."""

    def __init__(self, changes: list[Change] | tuple[Change, ...]) -> None:
        ordered = sorted(changes, key=lambda c: (c.start, c.end))
        for change in ordered:
            if change.start < 0 or change.end < change.start:
                raise ValueError(f"Invalid change range: {change.start}:{change.end}")
        for before, after in zip(ordered, ordered[1:]):
            if after.start < before.end:
                raise ValueError(
                    f"Overlapping changes: {before.start}:{before.end} and {after.start}:{after.end}"
                )
        self.changes: tuple[Change, ...] = tuple(ordered)

    @classmethod
    def single(cls, start: int, end: int, insert: str = "") -> "ChangeSet":
        return cls([Change(start, end, insert)])

    def __repr__(self) -> str:
        return f"ChangeSet({list(self.changes)!r})"

    def map_pos(self, pos: int, assoc: int = 1) -> int:
        """Map an offset in the old text to the corresponding new offset.

        Offsets before a change are untouched, offsets after it shift by the
        change's delta. An offset inside a replaced range, or exactly at a
        change boundary, is placed after the inserted text when ``assoc`` is
        positive or zero (forward bias) and at the change start otherwise.

        Args:
            pos: Offset into the pre-edit text
            assoc: Side to stick to at change boundaries (default 1, forward)

        Returns:
            Offset into the post-edit text
        """
        shift = 0
        for change in self.changes:
            if pos < change.start:
                break
            if pos > change.end:
                shift += change.delta
                continue
            if assoc < 0 and pos == change.start:
                return change.start + shift
            return change.start + shift + len(change.insert)
        return pos + shift

    def apply(self, text: str) -> str:
        """Return ``text`` with every change applied.

        Raises:
            ValueError: If a change reaches past the end of ``text``
        """
        parts: list[str] = []
        cursor = 0
        for change in self.changes:
            if change.end > len(text):
                raise ValueError(
                    f"Change {change.start}:{change.end} exceeds text length {len(text)}"
                )
            parts.append(text[cursor : change.start])
            parts.append(change.insert)
            cursor = change.end
        parts.append(text[cursor:])
        return "".join(parts)


class TextBuffer:
    """Immutable document text with line/offset conversions.

    Lines are 1-indexed and separated by ``\\n``; a trailing newline yields a
    final empty line, the same way an editor shows it.
    """

    def __init__(self, text: str = "") -> None:
        self.text = text
        self._line_starts = [0]
        for index, char in enumerate(text):
            if char == "\n":
                self._line_starts.append(index + 1)

    @property
    def length(self) -> int:
        return len(self.text)

    @property
    def line_count(self) -> int:
        return len(self._line_starts)

    @property
    def lines(self) -> list[str]:
        return self.text.split("\n")

    def line_start(self, line: int) -> int:
        """Offset of the first character of 1-indexed ``line``.

        Raises:
            ValueError: If ``line`` is outside 1..line_count
        """
        if line < 1 or line > self.line_count:
            raise ValueError(f"Line {line} out of range (1-{self.line_count})")
        return self._line_starts[line - 1]

    def line_at(self, offset: int) -> int:
        """1-indexed line containing ``offset``, clamped to the buffer."""
        offset = max(0, min(offset, self.length))
        return bisect_right(self._line_starts, offset)

    def apply(self, changes: ChangeSet) -> "TextBuffer":
        return TextBuffer(changes.apply(self.text))
