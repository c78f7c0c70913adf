"""Snippet fingerprints and line relocation for drifted anchors.

A snippet is the first 50 characters of a line with trailing whitespace
removed. Relocation searches a window around a hint line: first for a line
that starts with the snippet (closest first), then for the line whose own
snippet has the highest bigram Dice similarity above a threshold.

All functions are pure and work on 0-indexed line lists.
"""

from collections import Counter
from typing import NamedTuple

SNIPPET_LENGTH = 50
DEFAULT_RADIUS = 50
FUZZY_THRESHOLD = 0.7


class SnippetMatch(NamedTuple):
    """Result of a successful relocation."""

    line: int  # 0-indexed line in the searched document
    confidence: float  # 1.0 for exact prefix matches, Dice score otherwise


def capture_snippet(line: str) -> str:
    """Fingerprint a line: first 50 characters, trailing whitespace stripped.

    Args:
        line: Line content (without line terminator)

    Returns:
        Snippet string, possibly empty
    """
    return line[:SNIPPET_LENGTH].rstrip()


def _bigrams(text: str) -> Counter[str]:
    return Counter(text[i : i + 2] for i in range(len(text) - 1))


def bigram_similarity(a: str, b: str) -> float:
    """Dice coefficient over overlapping character bigrams (0-1 scale).

    Identical strings score 1.0, including single characters. Otherwise any
    string shorter than two characters scores 0.0. Bigrams are counted as a
    multiset, so repeated pairs only match as often as both sides contain them.

    Args:
        a: First string
        b: Second string

    Returns:
        Similarity from 0.0 (no shared bigrams) to 1.0 (identical)
    """
    if a == b:
        return 1.0
    if len(a) < 2 or len(b) < 2:
        return 0.0

    a_bigrams = _bigrams(a)
    b_bigrams = _bigrams(b)
    intersection = sum((a_bigrams & b_bigrams).values())
    return (2 * intersection) / ((len(a) - 1) + (len(b) - 1))


def _exact_scan_order(hint_line: int, radius: int, line_count: int):
    """Yield line indexes: hint, then hint-d / hint+d for d = 1..radius."""
    if 0 <= hint_line < line_count:
        yield hint_line
    for d in range(1, radius + 1):
        if 0 <= hint_line - d < line_count:
            yield hint_line - d
        if 0 <= hint_line + d < line_count:
            yield hint_line + d


def find_line_by_snippet(
    document_lines: list[str],
    snippet: str,
    hint_line: int,
    radius: int = DEFAULT_RADIUS,
    threshold: float = FUZZY_THRESHOLD,
) -> SnippetMatch | None:
    """Relocate a snippet near ``hint_line``.

    1. EXACT: the closest line (hint first, then outward, lower line before
       higher line at equal distance) that starts with ``snippet``.
    2. FUZZY: among lines within ``radius`` of the hint, the line whose own
       snippet has the highest bigram similarity >= ``threshold``. Equal
       scores are broken by distance to the hint; a strictly higher score
       always wins regardless of distance.
    3. None when nothing qualifies.

    Args:
        document_lines: Current document as a list of lines (0-indexed)
        snippet: Stored fingerprint to look for
        hint_line: 0-indexed line where the anchor was last seen
        radius: Lines to search above and below the hint (default 50)
        threshold: Minimum similarity for fuzzy matches (default 0.7)

    Returns:
        SnippetMatch with the 0-indexed line and confidence, or None
    """
    if not snippet:
        return None

    line_count = len(document_lines)
    for index in _exact_scan_order(hint_line, radius, line_count):
        if document_lines[index].startswith(snippet):
            return SnippetMatch(line=index, confidence=1.0)

    low = max(0, hint_line - radius)
    high = min(line_count - 1, hint_line + radius)

    best: SnippetMatch | None = None
    best_distance = 0
    for index in range(low, high + 1):
        score = bigram_similarity(snippet, capture_snippet(document_lines[index]))
        if score < threshold:
            continue
        distance = abs(index - hint_line)
        if best is None or score > best.confidence or (
            score == best.confidence and distance < best_distance
        ):
            best = SnippetMatch(line=index, confidence=score)
            best_distance = distance

    return best
