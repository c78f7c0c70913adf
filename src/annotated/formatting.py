"""Display helpers for annotation lists, popups and exports."""

from datetime import datetime, timezone

from annotated.models import Anchor, Annotation, parse_timestamp

ELLIPSIS = "…"
EN_DASH = "–"


def format_location(anchor: Anchor) -> str:
    """Render an anchor as "Line 5" or, for ranges, "Lines 5–8"."""
    if anchor.start_line == anchor.end_line:
        return f"Line {anchor.start_line}"
    return f"Lines {anchor.start_line}{EN_DASH}{anchor.end_line}"


def truncate_content(text: str, max_length: int = 120) -> str:
    if len(text) > max_length:
        return text[:max_length] + ELLIPSIS
    return text


def _clock(dt: datetime) -> str:
    hour = dt.hour % 12 or 12
    suffix = "AM" if dt.hour < 12 else "PM"
    return f"{hour}:{dt.minute:02d} {suffix}"


def format_timestamp(value: str, now: datetime | None = None) -> str:
    """Short human timestamp: "3:04 PM" today, "Jun 1, 3:04 PM" otherwise.

    Args:
        value: ISO 8601 timestamp
        now: Reference time (defaults to current UTC time)
    """
    dt = parse_timestamp(value)
    now = now or datetime.now(timezone.utc)
    if dt.astimezone(timezone.utc).date() == now.astimezone(timezone.utc).date():
        return _clock(dt)
    return f"{dt.strftime('%b')} {dt.day}, {_clock(dt)}"


def activity_time(annotation: Annotation) -> datetime:
    """Most recent activity: last_activity_at, else the last reply, else creation."""
    if annotation.last_activity_at:
        return parse_timestamp(annotation.last_activity_at)
    if annotation.replies:
        return parse_timestamp(annotation.replies[-1].created_at)
    return parse_timestamp(annotation.created_at)


def sort_annotations(annotations: list[Annotation], mode: str = "line") -> list[Annotation]:
    """
    Order annotations for display.

    Args:
        annotations: Annotations to order (not modified)
        mode: "line" (anchor position), "oldest" or "newest" (activity time)

    Returns:
        New sorted list

    Raises:
        ValueError: If mode is unknown
    """
    if mode == "line":
        return sorted(annotations, key=lambda a: (a.anchor.start_line, a.anchor.start_char))
    if mode == "oldest":
        return sorted(annotations, key=activity_time)
    if mode == "newest":
        return sorted(annotations, key=activity_time, reverse=True)
    raise ValueError(f"Unknown sort mode: {mode} (expected line, oldest or newest)")
