"""Data models for annotations, replies, anchors, and annotation files."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator
from ulid import new as new_ulid

from annotated.snippets import SNIPPET_LENGTH

SCHEMA_VERSION = "1.0"


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string with microseconds and a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def generate_id() -> str:
    """Return a new ULID string (millisecond timestamp prefix + random suffix)."""
    return str(new_ulid())


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _validate_utc_timestamp(v: str) -> str:
    try:
        dt = parse_timestamp(v)
    except (ValueError, AttributeError) as e:
        raise ValueError(f"Invalid ISO 8601 timestamp: {v}") from e
    if dt.tzinfo is None or dt.utcoffset() != timezone.utc.utcoffset(None):
        raise ValueError(f"Timestamp must be in UTC timezone: {v}")
    return v


class AnnotationStatus(str, Enum):
    """Annotation lifecycle status."""

    OPEN = "open"
    RESOLVED = "resolved"
    ARCHIVED = "archived"


class Anchor(BaseModel):
    """Line/character range an annotation is attached to.

    Lines are 1-indexed, character offsets are 0-indexed within their line.
    """

    start_line: int = Field(..., ge=1)
    start_char: int = Field(default=0, ge=0)
    end_line: int = Field(..., ge=1)
    end_char: int = Field(default=0, ge=0)

    @field_validator("end_line")
    @classmethod
    def validate_line_range(cls, v: int, info) -> int:
        """Validate that end_line >= start_line."""
        if "start_line" in info.data and v < info.data["start_line"]:
            raise ValueError(f"end_line ({v}) must be >= start_line ({info.data['start_line']})")
        return v

    def shifted(self, delta: int) -> "Anchor":
        """Return a copy moved by ``delta`` lines, keeping the span length."""
        return self.model_copy(
            update={"start_line": self.start_line + delta, "end_line": self.end_line + delta}
        )


class Reply(BaseModel):
    """A single reply within an annotation thread."""

    id: str = Field(default_factory=generate_id)
    author: str = Field(..., min_length=1, max_length=200)
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    content: str = Field(..., min_length=1)
    status: AnnotationStatus = AnnotationStatus.OPEN

    @field_validator("created_at", "updated_at")
    @classmethod
    def validate_utc_timestamp(cls, v: str) -> str:
        """Validate that timestamps are ISO 8601 with a timezone."""
        return _validate_utc_timestamp(v)


class Annotation(BaseModel):
    """A comment thread anchored to a line range of a document.

    ``snippet`` is the content fingerprint of the anchored line; annotations
    written before snippets existed load with ``snippet=None`` and are
    backfilled on the next reconciliation.
    """

    id: str = Field(default_factory=generate_id)
    author: str = Field(..., min_length=1, max_length=200)
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    anchor: Anchor
    content: str = Field(..., min_length=1)
    status: AnnotationStatus = AnnotationStatus.OPEN
    resolved_at: str | None = None
    resolved_by: str | None = None
    replies: list[Reply] = Field(default_factory=list)
    last_activity_at: str | None = None
    snippet: str | None = Field(default=None, max_length=SNIPPET_LENGTH)
    stale: bool = False

    @field_validator("created_at", "updated_at", "resolved_at", "last_activity_at")
    @classmethod
    def validate_utc_timestamp(cls, v: str | None) -> str | None:
        """Validate ISO 8601 timestamps when present."""
        if v is None:
            return v
        return _validate_utc_timestamp(v)

    @model_validator(mode="after")
    def backfill_last_activity(self) -> "Annotation":
        """Derive last_activity_at for records that predate the field."""
        if self.last_activity_at is None:
            times = [self.created_at] + [r.created_at for r in self.replies]
            self.last_activity_at = max(times, key=parse_timestamp)
        return self

    def add_reply(self, reply: Reply) -> Reply:
        """Append a reply, reopening the thread if it was resolved.

        Args:
            reply: Reply to append (its created_at becomes last activity)

        Returns:
            The appended reply
        """
        self.replies.append(reply)
        self.updated_at = utc_now()
        self.last_activity_at = reply.created_at
        if self.status == AnnotationStatus.RESOLVED:
            self.status = AnnotationStatus.OPEN
            self.resolved_at = None
            self.resolved_by = None
        return reply

    def resolve(self, resolved_by: str) -> None:
        """Mark the thread resolved. last_activity_at is left alone."""
        now = utc_now()
        self.status = AnnotationStatus.RESOLVED
        self.resolved_at = now
        self.resolved_by = resolved_by
        self.updated_at = now

    def reopen(self) -> None:
        """Reopen a resolved or archived thread.

        Raises:
            ValueError: If the thread is already open
        """
        if self.status == AnnotationStatus.OPEN:
            raise ValueError("Annotation is already open")
        self.status = AnnotationStatus.OPEN
        self.resolved_at = None
        self.resolved_by = None
        self.updated_at = utc_now()

    @property
    def is_resolved(self) -> bool:
        return self.status == AnnotationStatus.RESOLVED


class FileMetadata(BaseModel):
    """Summary block derived from an annotation file's comments."""

    total_comments: int = 0
    open_count: int = 0
    resolved_count: int = 0
    archived_count: int = 0
    authors: list[str] = Field(default_factory=list)

    @classmethod
    def from_comments(cls, comments: list[Annotation]) -> "FileMetadata":
        """Recompute metadata from scratch; authors keep first-seen order."""
        authors: dict[str, None] = {}
        counts = {status: 0 for status in AnnotationStatus}
        for comment in comments:
            authors.setdefault(comment.author, None)
            counts[comment.status] += 1
            for reply in comment.replies:
                authors.setdefault(reply.author, None)
        return cls(
            total_comments=len(comments),
            open_count=counts[AnnotationStatus.OPEN],
            resolved_count=counts[AnnotationStatus.RESOLVED],
            archived_count=counts[AnnotationStatus.ARCHIVED],
            authors=list(authors),
        )


class AnnotationFile(BaseModel):
    """Root structure of one document's persisted annotations."""

    version: str = SCHEMA_VERSION
    document_path: str = Field(..., min_length=1, description="POSIX path relative to the root")
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    comments: list[Annotation] = Field(default_factory=list)
    metadata: FileMetadata = Field(default_factory=FileMetadata)

    def find(self, annotation_id: str) -> Annotation | None:
        """Return the annotation with ``annotation_id`` or None."""
        for comment in self.comments:
            if comment.id == annotation_id:
                return comment
        return None

    def refresh_metadata(self) -> None:
        self.metadata = FileMetadata.from_comments(self.comments)


class ReconciliationReport(BaseModel):
    """Summary of one reconciliation pass over a document."""

    document_path: str
    total: int = Field(default=0, ge=0)
    verified: int = Field(default=0, ge=0, description="Anchors confirmed in place")
    relocated: int = Field(default=0, ge=0, description="Anchors moved to a new line")
    backfilled: int = Field(default=0, ge=0, description="Legacy anchors given a snippet")
    stale: int = Field(default=0, ge=0, description="Anchors with no confident match")
    saved: bool = False
