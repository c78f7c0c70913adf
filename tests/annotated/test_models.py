"""Tests for annotation data models."""

import pytest
from pydantic import ValidationError

from annotated.models import (
    Anchor,
    Annotation,
    AnnotationFile,
    AnnotationStatus,
    FileMetadata,
    Reply,
    generate_id,
    utc_now,
)


class TestAnchor:
    """Tests for Anchor validation."""

    def test_valid_anchor(self) -> None:
        """A forward range is accepted."""
        anchor = Anchor(start_line=3, start_char=2, end_line=5, end_char=7)
        assert anchor.start_line == 3
        assert anchor.end_line == 5

    def test_end_before_start_rejected(self) -> None:
        """end_line < start_line fails validation."""
        with pytest.raises(ValidationError, match="must be >= start_line"):
            Anchor(start_line=5, end_line=3)

    def test_zero_line_rejected(self) -> None:
        """Lines are 1-indexed."""
        with pytest.raises(ValidationError):
            Anchor(start_line=0, end_line=1)

    def test_shifted_keeps_span(self) -> None:
        """shifted moves both ends by the same delta."""
        anchor = Anchor(start_line=3, start_char=4, end_line=6, end_char=1)
        moved = anchor.shifted(5)
        assert (moved.start_line, moved.end_line) == (8, 11)
        assert (moved.start_char, moved.end_char) == (4, 1)
        assert anchor.start_line == 3


class TestIdsAndTimestamps:
    """Tests for id generation and timestamps."""

    def test_ids_are_unique(self) -> None:
        """Generated ids do not collide."""
        ids = {generate_id() for _ in range(200)}
        assert len(ids) == 200

    def test_utc_now_has_z_suffix(self) -> None:
        """Timestamps are UTC with a Z suffix."""
        assert utc_now().endswith("Z")

    def test_naive_timestamp_rejected(self) -> None:
        """Timestamps without a timezone fail validation."""
        with pytest.raises(ValidationError, match="timezone"):
            Reply(author="bob", content="hi", created_at="2024-01-01T00:00:00")

    @pytest.mark.parametrize("value", ["2024-01-01T12:00:00+02:00", "2024-01-01T05:00:00-05:00"])
    def test_non_utc_offset_rejected(self, value: str) -> None:
        """Timestamps must be UTC, not merely offset-aware."""
        with pytest.raises(ValidationError, match="UTC"):
            Reply(author="bob", content="hi", created_at=value)

    def test_explicit_utc_offset_accepted(self) -> None:
        reply = Reply(author="bob", content="hi", created_at="2024-01-01T00:00:00+00:00")
        assert reply.created_at == "2024-01-01T00:00:00+00:00"

    def test_utc_now_fixed_precision(self) -> None:
        """Every generated timestamp carries microseconds."""
        assert len({len(utc_now()) for _ in range(50)}) == 1


class TestAnnotation:
    """Tests for Annotation lifecycle."""

    def _annotation(self) -> Annotation:
        return Annotation(
            author="alice",
            created_at="2024-01-01T10:00:00Z",
            anchor=Anchor(start_line=1, end_line=1),
            content="Check this",
        )

    def test_defaults(self) -> None:
        """New annotations are open, not stale, and have no snippet yet."""
        annotation = self._annotation()
        assert annotation.status == AnnotationStatus.OPEN
        assert annotation.stale is False
        assert annotation.snippet is None
        assert annotation.replies == []

    def test_last_activity_backfilled_from_created_at(self) -> None:
        """Records without last_activity_at derive it on load."""
        annotation = self._annotation()
        assert annotation.last_activity_at == "2024-01-01T10:00:00Z"

    def test_last_activity_backfilled_from_replies(self) -> None:
        """The latest reply time wins when backfilling."""
        data = self._annotation().model_dump(mode="json")
        data["last_activity_at"] = None
        data["replies"] = [
            {"author": "bob", "content": "ok", "created_at": "2024-01-03T00:00:00Z"},
            {"author": "carol", "content": "sure", "created_at": "2024-01-02T00:00:00Z"},
        ]
        annotation = Annotation.model_validate(data)
        assert annotation.last_activity_at == "2024-01-03T00:00:00Z"

    def test_backfill_compares_times_not_text(self) -> None:
        """A fractional reply time after a whole-second creation time wins."""
        data = self._annotation().model_dump(mode="json")
        data["created_at"] = "2024-01-01T10:00:00Z"
        data["last_activity_at"] = None
        data["replies"] = [
            {"author": "bob", "content": "ok", "created_at": "2024-01-01T10:00:00.250Z"},
        ]
        annotation = Annotation.model_validate(data)
        assert annotation.last_activity_at == "2024-01-01T10:00:00.250Z"

    def test_reply_sets_last_activity_across_precisions(self) -> None:
        """The reply time becomes last activity even when it sorts lower as text."""
        annotation = self._annotation()
        reply = Reply(author="bob", content="ok", created_at="2024-01-01T10:00:00.500000Z")
        annotation.add_reply(reply)
        assert annotation.last_activity_at == "2024-01-01T10:00:00.500000Z"

    def test_snippet_max_length(self) -> None:
        """Snippets longer than 50 characters are rejected."""
        with pytest.raises(ValidationError):
            Annotation(
                author="alice",
                anchor=Anchor(start_line=1, end_line=1),
                content="x",
                snippet="y" * 51,
            )

    def test_reply_reopens_resolved(self) -> None:
        """Replying to a resolved thread reopens it and advances activity."""
        annotation = self._annotation()
        annotation.resolve("bob")
        assert annotation.is_resolved

        reply = Reply(author="carol", content="Not done yet")
        annotation.add_reply(reply)

        assert annotation.status == AnnotationStatus.OPEN
        assert annotation.resolved_at is None
        assert annotation.resolved_by is None
        assert annotation.last_activity_at == reply.created_at
        assert annotation.replies == [reply]

    def test_resolve_leaves_last_activity(self) -> None:
        """Resolving records who and when but is not activity."""
        annotation = self._annotation()
        before = annotation.last_activity_at
        annotation.resolve("bob")
        assert annotation.resolved_by == "bob"
        assert annotation.resolved_at == annotation.updated_at
        assert annotation.last_activity_at == before

    def test_reopen(self) -> None:
        """reopen clears resolution fields."""
        annotation = self._annotation()
        annotation.resolve("bob")
        annotation.reopen()
        assert annotation.status == AnnotationStatus.OPEN
        assert annotation.resolved_at is None

    def test_reopen_open_rejected(self) -> None:
        """Reopening an open thread is an error."""
        with pytest.raises(ValueError, match="already open"):
            self._annotation().reopen()

    def test_legacy_record_loads(self) -> None:
        """Records missing snippet, stale and last_activity_at still load."""
        annotation = Annotation.model_validate(
            {
                "id": "01HX0000000000000000000000",
                "author": "alice",
                "created_at": "2024-01-01T00:00:00Z",
                "updated_at": "2024-01-01T00:00:00Z",
                "anchor": {"start_line": 2, "start_char": 0, "end_line": 2, "end_char": 4},
                "content": "Old note",
                "status": "open",
                "replies": [],
            }
        )
        assert annotation.snippet is None
        assert annotation.stale is False
        assert annotation.last_activity_at == "2024-01-01T00:00:00Z"


class TestFileMetadata:
    """Tests for metadata derivation."""

    def test_counts_and_authors(self) -> None:
        """Metadata counts statuses and lists authors in first-seen order."""
        open_one = Annotation(author="bob", anchor=Anchor(start_line=1, end_line=1), content="a")
        open_one.add_reply(Reply(author="alice", content="r"))
        resolved = Annotation(author="carol", anchor=Anchor(start_line=2, end_line=2), content="b")
        resolved.resolve("bob")
        archived = Annotation(
            author="bob",
            anchor=Anchor(start_line=3, end_line=3),
            content="c",
            status=AnnotationStatus.ARCHIVED,
        )

        metadata = FileMetadata.from_comments([open_one, resolved, archived])

        assert metadata.total_comments == 3
        assert metadata.open_count == 1
        assert metadata.resolved_count == 1
        assert metadata.archived_count == 1
        assert metadata.authors == ["bob", "alice", "carol"]

    def test_refresh_metadata(self, sample_file: AnnotationFile) -> None:
        """refresh_metadata recomputes from comments."""
        assert sample_file.metadata.total_comments == 0
        sample_file.refresh_metadata()
        assert sample_file.metadata.total_comments == 2
        assert sample_file.metadata.authors == ["alice", "bob"]

    def test_find(self, sample_file: AnnotationFile) -> None:
        """find returns an annotation by id or None."""
        first = sample_file.comments[0]
        assert sample_file.find(first.id) is first
        assert sample_file.find("missing") is None

    def test_json_round_trip(self, sample_file: AnnotationFile) -> None:
        """Files survive a dump/validate cycle unchanged."""
        sample_file.refresh_metadata()
        data = sample_file.model_dump(mode="json")
        assert AnnotationFile.model_validate(data) == sample_file
