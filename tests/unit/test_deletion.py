"""Tests for the deletion committer."""

from datetime import datetime, timedelta, timezone

from tsretire.retirement.deletion import EPOCH, DeletionCommitter, format_instant


class TestFormatInstant:
    """Tests for RFC3339 formatting of the delete bounds."""

    def test_utc_instant(self):
        instant = datetime(2024, 9, 1, 3, 0, 0, 123456, tzinfo=timezone.utc)
        assert format_instant(instant) == "2024-09-01T03:00:00Z"

    def test_offset_instant_is_converted_to_utc(self):
        instant = datetime(2024, 9, 1, 5, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_instant(instant) == "2024-09-01T03:00:00Z"

    def test_naive_instant_is_taken_as_utc(self):
        assert format_instant(datetime(2024, 9, 1, 3, 0)) == "2024-09-01T03:00:00Z"


class TestDeletionCommitter:
    """Tests for issuing the source-side delete."""

    def test_delete_range_and_predicate(self, fake_source):
        source = fake_source()
        stop = datetime(2024, 10, 1, 2, 30, tzinfo=timezone.utc)

        result = DeletionCommitter(source).commit("2024-09", stop)

        assert source.deletes == [("2024-09", EPOCH, "2024-10-01T02:30:00Z")]
        assert result.deleted
        assert result.start == EPOCH
        assert result.stop == "2024-10-01T02:30:00Z"
        assert result.predicate == 'RetDate="2024-09"'
        assert result.error is None

    def test_custom_range_start(self, fake_source):
        source = fake_source()
        DeletionCommitter(source, range_start="2000-01-01T00:00:00Z").commit(
            "2024-09", datetime(2024, 10, 1, tzinfo=timezone.utc)
        )
        assert source.deletes[0][1] == "2000-01-01T00:00:00Z"

    def test_failure_is_reported_not_raised(self, fake_source):
        source = fake_source(fail_delete="bucket not found")

        result = DeletionCommitter(source).commit(
            "2024-09", datetime(2024, 10, 1, tzinfo=timezone.utc)
        )

        assert not result.deleted
        assert result.error == "bucket not found"
        assert len(source.deletes) == 1
