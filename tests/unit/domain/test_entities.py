"""
Unit tests for FileRecord, AggregateStats and the filename helpers.
"""

from datetime import datetime, timedelta, timezone

import pytest

from tmpfiles.domain.file_storage.entities import AggregateStats, FileRecord, date_bucket
from tmpfiles.domain.file_storage.filename import (
    generate_stored_name,
    get_file_extension,
    sanitize_filename,
)

from tests.fixtures import BASE_TIME, create_file_record


class TestFileRecord:

    def test_create_derives_expiry_and_stored_name(self):
        record = create_file_record(ttl_seconds=60, record_id="abc", original_name="report.PDF")

        assert record.expires_at == BASE_TIME + timedelta(seconds=60)
        assert record.stored_name == "abc_report.pdf"
        assert record.custom_metadata == {}

    def test_create_generates_unique_ids(self):
        assert create_file_record().id != create_file_record().id

    def test_expiry_is_strict(self):
        record = create_file_record(ttl_seconds=60)

        assert not record.is_expired(record.expires_at)
        assert record.is_expired(record.expires_at + timedelta(microseconds=1))

    def test_remaining_seconds_never_negative(self):
        record = create_file_record(ttl_seconds=60)

        assert record.get_remaining_seconds(BASE_TIME + timedelta(seconds=15)) == 45
        assert record.get_remaining_seconds(BASE_TIME + timedelta(hours=1)) == 0

    def test_dict_round_trip_preserves_fields(self):
        record = create_file_record(custom_metadata={"owner": "alice"})

        restored = FileRecord.from_dict(record.to_dict())

        assert restored == record
        assert record.to_dict()["contentHash"] == record.content_hash

    def test_from_dict_treats_naive_timestamps_as_utc(self):
        data = create_file_record().to_dict()
        data["uploadedAt"] = "2024-01-15T12:00:00"
        data["expiresAt"] = "2024-01-15T13:00:00Z"

        record = FileRecord.from_dict(data)

        assert record.uploaded_at.tzinfo is not None
        assert record.expires_at == datetime(2024, 1, 15, 13, tzinfo=timezone.utc)

    def test_with_storage_key_keeps_identity(self):
        record = create_file_record()
        shared = record.with_storage_key("other")

        assert shared.storage_key == "other"
        assert shared.id == record.id
        assert record.storage_key != "other"

    def test_records_are_immutable(self):
        record = create_file_record()
        with pytest.raises(AttributeError):
            record.size = 1


class TestAggregateStats:

    def test_from_records_counts_buckets(self):
        records = [
            create_file_record(b"a", mime_type="text/plain"),
            create_file_record(b"bb", mime_type="text/plain"),
            create_file_record(b"ccc", mime_type="image/png",
                               uploaded_at=BASE_TIME + timedelta(days=1)),
        ]

        stats = AggregateStats.from_records(records)

        assert stats.total_files == 3
        assert stats.total_size == 6
        assert stats.files_by_mime_type == {"text/plain": 2, "image/png": 1}
        assert stats.files_by_date == {"2024-01-15": 2, "2024-01-16": 1}

    def test_remove_drops_empty_buckets(self):
        record = create_file_record(mime_type="image/png")
        stats = AggregateStats.from_records([record])

        stats.remove(record)

        assert stats.to_dict() == {
            "totalFiles": 0,
            "totalSize": 0,
            "filesByMimeType": {},
            "filesByDate": {},
        }

    def test_date_bucket_uses_utc(self):
        moment = datetime(2024, 1, 15, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        assert date_bucket(moment) == "2024-01-16"


class TestFilename:

    @pytest.mark.parametrize("name,expected", [
        ("photo.JPG", ".jpg"),
        ("archive.tar.gz", ".gz"),
        (".bashrc", ""),
        ("README", ""),
        ("", ""),
    ])
    def test_get_file_extension(self, name, expected):
        assert get_file_extension(name) == expected

    def test_sanitize_strips_paths_and_unsafe_chars(self):
        assert sanitize_filename("../../etc/pass wd;rm.txt") == "pass_wd_rm.txt"
        assert sanitize_filename("C:\\Users\\me\\file (1).txt") == "file_1_.txt"
        assert sanitize_filename("???") == "file"

    def test_generate_stored_name_truncates_stem(self):
        name = generate_stored_name("id1", "a-very-long-file-name-indeed.txt")
        assert name == "id1_a-very-long-file-nam.txt"
