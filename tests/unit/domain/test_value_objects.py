"""
Unit tests for value objects, the error hierarchy and cancellation.
"""

from datetime import datetime, timezone

import pytest

from tmpfiles.domain.cancellation import CancellationToken, check_cancelled
from tmpfiles.domain.errors import (
    BackendError,
    DomainError,
    ErrorCategory,
    FileExpiredError,
    NotFoundError,
    ObjectNotFoundError,
    OperationCancelledError,
    PayloadTooLargeError,
    ReconciliationFailure,
    ValidationError,
)
from tmpfiles.domain.file_storage.value_objects import ByteRange, StorageHealth


class TestByteRange:

    def test_open_range_header(self):
        assert ByteRange(offset=10).to_http_header() == "bytes=10-"
        assert ByteRange(offset=10).end is None

    def test_bounded_range_header_is_inclusive(self):
        byte_range = ByteRange(offset=100, length=50)

        assert byte_range.end == 149
        assert byte_range.to_http_header() == "bytes=100-149"

    @pytest.mark.parametrize("offset,length", [(-1, None), (0, 0), (5, -3)])
    def test_invalid_ranges_rejected(self, offset, length):
        with pytest.raises(ValidationError):
            ByteRange(offset=offset, length=length)


class TestErrors:

    def test_hierarchy(self):
        assert issubclass(PayloadTooLargeError, ValidationError)
        assert issubclass(FileExpiredError, NotFoundError)
        assert issubclass(ObjectNotFoundError, NotFoundError)
        for error_class in (ValidationError, NotFoundError, BackendError,
                            ReconciliationFailure, OperationCancelledError):
            assert issubclass(error_class, DomainError)

    def test_to_dict_carries_category_and_detail(self):
        error = PayloadTooLargeError("2048 > 1024")

        data = error.to_dict()

        assert data["error"] == ErrorCategory.FILE_TOO_LARGE.value
        assert data["title"] == "File Too Large"
        assert data["detail"] == "2048 > 1024"

    def test_original_error_is_kept(self):
        cause = OSError("disk full")
        error = BackendError("write failed", cause)

        assert error.original_error is cause

    def test_reconciliation_failure_names_key(self):
        failure = ReconciliationFailure("abc", OSError("busy"))

        assert failure.key == "abc"
        assert "abc" in str(failure)
        assert failure.category == ErrorCategory.RECONCILIATION_FAILED


class TestCancellationToken:

    def test_not_cancelled_by_default(self):
        token = CancellationToken()

        assert not token.cancelled
        token.raise_if_cancelled()
        check_cancelled(None)

    def test_cancel_records_reason(self):
        token = CancellationToken()
        token.cancel("worker shutdown")

        assert token.cancelled
        with pytest.raises(OperationCancelledError, match="worker shutdown"):
            check_cancelled(token)


def test_storage_health_to_dict():
    checked = datetime(2024, 1, 15, tzinfo=timezone.utc)
    health = StorageHealth(
        is_available=False,
        byte_store_healthy=True,
        metadata_store_healthy=False,
        file_count=3,
        used_space=42,
        last_checked=checked,
    )

    assert health.to_dict() == {
        "isAvailable": False,
        "byteStore": True,
        "metadataStore": False,
        "fileCount": 3,
        "usedSpace": 42,
        "lastChecked": checked.isoformat(),
    }
