"""
Unit tests for ContentHasher and HashingReader.
"""

import hashlib
import io

import pytest

from tmpfiles.domain.cancellation import CancellationToken
from tmpfiles.domain.errors import OperationCancelledError, PayloadTooLargeError
from tmpfiles.domain.file_storage.hashing import ContentHasher, HashingReader

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


class TestContentHasher:

    def test_empty_input_digest(self):
        assert ContentHasher.hash_bytes(b"") == EMPTY_SHA256

    def test_hash_bytes_matches_hashlib(self):
        data = b"The quick brown fox"
        assert ContentHasher.hash_bytes(data) == hashlib.sha256(data).hexdigest()

    def test_incremental_update_tracks_size(self):
        hasher = ContentHasher()
        hasher.update(b"abc")
        hasher.update(b"defg")

        assert hasher.size == 7
        assert hasher.hexdigest() == hashlib.sha256(b"abcdefg").hexdigest()

    def test_hash_stream_reads_to_exhaustion(self):
        data = b"x" * 200_000
        assert ContentHasher.hash_stream(io.BytesIO(data), chunk_size=4096) == (
            hashlib.sha256(data).hexdigest()
        )

    def test_hash_stream_honours_cancellation(self):
        token = CancellationToken()
        token.cancel("shutdown")

        with pytest.raises(OperationCancelledError):
            ContentHasher.hash_stream(io.BytesIO(b"data"), cancel=token)

    @pytest.mark.parametrize("value,expected", [
        (EMPTY_SHA256, True),
        (EMPTY_SHA256.upper(), True),
        ("abc", False),
        ("g" * 64, False),
        (None, False),
    ])
    def test_is_valid_hash(self, value, expected):
        assert ContentHasher.is_valid_hash(value) is expected

    def test_compare_is_case_insensitive_and_rejects_invalid(self):
        assert ContentHasher.compare(EMPTY_SHA256, EMPTY_SHA256.upper())
        assert not ContentHasher.compare(EMPTY_SHA256, "not-a-hash")


class TestHashingReader:

    def test_hashes_and_counts_while_read(self):
        data = b"0123456789" * 1000
        reader = HashingReader(io.BytesIO(data))

        consumed = b"".join(iter(lambda: reader.read(777), b""))

        assert consumed == data
        assert reader.bytes_read == len(data)
        assert reader.hexdigest() == hashlib.sha256(data).hexdigest()

    def test_limit_exactly_reached_is_accepted(self):
        reader = HashingReader(io.BytesIO(b"12345"), limit=5)
        assert reader.read() == b"12345"

    def test_limit_exceeded_raises(self):
        reader = HashingReader(io.BytesIO(b"123456"), limit=5)

        with pytest.raises(PayloadTooLargeError):
            reader.read()

    def test_cancellation_checked_on_read(self):
        token = CancellationToken()
        reader = HashingReader(io.BytesIO(b"abcdef"), cancel=token)
        assert reader.read(3) == b"abc"

        token.cancel()

        with pytest.raises(OperationCancelledError):
            reader.read(3)

    def test_peeked_bytes_are_read_again(self):
        data = b"\x89PNG\r\n\x1a\n" + b"x" * 100
        reader = HashingReader(io.BytesIO(data))

        assert reader.peek(8) == data[:8]
        assert reader.peek(4) == data[:4]
        assert reader.read() == data
        assert reader.hexdigest() == hashlib.sha256(data).hexdigest()

    def test_peek_past_end_returns_what_exists(self):
        reader = HashingReader(io.BytesIO(b"tiny"))

        assert reader.peek(8192) == b"tiny"
        assert reader.bytes_read == 4
        assert reader.read() == b"tiny"

    def test_peek_enforces_limit(self):
        reader = HashingReader(io.BytesIO(b"123456"), limit=5)

        with pytest.raises(PayloadTooLargeError):
            reader.peek(6)
