"""
Content Hashing

Incremental SHA-256 digests used both as the deduplication key and for
integrity verification of stored bytes.
"""

import hashlib
import io
import re
from typing import BinaryIO, Iterable, Optional

from tmpfiles.domain.cancellation import CancellationToken, check_cancelled
from tmpfiles.domain.errors import PayloadTooLargeError

CHUNK_SIZE = 64 * 1024

_HEX_SHA256 = re.compile(r"^[a-f0-9]{64}$", re.IGNORECASE)


class ContentHasher:
    """
    Incremental SHA-256 hasher.

    The digest depends only on the bytes fed in, never on how they were
    split into chunks.
    """

    def __init__(self):
        self._digest = hashlib.sha256()
        self.size = 0

    def update(self, chunk: bytes) -> None:
        self._digest.update(chunk)
        self.size += len(chunk)

    def hexdigest(self) -> str:
        return self._digest.hexdigest()

    @classmethod
    def hash_bytes(cls, data: bytes) -> str:
        hasher = cls()
        hasher.update(data)
        return hasher.hexdigest()

    @classmethod
    def hash_chunks(cls, chunks: Iterable[bytes]) -> str:
        hasher = cls()
        for chunk in chunks:
            hasher.update(chunk)
        return hasher.hexdigest()

    @classmethod
    def hash_stream(cls, stream: BinaryIO, chunk_size: int = CHUNK_SIZE,
                    cancel: Optional[CancellationToken] = None) -> str:
        """
        Hash a readable binary stream to exhaustion.

        Args:
            stream: Binary file-like object
            chunk_size: Read size per iteration
            cancel: Optional cancellation token checked between chunks

        Returns:
            Hex SHA-256 digest
        """
        hasher = cls()
        while True:
            check_cancelled(cancel)
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            hasher.update(chunk)
        return hasher.hexdigest()

    @staticmethod
    def is_valid_hash(value: str) -> bool:
        return isinstance(value, str) and bool(_HEX_SHA256.match(value))

    @classmethod
    def compare(cls, first: str, second: str) -> bool:
        if not cls.is_valid_hash(first) or not cls.is_valid_hash(second):
            return False
        return first.lower() == second.lower()


class HashingReader(io.RawIOBase):
    """
    Read-through wrapper that hashes and counts bytes as they are consumed.

    Byte stores read from this wrapper instead of the raw source, so the
    upload is hashed in the same single pass that writes it. The wrapper
    raises ``PayloadTooLargeError`` as soon as more than ``limit`` bytes have
    been read and checks the cancellation token on every read.
    """

    def __init__(self, source: BinaryIO, limit: Optional[int] = None,
                 cancel: Optional[CancellationToken] = None):
        super().__init__()
        self._source = source
        self._limit = limit
        self._cancel = cancel
        self._hasher = ContentHasher()
        self._pending = bytearray()

    @property
    def bytes_read(self) -> int:
        return self._hasher.size

    def hexdigest(self) -> str:
        return self._hasher.hexdigest()

    def readable(self) -> bool:
        return True

    def peek(self, size: int) -> bytes:
        """
        Look at up to ``size`` leading bytes without consuming them.

        The bytes are pulled from the source, hashed and counted now, then
        handed out again by the following reads.
        """
        while len(self._pending) < size:
            chunk = self._pull(size - len(self._pending))
            if not chunk:
                break
            self._pending += chunk
        return bytes(self._pending[:size])

    def readinto(self, buffer) -> int:
        if self._pending:
            count = min(len(buffer), len(self._pending))
            buffer[:count] = self._pending[:count]
            del self._pending[:count]
            return count
        chunk = self._pull(len(buffer))
        count = len(chunk)
        buffer[:count] = chunk
        return count

    def _pull(self, size: int) -> bytes:
        check_cancelled(self._cancel)
        chunk = self._source.read(size)
        if not chunk:
            return b""
        if self._limit is not None and self._hasher.size + len(chunk) > self._limit:
            raise PayloadTooLargeError(
                f"Payload exceeds maximum allowed size of {self._limit} bytes"
            )
        self._hasher.update(chunk)
        return chunk
