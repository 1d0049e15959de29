"""
Local Byte Store Implementation

Concrete implementation of IByteStore for local filesystem operations.
Objects live under ``<base>/objects/<key>``, their content type and custom
metadata in a JSON sidecar under ``<base>/meta/<key>.json``. Uploads are
written to ``<base>/tmp`` first and renamed into place, so a partial object
is never reachable by key. Staging files of interrupted saves are removed
by purge_stale().
"""

import io
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, Optional

from tmpfiles.domain.cancellation import CancellationToken, check_cancelled
from tmpfiles.domain.errors import (
    BackendError,
    ObjectNotFoundError,
    PayloadTooLargeError,
    ValidationError,
)
from tmpfiles.domain.file_storage.storage_repository import IByteStore
from tmpfiles.domain.file_storage.value_objects import ByteRange, ObjectMeta, ReconcileResult

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class _RangeReader(io.RawIOBase):
    """Reads at most ``length`` bytes from an already positioned file."""

    def __init__(self, handle: BinaryIO, length: int):
        super().__init__()
        self._handle = handle
        self._remaining = length

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self._remaining <= 0:
            return 0
        chunk = self._handle.read(min(len(buffer), self._remaining))
        count = len(chunk)
        buffer[:count] = chunk
        self._remaining -= count
        return count

    def close(self) -> None:
        self._handle.close()
        super().close()


class LocalByteStore(IByteStore):
    """
    Local filesystem implementation of IByteStore.

    Thread Safety:
        Distinct keys never share a temp file, and the final rename is
        atomic on POSIX filesystems, so concurrent saves are safe.

    Attributes:
        base_path: Root directory of the store
    """

    def __init__(self, base_path: str = "/tmp/tmpfiles"):
        """
        Initialize the local byte store.

        Args:
            base_path: Base directory for object storage
        """
        self.base_path = Path(base_path)
        self.objects_path = self.base_path / "objects"
        self.meta_path = self.base_path / "meta"
        self.tmp_path = self.base_path / "tmp"
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        """
        Ensure the storage directories exist.

        Raises:
            BackendError: If a directory cannot be created
        """
        for directory in (self.objects_path, self.meta_path, self.tmp_path):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise BackendError(
                    f"Failed to create storage directory: {directory}", e
                ) from e

    def _object_path(self, key: str) -> Path:
        if not key or not key.strip():
            raise ValidationError("key cannot be empty")
        parts = key.split("/")
        if key.startswith("/") or any(p in ("", ".", "..") for p in parts):
            raise ValidationError(f"Invalid storage key: {key!r}")
        return self.objects_path.joinpath(*parts)

    def _sidecar_path(self, key: str) -> Path:
        return self.meta_path.joinpath(*key.split("/")).with_name(
            key.split("/")[-1] + ".json"
        )

    # IByteStore interface methods

    def save(self, stream: BinaryIO, key: str, mime_type: str,
             declared_size: Optional[int] = None,
             meta: Optional[Dict[str, str]] = None,
             cancel: Optional[CancellationToken] = None) -> str:
        """
        Stream content to a temp file, then rename it into place.

        Raises:
            PayloadTooLargeError: If more than ``declared_size`` bytes arrive
            OperationCancelledError: If ``cancel`` fires mid-stream
            BackendError: If there are I/O errors during the operation
        """
        final_path = self._object_path(key)
        sidecar = self._sidecar_path(key)
        tmp_name = None
        sidecar_written = False
        try:
            with tempfile.NamedTemporaryFile(
                dir=self.tmp_path, prefix="upload-", delete=False
            ) as handle:
                tmp_name = handle.name
                written = 0
                while True:
                    check_cancelled(cancel)
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if declared_size is not None and written > declared_size:
                        raise PayloadTooLargeError(
                            f"Payload exceeds declared size of {declared_size} bytes"
                        )
                    handle.write(chunk)
                handle.flush()
                os.fsync(handle.fileno())

            check_cancelled(cancel)
            sidecar.parent.mkdir(parents=True, exist_ok=True)
            self._write_json_atomic(
                sidecar, {"mimeType": mime_type, "metadata": dict(meta or {})}
            )
            sidecar_written = True

            final_path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(tmp_name, final_path)
            tmp_name = None
            return key

        except OSError as e:
            raise BackendError(f"Failed to save object {key}: {e}", e) from e
        finally:
            if tmp_name is not None:
                self._remove_quietly(Path(tmp_name))
                if sidecar_written:
                    self._remove_quietly(sidecar)

    def read(self, key: str, cancel: Optional[CancellationToken] = None) -> bytes:
        check_cancelled(cancel)
        path = self._object_path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise ObjectNotFoundError(f"Object not found: {key}", e) from e
        except OSError as e:
            raise BackendError(f"Failed to read object {key}: {e}", e) from e

    def open_range_stream(self, key: str, byte_range: Optional[ByteRange] = None,
                          cancel: Optional[CancellationToken] = None) -> BinaryIO:
        check_cancelled(cancel)
        path = self._object_path(key)
        try:
            handle = open(path, "rb")
        except FileNotFoundError as e:
            raise ObjectNotFoundError(f"Object not found: {key}", e) from e
        except OSError as e:
            raise BackendError(f"Failed to open object {key}: {e}", e) from e

        if byte_range is None:
            return handle
        try:
            handle.seek(byte_range.offset)
        except OSError as e:
            handle.close()
            raise BackendError(f"Failed to seek object {key}: {e}", e) from e
        if byte_range.length is None:
            return handle
        return io.BufferedReader(_RangeReader(handle, byte_range.length))

    def get_meta(self, key: str, cancel: Optional[CancellationToken] = None) -> ObjectMeta:
        check_cancelled(cancel)
        path = self._object_path(key)
        try:
            stat = path.stat()
        except FileNotFoundError as e:
            raise ObjectNotFoundError(f"Object not found: {key}", e) from e
        except OSError as e:
            raise BackendError(f"Failed to stat object {key}: {e}", e) from e

        sidecar = {}
        try:
            with open(self._sidecar_path(key), "r", encoding="utf-8") as f:
                sidecar = json.load(f)
        except (OSError, ValueError):
            logger.debug(f"No readable metadata sidecar for {key}")

        return ObjectMeta(
            key=key,
            size=stat.st_size,
            mime_type=sidecar.get("mimeType"),
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            metadata=dict(sidecar.get("metadata") or {}),
        )

    def delete(self, key: str, cancel: Optional[CancellationToken] = None) -> None:
        """
        Delete an object and its sidecar.

        This operation is idempotent - deleting a missing key succeeds.
        """
        check_cancelled(cancel)
        path = self._object_path(key)
        try:
            path.unlink(missing_ok=True)
            self._sidecar_path(key).unlink(missing_ok=True)
        except OSError as e:
            raise BackendError(f"Failed to delete object {key}: {e}", e) from e

    def list_keys(self, prefix: Optional[str] = None,
                  cancel: Optional[CancellationToken] = None) -> Iterator[str]:
        """
        Walk the objects directory lazily, one directory at a time.
        """
        try:
            for root, dirs, files in os.walk(self.objects_path):
                check_cancelled(cancel)
                dirs.sort()
                relative_root = Path(root).relative_to(self.objects_path)
                for name in sorted(files):
                    key = (relative_root / name).as_posix()
                    if prefix and not key.startswith(prefix):
                        continue
                    yield key
        except OSError as e:
            raise BackendError(f"Failed to list objects: {e}", e) from e

    def exists(self, key: str, cancel: Optional[CancellationToken] = None) -> bool:
        try:
            return self._object_path(key).is_file()
        except (OSError, ValidationError):
            return False

    def purge_stale(self, older_than: datetime,
                    cancel: Optional[CancellationToken] = None) -> ReconcileResult:
        """
        Remove staging files of killed saves and sidecars whose object is gone.

        A worker killed mid-save leaves ``tmp/upload-*`` behind, and one
        killed between the object and sidecar unlinks leaves ``meta/*.json``.
        Neither is under ``objects/``, so list_keys() never reports them.
        """
        cutoff = older_than.timestamp()
        deleted = failed = freed = 0
        for path in self._stale_candidates(cancel):
            try:
                stat = path.stat()
                if stat.st_mtime >= cutoff:
                    continue
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Failed to remove stale file {path}: {e}")
                failed += 1
                continue
            deleted += 1
            freed += stat.st_size
            logger.debug(f"Removed stale file {path}")

        if deleted or failed:
            logger.info(f"Purged stale files - deleted: {deleted}, failed: {failed}, freed: {freed} bytes")
        return ReconcileResult(deleted_count=deleted, failed_count=failed, freed_bytes=freed)

    def _stale_candidates(self, cancel: Optional[CancellationToken]) -> Iterator[Path]:
        try:
            for name in sorted(os.listdir(self.tmp_path)):
                check_cancelled(cancel)
                yield self.tmp_path / name

            for root, dirs, files in os.walk(self.meta_path):
                check_cancelled(cancel)
                dirs.sort()
                for name in sorted(files):
                    path = Path(root) / name
                    if name.startswith(".meta-"):
                        # Interrupted sidecar write
                        yield path
                    elif name.endswith(".json") and not self._has_object(path):
                        yield path
        except OSError as e:
            raise BackendError(f"Failed to list stale files: {e}", e) from e

    def _has_object(self, sidecar: Path) -> bool:
        key = sidecar.relative_to(self.meta_path).as_posix()[:-len(".json")]
        try:
            return self._object_path(key).exists()
        except ValidationError:
            return False

    def health_check(self) -> bool:
        try:
            return self.objects_path.is_dir() and os.access(self.objects_path, os.W_OK)
        except OSError:
            return False

    # Helpers

    @staticmethod
    def _write_json_atomic(path: Path, data: dict) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".meta-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_name, path)
        except BaseException:
            LocalByteStore._remove_quietly(Path(tmp_name))
            raise

    @staticmethod
    def _remove_quietly(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove temporary file {path}: {e}")
