"""
S3 Byte Store Implementation

Concrete implementation of IByteStore for S3-compatible object stores
(AWS S3, MinIO, Garage, Cloudflare R2). Uses boto3's managed transfer so
large uploads are streamed as multipart parts and aborted on failure,
which leaves no partial object behind.
"""

import io
import logging
from datetime import datetime
from typing import BinaryIO, Dict, Iterator, Optional

from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError

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

# S3 minimum multipart chunk size (5 MiB); parts are buffered one at a time
MULTIPART_CHUNK_SIZE = 8 * 1024 * 1024

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class _LimitedReader(io.RawIOBase):
    """Enforces a byte limit and cancellation while boto3 pulls the stream."""

    def __init__(self, source: BinaryIO, limit: Optional[int],
                 cancel: Optional[CancellationToken]):
        super().__init__()
        self._source = source
        self._limit = limit
        self._cancel = cancel
        self._read = 0

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        check_cancelled(self._cancel)
        chunk = self._source.read(len(buffer))
        if not chunk:
            return 0
        count = len(chunk)
        self._read += count
        if self._limit is not None and self._read > self._limit:
            raise PayloadTooLargeError(
                f"Payload exceeds declared size of {self._limit} bytes"
            )
        buffer[:count] = chunk
        return count


class S3ByteStore(IByteStore):
    """
    S3-compatible implementation of IByteStore.

    Thread Safety:
        boto3 low-level clients are thread-safe; one client is shared.

    Attributes:
        client: boto3 S3 client
        bucket: Bucket holding the objects
    """

    def __init__(self, client, bucket: str,
                 transfer_config: Optional[TransferConfig] = None):
        """
        Initialize the S3 byte store.

        Args:
            client: boto3 S3 client
            bucket: Bucket name
            transfer_config: Optional managed-transfer tuning

        Raises:
            ValueError: If bucket is empty
        """
        if not bucket or not bucket.strip():
            raise ValueError("bucket cannot be empty")
        self.client = client
        self.bucket = bucket
        self.transfer_config = transfer_config or TransferConfig(
            multipart_threshold=MULTIPART_CHUNK_SIZE,
            multipart_chunksize=MULTIPART_CHUNK_SIZE,
            max_concurrency=4,
        )

    def save(self, stream: BinaryIO, key: str, mime_type: str,
             declared_size: Optional[int] = None,
             meta: Optional[Dict[str, str]] = None,
             cancel: Optional[CancellationToken] = None) -> str:
        """
        Stream content to S3 with a managed (multipart) upload.

        Raises:
            PayloadTooLargeError: If more than ``declared_size`` bytes arrive
            OperationCancelledError: If ``cancel`` fires mid-stream
            BackendError: If the upload fails
        """
        if not key or not key.strip():
            raise ValidationError("key cannot be empty")
        check_cancelled(cancel)

        extra_args = {"ContentType": mime_type or "application/octet-stream"}
        if meta:
            extra_args["Metadata"] = {str(k): str(v) for k, v in meta.items()}

        body = io.BufferedReader(_LimitedReader(stream, declared_size, cancel))
        try:
            self.client.upload_fileobj(
                body, self.bucket, key,
                ExtraArgs=extra_args,
                Config=self.transfer_config,
            )
            return key
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            raise BackendError(f"S3 upload failed for {key}: {e}", e) from e

    def read(self, key: str, cancel: Optional[CancellationToken] = None) -> bytes:
        body = self.open_range_stream(key, cancel=cancel)
        try:
            chunks = []
            for chunk in body.iter_chunks():
                check_cancelled(cancel)
                chunks.append(chunk)
            return b"".join(chunks)
        except (ClientError, BotoCoreError) as e:
            raise BackendError(f"S3 read failed for {key}: {e}", e) from e
        finally:
            body.close()

    def open_range_stream(self, key: str, byte_range: Optional[ByteRange] = None,
                          cancel: Optional[CancellationToken] = None) -> BinaryIO:
        check_cancelled(cancel)
        params = {"Bucket": self.bucket, "Key": key}
        if byte_range is not None:
            params["Range"] = byte_range.to_http_header()
        try:
            response = self.client.get_object(**params)
        except ClientError as e:
            code = _error_code(e)
            if code in _NOT_FOUND_CODES:
                raise ObjectNotFoundError(f"Object not found: {key}", e) from e
            if code == "InvalidRange":
                raise ValidationError(f"Invalid range for {key}: {byte_range}", e) from e
            raise BackendError(f"S3 get failed for {key}: {e}", e) from e
        except BotoCoreError as e:
            raise BackendError(f"S3 get failed for {key}: {e}", e) from e
        return response["Body"]

    def get_meta(self, key: str, cancel: Optional[CancellationToken] = None) -> ObjectMeta:
        check_cancelled(cancel)
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise ObjectNotFoundError(f"Object not found: {key}", e) from e
            raise BackendError(f"S3 head failed for {key}: {e}", e) from e
        except BotoCoreError as e:
            raise BackendError(f"S3 head failed for {key}: {e}", e) from e

        return ObjectMeta(
            key=key,
            size=int(response.get("ContentLength", 0)),
            mime_type=response.get("ContentType"),
            last_modified=response.get("LastModified"),
            metadata=dict(response.get("Metadata") or {}),
        )

    def delete(self, key: str, cancel: Optional[CancellationToken] = None) -> None:
        """
        Delete an object. S3 treats deleting a missing key as success.
        """
        check_cancelled(cancel)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return
            raise BackendError(f"S3 delete failed for {key}: {e}", e) from e
        except BotoCoreError as e:
            raise BackendError(f"S3 delete failed for {key}: {e}", e) from e

    def list_keys(self, prefix: Optional[str] = None,
                  cancel: Optional[CancellationToken] = None) -> Iterator[str]:
        """
        Page through ``list_objects_v2``; one page is held at a time.
        """
        paginator = self.client.get_paginator("list_objects_v2")
        params = {"Bucket": self.bucket}
        if prefix:
            params["Prefix"] = prefix
        try:
            for page in paginator.paginate(**params):
                check_cancelled(cancel)
                for obj in page.get("Contents", []):
                    yield obj["Key"]
        except (ClientError, BotoCoreError) as e:
            raise BackendError(f"S3 list failed: {e}", e) from e

    def exists(self, key: str, cancel: Optional[CancellationToken] = None) -> bool:
        try:
            self.get_meta(key, cancel=cancel)
            return True
        except ObjectNotFoundError:
            return False

    def purge_stale(self, older_than: datetime,
                    cancel: Optional[CancellationToken] = None) -> ReconcileResult:
        """
        Abort multipart uploads a killed worker never completed or aborted.

        Their parts are billed but invisible to list_objects_v2. Part sizes
        are not listed, so no freed bytes are reported.
        """
        deleted = failed = 0
        paginator = self.client.get_paginator("list_multipart_uploads")
        try:
            for page in paginator.paginate(Bucket=self.bucket):
                check_cancelled(cancel)
                for upload in page.get("Uploads", []):
                    if upload["Initiated"] >= older_than:
                        continue
                    try:
                        self.client.abort_multipart_upload(
                            Bucket=self.bucket, Key=upload["Key"], UploadId=upload["UploadId"]
                        )
                        deleted += 1
                    except ClientError as e:
                        if _error_code(e) == "NoSuchUpload":
                            continue
                        logger.warning(f"Failed to abort multipart upload of {upload['Key']}: {e}")
                        failed += 1
        except (ClientError, BotoCoreError) as e:
            raise BackendError(f"S3 multipart upload listing failed: {e}", e) from e

        if deleted or failed:
            logger.info(f"Aborted stale multipart uploads - aborted: {deleted}, failed: {failed}")
        return ReconcileResult(deleted_count=deleted, failed_count=failed)

    def health_check(self) -> bool:
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"S3 health check failed for bucket {self.bucket}: {e}")
            return False
