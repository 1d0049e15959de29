"""
In-memory S3 client double.

Implements the subset of the boto3 S3 client used by S3ByteStore, raising
real botocore ClientError responses for missing keys and buckets.
"""

import io
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from botocore.exceptions import ClientError
from botocore.response import StreamingBody


def client_error(code: str, operation: str, status: int = 404) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class _Paginator:
    def __init__(self, client: "FakeS3Client", page_size: int):
        self._client = client
        self._page_size = page_size

    def paginate(self, Bucket: str, Prefix: str = ""):
        self._client._check_bucket(Bucket, "ListObjectsV2")
        keys = sorted(k for k in self._client.objects if k.startswith(Prefix))
        for start in range(0, max(len(keys), 1), self._page_size):
            page = keys[start:start + self._page_size]
            contents = [{"Key": k, "Size": len(self._client.objects[k]["Body"])} for k in page]
            yield {"Contents": contents} if contents else {"KeyCount": 0}


class _MultipartPaginator:
    def __init__(self, client: "FakeS3Client"):
        self._client = client

    def paginate(self, Bucket: str):
        self._client._check_bucket(Bucket, "ListMultipartUploads")
        with self._client._lock:
            uploads = list(self._client.multipart_uploads)
        if not uploads:
            yield {}
        for upload in uploads:
            yield {"Uploads": [dict(upload)]}


class FakeS3Client:
    """Thread-safe in-memory stand-in for ``boto3.client("s3")``."""

    def __init__(self, bucket: str = "test-bucket", page_size: int = 2):
        self.bucket = bucket
        self.page_size = page_size
        self.objects: Dict[str, dict] = {}
        self.calls: List[str] = []
        self.fail_deletes_for: set = set()
        self.multipart_uploads: List[dict] = []
        self._lock = threading.Lock()

    def _check_bucket(self, bucket: str, operation: str) -> None:
        if bucket != self.bucket:
            raise client_error("NoSuchBucket", operation)

    def _get(self, bucket: str, key: str, operation: str) -> dict:
        self._check_bucket(bucket, operation)
        with self._lock:
            obj = self.objects.get(key)
        if obj is None:
            code = "404" if operation == "HeadObject" else "NoSuchKey"
            raise client_error(code, operation)
        return obj

    def upload_fileobj(self, Fileobj, Bucket: str, Key: str,
                       ExtraArgs: Optional[dict] = None, Config=None):
        self.calls.append("upload_fileobj")
        self._check_bucket(Bucket, "PutObject")
        chunks = []
        while True:
            chunk = Fileobj.read(8192)
            if not chunk:
                break
            chunks.append(chunk)
        extra = ExtraArgs or {}
        with self._lock:
            self.objects[Key] = {
                "Body": b"".join(chunks),
                "ContentType": extra.get("ContentType", "binary/octet-stream"),
                "Metadata": dict(extra.get("Metadata", {})),
                "LastModified": datetime.now(timezone.utc),
            }

    def get_object(self, Bucket: str, Key: str, Range: Optional[str] = None):
        self.calls.append("get_object")
        obj = self._get(Bucket, Key, "GetObject")
        body = obj["Body"]
        if Range:
            start, _, end = Range[len("bytes="):].partition("-")
            start = int(start)
            if start >= len(body):
                raise client_error("InvalidRange", "GetObject", 416)
            stop = len(body) if end == "" else min(int(end) + 1, len(body))
            body = body[start:stop]
        return {
            "Body": StreamingBody(io.BytesIO(body), len(body)),
            "ContentLength": len(body),
            "ContentType": obj["ContentType"],
        }

    def head_object(self, Bucket: str, Key: str):
        self.calls.append("head_object")
        obj = self._get(Bucket, Key, "HeadObject")
        return {
            "ContentLength": len(obj["Body"]),
            "ContentType": obj["ContentType"],
            "LastModified": obj["LastModified"],
            "Metadata": dict(obj["Metadata"]),
        }

    def delete_object(self, Bucket: str, Key: str):
        self.calls.append("delete_object")
        self._check_bucket(Bucket, "DeleteObject")
        if Key in self.fail_deletes_for:
            raise client_error("InternalError", "DeleteObject", 500)
        with self._lock:
            self.objects.pop(Key, None)
        return {}

    def get_paginator(self, operation_name: str):
        if operation_name == "list_multipart_uploads":
            return _MultipartPaginator(self)
        assert operation_name == "list_objects_v2"
        return _Paginator(self, self.page_size)

    def start_multipart_upload(self, key: str, initiated: datetime) -> str:
        """Record an unfinished multipart upload, as a killed worker leaves one."""
        upload_id = f"upload-{len(self.multipart_uploads)}"
        with self._lock:
            self.multipart_uploads.append({"Key": key, "UploadId": upload_id, "Initiated": initiated})
        return upload_id

    def abort_multipart_upload(self, Bucket: str, Key: str, UploadId: str):
        self.calls.append("abort_multipart_upload")
        self._check_bucket(Bucket, "AbortMultipartUpload")
        with self._lock:
            remaining = [u for u in self.multipart_uploads if u["UploadId"] != UploadId]
            if len(remaining) == len(self.multipart_uploads):
                raise client_error("NoSuchUpload", "AbortMultipartUpload")
            self.multipart_uploads = remaining
        return {}

    def head_bucket(self, Bucket: str):
        self._check_bucket(Bucket, "HeadBucket")
        return {}
