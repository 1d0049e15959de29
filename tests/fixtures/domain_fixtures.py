"""
Domain Fixtures

Factory functions for file records and a controllable clock.
"""

import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from tmpfiles.domain.file_storage.entities import FileRecord

BASE_TIME = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class ManualClock:
    """Clock returning a fixed time until advanced."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


def create_file_record(
    content: bytes = b"hello world",
    mime_type: str = "text/plain",
    ttl_seconds: int = 3600,
    uploaded_at: Optional[datetime] = None,
    storage_key: Optional[str] = None,
    record_id: Optional[str] = None,
    original_name: str = "hello.txt",
    custom_metadata: Optional[Dict[str, str]] = None,
) -> FileRecord:
    """Create a FileRecord whose hash and size match ``content``."""
    return FileRecord.create(
        original_name=original_name,
        mime_type=mime_type,
        size=len(content),
        content_hash=hashlib.sha256(content).hexdigest(),
        storage_key=storage_key or str(uuid.uuid4()),
        ttl_seconds=ttl_seconds,
        custom_metadata=custom_metadata,
        now=uploaded_at or BASE_TIME,
        record_id=record_id,
    )
