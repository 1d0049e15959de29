"""
Redis Metadata Store Implementation

Concrete Redis-based implementation of IMetadataStore.

Key Schema (``p`` is the key prefix, ``tmp_files:`` by default):
    - {p}file:{id}            -> HASH of record fields (customMetadata as JSON)
    - {p}ids                  -> ZSET of ids scored by expires_at timestamp
    - {p}hash:{content_hash}  -> SET of ids whose content has this hash
    - {p}refs:{storage_key}   -> SET of ids referencing the storage key
    - {p}stats                -> HASH totalFiles, totalSize
    - {p}stats:mime_types     -> HASH mime type -> count
    - {p}stats:dates          -> HASH YYYY-MM-DD -> count

put() is a MULTI/EXEC pipeline; attach() and delete() are Lua scripts so the
reference check, index maintenance and counter updates happen in one step.
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional, Set

import redis
from redis.exceptions import RedisError

from tmpfiles.domain.errors import BackendError
from tmpfiles.domain.file_storage.entities import AggregateStats, FileRecord, utcnow
from tmpfiles.domain.file_storage.repositories import (
    IMetadataStore,
    matches_filter,
    paginate,
    sort_records,
)
from tmpfiles.domain.file_storage.value_objects import SearchFilter, SearchResult

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "tmp_files:"

# Records fetched per pipeline round trip during search
FETCH_BATCH_SIZE = 500

# KEYS: refs, file, ids, hash:{content_hash}, stats, stats:mime_types, stats:dates
# ARGV: id, expires score, size, mime type, date, field/value pairs...
ATTACH_SCRIPT = """
if redis.call('SCARD', KEYS[1]) == 0 then
    return 0
end
local id = ARGV[1]
for i = 6, #ARGV, 2 do
    redis.call('HSET', KEYS[2], ARGV[i], ARGV[i + 1])
end
redis.call('ZADD', KEYS[3], ARGV[2], id)
redis.call('SADD', KEYS[4], id)
redis.call('SADD', KEYS[1], id)
redis.call('HINCRBY', KEYS[5], 'totalFiles', 1)
redis.call('HINCRBY', KEYS[5], 'totalSize', ARGV[3])
redis.call('HINCRBY', KEYS[6], ARGV[4], 1)
redis.call('HINCRBY', KEYS[7], ARGV[5], 1)
return 1
"""

# KEYS: file, ids, stats, stats:mime_types, stats:dates
# ARGV: id, key prefix
DELETE_SCRIPT = """
local flat = redis.call('HGETALL', KEYS[1])
if #flat == 0 then
    return false
end
local data = {}
for i = 1, #flat, 2 do
    data[flat[i]] = flat[i + 1]
end
local id = ARGV[1]

redis.call('DEL', KEYS[1])
redis.call('ZREM', KEYS[2], id)
redis.call('SREM', ARGV[2] .. 'refs:' .. data['storageKey'], id)
redis.call('SREM', ARGV[2] .. 'hash:' .. data['contentHash'], id)

redis.call('HINCRBY', KEYS[3], 'totalFiles', -1)
redis.call('HINCRBY', KEYS[3], 'totalSize', -tonumber(data['size']))
if redis.call('HINCRBY', KEYS[4], data['mimeType'], -1) <= 0 then
    redis.call('HDEL', KEYS[4], data['mimeType'])
end
if redis.call('HINCRBY', KEYS[5], data['uploadDate'], -1) <= 0 then
    redis.call('HDEL', KEYS[5], data['uploadDate'])
end
return flat
"""


def _text(value) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _is_expiry_page(search_filter: SearchFilter) -> bool:
    return search_filter.expired_only and not (
        search_filter.mime_type
        or search_filter.min_size is not None
        or search_filter.max_size is not None
        or search_filter.uploaded_after
        or search_filter.uploaded_before
    )


@contextmanager
def _backend_errors(operation: str):
    try:
        yield
    except RedisError as e:
        raise BackendError(f"Redis {operation} failed: {e}", e) from e


class RedisMetadataStore(IMetadataStore):
    """
    Redis-based implementation of IMetadataStore.

    Records are not given a Redis TTL: expired records must stay visible to
    the lifecycle sweeper so their bytes are reclaimed too.
    """

    def __init__(self, redis_client: redis.Redis, key_prefix: str = DEFAULT_KEY_PREFIX):
        """
        Initialize with Redis client.

        Args:
            redis_client: Redis client instance (redis.Redis)
            key_prefix: Prefix for every key this store touches
        """
        self.redis = redis_client
        self.key_prefix = key_prefix
        self.ids_key = f"{key_prefix}ids"
        self.stats_key = f"{key_prefix}stats"
        self.mime_stats_key = f"{key_prefix}stats:mime_types"
        self.date_stats_key = f"{key_prefix}stats:dates"
        self._attach_script = self.redis.register_script(ATTACH_SCRIPT)
        self._delete_script = self.redis.register_script(DELETE_SCRIPT)

    def _file_key(self, record_id: str) -> str:
        return f"{self.key_prefix}file:{record_id}"

    def _refs_key(self, storage_key: str) -> str:
        return f"{self.key_prefix}refs:{storage_key}"

    def _hash_key(self, content_hash: str) -> str:
        return f"{self.key_prefix}hash:{content_hash}"

    @staticmethod
    def _to_hash(record: FileRecord) -> Dict[str, str]:
        data = record.to_dict()
        fields = {k: str(v) for k, v in data.items() if k != "customMetadata"}
        fields["customMetadata"] = json.dumps(data["customMetadata"])
        fields["uploadDate"] = record.upload_date
        return fields

    @staticmethod
    def _from_hash(raw: dict) -> FileRecord:
        data = {_text(k): _text(v) for k, v in raw.items()}
        data["customMetadata"] = json.loads(data.get("customMetadata") or "{}")
        return FileRecord.from_dict(data)

    def init(self) -> None:
        with _backend_errors("ping"):
            self.redis.ping()

    def put(self, record: FileRecord) -> None:
        """
        Save a record and its index entries in one MULTI/EXEC transaction.

        Raises:
            BackendError: If Redis rejects the transaction
        """
        with _backend_errors(f"put {record.id}"):
            pipeline = self.redis.pipeline(transaction=True)
            pipeline.hset(self._file_key(record.id), mapping=self._to_hash(record))
            pipeline.zadd(self.ids_key, {record.id: record.expires_at.timestamp()})
            pipeline.sadd(self._hash_key(record.content_hash), record.id)
            pipeline.sadd(self._refs_key(record.storage_key), record.id)
            pipeline.hincrby(self.stats_key, "totalFiles", 1)
            pipeline.hincrby(self.stats_key, "totalSize", record.size)
            pipeline.hincrby(self.mime_stats_key, record.mime_type, 1)
            pipeline.hincrby(self.date_stats_key, record.upload_date, 1)
            pipeline.execute()

    def attach(self, record: FileRecord) -> bool:
        fields: List[str] = []
        for name, value in self._to_hash(record).items():
            fields.extend((name, value))
        with _backend_errors(f"attach {record.id}"):
            result = self._attach_script(
                keys=[
                    self._refs_key(record.storage_key),
                    self._file_key(record.id),
                    self.ids_key,
                    self._hash_key(record.content_hash),
                    self.stats_key,
                    self.mime_stats_key,
                    self.date_stats_key,
                ],
                args=[
                    record.id,
                    record.expires_at.timestamp(),
                    record.size,
                    record.mime_type,
                    record.upload_date,
                    *fields,
                ],
            )
        return int(result) == 1

    def get(self, record_id: str) -> Optional[FileRecord]:
        with _backend_errors(f"get {record_id}"):
            raw = self.redis.hgetall(self._file_key(record_id))
        if not raw:
            return None
        return self._from_hash(raw)

    def delete(self, record_id: str) -> Optional[FileRecord]:
        with _backend_errors(f"delete {record_id}"):
            flat = self._delete_script(
                keys=[
                    self._file_key(record_id),
                    self.ids_key,
                    self.stats_key,
                    self.mime_stats_key,
                    self.date_stats_key,
                ],
                args=[record_id, self.key_prefix],
            )
        if not flat:
            return None
        return self._from_hash(dict(zip(flat[::2], flat[1::2])))

    def find_by_hash(self, content_hash: str,
                     mime_type: Optional[str] = None) -> Optional[FileRecord]:
        with _backend_errors("hash lookup"):
            ids = sorted(_text(i) for i in self.redis.smembers(self._hash_key(content_hash)))
            if ids and mime_type is not None:
                pipeline = self.redis.pipeline(transaction=False)
                for record_id in ids:
                    pipeline.hget(self._file_key(record_id), "mimeType")
                mime_types = pipeline.execute()
                ids = [i for i, m in zip(ids, mime_types) if m is not None and _text(m) == mime_type]
        for record_id in ids:
            record = self.get(record_id)
            # Deleted between the index read and the fetch
            if record is not None:
                return record
        return None

    def references(self, storage_key: str) -> int:
        with _backend_errors(f"reference count {storage_key}"):
            return int(self.redis.scard(self._refs_key(storage_key)))

    def referenced_keys(self, storage_keys: Iterable[str]) -> Set[str]:
        keys = list(storage_keys)
        if not keys:
            return set()
        with _backend_errors("reference lookup"):
            pipeline = self.redis.pipeline(transaction=False)
            for key in keys:
                pipeline.scard(self._refs_key(key))
            counts = pipeline.execute()
        return {key for key, count in zip(keys, counts) if int(count) > 0}

    def search(self, search_filter: SearchFilter,
               now: Optional[datetime] = None) -> SearchResult:
        """
        Search records using the expiry index to pick the candidate side.

        An expired-only search without other criteria is paged directly on
        the index: members of equal score sort by id, which is the required
        (expires_at, id) order. Any other search loads the candidate side,
        where the score range is inclusive at ``now`` and the strict expiry
        test in matches_filter decides the boundary.
        """
        now = now or utcnow()
        score = now.timestamp()
        if _is_expiry_page(search_filter):
            return self._search_expired_page(search_filter, score)

        with _backend_errors("search"):
            if search_filter.expired_only:
                ids = self.redis.zrangebyscore(self.ids_key, "-inf", score)
            else:
                ids = self.redis.zrangebyscore(self.ids_key, score, "+inf")
            records = self._fetch([_text(i) for i in ids])

        matched = [r for r in records if matches_filter(r, search_filter, now)]
        ordered = sort_records(matched, search_filter.expired_only)
        return SearchResult(
            records=paginate(ordered, search_filter),
            total=len(ordered),
            filter=search_filter,
        )

    def _search_expired_page(self, search_filter: SearchFilter, score: float) -> SearchResult:
        upper = f"({score}"
        start = max(search_filter.offset or 0, 0)
        # A negative count returns everything after the offset
        count = -1 if search_filter.limit is None else search_filter.limit
        with _backend_errors("search"):
            total = self.redis.zcount(self.ids_key, "-inf", upper)
            ids = self.redis.zrangebyscore(self.ids_key, "-inf", upper, start=start, num=count)
            records = self._fetch([_text(i) for i in ids])
        return SearchResult(records=records, total=int(total), filter=search_filter)

    def _fetch(self, ids: List[str]) -> List[FileRecord]:
        records = []
        for start in range(0, len(ids), FETCH_BATCH_SIZE):
            pipeline = self.redis.pipeline(transaction=False)
            for record_id in ids[start:start + FETCH_BATCH_SIZE]:
                pipeline.hgetall(self._file_key(record_id))
            for raw in pipeline.execute():
                # Deleted between the index read and the fetch
                if raw:
                    records.append(self._from_hash(raw))
        return records

    def stats(self) -> AggregateStats:
        with _backend_errors("stats"):
            pipeline = self.redis.pipeline(transaction=True)
            pipeline.hgetall(self.stats_key)
            pipeline.hgetall(self.mime_stats_key)
            pipeline.hgetall(self.date_stats_key)
            totals, mime_types, dates = pipeline.execute()

        totals = {_text(k): int(v) for k, v in totals.items()}
        return AggregateStats(
            total_files=totals.get("totalFiles", 0),
            total_size=totals.get("totalSize", 0),
            files_by_mime_type={_text(k): int(v) for k, v in mime_types.items() if int(v) > 0},
            files_by_date={_text(k): int(v) for k, v in dates.items() if int(v) > 0},
        )

    def all_ids(self) -> Iterator[str]:
        with _backend_errors("id scan"):
            for member, _score in self.redis.zscan_iter(self.ids_key):
                yield _text(member)

    def health_check(self) -> bool:
        try:
            return bool(self.redis.ping())
        except RedisError as e:
            logger.warning(f"Redis health check failed: {e}")
            return False
