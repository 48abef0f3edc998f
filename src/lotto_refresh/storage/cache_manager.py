"""Versioned, hash-checked cache of draw records on top of a key-value store."""
import json
import math
from datetime import datetime
from typing import Callable, List, Optional

import structlog

from lotto_refresh.config.settings import Settings
from lotto_refresh.refresh.models import CacheMetadata, CacheStats, DrawRecord
from lotto_refresh.storage.hashing import hash_records
from lotto_refresh.storage.store import KeyValueStore, StorageQuotaExceededError

logger = structlog.get_logger()

CACHE_VERSION = "2.0"
DATA_KEY = "lottery-data-cache-v2"
METADATA_KEY = "lottery-cache-metadata-v2"
LEGACY_KEYS = ("lottery-data-cache", "lottery-data-timestamp")

# Required headroom relative to the estimated write size
SPACE_BUFFER = 1.2
QUOTA_RETRY_RECORDS = 100

# Field names used when compression is enabled
_SHORT_KEYS = {
    "draw_number": "d",
    "draw_date": "dt",
    "numbers": "n",
    "bonus": "b",
    "jackpot": "j",
}
_LONG_KEYS = {short: long for long, short in _SHORT_KEYS.items()}


def compress_records(records: List[DrawRecord]) -> str:
    """Serialize records with shortened field names."""
    rows = [
        {_SHORT_KEYS[name]: value for name, value in record.model_dump(mode="json").items()}
        for record in records
    ]
    return json.dumps(rows, separators=(",", ":"))


def serialize_records(records: List[DrawRecord]) -> str:
    return json.dumps([record.model_dump(mode="json") for record in records], separators=(",", ":"))


def deserialize_records(blob: str) -> List[DrawRecord]:
    """
    Rebuild records from either the compressed or the plain layout.

    Raises:
        ValueError: If the blob is not a list of valid records
    """
    rows = json.loads(blob)
    if not isinstance(rows, list):
        raise ValueError("Cached data is not a list")

    records = []
    for row in rows:
        if "d" in row:
            row = {_LONG_KEYS[key]: value for key, value in row.items() if key in _LONG_KEYS}
        records.append(DrawRecord.model_validate(row))
    return records


def is_namespace_key(key: str) -> bool:
    """Keys the cache may remove to make room for itself."""
    return key.startswith("lottery-") or key.startswith("cache-") or "old-data" in key


class CacheManager:
    """
    Owns the persisted draw dataset and its in-memory mirror.

    The in-memory list may hold more records than were persisted, for example
    after a quota error forced a reduced save.
    """

    def __init__(
        self,
        store: KeyValueStore,
        settings: Settings,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize the cache manager.

        Args:
            store: Backend holding the data and metadata entries
            settings: Cache limits, timeouts and compression switch
            clock: Source of the current time
        """
        self.store = store
        self.max_cache_size = settings.max_cache_size
        self.cache_timeout_hours = settings.cache_timeout_hours
        self.cache_expiry_hours = settings.cache_expiry_hours
        self.compression_enabled = settings.compression_enabled
        self.memory_optimization = settings.memory_optimization
        self.storage_quota_bytes = settings.storage_quota_bytes
        self._clock = clock

        self._records: List[DrawRecord] = []
        self._metadata: Optional[CacheMetadata] = None
        self.last_update_time: Optional[datetime] = None

    @property
    def metadata(self) -> Optional[CacheMetadata]:
        return self._metadata

    def load(self) -> List[DrawRecord]:
        """
        Load the persisted dataset into memory.

        Stale formats, expired entries and entries failing the hash check are
        cleared. Anything that cannot be decoded leaves the cache empty.

        Returns:
            The loaded records, most recent first
        """
        try:
            raw_metadata = self.store.get(METADATA_KEY)
            if raw_metadata is None:
                logger.info("cache_metadata_missing")
                self._reset()
                return []

            metadata = CacheMetadata.model_validate_json(raw_metadata)

            if metadata.version != CACHE_VERSION:
                logger.info(
                    "cache_version_mismatch",
                    found=metadata.version,
                    expected=CACHE_VERSION
                )
                self.clear()
                return []

            age_hours = self._hours_since(metadata.timestamp)
            if age_hours > self.cache_expiry_hours:
                logger.info("cache_expired", age_hours=round(age_hours, 1))
                self.clear()
                return []

            blob = self.store.get(DATA_KEY)
            if blob is None:
                logger.warning("cache_data_missing")
                self.clear()
                return []

            records = deserialize_records(blob)
            if hash_records(records) != metadata.data_hash:
                logger.warning("cache_integrity_check_failed")
                self.clear()
                return []

        except (ValueError, KeyError, TypeError, OSError) as e:
            logger.warning("cache_load_failed", error=str(e))
            self._discard_unreadable()
            return []

        self._remove_legacy_keys()

        if self.memory_optimization and len(records) > self.max_cache_size:
            logger.info("trimming_loaded_cache", records=len(records), limit=self.max_cache_size)
            records = records[:self.max_cache_size]

        self._records = records
        self._metadata = metadata
        self.last_update_time = metadata.timestamp
        self._touch()

        logger.info("cache_loaded", records=len(records), age_hours=round(age_hours, 1))
        return list(records)

    def save(self, records: List[DrawRecord]) -> bool:
        """
        Replace the dataset with freshly fetched records and persist it.

        Args:
            records: Parsed draws

        Returns:
            True if the records (possibly a reduced subset) were persisted
        """
        if not records:
            logger.info("no_data_to_cache")
            return False

        self._records = sorted(records, key=lambda d: d.draw_number, reverse=True)
        self.last_update_time = self._clock()
        return self._persist(self._records)

    def _persist(self, records: List[DrawRecord], allow_reduced_retry: bool = True) -> bool:
        if len(records) > self.max_cache_size:
            logger.info("limiting_cache_size", records=len(records), limit=self.max_cache_size)
            records = records[:self.max_cache_size]

        data_hash = hash_records(records)
        plain = serialize_records(records)

        compression_ratio = None
        blob = plain
        if self.compression_enabled:
            blob = compress_records(records)
            compression_ratio = len(blob) / len(plain)
            logger.debug(
                "cache_data_compressed",
                original_bytes=len(plain),
                compressed_bytes=len(blob),
                ratio=round(compression_ratio, 3)
            )

        now = self._clock()
        metadata = CacheMetadata(
            version=CACHE_VERSION,
            timestamp=self.last_update_time or now,
            record_count=len(records),
            data_hash=data_hash,
            compression_ratio=compression_ratio,
            last_access_time=now
        )
        metadata_json = metadata.model_dump_json()

        estimated_size = len(blob) + len(metadata_json)
        if not self._has_space(estimated_size):
            logger.warning("insufficient_storage_space", required_bytes=estimated_size)
            self._cleanup_namespace()
            if not self._has_space(estimated_size):
                logger.error("cache_save_skipped_no_space", required_bytes=estimated_size)
                return False

        try:
            self.store.set(DATA_KEY, blob)
            self.store.set(METADATA_KEY, metadata_json)
        except StorageQuotaExceededError as e:
            logger.warning("storage_quota_exceeded", error=str(e))
            self._clear_persisted()
            if allow_reduced_retry and len(records) > QUOTA_RETRY_RECORDS:
                logger.info("retrying_cache_save_reduced", records=QUOTA_RETRY_RECORDS)
                return self._persist(records[:QUOTA_RETRY_RECORDS], allow_reduced_retry=False)
            return False

        self._metadata = metadata
        logger.info(
            "cache_saved",
            records=len(records),
            size_kb=round(estimated_size / 1024, 1)
        )
        return True

    def get_cached_data(self) -> List[DrawRecord]:
        """Copy of the in-memory dataset; records an access."""
        self._touch()
        return list(self._records)

    def get_data_age(self) -> float:
        """Hours since the last successful fetch, ``inf`` if there was none."""
        if self.last_update_time is None:
            return math.inf
        return self._hours_since(self.last_update_time)

    def is_fresh(self) -> bool:
        if not self._records or self.last_update_time is None:
            return False
        return self.get_data_age() < self.cache_timeout_hours

    def clear(self) -> None:
        """Drop the in-memory dataset and every persisted entry, legacy ones included."""
        self._reset()
        self._clear_persisted()
        logger.info("cache_cleared")

    def optimize(self) -> int:
        """
        Deduplicate by draw number, re-sort, trim and persist again.

        Returns:
            Number of records kept
        """
        if not self._records:
            logger.info("no_data_to_optimize")
            return 0

        original_size = len(self._records)
        unique = {}
        for record in self._records:
            unique.setdefault(record.draw_number, record)

        records = sorted(unique.values(), key=lambda d: d.draw_number, reverse=True)
        del records[self.max_cache_size:]

        self._records = records
        self._persist(records)

        logger.info("cache_optimized", before=original_size, after=len(records))
        return len(records)

    def validate_integrity(self) -> bool:
        """Recompute the hash of the persisted portion of the in-memory dataset."""
        if self._metadata is None or not self._records:
            return False

        persisted = self._records[:self._metadata.record_count]
        is_valid = hash_records(persisted) == self._metadata.data_hash
        if not is_valid:
            logger.warning("cache_integrity_check_failed")
        return is_valid

    def get_stats(self) -> CacheStats:
        return CacheStats(
            record_count=len(self._records),
            cache_age_hours=self.get_data_age(),
            last_access=self._metadata.last_access_time if self._metadata else None,
            cache_size_bytes=self._persisted_size(),
            compression_ratio=self._metadata.compression_ratio if self._metadata else None,
            version=CACHE_VERSION,
            is_fresh=self.is_fresh()
        )

    def _hours_since(self, moment: datetime) -> float:
        return (self._clock() - moment).total_seconds() / 3600

    def _reset(self) -> None:
        self._records = []
        self._metadata = None
        self.last_update_time = None

    def _clear_persisted(self) -> None:
        for key in (DATA_KEY, METADATA_KEY) + LEGACY_KEYS:
            self.store.remove(key)

    def _discard_unreadable(self) -> None:
        try:
            self.clear()
        except OSError as e:
            logger.error("cache_clear_failed", error=str(e))
            self._reset()

    def _remove_legacy_keys(self) -> None:
        for key in LEGACY_KEYS:
            self.store.remove(key)

    def _touch(self) -> None:
        if self._metadata is None:
            return
        self._metadata = self._metadata.model_copy(update={"last_access_time": self._clock()})
        try:
            self.store.set(METADATA_KEY, self._metadata.model_dump_json())
        except (StorageQuotaExceededError, OSError) as e:
            logger.warning("cache_access_time_update_failed", error=str(e))

    def _persisted_size(self) -> int:
        total = 0
        for key in (DATA_KEY, METADATA_KEY):
            value = self.store.get(key)
            if value is not None:
                total += len(value)
        return total

    def _has_space(self, required_bytes: int) -> bool:
        # Entries about to be overwritten do not count as used
        used = self.store.size()
        for key in (DATA_KEY, METADATA_KEY):
            value = self.store.get(key)
            if value is not None:
                used -= len(key) + len(value)

        available = self.storage_quota_bytes - used
        logger.debug(
            "storage_space_check",
            used_kb=round(used / 1024, 1),
            available_kb=round(available / 1024, 1),
            required_kb=round(required_bytes / 1024, 1)
        )
        return available >= required_bytes * SPACE_BUFFER

    def _cleanup_namespace(self) -> None:
        removed = [key for key in self.store.keys() if is_namespace_key(key)]
        for key in removed:
            self.store.remove(key)
        logger.info("old_cache_entries_removed", count=len(removed))
