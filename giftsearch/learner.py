"""Cross-session query popularity and success statistics."""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Optional

from .backends import KeyValueStore
from .normalization import normalize_query

logger = logging.getLogger(__name__)

SUCCESS_WEIGHT = 0.2
RETENTION_SECONDS = 30 * 24 * 60 * 60
POPULAR_WINDOW_SECONDS = 7 * 24 * 60 * 60
# A query judged unlikely to succeed is retried upstream after this long.
RETRY_AFTER_SECONDS = 24 * 60 * 60
DEFAULT_FLUSH_SECONDS = 30.0
KEY_PREFIX = "giftsearch:usage:"


@dataclass
class PopularityRecord:
    query: str
    count: int
    last_seen_at: float
    success_rate: float
    last_outcome_at: float = 0.0


class UsageLearner:
    """Remembers which queries users run and whether they pay off.

    State is serialized as JSON into a :class:`KeyValueStore` under
    ``giftsearch:usage:<scope>``. Writes are throttled to one per
    ``flush_seconds``; :meth:`flush` forces one.
    """

    def __init__(
        self,
        store: KeyValueStore,
        scope: str = "global",
        flush_seconds: float = DEFAULT_FLUSH_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.key = f"{KEY_PREFIX}{scope}"
        self.flush_seconds = flush_seconds
        self._clock = clock
        self._records: Dict[str, PopularityRecord] = {}
        self._dirty = False
        self._last_flush = clock()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def load(self) -> int:
        """Load persisted records, dropping those past the retention window."""

        raw = self.store.load(self.key)
        if not raw:
            return 0
        try:
            payload = json.loads(raw)
            if not isinstance(payload, dict) or not isinstance(payload.get("records", []), list):
                raise ValueError(f"unexpected payload type {type(payload).__name__}")
            records = [PopularityRecord(**item) for item in payload.get("records", [])]
        except (ValueError, TypeError) as exc:
            logger.warning("Ignoring corrupt usage data under %s: %s", self.key, exc)
            return 0

        cutoff = self._clock() - RETENTION_SECONDS
        with self._lock:
            self._records = {record.query: record for record in records if record.last_seen_at >= cutoff}
            pruned = len(records) - len(self._records)
        logger.info("Loaded %s usage records (%s pruned)", len(self._records), pruned)
        return len(self._records)

    def record_outcome(self, raw_query: str, succeeded: bool, result_count: int) -> None:
        query = normalize_query(raw_query)
        if not query:
            return
        observation = 1.0 if succeeded and result_count > 0 else 0.0
        now = self._clock()
        with self._lock:
            record = self._touch(query, now)
            record.success_rate = (1 - SUCCESS_WEIGHT) * record.success_rate + SUCCESS_WEIGHT * observation
            record.last_outcome_at = now
        self._maybe_flush(now)

    def record_usage(self, raw_query: str) -> None:
        """Count a search answered without asking upstream; success rate is untouched."""

        query = normalize_query(raw_query)
        if not query:
            return
        now = self._clock()
        with self._lock:
            self._touch(query, now)
        self._maybe_flush(now)

    def _touch(self, query: str, now: float) -> PopularityRecord:
        record = self._records.get(query)
        if record is None:
            # First observation counts as a prior of 1.0 (optimistic).
            record = PopularityRecord(query=query, count=0, last_seen_at=now, success_rate=1.0)
            self._records[query] = record
        record.count += 1
        record.last_seen_at = now
        self._dirty = True
        return record

    def is_likely_successful(self, raw_query: str) -> bool:
        now = self._clock()
        with self._lock:
            record = self._records.get(normalize_query(raw_query))
            if record is None or record.success_rate > 0.5:
                return True
            return now - record.last_outcome_at >= RETRY_AFTER_SECONDS

    def record(self, raw_query: str) -> Optional[PopularityRecord]:
        with self._lock:
            return self._records.get(normalize_query(raw_query))

    def popular_queries(self, limit: int = 10) -> List[str]:
        cutoff = self._clock() - POPULAR_WINDOW_SECONDS
        with self._lock:
            recent = [record for record in self._records.values() if record.last_seen_at >= cutoff]
        recent.sort(key=lambda record: record.count * record.success_rate, reverse=True)
        return [record.query for record in recent[:limit]]

    def prune(self) -> int:
        cutoff = self._clock() - RETENTION_SECONDS
        with self._lock:
            stale = [query for query, record in self._records.items() if record.last_seen_at < cutoff]
            for query in stale:
                del self._records[query]
            if stale:
                self._dirty = True
        return len(stale)

    def _maybe_flush(self, now: float) -> None:
        if now - self._last_flush >= self.flush_seconds:
            self.flush()

    def flush(self) -> None:
        with self._lock:
            if not self._dirty:
                return
            payload = {"records": [asdict(record) for record in self._records.values()]}
            self._dirty = False
            self._last_flush = self._clock()
        self.store.save(self.key, json.dumps(payload).encode("utf-8"))
        logger.debug("Flushed %s usage records to %s", len(payload["records"]), self.key)

    def close(self) -> None:
        self.prune()
        self.flush()
