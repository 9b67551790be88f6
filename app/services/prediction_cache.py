"""
ClinicFlow - Prediction Cache
Two-tier (process memory + ai_predictions_cache table) store for prediction payloads
"""

from __future__ import annotations
import copy
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from ai.models.base import to_jsonable

logger = logging.getLogger(__name__)

CACHE_TABLE = "ai_predictions_cache"


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a best-effort write. Callers may ignore it."""
    ok: bool
    error: Optional[str] = None


@dataclass
class _MemoryEntry:
    data: Any
    input_hash: Optional[str]
    stored_at: datetime


def rolling_hash(text: str) -> str:
    """31-multiplier rolling hash over UTF-16 code units, kept to signed 32 bits, as hex of |h|."""
    h = 0
    encoded = text.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return format(abs(h), "x")


def canonical_json(payload: Any) -> str:
    return json.dumps(to_jsonable(payload), sort_keys=True, separators=(",", ":"))


def input_hash_of(payload: Any) -> str:
    return rolling_hash(canonical_json(payload))


class PredictionCache:
    """
    Cache-aside store for prediction outputs.

    Reads check the in-process map first (short TTL), then the persistent
    table. Writes upsert the table and refresh memory. Persistent-tier
    failures are logged and never raised. Memory holds its own copy of each
    payload, so callers may mutate what they get back.
    """

    def __init__(
        self,
        supabase_client,
        memory_ttl_seconds: int = 300,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._db = supabase_client
        self._memory_ttl = timedelta(seconds=memory_ttl_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._memory: dict[str, _MemoryEntry] = {}
        self._lock = threading.Lock()
        self._stats = {"memory_hits": 0, "persistent_hits": 0, "misses": 0}

    # ── read path ─────────────────────────

    def _get_from_memory(self, cache_key: str, input_hash: Optional[str], now: datetime):
        with self._lock:
            entry = self._memory.get(cache_key)
            if entry is None:
                return None
            if now - entry.stored_at >= self._memory_ttl:
                del self._memory[cache_key]
                return None
            if input_hash and entry.input_hash and entry.input_hash != input_hash:
                return None
            self._stats["memory_hits"] += 1
            return copy.deepcopy(entry.data)

    def _increment_hit_count(self, cache_key: str, current: int, now: datetime):
        try:
            self._db.table(CACHE_TABLE).update({
                "hit_count": current + 1,
                "updated_at": now.isoformat(),
            }).eq("cache_key", cache_key).execute()
        except Exception as e:
            logger.warning(f"[PredictionCache] Could not bump hit_count for {cache_key}: {e}")

    def get(self, cache_key: str, input_hash: Optional[str] = None) -> Optional[Any]:
        now = self._clock()
        data = self._get_from_memory(cache_key, input_hash, now)
        if data is not None:
            return data

        try:
            rows = self._db.table(CACHE_TABLE).select(
                "cache_key, prediction_data, input_hash, hit_count"
            ).eq("cache_key", cache_key).gt("expires_at", now.isoformat()).limit(1).execute().data
        except Exception as e:
            logger.error(f"[PredictionCache] Lookup failed for {cache_key}: {e}")
            rows = None

        if not rows:
            with self._lock:
                self._stats["misses"] += 1
            return None

        row = rows[0]
        if input_hash and row.get("input_hash") and row["input_hash"] != input_hash:
            logger.info(f"[PredictionCache] Input hash changed for {cache_key}; treating as miss")
            with self._lock:
                self._stats["misses"] += 1
            return None

        data = row["prediction_data"]
        with self._lock:
            self._memory[cache_key] = _MemoryEntry(copy.deepcopy(data), row.get("input_hash"), now)
            self._stats["persistent_hits"] += 1
        self._increment_hit_count(cache_key, row.get("hit_count") or 0, now)
        return data

    # ── write path ────────────────────────

    def put(
        self,
        cache_key: str,
        model_id: Optional[str],
        data: Any,
        confidence: Optional[float] = None,
        ttl_hours: int = 24,
        input_hash: Optional[str] = None,
    ) -> WriteResult:
        now = self._clock()
        input_hash = input_hash or rolling_hash(cache_key)
        record = {
            "cache_key": cache_key,
            "model_id": model_id,
            "input_hash": input_hash,
            "prediction_data": data,
            "confidence": confidence,
            "expires_at": (now + timedelta(hours=ttl_hours)).isoformat(),
            "updated_at": now.isoformat(),
        }

        result = WriteResult(ok=True)
        try:
            self._db.table(CACHE_TABLE).upsert(record, on_conflict="cache_key").execute()
        except Exception as e:
            logger.error(f"[PredictionCache] Failed to persist {cache_key}: {e}")
            result = WriteResult(ok=False, error=str(e))

        with self._lock:
            self._memory[cache_key] = _MemoryEntry(copy.deepcopy(data), input_hash, now)
        return result

    # ── maintenance ───────────────────────

    def evict_expired_memory(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._memory.items() if now - e.stored_at >= self._memory_ttl]
            for key in expired:
                del self._memory[key]
        return len(expired)

    def cleanup_expired(self) -> int:
        """Delete expired persistent rows and stale memory entries. Returns rows deleted."""
        now = self._clock()
        self.evict_expired_memory()
        try:
            result = self._db.table(CACHE_TABLE).delete().lte("expires_at", now.isoformat()).execute()
        except Exception as e:
            logger.error(f"[PredictionCache] Cleanup failed: {e}")
            return 0
        deleted = len(result.data or [])
        logger.info(f"[PredictionCache] Removed {deleted} expired entries")
        return deleted

    def clear_memory(self):
        with self._lock:
            self._memory.clear()

    def stats(self) -> dict:
        with self._lock:
            return {"memory_size": len(self._memory), **self._stats}
