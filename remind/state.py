# remind/state.py
import os
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol
from pydantic import ValidationError
from .config import CONFIG, RuntimeConfig
from .logging_utils import log_event, new_record_id
from .metrics import SCORING_FALLBACKS, SESSIONS_INGESTED, INGEST_REJECTED
from .schemas import Patient, RawResult, SessionRecord
from .scoring import ScoreBaseline, classify_risk, compute_deviation, as_finite

REDIS_URL = os.getenv("REDIS_URL")
REDIS_PREFIX = "remind"


class SessionValidationError(ValueError):
    """Raised before any store mutation when a raw result is malformed."""


class SessionStorage(Protocol):
    def prepend(self, record: SessionRecord) -> None: ...
    def items(self) -> List[SessionRecord]: ...
    def head(self) -> Optional[SessionRecord]: ...
    def replace_head(self, record: SessionRecord) -> None: ...
    def get(self, record_id: str) -> Optional[SessionRecord]: ...
    def __len__(self) -> int: ...


class MemoryStorage:
    """Head-first deque; with maxlen set the oldest records fall off."""
    def __init__(self, maxlen: int | None = None):
        self._items: deque = deque(maxlen=maxlen)
        self._by_id: Dict[str, SessionRecord] = {}

    def prepend(self, record: SessionRecord) -> None:
        if self._items.maxlen is not None and len(self._items) == self._items.maxlen:
            dropped = self._items.pop()
            self._by_id.pop(dropped.id, None)
        self._items.appendleft(record)
        self._by_id[record.id] = record

    def items(self) -> List[SessionRecord]:
        return list(self._items)

    def head(self) -> Optional[SessionRecord]:
        return self._items[0] if self._items else None

    def replace_head(self, record: SessionRecord) -> None:
        old = self._items[0]
        self._by_id.pop(old.id, None)
        self._items[0] = record
        self._by_id[record.id] = record

    def get(self, record_id: str) -> Optional[SessionRecord]:
        return self._by_id.get(record_id)

    def __len__(self) -> int:
        return len(self._items)


class RedisStorage:
    """
    Records as JSON in a hash, ordering as a list of ids (LPUSH = newest first).
    """
    def __init__(self, client, prefix: str = REDIS_PREFIX, maxlen: int | None = None):
        self._r = client
        self._ids = f"{prefix}:session_ids"
        self._records = f"{prefix}:sessions"
        self._maxlen = maxlen

    @classmethod
    def from_url(cls, url: str, **kw) -> "RedisStorage":
        import redis
        client = redis.Redis.from_url(url, decode_responses=True)
        client.ping()
        return cls(client, **kw)

    def _load(self, raw: str | None) -> Optional[SessionRecord]:
        if raw is None:
            return None
        return SessionRecord.model_validate_json(raw)

    def prepend(self, record: SessionRecord) -> None:
        pipe = self._r.pipeline()
        pipe.hset(self._records, record.id, record.model_dump_json(by_alias=True))
        pipe.lpush(self._ids, record.id)
        pipe.execute()
        if self._maxlen is not None:
            dropped = self._r.lrange(self._ids, self._maxlen, -1)
            if dropped:
                self._r.hdel(self._records, *dropped)
                self._r.ltrim(self._ids, 0, self._maxlen - 1)

    def items(self) -> List[SessionRecord]:
        ids = self._r.lrange(self._ids, 0, -1)
        if not ids:
            return []
        return [r for r in map(self._load, self._r.hmget(self._records, ids)) if r is not None]

    def head(self) -> Optional[SessionRecord]:
        rid = self._r.lindex(self._ids, 0)
        return self.get(rid) if rid is not None else None

    def replace_head(self, record: SessionRecord) -> None:
        self._r.hset(self._records, record.id, record.model_dump_json(by_alias=True))

    def get(self, record_id: str) -> Optional[SessionRecord]:
        return self._load(self._r.hget(self._records, record_id))

    def ping(self) -> bool:
        try:
            return bool(self._r.ping())
        except Exception:
            return False

    def __len__(self) -> int:
        return int(self._r.llen(self._ids))


def _require_finite(name: str, value, allow_none: bool = False):
    if value is None and allow_none:
        return
    if as_finite(value) is None:
        raise SessionValidationError(f"{name} must be a finite number")


def validate_raw(raw: RawResult) -> None:
    _require_finite("roundsPlayed", raw.rounds_played)
    _require_finite("roundsCorrect", raw.rounds_correct)
    _require_finite("avgReactionMs", raw.avg_reaction_ms)
    _require_finite("sequenceLength", raw.sequence_length, allow_none=True)
    _require_finite("score", raw.score, allow_none=True)
    if raw.rounds_played < 0:
        raise SessionValidationError("roundsPlayed must be >= 0")
    if raw.rounds_correct < 0:
        raise SessionValidationError("roundsCorrect must be >= 0")
    if raw.rounds_correct > raw.rounds_played:
        raise SessionValidationError("roundsCorrect cannot be greater than roundsPlayed")
    if raw.avg_reaction_ms < 0:
        raise SessionValidationError("avgReactionMs must be >= 0")
    if raw.sequence_length is not None and raw.sequence_length < 0:
        raise SessionValidationError("sequenceLength must be >= 0")


class SessionStore:
    """
    Most-recent-first history of scored sessions. Owns the baseline used for
    scoring; writes are serialized so each ingest is one atomic prepend.
    """
    def __init__(self, storage: SessionStorage | None = None, baseline=None,
                 config: RuntimeConfig = CONFIG):
        self._storage = storage if storage is not None else MemoryStorage(maxlen=config.HISTORY_MAXLEN)
        self._baseline = baseline if baseline is not None else ScoreBaseline()
        self._config = config
        self._lock = threading.Lock()

    @property
    def baseline(self):
        return self._baseline

    @property
    def storage(self) -> SessionStorage:
        return self._storage

    def _score(self, baseline, score, accuracy, avg_reaction_ms):
        """
        Ingested values passed validate_raw, so the fallback branch can only
        fire for a head record loaded from external storage (e.g. Redis).
        """
        deviation, fallback = compute_deviation(
            baseline, score=score, accuracy=accuracy, avg_reaction_ms=avg_reaction_ms
        )
        if fallback:
            SCORING_FALLBACKS.labels(strategy=baseline.kind).inc()
            log_event("scoring_fallback", strategy=baseline.kind,
                      score=score, accuracy=accuracy, avg_reaction_ms=avg_reaction_ms)
        risk = classify_risk(deviation, self._config.LOW_RISK_MAX, self._config.HIGH_RISK_MIN)
        return deviation, risk

    def ingest(self, raw, source: str = "web") -> SessionRecord:
        if not isinstance(raw, RawResult):
            try:
                raw = RawResult.model_validate(raw)
            except ValidationError as e:
                INGEST_REJECTED.labels(source=source).inc()
                raise SessionValidationError(str(e)) from e
        try:
            validate_raw(raw)
        except SessionValidationError as e:
            INGEST_REJECTED.labels(source=source).inc()
            log_event("ingest_rejected", source=source, error=str(e))
            raise

        score = raw.score if raw.score is not None else raw.rounds_correct
        accuracy = raw.rounds_correct / raw.rounds_played if raw.rounds_played > 0 else 0.0

        with self._lock:
            if raw.id is not None:
                existing = self._storage.get(raw.id)
                if existing is not None:
                    log_event("ingest_duplicate", id=raw.id, source=source)
                    return existing
            deviation, risk = self._score(self._baseline, score, accuracy, raw.avg_reaction_ms)
            record = SessionRecord(
                id=raw.id or new_record_id(source),
                source=source,
                patient=raw.patient,
                sequence_length=raw.sequence_length,
                rounds_played=raw.rounds_played,
                rounds_correct=raw.rounds_correct,
                avg_reaction_ms=raw.avg_reaction_ms,
                score=score,
                accuracy=accuracy,
                deviation_score=deviation,
                risk_level=risk,
                timestamp=datetime.now(timezone.utc),
            )
            self._storage.prepend(record)

        SESSIONS_INGESTED.labels(source=source, risk_level=risk).inc()
        log_event("ingest", id=record.id, source=source,
                  deviation_score=round(deviation, 2), risk_level=risk)
        return record

    def latest(self) -> Optional[SessionRecord]:
        return self._storage.head()

    def all(self) -> List[SessionRecord]:
        return self._storage.items()

    def get(self, record_id: str) -> Optional[SessionRecord]:
        return self._storage.get(record_id)

    def apply_baseline(self, baseline) -> Optional[SessionRecord]:
        """
        Replace the baseline and rescore the latest record only. Older
        records keep the values computed under the baseline of their time.
        """
        with self._lock:
            head = self._storage.head()
            if head is None:
                self._baseline = baseline
                log_event("baseline", strategy=baseline.kind, rescored=None)
                return None
            deviation, risk = self._score(baseline, head.score, head.accuracy, head.avg_reaction_ms)
            head = head.model_copy(update={"deviation_score": deviation, "risk_level": risk})
            self._storage.replace_head(head)
            self._baseline = baseline
        log_event("baseline", strategy=baseline.kind, rescored=head.id,
                  deviation_score=round(deviation, 2), risk_level=risk)
        return head

    def __len__(self) -> int:
        return len(self._storage)


def device_raw_result(score: float, rounds_played=None, rounds_correct=None,
                      avg_reaction_ms=None, patient_id=None, record_id=None,
                      config: RuntimeConfig = CONFIG) -> RawResult:
    """Fill in what a score-only device message leaves out."""
    played = rounds_played if rounds_played is not None else config.DEVICE_ROUNDS_PLAYED
    correct = rounds_correct if rounds_correct is not None else max(0.0, min(score, played))
    return RawResult(
        rounds_played=played,
        rounds_correct=correct,
        avg_reaction_ms=avg_reaction_ms if avg_reaction_ms is not None else config.DEVICE_AVG_REACTION_MS,
        score=score,
        patient=Patient(id=patient_id or ""),
        id=record_id,
    )


def build_storage(config: RuntimeConfig = CONFIG) -> SessionStorage:
    if REDIS_URL:
        try:
            return RedisStorage.from_url(REDIS_URL, maxlen=config.HISTORY_MAXLEN)
        except Exception as e:
            log_event("storage_fallback", backend="memory", error=str(e))
    return MemoryStorage(maxlen=config.HISTORY_MAXLEN)


def storage_ready(storage: SessionStorage) -> bool:
    ping = getattr(storage, "ping", None)
    return ping() if ping is not None else True
