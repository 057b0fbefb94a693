import pytest

from remind.config import RuntimeConfig
from remind.logging_utils import dump_logs
from remind.schemas import RawResult
from remind.scoring import AccuracyBaseline, ScoreBaseline
from remind.state import (
    MemoryStorage,
    RedisStorage,
    SessionStore,
    SessionValidationError,
    device_raw_result,
    storage_ready,
)


def raw(**kw):
    data = dict(rounds_played=10, rounds_correct=9, avg_reaction_ms=2000)
    data.update(kw)
    return RawResult(**data)


def test_empty_store():
    store = SessionStore()
    assert store.latest() is None
    assert store.all() == []
    assert len(store) == 0


def test_ingest_enriches_record():
    store = SessionStore()
    rec = store.ingest(raw(score=9, sequence_length=5))
    assert rec.source == "web"
    assert rec.id.startswith("web-")
    assert rec.accuracy == pytest.approx(0.9)
    assert rec.deviation_score == pytest.approx(5.263, abs=0.001)
    assert rec.risk_level == "low"
    assert rec.timestamp.tzinfo is not None
    assert store.latest() == rec


def test_score_falls_back_to_rounds_correct():
    rec = SessionStore().ingest(raw(rounds_correct=3))
    assert rec.score == 3
    assert rec.risk_level == "high"


def test_zero_rounds_played_has_zero_accuracy():
    rec = SessionStore().ingest(raw(rounds_played=0, rounds_correct=0))
    assert rec.accuracy == 0.0


def test_history_is_most_recent_first():
    store = SessionStore()
    r1 = store.ingest(raw(score=9))
    r2 = store.ingest(raw(score=2))
    assert store.all() == [r2, r1]
    assert store.latest() == r2


def test_ids_are_unique_within_a_millisecond():
    store = SessionStore()
    ids = {store.ingest(raw()).id for _ in range(50)}
    assert len(ids) == 50


@pytest.mark.parametrize(
    "bad",
    [
        dict(rounds_correct=11),
        dict(rounds_played=-1, rounds_correct=0),
        dict(rounds_correct=-1),
        dict(avg_reaction_ms=-5),
        dict(avg_reaction_ms=float("nan")),
        dict(rounds_played=float("inf")),
        dict(score=float("nan")),
        dict(sequence_length=-2),
    ],
)
def test_invalid_results_are_rejected_without_mutation(bad):
    store = SessionStore()
    store.ingest(raw())
    before = store.all()
    with pytest.raises(SessionValidationError):
        store.ingest(raw(**bad))
    assert store.all() == before


def test_ingest_accepts_camel_case_dict():
    rec = SessionStore().ingest(
        {"roundsPlayed": 10, "roundsCorrect": 5, "avgReactionMs": 1900, "patient": {"id": "P1", "age": 81}}
    )
    assert rec.patient.id == "P1"
    assert rec.patient.age == "81"


def test_ingest_rejects_malformed_dict():
    store = SessionStore()
    with pytest.raises(SessionValidationError):
        store.ingest({"roundsPlayed": "ten"})
    assert len(store) == 0


def test_duplicate_caller_id_is_stored_once():
    store = SessionStore()
    first = store.ingest(raw(id="dev-1", score=9))
    again = store.ingest(raw(id="dev-1", score=1))
    assert again == first
    assert len(store) == 1


def test_apply_baseline_rescores_latest_only():
    store = SessionStore()
    old = store.ingest(raw(score=8))
    new = store.ingest(raw(score=8))
    assert new.risk_level == "low"

    rescored = store.apply_baseline(ScoreBaseline(expected_score=20))
    assert rescored.id == new.id
    assert rescored.deviation_score == pytest.approx(60.0)
    assert rescored.risk_level == "high"
    assert store.latest() == rescored
    assert store.all()[1] == old
    assert store.baseline.expected_score == 20


def test_apply_baseline_on_empty_store():
    store = SessionStore()
    assert store.apply_baseline(AccuracyBaseline()) is None
    assert isinstance(store.baseline, AccuracyBaseline)


def test_accuracy_strategy_drives_new_ingests():
    store = SessionStore(baseline=AccuracyBaseline(accuracy=0.9, mean_reaction_ms=1800))
    rec = store.ingest(raw(rounds_played=10, rounds_correct=5, avg_reaction_ms=3000, score=10))
    assert rec.deviation_score == pytest.approx(96.0)
    assert rec.risk_level == "high"


def test_thresholds_follow_config():
    config = RuntimeConfig(LOW_RISK_MAX=5.0, HIGH_RISK_MIN=50.0)
    rec = SessionStore(config=config).ingest(raw(score=9))
    assert rec.risk_level == "medium"


def test_bounded_memory_storage_drops_oldest():
    store = SessionStore(storage=MemoryStorage(maxlen=2))
    a = store.ingest(raw(id="a"))
    store.ingest(raw(id="b"))
    store.ingest(raw(id="c"))
    assert [r.id for r in store.all()] == ["c", "b"]
    assert store.get(a.id) is None


def test_device_defaults():
    r = device_raw_result(7, patient_id="P9", config=RuntimeConfig())
    assert r.rounds_played == 10
    assert r.rounds_correct == 7
    assert r.avg_reaction_ms == 2000
    assert r.patient.id == "P9"

    assert device_raw_result(42).rounds_correct == 10
    assert device_raw_result(-3).rounds_correct == 0
    assert device_raw_result(4, rounds_played=3).rounds_correct == 3


class FakeRedis:
    """Just the list/hash commands RedisStorage uses."""

    def __init__(self):
        self.lists, self.hashes = {}, {}

    def pipeline(self):
        return self

    def execute(self):
        return []

    def ping(self):
        return True

    def hset(self, key, field, value):
        self.hashes.setdefault(key, {})[field] = value

    def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    def hmget(self, key, fields):
        return [self.hget(key, f) for f in fields]

    def hdel(self, key, *fields):
        for f in fields:
            self.hashes.get(key, {}).pop(f, None)

    def lpush(self, key, value):
        self.lists.setdefault(key, []).insert(0, value)

    def lrange(self, key, start, end):
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start:end + 1]

    def lindex(self, key, i):
        items = self.lists.get(key, [])
        return items[i] if i < len(items) else None

    def ltrim(self, key, start, end):
        self.lists[key] = self.lists.get(key, [])[start:end + 1]

    def llen(self, key):
        return len(self.lists.get(key, []))


def test_redis_storage_round_trips_records():
    storage = RedisStorage(FakeRedis(), maxlen=2)
    store = SessionStore(storage=storage)
    store.ingest(raw(id="x", score=9))
    store.ingest(raw(id="y", score=5))
    store.ingest(raw(id="z", score=1))
    assert [r.id for r in store.all()] == ["z", "y"]
    assert store.get("x") is None

    rescored = store.apply_baseline(ScoreBaseline(expected_score=1))
    assert rescored.deviation_score == 0.0
    assert store.latest().risk_level == "low"
    assert storage_ready(storage)
    assert storage_ready(MemoryStorage())


class BrokenHeadStorage(MemoryStorage):
    def replace_head(self, record):
        raise RuntimeError("disk full")


def test_failed_rescore_keeps_old_baseline_and_head():
    store = SessionStore(storage=BrokenHeadStorage())
    head = store.ingest(raw(score=8))
    with pytest.raises(RuntimeError):
        store.apply_baseline(ScoreBaseline(expected_score=20))
    assert store.baseline == ScoreBaseline()
    assert store.latest() == head


def test_apply_baseline_logs_strategy():
    store = SessionStore()
    rec = store.ingest(raw(score=8))
    store.apply_baseline(AccuracyBaseline())
    evt = dump_logs(limit=1000, kind="baseline")[-1]
    assert evt["strategy"] == "accuracy"
    assert evt["rescored"] == rec.id


def test_sequence_length_must_be_whole():
    with pytest.raises(SessionValidationError):
        SessionStore().ingest({"roundsPlayed": 10, "roundsCorrect": 5, "avgReactionMs": 1900, "sequenceLength": 4.5})
