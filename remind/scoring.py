# remind/scoring.py
import math
from typing import Annotated, Literal, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

RISK_LOW = "low"
RISK_MEDIUM = "medium"
RISK_HIGH = "high"

# Fixed weights of the accuracy/reaction formula
ACCURACY_WEIGHT = 1.4
REACTION_WEIGHT = 0.6


class _Baseline(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScoreBaseline(_Baseline):
    """Score-based baseline: the centre of the typical 9-10 range."""
    kind: Literal["score"] = "score"
    expected_score: float = Field(9.5, gt=0.0, allow_inf_nan=False)
    worst_score: float = Field(0.0, allow_inf_nan=False)


class AccuracyBaseline(_Baseline):
    """Expected fraction of correct rounds and mean reaction time."""
    kind: Literal["accuracy"] = "accuracy"
    accuracy: float = Field(0.9, gt=0.0, le=1.0)
    mean_reaction_ms: float = Field(1800.0, gt=0.0, allow_inf_nan=False)


Baseline = Annotated[Union[ScoreBaseline, AccuracyBaseline], Field(discriminator="kind")]


def clamp(value: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, value))


def as_finite(value) -> float | None:
    """Return value as a float, or None when it is not a finite number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if not math.isfinite(value):
        return None
    return value


def deviation_from_score(score, baseline: ScoreBaseline) -> tuple[float, bool]:
    """
    0 = at or above the expected score, 100 = at or below the worst score.
    Returns (deviation, fallback) where fallback is True when the score was
    unusable and therefore contributed nothing.
    """
    s = as_finite(score)
    if s is None:
        return 0.0, True
    diff = max(0.0, baseline.expected_score - s)
    max_diff = max(baseline.expected_score - baseline.worst_score, 1.0)
    return clamp(diff / max_diff * 100.0, 0.0, 100.0), False


def deviation_from_accuracy(accuracy, avg_reaction_ms, baseline: AccuracyBaseline) -> tuple[float, bool]:
    """
    Accuracy shortfall weighted over reaction-time slowdown. Both terms are
    floored at zero, so better-than-baseline never lowers the score.
    Each unusable input zeroes its own term.
    """
    fallback = False
    acc = as_finite(accuracy)
    if acc is None:
        acc_diff = 0.0
        fallback = True
    else:
        acc_diff = max(0.0, baseline.accuracy - acc)

    rt = as_finite(avg_reaction_ms)
    if rt is None:
        rt_ratio = 0.0
        fallback = True
    else:
        rt_ratio = max(0.0, (rt - baseline.mean_reaction_ms) / max(baseline.mean_reaction_ms, 1.0))

    raw = (acc_diff * ACCURACY_WEIGHT + rt_ratio * REACTION_WEIGHT) * 100.0
    return clamp(raw, 0.0, 100.0), fallback


def classify_risk(deviation: float, low_max: float = 25.0, high_min: float = 60.0) -> str:
    if deviation < low_max:
        return RISK_LOW
    if deviation < high_min:
        return RISK_MEDIUM
    return RISK_HIGH


def compute_deviation(baseline, *, score=None, accuracy=None, avg_reaction_ms=None) -> tuple[float, bool]:
    """Dispatch on the baseline kind; the two formulas are never mixed."""
    if isinstance(baseline, ScoreBaseline):
        return deviation_from_score(score, baseline)
    if isinstance(baseline, AccuracyBaseline):
        return deviation_from_accuracy(accuracy, avg_reaction_ms, baseline)
    raise TypeError(f"unsupported baseline: {type(baseline).__name__}")


_DESCRIPTIONS = {
    "score": {
        RISK_LOW: "Score is within or above the typical 9-10 range. Performance is reassuring.",
        RISK_MEDIUM: "Score is moderately below the typical range. Consider closer monitoring and context.",
        RISK_HIGH: "Score is markedly below the typical range. Review clinically and consider delirium screening.",
    },
    "accuracy": {
        RISK_LOW: "Performance is close to baseline. Monitor routinely.",
        RISK_MEDIUM: "Noticeable deviation from baseline. Consider closer monitoring and clinical context.",
        RISK_HIGH: "Marked deviation from baseline. Review the patient clinically and consider formal delirium screening.",
    },
}


def describe_risk(risk_level: str, kind: str = "score") -> str:
    return _DESCRIPTIONS.get(kind, _DESCRIPTIONS["score"]).get(risk_level, "")


_BASELINE_ADAPTER = TypeAdapter(Baseline)


def parse_baseline(data: dict):
    """Validate a baseline payload; a payload without "kind" is score-based."""
    data = dict(data)
    data.setdefault("kind", "score")
    return _BASELINE_ADAPTER.validate_python(data)
