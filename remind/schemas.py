from datetime import datetime
from typing import Annotated, Literal
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from .scoring import Baseline

Source = Literal["web", "device"]
RiskLevel = Literal["low", "medium", "high"]

# Plain JSON numbers only: "5" and true are rejected, NaN/inf too
Number = Annotated[float, Field(strict=True, allow_inf_nan=False)]
Count = Annotated[int, Field(strict=True)]

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class Patient(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True)

    id: str = ""
    name: str = ""
    age: str = ""
    location: str = ""
    notes: str = ""

class RawResult(CamelModel):
    """One session result as produced by the form, the demo generator or a device."""
    rounds_played: float
    rounds_correct: float
    avg_reaction_ms: float
    sequence_length: int | None = None
    score: float | None = None
    patient: Patient = Field(default_factory=Patient)
    id: str | None = None

class SessionRecord(CamelModel):
    id: str
    source: Source
    patient: Patient
    sequence_length: int | None
    rounds_played: float
    rounds_correct: float
    avg_reaction_ms: float
    score: float
    accuracy: float
    deviation_score: float = Field(ge=0.0, le=100.0)
    risk_level: RiskLevel
    timestamp: datetime

# ---- request bodies

class ResultPayload(CamelModel):
    rounds_played: Number
    rounds_correct: Number
    avg_reaction_ms: Number
    sequence_length: Count | None = None
    score: Number | None = None
    patient: Patient | None = None
    id: str | None = None

class DeviceScorePayload(CamelModel):
    score: Number
    rounds_played: Number | None = None
    rounds_correct: Number | None = None
    avg_reaction_ms: Number | None = None
    patient_id: str | None = None
    id: str | None = None

# ---- responses

class DeviceScoreResponse(CamelModel):
    status: Literal["ok"] = "ok"
    stored_id: str
    deviation_score: float
    risk_level: RiskLevel

class ResultResponse(CamelModel):
    status: Literal["ok"] = "ok"
    record: SessionRecord

class SessionsResponse(CamelModel):
    sessions: list[SessionRecord]

class LatestResponse(CamelModel):
    session: SessionRecord | None
    description: str | None

class BaselineResponse(CamelModel):
    baseline: Baseline
    latest: SessionRecord | None = None

class ConfigResponse(BaseModel):
    LOW_RISK_MAX: float
    HIGH_RISK_MIN: float
    DEVICE_ROUNDS_PLAYED: float
    DEVICE_AVG_REACTION_MS: float
    HISTORY_MAXLEN: int | None
    MIRROR_URL: str | None
    MIRROR_TIMEOUT_SEC: float

class ConfigUpdate(BaseModel):
    LOW_RISK_MAX: float | None = Field(None, ge=0.0, le=100.0)
    HIGH_RISK_MIN: float | None = Field(None, ge=0.0, le=100.0)
    DEVICE_ROUNDS_PLAYED: float | None = Field(None, ge=0.0)
    DEVICE_AVG_REACTION_MS: float | None = Field(None, ge=0.0)
    MIRROR_URL: str | None = None
    MIRROR_TIMEOUT_SEC: float | None = Field(None, gt=0.0)
