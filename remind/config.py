import os
from pydantic import BaseModel, Field

class RuntimeConfig(BaseModel):
    # Risk bands: deviation < LOW_RISK_MAX is low, >= HIGH_RISK_MIN is high
    LOW_RISK_MAX: float = Field(25.0, ge=0.0, le=100.0)
    HIGH_RISK_MIN: float = Field(60.0, ge=0.0, le=100.0)

    # Device (/score) defaults for fields the firmware does not send
    DEVICE_ROUNDS_PLAYED: float = Field(10.0, ge=0.0)
    DEVICE_AVG_REACTION_MS: float = Field(2000.0, ge=0.0)

    # History
    HISTORY_MAXLEN: int | None = Field(None, ge=1)

    # Remote mirror
    MIRROR_URL: str | None = None
    MIRROR_TIMEOUT_SEC: float = Field(5.0, gt=0.0)

CONFIG = RuntimeConfig(MIRROR_URL=os.getenv("MIRROR_URL") or None)
