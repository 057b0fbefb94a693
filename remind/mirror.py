"""Best-effort copy of ingested records to a remote store.

A failed sync is logged and dropped; it never reaches the ingesting caller.
"""
import httpx
from .config import CONFIG, RuntimeConfig
from .logging_utils import log_event
from .metrics import MIRROR_FAILURES
from .schemas import SessionRecord


def mirror_record(record: SessionRecord, config: RuntimeConfig = CONFIG,
                  transport: httpx.BaseTransport | None = None) -> bool:
    url = config.MIRROR_URL
    if not url:
        return False
    payload = record.model_dump(mode="json", by_alias=True)
    try:
        with httpx.Client(timeout=config.MIRROR_TIMEOUT_SEC, transport=transport) as client:
            resp = client.post(url, json=payload)
            resp.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        MIRROR_FAILURES.inc()
        log_event("mirror_failed", id=record.id, url=url, error=str(e))
        return False
    log_event("mirror", id=record.id, url=url, code=resp.status_code)
    return True
