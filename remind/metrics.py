# remind/metrics.py
from prometheus_client import Counter, Histogram

REQUESTS = Counter(
    "remind_requests_total", "Total HTTP requests", ["endpoint", "method", "code"]
)
LATENCY = Histogram(
    "remind_request_latency_seconds", "Request latency", ["endpoint", "method"]
)
SESSIONS_INGESTED = Counter(
    "remind_sessions_ingested_total", "Ingested session records", ["source", "risk_level"]
)
INGEST_REJECTED = Counter(
    "remind_ingest_rejected_total", "Session results rejected by validation", ["source"]
)
SCORING_FALLBACKS = Counter(
    "remind_scoring_fallbacks_total", "Scores computed from unusable inputs", ["strategy"]
)
MIRROR_FAILURES = Counter(
    "remind_mirror_failures_total", "Records that could not be mirrored to the remote store"
)
