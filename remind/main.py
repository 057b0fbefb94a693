from fastapi import FastAPI, Depends, Body, Request, Response, BackgroundTasks
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
import time, os
from .state import SessionStore, SessionValidationError, build_storage, device_raw_result, storage_ready
from .schemas import (
    BaselineResponse, ConfigResponse, ConfigUpdate, DeviceScorePayload, DeviceScoreResponse,
    LatestResponse, Patient, RawResult, ResultPayload, ResultResponse, SessionsResponse,
)
from .scoring import describe_risk, parse_baseline
from .config import CONFIG
from .demo import demo_result
from .mirror import mirror_record
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from .metrics import REQUESTS, LATENCY
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from .logging_utils import log_event, dump_logs, new_req_id

VERSION = "0.3.0"
STARTED_AT = time.time()

app = FastAPI(title="ReMind Cognitive Deviation API", version=VERSION)
app.state.store = SessionStore(storage=build_storage(CONFIG), config=CONFIG)

origins = os.getenv("ALLOWED_ORIGINS", "").split(",") if os.getenv("ALLOWED_ORIGINS") else ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in origins if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

def get_store(request: Request) -> SessionStore:
    return request.app.state.store

@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request, exc):
    return PlainTextResponse("Too Many Requests", status_code=429)

def _error_message(errors) -> str:
    err = errors[0] if errors else {"loc": (), "msg": "invalid payload"}
    field = ".".join(str(p) for p in err["loc"] if p != "body")
    return f"{field}: {err['msg']}" if field else err["msg"]

@app.exception_handler(RequestValidationError)
def request_validation_handler(request, exc):
    return JSONResponse(status_code=400, content={"error": _error_message(exc.errors())})

@app.exception_handler(SessionValidationError)
def session_validation_handler(request, exc):
    return JSONResponse(status_code=400, content={"error": str(exc)})

def _mirror(background: BackgroundTasks, record):
    if CONFIG.MIRROR_URL:
        background.add_task(mirror_record, record, CONFIG)

@app.get("/healthz")
def healthz():
    return {"ok": True, "service": "remind-dashboard", "version": VERSION}

@app.get("/livez")
def livez():
    return {"ok": True, "uptime_sec": time.time() - STARTED_AT}

@app.get("/readyz")
def readyz(store: SessionStore = Depends(get_store)):
    ok = storage_ready(store.storage)
    status = 200 if ok else 503
    return JSONResponse(status_code=status, content={"ok": ok, "storage": type(store.storage).__name__, "sessions": len(store)})

@app.get("/config", response_model=ConfigResponse)
@limiter.limit("60/minute")
def get_config(request: Request):
    return CONFIG.model_dump()

@app.put("/config", response_model=ConfigResponse)
@limiter.limit("5/minute")
def update_config(request: Request, update: ConfigUpdate):
    data = update.model_dump(exclude_none=True)
    low = data.get("LOW_RISK_MAX", CONFIG.LOW_RISK_MAX)
    high = data.get("HIGH_RISK_MIN", CONFIG.HIGH_RISK_MIN)
    if low > high:
        return JSONResponse(status_code=400, content={"error": "LOW_RISK_MAX must not exceed HIGH_RISK_MIN"})
    for k, v in data.items():
        setattr(CONFIG, k, v)
    log_event("config", **data)
    return CONFIG.model_dump()

@app.post("/score", response_model=DeviceScoreResponse)
@limiter.limit("60/minute")
def device_score(request: Request, payload: DeviceScorePayload, background: BackgroundTasks,
                 store: SessionStore = Depends(get_store)):
    raw = device_raw_result(
        payload.score,
        rounds_played=payload.rounds_played,
        rounds_correct=payload.rounds_correct,
        avg_reaction_ms=payload.avg_reaction_ms,
        patient_id=payload.patient_id,
        record_id=payload.id,
        config=CONFIG,
    )
    record = store.ingest(raw, source="device")
    _mirror(background, record)
    return DeviceScoreResponse(stored_id=record.id, deviation_score=record.deviation_score, risk_level=record.risk_level)

@app.post("/api/results", response_model=ResultResponse)
@limiter.limit("60/minute")
def post_result(request: Request, payload: ResultPayload, background: BackgroundTasks,
                store: SessionStore = Depends(get_store)):
    raw = RawResult(
        rounds_played=payload.rounds_played,
        rounds_correct=payload.rounds_correct,
        avg_reaction_ms=payload.avg_reaction_ms,
        sequence_length=payload.sequence_length,
        score=payload.score,
        patient=payload.patient or Patient(),
        id=payload.id,
    )
    record = store.ingest(raw, source="web")
    _mirror(background, record)
    return ResultResponse(record=record)

@app.get("/api/results", response_model=SessionsResponse)
@limiter.limit("120/minute")
def list_results(request: Request, store: SessionStore = Depends(get_store)):
    return SessionsResponse(sessions=store.all())

@app.get("/api/results/latest", response_model=LatestResponse)
@limiter.limit("120/minute")
def latest_result(request: Request, store: SessionStore = Depends(get_store)):
    latest = store.latest()
    if latest is None:
        return LatestResponse(session=None, description=None)
    return LatestResponse(session=latest, description=describe_risk(latest.risk_level, store.baseline.kind))

@app.post("/api/demo", response_model=ResultResponse)
@limiter.limit("30/minute")
def demo(request: Request, background: BackgroundTasks, patient: Patient | None = Body(None),
         store: SessionStore = Depends(get_store)):
    record = store.ingest(demo_result(patient), source="web")
    _mirror(background, record)
    return ResultResponse(record=record)

@app.get("/api/baseline", response_model=BaselineResponse)
@limiter.limit("60/minute")
def get_baseline(request: Request, store: SessionStore = Depends(get_store)):
    return BaselineResponse(baseline=store.baseline, latest=store.latest())

@app.put("/api/baseline", response_model=BaselineResponse)
@limiter.limit("20/minute")
def put_baseline(request: Request, data: dict = Body(...), store: SessionStore = Depends(get_store)):
    try:
        baseline = parse_baseline(data)
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"error": _error_message(e.errors())})
    latest = store.apply_baseline(baseline)
    return BaselineResponse(baseline=baseline, latest=latest)

@app.get("/logs")
@limiter.limit("120/minute")
def get_logs(request: Request, limit: int = 100, kind: str | None = None):
    return dump_logs(limit=limit, kind=kind)

@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

@app.middleware("http")
async def access_log_middleware(request: Request, call_next):
    rid = new_req_id()
    request.state.request_id = rid
    start = time.time()
    try:
        log_event("request", request_id=rid, method=request.method, path=str(request.url.path))
        resp = await call_next(request)
        dur = time.time() - start
        log_event("response", request_id=rid, code=resp.status_code, duration_ms=int(dur * 1000), path=str(request.url.path))
        resp.headers["X-Request-ID"] = rid
        return resp
    except Exception as e:
        dur = time.time() - start
        log_event("error", request_id=rid, error=str(e), duration_ms=int(dur * 1000), path=str(request.url.path))
        raise

@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    elapsed = time.time() - start
    endpoint = request.url.path
    LATENCY.labels(endpoint=endpoint, method=request.method).observe(elapsed)
    REQUESTS.labels(endpoint=endpoint, method=request.method, code=str(response.status_code)).inc()
    return response
