from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from psycopg import errors as pg_errors
import json
import sys
import time
import uuid
from datetime import datetime, timezone
from .routers.orders import router as orders_router
from .routers.masterdata import router as masterdata_router
from .routers.loyalty import router as loyalty_router
from .routers.stock_ops import router as stock_ops_router
from .config import settings
from .db import get_conn, close_pools

SERVICE_NAME = "pos-backend"

app = FastAPI(title="Branch POS API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)


def _json_log(level: str, event: str, **fields):
    rec = {"ts": datetime.now(timezone.utc).isoformat(), "level": level, "event": event, **fields}
    print(json.dumps(rec, default=str), file=sys.stderr)


def _request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _verbose_errors() -> bool:
    return settings.env in {"local", "dev"}


def _error_response(status_code: int, detail: str, exc: Exception, **extra) -> JSONResponse:
    content = {"detail": detail, **extra}
    if _verbose_errors():
        content["error"] = str(exc)
    return JSONResponse(status_code=status_code, content=content)


# DB constraint/cast errors are the client's fault. Registers must see a 4xx
# (a rejection they do not retry), never a 500 that reads as an outage.
_PG_ERROR_STATUS = (
    (pg_errors.InvalidTextRepresentation, 400, "invalid value"),
    (pg_errors.ForeignKeyViolation, 400, "invalid reference"),
    (pg_errors.CheckViolation, 400, "constraint violation"),
    (pg_errors.UniqueViolation, 409, "conflict"),
)


def _register_pg_handler(exc_type, status_code: int, detail: str):
    @app.exception_handler(exc_type)
    def _handler(_req: Request, exc: Exception):
        return _error_response(status_code, detail, exc)


for _exc_type, _status, _detail in _PG_ERROR_STATUS:
    _register_pg_handler(_exc_type, _status, _detail)


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: RequestValidationError):
    content = {"detail": "validation failed"}
    if _verbose_errors():
        content["errors"] = json.loads(json.dumps(exc.errors(), default=str))
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _request_id(req)
    _json_log("error", "http.request.unhandled", request_id=rid, method=req.method, path=req.url.path, error=str(exc))
    return _error_response(500, "internal error", exc, request_id=rid)


@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    fields = {
        "request_id": rid,
        "method": request.method,
        "path": request.url.path,
        "client_ip": request.client.host if request.client else None,
    }
    try:
        response = await call_next(request)
    except Exception as exc:
        _json_log("error", "http.request.error", duration_ms=int((time.time() - started) * 1000), error=str(exc), **fields)
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    # Registers poll health every few seconds; keep it out of the request log.
    if fields["path"] != "/api/health":
        _json_log(
            "info",
            "http.request",
            status_code=response.status_code,
            duration_ms=int((time.time() - started) * 1000),
            **fields,
        )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
for _router in (orders_router, masterdata_router, loyalty_router, stock_ops_router):
    app.include_router(_router)


def _db_health():
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, str(exc)


@app.on_event("startup")
def _startup():
    ok, err = _db_health()
    if ok:
        _json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version)
    else:
        # Keep serving: /api/health reports the outage to registers as a blocking state.
        _json_log("warning", "startup.db_probe_failed", env=settings.env, error=err)


@app.on_event("shutdown")
def _shutdown():
    close_pools()


def _service_info() -> dict:
    return {
        "service": SERVICE_NAME,
        "env": settings.env,
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
    }


@app.get("/api/health")
def health(req: Request):
    """
    Registers probe this before syncing or pulling reference data. A 503 means the
    network is up but the application cannot serve.
    """
    ok, err = _db_health()
    body = {**_service_info(), "request_id": _request_id(req)}
    if not ok:
        body.update(status="degraded", db="down")
        if _verbose_errors():
            body["error"] = err
        return JSONResponse(status_code=503, content=body)
    body.update(status="ok", db="ok", timestamp=datetime.now(timezone.utc).isoformat())
    return body


@app.get("/meta")
def meta():
    return {
        **_service_info(),
        "uptime_seconds": int((datetime.now(timezone.utc) - STARTED_AT_UTC).total_seconds()),
    }
