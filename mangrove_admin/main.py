import time
import uuid
import logging
import json
from datetime import datetime, timezone
from typing import Optional

import requests
from fastapi import FastAPI, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from . import config, schemas
from .consoles import Console, ConsoleRegistry
from .gateway import ApiGateway
from .session_store import build_session_store, build_storage
from .shell import AUTH_VIEW, AppShell, SessionWatchdog

# --- Logging Setup ---
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger("mangrove_admin")

PUBLIC_PATHS = {"/healthz", "/version", "/login", "/logout", "/session"}

# --- App Setup ---
app = FastAPI(
    title="Mangrove Watch Admin API",
    version=config.VERSION,
    description="Session and data layer behind the Mangrove Watch admin dashboard."
)

_storage = build_storage()
_http = requests.Session()


def _build_shell(console_id: str) -> AppShell:
    store = build_session_store(_storage, console_id)
    return AppShell(store, ApiGateway(store, http=_http))

def configure(registry: ConsoleRegistry) -> None:
    app.state.consoles = registry


configure(ConsoleRegistry(_build_shell))


@app.on_event("startup")
async def startup_event():
    logger.info(f"Starting admin API. backend={config.API_BASE_URL} CORS_ALLOW_ORIGINS={config.CORS_ALLOW_ORIGINS}")
    app.state.watchdog = SessionWatchdog(app.state.consoles)
    app.state.watchdog.start()

@app.on_event("shutdown")
async def shutdown_event():
    watchdog: Optional[SessionWatchdog] = getattr(app.state, "watchdog", None)
    if watchdog is not None:
        watchdog.stop()
    _http.close()

# --- Middleware ---
# Note: Middleware is added LIFO. The last added middleware is the first to execute.
# We want: CORS -> Logging -> Session gate -> App

@app.middleware("http")
async def session_gate_middleware(request: Request, call_next):
    # CORS preflight carries no session
    if request.method == "OPTIONS":
        return await call_next(request)

    path = request.url.path.rstrip("/") or "/"
    if path in PUBLIC_PATHS:
        return await call_next(request)

    consoles: ConsoleRegistry = request.app.state.consoles
    console_id = request.cookies.get(config.SESSION_COOKIE)
    console = consoles.resolve(console_id)
    if console is None or not console.shell.check_session():
        consoles.close(console_id)
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": "Session expired or missing", "view": AUTH_VIEW}
        )
    console.shell.record_activity()
    request.state.console = console
    return await call_next(request)

@app.middleware("http")
async def structured_logging_middleware(request: Request, call_next):
    trace_id = str(uuid.uuid4())
    request.state.trace_id = trace_id

    start_time = time.time()

    try:
        response = await call_next(request)
        process_time_ms = round((time.time() - start_time) * 1000, 2)

        log_entry = {
            "trace_id": trace_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": process_time_ms
        }
        logger.info(json.dumps(log_entry))
        return response

    except Exception as e:
        process_time_ms = round((time.time() - start_time) * 1000, 2)
        log_entry = {
            "trace_id": trace_id,
            "method": request.method,
            "path": request.url.path,
            "status": 500,
            "latency_ms": process_time_ms,
            "error": str(e)
        }
        logger.error(json.dumps(log_entry))
        return JSONResponse(
            status_code=500,
            content={"error": "Internal Server Error", "trace_id": trace_id}
        )

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials="*" not in config.CORS_ALLOW_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Exception Handlers ---

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors(), "body": str(exc.body)},
    )

# --- Endpoints ---

@app.get("/healthz")
def healthz():
    return {"status": "ok"}

@app.get("/version")
def version():
    return {
        "version": config.VERSION,
        "build_time": datetime.now(timezone.utc).isoformat()
    }

def _console(request: Request) -> Console:
    return request.state.console

@app.get("/session")
def session(request: Request):
    consoles: ConsoleRegistry = request.app.state.consoles
    console_id = request.cookies.get(config.SESSION_COOKIE)
    console = consoles.resolve(console_id)
    if console is None or not console.shell.check_session():
        consoles.close(console_id)
        return {"view": AUTH_VIEW, "user": None}
    return {"view": console.shell.view, "user": console.shell.user}

@app.post("/login", response_model=schemas.ApiResult)
def login(req: schemas.LoginReq, request: Request, response: Response):
    consoles: ConsoleRegistry = request.app.state.consoles
    console_id, result = consoles.login(req.email, req.password)
    if console_id is None:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content=result.model_dump())
    consoles.close(request.cookies.get(config.SESSION_COOKIE))
    response.set_cookie(
        config.SESSION_COOKIE, console_id,
        httponly=True, samesite="strict", secure=config.COOKIE_SECURE,
    )
    return result

@app.post("/logout", response_model=schemas.ApiResult)
def logout(request: Request, response: Response):
    result = request.app.state.consoles.logout(request.cookies.get(config.SESSION_COOKIE))
    response.delete_cookie(config.SESSION_COOKIE)
    return result

@app.get("/reports")
def reports(request: Request, status_filter: str = Query("all", alias="status")):
    view = _console(request).reports_view
    result = view.load()
    return {
        "success": result.success,
        "message": result.message,
        "data": view.filter(status_filter),
        "stats": view.stats(),
    }

def _change_status(request: Request, report_id: str, target: str):
    view = _console(request).reports_view
    # backend ids are numeric; path params arrive as text
    ident = int(report_id) if report_id.isdigit() else report_id
    result = view.set_status(ident, target)
    if not result.success:
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=result.model_dump())
    return result.model_dump()

@app.post("/reports/{report_id}/accept")
def accept_report(report_id: str, request: Request):
    return _change_status(request, report_id, "accepted")

@app.post("/reports/{report_id}/reject")
def reject_report(report_id: str, request: Request):
    return _change_status(request, report_id, "rejected")

@app.get("/map")
def reports_map(request: Request):
    console = _console(request)
    result = console.reports_view.load()
    return {
        "success": result.success,
        "message": result.message,
        "markers": console.map_view.markers(),
        "bounds": console.map_view.bounds(),
        "counts": console.map_view.status_counts(),
    }

@app.get("/charts")
def charts(request: Request):
    console = _console(request)
    result = console.reports_view.load()
    return {
        "success": result.success,
        "message": result.message,
        "by_type": console.charts_view.by_type(),
        "by_status": console.charts_view.by_status(),
    }

@app.get("/users")
def users(request: Request, search: str = "", status_filter: str = Query("all", alias="status")):
    view = _console(request).users_view
    result = view.load()
    return {
        "success": result.success,
        "message": result.message,
        "data": view.filter(search, status_filter),
        "stats": view.stats(),
    }

@app.get("/analytics")
def analytics(request: Request):
    view = _console(request).analytics_view
    result = view.load()
    return {
        "success": result.success,
        "message": result.message,
        "data": view.months,
        "totals": view.totals(),
    }
