"""
HTTP facade for the blocked-services proxy.

- `/api/v1/getblockedservices`, `/api/v1/getservicelist`: read-through to the appliance.
- `/api/v1/updateblockedservicesmin`, `/api/v1/updateblockedservicesdatetime`: apply a
  configuration and schedule a reset back to the defaults.
- `/api/v1/gettimer`: report the pending reset.

The built web UI (if present) is served from `/`.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from adguardfilter.config import load_app_config
from adguardfilter.core.deadline import DeadlineFormatError, format_duration, format_rfc3339, parse_deadline
from adguardfilter.core.models import ResetServiceDateTimeConfig, ResetServiceMinConfig
from adguardfilter.scheduling.timer import TimerRegistry, TimerValidationError
from adguardfilter.upstream import adguard_provider
from adguardfilter.upstream.errors import UpstreamError

logger = logging.getLogger(__name__)

TIMER_ID_PREFIX = "reset-blocked-services-"

_timer_registry: Optional[TimerRegistry] = None
_registry_lock = threading.Lock()


def get_timer_registry() -> TimerRegistry:
    global _timer_registry
    with _registry_lock:
        if _timer_registry is None:
            cfg = load_app_config()
            _timer_registry = TimerRegistry(exclusive=cfg.exclusive_timers)
            logger.info("Timer registry created (policy=%s)", cfg.timer_policy)
        return _timer_registry


def set_timer_registry(registry: Optional[TimerRegistry]) -> None:
    """Replace (or clear) the process-wide registry; used by tests."""
    global _timer_registry
    with _registry_lock:
        _timer_registry = registry


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _reset_action(provider: adguard_provider.AdGuardProvider, reason: str) -> Callable[[], None]:
    def reset() -> None:
        logger.info("Resetting blocked services to default configuration (%s)", reason)
        try:
            provider.reset_blocked_services()
        except UpstreamError as e:
            logger.error("Failed to reset blocked services: %s", e)
            return
        logger.info("Successfully reset blocked services to default")

    return reset


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


app = FastAPI(title="AdGuard blocked-services filter")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def _startup_authenticate() -> None:
    """
    Best-effort login with the configured credentials.

    Never prevents the server from starting: the first 401/403 retries the login anyway.
    """
    cfg = load_app_config()
    if not cfg.credentials_configured:
        logger.warning("Upstream credentials not configured (ADGUARD_BASE_URL/ADGUARD_USERNAME/ADGUARD_PASSWORD)")
        return
    provider = adguard_provider.get_adguard_provider()
    client = getattr(provider, "client", None)
    if client is None:
        return
    try:
        client.authenticate(cfg.adguard_base_url, cfg.adguard_username, cfg.adguard_password)
    except UpstreamError as e:
        logger.warning("Initial authentication to %s failed: %s", cfg.adguard_base_url, e)


@app.on_event("shutdown")
def _shutdown_reset() -> None:
    """Cancel pending resets and, if one was pending, apply the defaults now."""
    registry = get_timer_registry()
    active = registry.get_active()
    if not active:
        logger.info("No active timers to stop")
        return

    logger.info("Stopping %d active timer(s)", len(active))
    registry.stop_all()

    if not load_app_config().reset_on_shutdown:
        logger.info("RESET_ON_SHUTDOWN disabled; leaving blocked services as they are")
        return
    _reset_action(adguard_provider.get_adguard_provider(), "shutdown")()


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests."""
    start_time = time.time()
    logger.debug("%s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
        raise


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@app.get("/api/v1/getblockedservices")
def get_blocked_services():
    try:
        cfg = adguard_provider.get_adguard_provider().get_blocked_services()
    except UpstreamError as e:
        logger.error("Failed to get blocked services: %s", e)
        return _error(500, "Failed to get blocked services")
    logger.debug("Returning %d blocked service ids (time zone %s)", len(cfg.ids), cfg.schedule.time_zone)
    return cfg.model_dump(mode="json")


@app.get("/api/v1/getservicelist")
def get_service_list():
    try:
        services = adguard_provider.get_adguard_provider().get_all_blocked_services()
    except UpstreamError as e:
        logger.error("Failed to get service list: %s", e)
        return _error(500, "Failed to get service list")
    return [s.model_dump(mode="json", include={"id", "name", "icon_svg", "rules"}) for s in services]


def _apply_with_duration(body: ResetServiceMinConfig) -> JSONResponse:
    provider = adguard_provider.get_adguard_provider()
    try:
        provider.update_blocked_services(body.service_config)
    except UpstreamError as e:
        logger.error("Failed to update blocked services: %s", e)
        return _error(500, "Failed to update blocked services")

    if body.reset_after_min <= 0:
        return JSONResponse({"success": True, "message": "Blocked services updated (no reset timer set)"})

    timer_id = f"{TIMER_ID_PREFIX}{body.reset_after_min}"
    logger.info("Scheduling reset of blocked services in %d minutes", body.reset_after_min)
    try:
        get_timer_registry().create_with_duration(
            timer_id,
            body.reset_after_min,
            _reset_action(provider, f"timer {timer_id}"),
        )
    except TimerValidationError as e:
        # The update already happened; report the timer problem without failing the request.
        logger.error("Failed to create timer '%s': %s", timer_id, e)
        return JSONResponse(
            {
                "success": True,
                "message": "Blocked services updated, but timer creation failed",
                "timer_error": str(e),
            }
        )

    return JSONResponse(
        {
            "success": True,
            "message": f"Blocked services updated and will reset to default in {body.reset_after_min} minutes",
            "timer_id": timer_id,
            "reset_after_min": body.reset_after_min,
        }
    )


@app.api_route("/api/v1/updateblockedservicesmin", methods=["PUT", "POST"])
async def update_blocked_services_min(request: Request) -> JSONResponse:
    raw = await request.body()
    try:
        body = ResetServiceMinConfig.model_validate_json(raw)
    except ValidationError as e:
        logger.error("Failed to parse request body: %s", e)
        return _error(400, "Failed to parse request body")
    return await run_in_threadpool(_apply_with_duration, body)


def _apply_with_deadline(body: ResetServiceDateTimeConfig, deadline: datetime) -> JSONResponse:
    provider = adguard_provider.get_adguard_provider()
    try:
        provider.update_blocked_services(body.service_config)
    except UpstreamError as e:
        logger.error("Failed to update blocked services: %s", e)
        return _error(500, "Failed to update blocked services")

    timer_id = f"{TIMER_ID_PREFIX}{int(time.time())}"
    now = utcnow()
    until_reset = deadline - now
    logger.info("Scheduling reset of blocked services at %s", format_rfc3339(deadline))
    logger.debug("Duration until reset: %s", format_duration(until_reset))
    try:
        get_timer_registry().create_with_deadline(
            timer_id,
            deadline,
            _reset_action(provider, "scheduled deadline reached"),
        )
    except TimerValidationError as e:
        logger.error("Failed to create timer '%s': %s", timer_id, e)
        return JSONResponse(
            {
                "success": True,
                "message": "Blocked services updated, but timer creation failed",
                "timer_error": str(e),
            }
        )

    return JSONResponse(
        {
            "success": True,
            "message": "Blocked services updated and will reset to default at specified time",
            "timer_id": timer_id,
            "reset_date_time": format_rfc3339(deadline),
            "time_until_reset": format_duration(until_reset),
            "current_time": format_rfc3339(utcnow()),
        }
    )


@app.api_route("/api/v1/updateblockedservicesdatetime", methods=["PUT", "POST"])
async def update_blocked_services_datetime(request: Request) -> JSONResponse:
    raw = await request.body()
    try:
        body = ResetServiceDateTimeConfig.model_validate_json(raw)
    except ValidationError as e:
        logger.error("Failed to parse request body: %s", e)
        return _error(400, "Failed to parse request body")

    if not body.reset_date_time:
        logger.error("reset_date_time is required")
        return _error(400, "reset_date_time is required")

    try:
        deadline = parse_deadline(body.reset_date_time)
    except DeadlineFormatError as e:
        logger.error("Failed to parse reset_date_time %r: %s", body.reset_date_time, e)
        return _error(
            400,
            "Invalid datetime format. Use ISO 8601 format (e.g., 2025-10-12T15:30:00Z)",
            example=format_rfc3339(utcnow() + timedelta(hours=1)),
        )

    now = utcnow()
    if deadline <= now:
        logger.error("Deadline is in the past: %s", format_rfc3339(deadline))
        return _error(
            400,
            "Deadline must be in the future",
            provided_time=format_rfc3339(deadline),
            current_time=format_rfc3339(now),
            time_difference=format_duration(deadline - now),
        )

    return await run_in_threadpool(_apply_with_deadline, body, deadline)


@app.get("/api/v1/gettimer")
def get_timer() -> Dict[str, Any]:
    registry = get_timer_registry()
    timers = []
    for timer_id in registry.get_active():
        timer, found = registry.get(timer_id)
        if found and timer is not None and timer.is_active():
            timers.append(timer)
    logger.debug("Number of active timers: %d", len(timers))
    if not timers:
        return {"is_active": False, "message": "No active timer"}

    # More than one only under the per-id policy; report the next to fire.
    timer = min(timers, key=lambda t: t.get_expire_time())
    now = utcnow()
    expire_time = timer.get_expire_time()
    remaining = expire_time - now
    seconds_left = int(remaining.total_seconds())
    return {
        "is_active": True,
        "timer_id": timer.get_id(),
        "expire_time": format_rfc3339(expire_time),
        "current_time": format_rfc3339(now),
        "time_remaining": format_duration(remaining),
        "seconds_left": seconds_left,
        "minutes_left": int(remaining.total_seconds() / 60),
        "message": "Active timer found",
    }


def _mount_ui(static_dir: str) -> None:
    if os.path.isdir(static_dir):
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="ui")
        logger.info("Serving web UI from %s", static_dir)
        return

    @app.get("/", response_class=PlainTextResponse)
    def index() -> str:
        return "Hello, World!"


# Registered last: the "/" mount would otherwise shadow the API routes.
_mount_ui(load_app_config().static_dir)


def _log_file_path(log_path: str) -> str:
    host = (os.getenv("HOSTNAME", "") or "").strip() or socket.gethostname()
    if log_path.endswith(("/", os.sep)) or os.path.isdir(log_path):
        return os.path.join(log_path, f"{host}.log")
    return f"{log_path}{host}.log"


def run(host: str = "0.0.0.0", port: Optional[int] = None) -> None:
    import uvicorn

    cfg = load_app_config()
    log_level = cfg.log_level.upper()
    handlers: list = [logging.StreamHandler()]
    if cfg.log_path:
        handlers.append(logging.FileHandler(_log_file_path(cfg.log_path)))
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    port = port or cfg.port
    logger.info("Starting AdGuard filter on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
