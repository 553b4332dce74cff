"""FastAPI controller layer for the download scheduler."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse

from api.models import AllActiveResponse, SaveConfigRequest, UpdateConfigRequest
from core.errors import (
    AlreadyExistsError,
    ExternalServiceError,
    NotFoundError,
    SchedulerError,
    ValidationError,
)
from core.settings import SchedulerSettings
from scheduler.download_scheduler import DownloadScheduler
from scheduler.expression import build_expression
from scheduler.models import SchedulerConfig, SchedulerStatus, TriggerResult
from scheduler.timers import TimerRegistry
from scheduler.trigger import WorkflowTrigger
from store.config_store import ConfigStore
from store.execution_ledger import ExecutionLedger

logger = logging.getLogger(__name__)

# ── Singletons ────────────────────────────────────────────────────────────────
# Built at import time so tests can swap them before the lifespan runs.

_settings = SchedulerSettings.from_env()
_config_store = ConfigStore(_settings.db_url, default_webhook_target=_settings.default_webhook_target)
_ledger = ExecutionLedger(engine=_config_store.engine)
_scheduler = DownloadScheduler(
    _config_store, _ledger, WorkflowTrigger(), TimerRegistry(), _settings,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await _config_store.init()
    await _scheduler.initialize_all()
    yield
    await _scheduler.shutdown_all()
    _scheduler.timers.shutdown()


app = FastAPI(
    title="Download Scheduler API",
    description="Per-user recurring download jobs that fire an external workflow.",
    version="0.1.0",
    lifespan=lifespan,
)


# ── Errors ────────────────────────────────────────────────────────────────────

_ERROR_STATUS: dict[type[SchedulerError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    AlreadyExistsError: 409,
    ExternalServiceError: 502,
}


@app.exception_handler(SchedulerError)
async def scheduler_error_handler(request: Request, exc: SchedulerError) -> JSONResponse:
    status = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 500,
    )
    if status >= 500:
        logger.error("Request failed", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(status_code=status, content={"detail": str(exc)})


# ── Caller identity ───────────────────────────────────────────────────────────

@dataclass
class Caller:
    tenant_id: int
    user_id: int
    is_live: bool


def get_caller(
    x_tenant_id: int = Header(...),
    x_user_id: int = Header(...),
    x_environment: str | None = Header(None),
    is_live: bool | None = Query(None),
) -> Caller:
    """Resolve the environment: ?is_live= wins, then X-Environment, default live."""
    if is_live is None:
        is_live = x_environment != "test" if x_environment else True
    return Caller(tenant_id=x_tenant_id, user_id=x_user_id, is_live=is_live)


# ── Routes ────────────────────────────────────────────────────────────────────

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/scheduler/config", response_model=SchedulerConfig)
async def get_config(caller: Caller = Depends(get_caller)):
    config = await _scheduler.get_config(caller.tenant_id, caller.is_live, caller.user_id)
    if config is None:
        raise NotFoundError("Scheduler configuration not found")
    return config


@app.post("/scheduler/config", response_model=SchedulerConfig, status_code=201)
async def create_config(req: SaveConfigRequest, caller: Caller = Depends(get_caller)):
    """Create the caller's configuration; 409 if one already exists."""
    derived = build_expression(req.schedule_type, req.time_of_day)
    config = SchedulerConfig(
        tenant_id=caller.tenant_id,
        user_id=caller.user_id,
        is_live=caller.is_live,
        schedule_type=req.schedule_type,
        schedule_expression=req.schedule_expression or derived,
        time_of_day=req.time_of_day,
        is_enabled=req.is_enabled,
        webhook_target=req.webhook_target,
    )
    return await _scheduler.save_config(config)


@app.put("/scheduler/config/{config_id}", response_model=SchedulerConfig)
async def update_config(
    config_id: int,
    req: UpdateConfigRequest,
    caller: Caller = Depends(get_caller),
):
    """Partially update the caller's configuration."""
    existing = await _scheduler.get_config(caller.tenant_id, caller.is_live, caller.user_id)
    if existing is None or existing.id != config_id:
        raise NotFoundError("Scheduler configuration not found")

    changes = req.model_dump(exclude_unset=True, exclude_none=True)
    merged = existing.model_copy(update=changes)
    derived = build_expression(merged.schedule_type, merged.time_of_day)
    if "schedule_expression" not in changes and ({"schedule_type", "time_of_day"} & changes.keys()):
        merged.schedule_expression = derived
    return await _scheduler.save_config(merged)


@app.delete("/scheduler/config", status_code=204)
async def delete_config(caller: Caller = Depends(get_caller)):
    """Stop the caller's job and delete its configuration."""
    await _scheduler.delete_config(caller.tenant_id, caller.is_live, caller.user_id)


@app.get("/scheduler/status", response_model=SchedulerStatus)
async def get_status(caller: Caller = Depends(get_caller)):
    """Config, timer state and the most recent executions."""
    return await _scheduler.get_status(caller.tenant_id, caller.is_live, caller.user_id)


@app.post("/scheduler/trigger", response_model=TriggerResult)
async def trigger_download(caller: Caller = Depends(get_caller)):
    """Fire the download workflow now, without touching the schedule."""
    return await _scheduler.manual_trigger(caller.tenant_id, caller.is_live, caller.user_id)


@app.get("/scheduler/all-active", response_model=AllActiveResponse)
async def all_active():
    """System-wide view of enabled schedulers and whether each is armed."""
    jobs = await _scheduler.list_all_active()
    return AllActiveResponse(
        active_schedulers=jobs,
        total_active=len(jobs),
        unarmed=sum(1 for j in jobs if not j.is_armed),
    )
