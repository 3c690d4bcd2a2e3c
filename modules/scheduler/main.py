"""Reminder scheduler - FastAPI admin service with the background scheduler."""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from modules.scheduler.errors import InvalidScheduleError, ReminderNotFoundError, ReminderStateError
from modules.scheduler.models import ReminderCreateRequest, ReminderUpdateRequest
from modules.scheduler.store import ReminderRegistry, Store, build_store
from modules.scheduler.tools import ReminderTools
from modules.scheduler.transport import RedisTransport
from modules.scheduler.worker import ReminderScheduler
from shared.auth import require_service_auth
from shared.config import get_settings
from shared.database import get_engine, get_session_factory, init_models
from shared.schemas.common import HealthResponse, StatusResponse
from shared.schemas.targets import ChannelTarget, RoleTarget
from shared.target_cache import TargetCache

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()
app = FastAPI(title="Reminder Scheduler", version="1.0.0")

tools: ReminderTools | None = None
_scheduler: ReminderScheduler | None = None
_store: Store | None = None
_redis: aioredis.Redis | None = None
_targets: TargetCache | None = None


@app.on_event("startup")
async def startup():
    global tools, _scheduler, _store, _redis, _targets
    settings = get_settings()

    _redis = aioredis.from_url(settings.redis_url)
    transport = RedisTransport(_redis, settings.notification_channel)
    _targets = TargetCache(_redis)

    session_factory = None
    if settings.store_backend == "database":
        await init_models(get_engine())
        session_factory = get_session_factory()
    _store = build_store(settings, session_factory)

    _scheduler = ReminderScheduler(
        ReminderRegistry(),
        _store,
        transport,
        poll_interval_seconds=settings.poll_interval_seconds,
        horizon_days=settings.schedule_horizon_days,
    )
    await _scheduler.start()
    tools = ReminderTools(_scheduler)
    logger.info("scheduler_module_ready", store_backend=settings.store_backend)


@app.on_event("shutdown")
async def shutdown():
    if _scheduler is not None:
        await _scheduler.shutdown()
    if _store is not None:
        await _store.close()
    if _redis is not None:
        await _redis.aclose()
    logger.info("scheduler_module_shutdown")


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


async def _invalid_schedule_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.info("reminder_rejected", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def _not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _state_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


app.add_exception_handler(InvalidScheduleError, _invalid_schedule_handler)
app.add_exception_handler(ReminderNotFoundError, _not_found_handler)
app.add_exception_handler(ReminderStateError, _state_handler)


def get_tools() -> ReminderTools:
    if tools is None:
        raise HTTPException(status_code=503, detail="Module not ready")
    return tools


def get_target_cache() -> TargetCache:
    if _targets is None:
        raise HTTPException(status_code=503, detail="Module not ready")
    return _targets


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok")


@app.get("/api/status", response_model=StatusResponse)
async def status(reminder_tools: ReminderTools = Depends(get_tools), _=Depends(require_service_auth)):
    return StatusResponse(**reminder_tools.scheduler.status())


@app.get("/api/channels", response_model=list[ChannelTarget])
async def list_channels(target_cache: TargetCache = Depends(get_target_cache), _=Depends(require_service_auth)):
    channels = await target_cache.get_channels()
    if channels is None:
        raise HTTPException(status_code=503, detail="Bot not connected")
    return channels


@app.get("/api/roles/{guild_id}", response_model=list[RoleTarget])
async def list_roles(
    guild_id: str,
    target_cache: TargetCache = Depends(get_target_cache),
    _=Depends(require_service_auth),
):
    if await target_cache.get_channels() is None:
        raise HTTPException(status_code=503, detail="Bot not connected")
    roles = await target_cache.get_roles(guild_id)
    if roles is None:
        raise HTTPException(status_code=404, detail="Guild not found")
    return roles


@app.get("/api/reminders")
async def list_reminders(
    channel_id: str | None = None,
    active_only: bool = False,
    reminder_tools: ReminderTools = Depends(get_tools),
    _=Depends(require_service_auth),
):
    return await reminder_tools.list_reminders(channel_id=channel_id, active_only=active_only)


@app.post("/api/reminders")
async def create_reminder(
    body: ReminderCreateRequest,
    reminder_tools: ReminderTools = Depends(get_tools),
    _=Depends(require_service_auth),
):
    reminder = await reminder_tools.create_reminder(body)
    return {"success": True, "id": reminder["id"], "reminder": reminder}


@app.get("/api/reminders/{reminder_id}")
async def get_reminder(
    reminder_id: int,
    reminder_tools: ReminderTools = Depends(get_tools),
    _=Depends(require_service_auth),
):
    return await reminder_tools.get_reminder(reminder_id)


@app.put("/api/reminders/{reminder_id}")
async def update_reminder(
    reminder_id: int,
    body: ReminderUpdateRequest,
    reminder_tools: ReminderTools = Depends(get_tools),
    _=Depends(require_service_auth),
):
    reminder = await reminder_tools.update_reminder(reminder_id, body)
    return {"success": True, "reminder": reminder}


@app.delete("/api/reminders/{reminder_id}")
async def delete_reminder(
    reminder_id: int,
    reminder_tools: ReminderTools = Depends(get_tools),
    _=Depends(require_service_auth),
):
    return await reminder_tools.delete_reminder(reminder_id)


@app.post("/api/reminders/{reminder_id}/reactivate")
async def reactivate_reminder(
    reminder_id: int,
    reminder_tools: ReminderTools = Depends(get_tools),
    _=Depends(require_service_auth),
):
    reminder = await reminder_tools.reactivate_reminder(reminder_id)
    if not reminder["is_active"]:
        return JSONResponse(
            status_code=409,
            content={
                "success": False,
                "detail": "Reminder has no future eligible time and stays inactive",
                "reminder": reminder,
            },
        )
    return {"success": True, "message": "Reminder reactivated", "reminder": reminder}
