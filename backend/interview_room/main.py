from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import asyncio
import logging
import os

from interview_room.api.session_routes import router as session_router
from interview_room.core.config import QA_MODE, SESSION_CLEANUP_INTERVAL_SEC, SESSION_CLEANUP_TTL_SEC
from interview_room.core.state import ACTIVE_ATTEMPT_STATES
from interview_room.session.registry import session_registry
from interview_room.system_metrics import get_metrics_snapshot, set_metric

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

app = FastAPI(title="Interview Room")
logger = logging.getLogger("app.main")


def _get_allowed_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if not raw:
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
    return [item.strip() for item in raw.split(",") if item.strip()]


_allowed_origins = _get_allowed_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(session_router)

_session_cleanup_task: asyncio.Task | None = None


def _is_unattended(controller) -> bool:
    if controller is None:
        return True
    return controller.subscriber_count == 0 and controller.state not in ACTIVE_ATTEMPT_STATES


@app.on_event("startup")
async def startup_banner():
    global _session_cleanup_task
    if QA_MODE:
        logger.info("[SYSTEM] QA_MODE ENABLED: microphone capture bypassed")
    logger.info("[SYSTEM] CORS allow_origins=%s", _allowed_origins)

    async def _session_cleanup_loop():
        while True:
            await asyncio.sleep(SESSION_CLEANUP_INTERVAL_SEC)
            expired = session_registry.expire_unattended(SESSION_CLEANUP_TTL_SEC, _is_unattended)
            if expired:
                logger.info("[SYSTEM] marked unattended sessions inactive=%s", expired)
                set_metric("sessions_active", session_registry.active_count())
            removed = session_registry.cleanup_inactive(SESSION_CLEANUP_TTL_SEC)
            for controller in removed:
                if controller is not None:
                    await controller.stop()
            if removed:
                logger.info("[SYSTEM] cleaned inactive sessions=%s", len(removed))
                set_metric("sessions_active", session_registry.active_count())

    _session_cleanup_task = asyncio.create_task(_session_cleanup_loop())


@app.on_event("shutdown")
async def shutdown_handler():
    global _session_cleanup_task
    if _session_cleanup_task is not None:
        _session_cleanup_task.cancel()
        try:
            await _session_cleanup_task
        except asyncio.CancelledError:
            pass
        finally:
            _session_cleanup_task = None
    for controller in session_registry.controllers():
        if controller is not None:
            await controller.stop()
    logger.info("[SYSTEM] shutdown complete")


@app.get("/healthz")
async def healthz():
    return {"status": "ok", "service": "interview-room"}


@app.get("/api/system/metrics")
def system_metrics_route():
    return get_metrics_snapshot(extra={
        "sessions_registered_active": session_registry.active_count(),
    })
