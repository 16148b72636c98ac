import asyncio
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import SESSION_CLEANUP_INTERVAL_SEC, SESSION_CLEANUP_TTL_SEC
from core.logger import configure_logging
from live_assist.api.ws_live import router as live_ws_router
from live_assist.schemas import HealthResponse
from live_assist.session.registry import SessionRegistry, session_registry

configure_logging()

app = FastAPI(title="Live Interview Assist")
logger = logging.getLogger("live_assist.main")

_session_cleanup_task: asyncio.Task | None = None


def _get_allowed_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if not raw:
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


_allowed_origins = _get_allowed_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def session_cleanup_loop(
    registry: SessionRegistry,
    interval_sec: float = SESSION_CLEANUP_INTERVAL_SEC,
    ttl_sec: float = SESSION_CLEANUP_TTL_SEC,
) -> None:
    while True:
        await asyncio.sleep(interval_sec)
        removed = registry.cleanup_inactive(ttl_sec)
        if removed > 0:
            logger.info("[SYSTEM] cleaned inactive sessions=%s", removed)


@app.on_event("startup")
async def startup_banner():
    global _session_cleanup_task
    logger.info("[SYSTEM] CORS allow_origins=%s", _allowed_origins)
    logger.info(
        "[SYSTEM] session cleanup interval_sec=%s ttl_sec=%s",
        SESSION_CLEANUP_INTERVAL_SEC,
        SESSION_CLEANUP_TTL_SEC,
    )
    _session_cleanup_task = asyncio.create_task(session_cleanup_loop(session_registry))


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
    logger.info("[SYSTEM] shutdown complete")


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok", active_sessions=session_registry.active_count())


app.include_router(live_ws_router)
