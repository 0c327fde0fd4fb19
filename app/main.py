import asyncio
import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from app.config import settings
from app.database import SessionLocal, get_db, init_db
from app.logging_config import get_logger, setup_logging
from app.models import ChannelIntegration, Conversation, Message, Order
from app.routers import admin, ai, webhooks
from app.services.scheduler_service import run_sweep

setup_logging(settings.log_level)

app = FastAPI(
    title="Unified Inbox API",
    description="Channel webhooks, debounced AI replies and order extraction",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhooks.router)
app.include_router(ai.router)
app.include_router(admin.router)

sweep_logger = get_logger("sweep_worker")
_sweep_worker_task: asyncio.Task | None = None


def _is_sweep_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.sweep_worker_enabled


def _run_sweep_once() -> dict:
    db = SessionLocal()
    try:
        report = run_sweep(db, ai.get_llm_provider())
        return report.counts()
    finally:
        db.close()


async def _sweep_worker_loop() -> None:
    interval_seconds = max(settings.sweep_interval_seconds, 0.5)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            counts = await asyncio.to_thread(_run_sweep_once)
            if counts:
                sweep_logger.info("Sweep worker processed", extra={"context": counts})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            sweep_logger.error(
                "Sweep worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def startup() -> None:
    global _sweep_worker_task
    if settings.auto_create_schema:
        init_db()
    if not _is_sweep_worker_enabled():
        return
    if _sweep_worker_task is None or _sweep_worker_task.done():
        _sweep_worker_task = asyncio.create_task(_sweep_worker_loop())
        sweep_logger.info("Sweep worker started")


@app.on_event("shutdown")
async def shutdown() -> None:
    global _sweep_worker_task
    if _sweep_worker_task is None:
        return
    _sweep_worker_task.cancel()
    try:
        await _sweep_worker_task
    except asyncio.CancelledError:
        pass
    _sweep_worker_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "integrations": db.query(ChannelIntegration).filter(ChannelIntegration.is_connected.is_(True)).count(),
        "conversations": db.query(Conversation).count(),
        "messages": db.query(Message).count(),
        "orders": db.query(Order).count(),
    }
