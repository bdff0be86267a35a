from fastapi import FastAPI

from app.db import async_session
from app.engine.models import QueuedAttempt
from app.engine.queue import JsonFileListStorage, OfflineAttemptQueue
from app.engine.reachability import FlushCoordinator
from app.engine.router import router as engine_router
from app.engine.store import SqlVerificationStore
from app.engine.verification import VerificationService

app = FastAPI(title="GoalEngine", version="0.1.0")
app.include_router(engine_router)


async def replay_queued_attempt(attempt: QueuedAttempt) -> bool:
    # Flushes outlive the request that triggered them, so each replay opens its own session.
    async with async_session() as session:
        return await VerificationService(SqlVerificationStore(session)).process_queued(attempt)


app.state.flush_coordinator = FlushCoordinator(OfflineAttemptQueue(JsonFileListStorage()), replay_queued_attempt)


@app.get("/")
async def root() -> dict:
    return {
        "status": "ok",
        "docs": "/docs",
        "health": "/health",
        "engine": {
            "occurrences": "/engine/occurrences",
            "occurrences_preview": "/engine/occurrences/preview",
            "evaluate": "/engine/evaluate",
            "policies": "/engine/policies",
            "verifications": "/engine/verifications",
            "goal_frequency": "/engine/goals/{goal_id}/frequency",
            "queue": "/engine/queue",
            "queue_flush": "/engine/queue/flush",
            "reachability": "/engine/reachability",
        },
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
