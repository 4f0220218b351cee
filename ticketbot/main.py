"""
ticketbot/main.py
FastAPI host for the polling engine plus operational endpoints.
Endpoints: GET /health, GET /tracking/recent, POST /tickets/{number}/process
"""

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query

from ticketbot.common.log_setup import configure_logging
from ticketbot.config import Settings
from ticketbot.engine import Engine, RunMode
from ticketbot.models import Outcome
from ticketbot.runtime import build_engine

logger = logging.getLogger(__name__)
load_dotenv()


@dataclass
class AppRuntime:
    """Engine handle shared by the lifespan hook and the endpoints."""

    engine: Engine | None = None
    poller: threading.Thread | None = None


runtime = AppRuntime()


def start_engine(settings: Settings) -> None:
    """Build the engine and, when enabled, start polling in a background thread (best-effort)."""
    try:
        runtime.engine = build_engine(settings)
    except Exception:
        logger.exception("Failed to build the ticket engine; API runs without it.")
        return
    if not settings.polling_enabled:
        logger.info("Polling disabled via TICKETBOT_POLLING_ENABLED.")
        return
    runtime.poller = threading.Thread(
        target=runtime.engine.run, args=(RunMode.POLL,), name="ticket-poller", daemon=True
    )
    runtime.poller.start()


def stop_engine() -> None:
    """Stop polling and drain in-flight tickets."""
    engine = runtime.engine
    if engine is None:
        return
    engine.stop()
    if runtime.poller is not None:
        runtime.poller.join()
    engine.shutdown()
    runtime.engine = None
    runtime.poller = None


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """FastAPI lifespan hook: start polling on startup, drain on shutdown."""
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_file)
    start_engine(settings)
    yield
    await asyncio.to_thread(stop_engine)


app = FastAPI(title="TicketBot", lifespan=lifespan)


def _require_engine() -> Engine:
    if runtime.engine is None:
        raise HTTPException(status_code=503, detail="Ticket engine is not running.")
    return runtime.engine


@app.get("/health")
def health_check() -> dict[str, str]:
    """Return service health status."""
    return {"status": "ok"}


@app.get("/tracking/recent")
def tracking_recent(limit: int = Query(default=20, ge=1, le=500)) -> dict[str, Any]:
    """Return the most recently processed tickets, newest first."""
    engine = _require_engine()
    records = engine.tracker.recent(limit)
    return {
        "count": len(records),
        "records": [
            {
                "ticket_id": record.ticket_id,
                "last_seen_volume": record.last_seen_volume,
                "processed_at": record.processed_at.isoformat(),
            }
            for record in records
        ],
    }


@app.post("/tickets/{number}/process")
def process_ticket(number: str, force: bool = False) -> dict[str, str]:
    """
    Run single-ticket mode for one ticket number.

    Raises:
        HTTPException 404: Ticket not found.
        HTTPException 409: Ticket already queued or running on a worker.
        HTTPException 503: Engine not running.
    """
    engine = _require_engine()
    outcome = engine.run_single(number, force=force)
    if outcome is None:
        raise HTTPException(status_code=404, detail=f"Ticket {number} not found.")
    if outcome is Outcome.SKIPPED_IN_FLIGHT:
        raise HTTPException(status_code=409, detail=f"Ticket {number} is already being processed.")
    return {"status": outcome.value, "ticket_number": number}
