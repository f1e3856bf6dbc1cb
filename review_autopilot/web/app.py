"""
FastAPI Web Application - Review Autopilot Control Surface
===========================================================

Starts the automation engine with the server and exposes a small JSON API
for operators: status, an on-demand cycle, the manual queue, and
recording a manual reply for a critical review.
"""

import logging
from dataclasses import asdict
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, BackgroundTasks
from pydantic import BaseModel

from review_autopilot import __version__
from review_autopilot.application import AutomationEngine, CycleReport
from review_autopilot.domain import InvalidTransitionError, ManualQueueStatus, Review
from review_autopilot.infrastructure.persistence import ReviewNotFoundError

logger = logging.getLogger(__name__)

# ── Globals ────────────────────────────────────────────────────────
engine: Optional[AutomationEngine] = None


# ── Lifespan ───────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    global engine
    if engine is None:
        engine = AutomationEngine.from_settings()
        for issue in engine.settings.validate():
            logger.warning(issue)
    engine.start()
    logger.info("Review automation ready")
    yield
    engine.stop()


app = FastAPI(title="Review Autopilot", description="Google review automation engine", lifespan=lifespan)


class ManualReplyRequest(BaseModel):
    reply_text: str


def _get_engine() -> AutomationEngine:
    if engine is None:
        raise HTTPException(status_code=503, detail="Automation engine not initialized")
    return engine


def _review_payload(review: Review) -> dict:
    data = asdict(review)
    data["status"] = review.status.value
    data["created_at"] = review.created_at.isoformat()
    data["updated_at"] = review.updated_at.isoformat()
    return data


def _report_payload(report: Optional[CycleReport]) -> Optional[dict]:
    if report is None:
        return None
    data = asdict(report)
    data["started_at"] = report.started_at.isoformat()
    data["finished_at"] = report.finished_at.isoformat() if report.finished_at else None
    return data


# ── API Endpoints ──────────────────────────────────────────────────

@app.get("/health")
async def health():
    return {"status": "ok", "version": __version__}


@app.get("/api/automation/status")
async def automation_status():
    current = _get_engine()
    return {
        "enabled": current.settings.automation.enabled,
        "running": current.is_running,
        "cycle_in_progress": current.is_cycle_in_progress,
        "polling_interval_minutes": current.settings.automation.polling_interval_minutes,
        "last_report": _report_payload(current.last_report),
    }


@app.post("/api/automation/run", status_code=202)
async def run_automation(background_tasks: BackgroundTasks):
    current = _get_engine()
    if current.is_cycle_in_progress:
        return {"message": "A cycle is already in progress"}
    background_tasks.add_task(current.run_cycle)
    return {"message": "Cycle started in background"}


@app.get("/api/manual-queue")
def manual_queue(limit: int = 100):
    current = _get_engine()
    items = []
    for entry in current.queue.list_by_status(ManualQueueStatus.PENDING, limit=limit):
        review = current.reviews.get(entry.review_id)
        items.append({
            "id": entry.id,
            "review_id": entry.review_id,
            "outlet_id": entry.outlet_id,
            "reminder_count": entry.reminder_count,
            "next_reminder_at": entry.next_reminder_at.isoformat() if entry.next_reminder_at else None,
            "created_at": entry.created_at.isoformat(),
            "review": _review_payload(review) if review else None,
        })
    return {"items": items}


@app.post("/api/reviews/{review_id}/manual-reply")
def manual_reply(review_id: str, body: ManualReplyRequest):
    current = _get_engine()
    try:
        review = current.record_manual_reply(review_id, body.reply_text)
    except ReviewNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"review": _review_payload(review)}
