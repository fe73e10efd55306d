"""
Operations API - side-effect delivery status and manual reaper runs.
"""
from fastapi import APIRouter, HTTPException, Query, Request, status
from typing import List, Optional
import logging
import uuid

from ...errors import BookingError, to_http_exception
from ...models import JobStatus
from ...schemas import SideEffectJobResponse, SweepResponse
from ..deps import internal_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ops", tags=["Operations"])


def _worker(request: Request, name: str):
    worker = getattr(request.app.state, name, None)
    if worker is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "UNAVAILABLE", "message": f"{name} is not configured"},
        )
    return worker


@router.get("/side-effects", response_model=List[SideEffectJobResponse])
async def list_side_effects(
    request: Request,
    job_status: Optional[JobStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
):
    """List outbox jobs; `status=FAILED` shows deliveries that need staff attention."""
    try:
        jobs = await _worker(request, "dispatcher").list_jobs(job_status, limit)
        return [SideEffectJobResponse.from_model(job) for job in jobs]
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("list side effects", e)


@router.post("/side-effects/{job_id}/retry", response_model=SideEffectJobResponse)
async def retry_side_effect(job_id: uuid.UUID, request: Request):
    """Re-queue a FAILED job with a fresh attempt budget."""
    try:
        job = await _worker(request, "dispatcher").requeue(job_id)
        return SideEffectJobResponse.from_model(job)
    except BookingError as e:
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("retry side effect", e)


@router.post("/reaper/run", response_model=SweepResponse)
async def run_reaper(request: Request):
    """Run one deadline sweep now."""
    try:
        report = await _worker(request, "reaper").sweep()
        return SweepResponse(
            scanned=report.scanned,
            expired=report.expired,
            skipped=report.skipped,
            errors=report.errors,
            closed_flights=report.closed_flights,
            expired_references=report.expired_references,
        )
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("run reaper", e)
