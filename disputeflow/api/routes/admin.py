"""Admin routes - escalation scheduler control"""

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from disputeflow.api.dependencies import Scheduler
from disputeflow.core.logging import log
from disputeflow.core.security import get_require_admin

router = APIRouter()

# Admin dependency
RequireAdmin = Annotated[str, Depends(get_require_admin())]


class TickResultResponse(BaseModel):
    dispute_id: str
    outcome: str | None
    error: str | None


class SweepResponse(BaseModel):
    processed: int
    failed: int
    results: list[TickResultResponse]


class SchedulerStatusResponse(BaseModel):
    running: bool
    interval_seconds: float


@router.get("/scheduler", response_model=SchedulerStatusResponse)
async def scheduler_status(admin_id: RequireAdmin, scheduler: Scheduler):
    return SchedulerStatusResponse(running=scheduler.running, interval_seconds=scheduler.interval_seconds)


@router.post("/scheduler/sweep", response_model=SweepResponse)
async def run_sweep(admin_id: RequireAdmin, scheduler: Scheduler):
    """Run one escalation sweep now instead of waiting for the next interval."""
    log.info(f"Manual escalation sweep requested by {admin_id}")
    results = await scheduler.run_once()
    return SweepResponse(
        processed=len(results),
        failed=sum(1 for r in results if r.failed),
        results=[
            TickResultResponse(
                dispute_id=str(r.dispute_id),
                outcome=r.outcome.value if r.outcome else None,
                error=r.error,
            )
            for r in results
        ],
    )
