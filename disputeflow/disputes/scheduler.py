"""Escalation scheduler: drives every deadline-based transition"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
import uuid

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from disputeflow.config import settings
from disputeflow.core.exceptions import AppException
from disputeflow.core.logging import log
from disputeflow.db.models.dispute import Dispute
from disputeflow.disputes.phases import DisputePhase
from disputeflow.disputes.state_machine import DisputeStateMachine, TickOutcome


@dataclass(frozen=True)
class TickResult:
    dispute_id: uuid.UUID
    outcome: TickOutcome | None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class EscalationScheduler:
    """Periodic sweep over disputes whose current phase deadline has passed.

    Overlapping sweeps are harmless: each tick takes the dispute lock and
    re-checks the phase, so the second one to arrive is a no-op.
    """

    def __init__(
        self,
        state_machine: DisputeStateMachine,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        interval_seconds: float | None = None,
    ):
        self.state_machine = state_machine
        self.session_factory = session_factory or state_machine.session_factory
        self.interval_seconds = interval_seconds or float(settings.SCHEDULER_INTERVAL_SECONDS)
        self._task: asyncio.Task | None = None

    async def scan_due_deadlines(self, now: datetime) -> list[uuid.UUID]:
        """Ids of disputes whose current phase deadline has elapsed, or whose settlement is unfinished."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(Dispute.id)
                .where(
                    or_(
                        Dispute.pending_settlement.is_not(None),
                        and_(Dispute.phase == DisputePhase.PHASE_1, Dispute.phase1_deadline <= now),
                        and_(Dispute.phase == DisputePhase.PHASE_2, Dispute.phase2_deadline <= now),
                        and_(
                            Dispute.phase == DisputePhase.PHASE_3_PENDING,
                            Dispute.phase3_review_deadline <= now,
                        ),
                    )
                )
                .order_by(Dispute.created_at)
            )
            return list(result.scalars().all())

    async def run_once(self, now: datetime | None = None) -> list[TickResult]:
        """Tick every due dispute once.

        A dispute whose tick fails with a caller-facing error (mediator down,
        ledger unavailable, ...) is logged and retried on the next sweep.
        """
        now = now or self.state_machine.clock()
        due = await self.scan_due_deadlines(now)
        if due:
            log.info(f"Escalation sweep: {len(due)} dispute(s) past deadline")

        results = []
        for dispute_id in due:
            try:
                outcome = await self.state_machine.tick(dispute_id, now)
            except AppException as e:
                log.warning(f"Escalation sweep: tick failed for dispute {dispute_id}: {e.message}")
                results.append(TickResult(dispute_id, None, e.code))
                continue
            results.append(TickResult(dispute_id, outcome))
        return results

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                log.exception("Escalation sweep crashed")
            await asyncio.sleep(self.interval_seconds)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        log.info(f"Escalation scheduler started (every {self.interval_seconds:g}s)")
        self._task = asyncio.get_running_loop().create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        log.info("Escalation scheduler stopped")
