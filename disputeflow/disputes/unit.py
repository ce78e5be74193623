"""Locked unit of work around one dispute"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator
import uuid

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from disputeflow.adapters.notifications import EventSink, publish
from disputeflow.core.exceptions import NotAParty, PhaseClosed, SettlementPending
from disputeflow.core.logging import log
from disputeflow.db.models.dispute import Dispute
from disputeflow.db.models.event import DisputeEvent
from disputeflow.disputes.locks import DisputeLockRegistry, load_for_update
from disputeflow.disputes.phases import DisputePhase, EventType, PartyRole


def jsonable(value: Any) -> Any:
    """Make event payload values JSON friendly."""
    if isinstance(value, dict):
        return {str(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass
class DisputeUnit:
    """A dispute loaded under lock plus the events its change produces."""
    db: AsyncSession
    dispute: Dispute
    events: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    # Set once a ledger call for the outcome has been attempted
    settlement_intent: str | None = None

    def record(
        self,
        event_type: EventType,
        actor_id: uuid.UUID | None,
        actor_role: PartyRole,
        now: datetime,
        payload: dict[str, Any] | None = None,
    ) -> DisputeEvent:
        self.dispute.event_sequence = (self.dispute.event_sequence or 0) + 1
        self.dispute.updated_at = now
        body = jsonable(payload or {})
        event = DisputeEvent(
            dispute_id=self.dispute.id,
            sequence=self.dispute.event_sequence,
            event_type=event_type.value,
            actor_id=actor_id,
            actor_role=actor_role,
            payload=body,
            created_at=now,
        )
        self.db.add(event)
        self.events.append(
            (
                event_type.value,
                {
                    **body,
                    "sequence": event.sequence,
                    "actor_id": jsonable(actor_id),
                    "actor_role": actor_role.value,
                    "phase": self.dispute.phase.value,
                    "at": now.isoformat(),
                },
            )
        )
        return event


@asynccontextmanager
async def locked_dispute(
    session_factory: async_sessionmaker[AsyncSession],
    locks: DisputeLockRegistry,
    sink: EventSink,
    dispute_id: uuid.UUID,
) -> AsyncIterator[DisputeUnit]:
    """Hold the dispute exclusively for one transaction.

    Everything done through the unit commits together or not at all; recorded
    events reach the sink only after a successful commit. The one thing that
    survives a rollback is the settlement intent: once the ledger has been
    called, money may have moved, so the intent is written back before the
    lock is released and only that settlement may complete afterwards.
    """
    async with locks.get(dispute_id):
        async with session_factory() as db:
            unit = None
            try:
                async with db.begin():
                    unit = DisputeUnit(db, await load_for_update(db, dispute_id))
                    yield unit
                    if unit.events:
                        unit.dispute.revision = (unit.dispute.revision or 0) + 1
            except Exception:
                if unit is not None and unit.settlement_intent is not None:
                    await _remember_settlement(db, dispute_id, unit.settlement_intent)
                raise
    publish(sink, dispute_id, unit.events)


async def _remember_settlement(db: AsyncSession, dispute_id: uuid.UUID, intent: str) -> None:
    async with db.begin():
        await db.execute(
            update(Dispute)
            .where(Dispute.id == dispute_id)
            .values(pending_settlement=intent)
            .execution_options(synchronize_session=False)
        )
    log.warning(f"Dispute {dispute_id}: settlement {intent} did not commit, kept as pending")


def require_settled(dispute: Dispute) -> None:
    """Reject changes other than finishing a settlement already sent to the ledger."""
    if dispute.pending_settlement is not None:
        raise SettlementPending(dispute.id, dispute.pending_settlement)


def require_party(dispute: Dispute, user_id: uuid.UUID) -> PartyRole:
    role = dispute.role_of(user_id)
    if role is None:
        raise NotAParty(user_id, dispute.id)
    return role


def require_phase(
    dispute: Dispute,
    *phases: DisputePhase,
    now: datetime | None = None,
) -> None:
    """Reject unless the dispute is in one of `phases` and, given `now`, its deadline is still ahead."""
    if dispute.phase not in phases:
        raise PhaseClosed(dispute.id, dispute.phase)
    if now is not None and dispute.deadline_passed(now):
        raise PhaseClosed(dispute.id, dispute.phase, reason="the deadline for this phase has passed")
