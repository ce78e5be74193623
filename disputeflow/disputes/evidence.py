"""Evidence store: attach, list and withdraw dispute evidence"""

from datetime import datetime
from typing import Callable
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from disputeflow.adapters.notifications import EventSink, default_sink
from disputeflow.core.exceptions import AuthorizationError, EvidenceFrozen, NotFoundError, PhaseClosed
from disputeflow.core.logging import log
from disputeflow.db.models.evidence import Evidence
from disputeflow.db.types import utcnow
from disputeflow.disputes.locks import DisputeLockRegistry, dispute_locks
from disputeflow.disputes.phases import EventType, EvidenceType
from disputeflow.disputes.unit import locked_dispute, require_party


async def list_evidence(db: AsyncSession, dispute_id: uuid.UUID) -> list[Evidence]:
    """Evidence still on file for a dispute, oldest first."""
    result = await db.execute(
        select(Evidence)
        .where(Evidence.dispute_id == dispute_id, Evidence.removed_at.is_(None))
        .order_by(Evidence.uploaded_at, Evidence.id)
    )
    return list(result.scalars().all())


class EvidenceService:
    """Evidence writes share the dispute lock so timeline order stays exact."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sink: EventSink | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        locks: DisputeLockRegistry = dispute_locks,
    ):
        self.session_factory = session_factory
        self.sink = sink or default_sink()
        self.clock = clock
        self.locks = locks

    async def attach(
        self,
        dispute_id: uuid.UUID,
        user_id: uuid.UUID,
        url: str,
        evidence_type: EvidenceType,
        original_filename: str | None = None,
        file_size: int | None = None,
    ) -> Evidence:
        now = self.clock()
        async with locked_dispute(self.session_factory, self.locks, self.sink, dispute_id) as unit:
            dispute = unit.dispute
            role = require_party(dispute, user_id)
            if dispute.is_closed:
                raise PhaseClosed(dispute.id, dispute.phase, reason="evidence can no longer be added")

            evidence = Evidence(
                dispute_id=dispute.id,
                uploader_id=user_id,
                uploader_role=role,
                url=url,
                type=EvidenceType(evidence_type),
                original_filename=original_filename,
                file_size=file_size,
                uploaded_at=now,
            )
            unit.db.add(evidence)
            await unit.db.flush()
            unit.record(
                EventType.EVIDENCE_SUBMITTED,
                user_id,
                role,
                now,
                {"evidence_id": evidence.id, "type": evidence.type, "url": url},
            )
        log.info(f"Dispute {dispute_id}: {role.value} attached {evidence.type.value} evidence {evidence.id}")
        return evidence

    async def list(self, dispute_id: uuid.UUID) -> list[Evidence]:
        async with self.session_factory() as db:
            return await list_evidence(db, dispute_id)

    async def remove(self, dispute_id: uuid.UUID, user_id: uuid.UUID, evidence_id: uuid.UUID) -> Evidence:
        """Withdraw evidence. Only its uploader may, and not once the mediator has seen it."""
        now = self.clock()
        async with locked_dispute(self.session_factory, self.locks, self.sink, dispute_id) as unit:
            dispute = unit.dispute
            role = require_party(dispute, user_id)
            if dispute.is_closed:
                raise PhaseClosed(dispute.id, dispute.phase, reason="evidence can no longer be removed")

            evidence = (
                await unit.db.execute(
                    select(Evidence).where(
                        Evidence.id == evidence_id,
                        Evidence.dispute_id == dispute.id,
                        Evidence.removed_at.is_(None),
                    )
                )
            ).scalar_one_or_none()
            if evidence is None:
                raise NotFoundError("Evidence", str(evidence_id))
            if evidence.uploader_id != user_id:
                raise AuthorizationError("Only the uploader can remove this evidence")
            if dispute.evidence_frozen_at is not None and evidence.uploaded_at <= dispute.evidence_frozen_at:
                raise EvidenceFrozen(evidence.id)

            evidence.removed_at = now
            unit.record(
                EventType.EVIDENCE_REMOVED,
                user_id,
                role,
                now,
                {"evidence_id": evidence.id},
            )
        log.info(f"Dispute {dispute_id}: {role.value} removed evidence {evidence_id}")
        return evidence
