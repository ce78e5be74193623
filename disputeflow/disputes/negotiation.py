"""Negotiation ledger: append-only counter-offer log per dispute"""

from datetime import datetime
import uuid

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from disputeflow.db.models.negotiation import CounterOffer
from disputeflow.db.types import utcnow
from disputeflow.disputes.money import validate_percent
from disputeflow.disputes.phases import PartyRole


class NegotiationLedger:
    """Offer history for disputes, newest first.

    Offers are only ever appended. Ordering is created_at, with the per-dispute
    insertion sequence breaking ties so `latest` is deterministic. Callers
    mutating the ledger must hold the dispute lock.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _next_sequence(self, dispute_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.max(CounterOffer.sequence)).where(CounterOffer.dispute_id == dispute_id)
        )
        return (result.scalar() or 0) + 1

    async def append(
        self,
        dispute_id: uuid.UUID,
        author_id: uuid.UUID,
        author_role: PartyRole,
        percent_to_customer: int,
        message: str | None = None,
        created_at: datetime | None = None,
    ) -> CounterOffer:
        validate_percent(percent_to_customer)
        offer = CounterOffer(
            dispute_id=dispute_id,
            author_id=author_id,
            author_role=author_role,
            percent_to_customer=percent_to_customer,
            message=message,
            sequence=await self._next_sequence(dispute_id),
            created_at=created_at or utcnow(),
        )
        self.db.add(offer)
        await self.db.flush()
        return offer

    async def latest(self, dispute_id: uuid.UUID) -> CounterOffer | None:
        result = await self.db.execute(
            select(CounterOffer)
            .where(CounterOffer.dispute_id == dispute_id)
            .order_by(CounterOffer.created_at.desc(), CounterOffer.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def all(self, dispute_id: uuid.UUID) -> list[CounterOffer]:
        result = await self.db.execute(
            select(CounterOffer)
            .where(CounterOffer.dispute_id == dispute_id)
            .order_by(CounterOffer.created_at.desc(), CounterOffer.sequence.desc())
        )
        return list(result.scalars().all())

    async def get(self, dispute_id: uuid.UUID, offer_id: uuid.UUID) -> CounterOffer | None:
        result = await self.db.execute(
            select(CounterOffer).where(
                CounterOffer.id == offer_id,
                CounterOffer.dispute_id == dispute_id,
            )
        )
        return result.scalar_one_or_none()
