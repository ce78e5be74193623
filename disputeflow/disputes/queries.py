"""Read accessors. None of these take the dispute lock."""

import uuid

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from disputeflow.core.exceptions import NotFoundError, ValidationError
from disputeflow.db.models.analysis import DisputeAnalysis
from disputeflow.db.models.decision import AiDecision
from disputeflow.db.models.dispute import Dispute
from disputeflow.db.models.event import DisputeEvent
from disputeflow.db.models.mediation import AiMediationOption, PartySelection
from disputeflow.db.models.negotiation import CounterOffer
from disputeflow.disputes.negotiation import NegotiationLedger
from disputeflow.disputes.phases import ACTIVE_PHASES, TERMINAL_PHASES

STATUS_FILTERS = ("all", "active", "resolved")


async def get_dispute(db: AsyncSession, dispute_id: uuid.UUID) -> Dispute:
    dispute = await db.get(Dispute, dispute_id)
    if dispute is None:
        raise NotFoundError("Dispute", str(dispute_id))
    return dispute


async def get_offers(db: AsyncSession, dispute_id: uuid.UUID) -> list[CounterOffer]:
    """Offer history, newest first."""
    return await NegotiationLedger(db).all(dispute_id)


async def get_options(db: AsyncSession, dispute_id: uuid.UUID) -> list[AiMediationOption]:
    result = await db.execute(
        select(AiMediationOption)
        .where(AiMediationOption.dispute_id == dispute_id)
        .order_by(AiMediationOption.label)
    )
    return list(result.scalars().all())


async def get_selections(db: AsyncSession, dispute_id: uuid.UUID) -> list[PartySelection]:
    result = await db.execute(select(PartySelection).where(PartySelection.dispute_id == dispute_id))
    return list(result.scalars().all())


async def get_decision(db: AsyncSession, dispute_id: uuid.UUID) -> AiDecision | None:
    result = await db.execute(select(AiDecision).where(AiDecision.dispute_id == dispute_id))
    return result.scalar_one_or_none()


async def get_analysis(db: AsyncSession, dispute_id: uuid.UUID) -> DisputeAnalysis | None:
    """Most recent mediator analysis, None before the dispute reached mediation."""
    result = await db.execute(
        select(DisputeAnalysis)
        .where(DisputeAnalysis.dispute_id == dispute_id)
        .order_by(DisputeAnalysis.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_timeline(db: AsyncSession, dispute_id: uuid.UUID) -> list[DisputeEvent]:
    result = await db.execute(
        select(DisputeEvent)
        .where(DisputeEvent.dispute_id == dispute_id)
        .order_by(DisputeEvent.created_at, DisputeEvent.sequence)
    )
    return list(result.scalars().all())


async def list_disputes_for_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    status: str = "all",
) -> list[Dispute]:
    """Disputes the user is a party to, newest first.

    `status` is one of all, active (still running) or resolved (any closed phase).
    """
    if status not in STATUS_FILTERS:
        raise ValidationError(f"Unknown status filter: {status}", details={"accepted": list(STATUS_FILTERS)})

    query = select(Dispute).where(or_(Dispute.customer_id == user_id, Dispute.vendor_id == user_id))
    if status == "active":
        query = query.where(Dispute.phase.in_(ACTIVE_PHASES))
    elif status == "resolved":
        query = query.where(Dispute.phase.in_(TERMINAL_PHASES))

    result = await db.execute(query.order_by(Dispute.created_at.desc()))
    return list(result.scalars().all())
