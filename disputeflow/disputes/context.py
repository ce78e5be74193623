"""Snapshot of a dispute handed to the AI mediator"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from disputeflow.db.models.analysis import DisputeAnalysis
from disputeflow.db.models.booking import Booking
from disputeflow.db.models.dispute import Dispute
from disputeflow.db.models.evidence import Evidence
from disputeflow.db.models.mediation import AiMediationOption, PartySelection
from disputeflow.disputes.negotiation import NegotiationLedger
from disputeflow.disputes.phases import EvidenceType, PartyRole


@dataclass(frozen=True)
class EvidenceItem:
    uploader_role: PartyRole
    type: EvidenceType
    url: str
    uploaded_at: datetime


@dataclass(frozen=True)
class OfferItem:
    author_role: PartyRole
    percent_to_customer: int
    message: str | None
    created_at: datetime


@dataclass(frozen=True)
class OptionItem:
    label: str
    title: str
    customer_refund_percent: int
    vendor_payment_percent: int
    is_recommended: bool


@dataclass(frozen=True)
class AnalysisSummary:
    """The parts of a stored analysis that later prompts quote."""
    customer_evidence_strength: str | None = None
    vendor_evidence_strength: str | None = None
    primary_issue: str | None = None
    fault_assessment: str | None = None

    @classmethod
    def from_sections(cls, evidence_analysis: dict, overall_assessment: dict) -> "AnalysisSummary":
        return cls(
            customer_evidence_strength=(evidence_analysis.get("customer") or {}).get("evidenceStrength"),
            vendor_evidence_strength=(evidence_analysis.get("vendor") or {}).get("evidenceStrength"),
            primary_issue=overall_assessment.get("primaryIssue"),
            fault_assessment=overall_assessment.get("faultAssessment"),
        )


@dataclass(frozen=True)
class DisputeContext:
    """Everything the mediator may look at, taken under the dispute lock."""
    dispute_id: uuid.UUID
    booking_id: uuid.UUID
    escrow_amount: Decimal
    currency: str
    opened_by_role: PartyRole
    opened_at: datetime
    snapshot_at: datetime
    reason: str | None = None
    service_title: str | None = None
    evidence: tuple[EvidenceItem, ...] = ()
    offers: tuple[OfferItem, ...] = ()
    options: tuple[OptionItem, ...] = ()
    selections: dict[str, str | None] = field(default_factory=dict)
    analysis: AnalysisSummary | None = None

    def evidence_by(self, role: PartyRole) -> list[EvidenceItem]:
        return [item for item in self.evidence if item.uploader_role is role]

    def offers_by(self, role: PartyRole) -> list[OfferItem]:
        return [item for item in self.offers if item.author_role is role]


async def build_context(db: AsyncSession, dispute: Dispute, now: datetime) -> DisputeContext:
    """Collect oracle input for a dispute.

    Once the mediator has been consulted, evidence uploaded afterwards is left
    out so later calls judge the same record.
    """
    cutoff = dispute.evidence_frozen_at or now

    evidence_rows = (
        await db.execute(
            select(Evidence)
            .where(
                Evidence.dispute_id == dispute.id,
                Evidence.uploaded_at <= cutoff,
                Evidence.removed_at.is_(None),
            )
            .order_by(Evidence.uploaded_at)
        )
    ).scalars().all()

    offers = await NegotiationLedger(db).all(dispute.id)

    option_rows = (
        await db.execute(
            select(AiMediationOption)
            .where(AiMediationOption.dispute_id == dispute.id)
            .order_by(AiMediationOption.label)
        )
    ).scalars().all()
    labels = {option.id: option.label for option in option_rows}

    selection_rows = (
        await db.execute(select(PartySelection).where(PartySelection.dispute_id == dispute.id))
    ).scalars().all()

    analysis = (
        await db.execute(
            select(DisputeAnalysis)
            .where(DisputeAnalysis.dispute_id == dispute.id)
            .order_by(DisputeAnalysis.created_at.desc())
            .limit(1)
        )
    ).scalar_one_or_none()

    booking = await db.get(Booking, dispute.booking_id)

    return DisputeContext(
        dispute_id=dispute.id,
        booking_id=dispute.booking_id,
        escrow_amount=dispute.escrow_amount,
        currency=dispute.currency,
        opened_by_role=dispute.role_of(dispute.opened_by) or PartyRole.CUSTOMER,
        opened_at=dispute.created_at,
        snapshot_at=now,
        reason=dispute.reason,
        service_title=booking.service_title if booking else None,
        evidence=tuple(
            EvidenceItem(row.uploader_role, row.type, row.url, row.uploaded_at)
            for row in evidence_rows
        ),
        offers=tuple(
            OfferItem(row.author_role, row.percent_to_customer, row.message, row.created_at)
            for row in reversed(offers)
        ),
        options=tuple(
            OptionItem(
                row.label,
                row.title,
                row.customer_refund_percent,
                row.vendor_payment_percent,
                row.is_recommended,
            )
            for row in option_rows
        ),
        selections={
            row.role.value: labels.get(row.selected_option_id) for row in selection_rows
        },
        analysis=(
            AnalysisSummary.from_sections(analysis.evidence_analysis, analysis.overall_assessment)
            if analysis is not None
            else None
        ),
    )
