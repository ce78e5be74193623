"""Dispute routes: lifecycle actions and read views"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field
from fastapi import APIRouter, Query, status

from disputeflow.api.dependencies import CurrentUserId, DBSession, StateMachine
from disputeflow.db.models.analysis import DisputeAnalysis
from disputeflow.db.models.decision import AiDecision
from disputeflow.db.models.dispute import Dispute
from disputeflow.db.models.event import DisputeEvent
from disputeflow.db.models.mediation import AiMediationOption
from disputeflow.db.models.negotiation import CounterOffer
from disputeflow.disputes import queries
from disputeflow.disputes.phases import EvidenceType
from disputeflow.disputes.state_machine import EvidenceRef
from disputeflow.disputes.unit import require_party

router = APIRouter()


class EvidenceRefIn(BaseModel):
    url: str = Field(max_length=1000)
    type: EvidenceType
    original_filename: str | None = None


class DisputeOpen(BaseModel):
    booking_id: uuid.UUID
    reason: str | None = None
    evidence: list[EvidenceRefIn] = []


class OfferCreate(BaseModel):
    percent_to_customer: int
    message: str | None = None


class EscalationRequest(BaseModel):
    oracle_timeout_seconds: float | None = Field(default=None, gt=0)


class DisputeResponse(BaseModel):
    id: str
    booking_id: str
    customer_id: str
    vendor_id: str
    opened_by: str
    reason: str | None
    escrow_amount: float
    currency: str
    phase: str
    is_closed: bool
    # Deadlines
    phase1_deadline: str | None
    phase2_deadline: str | None
    phase3_review_deadline: str | None
    active_deadline: str | None
    time_remaining_seconds: int | None
    # Outcome
    final_customer_percent: int | None
    final_vendor_percent: int | None
    resolution_path: str | None
    external_resolution_by: str | None
    resolved_at: str | None
    settlement_pending: bool
    # Meta
    revision: int
    created_at: str
    updated_at: str


class OfferResponse(BaseModel):
    id: str
    dispute_id: str
    author_id: str
    author_role: str
    percent_to_customer: int
    percent_to_vendor: int
    message: str | None
    created_at: str


class OptionResponse(BaseModel):
    id: str
    label: str
    title: str
    customer_refund_percent: int
    vendor_payment_percent: int
    customer_refund_amount: float
    vendor_payment_amount: float
    reasoning: str
    key_factors: list[str]
    is_recommended: bool
    selected_by: list[str]


class DecisionResponse(BaseModel):
    id: str
    customer_refund_percent: int
    vendor_payment_percent: int
    customer_refund_amount: float
    vendor_payment_amount: float
    decision_summary: str
    full_reasoning: str
    key_factors: list[str]
    status: str
    auto_executed: bool
    executed_at: str | None
    overridden_by: str | None
    overridden_at: str | None
    created_at: str


class AnalysisResponse(BaseModel):
    id: str
    evidence_analysis: dict
    description_analysis: dict
    behavior_analysis: dict
    overall_assessment: dict
    ai_model: str | None
    created_at: str


class EventResponse(BaseModel):
    sequence: int
    event_type: str
    actor_id: str | None
    actor_role: str
    payload: dict
    created_at: str


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _value(member) -> str | None:
    return member.value if member is not None else None


def _dispute_to_response(d: Dispute, now: datetime) -> DisputeResponse:
    remaining = d.time_remaining(now)
    return DisputeResponse(
        id=str(d.id),
        booking_id=str(d.booking_id),
        customer_id=str(d.customer_id),
        vendor_id=str(d.vendor_id),
        opened_by=str(d.opened_by),
        reason=d.reason,
        escrow_amount=float(d.escrow_amount),
        currency=d.currency,
        phase=d.phase.value,
        is_closed=d.is_closed,
        phase1_deadline=_iso(d.phase1_deadline),
        phase2_deadline=_iso(d.phase2_deadline),
        phase3_review_deadline=_iso(d.phase3_review_deadline),
        active_deadline=_iso(d.active_deadline),
        time_remaining_seconds=int(remaining.total_seconds()) if remaining is not None else None,
        final_customer_percent=d.final_customer_percent,
        final_vendor_percent=d.final_vendor_percent,
        resolution_path=_value(d.resolution_path),
        external_resolution_by=_value(d.external_resolution_by),
        resolved_at=_iso(d.resolved_at),
        settlement_pending=d.pending_settlement is not None,
        revision=d.revision,
        created_at=d.created_at.isoformat(),
        updated_at=d.updated_at.isoformat(),
    )


def _offer_to_response(o: CounterOffer) -> OfferResponse:
    return OfferResponse(
        id=str(o.id),
        dispute_id=str(o.dispute_id),
        author_id=str(o.author_id),
        author_role=o.author_role.value,
        percent_to_customer=o.percent_to_customer,
        percent_to_vendor=o.percent_to_vendor,
        message=o.message,
        created_at=o.created_at.isoformat(),
    )


def _option_to_response(o: AiMediationOption, selected_by: list[str]) -> OptionResponse:
    return OptionResponse(
        id=str(o.id),
        label=o.label,
        title=o.title,
        customer_refund_percent=o.customer_refund_percent,
        vendor_payment_percent=o.vendor_payment_percent,
        customer_refund_amount=float(o.customer_refund_amount),
        vendor_payment_amount=float(o.vendor_payment_amount),
        reasoning=o.reasoning,
        key_factors=o.key_factors or [],
        is_recommended=o.is_recommended,
        selected_by=selected_by,
    )


def _decision_to_response(d: AiDecision) -> DecisionResponse:
    return DecisionResponse(
        id=str(d.id),
        customer_refund_percent=d.customer_refund_percent,
        vendor_payment_percent=d.vendor_payment_percent,
        customer_refund_amount=float(d.customer_refund_amount),
        vendor_payment_amount=float(d.vendor_payment_amount),
        decision_summary=d.decision_summary,
        full_reasoning=d.full_reasoning,
        key_factors=d.key_factors or [],
        status=d.status.value,
        auto_executed=d.auto_executed,
        executed_at=_iso(d.executed_at),
        overridden_by=_value(d.overridden_by),
        overridden_at=_iso(d.overridden_at),
        created_at=d.created_at.isoformat(),
    )


def _analysis_to_response(a: DisputeAnalysis) -> AnalysisResponse:
    return AnalysisResponse(
        id=str(a.id),
        evidence_analysis=a.evidence_analysis or {},
        description_analysis=a.description_analysis or {},
        behavior_analysis=a.behavior_analysis or {},
        overall_assessment=a.overall_assessment or {},
        ai_model=a.ai_model,
        created_at=a.created_at.isoformat(),
    )


def _event_to_response(e: DisputeEvent) -> EventResponse:
    return EventResponse(
        sequence=e.sequence,
        event_type=e.event_type,
        actor_id=str(e.actor_id) if e.actor_id else None,
        actor_role=e.actor_role.value,
        payload=e.payload or {},
        created_at=e.created_at.isoformat(),
    )


async def _party_dispute(db, dispute_id: uuid.UUID, user_id: uuid.UUID) -> Dispute:
    """Load a dispute the caller is a party to."""
    dispute = await queries.get_dispute(db, dispute_id)
    require_party(dispute, user_id)
    return dispute


# ─── Disputes ────────────────────────────────────────

@router.get("", response_model=list[DisputeResponse])
async def list_disputes(
    user_id: CurrentUserId,
    db: DBSession,
    machine: StateMachine,
    status_filter: str = Query("all", alias="status"),
):
    """List disputes for the current user (as customer or vendor)."""
    disputes = await queries.list_disputes_for_user(db, user_id, status_filter)
    now = machine.clock()
    return [_dispute_to_response(d, now) for d in disputes]


@router.post("", response_model=DisputeResponse, status_code=status.HTTP_201_CREATED)
async def open_dispute(data: DisputeOpen, user_id: CurrentUserId, machine: StateMachine):
    """Open a dispute on a booking; it starts in direct negotiation."""
    dispute = await machine.open_dispute(
        data.booking_id,
        user_id,
        [EvidenceRef(ref.url, ref.type, ref.original_filename) for ref in data.evidence],
        reason=data.reason,
    )
    return _dispute_to_response(dispute, machine.clock())


@router.get("/{dispute_id}", response_model=DisputeResponse)
async def get_dispute(dispute_id: uuid.UUID, user_id: CurrentUserId, db: DBSession, machine: StateMachine):
    dispute = await _party_dispute(db, dispute_id, user_id)
    return _dispute_to_response(dispute, machine.clock())


@router.post("/{dispute_id}/escalate", response_model=DisputeResponse)
async def request_escalation(
    dispute_id: uuid.UUID,
    user_id: CurrentUserId,
    machine: StateMachine,
    data: EscalationRequest | None = None,
):
    """Ask the AI mediator to step in (phase 1 -> 2) or to decide (phase 2 -> 3)."""
    dispute = await machine.request_escalation(
        dispute_id,
        user_id,
        oracle_timeout=data.oracle_timeout_seconds if data else None,
    )
    return _dispute_to_response(dispute, machine.clock())


@router.get("/{dispute_id}/timeline", response_model=list[EventResponse])
async def get_timeline(dispute_id: uuid.UUID, user_id: CurrentUserId, db: DBSession):
    await _party_dispute(db, dispute_id, user_id)
    return [_event_to_response(e) for e in await queries.get_timeline(db, dispute_id)]


# ─── Phase 1: negotiation ────────────────────────────

@router.get("/{dispute_id}/offers", response_model=list[OfferResponse])
async def get_offers(dispute_id: uuid.UUID, user_id: CurrentUserId, db: DBSession):
    """Offer history, newest first."""
    await _party_dispute(db, dispute_id, user_id)
    return [_offer_to_response(o) for o in await queries.get_offers(db, dispute_id)]


@router.post("/{dispute_id}/offers", response_model=OfferResponse, status_code=status.HTTP_201_CREATED)
async def submit_counter_offer(
    dispute_id: uuid.UUID,
    data: OfferCreate,
    user_id: CurrentUserId,
    machine: StateMachine,
):
    offer = await machine.submit_counter_offer(dispute_id, user_id, data.percent_to_customer, data.message)
    return _offer_to_response(offer)


@router.post("/{dispute_id}/offers/{offer_id}/accept", response_model=DisputeResponse)
async def accept_offer(
    dispute_id: uuid.UUID,
    offer_id: uuid.UUID,
    user_id: CurrentUserId,
    machine: StateMachine,
):
    """Accept the counterparty's latest offer; settles the dispute."""
    dispute = await machine.accept_offer(dispute_id, user_id, offer_id)
    return _dispute_to_response(dispute, machine.clock())


# ─── Phase 2: mediation options ──────────────────────

@router.get("/{dispute_id}/options", response_model=list[OptionResponse])
async def get_options(dispute_id: uuid.UUID, user_id: CurrentUserId, db: DBSession):
    await _party_dispute(db, dispute_id, user_id)
    options = await queries.get_options(db, dispute_id)
    selections = await queries.get_selections(db, dispute_id)
    return [
        _option_to_response(
            o,
            sorted(s.role.value for s in selections if s.selected_option_id == o.id),
        )
        for o in options
    ]


@router.get("/{dispute_id}/analysis", response_model=AnalysisResponse | None)
async def get_analysis(dispute_id: uuid.UUID, user_id: CurrentUserId, db: DBSession):
    """Latest mediator assessment of the evidence and both accounts."""
    await _party_dispute(db, dispute_id, user_id)
    analysis = await queries.get_analysis(db, dispute_id)
    return _analysis_to_response(analysis) if analysis else None


@router.post("/{dispute_id}/options/{option_id}/select", response_model=DisputeResponse)
async def select_option(
    dispute_id: uuid.UUID,
    option_id: uuid.UUID,
    user_id: CurrentUserId,
    machine: StateMachine,
):
    """Pick an option; when both parties pick the same one the dispute settles."""
    dispute = await machine.select_option(dispute_id, user_id, option_id)
    return _dispute_to_response(dispute, machine.clock())


# ─── Phase 3: binding decision ───────────────────────

@router.get("/{dispute_id}/decision", response_model=DecisionResponse | None)
async def get_decision(dispute_id: uuid.UUID, user_id: CurrentUserId, db: DBSession):
    await _party_dispute(db, dispute_id, user_id)
    decision = await queries.get_decision(db, dispute_id)
    return _decision_to_response(decision) if decision else None


@router.post("/{dispute_id}/decision/accept", response_model=DisputeResponse)
async def accept_decision(dispute_id: uuid.UUID, user_id: CurrentUserId, machine: StateMachine):
    dispute = await machine.accept_decision(dispute_id, user_id)
    return _dispute_to_response(dispute, machine.clock())


@router.post("/{dispute_id}/decision/external", response_model=DisputeResponse)
async def choose_external_resolution(dispute_id: uuid.UUID, user_id: CurrentUserId, machine: StateMachine):
    """Reject the decision and go outside the platform, forfeiting the escrow."""
    dispute = await machine.choose_external_resolution(dispute_id, user_id)
    return _dispute_to_response(dispute, machine.clock())
