"""Dispute state machine.

Every mutating operation runs inside `locked_dispute`: the per-dispute lock
and the row lock are held for one transaction, validation happens before any
write, and timeline events are published only once the transaction commits.

Mediator calls are the exception. They can take seconds, so escalation reads
a context snapshot under the lock, releases it, consults the oracle and then
re-acquires the lock to commit, discarding the result with StaleTransition if
the dispute moved in the meantime.
"""

import asyncio
import enum
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Sequence, TypeVar
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from disputeflow.adapters.ledger import EscrowLedger
from disputeflow.adapters.notifications import EventSink, default_sink, publish
from disputeflow.adapters.oracle import (
    MediationOracle,
    OracleAnalysis,
    OracleDecision,
    OracleOption,
    validate_analysis,
    validate_decision,
    validate_options,
)
from disputeflow.config import settings
from disputeflow.core.exceptions import (
    CannotAcceptOwnOffer,
    DuplicateDispute,
    InsufficientEscrow,
    InvalidBookingState,
    InvariantViolation,
    NotAParty,
    NotFoundError,
    OracleTimeout,
    OracleUnavailable,
    SettlementPending,
    StaleOffer,
    StaleTransition,
)
from disputeflow.core.logging import log
from disputeflow.db.models.analysis import DisputeAnalysis
from disputeflow.db.models.booking import Booking
from disputeflow.db.models.decision import AiDecision
from disputeflow.db.models.dispute import Dispute
from disputeflow.db.models.evidence import Evidence
from disputeflow.db.models.mediation import AiMediationOption, PartySelection
from disputeflow.db.models.negotiation import CounterOffer
from disputeflow.db.types import utcnow
from disputeflow.disputes.context import AnalysisSummary, DisputeContext, build_context
from disputeflow.disputes.locks import DisputeLockRegistry, dispute_locks
from disputeflow.disputes.money import split_amount, validate_percent
from disputeflow.disputes.negotiation import NegotiationLedger
from disputeflow.disputes.phases import (
    ACTIVE_PHASES,
    DecisionStatus,
    DisputePhase,
    EventType,
    EvidenceType,
    PartyRole,
    ResolutionPath,
)
from disputeflow.disputes.unit import (
    DisputeUnit,
    locked_dispute,
    require_party,
    require_phase,
    require_settled,
)

Clock = Callable[[], datetime]
T = TypeVar("T")


class TickOutcome(str, enum.Enum):
    NOOP = "noop"
    ESCALATED_PHASE_2 = "escalated_phase_2"
    ESCALATED_PHASE_3 = "escalated_phase_3"
    DECISION_EXECUTED = "decision_executed"
    SETTLEMENT_COMPLETED = "settlement_completed"


@dataclass(frozen=True)
class EvidenceRef:
    """Evidence already stored elsewhere, attached when a dispute is opened."""
    url: str
    type: EvidenceType
    original_filename: str | None = None
    file_size: int | None = None


class DisputeStateMachine:
    """Owns phase, deadlines and outcome of every dispute."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: EscrowLedger,
        oracle: MediationOracle,
        sink: EventSink | None = None,
        *,
        clock: Clock = utcnow,
        locks: DisputeLockRegistry = dispute_locks,
        phase1_duration: timedelta | None = None,
        phase2_duration: timedelta | None = None,
        review_window: timedelta | None = None,
        external_fee: Decimal | None = None,
        oracle_timeout: float | None = None,
    ):
        self.session_factory = session_factory
        self.ledger = ledger
        self.oracle = oracle
        self.sink = sink or default_sink()
        self.clock = clock
        self.locks = locks
        self.phase1_duration = phase1_duration or timedelta(days=settings.PHASE1_DURATION_DAYS)
        self.phase2_duration = phase2_duration or timedelta(days=settings.PHASE2_DURATION_DAYS)
        self.review_window = review_window or timedelta(hours=settings.PHASE3_REVIEW_HOURS)
        self.external_fee = (
            external_fee if external_fee is not None else Decimal(str(settings.EXTERNAL_RESOLUTION_FEE))
        )
        self.oracle_timeout = oracle_timeout or float(settings.ORACLE_TIMEOUT_SECONDS)

    def _locked(self, dispute_id: uuid.UUID):
        return locked_dispute(self.session_factory, self.locks, self.sink, dispute_id)

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    async def open_dispute(
        self,
        booking_id: uuid.UUID,
        opener_id: uuid.UUID,
        evidence_refs: Sequence[EvidenceRef] = (),
        reason: str | None = None,
    ) -> Dispute:
        now = self.clock()
        async with self.locks.get(booking_id):
            async with self.session_factory() as db:
                async with db.begin():
                    booking = (
                        await db.execute(
                            select(Booking).where(Booking.id == booking_id).with_for_update()
                        )
                    ).scalar_one_or_none()
                    if booking is None:
                        raise NotFoundError("Booking", str(booking_id))

                    if opener_id == booking.customer_id:
                        role = PartyRole.CUSTOMER
                    elif opener_id == booking.vendor_id:
                        role = PartyRole.VENDOR
                    else:
                        raise NotAParty(opener_id, booking_id)

                    if not booking.is_disputable:
                        raise InvalidBookingState(booking.id, booking.status)

                    existing = (
                        await db.execute(
                            select(Dispute.id).where(
                                Dispute.booking_id == booking.id,
                                Dispute.phase.in_(ACTIVE_PHASES),
                            )
                        )
                    ).scalars().first()
                    if existing is not None:
                        raise DuplicateDispute(booking.id, existing)

                    held = await self.ledger.get_held_amount(booking.id)
                    if held <= 0:
                        raise InsufficientEscrow(booking.id, "nothing is held in escrow for this booking")

                    dispute = Dispute(
                        booking_id=booking.id,
                        customer_id=booking.customer_id,
                        vendor_id=booking.vendor_id,
                        opened_by=opener_id,
                        reason=reason,
                        escrow_amount=held,
                        currency=booking.currency,
                        phase=DisputePhase.PHASE_1,
                        phase1_deadline=now + self.phase1_duration,
                        revision=0,
                        event_sequence=0,
                        created_at=now,
                        updated_at=now,
                    )
                    db.add(dispute)
                    await db.flush()

                    unit = DisputeUnit(db, dispute)
                    unit.record(
                        EventType.DISPUTE_OPENED,
                        opener_id,
                        role,
                        now,
                        {
                            "booking_id": booking.id,
                            "escrow_amount": held,
                            "currency": booking.currency,
                            "reason": reason,
                            "phase1_deadline": dispute.phase1_deadline,
                        },
                    )
                    for ref in evidence_refs:
                        evidence = Evidence(
                            dispute_id=dispute.id,
                            uploader_id=opener_id,
                            uploader_role=role,
                            url=ref.url,
                            type=EvidenceType(ref.type),
                            original_filename=ref.original_filename,
                            file_size=ref.file_size,
                            uploaded_at=now,
                        )
                        db.add(evidence)
                        await db.flush()
                        unit.record(
                            EventType.EVIDENCE_SUBMITTED,
                            opener_id,
                            role,
                            now,
                            {"evidence_id": evidence.id, "type": evidence.type, "url": evidence.url},
                        )
                    dispute.revision = 1

        publish(self.sink, dispute.id, unit.events)
        log.info(
            f"Dispute {dispute.id} opened on booking {booking_id} by {role.value} "
            f"({held} {dispute.currency} in escrow)"
        )
        return dispute

    # ------------------------------------------------------------------
    # Phase 1: negotiation
    # ------------------------------------------------------------------

    async def submit_counter_offer(
        self,
        dispute_id: uuid.UUID,
        user_id: uuid.UUID,
        percent_to_customer: int,
        message: str | None = None,
    ) -> CounterOffer:
        validate_percent(percent_to_customer)
        now = self.clock()
        async with self._locked(dispute_id) as unit:
            dispute = unit.dispute
            role = require_party(dispute, user_id)
            require_phase(dispute, DisputePhase.PHASE_1, now=now)
            require_settled(dispute)

            offer = await NegotiationLedger(unit.db).append(
                dispute.id, user_id, role, percent_to_customer, message, created_at=now
            )
            unit.record(
                EventType.COUNTER_OFFER,
                user_id,
                role,
                now,
                {"offer_id": offer.id, "percent_to_customer": percent_to_customer, "message": message},
            )
        log.info(f"Dispute {dispute_id}: {role.value} offered {percent_to_customer}% to the customer")
        return offer

    async def accept_offer(
        self,
        dispute_id: uuid.UUID,
        user_id: uuid.UUID,
        offer_id: uuid.UUID,
    ) -> Dispute:
        now = self.clock()
        async with self._locked(dispute_id) as unit:
            dispute = unit.dispute
            role = require_party(dispute, user_id)
            require_phase(dispute, DisputePhase.PHASE_1, now=now)

            ledger = NegotiationLedger(unit.db)
            offer = await ledger.get(dispute.id, offer_id)
            if offer is None:
                raise NotFoundError("Offer", str(offer_id))
            if offer.author_id == user_id:
                raise CannotAcceptOwnOffer(offer.id)
            latest = await ledger.latest(dispute.id)
            if latest is None or latest.id != offer.id:
                raise StaleOffer(offer.id, latest.id if latest else None)

            await self._settle_offer(unit, offer, user_id, role, now)
        log.info(
            f"Dispute {dispute_id} phase_1 -> resolved (offer accepted, "
            f"{dispute.final_customer_percent}/{dispute.final_vendor_percent})"
        )
        return dispute

    async def _settle_offer(
        self,
        unit: DisputeUnit,
        offer: CounterOffer,
        actor_id: uuid.UUID,
        actor_role: PartyRole,
        now: datetime,
    ) -> None:
        unit.record(
            EventType.OFFER_ACCEPTED,
            actor_id,
            actor_role,
            now,
            {"offer_id": offer.id, "percent_to_customer": offer.percent_to_customer},
        )
        await self._settle(
            unit,
            offer.percent_to_customer,
            offer.percent_to_vendor,
            ResolutionPath.NEGOTIATED,
            DisputePhase.RESOLVED,
            now,
            reference=offer.id,
        )
        unit.record(EventType.DISPUTE_RESOLVED, actor_id, actor_role, now, self._outcome_payload(unit.dispute))

    # ------------------------------------------------------------------
    # Escalation
    # ------------------------------------------------------------------

    async def request_escalation(
        self,
        dispute_id: uuid.UUID,
        user_id: uuid.UUID,
        oracle_timeout: float | None = None,
    ) -> Dispute:
        """Move phase_1 -> phase_2 or phase_2 -> phase_3_pending on a party's request.

        Allowed after the phase deadline too: the party is only doing what the
        scheduler would. Mediator failures leave the dispute where it was.
        """
        now = self.clock()
        async with self._locked(dispute_id) as unit:
            dispute = unit.dispute
            role = require_party(dispute, user_id)
            require_phase(dispute, DisputePhase.PHASE_1, DisputePhase.PHASE_2)
            require_settled(dispute)
            observed = dispute.phase
            context = await build_context(unit.db, dispute, now)

        return await self._escalate(
            dispute_id,
            observed,
            context,
            actor_id=user_id,
            actor_role=role,
            trigger="requested",
            oracle_timeout=oracle_timeout,
        )

    async def _consult(self, call: Awaitable[T], timeout: float | None) -> T:
        timeout = timeout or self.oracle_timeout
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise OracleTimeout(timeout) from e
        except OracleUnavailable:
            raise
        except Exception as e:
            raise OracleUnavailable(str(e)) from e

    async def _escalate(
        self,
        dispute_id: uuid.UUID,
        observed: DisputePhase,
        context: DisputeContext,
        *,
        actor_id: uuid.UUID | None,
        actor_role: PartyRole,
        trigger: str,
        oracle_timeout: float | None = None,
        now: datetime | None = None,
    ) -> Dispute:
        try:
            if observed is DisputePhase.PHASE_1:
                analysis = validate_analysis(
                    await self._consult(self.oracle.analyze_dispute(context), oracle_timeout)
                )
                context = replace(
                    context,
                    analysis=AnalysisSummary.from_sections(analysis.evidence_analysis, analysis.overall_assessment),
                )
                options = validate_options(
                    await self._consult(self.oracle.generate_options(context), oracle_timeout)
                )
            else:
                decision = validate_decision(
                    await self._consult(self.oracle.generate_decision(context), oracle_timeout)
                )
        except OracleUnavailable as e:
            log.warning(f"Dispute {dispute_id}: escalation from {observed.value} failed, mediator: {e.message}")
            raise

        now = now or self.clock()
        async with self._locked(dispute_id) as unit:
            dispute = unit.dispute
            if dispute.phase is not observed:
                log.info(
                    f"Dispute {dispute_id}: discarding mediator result, "
                    f"phase moved {observed.value} -> {dispute.phase.value}"
                )
                raise StaleTransition(dispute.id, observed, dispute.phase)
            require_settled(dispute)

            if observed is DisputePhase.PHASE_1:
                self._enter_phase_2(unit, analysis, options, context, actor_id, actor_role, trigger, now)
            else:
                self._enter_phase_3(unit, decision, context, actor_id, actor_role, trigger, now)

        log.info(f"Dispute {dispute_id} {observed.value} -> {dispute.phase.value} ({trigger})")
        return dispute

    def _freeze_evidence(self, dispute: Dispute, context: DisputeContext) -> None:
        if dispute.evidence_frozen_at is None:
            dispute.evidence_frozen_at = context.snapshot_at

    def _enter_phase_2(
        self,
        unit: DisputeUnit,
        analysis: OracleAnalysis,
        options: list[OracleOption],
        context: DisputeContext,
        actor_id: uuid.UUID | None,
        actor_role: PartyRole,
        trigger: str,
        now: datetime,
    ) -> None:
        dispute = unit.dispute
        dispute.phase = DisputePhase.PHASE_2
        dispute.phase2_deadline = now + self.phase2_duration
        self._freeze_evidence(dispute, context)

        stored_analysis = DisputeAnalysis(
            id=uuid.uuid4(),
            dispute_id=dispute.id,
            evidence_analysis=analysis.evidence_analysis,
            description_analysis=analysis.description_analysis,
            behavior_analysis=analysis.behavior_analysis,
            overall_assessment=analysis.overall_assessment,
            ai_model=analysis.ai_model,
            created_at=now,
        )
        unit.db.add(stored_analysis)

        rows = []
        for option in options:
            customer_amount, vendor_amount = split_amount(dispute.escrow_amount, option.customer_refund_percent)
            row = AiMediationOption(
                dispute_id=dispute.id,
                label=option.label,
                title=option.title,
                customer_refund_percent=option.customer_refund_percent,
                vendor_payment_percent=option.vendor_payment_percent,
                customer_refund_amount=customer_amount,
                vendor_payment_amount=vendor_amount,
                reasoning=option.reasoning,
                key_factors=list(option.key_factors),
                is_recommended=option.is_recommended,
                created_at=now,
            )
            unit.db.add(row)
            rows.append(row)

        unit.record(
            EventType.ESCALATED_PHASE_2,
            actor_id,
            actor_role,
            now,
            {"trigger": trigger, "phase2_deadline": dispute.phase2_deadline},
        )
        unit.record(
            EventType.AI_OPTIONS_GENERATED,
            None,
            PartyRole.SYSTEM,
            now,
            {
                "analysis_id": stored_analysis.id,
                "options": [
                    {
                        "label": row.label,
                        "customer_refund_percent": row.customer_refund_percent,
                        "vendor_payment_percent": row.vendor_payment_percent,
                        "is_recommended": row.is_recommended,
                    }
                    for row in rows
                ]
            },
        )

    def _enter_phase_3(
        self,
        unit: DisputeUnit,
        decision: OracleDecision,
        context: DisputeContext,
        actor_id: uuid.UUID | None,
        actor_role: PartyRole,
        trigger: str,
        now: datetime,
    ) -> None:
        dispute = unit.dispute
        dispute.phase = DisputePhase.PHASE_3_PENDING
        dispute.phase3_review_deadline = now + self.review_window
        self._freeze_evidence(dispute, context)

        customer_amount, vendor_amount = split_amount(dispute.escrow_amount, decision.customer_refund_percent)
        unit.db.add(
            AiDecision(
                dispute_id=dispute.id,
                customer_refund_percent=decision.customer_refund_percent,
                vendor_payment_percent=decision.vendor_payment_percent,
                customer_refund_amount=customer_amount,
                vendor_payment_amount=vendor_amount,
                decision_summary=decision.decision_summary,
                full_reasoning=decision.full_reasoning,
                key_factors=list(decision.key_factors),
                status=DecisionStatus.PENDING,
                auto_executed=False,
                created_at=now,
                updated_at=now,
            )
        )

        unit.record(
            EventType.ESCALATED_PHASE_3,
            actor_id,
            actor_role,
            now,
            {"trigger": trigger, "phase3_review_deadline": dispute.phase3_review_deadline},
        )
        unit.record(
            EventType.AI_DECISION,
            None,
            PartyRole.SYSTEM,
            now,
            {
                "customer_refund_percent": decision.customer_refund_percent,
                "vendor_payment_percent": decision.vendor_payment_percent,
                "decision_summary": decision.decision_summary,
            },
        )

    # ------------------------------------------------------------------
    # Phase 2: option selection
    # ------------------------------------------------------------------

    async def select_option(
        self,
        dispute_id: uuid.UUID,
        user_id: uuid.UUID,
        option_id: uuid.UUID,
    ) -> Dispute:
        now = self.clock()
        async with self._locked(dispute_id) as unit:
            dispute = unit.dispute
            db = unit.db
            role = require_party(dispute, user_id)
            require_phase(dispute, DisputePhase.PHASE_2, now=now)

            option = (
                await db.execute(
                    select(AiMediationOption).where(
                        AiMediationOption.id == option_id,
                        AiMediationOption.dispute_id == dispute.id,
                    )
                )
            ).scalar_one_or_none()
            if option is None:
                raise NotFoundError("Option", str(option_id))

            selections = {
                selection.role: selection
                for selection in (
                    await db.execute(select(PartySelection).where(PartySelection.dispute_id == dispute.id))
                ).scalars()
            }
            mine = selections.get(role)
            if mine is None:
                db.add(
                    PartySelection(
                        dispute_id=dispute.id,
                        role=role,
                        user_id=user_id,
                        selected_option_id=option.id,
                        selected_at=now,
                    )
                )
            else:
                mine.user_id = user_id
                mine.selected_option_id = option.id
                mine.selected_at = now

            unit.record(
                EventType.OPTION_SELECTED,
                user_id,
                role,
                now,
                {"option_id": option.id, "label": option.label},
            )

            other_role = PartyRole.VENDOR if role is PartyRole.CUSTOMER else PartyRole.CUSTOMER
            other = selections.get(other_role)
            matched = other is not None and other.selected_option_id == option.id
            if matched:
                await self._settle_option(unit, option, user_id, role, now)
            else:
                require_settled(dispute)

        if matched:
            log.info(f"Dispute {dispute_id} phase_2 -> resolved (both parties chose option {option.label})")
        else:
            log.info(f"Dispute {dispute_id}: {role.value} selected option {option.label}")
        return dispute

    async def _settle_option(
        self,
        unit: DisputeUnit,
        option: AiMediationOption,
        actor_id: uuid.UUID | None,
        actor_role: PartyRole,
        now: datetime,
    ) -> None:
        await self._settle(
            unit,
            option.customer_refund_percent,
            option.vendor_payment_percent,
            ResolutionPath.AI_MEDIATED,
            DisputePhase.RESOLVED,
            now,
            reference=option.id,
        )
        unit.record(
            EventType.DISPUTE_RESOLVED,
            actor_id,
            actor_role,
            now,
            {**self._outcome_payload(unit.dispute), "option_label": option.label},
        )

    # ------------------------------------------------------------------
    # Phase 3: binding decision
    # ------------------------------------------------------------------

    async def _pending_decision(self, db: AsyncSession, dispute: Dispute) -> AiDecision:
        decision = (
            await db.execute(select(AiDecision).where(AiDecision.dispute_id == dispute.id))
        ).scalar_one_or_none()
        if decision is None or decision.status is not DecisionStatus.PENDING:
            raise InvariantViolation(f"dispute {dispute.id} is {dispute.phase.value} without a pending decision")
        return decision

    async def accept_decision(self, dispute_id: uuid.UUID, user_id: uuid.UUID) -> Dispute:
        now = self.clock()
        async with self._locked(dispute_id) as unit:
            dispute = unit.dispute
            role = require_party(dispute, user_id)
            require_phase(dispute, DisputePhase.PHASE_3_PENDING, now=now)
            decision = await self._pending_decision(unit.db, dispute)
            await self._execute_decision(unit, decision, user_id, role, now, auto=False)
        log.info(f"Dispute {dispute_id} phase_3_pending -> phase_3_ai (accepted by {role.value})")
        return dispute

    async def _execute_decision(
        self,
        unit: DisputeUnit,
        decision: AiDecision,
        actor_id: uuid.UUID | None,
        actor_role: PartyRole,
        now: datetime,
        auto: bool,
    ) -> None:
        dispute = unit.dispute
        decision.mark_executed(now, auto=auto)
        await self._settle(
            unit,
            decision.customer_refund_percent,
            decision.vendor_payment_percent,
            ResolutionPath.AI_DECISION,
            DisputePhase.PHASE_3_AI,
            now,
            reference=decision.id,
        )
        unit.record(
            EventType.DECISION_EXECUTED,
            actor_id,
            actor_role,
            now,
            {"decision_id": decision.id, "auto_executed": auto},
        )
        unit.record(EventType.DISPUTE_RESOLVED, actor_id, actor_role, now, self._outcome_payload(dispute))

    async def choose_external_resolution(self, dispute_id: uuid.UUID, user_id: uuid.UUID) -> Dispute:
        """Opt out of the binding decision.

        The choosing party forfeits the whole escrow to the other side and pays
        the external resolution fee.
        """
        now = self.clock()
        async with self._locked(dispute_id) as unit:
            dispute = unit.dispute
            role = require_party(dispute, user_id)
            require_phase(dispute, DisputePhase.PHASE_3_PENDING, now=now)
            decision = await self._pending_decision(unit.db, dispute)
            await self._override_decision(unit, decision, role, now)
        log.info(
            f"Dispute {dispute_id} phase_3_pending -> phase_3_external "
            f"({role.value} opted out, fee {self.external_fee} {dispute.currency})"
        )
        return dispute

    async def _override_decision(
        self,
        unit: DisputeUnit,
        decision: AiDecision,
        role: PartyRole,
        now: datetime,
    ) -> None:
        dispute = unit.dispute
        user_id = dispute.party_id(role)
        customer_percent = 0 if role is PartyRole.CUSTOMER else 100
        decision.mark_overridden(role, now)
        dispute.external_resolution_by = role
        await self._settle(
            unit,
            customer_percent,
            100 - customer_percent,
            ResolutionPath.EXTERNAL_OVERRIDE,
            DisputePhase.PHASE_3_EXTERNAL,
            now,
            reference=role.value,
            fee_payer=user_id,
        )
        unit.record(
            EventType.EXTERNAL_RESOLUTION,
            user_id,
            role,
            now,
            {
                **self._outcome_payload(dispute),
                "chosen_by": role,
                "fee": self.external_fee,
                "currency": dispute.currency,
            },
        )

    # ------------------------------------------------------------------
    # Deadlines
    # ------------------------------------------------------------------

    async def tick(
        self,
        dispute_id: uuid.UUID,
        now: datetime | None = None,
        oracle_timeout: float | None = None,
    ) -> TickOutcome:
        """Apply whatever the passed deadline of the current phase demands.

        A tick on a dispute whose phase already moved on, or whose deadline is
        still ahead, does nothing. A settlement left pending by a failed ledger
        call is finished first, whatever the deadline.
        """
        now = now or self.clock()
        async with self._locked(dispute_id) as unit:
            dispute = unit.dispute
            if dispute.pending_settlement is not None:
                intent = dispute.pending_settlement
                await self._resume_settlement(unit, now)
                outcome = TickOutcome.SETTLEMENT_COMPLETED
            elif dispute.is_closed or not dispute.deadline_passed(now):
                return TickOutcome.NOOP
            elif dispute.phase is DisputePhase.PHASE_3_PENDING:
                decision = await self._pending_decision(unit.db, dispute)
                await self._execute_decision(unit, decision, None, PartyRole.SYSTEM, now, auto=True)
                outcome = TickOutcome.DECISION_EXECUTED
            else:
                outcome = None
                observed = dispute.phase
                context = await build_context(unit.db, dispute, now)

        if outcome is TickOutcome.SETTLEMENT_COMPLETED:
            log.info(f"Dispute {dispute_id}: pending settlement {intent} completed -> {dispute.phase.value}")
            return outcome
        if outcome is TickOutcome.DECISION_EXECUTED:
            log.info(f"Dispute {dispute_id} phase_3_pending -> phase_3_ai (review deadline)")
            return outcome

        try:
            await self._escalate(
                dispute_id,
                observed,
                context,
                actor_id=None,
                actor_role=PartyRole.SYSTEM,
                trigger="deadline",
                oracle_timeout=oracle_timeout,
                now=now,
            )
        except StaleTransition:
            return TickOutcome.NOOP

        if observed is DisputePhase.PHASE_1:
            return TickOutcome.ESCALATED_PHASE_2
        return TickOutcome.ESCALATED_PHASE_3

    # ------------------------------------------------------------------

    async def _resume_settlement(self, unit: DisputeUnit, now: datetime) -> None:
        """Finish the settlement whose ledger calls went out but never committed."""
        dispute = unit.dispute
        kind, _, reference = dispute.pending_settlement.partition(":")
        path = ResolutionPath(kind)

        if path is ResolutionPath.NEGOTIATED:
            offer = await NegotiationLedger(unit.db).get(dispute.id, uuid.UUID(reference))
            if offer is None:
                raise InvariantViolation(f"dispute {dispute.id} is settling unknown offer {reference}")
            acceptor = PartyRole.VENDOR if offer.author_role is PartyRole.CUSTOMER else PartyRole.CUSTOMER
            await self._settle_offer(unit, offer, dispute.party_id(acceptor), acceptor, now)
        elif path is ResolutionPath.AI_MEDIATED:
            option = await unit.db.get(AiMediationOption, uuid.UUID(reference))
            if option is None or option.dispute_id != dispute.id:
                raise InvariantViolation(f"dispute {dispute.id} is settling unknown option {reference}")
            await self._settle_option(unit, option, None, PartyRole.SYSTEM, now)
        elif path is ResolutionPath.AI_DECISION:
            decision = await self._pending_decision(unit.db, dispute)
            await self._execute_decision(unit, decision, None, PartyRole.SYSTEM, now, auto=True)
        else:
            decision = await self._pending_decision(unit.db, dispute)
            await self._override_decision(unit, decision, PartyRole(reference), now)

    async def _settle(
        self,
        unit: DisputeUnit,
        customer_percent: int,
        vendor_percent: int,
        path: ResolutionPath,
        phase: DisputePhase,
        now: datetime,
        *,
        reference: uuid.UUID | str,
        fee_payer: uuid.UUID | None = None,
    ) -> None:
        """Record the terminal outcome and move the money in the same transaction.

        The intent is registered on the unit before the first ledger call, so a
        failure from here on leaves it pending and no other outcome may settle.
        Any fee is charged before the escrow moves.
        """
        dispute = unit.dispute
        intent = f"{path.value}:{reference}"
        if dispute.pending_settlement not in (None, intent):
            raise SettlementPending(dispute.id, dispute.pending_settlement)

        dispute.record_outcome(customer_percent, vendor_percent, path, phase, now)
        unit.settlement_intent = intent
        if fee_payer is not None:
            await self.ledger.charge_fee(
                fee_payer,
                self.external_fee,
                dispute.currency,
                idempotency_key=f"dispute:{dispute.id}:external_fee",
            )
        await self.ledger.transfer(
            dispute.booking_id,
            customer_percent,
            vendor_percent,
            idempotency_key=f"dispute:{dispute.id}:transfer:{path.value}:{customer_percent}-{vendor_percent}",
        )
        dispute.pending_settlement = None

    @staticmethod
    def _outcome_payload(dispute: Dispute) -> dict:
        customer_amount, vendor_amount = split_amount(dispute.escrow_amount, dispute.final_customer_percent)
        return {
            "resolution_path": dispute.resolution_path,
            "customer_percent": dispute.final_customer_percent,
            "vendor_percent": dispute.final_vendor_percent,
            "customer_amount": customer_amount,
            "vendor_amount": vendor_amount,
        }
