"""Phase table, percentage checks and the invariants enforced on the models"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from disputeflow.core.exceptions import (
    DoubleTerminalTransition,
    IllegalPhaseTransition,
    InvalidPercent,
    InvariantViolation,
    PercentSumMismatch,
)
from disputeflow.db.models import AiDecision, Dispute
from disputeflow.disputes.money import check_split, split_amount, validate_percent
from disputeflow.disputes.phases import (
    ACTIVE_PHASES,
    TERMINAL_PHASES,
    DecisionStatus,
    DisputePhase,
    PartyRole,
    ResolutionPath,
    assert_transition,
    can_transition,
)

from tests.conftest import T0


def _dispute(**overrides) -> Dispute:
    return Dispute(
        booking_id=uuid.uuid4(),
        customer_id=uuid.uuid4(),
        vendor_id=uuid.uuid4(),
        opened_by=uuid.uuid4(),
        escrow_amount=Decimal("200.00"),
        currency="CHF",
        phase=DisputePhase.PHASE_1,
        phase1_deadline=T0 + timedelta(days=7),
        **overrides,
    )


class TestTransitions:
    def test_terminal_and_active_phases(self):
        assert TERMINAL_PHASES == {DisputePhase.RESOLVED, DisputePhase.PHASE_3_AI, DisputePhase.PHASE_3_EXTERNAL}
        assert ACTIVE_PHASES == {DisputePhase.PHASE_1, DisputePhase.PHASE_2, DisputePhase.PHASE_3_PENDING}

    @pytest.mark.parametrize(
        "source,target",
        [
            (DisputePhase.PHASE_1, DisputePhase.PHASE_2),
            (DisputePhase.PHASE_1, DisputePhase.RESOLVED),
            (DisputePhase.PHASE_2, DisputePhase.PHASE_3_PENDING),
            (DisputePhase.PHASE_2, DisputePhase.RESOLVED),
            (DisputePhase.PHASE_3_PENDING, DisputePhase.PHASE_3_AI),
            (DisputePhase.PHASE_3_PENDING, DisputePhase.PHASE_3_EXTERNAL),
        ],
    )
    def test_forward_edges_allowed(self, source, target):
        assert can_transition(source, target)
        assert_transition(source, target)

    @pytest.mark.parametrize(
        "source,target",
        [
            (DisputePhase.PHASE_2, DisputePhase.PHASE_1),
            (DisputePhase.PHASE_3_PENDING, DisputePhase.PHASE_2),
            (DisputePhase.PHASE_1, DisputePhase.PHASE_3_PENDING),
            (DisputePhase.PHASE_3_PENDING, DisputePhase.RESOLVED),
            (DisputePhase.RESOLVED, DisputePhase.PHASE_1),
            (DisputePhase.PHASE_3_AI, DisputePhase.PHASE_3_EXTERNAL),
        ],
    )
    def test_regressions_and_skips_rejected(self, source, target):
        assert not can_transition(source, target)
        with pytest.raises(IllegalPhaseTransition):
            assert_transition(source, target)

    def test_new_dispute_must_start_in_phase_1(self):
        assert_transition(None, DisputePhase.PHASE_1)
        with pytest.raises(IllegalPhaseTransition):
            assert_transition(None, DisputePhase.PHASE_2)


class TestMoney:
    @pytest.mark.parametrize("value", [0, 1, 50, 100])
    def test_valid_percent(self, value):
        assert validate_percent(value) == value

    @pytest.mark.parametrize("value", [-1, 101, 50.5, "50", None, True])
    def test_invalid_percent(self, value):
        with pytest.raises(InvalidPercent):
            validate_percent(value)

    def test_check_split(self):
        check_split(60, 40)
        with pytest.raises(PercentSumMismatch):
            check_split(60, 50)
        with pytest.raises(PercentSumMismatch):
            check_split(110, -10)

    def test_split_rounds_customer_half_up_and_vendor_takes_remainder(self):
        assert split_amount(Decimal("200.00"), 80) == (Decimal("160.00"), Decimal("40.00"))
        customer, vendor = split_amount(Decimal("99.99"), 50)
        assert customer == Decimal("50.00")
        assert vendor == Decimal("49.99")
        assert customer + vendor == Decimal("99.99")


class TestDisputeModel:
    def test_phase_cannot_regress(self):
        dispute = _dispute()
        dispute.phase = DisputePhase.PHASE_2
        with pytest.raises(IllegalPhaseTransition):
            dispute.phase = DisputePhase.PHASE_1

    def test_escrow_is_immutable(self):
        dispute = _dispute()
        with pytest.raises(InvariantViolation):
            dispute.escrow_amount = Decimal("1.00")

    def test_deadline_set_once(self):
        dispute = _dispute()
        with pytest.raises(InvariantViolation):
            dispute.phase1_deadline = T0 + timedelta(days=1)

    def test_outcome_set_once(self):
        dispute = _dispute()
        dispute.record_outcome(70, 30, ResolutionPath.NEGOTIATED, DisputePhase.RESOLVED, T0)
        assert dispute.is_closed
        assert dispute.resolved_at == T0
        with pytest.raises(DoubleTerminalTransition):
            dispute.record_outcome(70, 30, ResolutionPath.NEGOTIATED, DisputePhase.RESOLVED, T0)

    def test_outcome_must_sum_to_100(self):
        dispute = _dispute()
        with pytest.raises(PercentSumMismatch):
            dispute.record_outcome(70, 40, ResolutionPath.NEGOTIATED, DisputePhase.RESOLVED, T0)
        assert dispute.final_customer_percent is None
        assert dispute.phase is DisputePhase.PHASE_1

    def test_time_remaining_is_derived_from_active_deadline(self):
        dispute = _dispute()
        assert dispute.time_remaining(T0 + timedelta(days=1)) == timedelta(days=6)
        assert dispute.time_remaining(T0 + timedelta(days=9)) == timedelta(0)
        assert dispute.deadline_passed(T0 + timedelta(days=7))
        dispute.record_outcome(50, 50, ResolutionPath.NEGOTIATED, DisputePhase.RESOLVED, T0)
        assert dispute.time_remaining(T0) is None
        assert not dispute.deadline_passed(T0 + timedelta(days=30))

    def test_role_of(self):
        dispute = _dispute()
        assert dispute.role_of(dispute.customer_id) is PartyRole.CUSTOMER
        assert dispute.role_of(dispute.vendor_id) is PartyRole.VENDOR
        assert dispute.role_of(uuid.uuid4()) is None


def test_decision_is_immutable_once_executed():
    decision = AiDecision(
        dispute_id=uuid.uuid4(),
        customer_refund_percent=60,
        vendor_payment_percent=40,
        customer_refund_amount=Decimal("120.00"),
        vendor_payment_amount=Decimal("80.00"),
        decision_summary="Split",
        full_reasoning="Because",
        status=DecisionStatus.PENDING,
    )
    decision.mark_executed(T0, auto=True)
    assert decision.status is DecisionStatus.EXECUTED
    assert decision.auto_executed
    with pytest.raises(InvariantViolation):
        decision.mark_overridden(PartyRole.VENDOR, T0)
