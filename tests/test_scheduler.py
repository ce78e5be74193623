"""Deadline sweeps"""

import asyncio
from datetime import timedelta

import pytest

from disputeflow.core.exceptions import LedgerUnavailable, OracleUnavailable
from disputeflow.disputes import queries
from disputeflow.disputes.phases import DecisionStatus, DisputePhase, PartyRole, ResolutionPath
from disputeflow.disputes.scheduler import EscalationScheduler, TickResult
from disputeflow.disputes.state_machine import TickOutcome

from tests.conftest import T0


@pytest.fixture
def scheduler(machine):
    return EscalationScheduler(machine, interval_seconds=0.01)


class TestSweep:
    @pytest.mark.asyncio
    async def test_only_disputes_past_deadline_are_due(self, scheduler, machine, dispute, make_booking, clock, vendor_id):
        clock.advance(days=3)
        later = await machine.open_dispute((await make_booking()).id, vendor_id)

        assert await scheduler.scan_due_deadlines(T0 + timedelta(days=6)) == []
        assert await scheduler.scan_due_deadlines(T0 + timedelta(days=7)) == [dispute.id]
        assert await scheduler.scan_due_deadlines(T0 + timedelta(days=10)) == [dispute.id, later.id]

    @pytest.mark.asyncio
    async def test_sweep_escalates_once(self, scheduler, dispute, oracle, read):
        now = T0 + timedelta(days=7)

        assert await scheduler.run_once(now) == [TickResult(dispute.id, TickOutcome.ESCALATED_PHASE_2)]
        assert await scheduler.run_once(now) == []

        stored = await read(queries.get_dispute, dispute.id)
        assert stored.phase is DisputePhase.PHASE_2
        assert stored.phase2_deadline == now + timedelta(days=7)
        assert len(oracle.option_calls) == 1

    @pytest.mark.asyncio
    async def test_tick_before_deadline_does_nothing(self, machine, dispute, oracle):
        assert await machine.tick(dispute.id, T0 + timedelta(days=6, hours=23)) is TickOutcome.NOOP
        assert oracle.option_calls == []

    @pytest.mark.asyncio
    async def test_phase_2_deadline_forces_decision(self, scheduler, machine, dispute, read, customer_id, vendor_id):
        await machine.request_escalation(dispute.id, customer_id)
        options = {o.label: o for o in await read(queries.get_options, dispute.id)}
        await machine.select_option(dispute.id, customer_id, options["A"].id)
        await machine.select_option(dispute.id, vendor_id, options["B"].id)

        now = T0 + timedelta(days=7)
        assert await scheduler.run_once(now) == [TickResult(dispute.id, TickOutcome.ESCALATED_PHASE_3)]

        stored = await read(queries.get_dispute, dispute.id)
        assert stored.phase is DisputePhase.PHASE_3_PENDING
        assert stored.phase3_review_deadline == now + timedelta(hours=24)
        decision = await read(queries.get_decision, dispute.id)
        assert decision.status is DecisionStatus.PENDING

    @pytest.mark.asyncio
    async def test_review_deadline_auto_executes(self, scheduler, machine, dispute, ledger, read, customer_id):
        await machine.request_escalation(dispute.id, customer_id)
        await machine.request_escalation(dispute.id, customer_id)

        assert await scheduler.run_once(T0 + timedelta(hours=23)) == []
        results = await scheduler.run_once(T0 + timedelta(hours=24))
        assert results == [TickResult(dispute.id, TickOutcome.DECISION_EXECUTED)]

        stored = await read(queries.get_dispute, dispute.id)
        assert stored.phase is DisputePhase.PHASE_3_AI
        assert stored.resolution_path is ResolutionPath.AI_DECISION
        assert (stored.final_customer_percent, stored.final_vendor_percent) == (60, 40)
        assert [(t.customer_percent, t.vendor_percent) for t in ledger.transfers] == [(60, 40)]

        decision = await read(queries.get_decision, dispute.id)
        assert decision.status is DecisionStatus.EXECUTED
        assert decision.auto_executed is True

        timeline = await read(queries.get_timeline, dispute.id)
        assert [(e.event_type, e.actor_role) for e in timeline[-2:]] == [
            ("decision_executed", PartyRole.SYSTEM),
            ("dispute_resolved", PartyRole.SYSTEM),
        ]
        assert timeline[-2].payload["auto_executed"] is True

    @pytest.mark.asyncio
    async def test_closed_disputes_are_never_due(self, scheduler, machine, dispute, customer_id, vendor_id):
        offer = await machine.submit_counter_offer(dispute.id, vendor_id, 45)
        await machine.accept_offer(dispute.id, customer_id, offer.id)

        assert await scheduler.run_once(T0 + timedelta(days=60)) == []
        assert await machine.tick(dispute.id, T0 + timedelta(days=60)) is TickOutcome.NOOP

    @pytest.mark.asyncio
    async def test_failed_tick_is_reported_and_retried(self, scheduler, dispute, oracle, read):
        now = T0 + timedelta(days=7)
        oracle.error = OracleUnavailable("model overloaded")

        results = await scheduler.run_once(now)
        assert results == [TickResult(dispute.id, None, "oracle_unavailable")]
        assert results[0].failed
        assert (await read(queries.get_dispute, dispute.id)).phase is DisputePhase.PHASE_1

        oracle.error = None
        retried = await scheduler.run_once(now)
        assert retried == [TickResult(dispute.id, TickOutcome.ESCALATED_PHASE_2)]
        assert not retried[0].failed

    @pytest.mark.asyncio
    async def test_unfinished_settlement_is_due_before_deadline(
        self, scheduler, machine, dispute, ledger, read, customer_id, vendor_id
    ):
        offer = await machine.submit_counter_offer(dispute.id, vendor_id, 25)
        ledger.transfer_error = LedgerUnavailable("escrow service unreachable")
        with pytest.raises(LedgerUnavailable):
            await machine.accept_offer(dispute.id, customer_id, offer.id)

        now = T0 + timedelta(days=1)
        assert await scheduler.scan_due_deadlines(now) == [dispute.id]
        assert await scheduler.run_once(now) == [TickResult(dispute.id, None, "ledger_unavailable")]

        ledger.transfer_error = None
        assert await scheduler.run_once(now) == [TickResult(dispute.id, TickOutcome.SETTLEMENT_COMPLETED)]
        assert await scheduler.scan_due_deadlines(now) == []

        stored = await read(queries.get_dispute, dispute.id)
        assert stored.phase is DisputePhase.RESOLVED
        assert (stored.final_customer_percent, stored.final_vendor_percent) == (25, 75)


class TestBackgroundLoop:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, scheduler, dispute, read, clock):
        clock.advance(days=7)
        scheduler.start()
        assert scheduler.running

        for _ in range(200):
            if (await read(queries.get_dispute, dispute.id)).phase is DisputePhase.PHASE_2:
                break
            await asyncio.sleep(0.01)

        await scheduler.stop()
        assert not scheduler.running
        assert (await read(queries.get_dispute, dispute.id)).phase is DisputePhase.PHASE_2

    @pytest.mark.asyncio
    async def test_stop_without_start(self, scheduler):
        await scheduler.stop()
        assert not scheduler.running
