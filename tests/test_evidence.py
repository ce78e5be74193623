"""Evidence store and what the mediator gets to see"""

import uuid

import pytest

from disputeflow.core.exceptions import AuthorizationError, EvidenceFrozen, NotAParty, NotFoundError, PhaseClosed
from disputeflow.disputes import queries
from disputeflow.disputes.phases import EvidenceType, PartyRole
from disputeflow.disputes.state_machine import EvidenceRef


@pytest.mark.asyncio
async def test_attach_and_list(evidence_service, dispute, read, clock, customer_id, vendor_id):
    photo = await evidence_service.attach(
        dispute.id, customer_id, "https://files.example/before.jpg", EvidenceType.IMAGE, "before.jpg", 2048
    )
    clock.advance(minutes=10)
    invoice = await evidence_service.attach(
        dispute.id, vendor_id, "https://files.example/timesheet.pdf", EvidenceType.DOCUMENT
    )

    assert photo.uploader_role is PartyRole.CUSTOMER
    assert invoice.uploader_role is PartyRole.VENDOR
    assert [e.id for e in await evidence_service.list(dispute.id)] == [photo.id, invoice.id]

    timeline = await read(queries.get_timeline, dispute.id)
    assert [e.event_type for e in timeline] == ["dispute_opened", "evidence_submitted", "evidence_submitted"]
    assert timeline[1].payload["type"] == "image"
    assert (await read(queries.get_dispute, dispute.id)).revision == 3


@pytest.mark.asyncio
async def test_stranger_cannot_attach(evidence_service, dispute):
    with pytest.raises(NotAParty):
        await evidence_service.attach(dispute.id, uuid.uuid4(), "https://files.example/x.jpg", EvidenceType.IMAGE)


@pytest.mark.asyncio
async def test_unknown_dispute(evidence_service, customer_id):
    with pytest.raises(NotFoundError):
        await evidence_service.attach(uuid.uuid4(), customer_id, "https://files.example/x.jpg", EvidenceType.IMAGE)


@pytest.mark.asyncio
async def test_uploader_can_withdraw_before_mediation(evidence_service, dispute, read, customer_id, vendor_id):
    evidence = await evidence_service.attach(
        dispute.id, customer_id, "https://files.example/wrong.jpg", EvidenceType.IMAGE
    )

    with pytest.raises(AuthorizationError):
        await evidence_service.remove(dispute.id, vendor_id, evidence.id)

    removed = await evidence_service.remove(dispute.id, customer_id, evidence.id)
    assert removed.removed_at is not None
    assert await evidence_service.list(dispute.id) == []
    assert (await read(queries.get_timeline, dispute.id))[-1].event_type == "evidence_removed"

    with pytest.raises(NotFoundError):
        await evidence_service.remove(dispute.id, customer_id, evidence.id)


@pytest.mark.asyncio
async def test_mediator_input_is_frozen_at_first_escalation(
    machine, evidence_service, make_booking, oracle, clock, customer_id, vendor_id
):
    booking = await make_booking()
    dispute = await machine.open_dispute(
        booking.id,
        customer_id,
        evidence_refs=[EvidenceRef("https://files.example/kitchen.jpg", EvidenceType.IMAGE)],
    )
    (original,) = await evidence_service.list(dispute.id)

    clock.advance(hours=1)
    await machine.request_escalation(dispute.id, customer_id)
    assert [item.url for item in oracle.option_calls[0].evidence] == ["https://files.example/kitchen.jpg"]

    with pytest.raises(EvidenceFrozen):
        await evidence_service.remove(dispute.id, customer_id, original.id)

    clock.advance(hours=1)
    late = await evidence_service.attach(
        dispute.id, vendor_id, "https://files.example/late-receipt.pdf", EvidenceType.DOCUMENT
    )
    assert len(await evidence_service.list(dispute.id)) == 2

    clock.advance(hours=1)
    await machine.request_escalation(dispute.id, vendor_id)
    context = oracle.decision_calls[0]
    assert [item.url for item in context.evidence] == ["https://files.example/kitchen.jpg"]
    assert context.evidence_by(PartyRole.VENDOR) == []

    # Never shown to the mediator, so it may still be withdrawn
    await evidence_service.remove(dispute.id, vendor_id, late.id)
    assert [e.id for e in await evidence_service.list(dispute.id)] == [original.id]


@pytest.mark.asyncio
async def test_no_evidence_changes_once_closed(machine, evidence_service, dispute, customer_id, vendor_id):
    evidence = await evidence_service.attach(
        dispute.id, customer_id, "https://files.example/a.jpg", EvidenceType.IMAGE
    )
    offer = await machine.submit_counter_offer(dispute.id, customer_id, 50)
    await machine.accept_offer(dispute.id, vendor_id, offer.id)

    with pytest.raises(PhaseClosed):
        await evidence_service.attach(dispute.id, customer_id, "https://files.example/b.jpg", EvidenceType.IMAGE)
    with pytest.raises(PhaseClosed):
        await evidence_service.remove(dispute.id, customer_id, evidence.id)
