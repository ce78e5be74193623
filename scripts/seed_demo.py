"""Seed demo bookings and a sample dispute for DisputeFlow."""

import asyncio
import sys
import uuid
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from disputeflow.config import settings
from disputeflow.core.security import create_access_token
from disputeflow.db.base import engine, async_session, Base
from disputeflow.db.models import Booking, BookingStatus, CounterOffer, Dispute, DisputeEvent, Evidence
from disputeflow.db.types import utcnow
from disputeflow.disputes.phases import DisputePhase, EventType, EvidenceType, PartyRole


DEMO_USERS = {
    "customer": uuid.UUID("6f1c1a52-0000-4000-8000-000000000001"),
    "vendor": uuid.UUID("6f1c1a52-0000-4000-8000-000000000002"),
    "second_vendor": uuid.UUID("6f1c1a52-0000-4000-8000-000000000003"),
    "admin": uuid.UUID("6f1c1a52-0000-4000-8000-0000000000ad"),
}

DEMO_BOOKINGS = [
    {
        "id": uuid.UUID("b00c1a52-0000-4000-8000-000000000001"),
        "customer_id": DEMO_USERS["customer"],
        "vendor_id": DEMO_USERS["vendor"],
        "service_title": "Apartment deep cleaning (3.5 rooms)",
        "status": BookingStatus.COMPLETED.value,
    },
    {
        "id": uuid.UUID("b00c1a52-0000-4000-8000-000000000002"),
        "customer_id": DEMO_USERS["customer"],
        "vendor_id": DEMO_USERS["second_vendor"],
        "service_title": "Wedding photography, half day",
        "status": BookingStatus.IN_PROGRESS.value,
    },
    {
        "id": uuid.UUID("b00c1a52-0000-4000-8000-000000000003"),
        "customer_id": DEMO_USERS["customer"],
        "vendor_id": DEMO_USERS["vendor"],
        "service_title": "Window cleaning",
        "status": BookingStatus.CONFIRMED.value,
    },
]


async def seed():
    """Create tables and seed demo data."""
    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as db:
        try:
            for booking_data in DEMO_BOOKINGS:
                existing = await db.get(Booking, booking_data["id"])
                if existing:
                    print(f"  Booking '{booking_data['service_title']}' already exists, skipping")
                    continue
                db.add(Booking(currency=settings.DEFAULT_CURRENCY, **booking_data))
                print(f"  Created booking: {booking_data['service_title']}")
            await db.flush()

            booking = DEMO_BOOKINGS[0]
            existing_dispute = await db.execute(select(Dispute).where(Dispute.booking_id == booking["id"]))
            if existing_dispute.scalars().first():
                print("  Dispute already exists, skipping")
                await db.commit()
                return

            now = utcnow()
            customer = DEMO_USERS["customer"]
            vendor = DEMO_USERS["vendor"]

            dispute = Dispute(
                booking_id=booking["id"],
                customer_id=customer,
                vendor_id=vendor,
                opened_by=customer,
                reason="Kitchen and bathroom were left uncleaned; vendor left after 2 of 5 hours.",
                escrow_amount=Decimal("200.00"),
                currency=settings.DEFAULT_CURRENCY,
                phase=DisputePhase.PHASE_1,
                phase1_deadline=now + timedelta(days=settings.PHASE1_DURATION_DAYS),
                revision=3,
                event_sequence=3,
                created_at=now,
                updated_at=now,
            )
            db.add(dispute)
            await db.flush()

            evidence = Evidence(
                dispute_id=dispute.id,
                uploader_id=customer,
                uploader_role=PartyRole.CUSTOMER,
                url="https://res.cloudinary.com/demo/image/upload/kitchen.jpg",
                type=EvidenceType.IMAGE,
                original_filename="kitchen.jpg",
                file_size=482113,
                uploaded_at=now,
            )
            offer = CounterOffer(
                dispute_id=dispute.id,
                author_id=customer,
                author_role=PartyRole.CUSTOMER,
                percent_to_customer=80,
                message="Only 40% of the job was done.",
                sequence=1,
                created_at=now,
            )
            db.add_all([evidence, offer])
            await db.flush()

            for sequence, (event_type, payload) in enumerate(
                [
                    (EventType.DISPUTE_OPENED, {"booking_id": str(booking["id"]), "escrow_amount": "200.00"}),
                    (EventType.EVIDENCE_SUBMITTED, {"evidence_id": str(evidence.id), "type": "image"}),
                    (EventType.COUNTER_OFFER, {"offer_id": str(offer.id), "percent_to_customer": 80}),
                ],
                start=1,
            ):
                db.add(
                    DisputeEvent(
                        dispute_id=dispute.id,
                        sequence=sequence,
                        event_type=event_type.value,
                        actor_id=customer,
                        actor_role=PartyRole.CUSTOMER,
                        payload=payload,
                        created_at=now,
                    )
                )

            await db.commit()
            print(f"  Created dispute {dispute.id} in phase 1")

        except Exception as e:
            await db.rollback()
            print(f"Seed failed: {e}")
            raise

    print("\nDemo tokens:")
    for name, user_id in DEMO_USERS.items():
        claims = {"sub": str(user_id)}
        if name == "admin":
            claims["role"] = "admin"
        print(f"  {name}: {create_access_token(claims)}")
    print("\nSeed complete!")


if __name__ == "__main__":
    asyncio.run(seed())
