"""Shared fixtures: on-disk SQLite per test, deterministic collaborators, a fixed clock."""

import os

os.environ.setdefault("APP_ENV", "testing")

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from disputeflow.adapters.ledger import EscrowLedger, FeeReceipt, TransferReceipt
from disputeflow.adapters.notifications import EventSink
from disputeflow.adapters.oracle import MediationOracle, OracleAnalysis, OracleDecision, OracleOption
from disputeflow.core.logging import setup_logging
from disputeflow.db.base import Base, build_engine, build_session_factory
from disputeflow.db.models import Booking, BookingStatus
from disputeflow.disputes.evidence import EvidenceService
from disputeflow.disputes.locks import DisputeLockRegistry
from disputeflow.disputes.state_machine import DisputeStateMachine
from disputeflow.tasks.background import drain

setup_logging(debug=True, log_dir=None)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock the tests move by hand."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeLedger(EscrowLedger):
    """In-memory escrow. Repeated idempotency keys return the first receipt."""

    def __init__(self, held: Decimal = Decimal("200.00")):
        self.default_held = held
        self.held: dict[uuid.UUID, Decimal] = {}
        self.transfers: list[TransferReceipt] = []
        self.fees: list[FeeReceipt] = []
        self.transfer_error: Exception | None = None
        self.fee_error: Exception | None = None
        self._receipts: dict[str, object] = {}

    async def get_held_amount(self, booking_id):
        return self.held.get(booking_id, self.default_held)

    async def _transfer(self, booking_id, customer_percent, vendor_percent, idempotency_key):
        if self.transfer_error is not None:
            raise self.transfer_error
        if idempotency_key in self._receipts:
            return self._receipts[idempotency_key]
        receipt = TransferReceipt(idempotency_key, booking_id, customer_percent, vendor_percent)
        self._receipts[idempotency_key] = receipt
        self.transfers.append(receipt)
        return receipt

    async def charge_fee(self, user_id, amount, currency, *, idempotency_key):
        if self.fee_error is not None:
            raise self.fee_error
        if idempotency_key in self._receipts:
            return self._receipts[idempotency_key]
        receipt = FeeReceipt(idempotency_key, user_id, amount, currency)
        self._receipts[idempotency_key] = receipt
        self.fees.append(receipt)
        return receipt


def default_options() -> list[OracleOption]:
    return [
        OracleOption("A", "Evidence-Based Resolution", 50, 50, "Evidence is balanced", ["photos"], False),
        OracleOption("B", "Compromise", 70, 30, "Most of the job was missed", ["timesheet"], True),
        OracleOption("C", "Platform Policy", 30, 70, "Terms favour the vendor", ["terms"], False),
    ]


def default_analysis() -> OracleAnalysis:
    return OracleAnalysis(
        evidence_analysis={
            "customer": {"evidenceStrength": "strong", "summary": "Photos of uncleaned rooms"},
            "vendor": {"evidenceStrength": "weak", "summary": "No timesheet"},
        },
        description_analysis={"consistency": "consistent"},
        behavior_analysis={"customerConduct": "cooperative", "vendorConduct": "slow to respond"},
        overall_assessment={"primaryIssue": "Incomplete cleaning", "faultAssessment": "mostly_vendor"},
        ai_model="fake-mediator",
    )


class FakeOracle(MediationOracle):
    """Scripted mediator. `gate` lets a test hold a call open."""

    def __init__(self):
        self.options = default_options()
        self.analysis = default_analysis()
        self.decision = OracleDecision(60, 40, "Split 60/40", "Partial service was delivered", ["hours"])
        self.error: Exception | None = None
        self.delay: float = 0
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.analysis_calls = []
        self.option_calls = []
        self.decision_calls = []

    async def _wait(self):
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error

    async def analyze_dispute(self, context):
        self.analysis_calls.append(context)
        await self._wait()
        return self.analysis

    async def generate_options(self, context):
        self.option_calls.append(context)
        await self._wait()
        return list(self.options)

    async def generate_decision(self, context):
        self.decision_calls.append(context)
        await self._wait()
        return self.decision


@dataclass
class RecordingSink(EventSink):
    events: list[tuple[uuid.UUID, str, dict]] = field(default_factory=list)

    async def emit(self, dispute_id, event_type, payload):
        self.events.append((dispute_id, event_type, payload))

    def types(self, dispute_id=None) -> list[str]:
        return [t for d, t, _ in self.events if dispute_id is None or d == dispute_id]


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'disputes.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest_asyncio.fixture
async def machine(session_factory, ledger, oracle, sink, clock):
    machine = DisputeStateMachine(
        session_factory,
        ledger=ledger,
        oracle=oracle,
        sink=sink,
        clock=clock,
        locks=DisputeLockRegistry(),
        phase1_duration=timedelta(days=7),
        phase2_duration=timedelta(days=7),
        review_window=timedelta(hours=24),
        external_fee=Decimal("25.00"),
        oracle_timeout=5,
    )
    yield machine
    await drain(timeout=5)


@pytest.fixture
def evidence_service(session_factory, sink, clock, machine):
    return EvidenceService(session_factory, sink, clock=clock, locks=machine.locks)


@pytest.fixture
def customer_id():
    return uuid.uuid4()


@pytest.fixture
def vendor_id():
    return uuid.uuid4()


@pytest.fixture
def make_booking(session_factory, customer_id, vendor_id, clock):
    async def _make(status: BookingStatus = BookingStatus.COMPLETED, **overrides) -> Booking:
        booking = Booking(
            customer_id=overrides.pop("customer_id", customer_id),
            vendor_id=overrides.pop("vendor_id", vendor_id),
            service_title=overrides.pop("service_title", "Apartment cleaning"),
            status=status.value,
            currency=overrides.pop("currency", "CHF"),
            created_at=clock(),
        )
        async with session_factory() as db:
            db.add(booking)
            await db.commit()
        return booking

    return _make


@pytest_asyncio.fixture
async def dispute(machine, make_booking, customer_id):
    """A CHF 200 dispute in phase 1, opened by the customer at T0."""
    booking = await make_booking()
    return await machine.open_dispute(booking.id, customer_id, reason="Half the rooms were not cleaned")


@pytest.fixture
def read(session_factory):
    """Run a read accessor in a fresh session: `await read(queries.get_options, dispute.id)`."""
    async def _read(fn, *args, **kwargs):
        async with session_factory() as db:
            return await fn(db, *args, **kwargs)

    return _read
