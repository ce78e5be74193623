"""Dispute model"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING
import uuid

from sqlalchemy import (
    String,
    Text,
    Integer,
    ForeignKey,
    Numeric,
    Index,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from disputeflow.core.exceptions import (
    DoubleTerminalTransition,
    InvariantViolation,
)
from disputeflow.db.base import Base
from disputeflow.db.types import GUID, UTCDateTime, utcnow
from disputeflow.disputes.money import check_split
from disputeflow.disputes.phases import (
    DisputePhase,
    PartyRole,
    ResolutionPath,
    assert_transition,
    is_terminal,
)

if TYPE_CHECKING:
    from disputeflow.db.models.booking import Booking
    from disputeflow.db.models.negotiation import CounterOffer
    from disputeflow.db.models.mediation import AiMediationOption, PartySelection
    from disputeflow.db.models.decision import AiDecision
    from disputeflow.db.models.evidence import Evidence
    from disputeflow.db.models.event import DisputeEvent


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Dispute(Base):
    """Escrow dispute over one booking, moving through the three phases."""

    __tablename__ = "disputes"
    __table_args__ = (
        Index("ix_disputes_phase_deadlines", "phase", "phase1_deadline", "phase2_deadline", "phase3_review_deadline"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        GUID,
        ForeignKey("bookings.id", ondelete="RESTRICT"),
        index=True,
    )

    # Parties
    customer_id: Mapped[uuid.UUID] = mapped_column(GUID, index=True)
    vendor_id: Mapped[uuid.UUID] = mapped_column(GUID, index=True)
    opened_by: Mapped[uuid.UUID] = mapped_column(GUID)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Escrow
    escrow_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3))

    phase: Mapped[DisputePhase] = mapped_column(
        SQLEnum(
            DisputePhase,
            native_enum=False,
            length=30,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        index=True,
    )

    # Deadlines, each set once when its phase is entered
    phase1_deadline: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    phase2_deadline: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    phase3_review_deadline: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Terminal outcome
    final_customer_percent: Mapped[int | None] = mapped_column(Integer, nullable=True)
    final_vendor_percent: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resolution_path: Mapped[ResolutionPath | None] = mapped_column(
        SQLEnum(ResolutionPath, native_enum=False, length=30, values_callable=_enum_values),
        nullable=True,
    )
    external_resolution_by: Mapped[PartyRole | None] = mapped_column(
        SQLEnum(PartyRole, native_enum=False, length=20, values_callable=_enum_values),
        nullable=True,
    )
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Settlement whose ledger calls went out but whose outcome never committed
    pending_settlement: Mapped[str | None] = mapped_column(String(80), nullable=True)

    # Oracle input is frozen from the first mediator call onwards
    evidence_frozen_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Bumped by every committed mutation
    revision: Mapped[int] = mapped_column(Integer, default=0)
    event_sequence: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    booking: Mapped["Booking"] = relationship("Booking", back_populates="disputes")
    offers: Mapped[list["CounterOffer"]] = relationship(
        "CounterOffer",
        back_populates="dispute",
        order_by="CounterOffer.sequence",
    )
    options: Mapped[list["AiMediationOption"]] = relationship(
        "AiMediationOption",
        back_populates="dispute",
        order_by="AiMediationOption.label",
    )
    selections: Mapped[list["PartySelection"]] = relationship(
        "PartySelection",
        back_populates="dispute",
    )
    decision: Mapped["AiDecision | None"] = relationship(
        "AiDecision",
        back_populates="dispute",
        uselist=False,
    )
    evidence: Mapped[list["Evidence"]] = relationship(
        "Evidence",
        back_populates="dispute",
        order_by="Evidence.uploaded_at",
    )
    events: Mapped[list["DisputeEvent"]] = relationship(
        "DisputeEvent",
        back_populates="dispute",
        order_by="DisputeEvent.sequence",
    )

    @validates("phase")
    def _validate_phase(self, key, value):
        target = DisputePhase(value)
        assert_transition(self.phase, target)
        return target

    @validates("escrow_amount", "currency", "customer_id", "vendor_id", "booking_id")
    def _validate_identity(self, key, value):
        current = getattr(self, key)
        if current is not None and current != value:
            raise InvariantViolation(f"dispute {key} is immutable")
        return value

    @validates("phase1_deadline", "phase2_deadline", "phase3_review_deadline")
    def _validate_deadline(self, key, value):
        if getattr(self, key) is not None:
            raise InvariantViolation(f"{key} is already set")
        return value

    @validates("final_customer_percent", "final_vendor_percent", "resolution_path")
    def _validate_outcome(self, key, value):
        if getattr(self, key) is not None:
            raise DoubleTerminalTransition(f"dispute {self.id} already has a {key}")
        return value

    # -- derived reads -----------------------------------------------------

    @property
    def is_closed(self) -> bool:
        return is_terminal(self.phase)

    @property
    def active_deadline(self) -> datetime | None:
        """Deadline governing the current phase, None once closed."""
        return {
            DisputePhase.PHASE_1: self.phase1_deadline,
            DisputePhase.PHASE_2: self.phase2_deadline,
            DisputePhase.PHASE_3_PENDING: self.phase3_review_deadline,
        }.get(self.phase)

    def deadline_passed(self, now: datetime) -> bool:
        deadline = self.active_deadline
        return deadline is not None and now >= deadline

    def time_remaining(self, now: datetime) -> timedelta | None:
        deadline = self.active_deadline
        if deadline is None:
            return None
        return max(deadline - now, timedelta(0))

    def role_of(self, user_id: uuid.UUID) -> PartyRole | None:
        if user_id == self.customer_id:
            return PartyRole.CUSTOMER
        if user_id == self.vendor_id:
            return PartyRole.VENDOR
        return None

    def counterparty_of(self, role: PartyRole) -> uuid.UUID:
        return self.vendor_id if role is PartyRole.CUSTOMER else self.customer_id

    def party_id(self, role: PartyRole) -> uuid.UUID:
        return self.customer_id if role is PartyRole.CUSTOMER else self.vendor_id

    def record_outcome(
        self,
        customer_percent: int,
        vendor_percent: int,
        path: ResolutionPath,
        phase: DisputePhase,
        now: datetime,
    ) -> None:
        """Set the terminal outcome exactly once and close the dispute."""
        check_split(customer_percent, vendor_percent)
        if self.is_closed:
            raise DoubleTerminalTransition(f"dispute {self.id} is already {self.phase.value}")
        self.final_customer_percent = customer_percent
        self.final_vendor_percent = vendor_percent
        self.resolution_path = path
        self.phase = phase
        self.resolved_at = now

    def __repr__(self) -> str:
        return f"<Dispute {self.id} ({self.phase.value if self.phase else None})>"
