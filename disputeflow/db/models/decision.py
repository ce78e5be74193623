"""Binding AI decision model (Phase 3)"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
import uuid

from sqlalchemy import (
    Text,
    JSON,
    Boolean,
    ForeignKey,
    Integer,
    Numeric,
    CheckConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from disputeflow.core.exceptions import InvariantViolation
from disputeflow.db.base import Base
from disputeflow.db.types import GUID, UTCDateTime, utcnow
from disputeflow.disputes.phases import DecisionStatus, PartyRole

if TYPE_CHECKING:
    from disputeflow.db.models.dispute import Dispute


class AiDecision(Base):
    """The mediator's binding split, reviewable for a limited window."""

    __tablename__ = "ai_decisions"
    __table_args__ = (
        CheckConstraint(
            "customer_refund_percent + vendor_payment_percent = 100",
            name="ck_ai_decisions_split",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    dispute_id: Mapped[uuid.UUID] = mapped_column(
        GUID,
        ForeignKey("disputes.id", ondelete="RESTRICT"),
        unique=True,
        index=True,
    )

    customer_refund_percent: Mapped[int] = mapped_column(Integer)
    vendor_payment_percent: Mapped[int] = mapped_column(Integer)
    customer_refund_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    vendor_payment_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))

    decision_summary: Mapped[str] = mapped_column(Text)
    full_reasoning: Mapped[str] = mapped_column(Text)
    key_factors: Mapped[list | None] = mapped_column(JSON, nullable=True)

    status: Mapped[DecisionStatus] = mapped_column(
        SQLEnum(DecisionStatus, native_enum=False, length=30, values_callable=lambda e: [m.value for m in e]),
        default=DecisionStatus.PENDING,
    )
    auto_executed: Mapped[bool] = mapped_column(Boolean, default=False)
    executed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    overridden_by: Mapped[PartyRole | None] = mapped_column(
        SQLEnum(PartyRole, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=True,
    )
    overridden_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    dispute: Mapped["Dispute"] = relationship("Dispute", back_populates="decision")

    @validates("status")
    def _validate_status(self, key, value):
        if self.status is not None and self.status is not DecisionStatus.PENDING:
            raise InvariantViolation(f"decision {self.id} is already {self.status.value}")
        return DecisionStatus(value)

    def mark_executed(self, now: datetime, auto: bool = False) -> None:
        self.status = DecisionStatus.EXECUTED
        self.executed_at = now
        self.auto_executed = auto

    def mark_overridden(self, role: PartyRole, now: datetime) -> None:
        self.status = DecisionStatus.OVERRIDDEN_EXTERNAL
        self.overridden_by = role
        self.overridden_at = now

    def __repr__(self) -> str:
        return f"<AiDecision {self.dispute_id} {self.customer_refund_percent}/{self.vendor_payment_percent} ({self.status.value})>"
