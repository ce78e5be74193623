"""AI mediation options and party selections (Phase 2)"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
import uuid

from sqlalchemy import (
    String,
    Text,
    JSON,
    Boolean,
    ForeignKey,
    Integer,
    Numeric,
    UniqueConstraint,
    CheckConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from disputeflow.db.base import Base
from disputeflow.db.types import GUID, UTCDateTime, utcnow
from disputeflow.disputes.phases import PartyRole

if TYPE_CHECKING:
    from disputeflow.db.models.dispute import Dispute

OPTION_LABELS = ("A", "B", "C")


class AiMediationOption(Base):
    """One of the three resolution options proposed by the mediator."""

    __tablename__ = "ai_mediation_options"
    __table_args__ = (
        UniqueConstraint("dispute_id", "label", name="uq_ai_mediation_options_label"),
        CheckConstraint(
            "customer_refund_percent + vendor_payment_percent = 100",
            name="ck_ai_mediation_options_split",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    dispute_id: Mapped[uuid.UUID] = mapped_column(
        GUID,
        ForeignKey("disputes.id", ondelete="RESTRICT"),
        index=True,
    )
    label: Mapped[str] = mapped_column(String(1))
    title: Mapped[str] = mapped_column(String(255))

    customer_refund_percent: Mapped[int] = mapped_column(Integer)
    vendor_payment_percent: Mapped[int] = mapped_column(Integer)
    customer_refund_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    vendor_payment_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))

    reasoning: Mapped[str] = mapped_column(Text)
    key_factors: Mapped[list | None] = mapped_column(JSON, nullable=True)
    is_recommended: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    dispute: Mapped["Dispute"] = relationship("Dispute", back_populates="options")

    def __repr__(self) -> str:
        return f"<AiMediationOption {self.dispute_id} {self.label} {self.customer_refund_percent}/{self.vendor_payment_percent}>"


class PartySelection(Base):
    """The option currently picked by one party in Phase 2."""

    __tablename__ = "party_selections"
    __table_args__ = (
        UniqueConstraint("dispute_id", "role", name="uq_party_selections_role"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    dispute_id: Mapped[uuid.UUID] = mapped_column(
        GUID,
        ForeignKey("disputes.id", ondelete="RESTRICT"),
        index=True,
    )
    role: Mapped[PartyRole] = mapped_column(
        SQLEnum(PartyRole, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e])
    )
    user_id: Mapped[uuid.UUID] = mapped_column(GUID)
    selected_option_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID,
        ForeignKey("ai_mediation_options.id", ondelete="RESTRICT"),
        nullable=True,
    )
    selected_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    dispute: Mapped["Dispute"] = relationship("Dispute", back_populates="selections")

    def __repr__(self) -> str:
        return f"<PartySelection {self.dispute_id} {self.role.value} -> {self.selected_option_id}>"
