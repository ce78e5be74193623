"""Counter-offer model (Phase 1 negotiation ledger)"""

from datetime import datetime
from typing import TYPE_CHECKING
import uuid

from sqlalchemy import String, Text, ForeignKey, Integer, UniqueConstraint, CheckConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from disputeflow.db.base import Base
from disputeflow.db.types import GUID, UTCDateTime, utcnow
from disputeflow.disputes.phases import PartyRole

if TYPE_CHECKING:
    from disputeflow.db.models.dispute import Dispute


class CounterOffer(Base):
    """One offer in the append-only negotiation log of a dispute."""

    __tablename__ = "counter_offers"
    __table_args__ = (
        UniqueConstraint("dispute_id", "sequence", name="uq_counter_offers_dispute_sequence"),
        CheckConstraint("percent_to_customer BETWEEN 0 AND 100", name="ck_counter_offers_percent"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    dispute_id: Mapped[uuid.UUID] = mapped_column(
        GUID,
        ForeignKey("disputes.id", ondelete="RESTRICT"),
        index=True,
    )
    author_id: Mapped[uuid.UUID] = mapped_column(GUID)
    author_role: Mapped[PartyRole] = mapped_column(
        SQLEnum(PartyRole, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e])
    )
    percent_to_customer: Mapped[int] = mapped_column(Integer)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Insertion order within the dispute, breaks created_at ties
    sequence: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    dispute: Mapped["Dispute"] = relationship("Dispute", back_populates="offers")

    @property
    def percent_to_vendor(self) -> int:
        return 100 - self.percent_to_customer

    def __repr__(self) -> str:
        return f"<CounterOffer {self.dispute_id} #{self.sequence} {self.percent_to_customer}%>"
