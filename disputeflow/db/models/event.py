"""Dispute timeline event model"""

from datetime import datetime
from typing import TYPE_CHECKING
import uuid

from sqlalchemy import String, JSON, ForeignKey, Integer, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from disputeflow.db.base import Base
from disputeflow.db.types import GUID, UTCDateTime, utcnow
from disputeflow.disputes.phases import PartyRole

if TYPE_CHECKING:
    from disputeflow.db.models.dispute import Dispute


class DisputeEvent(Base):
    """Audit trail entry, written in the same transaction as the change it records."""

    __tablename__ = "dispute_events"
    __table_args__ = (
        UniqueConstraint("dispute_id", "sequence", name="uq_dispute_events_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    dispute_id: Mapped[uuid.UUID] = mapped_column(
        GUID,
        ForeignKey("disputes.id", ondelete="RESTRICT"),
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer)
    event_type: Mapped[str] = mapped_column(String(40))
    actor_id: Mapped[uuid.UUID | None] = mapped_column(GUID, nullable=True)
    actor_role: Mapped[PartyRole] = mapped_column(
        SQLEnum(PartyRole, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e])
    )
    payload: Mapped[dict] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    dispute: Mapped["Dispute"] = relationship("Dispute", back_populates="events")

    def __repr__(self) -> str:
        return f"<DisputeEvent {self.dispute_id} #{self.sequence} {self.event_type}>"
