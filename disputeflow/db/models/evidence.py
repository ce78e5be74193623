"""Dispute evidence model"""

from datetime import datetime
from typing import TYPE_CHECKING
import uuid

from sqlalchemy import String, ForeignKey, Integer, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from disputeflow.db.base import Base
from disputeflow.db.types import GUID, UTCDateTime, utcnow
from disputeflow.disputes.phases import EvidenceType, PartyRole

if TYPE_CHECKING:
    from disputeflow.db.models.dispute import Dispute


class Evidence(Base):
    """An uploaded artifact backing one party's side of a dispute."""

    __tablename__ = "dispute_evidence"

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    dispute_id: Mapped[uuid.UUID] = mapped_column(
        GUID,
        ForeignKey("disputes.id", ondelete="RESTRICT"),
        index=True,
    )
    uploader_id: Mapped[uuid.UUID] = mapped_column(GUID)
    uploader_role: Mapped[PartyRole] = mapped_column(
        SQLEnum(PartyRole, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e])
    )

    url: Mapped[str] = mapped_column(String(1000))
    type: Mapped[EvidenceType] = mapped_column(
        SQLEnum(EvidenceType, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e])
    )
    original_filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    uploaded_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    # Set when the uploader withdraws it; rows are never deleted
    removed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    dispute: Mapped["Dispute"] = relationship("Dispute", back_populates="evidence")

    def __repr__(self) -> str:
        return f"<Evidence {self.dispute_id} {self.type.value} {self.url}>"
