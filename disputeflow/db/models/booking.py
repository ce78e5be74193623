"""Booking model (owned by the marketplace, read by the dispute engine)"""

from datetime import datetime
from typing import TYPE_CHECKING
import uuid

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum

from disputeflow.db.base import Base
from disputeflow.db.types import GUID, UTCDateTime, utcnow

if TYPE_CHECKING:
    from disputeflow.db.models.dispute import Dispute


class BookingStatus(str, enum.Enum):
    """Booking lifecycle as published by the marketplace."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


DISPUTABLE_STATUSES = frozenset({BookingStatus.IN_PROGRESS.value, BookingStatus.COMPLETED.value})


class Booking(Base):
    """A customer's booking of a vendor's service, paid into escrow."""

    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(GUID, index=True)
    vendor_id: Mapped[uuid.UUID] = mapped_column(GUID, index=True)
    service_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=BookingStatus.PENDING.value)
    currency: Mapped[str] = mapped_column(String(3), default="CHF")

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    disputes: Mapped[list["Dispute"]] = relationship("Dispute", back_populates="booking")

    @property
    def is_disputable(self) -> bool:
        return self.status in DISPUTABLE_STATUSES

    def __repr__(self) -> str:
        return f"<Booking {self.id} ({self.status})>"
