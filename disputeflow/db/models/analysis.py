"""Mediator analysis of a dispute, taken before options are proposed"""

from datetime import datetime
import uuid

from sqlalchemy import String, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from disputeflow.db.base import Base
from disputeflow.db.types import GUID, UTCDateTime, utcnow


class DisputeAnalysis(Base):
    """Evidence, account and conduct assessment. The latest row feeds later prompts."""

    __tablename__ = "dispute_analyses"

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    dispute_id: Mapped[uuid.UUID] = mapped_column(
        GUID,
        ForeignKey("disputes.id", ondelete="RESTRICT"),
        index=True,
    )

    evidence_analysis: Mapped[dict] = mapped_column(JSON)
    description_analysis: Mapped[dict] = mapped_column(JSON)
    behavior_analysis: Mapped[dict] = mapped_column(JSON)
    overall_assessment: Mapped[dict] = mapped_column(JSON)
    ai_model: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<DisputeAnalysis {self.dispute_id} at {self.created_at}>"
