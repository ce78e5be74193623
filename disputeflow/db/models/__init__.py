"""Database models"""

from disputeflow.db.models.booking import Booking, BookingStatus, DISPUTABLE_STATUSES
from disputeflow.db.models.dispute import Dispute
from disputeflow.db.models.negotiation import CounterOffer
from disputeflow.db.models.mediation import AiMediationOption, PartySelection, OPTION_LABELS
from disputeflow.db.models.decision import AiDecision
from disputeflow.db.models.evidence import Evidence
from disputeflow.db.models.event import DisputeEvent
from disputeflow.db.models.analysis import DisputeAnalysis

__all__ = [
    "Booking",
    "BookingStatus",
    "DISPUTABLE_STATUSES",
    "Dispute",
    "CounterOffer",
    "AiMediationOption",
    "PartySelection",
    "OPTION_LABELS",
    "AiDecision",
    "Evidence",
    "DisputeEvent",
    "DisputeAnalysis",
]
