"""Dispute phases and the legal transitions between them"""

import enum

from disputeflow.core.exceptions import IllegalPhaseTransition


class DisputePhase(str, enum.Enum):
    """Closed set of dispute phases."""
    PHASE_1 = "phase_1"                    # direct negotiation
    PHASE_2 = "phase_2"                    # AI mediation options
    PHASE_3_PENDING = "phase_3_pending"    # binding decision under review
    PHASE_3_AI = "phase_3_ai"              # decision executed
    PHASE_3_EXTERNAL = "phase_3_external"  # a party opted out
    RESOLVED = "resolved"                  # settled in phase 1 or 2


class PartyRole(str, enum.Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    SYSTEM = "system"


class ResolutionPath(str, enum.Enum):
    NEGOTIATED = "negotiated"
    AI_MEDIATED = "ai_mediated"
    AI_DECISION = "ai_decision"
    EXTERNAL_OVERRIDE = "external_override"


class DecisionStatus(str, enum.Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    OVERRIDDEN_EXTERNAL = "overridden_external"


class EvidenceType(str, enum.Enum):
    IMAGE = "image"
    DOCUMENT = "document"
    VIDEO = "video"


class EventType(str, enum.Enum):
    DISPUTE_OPENED = "dispute_opened"
    EVIDENCE_SUBMITTED = "evidence_submitted"
    EVIDENCE_REMOVED = "evidence_removed"
    COUNTER_OFFER = "counter_offer"
    OFFER_ACCEPTED = "offer_accepted"
    ESCALATED_PHASE_2 = "escalated_phase_2"
    AI_OPTIONS_GENERATED = "ai_options_generated"
    OPTION_SELECTED = "option_selected"
    ESCALATED_PHASE_3 = "escalated_phase_3"
    AI_DECISION = "ai_decision"
    DECISION_EXECUTED = "decision_executed"
    EXTERNAL_RESOLUTION = "external_resolution"
    DISPUTE_RESOLVED = "dispute_resolved"


TRANSITIONS: dict[DisputePhase, frozenset[DisputePhase]] = {
    DisputePhase.PHASE_1: frozenset({DisputePhase.PHASE_2, DisputePhase.RESOLVED}),
    DisputePhase.PHASE_2: frozenset({DisputePhase.PHASE_3_PENDING, DisputePhase.RESOLVED}),
    DisputePhase.PHASE_3_PENDING: frozenset({DisputePhase.PHASE_3_AI, DisputePhase.PHASE_3_EXTERNAL}),
    DisputePhase.PHASE_3_AI: frozenset(),
    DisputePhase.PHASE_3_EXTERNAL: frozenset(),
    DisputePhase.RESOLVED: frozenset(),
}

TERMINAL_PHASES = frozenset(phase for phase, targets in TRANSITIONS.items() if not targets)
ACTIVE_PHASES = frozenset(DisputePhase) - TERMINAL_PHASES

# Position in the forward order; terminal phases share the last rank
PHASE_ORDER: dict[DisputePhase, int] = {
    DisputePhase.PHASE_1: 0,
    DisputePhase.PHASE_2: 1,
    DisputePhase.PHASE_3_PENDING: 2,
    DisputePhase.PHASE_3_AI: 3,
    DisputePhase.PHASE_3_EXTERNAL: 3,
    DisputePhase.RESOLVED: 3,
}


def is_terminal(phase: DisputePhase) -> bool:
    return phase in TERMINAL_PHASES


def can_transition(source: DisputePhase, target: DisputePhase) -> bool:
    return target in TRANSITIONS[source]


def assert_transition(source: DisputePhase | None, target: DisputePhase) -> None:
    """Raise IllegalPhaseTransition unless source -> target is an edge of the machine."""
    if source is None:
        if target is not DisputePhase.PHASE_1:
            raise IllegalPhaseTransition(f"a dispute must start in phase_1, not {target.value}")
        return
    if source == target:
        return
    if not can_transition(source, target):
        raise IllegalPhaseTransition(f"{source.value} -> {target.value} is not allowed")
