"""FastAPI dependencies"""

from functools import lru_cache
from typing import Annotated, Any
import uuid

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from disputeflow.adapters.ledger import HttpEscrowLedger
from disputeflow.adapters.notifications import default_sink
from disputeflow.adapters.oracle import LLMMediationOracle
from disputeflow.core.exceptions import AuthenticationError
from disputeflow.core.security import decode_access_token
from disputeflow.db.session import async_session_factory, get_db
from disputeflow.disputes.evidence import EvidenceService
from disputeflow.disputes.scheduler import EscalationScheduler
from disputeflow.disputes.state_machine import DisputeStateMachine


async def get_token_payload(
    authorization: Annotated[str | None, Header()] = None,
) -> dict[str, Any]:
    """Decode the bearer token of the request."""
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
        )

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
        )

    try:
        return decode_access_token(parts[1])
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
        )


async def get_current_user_id(
    payload: Annotated[dict[str, Any], Depends(get_token_payload)],
) -> uuid.UUID:
    """Get current user ID from the token's `sub` claim."""
    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )


@lru_cache
def get_state_machine() -> DisputeStateMachine:
    return DisputeStateMachine(
        async_session_factory,
        ledger=HttpEscrowLedger(),
        oracle=LLMMediationOracle(),
        sink=default_sink(),
    )


@lru_cache
def get_evidence_service() -> EvidenceService:
    return EvidenceService(async_session_factory, sink=get_state_machine().sink)


@lru_cache
def get_scheduler() -> EscalationScheduler:
    return EscalationScheduler(get_state_machine())


# Type aliases for dependencies
DBSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
StateMachine = Annotated[DisputeStateMachine, Depends(get_state_machine)]
EvidenceStore = Annotated[EvidenceService, Depends(get_evidence_service)]
Scheduler = Annotated[EscalationScheduler, Depends(get_scheduler)]
