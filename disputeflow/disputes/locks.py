"""Per-dispute mutual exclusion.

Two layers: an asyncio lock serialises mutations inside this process, and
SELECT ... FOR UPDATE on the dispute row extends that to other processes
sharing the database. The row lock lives in the same transaction as the write.
"""

import asyncio
import uuid
import weakref

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from disputeflow.core.exceptions import NotFoundError
from disputeflow.db.models.dispute import Dispute


class DisputeLockRegistry:
    """Hands out one asyncio.Lock per dispute id; unused locks are dropped."""

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = weakref.WeakValueDictionary()

    def get(self, dispute_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(dispute_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[dispute_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


dispute_locks = DisputeLockRegistry()


async def load_for_update(db: AsyncSession, dispute_id: uuid.UUID) -> Dispute:
    """Load a dispute with a row lock held until the transaction ends."""
    result = await db.execute(
        select(Dispute)
        .where(Dispute.id == dispute_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    dispute = result.scalar_one_or_none()
    if dispute is None:
        raise NotFoundError("Dispute", str(dispute_id))
    return dispute
