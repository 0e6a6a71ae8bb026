# deps.py
# Dependency injections for routes: database session, processor, locks.

from typing import Annotated, AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from payouts.database import SessionLocal
from payouts.locks import ScheduleLocks, schedule_locks
from payouts.transaction_service import TransactionProcessor


# -----------------------
#  DATABASE DEPENDENCY
# -----------------------
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session

SessionDep = Annotated[AsyncSession, Depends(get_db)]


# -----------------------
#  ENGINE COMPONENTS
# -----------------------
def get_processor(request: Request) -> TransactionProcessor:
    processor = getattr(request.app.state, "processor", None)
    if processor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Transaction processor is not running",
        )
    return processor


def get_locks() -> ScheduleLocks:
    return schedule_locks

ProcessorDep = Annotated[TransactionProcessor, Depends(get_processor)]
LocksDep = Annotated[ScheduleLocks, Depends(get_locks)]
