# transaction_service.py
# Executes a schedule's pending amount through the payment rail

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from payouts.alert_service import AlertService
from payouts.config import settings
from payouts.due_dates import next_due_date
from payouts.exceptions import (
    ConcurrencyConflictError, InvalidStateError, NotFoundError,
)
from payouts.locks import ScheduleLocks, schedule_locks
from payouts.models import (
    ALLOWED_TRANSITIONS, PayoutTransaction, ScheduleStatus, ScheduleType,
    TransactionStatus, utcnow,
)
from payouts.payment_rail_service import PaymentRail, RailRequest, RailResult
from payouts.repositories import ScheduleRepository, TransactionRepository

log = logging.getLogger(__name__)

BLOCKED_STATUSES = (ScheduleStatus.PAUSED.value, ScheduleStatus.CANCELLED.value)

INTERRUPTED_REASON = "Processing interrupted before the payment rail confirmed"


def transition(transaction: PayoutTransaction, status: str, now: datetime):
    """Move a transaction along pending -> processing -> terminal."""
    allowed = ALLOWED_TRANSITIONS.get(transaction.status, set())
    if status not in allowed:
        raise InvalidStateError(
            f"Transaction {transaction.id} cannot move from {transaction.status} to {status}"
        )
    transaction.status = status
    transaction.touch(now)


def build_reference(schedule_type: str, entity_type: str, now: datetime) -> str:
    return f"{schedule_type.upper()}-{entity_type.upper()}-{now:%Y%m%d%H%M%S}-{uuid4().hex[:8].upper()}"


class TransactionProcessor:
    """
    Creates transactions for schedules and resolves them in the background.

    At most one transaction per schedule is in flight. Resolution runs as a
    tracked task bounded by ``timeout_seconds``; a timeout is recorded as a
    failure. Cancelling the task (shutdown) records the transaction as
    cancelled so the schedule is never left locked; ``recover`` fails the
    transactions a process left behind without shutting down.
    """

    def __init__(
        self,
        session_factory: Callable,
        rail: PaymentRail,
        timeout_seconds: float = settings.RAIL_CONFIRMATION_TIMEOUT_SECONDS,
        locks: ScheduleLocks = schedule_locks,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.rail = rail
        self.timeout_seconds = timeout_seconds
        self.locks = locks
        self.clock = clock
        self._tasks: Dict[int, asyncio.Task] = {}
        self._requests: Dict[int, RailRequest] = {}

    async def process(
        self,
        db: AsyncSession,
        schedule_id: int,
        notes: Optional[str] = None,
    ) -> PayoutTransaction:
        """
        Start executing a schedule's pending amount.

        Returns:
            The transaction, already in processing status

        Raises:
            NotFoundError: unknown schedule
            InvalidStateError: nothing pending, or schedule paused/cancelled
            ConcurrencyConflictError: a transaction is already in flight
        """
        async with self.locks.hold(schedule_id):
            now = self.clock()
            schedule = await ScheduleRepository(db).get(schedule_id, refresh=True)
            if not schedule:
                raise NotFoundError(f"Schedule {schedule_id} not found")

            in_flight = await TransactionRepository(db).find_in_flight(schedule_id)
            if in_flight is not None:
                raise ConcurrencyConflictError(
                    f"Transaction {in_flight.id} is already in flight for schedule {schedule_id}"
                )
            if schedule.status in BLOCKED_STATUSES:
                raise InvalidStateError(f"Schedule {schedule_id} is {schedule.status}")
            if schedule.pending_amount <= 0:
                raise InvalidStateError(f"Schedule {schedule_id} has no pending amount")

            transaction = PayoutTransaction(
                schedule_id=schedule.id,
                entity_id=schedule.entity_id,
                entity_name=schedule.entity_name,
                entity_type=schedule.entity_type,
                transaction_type=schedule.schedule_type,
                amount=schedule.pending_amount,
                status=TransactionStatus.PENDING.value,
                scheduled_date=schedule.next_due_date,
                payment_method=schedule.payment_method,
                reference=build_reference(schedule.schedule_type, schedule.entity_type, now),
                notes=notes,
                created_at=now,
                updated_at=now,
            )
            TransactionRepository(db).add(transaction)
            await db.flush()
            transition(transaction, TransactionStatus.PROCESSING.value, now)
            await db.commit()
            await db.refresh(transaction)

            request = RailRequest(
                transaction_id=transaction.id,
                schedule_id=schedule.id,
                reference=transaction.reference,
                transaction_type=transaction.transaction_type,
                payment_method=transaction.payment_method,
                amount=transaction.amount,
            )
            task = asyncio.create_task(self._resolve(request))
            self._tasks[transaction.id] = task
            self._requests[transaction.id] = request
            task.add_done_callback(lambda _task, txn_id=transaction.id: self._forget(txn_id))

        log.info(
            f"Transaction {transaction.id} ({transaction.reference}) processing: "
            f"{transaction.transaction_type} of {transaction.amount} for schedule {schedule_id}"
        )
        return transaction

    async def _resolve(self, request: RailRequest):
        try:
            result = await asyncio.wait_for(self.rail.confirm(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            result = RailResult.rejected(
                f"Payment rail did not confirm within {self.timeout_seconds:g} seconds"
            )
        except asyncio.CancelledError:
            await asyncio.shield(self._finalize(request, None))
            raise
        except Exception as e:
            log.error(f"Payment rail error for {request.reference}: {e}")
            result = RailResult.rejected(f"Payment rail error: {e}")

        try:
            await asyncio.shield(self._finalize(request, result))
        except Exception:
            log.exception(f"Could not finalize transaction {request.transaction_id}")

    async def _finalize(self, request: RailRequest, result: Optional[RailResult]):
        """Apply the rail outcome; ``result`` None means resolution was cancelled."""
        async with self.locks.hold(request.schedule_id):
            async with self.session_factory() as db:
                now = self.clock()
                transaction = await TransactionRepository(db).get(request.transaction_id)
                schedule = await ScheduleRepository(db).get(request.schedule_id, refresh=True)
                if transaction is None or schedule is None or transaction.is_terminal:
                    return

                if result is None:
                    transition(transaction, TransactionStatus.CANCELLED.value, now)
                    transaction.failure_reason = "Resolution cancelled before confirmation"
                    log.warning(f"Transaction {transaction.id} cancelled before confirmation")
                elif result.success:
                    transition(transaction, TransactionStatus.COMPLETED.value, now)
                    transaction.processed_date = now
                    transaction.confirmed_date = now

                    if schedule.schedule_type == ScheduleType.COLLECTION.value:
                        schedule.total_collected = (schedule.total_collected or 0.0) + transaction.amount
                    else:
                        schedule.total_paid = (schedule.total_paid or 0.0) + transaction.amount
                    schedule.pending_amount = 0.0
                    schedule.last_processed_date = now

                    hours = max(0.0, (now - transaction.created_at).total_seconds() / 3600)
                    completed = schedule.successful_transactions
                    schedule.average_processing_time = (
                        schedule.average_processing_time * completed + hours
                    ) / (completed + 1)
                    schedule.successful_transactions = completed + 1

                    if schedule.status not in BLOCKED_STATUSES:
                        schedule.status = ScheduleStatus.ACTIVE.value
                    schedule.next_due_date = next_due_date(schedule.frequency, schedule.next_due_date)
                    schedule.touch(now)

                    await AlertService.resolve_for_entity(db, schedule.entity_id, now)
                    log.info(
                        f"Transaction {transaction.id} completed; schedule {schedule.id} "
                        f"next due {schedule.next_due_date.isoformat()}"
                    )
                else:
                    transition(transaction, TransactionStatus.FAILED.value, now)
                    transaction.processed_date = now
                    transaction.failure_reason = result.failure_reason

                    schedule.failed_transactions += 1
                    schedule.last_failure_reason = result.failure_reason
                    if schedule.status not in BLOCKED_STATUSES and schedule.next_due_date < now:
                        schedule.status = ScheduleStatus.OVERDUE.value
                    schedule.touch(now)
                    log.warning(
                        f"Transaction {transaction.id} failed for schedule {schedule.id}: "
                        f"{result.failure_reason}"
                    )

                await db.commit()

    async def wait_for(self, transaction_id: int):
        """Wait until the transaction's background resolution has finished."""
        task = self._tasks.get(transaction_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def drain(self):
        """Wait for every outstanding resolution."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self):
        """Cancel outstanding resolutions and record their transactions as cancelled."""
        tasks = list(self._tasks.values())
        requests = list(self._requests.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        # a task cancelled before its first step never reaches its own handler
        for request in requests:
            await self._finalize(request, None)
        if requests:
            log.info(f"Cancelled {len(requests)} outstanding transaction resolution(s)")

    async def recover(self) -> List[int]:
        """
        Fail transactions left in flight by a process that stopped without
        shutting down, so their schedules can be processed again.

        Returns:
            Ids of the transactions recorded as failed
        """
        async with self.session_factory() as db:
            stale = [
                transaction for transaction in await TransactionRepository(db).list_in_flight()
                if transaction.id not in self._tasks
            ]
            for transaction in stale:
                # pending rows never reached the rail; move them along first
                if transaction.status == TransactionStatus.PENDING.value:
                    transition(transaction, TransactionStatus.PROCESSING.value, self.clock())
            await db.commit()

        recovered = []
        for transaction in stale:
            request = RailRequest(
                transaction_id=transaction.id,
                schedule_id=transaction.schedule_id,
                reference=transaction.reference,
                transaction_type=transaction.transaction_type,
                payment_method=transaction.payment_method,
                amount=transaction.amount,
            )
            await self._finalize(request, RailResult.rejected(INTERRUPTED_REASON))
            recovered.append(transaction.id)

        if recovered:
            log.warning(f"Recovered {len(recovered)} interrupted transaction(s): {recovered}")
        return recovered

    def _forget(self, transaction_id: int):
        self._tasks.pop(transaction_id, None)
        self._requests.pop(transaction_id, None)

    @property
    def in_flight_count(self) -> int:
        return len(self._tasks)

    @staticmethod
    async def get_transaction(db: AsyncSession, transaction_id: int) -> PayoutTransaction:
        transaction = await TransactionRepository(db).get(transaction_id)
        if not transaction:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    @staticmethod
    async def list_transactions(db: AsyncSession, schedule_id: Optional[int] = None) -> List[PayoutTransaction]:
        """Transactions, newest first, optionally for one schedule."""
        return await TransactionRepository(db).list(schedule_id=schedule_id)
