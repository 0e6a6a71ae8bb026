# schedule_service.py
# Registry of recurring collection and payout schedules

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from sqlalchemy.ext.asyncio import AsyncSession

from payouts.config import settings
from payouts.exceptions import (
    ConcurrencyConflictError, InvalidStateError, NotFoundError, ValidationError,
)
from payouts.locks import ScheduleLocks, schedule_locks
from payouts.models import (
    EntityType, Frequency, PaymentMethod, PayoutSchedule, ScheduleStatus,
    ScheduleType, utcnow,
)
from payouts.repositories import ScheduleRepository, TransactionRepository

log = logging.getLogger(__name__)

# Schedule types each entity type may carry: pharmacies and vendors pay
# commission to the platform, the platform pays doctors.
ENTITY_SCHEDULE_TYPES = {
    EntityType.PHARMACY.value: ScheduleType.COLLECTION.value,
    EntityType.VENDOR.value: ScheduleType.COLLECTION.value,
    EntityType.DOCTOR.value: ScheduleType.PAYOUT.value,
}

OPERATOR_STATUSES = (
    ScheduleStatus.ACTIVE.value,
    ScheduleStatus.PAUSED.value,
    ScheduleStatus.CANCELLED.value,
)

ALERT_SETTING_FIELDS = (
    "enable_alerts", "alert_days_before", "enable_overdue_alerts", "escalation_days",
)

UPDATABLE_FIELDS = (
    "entity_name", "frequency", "pending_amount", "total_amount",
    "payment_method", "minimum_amount", "auto_process", "notes",
)

AMOUNT_FIELDS = ("pending_amount", "total_amount")


def parse_enum(enum_cls: Type[Enum], value: Any, field: str) -> str:
    if isinstance(value, enum_cls):
        return value.value
    try:
        return enum_cls(value).value
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field} '{value}'. Expected one of: {allowed}")


def _non_negative(value: Any, field: str) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number. Got: {value!r}")
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative. Got: {amount}")
    return amount


def _validate_alert_settings(values: Dict[str, Any]) -> Dict[str, Any]:
    clean = {}
    for key, value in values.items():
        if key not in ALERT_SETTING_FIELDS or value is None:
            continue
        if key in ("alert_days_before", "escalation_days"):
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValidationError(f"{key} must be a non-negative integer. Got: {value!r}")
        clean[key] = value
    return clean


class ScheduleService:
    """Create, query and transition payout schedules."""

    @staticmethod
    async def create(
        db: AsyncSession,
        data: Dict[str, Any],
        now: Optional[datetime] = None,
        locks: ScheduleLocks = schedule_locks,
    ) -> PayoutSchedule:
        """
        Create a schedule from operator supplied fields.

        Args:
            data: Schedule fields minus id and counters (snake_case keys)
            now: Creation time, defaults to the current UTC time

        Raises:
            ValidationError: bad enumeration value, negative amount, an
                entity type that cannot carry the schedule type, or an
                entity that already has a schedule which is not cancelled
        """
        now = now or utcnow()

        entity_id = (data.get("entity_id") or "").strip()
        entity_name = (data.get("entity_name") or "").strip()
        if not entity_id or not entity_name:
            raise ValidationError("entity_id and entity_name are required")

        entity_type = parse_enum(EntityType, data.get("entity_type"), "entity_type")
        schedule_type = parse_enum(ScheduleType, data.get("schedule_type"), "schedule_type")
        if ENTITY_SCHEDULE_TYPES[entity_type] != schedule_type:
            raise ValidationError(
                f"A {entity_type} schedule must be a {ENTITY_SCHEDULE_TYPES[entity_type]}, not a {schedule_type}"
            )
        frequency = parse_enum(Frequency, data.get("frequency") or Frequency.MONTHLY, "frequency")
        payment_method = parse_enum(
            PaymentMethod, data.get("payment_method") or PaymentMethod.BANK_TRANSFER, "payment_method"
        )

        pending_amount = _non_negative(data.get("pending_amount") or 0, "pending_amount")
        total_amount = _non_negative(data.get("total_amount") or 0, "total_amount")
        minimum_amount = data.get("minimum_amount")
        minimum_amount = _non_negative(
            settings.DEFAULT_MINIMUM_AMOUNT if minimum_amount is None else minimum_amount,
            "minimum_amount",
        )

        alert_settings = {
            "enable_alerts": True,
            "alert_days_before": settings.DEFAULT_ALERT_DAYS_BEFORE,
            "enable_overdue_alerts": True,
            "escalation_days": settings.DEFAULT_ESCALATION_DAYS,
        }
        alert_settings.update(_validate_alert_settings(data.get("alert_settings") or {}))

        next_due = data.get("next_due_date") or now + timedelta(days=settings.DEFAULT_FIRST_DUE_DAYS)
        if next_due.tzinfo is not None:
            next_due = next_due.replace(tzinfo=None) - next_due.utcoffset()

        schedule = PayoutSchedule(
            entity_id=entity_id,
            entity_name=entity_name,
            entity_type=entity_type,
            schedule_type=schedule_type,
            frequency=frequency,
            next_due_date=next_due,
            pending_amount=pending_amount,
            total_amount=total_amount,
            total_collected=0.0 if schedule_type == ScheduleType.COLLECTION.value else None,
            total_paid=0.0 if schedule_type == ScheduleType.PAYOUT.value else None,
            status=ScheduleStatus.OVERDUE.value if next_due < now else ScheduleStatus.ACTIVE.value,
            payment_method=payment_method,
            minimum_amount=minimum_amount,
            auto_process=bool(data.get("auto_process", False)),
            notes=data.get("notes"),
            successful_transactions=0,
            failed_transactions=0,
            average_processing_time=0.0,
            created_at=now,
            updated_at=now,
            **alert_settings,
        )

        # alerts are keyed by entity, so an entity carries one live schedule
        async with locks.hold(("entity", entity_id)):
            repo = ScheduleRepository(db)
            existing = await repo.find_open_for_entity(entity_id)
            if existing is not None:
                raise ValidationError(
                    f"Entity {entity_id} already has schedule {existing.id} ({existing.status})"
                )
            repo.add(schedule)
            await db.commit()
            await db.refresh(schedule)

        log.info(
            f"Schedule created: {schedule.id} {schedule.schedule_type} for "
            f"{schedule.entity_type} {schedule.entity_id}, next due {schedule.next_due_date.isoformat()}"
        )
        return schedule

    @staticmethod
    async def get(db: AsyncSession, schedule_id: int) -> PayoutSchedule:
        schedule = await ScheduleRepository(db).get(schedule_id, refresh=True)
        if not schedule:
            raise NotFoundError(f"Schedule {schedule_id} not found")
        return schedule

    @staticmethod
    async def list(
        db: AsyncSession,
        entity_type: Optional[str] = None,
        schedule_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[PayoutSchedule]:
        """Schedules matching the filters, earliest due first."""
        if entity_type:
            entity_type = parse_enum(EntityType, entity_type, "entity_type")
        if schedule_type:
            schedule_type = parse_enum(ScheduleType, schedule_type, "schedule_type")
        if status:
            status = parse_enum(ScheduleStatus, status, "status")
        return await ScheduleRepository(db).list(
            entity_type=entity_type, schedule_type=schedule_type, status=status
        )

    @staticmethod
    async def update(
        db: AsyncSession,
        schedule_id: int,
        changes: Dict[str, Any],
        now: Optional[datetime] = None,
        locks: ScheduleLocks = schedule_locks,
    ) -> PayoutSchedule:
        """
        Apply a partial update. Counters, totals collected/paid, status and
        the due date are owned by the processor and status operations, as
        are the amounts while a transaction is in flight.

        Raises:
            ConcurrencyConflictError: amount change during an in-flight transaction
        """
        now = now or utcnow()
        unknown = set(changes) - set(UPDATABLE_FIELDS) - {"alert_settings"}
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        clean: Dict[str, Any] = {}
        for field, value in changes.items():
            if value is None or field == "alert_settings":
                continue
            if field == "frequency":
                clean[field] = parse_enum(Frequency, value, field)
            elif field == "payment_method":
                clean[field] = parse_enum(PaymentMethod, value, field)
            elif field in ("pending_amount", "total_amount", "minimum_amount"):
                clean[field] = _non_negative(value, field)
            elif field == "entity_name":
                if not str(value).strip():
                    raise ValidationError("entity_name cannot be empty")
                clean[field] = str(value).strip()
            else:
                clean[field] = value
        clean.update(_validate_alert_settings(changes.get("alert_settings") or {}))

        async with locks.hold(schedule_id):
            schedule = await ScheduleService.get(db, schedule_id)
            if schedule.status == ScheduleStatus.CANCELLED.value:
                raise InvalidStateError(f"Schedule {schedule_id} is cancelled")

            amounts = sorted(set(clean) & set(AMOUNT_FIELDS))
            if amounts:
                in_flight = await TransactionRepository(db).find_in_flight(schedule_id)
                if in_flight is not None:
                    raise ConcurrencyConflictError(
                        f"Cannot change {', '.join(amounts)} while transaction {in_flight.id} "
                        f"is in flight for schedule {schedule_id}"
                    )

            for field, value in clean.items():
                setattr(schedule, field, value)
            schedule.touch(now)

            await db.commit()
            await db.refresh(schedule)

        log.info(f"Schedule updated: {schedule_id} fields={sorted(clean)}")
        return schedule

    @staticmethod
    async def set_status(
        db: AsyncSession,
        schedule_id: int,
        status: str,
        now: Optional[datetime] = None,
        locks: ScheduleLocks = schedule_locks,
    ) -> PayoutSchedule:
        """
        Operator transition to active, paused or cancelled.

        Cancelled is terminal. Resuming a schedule whose due date already
        passed lands it in overdue. An in-flight transaction is left to
        finish; pausing or cancelling only blocks new processing.
        """
        now = now or utcnow()
        status = parse_enum(ScheduleStatus, status, "status")
        if status not in OPERATOR_STATUSES:
            raise ValidationError(f"Status '{status}' cannot be set directly")

        async with locks.hold(schedule_id):
            schedule = await ScheduleService.get(db, schedule_id)
            if schedule.status == ScheduleStatus.CANCELLED.value:
                raise InvalidStateError(f"Schedule {schedule_id} is cancelled")

            if status == ScheduleStatus.ACTIVE.value:
                in_flight = await TransactionRepository(db).find_in_flight(schedule_id)
                if schedule.next_due_date < now and in_flight is None:
                    status = ScheduleStatus.OVERDUE.value

            previous = schedule.status
            schedule.status = status
            schedule.touch(now)
            await db.commit()
            await db.refresh(schedule)

        log.info(f"Schedule status changed: {schedule_id} {previous} -> {status}")
        return schedule

    @staticmethod
    async def refresh_overdue(
        db: AsyncSession,
        now: Optional[datetime] = None,
        locks: ScheduleLocks = schedule_locks,
    ) -> List[PayoutSchedule]:
        """
        Reconcile active/overdue status with the clock.

        Active schedules past due with nothing in flight become overdue;
        overdue schedules no longer past due return to active.

        Returns:
            The schedules whose status changed
        """
        now = now or utcnow()
        repo = ScheduleRepository(db)
        changed = []

        for candidate in await repo.list():
            if candidate.status not in (ScheduleStatus.ACTIVE.value, ScheduleStatus.OVERDUE.value):
                continue
            async with locks.hold(candidate.id):
                schedule = await repo.get(candidate.id, refresh=True)
                past_due = schedule.next_due_date < now
                if schedule.status == ScheduleStatus.ACTIVE.value and past_due:
                    if await TransactionRepository(db).find_in_flight(schedule.id) is not None:
                        continue
                    schedule.status = ScheduleStatus.OVERDUE.value
                elif schedule.status == ScheduleStatus.OVERDUE.value and not past_due:
                    schedule.status = ScheduleStatus.ACTIVE.value
                else:
                    continue
                schedule.touch(now)
                await db.commit()
                changed.append(schedule)
                log.info(f"Schedule {schedule.id} is now {schedule.status}")

        return changed
