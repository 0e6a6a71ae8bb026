# alert_service.py
# Due-soon, overdue and amount-threshold alerts for payout schedules

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from payouts.config import settings
from payouts.due_dates import days_past_due, days_until_due
from payouts.exceptions import InvalidStateError, NotFoundError
from payouts.locks import ScheduleLocks, schedule_locks
from payouts.models import (
    SEVERITY_RANK, AlertSeverity, AlertType, EntityType, PayoutAlert,
    PayoutSchedule, ScheduleStatus, ScheduleType, utcnow,
)
from payouts.repositories import AlertRepository, ScheduleRepository
from payouts.schedule_service import ScheduleService, parse_enum

log = logging.getLogger(__name__)

SKIPPED_STATUSES = (ScheduleStatus.PAUSED.value, ScheduleStatus.CANCELLED.value)


@dataclass
class AlertDraft:
    """The alert a schedule warrants right now, before it is stored"""
    alert_type: str
    severity: str
    title: str
    message: str
    amount: float
    due_date: datetime
    days_past_due: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AlertChange:
    action: str  # created, updated
    alert: PayoutAlert


def _money(amount: float) -> str:
    return f"{settings.CURRENCY} {amount:,.2f}"


def _due_phrase(days: int) -> str:
    if days <= 0:
        return "today"
    if days == 1:
        return "tomorrow"
    return f"in {days} days"


def _days(count: int) -> str:
    return f"{count} day" if count == 1 else f"{count} days"


class AlertService:
    """Alert evaluation, deduplication and user actions."""

    @staticmethod
    def assess(
        schedule: PayoutSchedule,
        now: datetime,
        threshold_multiplier: float = None,
        medium_within_days: int = None,
    ) -> List[AlertDraft]:
        """
        Alerts warranted by one schedule at ``now``.

        Overdue: high, critical once days past due reaches escalation_days.
        Due soon (within alert_days_before): low, medium within a day.
        Amount threshold (pending >= multiplier x minimum): medium.
        """
        if threshold_multiplier is None:
            threshold_multiplier = settings.AMOUNT_THRESHOLD_MULTIPLIER
        if medium_within_days is None:
            medium_within_days = settings.DUE_SOON_MEDIUM_DAYS

        is_collection = schedule.schedule_type == ScheduleType.COLLECTION.value
        noun = "Commission collection" if is_collection else "Commission payout"
        preposition = "from" if is_collection else "to"
        amount = schedule.pending_amount
        base_metadata = {"scheduleId": schedule.id, "paymentMethod": schedule.payment_method}

        drafts = []
        until_due = days_until_due(schedule.next_due_date, now)
        past_due = days_past_due(schedule.next_due_date, now)

        if past_due > 0:
            if schedule.enable_overdue_alerts:
                escalated = past_due >= schedule.escalation_days
                drafts.append(AlertDraft(
                    alert_type=(AlertType.COLLECTION_OVERDUE if is_collection else AlertType.PAYOUT_OVERDUE).value,
                    severity=(AlertSeverity.CRITICAL if escalated else AlertSeverity.HIGH).value,
                    title=f"{noun} Overdue".title(),
                    message=(
                        f"{noun} {preposition} {schedule.entity_name} is {_days(past_due)} overdue. "
                        f"Amount: {_money(amount)}"
                    ),
                    amount=amount,
                    due_date=schedule.next_due_date,
                    days_past_due=past_due,
                    metadata={**base_metadata, "escalated": escalated},
                ))
        elif 0 <= until_due <= schedule.alert_days_before:
            drafts.append(AlertDraft(
                alert_type=(AlertType.COLLECTION_DUE if is_collection else AlertType.PAYOUT_DUE).value,
                severity=(AlertSeverity.MEDIUM if until_due <= medium_within_days else AlertSeverity.LOW).value,
                title=f"{noun} Due {_due_phrase(until_due)}".title(),
                message=(
                    f"{noun} {preposition} {schedule.entity_name} is due {_due_phrase(until_due)}. "
                    f"Amount: {_money(amount)}"
                ),
                amount=amount,
                due_date=schedule.next_due_date,
                days_past_due=0,
                metadata=base_metadata,
            ))

        threshold = threshold_multiplier * schedule.minimum_amount
        if amount > 0 and amount >= threshold:
            if is_collection:
                message = (
                    f"{schedule.entity_name} has accumulated {_money(amount)} in pending commission. "
                    f"Consider early collection."
                )
            else:
                message = (
                    f"{_money(amount)} in commission is pending payout to {schedule.entity_name}. "
                    f"Consider an early payout."
                )
            drafts.append(AlertDraft(
                alert_type=AlertType.AMOUNT_THRESHOLD.value,
                severity=AlertSeverity.MEDIUM.value,
                title="High Commission Amount Pending",
                message=message,
                amount=amount,
                due_date=schedule.next_due_date,
                days_past_due=past_due or None,
                metadata={**base_metadata, "threshold": threshold, "currentAmount": amount},
            ))

        return drafts

    @staticmethod
    async def _upsert(
        db: AsyncSession,
        schedule: PayoutSchedule,
        draft: AlertDraft,
        now: datetime,
    ) -> Optional[AlertChange]:
        repo = AlertRepository(db)
        alert = await repo.find_open(schedule.entity_id, draft.alert_type)

        if alert is None:
            alert = PayoutAlert(
                schedule_id=schedule.id,
                entity_id=schedule.entity_id,
                entity_name=schedule.entity_name,
                entity_type=schedule.entity_type,
                alert_type=draft.alert_type,
                severity=draft.severity,
                title=draft.title,
                message=draft.message,
                amount=draft.amount,
                due_date=draft.due_date,
                days_past_due=draft.days_past_due,
                is_read=False,
                is_resolved=False,
                created_at=now,
                updated_at=now,
                alert_metadata=draft.metadata,
            )
            repo.add(alert)
            await db.flush()
            log.info(
                f"Alert created: {alert.alert_type} ({alert.severity}) for {alert.entity_id}, "
                f"schedule {schedule.id}"
            )
            return AlertChange(action="created", alert=alert)

        updates = {
            "schedule_id": schedule.id,
            "severity": draft.severity,
            "title": draft.title,
            "message": draft.message,
            "amount": draft.amount,
            "due_date": draft.due_date,
            "days_past_due": draft.days_past_due,
            "alert_metadata": draft.metadata,
        }
        changed = {key: value for key, value in updates.items() if getattr(alert, key) != value}
        if not changed:
            return None

        previous_severity = alert.severity
        for key, value in changed.items():
            setattr(alert, key, value)
        alert.touch(now)
        await db.flush()

        if previous_severity != alert.severity:
            log.info(f"Alert {alert.id} escalated: {previous_severity} -> {alert.severity}")
        return AlertChange(action="updated", alert=alert)

    @staticmethod
    async def evaluate(
        db: AsyncSession,
        now: Optional[datetime] = None,
        locks: ScheduleLocks = schedule_locks,
    ) -> List[AlertChange]:
        """
        Upsert the alerts every alert-enabled schedule warrants at ``now``.

        Alerts are keyed by (entity_id, alert_type): an open alert is
        updated in place, never duplicated. Alerts whose condition no
        longer holds are left for the user or the processor to resolve.
        Running it twice with no change in between reports no changes.
        """
        now = now or utcnow()
        repo = ScheduleRepository(db)
        changes = []

        for candidate in await repo.list(alerts_enabled=True):
            if candidate.status in SKIPPED_STATUSES:
                continue
            # Holding the schedule lock orders evaluation after any
            # finalisation touching the same schedule.
            async with locks.hold(candidate.id):
                schedule = await repo.get(candidate.id, refresh=True)
                if schedule.status in SKIPPED_STATUSES or not schedule.enable_alerts:
                    continue
                for draft in AlertService.assess(schedule, now):
                    change = await AlertService._upsert(db, schedule, draft, now)
                    if change:
                        changes.append(change)
                await db.commit()

        if changes:
            created = sum(1 for change in changes if change.action == "created")
            log.info(f"Alert evaluation: {created} created, {len(changes) - created} updated")
        return changes

    @staticmethod
    async def resolve_for_entity(db: AsyncSession, entity_id: str, now: datetime) -> List[PayoutAlert]:
        """Resolve every open alert of an entity. The caller commits."""
        alerts = await AlertRepository(db).list_open_for_entity(entity_id)
        for alert in alerts:
            alert.is_resolved = True
            alert.resolved_at = now
            alert.touch(now)
        if alerts:
            log.info(f"Resolved {len(alerts)} alert(s) for {entity_id}")
        return alerts

    @staticmethod
    async def get(db: AsyncSession, alert_id: int) -> PayoutAlert:
        alert = await AlertRepository(db).get(alert_id)
        if not alert:
            raise NotFoundError(f"Alert {alert_id} not found")
        return alert

    @staticmethod
    async def list(
        db: AsyncSession,
        entity_type: Optional[str] = None,
        severity: Optional[str] = None,
        is_read: Optional[bool] = None,
        is_resolved: Optional[bool] = None,
    ) -> List[PayoutAlert]:
        """Alerts matching the filters, most severe first, newest first within a severity."""
        if entity_type:
            entity_type = parse_enum(EntityType, entity_type, "entity_type")
        if severity:
            severity = parse_enum(AlertSeverity, severity, "severity")
        alerts = await AlertRepository(db).list(
            entity_type=entity_type, severity=severity, is_read=is_read, is_resolved=is_resolved
        )
        alerts.sort(key=lambda a: (SEVERITY_RANK[a.severity], a.created_at, a.id), reverse=True)
        return alerts

    @staticmethod
    async def mark_read(
        db: AsyncSession,
        alert_id: int,
        now: Optional[datetime] = None,
        locks: ScheduleLocks = schedule_locks,
    ) -> bool:
        now = now or utcnow()
        alert = await AlertService.get(db, alert_id)
        async with locks.hold(alert.schedule_id):
            alert = await AlertService.get(db, alert_id)
            if not alert.is_read:
                alert.is_read = True
                alert.touch(now)
                await db.commit()
                log.info(f"Alert {alert_id} marked as read")
        return True

    @staticmethod
    async def resolve(
        db: AsyncSession,
        alert_id: int,
        now: Optional[datetime] = None,
        locks: ScheduleLocks = schedule_locks,
    ) -> bool:
        now = now or utcnow()
        alert = await AlertService.get(db, alert_id)
        async with locks.hold(alert.schedule_id):
            alert = await AlertService.get(db, alert_id)
            if alert.is_resolved:
                raise InvalidStateError(f"Alert {alert_id} is already resolved")
            alert.is_resolved = True
            alert.resolved_at = now
            alert.touch(now)
            await db.commit()
        log.info(f"Alert {alert_id} resolved")
        return True


async def run_evaluation(
    db: AsyncSession,
    now: Optional[datetime] = None,
    locks: ScheduleLocks = schedule_locks,
) -> List[AlertChange]:
    """Status sweep followed by alert evaluation, one evaluation step."""
    now = now or utcnow()
    await ScheduleService.refresh_overdue(db, now=now, locks=locks)
    return await AlertService.evaluate(db, now=now, locks=locks)


class AlertEvaluationLoop:
    """Runs run_evaluation every ``interval_seconds`` until stopped."""

    def __init__(
        self,
        session_factory: Callable,
        interval_seconds: float = settings.ALERT_EVALUATION_INTERVAL_SECONDS,
        locks: ScheduleLocks = schedule_locks,
    ):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self.locks = locks
        self._task: Optional[asyncio.Task] = None

    async def run_once(self, now: Optional[datetime] = None) -> List[AlertChange]:
        async with self.session_factory() as db:
            return await run_evaluation(db, now=now, locks=self.locks)

    async def _run(self):
        while True:
            try:
                await self.run_once()
            except Exception:
                log.exception("Alert evaluation failed")
            await asyncio.sleep(self.interval_seconds)

    def start(self):
        if self.interval_seconds <= 0:
            log.info("Alert evaluation loop disabled")
            return
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
            log.info(f"Alert evaluation loop started, every {self.interval_seconds}s")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        log.info("Alert evaluation loop stopped")
