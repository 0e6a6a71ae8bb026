# metrics_service.py
# Point-in-time dashboard snapshot over schedules, alerts and transactions

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from payouts.due_dates import days_past_due
from payouts.models import (
    AlertSeverity, ScheduleStatus, ScheduleType, TransactionStatus, utcnow,
)
from payouts.repositories import AlertRepository, ScheduleRepository, TransactionRepository
from payouts.schemas import AlertsCount, DashboardMetrics, Performance, UpcomingDue

log = logging.getLogger(__name__)


def percentage(numerator: int, denominator: int) -> float:
    """Percentage; 100 when there is nothing to measure."""
    if denominator == 0:
        return 100.0
    return numerator / denominator * 100


class MetricsService:

    @staticmethod
    async def snapshot(db: AsyncSession, now: Optional[datetime] = None) -> DashboardMetrics:
        """
        Dashboard metrics as of ``now``. Read only.

        Overdue counts follow schedule status. Alert counts cover unresolved
        alerts. Upcoming buckets: due on the same calendar day as ``now``,
        due within the next 7 days, due 7 to 14 days out.
        """
        now = now or utcnow()
        schedules = await ScheduleRepository(db).list()
        alerts = await AlertRepository(db).list(is_resolved=False)
        transactions = await TransactionRepository(db).list()

        collections = [s for s in schedules if s.schedule_type == ScheduleType.COLLECTION.value]
        payouts = [s for s in schedules if s.schedule_type == ScheduleType.PAYOUT.value]
        overdue = [s for s in schedules if s.status == ScheduleStatus.OVERDUE.value]

        week_end = now + timedelta(days=7)
        next_week_end = now + timedelta(days=14)

        completed = [t for t in transactions if t.status == TransactionStatus.COMPLETED.value]

        return DashboardMetrics(
            total_active_schedules=sum(1 for s in schedules if s.status == ScheduleStatus.ACTIVE.value),
            overdue_collections=sum(1 for s in collections if s.status == ScheduleStatus.OVERDUE.value),
            overdue_payouts=sum(1 for s in payouts if s.status == ScheduleStatus.OVERDUE.value),
            total_pending_collections=sum(s.pending_amount for s in collections),
            total_pending_payouts=sum(s.pending_amount for s in payouts),
            alerts_count=AlertsCount(
                total=len(alerts),
                unread=sum(1 for a in alerts if not a.is_read),
                critical=sum(1 for a in alerts if a.severity == AlertSeverity.CRITICAL.value),
                high=sum(1 for a in alerts if a.severity == AlertSeverity.HIGH.value),
            ),
            upcoming_due=UpcomingDue(
                today=sum(1 for s in schedules if s.next_due_date.date() == now.date()),
                this_week=sum(1 for s in schedules if now <= s.next_due_date <= week_end),
                next_week=sum(1 for s in schedules if week_end < s.next_due_date <= next_week_end),
            ),
            performance=Performance(
                on_time_rate=percentage(len(schedules) - len(overdue), len(schedules)),
                average_delay_days=(
                    sum(days_past_due(s.next_due_date, now) for s in overdue) / len(overdue)
                    if overdue else 0.0
                ),
                success_rate=percentage(len(completed), len(transactions)),
            ),
        )
