# analytics_service.py
# Time-windowed collection/payout report over transaction history

import logging
import re
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from payouts.exceptions import ValidationError
from payouts.metrics_service import percentage
from payouts.models import ScheduleType, TransactionStatus, utcnow
from payouts.repositories import TransactionRepository
from payouts.schemas import AnalyticsReport

log = logging.getLogger(__name__)

TIMEFRAME_PATTERN = re.compile(r"^\s*(\d+)\s*d?\s*$")


def parse_timeframe(timeframe) -> int:
    """'30d' or '30' -> 30"""
    if isinstance(timeframe, int) and not isinstance(timeframe, bool):
        days = timeframe
    else:
        match = TIMEFRAME_PATTERN.match(str(timeframe))
        if not match:
            raise ValidationError(f"Invalid timeframe '{timeframe}'. Expected a day count such as '30d'")
        days = int(match.group(1))
    if days <= 0:
        raise ValidationError(f"Timeframe must be at least one day. Got: {days}")
    return days


class AnalyticsService:

    @staticmethod
    async def report(
        db: AsyncSession,
        timeframe_days: int = 30,
        now: Optional[datetime] = None,
    ) -> AnalyticsReport:
        """
        Totals and success rates for transactions created in the last
        ``timeframe_days`` days.

        Totals and averages count completed transactions only. Success rates
        are 100 when no transaction of that type falls in the window.
        """
        now = now or utcnow()
        timeframe_days = parse_timeframe(timeframe_days)
        since = now - timedelta(days=timeframe_days)
        transactions = await TransactionRepository(db).list(created_since=since)

        collections = [t for t in transactions if t.transaction_type == ScheduleType.COLLECTION.value]
        payouts = [t for t in transactions if t.transaction_type == ScheduleType.PAYOUT.value]
        completed_collections = [t for t in collections if t.status == TransactionStatus.COMPLETED.value]
        completed_payouts = [t for t in payouts if t.status == TransactionStatus.COMPLETED.value]

        total_collected = sum(t.amount for t in completed_collections)
        total_paid = sum(t.amount for t in completed_payouts)

        return AnalyticsReport(
            timeframe=f"{timeframe_days}d",
            total_transactions=len(transactions),
            total_collected=total_collected,
            total_paid=total_paid,
            net_cash_flow=total_collected - total_paid,
            collection_success=percentage(len(completed_collections), len(collections)),
            payout_success=percentage(len(completed_payouts), len(payouts)),
            average_collection_amount=(
                total_collected / len(completed_collections) if completed_collections else 0.0
            ),
            average_payout_amount=total_paid / len(completed_payouts) if completed_payouts else 0.0,
        )
