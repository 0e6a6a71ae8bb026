"""
Demo data for the payout engine

Loads a small marketplace into an empty database:
1. Pharmacy and vendor commission collections (one overdue)
2. Doctor referral payouts (one overdue)
3. A few historical transactions

Alerts are not seeded; the evaluation loop derives them from the schedules.
The seeder is idempotent: a database that already holds schedules is left
untouched. Run it directly or set SEED_DEMO_DATA=true.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payouts.models import PayoutSchedule, PayoutTransaction, TransactionStatus, utcnow

log = logging.getLogger(__name__)

DAY = timedelta(days=1)

# (fields, next due offset in days, last processed offset in days)
DEMO_SCHEDULES = [
    (
        {
            "entity_id": "pharmacy-0",
            "entity_name": "HealthPlus Pharmacy",
            "entity_type": "pharmacy",
            "schedule_type": "collection",
            "frequency": "weekly",
            "pending_amount": 1234.5,
            "total_amount": 4567.8,
            "total_collected": 3333.3,
            "status": "active",
            "alert_days_before": 1,
            "escalation_days": 3,
            "payment_method": "cash",
            "minimum_amount": 500,
            "successful_transactions": 4,
            "failed_transactions": 0,
            "average_processing_time": 2.5,
        },
        2, -7,
    ),
    (
        {
            "entity_id": "pharmacy-1",
            "entity_name": "MediCare Pharmacy",
            "entity_type": "pharmacy",
            "schedule_type": "collection",
            "frequency": "biweekly",
            "pending_amount": 2156.8,
            "total_amount": 5431.2,
            "total_collected": 3274.4,
            "status": "overdue",
            "alert_days_before": 2,
            "escalation_days": 5,
            "payment_method": "bank_transfer",
            "minimum_amount": 1000,
            "successful_transactions": 3,
            "failed_transactions": 1,
            "average_processing_time": 4.2,
            "last_failure_reason": "Bank transfer failed - insufficient account details",
        },
        -1, -14,
    ),
    (
        {
            "entity_id": "vendor-0",
            "entity_name": "HealthTech Supplies",
            "entity_type": "vendor",
            "schedule_type": "collection",
            "frequency": "biweekly",
            "pending_amount": 2890.5,
            "total_amount": 11835.0,
            "total_collected": 8944.5,
            "status": "active",
            "alert_days_before": 2,
            "escalation_days": 7,
            "payment_method": "bank_transfer",
            "minimum_amount": 2000,
            "successful_transactions": 5,
            "failed_transactions": 0,
            "average_processing_time": 3.8,
        },
        4, -10,
    ),
    (
        {
            "entity_id": "doctor-0",
            "entity_name": "Dr. Ahmed Hassan",
            "entity_type": "doctor",
            "schedule_type": "payout",
            "frequency": "monthly",
            "pending_amount": 567.8,
            "total_amount": 1234.5,
            "total_paid": 666.7,
            "status": "active",
            "alert_days_before": 3,
            "escalation_days": 2,
            "payment_method": "mobile_wallet",
            "minimum_amount": 200,
            "successful_transactions": 3,
            "failed_transactions": 0,
            "average_processing_time": 1.2,
        },
        5, -30,
    ),
    (
        {
            "entity_id": "doctor-1",
            "entity_name": "Dr. Sarah Mohamed",
            "entity_type": "doctor",
            "schedule_type": "payout",
            "frequency": "monthly",
            "pending_amount": 432.1,
            "total_amount": 987.6,
            "total_paid": 555.5,
            "status": "overdue",
            "alert_days_before": 2,
            "escalation_days": 1,
            "payment_method": "bank_transfer",
            "minimum_amount": 200,
            "successful_transactions": 2,
            "failed_transactions": 1,
            "average_processing_time": 2.1,
            "last_failure_reason": "Doctor bank account temporarily frozen",
        },
        -3, -33,
    ),
]

# (entity_id, amount, status, reference, notes, created offset, processed offset)
DEMO_TRANSACTIONS = [
    ("pharmacy-0", 1100.0, "completed", "COL-PHARM-001-HIST", "Collected in person during routine visit", -8, -7),
    ("doctor-0", 234.5, "completed", "PAY-DOC-001-HIST", "Monthly commission payout for referrals", -31, -30),
    ("pharmacy-1", 980.0, "failed", "COL-PHARM-002-HIST", None, -15, -14),
]


async def seed_demo_data(db: AsyncSession, now: Optional[datetime] = None) -> List[PayoutSchedule]:
    """
    Insert the demo schedules and transactions.

    Returns:
        The created schedules, or an empty list when the database already
        holds schedules
    """
    now = now or utcnow()
    existing = await db.scalar(select(func.count(PayoutSchedule.id)))
    if existing:
        log.info(f"Skipping demo data: {existing} schedule(s) already present")
        return []

    schedules = {}
    for fields, due_offset, processed_offset in DEMO_SCHEDULES:
        schedule = PayoutSchedule(
            next_due_date=now + due_offset * DAY,
            last_processed_date=now + processed_offset * DAY,
            enable_alerts=True,
            enable_overdue_alerts=True,
            auto_process=False,
            created_at=now - 60 * DAY,
            updated_at=now,
            **fields,
        )
        db.add(schedule)
        schedules[schedule.entity_id] = schedule
    await db.flush()

    for entity_id, amount, status, reference, notes, created_offset, processed_offset in DEMO_TRANSACTIONS:
        schedule = schedules[entity_id]
        completed = status == TransactionStatus.COMPLETED.value
        db.add(PayoutTransaction(
            schedule_id=schedule.id,
            entity_id=schedule.entity_id,
            entity_name=schedule.entity_name,
            entity_type=schedule.entity_type,
            transaction_type=schedule.schedule_type,
            amount=amount,
            status=status,
            scheduled_date=now + processed_offset * DAY,
            processed_date=now + processed_offset * DAY,
            confirmed_date=now + processed_offset * DAY if completed else None,
            payment_method=schedule.payment_method,
            reference=reference,
            notes=notes,
            failure_reason=None if completed else schedule.last_failure_reason,
            created_at=now + created_offset * DAY,
            updated_at=now + processed_offset * DAY,
        ))

    await db.commit()
    log.info(f"Seeded {len(schedules)} demo schedules and {len(DEMO_TRANSACTIONS)} transactions")
    return list(schedules.values())


async def main():
    from payouts.database import SessionLocal, create_db_and_tables

    logging.basicConfig(level=logging.INFO)
    await create_db_and_tables()
    async with SessionLocal() as db:
        await seed_demo_data(db)


if __name__ == "__main__":
    asyncio.run(main())
