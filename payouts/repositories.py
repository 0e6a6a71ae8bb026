# repositories.py
# Storage access for the three payout collections. Services only talk to
# these classes, so the backing store can change without touching them.

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payouts.models import (
    IN_FLIGHT_STATUSES, PayoutAlert, PayoutSchedule, PayoutTransaction,
    ScheduleStatus,
)


class ScheduleRepository:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, schedule_id: int, refresh: bool = False) -> Optional[PayoutSchedule]:
        query = select(PayoutSchedule).filter(PayoutSchedule.id == schedule_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list(
        self,
        entity_type: Optional[str] = None,
        schedule_type: Optional[str] = None,
        status: Optional[str] = None,
        alerts_enabled: Optional[bool] = None,
    ) -> List[PayoutSchedule]:
        query = select(PayoutSchedule)
        if entity_type:
            query = query.filter(PayoutSchedule.entity_type == entity_type)
        if schedule_type:
            query = query.filter(PayoutSchedule.schedule_type == schedule_type)
        if status:
            query = query.filter(PayoutSchedule.status == status)
        if alerts_enabled is not None:
            query = query.filter(PayoutSchedule.enable_alerts == alerts_enabled)
        query = query.order_by(PayoutSchedule.next_due_date, PayoutSchedule.id)
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def find_open_for_entity(self, entity_id: str) -> Optional[PayoutSchedule]:
        """The entity's schedule that is not cancelled, if any."""
        result = await self.db.execute(
            select(PayoutSchedule)
            .filter(
                PayoutSchedule.entity_id == entity_id,
                PayoutSchedule.status != ScheduleStatus.CANCELLED.value,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    def add(self, schedule: PayoutSchedule):
        self.db.add(schedule)


class AlertRepository:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, alert_id: int) -> Optional[PayoutAlert]:
        result = await self.db.execute(select(PayoutAlert).filter(PayoutAlert.id == alert_id))
        return result.scalar_one_or_none()

    async def find_open(self, entity_id: str, alert_type: str) -> Optional[PayoutAlert]:
        """The unresolved alert for (entity, alert type), if any."""
        result = await self.db.execute(
            select(PayoutAlert)
            .filter(
                PayoutAlert.entity_id == entity_id,
                PayoutAlert.alert_type == alert_type,
                PayoutAlert.is_resolved.is_(False),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def list_open_for_entity(self, entity_id: str) -> List[PayoutAlert]:
        result = await self.db.execute(
            select(PayoutAlert)
            .filter(PayoutAlert.entity_id == entity_id, PayoutAlert.is_resolved.is_(False))
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list(
        self,
        entity_type: Optional[str] = None,
        severity: Optional[str] = None,
        is_read: Optional[bool] = None,
        is_resolved: Optional[bool] = None,
    ) -> List[PayoutAlert]:
        query = select(PayoutAlert)
        if entity_type:
            query = query.filter(PayoutAlert.entity_type == entity_type)
        if severity:
            query = query.filter(PayoutAlert.severity == severity)
        if is_read is not None:
            query = query.filter(PayoutAlert.is_read.is_(is_read))
        if is_resolved is not None:
            query = query.filter(PayoutAlert.is_resolved.is_(is_resolved))
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all())

    def add(self, alert: PayoutAlert):
        self.db.add(alert)


class TransactionRepository:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, transaction_id: int) -> Optional[PayoutTransaction]:
        result = await self.db.execute(
            select(PayoutTransaction)
            .filter(PayoutTransaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_in_flight(self, schedule_id: int) -> Optional[PayoutTransaction]:
        result = await self.db.execute(
            select(PayoutTransaction)
            .filter(
                PayoutTransaction.schedule_id == schedule_id,
                PayoutTransaction.status.in_(IN_FLIGHT_STATUSES),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def list_in_flight(self) -> List[PayoutTransaction]:
        result = await self.db.execute(
            select(PayoutTransaction)
            .filter(PayoutTransaction.status.in_(IN_FLIGHT_STATUSES))
            .order_by(PayoutTransaction.id)
        )
        return list(result.scalars().all())

    async def list(
        self,
        schedule_id: Optional[int] = None,
        created_since: Optional[datetime] = None,
    ) -> List[PayoutTransaction]:
        query = select(PayoutTransaction)
        if schedule_id is not None:
            query = query.filter(PayoutTransaction.schedule_id == schedule_id)
        if created_since is not None:
            query = query.filter(PayoutTransaction.created_at >= created_since)
        query = query.order_by(PayoutTransaction.created_at.desc(), PayoutTransaction.id.desc())
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all())

    def add(self, transaction: PayoutTransaction):
        self.db.add(transaction)
