# models.py
# ORM models and enumerations for schedules, alerts and transactions.

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, Text, JSON, ForeignKey, Index,
)
from sqlalchemy.orm import relationship

from payouts.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class EntityType(str, Enum):
    PHARMACY = "pharmacy"
    VENDOR = "vendor"
    DOCTOR = "doctor"


class ScheduleType(str, Enum):
    """collection = owed to the platform, payout = owed by the platform"""
    COLLECTION = "collection"
    PAYOUT = "payout"


class Frequency(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class ScheduleStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_WALLET = "mobile_wallet"
    CHECK = "check"


class AlertType(str, Enum):
    COLLECTION_DUE = "collection_due"
    COLLECTION_OVERDUE = "collection_overdue"
    PAYOUT_DUE = "payout_due"
    PAYOUT_OVERDUE = "payout_overdue"
    AMOUNT_THRESHOLD = "amount_threshold"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_RANK = {
    AlertSeverity.LOW.value: 1,
    AlertSeverity.MEDIUM.value: 2,
    AlertSeverity.HIGH.value: 3,
    AlertSeverity.CRITICAL.value: 4,
}


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


IN_FLIGHT_STATUSES = (TransactionStatus.PENDING.value, TransactionStatus.PROCESSING.value)

TERMINAL_STATUSES = (
    TransactionStatus.COMPLETED.value,
    TransactionStatus.FAILED.value,
    TransactionStatus.CANCELLED.value,
)

# pending -> processing -> {completed | failed | cancelled}; terminal states are final
ALLOWED_TRANSITIONS = {
    TransactionStatus.PENDING.value: {TransactionStatus.PROCESSING.value},
    TransactionStatus.PROCESSING.value: set(TERMINAL_STATUSES),
}


class PayoutSchedule(Base):
    """Recurring obligation to collect from, or pay out to, one entity."""

    __tablename__ = "payout_schedules"

    id = Column(Integer, primary_key=True, index=True)
    entity_id = Column(String(100), nullable=False, index=True)
    entity_name = Column(String(255), nullable=False)
    entity_type = Column(String(20), nullable=False)  # pharmacy, vendor, doctor
    schedule_type = Column(String(20), nullable=False)  # collection, payout
    frequency = Column(String(20), nullable=False)  # weekly, biweekly, monthly
    next_due_date = Column(DateTime, nullable=False, index=True)
    last_processed_date = Column(DateTime, nullable=True)

    pending_amount = Column(Float, default=0.0, nullable=False)
    total_amount = Column(Float, default=0.0, nullable=False)
    total_collected = Column(Float, nullable=True)  # collections only
    total_paid = Column(Float, nullable=True)  # payouts only

    status = Column(String(20), default=ScheduleStatus.ACTIVE.value, nullable=False, index=True)

    enable_alerts = Column(Boolean, default=True, nullable=False)
    alert_days_before = Column(Integer, default=2, nullable=False)
    enable_overdue_alerts = Column(Boolean, default=True, nullable=False)
    escalation_days = Column(Integer, default=3, nullable=False)

    payment_method = Column(String(30), nullable=False)
    minimum_amount = Column(Float, default=0.0, nullable=False)
    auto_process = Column(Boolean, default=False, nullable=False)
    notes = Column(Text, nullable=True)

    successful_transactions = Column(Integer, default=0, nullable=False)
    failed_transactions = Column(Integer, default=0, nullable=False)
    average_processing_time = Column(Float, default=0.0, nullable=False)  # hours
    last_failure_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    transactions = relationship("PayoutTransaction", back_populates="schedule")
    alerts = relationship("PayoutAlert", back_populates="schedule")

    @property
    def alert_settings(self) -> dict:
        return {
            "enable_alerts": self.enable_alerts,
            "alert_days_before": self.alert_days_before,
            "enable_overdue_alerts": self.enable_overdue_alerts,
            "escalation_days": self.escalation_days,
        }

    def touch(self, now: datetime = None):
        # updated_at never moves backwards, even when callers pass a simulated clock
        now = now or utcnow()
        if self.updated_at is None or now > self.updated_at:
            self.updated_at = now


class PayoutAlert(Base):
    """Time-sensitive notice about one schedule."""

    __tablename__ = "payout_alerts"

    id = Column(Integer, primary_key=True, index=True)
    schedule_id = Column(Integer, ForeignKey("payout_schedules.id"), nullable=False, index=True)
    entity_id = Column(String(100), nullable=False, index=True)
    entity_name = Column(String(255), nullable=False)
    entity_type = Column(String(20), nullable=False)
    alert_type = Column(String(30), nullable=False)
    severity = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    amount = Column(Float, nullable=False)
    due_date = Column(DateTime, nullable=False)
    days_past_due = Column(Integer, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    is_resolved = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    resolved_at = Column(DateTime, nullable=True)
    # "metadata" is reserved on declarative classes
    alert_metadata = Column("metadata", JSON, nullable=False, default=dict)

    schedule = relationship("PayoutSchedule", back_populates="alerts")

    __table_args__ = (
        # at most one unresolved alert per (entity, alert type)
        Index(
            "ux_payout_alerts_open_entity_type",
            "entity_id",
            "alert_type",
            unique=True,
            sqlite_where=is_resolved.is_(False),
            postgresql_where=is_resolved.is_(False),
        ),
    )

    def touch(self, now: datetime = None):
        now = now or utcnow()
        if self.updated_at is None or now > self.updated_at:
            self.updated_at = now


class PayoutTransaction(Base):
    """One attempt to execute a schedule's pending amount."""

    __tablename__ = "payout_transactions"

    id = Column(Integer, primary_key=True, index=True)
    schedule_id = Column(Integer, ForeignKey("payout_schedules.id"), nullable=False, index=True)
    entity_id = Column(String(100), nullable=False, index=True)
    entity_name = Column(String(255), nullable=False)
    entity_type = Column(String(20), nullable=False)
    transaction_type = Column(String(20), nullable=False)  # collection, payout
    amount = Column(Float, nullable=False)
    status = Column(String(20), default=TransactionStatus.PENDING.value, nullable=False, index=True)
    scheduled_date = Column(DateTime, nullable=False)
    processed_date = Column(DateTime, nullable=True)
    confirmed_date = Column(DateTime, nullable=True)
    payment_method = Column(String(30), nullable=False)
    reference = Column(String(100), unique=True, nullable=False)
    notes = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    schedule = relationship("PayoutSchedule", back_populates="transactions")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def touch(self, now: datetime = None):
        now = now or utcnow()
        if self.updated_at is None or now > self.updated_at:
            self.updated_at = now
