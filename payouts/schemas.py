# schemas.py
# Pydantic models for request/response validation and serialization.
# JSON uses camelCase field names; snake_case is accepted on input.

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from payouts.models import (
    AlertSeverity, AlertType, EntityType, Frequency, PaymentMethod,
    ScheduleType, TransactionStatus,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        use_enum_values=True,
    )


# ============================================================================
# SCHEDULES
# ============================================================================

class AlertSettings(CamelModel):
    enable_alerts: bool = True
    alert_days_before: int = Field(2, ge=0)
    enable_overdue_alerts: bool = True
    escalation_days: int = Field(3, ge=0)


class AlertSettingsUpdate(CamelModel):
    enable_alerts: Optional[bool] = None
    alert_days_before: Optional[int] = Field(None, ge=0)
    enable_overdue_alerts: Optional[bool] = None
    escalation_days: Optional[int] = Field(None, ge=0)


class ScheduleCreate(CamelModel):
    """Schedule fields minus id and counters."""
    entity_id: str = Field(..., min_length=1)
    entity_name: str = Field(..., min_length=1)
    entity_type: EntityType
    schedule_type: ScheduleType
    frequency: Frequency = Frequency.MONTHLY
    next_due_date: Optional[datetime] = None
    pending_amount: float = Field(0.0, ge=0)
    total_amount: float = Field(0.0, ge=0)
    alert_settings: Optional[AlertSettingsUpdate] = None
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    minimum_amount: Optional[float] = Field(None, ge=0)
    auto_process: bool = False
    notes: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "entityId": "pharmacy-0",
                "entityName": "HealthPlus Pharmacy",
                "entityType": "pharmacy",
                "scheduleType": "collection",
                "frequency": "weekly",
                "nextDueDate": "2024-12-10T00:00:00",
                "pendingAmount": 1234.5,
                "paymentMethod": "cash",
                "minimumAmount": 500,
            }
        }
    )


class ScheduleUpdate(CamelModel):
    entity_name: Optional[str] = Field(None, min_length=1)
    frequency: Optional[Frequency] = None
    pending_amount: Optional[float] = Field(None, ge=0)
    total_amount: Optional[float] = Field(None, ge=0)
    alert_settings: Optional[AlertSettingsUpdate] = None
    payment_method: Optional[PaymentMethod] = None
    minimum_amount: Optional[float] = Field(None, ge=0)
    auto_process: Optional[bool] = None
    notes: Optional[str] = None


class ScheduleStatusUpdate(CamelModel):
    status: Literal["active", "paused", "cancelled"]


class ScheduleResponse(CamelModel):
    id: int
    entity_id: str
    entity_name: str
    entity_type: str
    schedule_type: str
    frequency: str
    next_due_date: datetime
    last_processed_date: Optional[datetime] = None
    pending_amount: float
    total_amount: float
    total_collected: Optional[float] = None
    total_paid: Optional[float] = None
    status: str
    alert_settings: AlertSettings
    payment_method: str
    minimum_amount: float
    auto_process: bool
    notes: Optional[str] = None
    successful_transactions: int
    failed_transactions: int
    average_processing_time: float
    last_failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# ============================================================================
# TRANSACTIONS
# ============================================================================

class ProcessRequest(CamelModel):
    notes: Optional[str] = None


class TransactionResponse(CamelModel):
    id: int
    schedule_id: int
    entity_id: str
    entity_name: str
    entity_type: str
    transaction_type: str
    amount: float
    status: TransactionStatus
    scheduled_date: datetime
    processed_date: Optional[datetime] = None
    confirmed_date: Optional[datetime] = None
    payment_method: str
    reference: str
    notes: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# ============================================================================
# ALERTS
# ============================================================================

class AlertResponse(CamelModel):
    id: int
    schedule_id: int
    entity_id: str
    entity_name: str
    entity_type: str
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    amount: float
    due_date: datetime
    days_past_due: Optional[int] = None
    is_read: bool
    is_resolved: bool
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("alert_metadata", "metadata"),
        serialization_alias="metadata",
    )


class AlertChangeResponse(CamelModel):
    action: Literal["created", "updated"]
    alert: AlertResponse


# ============================================================================
# METRICS / ANALYTICS
# ============================================================================

class AlertsCount(CamelModel):
    total: int = 0
    unread: int = 0
    critical: int = 0
    high: int = 0


class UpcomingDue(CamelModel):
    today: int = 0
    this_week: int = 0
    next_week: int = 0


class Performance(CamelModel):
    on_time_rate: float = 100.0
    average_delay_days: float = 0.0
    success_rate: float = 100.0


class DashboardMetrics(CamelModel):
    total_active_schedules: int = 0
    overdue_collections: int = 0
    overdue_payouts: int = 0
    total_pending_collections: float = 0.0
    total_pending_payouts: float = 0.0
    alerts_count: AlertsCount = Field(default_factory=AlertsCount)
    upcoming_due: UpcomingDue = Field(default_factory=UpcomingDue)
    performance: Performance = Field(default_factory=Performance)


class AnalyticsReport(CamelModel):
    timeframe: str
    total_transactions: int = 0
    total_collected: float = 0.0
    total_paid: float = 0.0
    net_cash_flow: float = 0.0
    collection_success: float = 100.0
    payout_success: float = 100.0
    average_collection_amount: float = 0.0
    average_payout_amount: float = 0.0
