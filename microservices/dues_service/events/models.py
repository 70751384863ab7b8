"""
Dues Service Event Models

Event data models for dues_service.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Event Type Definitions (Service-Specific)
# =============================================================================

class DuesEventType(str, Enum):
    """
    Events published by dues_service.

    Streams: dues-stream, payment-stream, membership-stream
    """
    PAYMENT_RECORDED = "payment.recorded"
    INVOICE_CREATED = "payment.invoice_created"
    REMINDER_SENT = "payment.reminder_sent"
    MEMBERSHIP_STATUS_CHANGED = "membership.status_changed"
    MEMBERSHIP_ELIGIBLE = "membership.eligible"
    PAYER_ASSIGNED = "membership.payer_assigned"
    PAYER_REMOVED = "membership.payer_removed"
    AUTO_PAY_DISABLED = "membership.auto_pay_disabled"
    ONBOARDING_COMPLETED = "membership.onboarding_completed"
    OVERDUE_SWEEP_COMPLETED = "dues.overdue_sweep_completed"


class DuesStreamConfig:
    """Stream configuration for dues_service"""
    STREAM_NAME = "dues-stream"
    SUBJECTS = ["dues.>"]
    MAX_MESSAGES = 100000
    CONSUMER_PREFIX = "dues"


# =============================================================================
# Event Data Models
# =============================================================================

class DuesBaseEventData(BaseModel):
    """Base event data for dues_service events."""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PaymentRecordedEventData(DuesBaseEventData):
    payment_id: str
    membership_id: str
    member_id: str
    organization_id: str
    payment_type: str
    method: Optional[str] = None
    amount: Decimal
    months_credited: int = 0
    settled_existing: bool = False


class MembershipStatusChangedEventData(DuesBaseEventData):
    membership_id: str
    organization_id: str
    from_status: str
    to_status: str
    reason: str
    paid_months: int = 0
    eligible_date: Optional[date] = None


class PayerChangedEventData(DuesBaseEventData):
    membership_id: str
    payer_member_id: Optional[str] = None
    mode: Optional[str] = None
    subscription_id: Optional[str] = None


class OverdueSweepCompletedEventData(DuesBaseEventData):
    as_of: date
    processed: int
    transitioned: int
    invoices_created: int
    reminders_sent: int
    error_count: int
