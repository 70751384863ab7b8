"""
Dues Service Events

Event types and payloads published by dues_service.
"""

from .models import (
    DuesEventType,
    DuesStreamConfig,
    MembershipStatusChangedEventData,
    OverdueSweepCompletedEventData,
    PayerChangedEventData,
    PaymentRecordedEventData,
)

__all__ = [
    "DuesEventType",
    "DuesStreamConfig",
    "MembershipStatusChangedEventData",
    "OverdueSweepCompletedEventData",
    "PayerChangedEventData",
    "PaymentRecordedEventData",
]
