#!/usr/bin/env python3
"""Dues service configuration

Runtime settings for the dues service: HTTP port, payment processor keys,
the cron shared secret, peer service endpoints, and the default billing
policy applied when an organization has no overrides.
"""
import os
from dataclasses import dataclass, field
from typing import List

def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default

def _int_list(val: str, default: List[int]) -> List[int]:
    if not val:
        return list(default)
    try:
        return [int(part) for part in val.split(",") if part.strip()]
    except ValueError:
        return list(default)


@dataclass
class ServiceConfig:
    """Dues service settings"""

    # ===========================================
    # HTTP
    # ===========================================
    service_name: str = "dues_service"
    service_host: str = "0.0.0.0"
    service_port: int = 8250
    debug: bool = False

    # ===========================================
    # Payment processor (Stripe)
    # ===========================================
    stripe_secret_key: str = ""
    stripe_currency: str = "usd"
    payment_return_url: str = "http://localhost:3000/billing/setup-complete"

    # ===========================================
    # Peer services
    # ===========================================
    notification_service_url: str = "http://localhost:8270"
    notification_timeout: float = 10.0

    # ===========================================
    # Scheduled jobs
    # ===========================================
    cron_secret: str = ""

    # ===========================================
    # Default billing policy
    # ===========================================
    eligibility_months: int = 60
    lapse_days: int = 7
    cancel_months: int = 24
    reminder_schedule: List[int] = field(default_factory=lambda: [3, 7, 14])
    max_reminders: int = 3
    send_invoice_reminders: bool = True

    def billing_defaults(self) -> dict:
        return {
            "eligibility_months": self.eligibility_months,
            "lapse_days": self.lapse_days,
            "cancel_months": self.cancel_months,
            "reminder_schedule": list(self.reminder_schedule),
            "max_reminders": self.max_reminders,
            "send_invoice_reminders": self.send_invoice_reminders,
        }

    @classmethod
    def from_env(cls) -> 'ServiceConfig':
        """Load service configuration from environment variables"""
        return cls(
            # HTTP
            service_name=os.getenv("DUES_SERVICE_NAME", "dues_service"),
            service_host=os.getenv("DUES_SERVICE_HOST", "0.0.0.0"),
            service_port=_int(os.getenv("DUES_SERVICE_PORT", "8250"), 8250),
            debug=_bool(os.getenv("DEBUG", "false")),

            # Stripe
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
            stripe_currency=os.getenv("STRIPE_CURRENCY", "usd"),
            payment_return_url=os.getenv(
                "PAYMENT_RETURN_URL", "http://localhost:3000/billing/setup-complete"
            ),

            # Peer services
            notification_service_url=os.getenv("NOTIFICATION_SERVICE_URL", "http://localhost:8270"),
            notification_timeout=float(os.getenv("NOTIFICATION_TIMEOUT", "10") or 10),

            # Scheduled jobs
            cron_secret=os.getenv("CRON_SECRET", ""),

            # Billing policy
            eligibility_months=_int(os.getenv("DUES_ELIGIBILITY_MONTHS", "60"), 60),
            lapse_days=_int(os.getenv("DUES_LAPSE_DAYS", "7"), 7),
            cancel_months=_int(os.getenv("DUES_CANCEL_MONTHS", "24"), 24),
            reminder_schedule=_int_list(os.getenv("DUES_REMINDER_SCHEDULE", ""), [3, 7, 14]),
            max_reminders=_int(os.getenv("DUES_MAX_REMINDERS", "3"), 3),
            send_invoice_reminders=_bool(os.getenv("DUES_SEND_INVOICE_REMINDERS", "true")),
        )
