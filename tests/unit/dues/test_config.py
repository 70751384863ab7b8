"""
Unit Tests for Dues Configuration

Environment loading and billing policy defaults.
"""

from core.config import ServiceConfig
from microservices.dues_service.models import BillingConfig


class TestServiceConfig:

    def test_defaults(self, monkeypatch):
        for name in ("DUES_LAPSE_DAYS", "DUES_REMINDER_SCHEDULE", "CRON_SECRET", "STRIPE_SECRET_KEY"):
            monkeypatch.delenv(name, raising=False)

        config = ServiceConfig.from_env()

        assert config.service_port == 8250
        assert config.cron_secret == ""
        assert config.billing_defaults()["lapse_days"] == 7
        assert config.billing_defaults()["reminder_schedule"] == [3, 7, 14]

    def test_billing_policy_from_env(self, monkeypatch):
        monkeypatch.setenv("DUES_LAPSE_DAYS", "10")
        monkeypatch.setenv("DUES_REMINDER_SCHEDULE", "2,5")
        monkeypatch.setenv("DUES_SEND_INVOICE_REMINDERS", "false")

        defaults = ServiceConfig.from_env().billing_defaults()

        assert defaults["lapse_days"] == 10
        assert defaults["reminder_schedule"] == [2, 5]
        assert defaults["send_invoice_reminders"] is False

    def test_malformed_values_fall_back(self, monkeypatch):
        monkeypatch.setenv("DUES_LAPSE_DAYS", "soon")
        monkeypatch.setenv("DUES_REMINDER_SCHEDULE", "3,x")

        defaults = ServiceConfig.from_env().billing_defaults()

        assert defaults["lapse_days"] == 7
        assert defaults["reminder_schedule"] == [3, 7, 14]


class TestBillingConfigMerge:
    """Organization overrides layered on service defaults"""

    def test_org_overrides_win(self):
        config = BillingConfig.merged({"lapse_days": 3}, {"lapse_days": 10, "cancel_months": 12})

        assert config.lapse_days == 3
        assert config.cancel_months == 12

    def test_null_and_unknown_overrides_ignored(self):
        config = BillingConfig.merged({"lapse_days": None, "late_fee": 5}, {"lapse_days": 10})

        assert config.lapse_days == 10
        assert not hasattr(config, "late_fee")

    def test_no_overrides(self):
        assert BillingConfig.merged(None).eligibility_months == 60
