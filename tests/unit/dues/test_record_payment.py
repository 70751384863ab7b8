"""
Unit Tests for Payment Recording and Reconciliation
"""

from datetime import date
from decimal import Decimal

import pytest

from microservices.dues_service.models import (
    BillingFrequency,
    EnrollmentFeeStatus,
    ErrorType,
    MembershipStatus,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
)
from microservices.dues_service.protocols import PersistenceError
from tests.fixtures import TODAY, make_member, make_pending_payment


async def record_cash_dues(service, membership, amount="20.00", **kwargs):
    params = dict(
        membership_id=membership.membership_id,
        member_id=membership.member_id,
        payment_type=PaymentType.DUES,
        method=PaymentMethod.CASH,
        amount=Decimal(amount),
        recorded_by="treasurer_1",
    )
    params.update(kwargs)
    return await service.record_payment(**params)


class TestDuesPayments:
    """Tests for recording dues"""

    @pytest.mark.asyncio
    async def test_crossing_threshold_activates_and_sets_eligible_date(self, dues_service, seed):
        """58 paid months + 2 -> 60, waiting_period -> active"""
        _, membership = seed(paid_months=58)

        result = await record_cash_dues(dues_service, membership, amount="40.00", months_credited=2)

        assert result.success is True
        assert result.membership.paid_months == 60
        assert result.previous_status == MembershipStatus.WAITING_PERIOD
        assert result.new_status == MembershipStatus.ACTIVE
        assert result.status_changed is True
        assert result.became_eligible is True
        assert result.membership.eligible_date == TODAY
        assert result.warning is None

    @pytest.mark.asyncio
    async def test_eligible_date_set_only_once(self, dues_service, seed):
        _, membership = seed(
            status=MembershipStatus.ACTIVE,
            paid_months=70,
            eligible_date=date(2025, 1, 15),
        )

        result = await record_cash_dues(dues_service, membership)

        assert result.success is True
        assert result.membership.eligible_date == date(2025, 1, 15)
        assert result.became_eligible is False

    @pytest.mark.asyncio
    async def test_dates_recomputed_from_today(self, dues_service, seed):
        _, membership = seed(next_payment_due=date(2026, 2, 15), last_payment_date=date(2026, 1, 15))

        result = await record_cash_dues(dues_service, membership)

        assert result.membership.next_payment_due == date(2026, 4, 15)
        assert result.membership.last_payment_date == TODAY

    @pytest.mark.asyncio
    async def test_months_default_to_frequency(self, dues_service, seed):
        _, membership = seed(billing_frequency=BillingFrequency.BIANNUAL)

        result = await record_cash_dues(dues_service, membership, amount="115.00")

        assert result.payment.months_credited == 6
        assert result.membership.paid_months == 16
        assert result.membership.next_payment_due == date(2026, 9, 15)
        assert result.payment.period_label == "Apr - Oct 2026"

    @pytest.mark.asyncio
    async def test_back_dues_increment_paid_months(self, dues_service, membership):
        result = await record_cash_dues(
            dues_service, membership, amount="60.00",
            payment_type=PaymentType.BACK_DUES, months_credited=3,
        )

        assert result.success is True
        assert result.membership.paid_months == 13

    @pytest.mark.asyncio
    async def test_version_bumped(self, dues_service, membership):
        result = await record_cash_dues(dues_service, membership)
        assert result.membership.version == membership.version + 1


class TestStatusRules:
    """Tests for status changes caused by payments"""

    @pytest.mark.asyncio
    async def test_cancelled_is_absorbing(self, dues_service, seed):
        _, membership = seed(status=MembershipStatus.CANCELLED, paid_months=59)

        result = await record_cash_dues(dues_service, membership)

        assert result.success is True
        assert result.new_status == MembershipStatus.CANCELLED
        assert result.status_changed is False
        assert result.became_eligible is False

    @pytest.mark.asyncio
    async def test_lapsed_below_threshold_returns_to_waiting_period(self, dues_service, seed):
        _, membership = seed(status=MembershipStatus.LAPSED, paid_months=20)

        result = await record_cash_dues(dues_service, membership)

        assert result.new_status == MembershipStatus.WAITING_PERIOD

    @pytest.mark.asyncio
    async def test_lapsed_at_threshold_returns_to_active(self, dues_service, seed):
        _, membership = seed(status=MembershipStatus.LAPSED, paid_months=59)

        result = await record_cash_dues(dues_service, membership)

        assert result.new_status == MembershipStatus.ACTIVE
        assert result.became_eligible is True

    @pytest.mark.asyncio
    async def test_org_threshold_override(self, dues_service, mock_repository, organization, seed):
        mock_repository.add_organization(
            organization.model_copy(update={"billing_config": {"eligibility_months": 12}})
        )
        _, membership = seed(paid_months=11)

        result = await record_cash_dues(dues_service, membership)

        assert result.new_status == MembershipStatus.ACTIVE


class TestEnrollmentFee:
    """Tests for enrollment fee payments"""

    @pytest.mark.asyncio
    async def test_fee_without_signature_awaits_signature(self, dues_service, seed):
        _, membership = seed(
            status=MembershipStatus.PENDING,
            paid_months=0,
            enrollment_fee_status=EnrollmentFeeStatus.UNPAID,
            agreement_signed_at=None,
            next_payment_due=None,
            last_payment_date=None,
        )

        result = await dues_service.record_payment(
            membership_id=membership.membership_id,
            member_id=membership.member_id,
            payment_type=PaymentType.ENROLLMENT_FEE,
            method=PaymentMethod.CASH,
            amount=Decimal("500.00"),
            recorded_by="treasurer_1",
        )

        assert result.success is True
        assert result.new_status == MembershipStatus.AWAITING_SIGNATURE
        assert result.membership.enrollment_fee_status == EnrollmentFeeStatus.PAID
        assert result.membership.paid_months == 0
        assert result.membership.next_payment_due == date(2026, 4, 15)
        assert result.payment.months_credited == 0
        assert result.payment.period_label == "Enrollment Fee"
        assert result.payment.invoice_number is None

    @pytest.mark.asyncio
    async def test_fee_with_signature_enters_waiting_period(self, dues_service, seed):
        _, membership = seed(
            status=MembershipStatus.PENDING,
            paid_months=0,
            enrollment_fee_status=EnrollmentFeeStatus.UNPAID,
        )

        result = await dues_service.record_payment(
            membership_id=membership.membership_id,
            member_id=membership.member_id,
            payment_type=PaymentType.ENROLLMENT_FEE,
            method=PaymentMethod.ZELLE,
            amount=Decimal("500.00"),
            zelle_transaction_id="ZL-998",
            recorded_by="treasurer_1",
        )

        assert result.new_status == MembershipStatus.WAITING_PERIOD
        assert result.payment.notes == "Zelle: ZL-998"

    @pytest.mark.asyncio
    async def test_fee_keeps_existing_due_date(self, dues_service, seed):
        _, membership = seed(
            status=MembershipStatus.PENDING,
            enrollment_fee_status=EnrollmentFeeStatus.UNPAID,
            next_payment_due=date(2026, 5, 15),
        )

        result = await dues_service.record_payment(
            membership_id=membership.membership_id,
            member_id=membership.member_id,
            payment_type=PaymentType.ENROLLMENT_FEE,
            method=PaymentMethod.CASH,
            amount=Decimal("500.00"),
            recorded_by="treasurer_1",
        )

        assert result.membership.next_payment_due == date(2026, 5, 15)


class TestFeesAndNotes:

    @pytest.mark.asyncio
    async def test_manual_payment_has_zero_fees(self, dues_service, membership):
        result = await record_cash_dues(dues_service, membership)

        assert result.payment.stripe_fee == Decimal("0")
        assert result.payment.platform_fee == Decimal("0")
        assert result.payment.net_amount == Decimal("20.00")
        assert result.payment.status == PaymentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_stripe_payment_records_fees(self, dues_service, membership):
        result = await dues_service.record_payment(
            membership_id=membership.membership_id,
            member_id=membership.member_id,
            payment_type=PaymentType.DUES,
            method=PaymentMethod.STRIPE,
            amount=Decimal("20.00"),
            stripe_payment_intent_id="pi_123",
        )

        assert result.success is True
        assert result.payment.stripe_fee == Decimal("0.88")
        assert result.payment.net_amount == Decimal("19.12")
        assert result.payment.total_charged == Decimal("20.00")
        assert result.payment.stripe_payment_intent_id == "pi_123"

    @pytest.mark.asyncio
    async def test_check_number_prefixes_notes(self, dues_service, membership):
        result = await record_cash_dues(
            dues_service, membership,
            method=PaymentMethod.CHECK, check_number="1234", notes="March dues",
        )

        assert result.payment.notes == "Check #1234 - March dues"
        assert result.payment.check_number == "1234"

    @pytest.mark.asyncio
    async def test_amount_mismatch_warns_but_succeeds(self, dues_service, membership):
        result = await record_cash_dues(dues_service, membership, amount="30.00")

        assert result.success is True
        assert result.warning is not None

    @pytest.mark.asyncio
    async def test_dues_payment_gets_invoice_metadata(self, dues_service, membership):
        result = await record_cash_dues(dues_service, membership)

        assert result.payment.invoice_number.startswith("INV-202604-")
        assert result.payment.due_date == date(2026, 4, 15)
        assert result.payment.period_label == "April 2026"


class TestValidation:
    """Tests for rejected payments"""

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, dues_service, membership):
        result = await record_cash_dues(dues_service, membership, amount="0")
        assert result.success is False
        assert result.error_type == ErrorType.VALIDATION

    @pytest.mark.asyncio
    async def test_manual_requires_recorded_by(self, dues_service, membership):
        result = await record_cash_dues(dues_service, membership, recorded_by=None)
        assert result.error_type == ErrorType.VALIDATION

    @pytest.mark.asyncio
    async def test_check_requires_number(self, dues_service, membership):
        result = await record_cash_dues(dues_service, membership, method=PaymentMethod.CHECK)
        assert result.error_type == ErrorType.VALIDATION

    @pytest.mark.asyncio
    async def test_zelle_requires_transaction_id(self, dues_service, membership):
        result = await record_cash_dues(dues_service, membership, method=PaymentMethod.ZELLE)
        assert result.error_type == ErrorType.VALIDATION

    @pytest.mark.asyncio
    async def test_dues_must_credit_months(self, dues_service, membership):
        result = await record_cash_dues(dues_service, membership, months_credited=0)
        assert result.error_type == ErrorType.VALIDATION

    @pytest.mark.asyncio
    async def test_unknown_membership(self, dues_service, membership):
        result = await record_cash_dues(
            dues_service, membership.model_copy(update={"membership_id": "missing"})
        )
        assert result.error_type == ErrorType.NOT_FOUND

    @pytest.mark.asyncio
    async def test_cross_tenant_is_not_found(self, dues_service, membership):
        result = await record_cash_dues(dues_service, membership, organization_id="org_other")
        assert result.error_type == ErrorType.NOT_FOUND

    @pytest.mark.asyncio
    async def test_member_must_own_membership(self, dues_service, mock_repository, organization, membership):
        other = mock_repository.add_member(make_member(organization.organization_id))

        result = await record_cash_dues(dues_service, membership, member_id=other.member_id)

        assert result.error_type == ErrorType.VALIDATION

    @pytest.mark.asyncio
    async def test_missing_plan(self, dues_service, mock_repository, membership):
        mock_repository.plans.clear()
        result = await record_cash_dues(dues_service, membership)
        assert result.error_type == ErrorType.NOT_FOUND


class TestReconciliation:
    """Tests for settling pending invoices"""

    @pytest.mark.asyncio
    async def test_dues_settle_pending_invoice(self, dues_service, mock_repository, membership):
        pending = mock_repository.add_payment(make_pending_payment(membership))

        result = await record_cash_dues(dues_service, membership)

        assert result.success is True
        assert result.settled_existing is True
        assert result.payment.payment_id == pending.payment_id
        assert result.payment.status == PaymentStatus.COMPLETED
        assert result.payment.invoice_number == pending.invoice_number
        assert len(mock_repository.payments_for(membership.membership_id)) == 1
        assert result.membership.paid_months == 11

    @pytest.mark.asyncio
    async def test_settlement_reuses_pending_months(self, dues_service, mock_repository, membership):
        pending = mock_repository.add_payment(
            make_pending_payment(membership, amount=Decimal("115.00"), months_credited=6)
        )

        result = await record_cash_dues(
            dues_service, membership, amount="115.00", pending_payment_id=pending.payment_id
        )

        assert result.payment.months_credited == 6
        assert result.membership.paid_months == 16

    @pytest.mark.asyncio
    async def test_completed_pending_is_idempotent(self, dues_service, mock_repository, membership):
        done = mock_repository.add_payment(
            make_pending_payment(membership, status=PaymentStatus.COMPLETED)
        )

        result = await record_cash_dues(dues_service, membership, pending_payment_id=done.payment_id)

        assert result.success is True
        assert result.settled_existing is True
        stored = mock_repository.memberships[membership.membership_id]
        assert stored.paid_months == membership.paid_months
        assert stored.version == membership.version

    @pytest.mark.asyncio
    async def test_refunded_pending_is_rejected(self, dues_service, mock_repository, membership):
        refunded = mock_repository.add_payment(
            make_pending_payment(membership, status=PaymentStatus.REFUNDED)
        )

        result = await record_cash_dues(dues_service, membership, pending_payment_id=refunded.payment_id)

        assert result.success is False
        assert result.error_type == ErrorType.VALIDATION

    @pytest.mark.asyncio
    async def test_unknown_pending_payment(self, dues_service, membership):
        result = await record_cash_dues(dues_service, membership, pending_payment_id="nope")
        assert result.error_type == ErrorType.NOT_FOUND


class TestAtomicityAndSideEffects:

    @pytest.mark.asyncio
    async def test_failed_membership_write_rolls_back_payment(self, dues_service, mock_repository, membership):
        mock_repository.fail_membership_update = PersistenceError("connection lost")

        result = await record_cash_dues(dues_service, membership)

        assert result.success is False
        assert result.error_type == ErrorType.PERSISTENCE
        assert mock_repository.payments_for(membership.membership_id) == []
        assert mock_repository.rollbacks == 1

    @pytest.mark.asyncio
    async def test_concurrent_version_bump_rolls_back(self, dues_service, mock_repository, mock_event_bus,
                                                      membership):
        """Another writer commits between the locked read and the membership write"""
        original_insert = mock_repository.insert_payment

        async def insert_after_concurrent_write(payment):
            current = mock_repository.memberships[membership.membership_id]
            mock_repository.memberships[membership.membership_id] = current.model_copy(
                update={"version": current.version + 1}
            )
            return await original_insert(payment)

        mock_repository.insert_payment = insert_after_concurrent_write

        result = await record_cash_dues(dues_service, membership)

        assert result.success is False
        assert result.error_type == ErrorType.PERSISTENCE
        assert "modified concurrently" in result.message
        assert mock_repository.payments_for(membership.membership_id) == []
        assert mock_repository.memberships[membership.membership_id].paid_months == 10
        assert mock_repository.rollbacks == 1
        assert mock_event_bus.published_events == []

    @pytest.mark.asyncio
    async def test_events_and_receipt(self, dues_service, mock_event_bus, mock_email, seed):
        member, membership = seed(paid_months=59)

        await record_cash_dues(dues_service, membership)

        subjects = mock_event_bus.subjects()
        assert "payment.recorded" in subjects
        assert "membership.status_changed" in subjects
        assert "membership.eligible" in subjects
        assert mock_email.templates() == ["payment_receipt"]
        assert mock_email.sent[0]["recipient"] == member.email

    @pytest.mark.asyncio
    async def test_event_failure_does_not_fail_payment(self, dues_service, mock_event_bus, membership):
        mock_event_bus.fail_with(RuntimeError("nats down"))

        result = await record_cash_dues(dues_service, membership)

        assert result.success is True

    @pytest.mark.asyncio
    async def test_email_failure_does_not_fail_payment(self, dues_service, mock_email, membership):
        mock_email.fail_with = RuntimeError("smtp down")

        result = await record_cash_dues(dues_service, membership)

        assert result.success is True
