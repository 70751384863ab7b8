"""
Unit Tests for Payer Assignment

Covers both saga paths (card on file, payment link), compensation after a
failed write, and payer removal.
"""

from datetime import date

import pytest

from microservices.dues_service.models import (
    ErrorType,
    PayerAssignmentMode,
    PaymentMethodDetails,
    PlanPricing,
)
from microservices.dues_service.payer_service import PayerService
from microservices.dues_service.protocols import PersistenceError
from tests.component.mocks import stripe_unavailable
from tests.fixtures import make_member


@pytest.fixture
def payer_with_card(seed, mock_processor):
    """Payer whose own membership has a card on file"""
    payer, payer_membership = seed(
        member_overrides={"first_name": "Yusuf"},
        auto_pay_enabled=True,
        stripe_customer_id="cus_payer",
        payment_method_details=PaymentMethodDetails(payment_method_id="pm_card_visa", last4="4242"),
    )
    mock_processor.add_card("cus_payer")
    return payer, payer_membership


@pytest.fixture
def payer_without_card(mock_repository, organization):
    return mock_repository.add_member(make_member(organization.organization_id, first_name="Khadija"))


class TestAssignWithCard:
    """Path A: payer already has a card on file"""

    @pytest.mark.asyncio
    async def test_creates_subscription_with_trial(self, payer_service, mock_repository, mock_processor,
                                                    membership, payer_with_card):
        payer, _ = payer_with_card

        result = await payer_service.assign_payer(membership.membership_id, payer.member_id)

        assert result.success is True
        assert result.mode == PayerAssignmentMode.SUBSCRIPTION_CREATED
        assert result.subscription_id == "sub_mock_1"
        subscription = mock_processor.subscriptions[0]
        assert subscription["customer_id"] == "cus_payer"
        assert subscription["amount_cents"] == 2000
        assert subscription["trial_end"] == date(2026, 4, 15)

        stored = mock_repository.memberships[membership.membership_id]
        assert stored.payer_member_id == payer.member_id
        assert stored.stripe_subscription_id == "sub_mock_1"
        assert stored.subscription_status == "trialing"
        assert stored.auto_pay_enabled is True
        assert stored.payment_method_details.last4 == "4242"

    @pytest.mark.asyncio
    async def test_overdue_membership_bills_immediately(self, payer_service, mock_processor, seed, payer_with_card):
        payer, _ = payer_with_card
        _, membership = seed(next_payment_due=date(2026, 3, 1))

        result = await payer_service.assign_payer(membership.membership_id, payer.member_id)

        assert result.success is True
        assert mock_processor.subscriptions[0]["trial_end"] is None
        assert result.membership.subscription_status == "active"

    @pytest.mark.asyncio
    async def test_publishes_payer_assigned(self, payer_service, mock_event_bus, membership, payer_with_card):
        payer, _ = payer_with_card

        await payer_service.assign_payer(membership.membership_id, payer.member_id)

        events = mock_event_bus.get_published_by_subject("membership.payer_assigned")
        assert len(events) == 1
        assert events[0]["data"]["data"]["mode"] == "subscription_created"

    @pytest.mark.asyncio
    async def test_missing_default_card(self, payer_service, mock_processor, membership, payer_with_card):
        payer, _ = payer_with_card
        mock_processor.cards.clear()

        result = await payer_service.assign_payer(membership.membership_id, payer.member_id)

        assert result.error_type == ErrorType.VALIDATION
        assert mock_processor.subscriptions == []

    @pytest.mark.asyncio
    async def test_subscription_failure_leaves_membership_untouched(self, payer_service, mock_repository,
                                                                    mock_processor, membership, payer_with_card):
        payer, _ = payer_with_card
        mock_processor.fail_create_subscription = stripe_unavailable()

        result = await payer_service.assign_payer(membership.membership_id, payer.member_id)

        assert result.error_type == ErrorType.EXTERNAL_SERVICE
        assert mock_repository.memberships[membership.membership_id].payer_member_id is None


class TestCompensation:
    """Failed local write after the subscription was created"""

    @pytest.mark.asyncio
    async def test_failed_write_cancels_subscription(self, payer_service, mock_repository, mock_processor,
                                                     mock_event_bus, membership, payer_with_card):
        payer, _ = payer_with_card
        mock_repository.fail_membership_update = PersistenceError("write timed out")

        result = await payer_service.assign_payer(membership.membership_id, payer.member_id)

        assert result.success is False
        assert result.error_type == ErrorType.ROLLED_BACK
        assert mock_processor.cancelled == ["sub_mock_1"]
        assert mock_repository.memberships[membership.membership_id].payer_member_id is None
        assert mock_event_bus.get_published_by_subject("membership.payer_assigned") == []

    @pytest.mark.asyncio
    async def test_rollback_reports_cancelled_subscription(self, payer_service, mock_repository,
                                                           membership, payer_with_card):
        payer, _ = payer_with_card
        mock_repository.fail_membership_update = PersistenceError("write timed out")

        result = await payer_service.assign_payer(membership.membership_id, payer.member_id)

        assert result.compensated is True
        assert result.subscription_id == "sub_mock_1"

    @pytest.mark.asyncio
    async def test_failed_compensation_reports_orphaned_subscription(self, payer_service, mock_repository,
                                                                     mock_processor, mock_event_bus,
                                                                     membership, payer_with_card):
        payer, _ = payer_with_card
        mock_repository.fail_membership_update = PersistenceError("write timed out")
        mock_processor.fail_cancel = stripe_unavailable()

        result = await payer_service.assign_payer(membership.membership_id, payer.member_id)

        assert result.success is False
        assert result.error_type == ErrorType.COMPENSATION_FAILED
        assert result.error_type != ErrorType.ROLLED_BACK
        assert result.compensated is False
        assert result.subscription_id == "sub_mock_1"
        assert "sub_mock_1" in result.message
        assert mock_processor.cancelled == []
        assert mock_repository.memberships[membership.membership_id].payer_member_id is None
        assert mock_event_bus.get_published_by_subject("membership.payer_assigned") == []

    @pytest.mark.asyncio
    async def test_concurrent_change_is_compensated(self, payer_service, mock_repository, mock_processor,
                                                    membership, payer_with_card):
        payer, _ = payer_with_card
        original_update = mock_repository.update_membership

        async def bump_then_update(membership_id, fields, expected_version=None):
            current = mock_repository.memberships[membership_id]
            mock_repository.memberships[membership_id] = current.model_copy(update={"version": current.version + 1})
            return await original_update(membership_id, fields, expected_version)

        mock_repository.update_membership = bump_then_update

        result = await payer_service.assign_payer(membership.membership_id, payer.member_id)

        assert result.error_type == ErrorType.ROLLED_BACK
        assert mock_processor.cancelled == ["sub_mock_1"]


class TestAssignWithPaymentLink:
    """Path B: payer has no card on file"""

    @pytest.mark.asyncio
    async def test_sends_setup_link(self, payer_service, mock_repository, mock_processor, mock_email,
                                    membership, payer_without_card):
        result = await payer_service.assign_payer(membership.membership_id, payer_without_card.member_id)

        assert result.success is True
        assert result.mode == PayerAssignmentMode.PAYMENT_LINK_SENT
        assert result.payment_link_sent is True
        assert result.payment_url == "https://checkout.stripe.test/cs_mock_1"
        assert result.payer_email == payer_without_card.email
        assert mock_processor.customers[0]["email"] == payer_without_card.email
        assert mock_processor.subscriptions == []

        stored = mock_repository.memberships[membership.membership_id]
        assert stored.payer_member_id == payer_without_card.member_id
        assert stored.stripe_customer_id == "cus_mock_1"
        assert stored.stripe_subscription_id is None

        assert mock_email.templates() == ["payment_setup"]
        assert mock_email.sent[0]["variables"]["payment_url"] == result.payment_url

    @pytest.mark.asyncio
    async def test_reassignment_reuses_customer(self, payer_service, mock_processor, membership,
                                                payer_without_card):
        first = await payer_service.assign_payer(membership.membership_id, payer_without_card.member_id)
        removed = await payer_service.remove_payer(membership.membership_id)
        second = await payer_service.assign_payer(membership.membership_id, payer_without_card.member_id)

        assert first.success and removed.success and second.success
        assert len(mock_processor.customers) == 1
        assert second.membership.stripe_customer_id == "cus_mock_1"
        assert [s["customer_id"] for s in mock_processor.setup_sessions] == ["cus_mock_1", "cus_mock_1"]

    @pytest.mark.asyncio
    async def test_payer_membership_customer_reused(self, payer_service, mock_processor, seed, membership):
        payer, _ = seed(member_overrides={"first_name": "Bilal"}, stripe_customer_id="cus_existing")

        result = await payer_service.assign_payer(membership.membership_id, payer.member_id)

        assert result.success is True
        assert result.mode == PayerAssignmentMode.PAYMENT_LINK_SENT
        assert mock_processor.customers == []
        assert result.membership.stripe_customer_id == "cus_existing"
        assert mock_processor.setup_sessions[0]["customer_id"] == "cus_existing"

    @pytest.mark.asyncio
    async def test_email_rejection_is_not_fatal(self, payer_service, mock_email, membership, payer_without_card):
        mock_email.accept = False

        result = await payer_service.assign_payer(membership.membership_id, payer_without_card.member_id)

        assert result.success is True
        assert result.payment_link_sent is False
        assert result.payment_url is not None

    @pytest.mark.asyncio
    async def test_payer_without_email(self, payer_service, mock_repository, organization, membership):
        payer = mock_repository.add_member(make_member(organization.organization_id, email=None))

        result = await payer_service.assign_payer(membership.membership_id, payer.member_id)

        assert result.error_type == ErrorType.VALIDATION

    @pytest.mark.asyncio
    async def test_setup_session_failure(self, payer_service, mock_repository, mock_processor,
                                         membership, payer_without_card):
        mock_processor.fail_setup_session = stripe_unavailable()

        result = await payer_service.assign_payer(membership.membership_id, payer_without_card.member_id)

        assert result.error_type == ErrorType.EXTERNAL_SERVICE
        assert mock_repository.memberships[membership.membership_id].payer_member_id is None


class TestAssignmentValidation:
    """Preconditions checked before any processor call"""

    @pytest.mark.asyncio
    async def test_self_payer(self, payer_service, membership):
        result = await payer_service.assign_payer(membership.membership_id, membership.member_id)
        assert result.error_type == ErrorType.VALIDATION

    @pytest.mark.asyncio
    async def test_payer_from_other_org(self, payer_service, mock_repository, membership):
        outsider = mock_repository.add_member(make_member("org_other"))

        result = await payer_service.assign_payer(membership.membership_id, outsider.member_id)

        assert result.error_type == ErrorType.NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_membership(self, payer_service, payer_without_card):
        result = await payer_service.assign_payer("missing", payer_without_card.member_id)
        assert result.error_type == ErrorType.NOT_FOUND

    @pytest.mark.asyncio
    async def test_cross_tenant_membership(self, payer_service, membership, payer_without_card):
        result = await payer_service.assign_payer(
            membership.membership_id, payer_without_card.member_id, organization_id="org_other"
        )
        assert result.error_type == ErrorType.NOT_FOUND

    @pytest.mark.asyncio
    async def test_existing_payer(self, payer_service, seed, payer_without_card):
        _, membership = seed(payer_member_id="mem_someone")

        result = await payer_service.assign_payer(membership.membership_id, payer_without_card.member_id)

        assert result.error_type == ErrorType.VALIDATION

    @pytest.mark.asyncio
    async def test_active_subscription(self, payer_service, seed, payer_without_card):
        _, membership = seed(stripe_subscription_id="sub_own", subscription_status="active")

        result = await payer_service.assign_payer(membership.membership_id, payer_without_card.member_id)

        assert result.error_type == ErrorType.VALIDATION

    @pytest.mark.asyncio
    async def test_payer_who_is_paid_for(self, payer_service, seed, membership):
        payer, _ = seed(payer_member_id="mem_someone")

        result = await payer_service.assign_payer(membership.membership_id, payer.member_id)

        assert result.error_type == ErrorType.VALIDATION

    @pytest.mark.asyncio
    async def test_beneficiary_who_pays_for_others(self, payer_service, seed, membership, payer_without_card):
        seed(payer_member_id=membership.member_id)

        result = await payer_service.assign_payer(membership.membership_id, payer_without_card.member_id)

        assert result.error_type == ErrorType.VALIDATION

    @pytest.mark.asyncio
    async def test_plan_without_price(self, payer_service, mock_repository, mock_processor, plan,
                                      membership, payer_without_card):
        mock_repository.add_plan(plan.model_copy(update={"pricing": PlanPricing()}))

        result = await payer_service.assign_payer(membership.membership_id, payer_without_card.member_id)

        assert result.error_type == ErrorType.VALIDATION
        assert mock_processor.customers == []

    @pytest.mark.asyncio
    async def test_no_processor_configured(self, mock_repository, membership, payer_without_card):
        service = PayerService(mock_repository)

        result = await service.assign_payer(membership.membership_id, payer_without_card.member_id)

        assert result.error_type == ErrorType.EXTERNAL_SERVICE


class TestRemovePayer:
    """Tests for payer removal"""

    @pytest.mark.asyncio
    async def test_remove_cancels_and_clears(self, payer_service, mock_repository, mock_processor,
                                             mock_event_bus, seed):
        _, membership = seed(
            payer_member_id="mem_payer",
            stripe_customer_id="cus_payer",
            stripe_subscription_id="sub_live",
            subscription_status="active",
            auto_pay_enabled=True,
        )

        result = await payer_service.remove_payer(membership.membership_id)

        assert result.success is True
        assert result.subscription_cancelled is True
        assert mock_processor.cancelled == ["sub_live"]
        stored = mock_repository.memberships[membership.membership_id]
        assert stored.payer_member_id is None
        assert stored.stripe_subscription_id is None
        assert stored.auto_pay_enabled is False
        assert mock_event_bus.subjects() == ["membership.payer_removed"]

    @pytest.mark.asyncio
    async def test_cancel_failure_still_removes(self, payer_service, mock_repository, mock_processor, seed):
        _, membership = seed(payer_member_id="mem_payer", stripe_subscription_id="sub_live",
                             subscription_status="active")
        mock_processor.fail_cancel = stripe_unavailable()

        result = await payer_service.remove_payer(membership.membership_id)

        assert result.success is True
        assert result.subscription_cancelled is False
        assert mock_repository.memberships[membership.membership_id].payer_member_id is None

    @pytest.mark.asyncio
    async def test_pending_link_removal_has_nothing_to_cancel(self, payer_service, mock_processor, seed):
        _, membership = seed(payer_member_id="mem_payer", stripe_customer_id="cus_payer")

        result = await payer_service.remove_payer(membership.membership_id)

        assert result.success is True
        assert result.subscription_cancelled is False
        assert mock_processor.cancelled == []

    @pytest.mark.asyncio
    async def test_no_payer(self, payer_service, membership):
        result = await payer_service.remove_payer(membership.membership_id)
        assert result.error_type == ErrorType.VALIDATION


class TestSwitchToManual:
    """Tests for turning auto-pay off"""

    @pytest.mark.asyncio
    async def test_cancels_subscription_and_disables_auto_pay(self, payer_service, mock_repository,
                                                              mock_processor, mock_event_bus, seed):
        _, membership = seed(
            payer_member_id="mem_payer",
            stripe_customer_id="cus_payer",
            stripe_subscription_id="sub_live",
            subscription_status="active",
            auto_pay_enabled=True,
        )

        result = await payer_service.switch_to_manual(membership.membership_id)

        assert result.success is True
        assert result.subscription_cancelled is True
        assert result.previous_subscription_id == "sub_live"
        assert result.warning is None
        assert mock_processor.cancelled == ["sub_live"]
        stored = mock_repository.memberships[membership.membership_id]
        assert stored.auto_pay_enabled is False
        assert stored.stripe_subscription_id is None
        assert stored.subscription_status == "canceled"
        # payer and customer survive so auto-pay can be set up again
        assert stored.payer_member_id == "mem_payer"
        assert stored.stripe_customer_id == "cus_payer"

        events = mock_event_bus.get_published_by_subject("membership.auto_pay_disabled")
        assert len(events) == 1
        assert events[0]["data"]["data"]["mode"] == "manual"
        assert events[0]["data"]["data"]["subscription_id"] == "sub_live"

    @pytest.mark.asyncio
    async def test_already_manual_is_noop(self, payer_service, mock_processor, mock_event_bus, membership):
        result = await payer_service.switch_to_manual(membership.membership_id)

        assert result.success is True
        assert result.already_manual is True
        assert mock_processor.cancelled == []
        assert mock_event_bus.published_events == []

    @pytest.mark.asyncio
    async def test_cancel_failure_switches_with_warning(self, payer_service, mock_repository,
                                                        mock_processor, seed):
        _, membership = seed(stripe_subscription_id="sub_live", subscription_status="active",
                             auto_pay_enabled=True)
        mock_processor.fail_cancel = stripe_unavailable()

        result = await payer_service.switch_to_manual(membership.membership_id)

        assert result.success is True
        assert result.subscription_cancelled is False
        assert "sub_live" in result.warning
        assert mock_repository.memberships[membership.membership_id].auto_pay_enabled is False

    @pytest.mark.asyncio
    async def test_missing_subscription_counts_as_cancelled(self, payer_service, mock_processor, seed):
        _, membership = seed(stripe_subscription_id="sub_gone", auto_pay_enabled=True)
        mock_processor.fail_cancel = Exception("No such subscription: 'sub_gone'")

        result = await payer_service.switch_to_manual(membership.membership_id)

        assert result.success is True
        assert result.subscription_cancelled is True
        assert result.warning is None

    @pytest.mark.asyncio
    async def test_without_processor_warns(self, mock_repository, shared_deps, seed):
        service = PayerService(mock_repository, processor=None, **shared_deps)
        _, membership = seed(stripe_subscription_id="sub_live", auto_pay_enabled=True)

        result = await service.switch_to_manual(membership.membership_id)

        assert result.success is True
        assert result.subscription_cancelled is False
        assert "No payment processor" in result.warning
        assert mock_repository.memberships[membership.membership_id].stripe_subscription_id is None

    @pytest.mark.asyncio
    async def test_other_organization_not_found(self, payer_service, seed):
        _, membership = seed(auto_pay_enabled=True)

        result = await payer_service.switch_to_manual(membership.membership_id, organization_id="org_other")

        assert result.success is False
        assert result.error_type == ErrorType.NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_membership(self, payer_service):
        result = await payer_service.switch_to_manual("msh_missing")
        assert result.error_type == ErrorType.NOT_FOUND
