"""
Payer Assignment Service

Lets one member fund another member's dues. Assignment is a saga: external
processor calls run first, the single local write is guarded by the
membership version, and a failed write cancels the subscription it created.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from .base import BaseDuesService
from .events import DuesEventType, PayerChangedEventData
from .fees import dues_amount_cents
from .models import (
    AssignPayerResponse,
    ErrorType,
    Member,
    Membership,
    Organization,
    PayerAssignmentMode,
    Plan,
    RemovePayerResponse,
    SwitchToManualResponse,
)
from .protocols import (
    BillingValidationError,
    DuesServiceError,
    ExternalServiceError,
    MemberNotFoundError,
    MembershipNotFoundError,
    OrganizationNotFoundError,
    PayerAssignmentRolledBackError,
    PayerCompensationFailedError,
    PaymentProcessorProtocol,
    PlanNotFoundError,
)

logger = logging.getLogger(__name__)


class PayerService(BaseDuesService):
    """Payer assignment, removal and auto-pay switch-off"""

    def __init__(self, repository, processor: Optional[PaymentProcessorProtocol] = None, **kwargs):
        super().__init__(repository, **kwargs)
        self.processor = processor

    def _require_processor(self) -> PaymentProcessorProtocol:
        if self.processor is None:
            raise ExternalServiceError("No payment processor configured", service="stripe")
        return self.processor

    async def assign_payer(
        self,
        membership_id: str,
        payer_member_id: str,
        organization_id: Optional[str] = None,
    ) -> AssignPayerResponse:
        """
        Assign a payer to a membership.

        When the payer has a card on file a subscription is created right
        away. Otherwise the payer gets a card-setup link by email and the
        membership is left awaiting setup.
        """
        try:
            self._require_processor()
            membership, payer, payer_membership, plan, organization = await self._validate_assignment(
                membership_id, payer_member_id, organization_id
            )
            amount_cents = dues_amount_cents(plan, membership.billing_frequency)
            if amount_cents <= 0:
                raise BillingValidationError(
                    f"Plan {plan.plan_id} has no {membership.billing_frequency.value} price"
                )

            if payer_membership is not None and payer_membership.has_card_on_file:
                result = await self._assign_with_card(membership, payer, payer_membership, amount_cents)
            else:
                result = await self._assign_with_payment_link(membership, payer, payer_membership, organization)

        except PayerAssignmentRolledBackError as e:
            logger.warning(f"Payer assignment for membership {membership_id} failed: {e}")
            return AssignPayerResponse(
                success=False,
                message=str(e),
                error_type=e.error_type,
                subscription_id=e.subscription_id,
                compensated=e.compensated,
            )
        except DuesServiceError as e:
            logger.warning(f"Payer assignment for membership {membership_id} failed: {e}")
            return AssignPayerResponse(success=False, message=str(e), error_type=e.error_type)
        except Exception as e:
            logger.error(f"Error assigning payer to membership {membership_id}: {e}", exc_info=True)
            return AssignPayerResponse(
                success=False,
                message=f"Error assigning payer: {str(e)}",
                error_type=ErrorType.INTERNAL,
            )

        await self._publish_event(
            DuesEventType.PAYER_ASSIGNED.value,
            PayerChangedEventData(
                membership_id=membership_id,
                payer_member_id=payer_member_id,
                mode=result.mode.value,
                subscription_id=result.subscription_id,
            ),
        )
        return result

    async def _validate_assignment(
        self,
        membership_id: str,
        payer_member_id: str,
        organization_id: Optional[str],
    ) -> Tuple[Membership, Member, Optional[Membership], Plan, Organization]:
        membership = await self.repository.get_membership(membership_id)
        if not membership or (organization_id and membership.organization_id != organization_id):
            raise MembershipNotFoundError(f"Membership {membership_id} not found")

        beneficiary = await self.repository.get_member(membership.member_id)
        if not beneficiary:
            raise MemberNotFoundError(f"Member {membership.member_id} not found")

        payer = await self.repository.get_member(payer_member_id)
        if not payer or payer.organization_id != membership.organization_id:
            raise MemberNotFoundError(f"Payer {payer_member_id} not found")

        if payer_member_id == membership.member_id:
            raise BillingValidationError("A member cannot be their own payer")

        if membership.has_active_subscription:
            raise BillingValidationError("Membership already has an active subscription")

        if membership.payer_member_id:
            raise BillingValidationError(
                f"Membership already has payer {membership.payer_member_id}; remove it first"
            )

        payer_membership = await self.repository.get_membership_by_member(payer_member_id)
        if payer_membership is not None and payer_membership.payer_member_id:
            raise BillingValidationError(
                f"Member {payer_member_id} has their dues paid by another member and cannot be a payer"
            )

        paid_for = await self.repository.list_memberships_paid_by(membership.member_id)
        if paid_for:
            raise BillingValidationError(
                f"Member {membership.member_id} pays for {len(paid_for)} other membership(s) "
                "and cannot have a payer"
            )

        plan = await self.repository.get_plan(membership.plan_id)
        if not plan:
            raise PlanNotFoundError(f"Plan {membership.plan_id} not found")

        organization = await self.repository.get_organization(membership.organization_id)
        if not organization:
            raise OrganizationNotFoundError(f"Organization {membership.organization_id} not found")

        return membership, payer, payer_membership, plan, organization

    async def _assign_with_card(
        self,
        membership: Membership,
        payer: Member,
        payer_membership: Membership,
        amount_cents: int,
    ) -> AssignPayerResponse:
        customer_id = payer_membership.stripe_customer_id
        card = await self.processor.get_default_payment_method(customer_id)
        if card is None or not card.payment_method_id:
            raise BillingValidationError(f"Payer {payer.member_id} has no default payment method")

        trial_end = None
        if membership.next_payment_due and membership.next_payment_due > self._today():
            trial_end = membership.next_payment_due

        subscription = await self.processor.create_subscription(
            customer_id=customer_id,
            payment_method_id=card.payment_method_id,
            amount_cents=amount_cents,
            frequency=membership.billing_frequency,
            trial_end=trial_end,
            metadata={
                "membership_id": membership.membership_id,
                "organization_id": membership.organization_id,
                "payer_member_id": payer.member_id,
            },
        )

        fields: Dict[str, Any] = {
            "payer_member_id": payer.member_id,
            "stripe_customer_id": customer_id,
            "stripe_subscription_id": subscription.subscription_id,
            "subscription_status": subscription.status,
            "auto_pay_enabled": True,
            "payment_method_details": card,
        }
        try:
            updated = await self.repository.update_membership(
                membership.membership_id, fields, expected_version=membership.version
            )
        except Exception as e:
            if not await self._compensate(subscription.subscription_id):
                raise PayerCompensationFailedError(
                    f"Payer assignment failed to persist and subscription {subscription.subscription_id} "
                    f"could not be cancelled; manual cleanup required: {e}",
                    subscription_id=subscription.subscription_id,
                ) from e
            raise PayerAssignmentRolledBackError(
                f"Payer assignment rolled back after persistence failure: {e}",
                subscription_id=subscription.subscription_id,
            ) from e

        logger.info(
            f"Payer {payer.member_id} assigned to membership {membership.membership_id} "
            f"with subscription {subscription.subscription_id}"
        )
        return AssignPayerResponse(
            success=True,
            message="Payer assigned and subscription created",
            mode=PayerAssignmentMode.SUBSCRIPTION_CREATED,
            membership=updated,
            subscription_id=subscription.subscription_id,
            payer_email=payer.email,
        )

    async def _compensate(self, subscription_id: str) -> bool:
        try:
            await self.processor.cancel_subscription(subscription_id)
            logger.info(f"Compensated payer assignment by cancelling subscription {subscription_id}")
            return True
        except Exception as e:
            logger.error(
                f"Failed to cancel subscription {subscription_id} during compensation; "
                f"manual cleanup required: {e}",
                exc_info=True,
            )
            return False

    async def _assign_with_payment_link(
        self,
        membership: Membership,
        payer: Member,
        payer_membership: Optional[Membership],
        organization: Organization,
    ) -> AssignPayerResponse:
        if not payer.email:
            raise BillingValidationError(f"Payer {payer.member_id} has no email for a payment link")

        metadata = {
            "membership_id": membership.membership_id,
            "organization_id": membership.organization_id,
            "payer_member_id": payer.member_id,
        }
        customer_id = payer_membership.stripe_customer_id if payer_membership is not None else None
        if not customer_id:
            customer_id = await self.processor.get_or_create_customer(payer.email, payer.full_name, metadata)
        session = await self.processor.create_setup_session(customer_id, metadata)

        updated = await self.repository.update_membership(
            membership.membership_id,
            {"payer_member_id": payer.member_id, "stripe_customer_id": customer_id},
            expected_version=membership.version,
        )

        sent = await self._send_email(
            "payment_setup",
            payer.email,
            {
                "payer_name": payer.full_name,
                "organization_name": organization.name,
                "payment_url": session.url,
                "preferred_language": payer.preferred_language,
            },
        )

        logger.info(
            f"Payer {payer.member_id} assigned to membership {membership.membership_id}, "
            f"awaiting card setup (link sent: {sent})"
        )
        return AssignPayerResponse(
            success=True,
            message="Payer assigned; payment setup link sent" if sent else "Payer assigned; payment setup pending",
            mode=PayerAssignmentMode.PAYMENT_LINK_SENT,
            membership=updated,
            payment_link_sent=sent,
            payment_url=session.url,
            payer_email=payer.email,
        )

    async def remove_payer(
        self,
        membership_id: str,
        organization_id: Optional[str] = None,
    ) -> RemovePayerResponse:
        """Remove the payer, cancelling its subscription when there is one"""
        try:
            membership = await self.repository.get_membership(membership_id)
            if not membership or (organization_id and membership.organization_id != organization_id):
                raise MembershipNotFoundError(f"Membership {membership_id} not found")
            if not membership.payer_member_id:
                raise BillingValidationError(f"Membership {membership_id} has no payer")

            cancelled = False
            if membership.stripe_subscription_id:
                try:
                    await self._require_processor().cancel_subscription(membership.stripe_subscription_id)
                    cancelled = True
                except Exception as e:
                    logger.warning(
                        f"Failed to cancel subscription {membership.stripe_subscription_id} "
                        f"while removing payer: {e}"
                    )

            updated = await self.repository.update_membership(
                membership_id,
                {
                    "payer_member_id": None,
                    "stripe_customer_id": None,
                    "stripe_subscription_id": None,
                    "subscription_status": None,
                    "auto_pay_enabled": False,
                    "payment_method_details": None,
                },
                expected_version=membership.version,
            )

        except DuesServiceError as e:
            return RemovePayerResponse(success=False, message=str(e), error_type=e.error_type)
        except Exception as e:
            logger.error(f"Error removing payer from membership {membership_id}: {e}", exc_info=True)
            return RemovePayerResponse(
                success=False,
                message=f"Error removing payer: {str(e)}",
                error_type=ErrorType.INTERNAL,
            )

        logger.info(f"Removed payer {membership.payer_member_id} from membership {membership_id}")
        await self._publish_event(
            DuesEventType.PAYER_REMOVED.value,
            PayerChangedEventData(
                membership_id=membership_id,
                payer_member_id=membership.payer_member_id,
                subscription_id=membership.stripe_subscription_id,
            ),
        )
        return RemovePayerResponse(
            success=True,
            message="Payer removed",
            membership=updated,
            subscription_cancelled=cancelled,
        )

    async def switch_to_manual(
        self,
        membership_id: str,
        organization_id: Optional[str] = None,
    ) -> SwitchToManualResponse:
        """
        Stop processor auto-pay so dues are recorded manually from now on.

        The subscription is cancelled best-effort. The customer id, payer and
        card summary are kept so auto-pay can be set up again later.
        """
        try:
            membership = await self.repository.get_membership(membership_id)
            if not membership or (organization_id and membership.organization_id != organization_id):
                raise MembershipNotFoundError(f"Membership {membership_id} not found")

            if not membership.auto_pay_enabled and not membership.stripe_subscription_id:
                return SwitchToManualResponse(
                    success=True,
                    message="Membership is already on manual payments",
                    membership=membership,
                    already_manual=True,
                )

            subscription_id = membership.stripe_subscription_id
            cancelled = False
            warning = None
            if subscription_id and self.processor is None:
                warning = "No payment processor configured; the subscription may still be active"
            elif subscription_id:
                try:
                    await self.processor.cancel_subscription(subscription_id)
                    cancelled = True
                except Exception as e:
                    if "No such subscription" in str(e):
                        cancelled = True
                    else:
                        warning = f"Failed to cancel subscription {subscription_id}: {e}"
                        logger.warning(warning)

            updated = await self.repository.update_membership(
                membership_id,
                {
                    "auto_pay_enabled": False,
                    "stripe_subscription_id": None,
                    "subscription_status": "canceled",
                },
                expected_version=membership.version,
            )

        except DuesServiceError as e:
            return SwitchToManualResponse(success=False, message=str(e), error_type=e.error_type)
        except Exception as e:
            logger.error(f"Error switching membership {membership_id} to manual: {e}", exc_info=True)
            return SwitchToManualResponse(
                success=False,
                message=f"Error switching to manual payments: {str(e)}",
                error_type=ErrorType.INTERNAL,
            )

        logger.info(f"Membership {membership_id} switched to manual payments (subscription {subscription_id})")
        await self._publish_event(
            DuesEventType.AUTO_PAY_DISABLED.value,
            PayerChangedEventData(
                membership_id=membership_id,
                payer_member_id=membership.payer_member_id,
                mode="manual",
                subscription_id=subscription_id,
            ),
        )
        return SwitchToManualResponse(
            success=True,
            message="Switched to manual payments",
            membership=updated,
            subscription_cancelled=cancelled,
            previous_subscription_id=subscription_id,
            warning=warning,
        )
