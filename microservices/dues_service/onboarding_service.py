"""
Onboarding Service

Collects the first enrollment fee and dues of a new membership through an
onboarding invite, and runs the onboarding saga (invite, card setup, welcome
and agreement emails) with per-step results.
"""

import logging
import uuid
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from . import billing_cycle
from .base import BaseDuesService
from .dues_service import DuesService, invoice_metadata
from .events import DuesEventType
from .fees import plan_price_for
from .models import (
    ErrorType,
    InvitePaymentMethod,
    InviteStatus,
    Member,
    Membership,
    MembershipStatus,
    OnboardingInvite,
    OnboardingInviteResponse,
    OnboardingStep,
    OrchestrateOnboardingResponse,
    Payment,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    StepResult,
    StepStatus,
)
from .protocols import (
    BillingValidationError,
    DuesServiceError,
    ExternalServiceError,
    InviteNotFoundError,
    MemberNotFoundError,
    MembershipNotFoundError,
    OrganizationNotFoundError,
    PaymentProcessorProtocol,
    PlanNotFoundError,
)

logger = logging.getLogger(__name__)

STEP_ORDER = [
    OnboardingStep.ONBOARDING_INVITE,
    OnboardingStep.PAYMENT_SETUP,
    OnboardingStep.WELCOME_EMAIL,
    OnboardingStep.AGREEMENT_EMAIL,
]


class OnboardingService(BaseDuesService):
    """Onboarding invites and the onboarding saga"""

    def __init__(
        self,
        repository,
        dues_service: DuesService,
        processor: Optional[PaymentProcessorProtocol] = None,
        **kwargs,
    ):
        super().__init__(repository, **kwargs)
        self.dues_service = dues_service
        self.processor = processor

    # ====================
    # Invites
    # ====================

    async def create_invite(
        self,
        membership_id: str,
        payment_method: InvitePaymentMethod = InvitePaymentMethod.MANUAL,
        include_enrollment_fee: bool = True,
    ) -> OnboardingInviteResponse:
        """Create an onboarding invite, reusing a pending one"""
        try:
            invite, created = await self._ensure_invite(
                membership_id, InvitePaymentMethod(payment_method), include_enrollment_fee
            )
            payments = await self._pending_payments(invite.membership_id)
            return OnboardingInviteResponse(
                success=True,
                message="Onboarding invite created" if created else "Existing onboarding invite returned",
                invite=invite,
                created=created,
                payments=payments,
            )

        except DuesServiceError as e:
            return OnboardingInviteResponse(success=False, message=str(e), error_type=e.error_type)
        except Exception as e:
            logger.error(f"Error creating onboarding invite for {membership_id}: {e}", exc_info=True)
            return OnboardingInviteResponse(
                success=False,
                message=f"Error creating onboarding invite: {str(e)}",
                error_type=ErrorType.INTERNAL,
            )

    async def _ensure_invite(
        self,
        membership_id: str,
        payment_method: InvitePaymentMethod,
        include_enrollment_fee: bool,
    ):
        membership = await self.repository.get_membership(membership_id)
        if not membership:
            raise MembershipNotFoundError(f"Membership {membership_id} not found")
        if membership.status == MembershipStatus.CANCELLED:
            raise BillingValidationError(f"Membership {membership_id} is cancelled")

        existing = await self.repository.get_pending_invite(membership_id)
        if existing is not None:
            logger.info(f"Reusing pending invite {existing.invite_id} for membership {membership_id}")
            return existing, False

        plan = await self.repository.get_plan(membership.plan_id)
        if not plan:
            raise PlanNotFoundError(f"Plan {membership.plan_id} not found")

        includes_fee = (
            include_enrollment_fee
            and not membership.enrollment_fee_paid
            and plan.enrollment_fee > 0
        )
        months = billing_cycle.months_for_frequency(membership.billing_frequency)
        dues_amount = plan_price_for(plan, membership.billing_frequency)
        if dues_amount <= 0:
            raise BillingValidationError(
                f"Plan {plan.plan_id} has no {membership.billing_frequency.value} price"
            )
        today = self._today()

        if includes_fee:
            await self._create_pending_payment(membership, PaymentType.ENROLLMENT_FEE, plan.enrollment_fee, 0)
        await self._create_pending_payment(membership, PaymentType.DUES, dues_amount, months)

        invite = await self.repository.create_invite(
            OnboardingInvite(
                invite_id=str(uuid.uuid4()),
                organization_id=membership.organization_id,
                membership_id=membership_id,
                member_id=membership.member_id,
                payment_method=payment_method,
                includes_enrollment_fee=includes_fee,
                enrollment_fee_amount=plan.enrollment_fee if includes_fee else Decimal("0"),
                dues_amount=dues_amount,
                billing_frequency=membership.billing_frequency,
                created_at=self._now(),
            )
        )
        logger.info(
            f"Created onboarding invite {invite.invite_id} for membership {membership_id} "
            f"({payment_method.value}, enrollment fee: {includes_fee}, as of {today})"
        )
        return invite, True

    async def _create_pending_payment(
        self,
        membership: Membership,
        payment_type: PaymentType,
        amount: Decimal,
        months: int,
    ) -> Payment:
        return await self.repository.insert_payment(
            Payment(
                payment_id=str(uuid.uuid4()),
                organization_id=membership.organization_id,
                membership_id=membership.membership_id,
                member_id=membership.member_id,
                type=payment_type,
                status=PaymentStatus.PENDING,
                amount=amount,
                total_charged=amount,
                months_credited=months,
                **invoice_metadata(payment_type, membership, months, self._today()),
            )
        )

    async def _pending_payments(self, membership_id: str) -> List[Payment]:
        payments = await self.repository.list_payments(membership_id)
        return [p for p in payments if p.status == PaymentStatus.PENDING]

    async def record_onboarding_payment(
        self,
        invite_id: str,
        method: PaymentMethod,
        recorded_by: Optional[str] = None,
        enrollment_fee_paid: bool = False,
        dues_paid: bool = False,
        check_number: Optional[str] = None,
        zelle_transaction_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> OnboardingInviteResponse:
        """Settle the invite's pending payments and complete it once fully paid"""
        try:
            invite = await self.repository.get_invite(invite_id)
            if not invite:
                raise InviteNotFoundError(f"Onboarding invite {invite_id} not found")
            if invite.status == InviteStatus.COMPLETED:
                return OnboardingInviteResponse(
                    success=True,
                    message="Onboarding invite already completed",
                    invite=invite,
                    completed=True,
                )
            if invite.status != InviteStatus.PENDING:
                raise BillingValidationError(f"Onboarding invite {invite_id} is {invite.status.value}")
            if not enrollment_fee_paid and not dues_paid:
                raise BillingValidationError("Nothing to record: mark the enrollment fee or dues as paid")

            pending = await self._pending_payments(invite.membership_id)
            recorded: List[Payment] = []
            updates: Dict = {}
            now = self._now()

            parts = []
            if enrollment_fee_paid and invite.includes_enrollment_fee and invite.enrollment_fee_paid_at is None:
                parts.append((PaymentType.ENROLLMENT_FEE, invite.enrollment_fee_amount, "enrollment_fee_paid_at"))
            if dues_paid and invite.dues_paid_at is None:
                parts.append((PaymentType.DUES, invite.dues_amount, "dues_paid_at"))

            for payment_type, amount, stamp in parts:
                target = next((p for p in pending if p.type == payment_type), None)
                result = await self.dues_service.record_payment(
                    membership_id=invite.membership_id,
                    member_id=invite.member_id,
                    payment_type=payment_type,
                    method=method,
                    amount=target.amount if target else amount,
                    check_number=check_number,
                    zelle_transaction_id=zelle_transaction_id,
                    notes=notes,
                    recorded_by=recorded_by,
                    pending_payment_id=target.payment_id if target else None,
                    organization_id=invite.organization_id,
                )
                if not result.success:
                    # Parts recorded so far stay stamped so a retry only settles the rest
                    if updates:
                        invite = await self.repository.update_invite(invite_id, updates)
                    return OnboardingInviteResponse(
                        success=False,
                        message=f"Failed to record {payment_type.value}: {result.message}",
                        error_type=result.error_type,
                        invite=invite,
                        payments=recorded,
                    )
                recorded.append(result.payment)
                updates[stamp] = now

            invite = invite.model_copy(update=updates)
            if invite.is_fully_paid:
                updates["status"] = InviteStatus.COMPLETED
                updates["completed_at"] = now
            if updates:
                invite = await self.repository.update_invite(invite_id, updates)

        except DuesServiceError as e:
            return OnboardingInviteResponse(success=False, message=str(e), error_type=e.error_type)
        except Exception as e:
            logger.error(f"Error recording onboarding payment for invite {invite_id}: {e}", exc_info=True)
            return OnboardingInviteResponse(
                success=False,
                message=f"Error recording onboarding payment: {str(e)}",
                error_type=ErrorType.INTERNAL,
            )

        completed = invite.status == InviteStatus.COMPLETED
        if completed:
            logger.info(f"Onboarding invite {invite_id} completed")
            await self._publish_event(
                DuesEventType.ONBOARDING_COMPLETED.value,
                {
                    "invite_id": invite_id,
                    "membership_id": invite.membership_id,
                    "organization_id": invite.organization_id,
                },
            )

        return OnboardingInviteResponse(
            success=True,
            message="Onboarding completed" if completed else "Onboarding payment recorded",
            invite=invite,
            completed=completed,
            payments=recorded,
        )

    # ====================
    # Onboarding Saga
    # ====================

    async def orchestrate_onboarding(
        self,
        membership_id: str,
        payment_method: InvitePaymentMethod = InvitePaymentMethod.MANUAL,
        include_enrollment_fee: bool = True,
        retry_step: Optional[OnboardingStep] = None,
    ) -> OrchestrateOnboardingResponse:
        """
        Run the onboarding steps and report each one.

        Every step is safe to repeat. A failed step does not stop later
        independent steps; steps that need the invite are skipped when it is
        missing. Pass retry_step to re-run a single step.
        """
        payment_method = InvitePaymentMethod(payment_method)
        steps: Dict[str, StepResult] = {}
        invite: Optional[OnboardingInvite] = None
        first_error: Optional[ErrorType] = None

        try:
            membership = await self.repository.get_membership(membership_id)
            if not membership:
                raise MembershipNotFoundError(f"Membership {membership_id} not found")
            member = await self.repository.get_member(membership.member_id)
            if not member:
                raise MemberNotFoundError(f"Member {membership.member_id} not found")
            organization = await self.repository.get_organization(membership.organization_id)
            if not organization:
                raise OrganizationNotFoundError(f"Organization {membership.organization_id} not found")
        except DuesServiceError as e:
            return OrchestrateOnboardingResponse(success=False, message=str(e), error_type=e.error_type)
        except Exception as e:
            logger.error(f"Error loading onboarding context for {membership_id}: {e}", exc_info=True)
            return OrchestrateOnboardingResponse(
                success=False,
                message=f"Error starting onboarding: {str(e)}",
                error_type=ErrorType.INTERNAL,
            )

        to_run = [OnboardingStep(retry_step)] if retry_step else STEP_ORDER

        if OnboardingStep.ONBOARDING_INVITE in to_run:
            try:
                invite, created = await self._ensure_invite(membership_id, payment_method, include_enrollment_fee)
                steps[OnboardingStep.ONBOARDING_INVITE.value] = StepResult(
                    status=StepStatus.SUCCEEDED,
                    detail={"invite_id": invite.invite_id, "created": created},
                )
            except Exception as e:
                first_error = first_error or _error_type(e)
                steps[OnboardingStep.ONBOARDING_INVITE.value] = _failed(OnboardingStep.ONBOARDING_INVITE, e)
        else:
            try:
                invite = await self.repository.get_pending_invite(membership_id)
            except Exception as e:
                logger.warning(f"Could not load pending invite for {membership_id}: {e}")

        handlers: Dict[OnboardingStep, Callable] = {
            OnboardingStep.PAYMENT_SETUP: self._step_payment_setup,
            OnboardingStep.WELCOME_EMAIL: self._step_welcome_email,
            OnboardingStep.AGREEMENT_EMAIL: self._step_agreement_email,
        }
        for step in to_run:
            if step == OnboardingStep.ONBOARDING_INVITE:
                continue
            try:
                result, invite = await handlers[step](membership, member, organization, invite)
                steps[step.value] = result
            except Exception as e:
                first_error = first_error or _error_type(e)
                steps[step.value] = _failed(step, e)

        failed = [name for name, r in steps.items() if r.status == StepStatus.FAILED]
        return OrchestrateOnboardingResponse(
            success=not failed,
            message=f"Onboarding steps failed: {', '.join(failed)}" if failed else "Onboarding steps completed",
            error_type=first_error,
            invite=invite,
            steps=steps,
        )

    async def _step_payment_setup(self, membership, member: Member, organization, invite):
        if invite is None:
            raise InviteNotFoundError(f"No pending onboarding invite for membership {membership.membership_id}")
        if invite.payment_method != InvitePaymentMethod.STRIPE:
            return StepResult(status=StepStatus.SKIPPED, detail={"reason": "manual payment"}), invite
        if invite.payment_url:
            return StepResult(
                status=StepStatus.SUCCEEDED,
                detail={"session_id": invite.stripe_setup_session_id, "reused": True},
            ), invite
        if self.processor is None:
            raise ExternalServiceError("No payment processor configured", service="stripe")
        if not member.email:
            raise BillingValidationError(f"Member {member.member_id} has no email")

        metadata = {
            "membership_id": membership.membership_id,
            "organization_id": membership.organization_id,
            "invite_id": invite.invite_id,
        }
        customer_id = membership.stripe_customer_id
        if not customer_id:
            customer_id = await self.processor.get_or_create_customer(member.email, member.full_name, metadata)
            await self.repository.update_membership(
                membership.membership_id,
                {"stripe_customer_id": customer_id},
                expected_version=membership.version,
            )

        session = await self.processor.create_setup_session(customer_id, metadata)
        invite = await self.repository.update_invite(
            invite.invite_id,
            {"stripe_setup_session_id": session.session_id, "payment_url": session.url},
        )
        return StepResult(
            status=StepStatus.SUCCEEDED,
            detail={"session_id": session.session_id, "reused": False},
        ), invite

    async def _step_welcome_email(self, membership, member: Member, organization, invite):
        if invite is not None and invite.sent_at is not None:
            return StepResult(status=StepStatus.SUCCEEDED, detail={"already_sent": True}), invite

        sent = await self._send_email(
            "welcome",
            member.email,
            {
                "member_name": member.full_name,
                "organization_name": organization.name,
                "payment_url": invite.payment_url if invite else None,
                "enrollment_fee_amount": str(invite.enrollment_fee_amount) if invite else None,
                "dues_amount": str(invite.dues_amount) if invite else None,
                "preferred_language": member.preferred_language,
            },
        )
        if not sent:
            raise ExternalServiceError(f"Welcome email to member {member.member_id} was not sent", service="email")
        if invite is not None:
            invite = await self.repository.update_invite(invite.invite_id, {"sent_at": self._now()})
        return StepResult(status=StepStatus.SUCCEEDED), invite

    async def _step_agreement_email(self, membership, member: Member, organization, invite):
        if membership.agreement_signed:
            return StepResult(status=StepStatus.SKIPPED, detail={"reason": "agreement already signed"}), invite

        sent = await self._send_email(
            "membership_agreement",
            member.email,
            {
                "member_name": member.full_name,
                "organization_name": organization.name,
                "membership_id": membership.membership_id,
                "preferred_language": member.preferred_language,
            },
        )
        if not sent:
            raise ExternalServiceError(f"Agreement email to member {member.member_id} was not sent", service="email")
        return StepResult(status=StepStatus.SUCCEEDED), invite


def _error_type(error: Exception) -> ErrorType:
    return error.error_type if isinstance(error, DuesServiceError) else ErrorType.INTERNAL


def _failed(step: OnboardingStep, error: Exception) -> StepResult:
    logger.warning(f"Onboarding step {step.value} failed: {error}")
    return StepResult(status=StepStatus.FAILED, error=str(error))
