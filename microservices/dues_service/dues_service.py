"""
Dues Service Business Logic

Payment recording and reconciliation, payment previews, billing frequency
changes, agreement signing and the overdue and eligibility reports.
"""

import logging
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from . import billing_cycle
from .base import BaseDuesService
from .events import DuesEventType, MembershipStatusChangedEventData, PaymentRecordedEventData
from .fees import (
    amount_variance_warning,
    calculate_fees,
    cents_to_dollars,
    dollars_to_cents,
    expected_amount_for,
    platform_fee_for,
)
from .models import (
    ApproachingEligibilityEntry,
    ApproachingEligibilityResponse,
    BillingCalculation,
    BillingConfig,
    BillingFrequency,
    ChangeFrequencyResponse,
    EnrollmentFeeStatus,
    ErrorType,
    Membership,
    MembershipResponse,
    MembershipStatus,
    MembershipView,
    Organization,
    OverdueReportEntry,
    OverdueReportResponse,
    Payment,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    Plan,
    PreviewPaymentResponse,
    RecordPaymentResponse,
)
from .protocols import (
    BillingValidationError,
    DuesServiceError,
    MemberNotFoundError,
    MembershipNotFoundError,
    OrganizationNotFoundError,
    PaymentNotFoundError,
    PlanNotFoundError,
)
from .status_machine import compute_status, display_label, standing_for

logger = logging.getLogger(__name__)


class DuesService(BaseDuesService):
    """Membership dues core business logic"""

    # ====================
    # Payment Recording
    # ====================

    async def record_payment(
        self,
        membership_id: str,
        member_id: str,
        payment_type: PaymentType,
        method: PaymentMethod,
        amount: Decimal,
        months_credited: Optional[int] = None,
        check_number: Optional[str] = None,
        zelle_transaction_id: Optional[str] = None,
        notes: Optional[str] = None,
        recorded_by: Optional[str] = None,
        pending_payment_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        paid_at: Optional[datetime] = None,
        stripe_payment_intent_id: Optional[str] = None,
    ) -> RecordPaymentResponse:
        """
        Record a payment and apply it to the membership atomically.

        The membership row is locked for the whole operation. When a pending
        invoice is being settled (explicitly, or the oldest pending dues
        invoice for a dues payment) that row is completed in place instead of
        inserting a new one.
        """
        try:
            payment_type = PaymentType(payment_type)
            method = PaymentMethod(method)
            amount = Decimal(str(amount))
            self._validate_payment_input(payment_type, method, amount, months_credited,
                                         check_number, zelle_transaction_id, recorded_by)

            result, events = await self._apply_payment(
                membership_id=membership_id,
                member_id=member_id,
                payment_type=payment_type,
                method=method,
                amount=amount,
                months_credited=months_credited,
                check_number=check_number,
                zelle_transaction_id=zelle_transaction_id,
                notes=notes,
                recorded_by=recorded_by,
                pending_payment_id=pending_payment_id,
                organization_id=organization_id,
                paid_at=paid_at,
                stripe_payment_intent_id=stripe_payment_intent_id,
            )

        except DuesServiceError as e:
            logger.warning(f"Payment for membership {membership_id} rejected: {e}")
            return RecordPaymentResponse(success=False, message=str(e), error_type=e.error_type)
        except Exception as e:
            logger.error(f"Error recording payment for membership {membership_id}: {e}", exc_info=True)
            return RecordPaymentResponse(
                success=False,
                message=f"Error recording payment: {str(e)}",
                error_type=ErrorType.INTERNAL,
            )

        if events:
            await self._after_payment_committed(result)
        return result

    def _validate_payment_input(
        self,
        payment_type: PaymentType,
        method: PaymentMethod,
        amount: Decimal,
        months_credited: Optional[int],
        check_number: Optional[str],
        zelle_transaction_id: Optional[str],
        recorded_by: Optional[str],
    ) -> None:
        if amount <= 0:
            raise BillingValidationError("Payment amount must be greater than zero")
        if method.is_manual and not recorded_by:
            raise BillingValidationError(f"recorded_by is required for {method.value} payments")
        if method == PaymentMethod.CHECK and not check_number:
            raise BillingValidationError("check_number is required for check payments")
        if method == PaymentMethod.ZELLE and not zelle_transaction_id:
            raise BillingValidationError("zelle_transaction_id is required for zelle payments")
        if months_credited is not None and months_credited < 0:
            raise BillingValidationError("months_credited cannot be negative")
        if payment_type != PaymentType.ENROLLMENT_FEE and months_credited == 0:
            raise BillingValidationError(f"{payment_type.value} payments must credit at least one month")

    async def _load_context(
        self,
        membership: Membership,
        member_id: str,
    ) -> Tuple[Plan, Organization]:
        member = await self.repository.get_member(member_id)
        if not member or member.organization_id != membership.organization_id:
            raise MemberNotFoundError(f"Member {member_id} not found")
        if member.member_id != membership.member_id:
            raise BillingValidationError(
                f"Member {member_id} does not own membership {membership.membership_id}"
            )

        plan = await self.repository.get_plan(membership.plan_id)
        if not plan:
            raise PlanNotFoundError(f"Plan {membership.plan_id} not found")

        organization = await self.repository.get_organization(membership.organization_id)
        if not organization:
            raise OrganizationNotFoundError(f"Organization {membership.organization_id} not found")

        return plan, organization

    async def _apply_payment(
        self,
        membership_id: str,
        member_id: str,
        payment_type: PaymentType,
        method: PaymentMethod,
        amount: Decimal,
        months_credited: Optional[int],
        check_number: Optional[str],
        zelle_transaction_id: Optional[str],
        notes: Optional[str],
        recorded_by: Optional[str],
        pending_payment_id: Optional[str],
        organization_id: Optional[str],
        paid_at: Optional[datetime],
        stripe_payment_intent_id: Optional[str],
    ) -> Tuple[RecordPaymentResponse, bool]:
        """Returns the response and whether anything was committed"""
        now = self._now()
        today = now.date()
        paid_at = paid_at or now

        async with self.repository.transaction() as uow:
            membership = await uow.get_membership_for_update(membership_id)
            if not membership or (organization_id and membership.organization_id != organization_id):
                raise MembershipNotFoundError(f"Membership {membership_id} not found")

            plan, organization = await self._load_context(membership, member_id)
            config = self._billing_config(organization)

            # Reconciliation: settle an existing pending invoice
            pending: Optional[Payment] = None
            if pending_payment_id:
                pending = await uow.get_payment_for_update(pending_payment_id)
                if not pending or pending.membership_id != membership.membership_id:
                    raise PaymentNotFoundError(f"Payment {pending_payment_id} not found")
            elif payment_type == PaymentType.DUES:
                pending = await uow.find_pending_dues_payment(membership.membership_id)

            if pending is not None:
                if pending.status == PaymentStatus.COMPLETED:
                    logger.info(f"Payment {pending.payment_id} already completed; nothing to do")
                    return RecordPaymentResponse(
                        success=True,
                        message="Payment already recorded",
                        payment=pending,
                        membership=membership,
                        previous_status=membership.status,
                        new_status=membership.status,
                        settled_existing=True,
                    ), False
                if pending.status == PaymentStatus.REFUNDED:
                    raise BillingValidationError(f"Payment {pending.payment_id} was refunded and cannot be settled")

                payment_type = pending.type
                amount = pending.amount
                months = pending.months_credited
            else:
                months = self._months_for(payment_type, months_credited, membership.billing_frequency)

            warning = None
            if payment_type != PaymentType.ENROLLMENT_FEE:
                warning = amount_variance_warning(amount, expected_amount_for(plan, months))
                if warning:
                    logger.warning(f"Payment amount mismatch for membership {membership_id}: {warning}")

            fee_fields = self._fee_fields(method, amount, organization, membership.billing_frequency)
            updates, calculation = self._membership_changes(membership, payment_type, months, config, today)

            payment_fields: Dict[str, Any] = {
                "status": PaymentStatus.COMPLETED,
                "method": method,
                "months_credited": months,
                "check_number": check_number,
                "zelle_transaction_id": zelle_transaction_id,
                "stripe_payment_intent_id": stripe_payment_intent_id,
                "notes": self._payment_notes(method, notes, check_number, zelle_transaction_id),
                "recorded_by": recorded_by,
                "paid_at": paid_at,
                **fee_fields,
            }

            if pending is not None:
                payment = await uow.update_payment(pending.payment_id, payment_fields)
            else:
                payment = await uow.insert_payment(
                    Payment(
                        payment_id=str(uuid.uuid4()),
                        organization_id=membership.organization_id,
                        membership_id=membership.membership_id,
                        member_id=membership.member_id,
                        type=payment_type,
                        amount=amount,
                        **invoice_metadata(payment_type, membership, months, today),
                        **payment_fields,
                    )
                )

            updated = await uow.update_membership(
                membership.membership_id, updates, expected_version=membership.version
            )

        logger.info(
            f"Recorded {payment_type.value} payment {payment.payment_id} for membership "
            f"{membership_id}: {calculation.current_paid_months} -> {updated.paid_months} months, "
            f"{membership.status.value} -> {updated.status.value}"
        )

        return RecordPaymentResponse(
            success=True,
            message="Payment recorded successfully",
            payment=payment,
            membership=updated,
            status_changed=membership.status != updated.status,
            previous_status=membership.status,
            new_status=updated.status,
            became_eligible=calculation.becomes_eligible,
            settled_existing=pending is not None,
            warning=warning,
        ), True

    def _months_for(
        self,
        payment_type: PaymentType,
        months_credited: Optional[int],
        frequency: BillingFrequency,
    ) -> int:
        if payment_type == PaymentType.ENROLLMENT_FEE:
            return 0
        if months_credited is None:
            return billing_cycle.months_for_frequency(frequency)
        return months_credited

    def _fee_fields(
        self,
        method: PaymentMethod,
        amount: Decimal,
        organization: Organization,
        frequency: BillingFrequency,
    ) -> Dict[str, Decimal]:
        if method.is_manual:
            return {
                "stripe_fee": Decimal("0"),
                "platform_fee": Decimal("0"),
                "total_charged": amount,
                "net_amount": amount,
            }

        fees = calculate_fees(
            dollars_to_cents(amount),
            platform_fee_for(organization.platform_fees, frequency),
            organization.pass_fees_to_member,
        )
        return {
            "stripe_fee": cents_to_dollars(fees.stripe_fee),
            "platform_fee": cents_to_dollars(fees.platform_fee),
            "total_charged": cents_to_dollars(fees.charge_amount),
            "net_amount": cents_to_dollars(fees.net_amount),
        }

    def _payment_notes(
        self,
        method: PaymentMethod,
        notes: Optional[str],
        check_number: Optional[str],
        zelle_transaction_id: Optional[str],
    ) -> Optional[str]:
        prefix = None
        if method == PaymentMethod.CHECK and check_number:
            prefix = f"Check #{check_number}"
        elif method == PaymentMethod.ZELLE and zelle_transaction_id:
            prefix = f"Zelle: {zelle_transaction_id}"
        if prefix and notes:
            return f"{prefix} - {notes}"
        return prefix or notes

    def _membership_changes(
        self,
        membership: Membership,
        payment_type: PaymentType,
        months: int,
        config: BillingConfig,
        today: date,
    ) -> Tuple[Dict[str, Any], BillingCalculation]:
        """Field updates a payment causes, plus the calculation they came from"""
        threshold = config.eligibility_months
        updates: Dict[str, Any] = {}

        fee_paid = membership.enrollment_fee_paid
        if payment_type == PaymentType.ENROLLMENT_FEE and not fee_paid:
            updates["enrollment_fee_status"] = EnrollmentFeeStatus.PAID
            fee_paid = True

        new_paid_months = membership.paid_months
        if payment_type in (PaymentType.DUES, PaymentType.BACK_DUES):
            new_paid_months += months
            updates["paid_months"] = new_paid_months

        new_status = compute_status(
            membership.status,
            new_paid_months,
            fee_paid,
            membership.agreement_signed,
            threshold,
        )
        if new_status != membership.status:
            updates["status"] = new_status

        becomes_eligible = (
            membership.eligible_date is None
            and new_paid_months >= threshold
            and new_status != MembershipStatus.CANCELLED
        )
        if becomes_eligible:
            updates["eligible_date"] = today

        if payment_type == PaymentType.ENROLLMENT_FEE and membership.next_payment_due is not None:
            next_due = membership.next_payment_due
        else:
            next_due = billing_cycle.next_payment_due(
                today, membership.billing_frequency, membership.billing_anniversary_day
            )
            updates["next_payment_due"] = next_due

        if membership.last_payment_date is None or membership.last_payment_date < today:
            updates["last_payment_date"] = today

        calculation = BillingCalculation(
            membership_id=membership.membership_id,
            payment_type=payment_type,
            months_credited=months,
            current_paid_months=membership.paid_months,
            new_paid_months=new_paid_months,
            current_status=membership.status,
            new_status=new_status,
            status_changed=new_status != membership.status,
            becomes_eligible=becomes_eligible,
            next_payment_due=next_due,
        )
        return updates, calculation

    async def _after_payment_committed(self, result: RecordPaymentResponse) -> None:
        """Receipt email and events; never undoes the committed payment"""
        payment = result.payment
        membership = result.membership

        await self._publish_event(
            DuesEventType.PAYMENT_RECORDED.value,
            PaymentRecordedEventData(
                payment_id=payment.payment_id,
                membership_id=membership.membership_id,
                member_id=membership.member_id,
                organization_id=membership.organization_id,
                payment_type=payment.type.value,
                method=payment.method.value if payment.method else None,
                amount=payment.amount,
                months_credited=payment.months_credited,
                settled_existing=result.settled_existing,
            ),
        )

        if result.status_changed:
            await self._publish_event(
                DuesEventType.MEMBERSHIP_STATUS_CHANGED.value,
                MembershipStatusChangedEventData(
                    membership_id=membership.membership_id,
                    organization_id=membership.organization_id,
                    from_status=result.previous_status.value,
                    to_status=result.new_status.value,
                    reason="payment_recorded",
                    paid_months=membership.paid_months,
                    eligible_date=membership.eligible_date,
                ),
            )

        if result.became_eligible:
            await self._publish_event(
                DuesEventType.MEMBERSHIP_ELIGIBLE.value,
                {"membership_id": membership.membership_id, "eligible_date": str(membership.eligible_date)},
            )

        try:
            member = await self.repository.get_member(membership.member_id)
        except Exception as e:
            logger.warning(f"Could not load member for receipt email: {e}")
            return
        if member:
            await self._send_email(
                "payment_receipt",
                member.email,
                {
                    "member_name": member.full_name,
                    "amount": str(payment.amount),
                    "payment_type": payment.type.value,
                    "period_label": payment.period_label,
                    "paid_months": membership.paid_months,
                    "next_payment_due": str(membership.next_payment_due) if membership.next_payment_due else None,
                    "preferred_language": member.preferred_language,
                },
            )

    # ====================
    # Preview
    # ====================

    async def preview_payment(
        self,
        membership_id: str,
        payment_type: PaymentType = PaymentType.DUES,
        months_credited: Optional[int] = None,
    ) -> PreviewPaymentResponse:
        """Effect a payment would have, without persisting anything"""
        try:
            payment_type = PaymentType(payment_type)
            membership = await self.repository.get_membership(membership_id)
            if not membership:
                raise MembershipNotFoundError(f"Membership {membership_id} not found")
            if payment_type != PaymentType.ENROLLMENT_FEE and months_credited == 0:
                raise BillingValidationError(f"{payment_type.value} payments must credit at least one month")

            plan = await self.repository.get_plan(membership.plan_id)
            organization = await self.repository.get_organization(membership.organization_id)
            config = self._billing_config(organization)

            months = self._months_for(payment_type, months_credited, membership.billing_frequency)
            _, calculation = self._membership_changes(
                membership, payment_type, months, config, self._today()
            )
            if plan:
                if payment_type == PaymentType.ENROLLMENT_FEE:
                    calculation.expected_amount = plan.enrollment_fee
                else:
                    calculation.expected_amount = expected_amount_for(plan, months)

            return PreviewPaymentResponse(
                success=True,
                message="Payment preview calculated",
                calculation=calculation,
            )

        except DuesServiceError as e:
            return PreviewPaymentResponse(success=False, message=str(e), error_type=e.error_type)
        except Exception as e:
            logger.error(f"Error previewing payment for membership {membership_id}: {e}", exc_info=True)
            return PreviewPaymentResponse(
                success=False,
                message=f"Error previewing payment: {str(e)}",
                error_type=ErrorType.INTERNAL,
            )

    # ====================
    # Membership Management
    # ====================

    async def get_membership(self, membership_id: str) -> MembershipResponse:
        """Get membership with its standing and display label"""
        try:
            membership = await self.repository.get_membership(membership_id)
            if not membership:
                raise MembershipNotFoundError(f"Membership {membership_id} not found")

            organization = await self.repository.get_organization(membership.organization_id)
            return MembershipResponse(
                success=True,
                message="Membership retrieved",
                membership=self._view(membership, self._billing_config(organization)),
            )

        except DuesServiceError as e:
            return MembershipResponse(success=False, message=str(e), error_type=e.error_type)
        except Exception as e:
            logger.error(f"Error getting membership {membership_id}: {e}", exc_info=True)
            return MembershipResponse(
                success=False,
                message=f"Error getting membership: {str(e)}",
                error_type=ErrorType.INTERNAL,
            )

    async def change_billing_frequency(
        self,
        membership_id: str,
        new_frequency: BillingFrequency,
        organization_id: Optional[str] = None,
    ) -> ChangeFrequencyResponse:
        """Switch billing frequency; the due date is recomputed without proration"""
        try:
            new_frequency = BillingFrequency(new_frequency)
        except ValueError:
            valid = ", ".join(f.value for f in BillingFrequency)
            return ChangeFrequencyResponse(
                success=False,
                message=f"Invalid frequency. Must be one of: {valid}",
                error_type=ErrorType.VALIDATION,
            )

        try:
            membership = await self.repository.get_membership(membership_id)
            if not membership or (organization_id and membership.organization_id != organization_id):
                raise MembershipNotFoundError(f"Membership {membership_id} not found")
            if membership.status == MembershipStatus.CANCELLED:
                raise BillingValidationError("Cannot change billing frequency of a cancelled membership")
            if membership.has_active_subscription:
                raise BillingValidationError(
                    "Membership has an active auto-pay subscription; remove the payer before changing frequency"
                )

            previous = membership.billing_frequency
            anchor = membership.last_payment_date or self._today()
            next_due = billing_cycle.next_payment_due(
                anchor, new_frequency, membership.billing_anniversary_day
            )

            await self.repository.update_membership(
                membership_id,
                {"billing_frequency": new_frequency, "next_payment_due": next_due},
                expected_version=membership.version,
            )
            logger.info(
                f"Billing frequency for {membership_id} changed {previous.value} -> {new_frequency.value}, "
                f"next due {next_due}"
            )

            return ChangeFrequencyResponse(
                success=True,
                message="Billing frequency updated",
                previous_frequency=previous,
                new_frequency=new_frequency,
                next_payment_due=next_due,
            )

        except DuesServiceError as e:
            return ChangeFrequencyResponse(success=False, message=str(e), error_type=e.error_type)
        except Exception as e:
            logger.error(f"Error changing billing frequency for {membership_id}: {e}", exc_info=True)
            return ChangeFrequencyResponse(
                success=False,
                message=f"Error changing billing frequency: {str(e)}",
                error_type=ErrorType.INTERNAL,
            )

    async def mark_agreement_signed(
        self,
        membership_id: str,
        signed_at: Optional[datetime] = None,
    ) -> MembershipResponse:
        """Record the signed agreement once and advance onboarding status"""
        try:
            async with self.repository.transaction() as uow:
                membership = await uow.get_membership_for_update(membership_id)
                if not membership:
                    raise MembershipNotFoundError(f"Membership {membership_id} not found")

                organization = await self.repository.get_organization(membership.organization_id)
                config = self._billing_config(organization)

                if membership.agreement_signed:
                    return MembershipResponse(
                        success=True,
                        message="Agreement already signed",
                        membership=self._view(membership, config),
                    )

                updates: Dict[str, Any] = {"agreement_signed_at": signed_at or self._now()}
                new_status = compute_status(
                    membership.status,
                    membership.paid_months,
                    membership.enrollment_fee_paid,
                    True,
                    config.eligibility_months,
                )
                if new_status != membership.status:
                    updates["status"] = new_status

                updated = await uow.update_membership(
                    membership_id, updates, expected_version=membership.version
                )

        except DuesServiceError as e:
            return MembershipResponse(success=False, message=str(e), error_type=e.error_type)
        except Exception as e:
            logger.error(f"Error marking agreement signed for {membership_id}: {e}", exc_info=True)
            return MembershipResponse(
                success=False,
                message=f"Error marking agreement signed: {str(e)}",
                error_type=ErrorType.INTERNAL,
            )

        if updated.status != membership.status:
            await self._publish_event(
                DuesEventType.MEMBERSHIP_STATUS_CHANGED.value,
                MembershipStatusChangedEventData(
                    membership_id=membership_id,
                    organization_id=updated.organization_id,
                    from_status=membership.status.value,
                    to_status=updated.status.value,
                    reason="agreement_signed",
                    paid_months=updated.paid_months,
                ),
            )

        return MembershipResponse(
            success=True,
            message="Agreement signed",
            membership=self._view(updated, config),
        )

    # ====================
    # Reports
    # ====================

    async def get_overdue_report(
        self,
        organization_id: str,
        as_of: Optional[date] = None,
    ) -> OverdueReportResponse:
        """Billable memberships whose due date is more than lapse_days in the past"""
        try:
            organization = await self.repository.get_organization(organization_id)
            if not organization:
                raise OrganizationNotFoundError(f"Organization {organization_id} not found")

            as_of = as_of or self._today()
            grace_days = self._billing_config(organization).lapse_days
            memberships = await self.repository.list_overdue_memberships(
                organization_id, as_of - timedelta(days=grace_days)
            )
            entries = [
                OverdueReportEntry(
                    membership=m,
                    days_overdue=billing_cycle.days_between(m.next_payment_due, as_of),
                )
                for m in memberships
            ]
            return OverdueReportResponse(
                success=True,
                message=f"{len(entries)} overdue membership(s)",
                as_of=as_of,
                grace_days=grace_days,
                count=len(entries),
                entries=entries,
            )

        except DuesServiceError as e:
            return OverdueReportResponse(success=False, message=str(e), error_type=e.error_type)
        except Exception as e:
            logger.error(f"Error building overdue report for {organization_id}: {e}", exc_info=True)
            return OverdueReportResponse(
                success=False,
                message=f"Error building overdue report: {str(e)}",
                error_type=ErrorType.INTERNAL,
            )

    async def get_approaching_eligibility_report(
        self,
        organization_id: str,
        window_months: int = 5,
        limit: int = 100,
    ) -> ApproachingEligibilityResponse:
        """Memberships within window_months of the eligibility threshold"""
        try:
            organization = await self.repository.get_organization(organization_id)
            if not organization:
                raise OrganizationNotFoundError(f"Organization {organization_id} not found")
            if window_months < 1 or limit < 1:
                raise BillingValidationError("window_months and limit must be positive")

            eligibility_months = self._billing_config(organization).eligibility_months
            min_months = max(eligibility_months - window_months, 0)
            memberships = await self.repository.list_approaching_eligibility(
                organization_id, min_months, eligibility_months, limit
            )
            entries = [
                ApproachingEligibilityEntry(membership=m, months_remaining=eligibility_months - m.paid_months)
                for m in memberships
            ]
            return ApproachingEligibilityResponse(
                success=True,
                message=f"{len(entries)} membership(s) approaching eligibility",
                min_months=min_months,
                eligibility_months=eligibility_months,
                count=len(entries),
                entries=entries,
            )

        except DuesServiceError as e:
            return ApproachingEligibilityResponse(success=False, message=str(e), error_type=e.error_type)
        except Exception as e:
            logger.error(f"Error building eligibility report for {organization_id}: {e}", exc_info=True)
            return ApproachingEligibilityResponse(
                success=False,
                message=f"Error building eligibility report: {str(e)}",
                error_type=ErrorType.INTERNAL,
            )

    def _view(self, membership: Membership, config: BillingConfig) -> MembershipView:
        return MembershipView(
            membership=membership,
            standing=standing_for(membership.status),
            status_label=display_label(membership, config.eligibility_months),
        )


def invoice_metadata(
    payment_type: PaymentType,
    membership: Membership,
    months: int,
    today: date,
) -> Dict[str, Any]:
    """Due date, coverage period, label and invoice number for a new payment row"""
    if payment_type == PaymentType.ENROLLMENT_FEE:
        return {
            "due_date": today,
            "period_start": today,
            "period_end": today,
            "period_label": "Enrollment Fee",
        }

    anchor = membership.next_payment_due or today
    period_start, period_end = billing_cycle.period_bounds(anchor, months)
    return {
        "invoice_number": new_invoice_number(anchor),
        "due_date": anchor,
        "period_start": period_start,
        "period_end": period_end,
        "period_label": billing_cycle.format_period_label(anchor, months),
    }


def new_invoice_number(due_date: date) -> str:
    return f"INV-{due_date:%Y%m}-{uuid.uuid4().hex[:6].upper()}"
