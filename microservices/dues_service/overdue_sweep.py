"""
Overdue Sweep

Daily job that generates due invoices, lapses overdue memberships, cancels
long-lapsed ones and escalates payment reminders. Every write is a single
version-guarded row update, so one failing membership never blocks the rest.
"""

import logging
import uuid
from datetime import date, datetime, time, timezone
from typing import Dict, Optional

from . import billing_cycle
from .base import BaseDuesService
from .dues_service import invoice_metadata
from .events import DuesEventType, MembershipStatusChangedEventData, OverdueSweepCompletedEventData
from .fees import plan_price_for
from .models import (
    BillingConfig,
    Membership,
    MembershipStatus,
    Organization,
    OverdueSweepResponse,
    Payment,
    PaymentStatus,
    PaymentType,
    Plan,
    StatusTransition,
    SweepError,
)
from .protocols import PlanNotFoundError

logger = logging.getLogger(__name__)

REASON_OVERDUE = "overdue"
REASON_LAPSED_TOO_LONG = "lapsed_beyond_cancel_window"


class OverdueSweepService(BaseDuesService):
    """Invoice generation, lapse/cancel transitions and reminder escalation"""

    async def run_overdue_sweep(self, as_of: Optional[date] = None) -> OverdueSweepResponse:
        as_of = as_of or self._today()
        result = OverdueSweepResponse(as_of=as_of)
        logger.info(f"Starting overdue sweep as of {as_of}")

        try:
            organizations = await self.repository.list_active_organizations()
        except Exception as e:
            logger.error(f"Overdue sweep could not list organizations: {e}", exc_info=True)
            result.success = False
            result.message = f"Overdue sweep failed: {str(e)}"
            result.errors.append(SweepError(error=str(e)))
            return result

        for organization in organizations:
            try:
                await self._sweep_organization(organization, as_of, result)
                result.organizations_processed += 1
            except Exception as e:
                logger.error(
                    f"Overdue sweep failed for organization {organization.organization_id}: {e}",
                    exc_info=True,
                )
                result.errors.append(SweepError(organization_id=organization.organization_id, error=str(e)))

        if result.errors:
            result.message = f"Overdue sweep completed with {len(result.errors)} error(s)"

        logger.info(
            f"Overdue sweep as of {as_of}: processed={result.processed} "
            f"transitioned={len(result.transitioned)} invoices={result.invoices_created} "
            f"reminders={result.reminders_sent} flagged={result.flagged_for_review} "
            f"errors={len(result.errors)}"
        )
        await self._publish_event(
            DuesEventType.OVERDUE_SWEEP_COMPLETED.value,
            OverdueSweepCompletedEventData(
                as_of=as_of,
                processed=result.processed,
                transitioned=len(result.transitioned),
                invoices_created=result.invoices_created,
                reminders_sent=result.reminders_sent,
                error_count=len(result.errors),
            ),
        )
        return result

    async def _sweep_organization(
        self,
        organization: Organization,
        as_of: date,
        result: OverdueSweepResponse,
    ) -> None:
        config = self._billing_config(organization)
        memberships = await self.repository.list_billable_memberships(organization.organization_id)
        plans: Dict[str, Plan] = {}

        for membership in memberships:
            result.processed += 1
            try:
                if await self._generate_invoice(membership, as_of, plans):
                    result.invoices_created += 1

                membership = await self._apply_transitions(membership, as_of, config, result)
            except Exception as e:
                logger.error(
                    f"Overdue sweep failed for membership {membership.membership_id}: {e}",
                    exc_info=True,
                )
                result.errors.append(
                    SweepError(
                        organization_id=organization.organization_id,
                        membership_id=membership.membership_id,
                        error=str(e),
                    )
                )

        if config.send_invoice_reminders:
            await self._send_reminders(organization, as_of, config, result)

    # ====================
    # Invoices
    # ====================

    async def _generate_invoice(
        self,
        membership: Membership,
        as_of: date,
        plans: Dict[str, Plan],
    ) -> bool:
        if membership.status not in (MembershipStatus.WAITING_PERIOD, MembershipStatus.ACTIVE):
            return False
        if not membership.enrollment_fee_paid or not membership.agreement_signed:
            return False
        if membership.has_active_subscription:
            return False
        due_date = membership.next_payment_due
        if due_date is None or due_date > as_of:
            return False

        existing = await self.repository.find_dues_invoice(membership.membership_id, due_date)
        if existing is not None:
            return False

        plan = plans.get(membership.plan_id)
        if plan is None:
            plan = await self.repository.get_plan(membership.plan_id)
            if plan is None:
                raise PlanNotFoundError(f"Plan {membership.plan_id} not found")
            plans[membership.plan_id] = plan

        months = billing_cycle.months_for_frequency(membership.billing_frequency)
        amount = plan_price_for(plan, membership.billing_frequency)

        invoice = await self.repository.insert_payment(
            Payment(
                payment_id=str(uuid.uuid4()),
                organization_id=membership.organization_id,
                membership_id=membership.membership_id,
                member_id=membership.member_id,
                type=PaymentType.DUES,
                status=PaymentStatus.PENDING,
                amount=amount,
                total_charged=amount,
                months_credited=months,
                **invoice_metadata(PaymentType.DUES, membership, months, as_of),
            )
        )
        logger.info(
            f"Created invoice {invoice.invoice_number} for membership {membership.membership_id} "
            f"due {due_date}"
        )
        await self._publish_event(
            DuesEventType.INVOICE_CREATED.value,
            {
                "payment_id": invoice.payment_id,
                "membership_id": membership.membership_id,
                "organization_id": membership.organization_id,
                "invoice_number": invoice.invoice_number,
                "amount": str(invoice.amount),
                "due_date": str(due_date),
            },
        )
        return True

    # ====================
    # Lapse / Cancel
    # ====================

    async def _apply_transitions(
        self,
        membership: Membership,
        as_of: date,
        config: BillingConfig,
        result: OverdueSweepResponse,
    ) -> Membership:
        due = membership.next_payment_due
        if due is None:
            return membership

        if (
            membership.status in (MembershipStatus.ACTIVE, MembershipStatus.WAITING_PERIOD)
            and billing_cycle.days_between(due, as_of) >= config.lapse_days
        ):
            membership = await self._transition(
                membership, MembershipStatus.LAPSED, REASON_OVERDUE, {}, result
            )

        cancel_cutoff = billing_cycle.add_months(as_of, -config.cancel_months)
        if membership.status == MembershipStatus.LAPSED and due <= cancel_cutoff:
            fields = {} if membership.cancelled_date else {"cancelled_date": as_of}
            membership = await self._transition(
                membership, MembershipStatus.CANCELLED, REASON_LAPSED_TOO_LONG, fields, result
            )

        return membership

    async def _transition(
        self,
        membership: Membership,
        to_status: MembershipStatus,
        reason: str,
        extra_fields: Dict,
        result: OverdueSweepResponse,
    ) -> Membership:
        updated = await self.repository.update_membership(
            membership.membership_id,
            {"status": to_status, **extra_fields},
            expected_version=membership.version,
        )
        logger.info(
            f"Membership {membership.membership_id}: {membership.status.value} -> "
            f"{to_status.value} ({reason})"
        )
        result.transitioned.append(
            StatusTransition(
                membership_id=membership.membership_id,
                organization_id=membership.organization_id,
                from_status=membership.status,
                to_status=to_status,
                reason=reason,
            )
        )
        await self._publish_event(
            DuesEventType.MEMBERSHIP_STATUS_CHANGED.value,
            MembershipStatusChangedEventData(
                membership_id=membership.membership_id,
                organization_id=membership.organization_id,
                from_status=membership.status.value,
                to_status=to_status.value,
                reason=reason,
                paid_months=updated.paid_months,
            ),
        )
        return updated

    # ====================
    # Reminders
    # ====================

    async def _send_reminders(
        self,
        organization: Organization,
        as_of: date,
        config: BillingConfig,
        result: OverdueSweepResponse,
    ) -> None:
        if config.max_reminders <= 0 or not config.reminder_schedule:
            return

        try:
            candidates = await self.repository.list_reminder_candidates(organization.organization_id)
        except Exception as e:
            logger.error(
                f"Could not load reminder candidates for {organization.organization_id}: {e}",
                exc_info=True,
            )
            result.errors.append(SweepError(organization_id=organization.organization_id, error=str(e)))
            return

        for payment in candidates:
            try:
                if not reminder_due(payment, as_of, config):
                    continue
                if await self._send_reminder(payment, organization, as_of, config, result):
                    result.reminders_sent += 1
            except Exception as e:
                logger.error(f"Reminder failed for payment {payment.payment_id}: {e}", exc_info=True)
                result.errors.append(
                    SweepError(
                        organization_id=organization.organization_id,
                        membership_id=payment.membership_id,
                        payment_id=payment.payment_id,
                        error=str(e),
                    )
                )

    async def _send_reminder(
        self,
        payment: Payment,
        organization: Organization,
        as_of: date,
        config: BillingConfig,
        result: OverdueSweepResponse,
    ) -> bool:
        member = await self.repository.get_member(payment.member_id)
        if not member or not member.email:
            logger.warning(f"No email for member {payment.member_id}; reminder for {payment.payment_id} skipped")
            return False

        sent = await self._send_email(
            "payment_reminder",
            member.email,
            {
                "member_name": member.full_name,
                "organization_name": organization.name,
                "amount": str(payment.amount),
                "invoice_number": payment.invoice_number,
                "period_label": payment.period_label,
                "due_date": str(payment.due_date),
                "days_overdue": billing_cycle.days_between(payment.due_date, as_of),
                "reminder_number": payment.reminder_count + 1,
                "preferred_language": member.preferred_language,
            },
        )
        if not sent:
            return False

        reminder_count = payment.reminder_count + 1
        fields = {
            "reminder_count": reminder_count,
            "reminder_sent_at": datetime.combine(as_of, time(0), tzinfo=timezone.utc),
        }
        if reminder_count >= reminder_limit(config):
            fields["requires_review"] = True
            result.flagged_for_review += 1
            logger.info(f"Payment {payment.payment_id} flagged for review after {reminder_count} reminders")

        await self.repository.update_payment(payment.payment_id, fields)
        await self._publish_event(
            DuesEventType.REMINDER_SENT.value,
            {
                "payment_id": payment.payment_id,
                "membership_id": payment.membership_id,
                "reminder_count": reminder_count,
            },
        )
        return True


def reminder_limit(config: BillingConfig) -> int:
    """Reminders sent per invoice: one per schedule entry, capped by max_reminders"""
    return min(config.max_reminders, len(config.reminder_schedule))


def reminder_due(payment: Payment, as_of: date, config: BillingConfig) -> bool:
    """Whether the next reminder in the schedule is due for a payment"""
    if payment.status not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
        return False
    if payment.due_date is None or payment.reminders_paused or payment.requires_review:
        return False
    if payment.reminder_count >= reminder_limit(config):
        return False

    threshold = config.reminder_schedule[payment.reminder_count]
    if billing_cycle.days_between(payment.due_date, as_of) < threshold:
        return False

    if payment.reminder_sent_at is not None:
        return billing_cycle.days_between(payment.reminder_sent_at.date(), as_of) >= 1
    return True
