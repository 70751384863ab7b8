"""
Membership Status Machine

Pure functions deciding the lifecycle status of a membership from its
payment facts. No I/O; callers persist the result.

    pending ──fee paid──▶ awaiting_signature ──signed──▶ waiting_period
       │                                                   │
       └──────────fee paid + signed───────────────────────▶│
                                                           ▼
                         lapsed ◀──overdue── active ◀──paid_months ≥ threshold
                           │
                           └──payment──▶ active | waiting_period

    cancelled is absorbing.
"""

from typing import Optional

from .models import Membership, MembershipStanding, MembershipStatus

DEFAULT_ELIGIBILITY_MONTHS = 60

_STANDING = {
    MembershipStatus.PENDING: MembershipStanding.PENDING,
    MembershipStatus.AWAITING_SIGNATURE: MembershipStanding.PENDING,
    MembershipStatus.WAITING_PERIOD: MembershipStanding.CURRENT,
    MembershipStatus.ACTIVE: MembershipStanding.CURRENT,
    MembershipStatus.LAPSED: MembershipStanding.LAPSED,
    MembershipStatus.CANCELLED: MembershipStanding.CANCELLED,
}

_ONBOARDING_STATUSES = (MembershipStatus.PENDING, MembershipStatus.AWAITING_SIGNATURE)


def next_status(
    current: MembershipStatus,
    paid_months: int,
    enrollment_fee_paid: bool,
    threshold: int = DEFAULT_ELIGIBILITY_MONTHS,
) -> MembershipStatus:
    """
    Status after a payment has been applied.

    Nothing moves until the enrollment fee is paid. A waiting-period
    membership becomes active on reaching the threshold, and a lapsed one
    is reinstated to active or waiting_period depending on paid months.
    """
    if current == MembershipStatus.CANCELLED:
        return current
    if not enrollment_fee_paid:
        return current
    if current == MembershipStatus.WAITING_PERIOD and paid_months >= threshold:
        return MembershipStatus.ACTIVE
    if current == MembershipStatus.LAPSED:
        if paid_months >= threshold:
            return MembershipStatus.ACTIVE
        return MembershipStatus.WAITING_PERIOD
    return current


def resolve_onboarding_status(
    current: MembershipStatus,
    enrollment_fee_paid: bool,
    agreement_signed: bool,
) -> MembershipStatus:
    """Move a not-yet-joined membership forward once its fee is paid."""
    if current not in _ONBOARDING_STATUSES or not enrollment_fee_paid:
        return current
    if agreement_signed:
        return MembershipStatus.WAITING_PERIOD
    return MembershipStatus.AWAITING_SIGNATURE


def compute_status(
    current: MembershipStatus,
    paid_months: int,
    enrollment_fee_paid: bool,
    agreement_signed: bool,
    threshold: int = DEFAULT_ELIGIBILITY_MONTHS,
) -> MembershipStatus:
    """Onboarding resolution followed by the payment rules."""
    status = resolve_onboarding_status(current, enrollment_fee_paid, agreement_signed)
    return next_status(status, paid_months, enrollment_fee_paid, threshold)


def crossed_eligibility(
    previous_paid_months: int,
    new_paid_months: int,
    threshold: int = DEFAULT_ELIGIBILITY_MONTHS,
) -> bool:
    return previous_paid_months < threshold <= new_paid_months


def standing_for(status: MembershipStatus) -> MembershipStanding:
    return _STANDING[status]


def display_label(
    membership: Membership,
    threshold: Optional[int] = None,
) -> str:
    """Human readable label for a membership's status."""
    threshold = threshold or DEFAULT_ELIGIBILITY_MONTHS
    status = membership.status

    if status == MembershipStatus.PENDING:
        if not membership.enrollment_fee_paid:
            return "Awaiting enrollment fee"
        return "Pending"
    if status == MembershipStatus.AWAITING_SIGNATURE:
        return "Awaiting signature"
    if status == MembershipStatus.WAITING_PERIOD:
        return f"Waiting period ({membership.paid_months} of {threshold} months)"
    if status == MembershipStatus.ACTIVE:
        return "Eligible"
    if status == MembershipStatus.LAPSED:
        return "Lapsed"
    return "Cancelled"
