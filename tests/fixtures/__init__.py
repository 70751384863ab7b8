"""
Shared Test Fixtures

Centralized factories used across all test layers.

Structure:
    - common.py: Base ID generators, clocks
    - dues_fixtures.py: Dues service factories
"""

from .common import (
    NOW,
    TODAY,
    fixed_clock,
    make_email,
    make_member_id,
    make_membership_id,
    make_org_id,
    make_plan_id,
)

from .dues_fixtures import (
    SIGNED_AT,
    make_member,
    make_membership,
    make_organization,
    make_pending_payment,
    make_plan,
)

__all__ = [
    "NOW",
    "TODAY",
    "fixed_clock",
    "make_email",
    "make_member_id",
    "make_membership_id",
    "make_org_id",
    "make_plan_id",
    "SIGNED_AT",
    "make_member",
    "make_membership",
    "make_organization",
    "make_pending_payment",
    "make_plan",
]
