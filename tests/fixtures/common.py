"""
Common/Shared Fixtures

Base ID generators and time helpers used across test layers.
"""
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional


def make_org_id() -> str:
    """Generate a unique organization ID"""
    return f"org_test_{uuid.uuid4().hex[:12]}"


def make_member_id() -> str:
    """Generate a unique member ID"""
    return f"mem_test_{uuid.uuid4().hex[:12]}"


def make_membership_id() -> str:
    """Generate a unique membership ID"""
    return f"msh_test_{uuid.uuid4().hex[:12]}"


def make_plan_id() -> str:
    """Generate a unique plan ID"""
    return f"plan_test_{uuid.uuid4().hex[:12]}"


def make_email(prefix: Optional[str] = None) -> str:
    """Generate a unique email"""
    prefix = prefix or f"test_{uuid.uuid4().hex[:8]}"
    return f"{prefix}@example.com"


def fixed_clock(moment: datetime) -> Callable[[], datetime]:
    """Clock returning a fixed UTC moment"""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return lambda: moment


# Fixed "now" shared by service tests
NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()
