"""
Dues Microservice Package

Membership dues billing and status lifecycle.
"""

from .dues_service import DuesService
from .onboarding_service import OnboardingService
from .overdue_sweep import OverdueSweepService
from .payer_service import PayerService

__all__ = [
    'DuesService',
    'OnboardingService',
    'OverdueSweepService',
    'PayerService',
]
