"""
Test Mocks

In-memory replacements for the dues service's I/O dependencies
(database, payment processor, email, NATS). Shared by unit and
component tests.
"""

from .dues_mocks import MockDuesRepository, MockEmailClient, MockPaymentProcessor, stripe_unavailable
from .nats_mock import MockEventBus

__all__ = [
    'MockDuesRepository',
    'MockEmailClient',
    'MockEventBus',
    'MockPaymentProcessor',
    'stripe_unavailable',
]
