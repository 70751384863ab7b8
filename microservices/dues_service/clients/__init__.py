"""
Dues Service Clients

Clients for the payment processor and other microservices.
"""

from .notification_client import NotificationClient
from .stripe_client import StripePaymentProcessor

__all__ = [
    "NotificationClient",
    "StripePaymentProcessor",
]
