"""
Stripe Payment Processor Client

Adapter over the Stripe SDK implementing PaymentProcessorProtocol.
Every SDK failure is raised as ExternalServiceError; nothing is retried here.
"""

import asyncio
import logging
from datetime import date, datetime, time, timezone
from typing import Dict, Optional

import stripe

from ..billing_cycle import months_for_frequency
from ..models import BillingFrequency, PaymentMethodDetails, SetupSession, SubscriptionResult
from ..protocols import ExternalServiceError

logger = logging.getLogger(__name__)


class StripePaymentProcessor:
    """Payment processor backed by Stripe"""

    def __init__(
        self,
        api_key: str,
        currency: str = "usd",
        return_url: str = "http://localhost:3000/billing/setup-complete",
    ):
        if not api_key:
            raise ValueError("Stripe API key is required")
        self.api_key = api_key
        self.currency = currency
        self.return_url = return_url
        self.is_test_mode = api_key.startswith("sk_test_")
        logger.info(f"Stripe processor initialized ({'test' if self.is_test_mode else 'live'} mode)")

    async def _call(self, operation: str, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, api_key=self.api_key, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Stripe {operation} failed: {e}")
            raise ExternalServiceError(f"Stripe {operation} failed: {e.user_message or e}", service="stripe") from e

    async def get_or_create_customer(
        self,
        email: str,
        name: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """Reuse the customer registered under this email, creating one only when none exists"""
        existing = await self._call("list customers", stripe.Customer.list, email=email, limit=1)
        if existing.data:
            customer = existing.data[0]
            current = customer.metadata or {}
            if metadata and current.get("membership_id") != metadata.get("membership_id"):
                await self._call("update customer", stripe.Customer.modify, customer.id, metadata=metadata)
            logger.info(f"Reusing Stripe customer {customer.id}")
            return customer.id

        customer = await self._call(
            "create customer",
            stripe.Customer.create,
            email=email,
            name=name,
            metadata=metadata or {},
        )
        logger.info(f"Created Stripe customer {customer.id}")
        return customer.id

    async def get_default_payment_method(self, customer_id: str) -> Optional[PaymentMethodDetails]:
        customer = await self._call(
            "retrieve customer",
            stripe.Customer.retrieve,
            customer_id,
            expand=["invoice_settings.default_payment_method"],
        )
        method = customer.invoice_settings.default_payment_method if customer.invoice_settings else None

        if method is None:
            methods = await self._call(
                "list payment methods",
                stripe.PaymentMethod.list,
                customer=customer_id,
                type="card",
                limit=1,
            )
            if not methods.data:
                return None
            method = methods.data[0]

        card = method.card
        return PaymentMethodDetails(
            payment_method_id=method.id,
            brand=card.brand if card else None,
            last4=card.last4 if card else None,
            exp_month=card.exp_month if card else None,
            exp_year=card.exp_year if card else None,
        )

    async def create_subscription(
        self,
        customer_id: str,
        payment_method_id: str,
        amount_cents: int,
        frequency: BillingFrequency,
        trial_end: Optional[date] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> SubscriptionResult:
        price = await self._call(
            "create price",
            stripe.Price.create,
            currency=self.currency,
            unit_amount=amount_cents,
            recurring={"interval": "month", "interval_count": months_for_frequency(frequency)},
            product_data={"name": f"Membership dues ({BillingFrequency(frequency).value})"},
        )

        params = {
            "customer": customer_id,
            "items": [{"price": price.id}],
            "default_payment_method": payment_method_id,
            "metadata": metadata or {},
        }
        if trial_end is not None:
            params["trial_end"] = int(datetime.combine(trial_end, time(12, 0), tzinfo=timezone.utc).timestamp())

        subscription = await self._call("create subscription", stripe.Subscription.create, **params)
        logger.info(f"Created Stripe subscription {subscription.id} for customer {customer_id}")
        return SubscriptionResult(
            subscription_id=subscription.id,
            status=subscription.status,
            customer_id=customer_id,
        )

    async def cancel_subscription(self, subscription_id: str) -> None:
        await self._call("cancel subscription", stripe.Subscription.cancel, subscription_id)
        logger.info(f"Cancelled Stripe subscription {subscription_id}")

    async def create_setup_session(
        self,
        customer_id: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> SetupSession:
        session = await self._call(
            "create setup session",
            stripe.checkout.Session.create,
            mode="setup",
            customer=customer_id,
            currency=self.currency,
            payment_method_types=["card"],
            success_url=f"{self.return_url}?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=self.return_url,
            metadata=metadata or {},
        )
        return SetupSession(session_id=session.id, url=session.url)
