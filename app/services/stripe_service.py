"""
Stripe service for subscriptions, payment history and card guarantees.
Wraps the Stripe SDK calls the application makes.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import stripe

from app.config.settings import settings

logger = logging.getLogger(__name__)

stripe.api_key = settings.stripe_secret_key


def stripe_field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or plain dict, None when absent."""
    if obj is None:
        return default
    try:
        value = obj[name]
    except (KeyError, TypeError, AttributeError):
        value = getattr(obj, name, default)
    return default if value is None else value


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    """Stripe epoch seconds to naive UTC datetime."""
    return datetime.utcfromtimestamp(value) if value else None


class StripeService:
    """Service class for Stripe operations."""

    @property
    def is_configured(self) -> bool:
        return bool(settings.stripe_secret_key)

    def create_customer(self, email: str, user_id: str) -> str:
        """Create a billing customer and return its id."""
        customer = stripe.Customer.create(email=email, metadata={"userId": user_id})
        logger.info(f"💳 Created Stripe customer {customer.id} for user {user_id}")
        return customer.id

    def cancel_subscription(self, subscription_id: str) -> None:
        """Cancel a subscription immediately."""
        stripe.Subscription.cancel(subscription_id)
        logger.info(f"💳 Cancelled Stripe subscription {subscription_id}")

    def retrieve_subscription(self, subscription_id: str):
        """Fetch a subscription."""
        return stripe.Subscription.retrieve(subscription_id)

    def list_charges(self, customer_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Recent charges of a customer."""
        charges = stripe.Charge.list(customer=customer_id, limit=limit)
        return [
            {
                "id": charge.id,
                "amount": charge.amount,
                "created": charge.created,
                "status": charge.status,
                "description": stripe_field(charge, "description"),
            }
            for charge in charges.data
        ]

    def construct_event(self, payload: bytes, signature: str):
        """Verify a webhook signature and parse the event."""
        return stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)

    def is_account_ready(self, account_id: str) -> bool:
        """Whether a connected account can take charges."""
        account = stripe.Account.retrieve(account_id)
        return bool(stripe_field(account, "charges_enabled", False))

    def create_setup_checkout_session(
        self,
        account_id: str,
        customer_email: Optional[str],
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> Dict[str, str]:
        """
        Create a setup-mode Checkout session on a connected account.

        Returns:
            {"id": checkout session id, "url": hosted page URL}
        """
        params: Dict[str, Any] = {
            "mode": "setup",
            "payment_method_types": ["card"],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "stripe_account": account_id,
        }
        if customer_email:
            params["customer_email"] = customer_email

        session = stripe.checkout.Session.create(**params)
        logger.info(f"💳 Created setup checkout session {session.id} on {account_id}")
        return {"id": session.id, "url": session.url}

    def retrieve_checkout_session(self, checkout_session_id: str, account_id: Optional[str]) -> Dict[str, Optional[str]]:
        """
        Completed setup details of a Checkout session.

        Returns:
            status, setupIntentId, paymentMethodId and customerId
        """
        params: Dict[str, Any] = {"expand": ["setup_intent.payment_method"]}
        if account_id:
            params["stripe_account"] = account_id
        session = stripe.checkout.Session.retrieve(checkout_session_id, **params)

        setup_intent = stripe_field(session, "setup_intent")
        payment_method = stripe_field(setup_intent, "payment_method") if not isinstance(setup_intent, str) else None
        return {
            "status": stripe_field(session, "status"),
            "setupIntentId": setup_intent if isinstance(setup_intent, str) else stripe_field(setup_intent, "id"),
            "paymentMethodId": payment_method if isinstance(payment_method, str) else stripe_field(payment_method, "id"),
            "customerId": stripe_field(session, "customer") or stripe_field(setup_intent, "customer"),
        }

    def get_setup_intent_payment(self, setup_intent_id: str, account_id: str) -> Dict[str, Optional[str]]:
        """Payment method and customer saved by a setup intent."""
        intent = stripe.SetupIntent.retrieve(setup_intent_id, stripe_account=account_id)
        payment_method = stripe_field(intent, "payment_method")
        return {
            "paymentMethodId": payment_method if isinstance(payment_method, str) else stripe_field(payment_method, "id"),
            "customerId": stripe_field(intent, "customer"),
        }

    def charge_off_session(
        self,
        account_id: str,
        amount: int,
        customer_id: Optional[str],
        payment_method_id: str,
        description: str,
        metadata: Dict[str, str],
    ) -> Dict[str, str]:
        """
        Charge a saved card without the customer present.

        Args:
            amount: Amount in cents (EUR)

        Returns:
            {"id": payment intent id, "status": payment intent status}

        Raises:
            stripe.StripeError: The charge was declined or failed
        """
        intent = stripe.PaymentIntent.create(
            amount=amount,
            currency="eur",
            customer=customer_id,
            payment_method=payment_method_id,
            confirm=True,
            off_session=True,
            description=description,
            metadata=metadata,
            stripe_account=account_id,
        )
        logger.info(f"💳 Off-session charge {intent.id} ({amount} cents) status={intent.status}")
        return {"id": intent.id, "status": intent.status}


# Global Stripe service instance
stripe_service = StripeService()
