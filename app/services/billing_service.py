"""
Subscription billing events.
Keeps the user's subscription fields and account status in step with Stripe.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.db.base_crud import get_user_by_stripe_customer_id, update_user
from app.db.crud.notification_crud import create_notification
from app.db.models import AccountStatus, NotificationType, User
from app.services.stripe_service import stripe_service, stripe_field, from_timestamp

logger = logging.getLogger(__name__)

SUBSCRIPTION_MESSAGES = {
    NotificationType.SUBSCRIPTION_CREATED: (
        "Abonnement créé",
        "Votre abonnement SpeedAI a été créé avec succès.",
    ),
    NotificationType.SUBSCRIPTION_RENEWED: (
        "Abonnement renouvelé",
        "Votre abonnement SpeedAI a été renouvelé avec succès.",
    ),
    NotificationType.SUBSCRIPTION_EXPIRED: (
        "Abonnement expiré",
        "Votre abonnement SpeedAI a expiré. Renouvelez-le pour continuer à utiliser nos services.",
    ),
}


class BillingService:
    """Applies Stripe webhook events to users."""

    def notify_subscription(self, db: Session, user: User, notification_type: NotificationType) -> None:
        title, message = SUBSCRIPTION_MESSAGES[notification_type]
        create_notification(db, user.id, notification_type, title, message)

    def _subscription_fields(self, subscription: Any, status: Optional[str] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "subscription_status": status or stripe_field(subscription, "status"),
            "stripe_subscription_id": stripe_field(subscription, "id"),
        }
        period_end = from_timestamp(stripe_field(subscription, "current_period_end"))
        if period_end:
            data["subscription_current_period_end"] = period_end
        return data

    def _user_for(self, db: Session, obj: Any) -> Optional[User]:
        customer_id = stripe_field(obj, "customer")
        if not customer_id:
            return None
        user = get_user_by_stripe_customer_id(db, customer_id)
        if not user:
            logger.warning(f"No user for Stripe customer {customer_id}")
        return user

    def handle_event(self, db: Session, event: Any) -> bool:
        """
        Apply one verified webhook event.

        Args:
            db: Database session
            event: Stripe event (or an equivalent dict)

        Returns:
            True when the event type is handled
        """
        event_type = stripe_field(event, "type")
        obj = stripe_field(stripe_field(event, "data"), "object")
        logger.info(f"💳 Stripe event {event_type}")

        if event_type == "customer.subscription.created":
            user = self._user_for(db, obj)
            if user:
                update_user(db, user.id, {**self._subscription_fields(obj), "account_status": AccountStatus.ACTIVE})
                self.notify_subscription(db, user, NotificationType.SUBSCRIPTION_CREATED)
            return True

        if event_type == "customer.subscription.updated":
            user = self._user_for(db, obj)
            if user:
                update_user(db, user.id, self._subscription_fields(obj))
                if stripe_field(obj, "status") == "active":
                    self.notify_subscription(db, user, NotificationType.SUBSCRIPTION_RENEWED)
            return True

        if event_type == "customer.subscription.deleted":
            user = self._user_for(db, obj)
            if user:
                update_user(db, user.id, {"subscription_status": "canceled"})
                self.notify_subscription(db, user, NotificationType.SUBSCRIPTION_EXPIRED)
            return True

        if event_type == "invoice.payment_succeeded":
            subscription_id = stripe_field(obj, "subscription")
            if subscription_id:
                subscription = stripe_service.retrieve_subscription(subscription_id)
                user = self._user_for(db, subscription)
                if user:
                    update_user(db, user.id, {
                        **self._subscription_fields(subscription, status="active"),
                        "account_status": AccountStatus.ACTIVE,
                    })
            return True

        if event_type == "invoice.payment_failed":
            if stripe_field(obj, "subscription"):
                user = self._user_for(db, obj)
                if user:
                    update_user(db, user.id, {"subscription_status": "past_due"})
            return True

        logger.info(f"Unhandled Stripe event type: {event_type}")
        return False


# Global billing service instance
billing_service = BillingService()
