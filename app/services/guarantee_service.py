"""
Card guarantee (no-show protection) service.
Applies the tenant's guarantee rules, opens Stripe setup sessions on the
tenant's connected account and charges penalties for no-shows.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import stripe
from sqlalchemy.orm import Session

from app.config.settings import get_base_url
from app.db.models import GuaranteeConfig, GuaranteeSession, GuaranteeSessionStatus, NoshowChargeStatus
from app.db.crud.guarantee_crud import (
    get_guarantee_config, get_guarantee_session, get_guarantee_session_by_reservation,
    get_guarantee_session_by_checkout, create_guarantee_session, update_guarantee_session,
    get_guarantee_sessions, create_noshow_charge
)
from app.services.call_analytics import local_midnight
from app.services.email_service import email_service
from app.services.sms_service import sms_service
from app.services.stripe_service import stripe_service

logger = logging.getLogger(__name__)

DEFAULT_PENALTY_AMOUNT = 30
DEFAULT_COMPANY_NAME = "Établissement"
WEEKEND_DAYS = (4, 5, 6)  # Friday, Saturday, Sunday
RESERVATION_PERIODS = {"today": 1, "week": 7, "month": 30}
STATUS_UPDATES = ("attended", "noshow")


class GuaranteeError(Exception):
    """Guarantee operation refused; carries the HTTP status to answer with."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def check_guarantee_rules(config: Optional[GuaranteeConfig], nb_persons: int, reservation_date: datetime) -> Optional[Dict[str, str]]:
    """
    Whether a reservation falls under the guarantee, Stripe aside.

    Returns:
        None when a guarantee is required, else {"reason", "message"}
    """
    if not config or not config.enabled:
        return {"reason": "disabled", "message": "Garantie CB non activée pour ce compte"}

    if config.apply_to == "min_persons" and nb_persons < (config.min_persons or 1):
        return {
            "reason": "min_persons_not_met",
            "message": f"Garantie applicable à partir de {config.min_persons} personnes",
        }

    if config.apply_to == "weekend" and reservation_date.weekday() not in WEEKEND_DAYS:
        return {
            "reason": "not_weekend",
            "message": "Garantie applicable uniquement les week-ends (vendredi, samedi, dimanche)",
        }
    return None


class GuaranteeService:
    """Service class for card guarantee sessions."""

    def validation_url(self, session: GuaranteeSession) -> str:
        return f"{get_base_url()}/guarantee/validate/{session.id}"

    def _checkout_urls(self) -> Dict[str, str]:
        base_url = get_base_url()
        return {
            "success_url": f"{base_url}/guarantee/confirmation?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{base_url}/guarantee/annulation",
        }

    def get_status(self, db: Session, user_id: uuid.UUID) -> Dict[str, Any]:
        """Whether the guarantee is usable for a tenant."""
        config = get_guarantee_config(db, user_id)
        if not config:
            return {"success": True, "guaranteeEnabled": False, "reason": "no_config",
                    "message": "Configuration garantie CB non trouvée"}
        if not config.enabled:
            return {"success": True, "guaranteeEnabled": False, "reason": "disabled",
                    "message": "Garantie CB désactivée"}
        if not config.stripe_account_id:
            return {"success": True, "guaranteeEnabled": False, "reason": "stripe_not_connected",
                    "message": "Compte Stripe non connecté"}

        return {
            "success": True,
            "guaranteeEnabled": True,
            "config": {
                "penaltyAmount": config.penalty_amount,
                "cancellationDelay": config.cancellation_delay,
                "applyTo": config.apply_to,
                "minPersons": config.min_persons,
                "companyName": config.company_name,
                "smsEnabled": config.sms_enabled,
                "autoSendEmailOnCreate": config.auto_send_email_on_create,
                "autoSendSmsOnCreate": config.auto_send_sms_on_create,
            },
        }

    def _stripe_refusal(self, config: GuaranteeConfig) -> Optional[Dict[str, str]]:
        if not config.stripe_account_id:
            return {"reason": "stripe_not_connected", "message": "Compte Stripe non connecté"}
        try:
            if not stripe_service.is_account_ready(config.stripe_account_id):
                return {"reason": "stripe_not_ready", "message": "Compte Stripe non prêt pour les paiements"}
        except stripe.StripeError as e:
            logger.error(f"Stripe account check failed for {config.stripe_account_id}: {e}")
            return {"reason": "stripe_error", "message": "Erreur de vérification du compte Stripe"}
        return None

    def _penalty(self, config: GuaranteeConfig, nb_persons: int) -> Dict[str, Any]:
        per_person = config.penalty_amount or DEFAULT_PENALTY_AMOUNT
        return {"amountPerPerson": per_person, "totalAmount": per_person * nb_persons, "currency": "EUR"}

    async def _send_card_request(self, config: GuaranteeConfig, session: GuaranteeSession) -> Dict[str, Any]:
        """Email and/or SMS the validation link; failures are reported, not raised."""
        results: Dict[str, Any] = {"emailSent": False, "smsSent": False, "emailError": None, "smsError": None}
        url = self.validation_url(session)
        company_name = config.company_name or DEFAULT_COMPANY_NAME
        reservation_label = session.reservation_date.strftime("%d/%m/%Y")
        if session.reservation_time:
            reservation_label += f" à {session.reservation_time}"

        if config.auto_send_email_on_create and session.customer_email:
            try:
                email_service.send_guarantee_request_email(
                    session.customer_email,
                    session.customer_name,
                    company_name,
                    url,
                    reservation_label,
                    config.penalty_amount or DEFAULT_PENALTY_AMOUNT,
                    config.brand_color or "#C8B88A",
                )
                results["emailSent"] = True
            except Exception as e:
                logger.error(f"❌ Card request email failed for session {session.id}: {e}")
                results["emailError"] = str(e)

        if config.sms_enabled and config.auto_send_sms_on_create and session.customer_phone:
            body = (
                f"Bonjour {session.customer_name}, {company_name} vous demande de confirmer votre "
                f"réservation du {reservation_label} ({session.nb_persons} pers.) : {url}"
            )
            try:
                await sms_service.send_sms(session.customer_phone, body)
                results["smsSent"] = True
            except Exception as e:
                logger.error(f"❌ Card request SMS failed for session {session.id}: {e}")
                results["smsError"] = str(e)

        return results

    async def create_session(self, db: Session, user_id: uuid.UUID, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Open a guarantee session for a reservation when the rules require one.

        Args:
            db: Database session
            user_id: Tenant owning the reservation
            data: reservation_id, customer_name, customer_email, customer_phone,
                nb_persons, reservation_date (datetime), reservation_time

        Returns:
            Response body; ``guaranteeRequired`` is false with a ``reason``
            when no card is needed
        """
        nb_persons = data.get("nb_persons") or 1
        config = get_guarantee_config(db, user_id)

        refusal = check_guarantee_rules(config, nb_persons, data["reservation_date"])
        if refusal is None:
            refusal = self._stripe_refusal(config)
        if refusal:
            logger.info(f"Guarantee not required for reservation {data['reservation_id']}: {refusal['reason']}")
            return {"success": True, "guaranteeRequired": False, **refusal}

        existing = get_guarantee_session_by_reservation(db, user_id, data["reservation_id"])
        if existing:
            return {
                "success": True,
                "guaranteeRequired": True,
                "alreadyExists": True,
                "sessionId": str(existing.id),
                "url": self.validation_url(existing),
                "status": existing.status.value,
                "penalty": self._penalty(config, existing.nb_persons),
            }

        checkout = stripe_service.create_setup_checkout_session(
            account_id=config.stripe_account_id,
            customer_email=data.get("customer_email"),
            metadata={
                "speedai_user_id": str(user_id),
                "reservation_id": data["reservation_id"],
                "customer_name": data["customer_name"],
                "nb_persons": str(nb_persons),
            },
            **self._checkout_urls(),
        )

        session = create_guarantee_session(db, user_id, {
            "reservation_id": data["reservation_id"],
            "customer_name": data["customer_name"],
            "customer_email": data.get("customer_email"),
            "customer_phone": data.get("customer_phone"),
            "nb_persons": nb_persons,
            "reservation_date": data["reservation_date"],
            "reservation_time": data.get("reservation_time"),
            "checkout_session_id": checkout["id"],
            "penalty_amount": config.penalty_amount or DEFAULT_PENALTY_AMOUNT,
            "status": GuaranteeSessionStatus.PENDING,
        })
        notifications = await self._send_card_request(config, session)

        return {
            "success": True,
            "guaranteeRequired": True,
            "sessionId": str(session.id),
            "url": self.validation_url(session),
            "checkoutUrl": checkout["url"],
            "status": session.status.value,
            "penalty": self._penalty(config, nb_persons),
            "notifications": notifications,
        }

    def complete_checkout(self, db: Session, checkout_session_id: str) -> Dict[str, Any]:
        """
        Mark a session validated once its Checkout session is complete.

        Raises:
            GuaranteeError: Unknown session, missing Stripe account or an
                incomplete/invalid Checkout session
        """
        session = get_guarantee_session_by_checkout(db, checkout_session_id)
        if not session:
            raise GuaranteeError(404, "Session non trouvée")
        if session.status == GuaranteeSessionStatus.VALIDATED:
            return {"success": True, "already_validated": True}

        config = get_guarantee_config(db, session.user_id)
        if not config or not config.stripe_account_id:
            raise GuaranteeError(400, "Configuration Stripe manquante")

        try:
            checkout = stripe_service.retrieve_checkout_session(checkout_session_id, config.stripe_account_id)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout verification failed for {checkout_session_id}: {e}")
            raise GuaranteeError(400, "Session de paiement invalide")

        if checkout["status"] != "complete":
            raise GuaranteeError(400, "Session de paiement non complétée")

        update_guarantee_session(db, session.id, {
            "status": GuaranteeSessionStatus.VALIDATED,
            "validated_at": datetime.utcnow(),
            "setup_intent_id": checkout["setupIntentId"],
            "customer_stripe_id": checkout["customerId"],
            "payment_method_id": checkout["paymentMethodId"],
        })
        logger.info(f"✅ Guarantee session {session.id} validated")
        return {"success": True, "already_validated": False}

    def get_reservations(self, db: Session, user_id: uuid.UUID, period: str = "week") -> Dict[str, Any]:
        """Pending and validated reservations of the coming period."""
        start = local_midnight(datetime.utcnow())
        days = RESERVATION_PERIODS.get(period, RESERVATION_PERIODS["week"])
        sessions = get_guarantee_sessions(db, user_id, date_from=start, date_to=start + timedelta(days=days))

        pending = [s for s in sessions if s.status == GuaranteeSessionStatus.PENDING]
        validated = [s for s in sessions if s.status == GuaranteeSessionStatus.VALIDATED]
        tomorrow = start + timedelta(days=1)
        today = [s for s in validated if start <= s.reservation_date < tomorrow]

        guaranteed = len(pending) + len(validated)
        return {
            "pending": [s.to_dict() for s in pending],
            "validated": [s.to_dict() for s in validated],
            "today": [s.to_dict() for s in today],
            "stats": {
                "pendingCount": len(pending),
                "validatedCount": len(validated),
                "todayCount": len(today),
                "validationRate": round(len(validated) / guaranteed * 100) if guaranteed else 0,
            },
        }

    def _get_owned_session(self, db: Session, user_id: uuid.UUID, session_id: uuid.UUID) -> GuaranteeSession:
        session = get_guarantee_session(db, user_id, session_id)
        if not session:
            raise GuaranteeError(404, "Session non trouvée")
        return session

    def update_reservation_status(self, db: Session, user_id: uuid.UUID, session_id: uuid.UUID, status: str) -> Dict[str, Any]:
        """
        Record the outcome of a validated reservation.

        ``attended`` completes the session; ``noshow`` charges
        ``penalty × persons`` off-session on the saved card.

        Raises:
            GuaranteeError: Invalid status, unknown session, session not
                validated, or no connected Stripe account
        """
        if status not in STATUS_UPDATES:
            raise GuaranteeError(400, "Statut invalide")

        session = self._get_owned_session(db, user_id, session_id)
        if session.status != GuaranteeSessionStatus.VALIDATED:
            raise GuaranteeError(400, "Session non validée")

        if status == "attended":
            update_guarantee_session(db, session.id, {"status": GuaranteeSessionStatus.COMPLETED})
            return {"success": True, "charged": False}

        config = get_guarantee_config(db, user_id)
        if not config or not config.stripe_account_id:
            raise GuaranteeError(400, "Compte Stripe non connecté")

        amount_cents = (session.penalty_amount or DEFAULT_PENALTY_AMOUNT) * (session.nb_persons or 1) * 100
        try:
            payment_method_id = session.payment_method_id
            customer_id = session.customer_stripe_id
            if not payment_method_id:
                saved = stripe_service.get_setup_intent_payment(session.setup_intent_id, config.stripe_account_id)
                payment_method_id = saved["paymentMethodId"]
                customer_id = customer_id or saved["customerId"]

            intent = stripe_service.charge_off_session(
                account_id=config.stripe_account_id,
                amount=amount_cents,
                customer_id=customer_id,
                payment_method_id=payment_method_id,
                description=f"Pénalité no-show - Réservation du {session.reservation_date.strftime('%d/%m/%Y')}",
                metadata={"reservation_id": session.reservation_id, "session_id": str(session.id)},
            )
        except stripe.StripeError as e:
            reason = getattr(e, "user_message", None) or str(e)
            logger.error(f"❌ No-show charge failed for session {session.id}: {reason}")
            update_guarantee_session(db, session.id, {"status": GuaranteeSessionStatus.NOSHOW_FAILED})
            create_noshow_charge(db, user_id, {
                "guarantee_session_id": session.id,
                "amount": amount_cents,
                "currency": "eur",
                "status": NoshowChargeStatus.FAILED,
                "failure_reason": reason,
            })
            return {"success": False, "error": reason}

        update_guarantee_session(db, session.id, {
            "status": GuaranteeSessionStatus.NOSHOW_CHARGED,
            "charged_amount": amount_cents,
            "charged_at": datetime.utcnow(),
            "payment_method_id": payment_method_id,
        })
        create_noshow_charge(db, user_id, {
            "guarantee_session_id": session.id,
            "payment_intent_id": intent["id"],
            "amount": amount_cents,
            "currency": "eur",
            "status": NoshowChargeStatus.SUCCEEDED,
        })
        logger.info(f"💶 Charged {amount_cents} cents for no-show on session {session.id}")
        return {"success": True, "charged": True, "amount": amount_cents / 100}

    def resend(self, db: Session, user_id: uuid.UUID, session_id: uuid.UUID) -> Dict[str, Any]:
        """Open a fresh Checkout session and count the reminder."""
        session = self._get_owned_session(db, user_id, session_id)
        config = get_guarantee_config(db, user_id)
        if not config or not config.stripe_account_id:
            raise GuaranteeError(400, "Compte Stripe non connecté")

        checkout = stripe_service.create_setup_checkout_session(
            account_id=config.stripe_account_id,
            customer_email=session.customer_email,
            metadata={
                "speedai_user_id": str(user_id),
                "reservation_id": session.reservation_id,
                "customer_name": session.customer_name,
                "nb_persons": str(session.nb_persons),
            },
            **self._checkout_urls(),
        )
        update_guarantee_session(db, session.id, {
            "checkout_session_id": checkout["id"],
            "reminder_count": (session.reminder_count or 0) + 1,
            "last_reminder_at": datetime.utcnow(),
        })
        return {"success": True, "checkout_url": checkout["url"], "public_url": self.validation_url(session)}

    def cancel(self, db: Session, user_id: uuid.UUID, session_id: uuid.UUID) -> Dict[str, Any]:
        """Cancel a guarantee session."""
        session = self._get_owned_session(db, user_id, session_id)
        update_guarantee_session(db, session.id, {"status": GuaranteeSessionStatus.CANCELLED})
        return {"success": True}


# Global guarantee service instance
guarantee_service = GuaranteeService()
