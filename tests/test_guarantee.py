"""
Tests for card guarantees: rules, Stripe setup sessions and no-show charges.
"""

import asyncio
import uuid
from datetime import datetime, timedelta

import pytest
import stripe

from app.db.crud.guarantee_crud import (
    upsert_guarantee_config, create_guarantee_session, get_guarantee_session, get_noshow_charges
)
from app.db.models import GuaranteeSessionStatus, NoshowChargeStatus
from app.services.guarantee_service import guarantee_service, check_guarantee_rules, GuaranteeError
from app.services.stripe_service import stripe_service

SATURDAY = datetime(2026, 3, 14, 20, 0)
TUESDAY = datetime(2026, 3, 10, 20, 0)

RESERVATION = {
    "reservation_id": "resa-001",
    "customer_name": "Marie Dubois",
    "customer_email": "marie@exemple.fr",
    "customer_phone": "+33612345678",
    "nb_persons": 4,
    "reservation_date": SATURDAY,
    "reservation_time": "20:00",
}


@pytest.fixture
def config(db, user):
    return upsert_guarantee_config(db, user.id, {
        "enabled": True,
        "stripe_account_id": "acct_resto",
        "penalty_amount": 30,
        "company_name": "Chez Marie",
    })


@pytest.fixture
def fake_stripe(monkeypatch):
    """Stripe calls made by the service, with canned answers."""
    calls = {"checkouts": [], "charges": []}
    state = {"ready": True, "checkout_status": "complete", "decline": None}

    def create_setup_checkout_session(**kwargs):
        calls["checkouts"].append(kwargs)
        number = len(calls["checkouts"])
        return {"id": f"cs_test_{number}", "url": f"https://checkout.stripe.com/c/pay/cs_test_{number}"}

    def retrieve_checkout_session(checkout_session_id, account_id):
        return {
            "status": state["checkout_status"],
            "setupIntentId": "seti_1",
            "paymentMethodId": "pm_card_visa",
            "customerId": "cus_1",
        }

    def charge_off_session(**kwargs):
        if state["decline"]:
            raise stripe.StripeError(state["decline"])
        calls["charges"].append(kwargs)
        return {"id": "pi_1", "status": "succeeded"}

    monkeypatch.setattr(stripe_service, "is_account_ready", lambda account_id: state["ready"])
    monkeypatch.setattr(stripe_service, "create_setup_checkout_session", create_setup_checkout_session)
    monkeypatch.setattr(stripe_service, "retrieve_checkout_session", retrieve_checkout_session)
    monkeypatch.setattr(stripe_service, "charge_off_session", charge_off_session)
    calls["state"] = state
    return calls


@pytest.fixture
def validated_session(db, user, config):
    return create_guarantee_session(db, user.id, {
        "reservation_id": "resa-042",
        "customer_name": "Paul Martin",
        "nb_persons": 4,
        "reservation_date": SATURDAY,
        "penalty_amount": 30,
        "status": GuaranteeSessionStatus.VALIDATED,
        "payment_method_id": "pm_card_visa",
        "customer_stripe_id": "cus_1",
    })


# =============================================================================
# Rules
# =============================================================================

def test_rules_when_disabled():
    assert check_guarantee_rules(None, 2, SATURDAY)["reason"] == "disabled"


def test_min_persons_rule(config):
    config.apply_to = "min_persons"
    config.min_persons = 6

    refusal = check_guarantee_rules(config, 4, SATURDAY)
    assert refusal["reason"] == "min_persons_not_met"
    assert check_guarantee_rules(config, 6, SATURDAY) is None


def test_weekend_rule(config):
    config.apply_to = "weekend"

    assert check_guarantee_rules(config, 2, TUESDAY)["reason"] == "not_weekend"
    assert check_guarantee_rules(config, 2, datetime(2026, 3, 13, 20, 0)) is None
    assert check_guarantee_rules(config, 2, SATURDAY) is None


def test_config_defaults(client, auth_headers):
    config = client.get("/api/guarantee/config", headers=auth_headers).json()
    assert config["enabled"] is False
    assert config["penaltyAmount"] == 30
    assert config["applyTo"] == "all"


def test_config_rejects_unknown_scope(client, auth_headers):
    response = client.put("/api/guarantee/config", headers=auth_headers, json={"applyTo": "holidays"})
    assert response.status_code == 422


def test_check_status_without_config(client, api_key):
    response = client.get("/api/guarantee/check-status", headers={"Authorization": f"Bearer {api_key}"})
    assert response.json()["guaranteeEnabled"] is False
    assert response.json()["reason"] == "no_config"


# =============================================================================
# Sessions
# =============================================================================

def test_create_session(db, user, config, fake_stripe, sent_emails):
    result = asyncio.run(guarantee_service.create_session(db, user.id, dict(RESERVATION)))

    assert result["guaranteeRequired"] is True
    assert result["checkoutUrl"] == "https://checkout.stripe.com/c/pay/cs_test_1"
    assert result["url"].endswith(f"/guarantee/validate/{result['sessionId']}")
    assert result["penalty"] == {"amountPerPerson": 30, "totalAmount": 120, "currency": "EUR"}
    assert result["notifications"]["emailSent"] is True
    assert result["notifications"]["smsSent"] is False

    checkout = fake_stripe["checkouts"][0]
    assert checkout["account_id"] == "acct_resto"
    assert checkout["metadata"]["reservation_id"] == "resa-001"
    assert sent_emails[0][0] == "marie@exemple.fr"

    again = asyncio.run(guarantee_service.create_session(db, user.id, dict(RESERVATION)))
    assert again["alreadyExists"] is True
    assert again["sessionId"] == result["sessionId"]
    assert len(fake_stripe["checkouts"]) == 1


def test_same_reservation_id_in_two_restaurants(db, user, make_user, config, fake_stripe, sent_emails):
    other = make_user(email="autre@restaurant.fr")
    upsert_guarantee_config(db, other.id, {"enabled": True, "stripe_account_id": "acct_autre", "penalty_amount": 20})

    first = asyncio.run(guarantee_service.create_session(db, user.id, dict(RESERVATION)))
    second = asyncio.run(guarantee_service.create_session(db, other.id, dict(RESERVATION)))

    assert second["guaranteeRequired"] is True
    assert "alreadyExists" not in second
    assert second["sessionId"] != first["sessionId"]
    assert second["penalty"]["totalAmount"] == 80
    assert [checkout["account_id"] for checkout in fake_stripe["checkouts"]] == ["acct_resto", "acct_autre"]
    assert get_guarantee_session(db, other.id, uuid.UUID(second["sessionId"])).reservation_id == "resa-001"


def test_session_not_required_when_stripe_not_ready(db, user, config, fake_stripe):
    fake_stripe["state"]["ready"] = False

    result = asyncio.run(guarantee_service.create_session(db, user.id, dict(RESERVATION)))

    assert result["guaranteeRequired"] is False
    assert result["reason"] == "stripe_not_ready"
    assert fake_stripe["checkouts"] == []


def test_session_sms_when_enabled(db, user, config, fake_stripe, sent_sms):
    upsert_guarantee_config(db, user.id, {"sms_enabled": True, "auto_send_sms_on_create": True})

    result = asyncio.run(guarantee_service.create_session(db, user.id, dict(RESERVATION)))

    assert result["notifications"]["smsSent"] is True
    number, body = sent_sms[0]
    assert number == "+33612345678"
    assert "14/03/2026 à 20:00" in body
    assert "4 pers." in body


def test_create_session_route(client, db, user, config, fake_stripe, api_key):
    response = client.post("/api/guarantee/create-session", headers={"Authorization": f"Bearer {api_key}"}, json={
        **RESERVATION, "reservation_date": "2026-03-14T20:00:00"
    })

    assert response.status_code == 200
    assert response.json()["guaranteeRequired"] is True


def test_complete_checkout(db, user, config, fake_stripe):
    created = asyncio.run(guarantee_service.create_session(db, user.id, dict(RESERVATION)))

    result = guarantee_service.complete_checkout(db, "cs_test_1")
    again = guarantee_service.complete_checkout(db, "cs_test_1")

    assert result == {"success": True, "already_validated": False}
    assert again["already_validated"] is True
    session = get_guarantee_session(db, user.id, uuid.UUID(created["sessionId"]))
    assert session.status == GuaranteeSessionStatus.VALIDATED
    assert session.payment_method_id == "pm_card_visa"
    assert session.customer_stripe_id == "cus_1"


def test_upcoming_reservations(db, user, config):
    tomorrow = datetime.utcnow() + timedelta(days=1)
    for number, status in enumerate((GuaranteeSessionStatus.PENDING, GuaranteeSessionStatus.VALIDATED,
                                     GuaranteeSessionStatus.VALIDATED, GuaranteeSessionStatus.CANCELLED)):
        create_guarantee_session(db, user.id, {
            "reservation_id": f"resa-{number}", "customer_name": "Client",
            "reservation_date": tomorrow, "status": status,
        })

    reservations = guarantee_service.get_reservations(db, user.id, "week")

    assert reservations["stats"]["pendingCount"] == 1
    assert reservations["stats"]["validatedCount"] == 2
    assert reservations["stats"]["validationRate"] == 67


def test_complete_checkout_errors(db, user, config, fake_stripe):
    with pytest.raises(GuaranteeError) as unknown:
        guarantee_service.complete_checkout(db, "cs_inconnu")
    assert unknown.value.status_code == 404

    asyncio.run(guarantee_service.create_session(db, user.id, dict(RESERVATION)))
    fake_stripe["state"]["checkout_status"] = "open"
    with pytest.raises(GuaranteeError) as incomplete:
        guarantee_service.complete_checkout(db, "cs_test_1")
    assert incomplete.value.message == "Session de paiement non complétée"


def test_checkout_complete_route(client, db, user, config, fake_stripe):
    asyncio.run(guarantee_service.create_session(db, user.id, dict(RESERVATION)))

    response = client.post("/api/guarantee/webhook/checkout-complete", json={"checkout_session_id": "cs_test_1"})
    assert response.status_code == 200

    missing = client.post("/api/guarantee/webhook/checkout-complete", json={"checkout_session_id": "cs_autre"})
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Session non trouvée"


# =============================================================================
# Reservation outcomes
# =============================================================================

def test_attended_completes_session(client, db, auth_headers, validated_session):
    response = client.post(f"/api/guarantee/reservations/{validated_session.id}/status",
                           headers=auth_headers, json={"status": "attended"})

    assert response.json() == {"success": True, "charged": False}
    db.refresh(validated_session)
    assert validated_session.status == GuaranteeSessionStatus.COMPLETED

    again = client.post(f"/api/guarantee/reservations/{validated_session.id}/status",
                        headers=auth_headers, json={"status": "noshow"})
    assert again.status_code == 400
    assert again.json()["detail"] == "Session non validée"


def test_noshow_charges_penalty(db, user, validated_session, fake_stripe):
    result = guarantee_service.update_reservation_status(db, user.id, validated_session.id, "noshow")

    assert result == {"success": True, "charged": True, "amount": 120.0}
    charge_call = fake_stripe["charges"][0]
    assert charge_call["amount"] == 12000
    assert charge_call["payment_method_id"] == "pm_card_visa"
    assert charge_call["account_id"] == "acct_resto"

    db.refresh(validated_session)
    assert validated_session.status == GuaranteeSessionStatus.NOSHOW_CHARGED
    assert validated_session.charged_amount == 12000
    charge = get_noshow_charges(db, user.id)[0]
    assert charge.status == NoshowChargeStatus.SUCCEEDED
    assert charge.payment_intent_id == "pi_1"


def test_declined_noshow_charge(db, user, validated_session, fake_stripe):
    fake_stripe["state"]["decline"] = "Votre carte a été refusée."

    result = guarantee_service.update_reservation_status(db, user.id, validated_session.id, "noshow")

    assert result["success"] is False
    assert "refusée" in result["error"]
    db.refresh(validated_session)
    assert validated_session.status == GuaranteeSessionStatus.NOSHOW_FAILED
    charge = get_noshow_charges(db, user.id)[0]
    assert charge.status == NoshowChargeStatus.FAILED
    assert charge.amount == 12000


def test_invalid_outcome(client, auth_headers, validated_session):
    response = client.post(f"/api/guarantee/reservations/{validated_session.id}/status",
                           headers=auth_headers, json={"status": "late"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Statut invalide"


def test_sessions_are_tenant_scoped(client, make_user, headers_for, validated_session):
    other = make_user(email="autre@restaurant.fr")
    response = client.post(f"/api/guarantee/cancel/{validated_session.id}", headers=headers_for(other))
    assert response.status_code == 404


def test_resend_counts_reminders(db, user, validated_session, fake_stripe):
    result = guarantee_service.resend(db, user.id, validated_session.id)

    assert result["checkout_url"] == "https://checkout.stripe.com/c/pay/cs_test_1"
    db.refresh(validated_session)
    assert validated_session.reminder_count == 1
    assert validated_session.checkout_session_id == "cs_test_1"


def test_history_and_stats(client, db, user, auth_headers, validated_session, fake_stripe):
    fake_stripe["state"]["decline"] = "Carte expirée"
    guarantee_service.update_reservation_status(db, user.id, validated_session.id, "noshow")
    pending = create_guarantee_session(db, user.id, {
        "reservation_id": "resa-043", "customer_name": "Léa", "reservation_date": TUESDAY,
        "status": GuaranteeSessionStatus.PENDING,
    })
    client.post(f"/api/guarantee/cancel/{pending.id}", headers=auth_headers)

    history = client.get("/api/guarantee/history", headers=auth_headers).json()
    assert [s["reservationId"] for s in history["sessions"]] == ["resa-042", "resa-043"]
    assert history["charges"][0]["status"] == "failed"

    stats = client.get("/api/guarantee/stats", headers=auth_headers).json()
    assert stats["totalSessions"] == 2
    assert stats["noshowCount"] == 1
    assert stats["amountCollected"] == 0
