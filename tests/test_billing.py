"""
Tests for Stripe subscription webhooks.
"""

import hashlib
import hmac
import json
import time
from datetime import datetime

import pytest

from app.config.settings import settings
from app.db.models import AccountStatus, Notification, NotificationType
from app.services.billing_service import billing_service
from app.services.stripe_service import stripe_service, stripe_field

PERIOD_END = 1780000000
WEBHOOK_SECRET = "whsec_test_secret"


def event(event_type, obj):
    return {"id": "evt_1", "type": event_type, "data": {"object": obj}}


def subscription(status="active", customer="cus_123"):
    return {"id": "sub_1", "object": "subscription", "customer": customer,
            "status": status, "current_period_end": PERIOD_END}


def signed_headers(payload: str, secret: str = WEBHOOK_SECRET):
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return {"stripe-signature": f"t={timestamp},v1={signature}", "content-type": "application/json"}


@pytest.fixture
def customer(make_user):
    return make_user(stripe_customer_id="cus_123", account_status=AccountStatus.TRIAL,
                     subscription_status=None, subscription_current_period_end=None)


def _notification_types(db, user):
    return [n.type for n in db.query(Notification).filter(Notification.user_id == user.id).all()]


def test_stripe_field_reads_dicts_and_objects():
    class Obj:
        status = "active"

    assert stripe_field({"status": "active"}, "status") == "active"
    assert stripe_field(Obj(), "status") == "active"
    assert stripe_field({"status": None}, "status", "none") == "none"
    assert stripe_field(None, "status") is None


def test_subscription_created(db, customer):
    assert billing_service.handle_event(db, event("customer.subscription.created", subscription())) is True

    db.refresh(customer)
    assert customer.subscription_status == "active"
    assert customer.stripe_subscription_id == "sub_1"
    assert customer.account_status == AccountStatus.ACTIVE
    assert customer.subscription_current_period_end == datetime.utcfromtimestamp(PERIOD_END)
    assert _notification_types(db, customer) == [NotificationType.SUBSCRIPTION_CREATED]


def test_subscription_updated(db, customer):
    billing_service.handle_event(db, event("customer.subscription.updated", subscription(status="past_due")))
    db.refresh(customer)
    assert customer.subscription_status == "past_due"
    assert _notification_types(db, customer) == []

    billing_service.handle_event(db, event("customer.subscription.updated", subscription()))
    assert _notification_types(db, customer) == [NotificationType.SUBSCRIPTION_RENEWED]


def test_subscription_deleted(db, customer):
    billing_service.handle_event(db, event("customer.subscription.deleted", subscription(status="canceled")))

    db.refresh(customer)
    assert customer.subscription_status == "canceled"
    assert _notification_types(db, customer) == [NotificationType.SUBSCRIPTION_EXPIRED]


def test_invoice_paid_reactivates(db, customer, monkeypatch):
    monkeypatch.setattr(stripe_service, "retrieve_subscription", lambda subscription_id: subscription(status="past_due"))

    billing_service.handle_event(db, event("invoice.payment_succeeded", {"customer": "cus_123", "subscription": "sub_1"}))

    db.refresh(customer)
    assert customer.subscription_status == "active"
    assert customer.account_status == AccountStatus.ACTIVE


def test_invoice_failed_marks_past_due(db, customer):
    billing_service.handle_event(db, event("invoice.payment_failed", {"customer": "cus_123", "subscription": "sub_1"}))

    db.refresh(customer)
    assert customer.subscription_status == "past_due"


def test_unknown_customer_and_event(db, customer):
    assert billing_service.handle_event(db, event("customer.subscription.created", subscription(customer="cus_x"))) is True
    assert billing_service.handle_event(db, event("charge.refunded", {"customer": "cus_123"})) is False

    db.refresh(customer)
    assert customer.subscription_status is None


def test_webhook_rejects_bad_signature(client, monkeypatch):
    monkeypatch.setattr(settings, "stripe_webhook_secret", WEBHOOK_SECRET)
    payload = json.dumps(event("customer.subscription.created", subscription()))

    response = client.post("/api/webhooks/stripe", content=payload, headers=signed_headers(payload, "whsec_autre"))

    assert response.status_code == 400
    assert response.json()["detail"] == "Signature webhook invalide"


def test_webhook_applies_signed_event(client, db, customer, monkeypatch):
    monkeypatch.setattr(settings, "stripe_webhook_secret", WEBHOOK_SECRET)
    payload = json.dumps({**event("customer.subscription.created", subscription()), "object": "event"})

    response = client.post("/api/webhooks/stripe", content=payload, headers=signed_headers(payload))

    assert response.status_code == 200
    assert response.json() == {"received": True}
    db.refresh(customer)
    assert customer.account_status == AccountStatus.ACTIVE
