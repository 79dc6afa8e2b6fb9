"""
Tests for notifications, preferences, monthly reports and scheduled account jobs.
"""

import asyncio
import json
import uuid
from datetime import datetime, timedelta

from app.db.crud.notification_crud import (
    create_notification, create_monthly_report, get_monthly_reports, upsert_notification_preferences
)
from app.db.models import AccountStatus, Notification, NotificationType
from app.services.scheduler_service import scheduler_service


def _notify(db, user, notification_type=NotificationType.DAILY_SUMMARY, **kwargs):
    return create_notification(db, user.id, notification_type, "Titre", "Message", **kwargs)


# =============================================================================
# Notifications
# =============================================================================

def test_list_and_filter_notifications(client, db, user, auth_headers):
    _notify(db, user)
    failed = _notify(db, user, NotificationType.FAILED_CALLS)
    old = _notify(db, user)
    old.created_at = datetime.utcnow() - timedelta(days=5)
    db.commit()

    assert len(client.get("/api/notifications", headers=auth_headers).json()) == 3
    assert len(client.get("/api/notifications?timeFilter=day", headers=auth_headers).json()) == 2

    by_type = client.get("/api/notifications?typeFilter=failed_calls", headers=auth_headers).json()
    assert [n["id"] for n in by_type] == [str(failed.id)]


def test_invalid_filters(client, auth_headers):
    bad_period = client.get("/api/notifications?timeFilter=year", headers=auth_headers)
    assert bad_period.status_code == 400
    assert bad_period.json()["detail"] == "Filtre de période invalide"

    bad_type = client.get("/api/notifications?typeFilter=inconnu", headers=auth_headers)
    assert bad_type.status_code == 400


def test_read_state(client, db, user, auth_headers):
    first = _notify(db, user)
    _notify(db, user)
    _notify(db, user)

    assert client.get("/api/notifications/unread-count", headers=auth_headers).json() == {"count": 3}

    marked = client.patch(f"/api/notifications/{first.id}/read", headers=auth_headers)
    assert marked.json()["isRead"] is True
    assert client.get("/api/notifications/unread-count", headers=auth_headers).json() == {"count": 2}

    unread = client.get("/api/notifications?isRead=false", headers=auth_headers).json()
    assert len(unread) == 2

    all_read = client.patch("/api/notifications/mark-all-read", headers=auth_headers)
    assert all_read.json()["updated"] == 2
    assert client.get("/api/notifications/unread-count", headers=auth_headers).json() == {"count": 0}


def test_notifications_are_tenant_scoped(client, db, user, make_user, headers_for):
    notification = _notify(db, user)
    other = make_user(email="autre@restaurant.fr")

    response = client.patch(f"/api/notifications/{notification.id}/read", headers=headers_for(other))
    assert response.status_code == 404
    assert response.json()["detail"] == "Notification non trouvée"

    deleted = client.delete(f"/api/notifications/{notification.id}", headers=headers_for(other))
    assert deleted.status_code == 404


def test_delete_notification(client, db, user, auth_headers):
    notification = _notify(db, user)
    assert client.delete(f"/api/notifications/{notification.id}", headers=auth_headers).status_code == 200
    assert db.query(Notification).count() == 0


# =============================================================================
# Preferences
# =============================================================================

def test_preferences_default_to_enabled(client, auth_headers):
    preferences = client.get("/api/notifications/preferences", headers=auth_headers).json()
    assert preferences["dailySummaryEnabled"] is True
    assert preferences["subscriptionAlertsEnabled"] is True


def test_partial_preferences_update(client, auth_headers):
    response = client.put("/api/notifications/preferences", headers=auth_headers, json={"failedCallsEnabled": False})

    assert response.status_code == 200
    body = response.json()
    assert body["failedCallsEnabled"] is False
    assert body["dailySummaryEnabled"] is True


def test_muted_category_is_not_created(db, user):
    upsert_notification_preferences(db, user.id, {"subscription_alerts_enabled": False})

    assert _notify(db, user, NotificationType.SUBSCRIPTION_RENEWED) is None
    assert _notify(db, user, NotificationType.PAYMENT_UPDATED) is None
    assert _notify(db, user, NotificationType.PASSWORD_CHANGED) is not None


# =============================================================================
# Monthly reports
# =============================================================================

def test_report_routes(client, db, user, auth_headers, tmp_path):
    pdf = tmp_path / "report.pdf"
    pdf.write_bytes(b"%PDF-1.4 test")
    with_pdf = create_monthly_report(db, user.id, {
        "period_start": datetime(2026, 2, 1),
        "period_end": datetime(2026, 3, 1),
        "metrics": "{}",
        "pdf_path": str(pdf),
    })
    without_pdf = create_monthly_report(db, user.id, {
        "period_start": datetime(2026, 3, 1),
        "period_end": datetime(2026, 4, 1),
        "metrics": "{}",
    })

    reports = client.get("/api/reports", headers=auth_headers).json()
    assert [r["id"] for r in reports] == [str(without_pdf.id), str(with_pdf.id)]

    download = client.get(f"/api/reports/{with_pdf.id}/download", headers=auth_headers)
    assert download.status_code == 200
    assert download.headers["content-type"] == "application/pdf"
    assert "rapport-speedai-2026-02.pdf" in download.headers["content-disposition"]

    missing_file = client.get(f"/api/reports/{without_pdf.id}/download", headers=auth_headers)
    assert missing_file.status_code == 404
    assert missing_file.json()["detail"] == "Fichier PDF introuvable"

    unknown = client.get(f"/api/reports/{uuid.uuid4()}", headers=auth_headers)
    assert unknown.json()["detail"] == "Rapport non trouvé"


def test_monthly_report_generation(db, make_user, make_call):
    now = datetime(2026, 5, 10, 8, 0)
    renewal = now + timedelta(days=2)
    subscriber = make_user(email="abonne@restaurant.fr", subscription_current_period_end=renewal)
    make_user(email="plus-tard@restaurant.fr", subscription_current_period_end=now + timedelta(days=10))
    make_call(owner=subscriber, start_time=renewal - timedelta(days=3), conversion_result="converted")
    make_call(owner=subscriber, start_time=renewal - timedelta(days=40))

    created = asyncio.run(scheduler_service.generate_monthly_reports(db, now))
    again = asyncio.run(scheduler_service.generate_monthly_reports(db, now))

    assert created == 1
    assert again == 0
    report = get_monthly_reports(db, subscriber.id)[0]
    assert report.period_end == renewal
    assert json.loads(report.metrics)["totalCalls"] == 1
    notification = db.query(Notification).filter(Notification.id == report.notification_id).one()
    assert notification.type == NotificationType.MONTHLY_REPORT_READY


def test_trial_expiry(db, make_user):
    now = datetime.utcnow()
    ended = make_user(email="essai@restaurant.fr", account_status=AccountStatus.TRIAL,
                      subscription_status=None, countdown_end=now - timedelta(hours=1))
    running = make_user(email="encours@restaurant.fr", account_status=AccountStatus.TRIAL,
                        subscription_status=None, countdown_end=now + timedelta(days=3))

    scheduler_service.expire_trials(db, now)

    db.refresh(ended)
    db.refresh(running)
    assert ended.account_status == AccountStatus.EXPIRED
    assert running.account_status == AccountStatus.TRIAL
    notification = db.query(Notification).filter(Notification.user_id == ended.id).one()
    assert notification.type == NotificationType.SUBSCRIPTION_EXPIRED
