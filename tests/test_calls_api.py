"""
Tests for call ingestion, API key authentication and the call dashboard routes.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

from app.core.api_key import (
    generate_api_key, hash_api_key, is_valid_api_key_format, verify_api_key, API_KEY_PREFIX
)
from app.db.base_crud import update_user
from app.db.models import Call, CallStatus
from app.models.call_schemas import CallStatsResponse
from app.services.analytics_service import analytics_service

CALL_PAYLOAD = {
    "phoneNumber": "+33611111111",
    "status": "completed",
    "startTime": "2026-03-10T14:00:00",
    "duration": 95,
    "agent_id": "agent_x",
    "conversion_result": "converted",
    "metadata": {"client_name": "Marie Dubois", "nb_personnes": 4, "keywords": ["terrasse"]},
}


def bearer(key):
    return {"Authorization": f"Bearer {key}"}


# =============================================================================
# API keys
# =============================================================================

def test_generated_key_format():
    key = generate_api_key()
    assert key.startswith(API_KEY_PREFIX)
    assert len(key) == len(API_KEY_PREFIX) + 64
    assert is_valid_api_key_format(key)
    assert generate_api_key() != key


def test_key_format_rejects_malformed_keys():
    assert not is_valid_api_key_format("")
    assert not is_valid_api_key_format("speedai_test_" + "a" * 64)
    assert not is_valid_api_key_format(API_KEY_PREFIX + "a" * 63)
    assert not is_valid_api_key_format(API_KEY_PREFIX + "A" * 64)
    assert not is_valid_api_key_format(API_KEY_PREFIX + "g" * 64)


def test_key_hash_verification():
    key = generate_api_key()
    key_hash = hash_api_key(key)
    assert key_hash != key
    assert verify_api_key(key, key_hash)
    assert not verify_api_key(generate_api_key(), key_hash)


def test_regenerate_key_returns_plaintext_once(client, db, user, auth_headers):
    response = client.post("/api/account/api-key/regenerate", headers=auth_headers)
    assert response.status_code == 200
    key = response.json()["apiKey"]
    assert is_valid_api_key_format(key)

    db.refresh(user)
    assert verify_api_key(key, user.api_key_hash)

    status_response = client.get("/api/account/api-key", headers=auth_headers)
    assert status_response.json() == {"hasApiKey": True}


# =============================================================================
# Ingestion
# =============================================================================

def test_ingest_call(client, db, user, api_key):
    response = client.post("/api/webhooks/n8n", json=CALL_PAYLOAD, headers=bearer(api_key))

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Appel enregistré avec succès"

    call = db.query(Call).filter(Call.id == uuid.UUID(body["callId"])).one()
    assert call.user_id == user.id
    assert call.status == CallStatus.COMPLETED
    assert call.client_name == "Marie Dubois"
    assert call.nb_personnes == 4
    assert call.keywords == ["terrasse"]
    assert call.collected_at is not None


def test_ingested_times_with_offset_are_stored_in_utc(client, db, user, api_key):
    payload = {**CALL_PAYLOAD, "startTime": "2026-03-10T09:00:00-05:00", "endTime": "2026-03-10T16:30:00+01:00"}

    response = client.post("/api/webhooks/n8n", json=payload, headers=bearer(api_key))

    call = db.query(Call).filter(Call.id == uuid.UUID(response.json()["callId"])).one()
    assert call.start_time == datetime(2026, 3, 10, 14, 0)
    assert call.end_time == datetime(2026, 3, 10, 15, 30)


def test_recent_call_with_offset_is_in_hour_filter(client, db, user, api_key):
    local = datetime.now(timezone(timedelta(hours=-5))) - timedelta(minutes=30)
    payload = {**CALL_PAYLOAD, "startTime": local.isoformat()}
    client.post("/api/webhooks/n8n", json=payload, headers=bearer(api_key))

    stats = asyncio.run(analytics_service.get_stats(db, user.id, "hour"))

    assert stats["totalCalls"] == 1


def test_ingested_call_belongs_to_key_owner(client, db, user, make_user, api_key):
    other = make_user(email="autre@restaurant.fr")
    payload = {**CALL_PAYLOAD, "userId": str(other.id), "user_id": str(other.id)}

    response = client.post("/api/webhooks/n8n", json=payload, headers=bearer(api_key))

    assert response.status_code == 201
    call = db.query(Call).one()
    assert call.user_id == user.id


def test_ingest_rejects_unknown_status(client, api_key):
    response = client.post("/api/webhooks/n8n", json={**CALL_PAYLOAD, "status": "missed"}, headers=bearer(api_key))
    assert response.status_code == 422


def test_missing_authorization_header(client):
    response = client.post("/api/webhooks/n8n", json=CALL_PAYLOAD)
    assert response.status_code == 401
    assert response.json()["error"] == "Missing Authorization header"


def test_wrong_authorization_scheme(client, api_key):
    response = client.post("/api/webhooks/n8n", json=CALL_PAYLOAD, headers={"Authorization": f"Basic {api_key}"})
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid Authorization format"


def test_malformed_key(client):
    response = client.post("/api/webhooks/n8n", json=CALL_PAYLOAD, headers=bearer("speedai_live_1234"))
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid API key format"


def test_unknown_key(client, api_key):
    response = client.post("/api/webhooks/n8n", json=CALL_PAYLOAD, headers=bearer(generate_api_key()))
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid API key", "message": "Clé API invalide ou révoquée"}


def test_key_of_unverified_user(client, db, user, api_key):
    update_user(db, user.id, {"is_verified": False})
    response = client.post("/api/webhooks/n8n", json=CALL_PAYLOAD, headers=bearer(api_key))
    assert response.status_code == 403
    assert response.json()["error"] == "Email not verified"


def test_key_without_subscription(client, db, user, api_key):
    update_user(db, user.id, {"subscription_status": "canceled"})
    response = client.post("/api/webhooks/n8n", json=CALL_PAYLOAD, headers=bearer(api_key))
    assert response.status_code == 403
    assert response.json()["error"] == "No active subscription"


# =============================================================================
# Agent report
# =============================================================================

def test_agent_report_requires_admin_key(client, api_key):
    response = client.get("/api/webhooks/agent-report/agent_x?month=3&year=2026", headers=bearer(api_key))
    assert response.status_code == 403
    assert response.json()["error"] == "Admin access required"


def test_agent_report_for_admin(client, db, admin, make_call):
    key = generate_api_key()
    update_user(db, admin.id, {"api_key_hash": hash_api_key(key)})
    make_call(start_time=datetime(2026, 3, 10, 14, 0), agent_id="agent_x")

    response = client.get("/api/webhooks/agent-report/agent_x?month=3&year=2026", headers=bearer(key))

    assert response.status_code == 200
    assert response.json()["summary"]["totalCalls"] == 1


# =============================================================================
# Dashboard
# =============================================================================

def test_dashboard_requires_authentication(client):
    response = client.get("/api/calls/stats")
    assert response.status_code == 401
    assert response.json()["detail"] == "Non authentifié"


def test_dashboard_requires_verified_email(client, db, user, auth_headers):
    update_user(db, user.id, {"is_verified": False})
    response = client.get("/api/calls/stats", headers=auth_headers)
    assert response.status_code == 403


def test_stats_route(client, auth_headers, make_call):
    make_call()
    make_call(status=CallStatus.FAILED, duration=None)

    response = client.get("/api/calls/stats?timeFilter=hour", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["totalCalls"] == 2
    assert response.json()["conversionRate"] == 50.0
    assert set(response.json()) == set(CallStatsResponse.model_fields)


def test_chart_data_route(client, auth_headers, make_call):
    make_call(start_time=datetime(2026, 3, 2, 10, 0), duration=100)

    response = client.get("/api/calls/chart-data", headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == [{"date": "2026-03-02", "totalCalls": 1, "completedCalls": 1, "averageDuration": 100}]


def test_list_calls_with_filters(client, auth_headers, make_call):
    make_call(status=CallStatus.FAILED, duration=None)
    booked = make_call(appointment_date=datetime.utcnow() + timedelta(days=2))
    make_call(start_time=datetime.utcnow() - timedelta(days=3))

    assert len(client.get("/api/calls", headers=auth_headers).json()) == 3
    assert len(client.get("/api/calls?timeFilter=hour", headers=auth_headers).json()) == 2
    assert len(client.get("/api/calls?statusFilter=failed", headers=auth_headers).json()) == 1

    appointments = client.get("/api/calls?appointmentsOnly=true", headers=auth_headers).json()
    assert [call["id"] for call in appointments] == [str(booked.id)]


def test_list_calls_rejects_invalid_status(client, auth_headers):
    response = client.get("/api/calls?statusFilter=missed", headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Statut invalide"


def test_call_detail_is_tenant_scoped(client, make_user, headers_for, make_call):
    call = make_call()
    other = make_user(email="autre@restaurant.fr")

    assert client.get(f"/api/calls/{call.id}", headers=headers_for(other)).status_code == 404

    response = client.get(f"/api/calls/{call.id}")
    assert response.status_code == 401


def test_delete_call(client, auth_headers, make_call):
    call = make_call()

    response = client.delete(f"/api/calls/{call.id}", headers=auth_headers)
    assert response.status_code == 200

    missing = client.get(f"/api/calls/{call.id}", headers=auth_headers)
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Appel non trouvé"


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["service"] == "SpeedAI API"
