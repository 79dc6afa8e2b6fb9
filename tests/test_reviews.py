"""
Tests for review synchronisation, review requests and the public review pages.
"""

import asyncio
import re
from datetime import datetime

import pytest

from app.config.settings import settings
from app.db.crud.review_crud import (
    create_review_source, create_incentive, upsert_review_config, get_sync_logs, get_review_request_by_token
)
from app.db.models import Review, ReviewRequestStatus, SyncLogStatus
from app.services.review_sync_service import (
    review_sync_service, TripAdvisorClient, GoogleBusinessClient, FacebookPagesClient,
    parse_platform_date, sentiment_from_rating, extract_tripadvisor_location_id,
)

TRIPADVISOR_REVIEW = {
    "id": 981234,
    "url": "https://www.tripadvisor.fr/ShowUserReviews-g187147-d15626754-r981234",
    "rating": 5,
    "title": "Excellent",
    "text": "Service parfait et plats délicieux.",
    "published_date": "2026-03-01T19:30:00Z",
    "user": {"username": "gourmet75", "avatar": {"medium": "https://media.tripadvisor.com/a.jpg"}},
}


@pytest.fixture
def source(db, user):
    return create_review_source(db, user.id, {
        "platform": "tripadvisor",
        "display_name": "Chez Marie",
        "platform_location_id": "15626754",
        "connection_status": "connected",
    })


@pytest.fixture
def fetched(monkeypatch):
    """Reviews the TripAdvisor client returns, as raw API payloads."""
    payloads = []

    async def fake_fetch(source):
        return [TripAdvisorClient.normalize(payload) for payload in payloads]

    monkeypatch.setattr(review_sync_service.clients["tripadvisor"], "fetch_reviews", fake_fetch)
    monkeypatch.setattr(settings, "review_sync_delay_seconds", 0)
    return payloads


# =============================================================================
# Normalisation helpers
# =============================================================================

def test_parse_platform_date():
    assert parse_platform_date("2026-03-01T19:30:00Z") == datetime(2026, 3, 1, 19, 30)
    assert parse_platform_date("2026-03-01T21:30:00+0200") == datetime(2026, 3, 1, 19, 30)
    assert parse_platform_date(None) is None


def test_sentiment_from_rating():
    assert sentiment_from_rating(5) == "very_positive"
    assert sentiment_from_rating(3) == "neutral"
    assert sentiment_from_rating(1) == "very_negative"


def test_tripadvisor_location_id_from_url():
    url = "https://www.tripadvisor.fr/Restaurant_Review-g187147-d15626754-Reviews-Chez_Marie-Paris.html"
    assert extract_tripadvisor_location_id(url) == "15626754"
    assert extract_tripadvisor_location_id("https://www.google.com/maps") is None


def test_tripadvisor_normalisation():
    review = TripAdvisorClient.normalize({
        **TRIPADVISOR_REVIEW,
        "owner_response": {"text": "Merci !", "published_date": "2026-03-02T08:00:00Z"},
    })

    assert review["platform_review_id"] == "981234"
    assert review["content"] == "Excellent\n\nService parfait et plats délicieux."
    assert review["reviewer_name"] == "gourmet75"
    assert review["response_status"] == "published"
    assert review["response_date"] == datetime(2026, 3, 2, 8, 0)


def test_google_normalisation():
    review = GoogleBusinessClient.normalize({
        "reviewId": "g-1",
        "starRating": "FOUR",
        "comment": "Très bon accueil",
        "createTime": "2026-02-10T12:00:00Z",
        "reviewer": {"displayName": "Paul"},
    })

    assert review["rating"] == 4
    assert review["reviewer_name"] == "Paul"
    assert review["response_status"] == "none"


def test_facebook_recommendations_map_to_stars():
    negative = FacebookPagesClient.normalize({
        "created_time": "2026-02-10T12:00:00+0000",
        "recommendation_type": "negative",
        "reviewer": {"id": "42", "name": "Léa"},
    })
    positive = FacebookPagesClient.normalize({
        "created_time": "2026-02-11T12:00:00+0000",
        "recommendation_type": "positive",
        "open_graph_story": {"id": "story-9"},
    })

    assert negative["rating"] == 1
    assert negative["platform_review_id"] == "42_2026-02-10T12:00:00+0000"
    assert positive["rating"] == 5
    assert positive["platform_review_id"] == "story-9"
    assert positive["reviewer_name"] == "Anonyme"


# =============================================================================
# Synchronisation
# =============================================================================

def test_sync_upserts_reviews(db, source, fetched):
    fetched.append(TRIPADVISOR_REVIEW)
    fetched.append({**TRIPADVISOR_REVIEW, "id": 981235, "rating": 3, "title": None, "text": "Correct"})

    first = asyncio.run(review_sync_service.sync_review_source(db, source))

    assert first == {"success": True, "fetched": 2, "new": 2, "updated": 0, "error": None}
    review = db.query(Review).filter(Review.platform_review_id == "981234").one()
    review.is_read = True
    db.commit()

    fetched[0] = {**TRIPADVISOR_REVIEW, "rating": 4, "text": "Toujours bien"}
    second = asyncio.run(review_sync_service.sync_review_source(db, source))

    assert second["new"] == 0
    assert second["updated"] == 2
    assert db.query(Review).count() == 2
    db.refresh(review)
    assert review.rating == 4
    assert review.sentiment == "positive"
    assert review.is_read is True

    db.refresh(source)
    assert source.last_sync_status == "success"
    assert source.total_reviews_count == 2
    assert source.average_rating == 35

    logs = get_sync_logs(db, source.id)
    assert len(logs) == 2
    assert all(log.status == SyncLogStatus.SUCCESS for log in logs)


def test_sync_error_is_recorded(db, source, monkeypatch):
    async def failing_fetch(source):
        raise ValueError("TripAdvisor API key not configured")

    monkeypatch.setattr(review_sync_service.clients["tripadvisor"], "fetch_reviews", failing_fetch)

    result = asyncio.run(review_sync_service.sync_review_source(db, source))

    assert result["success"] is False
    assert result["error"] == "TripAdvisor API key not configured"
    log = get_sync_logs(db, source.id)[0]
    assert log.status == SyncLogStatus.ERROR
    assert log.completed_at is not None
    db.refresh(source)
    assert source.last_sync_status == "error"


def test_sync_all_counts_results(db, user, source, fetched):
    create_review_source(db, user.id, {"platform": "google", "connection_status": "connected"})
    create_review_source(db, user.id, {"platform": "facebook", "connection_status": "disconnected"})
    fetched.append(TRIPADVISOR_REVIEW)

    result = asyncio.run(review_sync_service.sync_all_review_sources(db, user.id))

    assert result == {"total": 2, "succeeded": 1, "failed": 1}


def test_sync_route_is_tenant_scoped(client, make_user, headers_for, source):
    other = make_user(email="autre@restaurant.fr")
    response = client.post(f"/api/reviews/sources/{source.id}/sync", headers=headers_for(other))
    assert response.status_code == 404
    assert response.json()["detail"] == "Source non trouvée"


def test_tripadvisor_connect_rejects_bad_url(client, auth_headers, monkeypatch):
    monkeypatch.setattr(settings, "tripadvisor_api_key", "ta-key")
    response = client.post("/api/reviews/sources/tripadvisor/connect", headers=auth_headers,
                           json={"url": "https://www.tripadvisor.fr/"})
    assert response.status_code == 400


def test_tripadvisor_connect(client, auth_headers, monkeypatch):
    monkeypatch.setattr(settings, "tripadvisor_api_key", "ta-key")

    async def fake_details(location_id):
        return {"name": "Chez Marie", "rating": "4.5", "num_reviews": "120",
                "address_obj": {"address_string": "1 rue de Paris"}}

    monkeypatch.setattr(review_sync_service.clients["tripadvisor"], "get_location_details", fake_details)
    url = "https://www.tripadvisor.fr/Restaurant_Review-g187147-d15626754-Reviews-Chez_Marie-Paris.html"

    response = client.post("/api/reviews/sources/tripadvisor/connect", headers=auth_headers, json={"url": url})

    assert response.status_code == 200
    body = response.json()
    assert body["source"]["platformLocationId"] == "15626754"
    assert body["source"]["averageRating"] == 4.5
    assert body["source"]["totalReviewsCount"] == 120

    again = client.post("/api/reviews/sources/tripadvisor/connect", headers=auth_headers, json={"url": url})
    assert again.status_code == 409


# =============================================================================
# Review requests
# =============================================================================

def test_send_requires_config(client, auth_headers):
    created = client.post("/api/reviews/requests", headers=auth_headers, json={
        "customerName": "Marie", "customerPhone": "+33612345678"
    })
    response = client.post(f"/api/reviews/requests/{created.json()['id']}/send", headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Configuration des avis non trouvée"


def test_request_needs_contact_details(client, auth_headers):
    response = client.post("/api/reviews/requests", headers=auth_headers, json={"customerName": "Marie"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Email ou téléphone requis"


def test_send_request_by_email_and_sms(client, db, user, auth_headers, sent_emails, sent_sms):
    upsert_review_config(db, user.id, {"company_name": "Chez Marie"})
    incentive = create_incentive(db, user.id, {
        "type": "percentage", "percentage_value": 10, "display_message": "-10% sur votre prochaine visite"
    })
    created = client.post("/api/reviews/requests", headers=auth_headers, json={
        "customerName": "Paul",
        "customerEmail": "paul@exemple.fr",
        "customerPhone": "+33612345678",
        "incentiveId": str(incentive.id),
    })
    assert created.status_code == 201
    token = created.json()["trackingToken"]

    response = client.post(f"/api/reviews/requests/{created.json()['id']}/send", headers=auth_headers)

    assert response.json() == {"success": True, "emailSent": True, "smsSent": True}
    assert sent_emails[0][0] == "paul@exemple.fr"
    number, body = sent_sms[0]
    assert number == "+33612345678"
    assert "Chez Marie" in body
    assert f"/review/{token}" in body
    assert "-10% sur votre prochaine visite" in body
    assert get_review_request_by_token(db, token).status == ReviewRequestStatus.SENT


def test_sms_disabled_skips_sms(client, db, user, auth_headers, sent_sms):
    upsert_review_config(db, user.id, {"sms_enabled": False})
    created = client.post("/api/reviews/requests", headers=auth_headers, json={
        "customerName": "Paul", "customerPhone": "+33612345678", "sendMethod": "sms"
    })

    response = client.post(f"/api/reviews/requests/{created.json()['id']}/send", headers=auth_headers)

    assert response.json()["smsSent"] is False
    assert sent_sms == []


def test_public_track_and_confirm(client, db, user, auth_headers):
    upsert_review_config(db, user.id, {"google_review_url": "https://g.page/r/chez-marie/review"})
    incentive = create_incentive(db, user.id, {"type": "free_item", "display_message": "Un café offert"})
    created = client.post("/api/reviews/requests", headers=auth_headers, json={
        "customerName": "Paul", "customerEmail": "paul@exemple.fr", "incentiveId": str(incentive.id)
    })
    token = created.json()["trackingToken"]

    page = client.get(f"/api/reviews/public/track/{token}?platform=google")

    assert page.status_code == 200
    assert page.json()["platforms"]["google"] == "https://g.page/r/chez-marie/review"
    assert page.json()["incentive"]["displayMessage"] == "Un café offert"
    assert get_review_request_by_token(db, token).status == ReviewRequestStatus.CLICKED

    confirmed = client.post(f"/api/reviews/public/confirm/{token}", json={"platform": "google"})
    promo_code = confirmed.json()["promoCode"]
    assert re.fullmatch(r"MERCI-[0-9A-F]{6}", promo_code)

    again = client.post(f"/api/reviews/public/confirm/{token}", json={"platform": "google"})
    assert again.json() == {"success": True, "promoCode": promo_code, "alreadyConfirmed": True}

    request = get_review_request_by_token(db, token)
    assert request.status == ReviewRequestStatus.CONFIRMED
    assert request.review_confirmed_platform == "google"


def test_public_link_with_unknown_token(client):
    response = client.get("/api/reviews/public/track/inconnu")
    assert response.status_code == 404
    assert response.json()["detail"] == "Lien invalide"
