"""
Tests for marketing contacts, campaigns, tracked emails and unsubscribe links.
"""

import asyncio
import uuid

import pytest
import resend

from app.config.settings import settings, get_base_url
from app.db.crud.marketing_crud import (
    create_contact, create_campaign, create_send, get_consent_history, get_contact
)
from app.db.models import (
    MarketingCampaign, MarketingCampaignStatus, MarketingClickEvent, MarketingSend, MarketingSendStatus
)
from app.services.marketing_email_service import (
    marketing_email_service, replace_variables, wrap_links_with_tracking, inject_tracking_pixel,
    add_unsubscribe_link, create_base_email_template,
)
from app.services.marketing_tracking_service import (
    mask_email, mask_phone, resolve_unsubscribe_channel, detect_device
)


@pytest.fixture(autouse=True)
def public_url(monkeypatch):
    monkeypatch.setattr(settings, "frontend_url", "https://app.speedai.fr")
    monkeypatch.setattr(settings, "replit_domains", None)
    monkeypatch.setattr(settings, "replit_dev_domain", None)
    monkeypatch.setattr(settings, "marketing_send_delay_seconds", 0)


class Outbox(list):
    """Sent Resend payloads plus the addresses that should bounce."""

    def __init__(self):
        super().__init__()
        self.bounce = set()


@pytest.fixture
def resend_outbox(monkeypatch):
    """Emails handed to Resend; addresses listed in ``bounce`` raise."""
    outbox = Outbox()
    bounce = outbox.bounce

    def fake_send(params):
        if params["to"][0] in bounce:
            raise RuntimeError("Mailbox unavailable")
        outbox.append(params)
        return {"id": f"re_{len(outbox)}"}

    monkeypatch.setattr(resend.Emails, "send", fake_send)
    return outbox


@pytest.fixture
def contact(db, user):
    return create_contact(db, user.id, {
        "first_name": "Marie",
        "email": "marie@exemple.fr",
        "phone": "+33612345678",
        "opt_in_email": True,
        "opt_in_sms": True,
    })


@pytest.fixture
def tracked_send(db, user, contact):
    campaign = create_campaign(db, user.id, {"name": "Menu de printemps", "channel": "email"})
    return create_send(db, {
        "campaign_id": campaign.id,
        "contact_id": contact.id,
        "channel": "email",
        "status": MarketingSendStatus.SENT,
        "recipient_email": contact.email,
    })


# =============================================================================
# Content helpers
# =============================================================================

def test_replace_variables_is_case_insensitive():
    content = "Bonjour {Prenom} {nom}, votre table vous attend."
    result = replace_variables(content, {"prenom": "Marie", "nom": None})
    assert result == "Bonjour Marie , votre table vous attend."


def test_links_are_wrapped_except_mail_and_phone():
    html = (
        '<p><a href="https://resto.fr/menu">Menu</a> '
        '<a href="mailto:contact@resto.fr">Écrire</a> '
        '<a href="tel:+33100000000">Appeler</a></p>'
    )

    wrapped = wrap_links_with_tracking(html, "abc")

    assert 'href="https://app.speedai.fr/api/marketing/track/click/abc?url=https%3A%2F%2Fresto.fr%2Fmenu"' in wrapped
    assert 'href="mailto:contact@resto.fr"' in wrapped
    assert 'href="tel:+33100000000"' in wrapped


def test_pixel_and_footer_go_before_body_end():
    html = "<html><body><p>Bonjour</p></body></html>"

    result = add_unsubscribe_link(inject_tracking_pixel(html, "abc"), "abc")

    assert result.endswith("</body></html>")
    assert "https://app.speedai.fr/api/marketing/track/open/abc" in result
    assert "https://app.speedai.fr/unsubscribe/abc" in result
    assert result.index("track/open/abc") < result.index("/unsubscribe/abc")


def test_fragment_is_appended_without_body():
    assert inject_tracking_pixel("<p>Salut</p>", "abc").startswith("<p>Salut</p><img")


def test_base_url_resolution_order(monkeypatch):
    assert get_base_url() == "https://app.speedai.fr"

    monkeypatch.setattr(settings, "frontend_url", None)
    monkeypatch.setattr(settings, "replit_domains", "speedai.worf.replit.dev,speedai.replit.app")
    monkeypatch.setattr(settings, "replit_dev_domain", "dev.speedai.repl.co")
    assert get_base_url() == "https://speedai.replit.app"

    monkeypatch.setattr(settings, "replit_domains", "speedai.worf.replit.dev")
    assert get_base_url() == "https://speedai.worf.replit.dev"

    monkeypatch.setattr(settings, "replit_domains", None)
    assert get_base_url() == "https://dev.speedai.repl.co"

    monkeypatch.setattr(settings, "replit_dev_domain", None)
    assert get_base_url() == "http://localhost:5000"


def test_masks():
    assert mask_email("jean.dupont@exemple.fr") == "je***@exemple.fr"
    assert mask_email("jo@exemple.fr") == "j***@exemple.fr"
    assert mask_phone("+33612345678") == "+336***78"
    assert mask_phone(None) is None


def test_unsubscribe_channel_resolution():
    assert resolve_unsubscribe_channel("sms") == "sms"
    assert resolve_unsubscribe_channel() == "both"
    assert resolve_unsubscribe_channel(email_selected=True, sms_selected=True) == "both"
    assert resolve_unsubscribe_channel(email_selected=True, sms_selected=False) == "email"
    assert resolve_unsubscribe_channel(email_selected=False, sms_selected=True) == "sms"

    with pytest.raises(ValueError):
        resolve_unsubscribe_channel(email_selected=False, sms_selected=False)
    with pytest.raises(ValueError):
        resolve_unsubscribe_channel("fax")


def test_device_detection():
    assert detect_device("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0)") == "mobile"
    assert detect_device("Mozilla/5.0 (Windows NT 10.0; Win64; x64)") == "desktop"
    assert detect_device(None) == "unknown"


# =============================================================================
# Campaign delivery
# =============================================================================

def test_send_loop_continues_after_failure(db, user, resend_outbox):
    for email in ("a@exemple.fr", "b@exemple.fr", "c@exemple.fr"):
        create_contact(db, user.id, {"first_name": email[0].upper(), "email": email, "opt_in_email": True})
    create_contact(db, user.id, {"email": "sans-consentement@exemple.fr", "opt_in_email": False})
    create_contact(db, user.id, {"phone": "+33699999999", "opt_in_sms": True})
    resend_outbox.bounce.add("b@exemple.fr")

    campaign = create_campaign(db, user.id, {
        "name": "Soirée jazz",
        "channel": "email",
        "target_all": True,
        "email_subject": "{prenom}, une soirée pour vous",
        "email_content": '<p>Réservez <a href="https://resto.fr">ici</a></p>',
    })
    progress = []

    result = asyncio.run(marketing_email_service.send_campaign_to_recipients(
        db, campaign.id, user.id, on_progress=lambda done, total: progress.append((done, total))
    ))

    assert result["sent"] == 2
    assert result["failed"] == 1
    assert result["errors"] == ["b@exemple.fr: Mailbox unavailable"]
    assert progress[-1] == (3, 3)

    subjects = sorted(params["subject"] for params in resend_outbox)
    assert subjects == ["A, une soirée pour vous", "C, une soirée pour vous"]
    assert "List-Unsubscribe" in resend_outbox[0]["headers"]

    db.refresh(campaign)
    assert campaign.status == MarketingCampaignStatus.SENT
    assert campaign.total_recipients == 3
    assert campaign.total_sent == 2
    assert campaign.total_failed == 1

    statuses = sorted(send.status.value for send in db.query(MarketingSend).all())
    assert statuses == ["failed", "sent", "sent"]


def test_sms_campaign_is_not_sent_by_email(db, user):
    campaign = create_campaign(db, user.id, {"name": "Promo SMS", "channel": "sms"})
    with pytest.raises(ValueError):
        asyncio.run(marketing_email_service.send_campaign_to_recipients(db, campaign.id, user.id))


def test_unknown_campaign(db, user):
    with pytest.raises(ValueError):
        asyncio.run(marketing_email_service.send_campaign_to_recipients(db, uuid.uuid4(), user.id))


def test_campaign_fragment_is_wrapped_in_layout(db, user, contact, resend_outbox):
    campaign = create_campaign(db, user.id, {
        "name": "Brunch", "channel": "email", "target_all": True,
        "email_subject": "Brunch", "email_content": "<p>Nouveau brunch</p>",
    })

    asyncio.run(marketing_email_service.send_campaign_to_recipients(db, campaign.id, user.id))

    html = resend_outbox[0]["html"]
    assert html.startswith("<!DOCTYPE html>")
    assert "<p>Nouveau brunch</p>" in html
    assert html.index("/api/marketing/track/open/") < html.index("</body>")
    assert create_base_email_template("<p>x</p>", "Chez Marie").count("Chez Marie") == 1


def test_send_pacing_applies_after_failures(db, user, monkeypatch):
    for email in ("a@exemple.fr", "b@exemple.fr"):
        create_contact(db, user.id, {"email": email, "opt_in_email": True})
    campaign = create_campaign(db, user.id, {
        "name": "Relance", "channel": "email", "target_all": True, "email_content": "<p>Bonjour</p>",
    })
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    def broken_send(**kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(settings, "marketing_send_delay_seconds", 0.1)
    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    monkeypatch.setattr(marketing_email_service, "send_marketing_email", broken_send)

    result = asyncio.run(marketing_email_service.send_campaign_to_recipients(db, campaign.id, user.id))

    assert result["failed"] == 2
    assert delays == [0.1, 0.1]


def test_send_route(client, db, user, auth_headers, contact, resend_outbox):
    created = client.post("/api/marketing/campaigns", headers=auth_headers, json={
        "name": "Brunch du dimanche",
        "emailSubject": "Bonjour {prenom}",
        "emailContent": "<p>Nouveau brunch</p>",
        "targetAll": True,
    })
    assert created.status_code == 201
    campaign_id = created.json()["id"]
    assert created.json()["status"] == "draft"

    response = client.post(f"/api/marketing/campaigns/{campaign_id}/send", headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"success": True, "sent": 1, "failed": 0, "errors": []}
    assert resend_outbox[0]["subject"] == "Bonjour Marie"

    again = client.post(f"/api/marketing/campaigns/{campaign_id}/send", headers=auth_headers)
    assert again.status_code == 400
    assert again.json()["detail"] == "Campagne déjà envoyée"

    locked = client.put(f"/api/marketing/campaigns/{campaign_id}", headers=auth_headers, json={"name": "Autre"})
    assert locked.status_code == 400


def test_campaign_with_unknown_segment(client, auth_headers):
    response = client.post("/api/marketing/campaigns", headers=auth_headers, json={
        "name": "Ciblée", "segmentId": str(uuid.uuid4())
    })
    assert response.status_code == 404
    assert response.json()["detail"] == "Segment non trouvé"


def test_scheduled_campaign(client, auth_headers):
    response = client.post("/api/marketing/campaigns", headers=auth_headers, json={
        "name": "Fête des mères", "scheduledAt": "2026-05-30T09:00:00"
    })
    assert response.json()["status"] == "scheduled"


# =============================================================================
# Contacts and segments
# =============================================================================

def test_create_contact_records_consent(client, db, auth_headers):
    response = client.post("/api/marketing/contacts", headers=auth_headers, json={
        "firstName": "Luc", "email": "luc@exemple.fr", "optInEmail": True
    })

    assert response.status_code == 201
    body = response.json()
    assert body["optInEmail"] is True
    assert body["consentEmailAt"] is not None
    history = get_consent_history(db, uuid.UUID(body["id"]))
    assert [(entry.action, entry.channel) for entry in history] == [("opt_in", "email")]


def test_create_contact_validation(client, auth_headers, contact):
    empty = client.post("/api/marketing/contacts", headers=auth_headers, json={"firstName": "Anonyme"})
    assert empty.status_code == 400
    assert empty.json()["detail"] == "Email ou téléphone requis"

    duplicate = client.post("/api/marketing/contacts", headers=auth_headers, json={"email": "MARIE@exemple.fr"})
    assert duplicate.status_code == 409

    same_phone = client.post("/api/marketing/contacts", headers=auth_headers, json={"phone": contact.phone})
    assert same_phone.status_code == 409


def test_import_contacts(client, auth_headers, contact):
    response = client.post("/api/marketing/contacts/import", headers=auth_headers, json={"contacts": [
        {"email": "marie@exemple.fr", "lastName": "Dubois"},
        {"email": "nouveau@exemple.fr", "optInEmail": True},
        {"firstName": "Sans coordonnées"},
    ]})

    assert response.status_code == 200
    body = response.json()
    assert body["imported"] == 1
    assert body["updated"] == 1
    assert body["total"] == 3
    assert len(body["errors"]) == 1


def test_contacts_are_tenant_scoped(client, make_user, headers_for, contact):
    other = make_user(email="autre@restaurant.fr")
    response = client.get(f"/api/marketing/contacts/{contact.id}", headers=headers_for(other))
    assert response.status_code == 404
    assert response.json()["detail"] == "Contact non trouvé"


def test_segment_preview(client, db, user, auth_headers, contact):
    create_contact(db, user.id, {"email": "vip@exemple.fr", "tags": ["vip"], "opt_in_email": True})
    create_contact(db, user.id, {"phone": "+33688888888"})

    by_tag = client.post("/api/marketing/segments/preview", headers=auth_headers,
                         json={"filters": {"tags": ["vip"]}}).json()
    assert by_tag["count"] == 1
    assert by_tag["sample"][0]["email"] == "vip@exemple.fr"

    with_email = client.post("/api/marketing/segments/preview", headers=auth_headers,
                             json={"filters": {"hasEmail": True, "optInEmail": True}}).json()
    assert with_email["count"] == 2


def test_segment_with_date_filter_is_stored(client, auth_headers):
    response = client.post("/api/marketing/segments", headers=auth_headers, json={
        "name": "Nouveaux clients", "filters": {"createdAfter": "2026-01-01T00:00:00"}
    })
    assert response.status_code == 201
    assert response.json()["filters"] == {"createdAfter": "2026-01-01T00:00:00"}


# =============================================================================
# Public tracking routes
# =============================================================================

def test_open_pixel(client, db, tracked_send):
    response = client.get(f"/api/marketing/track/open/{tracked_send.tracking_id}")
    client.get(f"/api/marketing/track/open/{tracked_send.tracking_id}")

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/gif"
    assert "no-store" in response.headers["cache-control"]

    db.refresh(tracked_send)
    assert tracked_send.status == MarketingSendStatus.OPENED
    campaign = db.query(MarketingCampaign).filter(MarketingCampaign.id == tracked_send.campaign_id).one()
    db.refresh(campaign)
    assert campaign.total_opened == 1


def test_open_pixel_for_unknown_id(client):
    assert client.get("/api/marketing/track/open/pas-un-id").headers["content-type"] == "image/gif"
    assert client.get(f"/api/marketing/track/open/{uuid.uuid4()}").status_code == 200


def test_click_redirects(client, db, tracked_send):
    target = "https://resto.fr/menu"
    response = client.get(
        f"/api/marketing/track/click/{tracked_send.tracking_id}",
        params={"url": target},
        headers={"user-agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0)"},
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"] == target
    db.refresh(tracked_send)
    assert tracked_send.status == MarketingSendStatus.CLICKED
    assert tracked_send.click_count == 1
    event = db.query(MarketingClickEvent).one()
    assert event.device == "mobile"


def test_click_without_url(client, tracked_send):
    response = client.get(f"/api/marketing/track/click/{tracked_send.tracking_id}")
    assert response.status_code == 400
    assert response.json()["detail"] == "URL manquante"


def test_unsubscribe_page(client, tracked_send):
    response = client.get(f"/api/marketing/unsubscribe/{tracked_send.tracking_id}")

    assert response.status_code == 200
    body = response.json()
    assert body["email"] == "ma***@exemple.fr"
    assert body["phone"] == "+336***78"
    assert body["optInEmail"] is True
    assert body["channel"] == "both"

    sms_page = client.get(f"/api/marketing/unsubscribe/{tracked_send.tracking_id}?channel=sms")
    assert sms_page.json()["channel"] == "sms"


def test_unsubscribe_from_email_only(client, db, user, contact, tracked_send):
    response = client.post(f"/api/marketing/unsubscribe/{tracked_send.tracking_id}", json={"email": True, "sms": False})

    assert response.status_code == 200
    assert response.json()["success"] is True
    refreshed = get_contact(db, user.id, contact.id)
    db.refresh(refreshed)
    assert refreshed.opt_in_email is False
    assert refreshed.opt_in_sms is True
    assert refreshed.consent_withdrawn_at is not None
    history = get_consent_history(db, contact.id)
    assert (history[0].action, history[0].channel, history[0].source) == ("opt_out", "email", "unsubscribe_link")
    db.refresh(tracked_send)
    assert tracked_send.status == MarketingSendStatus.UNSUBSCRIBED


def test_unsubscribe_requires_a_channel(client, tracked_send):
    response = client.post(f"/api/marketing/unsubscribe/{tracked_send.tracking_id}", json={"email": False, "sms": False})
    assert response.status_code == 400


def test_unsubscribe_with_unknown_link(client):
    unknown = uuid.uuid4()
    assert client.get(f"/api/marketing/unsubscribe/{unknown}").status_code == 404

    response = client.post(f"/api/marketing/unsubscribe/{unknown}", json={"channel": "both"})
    assert response.status_code == 404
    assert response.json()["detail"] == "Lien invalide"
