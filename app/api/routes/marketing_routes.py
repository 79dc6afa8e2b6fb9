"""
API routes for marketing contacts, segments and campaigns.
"""

import uuid
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.auth import require_verified
from app.db.database import get_db
from app.db.crud.marketing_crud import (
    get_contacts, get_contact, get_contact_by_email, get_contact_by_phone, create_contact,
    update_contact, delete_contact, add_consent_history, get_consent_history, import_contacts,
    get_contacts_by_filters, get_segments, get_segment, create_segment, update_segment, delete_segment,
    get_campaigns, get_campaign, create_campaign, update_campaign, delete_campaign, get_campaign_send_stats,
)
from app.db.models import User, MarketingCampaignStatus
from app.models.marketing_schemas import (
    ContactCreate, ContactUpdate, ContactImport, SegmentCreate, SegmentUpdate, SegmentPreview,
    CampaignCreate, CampaignUpdate,
)
from app.services.marketing_email_service import marketing_email_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/marketing", tags=["marketing"])

PREVIEW_SAMPLE_SIZE = 10


def parse_uuid(value: str, detail: str) -> uuid.UUID:
    """Path id as UUID, or a 400 with the given message."""
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _record_opt_ins(db: Session, contact_id: uuid.UUID, previous: dict, data: dict, source: str) -> None:
    for channel, key in (("email", "opt_in_email"), ("sms", "opt_in_sms")):
        if data.get(key) is None:
            continue
        if data[key] != previous.get(key, False):
            add_consent_history(db, contact_id, "opt_in" if data[key] else "opt_out", channel, source)


def _campaign_data(request, user_id: uuid.UUID, db: Session) -> dict:
    data = request.dict(exclude_unset=True)
    if data.get("segment_id"):
        segment_id = parse_uuid(data["segment_id"], "ID de segment invalide")
        if not get_segment(db, user_id, segment_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Segment non trouvé")
        data["segment_id"] = segment_id
    elif "segment_id" in data:
        data["segment_id"] = None
    return data


# Contacts

@router.get("/contacts")
async def list_contacts(
    search: Optional[str] = None,
    source: Optional[str] = None,
    has_email: Optional[bool] = Query(None, alias="hasEmail"),
    has_phone: Optional[bool] = Query(None, alias="hasPhone"),
    opt_in_email: Optional[bool] = Query(None, alias="optInEmail"),
    opt_in_sms: Optional[bool] = Query(None, alias="optInSms"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    """Contacts with filters and pagination."""
    filters = {
        "search": search,
        "source": source,
        "hasEmail": has_email,
        "hasPhone": has_phone,
        "optInEmail": opt_in_email,
        "optInSms": opt_in_sms,
    }
    contacts, total = get_contacts(db, current_user.id, filters, limit=limit, offset=offset)
    return {
        "contacts": [contact.to_dict() for contact in contacts],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/contacts/{contact_id}")
async def get_contact_detail(
    contact_id: str,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    """One contact with its consent history."""
    contact = get_contact(db, current_user.id, parse_uuid(contact_id, "ID de contact invalide"))
    if not contact:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact non trouvé")
    return {
        **contact.to_dict(),
        "consentHistory": [entry.to_dict() for entry in get_consent_history(db, contact.id)],
    }


@router.post("/contacts", status_code=status.HTTP_201_CREATED)
async def create_marketing_contact(
    request: ContactCreate,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    if not request.email and not request.phone:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email ou téléphone requis")
    if request.email and get_contact_by_email(db, current_user.id, request.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Un contact avec cet email existe déjà")
    if request.phone and get_contact_by_phone(db, current_user.id, request.phone):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Un contact avec ce numéro existe déjà")

    try:
        data = request.dict()
        contact = create_contact(db, current_user.id, data)
        _record_opt_ins(db, contact.id, {}, data, "admin")
        return contact.to_dict()
    except Exception as e:
        logger.error(f"Error creating contact for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors de la création du contact"
        )


@router.put("/contacts/{contact_id}")
async def update_marketing_contact(
    contact_id: str,
    request: ContactUpdate,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    contact_uuid = parse_uuid(contact_id, "ID de contact invalide")
    existing = get_contact(db, current_user.id, contact_uuid)
    if not existing:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact non trouvé")

    data = request.dict(exclude_unset=True)
    previous = {"opt_in_email": existing.opt_in_email, "opt_in_sms": existing.opt_in_sms}

    if data.get("email") and data["email"] != existing.email:
        duplicate = get_contact_by_email(db, current_user.id, data["email"])
        if duplicate and duplicate.id != contact_uuid:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Un contact avec cet email existe déjà")

    contact = update_contact(db, current_user.id, contact_uuid, data)
    _record_opt_ins(db, contact.id, previous, data, "admin")
    return contact.to_dict()


@router.delete("/contacts/{contact_id}")
async def delete_marketing_contact(
    contact_id: str,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    if not delete_contact(db, current_user.id, parse_uuid(contact_id, "ID de contact invalide")):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact non trouvé")
    return {"message": "Contact supprimé"}


@router.post("/contacts/import")
async def import_marketing_contacts(
    request: ContactImport,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    """Create or update contacts by email, then phone."""
    rows = [row.dict(exclude_unset=True) for row in request.contacts]
    return import_contacts(db, current_user.id, rows)


# Segments

@router.get("/segments")
async def list_segments(
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    return [segment.to_dict() for segment in get_segments(db, current_user.id)]


@router.post("/segments/preview")
async def preview_segment(
    request: SegmentPreview,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    """Contacts a filter set would target."""
    contacts = get_contacts_by_filters(db, current_user.id, request.filters.as_filters())
    return {
        "count": len(contacts),
        "sample": [contact.to_dict() for contact in contacts[:PREVIEW_SAMPLE_SIZE]],
    }


@router.get("/segments/{segment_id}")
async def get_segment_detail(
    segment_id: str,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    segment = get_segment(db, current_user.id, parse_uuid(segment_id, "ID de segment invalide"))
    if not segment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Segment non trouvé")
    return segment.to_dict()


@router.post("/segments", status_code=status.HTTP_201_CREATED)
async def create_marketing_segment(
    request: SegmentCreate,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    segment = create_segment(db, current_user.id, {
        "name": request.name,
        "description": request.description,
        "filters": request.filters.as_filters(),
    })
    return segment.to_dict()


@router.put("/segments/{segment_id}")
async def update_marketing_segment(
    segment_id: str,
    request: SegmentUpdate,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    data = request.dict(exclude_unset=True)
    if request.filters is not None:
        data["filters"] = request.filters.as_filters()

    segment = update_segment(db, current_user.id, parse_uuid(segment_id, "ID de segment invalide"), data)
    if not segment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Segment non trouvé")
    return segment.to_dict()


@router.delete("/segments/{segment_id}")
async def delete_marketing_segment(
    segment_id: str,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    if not delete_segment(db, current_user.id, parse_uuid(segment_id, "ID de segment invalide")):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Segment non trouvé")
    return {"message": "Segment supprimé"}


# Campaigns

@router.get("/campaigns")
async def list_campaigns(
    campaign_status: Optional[str] = Query(None, alias="status"),
    campaign_type: Optional[str] = Query(None, alias="type"),
    channel: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    if campaign_status and campaign_status not in [s.value for s in MarketingCampaignStatus]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Statut invalide")

    campaigns, total = get_campaigns(
        db, current_user.id, status=campaign_status, campaign_type=campaign_type,
        channel=channel, limit=limit, offset=offset,
    )
    return {
        "campaigns": [campaign.to_dict() for campaign in campaigns],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/campaigns/{campaign_id}")
async def get_campaign_detail(
    campaign_id: str,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    """One campaign with its per-status send counts."""
    campaign = get_campaign(db, current_user.id, parse_uuid(campaign_id, "ID de campagne invalide"))
    if not campaign:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campagne non trouvée")
    return {**campaign.to_dict(), "sendStats": get_campaign_send_stats(db, campaign.id)}


@router.post("/campaigns", status_code=status.HTTP_201_CREATED)
async def create_marketing_campaign(
    request: CampaignCreate,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    data = _campaign_data(request, current_user.id, db)
    data.setdefault("type", request.type)
    data.setdefault("channel", request.channel)
    data.setdefault("target_all", request.target_all)
    campaign = create_campaign(db, current_user.id, data)
    return campaign.to_dict()


@router.put("/campaigns/{campaign_id}")
async def update_marketing_campaign(
    campaign_id: str,
    request: CampaignUpdate,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    campaign_uuid = parse_uuid(campaign_id, "ID de campagne invalide")
    existing = get_campaign(db, current_user.id, campaign_uuid)
    if not existing:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campagne non trouvée")
    if existing.status in (MarketingCampaignStatus.SENDING, MarketingCampaignStatus.SENT):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Une campagne envoyée ne peut plus être modifiée"
        )

    data = _campaign_data(request, current_user.id, db)
    if "scheduled_at" in data:
        data["status"] = MarketingCampaignStatus.SCHEDULED if data["scheduled_at"] else MarketingCampaignStatus.DRAFT
    campaign = update_campaign(db, campaign_uuid, data, user_id=current_user.id)
    return campaign.to_dict()


@router.delete("/campaigns/{campaign_id}")
async def delete_marketing_campaign(
    campaign_id: str,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    if not delete_campaign(db, current_user.id, parse_uuid(campaign_id, "ID de campagne invalide")):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campagne non trouvée")
    return {"message": "Campagne supprimée"}


@router.post("/campaigns/{campaign_id}/send")
async def send_campaign(
    campaign_id: str,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    """Send an email campaign now."""
    campaign_uuid = parse_uuid(campaign_id, "ID de campagne invalide")
    campaign = get_campaign(db, current_user.id, campaign_uuid)
    if not campaign:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campagne non trouvée")
    if campaign.status in (MarketingCampaignStatus.SENDING, MarketingCampaignStatus.SENT):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Campagne déjà envoyée")

    try:
        result = await marketing_email_service.send_campaign_to_recipients(db, campaign_uuid, current_user.id)
        return {"success": True, **result}
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"❌ Campaign {campaign_id} send failed: {e}")
        update_campaign(db, campaign_uuid, {"status": MarketingCampaignStatus.FAILED})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors de l'envoi de la campagne"
        )
