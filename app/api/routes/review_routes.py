"""
API routes for review requests, incentives, platform reviews and sources.
"""

import uuid
import secrets
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query, status
from sqlalchemy.orm import Session

from app.config.settings import settings, get_base_url
from app.core.auth import get_current_user
from app.db.database import get_db
from app.db.crud.review_crud import (
    get_review_config, upsert_review_config,
    get_incentives, get_incentive, get_default_incentive, create_incentive, update_incentive,
    delete_incentive, set_default_incentive,
    get_review_requests, get_review_request, get_review_request_by_token, create_review_request,
    update_review_request, get_review_request_stats,
    get_reviews, get_review, update_review, get_review_stats,
    get_review_alerts, upsert_review_alert,
    get_review_sources, get_review_source, create_review_source, delete_review_source,
    get_sync_logs, get_latest_sync_logs,
)
from app.db.models import User, ReviewRequestStatus, ReviewSource
from app.models.review_schemas import (
    ReviewConfigUpdate, IncentiveCreate, IncentiveUpdate, ReviewRequestCreate, ReviewRespond,
    ReviewAlertUpdate, TripAdvisorConnect, ReviewConfirm,
)
from app.services.email_service import email_service
from app.services.sms_service import sms_service
from app.services.review_sync_service import review_sync_service, extract_tripadvisor_location_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reviews", tags=["reviews"])

DEFAULT_REVIEW_CONFIG = {
    "enabled": True,
    "timingMode": "smart",
    "fixedDelayHours": 24,
    "fixedTime": "18:00",
    "sendWindowStart": "10:00",
    "sendWindowEnd": "20:00",
    "avoidWeekends": False,
    "companyName": None,
    "smsEnabled": True,
    "smsMessage": None,
    "emailSubject": None,
    "emailMessage": None,
    "googlePlaceId": None,
    "googleReviewUrl": None,
    "tripadvisorUrl": None,
    "facebookPageUrl": None,
    "pagesJaunesUrl": None,
    "doctolibUrl": None,
    "yelpUrl": None,
    "platformsPriority": ["google", "tripadvisor", "facebook"],
}

REQUEST_STATUSES = [s.value for s in ReviewRequestStatus]
DEFAULT_COMPANY_NAME = "notre établissement"


def parse_uuid(value: str, detail: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def review_link(tracking_token: str) -> str:
    """Public page where the customer picks a platform."""
    return f"{get_base_url()}/review/{tracking_token}"


def build_review_sms(customer_name: str, company_name: str, link: str, incentive_message: Optional[str] = None) -> str:
    """SMS text of a review request."""
    text = f"Bonjour {customer_name}, merci pour votre visite chez {company_name} ! Donnez-nous votre avis : {link}"
    if incentive_message:
        text += f"\n🎁 {incentive_message}"
    return text


# Config

@router.get("/config")
async def get_config(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Review settings, or defaults when none were saved."""
    config = get_review_config(db, current_user.id)
    if not config:
        return {"userId": str(current_user.id), **DEFAULT_REVIEW_CONFIG}
    return config.to_dict()


@router.put("/config")
async def update_config(
    request: ReviewConfigUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    config = upsert_review_config(db, current_user.id, request.dict(exclude_unset=True))
    return config.to_dict()


# Incentives

@router.get("/incentives")
async def list_incentives(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return [incentive.to_dict() for incentive in get_incentives(db, current_user.id)]


@router.post("/incentives", status_code=status.HTTP_201_CREATED)
async def create_review_incentive(
    request: IncentiveCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    incentive = create_incentive(db, current_user.id, request.dict(exclude_unset=True))
    return incentive.to_dict()


@router.put("/incentives/{incentive_id}")
async def update_review_incentive(
    incentive_id: uuid.UUID,
    request: IncentiveUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    incentive = update_incentive(db, current_user.id, incentive_id, request.dict(exclude_unset=True))
    if not incentive:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Incitation non trouvée")
    return incentive.to_dict()


@router.delete("/incentives/{incentive_id}")
async def delete_review_incentive(
    incentive_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if not delete_incentive(db, current_user.id, incentive_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Incitation non trouvée")
    return {"success": True}


@router.post("/incentives/{incentive_id}/default")
async def make_default_incentive(
    incentive_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Make one incentive the default; the previous default is cleared."""
    incentive = set_default_incentive(db, current_user.id, incentive_id)
    if not incentive:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Incitation non trouvée")
    return incentive.to_dict()


# Requests

@router.get("/requests")
async def list_requests(
    request_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if request_status and request_status not in REQUEST_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Statut invalide")
    requests = get_review_requests(db, current_user.id, request_status, limit=limit, offset=offset)
    return [request.to_dict() for request in requests]


@router.get("/requests/stats")
async def request_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return get_review_request_stats(db, current_user.id)


@router.post("/requests", status_code=status.HTTP_201_CREATED)
async def create_request(
    request: ReviewRequestCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a review request for a customer reachable by email or phone."""
    if not request.customer_email and not request.customer_phone:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email ou téléphone requis")

    data = request.dict(exclude_unset=True)
    if request.incentive_id:
        incentive_id = parse_uuid(request.incentive_id, "ID d'incitation invalide")
        if not get_incentive(db, current_user.id, incentive_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Incitation non trouvée")
        data["incentive_id"] = incentive_id

    data["send_method"] = request.send_method
    data["tracking_token"] = secrets.token_urlsafe(24)
    data["status"] = ReviewRequestStatus.SCHEDULED if request.scheduled_at else ReviewRequestStatus.PENDING

    review_request = create_review_request(db, current_user.id, data)
    return review_request.to_dict()


@router.post("/requests/{request_id}/send")
async def send_request(
    request_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Send a review request now.

    Email goes out through SMTP and SMS through Twilio, each only when the
    send method, the settings and the customer's contact details allow it.
    A failing channel is logged; the request is marked sent either way.
    """
    review_request = get_review_request(db, current_user.id, request_id)
    if not review_request:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Demande non trouvée")

    config = get_review_config(db, current_user.id)
    if not config:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Configuration des avis non trouvée")

    incentive = None
    if review_request.incentive_id:
        incentive = get_incentive(db, current_user.id, review_request.incentive_id)
    if not incentive:
        incentive = get_default_incentive(db, current_user.id)
    incentive_message = incentive.display_message if incentive else None

    company_name = config.company_name or DEFAULT_COMPANY_NAME
    link = review_link(review_request.tracking_token)
    email_sent, sms_sent = False, False

    if review_request.customer_email and review_request.send_method in ("email", "both"):
        try:
            email_service.send_review_request_email(
                review_request.customer_email,
                review_request.customer_name,
                company_name,
                link,
                subject=config.email_subject,
                message=config.email_message,
                incentive_message=incentive_message,
            )
            email_sent = True
        except Exception as e:
            logger.error(f"❌ Review request email failed for {review_request.id}: {e}")

    if review_request.customer_phone and review_request.send_method in ("sms", "both"):
        if config.sms_enabled:
            try:
                await sms_service.send_sms(
                    review_request.customer_phone,
                    build_review_sms(review_request.customer_name or "Client", company_name, link, incentive_message),
                )
                sms_sent = True
            except Exception as e:
                logger.error(f"❌ Review request SMS failed for {review_request.id}: {e}")
        else:
            logger.info(f"SMS disabled, skipping SMS for review request {review_request.id}")

    update_review_request(db, review_request.id, {
        "status": ReviewRequestStatus.SENT,
        "sent_at": datetime.utcnow(),
    })
    return {"success": True, "emailSent": email_sent, "smsSent": sms_sent}


# Reviews

@router.get("")
async def list_reviews(
    platform: Optional[str] = None,
    rating: Optional[int] = Query(None, ge=1, le=5),
    is_read: Optional[bool] = Query(None, alias="isRead"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    reviews, total = get_reviews(db, current_user.id, platform, rating, is_read, limit=limit, offset=offset)
    return {"reviews": [review.to_dict() for review in reviews], "total": total}


@router.get("/stats")
async def review_stats(
    period: str = Query("all", pattern="^(week|month|year|all)$"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return get_review_stats(db, current_user.id, period)


# Alerts

@router.get("/alerts")
async def list_alerts(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return [alert.to_dict() for alert in get_review_alerts(db, current_user.id)]


@router.put("/alerts")
async def update_alert(
    request: ReviewAlertUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    data = request.dict(exclude_unset=True)
    data.pop("alert_type", None)
    alert = upsert_review_alert(db, current_user.id, request.alert_type, data)
    return alert.to_dict()


# Sources

@router.get("/sources")
async def list_sources(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return [source.to_dict() for source in get_review_sources(db, current_user.id)]


@router.post("/sources/tripadvisor/connect")
async def connect_tripadvisor(
    request: TripAdvisorConnect,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Connect a TripAdvisor listing from its page URL."""
    if not settings.tripadvisor_api_key:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="API TripAdvisor non configurée")

    location_id = extract_tripadvisor_location_id(request.url)
    if not location_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="URL TripAdvisor invalide. Exemple: https://www.tripadvisor.fr/Restaurant_Review-g187147-d15626754-..."
        )

    if any(source.platform == "tripadvisor" for source in get_review_sources(db, current_user.id)):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="TripAdvisor déjà connecté. Déconnectez d'abord pour reconnecter."
        )

    try:
        details = await review_sync_service.clients["tripadvisor"].get_location_details(location_id)
    except Exception as e:
        logger.error(f"TripAdvisor lookup failed for location {location_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Établissement non trouvé sur TripAdvisor. Vérifiez l'URL."
        )

    rating = details.get("rating")
    address = (details.get("address_obj") or {}).get("address_string")
    source = create_review_source(db, current_user.id, {
        "platform": "tripadvisor",
        "display_name": request.display_name or details.get("name"),
        "platform_location_id": location_id,
        "platform_url": request.url,
        "connection_status": "connected",
        "total_reviews_count": int(details.get("num_reviews") or 0),
        "average_rating": round(float(rating) * 10) if rating else None,
        "source_metadata": {
            "address": address,
            "category": (details.get("category") or {}).get("name"),
            "ranking": (details.get("ranking_data") or {}).get("ranking_string"),
        },
    })
    logger.info(f"✅ TripAdvisor connected for user {current_user.id}: {details.get('name')}")

    return {
        "success": True,
        "source": source.to_dict(),
        "locationDetails": {
            "name": details.get("name"),
            "address": address,
            "rating": rating,
            "reviewCount": details.get("num_reviews"),
        },
    }


@router.post("/sources/sync-all")
async def sync_all_sources(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Sync every connected source of the tenant, one after another."""
    return await review_sync_service.sync_all_review_sources(db, current_user.id)


def _owned_source(db: Session, user_id: uuid.UUID, source_id: uuid.UUID) -> ReviewSource:
    source = get_review_source(db, user_id, source_id)
    if not source:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Source non trouvée")
    return source


@router.delete("/sources/{source_id}")
async def disconnect_source(
    source_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    _owned_source(db, current_user.id, source_id)
    delete_review_source(db, current_user.id, source_id)
    return {"success": True}


@router.post("/sources/{source_id}/sync")
async def sync_source(
    source_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    source = _owned_source(db, current_user.id, source_id)
    return await review_sync_service.sync_review_source(db, source)


@router.get("/sources/{source_id}/logs")
async def source_sync_logs(
    source_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    _owned_source(db, current_user.id, source_id)
    return [log.to_dict() for log in get_sync_logs(db, source_id)]


@router.get("/sync-logs")
async def latest_sync_logs(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return [log.to_dict() for log in get_latest_sync_logs(db, current_user.id)]


# Public pages reached from the customer's link

@router.get("/public/track/{token}")
async def track_review_link(
    token: str,
    platform: Optional[str] = None,
    db: Session = Depends(get_db)
):
    """First visit marks the request clicked; answers the review links to show."""
    review_request = get_review_request_by_token(db, token)
    if not review_request:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lien invalide")

    if not review_request.link_clicked_at:
        data = {"link_clicked_at": datetime.utcnow(), "platform_clicked": platform}
        if review_request.status != ReviewRequestStatus.CONFIRMED:
            data["status"] = ReviewRequestStatus.CLICKED
        update_review_request(db, review_request.id, data)
    elif platform and platform != review_request.platform_clicked:
        update_review_request(db, review_request.id, {"platform_clicked": platform})

    config = get_review_config(db, review_request.user_id)
    incentive = None
    if review_request.incentive_id:
        incentive = get_incentive(db, review_request.user_id, review_request.incentive_id)

    return {
        "platforms": {
            "google": config.google_review_url if config else None,
            "tripadvisor": config.tripadvisor_url if config else None,
            "facebook": config.facebook_page_url if config else None,
            "yelp": config.yelp_url if config else None,
            "doctolib": config.doctolib_url if config else None,
            "pagesJaunes": config.pages_jaunes_url if config else None,
        },
        "priority": (config.platforms_priority if config else None) or DEFAULT_REVIEW_CONFIG["platformsPriority"],
        "customerName": review_request.customer_name,
        "companyName": config.company_name if config else None,
        "incentive": {
            "displayMessage": incentive.display_message,
            "type": incentive.type,
            "validityDays": incentive.validity_days,
        } if incentive else None,
    }


@router.post("/public/confirm/{token}")
async def confirm_review(
    token: str,
    request: ReviewConfirm,
    db: Session = Depends(get_db)
):
    """The customer says they left a review; a promo code is issued when an incentive applies."""
    review_request = get_review_request_by_token(db, token)
    if not review_request:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lien invalide")

    if review_request.review_confirmed_at:
        return {"success": True, "promoCode": review_request.promo_code, "alreadyConfirmed": True}

    promo_code = None
    if review_request.incentive_id and get_incentive(db, review_request.user_id, review_request.incentive_id):
        promo_code = f"MERCI-{secrets.token_hex(3).upper()}"

    update_review_request(db, review_request.id, {
        "review_confirmed_at": datetime.utcnow(),
        "review_confirmed_platform": request.platform,
        "promo_code": promo_code,
        "status": ReviewRequestStatus.CONFIRMED,
    })
    return {"success": True, "promoCode": promo_code}


# Single review

@router.get("/{review_id}")
async def get_review_detail(
    review_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    review = get_review(db, current_user.id, review_id)
    if not review:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Avis non trouvé")
    return review.to_dict()


@router.post("/{review_id}/read")
async def mark_review_read(
    review_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    review = update_review(db, current_user.id, review_id, {"is_read": True})
    if not review:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Avis non trouvé")
    return review.to_dict()


@router.post("/{review_id}/flag")
async def toggle_review_flag(
    review_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    review = get_review(db, current_user.id, review_id)
    if not review:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Avis non trouvé")
    review = update_review(db, current_user.id, review_id, {"is_flagged": not review.is_flagged})
    return review.to_dict()


@router.post("/{review_id}/respond")
async def respond_to_review(
    review_id: uuid.UUID,
    request: ReviewRespond,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Save a draft answer or mark it published."""
    review = update_review(db, current_user.id, review_id, {
        "response_text": request.response_text,
        "response_status": request.status,
        "response_date": datetime.utcnow() if request.status == "published" else None,
    })
    if not review:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Avis non trouvé")
    return review.to_dict()
