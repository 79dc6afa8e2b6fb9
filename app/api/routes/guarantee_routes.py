"""
API routes for card guarantees (no-show protection).
The voice agent automation calls check-status and create-session with an API
key; the dashboard uses session auth.
"""

import uuid
import logging

import stripe
from fastapi import APIRouter, HTTPException, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.api_key import require_api_key
from app.core.auth import get_current_user
from app.db.database import get_db
from app.db.crud.guarantee_crud import (
    get_guarantee_config, upsert_guarantee_config, get_guarantee_sessions, get_noshow_charges,
    get_guarantee_stats,
)
from app.db.models import User, GuaranteeSessionStatus
from app.models.guarantee_schemas import (
    GuaranteeConfigUpdate, GuaranteeSessionCreate, CheckoutComplete, ReservationStatusUpdate
)
from app.services.guarantee_service import guarantee_service, GuaranteeError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/guarantee", tags=["guarantee"])

DEFAULT_GUARANTEE_CONFIG = {
    "enabled": False,
    "stripeAccountId": None,
    "penaltyAmount": 30,
    "cancellationDelay": 24,
    "applyTo": "all",
    "minPersons": 1,
    "smsEnabled": False,
    "autoSendEmailOnCreate": True,
    "autoSendSmsOnCreate": False,
    "logoUrl": None,
    "brandColor": "#C8B88A",
    "senderEmail": None,
    "termsUrl": None,
    "companyName": None,
    "companyAddress": None,
    "companyPhone": None,
}

HISTORY_STATUSES = (
    GuaranteeSessionStatus.COMPLETED,
    GuaranteeSessionStatus.CANCELLED,
    GuaranteeSessionStatus.NOSHOW_CHARGED,
    GuaranteeSessionStatus.NOSHOW_FAILED,
)


def _raise_http(error: GuaranteeError):
    raise HTTPException(status_code=error.status_code, detail=error.message)


# Config

@router.get("/config")
async def get_config(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    config = get_guarantee_config(db, current_user.id)
    if not config:
        return {"userId": str(current_user.id), **DEFAULT_GUARANTEE_CONFIG}
    return config.to_dict()


@router.put("/config")
async def update_config(
    request: GuaranteeConfigUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    config = upsert_guarantee_config(db, current_user.id, request.dict(exclude_unset=True))
    return config.to_dict()


# Voice agent automation (API key)

@router.get("/check-status")
async def check_status(
    current_user: User = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    """Whether reservations of this account can be guaranteed."""
    return guarantee_service.get_status(db, current_user.id)


@router.post("/create-session")
async def create_session(
    request: GuaranteeSessionCreate,
    current_user: User = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    """Open a guarantee session for a reservation when the rules require one."""
    try:
        return await guarantee_service.create_session(db, current_user.id, request.dict())
    except GuaranteeError as e:
        _raise_http(e)
    except stripe.StripeError as e:
        logger.error(f"❌ Stripe checkout creation failed for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Erreur lors de la création de la session de paiement"
        )


@router.post("/webhook/checkout-complete")
async def checkout_complete(
    request: CheckoutComplete,
    db: Session = Depends(get_db)
):
    """Confirmation page callback once the customer registered a card."""
    try:
        return guarantee_service.complete_checkout(db, request.checkout_session_id)
    except GuaranteeError as e:
        _raise_http(e)


# Dashboard

@router.get("/reservations")
async def list_reservations(
    period: str = Query("week", pattern="^(today|week|month)$"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return guarantee_service.get_reservations(db, current_user.id, period)


@router.post("/reservations/{session_id}/status")
async def update_reservation_status(
    session_id: uuid.UUID,
    request: ReservationStatusUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Record attended or no-show; a no-show charges the penalty off-session."""
    try:
        return guarantee_service.update_reservation_status(db, current_user.id, session_id, request.status)
    except GuaranteeError as e:
        _raise_http(e)


@router.post("/resend/{session_id}")
async def resend_card_request(
    session_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return guarantee_service.resend(db, current_user.id, session_id)
    except GuaranteeError as e:
        _raise_http(e)
    except stripe.StripeError as e:
        logger.error(f"❌ Stripe checkout creation failed for session {session_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Erreur lors de la création de la session de paiement"
        )


@router.post("/cancel/{session_id}")
async def cancel_session(
    session_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return guarantee_service.cancel(db, current_user.id, session_id)
    except GuaranteeError as e:
        _raise_http(e)


@router.get("/stats")
async def guarantee_stats(
    period: str = Query("month", pattern="^(week|month|year|all)$"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return get_guarantee_stats(db, current_user.id, period)


@router.get("/history")
async def guarantee_history(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Closed sessions, most recent reservation first, with charge attempts."""
    sessions = [
        session for session in get_guarantee_sessions(db, current_user.id)
        if session.status in HISTORY_STATUSES
    ]
    sessions.reverse()
    return {
        "sessions": [session.to_dict() for session in sessions],
        "charges": [charge.to_dict() for charge in get_noshow_charges(db, current_user.id)],
    }
