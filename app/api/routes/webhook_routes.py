"""
API routes called by external systems.
Voice agent automation (API key) and Stripe (signed events).
"""

import logging
from datetime import datetime
from typing import Optional

import stripe
from fastapi import APIRouter, HTTPException, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.core.api_key import require_api_key, ApiKeyError
from app.db.database import get_db
from app.db.base_crud import create_call, get_calls_by_agent_id
from app.db.models import User, UserRole
from app.models.call_schemas import N8nCallPayload, CallCreatedResponse
from app.services.analytics_service import analytics_service
from app.services.billing_service import billing_service
from app.services.stripe_service import stripe_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/n8n", response_model=CallCreatedResponse, status_code=status.HTTP_201_CREATED)
async def ingest_call(
    payload: N8nCallPayload,
    current_user: User = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    """
    Store a call pushed by the voice agent automation.

    The call always belongs to the owner of the API key, whatever the body says.
    """
    try:
        call = create_call(db, current_user.id, payload.to_call_data())
        logger.info(f"📞 Call ingested for user {current_user.id}: {call.id}")
        return CallCreatedResponse(
            success=True,
            message="Appel enregistré avec succès",
            callId=str(call.id),
        )
    except Exception as e:
        logger.error(f"❌ Call ingestion failed for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors de l'enregistrement de l'appel"
        )


@router.get("/agent-report/{agent_id}")
async def get_agent_report(
    agent_id: str,
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000),
    current_user: User = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    """Monthly report data for one voice agent; admin keys only. Defaults to the previous month."""
    if current_user.role != UserRole.ADMIN:
        raise ApiKeyError(status.HTTP_403_FORBIDDEN, "Admin access required", "Accès réservé aux administrateurs")

    if month is None or year is None:
        now = datetime.utcnow()
        month = month or (now.month - 1 or 12)
        year = year or (now.year if now.month > 1 else now.year - 1)

    try:
        calls = get_calls_by_agent_id(db, agent_id, month=month, year=year)
        logger.info(f"Agent report for {agent_id} {month}/{year}: {len(calls)} calls")
        return analytics_service.get_agent_report(calls, month, year, agent_id)
    except Exception as e:
        logger.error(f"Agent report failed for {agent_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors de la génération du rapport"
        )


@router.post("/stripe")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Apply a signed Stripe subscription event."""
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event = stripe_service.construct_event(payload, signature)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f"Rejected Stripe webhook: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Signature webhook invalide")

    try:
        billing_service.handle_event(db, event)
        return {"received": True}
    except Exception as e:
        logger.error(f"❌ Stripe webhook processing failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors du traitement du webhook"
        )
