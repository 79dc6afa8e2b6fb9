"""
Public routes hit from marketing emails: open pixel, tracked links and unsubscribe.
"""

import base64
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query, Request, status
from fastapi.responses import Response, RedirectResponse
from sqlalchemy.orm import Session

from app.db.database import get_db
from app.models.marketing_schemas import UnsubscribeRequest
from app.services.marketing_tracking_service import (
    marketing_tracking_service, parse_tracking_id, resolve_unsubscribe_channel
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/marketing", tags=["marketing-tracking"])

TRANSPARENT_GIF = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.get("/track/open/{tracking_id}")
async def track_open(tracking_id: str, db: Session = Depends(get_db)):
    """Open pixel. The GIF is always returned, even for unknown ids."""
    parsed = parse_tracking_id(tracking_id)
    if parsed:
        try:
            marketing_tracking_service.record_open(db, parsed)
        except Exception as e:
            logger.error(f"Error recording open for {tracking_id}: {e}")

    return Response(content=TRANSPARENT_GIF, media_type="image/gif", headers=NO_CACHE_HEADERS)


@router.get("/track/click/{tracking_id}")
async def track_click(
    tracking_id: str,
    request: Request,
    url: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    """Record a click and redirect to the original link."""
    if not url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="URL manquante")

    parsed = parse_tracking_id(tracking_id)
    if parsed:
        try:
            marketing_tracking_service.record_click(
                db, parsed, url,
                ip_address=_client_ip(request),
                user_agent=request.headers.get("user-agent"),
            )
        except Exception as e:
            logger.error(f"Error recording click for {tracking_id}: {e}")

    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


@router.get("/unsubscribe/{tracking_id}")
async def get_unsubscribe_info(
    tracking_id: str,
    channel: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    """Masked contact details and current opt-ins for the unsubscribe page."""
    parsed = parse_tracking_id(tracking_id)
    info = marketing_tracking_service.get_unsubscribe_info(db, parsed) if parsed else None
    if not info:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lien invalide")
    return {**info, "channel": channel or "both"}


@router.post("/unsubscribe/{tracking_id}")
async def unsubscribe(
    tracking_id: str,
    body: UnsubscribeRequest,
    request: Request,
    db: Session = Depends(get_db)
):
    """Withdraw consent for the channel chosen by the recipient."""
    parsed = parse_tracking_id(tracking_id)
    if not parsed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lien invalide")

    try:
        channel = resolve_unsubscribe_channel(body.channel, body.email, body.sms)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        return marketing_tracking_service.unsubscribe(
            db, parsed, channel,
            ip_address=_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error(f"❌ Unsubscribe failed for {tracking_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors de la désinscription"
        )
