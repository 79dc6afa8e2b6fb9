"""
API routes for dashboard notifications and notification preferences.
"""

import uuid
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.auth import get_current_user
from app.db.database import get_db
from app.db.crud.notification_crud import (
    get_notifications, mark_notification_as_read, mark_all_notifications_as_read,
    delete_notification, get_unread_notifications_count,
    get_notification_preferences, upsert_notification_preferences,
    NOTIFICATION_TIME_FILTERS,
)
from app.db.models import User, NotificationType
from app.models.notification_schemas import NotificationPreferencesUpdate, UnreadCountResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])

NOTIFICATION_TYPES = [t.value for t in NotificationType]

DEFAULT_PREFERENCES = {
    "dailySummaryEnabled": True,
    "failedCallsEnabled": True,
    "activeCallEnabled": True,
    "subscriptionAlertsEnabled": True,
}


@router.get("")
async def list_notifications(
    time_filter: Optional[str] = Query(None, alias="timeFilter"),
    type_filter: Optional[str] = Query(None, alias="typeFilter"),
    is_read: Optional[bool] = Query(None, alias="isRead"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Notifications of the user, newest first."""
    if time_filter and time_filter not in NOTIFICATION_TIME_FILTERS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Filtre de période invalide")
    if type_filter and type_filter not in NOTIFICATION_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Type de notification invalide")

    notifications = get_notifications(db, current_user.id, time_filter, type_filter, is_read)
    return [notification.to_dict() for notification in notifications]


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return UnreadCountResponse(count=get_unread_notifications_count(db, current_user.id))


@router.get("/preferences")
async def get_preferences(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Stored preferences, or every switch on when none were saved."""
    preferences = get_notification_preferences(db, current_user.id)
    if not preferences:
        return {"userId": str(current_user.id), **DEFAULT_PREFERENCES}
    return preferences.to_dict()


@router.put("/preferences")
async def update_preferences(
    request: NotificationPreferencesUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    preferences = upsert_notification_preferences(db, current_user.id, request.dict(exclude_unset=True))
    return preferences.to_dict()


@router.patch("/mark-all-read")
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    updated = mark_all_notifications_as_read(db, current_user.id)
    return {"message": "Toutes les notifications ont été marquées comme lues", "updated": updated}


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    notification = mark_notification_as_read(db, current_user.id, notification_id)
    if not notification:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification non trouvée")
    return notification.to_dict()


@router.delete("/{notification_id}")
async def remove_notification(
    notification_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if not delete_notification(db, current_user.id, notification_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification non trouvée")
    return {"message": "Notification supprimée"}
