"""
CRUD operations for notifications, notification preferences and monthly reports.
"""

import uuid
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any
from sqlalchemy.orm import Session

from app.db.models import Notification, NotificationPreferences, NotificationType, MonthlyReport

logger = logging.getLogger(__name__)

NOTIFICATION_TIME_FILTERS = {
    "day": 1,
    "two_days": 2,
    "three_days": 3,
    "week": 7,
    "month": 30,
}

SUBSCRIPTION_TYPES = {
    NotificationType.SUBSCRIPTION_RENEWED,
    NotificationType.SUBSCRIPTION_CREATED,
    NotificationType.SUBSCRIPTION_EXPIRED,
    NotificationType.SUBSCRIPTION_EXPIRING_SOON,
    NotificationType.PAYMENT_UPDATED,
}


# Notification CRUD operations

def get_notifications(
    db: Session,
    user_id: uuid.UUID,
    time_filter: Optional[str] = None,
    type_filter: Optional[str] = None,
    is_read: Optional[bool] = None,
) -> List[Notification]:
    """
    List a user's notifications, newest first.

    Args:
        db: Database session
        user_id: Owner
        time_filter: day, two_days, three_days, week or month
        type_filter: Notification type value
        is_read: Read state filter

    Returns:
        List of notifications
    """
    query = db.query(Notification).filter(Notification.user_id == user_id)

    days = NOTIFICATION_TIME_FILTERS.get(time_filter) if time_filter else None
    if days:
        query = query.filter(Notification.created_at >= datetime.utcnow() - timedelta(days=days))
    if type_filter:
        query = query.filter(Notification.type == NotificationType(type_filter))
    if is_read is not None:
        query = query.filter(Notification.is_read == is_read)

    return query.order_by(Notification.created_at.desc()).all()


def get_notification(db: Session, user_id: uuid.UUID, notification_id: uuid.UUID) -> Optional[Notification]:
    """Get one notification of a user."""
    return db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user_id
    ).first()


def create_notification(
    db: Session,
    user_id: uuid.UUID,
    notification_type: NotificationType,
    title: str,
    message: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[Notification]:
    """
    Create a notification unless the user's preferences mute its category.

    Returns:
        Created notification, or None when muted
    """
    preferences = get_notification_preferences(db, user_id)
    if preferences and not _is_enabled(preferences, notification_type):
        logger.info(f"Notification {notification_type.value} muted for user {user_id}")
        return None

    db_notification = Notification(
        user_id=user_id,
        type=notification_type,
        title=title,
        message=message,
        notification_metadata=metadata,
    )
    db.add(db_notification)
    db.commit()
    db.refresh(db_notification)
    logger.info(f"Created notification: {db_notification.id} ({notification_type.value}) for user {user_id}")
    return db_notification


def _is_enabled(preferences: NotificationPreferences, notification_type: NotificationType) -> bool:
    if notification_type in SUBSCRIPTION_TYPES:
        return preferences.subscription_alerts_enabled
    if notification_type == NotificationType.DAILY_SUMMARY:
        return preferences.daily_summary_enabled
    if notification_type == NotificationType.FAILED_CALLS:
        return preferences.failed_calls_enabled
    if notification_type == NotificationType.ACTIVE_CALL:
        return preferences.active_call_enabled
    return True


def mark_notification_as_read(db: Session, user_id: uuid.UUID, notification_id: uuid.UUID) -> Optional[Notification]:
    """Mark one notification as read."""
    db_notification = get_notification(db, user_id, notification_id)
    if not db_notification:
        return None

    db_notification.is_read = True
    db.commit()
    db.refresh(db_notification)
    return db_notification


def mark_all_notifications_as_read(db: Session, user_id: uuid.UUID) -> int:
    """Mark every unread notification of a user as read."""
    updated = db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.is_read == False  # noqa: E712
    ).update({Notification.is_read: True}, synchronize_session=False)
    db.commit()
    logger.info(f"Marked {updated} notifications as read for user {user_id}")
    return updated


def delete_notification(db: Session, user_id: uuid.UUID, notification_id: uuid.UUID) -> bool:
    """Delete one notification of a user."""
    db_notification = get_notification(db, user_id, notification_id)
    if not db_notification:
        return False

    db.delete(db_notification)
    db.commit()
    return True


def get_unread_notifications_count(db: Session, user_id: uuid.UUID) -> int:
    """Number of unread notifications."""
    return db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.is_read == False  # noqa: E712
    ).count()


# Notification preferences

def get_notification_preferences(db: Session, user_id: uuid.UUID) -> Optional[NotificationPreferences]:
    """Stored preferences, or None when the user never saved any."""
    return db.query(NotificationPreferences).filter(NotificationPreferences.user_id == user_id).first()


def upsert_notification_preferences(db: Session, user_id: uuid.UUID, data: Dict[str, Any]) -> NotificationPreferences:
    """
    Create or update a user's notification preferences.

    Args:
        db: Database session
        user_id: Owner
        data: Flags to set (unset flags keep their value, default True)

    Returns:
        Stored preferences
    """
    preferences = get_notification_preferences(db, user_id)
    if not preferences:
        preferences = NotificationPreferences(
            user_id=user_id,
            daily_summary_enabled=True,
            failed_calls_enabled=True,
            active_call_enabled=True,
            subscription_alerts_enabled=True,
        )
        db.add(preferences)

    for key, value in data.items():
        if value is not None:
            setattr(preferences, key, value)

    db.commit()
    db.refresh(preferences)
    logger.info(f"Saved notification preferences for user {user_id}")
    return preferences


# Monthly reports

def get_monthly_reports(db: Session, user_id: uuid.UUID) -> List[MonthlyReport]:
    """A user's reports, most recent period first."""
    return db.query(MonthlyReport).filter(
        MonthlyReport.user_id == user_id
    ).order_by(MonthlyReport.period_start.desc()).all()


def get_monthly_report(db: Session, user_id: uuid.UUID, report_id: uuid.UUID) -> Optional[MonthlyReport]:
    """Get one report of a user."""
    return db.query(MonthlyReport).filter(
        MonthlyReport.id == report_id,
        MonthlyReport.user_id == user_id
    ).first()


def get_monthly_report_by_period(db: Session, user_id: uuid.UUID, period_start: datetime) -> Optional[MonthlyReport]:
    """Report of a user for the period starting at period_start."""
    return db.query(MonthlyReport).filter(
        MonthlyReport.user_id == user_id,
        MonthlyReport.period_start == period_start
    ).first()


def create_monthly_report(db: Session, user_id: uuid.UUID, report_data: Dict[str, Any]) -> MonthlyReport:
    """Store a generated monthly report."""
    db_report = MonthlyReport(user_id=user_id, **report_data)
    db.add(db_report)
    db.commit()
    db.refresh(db_report)
    logger.info(f"Created monthly report: {db_report.id} for user {user_id}")
    return db_report
