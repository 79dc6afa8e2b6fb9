"""
CRUD operations for review requests, reviews, alerts and platform sources.
"""

import uuid
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any, Tuple
from sqlalchemy.orm import Session
from sqlalchemy import func

from app.db.models import (
    ReviewConfig, ReviewIncentive, ReviewRequest, ReviewRequestStatus, Review, ReviewAlert,
    ReviewSource, ReviewSyncLog, SyncLogStatus
)

logger = logging.getLogger(__name__)

REVIEW_STATS_PERIODS = {"week": 7, "month": 30, "year": 365}


# Review config

def get_review_config(db: Session, user_id: uuid.UUID) -> Optional[ReviewConfig]:
    """Stored review settings of a user."""
    return db.query(ReviewConfig).filter(ReviewConfig.user_id == user_id).first()


def upsert_review_config(db: Session, user_id: uuid.UUID, config_data: Dict[str, Any]) -> ReviewConfig:
    """Create or update the review settings of a user."""
    config = get_review_config(db, user_id)
    if not config:
        config = ReviewConfig(user_id=user_id)
        db.add(config)

    for key, value in config_data.items():
        setattr(config, key, value)

    db.commit()
    db.refresh(config)
    logger.info(f"Saved review config for user {user_id}")
    return config


# Incentives

def get_incentives(db: Session, user_id: uuid.UUID) -> List[ReviewIncentive]:
    """A user's incentives, newest first."""
    return db.query(ReviewIncentive).filter(
        ReviewIncentive.user_id == user_id
    ).order_by(ReviewIncentive.created_at.desc()).all()


def get_incentive(db: Session, user_id: uuid.UUID, incentive_id: uuid.UUID) -> Optional[ReviewIncentive]:
    """Get one incentive of a user."""
    return db.query(ReviewIncentive).filter(
        ReviewIncentive.id == incentive_id,
        ReviewIncentive.user_id == user_id
    ).first()


def get_default_incentive(db: Session, user_id: uuid.UUID) -> Optional[ReviewIncentive]:
    """The active default incentive of a user."""
    return db.query(ReviewIncentive).filter(
        ReviewIncentive.user_id == user_id,
        ReviewIncentive.is_default == True,  # noqa: E712
        ReviewIncentive.is_active == True  # noqa: E712
    ).first()


def create_incentive(db: Session, user_id: uuid.UUID, incentive_data: Dict[str, Any]) -> ReviewIncentive:
    """Create an incentive."""
    incentive = ReviewIncentive(user_id=user_id, **incentive_data)
    db.add(incentive)
    db.commit()
    db.refresh(incentive)
    if incentive.is_default:
        set_default_incentive(db, user_id, incentive.id)
    logger.info(f"Created review incentive: {incentive.id}")
    return incentive


def update_incentive(db: Session, user_id: uuid.UUID, incentive_id: uuid.UUID, incentive_data: Dict[str, Any]) -> Optional[ReviewIncentive]:
    """Update an incentive."""
    incentive = get_incentive(db, user_id, incentive_id)
    if not incentive:
        return None

    for key, value in incentive_data.items():
        setattr(incentive, key, value)
    db.commit()
    db.refresh(incentive)
    if incentive_data.get("is_default"):
        set_default_incentive(db, user_id, incentive.id)
    return incentive


def delete_incentive(db: Session, user_id: uuid.UUID, incentive_id: uuid.UUID) -> bool:
    """Delete an incentive."""
    incentive = get_incentive(db, user_id, incentive_id)
    if not incentive:
        return False

    db.query(ReviewRequest).filter(
        ReviewRequest.incentive_id == incentive_id
    ).update({ReviewRequest.incentive_id: None}, synchronize_session=False)
    db.delete(incentive)
    db.commit()
    return True


def set_default_incentive(db: Session, user_id: uuid.UUID, incentive_id: uuid.UUID) -> Optional[ReviewIncentive]:
    """Make one incentive the default; every other one loses the flag."""
    incentive = get_incentive(db, user_id, incentive_id)
    if not incentive:
        return None

    db.query(ReviewIncentive).filter(
        ReviewIncentive.user_id == user_id,
        ReviewIncentive.id != incentive_id
    ).update({ReviewIncentive.is_default: False}, synchronize_session=False)
    incentive.is_default = True
    db.commit()
    db.refresh(incentive)
    return incentive


# Review requests

def get_review_requests(
    db: Session,
    user_id: uuid.UUID,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[ReviewRequest]:
    """A user's review requests, newest first."""
    query = db.query(ReviewRequest).filter(ReviewRequest.user_id == user_id)
    if status:
        query = query.filter(ReviewRequest.status == ReviewRequestStatus(status))
    return query.order_by(ReviewRequest.created_at.desc()).offset(offset).limit(limit).all()


def get_review_request(db: Session, user_id: uuid.UUID, request_id: uuid.UUID) -> Optional[ReviewRequest]:
    """Get one review request of a user."""
    return db.query(ReviewRequest).filter(
        ReviewRequest.id == request_id,
        ReviewRequest.user_id == user_id
    ).first()


def get_review_request_by_token(db: Session, tracking_token: str) -> Optional[ReviewRequest]:
    """Resolve a public review link token."""
    return db.query(ReviewRequest).filter(ReviewRequest.tracking_token == tracking_token).first()


def create_review_request(db: Session, user_id: uuid.UUID, request_data: Dict[str, Any]) -> ReviewRequest:
    """Create a review request."""
    request = ReviewRequest(user_id=user_id, **request_data)
    db.add(request)
    db.commit()
    db.refresh(request)
    logger.info(f"Created review request: {request.id} for {request.customer_name}")
    return request


def update_review_request(db: Session, request_id: uuid.UUID, request_data: Dict[str, Any]) -> Optional[ReviewRequest]:
    """Update a review request."""
    request = db.query(ReviewRequest).filter(ReviewRequest.id == request_id).first()
    if not request:
        return None

    for key, value in request_data.items():
        setattr(request, key, value)
    db.commit()
    db.refresh(request)
    return request


def get_review_request_stats(db: Session, user_id: uuid.UUID) -> Dict[str, Any]:
    """Counts per status with click and confirmation rates."""
    rows = db.query(ReviewRequest.status, func.count(ReviewRequest.id)).filter(
        ReviewRequest.user_id == user_id
    ).group_by(ReviewRequest.status).all()
    counts = {status.value: 0 for status in ReviewRequestStatus}
    for status, count in rows:
        counts[status.value] = count

    total = sum(counts.values())
    delivered = counts["sent"] + counts["clicked"] + counts["confirmed"]
    clicked = counts["clicked"] + counts["confirmed"]

    return {
        "total": total,
        "byStatus": counts,
        "clickRate": round(clicked / delivered * 100, 1) if delivered else 0,
        "confirmationRate": round(counts["confirmed"] / delivered * 100, 1) if delivered else 0,
    }


# Reviews

def get_reviews(
    db: Session,
    user_id: uuid.UUID,
    platform: Optional[str] = None,
    rating: Optional[int] = None,
    is_read: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Review], int]:
    """A user's reviews, newest first, with total count."""
    query = db.query(Review).filter(Review.user_id == user_id)
    if platform:
        query = query.filter(Review.platform == platform)
    if rating:
        query = query.filter(Review.rating == rating)
    if is_read is not None:
        query = query.filter(Review.is_read == is_read)

    total = query.count()
    reviews = query.order_by(Review.review_date.desc()).offset(offset).limit(limit).all()
    return reviews, total


def get_review(db: Session, user_id: uuid.UUID, review_id: uuid.UUID) -> Optional[Review]:
    """Get one review of a user."""
    return db.query(Review).filter(Review.id == review_id, Review.user_id == user_id).first()


def get_review_by_platform_id(db: Session, user_id: uuid.UUID, platform: str, platform_review_id: str) -> Optional[Review]:
    """Find an already imported review by its platform identifier."""
    return db.query(Review).filter(
        Review.user_id == user_id,
        Review.platform == platform,
        Review.platform_review_id == platform_review_id
    ).first()


def create_review(db: Session, user_id: uuid.UUID, review_data: Dict[str, Any]) -> Review:
    """Create a review."""
    review = Review(user_id=user_id, **review_data)
    db.add(review)
    db.commit()
    db.refresh(review)
    return review


def update_review(db: Session, user_id: uuid.UUID, review_id: uuid.UUID, review_data: Dict[str, Any]) -> Optional[Review]:
    """Update a review of a user."""
    review = get_review(db, user_id, review_id)
    if not review:
        return None

    for key, value in review_data.items():
        setattr(review, key, value)
    db.commit()
    db.refresh(review)
    return review


def get_review_stats(db: Session, user_id: uuid.UUID, period: str = "all") -> Dict[str, Any]:
    """
    Review statistics over a period.

    Args:
        db: Database session
        user_id: Owner
        period: week, month, year or all

    Returns:
        Count, average rating, rating distribution, response rate and
        per-platform counts
    """
    query = db.query(Review).filter(Review.user_id == user_id)
    days = REVIEW_STATS_PERIODS.get(period)
    if days:
        query = query.filter(Review.review_date >= datetime.utcnow() - timedelta(days=days))
    reviews = query.all()

    total = len(reviews)
    distribution = {str(star): 0 for star in range(1, 6)}
    platforms: Dict[str, int] = {}
    responded = 0
    unread = 0
    for review in reviews:
        distribution[str(review.rating)] = distribution.get(str(review.rating), 0) + 1
        platforms[review.platform] = platforms.get(review.platform, 0) + 1
        if review.response_status == "published":
            responded += 1
        if not review.is_read:
            unread += 1

    return {
        "totalReviews": total,
        "averageRating": round(sum(r.rating for r in reviews) / total, 1) if total else 0,
        "ratingDistribution": distribution,
        "responseRate": round(responded / total * 100, 1) if total else 0,
        "unreadCount": unread,
        "byPlatform": platforms,
        "period": period,
    }


# Alerts

def get_review_alerts(db: Session, user_id: uuid.UUID) -> List[ReviewAlert]:
    """A user's review alert rules."""
    return db.query(ReviewAlert).filter(ReviewAlert.user_id == user_id).all()


def upsert_review_alert(db: Session, user_id: uuid.UUID, alert_type: str, alert_data: Dict[str, Any]) -> ReviewAlert:
    """Create or update the alert rule of a given type."""
    alert = db.query(ReviewAlert).filter(
        ReviewAlert.user_id == user_id,
        ReviewAlert.alert_type == alert_type
    ).first()
    if not alert:
        alert = ReviewAlert(user_id=user_id, alert_type=alert_type)
        db.add(alert)

    for key, value in alert_data.items():
        if value is not None:
            setattr(alert, key, value)
    db.commit()
    db.refresh(alert)
    return alert


# Sources and sync logs

def get_review_sources(db: Session, user_id: uuid.UUID) -> List[ReviewSource]:
    """A user's connected review platforms."""
    return db.query(ReviewSource).filter(
        ReviewSource.user_id == user_id
    ).order_by(ReviewSource.created_at.asc()).all()


def get_review_source(db: Session, user_id: uuid.UUID, source_id: uuid.UUID) -> Optional[ReviewSource]:
    """Get one source of a user."""
    return db.query(ReviewSource).filter(
        ReviewSource.id == source_id,
        ReviewSource.user_id == user_id
    ).first()


def get_connected_review_sources(db: Session, user_id: Optional[uuid.UUID] = None) -> List[ReviewSource]:
    """Connected sources of one user, or of all users."""
    query = db.query(ReviewSource).filter(ReviewSource.connection_status == "connected")
    if user_id is not None:
        query = query.filter(ReviewSource.user_id == user_id)
    return query.all()


def create_review_source(db: Session, user_id: uuid.UUID, source_data: Dict[str, Any]) -> ReviewSource:
    """Create a review source."""
    source = ReviewSource(user_id=user_id, **source_data)
    db.add(source)
    db.commit()
    db.refresh(source)
    logger.info(f"Created review source: {source.id} ({source.platform})")
    return source


def update_review_source(db: Session, source_id: uuid.UUID, source_data: Dict[str, Any]) -> Optional[ReviewSource]:
    """Update a review source."""
    source = db.query(ReviewSource).filter(ReviewSource.id == source_id).first()
    if not source:
        return None

    for key, value in source_data.items():
        setattr(source, key, value)
    db.commit()
    db.refresh(source)
    return source


def delete_review_source(db: Session, user_id: uuid.UUID, source_id: uuid.UUID) -> bool:
    """Delete a source and its sync logs; its reviews are kept."""
    source = get_review_source(db, user_id, source_id)
    if not source:
        return False

    db.query(Review).filter(Review.source_id == source_id).update(
        {Review.source_id: None}, synchronize_session=False
    )
    db.delete(source)
    db.commit()
    logger.info(f"Deleted review source: {source_id}")
    return True


def create_sync_log(db: Session, source_id: uuid.UUID) -> ReviewSyncLog:
    """Open a running sync log for a source."""
    log = ReviewSyncLog(source_id=source_id, status=SyncLogStatus.RUNNING, started_at=datetime.utcnow())
    db.add(log)
    db.commit()
    db.refresh(log)
    return log


def update_sync_log(db: Session, log_id: uuid.UUID, log_data: Dict[str, Any]) -> Optional[ReviewSyncLog]:
    """Update a sync log."""
    log = db.query(ReviewSyncLog).filter(ReviewSyncLog.id == log_id).first()
    if not log:
        return None

    for key, value in log_data.items():
        setattr(log, key, value)
    db.commit()
    db.refresh(log)
    return log


def get_sync_logs(db: Session, source_id: uuid.UUID, limit: int = 20) -> List[ReviewSyncLog]:
    """Sync runs of a source, newest first."""
    return db.query(ReviewSyncLog).filter(
        ReviewSyncLog.source_id == source_id
    ).order_by(ReviewSyncLog.started_at.desc()).limit(limit).all()


def get_latest_sync_logs(db: Session, user_id: uuid.UUID, limit: int = 20) -> List[ReviewSyncLog]:
    """Sync runs across a user's sources, newest first."""
    return db.query(ReviewSyncLog).join(ReviewSource).filter(
        ReviewSource.user_id == user_id
    ).order_by(ReviewSyncLog.started_at.desc()).limit(limit).all()
