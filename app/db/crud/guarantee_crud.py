"""
CRUD operations for card guarantee settings, sessions and no-show charges.
"""

import uuid
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any
from sqlalchemy.orm import Session

from app.db.models import (
    GuaranteeConfig, GuaranteeSession, GuaranteeSessionStatus, NoshowCharge, NoshowChargeStatus
)

logger = logging.getLogger(__name__)

GUARANTEE_STATS_PERIODS = {"week": 7, "month": 30, "year": 365}


def get_guarantee_config(db: Session, user_id: uuid.UUID) -> Optional[GuaranteeConfig]:
    """Stored guarantee settings of a user."""
    return db.query(GuaranteeConfig).filter(GuaranteeConfig.user_id == user_id).first()


def upsert_guarantee_config(db: Session, user_id: uuid.UUID, config_data: Dict[str, Any]) -> GuaranteeConfig:
    """Create or update the guarantee settings of a user."""
    config = get_guarantee_config(db, user_id)
    if not config:
        config = GuaranteeConfig(user_id=user_id)
        db.add(config)

    for key, value in config_data.items():
        setattr(config, key, value)

    db.commit()
    db.refresh(config)
    logger.info(f"Saved guarantee config for user {user_id}")
    return config


def get_guarantee_session(db: Session, user_id: uuid.UUID, session_id: uuid.UUID) -> Optional[GuaranteeSession]:
    """Get one session of a user."""
    return db.query(GuaranteeSession).filter(
        GuaranteeSession.id == session_id,
        GuaranteeSession.user_id == user_id
    ).first()


def get_guarantee_session_by_reservation(db: Session, user_id: uuid.UUID, reservation_id: str) -> Optional[GuaranteeSession]:
    """Session already opened for a reservation, if any."""
    return db.query(GuaranteeSession).filter(
        GuaranteeSession.user_id == user_id,
        GuaranteeSession.reservation_id == reservation_id
    ).first()


def get_guarantee_session_by_checkout(db: Session, checkout_session_id: str) -> Optional[GuaranteeSession]:
    """Session linked to a Stripe Checkout session."""
    return db.query(GuaranteeSession).filter(
        GuaranteeSession.checkout_session_id == checkout_session_id
    ).first()


def create_guarantee_session(db: Session, user_id: uuid.UUID, session_data: Dict[str, Any]) -> GuaranteeSession:
    """Create a guarantee session."""
    session = GuaranteeSession(user_id=user_id, **session_data)
    db.add(session)
    db.commit()
    db.refresh(session)
    logger.info(f"Created guarantee session: {session.id} for reservation {session.reservation_id}")
    return session


def update_guarantee_session(db: Session, session_id: uuid.UUID, session_data: Dict[str, Any]) -> Optional[GuaranteeSession]:
    """Update a guarantee session."""
    session = db.query(GuaranteeSession).filter(GuaranteeSession.id == session_id).first()
    if not session:
        return None

    for key, value in session_data.items():
        setattr(session, key, value)
    db.commit()
    db.refresh(session)
    logger.info(f"Updated guarantee session: {session_id} status={session.status.value}")
    return session


def get_guarantee_sessions(
    db: Session,
    user_id: uuid.UUID,
    status: Optional[GuaranteeSessionStatus] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> List[GuaranteeSession]:
    """
    A user's sessions ordered by reservation date.

    Args:
        db: Database session
        user_id: Owner
        status: Status filter
        date_from: Inclusive lower bound on reservation date
        date_to: Exclusive upper bound on reservation date

    Returns:
        List of sessions
    """
    query = db.query(GuaranteeSession).filter(GuaranteeSession.user_id == user_id)
    if status is not None:
        query = query.filter(GuaranteeSession.status == status)
    if date_from is not None:
        query = query.filter(GuaranteeSession.reservation_date >= date_from)
    if date_to is not None:
        query = query.filter(GuaranteeSession.reservation_date < date_to)
    return query.order_by(GuaranteeSession.reservation_date.asc()).all()


def create_noshow_charge(db: Session, user_id: uuid.UUID, charge_data: Dict[str, Any]) -> NoshowCharge:
    """Record a no-show charge attempt."""
    charge = NoshowCharge(user_id=user_id, **charge_data)
    db.add(charge)
    db.commit()
    db.refresh(charge)
    logger.info(f"Recorded no-show charge: {charge.id} status={charge.status.value}")
    return charge


def get_noshow_charges(db: Session, user_id: uuid.UUID, limit: int = 50) -> List[NoshowCharge]:
    """A user's charge attempts, newest first."""
    return db.query(NoshowCharge).filter(
        NoshowCharge.user_id == user_id
    ).order_by(NoshowCharge.created_at.desc()).limit(limit).all()


def get_guarantee_stats(db: Session, user_id: uuid.UUID, period: str = "month") -> Dict[str, Any]:
    """
    Guarantee activity over a period.

    Returns:
        Session counts per status, validation rate, no-show counts and
        collected amount in euros
    """
    query = db.query(GuaranteeSession).filter(GuaranteeSession.user_id == user_id)
    days = GUARANTEE_STATS_PERIODS.get(period)
    if days:
        query = query.filter(GuaranteeSession.created_at >= datetime.utcnow() - timedelta(days=days))
    sessions = query.all()

    counts = {status.value: 0 for status in GuaranteeSessionStatus}
    for session in sessions:
        counts[session.status.value] += 1

    charges_query = db.query(NoshowCharge).filter(
        NoshowCharge.user_id == user_id,
        NoshowCharge.status == NoshowChargeStatus.SUCCEEDED
    )
    if days:
        charges_query = charges_query.filter(NoshowCharge.created_at >= datetime.utcnow() - timedelta(days=days))
    collected_cents = sum(charge.amount for charge in charges_query.all())

    total = len(sessions)
    validated_or_later = total - counts["pending"] - counts["cancelled"]
    noshows = counts["noshow_charged"] + counts["noshow_failed"]

    return {
        "period": period,
        "totalSessions": total,
        "byStatus": counts,
        "validationRate": round(validated_or_later / total * 100) if total else 0,
        "noshowCount": noshows,
        "noshowRate": round(noshows / validated_or_later * 100) if validated_or_later else 0,
        "amountCollected": collected_cents / 100,
    }
