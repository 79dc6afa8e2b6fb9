"""
CRUD operations for users and calls.
"""

import uuid
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy import extract

from app.db.models import User, UserRole, AccountStatus, Call, CallStatus
from app.services.call_analytics import get_time_filter_date

logger = logging.getLogger(__name__)


# User CRUD operations

def create_user(db: Session, user_data: Dict[str, Any]) -> User:
    """
    Create a new user.

    Args:
        db: Database session
        user_data: Column values (password already hashed)

    Returns:
        Created user
    """
    db_user = User(**user_data)
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.info(f"Created user: {db_user.id} ({db_user.email})")
    return db_user


def get_user(db: Session, user_id: uuid.UUID) -> Optional[User]:
    """Get user by ID."""
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    """Get user by email (case-insensitive)."""
    return db.query(User).filter(User.email == email.strip().lower()).first()


def get_user_by_verification_token(db: Session, token: str) -> Optional[User]:
    """Get user by email verification token."""
    return db.query(User).filter(User.verification_token == token).first()


def get_user_by_reset_token(db: Session, token: str) -> Optional[User]:
    """Get user by password reset token."""
    return db.query(User).filter(User.reset_password_token == token).first()


def get_user_by_stripe_customer_id(db: Session, customer_id: str) -> Optional[User]:
    """Get user by billing customer id."""
    return db.query(User).filter(User.stripe_customer_id == customer_id).first()


def get_users_with_api_keys(db: Session) -> List[User]:
    """Users that currently hold an API key."""
    return db.query(User).filter(User.api_key_hash.isnot(None)).all()


def update_user(db: Session, user_id: uuid.UUID, user_data: Dict[str, Any]) -> Optional[User]:
    """
    Update user columns.

    Args:
        db: Database session
        user_id: User ID
        user_data: Column values to set

    Returns:
        Updated user or None if not found
    """
    db_user = get_user(db, user_id)
    if not db_user:
        return None

    for key, value in user_data.items():
        setattr(db_user, key, value)

    db.commit()
    db.refresh(db_user)
    logger.info(f"Updated user: {user_id} fields={list(user_data.keys())}")
    return db_user


def delete_user(db: Session, user_id: uuid.UUID) -> bool:
    """
    Delete a user and everything the tenant owns.

    Calls are removed first, then the user row; other owned rows follow the
    relationship cascades.

    Returns:
        True if deleted, False if not found
    """
    db_user = get_user(db, user_id)
    if not db_user:
        return False

    deleted_calls = db.query(Call).filter(Call.user_id == user_id).delete(synchronize_session=False)
    db.expire(db_user, ["calls"])
    db.delete(db_user)
    db.commit()
    logger.info(f"Deleted user: {user_id} ({deleted_calls} calls removed)")
    return True


def get_all_users(db: Session) -> List[User]:
    """All users, newest first."""
    return db.query(User).order_by(User.created_at.desc()).all()


def suspend_user(db: Session, user_id: uuid.UUID) -> Optional[User]:
    """Suspend an account."""
    return update_user(db, user_id, {"account_status": AccountStatus.SUSPENDED})


def activate_user(db: Session, user_id: uuid.UUID) -> Optional[User]:
    """Reactivate an account."""
    return update_user(db, user_id, {"account_status": AccountStatus.ACTIVE})


def assign_plan(db: Session, user_id: uuid.UUID, plan: str) -> Optional[User]:
    """Assign a commercial plan to a user."""
    return update_user(db, user_id, {"plan": plan})


def get_users_for_monthly_report_generation(db: Session, now: Optional[datetime] = None) -> List[User]:
    """
    Subscribed users whose renewal falls in the report generation window.

    The window is 1.5 to 2.5 days ahead so the report lands before renewal.
    """
    now = now or datetime.utcnow()
    return db.query(User).filter(
        User.subscription_status == "active",
        User.role == UserRole.USER,
        User.subscription_current_period_end.isnot(None),
        User.subscription_current_period_end >= now + timedelta(hours=36),
        User.subscription_current_period_end <= now + timedelta(hours=60),
    ).all()


def get_users_with_expiring_trials(db: Session, now: Optional[datetime] = None) -> List[User]:
    """Trial users whose countdown has ended."""
    now = now or datetime.utcnow()
    return db.query(User).filter(
        User.account_status == AccountStatus.TRIAL,
        User.role == UserRole.USER,
        User.countdown_end.isnot(None),
        User.countdown_end <= now,
    ).all()


# Call CRUD operations

def create_call(db: Session, user_id: uuid.UUID, call_data: Dict[str, Any]) -> Call:
    """
    Create a call for a user.

    Args:
        db: Database session
        user_id: Owner of the call
        call_data: Column values

    Returns:
        Created call
    """
    db_call = Call(user_id=user_id, **call_data)
    db.add(db_call)
    db.commit()
    db.refresh(db_call)
    logger.info(f"Created call: {db_call.id} for user {user_id} status={db_call.status.value}")
    return db_call


def get_call(db: Session, user_id: uuid.UUID, call_id: uuid.UUID) -> Optional[Call]:
    """Get one call of a user."""
    return db.query(Call).filter(Call.id == call_id, Call.user_id == user_id).first()


def get_calls(
    db: Session,
    user_id: uuid.UUID,
    time_filter: Optional[str] = None,
    status_filter: Optional[str] = None,
    appointments_only: bool = False,
    start_from: Optional[datetime] = None,
    start_before: Optional[datetime] = None,
) -> List[Call]:
    """
    List a user's calls, newest first.

    Args:
        db: Database session
        user_id: Owner of the calls
        time_filter: hour, today, two_days, week or None
        status_filter: Call status value or None
        appointments_only: Keep only calls with an appointment date
        start_from: Explicit lower bound (overrides time_filter)
        start_before: Explicit exclusive upper bound

    Returns:
        List of calls
    """
    query = db.query(Call).filter(Call.user_id == user_id)

    lower_bound = start_from or get_time_filter_date(time_filter)
    if lower_bound:
        query = query.filter(Call.start_time >= lower_bound)
    if start_before:
        query = query.filter(Call.start_time < start_before)
    if status_filter:
        query = query.filter(Call.status == CallStatus(status_filter))
    if appointments_only:
        query = query.filter(Call.appointment_date.isnot(None))

    return query.order_by(Call.start_time.desc()).all()


def update_call(db: Session, user_id: uuid.UUID, call_id: uuid.UUID, call_data: Dict[str, Any]) -> Optional[Call]:
    """Update one call of a user."""
    db_call = get_call(db, user_id, call_id)
    if not db_call:
        return None

    for key, value in call_data.items():
        setattr(db_call, key, value)

    db.commit()
    db.refresh(db_call)
    logger.info(f"Updated call: {call_id}")
    return db_call


def delete_call(db: Session, user_id: uuid.UUID, call_id: uuid.UUID) -> bool:
    """Delete one call of a user."""
    db_call = get_call(db, user_id, call_id)
    if not db_call:
        return False

    db.delete(db_call)
    db.commit()
    logger.info(f"Deleted call: {call_id}")
    return True


def get_calls_by_agent_id(db: Session, agent_id: str, month: Optional[int] = None, year: Optional[int] = None) -> List[Call]:
    """Calls handled by one voice agent, optionally restricted to a month."""
    query = db.query(Call).filter(Call.agent_id == agent_id)
    if month and year:
        query = query.filter(
            extract("month", Call.start_time) == month,
            extract("year", Call.start_time) == year,
        )
    return query.order_by(Call.start_time.desc()).all()
