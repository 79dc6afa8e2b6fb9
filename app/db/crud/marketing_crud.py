"""
CRUD operations for marketing contacts, segments, campaigns and sends.
"""

import uuid
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any, Tuple
from sqlalchemy.orm import Session, Query
from sqlalchemy import func, or_

from app.db.models import (
    MarketingContact, MarketingConsentHistory, MarketingSegment, MarketingCampaign,
    MarketingCampaignStatus, MarketingSend, MarketingSendStatus, MarketingClickEvent
)

logger = logging.getLogger(__name__)

CONTACT_STAT_COLUMNS = {
    "sent": "total_emails_sent",
    "opened": "total_emails_opened",
    "clicked": "total_emails_clicked",
}

CAMPAIGN_STAT_COLUMNS = {"total_opened", "total_clicked", "total_unsubscribed"}


# Contact CRUD operations

def apply_contact_filters(query: Query, filters: Dict[str, Any]) -> Query:
    """
    Restrict a contact query with segment/list filters.

    Supported keys: search, source, hasEmail, hasPhone, optInEmail, optInSms,
    createdAfter, inactiveDays, visitsMin. ``tags`` is applied in Python by
    filter_contacts_by_tags since tags are stored as JSON.
    """
    search = filters.get("search")
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            MarketingContact.first_name.ilike(pattern),
            MarketingContact.last_name.ilike(pattern),
            MarketingContact.email.ilike(pattern),
            MarketingContact.phone.ilike(pattern),
        ))

    if filters.get("source"):
        query = query.filter(MarketingContact.source == filters["source"])

    if filters.get("hasEmail") is not None:
        if filters["hasEmail"]:
            query = query.filter(MarketingContact.email.isnot(None), MarketingContact.email != "")
        else:
            query = query.filter(or_(MarketingContact.email.is_(None), MarketingContact.email == ""))

    if filters.get("hasPhone") is not None:
        if filters["hasPhone"]:
            query = query.filter(MarketingContact.phone.isnot(None), MarketingContact.phone != "")
        else:
            query = query.filter(or_(MarketingContact.phone.is_(None), MarketingContact.phone == ""))

    if filters.get("optInEmail") is not None:
        query = query.filter(MarketingContact.opt_in_email == bool(filters["optInEmail"]))

    if filters.get("optInSms") is not None:
        query = query.filter(MarketingContact.opt_in_sms == bool(filters["optInSms"]))

    if filters.get("createdAfter"):
        created_after = filters["createdAfter"]
        if isinstance(created_after, str):
            created_after = datetime.fromisoformat(created_after.replace("Z", "+00:00")).replace(tzinfo=None)
        query = query.filter(MarketingContact.created_at >= created_after)

    if filters.get("inactiveDays"):
        threshold = datetime.utcnow() - timedelta(days=int(filters["inactiveDays"]))
        query = query.filter(or_(
            MarketingContact.last_visit_at.is_(None),
            MarketingContact.last_visit_at < threshold,
        ))

    if filters.get("visitsMin"):
        query = query.filter(MarketingContact.visits_count >= int(filters["visitsMin"]))

    return query


def filter_contacts_by_tags(contacts: List[MarketingContact], tags: Optional[List[str]]) -> List[MarketingContact]:
    """Keep contacts carrying at least one of the tags."""
    if not tags:
        return contacts
    wanted = set(tags)
    return [contact for contact in contacts if wanted.intersection(contact.tags or [])]


def get_contacts(
    db: Session,
    user_id: uuid.UUID,
    filters: Optional[Dict[str, Any]] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[MarketingContact], int]:
    """
    List a user's contacts with filters and pagination.

    Returns:
        (contacts page, total matching)
    """
    query = apply_contact_filters(
        db.query(MarketingContact).filter(MarketingContact.user_id == user_id),
        filters or {}
    )
    total = query.count()
    contacts = query.order_by(MarketingContact.created_at.desc()).offset(offset).limit(limit).all()
    return contacts, total


def get_contacts_by_filters(db: Session, user_id: uuid.UUID, filters: Dict[str, Any]) -> List[MarketingContact]:
    """All of a user's contacts matching segment filters."""
    query = apply_contact_filters(
        db.query(MarketingContact).filter(MarketingContact.user_id == user_id),
        filters or {}
    )
    contacts = query.order_by(MarketingContact.created_at.asc()).all()
    return filter_contacts_by_tags(contacts, (filters or {}).get("tags"))


def get_contact(db: Session, user_id: uuid.UUID, contact_id: uuid.UUID) -> Optional[MarketingContact]:
    """Get one contact of a user."""
    return db.query(MarketingContact).filter(
        MarketingContact.id == contact_id,
        MarketingContact.user_id == user_id
    ).first()


def get_contact_by_id(db: Session, contact_id: uuid.UUID) -> Optional[MarketingContact]:
    """Get a contact without tenant scope (public tracking links)."""
    return db.query(MarketingContact).filter(MarketingContact.id == contact_id).first()


def get_contact_by_email(db: Session, user_id: uuid.UUID, email: str) -> Optional[MarketingContact]:
    """Get a contact of a user by email."""
    return db.query(MarketingContact).filter(
        MarketingContact.user_id == user_id,
        func.lower(MarketingContact.email) == email.lower()
    ).first()


def get_contact_by_phone(db: Session, user_id: uuid.UUID, phone: str) -> Optional[MarketingContact]:
    """Get a contact of a user by phone."""
    return db.query(MarketingContact).filter(
        MarketingContact.user_id == user_id,
        MarketingContact.phone == phone
    ).first()


def create_contact(db: Session, user_id: uuid.UUID, contact_data: Dict[str, Any]) -> MarketingContact:
    """
    Create a contact and stamp consent dates for opted-in channels.

    Args:
        db: Database session
        user_id: Owner
        contact_data: Column values

    Returns:
        Created contact
    """
    now = datetime.utcnow()
    db_contact = MarketingContact(user_id=user_id, **contact_data)
    if db_contact.opt_in_email and not db_contact.consent_email_at:
        db_contact.consent_email_at = now
    if db_contact.opt_in_sms and not db_contact.consent_sms_at:
        db_contact.consent_sms_at = now

    db.add(db_contact)
    db.commit()
    db.refresh(db_contact)
    logger.info(f"Created marketing contact: {db_contact.id} for user {user_id}")
    return db_contact


def update_contact(db: Session, user_id: uuid.UUID, contact_id: uuid.UUID, contact_data: Dict[str, Any]) -> Optional[MarketingContact]:
    """Update a contact; newly granted consents are stamped."""
    db_contact = get_contact(db, user_id, contact_id)
    if not db_contact:
        return None

    now = datetime.utcnow()
    if contact_data.get("opt_in_email") and not db_contact.opt_in_email:
        db_contact.consent_email_at = now
    if contact_data.get("opt_in_sms") and not db_contact.opt_in_sms:
        db_contact.consent_sms_at = now

    for key, value in contact_data.items():
        setattr(db_contact, key, value)

    db.commit()
    db.refresh(db_contact)
    logger.info(f"Updated marketing contact: {contact_id}")
    return db_contact


def delete_contact(db: Session, user_id: uuid.UUID, contact_id: uuid.UUID) -> bool:
    """Delete a contact with its history and sends."""
    db_contact = get_contact(db, user_id, contact_id)
    if not db_contact:
        return False

    db.delete(db_contact)
    db.commit()
    logger.info(f"Deleted marketing contact: {contact_id}")
    return True


def increment_contact_stats(db: Session, contact_id: uuid.UUID, stat: str) -> None:
    """Bump a contact engagement counter (sent, opened, clicked)."""
    column = CONTACT_STAT_COLUMNS[stat]
    db_contact = get_contact_by_id(db, contact_id)
    if not db_contact:
        return

    setattr(db_contact, column, (getattr(db_contact, column) or 0) + 1)
    if stat == "sent":
        db_contact.last_email_sent_at = datetime.utcnow()
    db.commit()


def add_consent_history(
    db: Session,
    contact_id: uuid.UUID,
    action: str,
    channel: str,
    source: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> MarketingConsentHistory:
    """Append a consent change to the audit trail."""
    entry = MarketingConsentHistory(
        contact_id=contact_id,
        action=action,
        channel=channel,
        source=source,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    logger.info(f"Consent {action} ({channel}) recorded for contact {contact_id} via {source}")
    return entry


def get_consent_history(db: Session, contact_id: uuid.UUID) -> List[MarketingConsentHistory]:
    """Consent changes of a contact, newest first."""
    return db.query(MarketingConsentHistory).filter(
        MarketingConsentHistory.contact_id == contact_id
    ).order_by(MarketingConsentHistory.created_at.desc()).all()


def import_contacts(db: Session, user_id: uuid.UUID, rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Create or update contacts in bulk, matching by email then phone.

    Returns:
        {"imported": int, "updated": int, "errors": [str], "total": int}
    """
    imported, updated, errors = 0, 0, []

    for index, row in enumerate(rows, start=1):
        email = (row.get("email") or "").strip() or None
        phone = (row.get("phone") or "").strip() or None
        if not email and not phone:
            errors.append(f"Ligne {index}: email ou téléphone requis")
            continue

        try:
            existing = None
            if email:
                existing = get_contact_by_email(db, user_id, email)
            if not existing and phone:
                existing = get_contact_by_phone(db, user_id, phone)

            data = {key: value for key, value in row.items() if value is not None}
            if email:
                data["email"] = email
            if phone:
                data["phone"] = phone

            if existing:
                update_contact(db, user_id, existing.id, data)
                updated += 1
            else:
                data.setdefault("source", "import")
                contact = create_contact(db, user_id, data)
                for channel, flag in (("email", contact.opt_in_email), ("sms", contact.opt_in_sms)):
                    if flag:
                        add_consent_history(db, contact.id, "opt_in", channel, "import")
                imported += 1
        except Exception as e:
            db.rollback()
            logger.error(f"Error importing contact row {index}: {e}")
            errors.append(f"Ligne {index}: {e}")

    logger.info(f"Imported contacts for user {user_id}: {imported} new, {updated} updated, {len(errors)} errors")
    return {"imported": imported, "updated": updated, "errors": errors, "total": len(rows)}


# Segment CRUD operations

def get_segments(db: Session, user_id: uuid.UUID) -> List[MarketingSegment]:
    """A user's segments, newest first."""
    return db.query(MarketingSegment).filter(
        MarketingSegment.user_id == user_id
    ).order_by(MarketingSegment.created_at.desc()).all()


def get_segment(db: Session, user_id: uuid.UUID, segment_id: uuid.UUID) -> Optional[MarketingSegment]:
    """Get one segment of a user."""
    return db.query(MarketingSegment).filter(
        MarketingSegment.id == segment_id,
        MarketingSegment.user_id == user_id
    ).first()


def create_segment(db: Session, user_id: uuid.UUID, segment_data: Dict[str, Any]) -> MarketingSegment:
    """Create a segment."""
    db_segment = MarketingSegment(user_id=user_id, **segment_data)
    db.add(db_segment)
    db.commit()
    db.refresh(db_segment)
    logger.info(f"Created marketing segment: {db_segment.id}")
    return db_segment


def update_segment(db: Session, user_id: uuid.UUID, segment_id: uuid.UUID, segment_data: Dict[str, Any]) -> Optional[MarketingSegment]:
    """Update a segment."""
    db_segment = get_segment(db, user_id, segment_id)
    if not db_segment:
        return None

    for key, value in segment_data.items():
        setattr(db_segment, key, value)
    db.commit()
    db.refresh(db_segment)
    return db_segment


def delete_segment(db: Session, user_id: uuid.UUID, segment_id: uuid.UUID) -> bool:
    """Delete a segment; campaigns targeting it lose their segment."""
    db_segment = get_segment(db, user_id, segment_id)
    if not db_segment:
        return False

    db.query(MarketingCampaign).filter(
        MarketingCampaign.segment_id == segment_id
    ).update({MarketingCampaign.segment_id: None}, synchronize_session=False)
    db.delete(db_segment)
    db.commit()
    logger.info(f"Deleted marketing segment: {segment_id}")
    return True


# Campaign CRUD operations

def get_campaigns(
    db: Session,
    user_id: uuid.UUID,
    status: Optional[str] = None,
    campaign_type: Optional[str] = None,
    channel: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[MarketingCampaign], int]:
    """
    List a user's campaigns, newest first.

    Returns:
        (campaigns page, total matching)
    """
    query = db.query(MarketingCampaign).filter(MarketingCampaign.user_id == user_id)
    if status:
        query = query.filter(MarketingCampaign.status == MarketingCampaignStatus(status))
    if campaign_type:
        query = query.filter(MarketingCampaign.type == campaign_type)
    if channel:
        query = query.filter(MarketingCampaign.channel == channel)

    total = query.count()
    campaigns = query.order_by(MarketingCampaign.created_at.desc()).offset(offset).limit(limit).all()
    return campaigns, total


def get_campaign(db: Session, user_id: uuid.UUID, campaign_id: uuid.UUID) -> Optional[MarketingCampaign]:
    """Get one campaign of a user."""
    return db.query(MarketingCampaign).filter(
        MarketingCampaign.id == campaign_id,
        MarketingCampaign.user_id == user_id
    ).first()


def get_due_scheduled_campaigns(db: Session, now: Optional[datetime] = None) -> List[MarketingCampaign]:
    """Scheduled campaigns whose send time has passed, all tenants."""
    now = now or datetime.utcnow()
    return db.query(MarketingCampaign).filter(
        MarketingCampaign.status == MarketingCampaignStatus.SCHEDULED,
        MarketingCampaign.scheduled_at.isnot(None),
        MarketingCampaign.scheduled_at <= now
    ).all()


def create_campaign(db: Session, user_id: uuid.UUID, campaign_data: Dict[str, Any]) -> MarketingCampaign:
    """Create a campaign (draft, or scheduled when a send time is given)."""
    db_campaign = MarketingCampaign(user_id=user_id, **campaign_data)
    if db_campaign.status is None:
        db_campaign.status = (
            MarketingCampaignStatus.SCHEDULED if db_campaign.scheduled_at else MarketingCampaignStatus.DRAFT
        )
    db.add(db_campaign)
    db.commit()
    db.refresh(db_campaign)
    logger.info(f"Created marketing campaign: {db_campaign.id} ({db_campaign.name})")
    return db_campaign


def update_campaign(db: Session, campaign_id: uuid.UUID, campaign_data: Dict[str, Any], user_id: Optional[uuid.UUID] = None) -> Optional[MarketingCampaign]:
    """
    Update a campaign.

    Args:
        db: Database session
        campaign_id: Campaign ID
        campaign_data: Column values to set
        user_id: Owner; when given the campaign must belong to it

    Returns:
        Updated campaign or None if not found
    """
    query = db.query(MarketingCampaign).filter(MarketingCampaign.id == campaign_id)
    if user_id is not None:
        query = query.filter(MarketingCampaign.user_id == user_id)
    db_campaign = query.first()
    if not db_campaign:
        return None

    for key, value in campaign_data.items():
        setattr(db_campaign, key, value)
    db.commit()
    db.refresh(db_campaign)
    return db_campaign


def delete_campaign(db: Session, user_id: uuid.UUID, campaign_id: uuid.UUID) -> bool:
    """Delete a campaign and its sends."""
    db_campaign = get_campaign(db, user_id, campaign_id)
    if not db_campaign:
        return False

    db.delete(db_campaign)
    db.commit()
    logger.info(f"Deleted marketing campaign: {campaign_id}")
    return True


def increment_campaign_stat(db: Session, campaign_id: uuid.UUID, column: str) -> None:
    """Bump an aggregate counter of a campaign."""
    if column not in CAMPAIGN_STAT_COLUMNS:
        raise ValueError(f"Unknown campaign counter: {column}")

    db.query(MarketingCampaign).filter(MarketingCampaign.id == campaign_id).update(
        {getattr(MarketingCampaign, column): func.coalesce(getattr(MarketingCampaign, column), 0) + 1},
        synchronize_session=False
    )
    db.commit()


# Send CRUD operations

def create_send(db: Session, send_data: Dict[str, Any]) -> MarketingSend:
    """Create a send record with a fresh tracking id."""
    db_send = MarketingSend(**send_data)
    db.add(db_send)
    db.commit()
    db.refresh(db_send)
    return db_send


def update_send(db: Session, send_id: uuid.UUID, send_data: Dict[str, Any]) -> Optional[MarketingSend]:
    """Update a send record."""
    db_send = db.query(MarketingSend).filter(MarketingSend.id == send_id).first()
    if not db_send:
        return None

    for key, value in send_data.items():
        setattr(db_send, key, value)
    db.commit()
    db.refresh(db_send)
    return db_send


def get_send_by_tracking_id(db: Session, tracking_id: uuid.UUID) -> Optional[MarketingSend]:
    """Resolve a tracking id from an email link or pixel."""
    return db.query(MarketingSend).filter(MarketingSend.tracking_id == tracking_id).first()


def get_campaign_send_stats(db: Session, campaign_id: uuid.UUID) -> Dict[str, int]:
    """Count of sends per status for a campaign."""
    rows = db.query(MarketingSend.status, func.count(MarketingSend.id)).filter(
        MarketingSend.campaign_id == campaign_id
    ).group_by(MarketingSend.status).all()

    stats = {status.value: 0 for status in MarketingSendStatus}
    for status, count in rows:
        stats[status.value] = count
    stats["total"] = sum(count for _, count in rows)
    return stats


def create_click_event(db: Session, event_data: Dict[str, Any]) -> MarketingClickEvent:
    """Record a click on a tracked link."""
    event = MarketingClickEvent(**event_data)
    db.add(event)
    db.commit()
    db.refresh(event)
    return event
