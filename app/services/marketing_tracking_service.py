"""
Open, click and unsubscribe handling for tracked marketing emails.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from app.db.models import MarketingSend, MarketingSendStatus
from app.db.crud.marketing_crud import (
    get_send_by_tracking_id, get_contact_by_id, update_send, update_contact, increment_contact_stats,
    increment_campaign_stat, create_click_event, add_consent_history
)

logger = logging.getLogger(__name__)

UNSUBSCRIBE_CHANNELS = ("email", "sms", "both")


def mask_email(email: Optional[str]) -> Optional[str]:
    """``jean.dupont@x.fr`` -> ``je***@x.fr``."""
    if not email or "@" not in email:
        return email
    local, domain = email.split("@", 1)
    visible = local[0] if len(local) <= 2 else local[:2]
    return f"{visible}***@{domain}"


def mask_phone(phone: Optional[str]) -> Optional[str]:
    """``+33612345678`` -> ``+336***78``."""
    if not phone:
        return phone
    if len(phone) <= 4:
        return f"***{phone[-2:]}"
    return f"{phone[:4]}***{phone[-2:]}"


def detect_device(user_agent: Optional[str]) -> str:
    """Device class from a user agent."""
    if not user_agent:
        return "unknown"
    ua = user_agent.lower()
    if "mobile" in ua or "android" in ua or "iphone" in ua:
        return "mobile"
    if "tablet" in ua or "ipad" in ua:
        return "tablet"
    return "desktop"


def detect_browser(user_agent: Optional[str]) -> str:
    """Browser family from a user agent."""
    if not user_agent:
        return "unknown"
    ua = user_agent.lower()
    for browser in ("chrome", "firefox", "safari", "edge", "opera"):
        if browser in ua:
            return browser
    return "other"


def detect_os(user_agent: Optional[str]) -> str:
    """Operating system from a user agent."""
    if not user_agent:
        return "unknown"
    ua = user_agent.lower()
    if "windows" in ua:
        return "windows"
    if "mac" in ua:
        return "macos"
    if "linux" in ua:
        return "linux"
    if "android" in ua:
        return "android"
    if "ios" in ua or "iphone" in ua or "ipad" in ua:
        return "ios"
    return "other"


def parse_tracking_id(value: str) -> Optional[uuid.UUID]:
    """Parse a tracking id, None when malformed."""
    try:
        return uuid.UUID(value)
    except (ValueError, TypeError, AttributeError):
        return None


def resolve_unsubscribe_channel(
    channel: Optional[str] = None,
    email_selected: Optional[bool] = None,
    sms_selected: Optional[bool] = None,
) -> str:
    """
    Channel to withdraw consent from.

    An explicit channel wins. Otherwise the recipient's selections decide:
    both or none given -> ``both``, only email -> ``email``, only SMS -> ``sms``.

    Raises:
        ValueError: Unknown channel, or both selections explicitly false
    """
    if channel:
        if channel not in UNSUBSCRIBE_CHANNELS:
            raise ValueError("Canal invalide")
        return channel

    if email_selected is None and sms_selected is None:
        return "both"
    if email_selected and sms_selected:
        return "both"
    if email_selected:
        return "email"
    if sms_selected:
        return "sms"
    raise ValueError("Aucun canal sélectionné")


class MarketingTrackingService:
    """Service for tracked link events."""

    def record_open(self, db: Session, tracking_id: uuid.UUID) -> bool:
        """
        Register an email open. Only the first open changes state.

        Returns:
            True when this was the first open
        """
        send = get_send_by_tracking_id(db, tracking_id)
        if not send or send.opened_at is not None:
            return False

        update_send(db, send.id, {
            "status": MarketingSendStatus.OPENED if send.status == MarketingSendStatus.SENT else send.status,
            "opened_at": datetime.utcnow(),
        })
        increment_contact_stats(db, send.contact_id, "opened")
        increment_campaign_stat(db, send.campaign_id, "total_opened")
        logger.info(f"👁️ First open for send {send.id}")
        return True

    def record_click(
        self,
        db: Session,
        tracking_id: uuid.UUID,
        url: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[MarketingSend]:
        """Register a click on a tracked link."""
        send = get_send_by_tracking_id(db, tracking_id)
        if not send:
            return None

        first_click = send.clicked_at is None
        data: Dict[str, Any] = {
            "click_count": (send.click_count or 0) + 1,
            "last_clicked_url": url,
        }
        if first_click:
            data["clicked_at"] = datetime.utcnow()
            if send.status in (MarketingSendStatus.SENT, MarketingSendStatus.OPENED):
                data["status"] = MarketingSendStatus.CLICKED
        update_send(db, send.id, data)

        create_click_event(db, {
            "send_id": send.id,
            "url": url,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "device": detect_device(user_agent),
            "browser": detect_browser(user_agent),
            "os": detect_os(user_agent),
        })

        if first_click:
            increment_contact_stats(db, send.contact_id, "clicked")
            increment_campaign_stat(db, send.campaign_id, "total_clicked")
        return send

    def get_unsubscribe_info(self, db: Session, tracking_id: uuid.UUID) -> Optional[Dict[str, Any]]:
        """Masked contact details shown on the unsubscribe page."""
        send = get_send_by_tracking_id(db, tracking_id)
        if not send:
            return None
        contact = get_contact_by_id(db, send.contact_id)
        if not contact:
            return None

        return {
            "email": mask_email(contact.email),
            "phone": mask_phone(contact.phone),
            "optInEmail": contact.opt_in_email,
            "optInSms": contact.opt_in_sms,
        }

    def unsubscribe(
        self,
        db: Session,
        tracking_id: uuid.UUID,
        channel: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Withdraw marketing consent for the contact behind a tracked email.

        Raises:
            LookupError: Unknown tracking id ("Lien invalide") or missing contact
        """
        send = get_send_by_tracking_id(db, tracking_id)
        if not send:
            raise LookupError("Lien invalide")
        contact = get_contact_by_id(db, send.contact_id)
        if not contact:
            raise LookupError("Contact non trouvé")

        data: Dict[str, Any] = {"consent_withdrawn_at": datetime.utcnow()}
        if channel in ("email", "both"):
            data["opt_in_email"] = False
        if channel in ("sms", "both"):
            data["opt_in_sms"] = False
        update_contact(db, contact.user_id, contact.id, data)

        add_consent_history(db, contact.id, "opt_out", channel, "unsubscribe_link", ip_address, user_agent)

        update_send(db, send.id, {
            "status": MarketingSendStatus.UNSUBSCRIBED,
            "unsubscribed_at": datetime.utcnow(),
        })
        increment_campaign_stat(db, send.campaign_id, "total_unsubscribed")
        logger.info(f"🚫 Contact {contact.id} unsubscribed from {channel}")

        return {"success": True, "message": "Vous avez été désinscrit avec succès"}


# Global tracking service instance
marketing_tracking_service = MarketingTrackingService()
