"""
Marketing email service.
Personalises campaign content, adds open/click tracking and the unsubscribe
footer, and delivers through Resend one recipient at a time.
"""

import asyncio
import logging
import re
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import resend
from sqlalchemy.orm import Session

from app.config.settings import settings, get_base_url
from app.db.models import MarketingCampaignStatus, MarketingSendStatus
from app.db.crud.marketing_crud import (
    get_campaign, update_campaign, get_segment, get_contacts_by_filters,
    create_send, update_send, increment_contact_stats
)

logger = logging.getLogger(__name__)

LINK_PATTERN = re.compile(r"""<a\s+([^>]*?)href=["']([^"'#][^"']*)["']([^>]*)>""", re.IGNORECASE)
TRACKING_PATH = "/api/marketing/track/"
EMAIL_CHANNELS = ("email", "both")


def replace_variables(content: str, variables: Dict[str, Any]) -> str:
    """
    Replace ``{key}`` placeholders, case-insensitively.

    Args:
        content: Template text
        variables: Values by placeholder name; None becomes an empty string

    Returns:
        Personalised text
    """
    result = content or ""
    for key, value in variables.items():
        replacement = "" if value is None else str(value)
        result = re.sub(
            r"\{" + re.escape(key) + r"\}",
            lambda _match: replacement,
            result,
            flags=re.IGNORECASE,
        )
    return result


def _insert_before_body_end(html: str, fragment: str) -> str:
    if "</body>" in html:
        return html.replace("</body>", f"{fragment}</body>", 1)
    return html + fragment


def inject_tracking_pixel(html: str, tracking_id: str) -> str:
    """Add the hidden open-tracking image."""
    pixel = (
        f'<img src="{get_base_url()}/api/marketing/track/open/{tracking_id}" '
        f'width="1" height="1" style="display:none;" alt="" />'
    )
    return _insert_before_body_end(html, pixel)


def wrap_links_with_tracking(html: str, tracking_id: str) -> str:
    """Route every http(s) link through the click tracker."""
    base_url = get_base_url()

    def _wrap(match: "re.Match") -> str:
        before, url, after = match.group(1), match.group(2), match.group(3)
        lowered = url.lower()
        if lowered.startswith("mailto:") or lowered.startswith("tel:") or TRACKING_PATH in url:
            return match.group(0)
        tracked = f"{base_url}/api/marketing/track/click/{tracking_id}?url={quote(url, safe='')}"
        return f'<a {before}href="{tracked}"{after}>'

    return LINK_PATTERN.sub(_wrap, html)


def add_unsubscribe_link(html: str, tracking_id: str) -> str:
    """Append the French unsubscribe footer."""
    unsubscribe_url = f"{get_base_url()}/unsubscribe/{tracking_id}"
    footer = (
        '<div style="text-align:center;padding:20px;font-size:12px;color:#999999;">'
        'Si vous ne souhaitez plus recevoir nos emails, '
        f'<a href="{unsubscribe_url}" style="color:#999999;text-decoration:underline;">'
        'cliquez ici pour vous désinscrire</a>.'
        '</div>'
    )
    return _insert_before_body_end(html, footer)


def create_base_email_template(content: str, company_name: str = "SpeedAI") -> str:
    """Wrap campaign content in the standard branded layout."""
    return f"""<!DOCTYPE html>
<html lang="fr">
<head><meta charset="UTF-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"></head>
<body style="margin:0;padding:0;background:#f5f5f5;font-family:Arial,sans-serif;">
  <div style="max-width:600px;margin:0 auto;background:#ffffff;">
    <div style="background:#1a1a2e;padding:24px;text-align:center;">
      <h1 style="color:#C8B88A;margin:0;font-size:22px;">{company_name}</h1>
    </div>
    <div style="padding:32px;color:#333333;line-height:1.6;">{content}</div>
  </div>
</body>
</html>"""


class MarketingEmailService:
    """Service class for marketing email delivery."""

    def __init__(self):
        resend.api_key = settings.resend_api_key

    def send_marketing_email(
        self,
        to: str,
        subject: str,
        html: str,
        tracking_id: str,
        from_name: Optional[str] = None,
        from_email: Optional[str] = None,
    ) -> Tuple[bool, Optional[str], Optional[str]]:
        """
        Send one tracked marketing email.

        Links are wrapped first, then the pixel and the unsubscribe footer
        are added, so neither of those is itself rewritten.

        Returns:
            (success, provider message id, error message)
        """
        processed = wrap_links_with_tracking(html, tracking_id)
        processed = inject_tracking_pixel(processed, tracking_id)
        processed = add_unsubscribe_link(processed, tracking_id)

        sender = f"{from_name or settings.marketing_from_name} <{from_email or settings.marketing_from_email}>"
        params = {
            "from": sender,
            "to": [to],
            "subject": subject,
            "html": processed,
            "headers": {
                "X-Entity-Ref-ID": str(tracking_id),
                "List-Unsubscribe": f"<{get_base_url()}/api/marketing/unsubscribe/{tracking_id}>",
            },
        }

        try:
            result = resend.Emails.send(params)
            message_id = result.get("id") if isinstance(result, dict) else getattr(result, "id", None)
            logger.info(f"📧 Marketing email sent to {to} (id={message_id})")
            return True, message_id, None
        except Exception as e:
            logger.error(f"❌ Marketing email to {to} failed: {e}")
            return False, None, str(e)

    def _resolve_recipients(self, db: Session, campaign) -> List:
        """Opted-in contacts with an email address targeted by the campaign."""
        consent = {"hasEmail": True, "optInEmail": True}
        if campaign.target_all:
            return get_contacts_by_filters(db, campaign.user_id, consent)

        if campaign.segment_id:
            segment = get_segment(db, campaign.user_id, campaign.segment_id)
            filters = dict(segment.filters or {}) if segment else {}
            return get_contacts_by_filters(db, campaign.user_id, {**filters, **consent})

        filters = dict(campaign.custom_filters or {})
        return get_contacts_by_filters(db, campaign.user_id, {**filters, **consent})

    async def send_campaign_to_recipients(
        self,
        db: Session,
        campaign_id: uuid.UUID,
        user_id: uuid.UUID,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> Dict[str, Any]:
        """
        Deliver an email campaign to every targeted contact.

        Recipients are processed sequentially with a short pause between
        sends; a failure on one recipient is recorded and the loop moves on.

        Args:
            db: Database session
            campaign_id: Campaign to send
            user_id: Owner of the campaign
            on_progress: Optional callback(processed, total)

        Returns:
            {"sent": int, "failed": int, "errors": [str]}

        Raises:
            ValueError: Unknown campaign or campaign without an email channel
        """
        campaign = get_campaign(db, user_id, campaign_id)
        if not campaign:
            raise ValueError("Campaign not found")
        if campaign.channel not in EMAIL_CHANNELS:
            raise ValueError("Campaign is not configured for email")

        contacts = self._resolve_recipients(db, campaign)
        total = len(contacts)
        update_campaign(db, campaign.id, {
            "status": MarketingCampaignStatus.SENDING,
            "sending_started_at": datetime.utcnow(),
            "total_recipients": total,
        })
        logger.info(f"🚀 Sending campaign {campaign.id} to {total} recipients")

        sent, failed, errors = 0, 0, []

        for index, contact in enumerate(contacts, start=1):
            try:
                send = create_send(db, {
                    "campaign_id": campaign.id,
                    "contact_id": contact.id,
                    "channel": "email",
                    "status": MarketingSendStatus.PENDING,
                    "recipient_email": contact.email,
                })

                variables = {
                    "prenom": contact.first_name,
                    "nom": contact.last_name,
                    "email": contact.email,
                    "telephone": contact.phone,
                }
                subject = replace_variables(campaign.email_subject or "", variables)
                content = replace_variables(campaign.email_content or "", variables)
                if "<html" not in content.lower():
                    content = create_base_email_template(content)

                success, message_id, error = self.send_marketing_email(
                    to=contact.email,
                    subject=subject,
                    html=content,
                    tracking_id=str(send.tracking_id),
                )

                if success:
                    update_send(db, send.id, {
                        "status": MarketingSendStatus.SENT,
                        "sent_at": datetime.utcnow(),
                        "external_message_id": message_id,
                    })
                    increment_contact_stats(db, contact.id, "sent")
                    sent += 1
                else:
                    update_send(db, send.id, {
                        "status": MarketingSendStatus.FAILED,
                        "failed_at": datetime.utcnow(),
                        "error_message": error,
                    })
                    failed += 1
                    errors.append(f"{contact.email}: {error}")

                if on_progress:
                    on_progress(index, total)
            except Exception as e:
                db.rollback()
                logger.error(f"❌ Error sending campaign {campaign.id} to {contact.email}: {e}")
                failed += 1
                errors.append(f"{contact.email}: {e}")
            finally:
                await asyncio.sleep(settings.marketing_send_delay_seconds)

        update_campaign(db, campaign.id, {
            "status": MarketingCampaignStatus.SENT,
            "sent_at": datetime.utcnow(),
            "total_sent": sent,
            "total_failed": failed,
        })
        logger.info(f"✅ Campaign {campaign.id} finished: {sent} sent, {failed} failed")
        return {"sent": sent, "failed": failed, "errors": errors}


# Global marketing email service instance
marketing_email_service = MarketingEmailService()
