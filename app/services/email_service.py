"""
Transactional email service (Gmail SMTP).
Sends verification, password reset, review request and card guarantee emails.
"""

import logging
import re
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from app.config.settings import settings, get_base_url

logger = logging.getLogger(__name__)


class EmailConfigurationError(RuntimeError):
    """SMTP credentials are not configured."""


def _html_to_text(html: str) -> str:
    text = re.sub(r"<br\s*/?>", "\n", html, flags=re.I)
    text = re.sub(r"<[^>]+>", "", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def _layout(title: str, body: str, brand_color: str = "#C8B88A") -> str:
    return f"""<!DOCTYPE html>
<html lang="fr">
<head><meta charset="UTF-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"></head>
<body style="margin:0;padding:0;background:#f5f5f5;font-family:Arial,sans-serif;">
  <div style="max-width:600px;margin:0 auto;background:#ffffff;">
    <div style="background:#1a1a2e;padding:24px;text-align:center;">
      <h1 style="color:{brand_color};margin:0;font-size:22px;">{title}</h1>
    </div>
    <div style="padding:32px;color:#333333;line-height:1.6;">{body}</div>
    <div style="padding:16px;text-align:center;color:#999999;font-size:12px;">SpeedAI</div>
  </div>
</body>
</html>"""


def _button(url: str, label: str, color: str = "#C8B88A") -> str:
    return (
        f'<p style="text-align:center;margin:32px 0;">'
        f'<a href="{url}" style="background:{color};color:#1a1a2e;padding:14px 28px;'
        f'text-decoration:none;border-radius:6px;font-weight:bold;">{label}</a></p>'
    )


class EmailService:
    """Service class for SMTP email delivery."""

    def __init__(self):
        """Read SMTP settings."""
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.user = settings.smtp_user
        self.password = settings.smtp_password

    def send_email(
        self,
        to_address: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
        from_name: str = "SpeedAI",
    ) -> None:
        """
        Send one email.

        Args:
            to_address: Recipient
            subject: Subject line
            html: HTML body
            text: Plain-text body, derived from the HTML when omitted
            from_name: Display name of the sender

        Raises:
            EmailConfigurationError: SMTP credentials are missing
            smtplib.SMTPException: Delivery failed
        """
        if not self.user or not self.password:
            raise EmailConfigurationError("Configuration email manquante")

        msg = MIMEMultipart("alternative")
        msg["From"] = f"\"{from_name}\" <{self.user}>"
        msg["To"] = to_address
        msg["Subject"] = subject
        msg.attach(MIMEText(text or _html_to_text(html), "plain", "utf-8"))
        msg.attach(MIMEText(html, "html", "utf-8"))

        if self.port == 587:
            with smtplib.SMTP(self.host, self.port) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(self.user, self.password)
                server.send_message(msg)
        else:
            with smtplib.SMTP_SSL(self.host, self.port) as server:
                server.login(self.user, self.password)
                server.send_message(msg)

        logger.info(f"📧 Email sent to {to_address}: {subject}")

    def send_verification_email(self, to_address: str, token: str) -> None:
        """Send the account verification link."""
        link = f"{get_base_url()}/verify-email?token={token}"
        body = (
            "<p>Bienvenue sur SpeedAI !</p>"
            "<p>Merci de confirmer votre adresse email pour activer votre compte.</p>"
            f"{_button(link, 'Vérifier mon email')}"
            "<p>Ce lien expire dans 24 heures.</p>"
        )
        self.send_email(to_address, "Vérifiez votre adresse email - SpeedAI", _layout("Vérification de votre email", body))

    def send_password_reset_email(self, to_address: str, token: str) -> None:
        """Send the password reset link."""
        link = f"{get_base_url()}/reset-password?token={token}"
        body = (
            "<p>Vous avez demandé la réinitialisation de votre mot de passe.</p>"
            f"{_button(link, 'Réinitialiser mon mot de passe')}"
            "<p>Ce lien expire dans 1 heure. Si vous n'êtes pas à l'origine de cette demande, ignorez cet email.</p>"
        )
        self.send_email(to_address, "Réinitialisation de votre mot de passe - SpeedAI", _layout("Mot de passe oublié", body))

    def send_review_request_email(
        self,
        to_address: str,
        customer_name: str,
        company_name: str,
        review_link: str,
        subject: Optional[str] = None,
        message: Optional[str] = None,
        incentive_message: Optional[str] = None,
    ) -> None:
        """Ask a customer for a review."""
        intro = message or f"Merci pour votre visite chez {company_name}. Votre avis compte beaucoup pour nous."
        incentive = (
            f'<p style="background:#faf6ea;padding:12px;border-radius:6px;">🎁 {incentive_message}</p>'
            if incentive_message else ""
        )
        body = (
            f"<p>Bonjour {customer_name},</p>"
            f"<p>{intro}</p>"
            f"{incentive}"
            f"{_button(review_link, 'Laisser un avis')}"
        )
        self.send_email(
            to_address,
            subject or "Partagez votre expérience avec nous !",
            _layout(company_name, body),
            from_name=company_name,
        )

    def send_guarantee_request_email(
        self,
        to_address: str,
        customer_name: str,
        company_name: str,
        validation_url: str,
        reservation_label: str,
        penalty_per_person: int,
        brand_color: str = "#C8B88A",
    ) -> None:
        """Ask a customer to register a card guarantee for a reservation."""
        body = (
            f"<p>Bonjour {customer_name},</p>"
            f"<p>Pour confirmer votre réservation du {reservation_label}, merci d'enregistrer une empreinte bancaire.</p>"
            f"<p>Aucun montant n'est débité. En cas d'absence sans annulation, une pénalité de "
            f"{penalty_per_person} € par personne pourra être appliquée.</p>"
            f"{_button(validation_url, 'Confirmer ma réservation', brand_color)}"
        )
        self.send_email(
            to_address,
            f"Confirmez votre réservation - {company_name}",
            _layout(company_name, body, brand_color),
            from_name=company_name,
        )


# Global email service instance
email_service = EmailService()
