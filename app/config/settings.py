"""
Configuration settings for the SpeedAI backend.
Centralizes all environment variables and configuration constants.
"""

import re
from typing import Optional
from pydantic import validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server Configuration
    port: int = 5000
    log_level: str = "INFO"

    # Database Configuration
    database_url: str = "sqlite:///./speedai.db"
    sql_echo: bool = False

    # JWT Configuration
    jwt_secret_key: str = "your-secret-key-here"  # In production, use a secure secret key
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 10080  # 7 days

    # Account lifecycle
    verification_token_expire_hours: int = 24
    reset_token_expire_hours: int = 1
    trial_days: int = 30

    # Public URLs
    frontend_url: Optional[str] = None
    replit_domains: Optional[str] = None
    replit_dev_domain: Optional[str] = None

    # Transactional email (Gmail SMTP)
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None

    # Marketing email (Resend)
    resend_api_key: Optional[str] = None
    marketing_from_name: str = "SpeedAI Marketing"
    marketing_from_email: str = "marketing@speedai.fr"
    marketing_send_delay_seconds: float = 0.1

    # Twilio Configuration
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_from_number: Optional[str] = None

    # Stripe Configuration
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    # Review platforms
    tripadvisor_api_key: Optional[str] = None
    review_sync_delay_seconds: float = 1.0

    # Dashboard statistics policy overrides (defaults live in analytics_service)
    minutes_per_call: Optional[int] = None
    average_client_value: Optional[int] = None

    # Background jobs
    scheduler_enabled: bool = False
    scheduler_interval_seconds: int = 300

    @validator('frontend_url')
    def clean_frontend_url(cls, v: Optional[str]) -> Optional[str]:
        """Strip trailing slashes from the frontend URL."""
        if v is None:
            return v
        return re.sub(r'/+$', '', v.strip()) or None

    @validator('twilio_from_number')
    def validate_phone_number(cls, v: Optional[str]) -> Optional[str]:
        """Validate phone number format."""
        if not v:
            return v
        if not v.startswith('+'):
            raise ValueError('Phone number must start with +')
        if not v[1:].replace('-', '').replace(' ', '').isdigit():
            raise ValueError('Phone number must contain only digits after the +')
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()


def get_base_url() -> str:
    """
    Resolve the public base URL used in outbound links.

    Order: FRONTEND_URL, then REPLIT_DOMAINS (a *.replit.app domain wins over
    the first listed one), then REPLIT_DEV_DOMAIN, then localhost.

    Returns:
        str: Absolute URL without trailing slash
    """
    if settings.frontend_url:
        return settings.frontend_url

    if settings.replit_domains:
        domains = [d.strip() for d in settings.replit_domains.split(',') if d.strip()]
        if domains:
            production = next((d for d in domains if '.replit.app' in d), None)
            return f"https://{production or domains[0]}"

    if settings.replit_dev_domain:
        return f"https://{settings.replit_dev_domain}"

    return "http://localhost:5000"
