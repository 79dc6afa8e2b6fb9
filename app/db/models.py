"""
SQLAlchemy models for database tables.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, Boolean, Text, Integer, ForeignKey, Enum, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
import enum

from app.db.database import Base


def _iso(value):
    return value.isoformat() if value else None


class UserRole(enum.Enum):
    """Platform roles."""
    USER = "user"
    ADMIN = "admin"


class AccountStatus(enum.Enum):
    """Account lifecycle status."""
    TRIAL = "trial"
    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class CallStatus(enum.Enum):
    """Call status enumeration."""
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"
    NO_ANSWER = "no_answer"


class NotificationType(enum.Enum):
    """Notification types shown in the dashboard."""
    DAILY_SUMMARY = "daily_summary"
    FAILED_CALLS = "failed_calls"
    ACTIVE_CALL = "active_call"
    PASSWORD_CHANGED = "password_changed"
    PAYMENT_UPDATED = "payment_updated"
    SUBSCRIPTION_RENEWED = "subscription_renewed"
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    SUBSCRIPTION_EXPIRING_SOON = "subscription_expiring_soon"
    MONTHLY_REPORT_READY = "monthly_report_ready"


class MarketingCampaignStatus(enum.Enum):
    """Marketing campaign status."""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class MarketingSendStatus(enum.Enum):
    """Delivery status of one campaign message."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    OPENED = "opened"
    CLICKED = "clicked"
    UNSUBSCRIBED = "unsubscribed"


class ReviewRequestStatus(enum.Enum):
    """Review request status."""
    PENDING = "pending"
    SCHEDULED = "scheduled"
    SENT = "sent"
    CLICKED = "clicked"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"


class SyncLogStatus(enum.Enum):
    """Review sync run status."""
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class GuaranteeSessionStatus(enum.Enum):
    """Card guarantee session status."""
    PENDING = "pending"
    VALIDATED = "validated"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NOSHOW_CHARGED = "noshow_charged"
    NOSHOW_FAILED = "noshow_failed"


class NoshowChargeStatus(enum.Enum):
    """No-show penalty charge status."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REQUIRES_ACTION = "requires_action"


class User(Base):
    """Model for users table. One user is one tenant."""

    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.USER)

    # Email verification and password reset
    is_verified = Column(Boolean, default=False, nullable=False)
    verification_token = Column(String, nullable=True, index=True)
    verification_token_expiry = Column(DateTime, nullable=True)
    reset_password_token = Column(String, nullable=True, index=True)
    reset_password_token_expiry = Column(DateTime, nullable=True)

    # Billing
    stripe_customer_id = Column(String, nullable=True)
    stripe_subscription_id = Column(String, nullable=True)
    subscription_status = Column(String, nullable=True)  # Stripe status: active, past_due, canceled...
    subscription_current_period_end = Column(DateTime, nullable=True)
    plan = Column(String, nullable=True)

    # Trial window
    countdown_start = Column(DateTime, nullable=True)
    countdown_end = Column(DateTime, nullable=True)

    api_key_hash = Column(String, unique=True, nullable=True)
    account_status = Column(Enum(AccountStatus), nullable=False, default=AccountStatus.TRIAL)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    calls = relationship("Call", back_populates="user", cascade="all, delete-orphan")
    notifications = relationship("Notification", cascade="all, delete-orphan")
    notification_preferences = relationship("NotificationPreferences", cascade="all, delete-orphan")
    monthly_reports = relationship("MonthlyReport", cascade="all, delete-orphan")
    marketing_contacts = relationship("MarketingContact", cascade="all, delete-orphan")
    marketing_segments = relationship("MarketingSegment", cascade="all, delete-orphan")
    marketing_campaigns = relationship("MarketingCampaign", cascade="all, delete-orphan")
    review_config = relationship("ReviewConfig", cascade="all, delete-orphan")
    review_incentives = relationship("ReviewIncentive", cascade="all, delete-orphan")
    review_requests = relationship("ReviewRequest", cascade="all, delete-orphan")
    reviews = relationship("Review", cascade="all, delete-orphan")
    review_alerts = relationship("ReviewAlert", cascade="all, delete-orphan")
    review_sources = relationship("ReviewSource", cascade="all, delete-orphan")
    guarantee_config = relationship("GuaranteeConfig", cascade="all, delete-orphan")
    guarantee_sessions = relationship("GuaranteeSession", cascade="all, delete-orphan")
    noshow_charges = relationship("NoshowCharge", cascade="all, delete-orphan")

    def __repr__(self):
        """String representation of the model."""
        return f"<User(id='{self.id}', email='{self.email}', role='{self.role}')>"

    def to_dict(self):
        """Public representation: no password, tokens or key hash."""
        return {
            "id": str(self.id),
            "email": self.email,
            "role": self.role.value if self.role else None,
            "isVerified": self.is_verified,
            "stripeCustomerId": self.stripe_customer_id,
            "subscriptionStatus": self.subscription_status,
            "subscriptionCurrentPeriodEnd": _iso(self.subscription_current_period_end),
            "plan": self.plan,
            "countdownStart": _iso(self.countdown_start),
            "countdownEnd": _iso(self.countdown_end),
            "accountStatus": self.account_status.value if self.account_status else None,
            "hasApiKey": self.api_key_hash is not None,
            "createdAt": _iso(self.created_at),
        }


class Call(Base):
    """Model for calls table. Rows are written by the voice agent webhook."""

    __tablename__ = "calls"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    phone_number = Column(String, nullable=False)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=True)
    duration = Column(Integer, nullable=True)  # seconds
    status = Column(Enum(CallStatus), nullable=False)

    # Voice agent identifiers
    call_id = Column(String, nullable=True)
    agent_id = Column(String, nullable=True, index=True)
    event_type = Column(String, nullable=True)

    # Outcome
    call_answered = Column(Boolean, nullable=True)
    is_out_of_scope = Column(Boolean, nullable=True)
    conversion_result = Column(String, nullable=True)  # converted / not_converted; null on legacy rows
    call_successful = Column(Boolean, nullable=True)
    disconnection_reason = Column(String, nullable=True)

    summary = Column(Text, nullable=True)
    transcript = Column(Text, nullable=True)
    tags = Column(JSON, nullable=True)

    # Appointment
    appointment_date = Column(DateTime, nullable=True)
    appointment_hour = Column(Integer, nullable=True)
    appointment_day_of_week = Column(String, nullable=True)
    booking_delay_days = Column(Integer, nullable=True)
    is_last_minute = Column(Boolean, nullable=True)
    group_category = Column(String, nullable=True)

    # Client
    client_name = Column(String, nullable=True)
    client_email = Column(String, nullable=True)
    client_mood = Column(String, nullable=True)
    is_returning_client = Column(Boolean, nullable=True)

    # Business context
    agency_name = Column(String, nullable=True)
    company_name = Column(String, nullable=True)
    service_type = Column(String, nullable=True)
    nb_personnes = Column(Integer, nullable=True)

    # Quality metrics
    booking_confidence = Column(Integer, nullable=True)
    call_quality = Column(String, nullable=True)
    language_detected = Column(String, nullable=True)

    # Conversation analysis
    questions_asked = Column(JSON, nullable=True)
    objections = Column(JSON, nullable=True)
    keywords = Column(JSON, nullable=True)
    pain_points = Column(JSON, nullable=True)
    compliments = Column(JSON, nullable=True)
    upsell_accepted = Column(Boolean, nullable=True)
    competitor_mentioned = Column(Boolean, nullable=True)
    preferences = Column(JSON, nullable=True)
    special_occasion = Column(String, nullable=True)

    # Modifications and cancellations
    original_date = Column(String, nullable=True)
    original_time = Column(String, nullable=True)
    modification_reason = Column(String, nullable=True)
    cancellation_reason = Column(String, nullable=True)
    cancellation_time = Column(String, nullable=True)

    # Technical
    calendar_id = Column(String, nullable=True)
    timezone = Column(String, nullable=True)
    recording_url = Column(String, nullable=True)
    collected_at = Column(DateTime, nullable=True)

    email_sent = Column(Boolean, default=False)
    call_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="calls")

    def __repr__(self):
        """String representation of the model."""
        return f"<Call(id='{self.id}', phone_number='{self.phone_number}', status='{self.status}')>"

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "userId": str(self.user_id),
            "phoneNumber": self.phone_number,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "duration": self.duration,
            "status": self.status.value if self.status else None,
            "callId": self.call_id,
            "agentId": self.agent_id,
            "eventType": self.event_type,
            "callAnswered": self.call_answered,
            "isOutOfScope": self.is_out_of_scope,
            "conversionResult": self.conversion_result,
            "callSuccessful": self.call_successful,
            "disconnectionReason": self.disconnection_reason,
            "summary": self.summary,
            "transcript": self.transcript,
            "tags": self.tags or [],
            "appointmentDate": _iso(self.appointment_date),
            "appointmentHour": self.appointment_hour,
            "appointmentDayOfWeek": self.appointment_day_of_week,
            "bookingDelayDays": self.booking_delay_days,
            "isLastMinute": self.is_last_minute,
            "groupCategory": self.group_category,
            "clientName": self.client_name,
            "clientEmail": self.client_email,
            "clientMood": self.client_mood,
            "isReturningClient": self.is_returning_client,
            "agencyName": self.agency_name,
            "companyName": self.company_name,
            "serviceType": self.service_type,
            "nbPersonnes": self.nb_personnes,
            "bookingConfidence": self.booking_confidence,
            "callQuality": self.call_quality,
            "languageDetected": self.language_detected,
            "questionsAsked": self.questions_asked or [],
            "objections": self.objections or [],
            "keywords": self.keywords or [],
            "painPoints": self.pain_points or [],
            "compliments": self.compliments or [],
            "upsellAccepted": self.upsell_accepted,
            "competitorMentioned": self.competitor_mentioned,
            "preferences": self.preferences or [],
            "specialOccasion": self.special_occasion,
            "originalDate": self.original_date,
            "originalTime": self.original_time,
            "modificationReason": self.modification_reason,
            "cancellationReason": self.cancellation_reason,
            "cancellationTime": self.cancellation_time,
            "calendarId": self.calendar_id,
            "timezone": self.timezone,
            "recordingUrl": self.recording_url,
            "collectedAt": _iso(self.collected_at),
            "emailSent": self.email_sent,
            "metadata": self.call_metadata,
            "createdAt": _iso(self.created_at),
        }


class Notification(Base):
    """Model for dashboard notifications."""

    __tablename__ = "notifications"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(Enum(NotificationType), nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    notification_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        """String representation of the model."""
        return f"<Notification(id='{self.id}', type='{self.type}', is_read={self.is_read})>"

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "userId": str(self.user_id),
            "type": self.type.value if self.type else None,
            "title": self.title,
            "message": self.message,
            "isRead": self.is_read,
            "metadata": self.notification_metadata,
            "createdAt": _iso(self.created_at),
        }


class NotificationPreferences(Base):
    """Per-user switches for notification categories."""

    __tablename__ = "notification_preferences"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), primary_key=True)
    daily_summary_enabled = Column(Boolean, default=True, nullable=False)
    failed_calls_enabled = Column(Boolean, default=True, nullable=False)
    active_call_enabled = Column(Boolean, default=True, nullable=False)
    subscription_alerts_enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "userId": str(self.user_id),
            "dailySummaryEnabled": self.daily_summary_enabled,
            "failedCallsEnabled": self.failed_calls_enabled,
            "activeCallEnabled": self.active_call_enabled,
            "subscriptionAlertsEnabled": self.subscription_alerts_enabled,
            "updatedAt": _iso(self.updated_at),
        }


class MonthlyReport(Base):
    """Model for generated monthly activity reports."""

    __tablename__ = "monthly_reports"
    __table_args__ = (UniqueConstraint("user_id", "period_start", name="uq_monthly_report_period"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    subscription_renewal_at = Column(DateTime, nullable=True)
    metrics = Column(Text, nullable=False)  # JSON string
    pdf_path = Column(String, nullable=True)
    pdf_checksum = Column(String, nullable=True)
    generated_at = Column(DateTime, default=datetime.utcnow)
    emailed_at = Column(DateTime, nullable=True)
    notification_id = Column(Uuid(as_uuid=True), nullable=True)
    retry_count = Column(Integer, default=0)

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "userId": str(self.user_id),
            "periodStart": _iso(self.period_start),
            "periodEnd": _iso(self.period_end),
            "subscriptionRenewalAt": _iso(self.subscription_renewal_at),
            "metrics": self.metrics,
            "hasPdf": bool(self.pdf_path),
            "generatedAt": _iso(self.generated_at),
            "emailedAt": _iso(self.emailed_at),
        }


class MarketingContact(Base):
    """Model for marketing contacts."""

    __tablename__ = "marketing_contacts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=True, index=True)
    phone = Column(String, nullable=True, index=True)
    source = Column(String, default="manual")  # manual, import, speedai_call, website...
    tags = Column(JSON, nullable=True)

    # Consent (opt-in)
    opt_in_email = Column(Boolean, default=False, nullable=False)
    opt_in_sms = Column(Boolean, default=False, nullable=False)
    consent_email_at = Column(DateTime, nullable=True)
    consent_sms_at = Column(DateTime, nullable=True)
    consent_withdrawn_at = Column(DateTime, nullable=True)

    # Engagement stats
    total_emails_sent = Column(Integer, default=0)
    total_emails_opened = Column(Integer, default=0)
    total_emails_clicked = Column(Integer, default=0)
    last_email_sent_at = Column(DateTime, nullable=True)
    visits_count = Column(Integer, default=0)
    last_visit_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    consent_history = relationship("MarketingConsentHistory", back_populates="contact", cascade="all, delete-orphan")
    sends = relationship("MarketingSend", back_populates="contact", cascade="all, delete-orphan")

    def __repr__(self):
        """String representation of the model."""
        return f"<MarketingContact(id='{self.id}', email='{self.email}', phone='{self.phone}')>"

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "userId": str(self.user_id),
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "source": self.source,
            "tags": self.tags or [],
            "optInEmail": self.opt_in_email,
            "optInSms": self.opt_in_sms,
            "consentEmailAt": _iso(self.consent_email_at),
            "consentSmsAt": _iso(self.consent_sms_at),
            "consentWithdrawnAt": _iso(self.consent_withdrawn_at),
            "totalEmailsSent": self.total_emails_sent or 0,
            "totalEmailsOpened": self.total_emails_opened or 0,
            "totalEmailsClicked": self.total_emails_clicked or 0,
            "lastEmailSentAt": _iso(self.last_email_sent_at),
            "visitsCount": self.visits_count or 0,
            "lastVisitAt": _iso(self.last_visit_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class MarketingConsentHistory(Base):
    """Audit trail of consent changes."""

    __tablename__ = "marketing_consent_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    contact_id = Column(Uuid(as_uuid=True), ForeignKey("marketing_contacts.id"), nullable=False, index=True)
    action = Column(String, nullable=False)  # opt_in, opt_out
    channel = Column(String, nullable=False)  # email, sms, both
    source = Column(String, nullable=False)  # admin, import, unsubscribe_link
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    contact = relationship("MarketingContact", back_populates="consent_history")

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "contactId": str(self.contact_id),
            "action": self.action,
            "channel": self.channel,
            "source": self.source,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "createdAt": _iso(self.created_at),
        }


class MarketingSegment(Base):
    """Saved contact filter."""

    __tablename__ = "marketing_segments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    filters = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "userId": str(self.user_id),
            "name": self.name,
            "description": self.description,
            "filters": self.filters or {},
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class MarketingCampaign(Base):
    """Model for email/SMS marketing campaigns."""

    __tablename__ = "marketing_campaigns"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    type = Column(String, default="promotional")  # promotional, newsletter, event, reactivation
    status = Column(Enum(MarketingCampaignStatus), nullable=False, default=MarketingCampaignStatus.DRAFT)
    channel = Column(String, nullable=False, default="email")  # email, sms, both

    email_subject = Column(String, nullable=True)
    email_content = Column(Text, nullable=True)
    email_preview_text = Column(String, nullable=True)
    sms_content = Column(Text, nullable=True)

    # Targeting
    segment_id = Column(Uuid(as_uuid=True), ForeignKey("marketing_segments.id", ondelete="SET NULL"), nullable=True)
    target_all = Column(Boolean, default=False)
    custom_filters = Column(JSON, nullable=True)

    # Scheduling
    scheduled_at = Column(DateTime, nullable=True)
    sending_started_at = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)

    # Aggregate stats
    total_recipients = Column(Integer, default=0)
    total_sent = Column(Integer, default=0)
    total_failed = Column(Integer, default=0)
    total_opened = Column(Integer, default=0)
    total_clicked = Column(Integer, default=0)
    total_unsubscribed = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    sends = relationship("MarketingSend", back_populates="campaign", cascade="all, delete-orphan")

    def __repr__(self):
        """String representation of the model."""
        return f"<MarketingCampaign(id='{self.id}', name='{self.name}', status='{self.status}')>"

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "userId": str(self.user_id),
            "name": self.name,
            "type": self.type,
            "status": self.status.value if self.status else None,
            "channel": self.channel,
            "emailSubject": self.email_subject,
            "emailContent": self.email_content,
            "emailPreviewText": self.email_preview_text,
            "smsContent": self.sms_content,
            "segmentId": str(self.segment_id) if self.segment_id else None,
            "targetAll": self.target_all,
            "customFilters": self.custom_filters,
            "scheduledAt": _iso(self.scheduled_at),
            "sendingStartedAt": _iso(self.sending_started_at),
            "sentAt": _iso(self.sent_at),
            "totalRecipients": self.total_recipients or 0,
            "totalSent": self.total_sent or 0,
            "totalFailed": self.total_failed or 0,
            "totalOpened": self.total_opened or 0,
            "totalClicked": self.total_clicked or 0,
            "totalUnsubscribed": self.total_unsubscribed or 0,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class MarketingSend(Base):
    """One message of a campaign to one contact."""

    __tablename__ = "marketing_sends"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id = Column(Uuid(as_uuid=True), ForeignKey("marketing_campaigns.id"), nullable=False, index=True)
    contact_id = Column(Uuid(as_uuid=True), ForeignKey("marketing_contacts.id"), nullable=False, index=True)
    channel = Column(String, nullable=False)  # email, sms
    status = Column(Enum(MarketingSendStatus), nullable=False, default=MarketingSendStatus.PENDING)
    tracking_id = Column(Uuid(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4, index=True)
    recipient_email = Column(String, nullable=True)
    recipient_phone = Column(String, nullable=True)
    external_message_id = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)

    sent_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)
    opened_at = Column(DateTime, nullable=True)
    clicked_at = Column(DateTime, nullable=True)
    click_count = Column(Integer, default=0)
    last_clicked_url = Column(Text, nullable=True)
    unsubscribed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    campaign = relationship("MarketingCampaign", back_populates="sends")
    contact = relationship("MarketingContact", back_populates="sends")
    click_events = relationship("MarketingClickEvent", back_populates="send", cascade="all, delete-orphan")

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "campaignId": str(self.campaign_id),
            "contactId": str(self.contact_id),
            "channel": self.channel,
            "status": self.status.value if self.status else None,
            "trackingId": str(self.tracking_id),
            "recipientEmail": self.recipient_email,
            "recipientPhone": self.recipient_phone,
            "externalMessageId": self.external_message_id,
            "errorMessage": self.error_message,
            "sentAt": _iso(self.sent_at),
            "failedAt": _iso(self.failed_at),
            "openedAt": _iso(self.opened_at),
            "clickedAt": _iso(self.clicked_at),
            "clickCount": self.click_count or 0,
            "lastClickedUrl": self.last_clicked_url,
            "unsubscribedAt": _iso(self.unsubscribed_at),
            "createdAt": _iso(self.created_at),
        }


class MarketingClickEvent(Base):
    """Recorded click on a tracked link."""

    __tablename__ = "marketing_click_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    send_id = Column(Uuid(as_uuid=True), ForeignKey("marketing_sends.id"), nullable=False, index=True)
    url = Column(Text, nullable=False)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    device = Column(String, nullable=True)
    browser = Column(String, nullable=True)
    os = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    send = relationship("MarketingSend", back_populates="click_events")


class ReviewConfig(Base):
    """Per-user review request settings."""

    __tablename__ = "review_config"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, unique=True)
    enabled = Column(Boolean, default=True)

    # Timing
    timing_mode = Column(String, default="smart")  # smart, fixed_delay, fixed_time
    fixed_delay_hours = Column(Integer, default=24)
    fixed_time = Column(String, default="18:00")
    send_window_start = Column(String, default="10:00")
    send_window_end = Column(String, default="20:00")
    avoid_weekends = Column(Boolean, default=False)

    # Messages
    company_name = Column(String, nullable=True)
    sms_enabled = Column(Boolean, default=True)
    sms_message = Column(String, nullable=True)
    email_subject = Column(String, nullable=True)
    email_message = Column(Text, nullable=True)

    # Platform links
    google_place_id = Column(String, nullable=True)
    google_review_url = Column(String, nullable=True)
    tripadvisor_url = Column(String, nullable=True)
    facebook_page_url = Column(String, nullable=True)
    pages_jaunes_url = Column(String, nullable=True)
    doctolib_url = Column(String, nullable=True)
    yelp_url = Column(String, nullable=True)
    platforms_priority = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def review_links(self):
        """Configured platform links keyed by platform name."""
        links = {
            "google": self.google_review_url,
            "tripadvisor": self.tripadvisor_url,
            "facebook": self.facebook_page_url,
            "pagesJaunes": self.pages_jaunes_url,
            "doctolib": self.doctolib_url,
            "yelp": self.yelp_url,
        }
        return {platform: url for platform, url in links.items() if url}

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "userId": str(self.user_id),
            "enabled": self.enabled,
            "timingMode": self.timing_mode,
            "fixedDelayHours": self.fixed_delay_hours,
            "fixedTime": self.fixed_time,
            "sendWindowStart": self.send_window_start,
            "sendWindowEnd": self.send_window_end,
            "avoidWeekends": self.avoid_weekends,
            "companyName": self.company_name,
            "smsEnabled": self.sms_enabled,
            "smsMessage": self.sms_message,
            "emailSubject": self.email_subject,
            "emailMessage": self.email_message,
            "googlePlaceId": self.google_place_id,
            "googleReviewUrl": self.google_review_url,
            "tripadvisorUrl": self.tripadvisor_url,
            "facebookPageUrl": self.facebook_page_url,
            "pagesJaunesUrl": self.pages_jaunes_url,
            "doctolibUrl": self.doctolib_url,
            "yelpUrl": self.yelp_url,
            "platformsPriority": self.platforms_priority or [],
            "updatedAt": _iso(self.updated_at),
        }


class ReviewIncentive(Base):
    """Reward offered to customers who leave a review."""

    __tablename__ = "review_incentives"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False)  # percentage, fixed_amount, free_item, lottery, loyalty_points, custom
    percentage_value = Column(Integer, nullable=True)
    fixed_amount_value = Column(Integer, nullable=True)  # cents
    free_item_name = Column(String, nullable=True)
    lottery_prize = Column(String, nullable=True)
    loyalty_points_value = Column(Integer, nullable=True)
    custom_description = Column(Text, nullable=True)
    display_message = Column(String, nullable=False)
    validity_days = Column(Integer, default=30)
    single_use = Column(Boolean, default=True)
    minimum_purchase = Column(Integer, nullable=True)  # cents
    is_active = Column(Boolean, default=True)
    is_default = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "userId": str(self.user_id),
            "type": self.type,
            "percentageValue": self.percentage_value,
            "fixedAmountValue": self.fixed_amount_value,
            "freeItemName": self.free_item_name,
            "lotteryPrize": self.lottery_prize,
            "loyaltyPointsValue": self.loyalty_points_value,
            "customDescription": self.custom_description,
            "displayMessage": self.display_message,
            "validityDays": self.validity_days,
            "singleUse": self.single_use,
            "minimumPurchase": self.minimum_purchase,
            "isActive": self.is_active,
            "isDefault": self.is_default,
            "createdAt": _iso(self.created_at),
        }


class ReviewRequest(Base):
    """Request sent to a customer asking for a review."""

    __tablename__ = "review_requests"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    customer_name = Column(String, nullable=False)
    customer_email = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    reservation_id = Column(String, nullable=True)
    reservation_date = Column(DateTime, nullable=True)
    reservation_time = Column(String, nullable=True)

    scheduled_at = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    send_method = Column(String, default="both")  # sms, email, both

    tracking_token = Column(String, unique=True, nullable=False, index=True)
    link_clicked_at = Column(DateTime, nullable=True)
    platform_clicked = Column(String, nullable=True)
    review_confirmed_at = Column(DateTime, nullable=True)
    review_confirmed_platform = Column(String, nullable=True)

    incentive_id = Column(Uuid(as_uuid=True), ForeignKey("review_incentives.id", ondelete="SET NULL"), nullable=True)
    promo_code = Column(String, nullable=True)
    promo_code_used_at = Column(DateTime, nullable=True)

    status = Column(Enum(ReviewRequestStatus), nullable=False, default=ReviewRequestStatus.PENDING)
    created_at = Column(DateTime, default=datetime.utcnow)

    incentive = relationship("ReviewIncentive")

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "userId": str(self.user_id),
            "customerName": self.customer_name,
            "customerEmail": self.customer_email,
            "customerPhone": self.customer_phone,
            "reservationId": self.reservation_id,
            "reservationDate": _iso(self.reservation_date),
            "reservationTime": self.reservation_time,
            "scheduledAt": _iso(self.scheduled_at),
            "sentAt": _iso(self.sent_at),
            "sendMethod": self.send_method,
            "trackingToken": self.tracking_token,
            "linkClickedAt": _iso(self.link_clicked_at),
            "platformClicked": self.platform_clicked,
            "reviewConfirmedAt": _iso(self.review_confirmed_at),
            "reviewConfirmedPlatform": self.review_confirmed_platform,
            "incentiveId": str(self.incentive_id) if self.incentive_id else None,
            "promoCode": self.promo_code,
            "status": self.status.value if self.status else None,
            "createdAt": _iso(self.created_at),
        }


class Review(Base):
    """Review collected from an external platform."""

    __tablename__ = "reviews"
    __table_args__ = (UniqueConstraint("user_id", "platform", "platform_review_id", name="uq_review_platform_id"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    source_id = Column(Uuid(as_uuid=True), ForeignKey("review_sources.id", ondelete="SET NULL"), nullable=True)
    platform = Column(String, nullable=False)
    platform_review_id = Column(String, nullable=True)
    review_url = Column(String, nullable=True)
    rating = Column(Integer, nullable=False)
    content = Column(Text, nullable=True)
    reviewer_name = Column(String, nullable=True)
    reviewer_avatar_url = Column(String, nullable=True)
    review_date = Column(DateTime, nullable=False)

    response_text = Column(Text, nullable=True)
    response_date = Column(DateTime, nullable=True)
    response_status = Column(String, default="none")  # none, draft, published

    sentiment = Column(String, nullable=True)  # very_positive, positive, neutral, negative, very_negative
    themes = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False)
    is_flagged = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "userId": str(self.user_id),
            "sourceId": str(self.source_id) if self.source_id else None,
            "platform": self.platform,
            "platformReviewId": self.platform_review_id,
            "reviewUrl": self.review_url,
            "rating": self.rating,
            "content": self.content,
            "reviewerName": self.reviewer_name,
            "reviewerAvatarUrl": self.reviewer_avatar_url,
            "reviewDate": _iso(self.review_date),
            "responseText": self.response_text,
            "responseDate": _iso(self.response_date),
            "responseStatus": self.response_status,
            "sentiment": self.sentiment,
            "themes": self.themes or [],
            "isRead": self.is_read,
            "isFlagged": self.is_flagged,
            "createdAt": _iso(self.created_at),
        }


class ReviewAlert(Base):
    """Alert rule for incoming reviews."""

    __tablename__ = "review_alerts"
    __table_args__ = (UniqueConstraint("user_id", "alert_type", name="uq_review_alert_type"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    alert_type = Column(String, nullable=False)  # negative_review, new_5_star, no_response_48h, weekly_report, rating_drop
    is_enabled = Column(Boolean, default=True)
    email_notification = Column(Boolean, default=True)
    sms_notification = Column(Boolean, default=False)
    push_notification = Column(Boolean, default=True)
    threshold_value = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "alertType": self.alert_type,
            "isEnabled": self.is_enabled,
            "emailNotification": self.email_notification,
            "smsNotification": self.sms_notification,
            "pushNotification": self.push_notification,
            "thresholdValue": self.threshold_value,
        }


class ReviewSource(Base):
    """Connected review platform account."""

    __tablename__ = "review_sources"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    platform = Column(String, nullable=False)  # google, facebook, tripadvisor
    display_name = Column(String, nullable=True)
    platform_location_id = Column(String, nullable=True)
    platform_url = Column(String, nullable=True)
    connection_status = Column(String, default="pending")  # pending, connected, error, expired, disconnected
    connection_error = Column(Text, nullable=True)

    # OAuth tokens
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expiry = Column(DateTime, nullable=True)

    last_sync_at = Column(DateTime, nullable=True)
    last_sync_status = Column(String, nullable=True)
    last_sync_error = Column(Text, nullable=True)
    total_reviews_count = Column(Integer, default=0)
    average_rating = Column(Integer, nullable=True)  # rating x 10
    source_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    sync_logs = relationship("ReviewSyncLog", back_populates="source", cascade="all, delete-orphan")

    def __repr__(self):
        """String representation of the model."""
        return f"<ReviewSource(id='{self.id}', platform='{self.platform}', status='{self.connection_status}')>"

    def to_dict(self):
        """Convert model to dictionary. Tokens are never exposed."""
        return {
            "id": str(self.id),
            "platform": self.platform,
            "displayName": self.display_name,
            "platformLocationId": self.platform_location_id,
            "platformUrl": self.platform_url,
            "connectionStatus": self.connection_status,
            "connectionError": self.connection_error,
            "lastSyncAt": _iso(self.last_sync_at),
            "lastSyncStatus": self.last_sync_status,
            "lastSyncError": self.last_sync_error,
            "totalReviewsCount": self.total_reviews_count or 0,
            "averageRating": self.average_rating / 10 if self.average_rating is not None else None,
            "createdAt": _iso(self.created_at),
        }


class ReviewSyncLog(Base):
    """One synchronisation run of a review source."""

    __tablename__ = "review_sync_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    source_id = Column(Uuid(as_uuid=True), ForeignKey("review_sources.id"), nullable=False, index=True)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    status = Column(Enum(SyncLogStatus), nullable=False, default=SyncLogStatus.RUNNING)
    error_message = Column(Text, nullable=True)
    reviews_fetched = Column(Integer, default=0)
    reviews_new = Column(Integer, default=0)
    reviews_updated = Column(Integer, default=0)

    source = relationship("ReviewSource", back_populates="sync_logs")

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "sourceId": str(self.source_id),
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "status": self.status.value if self.status else None,
            "errorMessage": self.error_message,
            "reviewsFetched": self.reviews_fetched or 0,
            "reviewsNew": self.reviews_new or 0,
            "reviewsUpdated": self.reviews_updated or 0,
        }


class GuaranteeConfig(Base):
    """Card guarantee (no-show protection) settings."""

    __tablename__ = "guarantee_config"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, unique=True)
    enabled = Column(Boolean, default=False)
    stripe_account_id = Column(String, nullable=True)  # Stripe Connect account

    penalty_amount = Column(Integer, default=30)  # euros per person
    cancellation_delay = Column(Integer, default=24)  # hours
    apply_to = Column(String, default="all")  # all, min_persons, weekend
    min_persons = Column(Integer, default=1)

    sms_enabled = Column(Boolean, default=False)
    auto_send_email_on_create = Column(Boolean, default=True)
    auto_send_sms_on_create = Column(Boolean, default=False)

    # Branding
    logo_url = Column(String, nullable=True)
    brand_color = Column(String, default="#C8B88A")
    sender_email = Column(String, nullable=True)
    terms_url = Column(String, nullable=True)
    company_name = Column(String, nullable=True)
    company_address = Column(String, nullable=True)
    company_phone = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "userId": str(self.user_id),
            "enabled": self.enabled,
            "stripeAccountId": self.stripe_account_id,
            "penaltyAmount": self.penalty_amount,
            "cancellationDelay": self.cancellation_delay,
            "applyTo": self.apply_to,
            "minPersons": self.min_persons,
            "smsEnabled": self.sms_enabled,
            "autoSendEmailOnCreate": self.auto_send_email_on_create,
            "autoSendSmsOnCreate": self.auto_send_sms_on_create,
            "logoUrl": self.logo_url,
            "brandColor": self.brand_color,
            "senderEmail": self.sender_email,
            "termsUrl": self.terms_url,
            "companyName": self.company_name,
            "companyAddress": self.company_address,
            "companyPhone": self.company_phone,
        }


class GuaranteeSession(Base):
    """Card imprint request tied to one reservation."""

    __tablename__ = "guarantee_sessions"
    __table_args__ = (UniqueConstraint("user_id", "reservation_id", name="uq_guarantee_reservation"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    reservation_id = Column(String, nullable=False)
    customer_name = Column(String, nullable=False)
    customer_email = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    nb_persons = Column(Integer, default=1)
    reservation_date = Column(DateTime, nullable=False)
    reservation_time = Column(String, nullable=True)

    # Stripe
    checkout_session_id = Column(String, nullable=True)
    setup_intent_id = Column(String, nullable=True)
    payment_method_id = Column(String, nullable=True)
    customer_stripe_id = Column(String, nullable=True)

    status = Column(Enum(GuaranteeSessionStatus), nullable=False, default=GuaranteeSessionStatus.PENDING)
    penalty_amount = Column(Integer, nullable=True)  # euros per person at creation time
    charged_amount = Column(Integer, nullable=True)  # cents
    validated_at = Column(DateTime, nullable=True)
    charged_at = Column(DateTime, nullable=True)
    reminder_count = Column(Integer, default=0)
    last_reminder_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    charges = relationship("NoshowCharge", back_populates="session", cascade="all, delete-orphan")

    def __repr__(self):
        """String representation of the model."""
        return f"<GuaranteeSession(id='{self.id}', reservation_id='{self.reservation_id}', status='{self.status}')>"

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "userId": str(self.user_id),
            "reservationId": self.reservation_id,
            "customerName": self.customer_name,
            "customerEmail": self.customer_email,
            "customerPhone": self.customer_phone,
            "nbPersons": self.nb_persons,
            "reservationDate": _iso(self.reservation_date),
            "reservationTime": self.reservation_time,
            "checkoutSessionId": self.checkout_session_id,
            "status": self.status.value if self.status else None,
            "penaltyAmount": self.penalty_amount,
            "chargedAmount": self.charged_amount,
            "validatedAt": _iso(self.validated_at),
            "chargedAt": _iso(self.charged_at),
            "reminderCount": self.reminder_count or 0,
            "lastReminderAt": _iso(self.last_reminder_at),
            "createdAt": _iso(self.created_at),
        }


class NoshowCharge(Base):
    """Penalty charge attempt for a no-show."""

    __tablename__ = "noshow_charges"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    guarantee_session_id = Column(Uuid(as_uuid=True), ForeignKey("guarantee_sessions.id"), nullable=False)
    payment_intent_id = Column(String, nullable=True)
    amount = Column(Integer, nullable=False)  # cents
    currency = Column(String, default="eur")
    status = Column(Enum(NoshowChargeStatus), nullable=False)
    failure_reason = Column(Text, nullable=True)
    disputed = Column(Boolean, default=False)
    dispute_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    session = relationship("GuaranteeSession", back_populates="charges")

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "guaranteeSessionId": str(self.guarantee_session_id),
            "paymentIntentId": self.payment_intent_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status.value if self.status else None,
            "failureReason": self.failure_reason,
            "disputed": self.disputed,
            "createdAt": _iso(self.created_at),
        }
