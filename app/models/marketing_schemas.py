"""
Pydantic schemas for marketing contacts, segments, campaigns and unsubscribe.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, EmailStr, validator

CAMPAIGN_CHANNELS = ("email", "sms", "both")
CAMPAIGN_TYPES = ("promotional", "newsletter", "event", "reactivation")


class ContactBase(BaseModel):
    """Shared contact fields."""
    first_name: Optional[str] = Field(None, alias="firstName", max_length=100)
    last_name: Optional[str] = Field(None, alias="lastName", max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)
    source: Optional[str] = None
    tags: Optional[List[str]] = None
    opt_in_email: Optional[bool] = Field(None, alias="optInEmail")
    opt_in_sms: Optional[bool] = Field(None, alias="optInSms")

    class Config:
        populate_by_name = True


class ContactCreate(ContactBase):
    """Schema for creating a contact."""
    source: str = "manual"
    opt_in_email: bool = Field(False, alias="optInEmail")
    opt_in_sms: bool = Field(False, alias="optInSms")


class ContactUpdate(ContactBase):
    """Schema for updating a contact."""
    pass


class ContactImport(BaseModel):
    """Schema for bulk contact import."""
    contacts: List[ContactBase] = Field(..., description="Rows to create or update")


class SegmentFilters(BaseModel):
    """Schema for segment filters."""
    source: Optional[str] = None
    hasEmail: Optional[bool] = None
    hasPhone: Optional[bool] = None
    optInEmail: Optional[bool] = None
    optInSms: Optional[bool] = None
    createdAfter: Optional[datetime] = None
    inactiveDays: Optional[int] = Field(None, ge=1)
    visitsMin: Optional[int] = Field(None, ge=0)
    tags: Optional[List[str]] = None

    def as_filters(self) -> Dict[str, Any]:
        """Set filters only, JSON-storable (dates as ISO strings)."""
        filters = {key: value for key, value in self.dict().items() if value is not None}
        if isinstance(filters.get("createdAfter"), datetime):
            filters["createdAfter"] = filters["createdAfter"].isoformat()
        return filters


class SegmentCreate(BaseModel):
    """Schema for creating a segment."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    filters: SegmentFilters = Field(default_factory=SegmentFilters)


class SegmentUpdate(BaseModel):
    """Schema for updating a segment."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    filters: Optional[SegmentFilters] = None


class SegmentPreview(BaseModel):
    """Schema for previewing the contacts a filter set matches."""
    filters: SegmentFilters = Field(default_factory=SegmentFilters)


class CampaignBase(BaseModel):
    """Shared campaign fields."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    type: Optional[str] = None
    channel: Optional[str] = None
    email_subject: Optional[str] = Field(None, alias="emailSubject")
    email_content: Optional[str] = Field(None, alias="emailContent")
    email_preview_text: Optional[str] = Field(None, alias="emailPreviewText")
    sms_content: Optional[str] = Field(None, alias="smsContent", max_length=1600)
    segment_id: Optional[str] = Field(None, alias="segmentId")
    target_all: Optional[bool] = Field(None, alias="targetAll")
    custom_filters: Optional[Dict[str, Any]] = Field(None, alias="customFilters")
    scheduled_at: Optional[datetime] = Field(None, alias="scheduledAt")

    @validator('channel')
    def validate_channel(cls, v):
        if v is not None and v not in CAMPAIGN_CHANNELS:
            raise ValueError(f"channel must be one of {', '.join(CAMPAIGN_CHANNELS)}")
        return v

    @validator('type')
    def validate_type(cls, v):
        if v is not None and v not in CAMPAIGN_TYPES:
            raise ValueError(f"type must be one of {', '.join(CAMPAIGN_TYPES)}")
        return v

    class Config:
        populate_by_name = True


class CampaignCreate(CampaignBase):
    """Schema for creating a campaign."""
    name: str = Field(..., min_length=1, max_length=255)
    type: str = "promotional"
    channel: str = "email"
    target_all: bool = Field(False, alias="targetAll")


class CampaignUpdate(CampaignBase):
    """Schema for updating a campaign."""
    pass


class UnsubscribeRequest(BaseModel):
    """
    Schema for the unsubscribe form.

    Either an explicit ``channel`` or the recipient's ``email``/``sms``
    selections.
    """
    channel: Optional[str] = None
    email: Optional[bool] = None
    sms: Optional[bool] = None
