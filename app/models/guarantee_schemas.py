"""
Pydantic schemas for card guarantee settings and sessions.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, EmailStr, validator

APPLY_TO_VALUES = ("all", "min_persons", "weekend")


class GuaranteeConfigUpdate(BaseModel):
    """Schema for updating guarantee settings."""
    enabled: Optional[bool] = None
    stripe_account_id: Optional[str] = Field(None, alias="stripeAccountId")
    penalty_amount: Optional[int] = Field(None, alias="penaltyAmount", ge=1, le=1000)
    cancellation_delay: Optional[int] = Field(None, alias="cancellationDelay", ge=1, le=168)
    apply_to: Optional[str] = Field(None, alias="applyTo")
    min_persons: Optional[int] = Field(None, alias="minPersons", ge=1)
    sms_enabled: Optional[bool] = Field(None, alias="smsEnabled")
    auto_send_email_on_create: Optional[bool] = Field(None, alias="autoSendEmailOnCreate")
    auto_send_sms_on_create: Optional[bool] = Field(None, alias="autoSendSmsOnCreate")
    logo_url: Optional[str] = Field(None, alias="logoUrl")
    brand_color: Optional[str] = Field(None, alias="brandColor", pattern=r"^#[0-9A-Fa-f]{6}$")
    sender_email: Optional[EmailStr] = Field(None, alias="senderEmail")
    terms_url: Optional[str] = Field(None, alias="termsUrl")
    company_name: Optional[str] = Field(None, alias="companyName")
    company_address: Optional[str] = Field(None, alias="companyAddress")
    company_phone: Optional[str] = Field(None, alias="companyPhone")

    @validator('apply_to')
    def validate_apply_to(cls, v):
        if v is not None and v not in APPLY_TO_VALUES:
            raise ValueError(f"applyTo must be one of {', '.join(APPLY_TO_VALUES)}")
        return v

    class Config:
        populate_by_name = True


class GuaranteeSessionCreate(BaseModel):
    """Schema for a reservation pushed by the voice agent automation."""
    reservation_id: str = Field(..., min_length=1)
    customer_name: str = Field(..., min_length=1)
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = None
    nb_persons: int = Field(1, ge=1)
    reservation_date: datetime
    reservation_time: Optional[str] = None


class CheckoutComplete(BaseModel):
    """Schema for the Checkout completion callback."""
    checkout_session_id: str = Field(..., min_length=1)


class ReservationStatusUpdate(BaseModel):
    """Schema for recording a reservation outcome."""
    status: str = Field(..., description="attended or noshow")
