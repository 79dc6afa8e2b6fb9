"""
Pydantic schemas for review requests, incentives, alerts and sources.
"""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, EmailStr, validator

TIMING_MODES = ("smart", "fixed_delay", "fixed_time")
INCENTIVE_TYPES = ("percentage", "fixed_amount", "free_item", "lottery", "loyalty_points", "custom")
SEND_METHODS = ("sms", "email", "both")
ALERT_TYPES = ("negative_review", "new_5_star", "no_response_48h", "weekly_report", "rating_drop")
RESPONSE_STATUSES = ("draft", "published")


class ReviewConfigUpdate(BaseModel):
    """Schema for updating review request settings."""
    enabled: Optional[bool] = None
    timing_mode: Optional[str] = Field(None, alias="timingMode")
    fixed_delay_hours: Optional[int] = Field(None, alias="fixedDelayHours", ge=1, le=168)
    fixed_time: Optional[str] = Field(None, alias="fixedTime", pattern=r"^\d{2}:\d{2}$")
    send_window_start: Optional[str] = Field(None, alias="sendWindowStart", pattern=r"^\d{2}:\d{2}$")
    send_window_end: Optional[str] = Field(None, alias="sendWindowEnd", pattern=r"^\d{2}:\d{2}$")
    avoid_weekends: Optional[bool] = Field(None, alias="avoidWeekends")
    company_name: Optional[str] = Field(None, alias="companyName")
    sms_enabled: Optional[bool] = Field(None, alias="smsEnabled")
    sms_message: Optional[str] = Field(None, alias="smsMessage", max_length=480)
    email_subject: Optional[str] = Field(None, alias="emailSubject")
    email_message: Optional[str] = Field(None, alias="emailMessage")
    google_place_id: Optional[str] = Field(None, alias="googlePlaceId")
    google_review_url: Optional[str] = Field(None, alias="googleReviewUrl")
    tripadvisor_url: Optional[str] = Field(None, alias="tripadvisorUrl")
    facebook_page_url: Optional[str] = Field(None, alias="facebookPageUrl")
    pages_jaunes_url: Optional[str] = Field(None, alias="pagesJaunesUrl")
    doctolib_url: Optional[str] = Field(None, alias="doctolibUrl")
    yelp_url: Optional[str] = Field(None, alias="yelpUrl")
    platforms_priority: Optional[List[str]] = Field(None, alias="platformsPriority")

    @validator('timing_mode')
    def validate_timing_mode(cls, v):
        if v is not None and v not in TIMING_MODES:
            raise ValueError(f"timingMode must be one of {', '.join(TIMING_MODES)}")
        return v

    class Config:
        populate_by_name = True


class IncentiveBase(BaseModel):
    """Shared incentive fields."""
    type: Optional[str] = None
    percentage_value: Optional[int] = Field(None, alias="percentageValue", ge=1, le=100)
    fixed_amount_value: Optional[int] = Field(None, alias="fixedAmountValue", ge=0)
    free_item_name: Optional[str] = Field(None, alias="freeItemName")
    lottery_prize: Optional[str] = Field(None, alias="lotteryPrize")
    loyalty_points_value: Optional[int] = Field(None, alias="loyaltyPointsValue", ge=0)
    custom_description: Optional[str] = Field(None, alias="customDescription")
    display_message: Optional[str] = Field(None, alias="displayMessage", min_length=1)
    validity_days: Optional[int] = Field(None, alias="validityDays", ge=1)
    single_use: Optional[bool] = Field(None, alias="singleUse")
    minimum_purchase: Optional[int] = Field(None, alias="minimumPurchase", ge=0)
    is_active: Optional[bool] = Field(None, alias="isActive")

    @validator('type')
    def validate_type(cls, v):
        if v is not None and v not in INCENTIVE_TYPES:
            raise ValueError(f"type must be one of {', '.join(INCENTIVE_TYPES)}")
        return v

    class Config:
        populate_by_name = True


class IncentiveCreate(IncentiveBase):
    """Schema for creating an incentive."""
    type: str
    display_message: str = Field(..., alias="displayMessage", min_length=1)


class IncentiveUpdate(IncentiveBase):
    """Schema for updating an incentive."""
    pass


class ReviewRequestCreate(BaseModel):
    """Schema for creating a review request."""
    customer_name: str = Field(..., alias="customerName", min_length=1)
    customer_email: Optional[EmailStr] = Field(None, alias="customerEmail")
    customer_phone: Optional[str] = Field(None, alias="customerPhone")
    reservation_id: Optional[str] = Field(None, alias="reservationId")
    reservation_date: Optional[datetime] = Field(None, alias="reservationDate")
    reservation_time: Optional[str] = Field(None, alias="reservationTime")
    send_method: str = Field("both", alias="sendMethod")
    incentive_id: Optional[str] = Field(None, alias="incentiveId")
    scheduled_at: Optional[datetime] = Field(None, alias="scheduledAt")

    @validator('send_method')
    def validate_send_method(cls, v):
        if v not in SEND_METHODS:
            raise ValueError(f"sendMethod must be one of {', '.join(SEND_METHODS)}")
        return v

    class Config:
        populate_by_name = True


class ReviewRespond(BaseModel):
    """Schema for answering a review."""
    response_text: str = Field(..., alias="responseText", min_length=1)
    status: str = Field("draft", description="draft or published")

    @validator('status')
    def validate_status(cls, v):
        if v not in RESPONSE_STATUSES:
            raise ValueError(f"status must be one of {', '.join(RESPONSE_STATUSES)}")
        return v

    class Config:
        populate_by_name = True


class ReviewAlertUpdate(BaseModel):
    """Schema for an alert rule."""
    alert_type: str = Field(..., alias="alertType")
    is_enabled: Optional[bool] = Field(None, alias="isEnabled")
    email_notification: Optional[bool] = Field(None, alias="emailNotification")
    sms_notification: Optional[bool] = Field(None, alias="smsNotification")
    push_notification: Optional[bool] = Field(None, alias="pushNotification")
    threshold_value: Optional[int] = Field(None, alias="thresholdValue")

    @validator('alert_type')
    def validate_alert_type(cls, v):
        if v not in ALERT_TYPES:
            raise ValueError(f"alertType must be one of {', '.join(ALERT_TYPES)}")
        return v

    class Config:
        populate_by_name = True


class TripAdvisorConnect(BaseModel):
    """Schema for connecting a TripAdvisor listing by URL."""
    url: str = Field(..., min_length=1, description="TripAdvisor page URL")
    display_name: Optional[str] = Field(None, alias="displayName")

    class Config:
        populate_by_name = True


class ReviewConfirm(BaseModel):
    """Schema for a customer confirming they left a review."""
    platform: Optional[str] = None
