"""
Pydantic schemas for notifications and notification preferences.
"""

from typing import Optional
from pydantic import BaseModel, Field


class NotificationPreferencesUpdate(BaseModel):
    """Schema for updating notification preferences; omitted switches are unchanged."""
    daily_summary_enabled: Optional[bool] = Field(None, alias="dailySummaryEnabled")
    failed_calls_enabled: Optional[bool] = Field(None, alias="failedCallsEnabled")
    active_call_enabled: Optional[bool] = Field(None, alias="activeCallEnabled")
    subscription_alerts_enabled: Optional[bool] = Field(None, alias="subscriptionAlertsEnabled")

    class Config:
        populate_by_name = True


class UnreadCountResponse(BaseModel):
    """Schema for unread notification count."""
    count: int = Field(..., description="Number of unread notifications")
