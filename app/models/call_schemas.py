"""
Pydantic schemas for call ingestion and listing.
"""

from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, validator

from app.db.models import CallStatus

CALL_STATUSES = [status.value for status in CallStatus]

# Metadata keys copied onto call columns as-is
METADATA_FIELDS = (
    "client_name", "client_email", "client_mood", "is_returning_client",
    "agency_name", "company_name", "service_type", "nb_personnes",
    "booking_confidence", "call_quality", "language_detected",
    "questions_asked", "objections", "keywords", "pain_points", "compliments",
    "upsell_accepted", "competitor_mentioned",
    "preferences", "special_occasion", "original_date", "original_time",
    "modification_reason", "cancellation_reason", "cancellation_time",
    "calendar_id", "timezone", "recording_url",
)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an offset-aware datetime to naive UTC; naive values are taken as UTC already."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class N8nCallPayload(BaseModel):
    """Schema for a call pushed by the voice agent automation."""
    phone_number: str = Field(..., alias="phoneNumber", min_length=1, description="Caller phone number")
    status: str = Field(..., description="Call status")
    start_time: datetime = Field(..., alias="startTime", description="Call start time")
    end_time: Optional[datetime] = Field(None, alias="endTime", description="Call end time")
    duration: Optional[int] = Field(None, ge=0, description="Duration in seconds")

    call_id: Optional[str] = Field(None, description="Voice agent call id")
    agent_id: Optional[str] = Field(None, description="Voice agent id")
    event_type: Optional[str] = None

    call_answered: Optional[bool] = None
    is_out_of_scope: Optional[bool] = None
    conversion_result: Optional[str] = None
    call_successful: Optional[bool] = None
    disconnection_reason: Optional[str] = None

    summary: Optional[str] = None
    transcript: Optional[str] = None
    tags: Optional[List[str]] = None

    appointment_date: Optional[datetime] = Field(None, alias="appointmentDate")
    appointment_hour: Optional[int] = Field(None, alias="appointmentHour", ge=0, le=23)
    appointment_day_of_week: Optional[str] = Field(None, alias="appointmentDayOfWeek")
    booking_delay_days: Optional[int] = None
    is_last_minute: Optional[bool] = None
    group_category: Optional[str] = None

    collected_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = Field(None, description="Free-form analysis data")

    @validator('status')
    def validate_status(cls, v):
        if v not in CALL_STATUSES:
            raise ValueError(f"status must be one of {', '.join(CALL_STATUSES)}")
        return v

    @validator('start_time', 'end_time', 'appointment_date', 'collected_at')
    def normalize_to_utc(cls, v):
        # Columns are naive UTC
        return to_naive_utc(v)

    class Config:
        populate_by_name = True

    def to_call_data(self) -> Dict[str, Any]:
        """Column values for a new call; metadata keys are flattened."""
        meta = self.metadata or {}
        data: Dict[str, Any] = {
            "phone_number": self.phone_number,
            "status": CallStatus(self.status),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": self.duration,
            "call_id": self.call_id,
            "agent_id": self.agent_id,
            "event_type": self.event_type or meta.get("event_type"),
            "call_answered": self.call_answered,
            "is_out_of_scope": self.is_out_of_scope,
            "conversion_result": self.conversion_result,
            "call_successful": self.call_successful,
            "disconnection_reason": self.disconnection_reason,
            "summary": self.summary,
            "transcript": self.transcript,
            "tags": self.tags,
            "appointment_date": self.appointment_date,
            "appointment_hour": self.appointment_hour,
            "appointment_day_of_week": self.appointment_day_of_week,
            "booking_delay_days": self.booking_delay_days,
            "is_last_minute": self.is_last_minute,
            "group_category": self.group_category or meta.get("group_category"),
            "collected_at": self.collected_at or datetime.utcnow(),
            "call_metadata": self.metadata,
        }
        for key in METADATA_FIELDS:
            if meta.get(key) is not None:
                data[key] = meta[key]
        return {key: value for key, value in data.items() if value is not None}


class CallCreatedResponse(BaseModel):
    """Schema for the ingestion response."""
    success: bool = True
    message: str
    callId: str


class CallStatsResponse(BaseModel):
    """Schema for headline call statistics."""
    totalCalls: int
    activeCalls: int
    conversionRate: float
    averageDuration: int
    hoursSaved: float
    estimatedRevenue: int


class ChartDataPoint(BaseModel):
    """Schema for one day of chart data."""
    date: str
    totalCalls: int
    completedCalls: int
    averageDuration: int
