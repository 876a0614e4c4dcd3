"""Pydantic schemas for recurring series and missed payments."""

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from recurwise.models.recurring import Frequency, MerchantType


class Urgency(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"


class PaymentStatus(str, enum.Enum):
    late = "late"
    overdue = "overdue"


class ConfidenceFactors(BaseModel):
    """Individual contributions to a series confidence score."""
    merchant_type: float
    occurrence_count: float
    amount_consistency: float
    timing_consistency: float
    override_bonus: float = 0.0


class RecurringSeriesResult(BaseModel):
    """A detected recurring series."""
    merchant_key: str
    display_name: str
    merchant_type: MerchantType
    frequency: Frequency
    average_amount: Decimal
    amount_variance: float
    day_consistency: float
    preferred_day: Optional[int] = None
    confidence: float
    confidence_factors: ConfidenceFactors
    next_due_date: date
    last_date: date
    occurrence_count: int
    transaction_ids: List[str]
    detection_reason: str
    category_type: str
    notification_days: int
    tags: List[str] = []


class StoredRecurringSeries(RecurringSeriesResult):
    """Persisted series row."""
    id: str
    user_id: str
    created_at: datetime

    class Config:
        from_attributes = True


class MissedPayment(BaseModel):
    """A series whose next due date passed without a matching transaction."""
    series: RecurringSeriesResult
    days_past_due: int
    urgency: Urgency
    status: PaymentStatus
