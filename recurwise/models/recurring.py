"""
Recurring series database model.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, Float, DateTime, Date, Numeric, Text, JSON, Enum
import enum
from recurwise.database import Base


class Frequency(str, enum.Enum):
    """Recurring frequency enumeration."""
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"
    irregular = "irregular"


class MerchantType(str, enum.Enum):
    """Merchant classification used to gate and weight recurring detection."""
    subscription = "subscription"
    utility = "utility"
    insurance = "insurance"
    loan = "loan"
    discretionary = "discretionary"
    unknown = "unknown"


class RecurringSeries(Base):
    """Detected recurring series. Replaced wholesale for a user on every detection run."""

    __tablename__ = "recurring_series"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    merchant_key = Column(String(255), nullable=False)
    display_name = Column(String(255), nullable=False)
    merchant_type = Column(Enum(MerchantType), nullable=False)
    frequency = Column(Enum(Frequency), nullable=False)
    average_amount = Column(Numeric(12, 2), nullable=False)
    amount_variance = Column(Float, nullable=False)
    day_consistency = Column(Float, nullable=False)
    preferred_day = Column(Integer, nullable=True)
    confidence = Column(Float, nullable=False)
    confidence_factors = Column(JSON, nullable=False)
    next_due_date = Column(Date, nullable=False)
    last_date = Column(Date, nullable=False)
    occurrence_count = Column(Integer, nullable=False)
    transaction_ids = Column(JSON, nullable=False)
    detection_reason = Column(Text, nullable=False)
    category_type = Column(String(50), nullable=False)
    notification_days = Column(Integer, nullable=False)
    tags = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
