"""
Transaction database model.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, Date, Numeric, Float, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from recurwise.database import Base


class Transaction(Base):
    """Transaction model."""

    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)  # Negative = expense, positive = income
    raw_description = Column(Text, nullable=False, default="")
    merchant = Column(String(255), nullable=True)
    category_id = Column(String(36), ForeignKey("categories.id"), nullable=True)
    category_confidence = Column(Float, nullable=True)
    category_source = Column(String(32), nullable=True)
    needs_review = Column(Boolean, default=False, nullable=False)
    aggregator_primary = Column(String(100), nullable=True)
    aggregator_detailed = Column(String(100), nullable=True)
    aggregator_confidence = Column(String(20), nullable=True)  # VERY_HIGH, HIGH, MEDIUM, LOW
    source = Column(String(32), nullable=True)  # aggregator, csv, manual
    is_recurring = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    category = relationship("Category", back_populates="transactions")

    # Indexes for common queries
    __table_args__ = (
        Index("idx_transaction_user_date", "user_id", "date"),
        Index("idx_transaction_category", "category_id"),
    )
