"""
User override and override audit database models.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, Integer, Float, Text, Enum, ForeignKey, Index, UniqueConstraint, text
from sqlalchemy.orm import relationship
import enum
from recurwise.database import Base


class RecurringStatus(str, enum.Enum):
    """User declaration about a merchant."""
    recurring = "recurring"
    non_recurring = "non_recurring"


class OverrideKind(str, enum.Enum):
    category = "category"
    recurring = "recurring"


class AuditAction(str, enum.Enum):
    created = "created"
    updated = "updated"
    deactivated = "deactivated"
    applied = "applied"  # Written to a single transaction


class UserMerchantOverride(Base):
    """User category fix for every transaction of one normalized merchant."""

    __tablename__ = "user_merchant_overrides"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    merchant_key = Column(String(255), nullable=False)
    original_merchant = Column(String(255), nullable=True)
    category_id = Column(String(36), ForeignKey("categories.id"), nullable=False)
    confidence = Column(Float, default=1.0, nullable=False)
    applied_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    category = relationship("Category")

    __table_args__ = (
        UniqueConstraint("user_id", "merchant_key", name="uq_user_merchant_override"),
    )


class UserRecurringOverride(Base):
    """
    User recurring/non-recurring declaration.

    An apply-to-all row covers every transaction of the merchant and is unique
    per user and merchant. An instance-only row covers just
    ``trigger_transaction_id`` and is ignored by detection.
    """

    __tablename__ = "user_recurring_overrides"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    merchant_key = Column(String(255), nullable=False)
    original_merchant = Column(String(255), nullable=True)
    recurring_status = Column(Enum(RecurringStatus), nullable=False)
    apply_to_all = Column(Boolean, default=True, nullable=False)
    confidence = Column(Float, default=1.0, nullable=False)
    reason = Column(Text, nullable=True)
    trigger_transaction_id = Column(String(36), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)  # Soft delete flag
    applied_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index(
            "uq_user_recurring_override", "user_id", "merchant_key",
            unique=True,
            sqlite_where=text("apply_to_all = 1"),
            postgresql_where=text("apply_to_all"),
        ),
    )


class OverrideAudit(Base):
    """Append-only record of override writes and the transactions they changed."""

    __tablename__ = "override_audits"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    actor = Column(String(36), nullable=True)
    merchant_key = Column(String(255), nullable=False)
    override_kind = Column(Enum(OverrideKind), nullable=False)
    action = Column(Enum(AuditAction), nullable=False)
    transaction_id = Column(String(36), nullable=True)
    old_value = Column(String(255), nullable=True)
    new_value = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
