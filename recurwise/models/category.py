"""
Category and category-rule database models.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, Integer, Float, Text, Enum, ForeignKey
from sqlalchemy.orm import relationship
import enum
from recurwise.database import Base


class LedgerType(str, enum.Enum):
    """Accounting classification of a category."""
    income = "income"
    expense = "expense"
    transfer = "transfer"
    debt_credit = "debt_credit"
    adjustment = "adjustment"


class BudgetType(str, enum.Enum):
    """Budget classification of a category."""
    fixed = "fixed"
    flexible = "flexible"
    non_monthly = "non_monthly"


class RuleType(str, enum.Enum):
    """How a category rule matches a transaction."""
    aggregator_detailed = "aggregator_detailed"
    aggregator_primary = "aggregator_primary"
    merchant_keyword = "merchant_keyword"
    description_keyword = "description_keyword"


class Category(Base):
    """Category model with hierarchical support."""

    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    parent_id = Column(String(36), ForeignKey("categories.id"), nullable=True)
    ledger_type = Column(Enum(LedgerType), default=LedgerType.expense, nullable=False)
    budget_type = Column(Enum(BudgetType), default=BudgetType.flexible, nullable=False)
    is_fallback = Column(Boolean, default=False, nullable=False)  # The one "Uncategorized" row
    is_generic = Column(Boolean, default=False, nullable=False)  # "Other"/"Uncategorized"
    is_system = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    parent = relationship("Category", remote_side=[id], backref="children")
    transactions = relationship("Transaction", back_populates="category")
    rules = relationship("CategoryRule", back_populates="category")


class CategoryRule(Base):
    """Ordered matching rule: an aggregator code or a keyword list for one category."""

    __tablename__ = "category_rules"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    category_id = Column(String(36), ForeignKey("categories.id"), nullable=False)
    rule_type = Column(Enum(RuleType), nullable=False)
    pattern = Column(Text, nullable=False)  # Aggregator code or "kw1|kw2|kw3"
    confidence = Column(Float, nullable=False)
    priority = Column(Integer, default=100, nullable=False)  # Lower runs first
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    category = relationship("Category", back_populates="rules")
