"""Pydantic schemas for user overrides and their audit trail."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from recurwise.models.override import AuditAction, OverrideKind, RecurringStatus


class CategoryOverrideResponse(BaseModel):
    id: str
    user_id: str
    merchant_key: str
    original_merchant: Optional[str] = None
    category_id: str
    confidence: float
    applied_count: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RecurringOverrideResponse(BaseModel):
    id: str
    user_id: str
    merchant_key: str
    original_merchant: Optional[str] = None
    recurring_status: RecurringStatus
    apply_to_all: bool
    confidence: float
    reason: Optional[str] = None
    trigger_transaction_id: Optional[str] = None
    is_active: bool
    applied_count: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OverrideResult(BaseModel):
    """Outcome of recording an override."""
    merchant_key: str
    apply_to_all: bool
    created: bool  # False when an existing override was updated
    transactions_updated: int
    override_id: Optional[str] = None


class OverrideResolution(BaseModel):
    """Active overrides for one merchant."""
    merchant_key: str
    category: Optional[CategoryOverrideResponse] = None
    recurring: Optional[RecurringOverrideResponse] = None


class OverrideAuditEntry(BaseModel):
    id: str
    user_id: str
    actor: Optional[str] = None
    merchant_key: str
    override_kind: OverrideKind
    action: AuditAction
    transaction_id: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class OverrideSummary(BaseModel):
    total_recurring_overrides: int
    recurring_count: int
    non_recurring_count: int
    apply_to_all_count: int
    instance_only_count: int
    category_override_count: int
    total_applied: int


class RelatedTransaction(BaseModel):
    id: str
    date: date
    amount: Decimal
    raw_description: str
    merchant: Optional[str] = None
    is_recurring: bool

    class Config:
        from_attributes = True


class RelatedTransactionSummary(BaseModel):
    total: int
    recurring_count: int
    one_time_count: int
    unclear_count: int
    potential_recurring_amounts: List[Decimal]


class GroupedRelatedTransactions(BaseModel):
    """A merchant's transactions split by how likely each amount group recurs."""
    merchant_key: str
    recurring: List[RelatedTransaction]
    one_time: List[RelatedTransaction]
    unclear: List[RelatedTransaction]
    summary: RelatedTransactionSummary
