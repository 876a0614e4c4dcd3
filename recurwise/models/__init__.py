"""
Database models package.
"""

from recurwise.models.category import Category, CategoryRule, LedgerType, BudgetType, RuleType
from recurwise.models.transaction import Transaction
from recurwise.models.recurring import RecurringSeries, Frequency, MerchantType
from recurwise.models.override import (
    UserMerchantOverride,
    UserRecurringOverride,
    OverrideAudit,
    RecurringStatus,
    OverrideKind,
    AuditAction,
)

__all__ = [
    "Category",
    "CategoryRule",
    "LedgerType",
    "BudgetType",
    "RuleType",
    "Transaction",
    "RecurringSeries",
    "Frequency",
    "MerchantType",
    "UserMerchantOverride",
    "UserRecurringOverride",
    "OverrideAudit",
    "RecurringStatus",
    "OverrideKind",
    "AuditAction",
]
