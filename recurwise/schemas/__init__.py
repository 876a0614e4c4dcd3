"""
Pydantic schemas package.
"""

from recurwise.schemas.merchant import NormalizedMerchant
from recurwise.schemas.transaction import (
    TransactionRecord,
    CategoryMatch,
    TransactionClassification,
    BatchReclassifyResult,
)
from recurwise.schemas.recurring import (
    ConfidenceFactors,
    RecurringSeriesResult,
    StoredRecurringSeries,
    MissedPayment,
    Urgency,
    PaymentStatus,
)
from recurwise.schemas.override import (
    CategoryOverrideResponse,
    RecurringOverrideResponse,
    OverrideResult,
    OverrideResolution,
    OverrideAuditEntry,
    OverrideSummary,
    RelatedTransaction,
    GroupedRelatedTransactions,
)
from recurwise.schemas.category import CategoryInfo, AggregatorMapping, KeywordRule
