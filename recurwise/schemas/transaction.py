"""
Transaction snapshot and classification schemas.
"""

import datetime as dt
from decimal import Decimal, InvalidOperation
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel


def parse_amount(value: Any) -> Optional[Decimal]:
    """Coerce an amount to Decimal, returning None when it cannot be parsed."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        amount = value
    else:
        text = str(value).strip().replace("$", "").replace(",", "")
        if not text:
            return None
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return None
    if not amount.is_finite():
        return None
    return amount


def parse_date(value: Any) -> Optional[dt.date]:
    """Coerce a date, datetime or ISO string to a date, returning None on failure."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, str):
        try:
            return dt.date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


class TransactionRecord(BaseModel):
    """In-memory snapshot of one transaction.

    ``amount`` and ``date`` are None when the source value could not be
    parsed; such records are excluded from statistics.
    """
    id: str
    user_id: Optional[str] = None
    date: Optional[dt.date] = None
    amount: Optional[Decimal] = None
    description: str = ""
    merchant: Optional[str] = None
    category_name: Optional[str] = None
    category_ledger_type: Optional[str] = None
    source: Optional[str] = None

    @classmethod
    def from_raw(cls, data: Mapping[str, Any]) -> "TransactionRecord":
        """Build a record from loosely typed caller data."""
        return cls(
            id=str(data["id"]),
            user_id=data.get("user_id"),
            date=parse_date(data.get("date")),
            amount=parse_amount(data.get("amount")),
            description=data.get("description") or data.get("raw_description") or "",
            merchant=data.get("merchant"),
            category_name=data.get("category_name"),
            category_ledger_type=data.get("category_ledger_type"),
            source=data.get("source"),
        )

    @property
    def is_valid(self) -> bool:
        return self.amount is not None and self.date is not None


class CategoryMatch(BaseModel):
    """Result of the classification cascade."""
    category_id: str
    category_name: str
    category_slug: str
    confidence: float
    source: str
    ledger_type: str
    budget_type: str
    needs_review: bool = False


class TransactionClassification(BaseModel):
    """Combined category and recurring status for one transaction."""
    transaction_id: str
    merchant_key: str
    category: CategoryMatch
    is_recurring: bool
    recurring_confidence: float
    recurring_source: str  # user_override, auto_detection, none
    frequency: Optional[str] = None
    related_count: int = 0


class BatchReclassifyResult(BaseModel):
    """Outcome of a batch reclassification run."""
    processed: int = 0
    updated: int = 0
    failed: int = 0
    failed_transaction_ids: List[str] = []
