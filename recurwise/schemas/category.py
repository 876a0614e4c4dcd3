"""
Category and category-rule schemas.
"""

import re
from typing import Optional, Pattern, Tuple

from pydantic import BaseModel, ConfigDict

from recurwise.models.category import BudgetType, LedgerType


class CategoryInfo(BaseModel):
    """Detached copy of a category row, safe to hold across sessions."""
    id: str
    name: str
    slug: str
    parent_id: Optional[str] = None
    ledger_type: LedgerType
    budget_type: BudgetType
    is_fallback: bool = False
    is_generic: bool = False

    class Config:
        from_attributes = True


class AggregatorMapping(BaseModel):
    code: str
    category_id: str
    confidence: float


class KeywordRule(BaseModel):
    """Keyword group for one category; each keyword must match whole words."""
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    category_id: str
    keywords: Tuple[str, ...]
    confidence: float
    priority: int
    regex: Pattern[str]

    @classmethod
    def build(cls, category_id: str, pattern: str, confidence: float, priority: int) -> "KeywordRule":
        keywords = tuple(k.strip().lower() for k in pattern.split("|") if k.strip())
        regex = re.compile(r"\b(" + "|".join(re.escape(k) for k in keywords) + r")\b")
        return cls(
            category_id=category_id,
            keywords=keywords,
            confidence=confidence,
            priority=priority,
            regex=regex,
        )

    def matches(self, text: str) -> bool:
        return bool(self.keywords) and self.regex.search(text) is not None
