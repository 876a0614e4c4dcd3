"""Normalized merchant schema."""

from typing import Optional

from pydantic import BaseModel


class NormalizedMerchant(BaseModel):
    key: str
    confidence: float
    rule: Optional[str] = None  # Name of the known-merchant rule that matched

    @property
    def rule_matched(self) -> bool:
        return self.rule is not None
