"""Read-mostly cache of categories and category rules.

The cache is owned by the caller and handed to the classifier. It is only
reloaded through an explicit ``refresh()``; nothing invalidates it
implicitly.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from recurwise.errors import (
    CacheUnavailableError,
    ConfigurationError,
    cache_not_loaded,
    fallback_category_missing,
)
from recurwise.logging_setup import get_logger
from recurwise.models.category import Category, CategoryRule, RuleType
from recurwise.schemas.category import AggregatorMapping, CategoryInfo, KeywordRule

logger = get_logger(__name__)


class RuleCache:
    """
    Holds detached copies of the category table and the active rules.

    Lookups raise CacheUnavailableError until ``load()`` has run, and again
    after ``invalidate()``.
    """

    def __init__(self):
        self._loaded = False
        self._categories: Dict[str, CategoryInfo] = {}
        self._by_slug: Dict[str, CategoryInfo] = {}
        self._detailed: Dict[str, AggregatorMapping] = {}
        self._primary: Dict[str, AggregatorMapping] = {}
        self._merchant_keywords: List[KeywordRule] = []
        self._description_keywords: List[KeywordRule] = []
        self._fallback: Optional[CategoryInfo] = None

    @classmethod
    def from_db(cls, db: Session) -> "RuleCache":
        cache = cls()
        cache.load(db)
        return cache

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def load(self, db: Session) -> None:
        """Load categories and active rules. No-op if already loaded."""
        if self._loaded:
            return
        self._populate(db)

    def refresh(self, db: Session) -> None:
        """Drop everything and reload; call after administrative changes."""
        self.invalidate()
        self._populate(db)
        logger.info("Rule cache refreshed: %s", self.stats())

    def invalidate(self) -> None:
        self._loaded = False
        self._categories = {}
        self._by_slug = {}
        self._detailed = {}
        self._primary = {}
        self._merchant_keywords = []
        self._description_keywords = []
        self._fallback = None

    def _populate(self, db: Session) -> None:
        categories = [CategoryInfo.model_validate(c) for c in db.query(Category).all()]
        categories_by_id = {c.id: c for c in categories}

        fallbacks = [c for c in categories if c.is_fallback]
        if len(fallbacks) > 1:
            logger.error("Multiple fallback categories configured: %s", [c.slug for c in fallbacks])
            raise ConfigurationError(
                f"Exactly one fallback category allowed, found {len(fallbacks)}"
            )

        rules = db.query(CategoryRule).filter(
            CategoryRule.is_active.is_(True)
        ).order_by(CategoryRule.priority, CategoryRule.pattern).all()

        detailed: Dict[str, AggregatorMapping] = {}
        primary: Dict[str, AggregatorMapping] = {}
        merchant_keywords: List[KeywordRule] = []
        description_keywords: List[KeywordRule] = []

        for rule in rules:
            if rule.category_id not in categories_by_id:
                logger.warning("Skipping rule %s: unknown category %s", rule.id, rule.category_id)
                continue
            if rule.rule_type == RuleType.aggregator_detailed:
                detailed.setdefault(rule.pattern.strip().upper(), AggregatorMapping(
                    code=rule.pattern.strip().upper(), category_id=rule.category_id, confidence=rule.confidence
                ))
            elif rule.rule_type == RuleType.aggregator_primary:
                primary.setdefault(rule.pattern.strip().upper(), AggregatorMapping(
                    code=rule.pattern.strip().upper(), category_id=rule.category_id, confidence=rule.confidence
                ))
            elif rule.rule_type == RuleType.merchant_keyword:
                merchant_keywords.append(KeywordRule.build(
                    rule.category_id, rule.pattern, rule.confidence, rule.priority
                ))
            else:
                description_keywords.append(KeywordRule.build(
                    rule.category_id, rule.pattern, rule.confidence, rule.priority
                ))

        self._categories = categories_by_id
        self._by_slug = {c.slug: c for c in categories}
        self._detailed = detailed
        self._primary = primary
        self._merchant_keywords = merchant_keywords
        self._description_keywords = description_keywords
        self._fallback = fallbacks[0] if fallbacks else None
        self._loaded = True

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise CacheUnavailableError(cache_not_loaded())

    def category(self, category_id: Optional[str]) -> Optional[CategoryInfo]:
        self._require_loaded()
        if category_id is None:
            return None
        return self._categories.get(category_id)

    def category_by_slug(self, slug: str) -> Optional[CategoryInfo]:
        self._require_loaded()
        return self._by_slug.get(slug)

    def detailed_mapping(self, code: Optional[str]) -> Optional[AggregatorMapping]:
        self._require_loaded()
        if not code:
            return None
        return self._detailed.get(code.strip().upper())

    def primary_mapping(self, code: Optional[str]) -> Optional[AggregatorMapping]:
        self._require_loaded()
        if not code:
            return None
        return self._primary.get(code.strip().upper())

    @property
    def merchant_keywords(self) -> List[KeywordRule]:
        self._require_loaded()
        return self._merchant_keywords

    @property
    def description_keywords(self) -> List[KeywordRule]:
        self._require_loaded()
        return self._description_keywords

    def fallback_category(self) -> CategoryInfo:
        """The designated "Uncategorized" category; its absence is a configuration error."""
        self._require_loaded()
        if self._fallback is None:
            logger.error(fallback_category_missing())
            raise ConfigurationError(fallback_category_missing())
        return self._fallback

    def is_generic(self, category_id: Optional[str]) -> bool:
        """True for a missing, unknown, "Other" or "Uncategorized" category."""
        category = self.category(category_id)
        return category is None or category.is_generic or category.is_fallback

    def stats(self) -> Dict[str, Any]:
        return {
            "loaded": self._loaded,
            "categories": len(self._categories),
            "detailed_mappings": len(self._detailed),
            "primary_mappings": len(self._primary),
            "merchant_keyword_rules": len(self._merchant_keywords),
            "description_keyword_rules": len(self._description_keywords),
            "has_fallback": self._fallback is not None,
        }
