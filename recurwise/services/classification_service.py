"""Service for category classification of transactions."""

from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from recurwise.config import settings
from recurwise.errors import ConfigurationError, NotFoundError, category_not_found, transaction_not_found
from recurwise.logging_setup import get_logger
from recurwise.models.category import Category
from recurwise.models.override import RecurringStatus, UserRecurringOverride
from recurwise.models.recurring import RecurringSeries
from recurwise.models.transaction import Transaction
from recurwise.schemas.category import CategoryInfo
from recurwise.schemas.transaction import (
    BatchReclassifyResult,
    CategoryMatch,
    TransactionClassification,
)
from recurwise.services import override_service
from recurwise.services.merchant_normalizer import merchant_key_for, normalize_key
from recurwise.services.rule_cache import RuleCache

logger = get_logger(__name__)


class ClassificationContext:
    """Everything a strategy may look at for one transaction."""

    def __init__(self, db: Session, cache: RuleCache, txn: Any):
        self.db = db
        self.cache = cache
        self.user_id: Optional[str] = getattr(txn, "user_id", None)
        self.merchant: str = (getattr(txn, "merchant", None) or "").strip()
        self.description: str = (
            getattr(txn, "raw_description", None) or getattr(txn, "description", None) or ""
        ).strip()
        self.aggregator_primary: Optional[str] = getattr(txn, "aggregator_primary", None)
        self.aggregator_detailed: Optional[str] = getattr(txn, "aggregator_detailed", None)
        self.merchant_key = merchant_key_for(self.merchant, self.description)


def load_category(db: Session, cache: RuleCache, category_id: str) -> CategoryInfo:
    """
    Category from the cache, or from the database when it was added after
    the cache was loaded.
    """
    category = cache.category(category_id)
    if category is not None:
        return category
    row = db.query(Category).filter(Category.id == category_id).first()
    if row is None:
        raise NotFoundError(category_not_found(category_id))
    logger.info("Category %s missing from the rule cache; read from the database", category_id)
    return CategoryInfo.model_validate(row)


def build_match(category: CategoryInfo, confidence: float, source: str) -> CategoryMatch:
    return CategoryMatch(
        category_id=category.id,
        category_name=category.name,
        category_slug=category.slug,
        confidence=round(confidence, 4),
        source=source,
        ledger_type=category.ledger_type.value,
        budget_type=category.budget_type.value,
        needs_review=confidence < settings.review_confidence_threshold,
    )


class UserOverrideStrategy:
    """Exact normalized-merchant match against the user's category overrides."""
    source = "user_override"

    def match(self, ctx: ClassificationContext) -> Optional[CategoryMatch]:
        if not ctx.user_id or not ctx.merchant_key:
            return None
        override = override_service.resolve_category_override(ctx.db, ctx.user_id, ctx.merchant_key)
        if override is None:
            return None
        category = load_category(ctx.db, ctx.cache, override.category_id)
        return build_match(category, override.confidence, self.source)


class AggregatorDetailedStrategy:
    source = "aggregator_detailed"

    def match(self, ctx: ClassificationContext) -> Optional[CategoryMatch]:
        mapping = ctx.cache.detailed_mapping(ctx.aggregator_detailed)
        if mapping is None:
            return None
        return build_match(ctx.cache.category(mapping.category_id), mapping.confidence, self.source)


class AggregatorPrimaryStrategy:
    """Coarse aggregator code; discounted for its lower precision."""
    source = "aggregator_primary"

    def match(self, ctx: ClassificationContext) -> Optional[CategoryMatch]:
        mapping = ctx.cache.primary_mapping(ctx.aggregator_primary)
        if mapping is None:
            return None
        confidence = mapping.confidence * settings.aggregator_primary_discount
        return build_match(ctx.cache.category(mapping.category_id), confidence, self.source)


class MerchantKeywordStrategy:
    """Merchant keyword groups against the merchant field, or the description without one."""
    source = "merchant_keyword"

    def match(self, ctx: ClassificationContext) -> Optional[CategoryMatch]:
        key = normalize_key(ctx.merchant or ctx.description)
        if not key:
            return None
        for rule in ctx.cache.merchant_keywords:
            if rule.matches(key):
                return build_match(ctx.cache.category(rule.category_id), rule.confidence, self.source)
        return None


class DescriptionKeywordStrategy:
    source = "description_keyword"

    def match(self, ctx: ClassificationContext) -> Optional[CategoryMatch]:
        if not ctx.description:
            return None
        text = ctx.description.lower()
        for rule in ctx.cache.description_keywords:
            if rule.matches(text):
                return build_match(ctx.cache.category(rule.category_id), rule.confidence, self.source)
        return None


class FallbackStrategy:
    source = "fallback"

    def match(self, ctx: ClassificationContext) -> Optional[CategoryMatch]:
        return build_match(ctx.cache.fallback_category(), 0.0, self.source)


DEFAULT_STRATEGIES = (
    UserOverrideStrategy(),
    AggregatorDetailedStrategy(),
    AggregatorPrimaryStrategy(),
    MerchantKeywordStrategy(),
    DescriptionKeywordStrategy(),
    FallbackStrategy(),
)


class CategoryClassifier:
    """
    Runs the classification cascade: each strategy is tried in order and the
    first one that returns a match wins.

    Classification itself never writes; ``classify_and_apply`` sets the
    result on the row and leaves committing to the caller.
    """

    def __init__(self, db: Session, cache: RuleCache, strategies: Optional[Iterable[Any]] = None):
        self.db = db
        self.cache = cache
        self.strategies: List[Any] = list(strategies if strategies is not None else DEFAULT_STRATEGIES)

    def classify(self, txn: Any) -> CategoryMatch:
        ctx = ClassificationContext(self.db, self.cache, txn)
        for strategy in self.strategies:
            result = strategy.match(ctx)
            if result is not None:
                return result
        # Only reachable with a custom strategy list lacking a fallback
        return FallbackStrategy().match(ctx)

    def should_replace(
        self,
        current_category_id: Optional[str],
        current_confidence: Optional[float],
        match: CategoryMatch,
        current_source: Optional[str] = None
    ) -> bool:
        """
        A user's own choice only yields to another user override. Otherwise
        a generic or missing category is always replaceable, and a confident
        one only yields to a strictly higher confidence.
        """
        if current_source == override_service.USER_OVERRIDE_SOURCE:
            return match.source == override_service.USER_OVERRIDE_SOURCE
        if self.cache.is_generic(current_category_id):
            return True
        return match.confidence > (current_confidence or 0.0)

    def classify_and_apply(self, txn: Transaction) -> Tuple[CategoryMatch, bool]:
        """Classify a transaction row and write the result if it should replace the current one."""
        result = self.classify(txn)
        if not self.should_replace(txn.category_id, txn.category_confidence, result, txn.category_source):
            return result, False

        changed = (
            txn.category_id != result.category_id
            or txn.category_confidence != result.confidence
            or txn.category_source != result.source
        )
        txn.category_id = result.category_id
        txn.category_confidence = result.confidence
        txn.category_source = result.source
        txn.needs_review = result.needs_review
        return result, changed


def reclassify_transactions(
    db: Session,
    cache: RuleCache,
    user_id: Optional[str] = None,
    transaction_ids: Optional[List[str]] = None,
    chunk_size: Optional[int] = None,
    classifier: Optional[CategoryClassifier] = None
) -> BatchReclassifyResult:
    """
    Re-run classification over many transactions, committing per chunk.

    A failure on one transaction is logged and counted; the batch carries on.
    A missing fallback category aborts, since every transaction would fail.
    """
    classifier = classifier or CategoryClassifier(db, cache)
    chunk_size = chunk_size or settings.reclassify_chunk_size
    result = BatchReclassifyResult()

    query = db.query(Transaction.id)
    if user_id is not None:
        query = query.filter(Transaction.user_id == user_id)
    if transaction_ids is not None:
        query = query.filter(Transaction.id.in_(transaction_ids))
    ids = [row[0] for row in query.order_by(Transaction.date, Transaction.id).all()]

    for start in range(0, len(ids), chunk_size):
        chunk_ids = ids[start:start + chunk_size]
        updated_in_chunk = 0
        failed_in_chunk = set()
        for txn in db.query(Transaction).filter(Transaction.id.in_(chunk_ids)).all():
            result.processed += 1
            try:
                _, changed = classifier.classify_and_apply(txn)
            except ConfigurationError:
                db.rollback()
                raise
            except Exception as e:
                logger.warning("Classification failed for transaction %s: %s", txn.id, e)
                result.failed += 1
                result.failed_transaction_ids.append(txn.id)
                failed_in_chunk.add(txn.id)
                continue
            if changed:
                updated_in_chunk += 1

        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Commit failed for chunk starting at %d: %s", start, e)
            lost = [i for i in chunk_ids if i not in failed_in_chunk]
            result.failed += len(lost)
            result.failed_transaction_ids.extend(lost)
            continue
        result.updated += updated_in_chunk

    logger.info(
        "Reclassified %d transactions: %d updated, %d failed",
        result.processed, result.updated, result.failed
    )
    return result


def describe_transaction(db: Session, cache: RuleCache, transaction_id: str) -> TransactionClassification:
    """
    Category match plus recurring status for one transaction.

    User decisions come first: a category the user set on this row, then a
    declaration about this row alone, then one about the whole merchant.
    Stored series only speak for the transactions they were built from.
    """
    txn = db.query(Transaction).filter(Transaction.id == transaction_id).first()
    if not txn:
        raise NotFoundError(transaction_not_found(transaction_id))

    if txn.category_source == override_service.USER_OVERRIDE_SOURCE and txn.category_id:
        category = load_category(db, cache, txn.category_id)
        match = build_match(category, txn.category_confidence or 1.0, override_service.USER_OVERRIDE_SOURCE)
    else:
        match = CategoryClassifier(db, cache).classify(txn)
    key = merchant_key_for(txn.merchant, txn.raw_description)

    instance_override = db.query(UserRecurringOverride).filter(
        UserRecurringOverride.user_id == txn.user_id,
        UserRecurringOverride.trigger_transaction_id == txn.id,
        UserRecurringOverride.apply_to_all.is_(False),
        UserRecurringOverride.is_active.is_(True)
    ).first()
    if instance_override is not None:
        return TransactionClassification(
            transaction_id=txn.id,
            merchant_key=key,
            category=match,
            is_recurring=instance_override.recurring_status == RecurringStatus.recurring,
            recurring_confidence=instance_override.confidence,
            recurring_source="user_override",
            related_count=1,
        )

    override = override_service.resolve_recurring_override(db, txn.user_id, key)
    if override is not None:
        related = override_service.get_related_transactions(db, txn.user_id, key)
        return TransactionClassification(
            transaction_id=txn.id,
            merchant_key=key,
            category=match,
            is_recurring=override.recurring_status == RecurringStatus.recurring,
            recurring_confidence=override.confidence,
            recurring_source="user_override",
            related_count=len(related),
        )

    series = db.query(RecurringSeries).filter(
        RecurringSeries.user_id == txn.user_id,
        RecurringSeries.merchant_key == key
    ).first()
    if series is not None and txn.id in (series.transaction_ids or []):
        return TransactionClassification(
            transaction_id=txn.id,
            merchant_key=key,
            category=match,
            is_recurring=True,
            recurring_confidence=series.confidence,
            recurring_source="auto_detection",
            frequency=series.frequency.value,
            related_count=series.occurrence_count,
        )

    return TransactionClassification(
        transaction_id=txn.id,
        merchant_key=key,
        category=match,
        is_recurring=False,
        recurring_confidence=0.0,
        recurring_source="none",
    )
