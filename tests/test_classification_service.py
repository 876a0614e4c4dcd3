"""Tests for the category classification cascade."""

import pytest
from datetime import date
from decimal import Decimal

from conftest import USER_ID, add_transaction, category_by_slug, monthly_dates
from sqlalchemy.exc import SQLAlchemyError

from recurwise.errors import CacheUnavailableError, ConfigurationError, NotFoundError
from recurwise.models.category import Category
from recurwise.models.override import RecurringStatus
from recurwise.models.transaction import Transaction
from recurwise.services import override_service, recurring_service
from recurwise.services.classification_service import (
    CategoryClassifier,
    DEFAULT_STRATEGIES,
    describe_transaction,
    reclassify_transactions,
)
from recurwise.services.rule_cache import RuleCache


class TestCascade:
    """Each step of the cascade, in priority order."""

    def test_user_override_wins(self, seeded_session, rule_cache):
        """A user override outranks even a detailed aggregator code."""
        groceries = category_by_slug(seeded_session, "groceries")
        override_service.record_category_override(
            seeded_session, USER_ID, "STARBUCKS", groceries.id
        )
        txn = add_transaction(
            seeded_session, "-5.25", date(2024, 1, 3), "STARBUCKS STORE 123",
            merchant="Starbucks", aggregator_detailed="FOOD_AND_DRINK_COFFEE"
        )

        result = CategoryClassifier(seeded_session, rule_cache).classify(txn)
        assert result.category_id == groceries.id
        assert result.confidence == 1.0
        assert result.source == "user_override"
        assert result.needs_review is False

    def test_override_is_per_user(self, seeded_session, rule_cache):
        """Another user's override is ignored."""
        groceries = category_by_slug(seeded_session, "groceries")
        override_service.record_category_override(
            seeded_session, "someone-else", "Starbucks", groceries.id
        )
        txn = add_transaction(seeded_session, "-5.25", date(2024, 1, 3), "STARBUCKS", merchant="Starbucks")

        result = CategoryClassifier(seeded_session, rule_cache).classify(txn)
        assert result.source == "merchant_keyword"
        assert result.category_slug == "food-and-drink"

    def test_aggregator_detailed(self, seeded_session, rule_cache):
        """Detailed codes use the table confidence."""
        txn = add_transaction(
            seeded_session, "-82.10", date(2024, 1, 3), "SAFEWAY 1234",
            aggregator_primary="FOOD_AND_DRINK", aggregator_detailed="FOOD_AND_DRINK_GROCERIES"
        )
        result = CategoryClassifier(seeded_session, rule_cache).classify(txn)
        assert result.category_slug == "groceries"
        assert result.confidence == pytest.approx(0.95)
        assert result.source == "aggregator_detailed"

    def test_aggregator_primary_discounted(self, seeded_session, rule_cache):
        """Primary codes are discounted by 0.9."""
        txn = add_transaction(
            seeded_session, "-30.00", date(2024, 1, 3), "METRO TRANSIT",
            aggregator_primary="TRANSPORTATION", aggregator_detailed="TRANSPORTATION_UNKNOWN_CODE"
        )
        result = CategoryClassifier(seeded_session, rule_cache).classify(txn)
        assert result.category_slug == "auto-and-transport"
        assert result.confidence == pytest.approx(0.85 * 0.9)
        assert result.source == "aggregator_primary"

    def test_merchant_keyword(self, seeded_session, rule_cache):
        """Normalized merchant keywords match whole words."""
        txn = add_transaction(seeded_session, "-18.40", date(2024, 1, 3), "UBER *TRIP", merchant="Uber Trip")
        result = CategoryClassifier(seeded_session, rule_cache).classify(txn)
        assert result.category_slug == "auto-and-transport"
        assert result.confidence == pytest.approx(0.90)
        assert result.source == "merchant_keyword"

    @pytest.mark.parametrize("description,slug", [
        ("STARBUCKS STORE 00123", "food-and-drink"),
        ("NETFLIX.COM 4498", "entertainment"),
        ("UBER *TRIP HELP.UBER.COM", "auto-and-transport"),
    ])
    def test_merchant_keyword_from_description(self, seeded_session, rule_cache, description, slug):
        """Without a merchant field the description is matched against merchant keywords."""
        txn = add_transaction(seeded_session, "-12.00", date(2024, 1, 3), description)
        result = CategoryClassifier(seeded_session, rule_cache).classify(txn)
        assert result.category_slug == slug
        assert result.source == "merchant_keyword"

    def test_keyword_needs_whole_word(self, seeded_session, rule_cache):
        """A keyword inside a longer word does not match."""
        txn = add_transaction(seeded_session, "-48.00", date(2024, 1, 3), "GASTROPUB DOWNTOWN")
        result = CategoryClassifier(seeded_session, rule_cache).classify(txn)
        assert result.source == "fallback"

    def test_override_category_added_after_cache_load(self, seeded_session, rule_cache):
        """An override to a category the cache has not seen still wins."""
        streaming = Category(name="Streaming", slug="streaming")
        seeded_session.add(streaming)
        seeded_session.commit()
        override_service.record_category_override(seeded_session, USER_ID, "NETFLIX", streaming.id)
        txn = add_transaction(seeded_session, "-15.99", date(2024, 1, 15), "NETFLIX.COM 4498")

        result = CategoryClassifier(seeded_session, rule_cache).classify(txn)
        assert result.category_slug == "streaming"
        assert result.source == "user_override"
        assert result.confidence == 1.0

    def test_description_keyword_without_merchant(self, seeded_session, rule_cache):
        """The raw description is searched when no merchant field exists."""
        txn = add_transaction(seeded_session, "2500.00", date(2024, 1, 3), "ACME CORP PAYROLL DIRECT DEP")
        result = CategoryClassifier(seeded_session, rule_cache).classify(txn)
        assert result.category_slug == "income"
        assert result.confidence == pytest.approx(0.95)
        assert result.source == "description_keyword"

    def test_fallback_for_empty_text(self, seeded_session, rule_cache):
        """No description and no merchant resolves to Uncategorized at zero."""
        txn = add_transaction(seeded_session, "-10.00", date(2024, 1, 3), "")
        result = CategoryClassifier(seeded_session, rule_cache).classify(txn)
        assert result.category_slug == "uncategorized"
        assert result.confidence == 0.0
        assert result.source == "fallback"
        assert result.needs_review is True

    def test_unmatched_text_falls_back(self, seeded_session, rule_cache):
        """Unrecognised merchants fall back as well."""
        txn = add_transaction(seeded_session, "-10.00", date(2024, 1, 3), "ZXQW HOLDINGS", merchant="Zxqw")
        result = CategoryClassifier(seeded_session, rule_cache).classify(txn)
        assert result.source == "fallback"

    def test_missing_fallback_is_configuration_error(self, db_session):
        """Without an Uncategorized category classification fails loudly."""
        db_session.add(Category(name="Groceries", slug="groceries"))
        db_session.commit()
        cache = RuleCache.from_db(db_session)
        txn = add_transaction(db_session, "-10.00", date(2024, 1, 3), "")

        with pytest.raises(ConfigurationError):
            CategoryClassifier(db_session, cache).classify(txn)

    def test_unloaded_cache_raises(self, seeded_session):
        """Using a cache before loading it is an error."""
        txn = add_transaction(seeded_session, "-10.00", date(2024, 1, 3), "SAFEWAY")
        with pytest.raises(CacheUnavailableError):
            CategoryClassifier(seeded_session, RuleCache()).classify(txn)

    def test_classify_does_not_write(self, seeded_session, rule_cache):
        """Classification is a pure read."""
        txn = add_transaction(seeded_session, "-10.00", date(2024, 1, 3), "SAFEWAY #12", merchant="Safeway")
        CategoryClassifier(seeded_session, rule_cache).classify(txn)
        assert txn.category_id is None
        assert txn.amount == Decimal("-10.00")


class TestShouldReplace:
    """Test replacement rules for existing categories."""

    def test_generic_always_replaced(self, seeded_session, rule_cache):
        """Other/Uncategorized are replaced even by a weak match."""
        other = category_by_slug(seeded_session, "other")
        classifier = CategoryClassifier(seeded_session, rule_cache)
        txn = add_transaction(seeded_session, "-10.00", date(2024, 1, 3), "SALARY ACME")
        match = classifier.classify(txn)
        weak = match.model_copy(update={"confidence": 0.1})

        assert classifier.should_replace(other.id, 0.99, weak) is True
        assert classifier.should_replace(None, None, weak) is True

    def test_confident_needs_strictly_higher(self, seeded_session, rule_cache):
        """A confident category only yields to a strictly higher confidence."""
        groceries = category_by_slug(seeded_session, "groceries")
        classifier = CategoryClassifier(seeded_session, rule_cache)
        txn = add_transaction(seeded_session, "-10.00", date(2024, 1, 3), "SALARY ACME")
        match = classifier.classify(txn)

        assert classifier.should_replace(groceries.id, 0.9, match.model_copy(update={"confidence": 0.85})) is False
        assert classifier.should_replace(groceries.id, 0.9, match.model_copy(update={"confidence": 0.9})) is False
        assert classifier.should_replace(groceries.id, 0.9, match.model_copy(update={"confidence": 0.95})) is True

    def test_classify_and_apply(self, seeded_session, rule_cache):
        """Apply writes category, confidence and source onto the row."""
        other = category_by_slug(seeded_session, "other")
        txn = add_transaction(
            seeded_session, "-45.00", date(2024, 1, 3), "SHELL OIL 5531", merchant="Shell Oil",
            category_id=other.id, category_confidence=0.99
        )
        result, changed = CategoryClassifier(seeded_session, rule_cache).classify_and_apply(txn)

        assert changed is True
        assert txn.category_id == result.category_id
        assert txn.category_source == "merchant_keyword"
        assert txn.amount == Decimal("-45.00")

    def test_user_choice_kept(self, seeded_session, rule_cache):
        """A category the user set only yields to another user override."""
        other = category_by_slug(seeded_session, "other")
        classifier = CategoryClassifier(seeded_session, rule_cache)
        txn = add_transaction(seeded_session, "-5.00", date(2024, 1, 3), "STARBUCKS", merchant="Starbucks")
        match = classifier.classify(txn)

        assert classifier.should_replace(other.id, 1.0, match, "user_override") is False
        assert classifier.should_replace(
            other.id, 1.0, match.model_copy(update={"source": "user_override"}), "user_override"
        ) is True

    def test_reclassify_keeps_instance_override(self, seeded_session, rule_cache):
        """Batch reclassification leaves a one-off user choice alone."""
        other = category_by_slug(seeded_session, "other")
        txn = add_transaction(seeded_session, "-5.00", date(2024, 1, 3), "STARBUCKS", merchant="Starbucks")
        override_service.record_category_override(
            seeded_session, USER_ID, "Starbucks", other.id, apply_to_all=False, transaction_id=txn.id
        )

        result = reclassify_transactions(seeded_session, rule_cache)
        assert result.updated == 0
        seeded_session.refresh(txn)
        assert txn.category_id == other.id
        assert txn.category_source == "user_override"


class ExplodingStrategy:
    """Test strategy that fails for descriptions containing BOOM."""
    source = "exploding"

    def match(self, ctx):
        if "BOOM" in ctx.description:
            raise RuntimeError("bad row")
        return None


class TestBatchReclassify:
    """Test batch reclassification."""

    def test_updates_user_transactions(self, seeded_session, rule_cache):
        """All of the user's transactions are processed."""
        add_transaction(seeded_session, "-5.00", date(2024, 1, 3), "STARBUCKS", merchant="Starbucks")
        add_transaction(seeded_session, "-60.00", date(2024, 1, 4), "SAFEWAY", merchant="Safeway")
        add_transaction(seeded_session, "-9.00", date(2024, 1, 5), "SAFEWAY", merchant="Safeway", user_id="other")

        result = reclassify_transactions(seeded_session, rule_cache, user_id=USER_ID)
        assert result.processed == 2
        assert result.updated == 2
        assert result.failed == 0

    def test_failure_does_not_abort_batch(self, seeded_session, rule_cache):
        """One bad transaction is counted and the rest still classify."""
        bad = add_transaction(seeded_session, "-5.00", date(2024, 1, 3), "BOOM CORP")
        good = add_transaction(seeded_session, "-60.00", date(2024, 1, 4), "SAFEWAY", merchant="Safeway")
        classifier = CategoryClassifier(
            seeded_session, rule_cache, strategies=[ExplodingStrategy()] + list(DEFAULT_STRATEGIES)
        )

        result = reclassify_transactions(seeded_session, rule_cache, classifier=classifier, chunk_size=1)
        assert result.processed == 2
        assert result.failed == 1
        assert result.failed_transaction_ids == [bad.id]
        seeded_session.refresh(good)
        assert good.category_id == category_by_slug(seeded_session, "groceries").id

    def test_configuration_error_aborts(self, db_session):
        """A missing fallback stops the batch instead of failing every row."""
        db_session.add(Category(name="Groceries", slug="groceries"))
        db_session.commit()
        add_transaction(db_session, "-5.00", date(2024, 1, 3), "ZXQW")
        cache = RuleCache.from_db(db_session)

        with pytest.raises(ConfigurationError):
            reclassify_transactions(db_session, cache)

    def test_rerun_changes_nothing(self, seeded_session, rule_cache):
        """Reclassifying settled data updates no rows."""
        add_transaction(seeded_session, "-60.00", date(2024, 1, 4), "SAFEWAY", merchant="Safeway")
        reclassify_transactions(seeded_session, rule_cache)
        second = reclassify_transactions(seeded_session, rule_cache)
        assert second.updated == 0

    def test_commit_failure_counts_each_transaction_once(self, seeded_session, rule_cache, monkeypatch):
        """A failed chunk commit adds only the rows not already counted."""
        bad = add_transaction(seeded_session, "-5.00", date(2024, 1, 3), "BOOM CORP")
        good = add_transaction(seeded_session, "-60.00", date(2024, 1, 4), "SAFEWAY", merchant="Safeway")
        classifier = CategoryClassifier(
            seeded_session, rule_cache, strategies=[ExplodingStrategy()] + list(DEFAULT_STRATEGIES)
        )

        def failing_commit():
            raise SQLAlchemyError("database is locked")

        monkeypatch.setattr(seeded_session, "commit", failing_commit)
        result = reclassify_transactions(seeded_session, rule_cache, classifier=classifier)
        assert result.failed == 2
        assert result.failed_transaction_ids == [bad.id, good.id]
        assert result.updated == 0


class TestDescribeTransaction:
    """Test the combined category and recurring view."""

    def test_unknown_transaction(self, seeded_session, rule_cache):
        """Unknown ids raise NotFoundError."""
        with pytest.raises(NotFoundError):
            describe_transaction(seeded_session, rule_cache, "missing")

    def test_not_recurring(self, seeded_session, rule_cache):
        """A one-off purchase has no recurring source."""
        txn = add_transaction(seeded_session, "-60.00", date(2024, 1, 4), "SAFEWAY", merchant="Safeway")
        result = describe_transaction(seeded_session, rule_cache, txn.id)
        assert result.is_recurring is False
        assert result.recurring_source == "none"
        assert result.category.category_slug == "groceries"

    def test_auto_detected(self, seeded_session, rule_cache, netflix_transactions):
        """Stored series mark their merchant as auto-detected recurring."""
        recurring_service.run_detection(seeded_session, USER_ID)
        result = describe_transaction(seeded_session, rule_cache, netflix_transactions[0].id)
        assert result.is_recurring is True
        assert result.recurring_source == "auto_detection"
        assert result.frequency == "monthly"
        assert result.related_count == 6

    def test_override_outranks_detection(self, seeded_session, rule_cache, netflix_transactions):
        """A non-recurring override wins over a stored series."""
        recurring_service.run_detection(seeded_session, USER_ID)
        override_service.record_recurring_override(
            seeded_session, USER_ID, "Netflix", RecurringStatus.non_recurring
        )
        result = describe_transaction(seeded_session, rule_cache, netflix_transactions[0].id)
        assert result.is_recurring is False
        assert result.recurring_source == "user_override"
        assert result.recurring_confidence == 1.0
        assert result.related_count == 6

    def test_instance_recurring_override(self, seeded_session, rule_cache, netflix_transactions):
        """A declaration about one transaction outranks the detected series for that row only."""
        recurring_service.run_detection(seeded_session, USER_ID)
        target, sibling = netflix_transactions[0], netflix_transactions[1]
        override_service.record_recurring_override(
            seeded_session, USER_ID, "netflix", RecurringStatus.non_recurring,
            apply_to_all=False, transaction_id=target.id
        )

        result = describe_transaction(seeded_session, rule_cache, target.id)
        assert result.is_recurring is False
        assert result.recurring_source == "user_override"

        other = describe_transaction(seeded_session, rule_cache, sibling.id)
        assert other.recurring_source == "auto_detection"

    def test_instance_category_override(self, seeded_session, rule_cache, netflix_transactions):
        """A category set on one row is reported as the user's."""
        groceries = category_by_slug(seeded_session, "groceries")
        target = netflix_transactions[0]
        override_service.record_category_override(
            seeded_session, USER_ID, "netflix", groceries.id,
            apply_to_all=False, transaction_id=target.id
        )

        result = describe_transaction(seeded_session, rule_cache, target.id)
        assert result.category.category_slug == "groceries"
        assert result.category.source == "user_override"
        assert result.category.confidence == 1.0

    def test_refund_not_part_of_series(self, seeded_session, rule_cache, netflix_transactions):
        """Transactions outside the series are not reported as recurring."""
        recurring_service.run_detection(seeded_session, USER_ID)
        refund = add_transaction(seeded_session, "15.99", date(2024, 6, 20), "NETFLIX.COM 4498")

        result = describe_transaction(seeded_session, rule_cache, refund.id)
        assert result.is_recurring is False
        assert result.recurring_source == "none"
