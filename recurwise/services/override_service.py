"""Service for user category and recurring overrides.

Overrides are keyed by normalized merchant and matched exactly. Writes are
validated before anything is persisted, and committed before returning so the
next classification or detection read sees them.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from recurwise.errors import (
    NotFoundError,
    ValidationError,
    category_not_found,
    recurring_override_not_found,
    transaction_not_found,
)
from recurwise.logging_setup import get_logger
from recurwise.models.category import Category
from recurwise.models.override import (
    AuditAction,
    OverrideAudit,
    OverrideKind,
    RecurringStatus,
    UserMerchantOverride,
    UserRecurringOverride,
)
from recurwise.models.transaction import Transaction
from recurwise.schemas.override import (
    CategoryOverrideResponse,
    GroupedRelatedTransactions,
    OverrideAuditEntry,
    OverrideResolution,
    OverrideResult,
    OverrideSummary,
    RecurringOverrideResponse,
    RelatedTransaction,
    RelatedTransactionSummary,
)
from recurwise.services.merchant_normalizer import merchant_key_for, normalize_key

logger = get_logger(__name__)

USER_OVERRIDE_SOURCE = "user_override"

SUBSCRIPTION_KEYWORDS = [
    "prime", "subscription", "membership", "premium", "monthly", "yearly",
    "auto", "recurring", "plan", "service", "renew",
]

# (center, tolerance) in days
REGULAR_INTERVALS = [(7, 3), (30, 7), (90, 14), (365, 30)]


def _merchant_key(merchant: str) -> str:
    key = normalize_key(merchant)
    if not key:
        raise ValidationError("Merchant name is required")
    return key


def _parse_status(status: Union[RecurringStatus, str]) -> RecurringStatus:
    try:
        return RecurringStatus(status)
    except ValueError:
        raise ValidationError(
            f"Invalid recurring status '{status}'. "
            f"Expected one of: {', '.join(s.value for s in RecurringStatus)}"
        )


def _get_user_transaction(db: Session, user_id: str, transaction_id: Optional[str]) -> Transaction:
    if not transaction_id:
        raise ValidationError("transaction_id is required when apply_to_all is False")
    txn = db.query(Transaction).filter(
        Transaction.id == transaction_id,
        Transaction.user_id == user_id
    ).first()
    if not txn:
        raise NotFoundError(transaction_not_found(transaction_id))
    return txn


def _audit(
    db: Session,
    user_id: str,
    merchant_key: str,
    kind: OverrideKind,
    action: AuditAction,
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
    transaction_id: Optional[str] = None,
    actor: Optional[str] = None
) -> None:
    db.add(OverrideAudit(
        user_id=user_id,
        actor=actor or user_id,
        merchant_key=merchant_key,
        override_kind=kind,
        action=action,
        transaction_id=transaction_id,
        old_value=old_value,
        new_value=new_value,
    ))


def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def _status_value(is_recurring: bool) -> str:
    return RecurringStatus.recurring.value if is_recurring else RecurringStatus.non_recurring.value


def get_related_transactions(db: Session, user_id: str, merchant: str) -> List[Transaction]:
    """All of a user's transactions whose normalized merchant equals this one, newest first."""
    key = _merchant_key(merchant)
    transactions = db.query(Transaction).filter(
        Transaction.user_id == user_id
    ).order_by(Transaction.date.desc(), Transaction.id).all()
    return [t for t in transactions if merchant_key_for(t.merchant, t.raw_description) == key]


def resolve_category_override(db: Session, user_id: str, merchant: str) -> Optional[UserMerchantOverride]:
    key = normalize_key(merchant)
    if not key:
        return None
    return db.query(UserMerchantOverride).filter(
        UserMerchantOverride.user_id == user_id,
        UserMerchantOverride.merchant_key == key
    ).first()


def resolve_recurring_override(db: Session, user_id: str, merchant: str) -> Optional[UserRecurringOverride]:
    """Active, apply-to-all recurring override for a merchant."""
    key = normalize_key(merchant)
    if not key:
        return None
    return db.query(UserRecurringOverride).filter(
        UserRecurringOverride.user_id == user_id,
        UserRecurringOverride.merchant_key == key,
        UserRecurringOverride.is_active.is_(True),
        UserRecurringOverride.apply_to_all.is_(True)
    ).first()


def resolve(db: Session, user_id: str, merchant: str) -> Optional[OverrideResolution]:
    """Active overrides for a merchant, or None when the user never overrode it."""
    category = resolve_category_override(db, user_id, merchant)
    recurring = resolve_recurring_override(db, user_id, merchant)
    if category is None and recurring is None:
        return None
    return OverrideResolution(
        merchant_key=normalize_key(merchant),
        category=CategoryOverrideResponse.model_validate(category) if category else None,
        recurring=RecurringOverrideResponse.model_validate(recurring) if recurring else None,
    )


def active_recurring_overrides(db: Session, user_id: str) -> Dict[str, UserRecurringOverride]:
    """Active apply-to-all recurring overrides keyed by merchant, as used by detection."""
    overrides = db.query(UserRecurringOverride).filter(
        UserRecurringOverride.user_id == user_id,
        UserRecurringOverride.is_active.is_(True),
        UserRecurringOverride.apply_to_all.is_(True)
    ).all()
    return {o.merchant_key: o for o in overrides}


def record_category_override(
    db: Session,
    user_id: str,
    merchant: str,
    category_id: str,
    apply_to_all: bool = True,
    transaction_id: Optional[str] = None,
    actor: Optional[str] = None
) -> OverrideResult:
    """
    Record a user's category fix.

    With ``apply_to_all`` the merchant-level override is created or updated
    and every matching historical transaction is rewritten. Otherwise only
    ``transaction_id`` is changed. Replaying the same call changes nothing.
    """
    key = _merchant_key(merchant)
    category = db.query(Category).filter(Category.id == category_id).first()
    if not category:
        raise NotFoundError(category_not_found(category_id))

    if not apply_to_all:
        txn = _get_user_transaction(db, user_id, transaction_id)
        updated = _apply_category(db, user_id, key, [txn], category.id, actor)
        _commit(db)
        logger.info("Category override for '%s' applied to transaction %s", key, txn.id)
        return OverrideResult(
            merchant_key=key, apply_to_all=False, created=False, transactions_updated=updated
        )

    override = resolve_category_override(db, user_id, key)
    created = override is None
    if created:
        override = UserMerchantOverride(
            user_id=user_id,
            merchant_key=key,
            original_merchant=merchant,
            category_id=category.id,
            confidence=1.0,
            applied_count=0,
        )
        db.add(override)
        _audit(db, user_id, key, OverrideKind.category, AuditAction.created,
               new_value=category.id, actor=actor)
    elif override.category_id != category.id:
        _audit(db, user_id, key, OverrideKind.category, AuditAction.updated,
               old_value=override.category_id, new_value=category.id, actor=actor)
        override.category_id = category.id
        override.original_merchant = merchant

    related = get_related_transactions(db, user_id, key)
    updated = _apply_category(db, user_id, key, related, category.id, actor)
    override.applied_count = (override.applied_count or 0) + updated
    _commit(db)
    db.refresh(override)

    logger.info(
        "Category override for '%s' -> %s (%s), %d transactions updated",
        key, category.slug, "created" if created else "updated", updated
    )
    return OverrideResult(
        merchant_key=key,
        apply_to_all=True,
        created=created,
        transactions_updated=updated,
        override_id=override.id,
    )


def _apply_category(
    db: Session,
    user_id: str,
    key: str,
    transactions: List[Transaction],
    category_id: str,
    actor: Optional[str]
) -> int:
    updated = 0
    for txn in transactions:
        if (
            txn.category_id == category_id
            and txn.category_confidence == 1.0
            and txn.category_source == USER_OVERRIDE_SOURCE
        ):
            continue
        _audit(db, user_id, key, OverrideKind.category, AuditAction.applied,
               old_value=txn.category_id, new_value=category_id,
               transaction_id=txn.id, actor=actor)
        txn.category_id = category_id
        txn.category_confidence = 1.0
        txn.category_source = USER_OVERRIDE_SOURCE
        txn.needs_review = False
        updated += 1
    return updated


def record_recurring_override(
    db: Session,
    user_id: str,
    merchant: str,
    recurring_status: Union[RecurringStatus, str],
    apply_to_all: bool = True,
    transaction_id: Optional[str] = None,
    reason: Optional[str] = None,
    actor: Optional[str] = None
) -> OverrideResult:
    """
    Record a recurring / non-recurring declaration.

    ``apply_to_all`` creates or reactivates the merchant-level override and
    flags every matching transaction that has no declaration of its own.
    An instance-only declaration is stored against its transaction, touches
    just that transaction and leaves the merchant-level override alone.
    """
    key = _merchant_key(merchant)
    status = _parse_status(recurring_status)
    is_recurring = status == RecurringStatus.recurring

    if not apply_to_all:
        txn = _get_user_transaction(db, user_id, transaction_id)
        return _record_instance_recurring(db, user_id, key, merchant, txn, status, reason, actor)

    override = _merchant_recurring_override(db, user_id, key)
    created = override is None
    if created:
        override = UserRecurringOverride(
            user_id=user_id,
            merchant_key=key,
            original_merchant=merchant,
            recurring_status=status,
            apply_to_all=True,
            confidence=1.0,
            reason=reason,
            trigger_transaction_id=transaction_id,
            is_active=True,
            applied_count=0,
        )
        db.add(override)
        _audit(db, user_id, key, OverrideKind.recurring, AuditAction.created,
               new_value=status.value, actor=actor)
    elif override.recurring_status != status or not override.is_active:
        old = override.recurring_status.value if override.is_active else "inactive"
        _audit(db, user_id, key, OverrideKind.recurring, AuditAction.updated,
               old_value=old, new_value=status.value, actor=actor)
        override.recurring_status = status
        override.is_active = True
    if not created:
        if reason is not None:
            override.reason = reason
        if transaction_id is not None:
            override.trigger_transaction_id = transaction_id

    # Rows the user declared one by one keep their own status
    pinned = {
        o.trigger_transaction_id for o in db.query(UserRecurringOverride).filter(
            UserRecurringOverride.user_id == user_id,
            UserRecurringOverride.merchant_key == key,
            UserRecurringOverride.apply_to_all.is_(False),
            UserRecurringOverride.is_active.is_(True)
        ).all()
    }
    related = [t for t in get_related_transactions(db, user_id, key) if t.id not in pinned]
    updated = _apply_recurring(db, user_id, key, related, is_recurring, actor)
    override.applied_count = (override.applied_count or 0) + updated
    _commit(db)
    db.refresh(override)

    logger.info(
        "Recurring override for '%s' -> %s (%s), %d transactions updated",
        key, status.value, "created" if created else "updated", updated
    )
    return OverrideResult(
        merchant_key=key,
        apply_to_all=True,
        created=created,
        transactions_updated=updated,
        override_id=override.id,
    )


def _merchant_recurring_override(db: Session, user_id: str, key: str) -> Optional[UserRecurringOverride]:
    return db.query(UserRecurringOverride).filter(
        UserRecurringOverride.user_id == user_id,
        UserRecurringOverride.merchant_key == key,
        UserRecurringOverride.apply_to_all.is_(True)
    ).first()


def _instance_recurring_override(
    db: Session,
    user_id: str,
    transaction_id: str
) -> Optional[UserRecurringOverride]:
    return db.query(UserRecurringOverride).filter(
        UserRecurringOverride.user_id == user_id,
        UserRecurringOverride.trigger_transaction_id == transaction_id,
        UserRecurringOverride.apply_to_all.is_(False)
    ).first()


def _record_instance_recurring(
    db: Session,
    user_id: str,
    key: str,
    merchant: str,
    txn: Transaction,
    status: RecurringStatus,
    reason: Optional[str],
    actor: Optional[str]
) -> OverrideResult:
    """Upsert the instance-only row for one transaction and flag just that transaction."""
    override = _instance_recurring_override(db, user_id, txn.id)
    created = override is None
    if created:
        override = UserRecurringOverride(
            user_id=user_id,
            merchant_key=key,
            original_merchant=merchant,
            recurring_status=status,
            apply_to_all=False,
            confidence=1.0,
            reason=reason,
            trigger_transaction_id=txn.id,
            is_active=True,
            applied_count=0,
        )
        db.add(override)
        _audit(db, user_id, key, OverrideKind.recurring, AuditAction.created,
               new_value=status.value, transaction_id=txn.id, actor=actor)
    elif override.recurring_status != status or not override.is_active:
        old = override.recurring_status.value if override.is_active else "inactive"
        _audit(db, user_id, key, OverrideKind.recurring, AuditAction.updated,
               old_value=old, new_value=status.value, transaction_id=txn.id, actor=actor)
        override.recurring_status = status
        override.is_active = True
    if not created and reason is not None:
        override.reason = reason

    updated = _apply_recurring(db, user_id, key, [txn], status == RecurringStatus.recurring, actor)
    override.applied_count = (override.applied_count or 0) + updated
    _commit(db)
    db.refresh(override)

    logger.info("Recurring override for '%s' -> %s applied to transaction %s only", key, status.value, txn.id)
    return OverrideResult(
        merchant_key=key,
        apply_to_all=False,
        created=created,
        transactions_updated=updated,
        override_id=override.id,
    )


def _apply_recurring(
    db: Session,
    user_id: str,
    key: str,
    transactions: List[Transaction],
    is_recurring: bool,
    actor: Optional[str]
) -> int:
    updated = 0
    for txn in transactions:
        if txn.is_recurring == is_recurring:
            continue
        _audit(db, user_id, key, OverrideKind.recurring, AuditAction.applied,
               old_value=_status_value(txn.is_recurring), new_value=_status_value(is_recurring),
               transaction_id=txn.id, actor=actor)
        txn.is_recurring = is_recurring
        updated += 1
    return updated


def deactivate_recurring_override(
    db: Session,
    user_id: str,
    merchant: str,
    actor: Optional[str] = None,
    transaction_id: Optional[str] = None
) -> UserRecurringOverride:
    """
    Soft-delete a recurring override. The row and its history are kept.

    With ``transaction_id`` the instance-only override for that transaction
    is deactivated instead of the merchant-level one.
    """
    key = _merchant_key(merchant)
    if transaction_id is not None:
        override = _instance_recurring_override(db, user_id, transaction_id)
    else:
        override = _merchant_recurring_override(db, user_id, key)
    if not override:
        raise NotFoundError(recurring_override_not_found(user_id, key))

    if override.is_active:
        override.is_active = False
        _audit(db, user_id, key, OverrideKind.recurring, AuditAction.deactivated,
               old_value=override.recurring_status.value, new_value="inactive", actor=actor)
        _commit(db)
        db.refresh(override)
        logger.info("Recurring override for '%s' deactivated", key)
    return override


def list_recurring_overrides(
    db: Session,
    user_id: str,
    include_inactive: bool = False
) -> List[UserRecurringOverride]:
    query = db.query(UserRecurringOverride).filter(UserRecurringOverride.user_id == user_id)
    if not include_inactive:
        query = query.filter(UserRecurringOverride.is_active.is_(True))
    return query.order_by(UserRecurringOverride.merchant_key).all()


def list_category_overrides(db: Session, user_id: str) -> List[UserMerchantOverride]:
    return db.query(UserMerchantOverride).filter(
        UserMerchantOverride.user_id == user_id
    ).order_by(UserMerchantOverride.merchant_key).all()


def get_override_summary(db: Session, user_id: str) -> OverrideSummary:
    recurring_overrides = list_recurring_overrides(db, user_id)
    category_overrides = list_category_overrides(db, user_id)
    return OverrideSummary(
        total_recurring_overrides=len(recurring_overrides),
        recurring_count=sum(1 for o in recurring_overrides if o.recurring_status == RecurringStatus.recurring),
        non_recurring_count=sum(1 for o in recurring_overrides if o.recurring_status == RecurringStatus.non_recurring),
        apply_to_all_count=sum(1 for o in recurring_overrides if o.apply_to_all),
        instance_only_count=sum(1 for o in recurring_overrides if not o.apply_to_all),
        category_override_count=len(category_overrides),
        total_applied=sum(o.applied_count for o in recurring_overrides)
        + sum(o.applied_count for o in category_overrides),
    )


def has_regular_interval(transactions: List[Transaction]) -> bool:
    """True if the average gap between the transactions sits near a common billing interval."""
    if len(transactions) < 2:
        return False
    dates = sorted(t.date for t in transactions)
    gaps = [(b - a).days for a, b in zip(dates, dates[1:])]
    average = sum(gaps) / len(gaps)
    return any(abs(average - center) <= tolerance for center, tolerance in REGULAR_INTERVALS)


def has_subscription_keywords(transactions: List[Transaction]) -> bool:
    for txn in transactions:
        text = f"{txn.raw_description or ''} {txn.merchant or ''}".lower()
        if any(keyword in text for keyword in SUBSCRIPTION_KEYWORDS):
            return True
    return False


def get_grouped_related_transactions(db: Session, user_id: str, merchant: str) -> GroupedRelatedTransactions:
    """
    Split a merchant's transactions by amount and guess which amount groups recur.

    Used to help a user decide whether to mark a merchant recurring as a whole
    or only some of its charges.
    """
    key = _merchant_key(merchant)
    related = get_related_transactions(db, user_id, key)

    by_amount: Dict[Decimal, List[Transaction]] = defaultdict(list)
    for txn in related:
        by_amount[txn.amount].append(txn)

    recurring: List[Transaction] = []
    one_time: List[Transaction] = []
    unclear: List[Transaction] = []

    for group in by_amount.values():
        keywords = has_subscription_keywords(group)
        if len(group) >= 3:
            if has_regular_interval(group) or keywords:
                recurring.extend(group)
            elif len(group) >= 5:
                unclear.extend(group)
            else:
                one_time.extend(group)
        elif len(group) == 2:
            (recurring if keywords else unclear).extend(group)
        else:
            (unclear if keywords else one_time).extend(group)

    def newest_first(transactions: List[Transaction]) -> List[RelatedTransaction]:
        ordered = sorted(transactions, key=lambda t: (t.date, t.id), reverse=True)
        return [RelatedTransaction.model_validate(t) for t in ordered]

    return GroupedRelatedTransactions(
        merchant_key=key,
        recurring=newest_first(recurring),
        one_time=newest_first(one_time),
        unclear=newest_first(unclear),
        summary=RelatedTransactionSummary(
            total=len(related),
            recurring_count=len(recurring),
            one_time_count=len(one_time),
            unclear_count=len(unclear),
            potential_recurring_amounts=sorted(a for a, g in by_amount.items() if len(g) >= 2),
        ),
    )


def get_audit_trail(db: Session, user_id: str, merchant: Optional[str] = None) -> List[OverrideAuditEntry]:
    """Override history for a user, newest first."""
    query = db.query(OverrideAudit).filter(OverrideAudit.user_id == user_id)
    if merchant is not None:
        query = query.filter(OverrideAudit.merchant_key == _merchant_key(merchant))
    entries = query.order_by(OverrideAudit.created_at.desc()).all()
    return [OverrideAuditEntry.model_validate(e) for e in entries]
