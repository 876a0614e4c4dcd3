"""Service for recurring transaction detection.

Detection is recomputed from scratch on every run: a user's transactions are
grouped by normalized merchant, each group gets a statistical fingerprint, and
groups that look periodic enough become recurring series. ``detect_series``
is the pure core; ``detect`` and ``run_detection`` wrap it with database
loading and persistence.
"""

import re
import statistics
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from recurwise.config import settings
from recurwise.logging_setup import get_logger
from recurwise.models.category import Category
from recurwise.models.override import RecurringStatus
from recurwise.models.recurring import Frequency, MerchantType, RecurringSeries
from recurwise.models.transaction import Transaction
from recurwise.schemas.recurring import ConfidenceFactors, RecurringSeriesResult, StoredRecurringSeries
from recurwise.schemas.transaction import TransactionRecord
from recurwise.services import override_service
from recurwise.services.merchant_normalizer import display_name, merchant_key_for

logger = get_logger(__name__)

# (frequency, center days, tolerance days), checked in order
FREQUENCY_BANDS = [
    (Frequency.weekly, 7, 2),
    (Frequency.biweekly, 14, 3),
    (Frequency.monthly, 30, 7),
    (Frequency.quarterly, 90, 14),
    (Frequency.yearly, 365, 30),
]

# Category names are checked across every type before merchant patterns are
MERCHANT_TYPE_RULES = [
    (
        MerchantType.subscription,
        {"subscriptions", "entertainment", "software", "fitness"},
        re.compile(r"netflix|spotify|hulu|disney|amazon prime|adobe|microsoft|google|apple|gym|fitness"),
    ),
    (
        MerchantType.utility,
        {"utilities", "internet", "phone", "bills & utilities"},
        re.compile(r"electric|gas|water|sewer|utility|power|energy|internet|phone|cable|comcast|verizon|at&t|pg&e|edison"),
    ),
    (
        MerchantType.insurance,
        {"insurance"},
        re.compile(r"insurance|geico|state farm|allstate|progressive"),
    ),
    (
        MerchantType.loan,
        {"credit card", "credit card payment", "loans", "loan payments", "mortgage"},
        re.compile(r"loan|mortgage|credit card|payment|autopay|american express"),
    ),
    (
        MerchantType.discretionary,
        {"restaurants", "fast food", "coffee shops", "transportation", "shopping", "food & drink"},
        re.compile(r"starbucks|mcdonalds|uber|lyft|restaurant|coffee|dining|shopping|entertainment"),
    ),
]

# Maximum tolerable amount coefficient of variation
VARIANCE_THRESHOLDS = {
    MerchantType.subscription: 0.05,
    MerchantType.utility: 0.15,
    MerchantType.insurance: 0.10,
    MerchantType.loan: 0.05,
    MerchantType.discretionary: 0.50,
    MerchantType.unknown: 0.10,
}

MIN_OCCURRENCES = {
    MerchantType.subscription: 2,
    MerchantType.utility: 2,
    MerchantType.insurance: 2,
    MerchantType.loan: 3,
    MerchantType.unknown: 3,
}

MERCHANT_TYPE_WEIGHTS = {
    MerchantType.subscription: 0.30,
    MerchantType.utility: 0.25,
    MerchantType.insurance: 0.20,
    MerchantType.loan: 0.20,
    MerchantType.discretionary: -0.50,
    MerchantType.unknown: 0.0,
}

MERCHANT_TYPE_REASONS = {
    MerchantType.subscription: "known subscription service",
    MerchantType.utility: "utility provider",
    MerchantType.insurance: "financial service",
    MerchantType.loan: "financial service",
    MerchantType.discretionary: "discretionary spending (excluded)",
}

NOTIFICATION_DAYS = {
    MerchantType.subscription: 3,
    MerchantType.utility: 7,
    MerchantType.insurance: 14,
    MerchantType.loan: 5,
    MerchantType.unknown: 3,
}

CATEGORY_TYPES = {
    MerchantType.subscription: "Subscriptions",
    MerchantType.utility: "Utilities",
    MerchantType.insurance: "Insurance",
    MerchantType.loan: "Credit Card",
}


def infer_frequency(average_gap: float) -> Frequency:
    """Match an average gap in days against the frequency bands."""
    for frequency, center, tolerance in FREQUENCY_BANDS:
        if abs(average_gap - center) <= tolerance:
            return frequency
    return Frequency.irregular


def classify_merchant_type(merchant_key: str, category_names: Iterable[Optional[str]] = ()) -> MerchantType:
    names = {n.strip().lower() for n in category_names if n}
    for merchant_type, type_categories, _ in MERCHANT_TYPE_RULES:
        if names & type_categories:
            return merchant_type
    for merchant_type, _, pattern in MERCHANT_TYPE_RULES:
        if pattern.search(merchant_key):
            return merchant_type
    return MerchantType.unknown


def calculate_day_consistency(dates: List[date], tolerance: Optional[int] = None) -> float:
    """
    Share of occurrences falling in the largest day-of-month cluster.

    Each day joins the first existing cluster whose anchor is within
    ``tolerance`` days, otherwise it starts a new cluster.
    """
    if len(dates) < 2:
        return 0.0
    tolerance = settings.day_cluster_tolerance if tolerance is None else tolerance

    clusters: Dict[int, int] = {}
    for d in dates:
        anchor = next((a for a in clusters if abs(a - d.day) <= tolerance), d.day)
        clusters[anchor] = clusters.get(anchor, 0) + 1
    return max(clusters.values()) / len(dates)


def calculate_amount_variance(amounts: List[float]) -> float:
    """Population coefficient of variation; 1.0 when the average is not positive."""
    if not amounts:
        return 1.0
    average = sum(amounts) / len(amounts)
    if average <= 0:
        return 1.0
    return statistics.pstdev(amounts) / average


def calculate_gaps(dates: List[date]) -> List[int]:
    return [(b - a).days for a, b in zip(dates, dates[1:])]


def score_confidence(
    merchant_type: MerchantType,
    occurrence_count: int,
    amount_variance: float,
    frequency: Frequency,
    day_consistency: float,
    user_confirmed: bool = False
) -> Tuple[float, ConfidenceFactors, List[str]]:
    """
    Weighted sum of the four bounded factors, clamped to [0, 1].

    Returns the total, the individual factors and the reason phrases.
    """
    reasons: List[str] = []
    threshold = VARIANCE_THRESHOLDS.get(merchant_type, 0.1)

    type_score = MERCHANT_TYPE_WEIGHTS[merchant_type]
    if merchant_type in MERCHANT_TYPE_REASONS:
        reasons.append(MERCHANT_TYPE_REASONS[merchant_type])

    if occurrence_count >= 6:
        count_score = 0.25
        reasons.append(f"{occurrence_count} consistent occurrences")
    elif occurrence_count >= 4:
        count_score = 0.15
        reasons.append(f"{occurrence_count} occurrences")
    elif occurrence_count >= 3:
        count_score = 0.10
        reasons.append(f"{occurrence_count} occurrences")
    else:
        count_score = 0.05
        reasons.append(f"only {occurrence_count} occurrences")

    if amount_variance <= threshold / 2:
        amount_score = 0.25
        reasons.append(f"very consistent amount (±{amount_variance * 100:.1f}%)")
    elif amount_variance <= threshold:
        amount_score = 0.15
        reasons.append("consistent amount")
    else:
        amount_score = 0.05
        reasons.append("variable amount")

    timing_score = 0.0
    if frequency != Frequency.irregular:
        if day_consistency > 0.8:
            timing_score = 0.20
            reasons.append(f"{frequency.value} on consistent dates")
        elif day_consistency > 0.6:
            timing_score = 0.15
            reasons.append(f"{frequency.value} timing")
        else:
            timing_score = 0.10
            reasons.append(f"{frequency.value} but variable dates")

    total = min(max(type_score + count_score + amount_score + timing_score, 0.0), 1.0)

    bonus = 0.0
    if user_confirmed:
        bonus = settings.override_confidence_bonus
        total = min(total + bonus, 1.0)
        reasons.append("user confirmed recurring")

    factors = ConfidenceFactors(
        merchant_type=type_score,
        occurrence_count=count_score,
        amount_consistency=amount_score,
        timing_consistency=timing_score,
        override_bonus=bonus,
    )
    return round(total, 4), factors, reasons


def calculate_next_due(
    last_date: date,
    frequency: Frequency,
    preferred_day: Optional[int] = None
) -> date:
    """
    Advance the last observed date by one period.

    Month-based frequencies land on ``preferred_day`` when one is given;
    it is clamped to ``settings.max_pinned_day``.
    """
    if frequency == Frequency.weekly:
        return last_date + timedelta(days=7)
    if frequency == Frequency.biweekly:
        return last_date + timedelta(days=14)

    months = {Frequency.monthly: 1, Frequency.quarterly: 3, Frequency.yearly: 12}.get(frequency)
    if months is None:
        # Irregular cadence, assume roughly monthly
        return last_date + relativedelta(months=1)

    next_date = last_date + relativedelta(months=months)
    if preferred_day:
        next_date = next_date.replace(day=max(1, min(preferred_day, settings.max_pinned_day)))
    return next_date


def _as_record(item: Union[TransactionRecord, Mapping[str, Any]]) -> TransactionRecord:
    if isinstance(item, TransactionRecord):
        return item
    return TransactionRecord.from_raw(item)


def _override_status(override: Any) -> RecurringStatus:
    return RecurringStatus(getattr(override, "recurring_status", override))


def _group_records(
    records: Iterable[Union[TransactionRecord, Mapping[str, Any]]]
) -> Dict[str, List[TransactionRecord]]:
    groups: Dict[str, List[TransactionRecord]] = defaultdict(list)
    for item in records:
        record = _as_record(item)
        if not record.is_valid:
            logger.warning("Excluding transaction %s: unparsable amount or date", record.id)
            continue
        if record.amount > 0 or (record.category_ledger_type or "").lower() == "income":
            continue
        key = merchant_key_for(record.merchant, record.description)
        if len(key) < settings.min_merchant_key_length:
            continue
        groups[key].append(record)
    return groups


def _analyze_group(
    key: str,
    records: List[TransactionRecord],
    user_confirmed: bool
) -> Optional[RecurringSeriesResult]:
    records = sorted(records, key=lambda r: (r.date, r.id))
    merchant_type = classify_merchant_type(key, (r.category_name for r in records))

    if merchant_type == MerchantType.discretionary:
        logger.debug("Skipping '%s': discretionary merchant", key)
        return None

    count = len(records)
    if count < MIN_OCCURRENCES[merchant_type]:
        logger.debug("Skipping '%s': %d occurrences below minimum", key, count)
        return None

    dates = [r.date for r in records]
    amounts = [float(abs(r.amount)) for r in records]
    average_amount = sum(abs(r.amount) for r in records) / count
    amount_variance = calculate_amount_variance(amounts)
    day_consistency = calculate_day_consistency(dates)
    gaps = calculate_gaps(dates)
    frequency = infer_frequency(sum(gaps) / len(gaps))

    if frequency == Frequency.irregular and merchant_type == MerchantType.unknown:
        logger.debug("Skipping '%s': irregular timing for unknown merchant", key)
        return None

    threshold = VARIANCE_THRESHOLDS[merchant_type]
    if amount_variance > threshold and merchant_type != MerchantType.utility:
        logger.debug("Skipping '%s': amount variance %.3f above %.2f", key, amount_variance, threshold)
        return None

    confidence, factors, reasons = score_confidence(
        merchant_type, count, amount_variance, frequency, day_consistency, user_confirmed
    )
    if confidence < settings.min_series_confidence:
        logger.debug("Skipping '%s': confidence %.2f below threshold", key, confidence)
        return None

    last = records[-1]
    preferred_day = None
    if day_consistency > settings.day_consistency_pin_threshold:
        preferred_day = min(last.date.day, settings.max_pinned_day)

    tags = ["auto-detected"]
    if merchant_type == MerchantType.subscription:
        tags.append("subscription")
    elif merchant_type == MerchantType.utility:
        tags.extend(["utility", "essential"])
    elif merchant_type == MerchantType.insurance:
        tags.extend(["insurance", "essential"])
    if frequency != Frequency.irregular:
        tags.append(frequency.value)
    if user_confirmed:
        tags.append("user-confirmed")

    return RecurringSeriesResult(
        merchant_key=key,
        display_name=display_name(key),
        merchant_type=merchant_type,
        frequency=frequency,
        average_amount=Decimal(average_amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
        amount_variance=round(amount_variance, 6),
        day_consistency=round(day_consistency, 6),
        preferred_day=preferred_day,
        confidence=confidence,
        confidence_factors=factors,
        next_due_date=calculate_next_due(last.date, frequency, preferred_day),
        last_date=last.date,
        occurrence_count=count,
        transaction_ids=[r.id for r in records],
        detection_reason=", ".join(reasons),
        category_type=CATEGORY_TYPES.get(merchant_type, last.category_name or "Other"),
        notification_days=NOTIFICATION_DAYS[merchant_type],
        tags=tags,
    )


def detect_series(
    records: Iterable[Union[TransactionRecord, Mapping[str, Any]]],
    recurring_overrides: Optional[Mapping[str, Any]] = None
) -> List[RecurringSeriesResult]:
    """
    Detect recurring series in one user's transactions.

    ``recurring_overrides`` maps normalized merchant keys to an override (or
    a bare RecurringStatus). Merchants marked non-recurring are never
    reported; merchants marked recurring get a confidence bonus. Output is
    sorted by descending confidence, then merchant key.
    """
    statuses = {key: _override_status(o) for key, o in (recurring_overrides or {}).items()}
    results: List[RecurringSeriesResult] = []

    for key, group in _group_records(records).items():
        status = statuses.get(key)
        if status == RecurringStatus.non_recurring:
            logger.debug("Skipping '%s': user marked non-recurring", key)
            continue
        series = _analyze_group(key, group, user_confirmed=status == RecurringStatus.recurring)
        if series is not None:
            results.append(series)

    results.sort(key=lambda s: (-s.confidence, s.merchant_key))
    return results


def load_records(db: Session, user_id: str) -> List[TransactionRecord]:
    """Snapshot a user's transactions with their category names."""
    rows = db.query(Transaction, Category).outerjoin(
        Category, Transaction.category_id == Category.id
    ).filter(
        Transaction.user_id == user_id
    ).order_by(Transaction.date, Transaction.id).all()

    return [
        TransactionRecord(
            id=txn.id,
            user_id=txn.user_id,
            date=txn.date,
            amount=txn.amount,
            description=txn.raw_description or "",
            merchant=txn.merchant,
            category_name=category.name if category else None,
            category_ledger_type=category.ledger_type.value if category else None,
            source=txn.source,
        )
        for txn, category in rows
    ]


def detect(db: Session, user_id: str) -> List[RecurringSeriesResult]:
    """Recompute a user's recurring series from their stored transactions and overrides."""
    records = load_records(db, user_id)
    overrides = override_service.active_recurring_overrides(db, user_id)
    series = detect_series(records, overrides)
    logger.info(
        "Detected %d recurring series for user %s from %d transactions",
        len(series), user_id, len(records)
    )
    return series


def run_detection(db: Session, user_id: str) -> List[RecurringSeriesResult]:
    """
    Detect and replace the user's stored series in one transaction.

    If anything fails the previous series are left as they were.
    """
    try:
        series = detect(db, user_id)
        db.query(RecurringSeries).filter(RecurringSeries.user_id == user_id).delete(
            synchronize_session=False
        )
        for s in series:
            db.add(RecurringSeries(
                user_id=user_id,
                merchant_key=s.merchant_key,
                display_name=s.display_name,
                merchant_type=s.merchant_type,
                frequency=s.frequency,
                average_amount=s.average_amount,
                amount_variance=s.amount_variance,
                day_consistency=s.day_consistency,
                preferred_day=s.preferred_day,
                confidence=s.confidence,
                confidence_factors=s.confidence_factors.model_dump(),
                next_due_date=s.next_due_date,
                last_date=s.last_date,
                occurrence_count=s.occurrence_count,
                transaction_ids=s.transaction_ids,
                detection_reason=s.detection_reason,
                category_type=s.category_type,
                notification_days=s.notification_days,
                tags=s.tags,
            ))
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Detection run failed for user %s; stored series unchanged", user_id)
        raise
    return series


def get_stored_series(db: Session, user_id: str) -> List[StoredRecurringSeries]:
    """Series saved by the last successful detection run."""
    rows = db.query(RecurringSeries).filter(
        RecurringSeries.user_id == user_id
    ).order_by(RecurringSeries.confidence.desc(), RecurringSeries.merchant_key).all()
    return [StoredRecurringSeries.model_validate(r) for r in rows]
