"""Service for flagging recurring series whose payment did not arrive."""

from datetime import date
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from recurwise.config import settings
from recurwise.logging_setup import get_logger
from recurwise.schemas.recurring import MissedPayment, PaymentStatus, RecurringSeriesResult, Urgency
from recurwise.services.recurring_service import detect

logger = get_logger(__name__)


def urgency_for(days_past_due: int) -> Urgency:
    if days_past_due > settings.missed_high_after_days:
        return Urgency.high
    if days_past_due > settings.missed_medium_after_days:
        return Urgency.medium
    return Urgency.low


def find_missed_in(series: Iterable[RecurringSeriesResult], today: date) -> List[MissedPayment]:
    """
    Series whose next due date is between 1 and the window size days ago.

    Anything older is presumed cancelled and is not reported.
    """
    missed = []
    for s in series:
        days_past_due = (today - s.next_due_date).days
        if not 0 < days_past_due <= settings.missed_payment_window_days:
            continue
        missed.append(MissedPayment(
            series=s,
            days_past_due=days_past_due,
            urgency=urgency_for(days_past_due),
            status=PaymentStatus.overdue if days_past_due > settings.overdue_after_days else PaymentStatus.late,
        ))

    missed.sort(key=lambda m: (-m.days_past_due, m.series.merchant_key))
    return missed


def find_missed(db: Session, user_id: str, today: Optional[date] = None) -> List[MissedPayment]:
    """Run detection for a user and return the payments that look missed."""
    today = today or date.today()
    missed = find_missed_in(detect(db, user_id), today)
    if missed:
        logger.info("User %s has %d missed recurring payments", user_id, len(missed))
    return missed
