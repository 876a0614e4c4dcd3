"""Shared test fixtures."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from datetime import date, timedelta
from decimal import Decimal
import uuid

from recurwise.database import Base
import recurwise.models  # noqa: F401  (registers tables)
from recurwise.models.category import Category
from recurwise.models.transaction import Transaction
from recurwise.schemas.transaction import TransactionRecord
from recurwise.seed import seed_reference_data
from recurwise.services.rule_cache import RuleCache

USER_ID = "user-1"


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database for each test using in-memory SQLite."""
    # Use StaticPool to ensure all connections use the same in-memory database
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def seeded_session(db_session):
    """Database with the standard categories and rules."""
    seed_reference_data(db_session)
    return db_session


@pytest.fixture
def rule_cache(seeded_session):
    """Rule cache loaded from the seeded database."""
    return RuleCache.from_db(seeded_session)


def category_by_slug(db, slug):
    return db.query(Category).filter(Category.slug == slug).one()


def add_transaction(db, amount, on, description, merchant=None, user_id=USER_ID, **kwargs):
    """Insert one transaction row and return it."""
    txn = Transaction(
        id=str(uuid.uuid4()),
        user_id=user_id,
        date=on,
        amount=Decimal(str(amount)),
        raw_description=description,
        merchant=merchant,
        **kwargs
    )
    db.add(txn)
    db.commit()
    db.refresh(txn)
    return txn


def monthly_dates(start, count):
    """``count`` dates on the same day of consecutive months."""
    dates = []
    year, month = start.year, start.month
    for _ in range(count):
        dates.append(date(year, month, start.day))
        month += 1
        if month > 12:
            month = 1
            year += 1
    return dates


def make_records(merchant, amounts, dates, category_name=None, description=None):
    """Build TransactionRecords for one merchant."""
    return [
        TransactionRecord(
            id=f"{merchant}-{i}",
            user_id=USER_ID,
            date=d,
            amount=Decimal(str(-abs(a))),
            description=description or merchant.upper(),
            merchant=merchant,
            category_name=category_name,
        )
        for i, (a, d) in enumerate(zip(amounts, dates))
    ]


@pytest.fixture
def netflix_records():
    """Six monthly $15.99 charges, 28-31 days apart."""
    dates = monthly_dates(date(2024, 1, 15), 6)
    return make_records("NETFLIX.COM 4498", [15.99] * 6, dates)


@pytest.fixture
def netflix_transactions(db_session):
    """Six monthly Netflix rows with varying raw descriptions."""
    dates = monthly_dates(date(2024, 1, 15), 6)
    descriptions = ["NETFLIX.COM 4498", "NETFLIX 8831"] * 3
    return [
        add_transaction(db_session, "-15.99", d, desc)
        for d, desc in zip(dates, descriptions)
    ]


@pytest.fixture
def weekly_dates():
    start = date(2024, 3, 4)
    return [start + timedelta(days=7 * i) for i in range(6)]
