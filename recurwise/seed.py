"""
Seed script for reference categories and classification rules.
"""

from typing import Dict

from sqlalchemy.orm import Session

from recurwise.database import SessionLocal, init_db
from recurwise.logging_setup import configure_logging, get_logger
from recurwise.models import BudgetType, Category, CategoryRule, LedgerType, RuleType

logger = get_logger(__name__)

# slug: (name, ledger type, budget type, extra flags)
CATEGORIES = {
    "income": ("Income", LedgerType.income, BudgetType.fixed, {}),
    "transfers": ("Transfers", LedgerType.transfer, BudgetType.flexible, {}),
    "credit-card-payment": ("Credit Card Payment", LedgerType.transfer, BudgetType.fixed, {}),
    "loan-payments": ("Loan Payments", LedgerType.transfer, BudgetType.fixed, {}),
    "food-and-drink": ("Food & Drink", LedgerType.expense, BudgetType.flexible, {}),
    "groceries": ("Groceries", LedgerType.expense, BudgetType.flexible, {}),
    "auto-and-transport": ("Auto & Transport", LedgerType.expense, BudgetType.flexible, {}),
    "shopping": ("Shopping", LedgerType.expense, BudgetType.flexible, {}),
    "entertainment": ("Entertainment", LedgerType.expense, BudgetType.flexible, {}),
    "subscriptions": ("Subscriptions", LedgerType.expense, BudgetType.fixed, {}),
    "bills-and-utilities": ("Bills & Utilities", LedgerType.expense, BudgetType.fixed, {}),
    "insurance": ("Insurance", LedgerType.expense, BudgetType.fixed, {}),
    "medical-and-healthcare": ("Medical & Healthcare", LedgerType.expense, BudgetType.flexible, {}),
    "personal-care": ("Personal Care", LedgerType.expense, BudgetType.flexible, {}),
    "travel": ("Travel", LedgerType.expense, BudgetType.non_monthly, {}),
    "bank-fees": ("Bank Fees", LedgerType.expense, BudgetType.flexible, {}),
    "adjustments": ("Adjustments", LedgerType.adjustment, BudgetType.flexible, {}),
    "other": ("Other", LedgerType.expense, BudgetType.flexible, {"is_generic": True}),
    "uncategorized": (
        "Uncategorized", LedgerType.expense, BudgetType.flexible,
        {"is_generic": True, "is_fallback": True},
    ),
}

# Aggregator detailed code -> (slug, confidence)
AGGREGATOR_DETAILED = {
    "INCOME_WAGES": ("income", 0.95),
    "INCOME_DIVIDENDS": ("income", 0.90),
    "INCOME_INTEREST_EARNED": ("income", 0.90),
    "TRANSFER_IN_ACCOUNT_TRANSFER": ("transfers", 0.90),
    "TRANSFER_OUT_ACCOUNT_TRANSFER": ("transfers", 0.90),
    "LOAN_PAYMENTS_CREDIT_CARD_PAYMENT": ("credit-card-payment", 0.95),
    "LOAN_PAYMENTS_MORTGAGE_PAYMENT": ("loan-payments", 0.95),
    "LOAN_PAYMENTS_CAR_PAYMENT": ("loan-payments", 0.90),
    "FOOD_AND_DRINK_GROCERIES": ("groceries", 0.95),
    "FOOD_AND_DRINK_RESTAURANT": ("food-and-drink", 0.90),
    "FOOD_AND_DRINK_COFFEE": ("food-and-drink", 0.90),
    "FOOD_AND_DRINK_FAST_FOOD": ("food-and-drink", 0.90),
    "TRANSPORTATION_GAS": ("auto-and-transport", 0.95),
    "TRANSPORTATION_TAXIS_AND_RIDE_SHARES": ("auto-and-transport", 0.90),
    "TRANSPORTATION_PUBLIC_TRANSIT": ("auto-and-transport", 0.85),
    "RENT_AND_UTILITIES_GAS_AND_ELECTRICITY": ("bills-and-utilities", 0.95),
    "RENT_AND_UTILITIES_INTERNET_AND_CABLE": ("bills-and-utilities", 0.95),
    "RENT_AND_UTILITIES_TELEPHONE": ("bills-and-utilities", 0.95),
    "RENT_AND_UTILITIES_WATER": ("bills-and-utilities", 0.95),
    "RENT_AND_UTILITIES_RENT": ("bills-and-utilities", 0.95),
    "GENERAL_MERCHANDISE_ONLINE_MARKETPLACES": ("shopping", 0.85),
    "GENERAL_MERCHANDISE_SUPERSTORES": ("shopping", 0.85),
    "GENERAL_MERCHANDISE_CLOTHING_AND_ACCESSORIES": ("shopping", 0.85),
    "ENTERTAINMENT_TV_AND_MOVIES": ("entertainment", 0.90),
    "ENTERTAINMENT_MUSIC_AND_AUDIO": ("entertainment", 0.90),
    "MEDICAL_PRIMARY_CARE": ("medical-and-healthcare", 0.90),
    "MEDICAL_PHARMACIES_AND_SUPPLEMENTS": ("medical-and-healthcare", 0.90),
    "GENERAL_SERVICES_INSURANCE": ("insurance", 0.90),
    "BANK_FEES_OVERDRAFT_FEES": ("bank-fees", 0.95),
    "TRAVEL_FLIGHTS": ("travel", 0.90),
    "TRAVEL_LODGING": ("travel", 0.90),
}

AGGREGATOR_PRIMARY = {
    "INCOME": ("income", 0.90),
    "TRANSFER_IN": ("transfers", 0.85),
    "TRANSFER_OUT": ("transfers", 0.85),
    "LOAN_PAYMENTS": ("loan-payments", 0.85),
    "FOOD_AND_DRINK": ("food-and-drink", 0.85),
    "TRANSPORTATION": ("auto-and-transport", 0.85),
    "RENT_AND_UTILITIES": ("bills-and-utilities", 0.85),
    "GENERAL_MERCHANDISE": ("shopping", 0.80),
    "ENTERTAINMENT": ("entertainment", 0.85),
    "MEDICAL": ("medical-and-healthcare", 0.85),
    "PERSONAL_CARE": ("personal-care", 0.80),
    "BANK_FEES": ("bank-fees", 0.85),
    "TRAVEL": ("travel", 0.85),
    "GENERAL_SERVICES": ("other", 0.60),
}

# (priority, keywords, slug, confidence)
MERCHANT_KEYWORDS = [
    (10, "starbucks|peets|coffee|cafe", "food-and-drink", 0.85),
    (20, "mcdonalds|mcdonald|burger|kfc|subway|chipotle", "food-and-drink", 0.90),
    (30, "safeway|kroger|walmart|target|costco", "groceries", 0.85),
    (40, "shell|chevron|exxon|bp|mobil", "auto-and-transport", 0.90),
    (50, "netflix|spotify|hulu|disney|amazon prime", "entertainment", 0.95),
    (60, "amazon|ebay|shopping", "shopping", 0.75),
    (70, "uber|lyft|taxi", "auto-and-transport", 0.90),
]

DESCRIPTION_KEYWORDS = [
    (10, "salary|payroll|wages", "income", 0.95),
    (20, "grocery|supermarket", "groceries", 0.85),
    (30, "gas|gasoline|fuel", "auto-and-transport", 0.90),
    (40, "restaurant|dining|food", "food-and-drink", 0.80),
    (50, "medical|doctor|hospital", "medical-and-healthcare", 0.85),
    (60, "rent|mortgage", "bills-and-utilities", 0.95),
]


def seed_reference_data(db: Session) -> Dict[str, int]:
    """
    Seed categories and rules. Existing rows are left alone, so running this
    twice adds nothing the second time.
    """
    categories = {c.slug: c for c in db.query(Category).all()}
    added_categories = 0
    for slug, (name, ledger_type, budget_type, flags) in CATEGORIES.items():
        if slug in categories:
            continue
        category = Category(
            name=name,
            slug=slug,
            ledger_type=ledger_type,
            budget_type=budget_type,
            is_system=True,
            **flags
        )
        db.add(category)
        categories[slug] = category
        added_categories += 1
    db.flush()

    existing_rules = {(r.rule_type, r.pattern) for r in db.query(CategoryRule).all()}
    rows = (
        [(RuleType.aggregator_detailed, 100, code, slug, conf) for code, (slug, conf) in AGGREGATOR_DETAILED.items()]
        + [(RuleType.aggregator_primary, 100, code, slug, conf) for code, (slug, conf) in AGGREGATOR_PRIMARY.items()]
        + [(RuleType.merchant_keyword, prio, kw, slug, conf) for prio, kw, slug, conf in MERCHANT_KEYWORDS]
        + [(RuleType.description_keyword, prio, kw, slug, conf) for prio, kw, slug, conf in DESCRIPTION_KEYWORDS]
    )
    added_rules = 0
    for rule_type, priority, pattern, slug, confidence in rows:
        if (rule_type, pattern) in existing_rules:
            continue
        db.add(CategoryRule(
            category_id=categories[slug].id,
            rule_type=rule_type,
            pattern=pattern,
            confidence=confidence,
            priority=priority,
        ))
        added_rules += 1

    db.commit()
    logger.info("Seeded %d categories and %d rules", added_categories, added_rules)
    return {"categories": added_categories, "rules": added_rules}


def main():
    configure_logging()
    init_db()
    db = SessionLocal()
    try:
        seed_reference_data(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
