"""Shared error types and error messages."""


class RecurwiseError(ValueError):
    """Base class for engine errors.

    Subclasses provide semantic categories while preserving ValueError
    compatibility for callers that already catch it.
    """


class ValidationError(RecurwiseError):
    """Invalid input to an engine operation."""


class NotFoundError(RecurwiseError):
    """Referenced category, transaction or override does not exist."""


class ConfigurationError(RecurwiseError):
    """Reference data is missing or inconsistent."""


class CacheUnavailableError(ConfigurationError):
    """Rule cache used before it was loaded or after it was invalidated."""


def category_not_found(category_id: str) -> str:
    """Return message for missing category by ID."""
    return f"Category {category_id} not found"


def transaction_not_found(transaction_id: str) -> str:
    """Return message for missing transaction by ID."""
    return f"Transaction {transaction_id} not found"


def recurring_override_not_found(user_id: str, merchant_key: str) -> str:
    """Return message for missing recurring override."""
    return f"No recurring override for merchant '{merchant_key}' (user {user_id})"


def fallback_category_missing() -> str:
    """Return message when the designated fallback category is absent."""
    return (
        "No fallback category is configured. Exactly one category must be "
        "marked is_fallback (normally 'Uncategorized'); run seed_reference_data()."
    )


def cache_not_loaded() -> str:
    """Return message when the rule cache has not been loaded."""
    return "Rule cache is not loaded; call RuleCache.load(db) or refresh(db) first"
