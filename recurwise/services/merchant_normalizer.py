"""Turns raw transaction descriptions into canonical merchant keys.

Known-merchant rules run first, on the lowercased text. If none matches, the
text goes through generic cleanup and the rules are tried once more against
the cleaned form. Every canonical key matches its own rule, and cleanup is a
fixed point, so normalizing a key returns the same key.
"""

import re
from typing import List, Optional, Pattern, Tuple

from recurwise.schemas.merchant import NormalizedMerchant

RULE_CONFIDENCE = 0.95
GENERIC_CONFIDENCE = 0.7

# (rule name, pattern, canonical key). First match wins.
MERCHANT_RULES: List[Tuple[str, Pattern[str], str]] = [
    ("netflix", re.compile(r"\bnetflix"), "netflix"),
    ("spotify", re.compile(r"\bspotify"), "spotify"),
    ("hulu", re.compile(r"\bhulu\b"), "hulu"),
    ("disney_plus", re.compile(r"\bdisney\s*(\+|plus\b)"), "disney+"),
    ("amazon_prime", re.compile(r"\b(amazon|amzn)\s*(prime|prme)\b|\bprime\s+video\b"), "amazon prime"),
    ("pge", re.compile(r"\bpg\s*&\s*e\b|\bpacific\s+gas\b|\bpge\b"), "pg&e"),
    ("edison", re.compile(r"\bedison\b|\bsce\s+\d+"), "edison"),
    ("comcast", re.compile(r"\bcomcast\b|\bxfinity\b|\bcmcsa\b"), "comcast"),
    ("att", re.compile(r"\bat\s*&\s*t\b|\batt\s+(wireless|bill|payment)\b"), "at&t"),
    ("chase_card", re.compile(r"\bchase\s+(credit\s+card|card|cc|epay|autopay)\b"), "chase credit card"),
    ("citi_card", re.compile(r"\bciti\s*(credit\s+card|card|bank\s+card|autopay)\b"), "citi credit card"),
    ("amex", re.compile(r"\bamerican\s+express\b|\bamex\b"), "american express"),
]

# Corporate suffixes and payment-channel boilerplate
STOP_WORDS = frozenset({
    "pos", "debit", "dbt", "purchase", "checkcard", "chkcard", "visa", "ach",
    "www", "com", "inc", "llc", "ltd", "co", "corp", "corporation", "company",
})

_PROCESSOR_PREFIX = re.compile(r"^(sq|tst|sp|pp|paypal|pypl)\s*\*\s*")
_REFERENCE_TAIL = re.compile(r"\s*\*.*$")
_STORE_NUMBER = re.compile(r"#\s*\d+")
_PUNCTUATION = re.compile(r"[^a-z0-9&+\s]")
_WHITESPACE = re.compile(r"\s+")


def _match_rule(text: str) -> Optional[Tuple[str, str]]:
    for name, pattern, canonical in MERCHANT_RULES:
        if pattern.search(text):
            return name, canonical
    return None


def _clean(text: str) -> str:
    """Generic cleanup for text no known-merchant rule recognised."""
    text = _PROCESSOR_PREFIX.sub("", text)
    without_tail = _REFERENCE_TAIL.sub("", text)
    if without_tail.strip():
        text = without_tail
    text = _STORE_NUMBER.sub(" ", text)
    text = _PUNCTUATION.sub(" ", text)

    tokens = [t for t in text.split() if not (t.isdigit() and len(t) >= 4)]
    meaningful = [t for t in tokens if t not in STOP_WORDS]
    # A name made only of stop words keeps them rather than vanishing
    return " ".join(meaningful or tokens)


def normalize(text: Optional[str]) -> NormalizedMerchant:
    """Return the canonical merchant key for a description or merchant string."""
    lowered = _WHITESPACE.sub(" ", (text or "").lower()).strip()
    if not lowered:
        return NormalizedMerchant(key="", confidence=0.0)

    matched = _match_rule(lowered)
    if matched is None:
        cleaned = _clean(lowered)
        matched = _match_rule(cleaned)
        if matched is None:
            confidence = GENERIC_CONFIDENCE if cleaned else 0.0
            return NormalizedMerchant(key=cleaned, confidence=confidence)

    name, canonical = matched
    return NormalizedMerchant(key=canonical, confidence=RULE_CONFIDENCE, rule=name)


def normalize_key(text: Optional[str]) -> str:
    return normalize(text).key


def merchant_key_for(merchant: Optional[str], description: Optional[str]) -> str:
    """Key a transaction by its merchant field, falling back to the description."""
    key = normalize_key(merchant)
    return key or normalize_key(description)


def display_name(key: str) -> str:
    """Title-cased merchant name for display."""
    return " ".join(word[:1].upper() + word[1:] for word in key.split())
