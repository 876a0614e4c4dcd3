"""Tests for merchant normalization."""

import pytest

from recurwise.services.merchant_normalizer import (
    GENERIC_CONFIDENCE,
    RULE_CONFIDENCE,
    display_name,
    merchant_key_for,
    normalize,
    normalize_key,
)


SAMPLES = [
    "NETFLIX.COM 4498",
    "NETFLIX 8831",
    "Spotify USA P1A2B3",
    "DISNEY PLUS 800-123",
    "AMZN PRIME*2K3LM",
    "Pacific Gas & Electric",
    "PGE 5531 WEB PMT",
    "SCE 8812 ONLINE",
    "XFINITY MOBILE",
    "CHASE CREDIT CARD AUTOPAY",
    "CITI CARD ONLINE PAYMENT",
    "AMEX EPAYMENT ACH PMT",
    "AT&T*BILL PAYMENT",
    "SQ *BLUE BOTTLE COFFEE",
    "TST* Joe's Pizza #12",
    "WHOLE FOODS #1234",
    "POS DEBIT ACME WIDGETS INC 123456",
    "AMZN Mktp US*2K3LM",
    "GYM-MEMBERSHIP",
    "POS INC",
    "1234 5678",
    "   ",
    "Café Olé!!",
    "Barnes & Noble",
    "disney+",
    "pg&e",
]


class TestKnownMerchantRules:
    """Known billers collapse to one canonical key."""

    def test_netflix_variants(self):
        """Different Netflix billing strings share a key."""
        assert normalize_key("NETFLIX.COM 4498") == "netflix"
        assert normalize_key("NETFLIX 8831") == "netflix"

    def test_rule_confidence(self):
        """Rule-matched keys carry the higher confidence and the rule name."""
        result = normalize("NETFLIX.COM 4498")
        assert result.confidence == RULE_CONFIDENCE
        assert result.rule == "netflix"
        assert result.rule_matched

    def test_utility_variants(self):
        """Utility billers map to their canonical names."""
        assert normalize_key("Pacific Gas & Electric") == "pg&e"
        assert normalize_key("PGE 5531 WEB PMT") == "pg&e"
        assert normalize_key("SCE 8812 ONLINE") == "edison"
        assert normalize_key("XFINITY MOBILE") == "comcast"

    def test_card_issuers(self):
        """Card payment strings map to the issuer key."""
        assert normalize_key("CHASE CREDIT CARD AUTOPAY") == "chase credit card"
        assert normalize_key("CITI CARD ONLINE PAYMENT") == "citi credit card"
        assert normalize_key("AMEX EPAYMENT ACH PMT") == "american express"

    def test_streaming_services(self):
        """Streaming variants use canonical names."""
        assert normalize_key("DISNEY PLUS 800-123") == "disney+"
        assert normalize_key("AMZN PRIME*2K3LM") == "amazon prime"
        assert normalize_key("AT&T*BILL PAYMENT") == "at&t"


class TestGenericCleanup:
    """Unknown merchants fall back to cleaned text."""

    def test_store_number_removed(self):
        """Store numbers are stripped."""
        result = normalize("WHOLE FOODS #1234")
        assert result.key == "whole foods"
        assert result.confidence == GENERIC_CONFIDENCE
        assert result.rule is None

    def test_stop_words_and_long_numbers_removed(self):
        """Channel boilerplate, corporate suffixes and reference numbers go."""
        assert normalize_key("POS DEBIT ACME WIDGETS INC 123456") == "acme widgets"

    def test_processor_prefix_removed(self):
        """Payment processor prefixes do not swallow the merchant."""
        assert normalize_key("SQ *BLUE BOTTLE COFFEE") == "blue bottle coffee"

    def test_reference_tail_removed(self):
        """Anything after an asterisk is a reference code."""
        assert normalize_key("AMZN Mktp US*2K3LM") == "amzn mktp us"

    def test_punctuation_stripped_except_ampersand(self):
        """Hyphens become spaces; ampersands survive."""
        assert normalize_key("GYM-MEMBERSHIP") == "gym membership"
        assert normalize_key("Barnes & Noble") == "barnes & noble"

    def test_all_stop_words_kept(self):
        """A name made only of stop words is not erased."""
        assert normalize_key("POS INC") == "pos inc"

    def test_empty_input(self):
        """Empty and blank input produce an empty key at zero confidence."""
        for text in ["", "   ", None]:
            result = normalize(text)
            assert result.key == ""
            assert result.confidence == 0.0

    def test_only_numbers(self):
        """A description of bare reference numbers has no key."""
        result = normalize("1234 5678")
        assert result.key == ""
        assert result.confidence == 0.0


class TestIdempotence:
    """Normalizing a key returns the same key."""

    @pytest.mark.parametrize("text", SAMPLES)
    def test_normalize_is_idempotent(self, text):
        """normalize(normalize(x)) == normalize(x)."""
        key = normalize_key(text)
        assert normalize_key(key) == key


class TestHelpers:
    """Test merchant key helpers."""

    def test_merchant_key_prefers_merchant_field(self):
        """The merchant field wins over the description."""
        assert merchant_key_for("Netflix", "SOMETHING ELSE 1234") == "netflix"

    def test_merchant_key_falls_back_to_description(self):
        """Without a merchant field the description is used."""
        assert merchant_key_for(None, "NETFLIX 8831") == "netflix"
        assert merchant_key_for("", "WHOLE FOODS #12") == "whole foods"

    def test_display_name(self):
        """Keys are title-cased for display."""
        assert display_name("amazon prime") == "Amazon Prime"
        assert display_name("netflix") == "Netflix"
