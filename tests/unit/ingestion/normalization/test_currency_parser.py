"""
Unit tests for the currency module.

Tests for CurrencyParser with the price formats seen on Kyoto venue sites.
"""

from decimal import Decimal

import pytest

from event_ingest.ingestion.normalization.currency import CurrencyParser


class TestParsePriceString:
    """Tests for CurrencyParser.parse_price_string."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("¥1,500", (Decimal("1500"), None, "JPY")),
            ("2,000円", (Decimal("2000"), None, "JPY")),
            ("3000-4500円", (Decimal("3000"), Decimal("4500"), "JPY")),
            ("€12.50", (Decimal("12.50"), None, "EUR")),
            ("1500", (Decimal("1500"), None, "")),
        ],
    )
    def test_parses_amounts(self, text, expected):
        assert CurrencyParser.parse_price_string(text) == expected

    def test_full_width_digits(self):
        amount, _, currency = CurrencyParser.parse_price_string("２，０００円")
        assert amount == Decimal("2000")
        assert currency == "JPY"

    @pytest.mark.parametrize("text", ["無料", "Free", "入場無料"])
    def test_free_is_zero(self, text):
        assert CurrencyParser.parse_price_string(text) == (Decimal("0"), None, "")

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("¥2,500 (1 free drink)", (Decimal("2500"), None, "JPY")),
            ("2,000円（ドリンク無料）", (Decimal("2000"), None, "JPY")),
            ("Free entry, 1,000 yen donation", (Decimal("1000"), None, "JPY")),
        ],
    )
    def test_amount_wins_over_free_mention(self, text, expected):
        assert CurrencyParser.parse_price_string(text) == expected

    def test_note_amount_used_when_nothing_else(self):
        assert CurrencyParser.parse_price_string("Door (¥3,000)").min_amount == Decimal("3000")

    @pytest.mark.parametrize("text", ["TBA", "未定", "", "n/a"])
    def test_unknown_is_none(self, text):
        assert CurrencyParser.parse_price_string(text) == (None, None, "")


class TestParseAmount:
    """Tests for CurrencyParser.parse_amount."""

    def test_numbers_pass_through(self):
        assert CurrencyParser.parse_amount(1500) == Decimal("1500")
        assert CurrencyParser.parse_amount(12.5) == Decimal("12.5")

    def test_range_keeps_lower_bound(self):
        assert CurrencyParser.parse_amount("3,000〜4,500円") == Decimal("3000")

    def test_none_and_bool(self):
        assert CurrencyParser.parse_amount(None) is None
        assert CurrencyParser.parse_amount(True) is None

    def test_text_without_number(self):
        assert CurrencyParser.parse_amount("Donation") is None


class TestDetectCurrency:
    """Tests for CurrencyParser.detect_currency."""

    def test_yen_markers(self):
        assert CurrencyParser.detect_currency("1000 yen") == "JPY"
        assert CurrencyParser.detect_currency("1000円") == "JPY"

    def test_not_detected(self):
        assert CurrencyParser.detect_currency("1000") == ""
