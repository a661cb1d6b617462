"""
Currency Parser.

Reads the price text venue sites publish ("¥1,500", "2,000円",
"3000〜4500円", "無料") into Decimal amounts plus an ISO currency code.
Amounts are never converted.
"""

from __future__ import annotations

import re
import unicodedata
from decimal import Decimal, InvalidOperation
from typing import NamedTuple

# "not announced yet", as opposed to free
UNKNOWN_PRICE_MARKERS = ("tba", "tbd", "未定", "n/a")

FREE_PRICE_MARKERS = ("無料", "入場無料", "free", "no charge")

# Checked in order: "US$" before "$"
CURRENCY_SYMBOLS = (
    ("¥", "JPY"),
    ("円", "JPY"),
    ("€", "EUR"),
    ("£", "GBP"),
    ("US$", "USD"),
    ("$", "USD"),
)

CURRENCY_WORDS = {
    "JPY": re.compile(r"\b(jpy|yen)\b"),
    "EUR": re.compile(r"\b(eur|euros?)\b"),
    "GBP": re.compile(r"\b(gbp|pounds?)\b"),
    "USD": re.compile(r"\b(usd|dollars?)\b"),
}


class ParsedPrice(NamedTuple):
    min_amount: Decimal | None
    max_amount: Decimal | None
    currency: str


class CurrencyParser:
    """
    Parse price strings and identify currency.

    A comma followed by exactly three digits is a thousands separator
    ("1,500" is 1500); Japanese sites never use decimal commas.
    A free marker only makes the price 0 when the text carries no amount.
    """

    NUMBER_PATTERN = re.compile(r"\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?")
    NOTE_PATTERN = re.compile(r"\([^()]*\)")

    @staticmethod
    def _normalize(text: str) -> str:
        # NFKC folds full-width digits, commas and the full-width yen sign
        return unicodedata.normalize("NFKC", text).strip()

    @classmethod
    def parse_price_string(cls, price_str: str) -> ParsedPrice:
        """
        Parse a price string into (min_amount, max_amount, currency).

        - "¥1,500" -> (1500, None, "JPY")
        - "3000-4500円" -> (3000, 4500, "JPY")
        - "無料" / "Free" -> (0, None, "")
        - "¥2,500 (1 free drink)" -> (2500, None, "JPY")
        - "TBA" / "" -> (None, None, "")

        currency is "" when nothing identifies it.
        """
        text = cls._normalize(price_str or "")
        if not text or cls._is_unknown(text):
            return ParsedPrice(None, None, "")
        # notes like "(1 drink)" only count when nothing else is numeric
        amounts = cls._extract_numbers(cls.NOTE_PATTERN.sub(" ", text))
        amounts = amounts or cls._extract_numbers(text)
        if not amounts:
            if cls._is_free(text):
                return ParsedPrice(Decimal("0"), None, "")
            return ParsedPrice(None, None, cls.detect_currency(text))

        currency = cls.detect_currency(text)
        if len(amounts) == 1:
            return ParsedPrice(amounts[0], None, currency)
        return ParsedPrice(min(amounts), max(amounts), currency)

    @classmethod
    def parse_amount(cls, value) -> Decimal | None:
        """
        Coerce a scraped or extracted amount to Decimal.

        Numbers pass through; text is parsed and the lower bound of a range
        kept. Empty or unknown values give None.
        """
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, Decimal):
            return value
        if isinstance(value, (int, float)):
            return Decimal(str(value))
        return cls.parse_price_string(str(value)).min_amount

    @classmethod
    def detect_currency(cls, price_str: str) -> str:
        """ISO code from a symbol or currency word, "" if none is found."""
        text = cls._normalize(price_str or "")
        for symbol, code in CURRENCY_SYMBOLS:
            if symbol in text:
                return code

        lowered = text.lower()
        for code, pattern in CURRENCY_WORDS.items():
            if pattern.search(lowered):
                return code
        return ""

    @staticmethod
    def _is_unknown(text: str) -> bool:
        return text.lower() in UNKNOWN_PRICE_MARKERS

    @staticmethod
    def _is_free(text: str) -> bool:
        lowered = text.lower()
        return any(marker in lowered for marker in FREE_PRICE_MARKERS)

    @classmethod
    def _extract_numbers(cls, text: str) -> list[Decimal]:
        amounts = []
        for match in cls.NUMBER_PATTERN.findall(text):
            try:
                amounts.append(Decimal(match.replace(",", "")))
            except InvalidOperation:
                continue
        return amounts
