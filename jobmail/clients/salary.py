"""Regex salary parsing and plausibility checks."""

import json
import re
from typing import Any, Dict, Optional

from jobmail.domain.models import Salary
from jobmail.logging import get_logger

logger = get_logger(__name__, component="salary")

_CURRENCY_CODES = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "CHF": "CHF",
    "FR.": "CHF",
    "USD": "USD",
    "EUR": "EUR",
    "GBP": "GBP",
    "CAD": "CAD",
    "AUD": "AUD",
}

# Order matters: the first keyword found in the text wins
_PERIOD_KEYWORDS = [
    ("yearly", "yearly"),
    ("annual", "yearly"),
    ("p.a.", "yearly"),
    ("year", "yearly"),
    ("monthly", "monthly"),
    ("month", "monthly"),
    ("weekly", "weekly"),
    ("week", "weekly"),
    ("daily", "daily"),
    ("hourly", "hourly"),
    ("hour", "hourly"),
    ("/h", "hourly"),
    ("day", "daily"),
]

_CURRENCY = r"(\$|€|£|CHF|USD|EUR|GBP|CAD|AUD|Fr\.)"
_AMOUNT = r"(\d+(?:[.,]\d+)?\s?[kK]\b|\d{1,3}(?:[',.\s]\d{3})+(?:[.,]\d{1,2})?|\d+(?:[.,]\d{1,2})?)"

_RANGE_PATTERN = re.compile(
    rf"(?:{_CURRENCY}\s*)?{_AMOUNT}\s*(?:-|–|to|bis)\s*(?:{_CURRENCY}\s*)?{_AMOUNT}\s*{_CURRENCY}?",
    re.IGNORECASE,
)
_SINGLE_PATTERN = re.compile(rf"{_CURRENCY}\s*{_AMOUNT}|{_AMOUNT}\s*{_CURRENCY}", re.IGNORECASE)

# (min floor, max ceiling) per period
_PLAUSIBLE_RANGES = {
    "yearly": (20000, 1000000),
    "monthly": (1500, 100000),
    "hourly": (10, 500),
}
_DEFAULT_RANGE = (100, 1000000)


def normalize_currency(value: Optional[str]) -> Optional[str]:
    """Map a symbol or code to a three-letter code."""
    if not value:
        return None
    stripped = value.strip()
    return _CURRENCY_CODES.get(stripped.upper(), stripped.upper())


def parse_amount(value: Optional[str]) -> Optional[float]:
    """Parse ``80k``, ``80,000``, ``80.000,50`` or ``100'000`` into a number."""
    if not value:
        return None
    text = re.sub(r"\s", "", value)

    if text.lower().endswith("k"):
        try:
            return float(text[:-1].replace("'", "").replace(",", ".")) * 1000
        except ValueError:
            return None

    last_separator = max(text.rfind(","), text.rfind("."), text.rfind("'"))
    if last_separator == -1:
        cleaned = text
    elif 0 < len(text) - last_separator - 1 <= 2:
        # One or two trailing digits: the last separator is a decimal point
        if text[last_separator] == ",":
            cleaned = text.replace("'", "").replace(".", "").replace(",", ".")
        else:
            cleaned = text.replace("'", "").replace(",", "")
    else:
        cleaned = re.sub(r"[',.]", "", text)

    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_salary_from_text(text: str) -> Salary:
    """Best-effort salary from free text; empty Salary when nothing is found.

    Handles ``$80,000 - $120,000``, ``€60k-€80k per year``, ``CHF 100'000``,
    ``50-60k USD/year`` and ``$100/hour``.
    """
    if not text:
        return Salary()

    minimum: Optional[float] = None
    maximum: Optional[float] = None
    currency: Optional[str] = None

    match = _RANGE_PATTERN.search(text)
    if match:
        cur1, low_raw, cur2, high_raw, cur3 = match.groups()
        low, high = parse_amount(low_raw), parse_amount(high_raw)
        if low is not None and high is not None:
            # "50-60k" means 50k-60k
            if high_raw.strip().lower().endswith("k") and not low_raw.strip().lower().endswith("k") and low < 1000:
                low *= 1000
            minimum, maximum = low, high
            currency = normalize_currency(cur1 or cur2 or cur3)
    else:
        match = _SINGLE_PATTERN.search(text)
        if match:
            cur_before, amount_before, amount_after, cur_after = match.groups()
            amount = parse_amount(amount_before or amount_after)
            if amount is not None:
                minimum = maximum = amount
                currency = normalize_currency(cur_before or cur_after)

    if minimum is None and maximum is None:
        return Salary()

    lowered = text.lower()
    period = next((p for keyword, p in _PERIOD_KEYWORDS if keyword in lowered), None)
    if period is None:
        if minimum < 500:
            period = "hourly"
        elif minimum < 10000:
            period = "monthly"
        else:
            period = "yearly"

    if currency is None:
        for symbol, code in _CURRENCY_CODES.items():
            if symbol in text or symbol in text.upper():
                currency = code
                break

    return Salary(min=minimum, max=maximum, currency=currency, period=period)


def validate_salary(salary: Salary) -> bool:
    """Reject implausible values (wrong order of magnitude, inverted or extreme ranges).

    An empty salary is valid.
    """
    if salary.min is None and salary.max is None:
        return True

    low = salary.min or 0
    high = salary.max or 0
    floor, ceiling = _PLAUSIBLE_RANGES.get(salary.period or "", _DEFAULT_RANGE)
    if low < floor or high > ceiling:
        logger.debug(
            f"Salary {low}-{high} outside plausible {salary.period or 'unspecified'} range",
            extra={"event": "salary.validation.rejected"},
        )
        return False

    if salary.min is not None and salary.max is not None:
        if salary.min > salary.max:
            return False
        if salary.max > salary.min * 3:
            return False
    return True


def salary_from_json(text: str) -> Optional[Salary]:
    """Parse the first JSON object in an LLM answer into a Salary.

    Returns None when no usable object is present.
    """
    match = re.search(r"\{[\s\S]*?\}", text or "")
    if not match:
        return None
    try:
        data: Dict[str, Any] = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    def number(value: Any) -> Optional[float]:
        if value is None:
            return None
        try:
            parsed = float(value)
        except (TypeError, ValueError):
            return None
        return parsed if parsed >= 0 else None

    period = data.get("period")
    if period not in ("yearly", "monthly", "weekly", "daily", "hourly"):
        period = None
    currency = data.get("currency")
    return Salary(
        min=number(data.get("min")),
        max=number(data.get("max")),
        currency=currency if isinstance(currency, str) else None,
        period=period,
    )
