"""Text processing utilities for answer validation."""
import math
import re
import unicodedata
from typing import Optional


def remove_diacritics(text: str) -> str:
    """Remove diacritical marks from text."""
    return ''.join(c for c in unicodedata.normalize('NFKD', text)
                   if not unicodedata.combining(c))


def normalize_answer(answer) -> str:
    """Normalize an answer for case- and accent-insensitive, trimmed comparison."""
    if answer is None:
        return ""
    return re.sub(r'\s+', ' ', remove_diacritics(str(answer)).strip().lower())


def answers_equal(user_answer, correct_answer) -> bool:
    return normalize_answer(user_answer) == normalize_answer(correct_answer)


def parse_number(value) -> Optional[float]:
    """Parse a numeric answer, tolerating whitespace and thousands separators."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if value is None:
        return None
    text = str(value).strip().replace(',', '')
    try:
        number = float(text)
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def numbers_equal(user_answer, correct_answer, tolerance: float = 1e-9) -> bool:
    """Numeric equality for math answers ("12", "12.0" and 12 all match)."""
    user_value = parse_number(user_answer)
    correct_value = parse_number(correct_answer)
    if user_value is None or correct_value is None:
        return False
    return abs(user_value - correct_value) <= tolerance


def format_number(value: float) -> str:
    """Render a number without a trailing ``.0`` for whole values."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"
