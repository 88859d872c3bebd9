"""
Monetary amount parsing for AI extraction output.

Handles the conventions models and statements use for amounts:
- $1,234.56 / 1,234.56 / 1234.56 / USD 1234.56
- ($1,234.56)       -> negative (parentheses)
- 1,234.56 DR       -> negative (DR/CR suffix)
- 1,234.56 CR       -> positive
- -$1,234.56        -> negative (leading minus)
- 1,234.56-         -> negative (trailing minus)

Also scans free text for currency-like substrings, used when a model
response cannot be parsed as JSON.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel


class AmountParseResult(BaseModel):
    amount: Optional[Decimal] = None
    raw_text: str
    is_negative: bool = False
    sign_convention: Optional[str] = None  # PARENTHESES, DR_CR, MINUS, NONE
    confidence: float = 0.0


_CURRENCY_TOKENS = ("USD", "usd", "US$", "$", "PHP", "php", chr(8369))

# Amounts at or above this are unusable; cent rounding overflows near 1e26
MAX_AMOUNT = Decimal("1e15")

# Currency-like substrings in prose: "$1,234.56", "($500.00)", "1,234.56", "99.95".
# Bare integers ("2024") and dotted dates ("30.09.2024") are not amounts.
_CURRENCY_IN_TEXT_RE = re.compile(
    r"""
    \(?-?\$\s?\d[\d,]*(?:\.\d{1,2})?\)?          # dollar-prefixed
    | (?<![\w.$,])\d{1,3}(?:,\d{3})+(?:\.\d{2})?(?!\.?\d)   # thousands separators
    | (?<![\w.$,])\d+\.\d{2}(?!\.?\d)             # two decimal places
    """,
    re.VERBOSE,
)


def parse_amount(raw: str) -> AmountParseResult:
    """
    Parse a monetary amount string.
    """
    s = raw.strip()

    if not s or s in ('-', '--', '---'):
        return AmountParseResult(amount=None, raw_text=raw, confidence=0.0)

    # Parentheses may wrap the currency symbol: ($500.00)
    is_negative = False
    sign_convention = 'NONE'
    if s.startswith('(') and s.endswith(')'):
        s = s[1:-1].strip()
        is_negative = True
        sign_convention = 'PARENTHESES'

    for token in _CURRENCY_TOKENS:
        s = s.replace(token, '')
    s = s.strip()

    if not s:
        return AmountParseResult(amount=None, raw_text=raw, confidence=0.0)

    # DR/CR suffix: 100.00DR -> negative
    m = re.match(r'^(.+?)\s*(DR|CR)$', s, re.IGNORECASE)
    if m:
        s = m.group(1).strip()
        is_negative = m.group(2).upper() == 'DR'
        sign_convention = 'DR_CR'

    # Trailing minus: 100.00-
    if not is_negative and s.endswith('-'):
        s = s[:-1].strip()
        is_negative = True
        sign_convention = 'MINUS'

    # Leading minus: -100.00
    if not is_negative and (s.startswith('-') or s.startswith(chr(8722))):
        s = s[1:].strip()
        is_negative = True
        sign_convention = 'MINUS'

    s = s.replace(',', '').replace(' ', '')

    try:
        amount = Decimal(s)
    except (InvalidOperation, ValueError):
        return AmountParseResult(amount=None, raw_text=raw, confidence=0.0)
    if not amount.is_finite() or abs(amount) >= MAX_AMOUNT:
        return AmountParseResult(amount=None, raw_text=raw, confidence=0.0)

    if is_negative:
        amount = -abs(amount)

    confidence = 0.95 if sign_convention in ('NONE', 'PARENTHESES') else 0.90
    if abs(amount) > Decimal('100000000'):
        confidence = 0.5  # Suspiciously large

    return AmountParseResult(
        amount=amount,
        raw_text=raw,
        is_negative=is_negative,
        sign_convention=sign_convention,
        confidence=confidence,
    )


def to_decimal(value: Any) -> Optional[Decimal]:
    """Coerce a JSON value (number or amount string) to Decimal; None if unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            return None
        return result if result.is_finite() and abs(result) < MAX_AMOUNT else None
    if isinstance(value, str):
        return parse_amount(value).amount
    return None


def find_currency_amounts(text: str) -> list[AmountParseResult]:
    """All currency-like amounts in free text, in order of appearance."""
    results = []
    for match in _CURRENCY_IN_TEXT_RE.finditer(text or ""):
        token = match.group(0)
        # Unbalanced parenthesis belongs to the surrounding prose
        if token.endswith(')') and not token.startswith('('):
            token = token[:-1]
        elif token.startswith('(') and not token.endswith(')'):
            token = token[1:]
        parsed = parse_amount(token)
        if parsed.amount is not None:
            results.append(parsed)
    return results

