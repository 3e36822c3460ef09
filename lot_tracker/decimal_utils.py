import json
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext, localcontext
from typing import Any, Optional


# ============================================================================
# PRECISION CONSTANTS
# ============================================================================

# Fraction digits used when a lot key is built from an amount
AMOUNT_KEY_DIGITS = 8


# ============================================================================
# ROUNDING CONTEXT (ROUND_HALF_UP)
# ============================================================================

def set_ledger_rounding_context() -> None:
    """
    Set global Decimal context for lot calculations.
    Uses ROUND_HALF_UP (0.5 always rounds up).
    Call this once at application startup.
    """
    ctx = getcontext()
    ctx.rounding = ROUND_HALF_UP
    ctx.prec = 28  # Support up to 28 significant digits


# Initialize rounding on module load
set_ledger_rounding_context()


# ============================================================================
# DECIMAL COERCION HELPERS
# ============================================================================

def parse_decimal(value: Any) -> Decimal:
    """
    Coerce a wire value (string, int or Decimal) to a Decimal for the loaders.

    Raises:
        ValueError: If the value is empty, not numeric, or not finite.
    """
    if isinstance(value, bool) or value is None or value == '':
        raise ValueError(f"not a decimal amount: {value!r}")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"not a decimal amount: {value!r}")
    if not result.is_finite():
        raise ValueError(f"not a finite amount: {value!r}")
    return result


def working_precision(value: Decimal, places: int) -> int:
    """
    Context precision that holds value exactly at `places` fraction digits.

    Never lower than the current context precision.
    """
    if value == 0:
        needed = places + 2
    else:
        needed = value.adjusted() + places + 2
    return max(getcontext().prec, needed)


def round_decimal(value: Decimal, places: int = 8) -> Decimal:
    """Round to a fixed number of fraction digits with ROUND_HALF_UP."""
    with localcontext() as ctx:
        ctx.prec = working_precision(value, places)
        return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def significant_fractional_digits(value: Decimal) -> int:
    """
    Number of fraction digits needed to write the value exactly.

    Trailing zeros do not count: 1.2300 -> 2, 12 -> 0, 1E+3 -> 0.
    """
    if value == 0:
        return 0
    _, digits, exponent = value.as_tuple()
    trailing_zeros = len(digits) - len(''.join(map(str, digits)).rstrip('0'))
    return max(-(exponent + trailing_zeros), 0)


def decimal_to_str(value: Optional[Decimal]) -> Optional[str]:
    """Plain (non-scientific) string form used in every JSON output."""
    if value is None:
        return None
    text = format(value, 'f')
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    if text in ('-0', ''):
        text = '0'
    return text


# ============================================================================
# DISPLAY FORMATTERS
# ============================================================================

def format_amount_key(value: Decimal) -> str:
    """Grouped 8-digit form, e.g. 1,234.50000000; used for transfer matching keys."""
    return f"{round_decimal(abs(value), AMOUNT_KEY_DIGITS):,.{AMOUNT_KEY_DIGITS}f}"


def _trim(text: str) -> str:
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return text


def format_lot_amount(value: Decimal, is_fiat: bool) -> str:
    """
    Short amount for graph labels.

    Crypto shows 6 fraction digits, fiat 2, trailing zeros removed.
    Amounts that would print as 0 fall back to 12 digits.
    """
    places = 2 if is_fiat else 6
    text = _trim(f"{round_decimal(value, places):f}")
    if text in ('0', '-0'):
        text = _trim(f"{round_decimal(value, 12):f}")
    return text


def format_rate(value: Optional[Decimal]) -> str:
    """Rate with 2 fraction digits, or '-' when unknown."""
    if value is None:
        return '-'
    return f"{round_decimal(value, 2):f}"


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that preserves Decimal precision."""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return decimal_to_str(obj)
        return super().default(obj)
