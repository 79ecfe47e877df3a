"""Money helpers: Decimal amounts <-> integer minor units.

Balances, offer/trade amounts and ledger rows are stored as integer minor units
(kobo for NGN, 1e-8 for USDT). Rates are stored as fiat minor units per one
stable unit. Nothing in here touches floats.
"""
from decimal import ROUND_CEILING, ROUND_DOWN, Decimal, InvalidOperation
from enum import Enum
from typing import Union

from digipay.domain.common.errors import InvalidAmountError


class Currency(str, Enum):
    """Currency enum (fixed pair)."""
    NGN = "NGN"
    USDT = "USDT"


FIAT = Currency.NGN
STABLE = Currency.USDT

SCALES = {
    Currency.NGN: 2,
    Currency.USDT: 8,
}

# Rate is fiat per one stable unit, fiat precision
RATE_SCALE = SCALES[FIAT]

AmountLike = Union[Decimal, str, int]


def scale_of(currency: Currency) -> int:
    return SCALES[Currency(currency)]


def to_decimal(value: AmountLike) -> Decimal:
    """Parse an amount to Decimal. Floats are rejected (binary rounding)."""
    if isinstance(value, float):
        raise InvalidAmountError("Amounts must be given as decimal strings, not floats")
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    if not result.is_finite():
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    return result


def to_minor(value: AmountLike, scale: int) -> int:
    """Convert a decimal amount to minor units, rejecting excess precision."""
    amount = to_decimal(value)
    quantum = Decimal(1).scaleb(-scale)
    if amount != amount.quantize(quantum, rounding=ROUND_DOWN):
        raise InvalidAmountError(
            f"Amount {amount} has more than {scale} decimal places"
        )
    return int(amount.scaleb(scale))


def from_minor(minor: int, scale: int) -> Decimal:
    """Minor units -> Decimal quantized to the scale."""
    return Decimal(minor).scaleb(-scale).quantize(Decimal(1).scaleb(-scale))


def amount_to_minor(value: AmountLike, currency: Currency) -> int:
    return to_minor(value, scale_of(currency))


def amount_from_minor(minor: int, currency: Currency) -> Decimal:
    return from_minor(minor, scale_of(currency))


def rate_to_minor(value: AmountLike) -> int:
    return to_minor(value, RATE_SCALE)


def rate_from_minor(minor: int) -> Decimal:
    return from_minor(minor, RATE_SCALE)


def format_amount(amount: Decimal, currency: Currency) -> str:
    """Render a fixed-scale decimal string, e.g. '40000.00' or '40.00000000'."""
    scale = scale_of(currency)
    return format(Decimal(amount).quantize(Decimal(1).scaleb(-scale)), "f")


def _div_half_up(numerator: int, denominator: int) -> int:
    q, r = divmod(numerator, denominator)
    if r * 2 >= denominator:
        q += 1
    return q


def fiat_amount_minor(stable_minor: int, rate_minor: int) -> int:
    """fiat = amount * rate, rounded half-up to fiat scale.

    stable_minor is in 1e-8 units and rate_minor in fiat minor units per one
    stable unit, so the product carries a 1e-8 factor to divide out.
    """
    return _div_half_up(stable_minor * rate_minor, 10 ** SCALES[STABLE])


def percent_of_minor(minor: int, percent: Decimal) -> int:
    """percent% of a minor amount, rounded up to a whole minor unit.

    Any non-zero fee costs at least one minor unit.
    """
    value = (Decimal(minor) * Decimal(percent) / Decimal(100)).quantize(
        Decimal(1), rounding=ROUND_CEILING
    )
    return int(value)


def convert_minor(minor: int, from_currency: Currency, rate: Decimal) -> int:
    """Convert between the pair at rate (fiat per stable unit), rounding down."""
    from_currency = Currency(from_currency)
    amount = from_minor(minor, scale_of(from_currency))
    if from_currency == FIAT:
        target = STABLE
        converted = amount / Decimal(rate)
    else:
        target = FIAT
        converted = amount * Decimal(rate)
    scale = scale_of(target)
    converted = converted.quantize(Decimal(1).scaleb(-scale), rounding=ROUND_DOWN)
    return int(converted.scaleb(scale))


def other_currency(currency: Currency) -> Currency:
    return STABLE if Currency(currency) == FIAT else FIAT
