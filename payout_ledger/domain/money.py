"""
Money arithmetic.

Amounts are Decimal major units everywhere in the ledger; the payment processor speaks
integer minor units, so conversion happens only at the gateway boundary.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

ZERO_DECIMAL_CURRENCIES = {
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
}


def currency_exponent(currency: str | None) -> int:
    c = (currency or "USD").upper().strip()
    return 0 if c in ZERO_DECIMAL_CURRENCIES else 2


def to_decimal(value: Any) -> Decimal:
    """Decimal from int/float/str/Decimal; floats go through str() so 0.1 stays 0.1"""
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc


def quantize_money(amount: Any, currency: str | None = "USD") -> Decimal:
    q = Decimal("1") if currency_exponent(currency) == 0 else Decimal("0.01")
    return to_decimal(amount).quantize(q, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Any, currency: str | None = "USD") -> int:
    """Processor amounts are integers in the currency's smallest unit"""
    amt = quantize_money(amount, currency)
    if currency_exponent(currency) == 0:
        return int(amt)
    return int((amt * HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int, currency: str | None = "USD") -> Decimal:
    if currency_exponent(currency) == 0:
        return Decimal(int(amount_minor)).quantize(Decimal("1"))
    return (Decimal(int(amount_minor)) / HUNDRED).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FeeSplit:
    gross_amount: Decimal
    platform_fee: Decimal
    creator_amount: Decimal
    fee_percentage: Decimal


def compute_fee_split(
    gross_amount: Any,
    fee_percentage: Any,
    *,
    minimum_fee: Any = None,
    maximum_fee: Any = None,
    currency: str | None = "USD",
) -> FeeSplit:
    """
    Split a gross payment into platform fee and creator share.

    The fee is rounded half-up to the currency's precision, clamped to
    [minimum_fee, maximum_fee] and never exceeds the gross amount, so
    platform_fee + creator_amount == gross_amount always holds exactly.
    """
    gross = quantize_money(gross_amount, currency)
    pct = to_decimal(fee_percentage)
    if gross <= 0:
        raise ValueError("Gross amount must be positive")
    if pct < 0 or pct > HUNDRED:
        raise ValueError("Fee percentage must be between 0 and 100")

    fee = quantize_money(gross * pct / HUNDRED, currency)
    if minimum_fee is not None and fee < to_decimal(minimum_fee):
        fee = quantize_money(minimum_fee, currency)
    if maximum_fee is not None and fee > to_decimal(maximum_fee):
        fee = quantize_money(maximum_fee, currency)
    fee = min(max(fee, ZERO), gross)

    return FeeSplit(
        gross_amount=gross,
        platform_fee=fee,
        creator_amount=gross - fee,
        fee_percentage=pct,
    )
