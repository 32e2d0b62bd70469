"""Integer minor-unit arithmetic shared by prize allocation and reporting.

Amounts are always ``int`` values in the minor currency unit (cents). Fractions
such as the charity split are handled as :class:`~decimal.Decimal` so that no
float ever takes part in a monetary sum.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

SplitLike = Union[Decimal, int, float, str]

BASIS_POINTS = 10_000
DEFAULT_CHARITY_SPLIT = Decimal("0.10")


def to_fraction(value: SplitLike) -> Decimal:
    """Coerce ``value`` to a :class:`Decimal` fraction within ``[0, 1]``.

    Floats are converted through their shortest ``repr`` so ``0.1`` becomes
    ``Decimal("0.1")`` rather than its binary approximation.
    """
    if isinstance(value, bool):
        raise TypeError("split must be a number, not bool")
    if isinstance(value, float):
        value = repr(value)
    try:
        fraction = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise TypeError(f"split {value!r} is not a valid number") from exc
    if not fraction.is_finite():
        raise ValueError("split must be finite")
    if fraction < 0 or fraction > 1:
        raise ValueError(f"split must be within [0, 1], got {fraction}")
    return fraction


def bps_to_fraction(bps: int) -> Decimal:
    """Return ``bps`` basis points as a fraction (``1000`` -> ``0.1``)."""
    return to_fraction(Decimal(int(bps)) / BASIS_POINTS)


def fraction_to_bps(value: SplitLike) -> int:
    """Return a fraction as whole basis points; sub-basis-point precision is rejected."""
    scaled = to_fraction(value) * BASIS_POINTS
    if scaled != scaled.to_integral_value():
        raise ValueError(f"split {value!r} is finer than one basis point")
    return int(scaled)


def round_half_up(value: Decimal) -> int:
    """Round ``value`` to the nearest integer, halves away from zero."""
    return int(Decimal(value).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _require_amount(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer amount in minor units")
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def split_prize(gross_prize: int, charity_split: SplitLike) -> tuple[int, int]:
    """Partition ``gross_prize`` into ``(charity_amount, net_payout)``.

    The charity amount is rounded once and the net payout is derived from it
    by subtraction, so ``charity_amount + net_payout == gross_prize`` holds by
    construction.
    """
    gross = _require_amount("gross_prize", gross_prize)
    fraction = to_fraction(charity_split)
    charity_amount = round_half_up(Decimal(gross) * fraction)
    return charity_amount, gross - charity_amount


def distribute_evenly(total: int, count: int) -> list[int]:
    """Split ``total`` into ``count`` parts whose sum is exactly ``total``.

    Every part gets ``total // count``; the first ``total % count`` parts get
    one extra unit. Callers order recipients deterministically before zipping.
    """
    total = _require_amount("total", total)
    if isinstance(count, bool) or not isinstance(count, int):
        raise TypeError("count must be an integer")
    if count <= 0:
        raise ValueError("count must be positive")
    base, remainder = divmod(total, count)
    return [base + 1 if idx < remainder else base for idx in range(count)]


def format_minor_units(amount: int, currency: str = "AUD") -> str:
    """Render ``amount`` cents as ``"AUD 12.34"`` for logs and activity entries."""
    sign = "-" if amount < 0 else ""
    major, minor = divmod(abs(int(amount)), 100)
    return f"{currency} {sign}{major:,}.{minor:02d}"


__all__ = [
    "BASIS_POINTS",
    "DEFAULT_CHARITY_SPLIT",
    "bps_to_fraction",
    "distribute_evenly",
    "format_minor_units",
    "fraction_to_bps",
    "round_half_up",
    "split_prize",
    "to_fraction",
]
