"""
money.py — Canonical monetary rounding.

Every place that produces a per-member amount (split strategies, residue
allocation, debt simplification) rounds through round_money(). One rule,
applied uniformly:

  - Smallest currency unit is the cent (Decimal("0.01")).
  - Rounding mode is ROUND_HALF_UP (half away from zero for Decimal).

Floats never enter money arithmetic. Values are converted with
to_decimal(), which refuses floats so binary fractions cannot leak in.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
ROUNDING = ROUND_HALF_UP


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Converts int / str / Decimal to Decimal exactly. Floats are rejected."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Monetary values must not be {type(value).__name__}: {value!r}")
    return Decimal(str(value))


def round_money(value: Decimal | int | str) -> Decimal:
    """
    Rounds to the nearest cent using ROUND_HALF_UP.

    Idempotent: a value already at cent precision comes back unchanged
    (numerically and with a two-place exponent).

        round_money(Decimal("3.335"))  → Decimal("3.34")
        round_money(Decimal("-3.335")) → Decimal("-3.34")
        round_money(Decimal("3.33"))   → Decimal("3.33")
    """
    return to_decimal(value).quantize(CENT, rounding=ROUNDING)


def is_negligible(value: Decimal) -> bool:
    """True when |value| is below one cent (the ledger's tolerance)."""
    return abs(value) < CENT


def sum_money(values) -> Decimal:
    """Sums Decimal amounts starting from ZERO so an empty input is 0.00."""
    return sum(values, ZERO)
