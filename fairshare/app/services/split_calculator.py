"""
services/split_calculator.py — Pure split computation.

compute_splits() maps (amount, payer, participants, strategy, params) to one
ComputedSplit per participant. No database, no Flask, no side effects: the
same inputs always produce the same outputs.

Strategies (closed set, dispatched exhaustively in compute_splits):

  equal       owed_i = round(amount / n)
  equity      owed_i = round(amount * w_i / sum(w))   missing weight → 1
  exact       owed_i = caller-supplied amount          missing → 0
  percentage  owed_i = round(amount * p_i / 100)       missing → 0
  shares      owed_i = round(amount * s_i / sum(s))    missing shares → 1

When the weights (or shares) of all participants total zero, every
participant counts as 1 so the division is always defined.

For every strategy the payer's paid_amount is the full amount and everyone
else's is zero.

The calculator does NOT reconcile rounding residue: sum(owed) may differ
from amount by up to n half-cents. Reconciliation is a separate, explicit
step (distribute_residue) chosen by the caller's residue policy.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Mapping, Sequence

from fairshare.app.money import CENT, ZERO, round_money, sum_money, to_decimal


class SplitStrategy(str, enum.Enum):
    EQUAL      = "equal"
    EQUITY     = "equity"
    EXACT      = "exact"
    PERCENTAGE = "percentage"
    SHARES     = "shares"


class SplitInputError(ValueError):
    """Raised when compute_splits() is called with out-of-contract input."""


@dataclass(frozen=True)
class SplitParams:
    """Strategy parameters, each keyed by member id."""
    exact_amounts: Mapping[int, Decimal] | None = None
    percentages:   Mapping[int, Decimal] | None = None
    shares:        Mapping[int, int] | None = None
    weights:       Mapping[int, Decimal] | None = None


@dataclass(frozen=True)
class ComputedSplit:
    """One participant's obligation for one expense."""
    member_id:   int
    owed_amount: Decimal
    paid_amount: Decimal = ZERO
    percentage:  Decimal | None = field(default=None)
    shares:      int | None = field(default=None)

    @property
    def net_amount(self) -> Decimal:
        """Positive = owes for this expense, negative = gets back."""
        return self.owed_amount - self.paid_amount


# ── Public API ─────────────────────────────────────────────────────────────

def compute_splits(
        amount: Decimal,
        payer_id: int,
        participants: Sequence[int],
        strategy: SplitStrategy,
        params: SplitParams | None = None,
) -> list[ComputedSplit]:
    """
    Computes per-participant obligations for one expense.

    Raises:
        SplitInputError: amount <= 0, no participants, duplicate participants,
                         payer not among participants, or the parameters
                         required by the strategy are absent.
    """
    amount = to_decimal(amount)
    params = params or SplitParams()
    _check_preconditions(amount, payer_id, participants)

    if strategy == SplitStrategy.EQUAL:
        owed = _equal(amount, participants)
    elif strategy == SplitStrategy.EQUITY:
        owed = _weighted(amount, participants, params.weights, default=Decimal(1))
    elif strategy == SplitStrategy.EXACT:
        if params.exact_amounts is None:
            raise SplitInputError("exact_amounts are required for the exact strategy.")
        owed = {
            mid: round_money(to_decimal(params.exact_amounts.get(mid, ZERO)))
            for mid in participants
        }
    elif strategy == SplitStrategy.PERCENTAGE:
        if params.percentages is None:
            raise SplitInputError("percentages are required for the percentage strategy.")
        owed = {
            mid: round_money(amount * to_decimal(params.percentages.get(mid, ZERO)) / 100)
            for mid in participants
        }
    elif strategy == SplitStrategy.SHARES:
        owed = _weighted(amount, participants, params.shares, default=1)
    else:
        raise SplitInputError(f"Unknown split strategy: {strategy!r}")

    return [
        ComputedSplit(
            member_id=mid,
            owed_amount=owed[mid],
            paid_amount=amount if mid == payer_id else ZERO,
            percentage=_param_for(strategy, SplitStrategy.PERCENTAGE, params.percentages, mid),
            shares=_shares_for(strategy, params.shares, mid),
        )
        for mid in participants
    ]


def rounding_residue(amount: Decimal, splits: Sequence[ComputedSplit]) -> Decimal:
    """Returns amount - sum(owed). Zero means the split is penny-perfect."""
    return to_decimal(amount) - sum_money(s.owed_amount for s in splits)


def distribute_residue(
        splits: Sequence[ComputedSplit],
        amount: Decimal,
        payer_id: int,
) -> list[ComputedSplit]:
    """
    Allocates the rounding residue one cent at a time so sum(owed) == amount.

    Order: the payer first, then the remaining participants in their given
    order, wrapping around if the residue is larger than one cent per head.
    A negative residue takes cents away in the same order.
    """
    residue = rounding_residue(amount, splits)
    if residue == ZERO:
        return list(splits)

    order = sorted(range(len(splits)), key=lambda i: splits[i].member_id != payer_id)
    step = CENT if residue > 0 else -CENT
    cents = int(abs(residue) / CENT)

    adjusted = list(splits)
    for k in range(cents):
        i = order[k % len(order)]
        adjusted[i] = replace(adjusted[i], owed_amount=adjusted[i].owed_amount + step)
    return adjusted


# ── Strategy helpers ───────────────────────────────────────────────────────

def _check_preconditions(amount: Decimal, payer_id: int, participants: Sequence[int]) -> None:
    if amount <= ZERO:
        raise SplitInputError(f"amount must be positive, got {amount}.")
    if not participants:
        raise SplitInputError("participants must not be empty.")
    if len(set(participants)) != len(participants):
        raise SplitInputError("participants must not contain duplicates.")
    if payer_id not in participants:
        raise SplitInputError(f"payer {payer_id} must be one of the participants.")


def _equal(amount: Decimal, participants: Sequence[int]) -> dict[int, Decimal]:
    per_person = round_money(amount / len(participants))
    return {mid: per_person for mid in participants}


def _weighted(
        amount: Decimal,
        participants: Sequence[int],
        weights: Mapping[int, Decimal | int] | None,
        default: Decimal | int,
) -> dict[int, Decimal]:
    weights = weights or {}
    effective = {mid: to_decimal(weights.get(mid, default)) for mid in participants}
    total = sum(effective.values(), Decimal(0))
    if total == 0:
        effective = {mid: Decimal(1) for mid in participants}
        total = Decimal(len(participants))
    return {mid: round_money(amount * w / total) for mid, w in effective.items()}


def _param_for(strategy, wanted, values, member_id):
    if strategy != wanted or values is None:
        return None
    return to_decimal(values.get(member_id, ZERO))


def _shares_for(strategy, shares, member_id):
    if strategy != SplitStrategy.SHARES:
        return None
    return int((shares or {}).get(member_id, 1))
