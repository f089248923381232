"""
services/debt_simplifier.py — Greedy minimum cash flow debt simplification.

Repeatedly matches the largest creditor with the largest debtor until all
balances are within one cent of zero. For P creditors and Q debtors this
produces at most P + Q - 1 payments.

Only balances strictly beyond one cent take part; a member at exactly
+0.01 or -0.01 counts as settled.

Pure: takes a {member_id: balance} mapping, returns a list of payments.
Callers pass balances that sum to zero (the Ledger's conservation
invariant); a non-zero sum leaves the leftover unmatched.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping

from fairshare.app.money import CENT, ZERO, is_negligible, round_money


@dataclass(frozen=True)
class SimplifiedDebt:
    from_member_id: int
    to_member_id:   int
    amount:         Decimal

    def to_dict(self) -> dict:
        return {
            "from_member_id": self.from_member_id,
            "to_member_id":   self.to_member_id,
            "amount":         self.amount,
        }


def simplify_debts(balances: Mapping[int, Decimal]) -> list[SimplifiedDebt]:
    """
    Args:
        balances: {member_id: net_balance}. Positive = is owed, negative = owes.

    Returns:
        Payments from debtors to creditors. Empty when everyone is settled.

    Ordering is deterministic: both sides are sorted by amount descending,
    ties broken by member id ascending.
    """
    creditors = sorted(
        [[mid, amt] for mid, amt in balances.items() if amt > CENT],
        key=lambda x: (-x[1], x[0]),
    )
    debtors = sorted(
        [[mid, -amt] for mid, amt in balances.items() if amt < -CENT],
        key=lambda x: (-x[1], x[0]),
    )

    payments: list[SimplifiedDebt] = []
    i = j = 0

    while i < len(creditors) and j < len(debtors):
        cid, credit = creditors[i]
        did, debt = debtors[j]

        transfer = min(credit, debt)
        amount = round_money(transfer)
        if amount > ZERO:
            payments.append(SimplifiedDebt(did, cid, amount))

        creditors[i][1] = credit - transfer
        debtors[j][1] = debt - transfer

        # Advance both pointers when both sides hit zero together.
        if is_negligible(creditors[i][1]):
            i += 1
        if is_negligible(debtors[j][1]):
            j += 1

    return payments
