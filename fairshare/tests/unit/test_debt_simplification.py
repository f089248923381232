"""
tests/unit/test_debt_simplification.py — Unit tests for debt_simplifier.simplify_debts.

What this file proves:
  - Two-member debt → single payment
  - One creditor, many debtors (and the reverse) → one payment per debtor/creditor
  - Circular debt collapses to at most P + Q - 1 payments
  - All-zero, sub-cent and exactly-one-cent balances → no payments
  - Every payment goes debtor → creditor
  - Applying the payments reproduces the original net positions exactly
  - Tie-breaking is deterministic: larger amount first, then lower member id
  - Payment amounts are Decimal at cent precision

Unit test constraints:
  - No database, no Flask. simplify_debts takes a plain dict[int, Decimal].

Pre-condition for simplify_debts: sum(balances.values()) == 0.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from fairshare.app.services.debt_simplifier import SimplifiedDebt, simplify_debts


# ── Helpers ────────────────────────────────────────────────────────────────

def _verify_correctness(
    original_balances: dict[int, Decimal],
    payments: list[SimplifiedDebt],
) -> None:
    """
    Applies the payments and asserts the resulting net positions match the
    input: the simplifier must not invent money, lose money, or misroute it.
    """
    net = defaultdict(lambda: Decimal("0.00"))
    for p in payments:
        net[p.from_member_id] -= p.amount
        net[p.to_member_id]   += p.amount

    for mid, expected_balance in original_balances.items():
        actual = net[mid]
        assert actual == expected_balance, (
            f"Simplification incorrect for member {mid}: "
            f"expected net change {expected_balance}, got {actual}"
        )


def _sum_balances(balances: dict[int, Decimal]) -> Decimal:
    return sum(balances.values(), Decimal("0.00"))


# ── Tests ──────────────────────────────────────────────────────────────────

def test_all_zero_returns_empty_list():
    balances = {1: Decimal("0.00"), 2: Decimal("0.00"), 3: Decimal("0.00")}
    assert simplify_debts(balances) == []


def test_empty_dict_returns_empty_list():
    assert simplify_debts({}) == []


def test_sub_cent_balances_are_ignored():
    balances = {1: Decimal("0.004"), 2: Decimal("-0.004")}
    assert simplify_debts(balances) == []


def test_exactly_one_cent_counts_as_settled():
    balances = {1: Decimal("0.01"), 2: Decimal("-0.01")}
    assert simplify_debts(balances) == []


def test_two_cents_produce_a_payment():
    balances = {1: Decimal("0.02"), 2: Decimal("-0.02")}
    assert simplify_debts(balances) == [SimplifiedDebt(2, 1, Decimal("0.02"))]


def test_thirty_owed_by_ten_and_twenty_takes_two_payments():
    balances = {1: Decimal("30"), 2: Decimal("-10"), 3: Decimal("-20")}

    payments = simplify_debts(balances)

    assert len(payments) == 2
    assert {(p.from_member_id, p.to_member_id, p.amount) for p in payments} == {
        (2, 1, Decimal("10.00")),
        (3, 1, Decimal("20.00")),
    }
    _verify_correctness(balances, payments)


def test_two_member_debt_one_payment():
    """
    Alice is owed 50 (balance +50), Bob owes 50 (balance -50).
    Result: exactly one payment, Bob → Alice, 50.
    """
    balances = {1: Decimal("50.00"), 2: Decimal("-50.00")}
    assert _sum_balances(balances) == Decimal("0.00")

    result = simplify_debts(balances)

    assert result == [SimplifiedDebt(from_member_id=2, to_member_id=1, amount=Decimal("50.00"))]


def test_one_creditor_two_debtors():
    balances = {
        1: Decimal("100.00"),
        2: Decimal("-40.00"),
        3: Decimal("-60.00"),
    }
    result = simplify_debts(balances)

    assert len(result) == 2
    _verify_correctness(balances, result)
    assert all(p.to_member_id == 1 for p in result)
    # Largest debtor is matched first.
    assert result[0].from_member_id == 3
    assert result[0].amount == Decimal("60.00")


def test_two_creditors_one_debtor():
    balances = {
        1: Decimal("30.00"),
        2: Decimal("70.00"),
        3: Decimal("-100.00"),
    }
    result = simplify_debts(balances)

    assert len(result) == 2
    _verify_correctness(balances, result)
    assert all(p.from_member_id == 3 for p in result)
    assert result[0].to_member_id == 2


def test_circular_debt_collapses():
    """
    A owes B 10, B owes C 10, C owes A 10 → every net balance is zero.
    Nothing needs to move.
    """
    balances = {1: Decimal("0.00"), 2: Decimal("0.00"), 3: Decimal("0.00")}
    assert simplify_debts(balances) == []


def test_large_group_bounded_payment_count():
    balances = {
        1: Decimal("120.00"),
        2: Decimal("45.50"),
        3: Decimal("-80.25"),
        4: Decimal("-35.25"),
        5: Decimal("-50.00"),
    }
    assert _sum_balances(balances) == Decimal("0.00")

    result = simplify_debts(balances)

    creditors = sum(1 for b in balances.values() if b > 0)
    debtors = sum(1 for b in balances.values() if b < 0)
    assert len(result) <= creditors + debtors - 1
    _verify_correctness(balances, result)


def test_payments_are_directionally_correct():
    balances = {
        1: Decimal("25.00"),
        2: Decimal("-10.00"),
        3: Decimal("-15.00"),
    }
    for p in simplify_debts(balances):
        assert balances[p.from_member_id] < 0, "payer must be a debtor"
        assert balances[p.to_member_id] > 0, "recipient must be a creditor"


def test_equal_amounts_tie_break_on_member_id():
    balances = {
        4: Decimal("10.00"),
        2: Decimal("10.00"),
        7: Decimal("-10.00"),
        5: Decimal("-10.00"),
    }
    result = simplify_debts(balances)

    assert [(p.from_member_id, p.to_member_id) for p in result] == [(5, 2), (7, 4)]


def test_amounts_are_decimal_at_cent_precision():
    balances = {1: Decimal("33.34"), 2: Decimal("-16.67"), 3: Decimal("-16.67")}
    for p in simplify_debts(balances):
        assert isinstance(p.amount, Decimal)
        assert p.amount.as_tuple().exponent == -2


def test_to_dict_shape():
    payment = SimplifiedDebt(from_member_id=2, to_member_id=1, amount=Decimal("5.00"))
    assert payment.to_dict() == {
        "from_member_id": 2,
        "to_member_id": 1,
        "amount": Decimal("5.00"),
    }


def test_does_not_mutate_input():
    balances = {1: Decimal("5.00"), 2: Decimal("-5.00")}
    snapshot = dict(balances)
    simplify_debts(balances)
    assert balances == snapshot
