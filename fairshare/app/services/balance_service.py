"""
services/balance_service.py — Balance reporting and reconciliation.

Balances are STORED on the member rows and moved only by services/ledger.py.
This module reads them, checks the conservation invariant and asks the debt
simplifier for a settle-up plan. It never writes.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives group_id (int) and session (SQLAlchemy Session) as arguments.
  - Returns plain Python dicts and lists.

Conservation:
  The sum of all active members' balances is zero after every committed
  ledger operation. get_balance_response() asserts this before responding;
  a non-zero sum surfaces as a 500 because it means the stored data drifted.
  reconcile_group() shows where.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy.orm import Session

from fairshare.app.errors import AppError, ErrorCode
from fairshare.app.money import ZERO, is_negligible, sum_money
from fairshare.app.services import ledger
from fairshare.app.services.debt_simplifier import simplify_debts
from fairshare.app.services.group_service import (
    get_active_members,
    get_group_or_404,
    require_member,
)


def get_balance_response(
        group_id: int,
        caller_id: int,
        session: Session,
        enforce_zero_sum: bool = True,
) -> dict:
    """
    Builds the full balance payload for GET /groups/:id/balances.

    enforce_zero_sum is False only when the residue policy is "none", where
    unallocated rounding cents legitimately leave a non-zero sum.

    Raises:
        AppError(GROUP_NOT_FOUND, 404)  -- group does not exist.
        AppError(FORBIDDEN, 403)        -- caller is not an active member.
        AppError(INTERNAL_ERROR, 500)   -- stored balances do not sum to zero.
    """
    group = get_group_or_404(group_id, session)
    require_member(group_id, caller_id, session)

    balances = ledger.get_balances(group_id, session)
    members = get_active_members(group_id, session)
    names = {mid: m.nickname for mid, m in members.items()}

    balance_sum = sum_money(balances.values())
    if enforce_zero_sum and balance_sum != ZERO:
        # Corrupt source data, not a client error. The 500 handler logs it.
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Balance integrity check failed: sum was {balance_sum} (expected 0.00). "
            f"Group {group_id} has inconsistent financial data.",
            500,
        )

    balance_list = [
        {
            "member_id": mid,
            "nickname": names.get(mid, f"member_{mid}"),
            "balance": bal,
        }
        for mid, bal in balances.items()
    ]

    simplified_debts = [
        {
            "from_member_id": debt.from_member_id,
            "from_nickname": names.get(debt.from_member_id, f"member_{debt.from_member_id}"),
            "to_member_id": debt.to_member_id,
            "to_nickname": names.get(debt.to_member_id, f"member_{debt.to_member_id}"),
            "amount": debt.amount,
        }
        for debt in simplify_debts(balances)
    ]

    return {
        "group_id": group_id,
        "currency_code": group.currency_code,
        "total_expenses": group.total_expenses,
        "balances": balance_list,
        "simplified_debts": simplified_debts,
        "balance_sum": balance_sum,
        "total_outstanding": total_owed(balances),
    }


def reconcile_group(
        group_id: int,
        caller_id: int,
        session: Session,
) -> dict:
    """
    Compares every stored balance with a replay of the group's active
    obligations and settlements.

    A member whose stored and derived balances differ by a cent or more is
    listed under `drift`. An empty `drift` list means the ledger is consistent.
    """
    group = get_group_or_404(group_id, session)
    require_member(group_id, caller_id, session)

    derived = ledger.derive_balances(group_id, session)
    stored = {m.id: m.balance for m in group.members}

    rows = []
    drift = []
    for mid in sorted(set(stored) | set(derived)):
        stored_balance = stored.get(mid, ZERO)
        derived_balance = derived.get(mid, ZERO)
        difference = stored_balance - derived_balance
        row = {
            "member_id": mid,
            "stored_balance": stored_balance,
            "derived_balance": derived_balance,
            "difference": difference,
        }
        rows.append(row)
        if not is_negligible(difference):
            drift.append(row)

    return {
        "group_id": group_id,
        "members": rows,
        "drift": drift,
        "stored_sum": sum_money(stored.values()),
        "derived_sum": sum_money(derived.values()),
        "is_consistent": not drift,
    }


def total_owed(balances: dict[int, Decimal]) -> Decimal:
    """Sum of all negative balances, as a positive amount."""
    return sum_money(-b for b in balances.values() if b < ZERO)
