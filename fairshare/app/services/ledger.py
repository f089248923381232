"""
services/ledger.py — Balance Ledger.

This file is the SINGLE place that writes Member.balance and
Group.total_expenses. Every write is one SQL statement of the form

    UPDATE members SET balance = balance + :delta WHERE id = :id AND group_id = :gid

so concurrent writers never lose each other's updates. Never read a balance,
add to it in Python, and write it back.

Sign convention: positive balance = the group owes the member, negative =
the member owes the group. An obligation moves its member by
-(owed_amount - paid_amount).

Layer rules:
  - No Flask imports.
  - Every function receives the SQLAlchemy session of the caller's open
    transaction and never commits. The Transaction Coordinator
    (services/transaction.py) decides commit or rollback.
  - An increment that matches no row raises AppError, which aborts the
    surrounding transaction.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from fairshare.app.errors import AppError, ErrorCode
from fairshare.app.models.expense import Expense
from fairshare.app.models.group import Group
from fairshare.app.models.member import Member
from fairshare.app.models.obligation import Obligation
from fairshare.app.models.settlement import Settlement
from fairshare.app.money import ZERO


class _HasNet(Protocol):
    member_id: int

    @property
    def net_amount(self) -> Decimal: ...


# ── Atomic increments ──────────────────────────────────────────────────────

def _increment_balance(group_id: int, member_id: int, delta: Decimal, session: Session) -> None:
    stmt = (
        update(Member)
        .where(Member.id == member_id, Member.group_id == group_id)
        .values(balance=Member.balance + delta)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if result.rowcount != 1:
        raise AppError(
            ErrorCode.MEMBER_NOT_FOUND,
            f"Member {member_id} does not exist in group {group_id}.",
            404,
        )


def adjust_group_total(group_id: int, delta: Decimal, session: Session) -> None:
    """Atomically adds delta to the group's total_expenses aggregate."""
    stmt = (
        update(Group)
        .where(Group.id == group_id)
        .values(
            total_expenses=Group.total_expenses + delta,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if result.rowcount != 1:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )


# ── Expense effects ────────────────────────────────────────────────────────

def apply_expense_create(group_id: int, obligations: Iterable[_HasNet], session: Session) -> None:
    """Moves each participant's balance by -(owed - paid)."""
    for obligation in obligations:
        delta = -obligation.net_amount
        if delta != ZERO:
            _increment_balance(group_id, obligation.member_id, delta, session)


def apply_expense_delete(group_id: int, obligations: Iterable[_HasNet], session: Session) -> None:
    """
    Exact inverse of apply_expense_create().

    Always pass the STORED obligation rows of the expense being reversed.
    Recomputing them from current weights or strategy would not undo what
    was originally applied.
    """
    for obligation in obligations:
        delta = obligation.net_amount
        if delta != ZERO:
            _increment_balance(group_id, obligation.member_id, delta, session)


# ── Settlement effects ─────────────────────────────────────────────────────

def apply_settlement_create(
        group_id: int,
        from_member_id: int,
        to_member_id: int,
        amount: Decimal,
        session: Session,
) -> None:
    """The payer moves toward zero (+amount); the recipient's credit shrinks (-amount)."""
    _increment_balance(group_id, from_member_id, amount, session)
    _increment_balance(group_id, to_member_id, -amount, session)


def apply_settlement_reverse(
        group_id: int,
        from_member_id: int,
        to_member_id: int,
        amount: Decimal,
        session: Session,
) -> None:
    """Exact inverse of apply_settlement_create()."""
    _increment_balance(group_id, from_member_id, -amount, session)
    _increment_balance(group_id, to_member_id, amount, session)


# ── Reads ──────────────────────────────────────────────────────────────────

def get_balances(group_id: int, session: Session) -> dict[int, Decimal]:
    """Returns {member_id: stored balance} for every active member of the group."""
    stmt = (
        select(Member.id, Member.balance)
        .where(Member.group_id == group_id, Member.is_active.is_(True))
        .order_by(Member.id)
    )
    return {mid: balance for mid, balance in session.execute(stmt).all()}


def derive_balances(group_id: int, session: Session) -> dict[int, Decimal]:
    """
    Replays every active obligation and settlement of the group.

    Returns {member_id: derived balance} for every member, active or not.
    With no drift this equals the stored balances. Used only for
    reconciliation; normal reads go through get_balances().
    """
    balances: dict[int, Decimal] = defaultdict(lambda: ZERO)

    member_ids = session.execute(
        select(Member.id).where(Member.group_id == group_id)
    ).scalars().all()
    for mid in member_ids:
        balances[mid] = ZERO

    obligations = session.execute(
        select(Obligation)
        .join(Expense, Obligation.expense_id == Expense.id)
        .where(
            Expense.group_id == group_id,
            Expense.deleted_at.is_(None),
        )
    ).scalars().all()
    for obligation in obligations:
        balances[obligation.member_id] -= obligation.net_amount

    settlements = session.execute(
        select(Settlement).where(
            Settlement.group_id == group_id,
            Settlement.deleted_at.is_(None),
        )
    ).scalars().all()
    for settlement in settlements:
        balances[settlement.from_member_id] += settlement.amount
        balances[settlement.to_member_id] -= settlement.amount

    return dict(balances)
