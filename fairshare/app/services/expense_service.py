"""
services/expense_service.py — Expense business logic and coordination.

Every expense write is one atomic_write() block: the expense row, its
obligation rows, the per-member balance increments and the group's
total_expenses increment commit together or not at all.

Rules enforced here:
  PAYER_NOT_MEMBER (422)        — payer must be an active member
  PARTICIPANT_NOT_MEMBER (422)  — every participant must be an active member
  SPLIT_SUM_MISMATCH (422)      — exact amounts must add up to the amount
  PERCENTAGE_SUM_MISMATCH (422) — percentages must add up to 100
  EXPENSE_DELETED (422)         — a soft-deleted expense cannot be edited
  MEMBER_INACTIVE (422)         — re-splitting or deleting would move the
                                  balance of a deactivated member
  INVALID_CURRENCY (400)        — an expense uses its group's currency
  FORBIDDEN (403)               — caller must be an active member; edit and
                                  delete need the payer, the creator or an admin

The two sum rules apply when STRICT_SPLIT_VALIDATION is on. With it off the
input is accepted and an INCONSISTENT_SPLIT_INPUT warning is returned.

Rounding residue (amount - sum of owed amounts) is handled by the residue
policy passed in by the route: "distribute" allocates it cent by cent and
returns a ROUNDING_RESIDUE_ALLOCATED warning; "none" leaves it unallocated.

Layer rules:
  - No Flask imports. Configuration values arrive as arguments.
  - Writes commit inside atomic_write(); routes do not commit for these.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from fairshare.app.errors import AppError, ErrorCode, WarningCode, warning
from fairshare.app.models.expense import Category, Expense
from fairshare.app.models.group import Group
from fairshare.app.models.member import Member
from fairshare.app.models.obligation import Obligation
from fairshare.app.money import ZERO, sum_money
from fairshare.app.services import ledger
from fairshare.app.services.group_service import (
    get_active_members,
    get_group_or_404,
    require_active_parties,
    require_member,
)
from fairshare.app.services.split_calculator import (
    ComputedSplit,
    SplitParams,
    SplitStrategy,
    compute_splits,
    distribute_residue,
    rounding_residue,
)
from fairshare.app.services.transaction import atomic_write

logger = logging.getLogger(__name__)

RESIDUE_DISTRIBUTE = "distribute"
RESIDUE_NONE = "none"
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class SplitPolicy:
    """Request-independent knobs, read from app config by the route."""
    residue_policy: str = RESIDUE_DISTRIBUTE
    strict: bool = True


# ── Private helpers ────────────────────────────────────────────────────────

def _get_expense_or_404(group_id: int, expense_id: int, session: Session) -> Expense:
    """Returns the Expense (active or deleted) or raises EXPENSE_NOT_FOUND (404)."""
    expense = session.get(Expense, expense_id)
    if expense is None or expense.group_id != group_id:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist in group {group_id}.",
            404,
        )
    return expense


def _require_can_modify(expense: Expense, caller: Member, action: str) -> None:
    """Only the payer's user, the creator or a group admin may edit or delete."""
    payer = expense.payer
    is_payer = payer is not None and payer.user_id == caller.user_id
    is_creator = expense.created_by_user_id == caller.user_id
    if not (is_payer or is_creator or caller.is_admin):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the payer, the creator or a group admin may {action} this expense.",
            403,
        )


def _check_currency(group: Group, currency_code: str | None) -> str:
    if currency_code is None:
        return group.currency_code
    if currency_code != group.currency_code:
        raise AppError(
            ErrorCode.INVALID_CURRENCY,
            f"Group {group.id} records amounts in {group.currency_code}; "
            f"got {currency_code}. Currency conversion is not supported.",
            400,
            field="currency_code",
        )
    return currency_code


def _resolve_participants(
        strategy: SplitStrategy,
        participant_ids: list[int] | None,
        params: dict,
        active: dict[int, Member],
) -> list[int]:
    """
    Explicit participant_ids win. Otherwise exact and percentage splits use
    the members named in their parameter mapping, and every other strategy
    uses all active members.
    """
    if participant_ids is not None:
        return list(participant_ids)
    if strategy == SplitStrategy.EXACT and params.get("exact_amounts"):
        return list(params["exact_amounts"].keys())
    if strategy == SplitStrategy.PERCENTAGE and params.get("percentages"):
        return list(params["percentages"].keys())
    return list(active.keys())


def _restrict(mapping: dict | None, participants: list[int]) -> dict | None:
    """Drops parameter entries for members who are not participants."""
    if mapping is None:
        return None
    return {mid: value for mid, value in mapping.items() if mid in participants}


def _validate_membership(
        group_id: int,
        payer_id: int,
        participants: list[int],
        active: dict[int, Member],
) -> None:
    if payer_id not in active:
        raise AppError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"Member {payer_id} is not an active member of group {group_id}.",
            422,
            field="payer_member_id",
        )
    for mid in participants:
        if mid not in active:
            raise AppError(
                ErrorCode.PARTICIPANT_NOT_MEMBER,
                f"Member {mid} is not an active member of group {group_id}.",
                422,
                field="participant_ids",
            )
    if payer_id not in participants:
        raise AppError(
            ErrorCode.PAYER_NOT_PARTICIPANT,
            f"Payer {payer_id} must be one of the participants.",
            400,
            field="participant_ids",
        )


def _check_input_sums(
        strategy: SplitStrategy,
        amount: Decimal,
        params: SplitParams,
        strict: bool,
) -> list[dict]:
    """Returns warnings, or raises when strict validation is on."""
    if strategy == SplitStrategy.EXACT:
        total = sum_money(params.exact_amounts.values())
        if total != amount:
            message = f"Exact amounts ({total}) do not equal the expense amount ({amount})."
            if strict:
                raise AppError(ErrorCode.SPLIT_SUM_MISMATCH, message, 422, field="exact_amounts")
            return [warning(WarningCode.INCONSISTENT_SPLIT_INPUT, message)]

    if strategy == SplitStrategy.PERCENTAGE:
        total = sum(params.percentages.values(), Decimal(0))
        if total != HUNDRED:
            message = f"Percentages add up to {total}, not 100."
            if strict:
                raise AppError(ErrorCode.PERCENTAGE_SUM_MISMATCH, message, 422, field="percentages")
            return [warning(WarningCode.INCONSISTENT_SPLIT_INPUT, message)]

    return []


def _plan_splits(
        group_id: int,
        amount: Decimal,
        payer_id: int,
        strategy: SplitStrategy,
        participant_ids: list[int] | None,
        params: dict,
        policy: SplitPolicy,
        session: Session,
) -> tuple[list[ComputedSplit], list[dict]]:
    """
    Validates the split request against the group and runs the calculator.

    Everything that can fail happens here, before any write.
    """
    active = get_active_members(group_id, session)
    participants = _resolve_participants(strategy, participant_ids, params, active)
    _validate_membership(group_id, payer_id, participants, active)

    split_params = SplitParams(
        exact_amounts=_restrict(params.get("exact_amounts"), participants),
        percentages=_restrict(params.get("percentages"), participants),
        shares=_restrict(params.get("shares"), participants),
        weights={mid: active[mid].salary_weight for mid in participants},
    )
    if strategy == SplitStrategy.EXACT and split_params.exact_amounts is None:
        raise AppError(
            ErrorCode.MISSING_STRATEGY_PARAMS,
            "exact_amounts is required for the exact strategy.",
            400,
            field="exact_amounts",
        )
    if strategy == SplitStrategy.PERCENTAGE and split_params.percentages is None:
        raise AppError(
            ErrorCode.MISSING_STRATEGY_PARAMS,
            "percentages is required for the percentage strategy.",
            400,
            field="percentages",
        )

    warnings = _check_input_sums(strategy, amount, split_params, policy.strict)

    splits = compute_splits(amount, payer_id, participants, strategy, split_params)

    residue = rounding_residue(amount, splits)
    if residue != ZERO and policy.residue_policy == RESIDUE_DISTRIBUTE:
        splits = distribute_residue(splits, amount, payer_id)
        warnings.append(warning(
            WarningCode.ROUNDING_RESIDUE_ALLOCATED,
            f"A rounding residue of {residue} was allocated cent by cent, payer first.",
        ))

    return splits, warnings


def _obligation_rows(expense_id: int, splits: list[ComputedSplit]) -> list[Obligation]:
    return [
        Obligation(
            expense_id=expense_id,
            member_id=s.member_id,
            owed_amount=s.owed_amount,
            paid_amount=s.paid_amount,
            percentage=s.percentage,
            shares=s.shares,
        )
        for s in splits
    ]


def _stored_params(expense: Expense) -> dict:
    """Rebuilds strategy parameters from the stored obligation rows."""
    obligations = expense.obligations
    if expense.split_strategy == SplitStrategy.EXACT:
        return {"exact_amounts": {o.member_id: o.owed_amount for o in obligations}}
    if expense.split_strategy == SplitStrategy.PERCENTAGE:
        return {"percentages": {o.member_id: o.percentage or ZERO for o in obligations}}
    if expense.split_strategy == SplitStrategy.SHARES:
        return {"shares": {o.member_id: o.shares if o.shares is not None else 1 for o in obligations}}
    return {}


def _params_from(data: dict) -> dict:
    return {
        key: data[key]
        for key in ("exact_amounts", "percentages", "shares")
        if data.get(key) is not None
    }


# ── Public service functions ───────────────────────────────────────────────

def preview_splits(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        policy: SplitPolicy = SplitPolicy(),
) -> tuple[list[ComputedSplit], list[dict]]:
    """
    Runs the full split plan for a would-be expense without writing anything.

    data: validated dict from SplitPreviewSchema.
    """
    get_group_or_404(group_id, session)
    require_member(group_id, caller_id, session)

    return _plan_splits(
        group_id,
        data["amount"],
        data["payer_member_id"],
        data["split_strategy"],
        data.get("participant_ids"),
        _params_from(data),
        policy,
        session,
    )


def create_expense(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        policy: SplitPolicy = SplitPolicy(),
) -> tuple[Expense, list[dict]]:
    """
    Records a new expense and applies it to the members' balances.

    Args:
        group_id:  The group this expense belongs to.
        caller_id: The authenticated user creating the expense (from flask.g).
        data:      Validated dict from CreateExpenseSchema.
        policy:    Residue policy and strictness from app config.

    Returns:
        (Expense, warnings). The expense is committed when this returns.
    """
    group = get_group_or_404(group_id, session)
    require_member(group_id, caller_id, session)

    amount: Decimal = data["amount"]
    payer_id: int = data["payer_member_id"]
    strategy: SplitStrategy = data.get("split_strategy", SplitStrategy.EQUAL)
    currency_code = _check_currency(group, data.get("currency_code"))

    splits, warnings = _plan_splits(
        group_id,
        amount,
        payer_id,
        strategy,
        data.get("participant_ids"),
        _params_from(data),
        policy,
        session,
    )

    with atomic_write(session, "create_expense"):
        expense = Expense(
            group_id=group_id,
            payer_member_id=payer_id,
            description=data["description"],
            amount=amount,
            currency_code=currency_code,
            category=data.get("category", Category.OTHER),
            split_strategy=strategy,
            notes=data.get("notes"),
            created_by_user_id=caller_id,
        )
        session.add(expense)
        session.flush()  # populate expense.id before creating obligations

        session.add_all(_obligation_rows(expense.id, splits))
        ledger.apply_expense_create(group_id, splits, session)
        ledger.adjust_group_total(group_id, amount, session)

    logger.info(
        "Expense %s recorded in group %s: %s split %s ways (%s)",
        expense.id, group_id, amount, len(splits), strategy.value,
    )
    session.refresh(expense)
    return expense, warnings


def list_expenses(
        group_id: int,
        caller_id: int,
        session: Session,
) -> list[Expense]:
    """Returns all active (non-deleted) expenses for a group, newest first."""
    get_group_or_404(group_id, session)
    require_member(group_id, caller_id, session)

    stmt = (
        select(Expense)
        .where(
            Expense.group_id == group_id,
            Expense.deleted_at.is_(None),
        )
        .order_by(Expense.created_at.desc(), Expense.id.desc())
    )
    return list(session.execute(stmt).scalars().all())


def get_expense(
        group_id: int,
        expense_id: int,
        caller_id: int,
        session: Session,
) -> Expense:
    """
    Returns a single expense including its obligations.

    Soft-deleted expenses are returned too; deleted_at tells the client.
    """
    get_group_or_404(group_id, session)
    require_member(group_id, caller_id, session)
    return _get_expense_or_404(group_id, expense_id, session)


def edit_expense(
        group_id: int,
        expense_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        policy: SplitPolicy = SplitPolicy(),
) -> tuple[Expense, list[dict]]:
    """
    Partially updates an expense.

    Descriptive fields (description, category, notes) are updated in place.
    When amount, payer, strategy, participants or strategy parameters change,
    the obligations are recomputed and, in one atomic write:
      1. the STORED obligations are reversed on the balances,
      2. the old obligation rows are replaced by the new ones,
      3. the new obligations are applied,
      4. total_expenses moves by (new amount - old amount).

    Parameters not supplied in the patch are rebuilt from the stored
    obligations (exact amounts, percentages, shares).

    Raises:
        AppError(EXPENSE_DELETED, 422) — the expense is soft-deleted.
        AppError(FORBIDDEN, 403)       — caller is not payer, creator or admin.
    """
    group = get_group_or_404(group_id, session)
    caller = require_member(group_id, caller_id, session)
    expense = _get_expense_or_404(group_id, expense_id, session)

    if expense.is_deleted:
        raise AppError(
            ErrorCode.EXPENSE_DELETED,
            f"Expense {expense_id} has been deleted and cannot be edited.",
            422,
        )

    _require_can_modify(expense, caller, "edit")

    if "currency_code" in data:
        _check_currency(group, data["currency_code"])

    recompute_keys = {
        "amount", "payer_member_id", "split_strategy", "participant_ids",
        "exact_amounts", "percentages", "shares",
    }
    warnings: list[dict] = []
    new_splits: list[ComputedSplit] | None = None

    if recompute_keys & data.keys():
        require_active_parties(
            group_id,
            [o.member_id for o in expense.obligations],
            session,
            "re-split this expense",
        )
        strategy = data.get("split_strategy", expense.split_strategy)
        params = _params_from(data)
        if strategy == expense.split_strategy:
            params = {**_stored_params(expense), **params}

        participant_ids = data.get("participant_ids")
        if participant_ids is None and not (
                strategy in (SplitStrategy.EXACT, SplitStrategy.PERCENTAGE) and params
        ):
            participant_ids = [o.member_id for o in expense.obligations]

        new_splits, warnings = _plan_splits(
            group_id,
            data.get("amount", expense.amount),
            data.get("payer_member_id", expense.payer_member_id),
            strategy,
            participant_ids,
            params,
            policy,
            session,
        )

    with atomic_write(session, "edit_expense"):
        if new_splits is not None:
            old_amount = expense.amount
            new_amount = data.get("amount", expense.amount)

            old_obligations = list(expense.obligations)
            ledger.apply_expense_delete(group_id, old_obligations, session)
            for obligation in old_obligations:
                session.delete(obligation)
            session.flush()  # old rows must be gone before UNIQUE(expense_id, member_id) sees the new ones
            session.expire(expense, ["obligations"])
            session.add_all(_obligation_rows(expense.id, new_splits))
            ledger.apply_expense_create(group_id, new_splits, session)

            if new_amount != old_amount:
                ledger.adjust_group_total(group_id, new_amount - old_amount, session)

            expense.amount = new_amount
            expense.payer_member_id = data.get("payer_member_id", expense.payer_member_id)
            expense.split_strategy = data.get("split_strategy", expense.split_strategy)

        for field in ("description", "category", "notes"):
            if field in data:
                setattr(expense, field, data[field])

        expense.updated_at = datetime.now(timezone.utc)

    session.refresh(expense)
    return expense, warnings


def delete_expense(
        group_id: int,
        expense_id: int,
        caller_id: int,
        session: Session,
) -> Expense:
    """
    Soft-deletes an expense and reverses its effect on balances.

    The reversal uses the STORED obligation rows, never recomputed values.
    Idempotent: deleting an already-deleted expense changes nothing.
    Concurrent deletes of the same expense race on the version column;
    exactly one commits and the other gets WRITE_CONFLICT.

    Raises:
        AppError(EXPENSE_NOT_FOUND, 404) — expense does not exist in the group.
        AppError(FORBIDDEN, 403)         — caller is not payer, creator or admin.
    """
    get_group_or_404(group_id, session)
    caller = require_member(group_id, caller_id, session)
    expense = _get_expense_or_404(group_id, expense_id, session)

    _require_can_modify(expense, caller, "delete")

    if expense.is_deleted:
        return expense

    obligations = list(expense.obligations)
    require_active_parties(
        group_id, [o.member_id for o in obligations], session, "delete this expense"
    )

    with atomic_write(session, "delete_expense"):
        expense.deleted_at = datetime.now(timezone.utc)
        session.flush()  # version check before any balance moves

        ledger.apply_expense_delete(group_id, obligations, session)
        ledger.adjust_group_total(group_id, -expense.amount, session)

    logger.info("Expense %s in group %s deleted and reversed", expense_id, group_id)
    session.refresh(expense)
    return expense
