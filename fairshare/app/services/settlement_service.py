"""
services/settlement_service.py — Settlement business logic and coordination.

A settlement records a direct payment from one member to another. Its
balance effect (from +amount, to -amount) is applied when it is recorded,
in the same atomic write as the settlement row.

Rules enforced here:
  SELF_SETTLEMENT (422)      — from_member_id must differ from to_member_id
  PAYER_NOT_MEMBER (422)     — from_member must be an active member
  RECIPIENT_NOT_MEMBER (422) — to_member must be an active member
  SETTLEMENT_DELETED (422)   — a reversed settlement cannot be confirmed
  MEMBER_INACTIVE (422)      — a settlement with a deactivated party cannot
                               be reversed
  FORBIDDEN (403)            — caller must be an active member; confirming
                               needs the recipient's user or an admin
  OVERPAYMENT (warning)      — amount exceeds what the payer currently owes;
                               still recorded, pre-payment is valid

Confirmation only records the recipient's acknowledgement. It never moves a
balance, so confirming twice is harmless.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Writes commit inside atomic_write(); routes do not commit for these.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from fairshare.app.errors import AppError, ErrorCode, WarningCode, warning
from fairshare.app.models.member import Member
from fairshare.app.models.settlement import Settlement
from fairshare.app.money import ZERO
from fairshare.app.services import ledger
from fairshare.app.services.group_service import (
    get_active_members,
    get_group_or_404,
    require_active_parties,
    require_member,
)
from fairshare.app.services.transaction import atomic_write

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _get_settlement_or_404(group_id: int, settlement_id: int, session: Session) -> Settlement:
    settlement = session.get(Settlement, settlement_id)
    if settlement is None or settlement.group_id != group_id:
        raise AppError(
            ErrorCode.SETTLEMENT_NOT_FOUND,
            f"Settlement {settlement_id} does not exist in group {group_id}.",
            404,
        )
    return settlement


def _outstanding_debt(member: Member) -> Decimal:
    """What the member currently owes the group (zero if they are owed)."""
    return -member.balance if member.balance < ZERO else ZERO


# ── Public service functions ───────────────────────────────────────────────

def create_settlement(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> tuple[Settlement, list[dict]]:
    """
    Records a settlement payment and applies it to both balances.

    Args:
        group_id:  The group this settlement belongs to.
        caller_id: The authenticated user recording it (from flask.g).
        data:      Validated dict from CreateSettlementSchema. from_member_id
                   defaults to the caller's own member row.

    Returns:
        (Settlement, warnings). The settlement is committed when this returns.
    """
    group = get_group_or_404(group_id, session)
    caller = require_member(group_id, caller_id, session)

    from_member_id: int = data.get("from_member_id") or caller.id
    to_member_id: int = data["to_member_id"]
    amount: Decimal = data["amount"]

    # The schema cannot see the caller's member id, so the self-settlement
    # check for a defaulted from_member_id has to live here.
    if from_member_id == to_member_id:
        raise AppError(
            ErrorCode.SELF_SETTLEMENT,
            "A settlement cannot be made to yourself.",
            422,
            field="to_member_id",
        )

    active = get_active_members(group_id, session)
    if from_member_id not in active:
        raise AppError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"Member {from_member_id} is not an active member of group {group_id}.",
            422,
            field="from_member_id",
        )
    if to_member_id not in active:
        raise AppError(
            ErrorCode.RECIPIENT_NOT_MEMBER,
            f"Member {to_member_id} is not an active member of group {group_id}.",
            422,
            field="to_member_id",
        )

    currency_code = data.get("currency_code") or group.currency_code
    if currency_code != group.currency_code:
        raise AppError(
            ErrorCode.INVALID_CURRENCY,
            f"Group {group_id} records amounts in {group.currency_code}; got {currency_code}.",
            400,
            field="currency_code",
        )

    # Overpayment is still recorded; pre-payment is valid.
    warnings: list[dict] = []
    debt = _outstanding_debt(active[from_member_id])
    if amount > debt:
        warnings.append(warning(
            WarningCode.OVERPAYMENT,
            f"Settlement of {amount} exceeds the outstanding debt of {debt} "
            f"for member {from_member_id}. Recording anyway.",
        ))

    with atomic_write(session, "create_settlement"):
        settlement = Settlement(
            group_id=group_id,
            from_member_id=from_member_id,
            to_member_id=to_member_id,
            amount=amount,
            currency_code=currency_code,
            notes=data.get("notes"),
            created_by_user_id=caller_id,
            is_confirmed=False,
        )
        session.add(settlement)
        ledger.apply_settlement_create(group_id, from_member_id, to_member_id, amount, session)

    logger.info(
        "Settlement %s recorded in group %s: %s -> %s %s",
        settlement.id, group_id, from_member_id, to_member_id, amount,
    )
    session.refresh(settlement)
    return settlement, warnings


def list_settlements(
        group_id: int,
        caller_id: int,
        session: Session,
        include_deleted: bool = False,
) -> list[Settlement]:
    """Returns the group's settlements, newest first."""
    get_group_or_404(group_id, session)
    require_member(group_id, caller_id, session)

    stmt = select(Settlement).where(Settlement.group_id == group_id)
    if not include_deleted:
        stmt = stmt.where(Settlement.deleted_at.is_(None))
    stmt = stmt.order_by(Settlement.created_at.desc(), Settlement.id.desc())
    return list(session.execute(stmt).scalars().all())


def confirm_settlement(
        group_id: int,
        settlement_id: int,
        caller_id: int,
        session: Session,
) -> Settlement:
    """
    Marks a settlement as confirmed by its recipient. No balance changes.

    Idempotent: an already-confirmed settlement is returned unchanged.

    Raises:
        AppError(SETTLEMENT_NOT_FOUND, 404)
        AppError(SETTLEMENT_DELETED, 422)
        AppError(FORBIDDEN, 403) — caller is neither the recipient nor an admin.
    """
    get_group_or_404(group_id, session)
    caller = require_member(group_id, caller_id, session)
    settlement = _get_settlement_or_404(group_id, settlement_id, session)

    if settlement.is_deleted:
        raise AppError(
            ErrorCode.SETTLEMENT_DELETED,
            f"Settlement {settlement_id} has been reversed and cannot be confirmed.",
            422,
        )

    if not (caller.id == settlement.to_member_id or caller.is_admin):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the recipient or a group admin may confirm this settlement.",
            403,
        )

    if settlement.is_confirmed:
        return settlement

    with atomic_write(session, "confirm_settlement"):
        settlement.is_confirmed = True
        settlement.confirmed_at = datetime.now(timezone.utc)

    session.refresh(settlement)
    return settlement


def delete_settlement(
        group_id: int,
        settlement_id: int,
        caller_id: int,
        session: Session,
) -> Settlement:
    """
    Soft-deletes a settlement and reverses its balance effect exactly once.

    Allowed for the payer's user, the recipient's user, the creator or an
    admin. Idempotent: an already-reversed settlement is returned unchanged.
    """
    get_group_or_404(group_id, session)
    caller = require_member(group_id, caller_id, session)
    settlement = _get_settlement_or_404(group_id, settlement_id, session)

    involved = {settlement.from_member_id, settlement.to_member_id}
    if not (caller.id in involved
            or settlement.created_by_user_id == caller_id
            or caller.is_admin):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the two parties, the creator or a group admin may reverse this settlement.",
            403,
        )

    if settlement.is_deleted:
        return settlement

    require_active_parties(group_id, involved, session, "reverse this settlement")

    with atomic_write(session, "delete_settlement"):
        settlement.deleted_at = datetime.now(timezone.utc)
        session.flush()  # version check before any balance moves

        ledger.apply_settlement_reverse(
            group_id,
            settlement.from_member_id,
            settlement.to_member_id,
            settlement.amount,
            session,
        )

    logger.info("Settlement %s in group %s reversed", settlement_id, group_id)
    session.refresh(settlement)
    return settlement
