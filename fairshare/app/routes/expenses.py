"""
routes/expenses.py — Expense and split preview route handlers.

Layer rules:
  - Parse, validate, call ONE service, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - Writes commit inside the service's atomic_write(); these routes never
    call db.session.commit().
  - _serialize_expense() is a pure data-shape helper — not business logic.

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups/:id/splits/preview      → 200  compute obligations, no writes
  POST   /groups/:id/expenses            → 201  create expense
  GET    /groups/:id/expenses            → 200  list active expenses
  GET    /groups/:id/expenses/:eid       → 200  get expense + obligations
  PATCH  /groups/:id/expenses/:eid       → 200  partial update
  DELETE /groups/:id/expenses/:eid       → 200  soft-delete and reverse
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from fairshare.app.extensions import db
from fairshare.app.middleware.auth_middleware import require_auth
from fairshare.app.models.expense import Expense
from fairshare.app.schemas.expense_schema import (
    CreateExpenseSchema,
    PatchExpenseSchema,
    SplitPreviewSchema,
)
from fairshare.app.services import expense_service
from fairshare.app.services.split_calculator import ComputedSplit

expenses_bp = Blueprint("expenses", __name__)


# ── Serialization helpers ──────────────────────────────────────────────────
# Pure data shaping, no DB access. Decimals become strings in the
# app's JSON provider.

def _serialize_split(split: ComputedSplit) -> dict:
    return {
        "member_id": split.member_id,
        "owed_amount": split.owed_amount,
        "paid_amount": split.paid_amount,
        "net_amount": split.net_amount,
        "percentage": split.percentage,
        "shares": split.shares,
    }


def _serialize_expense(expense: Expense) -> dict:
    """Converts an Expense ORM object to a plain dict for JSON output."""
    return {
        "id": expense.id,
        "group_id": expense.group_id,
        "payer_member_id": expense.payer_member_id,
        "payer_nickname": expense.payer.nickname,
        "description": expense.description,
        "amount": expense.amount,
        "currency_code": expense.currency_code,
        "category": expense.category.value,
        "split_strategy": expense.split_strategy.value,
        "notes": expense.notes,
        "created_by_user_id": expense.created_by_user_id,
        "created_at": expense.created_at.isoformat() if expense.created_at else None,
        "updated_at": expense.updated_at.isoformat() if expense.updated_at else None,
        "deleted_at": expense.deleted_at.isoformat() if expense.deleted_at else None,
        "obligations": [
            {
                "id": o.id,
                "member_id": o.member_id,
                "nickname": o.member.nickname,
                "owed_amount": o.owed_amount,
                "paid_amount": o.paid_amount,
                "net_amount": o.net_amount,
                "percentage": o.percentage,
                "shares": o.shares,
            }
            for o in expense.obligations
        ],
    }


def _split_policy() -> expense_service.SplitPolicy:
    return expense_service.SplitPolicy(
        residue_policy=current_app.config["SPLIT_RESIDUE_POLICY"],
        strict=current_app.config["STRICT_SPLIT_VALIDATION"],
    )


# ── Route handlers ─────────────────────────────────────────────────────────

@expenses_bp.route("/<int:group_id>/splits/preview", methods=["POST"])
@require_auth
def preview_splits(group_id: int):
    """POST /groups/:id/splits/preview — What each participant would owe. Nothing is saved."""
    data = SplitPreviewSchema().load(request.get_json(force=True) or {})
    splits, warnings = expense_service.preview_splits(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
        policy=_split_policy(),
    )
    return jsonify({
        "data": {
            "amount": data["amount"],
            "split_strategy": data["split_strategy"].value,
            "splits": [_serialize_split(s) for s in splits],
        },
        "warnings": warnings,
    }), 200


@expenses_bp.route("/<int:group_id>/expenses", methods=["POST"])
@require_auth
def create_expense(group_id: int):
    """
    POST /groups/:id/expenses — Record a new expense.
    Obligations, balances and the group total are written atomically.
    """
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    expense, warnings = expense_service.create_expense(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
        policy=_split_policy(),
    )
    return jsonify({"data": _serialize_expense(expense), "warnings": warnings}), 201


@expenses_bp.route("/<int:group_id>/expenses", methods=["GET"])
@require_auth
def list_expenses(group_id: int):
    """GET /groups/:id/expenses — List active (non-deleted) expenses for a group."""
    expenses = expense_service.list_expenses(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [_serialize_expense(e) for e in expenses],
        "warnings": [],
    }), 200


@expenses_bp.route("/<int:group_id>/expenses/<int:expense_id>", methods=["GET"])
@require_auth
def get_expense(group_id: int, expense_id: int):
    """GET /groups/:id/expenses/:eid — Expense detail including obligations."""
    expense = expense_service.get_expense(
        group_id=group_id,
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/<int:group_id>/expenses/<int:expense_id>", methods=["PATCH"])
@require_auth
def edit_expense(group_id: int, expense_id: int):
    """
    PATCH /groups/:id/expenses/:eid — Partial update.
    Only the payer, the creator or a group admin may edit.
    """
    data = PatchExpenseSchema().load(request.get_json(force=True) or {})
    expense, warnings = expense_service.edit_expense(
        group_id=group_id,
        expense_id=expense_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
        policy=_split_policy(),
    )
    return jsonify({"data": _serialize_expense(expense), "warnings": warnings}), 200


@expenses_bp.route("/<int:group_id>/expenses/<int:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(group_id: int, expense_id: int):
    """
    DELETE /groups/:id/expenses/:eid — Soft-delete and reverse balances.
    Row and obligations stay in the DB for audit. Repeating the call is a no-op.
    """
    expense = expense_service.delete_expense(
        group_id=group_id,
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": {
            "deleted": True,
            "expense_id": expense.id,
            "deleted_at": expense.deleted_at.isoformat(),
        },
        "warnings": [],
    }), 200
