"""
routes/balances.py — Balance route handlers.

Layer rules:
  - Call ONE service, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/groups):
  GET /groups/:id/balances            → 200  stored balances + simplified debts
  GET /groups/:id/balances/reconcile  → 200  stored vs replayed balances
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify

from fairshare.app.extensions import db
from fairshare.app.middleware.auth_middleware import require_auth
from fairshare.app.services import balance_service
from fairshare.app.services.expense_service import RESIDUE_DISTRIBUTE

balances_bp = Blueprint("balances", __name__)


@balances_bp.route("/<int:group_id>/balances", methods=["GET"])
@require_auth
def get_balances(group_id: int):
    """
    GET /groups/:id/balances

    The service asserts the zero-sum invariant and raises INTERNAL_ERROR (500)
    if it does not hold. With SPLIT_RESIDUE_POLICY=none the check is skipped,
    because unallocated rounding cents are expected there.
    """
    result = balance_service.get_balance_response(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
        enforce_zero_sum=current_app.config["SPLIT_RESIDUE_POLICY"] == RESIDUE_DISTRIBUTE,
    )
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/<int:group_id>/balances/reconcile", methods=["GET"])
@require_auth
def reconcile_balances(group_id: int):
    """GET /groups/:id/balances/reconcile — Where, if anywhere, stored balances drifted."""
    result = balance_service.reconcile_group(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200
