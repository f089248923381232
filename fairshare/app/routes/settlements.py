"""
routes/settlements.py — Settlement route handlers.

Layer rules:
  - Parse, validate, call ONE service, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - Writes commit inside the service's atomic_write().

Special: create_settlement returns (Settlement, warnings[]).
  If warnings is non-empty (e.g. OVERPAYMENT), the route includes them in the
  response envelope: {"data": {...}, "warnings": [{"code": "OVERPAYMENT", ...}]}.
  The HTTP status is still 201 — overpayment does NOT block the request.

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups/:id/settlements               → 201  record a payment
  GET    /groups/:id/settlements               → 200  list settlements
  POST   /groups/:id/settlements/:sid/confirm  → 200  recipient confirms
  DELETE /groups/:id/settlements/:sid          → 200  reverse a payment
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from fairshare.app.extensions import db
from fairshare.app.middleware.auth_middleware import require_auth
from fairshare.app.models.settlement import Settlement
from fairshare.app.schemas.settlement_schema import CreateSettlementSchema
from fairshare.app.services import settlement_service

settlements_bp = Blueprint("settlements", __name__)


# ── Serialization helper ───────────────────────────────────────────────────

def _serialize_settlement(s: Settlement) -> dict:
    """Converts a Settlement ORM object to a plain dict for JSON output."""
    return {
        "id": s.id,
        "group_id": s.group_id,
        "from_member_id": s.from_member_id,
        "to_member_id": s.to_member_id,
        "amount": s.amount,
        "currency_code": s.currency_code,
        "notes": s.notes,
        "created_by_user_id": s.created_by_user_id,
        "created_at": s.created_at.isoformat() if s.created_at else None,
        "is_confirmed": s.is_confirmed,
        "confirmed_at": s.confirmed_at.isoformat() if s.confirmed_at else None,
        "deleted_at": s.deleted_at.isoformat() if s.deleted_at else None,
    }


# ── Route handlers ─────────────────────────────────────────────────────────

@settlements_bp.route("/<int:group_id>/settlements", methods=["POST"])
@require_auth
def create_settlement(group_id: int):
    """
    POST /groups/:id/settlements — Record a payment between two members.

    from_member_id defaults to the caller's own member row. Balances move
    immediately; confirmation later is an acknowledgement only.
    """
    data = CreateSettlementSchema().load(request.get_json(force=True) or {})
    settlement, warnings = settlement_service.create_settlement(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    return jsonify({"data": _serialize_settlement(settlement), "warnings": warnings}), 201


@settlements_bp.route("/<int:group_id>/settlements", methods=["GET"])
@require_auth
def list_settlements(group_id: int):
    """
    GET /groups/:id/settlements — List settlements, newest first.
    ?include_deleted=true also returns reversed ones.
    """
    include_deleted = request.args.get("include_deleted", "").lower() in {"1", "true", "yes"}
    settlements = settlement_service.list_settlements(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
        include_deleted=include_deleted,
    )
    return jsonify({
        "data": [_serialize_settlement(s) for s in settlements],
        "warnings": [],
    }), 200


@settlements_bp.route("/<int:group_id>/settlements/<int:settlement_id>/confirm", methods=["POST"])
@require_auth
def confirm_settlement(group_id: int, settlement_id: int):
    """POST /groups/:id/settlements/:sid/confirm — Recipient acknowledges the payment."""
    settlement = settlement_service.confirm_settlement(
        group_id=group_id,
        settlement_id=settlement_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": _serialize_settlement(settlement), "warnings": []}), 200


@settlements_bp.route("/<int:group_id>/settlements/<int:settlement_id>", methods=["DELETE"])
@require_auth
def delete_settlement(group_id: int, settlement_id: int):
    """DELETE /groups/:id/settlements/:sid — Reverse a recorded payment."""
    settlement = settlement_service.delete_settlement(
        group_id=group_id,
        settlement_id=settlement_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": _serialize_settlement(settlement), "warnings": []}), 200
