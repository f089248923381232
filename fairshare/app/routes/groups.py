"""
routes/groups.py — Group and member route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups                        → 201  create group
  GET    /groups                        → 200  list caller's groups
  GET    /groups/:id                    → 200  get group + active members
  POST   /groups/:id/members            → 201  add member (admins only)
  PATCH  /groups/:id/members/:mid       → 200  change equity weight (admins only)
  DELETE /groups/:id/members/:mid       → 200  deactivate member (admin or self)
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from fairshare.app.extensions import db
from fairshare.app.middleware.auth_middleware import require_auth
from fairshare.app.schemas.group_schema import (
    AddMemberSchema,
    CreateGroupSchema,
    UpdateMemberSchema,
)
from fairshare.app.services import group_service

groups_bp = Blueprint("groups", __name__)


@groups_bp.route("", methods=["POST"])
@require_auth
def create_group():
    """POST /groups — Create a new group. Caller becomes its first (admin) member."""
    data = CreateGroupSchema().load(request.get_json(force=True) or {})
    result = group_service.create_group(
        name=data["name"],
        currency_code=data["currency_code"] or current_app.config["DEFAULT_CURRENCY"],
        nickname=data["nickname"],
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("", methods=["GET"])
@require_auth
def list_groups():
    """GET /groups — List all groups the authenticated user belongs to."""
    result = group_service.list_groups(
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["GET"])
@require_auth
def get_group(group_id: int):
    """GET /groups/:id — Group details with active members. Caller must be a member."""
    result = group_service.get_group(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/members", methods=["POST"])
@require_auth
def add_member(group_id: int):
    """POST /groups/:id/members — Add a member, linked to a user or a ghost."""
    data = AddMemberSchema().load(request.get_json(force=True) or {})
    result = group_service.add_member(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/<int:group_id>/members/<int:member_id>", methods=["PATCH"])
@require_auth
def update_member(group_id: int, member_id: int):
    """PATCH /groups/:id/members/:mid — Change a member's equity weight."""
    data = UpdateMemberSchema().load(request.get_json(force=True) or {})
    result = group_service.update_member_weight(
        group_id=group_id,
        member_id=member_id,
        caller_id=g.user_id,
        salary_weight=data["salary_weight"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/members/<int:member_id>", methods=["DELETE"])
@require_auth
def deactivate_member(group_id: int, member_id: int):
    """
    DELETE /groups/:id/members/:mid — Deactivate a member.
    The row is kept so past obligations still resolve. Balance must be settled.
    """
    result = group_service.deactivate_member(
        group_id=group_id,
        member_id=member_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200
