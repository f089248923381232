"""
schemas/group_schema.py — Marshmallow schemas for group and member endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim),
    currency code shape, equity weight range.
  - services/group_service.py:
      - FORBIDDEN (caller must be an active member / an admin)
      - ALREADY_MEMBER (membership existence check requires DB lookup)
      - GROUP_NOT_FOUND, MEMBER_NOT_FOUND (require DB lookups)
      - MEMBER_HAS_BALANCE (requires the stored balance)

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate

from fairshare.app.errors import ErrorCode
from fairshare.app.models.member import MemberRole


# ── Shared non-empty string validator ─────────────────────────────────────
#
# validate.Length(min=1) alone allows whitespace-only strings like "   "
# because len("   ") == 3 > 0. This validator strips first then checks,
# mirroring the DB CHECK(LENGTH(TRIM(...)) > 0) at the API layer.
# ──────────────────────────────────────────────────────────────────────────

def _validate_non_empty_after_trim(value: str) -> None:
    """Raises ValidationError if the string is blank or contains only whitespace."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _validate_weight(value: Decimal) -> None:
    if value < Decimal("0"):
        raise ValidationError("salary_weight must not be negative.")
    if value.as_tuple().exponent < -4:
        raise ValidationError("salary_weight supports at most 4 decimal places.")


def _nickname_field(**kwargs) -> fields.Str:
    return fields.Str(
        validate=[
            validate.Length(
                min=1,
                max=50,
                error="Nickname must be between 1 and 50 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
        **kwargs,
    )


class CreateGroupSchema(Schema):
    """
    POST /groups

    The creator becomes the first member (admin). Their nickname inside the
    group defaults to "Me" when omitted. currency_code is an opaque tag;
    no conversion is ever performed.
    """

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Group name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    # Defaults to DEFAULT_CURRENCY from config in the route.
    currency_code = fields.Str(
        load_default=None,
        validate=validate.Regexp(r"^[A-Z]{3}$", error=ErrorCode.INVALID_CURRENCY),
    )

    nickname = _nickname_field(load_default="Me")


class AddMemberSchema(Schema):
    """
    POST /groups/:id/members  (admins only)

    Omit user_id to add a ghost member, someone who has no account yet.
    """

    nickname = _nickname_field(required=True)

    user_id = fields.Int(
        load_default=None,
        allow_none=True,
        strict=True,  # integers only, 1.0 is rejected
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
    )

    salary_weight = fields.Decimal(
        load_default=Decimal("1"),
        validate=_validate_weight,
    )

    role = fields.Enum(
        MemberRole,
        load_default=MemberRole.MEMBER,
        by_value=True,
    )


class UpdateMemberSchema(Schema):
    """PATCH /groups/:id/members/:mid — change a member's equity weight."""

    salary_weight = fields.Decimal(
        required=True,
        validate=_validate_weight,
    )
