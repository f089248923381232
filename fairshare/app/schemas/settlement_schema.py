"""
schemas/settlement_schema.py — Marshmallow schemas for settlement endpoints.

Validation responsibility:
  - This file: field types, amount precision and sign.
  - services/settlement_service.py:
      - SELF_SETTLEMENT (422) — from_member_id may default to the caller,
        whose member row is only known to the service
      - PAYER_NOT_MEMBER / RECIPIENT_NOT_MEMBER (require DB lookups)
      - OVERPAYMENT warning (requires the stored balance)

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate

from fairshare.app.errors import ErrorCode


# ── Shared monetary amount validator ──────────────────────────────────────
#
# Identical logic to the validator in expense_schema.py. Defined here
# rather than imported to keep each schema file self-contained.
# ──────────────────────────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """
    Must be strictly greater than zero with at most 2 decimal places.
    Excess precision is REJECTED (INVALID_AMOUNT_PRECISION), never rounded.
    """
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")

    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


class CreateSettlementSchema(Schema):
    """
    POST /groups/:id/settlements

    Field rules:
      from_member_id : optional; defaults to the caller's own member row.
                       Lets anyone record a payment made by a ghost member.
      to_member_id   : required.
      amount         : required, positive Decimal, max 2 decimal places.
                       Overpayment is allowed; the service returns a warning.
    """

    from_member_id = fields.Int(
        load_default=None,
        allow_none=True,
        strict=True,
        validate=validate.Range(min=1, error="from_member_id must be a positive integer."),
    )

    to_member_id = fields.Int(
        required=True,
        strict=True,   # integers only, 1.0 is rejected
        validate=validate.Range(min=1, error="to_member_id must be a positive integer."),
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    currency_code = fields.Str(
        load_default=None,
        validate=validate.Regexp(r"^[A-Z]{3}$", error=ErrorCode.INVALID_CURRENCY),
    )

    notes = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=1000),
    )

