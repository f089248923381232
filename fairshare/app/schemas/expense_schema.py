"""
schemas/expense_schema.py — Marshmallow schemas for expense and split preview endpoints.

Validation responsibility:
  - This file:
      - Field types, lengths, enum values, decimal precision
      - DUPLICATE_PARTICIPANT         (400) — request shape rule
      - PAYER_NOT_PARTICIPANT         (400) — when participant_ids is sent
      - MISSING_STRATEGY_PARAMS       (400) — exact needs exact_amounts,
                                              percentage needs percentages
      - UNKNOWN_STRATEGY_PARAM_MEMBER (400) — parameter keyed by a member
                                              outside participant_ids
      - Non-empty-after-trim enforcement for description
  - services/expense_service.py:
      - SPLIT_SUM_MISMATCH / PERCENTAGE_SUM_MISMATCH (422) — depend on the
        STRICT_SPLIT_VALIDATION setting
      - PAYER_NOT_MEMBER / PARTICIPANT_NOT_MEMBER (422) — require DB lookups
      - EXPENSE_DELETED (422), FORBIDDEN (403) — require DB record lookups

Strategy parameters are JSON objects keyed by member id:

    "exact_amounts": {"3": "12.50", "4": "7.50"}
    "percentages":   {"3": "60", "4": "40"}
    "shares":        {"3": 2, "4": 1}

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    validate,
    validates_schema,
)

from fairshare.app.errors import ErrorCode
from fairshare.app.models.expense import Category
from fairshare.app.services.split_calculator import SplitStrategy


# ── Shared monetary amount validator ──────────────────────────────────────
#
# Max 2 decimal places, strictly positive. Input with more than 2 decimal
# places is REJECTED with INVALID_AMOUNT_PRECISION, never rounded or
# truncated.
# ──────────────────────────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """
    Validates a monetary Decimal value:
      - Must be strictly greater than zero.
      - Must have at most 2 decimal places.

    The app's ValidationError handler detects INVALID_AMOUNT_PRECISION by
    matching the raised message to the known ErrorCode constant.
    """
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")

    # Decimal.as_tuple().exponent gives the scale as a negative integer:
    #   Decimal("10.123").as_tuple().exponent == -3  → 3 dp → REJECT
    #   Decimal("10.12").as_tuple().exponent  == -2  → 2 dp → accept
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_exact_share(value: Decimal) -> None:
    """An exact share may be zero (a participant who owes nothing) but never negative."""
    if value < Decimal("0"):
        raise ValidationError("Exact amounts must not be negative.")
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_non_empty_after_trim(value: str) -> None:
    """
    Raises ValidationError if the string is blank or contains only whitespace.
    Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer.
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _member_ids_field(**kwargs) -> fields.List:
    return fields.List(
        fields.Int(
            strict=True,
            validate=validate.Range(min=1, error="Member ids must be positive integers."),
        ),
        validate=validate.Length(min=1, error="participant_ids must not be empty."),
        **kwargs,
    )


def _exact_amounts_field(**kwargs) -> fields.Dict:
    return fields.Dict(
        keys=fields.Int(validate=validate.Range(min=1)),
        values=fields.Decimal(validate=_validate_exact_share),
        **kwargs,
    )


def _percentages_field(**kwargs) -> fields.Dict:
    return fields.Dict(
        keys=fields.Int(validate=validate.Range(min=1)),
        values=fields.Decimal(
            validate=validate.Range(
                min=Decimal("0"),
                max=Decimal("100"),
                error="Percentages must be between 0 and 100.",
            ),
        ),
        **kwargs,
    )


def _shares_field(**kwargs) -> fields.Dict:
    return fields.Dict(
        keys=fields.Int(validate=validate.Range(min=1)),
        values=fields.Int(
            strict=True,
            validate=validate.Range(min=0, error="Shares must not be negative."),
        ),
        **kwargs,
    )


def _check_split_shape(data: dict, strategy: SplitStrategy | None, partial: bool) -> None:
    """
    Request-shape rules shared by create, patch and preview.

    On a patch (partial=True) the strategy may be absent; the stored one is
    used by the service, and its parameters are only required when the
    strategy is being changed.
    """
    payer_id = data.get("payer_member_id")
    participant_ids = data.get("participant_ids")

    if participant_ids is not None:
        if len(participant_ids) != len(set(participant_ids)):
            raise ValidationError({"participant_ids": [ErrorCode.DUPLICATE_PARTICIPANT]})
        if payer_id is not None and payer_id not in participant_ids:
            raise ValidationError({"participant_ids": [ErrorCode.PAYER_NOT_PARTICIPANT]})

    required_param = {
        SplitStrategy.EXACT: "exact_amounts",
        SplitStrategy.PERCENTAGE: "percentages",
    }.get(strategy)

    if required_param is not None:
        mapping = data.get(required_param)
        if mapping is None and not partial:
            raise ValidationError({required_param: [ErrorCode.MISSING_STRATEGY_PARAMS]})
        if mapping is not None and participant_ids is not None:
            missing = [mid for mid in participant_ids if mid not in mapping]
            if missing:
                raise ValidationError({required_param: [ErrorCode.MISSING_STRATEGY_PARAMS]})
        if mapping is not None and participant_ids is None and payer_id is not None \
                and payer_id not in mapping:
            raise ValidationError({required_param: [ErrorCode.PAYER_NOT_PARTICIPANT]})

    if participant_ids is not None:
        allowed = set(participant_ids)
        for key in ("exact_amounts", "percentages", "shares"):
            mapping = data.get(key)
            if mapping and not set(mapping).issubset(allowed):
                raise ValidationError({key: [ErrorCode.UNKNOWN_STRATEGY_PARAM_MEMBER]})


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    POST /groups/:id/expenses

    Participants:
      - participant_ids given      → exactly those members share the expense.
      - omitted, exact/percentage  → the members keyed in the parameter map.
      - omitted, other strategies  → every active member of the group.

    The payer is always a participant.
    """

    payer_member_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="payer_member_id must be a positive integer."),
    )

    description = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Description must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    # Defaults to the group's currency in the service.
    currency_code = fields.Str(
        load_default=None,
        validate=validate.Regexp(r"^[A-Z]{3}$", error=ErrorCode.INVALID_CURRENCY),
    )

    category = fields.Enum(
        Category,
        load_default=Category.OTHER,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_CATEGORY},
    )

    split_strategy = fields.Enum(
        SplitStrategy,
        load_default=SplitStrategy.EQUAL,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_STRATEGY},
    )

    participant_ids = _member_ids_field(load_default=None)

    exact_amounts = _exact_amounts_field(load_default=None)
    percentages   = _percentages_field(load_default=None)
    shares        = _shares_field(load_default=None)

    notes = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=1000),
    )

    @validates_schema
    def validate_split_shape(self, data: dict, **kwargs) -> None:
        _check_split_shape(data, data.get("split_strategy", SplitStrategy.EQUAL), partial=False)


# ── Split preview ──────────────────────────────────────────────────────────

class SplitPreviewSchema(Schema):
    """
    POST /groups/:id/splits/preview

    Same split inputs as CreateExpenseSchema, without the descriptive fields.
    Nothing is written.
    """

    payer_member_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="payer_member_id must be a positive integer."),
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    split_strategy = fields.Enum(
        SplitStrategy,
        load_default=SplitStrategy.EQUAL,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_STRATEGY},
    )

    participant_ids = _member_ids_field(load_default=None)

    exact_amounts = _exact_amounts_field(load_default=None)
    percentages   = _percentages_field(load_default=None)
    shares        = _shares_field(load_default=None)

    @validates_schema
    def validate_split_shape(self, data: dict, **kwargs) -> None:
        _check_split_shape(data, data.get("split_strategy", SplitStrategy.EQUAL), partial=False)


# ── Patch expense ──────────────────────────────────────────────────────────

class PatchExpenseSchema(Schema):
    """
    PATCH /groups/:id/expenses/:eid

    All fields are optional. Only provided fields are updated.

    Changing amount, payer, strategy, participants or any strategy parameter
    recomputes the obligations. Switching TO exact or percentage requires
    the matching parameter map; otherwise missing parameters are taken from
    the stored obligations by the service.
    """

    payer_member_id = fields.Int(
        strict=True,
        validate=validate.Range(min=1, error="payer_member_id must be a positive integer."),
    )

    description = fields.Str(
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Description must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    amount = fields.Decimal(
        validate=_validate_monetary_amount,
    )

    currency_code = fields.Str(
        validate=validate.Regexp(r"^[A-Z]{3}$", error=ErrorCode.INVALID_CURRENCY),
    )

    category = fields.Enum(
        Category,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_CATEGORY},
    )

    split_strategy = fields.Enum(
        SplitStrategy,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_STRATEGY},
    )

    participant_ids = _member_ids_field()

    exact_amounts = _exact_amounts_field()
    percentages   = _percentages_field()
    shares        = _shares_field()

    notes = fields.Str(
        allow_none=True,
        validate=validate.Length(max=1000),
    )

    @validates_schema
    def validate_patch_shape(self, data: dict, **kwargs) -> None:
        """
        A strategy switch to exact/percentage must carry its parameters;
        everything else follows the shared shape rules.
        """
        strategy = data.get("split_strategy")
        if strategy == SplitStrategy.EXACT and data.get("exact_amounts") is None:
            raise ValidationError({"exact_amounts": [ErrorCode.MISSING_STRATEGY_PARAMS]})
        if strategy == SplitStrategy.PERCENTAGE and data.get("percentages") is None:
            raise ValidationError({"percentages": [ErrorCode.MISSING_STRATEGY_PARAMS]})
        _check_split_shape(data, strategy, partial=True)
