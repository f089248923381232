"""
errors.py — AppError base class and error code registry.

Every error returned by the FairShare API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Not-found (404) is kept distinct from validation (400/422) so callers can
    tell "bad request" apart from "stale reference".
  - WRITE_CONFLICT (409) means the atomic commit was rejected. Nothing was
    persisted; the caller may retry the whole operation.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
# These are the string values sent in the API response.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD                 = "MISSING_FIELD"
    INVALID_FIELD                 = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION      = "INVALID_AMOUNT_PRECISION"
    INVALID_CATEGORY              = "INVALID_CATEGORY"
    INVALID_CURRENCY              = "INVALID_CURRENCY"
    INVALID_SPLIT_STRATEGY        = "INVALID_SPLIT_STRATEGY"
    PAYER_NOT_PARTICIPANT         = "PAYER_NOT_PARTICIPANT"
    DUPLICATE_PARTICIPANT         = "DUPLICATE_PARTICIPANT"
    MISSING_STRATEGY_PARAMS       = "MISSING_STRATEGY_PARAMS"
    UNKNOWN_STRATEGY_PARAM_MEMBER = "UNKNOWN_STRATEGY_PARAM_MEMBER"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    ALREADY_MEMBER                = "ALREADY_MEMBER"
    WRITE_CONFLICT                = "WRITE_CONFLICT"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    GROUP_NOT_FOUND               = "GROUP_NOT_FOUND"
    MEMBER_NOT_FOUND              = "MEMBER_NOT_FOUND"
    EXPENSE_NOT_FOUND             = "EXPENSE_NOT_FOUND"
    SETTLEMENT_NOT_FOUND          = "SETTLEMENT_NOT_FOUND"

    # ── Business Rule Violations (422) ────────────────────────────────────
    PAYER_NOT_MEMBER              = "PAYER_NOT_MEMBER"
    PARTICIPANT_NOT_MEMBER        = "PARTICIPANT_NOT_MEMBER"
    SPLIT_SUM_MISMATCH            = "SPLIT_SUM_MISMATCH"
    PERCENTAGE_SUM_MISMATCH       = "PERCENTAGE_SUM_MISMATCH"
    RECIPIENT_NOT_MEMBER          = "RECIPIENT_NOT_MEMBER"
    SELF_SETTLEMENT               = "SELF_SETTLEMENT"
    EXPENSE_DELETED               = "EXPENSE_DELETED"
    SETTLEMENT_DELETED            = "SETTLEMENT_DELETED"
    MEMBER_HAS_BALANCE            = "MEMBER_HAS_BALANCE"
    MEMBER_INACTIVE               = "MEMBER_INACTIVE"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed (unauthorized)
    TOKEN_MISSING                 = "TOKEN_MISSING"          # 401
    TOKEN_INVALID                 = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED                 = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                     = "FORBIDDEN"              # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR                = "INTERNAL_ERROR"


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # Settlement amount exceeds the payer's current outstanding debt.
    # Still recorded; paying ahead is allowed.
    OVERPAYMENT = "OVERPAYMENT"

    # Per-participant rounding left a residue that was allocated cent by cent.
    ROUNDING_RESIDUE_ALLOCATED = "ROUNDING_RESIDUE_ALLOCATED"

    # Exact amounts / percentages did not add up and strict validation is off.
    INCONSISTENT_SPLIT_INPUT = "INCONSISTENT_SPLIT_INPUT"


def warning(code: str, message: str) -> dict:
    """Builds one entry of the `warnings` array."""
    return {"code": code, "message": message}
