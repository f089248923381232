"""
models/expense.py — Expense and its category.

Table definitions only; the ledger effects live in services/.

Key design points:
  - `deleted_at` is NULL for active expenses, non-null for soft-deleted ones.
    Soft-deleted expenses no longer affect any balance.
  - `amount` is Numeric(12, 2); floats never reach this column.
  - `version` is SQLAlchemy's optimistic-concurrency counter. Two requests
    racing to edit or delete the same expense cannot both commit; the loser
    gets a StaleDataError, surfaced as WRITE_CONFLICT.
  - Category and the split strategy are Python enums so they can be imported
    and used throughout the service layer without repeating string literals.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fairshare.app.extensions import db
from fairshare.app.services.split_calculator import SplitStrategy


# ── Enum Definitions ───────────────────────────────────────────────────────
# Defined here so they can be imported by schemas and services without
# pulling in the full model. Do not duplicate these as plain string constants
# anywhere else in the codebase.

class Category(str, enum.Enum):
    FOOD           = "food"
    GROCERIES      = "groceries"
    TRANSPORTATION = "transportation"
    UTILITIES      = "utilities"
    RENT           = "rent"
    ENTERTAINMENT  = "entertainment"
    SHOPPING       = "shopping"
    TRAVEL         = "travel"
    HEALTH         = "health"
    OTHER          = "other"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'equal'), not names ('EQUAL')."""
    return [member.value for member in enum_cls]


# ── Model ──────────────────────────────────────────────────────────────────

class Expense(db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
        # Active-only expense queries (list, replay) filter deleted_at IS NULL.
        Index(
            "idx_expenses_active",
            "group_id",
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # ON DELETE RESTRICT: a group with expenses cannot be deleted.
    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    payer_member_id: Mapped[int] = mapped_column(
        ForeignKey("members.id", ondelete="RESTRICT"),
        nullable=False,
    )

    description: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # Input with >2 decimal places is rejected by the schema
    # (INVALID_AMOUNT_PRECISION), not rounded.
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    currency_code: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
    )

    category: Mapped[Category] = mapped_column(
        Enum(
            Category,
            name="category_enum",
            native_enum=False,
            length=32,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=Category.OTHER,
        server_default=Category.OTHER.value,
    )

    split_strategy: Mapped[SplitStrategy] = mapped_column(
        Enum(
            SplitStrategy,
            name="split_strategy_enum",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=SplitStrategy.EQUAL,
        server_default=SplitStrategy.EQUAL.value,
    )

    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    created_by_user_id: Mapped[int] = mapped_column(
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Set on every successful edit.
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # NULL = active; NOT NULL = soft-deleted. Never hard-delete expense rows.
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="expenses",
    )

    payer: Mapped["Member"] = relationship(  # noqa: F821
        "Member",
        foreign_keys=[payer_member_id],
    )

    # ON DELETE CASCADE: obligations belong to their expense.
    obligations: Mapped[list["Obligation"]] = relationship(  # noqa: F821
        "Obligation",
        back_populates="expense",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Obligation.id",
    )

    # ── Convenience property ───────────────────────────────────────────────
    @property
    def is_deleted(self) -> bool:
        """True if this expense has been soft-deleted."""
        return self.deleted_at is not None

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"group_id={self.group_id} "
            f"amount={self.amount} "
            f"deleted={self.is_deleted}>"
        )
