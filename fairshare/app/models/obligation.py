"""
models/obligation.py — Per-member obligation for one expense.

Key design points:
  - One row per participant. Exactly one row per expense has
    paid_amount == expense.amount (the payer); every other row has 0.
  - net_amount = owed_amount - paid_amount. The Ledger moves the member's
    balance by -net_amount when the expense is recorded and by +net_amount
    when it is reversed. Reversal always reads these stored rows; amounts
    are never recomputed.
  - expense_id is ON DELETE CASCADE — obligations are owned by their expense.
  - UNIQUE(expense_id, member_id) prevents a member appearing twice.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fairshare.app.extensions import db


class Obligation(db.Model):
    __tablename__ = "obligations"

    __table_args__ = (
        UniqueConstraint("expense_id", "member_id", name="uq_obligations_expense_member"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    member_id: Mapped[int] = mapped_column(
        ForeignKey("members.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    owed_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    # Populated for the percentage strategy only.
    percentage: Mapped[Decimal | None] = mapped_column(
        Numeric(7, 4),
        nullable=True,
    )

    # Populated for the shares strategy only.
    shares: Mapped[int | None] = mapped_column(
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="obligations",
    )

    member: Mapped["Member"] = relationship(  # noqa: F821
        "Member",
    )

    @property
    def net_amount(self) -> Decimal:
        return self.owed_amount - self.paid_amount

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Obligation id={self.id} "
            f"expense_id={self.expense_id} "
            f"member_id={self.member_id} "
            f"owed={self.owed_amount} "
            f"paid={self.paid_amount}>"
        )
