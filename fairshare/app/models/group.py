"""
models/group.py — Group table definition.

No business logic. No imports from services or routes.

`total_expenses` is a running aggregate of active expense amounts. It is
written ONLY by services/ledger.py through an atomic increment; never assign
to it from application code.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fairshare.app.extensions import db


class Group(db.Model):
    # 'groups' is a reserved word in some SQL dialects but is valid in
    # PostgreSQL as a quoted identifier; SQLAlchemy handles quoting.
    __tablename__ = "groups"

    __table_args__ = (
        # Also enforced by the marshmallow schema; the schema is the primary gate.
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # Opaque three-letter tag. No conversion is ever performed.
    currency_code: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
        server_default="USD",
    )

    total_expenses: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        server_default="0",
    )

    # Identity-provider user id of the creator. Users live outside this
    # service, so there is no foreign key.
    created_by_user_id: Mapped[int] = mapped_column(
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    members: Mapped[list["Member"]] = relationship(  # noqa: F821
        "Member",
        back_populates="group",
        order_by="Member.id",
    )

    expenses: Mapped[list["Expense"]] = relationship(  # noqa: F821
        "Expense",
        back_populates="group",
    )

    settlements: Mapped[list["Settlement"]] = relationship(  # noqa: F821
        "Settlement",
        back_populates="group",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Group id={self.id} name={self.name!r}>"
