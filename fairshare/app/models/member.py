"""
models/member.py — Group member table definition.

A member is a participant inside exactly one group. Members may be linked to
an identity-provider user (user_id) or be "ghost" members with no account.

Key design points:
  - `balance` is signed: positive = the group owes this member, negative =
    this member owes the group. It is written ONLY by services/ledger.py via
    atomic increments.
  - `salary_weight` is the member's weight under the equity split strategy.
  - Members are never deleted, only deactivated (is_active = False), so
    historical obligations and settlements always resolve.
  - UNIQUE(group_id, user_id): a user appears at most once per group. Ghost
    members (user_id NULL) are not constrained by it.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fairshare.app.extensions import db
from fairshare.app.models.expense import _enum_values


class MemberRole(str, enum.Enum):
    ADMIN  = "admin"
    MEMBER = "member"


class Member(db.Model):
    __tablename__ = "members"

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_members_group_user"),
        CheckConstraint("salary_weight >= 0", name="ck_members_weight_non_negative"),
        CheckConstraint(
            "LENGTH(TRIM(nickname)) > 0",
            name="ck_members_nickname_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # ON DELETE RESTRICT: a group with members cannot be deleted.
    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # NULL for ghost members.
    user_id: Mapped[int | None] = mapped_column(
        nullable=True,
        index=True,
    )

    nickname: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    role: Mapped[MemberRole] = mapped_column(
        Enum(
            MemberRole,
            name="member_role",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=MemberRole.MEMBER,
        server_default=MemberRole.MEMBER.value,
    )

    salary_weight: Mapped[Decimal] = mapped_column(
        Numeric(10, 4),
        nullable=False,
        default=Decimal("1"),
        server_default="1",
    )

    balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        server_default="0",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="members",
    )

    @property
    def is_admin(self) -> bool:
        return self.role == MemberRole.ADMIN

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Member id={self.id} "
            f"group_id={self.group_id} "
            f"nickname={self.nickname!r} "
            f"balance={self.balance}>"
        )
