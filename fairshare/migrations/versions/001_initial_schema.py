"""Initial schema — all tables, constraints, and indexes.

Revision: 001_initial_schema
Created:  2026-10-17

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order:
  1. Tables in FK dependency order (groups → members → expenses
     → obligations, settlements)
  2. Indexes (including the partial index idx_expenses_active)

Enumerated columns (member role, expense category, split strategy) are
stored as VARCHAR holding the enum value. The models declare them with
native_enum=False, so adding a category is an application change, not a
type migration.

ON DELETE policies:
  members.group_id            → RESTRICT  (cannot delete a group with members)
  expenses.*                  → RESTRICT
  obligations.expense_id      → CASCADE   (obligations owned by expense)
  obligations.member_id       → RESTRICT
  settlements.*               → RESTRICT

version columns back SQLAlchemy's optimistic concurrency check (version_id_col)
on expenses and settlements.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:
    """Apply the full initial schema."""

    # ── Step 1: groups ─────────────────────────────────────────────────────
    # created_by_user_id is an identity-provider id; there is no users table.

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "currency_code",
            sa.String(3),
            nullable=False,
            server_default="USD",
        ),
        sa.Column(
            "total_expenses",
            sa.Numeric(12, 2),
            nullable=False,
            server_default="0",
        ),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
    )

    # ── Step 2: members ────────────────────────────────────────────────────
    # user_id NULL = ghost member. UNIQUE(group_id, user_id) ignores NULLs.

    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_members_group"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("nickname", sa.String(50), nullable=False),
        sa.Column(
            "role",
            sa.String(16),
            nullable=False,
            server_default="member",
        ),
        sa.Column(
            "salary_weight",
            sa.Numeric(10, 4),
            nullable=False,
            server_default="1",
        ),
        sa.Column(
            "balance",
            sa.Numeric(12, 2),
            nullable=False,
            server_default="0",
        ),
        sa.Column(
            "is_active",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("TRUE"),
        ),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_members"),
        sa.UniqueConstraint("group_id", "user_id", name="uq_members_group_user"),
        sa.CheckConstraint("salary_weight >= 0", name="ck_members_weight_non_negative"),
        sa.CheckConstraint(
            "LENGTH(TRIM(nickname)) > 0",
            name="ck_members_nickname_nonempty",
        ),
    )

    # ── Step 3: expenses ───────────────────────────────────────────────────
    # deleted_at IS NULL = active; non-null = soft-deleted.

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_expenses_group"),
            nullable=False,
        ),
        sa.Column(
            "payer_member_id",
            sa.Integer(),
            sa.ForeignKey("members.id", ondelete="RESTRICT", name="fk_expenses_payer"),
            nullable=False,
        ),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency_code", sa.String(3), nullable=False),
        sa.Column(
            "category",
            sa.String(32),
            nullable=False,
            server_default="other",
        ),
        sa.Column(
            "split_strategy",
            sa.String(16),
            nullable=False,
            server_default="equal",
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_expenses"),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
    )

    # ── Step 4: obligations ────────────────────────────────────────────────
    # One row per participant. paid_amount is the full amount for the payer
    # and 0 for everyone else.

    op.create_table(
        "obligations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE", name="fk_obligations_expense"),
            nullable=False,
        ),
        sa.Column(
            "member_id",
            sa.Integer(),
            sa.ForeignKey("members.id", ondelete="RESTRICT", name="fk_obligations_member"),
            nullable=False,
        ),
        sa.Column("owed_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "paid_amount",
            sa.Numeric(12, 2),
            nullable=False,
            server_default="0",
        ),
        sa.Column("percentage", sa.Numeric(7, 4), nullable=True),
        sa.Column("shares", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_obligations"),
        sa.UniqueConstraint("expense_id", "member_id", name="uq_obligations_expense_member"),
    )

    # ── Step 5: settlements ────────────────────────────────────────────────
    # CHECK(from_member_id <> to_member_id) backs up SELF_SETTLEMENT.

    op.create_table(
        "settlements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_settlements_group"),
            nullable=False,
        ),
        sa.Column(
            "from_member_id",
            sa.Integer(),
            sa.ForeignKey("members.id", ondelete="RESTRICT", name="fk_settlements_payer"),
            nullable=False,
        ),
        sa.Column(
            "to_member_id",
            sa.Integer(),
            sa.ForeignKey("members.id", ondelete="RESTRICT", name="fk_settlements_recipient"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency_code", sa.String(3), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "is_confirmed",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("FALSE"),
        ),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_settlements"),
        sa.CheckConstraint("amount > 0", name="ck_settlements_amount_positive"),
        sa.CheckConstraint(
            "from_member_id <> to_member_id",
            name="ck_settlements_no_self_settlement",
        ),
    )

    # ── Step 6: Indexes ────────────────────────────────────────────────────

    op.create_index("ix_members_group_id", "members", ["group_id"])
    op.create_index("ix_members_user_id", "members", ["user_id"])

    op.create_index("ix_expenses_group_id", "expenses", ["group_id"])
    # Partial index: balance replay and listings only read active expenses.
    op.create_index(
        "idx_expenses_active",
        "expenses",
        ["group_id"],
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    op.create_index("ix_obligations_expense_id", "obligations", ["expense_id"])
    op.create_index("ix_obligations_member_id", "obligations", ["member_id"])

    op.create_index("ix_settlements_group_id", "settlements", ["group_id"])


def downgrade() -> None:
    """
    Drop all objects created in upgrade(), in reverse dependency order.

    Provided for local development resets. Production databases get a
    corrective migration instead.
    """

    op.drop_index("ix_settlements_group_id",   table_name="settlements")
    op.drop_index("ix_obligations_member_id",  table_name="obligations")
    op.drop_index("ix_obligations_expense_id", table_name="obligations")
    op.drop_index("idx_expenses_active",       table_name="expenses")
    op.drop_index("ix_expenses_group_id",      table_name="expenses")
    op.drop_index("ix_members_user_id",        table_name="members")
    op.drop_index("ix_members_group_id",       table_name="members")

    op.drop_table("settlements")
    op.drop_table("obligations")
    op.drop_table("expenses")
    op.drop_table("members")
    op.drop_table("groups")
