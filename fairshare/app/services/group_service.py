"""
services/group_service.py — Group and member business logic.

Authorization rules:
  - Reading group data:      caller must be an active member (FORBIDDEN, 403)
  - Adding a member:         group admins only
  - Changing equity weight:  group admins only
  - Deactivating a member:   admins may deactivate anyone; a member may
                             deactivate themselves

Members are never deleted. Deactivation requires a settled balance
(MEMBER_HAS_BALANCE, 422) so the active members' balances still sum to zero.
Records touching an inactive member can no longer be reversed or re-split
(require_active_parties, MEMBER_INACTIVE 422).

The lookup helpers get_group_or_404() and require_member() are shared by
every other service in this package.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from fairshare.app.errors import AppError, ErrorCode
from fairshare.app.models.group import Group
from fairshare.app.models.member import Member, MemberRole
from fairshare.app.money import is_negligible


# ── Shared lookups ─────────────────────────────────────────────────────────

def get_group_or_404(group_id: int, session: Session) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404)."""
    group = session.get(Group, group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group


def require_member(group_id: int, user_id: int, session: Session) -> Member:
    """
    Returns the caller's active Member row in group_id.
    Raises FORBIDDEN (403) if the user has no active membership there;
    non-members receive 403, not 404.
    """
    member = session.execute(
        select(Member).where(
            Member.group_id == group_id,
            Member.user_id == user_id,
            Member.is_active.is_(True),
        )
    ).scalar_one_or_none()

    if member is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
            403,
        )
    return member


def get_member_or_404(group_id: int, member_id: int, session: Session) -> Member:
    """Returns a member (active or not) of group_id or raises MEMBER_NOT_FOUND (404)."""
    member = session.get(Member, member_id)
    if member is None or member.group_id != group_id:
        raise AppError(
            ErrorCode.MEMBER_NOT_FOUND,
            f"Member {member_id} does not exist in group {group_id}.",
            404,
        )
    return member


def get_active_members(group_id: int, session: Session) -> dict[int, Member]:
    """Returns {member_id: Member} for the group's active members, in id order."""
    stmt = (
        select(Member)
        .where(Member.group_id == group_id, Member.is_active.is_(True))
        .order_by(Member.id)
    )
    return {m.id: m for m in session.execute(stmt).scalars().all()}


def require_active_parties(
        group_id: int,
        member_ids,
        session: Session,
        action: str,
) -> None:
    """
    Raises MEMBER_INACTIVE (422) if any of member_ids has been deactivated.

    Reversing or re-splitting a record moves the balance of every member it
    touches, and a deactivated member's balance is fixed at zero.
    """
    active = get_active_members(group_id, session)
    inactive = sorted(mid for mid in set(member_ids) if mid not in active)
    if inactive:
        raise AppError(
            ErrorCode.MEMBER_INACTIVE,
            f"Cannot {action}: member {inactive[0]} has been deactivated "
            f"and their balance can no longer change.",
            422,
        )


# ── Serialisation ──────────────────────────────────────────────────────────

def member_to_dict(member: Member) -> dict:
    return {
        "id": member.id,
        "user_id": member.user_id,
        "nickname": member.nickname,
        "role": member.role.value,
        "salary_weight": member.salary_weight,
        "balance": member.balance,
        "is_active": member.is_active,
        "joined_at": member.joined_at.isoformat() if member.joined_at else None,
    }


def _build_group_dict(group: Group, members: list[Member] | None = None) -> dict:
    """Serialises a Group (and optionally its member list) to a plain dict."""
    payload = {
        "id": group.id,
        "name": group.name,
        "currency_code": group.currency_code,
        "total_expenses": group.total_expenses,
        "created_by_user_id": group.created_by_user_id,
        "created_at": group.created_at.isoformat() if group.created_at else None,
    }
    if members is not None:
        payload["members"] = [member_to_dict(m) for m in members]
    return payload


def _require_admin(member: Member, action: str) -> None:
    if not member.is_admin:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only group admins may {action}.",
            403,
        )


# ── Public service functions ───────────────────────────────────────────────

def create_group(
        name: str,
        currency_code: str,
        nickname: str,
        caller_id: int,
        session: Session,
) -> dict:
    """
    Creates a new group. The creator automatically becomes its first member
    with the admin role.

    Returns: dict with group details and the initial member list.
    """
    group = Group(
        name=name,
        currency_code=currency_code,
        total_expenses=Decimal("0.00"),
        created_by_user_id=caller_id,
    )
    session.add(group)
    session.flush()  # populate group.id before creating the member

    creator = Member(
        group_id=group.id,
        user_id=caller_id,
        nickname=nickname,
        role=MemberRole.ADMIN,
        salary_weight=Decimal("1"),
        balance=Decimal("0.00"),
        is_active=True,
    )
    session.add(creator)
    session.flush()
    session.refresh(group)
    session.refresh(creator)

    return _build_group_dict(group, [creator])


def list_groups(caller_id: int, session: Session) -> list[dict]:
    """
    Returns all groups the caller is an active member of, oldest first.

    Lightweight group dicts (no member list); the full list is available
    via get_group().
    """
    stmt = (
        select(Group)
        .join(Member, Group.id == Member.group_id)
        .where(Member.user_id == caller_id, Member.is_active.is_(True))
        .order_by(Group.created_at.asc(), Group.id.asc())
    )
    groups = session.execute(stmt).scalars().all()
    return [_build_group_dict(g) for g in groups]


def get_group(group_id: int, caller_id: int, session: Session) -> dict:
    """Returns group details including the active member list."""
    group = get_group_or_404(group_id, session)
    require_member(group_id, caller_id, session)
    members = list(get_active_members(group_id, session).values())
    return _build_group_dict(group, members)


def add_member(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> dict:
    """
    Adds a member to a group. Admins only.

    data (from AddMemberSchema):
      nickname       required
      user_id        optional; omitted for a ghost member
      salary_weight  optional equity weight, default 1
      role           optional, default 'member'

    Raises:
      AppError(GROUP_NOT_FOUND, 404)  — group does not exist
      AppError(FORBIDDEN, 403)        — caller is not an admin
      AppError(ALREADY_MEMBER, 409)   — user_id already has a member row here
    """
    get_group_or_404(group_id, session)
    caller = require_member(group_id, caller_id, session)
    _require_admin(caller, "add members")

    user_id = data.get("user_id")
    if user_id is not None:
        existing = session.execute(
            select(Member).where(
                Member.group_id == group_id,
                Member.user_id == user_id,
            )
        ).scalar_one_or_none()

        if existing is not None:
            raise AppError(
                ErrorCode.ALREADY_MEMBER,
                f"User {user_id} is already a member of group {group_id}.",
                409,
                field="user_id",
            )

    member = Member(
        group_id=group_id,
        user_id=user_id,
        nickname=data["nickname"],
        role=data.get("role", MemberRole.MEMBER),
        salary_weight=data.get("salary_weight", Decimal("1")),
        balance=Decimal("0.00"),
        is_active=True,
    )
    session.add(member)
    session.flush()
    session.refresh(member)

    return member_to_dict(member)


def update_member_weight(
        group_id: int,
        member_id: int,
        caller_id: int,
        salary_weight: Decimal,
        session: Session,
) -> dict:
    """
    Sets a member's equity weight. Admins only.

    Only future equity splits see the new weight; recorded obligations are
    never recomputed.
    """
    get_group_or_404(group_id, session)
    caller = require_member(group_id, caller_id, session)
    _require_admin(caller, "change equity weights")

    member = get_member_or_404(group_id, member_id, session)
    member.salary_weight = salary_weight
    session.flush()

    return member_to_dict(member)


def deactivate_member(
        group_id: int,
        member_id: int,
        caller_id: int,
        session: Session,
) -> dict:
    """
    Marks a member inactive. Idempotent.

    Raises:
      AppError(FORBIDDEN, 403)           — caller is neither admin nor the member
      AppError(MEMBER_NOT_FOUND, 404)    — member does not exist in this group
      AppError(MEMBER_HAS_BALANCE, 422)  — balance is not settled
    """
    get_group_or_404(group_id, session)
    caller = require_member(group_id, caller_id, session)
    member = get_member_or_404(group_id, member_id, session)

    if not (caller.is_admin or caller.id == member.id):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "You may only deactivate yourself unless you are a group admin.",
            403,
        )

    if not member.is_active:
        return member_to_dict(member)

    # Re-read the stored balance; it may have been moved by atomic increments.
    session.refresh(member)
    if not is_negligible(member.balance):
        raise AppError(
            ErrorCode.MEMBER_HAS_BALANCE,
            f"Member {member_id} has an unsettled balance of {member.balance}. "
            f"Settle up before leaving the group.",
            422,
        )

    member.is_active = False
    session.flush()

    return member_to_dict(member)
