"""
models/ — SQLAlchemy table definitions.

Importing this package registers every model on db.metadata, which is what
db.create_all() and the Alembic environment rely on.
"""

from fairshare.app.models.expense import Category, Expense
from fairshare.app.models.group import Group
from fairshare.app.models.member import Member, MemberRole
from fairshare.app.models.obligation import Obligation
from fairshare.app.models.settlement import Settlement

__all__ = [
    "Category",
    "Expense",
    "Group",
    "Member",
    "MemberRole",
    "Obligation",
    "Settlement",
]
