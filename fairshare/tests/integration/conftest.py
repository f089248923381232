"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against an in-memory SQLite database (TestingConfig). Flask-SQLAlchemy
    pins in-memory SQLite to a single connection, so every request sees the
    same data.
  - The app is created once per session using create_app("testing").
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - No app context is held across requests; each request pushes its own, so
    the session is fresh per request exactly as in production. Direct DB
    checks wrap themselves in `with app.app_context():`.

Identity:
  Users live in the external identity provider. token_for(user_id) signs a
  bearer token with the testing JWT secret, the way the provider would.

Helper functions (not fixtures) are provided for common operations:
  - token_for(user_id)            → bearer token string
  - auth_headers(token)           → {"Authorization": "Bearer <token>"}
  - make_group(client, ...)       → group dict (creator's member row included)
  - add_member(client, ...)       → member dict
  - make_expense(client, ...)     → HTTP response
  - make_settlement(client, ...)  → HTTP response
  - get_balances(client, ...)     → balance payload dict

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import jwt
import pytest
from sqlalchemy import text

from fairshare.app import create_app
from fairshare.app.extensions import db as _db

TEST_JWT_SECRET = "testing-secret-key-with-enough-length"

ALICE = 1
BOB = 2
CAROL = 3
DAVE = 4


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire test session.

    Steps:
      1. Create app with TestingConfig (in-memory SQLite).
      2. Run db.create_all() to create all tables.
      3. Yield the app for the test session.
      4. Drop all tables at teardown.
    """
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows after every test in FK-safe order and restores the
    ledger settings a test may have changed.
    """
    saved = {
        key: app.config[key]
        for key in ("SPLIT_RESIDUE_POLICY", "STRICT_SPLIT_VALIDATION")
    }

    yield  # run the test

    app.config.update(saved)

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM obligations"))
            conn.execute(text("DELETE FROM settlements"))
            conn.execute(text("DELETE FROM expenses"))
            conn.execute(text("DELETE FROM members"))
            conn.execute(text("DELETE FROM groups"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def token_for(user_id: int, expires_in: timedelta = timedelta(minutes=15)) -> str:
    """Signs an access token for user_id the way the identity provider does."""
    payload = {
        "sub": str(user_id),
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")


def auth_headers(token_or_user: str | int) -> dict:
    """
    Returns the Authorization header dict for use in test requests.
    Accepts a raw token or a user id (a token is signed for it).
    """
    token = token_for(token_or_user) if isinstance(token_or_user, int) else token_or_user
    return {"Authorization": f"Bearer {token}"}


def make_group(
    client,
    user_id: int = ALICE,
    name: str = "Test Group",
    nickname: str = "Alice",
    currency_code: str | None = None,
) -> dict:
    """
    Creates a group and returns the group data dict.
    The caller becomes the group's admin and first member: data["members"][0].
    """
    payload: dict = {"name": name, "nickname": nickname}
    if currency_code is not None:
        payload["currency_code"] = currency_code
    resp = client.post(
        "/api/v1/groups",
        json=payload,
        headers=auth_headers(user_id),
    )
    assert resp.status_code == 201, f"make_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def add_member(
    client,
    admin_user_id: int,
    group_id: int,
    nickname: str,
    user_id: int | None = None,
    salary_weight: str | None = None,
    role: str | None = None,
) -> dict:
    """Adds a member (admin token required). Returns the member dict."""
    payload: dict = {"nickname": nickname, "user_id": user_id}
    if salary_weight is not None:
        payload["salary_weight"] = salary_weight
    if role is not None:
        payload["role"] = role
    resp = client.post(
        f"/api/v1/groups/{group_id}/members",
        json=payload,
        headers=auth_headers(admin_user_id),
    )
    assert resp.status_code == 201, f"add_member failed: {resp.get_json()}"
    return resp.get_json()["data"]


def make_expense(
    client,
    user_id: int,
    group_id: int,
    payer_member_id: int,
    amount: str,
    split_strategy: str = "equal",
    description: str = "Test Expense",
    **extra,
):
    """
    Creates an expense and returns the HTTP response.

    extra is merged into the payload: participant_ids, exact_amounts,
    percentages, shares, category, notes, currency_code.
    Strategy maps are keyed by member id (ints are fine; JSON turns them
    into strings and the schema turns them back).
    """
    payload: dict = {
        "payer_member_id": payer_member_id,
        "description": description,
        "amount": amount,
        "split_strategy": split_strategy,
    }
    payload.update(extra)
    return client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json=payload,
        headers=auth_headers(user_id),
    )


def make_settlement(
    client,
    user_id: int,
    group_id: int,
    to_member_id: int,
    amount: str,
    from_member_id: int | None = None,
    **extra,
):
    """Records a settlement and returns the HTTP response."""
    payload: dict = {"to_member_id": to_member_id, "amount": amount}
    if from_member_id is not None:
        payload["from_member_id"] = from_member_id
    payload.update(extra)
    return client.post(
        f"/api/v1/groups/{group_id}/settlements",
        json=payload,
        headers=auth_headers(user_id),
    )


def get_balances(client, user_id: int, group_id: int) -> dict:
    """Returns the balance payload of GET /groups/:id/balances."""
    resp = client.get(
        f"/api/v1/groups/{group_id}/balances",
        headers=auth_headers(user_id),
    )
    assert resp.status_code == 200, f"get_balances failed: {resp.get_json()}"
    return resp.get_json()["data"]


def balance_map(payload: dict) -> dict[int, Decimal]:
    """{member_id: Decimal balance} from a balance payload."""
    return {b["member_id"]: Decimal(b["balance"]) for b in payload["balances"]}


def setup_trio(client) -> tuple[dict, dict, dict, dict]:
    """
    Alice creates a group and adds Bob and Carol (both linked to users).
    Returns (group, alice_member, bob_member, carol_member).
    """
    group = make_group(client, ALICE, "Trip")
    alice = group["members"][0]
    bob = add_member(client, ALICE, group["id"], "Bob", user_id=BOB)
    carol = add_member(client, ALICE, group["id"], "Carol", user_id=CAROL)
    return group, alice, bob, carol
