"""
tests/integration/test_groups.py — Group and member management.

Endpoints covered:
  POST   /groups                          → 201 (creator becomes admin member)
  GET    /groups                          → 200 (caller's groups only)
  GET    /groups/:id                      → 200 / 403 / 404
  POST   /groups/:id/members              → 201 / 403 / 409
  PATCH  /groups/:id/members/:mid         → 200 (equity weight)
  DELETE /groups/:id/members/:mid         → 200 / 403 / 422 (deactivation)
"""

from __future__ import annotations

from decimal import Decimal

from .conftest import (
    ALICE,
    BOB,
    CAROL,
    add_member,
    auth_headers,
    make_expense,
    make_group,
    make_settlement,
    setup_trio,
)


class TestCreateGroup:

    def test_creator_becomes_admin_member(self, client):
        group = make_group(client, ALICE, "Flat", nickname="Ali")

        assert group["name"] == "Flat"
        assert group["currency_code"] == "USD"
        assert group["total_expenses"] == "0.00"
        assert group["created_by_user_id"] == ALICE
        [me] = group["members"]
        assert me["user_id"] == ALICE
        assert me["nickname"] == "Ali"
        assert me["role"] == "admin"
        assert me["balance"] == "0.00"
        assert me["is_active"] is True

    def test_currency_code_is_kept(self, client):
        group = make_group(client, ALICE, currency_code="EUR")
        assert group["currency_code"] == "EUR"

    def test_invalid_currency_rejected(self, client):
        resp = client.post(
            "/api/v1/groups",
            json={"name": "Flat", "currency_code": "euro"},
            headers=auth_headers(ALICE),
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_CURRENCY"
        assert resp.get_json()["error"]["field"] == "currency_code"

    def test_missing_name_rejected(self, client):
        resp = client.post("/api/v1/groups", json={}, headers=auth_headers(ALICE))
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "MISSING_FIELD"


class TestReadGroups:

    def test_list_only_my_groups(self, client):
        make_group(client, ALICE, "Mine")
        make_group(client, BOB, "Bob's")

        resp = client.get("/api/v1/groups", headers=auth_headers(ALICE))

        assert resp.status_code == 200
        assert [g["name"] for g in resp.get_json()["data"]] == ["Mine"]

    def test_get_group_lists_active_members(self, client):
        group, alice, bob, carol = setup_trio(client)

        resp = client.get(f"/api/v1/groups/{group['id']}", headers=auth_headers(BOB))

        assert resp.status_code == 200
        ids = [m["id"] for m in resp.get_json()["data"]["members"]]
        assert ids == [alice["id"], bob["id"], carol["id"]]

    def test_non_member_forbidden(self, client):
        group = make_group(client, ALICE)
        resp = client.get(f"/api/v1/groups/{group['id']}", headers=auth_headers(CAROL))
        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "FORBIDDEN"

    def test_missing_group_404(self, client):
        resp = client.get("/api/v1/groups/99999", headers=auth_headers(ALICE))
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "GROUP_NOT_FOUND"


class TestMembers:

    def test_add_ghost_member(self, client):
        group = make_group(client, ALICE)
        ghost = add_member(client, ALICE, group["id"], "Grandma")

        assert ghost["user_id"] is None
        assert ghost["role"] == "member"
        assert Decimal(ghost["salary_weight"]) == Decimal("1")

    def test_two_ghosts_allowed(self, client):
        group = make_group(client, ALICE)
        add_member(client, ALICE, group["id"], "Ghost A")
        add_member(client, ALICE, group["id"], "Ghost B")

    def test_duplicate_user_rejected(self, client):
        group = make_group(client, ALICE)
        add_member(client, ALICE, group["id"], "Bob", user_id=BOB)

        resp = client.post(
            f"/api/v1/groups/{group['id']}/members",
            json={"nickname": "Bob again", "user_id": BOB},
            headers=auth_headers(ALICE),
        )
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "ALREADY_MEMBER"

    def test_non_admin_cannot_add(self, client):
        group, _, _, _ = setup_trio(client)
        resp = client.post(
            f"/api/v1/groups/{group['id']}/members",
            json={"nickname": "Dave"},
            headers=auth_headers(BOB),
        )
        assert resp.status_code == 403

    def test_admin_updates_weight(self, client):
        group, _, bob, _ = setup_trio(client)
        resp = client.patch(
            f"/api/v1/groups/{group['id']}/members/{bob['id']}",
            json={"salary_weight": "2.5"},
            headers=auth_headers(ALICE),
        )
        assert resp.status_code == 200
        assert Decimal(resp.get_json()["data"]["salary_weight"]) == Decimal("2.5")

    def test_non_admin_cannot_update_weight(self, client):
        group, alice, _, _ = setup_trio(client)
        resp = client.patch(
            f"/api/v1/groups/{group['id']}/members/{alice['id']}",
            json={"salary_weight": "0"},
            headers=auth_headers(BOB),
        )
        assert resp.status_code == 403


class TestDeactivateMember:

    def test_settled_member_leaves(self, client):
        group, _, bob, _ = setup_trio(client)

        resp = client.delete(
            f"/api/v1/groups/{group['id']}/members/{bob['id']}",
            headers=auth_headers(BOB),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["is_active"] is False

        detail = client.get(f"/api/v1/groups/{group['id']}", headers=auth_headers(ALICE))
        assert bob["id"] not in [m["id"] for m in detail.get_json()["data"]["members"]]

        # Bob no longer has access.
        again = client.get(f"/api/v1/groups/{group['id']}", headers=auth_headers(BOB))
        assert again.status_code == 403

    def test_deactivation_is_idempotent(self, client):
        group, _, bob, _ = setup_trio(client)
        url = f"/api/v1/groups/{group['id']}/members/{bob['id']}"

        assert client.delete(url, headers=auth_headers(ALICE)).status_code == 200
        assert client.delete(url, headers=auth_headers(ALICE)).status_code == 200

    def test_unsettled_member_cannot_leave(self, client):
        group, alice, bob, carol = setup_trio(client)
        make_expense(client, ALICE, group["id"], alice["id"], "30.00")

        resp = client.delete(
            f"/api/v1/groups/{group['id']}/members/{bob['id']}",
            headers=auth_headers(BOB),
        )
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "MEMBER_HAS_BALANCE"

    def test_member_can_leave_after_settling(self, client):
        group, alice, bob, _ = setup_trio(client)
        make_expense(client, ALICE, group["id"], alice["id"], "30.00")
        settle = make_settlement(client, BOB, group["id"], alice["id"], "10.00")
        assert settle.status_code == 201

        resp = client.delete(
            f"/api/v1/groups/{group['id']}/members/{bob['id']}",
            headers=auth_headers(BOB),
        )
        assert resp.status_code == 200

    def test_member_cannot_deactivate_someone_else(self, client):
        group, _, bob, carol = setup_trio(client)
        resp = client.delete(
            f"/api/v1/groups/{group['id']}/members/{carol['id']}",
            headers=auth_headers(BOB),
        )
        assert resp.status_code == 403

    def test_unknown_member_404(self, client):
        group = make_group(client, ALICE)
        resp = client.delete(
            f"/api/v1/groups/{group['id']}/members/99999",
            headers=auth_headers(ALICE),
        )
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "MEMBER_NOT_FOUND"
