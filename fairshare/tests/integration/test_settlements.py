"""
tests/integration/test_settlements.py — Settlement recording, confirmation and reversal.

Endpoints covered:
  POST   /groups/:id/settlements               → 201 (+ OVERPAYMENT warning)
  GET    /groups/:id/settlements               → 200 (?include_deleted=true)
  POST   /groups/:id/settlements/:sid/confirm  → 200 / 403 / 422
  DELETE /groups/:id/settlements/:sid          → 200 / 403
"""

from __future__ import annotations

from decimal import Decimal

from .conftest import (
    ALICE,
    BOB,
    CAROL,
    DAVE,
    add_member,
    auth_headers,
    balance_map,
    get_balances,
    make_expense,
    make_group,
    make_settlement,
    setup_trio,
)


def _trio_with_debt(client):
    """Alice pays 90.00 split three ways: Bob and Carol owe her 30.00 each."""
    group, alice, bob, carol = setup_trio(client)
    resp = make_expense(client, ALICE, group["id"], alice["id"], "90.00")
    assert resp.status_code == 201
    return group, alice, bob, carol


def _error_code(resp) -> str:
    return resp.get_json()["error"]["code"]


class TestCreateSettlement:

    def test_settlement_moves_both_balances(self, client):
        group, alice, bob, carol = _trio_with_debt(client)

        resp = make_settlement(client, BOB, group["id"], alice["id"], "30.00")

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["warnings"] == []
        settlement = body["data"]
        assert settlement["from_member_id"] == bob["id"]
        assert settlement["to_member_id"] == alice["id"]
        assert settlement["currency_code"] == "USD"
        assert settlement["is_confirmed"] is False
        assert settlement["created_by_user_id"] == BOB

        assert balance_map(get_balances(client, ALICE, group["id"])) == {
            alice["id"]: Decimal("30.00"),
            bob["id"]: Decimal("0.00"),
            carol["id"]: Decimal("-30.00"),
        }

    def test_partial_settlement(self, client):
        group, alice, bob, _ = _trio_with_debt(client)
        make_settlement(client, BOB, group["id"], alice["id"], "12.50")
        balances = balance_map(get_balances(client, ALICE, group["id"]))
        assert balances[bob["id"]] == Decimal("-17.50")

    def test_overpayment_recorded_with_warning(self, client):
        group, alice, bob, _ = _trio_with_debt(client)

        resp = make_settlement(client, BOB, group["id"], alice["id"], "50.00")

        assert resp.status_code == 201
        assert [w["code"] for w in resp.get_json()["warnings"]] == ["OVERPAYMENT"]
        assert balance_map(get_balances(client, ALICE, group["id"]))[bob["id"]] == Decimal("20.00")

    def test_creditor_paying_is_overpayment(self, client):
        group, alice, bob, _ = _trio_with_debt(client)
        resp = make_settlement(client, ALICE, group["id"], bob["id"], "5.00")
        assert resp.status_code == 201
        assert [w["code"] for w in resp.get_json()["warnings"]] == ["OVERPAYMENT"]

    def test_record_on_behalf_of_ghost(self, client):
        group = make_group(client, ALICE)
        alice = group["members"][0]
        ghost = add_member(client, ALICE, group["id"], "Grandma")
        make_expense(client, ALICE, group["id"], alice["id"], "20.00")

        resp = make_settlement(
            client, ALICE, group["id"], alice["id"], "10.00",
            from_member_id=ghost["id"],
        )

        assert resp.status_code == 201
        assert resp.get_json()["warnings"] == []
        assert balance_map(get_balances(client, ALICE, group["id"])) == {
            alice["id"]: Decimal("0.00"),
            ghost["id"]: Decimal("0.00"),
        }

    def test_self_settlement_rejected(self, client):
        group, alice, _, _ = _trio_with_debt(client)
        resp = make_settlement(client, ALICE, group["id"], alice["id"], "5.00")
        assert resp.status_code == 422
        assert _error_code(resp) == "SELF_SETTLEMENT"

    def test_explicit_self_settlement_rejected(self, client):
        group, _, bob, _ = _trio_with_debt(client)
        resp = make_settlement(
            client, ALICE, group["id"], bob["id"], "5.00", from_member_id=bob["id"],
        )
        assert resp.status_code == 422
        assert _error_code(resp) == "SELF_SETTLEMENT"

    def test_recipient_not_member(self, client):
        group, _, _, _ = _trio_with_debt(client)
        other = make_group(client, DAVE, "Elsewhere", nickname="Dave")

        resp = make_settlement(client, BOB, group["id"], other["members"][0]["id"], "5.00")

        assert resp.status_code == 422
        assert _error_code(resp) == "RECIPIENT_NOT_MEMBER"

    def test_payer_not_member(self, client):
        group, alice, _, _ = _trio_with_debt(client)
        resp = make_settlement(
            client, BOB, group["id"], alice["id"], "5.00", from_member_id=99999,
        )
        assert resp.status_code == 422
        assert _error_code(resp) == "PAYER_NOT_MEMBER"

    def test_foreign_currency_rejected(self, client):
        group, alice, _, _ = _trio_with_debt(client)
        resp = make_settlement(client, BOB, group["id"], alice["id"], "5.00", currency_code="EUR")
        assert resp.status_code == 400
        assert _error_code(resp) == "INVALID_CURRENCY"

    def test_amount_precision(self, client):
        group, alice, _, _ = _trio_with_debt(client)
        resp = make_settlement(client, BOB, group["id"], alice["id"], "5.005")
        assert resp.status_code == 400
        assert _error_code(resp) == "INVALID_AMOUNT_PRECISION"

    def test_non_member_forbidden(self, client):
        group, alice, _, _ = _trio_with_debt(client)
        resp = make_settlement(client, DAVE, group["id"], alice["id"], "5.00")
        assert resp.status_code == 403

    def test_simplified_debts_follow_settlements(self, client):
        group, alice, bob, carol = _trio_with_debt(client)
        make_settlement(client, BOB, group["id"], alice["id"], "30.00")

        debts = get_balances(client, ALICE, group["id"])["simplified_debts"]

        assert debts == [{
            "from_member_id": carol["id"],
            "from_nickname": "Carol",
            "to_member_id": alice["id"],
            "to_nickname": "Alice",
            "amount": "30.00",
        }]


class TestConfirmSettlement:

    def _settle(self, client):
        group, alice, bob, carol = _trio_with_debt(client)
        settlement = make_settlement(client, BOB, group["id"], alice["id"], "30.00").get_json()["data"]
        return group, settlement

    def _confirm(self, client, user_id, group_id, settlement_id):
        return client.post(
            f"/api/v1/groups/{group_id}/settlements/{settlement_id}/confirm",
            headers=auth_headers(user_id),
        )

    def test_recipient_confirms(self, client):
        group, settlement = self._settle(client)
        before = get_balances(client, ALICE, group["id"])

        resp = self._confirm(client, ALICE, group["id"], settlement["id"])

        assert resp.status_code == 200
        assert resp.get_json()["data"]["is_confirmed"] is True
        assert resp.get_json()["data"]["confirmed_at"] is not None
        assert balance_map(get_balances(client, ALICE, group["id"])) == balance_map(before)

    def test_confirm_twice_is_harmless(self, client):
        group, settlement = self._settle(client)
        first = self._confirm(client, ALICE, group["id"], settlement["id"])
        second = self._confirm(client, ALICE, group["id"], settlement["id"])

        assert second.status_code == 200
        assert second.get_json()["data"]["confirmed_at"] == first.get_json()["data"]["confirmed_at"]

    def test_payer_cannot_confirm(self, client):
        # Bob paid; only Alice (the recipient, also the admin) may confirm.
        group, settlement = self._settle(client)
        resp = self._confirm(client, BOB, group["id"], settlement["id"])
        assert resp.status_code == 403

    def test_reversed_settlement_cannot_be_confirmed(self, client):
        group, settlement = self._settle(client)
        client.delete(
            f"/api/v1/groups/{group['id']}/settlements/{settlement['id']}",
            headers=auth_headers(BOB),
        )

        resp = self._confirm(client, ALICE, group["id"], settlement["id"])

        assert resp.status_code == 422
        assert _error_code(resp) == "SETTLEMENT_DELETED"

    def test_unknown_settlement_404(self, client):
        group, _ = self._settle(client)
        resp = self._confirm(client, ALICE, group["id"], 99999)
        assert resp.status_code == 404
        assert _error_code(resp) == "SETTLEMENT_NOT_FOUND"


class TestDeleteSettlement:

    def test_reversal_restores_balances(self, client):
        group, alice, bob, carol = _trio_with_debt(client)
        before = get_balances(client, ALICE, group["id"])
        settlement = make_settlement(client, BOB, group["id"], alice["id"], "30.00").get_json()["data"]

        resp = client.delete(
            f"/api/v1/groups/{group['id']}/settlements/{settlement['id']}",
            headers=auth_headers(BOB),
        )

        assert resp.status_code == 200
        assert resp.get_json()["data"]["deleted_at"] is not None
        assert balance_map(get_balances(client, ALICE, group["id"])) == balance_map(before)

    def test_reversal_is_idempotent(self, client):
        group, alice, bob, _ = _trio_with_debt(client)
        settlement = make_settlement(client, BOB, group["id"], alice["id"], "30.00").get_json()["data"]
        url = f"/api/v1/groups/{group['id']}/settlements/{settlement['id']}"

        client.delete(url, headers=auth_headers(BOB))
        again = client.delete(url, headers=auth_headers(BOB))

        assert again.status_code == 200
        assert balance_map(get_balances(client, ALICE, group["id"]))[bob["id"]] == Decimal("-30.00")

    def test_bystander_cannot_reverse(self, client):
        group, alice, bob, _ = _trio_with_debt(client)
        settlement = make_settlement(client, BOB, group["id"], alice["id"], "30.00").get_json()["data"]

        resp = client.delete(
            f"/api/v1/groups/{group['id']}/settlements/{settlement['id']}",
            headers=auth_headers(CAROL),
        )

        assert resp.status_code == 403
        assert balance_map(get_balances(client, ALICE, group["id"]))[bob["id"]] == Decimal("0.00")


class TestListSettlements:

    def test_reversed_hidden_unless_requested(self, client):
        group, alice, bob, carol = _trio_with_debt(client)
        kept = make_settlement(client, BOB, group["id"], alice["id"], "30.00").get_json()["data"]
        reversed_ = make_settlement(client, CAROL, group["id"], alice["id"], "30.00").get_json()["data"]
        client.delete(
            f"/api/v1/groups/{group['id']}/settlements/{reversed_['id']}",
            headers=auth_headers(CAROL),
        )

        default = client.get(f"/api/v1/groups/{group['id']}/settlements", headers=auth_headers(ALICE))
        everything = client.get(
            f"/api/v1/groups/{group['id']}/settlements?include_deleted=true",
            headers=auth_headers(ALICE),
        )

        assert [s["id"] for s in default.get_json()["data"]] == [kept["id"]]
        assert [s["id"] for s in everything.get_json()["data"]] == [reversed_["id"], kept["id"]]
