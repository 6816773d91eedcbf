"""HTTP tests for the credit router."""

import unittest

from fastapi.testclient import TestClient

from stakecredit.core.clock import FixedClock
from stakecredit.main import create_app
from stakecredit.models.codec import decode_contract, decode_position, decode_score
from stakecredit.models.enums import InstallmentStatus
from stakecredit.tests.helpers import MERCHANT, OWNER, START, UNIT, make_settings


class CreditRouterTests(unittest.TestCase):
    """Validate status codes and payloads of the credit API."""

    def setUp(self) -> None:
        self.clock = FixedClock(START)
        self.app = create_app(settings=make_settings(), clock=self.clock)
        self.client = TestClient(self.app)
        self.signed = {"X-Signer": OWNER}

    def _onboard(self) -> None:
        response = self.client.post(
            "/credit/collateral/deposit",
            json={"owner": OWNER, "amount": 100 * UNIT, "lock_days": 30},
            headers=self.signed,
        )
        self.assertEqual(response.status_code, 200)
        response = self.client.post("/credit/scores/{0}/initialize".format(OWNER), headers=self.signed)
        self.assertEqual(response.status_code, 200)

    def _open_contract(self, **overrides) -> dict:
        payload = {"owner": OWNER, "merchant_id": MERCHANT, "principal": 30 * UNIT, "installment_count": 3}
        payload.update(overrides)
        return self.client.post("/credit/contracts", json=payload, headers=self.signed)

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})
        self.assertEqual(self.client.get("/settings").json()["default_asset"], "USDC")

    def test_deposit_requires_signer(self) -> None:
        response = self.client.post(
            "/credit/collateral/deposit",
            json={"owner": OWNER, "amount": 100 * UNIT, "lock_days": 30},
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["detail"]["code"], "UNAUTHORIZED")

    def test_deposit_below_minimum(self) -> None:
        response = self.client.post(
            "/credit/collateral/deposit",
            json={"owner": OWNER, "amount": 5 * UNIT, "lock_days": 30},
            headers=self.signed,
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"]["code"], "BELOW_MINIMUM_DEPOSIT")

    def test_collateral_flow(self) -> None:
        self._onboard()
        response = self.client.get("/credit/collateral/{0}".format(OWNER))
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["principal"], 100 * UNIT)
        self.assertTrue(body["is_locked"])

        response = self.client.post(
            "/credit/collateral/withdraw",
            json={"owner": OWNER, "amount": UNIT},
            headers=self.signed,
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["detail"]["code"], "STILL_LOCKED")

        self.assertEqual(self.client.get("/credit/collateral/bob").status_code, 404)

    def test_score_initialised_once(self) -> None:
        self._onboard()
        response = self.client.post("/credit/scores/{0}/initialize".format(OWNER), headers=self.signed)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(self.client.get("/credit/scores/{0}".format(OWNER)).json()["score"]["score"], 500)

    def test_contract_lifecycle(self) -> None:
        self._onboard()
        response = self._open_contract()
        self.assertEqual(response.status_code, 200)
        contract = response.json()["contract"]
        self.assertEqual(contract["total_due"], 32_100_000)
        contract_id = contract["contract_id"]

        detail = self.client.get("/credit/contracts/{0}".format(contract_id))
        self.assertEqual(len(detail.json()["contract"]["installments"]), 3)
        listing = self.client.get("/credit/owners/{0}/contracts".format(OWNER)).json()
        self.assertEqual(listing["count"], 1)

        paid = self.client.post("/credit/contracts/{0}/pay".format(contract_id), headers=self.signed)
        self.assertEqual(paid.status_code, 200)
        self.assertEqual(paid.json()["action"], "PAID")

        early = self.client.post("/credit/contracts/{0}/check".format(contract_id))
        self.assertEqual(early.status_code, 409)
        self.assertEqual(early.json()["detail"]["code"], "GRACE_PERIOD_NOT_EXPIRED")

        self.clock.advance(days=75, seconds=1)
        overdue = self.client.get("/credit/overdue").json()
        self.assertEqual(overdue["count"], 1)

        checked = self.client.post(
            "/credit/contracts/{0}/check".format(contract_id),
            json={"sequence_no": 2},
            headers={"X-Signer": "bot-7"},
        )
        self.assertEqual(checked.status_code, 200)
        self.assertEqual(checked.json()["action"], "LIQUIDATED")

        logs = self.client.get("/credit/contracts/{0}/liquidations".format(contract_id)).json()
        self.assertEqual(logs["items"][0]["triggered_by"], "bot-7")

        stats = self.client.get("/credit/scores/{0}/stats".format(OWNER)).json()
        self.assertEqual(stats["score"], 485)

    def test_contract_view_shows_grace_waiting(self) -> None:
        self._onboard()
        contract_id = self._open_contract().json()["contract"]["contract_id"]
        url = "/credit/contracts/{0}".format(contract_id)

        self.clock.advance(days=31)
        installments = self.client.get(url).json()["contract"]["installments"]
        self.assertEqual(installments[0]["status"], "PENDING")
        self.assertEqual(installments[0]["effective_status"], "GRACE_WAITING")
        self.assertEqual(installments[1]["effective_status"], "PENDING")

        early = self.client.post("/credit/contracts/{0}/check".format(contract_id))
        self.assertEqual(early.status_code, 409)
        self.assertEqual(early.json()["detail"]["context"]["installment_status"], "GRACE_WAITING")

        self.clock.advance(days=14, seconds=1)
        installments = self.client.get(url).json()["contract"]["installments"]
        self.assertEqual(installments[0]["effective_status"], "PENDING")

    def test_contract_validation_errors(self) -> None:
        self._onboard()
        self.assertEqual(self._open_contract(installment_count=5).status_code, 422)
        self.assertEqual(self._open_contract(principal=101 * UNIT).status_code, 409)
        self.assertEqual(self.client.get("/credit/contracts/missing-contract").status_code, 404)

    def test_cancel_contract(self) -> None:
        self._onboard()
        contract_id = self._open_contract().json()["contract"]["contract_id"]
        forbidden = self.client.post(
            "/credit/contracts/{0}/cancel".format(contract_id),
            headers={"X-Signer": "mallory"},
        )
        self.assertEqual(forbidden.status_code, 403)
        response = self.client.post("/credit/contracts/{0}/cancel".format(contract_id), headers=self.signed)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["contract"]["status"], "CANCELLED")

    def test_score_delta_requires_role(self) -> None:
        self._onboard()
        url = "/credit/scores/{0}/delta".format(OWNER)
        payload = {"delta": -30, "reason": "DEFAULT"}
        self.assertEqual(self.client.post(url, json=payload).status_code, 403)
        response = self.client.post(url, json=payload, headers={"X-Role": "score_authority"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["score"]["score"], 470)

    def test_keeper_run_requires_keeper_role(self) -> None:
        self._onboard()
        contract_id = self._open_contract().json()["contract"]["contract_id"]
        self.clock.advance(days=45, seconds=1)
        self.assertEqual(self.client.post("/credit/keeper/run").status_code, 403)
        self.assertEqual(self.client.post("/credit/keeper/run", headers={"X-Role": "user"}).status_code, 403)

        response = self.client.post("/credit/keeper/run", headers={"X-Role": "keeper"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["summary"]["liquidated"], 1)
        logs = self.client.get("/credit/contracts/{0}/liquidations".format(contract_id)).json()
        self.assertEqual(logs["items"][0]["triggered_by"], "keeper")

    def test_binary_record_export(self) -> None:
        self._onboard()
        contract_id = self._open_contract().json()["contract"]["contract_id"]
        self.client.post("/credit/contracts/{0}/pay".format(contract_id), headers=self.signed)
        services = self.app.state.services

        response = self.client.get("/credit/contracts/{0}/record".format(contract_id))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["content-type"], "application/octet-stream")
        restored = decode_contract(response.content)
        self.assertEqual(restored, services.contracts.get_contract(contract_id))
        self.assertEqual(restored.installments[0].status, InstallmentStatus.PAID)
        self.assertEqual(restored.paid_installments, 1)

        position = decode_position(self.client.get("/credit/collateral/{0}/record".format(OWNER)).content)
        self.assertEqual(position, services.ledger.get_collateral(OWNER))
        score = decode_score(self.client.get("/credit/scores/{0}/record".format(OWNER)).content)
        self.assertEqual(score.score, 505)

        self.assertEqual(self.client.get("/credit/scores/bob/record").status_code, 404)
        self.assertEqual(self.client.get("/credit/contracts/missing-contract/record").status_code, 404)

    def test_audit_events(self) -> None:
        self._onboard()
        events = self.client.get("/credit/audit/events").json()
        self.assertEqual(events["count"], 2)
        self.assertEqual(
            {item["event_type"] for item in events["items"]},
            {"COLLATERAL_DEPOSITED", "SCORE_INITIALIZED"},
        )


if __name__ == "__main__":
    unittest.main()
