import importlib
import json
import os
import time
import unittest
from unittest import mock

import dataclasses

import backend.config as config_module

ENTRANCE_FEE = 10**16
ALICE = "0x" + "1" * 40
BOB = "0x" + "2" * 40


class RaffleRoutesTests(unittest.TestCase):
    def setUp(self) -> None:
        os.environ["DATABASE_URL"] = "sqlite:///:memory:"
        os.environ["ADMIN_API_KEY"] = "test-admin"
        os.environ["ORACLE_CALLBACK_TOKEN"] = "test-oracle"
        os.environ["RAFFLE_ENTRANCE_FEE_WEI"] = str(ENTRANCE_FEE)
        os.environ["RAFFLE_INTERVAL_SECONDS"] = "30"
        os.environ["RAFFLE_REQUEST_TIMEOUT_SECONDS"] = "600"
        os.environ["VRF_MODE"] = "local"
        os.environ["PAYOUT_MODE"] = "ledger"
        config_module.load_settings.cache_clear()

        import backend.db as db_module
        import backend.routes.raffle as raffle_route_module
        import backend.routes.upkeep as upkeep_route_module
        import backend.routes.oracle as oracle_route_module
        import backend.routes.admin as admin_route_module
        import backend.routes.config as config_route_module
        import backend.routes.health as health_route_module
        import backend.app as app_module

        importlib.reload(config_module)
        importlib.reload(db_module)
        self.raffle_routes = importlib.reload(raffle_route_module)
        importlib.reload(upkeep_route_module)
        self.oracle_routes = importlib.reload(oracle_route_module)
        importlib.reload(admin_route_module)
        importlib.reload(config_route_module)
        importlib.reload(health_route_module)
        app_module = importlib.reload(app_module)

        self.app = app_module.create_app()
        self.client = self.app.test_client()
        self.start = int(time.time())
        self.assertEqual(self.client.get("/raffle").status_code, 200)

    def tearDown(self) -> None:
        config_module.load_settings.cache_clear()
        self.raffle_routes.get_runtime.cache_clear()

    def _admin(self):
        return {"X-Admin-Token": "test-admin"}

    def _post(self, path: str, payload: dict, headers=None):
        return self.client.post(
            path, data=json.dumps(payload), content_type="application/json", headers=headers or {}
        )

    def _later(self, seconds: int = 60):
        service = self.raffle_routes.get_runtime().service
        return mock.patch.object(service, "_clock", return_value=self.start + seconds)

    def test_enter_and_query_players(self) -> None:
        response = self._post("/raffle/enter", {"participant": ALICE, "value": str(ENTRANCE_FEE)})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.get_json()["pool_balance"], str(ENTRANCE_FEE))

        self.assertEqual(self.client.get("/raffle/players/0").get_json()["player"], ALICE)
        self.assertEqual(self.client.get("/raffle/players/count").get_json()["number_of_players"], 1)
        self.assertEqual(self.client.get("/raffle/entrance-fee").get_json()["entrance_fee"], str(ENTRANCE_FEE))
        self.assertEqual(self.client.get("/raffle/state").get_json(), {"state": 0, "name": "OPEN"})
        self.assertEqual(self.client.get("/raffle/players/5").status_code, 404)

        events = self.client.get("/raffle/events").get_json()
        self.assertEqual([(e["name"], e["args"]) for e in events], [("RaffleEnter", {"participant": ALICE})])

    def test_enter_rejects_low_fee_and_bad_address(self) -> None:
        response = self._post("/raffle/enter", {"participant": ALICE, "value": ENTRANCE_FEE - 1})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "InsufficientFee")

        response = self._post("/raffle/enter", {"participant": "not-an-address", "value": ENTRANCE_FEE})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "ValidationError")

        self.assertEqual(self.client.get("/raffle/players/count").get_json()["number_of_players"], 0)

    def test_perform_upkeep_reports_why_not_needed(self) -> None:
        self._post("/raffle/enter", {"participant": ALICE, "value": ENTRANCE_FEE})

        check = self._post("/upkeep/check", {"check_data": "0x"}).get_json()
        self.assertEqual(check, {"upkeep_needed": False, "perform_data": "0x"})

        response = self._post("/upkeep/perform", {})
        self.assertEqual(response.status_code, 400)
        body = response.get_json()
        self.assertEqual(body["error"], "UpkeepNotNeeded")
        self.assertEqual(body["balance"], str(ENTRANCE_FEE))
        self.assertEqual(body["entrant_count"], 1)
        self.assertEqual(body["state"], 0)

    def test_full_round_through_http(self) -> None:
        self._post("/raffle/enter", {"participant": ALICE, "value": ENTRANCE_FEE})

        with self._later():
            self.assertTrue(self._post("/upkeep/check", {}).get_json()["upkeep_needed"])
            request_id = self._post("/upkeep/perform", {"perform_data": "0x"}).get_json()["request_id"]

            blocked = self._post("/raffle/enter", {"participant": BOB, "value": ENTRANCE_FEE})
            self.assertEqual(blocked.status_code, 409)
            self.assertEqual(blocked.get_json()["error"], "RaffleNotOpen")

            response = self._post(
                f"/admin/api/oracle/requests/{request_id}/fulfill",
                {"random_words": ["777"]},
                headers=self._admin(),
            )

        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload["winner"], ALICE)
        self.assertEqual(payload["prize"], str(ENTRANCE_FEE))
        self.assertEqual(self.client.get("/raffle/recent-winner").get_json()["recent_winner"], ALICE)
        self.assertEqual(self.client.get("/raffle/state").get_json()["state"], 0)
        self.assertEqual(self.client.get("/raffle/players/count").get_json()["number_of_players"], 0)

        account = self.client.get(f"/admin/api/accounts/{ALICE}", headers=self._admin()).get_json()
        self.assertEqual(account["balance"], str(ENTRANCE_FEE))

    def test_local_coordinator_fulfillment_and_failed_payout(self) -> None:
        self._post("/admin/api/accounts", {"address": BOB, "accepts_payments": False}, headers=self._admin())
        self._post("/raffle/enter", {"participant": BOB, "value": ENTRANCE_FEE})

        with self._later():
            request_id = self._post("/upkeep/perform", {}).get_json()["request_id"]
            pending = self.client.get("/admin/api/oracle/requests", headers=self._admin()).get_json()
            self.assertEqual([p["request_id"] for p in pending], [request_id])

            response = self._post(f"/admin/api/oracle/requests/{request_id}/fulfill", {}, headers=self._admin())

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json()["error"], "TransferFailed")
        summary = self.client.get("/raffle").get_json()
        self.assertEqual(summary["state"], "SETTLING")
        self.assertEqual(summary["pool_balance"], str(ENTRANCE_FEE))
        self.assertIsNone(summary["recent_winner"])

        with self._later(60 + 601):
            expired = self._post("/admin/api/settlement/expire", {}, headers=self._admin()).get_json()
        self.assertEqual(expired["expired_request_id"], request_id)
        self.assertEqual(self.client.get("/raffle/state").get_json()["name"], "OPEN")

    def _oracle(self):
        return {"X-Oracle-Token": "test-oracle"}

    def _external_oracle(self):
        # Detach the local coordinator so the HTTP callback is the deliverer.
        return mock.patch.object(self.raffle_routes.get_runtime(), "oracle", mock.Mock())

    def _settling(self, *entrants: str) -> str:
        for participant in entrants:
            self._post("/raffle/enter", {"participant": participant, "value": ENTRANCE_FEE})
        with self._later():
            return self._post("/upkeep/perform", {}).get_json()["request_id"]

    def test_oracle_callback_requires_token(self) -> None:
        request_id = self._settling(ALICE, BOB)
        body = {"request_id": request_id, "random_words": [1]}

        with self._external_oracle():
            self.assertEqual(self._post("/oracle/fulfill", body).status_code, 401)
            wrong = self._post("/oracle/fulfill", body, headers={"X-Oracle-Token": "guess"})
            self.assertEqual(wrong.status_code, 401)

            settings = dataclasses.replace(config_module.load_settings(), oracle_callback_token=None)
            with mock.patch.object(self.oracle_routes, "load_settings", return_value=settings):
                self.assertEqual(self._post("/oracle/fulfill", body).status_code, 401)

        self.assertEqual(self.client.get("/raffle").get_json()["state"], "SETTLING")
        self.assertIsNone(self.client.get("/raffle/recent-winner").get_json()["recent_winner"])

    def test_oracle_callback_is_closed_while_local_coordinator_delivers(self) -> None:
        request_id = self._settling(ALICE)

        response = self._post("/oracle/fulfill", {"request_id": request_id, "random_words": [0]}, headers=self._oracle())

        self.assertEqual(response.status_code, 409)
        pending = self.client.get("/admin/api/oracle/requests", headers=self._admin()).get_json()
        self.assertEqual([p["request_id"] for p in pending], [request_id])
        self.assertEqual(self.client.get("/raffle").get_json()["state"], "SETTLING")

    def test_oracle_callback_settles_once(self) -> None:
        self._post("/admin/api/accounts", {"address": BOB, "accepts_payments": False}, headers=self._admin())
        request_id = self._settling(ALICE, BOB)

        with self._later(), self._external_oracle():
            failed = self._post(
                "/oracle/fulfill", {"request_id": request_id, "random_words": [1]}, headers=self._oracle()
            )
            retried = self._post(
                "/oracle/fulfill", {"request_id": request_id, "random_words": [0]}, headers=self._oracle()
            )

        self.assertEqual(failed.status_code, 409)
        self.assertEqual(failed.get_json()["error"], "TransferFailed")
        self.assertEqual(retried.status_code, 404)
        self.assertEqual(retried.get_json()["error"], "UnknownRequest")
        self.assertIsNone(self.client.get("/raffle/recent-winner").get_json()["recent_winner"])
        self.assertEqual(self.client.get(f"/admin/api/accounts/{ALICE}", headers=self._admin()).status_code, 404)

    def test_malformed_numbers_are_validation_errors(self) -> None:
        entry = self._post("/raffle/enter", {"participant": ALICE, "value": None})
        self.assertEqual(entry.status_code, 400)
        self.assertEqual(entry.get_json()["error"], "ValidationError")
        for value in ([ENTRANCE_FEE], "ten", -1, True):
            with self.subTest(value=value):
                response = self._post("/raffle/enter", {"participant": ALICE, "value": value})
                self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.get("/raffle/players/count").get_json()["number_of_players"], 0)

        request_id = self._settling(ALICE)
        with self._external_oracle():
            for body in (
                {"request_id": None, "random_words": [1]},
                {"request_id": request_id, "random_words": [None]},
                {"request_id": request_id, "random_words": "1"},
                {"request_id": request_id, "random_words": []},
            ):
                with self.subTest(body=body):
                    response = self._post("/oracle/fulfill", body, headers=self._oracle())
                    self.assertEqual(response.status_code, 400)
                    self.assertEqual(response.get_json()["error"], "ValidationError")

        for words in ([None], [{"word": 1}], "777"):
            with self.subTest(words=words):
                response = self._post(
                    f"/admin/api/oracle/requests/{request_id}/fulfill", {"random_words": words}, headers=self._admin()
                )
                self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.get("/raffle").get_json()["state"], "SETTLING")

    def test_admin_requires_token(self) -> None:
        self.assertEqual(self.client.get("/admin/api/accounts").status_code, 401)

    def test_config_and_health(self) -> None:
        config = self.client.get("/config").get_json()
        self.assertEqual(config["entrance_fee_wei"], str(ENTRANCE_FEE))
        self.assertEqual(config["interval_seconds"], 30)
        self.assertEqual(config["num_words"], 1)
        self.assertEqual(config["request_confirmations"], 3)

        self.assertEqual(self.client.get("/health").get_json()["status"], "ok")


if __name__ == "__main__":
    unittest.main()
