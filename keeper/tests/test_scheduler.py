import asyncio
import json
import tempfile
import unittest
from pathlib import Path
from typing import List, Optional
from unittest import mock

from keeper.config import KeeperSettings
from keeper.raffle_client import RaffleHttpClient
from keeper.scheduler import UpkeepScheduler
from keeper.types import UpkeepCheck, UpkeepRejected


class FakeClient:
    def __init__(self, check: UpkeepCheck, request_id: int = 7, reject: bool = False) -> None:
        self._check = check
        self.request_id = request_id
        self.reject = reject
        self.performed: List[str] = []
        self.expire_calls = 0
        self.closed = False

    async def check_upkeep(self) -> UpkeepCheck:
        return self._check

    async def perform_upkeep(self, perform_data: str) -> int:
        if self.reject:
            raise UpkeepRejected({"error": "UpkeepNotNeeded", "balance": "0", "entrant_count": 0, "state": 0})
        self.performed.append(perform_data)
        return self.request_id

    async def expire_stale_request(self) -> Optional[int]:
        self.expire_calls += 1
        return None

    async def close(self) -> None:
        self.closed = True


class UpkeepSchedulerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.state_path = Path(self._tmpdir.name) / "state.json"

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def _make_settings(self, **overrides) -> KeeperSettings:
        settings = KeeperSettings(
            api_url="http://raffle.test",
            poll_interval_seconds=5,
            run_once=True,
            state_file=str(self.state_path),
        )
        return settings.copy(**overrides)

    def test_scheduler_skips_when_upkeep_not_needed(self) -> None:
        client = FakeClient(UpkeepCheck(upkeep_needed=False))
        scheduler = UpkeepScheduler(self._make_settings(), client)

        result = asyncio.run(scheduler.run_once())

        self.assertIsNone(result)
        self.assertEqual(client.performed, [])
        self.assertEqual(client.expire_calls, 0)
        self.assertTrue(client.closed)
        self.assertFalse(self.state_path.exists())

    def test_scheduler_performs_upkeep_and_persists_state(self) -> None:
        client = FakeClient(UpkeepCheck(upkeep_needed=True, perform_data="0x"), request_id=42)
        scheduler = UpkeepScheduler(self._make_settings(), client)

        result = asyncio.run(scheduler.run_once())

        self.assertIsNotNone(result)
        self.assertEqual(result.request_id, 42)
        self.assertEqual(client.performed, ["0x"])
        persisted = json.loads(self.state_path.read_text(encoding="utf-8"))
        self.assertEqual(persisted["last_request_id"], "42")

        restarted = UpkeepScheduler(self._make_settings(), FakeClient(UpkeepCheck(upkeep_needed=False)))
        self.assertEqual(restarted.last_request_id, 42)

    def test_scheduler_tolerates_rejected_perform(self) -> None:
        client = FakeClient(UpkeepCheck(upkeep_needed=True), reject=True)
        scheduler = UpkeepScheduler(self._make_settings(), client)

        result = asyncio.run(scheduler.run_once())

        self.assertIsNone(result)
        self.assertIsNone(scheduler.last_request_id)

    def test_scheduler_asks_backend_to_expire_when_admin_token_set(self) -> None:
        client = FakeClient(UpkeepCheck(upkeep_needed=False))
        scheduler = UpkeepScheduler(self._make_settings(admin_token="secret"), client)

        asyncio.run(scheduler.run_once())

        self.assertEqual(client.expire_calls, 1)


class RaffleHttpClientTests(unittest.TestCase):
    def _response(self, status_code: int, body: dict) -> mock.Mock:
        response = mock.Mock()
        response.status_code = status_code
        response.json.return_value = body
        return response

    def test_perform_upkeep_maps_upkeep_not_needed(self) -> None:
        session = mock.Mock()
        session.post.return_value = self._response(
            400, {"error": "UpkeepNotNeeded", "balance": "0", "entrant_count": 0, "state": 1}
        )
        client = RaffleHttpClient(KeeperSettings(api_url="http://raffle.test"), session=session)

        with self.assertRaises(UpkeepRejected) as ctx:
            asyncio.run(client.perform_upkeep("0x"))

        self.assertEqual(ctx.exception.details["state"], 1)
        session.post.assert_called_once_with(
            "http://raffle.test/upkeep/perform",
            json={"perform_data": "0x"},
            headers={},
            timeout=10,
        )

    def test_check_upkeep_parses_response(self) -> None:
        session = mock.Mock()
        session.post.return_value = self._response(200, {"upkeep_needed": True, "perform_data": "0x"})
        client = RaffleHttpClient(KeeperSettings(api_url="http://raffle.test"), session=session)

        check = asyncio.run(client.check_upkeep())

        self.assertEqual(check, UpkeepCheck(upkeep_needed=True, perform_data="0x"))


if __name__ == "__main__":
    unittest.main()
