import unittest

from backend.errors import InsufficientFee, PlayerIndexOutOfRange
from backend.models import RaffleRound, ROUND_ID
from backend.services.ledger import PoolLedger
from backend.tests.helpers import ALICE, BOB, ENTRANCE_FEE, START, RaffleHarness
from backend.types import PoolSnapshot


class PoolLedgerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.harness = RaffleHarness()

    def tearDown(self) -> None:
        self.harness.dispose()

    def test_snapshot_and_reset_returns_pool_and_clears_it(self) -> None:
        with self.harness.session_scope() as session:
            ledger = PoolLedger(session, session.get(RaffleRound, ROUND_ID), ENTRANCE_FEE)
            ledger.record_entry(ALICE, ENTRANCE_FEE, START)
            ledger.record_entry(BOB, ENTRANCE_FEE * 2, START)
            ledger.record_entry(ALICE, ENTRANCE_FEE, START)

            snapshot = ledger.snapshot_and_reset()

            self.assertEqual(snapshot, PoolSnapshot(entrants=(ALICE, BOB, ALICE), balance=ENTRANCE_FEE * 4))
            self.assertEqual(ledger.entrant_count(), 0)
            self.assertEqual(ledger.balance(), 0)
            self.assertEqual(ledger.entrants(), [])

        self.assertEqual(self.harness.service.get_pool_balance(), 0)

    def test_record_entry_rejects_underpayment(self) -> None:
        with self.harness.session_scope() as session:
            ledger = PoolLedger(session, session.get(RaffleRound, ROUND_ID), ENTRANCE_FEE)
            with self.assertRaises(InsufficientFee) as ctx:
                ledger.record_entry(ALICE, 0, START)
            self.assertEqual(ctx.exception.entrance_fee, ENTRANCE_FEE)
            self.assertEqual(ledger.entrant_count(), 0)

    def test_get_player_out_of_range(self) -> None:
        self.harness.service.enter(ALICE, ENTRANCE_FEE)

        with self.assertRaises(PlayerIndexOutOfRange):
            self.harness.service.get_player(1)
        with self.assertRaises(PlayerIndexOutOfRange):
            self.harness.service.get_player(-1)


if __name__ == "__main__":
    unittest.main()
