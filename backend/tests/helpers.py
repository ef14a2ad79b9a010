from typing import Optional

from backend.config import RaffleSettings, VRFSettings
from backend.db import build_engine, build_session_scope
from backend.models import Base
from backend.services.payout import LedgerPayoutExecutor, PayoutExecutor
from backend.services.raffle import RaffleService
from backend.services.randomness import LocalVRFCoordinator

ENTRANCE_FEE = 10**16
INTERVAL = 30
START = 1_700_000_000
CONSUMER = "0x" + "c" * 40

ALICE = "0x" + "1" * 40
BOB = "0x" + "2" * 40
CAROL = "0x" + "3" * 40


class FakeClock:
    def __init__(self, now: int = START) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class RaffleHarness:
    """Raffle wired to an in-memory database, a local coordinator and the ledger payout."""

    def __init__(
        self,
        request_timeout_seconds: Optional[int] = None,
        payout: Optional[PayoutExecutor] = None,
        register_consumer: bool = True,
    ) -> None:
        self.engine = build_engine("sqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.session_scope = build_session_scope(self.engine)
        self.clock = FakeClock()

        self.coordinator = LocalVRFCoordinator()
        subscription_id = self.coordinator.create_subscription()
        self.coordinator.fund_subscription(subscription_id, 10**18)
        if register_consumer:
            self.coordinator.add_consumer(subscription_id, CONSUMER)

        self.service = RaffleService(
            RaffleSettings(
                entrance_fee_wei=ENTRANCE_FEE,
                interval_seconds=INTERVAL,
                request_timeout_seconds=request_timeout_seconds,
            ),
            VRFSettings(subscription_id=subscription_id, consumer_address=CONSUMER),
            self.coordinator,
            payout or LedgerPayoutExecutor(),
            self.session_scope,
            clock=self.clock,
        )
        self.service.initialize()

    def dispose(self) -> None:
        self.engine.dispose()
