"""Settlement state machine for the pooled raffle.

A round cycles OPEN -> SETTLING -> OPEN. ``request_settlement`` asks the
randomness oracle for one word and parks the round in SETTLING; the
oracle later calls ``on_randomness_fulfilled`` (through
``FulfillmentGateway``), which picks the winner, reopens the pool and
pays out. Nothing bounds the delay between the two calls.

Each mutating operation runs in a single ``session_scope`` transaction
while holding the service lock and a row lock on the round, so
operations never interleave and a raised error leaves no trace. The one
exception is fulfillment: the request id is committed as consumed before
settlement runs, so a settlement that rolls back cannot be replayed.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..config import RaffleSettings, VRFSettings
from ..db import SessionScope
from ..errors import RaffleNotOpen, TransferFailed, UnknownRequest, UpkeepNotNeeded
from ..models import ROUND_ID, ConsumedRequest, RaffleRound
from ..types import EntryReceipt, RaffleState, SettlementResult
from .events import (
    RAFFLE_ENTER,
    REQUESTED_RAFFLE_WINNER,
    SETTLEMENT_EXPIRED,
    WINNER_PICKED,
    EventLog,
)
from .ledger import PoolLedger
from .payout import PayoutExecutor
from .randomness import RandomnessOracle, RandomnessRequest

Clock = Callable[[], int]


def system_clock() -> int:
    return int(time.time())


class RaffleService:
    def __init__(
        self,
        settings: RaffleSettings,
        vrf: VRFSettings,
        oracle: RandomnessOracle,
        payout: PayoutExecutor,
        session_scope: SessionScope,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._settings = settings
        self._vrf = vrf
        self._oracle = oracle
        self._payout = payout
        self._session_scope = session_scope
        self._clock = clock or system_clock
        self._logger = logger or logging.getLogger("raffle.settlement")
        self._events = EventLog(session_scope)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------ #
    # Round access
    # ------------------------------------------------------------------ #

    def initialize(self) -> None:
        with self._lock, self._session_scope() as session:
            if session.get(RaffleRound, ROUND_ID) is None:
                session.add(
                    RaffleRound(
                        id=ROUND_ID,
                        state=int(RaffleState.OPEN),
                        pool_balance=0,
                        last_timestamp=self._clock(),
                    )
                )
                self._logger.info("Raffle initialised; round open")

    def _load_round(self, session: Session, for_update: bool = False) -> RaffleRound:
        query = session.query(RaffleRound).filter(RaffleRound.id == ROUND_ID)
        if for_update:
            query = query.with_for_update(nowait=False)
        round_row = query.first()
        if round_row is None:
            raise RuntimeError("Raffle round missing; call initialize() first")
        return round_row

    def _ledger(self, session: Session, round_row: RaffleRound) -> PoolLedger:
        return PoolLedger(session, round_row, self._settings.entrance_fee_wei)

    def _is_eligible(self, round_row: RaffleRound, ledger: PoolLedger, now: int) -> bool:
        is_open = round_row.raffle_state == RaffleState.OPEN
        time_passed = (now - round_row.last_timestamp) > self._settings.interval_seconds
        has_players = ledger.entrant_count() > 0
        has_balance = ledger.balance() > 0
        return is_open and time_passed and has_players and has_balance

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    def enter(self, participant: str, fee_paid: int) -> EntryReceipt:
        with self._lock, self._session_scope() as session:
            round_row = self._load_round(session, for_update=True)
            if round_row.raffle_state != RaffleState.OPEN:
                raise RaffleNotOpen(round_row.raffle_state)

            ledger = self._ledger(session, round_row)
            index = ledger.record_entry(participant, int(fee_paid), self._clock())
            self._events.record(session, RAFFLE_ENTER, participant=participant)
            return EntryReceipt(
                participant=participant,
                entrant_index=index,
                fee_paid=int(fee_paid),
                pool_balance=ledger.balance(),
            )

    def check_eligibility(self) -> bool:
        with self._session_scope() as session:
            round_row = self._load_round(session)
            return self._is_eligible(round_row, self._ledger(session, round_row), self._clock())

    def check_upkeep(self, check_data: bytes = b"") -> Tuple[bool, bytes]:
        return self.check_eligibility(), b""

    def request_settlement(self) -> int:
        with self._lock, self._session_scope() as session:
            round_row = self._load_round(session, for_update=True)
            ledger = self._ledger(session, round_row)
            now = self._clock()
            if not self._is_eligible(round_row, ledger, now):
                raise UpkeepNotNeeded(ledger.balance(), ledger.entrant_count(), round_row.raffle_state)

            # The round only moves to SETTLING once the oracle has accepted.
            request_id = self._oracle.request_random_words(
                RandomnessRequest(
                    key_hash=self._vrf.key_hash,
                    subscription_id=self._vrf.subscription_id,
                    request_confirmations=self._vrf.request_confirmations,
                    callback_gas_limit=self._vrf.callback_gas_limit,
                    num_words=self._vrf.num_words,
                    consumer=self._vrf.consumer_address,
                )
            )
            round_row.state = int(RaffleState.SETTLING)
            round_row.pending_request_id = request_id
            round_row.request_issued_at = now
            self._events.record(session, REQUESTED_RAFFLE_WINNER, request_id=str(request_id))
            return request_id

    def perform_upkeep(self, perform_data: bytes = b"") -> int:
        return self.request_settlement()

    def on_randomness_fulfilled(self, request_id: int, random_value: int) -> SettlementResult:
        with self._lock:
            self._consume_request(request_id)
            return self._settle(request_id, random_value)

    def _consume_request(self, request_id: int) -> None:
        # Committed apart from the settlement so a rolled-back payout cannot be redelivered.
        with self._session_scope() as session:
            round_row = self._load_round(session, for_update=True)
            if round_row.pending_request_id is None or round_row.pending_request_id != request_id:
                raise UnknownRequest(request_id)
            if session.get(ConsumedRequest, request_id) is not None:
                raise UnknownRequest(request_id)
            session.add(ConsumedRequest(request_id=request_id, consumed_at=self._clock()))

    def _settle(self, request_id: int, random_value: int) -> SettlementResult:
        with self._session_scope() as session:
            round_row = self._load_round(session, for_update=True)
            ledger = self._ledger(session, round_row)
            winner_index = random_value % ledger.entrant_count()
            winner = ledger.get_player(winner_index)

            round_row.recent_winner = winner
            round_row.state = int(RaffleState.OPEN)
            snapshot = ledger.snapshot_and_reset()
            round_row.last_timestamp = self._clock()
            round_row.pending_request_id = None
            round_row.request_issued_at = None
            self._events.record(session, WINNER_PICKED, winner=winner)

            result = self._payout.transfer(session, winner, snapshot.balance)
            if not result.success:
                self._logger.error("Payout to %s failed; rolling back settlement %s", winner, request_id)
                raise TransferFailed(winner, snapshot.balance, result.reason or "transfer rejected")

            self._logger.info(
                "Round settled: request_id=%s winner=%s prize=%s entrants=%d",
                request_id,
                winner,
                snapshot.balance,
                len(snapshot.entrants),
            )
            return SettlementResult(
                request_id=request_id,
                random_value=random_value,
                winner_index=winner_index,
                winner=winner,
                prize=snapshot.balance,
                transfer_reference=result.reference,
            )

    def expire_stale_request(self) -> Optional[int]:
        """Reopen a round whose randomness request outlived the configured timeout.

        Entrants and balance carry over to the reopened round. Returns the
        discarded request id, or None when there was nothing to expire.
        """
        timeout = self._settings.request_timeout_seconds
        if timeout is None:
            return None

        with self._lock, self._session_scope() as session:
            round_row = self._load_round(session, for_update=True)
            if round_row.raffle_state != RaffleState.SETTLING or round_row.request_issued_at is None:
                return None
            now = self._clock()
            if now - round_row.request_issued_at <= timeout:
                return None

            stale_id = round_row.pending_request_id
            round_row.state = int(RaffleState.OPEN)
            round_row.pending_request_id = None
            round_row.request_issued_at = None
            self._events.record(session, SETTLEMENT_EXPIRED, request_id=str(stale_id))
            self._logger.warning("Discarded stale randomness request %s", stale_id)
            return stale_id

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def get_entrance_fee(self) -> int:
        return self._settings.entrance_fee_wei

    def get_interval(self) -> int:
        return self._settings.interval_seconds

    def get_request_confirmations(self) -> int:
        return self._vrf.request_confirmations

    def get_num_words(self) -> int:
        return self._vrf.num_words

    def get_raffle_state(self) -> RaffleState:
        with self._session_scope() as session:
            return self._load_round(session).raffle_state

    def get_player(self, index: int) -> str:
        with self._session_scope() as session:
            round_row = self._load_round(session)
            return self._ledger(session, round_row).get_player(index)

    def get_number_of_players(self) -> int:
        with self._session_scope() as session:
            round_row = self._load_round(session)
            return self._ledger(session, round_row).entrant_count()

    def get_players(self) -> List[str]:
        with self._session_scope() as session:
            round_row = self._load_round(session)
            return self._ledger(session, round_row).entrants()

    def get_last_timestamp(self) -> int:
        with self._session_scope() as session:
            return self._load_round(session).last_timestamp

    def get_recent_winner(self) -> Optional[str]:
        with self._session_scope() as session:
            return self._load_round(session).recent_winner

    def get_pool_balance(self) -> int:
        with self._session_scope() as session:
            return int(self._load_round(session).pool_balance)

    def get_pending_request_id(self) -> Optional[int]:
        with self._session_scope() as session:
            return self._load_round(session).pending_request_id

    def summary(self) -> Dict[str, Any]:
        with self._session_scope() as session:
            round_row = self._load_round(session)
            ledger = self._ledger(session, round_row)
            payload = round_row.to_dict()
            payload.update(
                {
                    "entrance_fee": str(self._settings.entrance_fee_wei),
                    "interval": self._settings.interval_seconds,
                    "number_of_players": ledger.entrant_count(),
                    "upkeep_needed": self._is_eligible(round_row, ledger, self._clock()),
                }
            )
            return payload

    def list_events(self, limit: Optional[int] = None, name: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._events.list(limit=limit, name=name)
