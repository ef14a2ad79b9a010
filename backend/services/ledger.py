from __future__ import annotations

from typing import List

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..errors import InsufficientFee, PlayerIndexOutOfRange
from ..models import Entrant, RaffleRound
from ..types import PoolSnapshot


class PoolLedger:
    """Entrants and pool balance of the current round.

    The ledger only mutates inside the caller's session; the state machine
    owns the round row and decides when entries are accepted.
    """

    def __init__(self, session: Session, round_row: RaffleRound, entrance_fee: int) -> None:
        self._session = session
        self._round = round_row
        self._entrance_fee = entrance_fee

    def record_entry(self, participant: str, fee_paid: int, now: int) -> int:
        if fee_paid < self._entrance_fee:
            raise InsufficientFee(fee_paid, self._entrance_fee)

        index = self.entrant_count()
        self._session.add(Entrant(participant=participant, fee_paid=fee_paid, entered_at=now))
        self._round.pool_balance = self._round.pool_balance + fee_paid
        self._session.flush()
        return index

    def entrant_count(self) -> int:
        return int(self._session.query(func.count(Entrant.id)).scalar() or 0)

    def balance(self) -> int:
        return int(self._round.pool_balance)

    def entrants(self) -> List[str]:
        rows = self._session.query(Entrant.participant).order_by(Entrant.id.asc()).all()
        return [row.participant for row in rows]

    def get_player(self, index: int) -> str:
        count = self.entrant_count()
        if index < 0 or index >= count:
            raise PlayerIndexOutOfRange(index, count)
        row = (
            self._session.query(Entrant.participant)
            .order_by(Entrant.id.asc())
            .offset(index)
            .limit(1)
            .one()
        )
        return row.participant

    def snapshot_and_reset(self) -> PoolSnapshot:
        snapshot = PoolSnapshot(entrants=tuple(self.entrants()), balance=self.balance())
        self._session.query(Entrant).delete(synchronize_session=False)
        self._round.pool_balance = 0
        self._session.flush()
        return snapshot
