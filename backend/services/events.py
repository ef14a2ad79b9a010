from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..db import SessionScope
from ..models import RaffleEvent

RAFFLE_ENTER = "RaffleEnter"
REQUESTED_RAFFLE_WINNER = "RequestedRaffleWinner"
WINNER_PICKED = "WinnerPicked"
SETTLEMENT_EXPIRED = "SettlementExpired"


class EventLog:
    """Ordered notifications, written in the same transaction as the change they report."""

    def __init__(self, session_scope: SessionScope, logger: Optional[logging.Logger] = None) -> None:
        self._session_scope = session_scope
        self._logger = logger or logging.getLogger("raffle.events")

    def record(self, session: Session, name: str, **payload: Any) -> RaffleEvent:
        event = RaffleEvent(name=name)
        event.set_payload(payload)
        session.add(event)
        session.flush()
        self._logger.info("%s %s", name, payload)
        return event

    def list(self, limit: Optional[int] = None, name: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._session_scope() as session:
            query = session.query(RaffleEvent).order_by(RaffleEvent.id.asc())
            if name:
                query = query.filter(RaffleEvent.name == name)
            records = query.all()
            if limit:
                records = records[-limit:]
            return [event.to_dict() for event in records]
