from __future__ import annotations

import datetime as dt
import json
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

from .types import RaffleState

Base = declarative_base()

ROUND_ID = 1


class Uint256(TypeDecorator):
    """Unsigned integer stored as a decimal string; wei amounts overflow BIGINT."""

    impl = String(78)
    cache_ok = True

    def process_bind_param(self, value: Optional[int], dialect) -> Optional[str]:
        if value is None:
            return None
        value = int(value)
        if value < 0:
            raise ValueError("uint256 columns cannot store negative values")
        return str(value)

    def process_result_value(self, value: Optional[str], dialect) -> Optional[int]:
        if value is None:
            return None
        return int(value)


class RaffleRound(Base):
    __tablename__ = "raffle_rounds"

    id = Column(Integer, primary_key=True, default=ROUND_ID)
    state = Column(Integer, nullable=False, default=int(RaffleState.OPEN))
    pool_balance = Column(Uint256, nullable=False, default=0)
    last_timestamp = Column(Integer, nullable=False)
    recent_winner = Column(String(42), nullable=True)
    pending_request_id = Column(Uint256, nullable=True)
    request_issued_at = Column(Integer, nullable=True)

    @property
    def raffle_state(self) -> RaffleState:
        return RaffleState(self.state)

    def to_dict(self) -> dict:
        return {
            "state": self.raffle_state.name,
            "pool_balance": str(self.pool_balance),
            "last_timestamp": self.last_timestamp,
            "recent_winner": self.recent_winner,
            "pending_request_id": str(self.pending_request_id) if self.pending_request_id is not None else None,
            "request_issued_at": self.request_issued_at,
        }


class Entrant(Base):
    __tablename__ = "raffle_entrants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    participant = Column(String(42), nullable=False)
    fee_paid = Column(Uint256, nullable=False)
    entered_at = Column(Integer, nullable=False)


class RaffleEvent(Base):
    __tablename__ = "raffle_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(64), nullable=False)
    payload = Column(Text, nullable=False, default="{}")
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)

    def set_payload(self, payload: Dict[str, Any]) -> None:
        self.payload = json.dumps(payload)

    def get_payload(self) -> Dict[str, Any]:
        return json.loads(self.payload)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "args": self.get_payload(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Account(Base):
    __tablename__ = "accounts"

    address = Column(String(42), primary_key=True)
    balance = Column(Uint256, nullable=False, default=0)
    accepts_payments = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "balance": str(self.balance),
            "accepts_payments": self.accepts_payments,
        }


class ConsumedRequest(Base):
    """Randomness request ids that have already been delivered once."""

    __tablename__ = "consumed_requests"

    request_id = Column(Uint256, primary_key=True)
    consumed_at = Column(Integer, nullable=False)
