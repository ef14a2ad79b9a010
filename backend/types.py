from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Tuple


class RaffleState(IntEnum):
    OPEN = 0
    SETTLING = 1


@dataclass(frozen=True)
class PoolSnapshot:
    entrants: Tuple[str, ...]
    balance: int


@dataclass(frozen=True)
class EntryReceipt:
    participant: str
    entrant_index: int
    fee_paid: int
    pool_balance: int


@dataclass(frozen=True)
class SettlementResult:
    request_id: int
    random_value: int
    winner_index: int
    winner: str
    prize: int
    transfer_reference: Optional[str] = None
