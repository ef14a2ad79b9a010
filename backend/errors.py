"""Raffle error taxonomy.

Every error aborts the operation that raised it; the surrounding
transaction is rolled back by ``session_scope``. Routes turn them into
JSON responses using ``code``, ``http_status`` and ``payload()``.
"""

from __future__ import annotations

from typing import Any, Dict

from .types import RaffleState


class RaffleError(Exception):
    """Base class for all raffle errors."""

    code = "RaffleError"
    http_status = 400

    def payload(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": str(self), **self.payload()}


class InsufficientFee(RaffleError):
    code = "InsufficientFee"

    def __init__(self, fee_paid: int, entrance_fee: int) -> None:
        self.fee_paid = fee_paid
        self.entrance_fee = entrance_fee
        super().__init__(f"Entrance fee is {entrance_fee} wei, received {fee_paid}")

    def payload(self) -> Dict[str, Any]:
        return {"fee_paid": str(self.fee_paid), "entrance_fee": str(self.entrance_fee)}


class RaffleNotOpen(RaffleError):
    code = "RaffleNotOpen"
    http_status = 409

    def __init__(self, state: RaffleState) -> None:
        self.state = state
        super().__init__(f"Raffle is not accepting entries (state={state.name})")

    def payload(self) -> Dict[str, Any]:
        return {"state": int(self.state)}


class UpkeepNotNeeded(RaffleError):
    code = "UpkeepNotNeeded"

    def __init__(self, balance: int, entrant_count: int, state: RaffleState) -> None:
        self.balance = balance
        self.entrant_count = entrant_count
        self.state = state
        super().__init__(
            f"Upkeep not needed: balance={balance} entrants={entrant_count} state={state.name}"
        )

    def payload(self) -> Dict[str, Any]:
        return {
            "balance": str(self.balance),
            "entrant_count": self.entrant_count,
            "state": int(self.state),
        }


class OracleRequestFailed(RaffleError):
    code = "OracleRequestFailed"
    http_status = 502

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Randomness request rejected: {reason}")

    def payload(self) -> Dict[str, Any]:
        return {"reason": self.reason}


class TransferFailed(RaffleError):
    code = "TransferFailed"
    http_status = 409

    def __init__(self, winner: str, amount: int, reason: str) -> None:
        self.winner = winner
        self.amount = amount
        self.reason = reason
        super().__init__(f"Payout of {amount} wei to {winner} failed: {reason}")

    def payload(self) -> Dict[str, Any]:
        return {"winner": self.winner, "amount": str(self.amount), "reason": self.reason}


class UnknownRequest(RaffleError):
    code = "UnknownRequest"
    http_status = 404

    def __init__(self, request_id: int) -> None:
        self.request_id = request_id
        super().__init__(f"No outstanding settlement request {request_id}")

    def payload(self) -> Dict[str, Any]:
        return {"request_id": str(self.request_id)}


class PlayerIndexOutOfRange(RaffleError):
    code = "PlayerIndexOutOfRange"
    http_status = 404

    def __init__(self, index: int, count: int) -> None:
        self.index = index
        self.count = count
        super().__init__(f"Player index {index} out of range (entrants={count})")

    def payload(self) -> Dict[str, Any]:
        return {"index": self.index, "entrant_count": self.count}
