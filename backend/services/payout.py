from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, TYPE_CHECKING

from sqlalchemy.orm import Session

from ..db import SessionScope
from ..models import Account

if TYPE_CHECKING:  # pragma: no cover
    from .chain import ChainGateway


@dataclass(frozen=True)
class TransferResult:
    success: bool
    reason: Optional[str] = None
    reference: Optional[str] = None


class PayoutExecutor(Protocol):
    def transfer(self, session: Session, to: str, amount: int) -> TransferResult:
        ...


class LedgerPayoutExecutor:
    """Credits winners in the local ``accounts`` table.

    The credit joins the caller's transaction, so it commits or rolls back
    together with the settlement.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("raffle.payout")

    def transfer(self, session: Session, to: str, amount: int) -> TransferResult:
        account = session.get(Account, to)
        if account is None:
            account = Account(address=to, balance=0, accepts_payments=True)
            session.add(account)
        if not account.accepts_payments:
            self._logger.warning("Account %s rejects payments", to)
            return TransferResult(success=False, reason="recipient rejects payments")

        account.balance = int(account.balance or 0) + int(amount)
        session.flush()
        return TransferResult(success=True, reference=f"ledger:{to}")


class Web3PayoutExecutor:
    """Sends the prize as a native value transfer from the raffle signer."""

    def __init__(self, gateway: "ChainGateway", logger: Optional[logging.Logger] = None) -> None:
        self._gateway = gateway
        self._logger = logger or logging.getLogger("raffle.payout")

    def transfer(self, session: Session, to: str, amount: int) -> TransferResult:
        try:
            tx_meta = self._gateway.send_value(to, amount)
        except Exception as exc:
            self._logger.warning("Value transfer to %s failed: %s", to, exc)
            return TransferResult(success=False, reason=str(exc))
        return TransferResult(success=True, reference=tx_meta["tx_hash"])


class AccountRepository:
    """Admin view over the local payout ledger."""

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope

    def get_account(self, address: str) -> Optional[dict]:
        with self._session_scope() as session:
            account = session.get(Account, address)
            return account.to_dict() if account else None

    def list_accounts(self) -> List[dict]:
        with self._session_scope() as session:
            accounts = session.query(Account).order_by(Account.address.asc()).all()
            return [account.to_dict() for account in accounts]

    def upsert_account(self, address: str, accepts_payments: bool) -> dict:
        with self._session_scope() as session:
            account = session.get(Account, address)
            if account is None:
                account = Account(address=address, balance=0, accepts_payments=accepts_payments)
                session.add(account)
            else:
                account.accepts_payments = accepts_payments
            session.flush()
            return account.to_dict()
