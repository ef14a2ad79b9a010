from __future__ import annotations

import math
from typing import Any, Dict, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from web3 import Web3


class ChainGateway:
    """Signed transaction plumbing shared by the web3 adapters."""

    def __init__(self, web3: "Web3", signer_key: Optional[str] = None, chain_id: Optional[int] = None) -> None:
        self._web3 = web3
        self._account = web3.eth.account.from_key(signer_key) if signer_key else None  # type: ignore[attr-defined]
        self._chain_id = chain_id

    @classmethod
    def connect(
        cls,
        rpc_url: str,
        signer_key: Optional[str] = None,
        chain_id: Optional[int] = None,
    ) -> "ChainGateway":
        from web3 import Web3
        from web3.middleware import ExtraDataToPOAMiddleware

        web3 = Web3(Web3.HTTPProvider(rpc_url))
        if not web3.is_connected():
            raise ConnectionError(f"Cannot connect to RPC endpoint: {rpc_url}")

        # Hardhat, Sepolia and Polygon return PoA-sized extraData.
        web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return cls(web3, signer_key=signer_key, chain_id=chain_id)

    @property
    def web3(self) -> "Web3":
        return self._web3

    @property
    def chain_id(self) -> Optional[int]:
        if self._chain_id is not None:
            return self._chain_id
        return int(self._web3.eth.chain_id)

    @property
    def sender(self) -> str:
        return self._ensure_account().address

    def contract(self, address: str, abi: Sequence[Dict[str, Any]]):
        from web3 import Web3

        return self._web3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def _ensure_account(self):
        if self._account is None:
            raise RuntimeError("Signer not configured; set RAFFLE_SIGNER_KEY in .env")
        return self._account

    def send_contract_call(self, fn, tx_params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        account = self._ensure_account()
        tx_params = dict(tx_params or {})
        tx_params.setdefault("from", account.address)

        gas_estimate = fn.estimate_gas(tx_params)
        gas_limit = max(int(math.ceil(gas_estimate * 1.2)), 100000)
        tx = fn.build_transaction(
            {
                **tx_params,
                "nonce": self._web3.eth.get_transaction_count(account.address),
                "gas": gas_limit,
                "gasPrice": self._web3.eth.gas_price,
                "chainId": self.chain_id,
            }
        )
        return self._sign_and_wait(tx)

    def send_value(self, to: str, amount: int) -> Dict[str, Any]:
        from web3 import Web3

        account = self._ensure_account()
        tx: Dict[str, Any] = {
            "from": account.address,
            "to": Web3.to_checksum_address(to),
            "value": int(amount),
        }
        # A recipient that rejects value makes estimation revert.
        tx["gas"] = self._web3.eth.estimate_gas(tx)
        tx.update(
            {
                "nonce": self._web3.eth.get_transaction_count(account.address),
                "gasPrice": self._web3.eth.gas_price,
                "chainId": self.chain_id,
            }
        )
        return self._sign_and_wait(tx)

    def _sign_and_wait(self, tx: Dict[str, Any]) -> Dict[str, Any]:
        account = self._ensure_account()
        signed = account.sign_transaction(tx)
        tx_hash = self._web3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self._web3.eth.wait_for_transaction_receipt(tx_hash, timeout=180, poll_latency=2)
        if receipt["status"] != 1:
            raise RuntimeError(f"Transaction reverted: {tx_hash.hex()}")
        return {"tx_hash": tx_hash.hex(), "receipt": receipt}
