from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Set, TYPE_CHECKING

from ..errors import OracleRequestFailed

if TYPE_CHECKING:  # pragma: no cover
    from .chain import ChainGateway
    from .raffle import RaffleService
    from ..types import SettlementResult

MAX_NUM_WORDS = 500
MAX_REQUEST_CONFIRMATIONS = 200
MAX_CALLBACK_GAS_LIMIT = 2_500_000

# Subset of VRFCoordinatorV2 used by the raffle.
VRF_COORDINATOR_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "requestRandomWords",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "keyHash", "type": "bytes32"},
            {"name": "subId", "type": "uint64"},
            {"name": "minimumRequestConfirmations", "type": "uint16"},
            {"name": "callbackGasLimit", "type": "uint32"},
            {"name": "numWords", "type": "uint32"},
        ],
        "outputs": [{"name": "requestId", "type": "uint256"}],
    },
    {
        "type": "event",
        "name": "RandomWordsRequested",
        "anonymous": False,
        "inputs": [
            {"name": "keyHash", "type": "bytes32", "indexed": True},
            {"name": "requestId", "type": "uint256", "indexed": False},
            {"name": "preSeed", "type": "uint256", "indexed": False},
            {"name": "subId", "type": "uint64", "indexed": True},
            {"name": "minimumRequestConfirmations", "type": "uint16", "indexed": False},
            {"name": "callbackGasLimit", "type": "uint32", "indexed": False},
            {"name": "numWords", "type": "uint32", "indexed": False},
            {"name": "sender", "type": "address", "indexed": True},
        ],
    },
]


@dataclass(frozen=True)
class RandomnessRequest:
    """Oracle parameters; passed through to the coordinator unexamined."""

    key_hash: str
    subscription_id: int
    request_confirmations: int
    callback_gas_limit: int
    num_words: int
    consumer: str


class RandomnessOracle(Protocol):
    def request_random_words(self, request: RandomnessRequest) -> int:
        ...


FulfillmentCallback = Callable[[int, Sequence[int]], Any]


class FulfillmentGateway:
    """Inbound side of the oracle boundary.

    Whatever executes the oracle's response (the local coordinator or the
    HTTP callback) calls ``deliver``; it is the raffle's only asynchronous
    entry point.
    """

    def __init__(self, raffle: "RaffleService") -> None:
        self._raffle = raffle

    def deliver(self, request_id: int, values: Sequence[int]) -> "SettlementResult":
        if not values:
            raise ValueError("Oracle delivered no random words")
        return self._raffle.on_randomness_fulfilled(int(request_id), int(values[0]))

    __call__ = deliver


class VRFCoordinatorClient:
    """Requests randomness from an on-chain VRF coordinator."""

    def __init__(self, gateway: "ChainGateway", coordinator_address: str) -> None:
        self._gateway = gateway
        self._contract = gateway.contract(coordinator_address, VRF_COORDINATOR_ABI)

    def request_random_words(self, request: RandomnessRequest) -> int:
        fn = self._contract.functions.requestRandomWords(
            request.key_hash,
            int(request.subscription_id),
            int(request.request_confirmations),
            int(request.callback_gas_limit),
            int(request.num_words),
        )
        try:
            tx_meta = self._gateway.send_contract_call(fn)
            events = self._contract.events.RandomWordsRequested().process_receipt(tx_meta["receipt"])
        except Exception as exc:
            raise OracleRequestFailed(str(exc)) from exc
        if not events:
            raise OracleRequestFailed(f"no RandomWordsRequested event in {tx_meta['tx_hash']}")
        return int(events[0]["args"]["requestId"])


@dataclass
class LocalSubscription:
    subscription_id: int
    balance: int = 0
    consumers: Set[str] = field(default_factory=set)


@dataclass(frozen=True)
class PendingRandomness:
    request_id: int
    subscription_id: int
    consumer: str
    num_words: int
    callback_gas_limit: int


def derive_random_words(request_id: int, num_words: int) -> List[int]:
    """Same derivation as VRFCoordinatorV2Mock: keccak256(abi.encode(requestId, i))."""
    from web3 import Web3

    return [
        int.from_bytes(Web3.solidity_keccak(["uint256", "uint256"], [request_id, i]), "big")
        for i in range(num_words)
    ]


class LocalVRFCoordinator:
    """In-process stand-in for a VRF coordinator, for development and tests."""

    def __init__(self, base_fee: int = 10**17, logger: Optional[logging.Logger] = None) -> None:
        self._base_fee = base_fee
        self._subscriptions: Dict[int, LocalSubscription] = {}
        self._pending: Dict[int, PendingRandomness] = {}
        self._next_subscription_id = 1
        self._next_request_id = 1
        self._lock = threading.Lock()
        self._logger = logger or logging.getLogger("raffle.oracle")

    def create_subscription(self) -> int:
        with self._lock:
            sub_id = self._next_subscription_id
            self._next_subscription_id += 1
            self._subscriptions[sub_id] = LocalSubscription(subscription_id=sub_id)
            return sub_id

    def fund_subscription(self, subscription_id: int, amount: int) -> None:
        with self._lock:
            self._get_subscription(subscription_id).balance += int(amount)

    def add_consumer(self, subscription_id: int, consumer: str) -> None:
        with self._lock:
            self._get_subscription(subscription_id).consumers.add(consumer.lower())

    def get_subscription(self, subscription_id: int) -> LocalSubscription:
        with self._lock:
            return self._get_subscription(subscription_id)

    def _get_subscription(self, subscription_id: int) -> LocalSubscription:
        subscription = self._subscriptions.get(int(subscription_id))
        if subscription is None:
            raise OracleRequestFailed(f"invalid subscription {subscription_id}")
        return subscription

    def request_random_words(self, request: RandomnessRequest) -> int:
        with self._lock:
            subscription = self._get_subscription(request.subscription_id)
            if request.consumer.lower() not in subscription.consumers:
                raise OracleRequestFailed(
                    f"consumer {request.consumer} not registered on subscription {request.subscription_id}"
                )
            if subscription.balance < self._base_fee:
                raise OracleRequestFailed(f"subscription {request.subscription_id} underfunded")
            if not 0 < request.num_words <= MAX_NUM_WORDS:
                raise OracleRequestFailed(f"num_words {request.num_words} out of range")
            if not 0 <= request.request_confirmations <= MAX_REQUEST_CONFIRMATIONS:
                raise OracleRequestFailed(
                    f"request_confirmations {request.request_confirmations} out of range"
                )
            if request.callback_gas_limit > MAX_CALLBACK_GAS_LIMIT:
                raise OracleRequestFailed(f"callback_gas_limit {request.callback_gas_limit} too big")

            request_id = self._next_request_id
            self._next_request_id += 1
            self._pending[request_id] = PendingRandomness(
                request_id=request_id,
                subscription_id=subscription.subscription_id,
                consumer=request.consumer,
                num_words=request.num_words,
                callback_gas_limit=request.callback_gas_limit,
            )

        self._logger.info("Random words requested: request_id=%s consumer=%s", request_id, request.consumer)
        return request_id

    def pending_requests(self) -> List[PendingRandomness]:
        with self._lock:
            return sorted(self._pending.values(), key=lambda item: item.request_id)

    def fulfill_random_words(
        self,
        request_id: int,
        callback: FulfillmentCallback,
        words: Optional[Sequence[int]] = None,
    ) -> Any:
        with self._lock:
            pending = self._pending.pop(int(request_id), None)
            if pending is None:
                raise ValueError(f"nonexistent request {request_id}")
            subscription = self._subscriptions[pending.subscription_id]
            subscription.balance = max(subscription.balance - self._base_fee, 0)

        values = list(words) if words is not None else derive_random_words(pending.request_id, pending.num_words)
        self._logger.info("Fulfilling request_id=%s with %d word(s)", pending.request_id, len(values))
        # The request is consumed even if the consumer fails, as on-chain.
        return callback(pending.request_id, values)
