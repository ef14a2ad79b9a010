from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

from ..config import AppSettings
from ..db import SessionScope
from .chain import ChainGateway
from .payout import AccountRepository, LedgerPayoutExecutor, PayoutExecutor, Web3PayoutExecutor
from .raffle import Clock, RaffleService
from .randomness import FulfillmentGateway, LocalVRFCoordinator, RandomnessOracle, VRFCoordinatorClient

logger = logging.getLogger("raffle.factory")


@dataclass
class RaffleRuntime:
    service: RaffleService
    oracle: RandomnessOracle
    fulfillment: FulfillmentGateway
    accounts: AccountRepository

    @property
    def local_coordinator(self) -> Optional[LocalVRFCoordinator]:
        return self.oracle if isinstance(self.oracle, LocalVRFCoordinator) else None


def _connect_gateway(settings: AppSettings) -> ChainGateway:
    if not settings.web3.rpc_url:
        raise RuntimeError("RPC_URL is required when VRF_MODE or PAYOUT_MODE is 'web3'")
    return ChainGateway.connect(
        settings.web3.rpc_url,
        signer_key=settings.web3.signer_key,
        chain_id=settings.web3.chain_id,
    )


def build_runtime(
    settings: AppSettings,
    session_scope: SessionScope,
    clock: Optional[Clock] = None,
) -> RaffleRuntime:
    gateway: Optional[ChainGateway] = None
    vrf = settings.vrf

    oracle: RandomnessOracle
    if vrf.mode == "web3":
        if not vrf.coordinator_address:
            raise RuntimeError("VRF_COORDINATOR_ADDRESS is required when VRF_MODE=web3")
        gateway = _connect_gateway(settings)
        oracle = VRFCoordinatorClient(gateway, vrf.coordinator_address)
    else:
        # Same provisioning a local dev chain deploy does: create, fund, add consumer.
        coordinator = LocalVRFCoordinator()
        subscription_id = coordinator.create_subscription()
        coordinator.fund_subscription(subscription_id, vrf.local_funding_wei)
        coordinator.add_consumer(subscription_id, vrf.consumer_address)
        vrf = replace(vrf, subscription_id=subscription_id)
        oracle = coordinator
        logger.info("Using local VRF coordinator; subscription=%s", subscription_id)

    payout: PayoutExecutor
    if settings.payout_mode == "web3":
        payout = Web3PayoutExecutor(gateway or _connect_gateway(settings))
    else:
        payout = LedgerPayoutExecutor()

    service = RaffleService(settings.raffle, vrf, oracle, payout, session_scope, clock=clock)
    service.initialize()
    return RaffleRuntime(
        service=service,
        oracle=oracle,
        fulfillment=FulfillmentGateway(service),
        accounts=AccountRepository(session_scope),
    )
