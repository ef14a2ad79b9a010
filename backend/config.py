from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

ZERO_KEY_HASH = "0x" + "0" * 64


@dataclass(frozen=True)
class FlaskSettings:
    secret_key: str = "raffle-dev-secret"
    debug: bool = True


@dataclass(frozen=True)
class RaffleSettings:
    entrance_fee_wei: int = 10**16
    interval_seconds: int = 30
    # None keeps a pending request alive forever.
    request_timeout_seconds: Optional[int] = None


@dataclass(frozen=True)
class VRFSettings:
    mode: str = "local"
    key_hash: str = ZERO_KEY_HASH
    subscription_id: int = 1
    callback_gas_limit: int = 500000
    request_confirmations: int = 3
    num_words: int = 1
    consumer_address: str = "0x" + "0" * 40
    coordinator_address: Optional[str] = None
    local_funding_wei: int = 10**18


@dataclass(frozen=True)
class Web3Settings:
    rpc_url: Optional[str] = None
    signer_key: Optional[str] = None
    chain_id: Optional[int] = None


@dataclass(frozen=True)
class AppSettings:
    flask: FlaskSettings
    raffle: RaffleSettings
    vrf: VRFSettings
    web3: Web3Settings
    database_url: str
    payout_mode: str
    admin_api_key: Optional[str]
    oracle_callback_token: Optional[str]


def _int_from_env(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value == "":
        return default
    return int(value)


def _optional_int_from_env(key: str) -> Optional[int]:
    value = os.getenv(key)
    if not value:
        return None
    return int(value)


def _choice_from_env(key: str, default: str, choices: set) -> str:
    value = os.getenv(key, default).strip().lower()
    if value not in choices:
        raise RuntimeError(f"{key} must be one of {sorted(choices)}, got {value!r}")
    return value


@lru_cache(maxsize=1)
def load_settings(dotenv_path: Optional[str] = None) -> AppSettings:
    if dotenv_path:
        load_dotenv(dotenv_path)
    else:
        load_dotenv()

    flask_settings = FlaskSettings(
        secret_key=os.getenv("FLASK_SECRET_KEY", "raffle-dev-secret"),
        debug=os.getenv("FLASK_DEBUG", "1") == "1",
    )

    raffle_settings = RaffleSettings(
        entrance_fee_wei=_int_from_env("RAFFLE_ENTRANCE_FEE_WEI", 10**16),
        interval_seconds=_int_from_env("RAFFLE_INTERVAL_SECONDS", 30),
        request_timeout_seconds=_optional_int_from_env("RAFFLE_REQUEST_TIMEOUT_SECONDS"),
    )
    if raffle_settings.entrance_fee_wei <= 0:
        raise RuntimeError("RAFFLE_ENTRANCE_FEE_WEI must be positive")

    vrf_settings = VRFSettings(
        mode=_choice_from_env("VRF_MODE", "local", {"local", "web3"}),
        key_hash=os.getenv("VRF_KEY_HASH", ZERO_KEY_HASH),
        subscription_id=_int_from_env("VRF_SUBSCRIPTION_ID", 1),
        callback_gas_limit=_int_from_env("VRF_CALLBACK_GAS_LIMIT", 500000),
        request_confirmations=_int_from_env("VRF_REQUEST_CONFIRMATIONS", 3),
        consumer_address=os.getenv("VRF_CONSUMER_ADDRESS", "0x" + "0" * 40),
        coordinator_address=os.getenv("VRF_COORDINATOR_ADDRESS") or None,
        local_funding_wei=_int_from_env("VRF_LOCAL_FUNDING_WEI", 10**18),
    )

    web3_settings = Web3Settings(
        rpc_url=os.getenv("RPC_URL") or None,
        signer_key=os.getenv("RAFFLE_SIGNER_KEY") or None,
        chain_id=_optional_int_from_env("CHAIN_ID"),
    )

    oracle_callback_token = os.getenv("ORACLE_CALLBACK_TOKEN") or None
    if vrf_settings.mode == "web3" and not oracle_callback_token:
        raise RuntimeError("ORACLE_CALLBACK_TOKEN is required when VRF_MODE=web3")

    return AppSettings(
        flask=flask_settings,
        raffle=raffle_settings,
        vrf=vrf_settings,
        web3=web3_settings,
        database_url=os.getenv("DATABASE_URL", "sqlite:///raffle.db"),
        payout_mode=_choice_from_env("PAYOUT_MODE", "ledger", {"ledger", "web3"}),
        admin_api_key=os.getenv("ADMIN_API_KEY"),
        oracle_callback_token=oracle_callback_token,
    )
