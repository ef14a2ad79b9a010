from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify

from ..config import load_settings
from .raffle import get_runtime

bp = Blueprint("config", __name__)


def _get_raffle_metadata() -> Dict[str, Any]:
    settings = load_settings()
    service = get_runtime().service
    payload: Dict[str, Any] = {
        "entrance_fee_wei": str(service.get_entrance_fee()),
        "interval_seconds": service.get_interval(),
        "request_timeout_seconds": settings.raffle.request_timeout_seconds,
        "request_confirmations": service.get_request_confirmations(),
        "num_words": service.get_num_words(),
        "callback_gas_limit": settings.vrf.callback_gas_limit,
        "key_hash": settings.vrf.key_hash,
        "vrf_mode": settings.vrf.mode,
        "payout_mode": settings.payout_mode,
        "chain_id": settings.web3.chain_id,
    }
    if settings.vrf.coordinator_address:
        payload["coordinator_address"] = settings.vrf.coordinator_address
    current_app.logger.debug("Serving raffle config: %s", payload)
    return payload


@bp.get("/config")
def get_config():
    return jsonify(_get_raffle_metadata())
