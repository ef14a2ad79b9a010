from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..config import load_settings
from ..schemas import FulfillRandomWordsRequest, SettlementResponse
from ..types import SettlementResult
from .raffle import get_runtime

bp = Blueprint("oracle", __name__)


def settlement_response(result: SettlementResult) -> dict:
    return SettlementResponse(
        request_id=str(result.request_id),
        winner=result.winner,
        winner_index=result.winner_index,
        prize=str(result.prize),
        transfer_reference=result.transfer_reference,
    ).model_dump()


@bp.before_request
def verify_oracle():
    token = load_settings().oracle_callback_token
    if not token or request.headers.get("X-Oracle-Token") != token:
        return jsonify({"error": "unauthorized"}), 401
    return None


@bp.post("/fulfill")
def fulfill_random_words():
    runtime = get_runtime()
    if runtime.local_coordinator is not None:
        # The local coordinator is the only deliverer of its own requests.
        return jsonify({"error": "local coordinator delivers randomness; use /admin/api/oracle/requests"}), 409

    payload = request.get_json(force=True, silent=True) or {}
    data = FulfillRandomWordsRequest(**payload)

    current_app.logger.info("Oracle delivered randomness for request %s", data.request_id)
    result = runtime.fulfillment.deliver(data.request_id, data.random_words)
    return jsonify(settlement_response(result))
