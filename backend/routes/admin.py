from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..config import load_settings
from ..schemas import AccountRequest, LocalFulfillRequest
from .oracle import settlement_response
from .raffle import get_runtime

bp = Blueprint("admin", __name__)


def _require_admin() -> bool:
    settings = load_settings()
    api_key = settings.admin_api_key
    if api_key:
        provided = request.headers.get("X-Admin-Token")
        if provided != api_key:
            return False
    return True


@bp.before_request
def verify_admin():
    if not _require_admin():
        return jsonify({"error": "unauthorized"}), 401
    return None


@bp.get("/accounts")
def list_accounts():
    return jsonify(get_runtime().accounts.list_accounts())


@bp.post("/accounts")
def upsert_account():
    payload = request.get_json(force=True, silent=True) or {}
    data = AccountRequest(**payload)
    account = get_runtime().accounts.upsert_account(data.address, data.accepts_payments)
    return jsonify(account)


@bp.get("/accounts/<address>")
def get_account(address: str):
    account = get_runtime().accounts.get_account(address)
    if account is None:
        return jsonify({"error": "account not found"}), 404
    return jsonify(account)


@bp.get("/oracle/requests")
def list_oracle_requests():
    coordinator = get_runtime().local_coordinator
    if coordinator is None:
        return jsonify({"error": "local coordinator not enabled; set VRF_MODE=local"}), 400
    return jsonify(
        [
            {
                "request_id": str(pending.request_id),
                "subscription_id": pending.subscription_id,
                "consumer": pending.consumer,
                "num_words": pending.num_words,
            }
            for pending in coordinator.pending_requests()
        ]
    )


@bp.post("/oracle/requests/<int:request_id>/fulfill")
def fulfill_local_request(request_id: int):
    runtime = get_runtime()
    coordinator = runtime.local_coordinator
    if coordinator is None:
        return jsonify({"error": "local coordinator not enabled; set VRF_MODE=local"}), 400

    payload = request.get_json(force=True, silent=True) or {}
    data = LocalFulfillRequest(**payload)
    try:
        result = coordinator.fulfill_random_words(request_id, runtime.fulfillment.deliver, words=data.random_words)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 404
    return jsonify(settlement_response(result))


@bp.post("/settlement/expire")
def expire_settlement():
    stale_id = get_runtime().service.expire_stale_request()
    return jsonify({"expired_request_id": str(stale_id) if stale_id is not None else None})
