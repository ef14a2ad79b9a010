from __future__ import annotations

from functools import lru_cache

from flask import Blueprint, jsonify, request

from ..config import load_settings
from ..db import session_scope
from ..schemas import EnterRaffleRequest, EnterRaffleResponse
from ..services.factory import RaffleRuntime, build_runtime

bp = Blueprint("raffle", __name__)


@lru_cache(maxsize=1)
def get_runtime() -> RaffleRuntime:
    return build_runtime(load_settings(), session_scope)


@bp.get("")
def get_summary():
    return jsonify(get_runtime().service.summary())


@bp.post("/enter")
def enter_raffle():
    payload = request.get_json(force=True, silent=True) or {}
    data = EnterRaffleRequest(**payload)

    receipt = get_runtime().service.enter(data.participant, data.value)
    response = EnterRaffleResponse(
        participant=receipt.participant,
        entrant_index=receipt.entrant_index,
        fee_paid=str(receipt.fee_paid),
        pool_balance=str(receipt.pool_balance),
    )
    return jsonify(response.model_dump()), 201


@bp.get("/entrance-fee")
def get_entrance_fee():
    return jsonify({"entrance_fee": str(get_runtime().service.get_entrance_fee())})


@bp.get("/state")
def get_raffle_state():
    state = get_runtime().service.get_raffle_state()
    return jsonify({"state": int(state), "name": state.name})


@bp.get("/players")
def list_players():
    return jsonify(get_runtime().service.get_players())


@bp.get("/players/count")
def get_number_of_players():
    return jsonify({"number_of_players": get_runtime().service.get_number_of_players()})


@bp.get("/players/<int:index>")
def get_player(index: int):
    return jsonify({"index": index, "player": get_runtime().service.get_player(index)})


@bp.get("/last-timestamp")
def get_last_timestamp():
    return jsonify({"last_timestamp": get_runtime().service.get_last_timestamp()})


@bp.get("/recent-winner")
def get_recent_winner():
    return jsonify({"recent_winner": get_runtime().service.get_recent_winner()})


@bp.get("/events")
def list_events():
    limit = request.args.get("limit", type=int)
    name = request.args.get("name")
    return jsonify(get_runtime().service.list_events(limit=limit, name=name))
