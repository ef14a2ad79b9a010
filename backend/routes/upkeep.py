from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..schemas import (
    CheckUpkeepRequest,
    CheckUpkeepResponse,
    PerformUpkeepRequest,
    PerformUpkeepResponse,
)
from .raffle import get_runtime

bp = Blueprint("upkeep", __name__)


@bp.post("/check")
def check_upkeep():
    payload = request.get_json(force=True, silent=True) or {}
    data = CheckUpkeepRequest(**payload)

    upkeep_needed, perform_data = get_runtime().service.check_upkeep(bytes.fromhex(data.check_data[2:]))
    response = CheckUpkeepResponse(upkeep_needed=upkeep_needed, perform_data="0x" + perform_data.hex())
    return jsonify(response.model_dump())


@bp.post("/perform")
def perform_upkeep():
    payload = request.get_json(force=True, silent=True) or {}
    data = PerformUpkeepRequest(**payload)

    request_id = get_runtime().service.perform_upkeep(bytes.fromhex(data.perform_data[2:]))
    current_app.logger.info("performUpkeep issued randomness request %s", request_id)
    return jsonify(PerformUpkeepResponse(request_id=str(request_id)).model_dump())
