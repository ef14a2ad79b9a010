from __future__ import annotations

import asyncio
from typing import Any, Dict, Mapping, Optional

import requests

from .config import KeeperSettings
from .types import UpkeepCheck, UpkeepRejected


class RaffleHttpClient:
    """Talks to the raffle backend's upkeep endpoints."""

    def __init__(self, settings: KeeperSettings, session: Optional[requests.Session] = None) -> None:
        self._settings = settings
        self._session = session or requests.Session()

    async def check_upkeep(self) -> UpkeepCheck:
        data = await asyncio.to_thread(
            self._post_json, "/upkeep/check", {"check_data": self._settings.check_data}
        )
        return UpkeepCheck(
            upkeep_needed=bool(data["upkeep_needed"]),
            perform_data=str(data.get("perform_data", "0x")),
        )

    async def perform_upkeep(self, perform_data: str) -> int:
        data = await asyncio.to_thread(self._post_json, "/upkeep/perform", {"perform_data": perform_data})
        return int(data["request_id"])

    async def expire_stale_request(self) -> Optional[int]:
        headers = {"X-Admin-Token": self._settings.admin_token} if self._settings.admin_token else {}
        data = await asyncio.to_thread(self._post_json, "/admin/api/settlement/expire", {}, headers)
        expired = data.get("expired_request_id")
        return int(expired) if expired is not None else None

    async def close(self) -> None:
        self._session.close()

    def _post_json(
        self,
        path: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Mapping[str, Any]:
        resp = self._session.post(
            self._settings.api_url + path,
            json=payload,
            headers=headers or {},
            timeout=self._settings.timeout_seconds,
        )
        if resp.status_code == 400:
            body = resp.json()
            if body.get("error") == "UpkeepNotNeeded":
                raise UpkeepRejected(body)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, Mapping):
            raise ValueError(f"{path} returned non-object payload")
        return data
