from __future__ import annotations

import asyncio
import json
import logging
import pathlib
from dataclasses import dataclass
from typing import Optional, Protocol

from .config import KeeperSettings
from .types import UpkeepCheck, UpkeepRejected


class RaffleClientProtocol(Protocol):
    async def check_upkeep(self) -> UpkeepCheck:
        ...

    async def perform_upkeep(self, perform_data: str) -> int:
        ...

    async def expire_stale_request(self) -> Optional[int]:
        ...

    async def close(self) -> None:
        ...


@dataclass
class UpkeepResult:
    request_id: int
    perform_data: str


class KeeperStateStore:
    """Remembers the last randomness request this keeper triggered."""

    def __init__(self, path: str) -> None:
        self._path = pathlib.Path(path)

    def load_last_request(self) -> Optional[int]:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None
        value = data.get("last_request_id")
        return int(value) if value is not None else None

    def save_last_request(self, request_id: int) -> None:
        payload = {"last_request_id": str(request_id)}
        self._path.write_text(json.dumps(payload), encoding="utf-8")


class UpkeepScheduler:
    def __init__(
        self,
        settings: KeeperSettings,
        client: RaffleClientProtocol,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._state = KeeperStateStore(settings.state_file)
        self._last_request_id = self._state.load_last_request()
        self._logger = logger or logging.getLogger("raffle.keeper")

    @property
    def last_request_id(self) -> Optional[int]:
        return self._last_request_id

    async def run_forever(self) -> None:
        interval = self._settings.poll_interval_seconds
        self._logger.info(
            "Keeper loop started; poll interval=%s last request=%s", interval, self._last_request_id
        )
        while True:
            try:
                result = await self._attempt_upkeep()
                if result is not None and self._settings.run_once:
                    self._logger.info("Run-once flag set; exiting loop.")
                    return
            except Exception as exc:
                self._logger.exception("Keeper iteration failed: %s", exc)
            await asyncio.sleep(interval)

    async def run_once(self) -> Optional[UpkeepResult]:
        try:
            return await self._attempt_upkeep()
        finally:
            await self._client.close()

    async def _attempt_upkeep(self) -> Optional[UpkeepResult]:
        check = await self._client.check_upkeep()
        if not check.upkeep_needed:
            self._logger.debug("Upkeep not needed; waiting.")
            if self._settings.admin_token:
                expired = await self._client.expire_stale_request()
                if expired is not None:
                    self._logger.warning("Backend discarded stale randomness request %s", expired)
            return None

        try:
            request_id = await self._client.perform_upkeep(check.perform_data)
        except UpkeepRejected as exc:
            # Another keeper or an entry changed eligibility between the two calls.
            self._logger.info("performUpkeep rejected: %s", exc.details)
            return None

        self._logger.info("performUpkeep issued randomness request %s", request_id)
        self._last_request_id = request_id
        self._state.save_last_request(request_id)
        return UpkeepResult(request_id=request_id, perform_data=check.perform_data)
