from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class UpkeepCheck:
    upkeep_needed: bool
    perform_data: str = "0x"


class UpkeepRejected(RuntimeError):
    """performUpkeep refused because eligibility no longer holds."""

    def __init__(self, details: Dict[str, Any]) -> None:
        self.details = details
        super().__init__(f"Upkeep not needed: {details}")
