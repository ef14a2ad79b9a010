from __future__ import annotations

from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator
from web3 import Web3


def _checksum(value: str) -> str:
    if not Web3.is_address(value):
        raise ValueError("Not a valid address.")
    return Web3.to_checksum_address(value)


def _hex_bytes(value: Optional[str]) -> str:
    if value in (None, ""):
        return "0x"
    if not value.startswith("0x"):
        raise ValueError("Hex data must start with 0x.")
    try:
        bytes.fromhex(value[2:])
    except ValueError as exc:
        raise ValueError("Invalid hex data.") from exc
    return value


def _uint(value: Union[int, str]) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValueError("Value must be an integer or a decimal string.")
    try:
        number = int(value)
    except ValueError as exc:
        raise ValueError("Value must be an integer or a decimal string.") from exc
    if number < 0:
        raise ValueError("Value must be non-negative.")
    return number


class EnterRaffleRequest(BaseModel):
    participant: str = Field(..., description="Entrant address.")
    value: int = Field(..., description="Amount paid, in wei.")

    @field_validator("participant")
    @classmethod
    def validate_participant(cls, value: str) -> str:
        return _checksum(value)

    @field_validator("value", mode="before")
    @classmethod
    def validate_value(cls, value: Union[int, str]) -> int:
        return _uint(value)


class EnterRaffleResponse(BaseModel):
    participant: str
    entrant_index: int
    fee_paid: str
    pool_balance: str


class CheckUpkeepRequest(BaseModel):
    check_data: str = "0x"

    @field_validator("check_data", mode="before")
    @classmethod
    def validate_check_data(cls, value: Optional[str]) -> str:
        return _hex_bytes(value)


class CheckUpkeepResponse(BaseModel):
    upkeep_needed: bool
    perform_data: str


class PerformUpkeepRequest(BaseModel):
    perform_data: str = "0x"

    @field_validator("perform_data", mode="before")
    @classmethod
    def validate_perform_data(cls, value: Optional[str]) -> str:
        return _hex_bytes(value)


class PerformUpkeepResponse(BaseModel):
    request_id: str


class FulfillRandomWordsRequest(BaseModel):
    request_id: int
    random_words: List[int] = Field(..., min_length=1)

    @field_validator("request_id", mode="before")
    @classmethod
    def validate_request_id(cls, value: Union[int, str]) -> int:
        return _uint(value)

    @field_validator("random_words", mode="before")
    @classmethod
    def validate_random_words(cls, value: List[Union[int, str]]) -> List[int]:
        if not isinstance(value, list):
            raise ValueError("random_words must be a list.")
        return [_uint(word) for word in value]


class LocalFulfillRequest(BaseModel):
    random_words: Optional[List[int]] = Field(None, min_length=1)

    @field_validator("random_words", mode="before")
    @classmethod
    def validate_random_words(cls, value: Optional[List[Union[int, str]]]) -> Optional[List[int]]:
        if value is None:
            return None
        if not isinstance(value, list):
            raise ValueError("random_words must be a list.")
        return [_uint(word) for word in value]


class SettlementResponse(BaseModel):
    request_id: str
    winner: str
    winner_index: int
    prize: str
    transfer_reference: Optional[str] = None


class AccountRequest(BaseModel):
    address: str
    accepts_payments: bool = True

    @field_validator("address")
    @classmethod
    def validate_address(cls, value: str) -> str:
        return _checksum(value)
