"""Credit ledger value types, outcomes and errors."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional, Union


class ActionId(str, Enum):
    """Billable AI actions."""

    PHOTO = "foto"
    VIDEO = "video"
    SCRIPT = "roteiro"
    PROMPTS = "prompts"
    VANGOGH = "vangogh"


_ACTION_ALIASES: Dict[str, ActionId] = {
    "photo": ActionId.PHOTO,
    "script": ActionId.SCRIPT,
}


def parse_action_id(value: Any) -> Optional[ActionId]:
    """Map a raw action identifier onto ``ActionId``; ``None`` when unknown."""
    if isinstance(value, ActionId):
        return value
    if not isinstance(value, str):
        return None
    token = value.strip().lower()
    if not token:
        return None
    if token in _ACTION_ALIASES:
        return _ACTION_ALIASES[token]
    try:
        return ActionId(token)
    except ValueError:
        return None


# Balances and lots are stored in 32-bit integer columns.
MAX_CREDIT_AMOUNT = 2**31 - 1


class LedgerError(RuntimeError):
    """Base class for ledger storage failures."""


class DuplicatePeriod(LedgerError):
    """A concurrent creator already inserted the monthly balance row."""


class StorageUnavailable(LedgerError):
    """The ledger store could not complete the operation."""


@dataclass(frozen=True)
class BalanceRow:
    id: str
    user_id: str
    usage_count: int
    period_start: date
    period_end: date


@dataclass(frozen=True)
class DeductSuccess:
    balance: int
    charged: int
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class InsufficientCredits:
    balance: int
    required: int
    ok: bool = field(default=False, init=False)
    code: str = field(default="insufficient_credits", init=False)


@dataclass(frozen=True)
class UnknownAction:
    action: Any
    ok: bool = field(default=False, init=False)
    code: str = field(default="invalid_action", init=False)


DecrementResult = Union[DeductSuccess, InsufficientCredits]
DeductResult = Union[DeductSuccess, InsufficientCredits, UnknownAction]


@dataclass(frozen=True)
class BalanceView:
    total: int
    monthly: int
    purchased: int
    period_start: date
    period_end: date
    cost_by_action: Dict[str, int]
    config: Optional[Dict[str, Any]] = None
