"""
status.py - Canonical item lifecycle status.

The off-chain store keeps human strings ("Pending", "In Progress",
"Completed"); the contract keeps integer codes 0/1/2. Both go through
ItemStatus so the two encodings cannot drift apart.
"""
from enum import Enum


class ItemStatus(str, Enum):
    PENDING     = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED   = "Completed"
    UNKNOWN     = "Unknown"


# Index == on-chain status code.
_CHAIN_CODES = (ItemStatus.PENDING, ItemStatus.IN_PROGRESS, ItemStatus.COMPLETED)

_STORE_VALUES = {
    ItemStatus.PENDING:     "Pending",
    ItemStatus.IN_PROGRESS: "In Progress",
    ItemStatus.COMPLETED:   "Completed",
}


def from_chain_code(code) -> ItemStatus:
    """Map a raw contract status code. Anything outside 0..2 is UNKNOWN."""
    try:
        idx = int(code)
    except (TypeError, ValueError):
        return ItemStatus.UNKNOWN
    if 0 <= idx < len(_CHAIN_CODES):
        return _CHAIN_CODES[idx]
    return ItemStatus.UNKNOWN


def to_chain_code(status: ItemStatus) -> int:
    if status not in _CHAIN_CODES:
        raise ValueError(f"status {status.value!r} has no on-chain code")
    return _CHAIN_CODES.index(status)


def from_store_value(value: str) -> ItemStatus:
    for status, stored in _STORE_VALUES.items():
        if value == stored:
            return status
    return ItemStatus.UNKNOWN


def to_store_value(status: ItemStatus) -> str:
    if status not in _STORE_VALUES:
        raise ValueError(f"status {status.value!r} cannot be stored")
    return _STORE_VALUES[status]
