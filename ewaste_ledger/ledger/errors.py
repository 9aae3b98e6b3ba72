"""
ledger/errors.py - Error kinds and the result type returned by the ledger layer.

Backends raise BackendError subclasses. LedgerClient is the only place they
are caught; everything above it sees LedgerResult values with a typed kind.
"""
from enum import Enum
from typing import Any, Optional


class ConnectError(str, Enum):
    ENDPOINT_UNREACHABLE            = "EndpointUnreachable"
    CONTRACT_DESCRIPTOR_UNAVAILABLE = "ContractDescriptorUnavailable"


class WriteError(str, Enum):
    ESTIMATION_FAILED = "EstimationFailed"
    REVERTED          = "Reverted"
    NETWORK_TIMEOUT   = "NetworkTimeout"


class ReadError(str, Enum):
    NOT_FOUND       = "NotFound"
    NETWORK_TIMEOUT = "NetworkTimeout"


class RecordError(str, Enum):
    ESTIMATION_FAILED = "EstimationFailed"
    REVERTED          = "Reverted"
    NETWORK_TIMEOUT   = "NetworkTimeout"
    MISSING_SIGNER    = "MissingSigner"
    CHAIN_UNREACHABLE = "ChainUnreachable"

    @classmethod
    def from_write_error(cls, error: WriteError) -> "RecordError":
        return cls(error.value)


class LedgerResult:
    """Outcome of a ledger operation: a value, or an error kind plus detail."""
    __slots__ = ("value", "error", "detail")

    def __init__(self, value: Any = None, error: Optional[Enum] = None,
                 detail: Optional[str] = None):
        self.value = value
        self.error = error
        self.detail = detail

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> "LedgerResult":
        return cls(value=value)

    @classmethod
    def failure(cls, error: Enum, detail: Optional[str] = None) -> "LedgerResult":
        return cls(error=error, detail=detail)

    def __eq__(self, other):
        if not isinstance(other, LedgerResult):
            return NotImplemented
        return (self.value, self.error, self.detail) == (other.value, other.error, other.detail)

    def __repr__(self):
        if self.ok:
            return f"LedgerResult(value={self.value!r})"
        return f"LedgerResult(error={self.error!r}, detail={self.detail!r})"


#  Backend exceptions

class BackendError(Exception):
    pass


class NodeUnreachable(BackendError):
    """Node could not be reached (refused, DNS, bad response)."""


class NodeTimeout(BackendError):
    """Node did not answer within the configured bound."""


class ContractRejected(BackendError):
    """The contract executed and reverted."""


class RecordMissing(BackendError):
    """The contract has no entry for the requested key."""


class DescriptorError(BackendError):
    """The contract interface descriptor could not be fetched or parsed."""
