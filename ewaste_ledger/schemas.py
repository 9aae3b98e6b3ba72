"""
schemas.py - Data contracts for anchoring and verification.

WasteItemFingerprint is the compact subset of a submission anchored
on-chain. It is built entirely from data already committed to the
off-chain store; the store stays the source of truth.

VerificationResult is the only shape the display surface ever receives:
either a non-empty, oldest-first list of mined records, or an explicit
unavailable marker with a reason. Never both, never neither.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .status import ItemStatus

SCHEMA_VERSION = "1.0"

# Weights are anchored as integer grams.
WEIGHT_SCALE = 1000


class WasteItemFingerprint(BaseModel):
    submission_id:      str   = Field(..., min_length=1, max_length=128)
    item_type:          str   = Field(..., min_length=1, max_length=64)
    weight_kg:          float = Field(..., ge=0)
    created_at_epoch_ms: int  = Field(..., ge=0,
                                      description="Set by the writer at anchor time")
    owner_id:           str   = Field(..., min_length=1, max_length=128)

    model_config = {"frozen": True}

    @property
    def weight_grams(self) -> int:
        return int(round(self.weight_kg * WEIGHT_SCALE))

    def contract_args(self) -> list:
        """Arguments for recordWasteItem(id, itemType, weight, timestamp, userId)."""
        return [self.submission_id, self.item_type, self.weight_grams,
                self.created_at_epoch_ms, self.owner_id]


class LedgerTransactionRecord(BaseModel):
    transaction_hash:  str
    timestamp_epoch_sec: int = Field(..., description="Block inclusion time")
    status:            ItemStatus

    model_config = {"frozen": True}


class UnavailableReason(str, Enum):
    NOT_YET_ANCHORED  = "NotYetAnchored"
    CHAIN_UNREACHABLE = "ChainUnreachable"


UNAVAILABLE_MESSAGES = {
    UnavailableReason.NOT_YET_ANCHORED: (
        "Blockchain verification pending. Your submission has been recorded "
        "successfully - check again later."
    ),
    UnavailableReason.CHAIN_UNREACHABLE: (
        "The verification network cannot be reached right now. Your submission "
        "is safely recorded; anchoring will be confirmed once it is back."
    ),
}


class VerificationResult(BaseModel):
    submission_id: str
    records:       list[LedgerTransactionRecord] = Field(default_factory=list)
    unavailable:   Optional[UnavailableReason] = None
    message:       Optional[str] = None

    @model_validator(mode="after")
    def _whole_or_unavailable(self):
        if self.unavailable is None and not self.records:
            raise ValueError("a verification result needs records or an unavailable reason")
        if self.unavailable is not None and self.records:
            raise ValueError("an unavailable result cannot carry records")
        return self

    @property
    def available(self) -> bool:
        return self.unavailable is None

    @classmethod
    def verified(cls, submission_id: str,
                 records: list[LedgerTransactionRecord]) -> "VerificationResult":
        return cls(submission_id=submission_id, records=records)

    @classmethod
    def not_available(cls, submission_id: str,
                      reason: UnavailableReason) -> "VerificationResult":
        return cls(submission_id=submission_id, unavailable=reason,
                   message=UNAVAILABLE_MESSAGES[reason])


class VendorCertification(BaseModel):
    vendor_id:      str       = Field(..., min_length=1, max_length=128)
    certifications: list[str] = Field(..., min_length=1)
    verified_at_epoch_sec: Optional[int] = None

    @field_validator("certifications")
    @classmethod
    def _non_blank(cls, v: list[str]) -> list[str]:
        cleaned = [c.strip() for c in v]
        if any(not c for c in cleaned):
            raise ValueError("certification identifiers must not be blank")
        return cleaned


class VendorCertificationResult(BaseModel):
    vendor_id:     str
    certification: Optional[VendorCertification] = None
    unavailable:   Optional[UnavailableReason] = None
    message:       Optional[str] = None


class ReconciliationVerdict(str, Enum):
    MATCH        = "MATCH"
    MISMATCH     = "MISMATCH"
    NOT_ANCHORED = "NOT_ANCHORED"
    UNREACHABLE  = "UNREACHABLE"


class ReconciliationResult(BaseModel):
    """Off-chain record compared with the on-chain snapshot."""
    submission_id: str
    verdict:       ReconciliationVerdict
    reason:        str
    mismatches:    list[str] = Field(default_factory=list)
    on_chain_status: Optional[ItemStatus] = None
    off_chain_status: Optional[ItemStatus] = None


#  HTTP surface

class SubmissionIn(BaseModel):
    """Input for POST /submissions."""
    item_type: str   = Field(..., min_length=1, max_length=64)
    weight_kg: float = Field(..., gt=0)
    location:  str   = Field(..., min_length=1, max_length=256)
    owner_id:  str   = Field(..., min_length=1, max_length=128)


class AnchorStatus(str, Enum):
    PENDING  = "PENDING"
    ANCHORED = "ANCHORED"
    FAILED   = "FAILED"


class SubmissionOut(BaseModel):
    """Off-chain submission record as held by the store."""
    submission_id: str
    item_type:     str
    weight_kg:     float
    location:      str
    owner_id:      str
    status:        str = "Pending"
    created_at:    str
    anchor_status: AnchorStatus = AnchorStatus.PENDING
    anchor_tx_hash: Optional[str] = None
    anchor_error:  Optional[str] = None


class StatusUpdateIn(BaseModel):
    status: str = Field(..., description='Store value: "Pending" | "In Progress" | "Completed"')


class AnchorOutcome(BaseModel):
    """Result of a ledger write as reported to callers. Failure is informational."""
    subject_id: str
    anchored:   bool
    tx_hash:    Optional[str] = None
    error:      Optional[str] = None
    detail:     Optional[str] = None


class VendorVerifyIn(BaseModel):
    certifications: list[str] = Field(..., min_length=1)
