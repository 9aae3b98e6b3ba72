"""
verification.py - Verification Service.

The only component the rest of the application talks to. It hides chain
mechanics behind display-friendly results and implements the degrade policy:

  contract has no record yet     -> Unavailable(NotYetAnchored)   caller may poll
  node unreachable / timeout     -> Unavailable(ChainUnreachable) caller may poll
  gas estimation fails           -> RecordError.ESTIMATION_FAILED  not retried
  write reverts                  -> RecordError.REVERTED           not retried
  no signer configured           -> RecordError.MISSING_SIGNER
  ledger cannot be initialised   -> RecordError.CHAIN_UNREACHABLE

Writes are fire-and-forget with respect to the caller's critical path: the
off-chain record already exists and stays valid whatever happens here. A
failure is logged and returned so the caller can surface a soft warning.
There is no retry or backoff in this layer; fetch_history is idempotent and
side-effect free, so callers poll it themselves.

Per-key write ordering is the caller's responsibility. Two concurrent
status-advancing writes for one submission are not serialised here.
"""
import logging
import time
from dataclasses import dataclass
from typing import Optional

from .ledger.client import LedgerClient
from .ledger.errors import LedgerResult, ReadError, RecordError
from .metrics import MetricsCollector
from .schemas import (
    LedgerTransactionRecord, ReconciliationResult, ReconciliationVerdict,
    SubmissionOut, UnavailableReason, UNAVAILABLE_MESSAGES, VendorCertification,
    VendorCertificationResult, VerificationResult, WasteItemFingerprint, WEIGHT_SCALE,
)
from .status import ItemStatus, from_chain_code, from_store_value, to_chain_code

log = logging.getLogger("ewaste.verification")

RECORD_METHOD      = "recordWasteItem"
STATUS_METHOD      = "updateStatus"
HISTORY_METHOD     = "getWasteItemHistory"
VENDOR_METHOD      = "verifyVendor"
VENDOR_READ_METHOD = "getVendorCertifications"

RECORDED_EVENT = "WasteItemRecorded"
STATUS_EVENT   = "WasteItemStatusUpdated"
ITEM_ID_ARG    = "itemId"


@dataclass(frozen=True)
class HistorySnapshot:
    """Decoded getWasteItemHistory return value (current on-chain state)."""
    item_type: str
    weight_grams: int
    timestamp: int
    status: ItemStatus
    handlers: tuple


def decode_snapshot(raw) -> HistorySnapshot:
    """Decode (itemType, weight, timestamp, statusCode, handlers[]).

    Unknown status codes decode to ItemStatus.UNKNOWN. A structurally
    malformed value raises ValueError.
    """
    try:
        item_type, weight, timestamp, code, handlers = raw
        return HistorySnapshot(
            item_type=str(item_type),
            weight_grams=int(weight),
            timestamp=int(timestamp),
            status=from_chain_code(code),
            handlers=tuple(handlers or ()),
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(f"malformed history value {raw!r}") from exc


def records_from_events(entries) -> list[LedgerTransactionRecord]:
    """Oldest-first transaction records from one submission's events.

    The entries come from scans filtered on the indexed item id; on a real
    node the decoded id is only its hash, so it is not compared here.
    """
    records = []
    for e in sorted(entries, key=lambda e: (e.block_number, e.log_index)):
        if e.event == RECORDED_EVENT:
            status = ItemStatus.PENDING
        else:
            status = from_chain_code(e.args.get("status"))
        records.append(LedgerTransactionRecord(
            transaction_hash=e.transaction_hash,
            timestamp_epoch_sec=e.block_timestamp,
            status=status,
        ))
    return records


class VerificationService:
    def __init__(self, ledger: LedgerClient, signer=None,
                 metrics: Optional[MetricsCollector] = None):
        self._ledger = ledger
        self._signer = signer
        self._metrics = metrics

    @property
    def can_write(self) -> bool:
        return self._signer is not None

    def _observe(self, operation: str, subject_id: str, t0: float,
                 success: bool, outcome: Optional[str]):
        if self._metrics is not None:
            self._metrics.record(operation, subject_id,
                                 (time.monotonic() - t0) * 1000, success, outcome)

    #  Writes

    async def _write(self, operation: str, subject_id: str,
                     method: str, args: list) -> LedgerResult:
        t0 = time.monotonic()
        if self._signer is None:
            result = LedgerResult.failure(RecordError.MISSING_SIGNER,
                                          "no signer key configured")
        else:
            init = await self._ledger.initialize()
            if not init.ok:
                result = LedgerResult.failure(RecordError.CHAIN_UNREACHABLE, init.detail)
            else:
                sent = await self._ledger.submit_write(method, args, self._signer)
                if sent.ok:
                    result = LedgerResult.success(sent.value)
                else:
                    result = LedgerResult.failure(RecordError.from_write_error(sent.error),
                                                  sent.detail)

        if result.ok:
            log.info("%s anchored subject=%s tx=%s", operation, subject_id, result.value)
        else:
            log.warning("%s not anchored subject=%s error=%s detail=%s",
                        operation, subject_id, result.error.value, result.detail)
        self._observe(operation, subject_id, t0, result.ok,
                      None if result.ok else result.error.value)
        return result

    async def record_submission(self, fingerprint: WasteItemFingerprint) -> LedgerResult:
        """Anchor a fingerprint. Returns the tx hash or a RecordError kind."""
        return await self._write("record_submission", fingerprint.submission_id,
                                 RECORD_METHOD, fingerprint.contract_args())

    async def update_status(self, submission_id: str, status: ItemStatus) -> LedgerResult:
        """Append a status transition. The earlier records are never touched."""
        code = to_chain_code(status)
        return await self._write("update_status", submission_id,
                                 STATUS_METHOD, [submission_id, code])

    async def verify_vendor(self, vendor_id: str, certifications: list[str]) -> LedgerResult:
        cert = VendorCertification(vendor_id=vendor_id, certifications=certifications)
        return await self._write("verify_vendor", cert.vendor_id,
                                 VENDOR_METHOD, [cert.vendor_id, cert.certifications])

    #  Reads

    async def _snapshot(self, submission_id: str):
        """Return (snapshot, None) or (None, UnavailableReason)."""
        res = await self._ledger.call(HISTORY_METHOD, [submission_id])
        if not res.ok:
            if res.error == ReadError.NOT_FOUND:
                return None, UnavailableReason.NOT_YET_ANCHORED
            return None, UnavailableReason.CHAIN_UNREACHABLE
        try:
            return decode_snapshot(res.value), None
        except ValueError as exc:
            log.warning("history for %s could not be decoded: %s", submission_id, exc)
            return None, UnavailableReason.CHAIN_UNREACHABLE

    async def fetch_history(self, submission_id: str) -> VerificationResult:
        """Full on-chain history for a submission, or an unavailable marker."""
        t0 = time.monotonic()
        result = await self._fetch_history(submission_id)
        outcome = "verified" if result.available else result.unavailable.value
        if not result.available:
            log.info("history unavailable submission=%s reason=%s",
                     submission_id, result.unavailable.value)
        self._observe("fetch_history", submission_id, t0, result.available, outcome)
        return result

    async def _fetch_history(self, submission_id: str) -> VerificationResult:
        _, reason = await self._snapshot(submission_id)
        if reason is not None:
            return VerificationResult.not_available(submission_id, reason)

        entries = []
        for event_name in (RECORDED_EVENT, STATUS_EVENT):
            res = await self._ledger.get_events(
                event_name, filters={ITEM_ID_ARG: submission_id})
            if not res.ok:
                return VerificationResult.not_available(
                    submission_id, UnavailableReason.CHAIN_UNREACHABLE)
            entries.extend(res.value)

        records = records_from_events(entries)
        if not records:
            # Snapshot exists but the node has not indexed its logs yet.
            return VerificationResult.not_available(
                submission_id, UnavailableReason.NOT_YET_ANCHORED)
        return VerificationResult.verified(submission_id, records)

    async def fetch_vendor_certification(self, vendor_id: str) -> VendorCertificationResult:
        t0 = time.monotonic()
        res = await self._ledger.call(VENDOR_READ_METHOD, [vendor_id])
        reason = None
        cert = None
        if not res.ok:
            reason = (UnavailableReason.NOT_YET_ANCHORED if res.error == ReadError.NOT_FOUND
                      else UnavailableReason.CHAIN_UNREACHABLE)
        else:
            try:
                certs, ts, verified = res.value
                if verified and certs:
                    cert = VendorCertification(vendor_id=vendor_id,
                                               certifications=list(certs),
                                               verified_at_epoch_sec=int(ts))
                else:
                    reason = UnavailableReason.NOT_YET_ANCHORED
            except (TypeError, ValueError) as exc:
                log.warning("vendor record for %s could not be decoded: %s", vendor_id, exc)
                reason = UnavailableReason.CHAIN_UNREACHABLE

        self._observe("fetch_vendor_certification", vendor_id, t0, cert is not None,
                      "verified" if cert else reason.value)
        if cert is not None:
            return VendorCertificationResult(vendor_id=vendor_id, certification=cert)
        return VendorCertificationResult(vendor_id=vendor_id, unavailable=reason,
                                         message=UNAVAILABLE_MESSAGES[reason])

    async def reconcile(self, submission: SubmissionOut) -> ReconciliationResult:
        """Compare the off-chain record with what the chain attests.

        Item type and weight are immutable once anchored, so any difference is
        a MISMATCH. Status is advanced independently on both sides; a
        difference there is reported but does not change the verdict.
        """
        sid = submission.submission_id
        off_status = from_store_value(submission.status)
        snapshot, reason = await self._snapshot(sid)
        if reason == UnavailableReason.NOT_YET_ANCHORED:
            return ReconciliationResult(
                submission_id=sid, verdict=ReconciliationVerdict.NOT_ANCHORED,
                reason="No on-chain fingerprint for this submission",
                off_chain_status=off_status,
            )
        if reason is not None:
            return ReconciliationResult(
                submission_id=sid, verdict=ReconciliationVerdict.UNREACHABLE,
                reason="Ledger unreachable - reconciliation deferred",
                off_chain_status=off_status,
            )

        mismatches = []
        if snapshot.item_type != submission.item_type:
            mismatches.append(
                f"item_type: off-chain={submission.item_type!r} on-chain={snapshot.item_type!r}")
        expected_grams = int(round(submission.weight_kg * WEIGHT_SCALE))
        if snapshot.weight_grams != expected_grams:
            mismatches.append(
                f"weight_grams: off-chain={expected_grams} on-chain={snapshot.weight_grams}")

        if mismatches:
            verdict = ReconciliationVerdict.MISMATCH
            reason_text = f"{len(mismatches)} anchored field(s) differ from the off-chain record"
            log.warning("reconciliation mismatch submission=%s %s", sid, "; ".join(mismatches))
        else:
            verdict = ReconciliationVerdict.MATCH
            reason_text = "Anchored fingerprint matches the off-chain record"
            if snapshot.status != off_status:
                reason_text += (f" (status lag: off-chain={off_status.value}"
                                f" on-chain={snapshot.status.value})")

        return ReconciliationResult(
            submission_id=sid, verdict=verdict, reason=reason_text,
            mismatches=mismatches, on_chain_status=snapshot.status,
            off_chain_status=off_status,
        )
