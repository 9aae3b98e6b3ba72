"""
tracking.py - Caller flows around the Verification Service.

Order is always: off-chain write first (durable, authoritative), then the
on-chain write. An anchoring failure is recorded on the off-chain row as
anchor_status=FAILED and returned as an AnchorOutcome; it never turns the
submission itself into a failure and never rolls it back.
"""
import logging
import time
from dataclasses import dataclass
from typing import Optional

from .ledger.errors import LedgerResult
from .schemas import AnchorOutcome, SubmissionIn, SubmissionOut, WasteItemFingerprint
from .status import ItemStatus, to_store_value
from .verification import VerificationService

log = logging.getLogger("ewaste.tracking")


@dataclass
class TrackingReceipt:
    submission: SubmissionOut
    anchor: AnchorOutcome


def to_outcome(subject_id: str, result: LedgerResult) -> AnchorOutcome:
    if result.ok:
        return AnchorOutcome(subject_id=subject_id, anchored=True, tx_hash=result.value)
    return AnchorOutcome(subject_id=subject_id, anchored=False,
                         error=result.error.value, detail=result.detail)


def fingerprint_for(submission: SubmissionOut, now_ms: Optional[int] = None) -> WasteItemFingerprint:
    """Fingerprint of a committed submission. The timestamp is anchor time."""
    return WasteItemFingerprint(
        submission_id=submission.submission_id,
        item_type=submission.item_type,
        weight_kg=submission.weight_kg,
        created_at_epoch_ms=now_ms if now_ms is not None else int(time.time() * 1000),
        owner_id=submission.owner_id,
    )


async def anchor_submission(store, service: VerificationService,
                            submission: SubmissionOut) -> AnchorOutcome:
    result = await service.record_submission(fingerprint_for(submission))
    if result.ok:
        await store.mark_anchored(submission.submission_id, result.value)
    else:
        await store.mark_anchor_failed(submission.submission_id, result.error.value)
    return to_outcome(submission.submission_id, result)


async def track_submission(store, service: VerificationService,
                           body: SubmissionIn) -> TrackingReceipt:
    """Store a new submission, then anchor it. Always returns the stored record."""
    submission = await store.insert_submission(body)
    log.info("submission stored id=%s type=%s weight_kg=%.3f",
             submission.submission_id, submission.item_type, submission.weight_kg)

    outcome = await anchor_submission(store, service, submission)
    if not outcome.anchored:
        log.warning("submission %s kept off-chain only: anchoring %s",
                    submission.submission_id, outcome.error)
    refreshed = await store.get_submission(submission.submission_id) or submission
    return TrackingReceipt(submission=refreshed, anchor=outcome)


async def reanchor(store, service: VerificationService,
                   submission: SubmissionOut) -> AnchorOutcome:
    """Manual re-check: adopt an existing on-chain record, otherwise anchor again.

    A write whose receipt timed out may still have been mined; sending it
    again would revert on the duplicate id, so the chain is asked first.
    """
    history = await service.fetch_history(submission.submission_id)
    if history.available:
        tx_hash = history.records[0].transaction_hash
        await store.mark_anchored(submission.submission_id, tx_hash)
        return AnchorOutcome(subject_id=submission.submission_id, anchored=True,
                             tx_hash=tx_hash, detail="already on-chain")
    return await anchor_submission(store, service, submission)


async def reanchor_unanchored(store, service: VerificationService,
                              limit: int = 100) -> list[AnchorOutcome]:
    pending = await store.list_unanchored(limit=limit)
    outcomes = []
    for submission in pending:
        outcomes.append(await reanchor(store, service, submission))
    done = sum(1 for o in outcomes if o.anchored)
    log.info("re-anchor pass: %d/%d anchored", done, len(outcomes))
    return outcomes


async def advance_status(store, service: VerificationService, submission_id: str,
                         status: ItemStatus):
    """Update the off-chain status, then append the transition on-chain.

    Returns (submission, outcome); (None, None) for an unknown id.
    """
    updated = await store.update_status(submission_id, to_store_value(status))
    if updated is None:
        return None, None
    result = await service.update_status(submission_id, status)
    return updated, to_outcome(submission_id, result)
