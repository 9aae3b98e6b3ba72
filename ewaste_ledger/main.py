"""
main.py - E-waste verification REST API.

Architecture position: sits between the tracking UI and the ledger.
  UI -> POST /submissions -> store (authoritative) -> background anchor on-chain
  UI -> GET /submissions/{id}/verification -> on-chain history or "unavailable"

One LedgerClient and one VerificationService are built at startup and kept
on app.state; every request shares them. Shutdown closes the connection.

Role enforcement via X-Role header: user | vendor | admin.
"""
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from . import __version__
from .config import Settings
from .ledger.client import LedgerClient
from .ledger.signer import load_signer
from .metrics import MetricsCollector
from .roles import Role, describe_roles, require
from .schemas import (
    SCHEMA_VERSION, AnchorOutcome, ReconciliationResult, StatusUpdateIn,
    SubmissionIn, SubmissionOut, VendorCertificationResult, VendorVerifyIn,
    VerificationResult,
)
from .status import ItemStatus, from_store_value
from .store import make_store
from .tracking import (
    advance_status, anchor_submission, reanchor, reanchor_unanchored, to_outcome,
)
from .verification import VerificationService

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
log = logging.getLogger("ewaste.gateway")


def create_app(settings: Optional[Settings] = None, ledger: Optional[LedgerClient] = None,
               store=None) -> FastAPI:
    """Build the API. Tests inject a stub-backed ledger and an in-memory store."""
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings
        app.state.metrics = MetricsCollector()
        app.state.ledger = ledger or LedgerClient(settings)
        app.state.store = store or make_store(settings.database_url)
        app.state.service = VerificationService(
            app.state.ledger,
            signer=load_signer(settings.signer_private_key),
            metrics=app.state.metrics,
        )
        await app.state.store.init()

        # Connect eagerly, but a down node must not stop the API from serving.
        init = await app.state.ledger.initialize()
        if not init.ok:
            log.warning("ledger not ready at startup (%s): %s", init.error.value, init.detail)
        log.info("verification API started - backend=%s env=%s writes=%s",
                 settings.backend, settings.environment, app.state.service.can_write)
        yield
        await app.state.ledger.shutdown()
        await app.state.store.close()

    app = FastAPI(
        title="E-Waste Verification API",
        description=(
            "Anchors e-waste submissions on a blockchain ledger and serves their "
            "verified history.\n\n"
            "**Flow**: submission -> off-chain store -> on-chain fingerprint\n\n"
            "**Roles** (X-Role header): `user` | `vendor` | `admin`"
        ),
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(CORSMiddleware, allow_origins=["*"],
                       allow_methods=["*"], allow_headers=["*"])
    _register_routes(app)
    return app


def get_service(request: Request) -> VerificationService:
    return request.app.state.service


def get_store(request: Request):
    return request.app.state.store


async def _submission_or_404(store, submission_id: str) -> SubmissionOut:
    submission = await store.get_submission(submission_id)
    if submission is None:
        raise HTTPException(404, detail=f"Submission {submission_id} not found")
    return submission


def _register_routes(app: FastAPI):

    #  System endpoints

    @app.get("/health", tags=["system"])
    async def health(request: Request):
        ledger: LedgerClient = request.app.state.ledger
        return {
            "status": "ok",
            "schema_version": SCHEMA_VERSION,
            "ledger_connected": await ledger.check_connectivity(),
            "ledger": ledger.describe(),
            "writes_enabled": request.app.state.service.can_write,
            "environment": request.app.state.settings.environment,
        }

    @app.get("/roles", tags=["system"])
    async def list_roles():
        return describe_roles()

    @app.get("/metrics", tags=["system"],
             dependencies=[Depends(require("read_metrics"))])
    async def metrics(request: Request, recent: int = 0):
        collector: MetricsCollector = request.app.state.metrics
        body = collector.summary()
        if recent > 0:
            body["recent"] = collector.recent(recent)
        return body

    #  Submissions

    @app.post("/submissions", tags=["submissions"], status_code=201,
              response_model=SubmissionOut)
    async def create_submission(
        body: SubmissionIn,
        background: BackgroundTasks,
        role: Role = Depends(require("submit")),
        store=Depends(get_store),
        service: VerificationService = Depends(get_service),
    ):
        """Store the submission and schedule its on-chain anchoring.

        The response only reflects the off-chain write. Anchoring runs after
        the response is sent; its outcome lands in anchor_status.
        """
        submission = await store.insert_submission(body)
        background.add_task(anchor_submission, store, service, submission)
        log.info("submission accepted id=%s type=%s role=%s",
                 submission.submission_id, submission.item_type, role.value)
        return submission

    @app.get("/submissions/{submission_id}", tags=["submissions"],
             response_model=SubmissionOut,
             dependencies=[Depends(require("read_submission"))])
    async def get_submission(submission_id: str, store=Depends(get_store)):
        return await _submission_or_404(store, submission_id)

    @app.post("/submissions/{submission_id}/anchor", tags=["submissions"],
              response_model=AnchorOutcome,
              dependencies=[Depends(require("reanchor"))])
    async def anchor_again(submission_id: str, store=Depends(get_store),
                           service: VerificationService = Depends(get_service)):
        """Manual re-check affordance for a submission that is not anchored yet."""
        submission = await _submission_or_404(store, submission_id)
        return await reanchor(store, service, submission)

    @app.patch("/submissions/{submission_id}/status", tags=["submissions"],
               dependencies=[Depends(require("update_status"))])
    async def update_status(submission_id: str, body: StatusUpdateIn,
                            store=Depends(get_store),
                            service: VerificationService = Depends(get_service)):
        status = from_store_value(body.status)
        if status == ItemStatus.UNKNOWN:
            raise HTTPException(422, detail=f"Unknown status {body.status!r}")
        submission, outcome = await advance_status(store, service, submission_id, status)
        if submission is None:
            raise HTTPException(404, detail=f"Submission {submission_id} not found")
        return {"submission": submission, "anchor": outcome}

    @app.post("/anchoring/retry", tags=["submissions"],
              response_model=list[AnchorOutcome],
              dependencies=[Depends(require("reanchor_all"))])
    async def retry_unanchored(limit: int = 100, store=Depends(get_store),
                               service: VerificationService = Depends(get_service)):
        """Re-check every submission that is not anchored yet, oldest first."""
        return await reanchor_unanchored(store, service, limit=limit)

    #  Verification (display surface)

    @app.get("/submissions/{submission_id}/verification", tags=["verification"],
             response_model=VerificationResult,
             dependencies=[Depends(require("read_verification"))])
    async def verification(submission_id: str,
                           service: VerificationService = Depends(get_service)):
        """On-chain history, or an explicit unavailable reason. Never an error."""
        return await service.fetch_history(submission_id)

    @app.get("/submissions/{submission_id}/reconciliation", tags=["verification"],
             response_model=ReconciliationResult,
             dependencies=[Depends(require("reconcile"))])
    async def reconciliation(submission_id: str, store=Depends(get_store),
                             service: VerificationService = Depends(get_service)):
        submission = await _submission_or_404(store, submission_id)
        return await service.reconcile(submission)

    #  Vendors

    @app.post("/vendors/{vendor_id}/certifications", tags=["vendors"],
              response_model=AnchorOutcome,
              dependencies=[Depends(require("verify_vendor"))])
    async def verify_vendor(vendor_id: str, body: VendorVerifyIn,
                            service: VerificationService = Depends(get_service)):
        try:
            result = await service.verify_vendor(vendor_id, body.certifications)
        except ValidationError as exc:
            raise HTTPException(422, detail=str(exc))
        return to_outcome(vendor_id, result)

    @app.get("/vendors/{vendor_id}/certifications", tags=["vendors"],
             response_model=VendorCertificationResult,
             dependencies=[Depends(require("read_vendor"))])
    async def vendor_certifications(vendor_id: str,
                                    service: VerificationService = Depends(get_service)):
        return await service.fetch_vendor_certification(vendor_id)


# uvicorn ewaste_ledger.main:app
app = create_app()
