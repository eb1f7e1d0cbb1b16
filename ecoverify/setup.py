# -*- coding: utf-8 -*-
"""
Verification Service Setup

Provides ``configure_verification_service(app)`` which wires up the
verification engine (repository, evidence store, methodology registry,
evidence pipeline, orchestrator, provenance tracker) and mounts the REST
API.

Also exposes ``get_verification_service()`` for programmatic access and
the ``VerificationService`` facade class.

Usage:
    >>> from fastapi import FastAPI
    >>> from ecoverify.setup import configure_verification_service
    >>> app = FastAPI()
    >>> import asyncio
    >>> service = asyncio.run(configure_verification_service(app))
"""

from __future__ import annotations

import base64
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from ecoverify.config import VerificationConfig, get_config
from ecoverify.evidence_store import (
    EvidenceStore,
    InMemoryEvidenceStore,
    IPFSEvidenceStore,
)
from ecoverify.exceptions import (
    ConfigurationError,
    DuplicateMethodologyError,
    DuplicateVerificationError,
    NotFoundError,
    VerificationException,
)
from ecoverify.methodologies.registry import (
    MethodologyRegistry,
    build_default_methodology_registry,
)
from ecoverify.metrics import PROMETHEUS_AVAILABLE, update_active_results
from ecoverify.models import (
    OPEN_STATUSES,
    EvidenceFile,
    EvidenceProcessingResult,
    EvidenceSubmission,
    VerificationMethod,
    VerificationResult,
    VerificationStatus,
    VerificationStatusSummary,
)
from ecoverify.mrv import MRVAssessment, MRVProtocol, MRVProtocolRegistry
from ecoverify.orchestrator import VerificationOrchestrator
from ecoverify.pipeline import EvidenceValidationPipeline
from ecoverify.provenance import ProvenanceTracker
from ecoverify.repository import InMemoryVerificationRepository, VerificationRepository

logger = logging.getLogger(__name__)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def build_evidence_store(config: VerificationConfig) -> EvidenceStore:
    """Create the evidence store selected by ``evidence_store_backend``.

    Raises:
        ConfigurationError: If the backend name is unknown.
    """
    backend = config.evidence_store_backend
    if backend == "memory":
        return InMemoryEvidenceStore()
    if backend == "ipfs":
        return IPFSEvidenceStore.from_config(config)
    raise ConfigurationError(
        f"Unknown evidence store backend: {backend}",
        context={"evidence_store_backend": backend},
    )


# ===================================================================
# Service facade
# ===================================================================


class VerificationService:
    """Unified facade over the verification engine.

    Wires the repository, evidence store, methodology registry, evidence
    pipeline and orchestrator together and exposes the operations used by
    the REST API.

    Attributes:
        config: VerificationConfig instance.
        repository: Persistence gateway.
        evidence_store: Content-addressable evidence store.
        orchestrator: VerificationOrchestrator driving the lifecycle.
        provenance: ProvenanceTracker shared with the orchestrator.

    Example:
        >>> service = VerificationService(
        ...     repository=InMemoryVerificationRepository(credit_ids=["42"]),
        ... )
        >>> service.register_methodology({"method_id": "vwba-v2"}).method_id
        'vwba-v2'
    """

    def __init__(
        self,
        config: Optional[VerificationConfig] = None,
        repository: Optional[VerificationRepository] = None,
        evidence_store: Optional[EvidenceStore] = None,
        methodology_registry: Optional[MethodologyRegistry] = None,
        mrv_registry: Optional[MRVProtocolRegistry] = None,
    ) -> None:
        self.config = config or get_config()
        self.repository = repository or InMemoryVerificationRepository()
        self.evidence_store = evidence_store or build_evidence_store(self.config)
        self.provenance = ProvenanceTracker()

        pipeline = EvidenceValidationPipeline(
            self.repository,
            evidence_store=self.evidence_store,
            config=self.config,
        )
        self.orchestrator = VerificationOrchestrator(
            repository=self.repository,
            methodology_registry=(
                methodology_registry or build_default_methodology_registry()
            ),
            pipeline=pipeline,
            config=self.config,
            provenance=self.provenance if self.config.enable_provenance else None,
            mrv_registry=mrv_registry,
        )
        self._staged: Dict[str, bytes] = {}
        self._staged_lock = threading.Lock()
        self._started = False
        logger.info(
            "VerificationService facade created (store=%s)",
            type(self.evidence_store).__name__,
        )

    # ------------------------------------------------------------------
    # Methodologies
    # ------------------------------------------------------------------

    def register_methodology(self, method_data: Mapping[str, Any]) -> VerificationMethod:
        """Register a methodology."""
        return self.orchestrator.register_methodology(method_data)

    def list_methodologies(
        self,
        methodology_type: Optional[str] = None,
        active: Optional[bool] = None,
    ) -> List[VerificationMethod]:
        """List methodologies, optionally filtered by type and active flag."""
        return self.orchestrator.list_methodologies(methodology_type, active)

    def set_methodology_active(
        self, method_id: str, active: bool, actor: str = "system",
    ) -> VerificationMethod:
        """Activate or deactivate a methodology."""
        return self.orchestrator.set_methodology_active(method_id, active, actor)

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    def submit_verification(
        self,
        credit_id: str,
        method_id: str,
        validator_address: str,
        validator_name: Optional[str] = None,
        notes: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> VerificationResult:
        """Submit a credit for verification."""
        return self.orchestrator.submit_verification(
            credit_id, method_id, validator_address, validator_name, notes, metadata,
        )

    def get_verification_status(self, credit_id: str) -> VerificationStatusSummary:
        """Summarise the verification state of a credit."""
        return self.orchestrator.get_verification_status(credit_id)

    def get_result(self, result_id: str) -> VerificationResult:
        """Return a verification result."""
        return self.orchestrator.get_result(result_id)

    def list_evidence(self, result_id: str) -> List[EvidenceFile]:
        """Return the evidence attached to a verification result."""
        return self.orchestrator.list_evidence(result_id)

    # ------------------------------------------------------------------
    # Evidence
    # ------------------------------------------------------------------

    def attach_evidence(
        self,
        result_id: str,
        submissions: List[EvidenceSubmission],
        uploaded_by: str = "system",
    ) -> List[EvidenceFile]:
        """Attach evidence and stage its bytes for the next pipeline run.

        Staged bytes are handed to the pipeline for re-hashing until the
        file has been validated and archived to the evidence store.
        """
        attached = self.orchestrator.attach_evidence(result_id, submissions, uploaded_by)
        with self._staged_lock:
            for evidence, submission in zip(attached, submissions):
                self._staged[evidence.evidence_id] = submission.content
        return attached

    def _content_for(
        self,
        result_id: str,
        content_by_evidence_id: Optional[Mapping[str, bytes]],
    ) -> Dict[str, bytes]:
        ids = {e.evidence_id for e in self.repository.list_evidence(result_id)}
        with self._staged_lock:
            content = {k: v for k, v in self._staged.items() if k in ids}
        content.update(content_by_evidence_id or {})
        return content

    def _release_staged(self, result: VerificationResult) -> None:
        """Drop staged bytes that are archived or can no longer be used.

        Bytes of archived files are served by the evidence store. Once a
        result leaves the open statuses all of its staged bytes go.
        """
        closed = result.status not in OPEN_STATUSES
        released = [
            e.evidence_id for e in self.repository.list_evidence(result.result_id)
            if closed or e.storage_locator
        ]
        with self._staged_lock:
            for evidence_id in released:
                self._staged.pop(evidence_id, None)

    def process_evidence(
        self,
        result_id: str,
        content_by_evidence_id: Optional[Mapping[str, bytes]] = None,
    ) -> EvidenceProcessingResult:
        """Run the evidence validation pipeline for a result."""
        outcome = self.orchestrator.process_evidence(
            result_id, self._content_for(result_id, content_by_evidence_id),
        )
        self._release_staged(self.orchestrator.get_result(result_id))
        return outcome

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def perform_verification(
        self,
        result_id: str,
        content_by_evidence_id: Optional[Mapping[str, bytes]] = None,
    ) -> VerificationResult:
        """Run the methodology calculation and evidence scoring."""
        result = self.orchestrator.perform_verification(
            result_id, self._content_for(result_id, content_by_evidence_id),
        )
        self._release_staged(result)
        return result

    def start_review(self, result_id: str, reviewer: str) -> VerificationResult:
        """Move a pending verification into review."""
        return self.orchestrator.start_review(result_id, reviewer)

    def review_verification(
        self,
        result_id: str,
        reviewer: str,
        approved: bool,
        review_notes: Optional[str] = None,
    ) -> VerificationResult:
        """Approve or reject an in-review verification."""
        result = self.orchestrator.review_verification(
            result_id, reviewer, approved, review_notes,
        )
        self._release_staged(result)
        return result

    def revoke_verification(
        self, result_id: str, actor: str, reason: str,
    ) -> VerificationResult:
        """Revoke a verified result."""
        result = self.orchestrator.revoke_verification(result_id, actor, reason)
        self._release_staged(result)
        return result

    def expire_due(self) -> List[VerificationResult]:
        """Expire verified results past their expiry date."""
        expired = self.orchestrator.expire_due()
        for result in expired:
            self._release_staged(result)
        return expired

    # ------------------------------------------------------------------
    # MRV protocols
    # ------------------------------------------------------------------

    def register_mrv_protocol(
        self, protocol_data: Mapping[str, Any], actor: str = "system",
    ) -> MRVProtocol:
        """Register or replace an MRV protocol."""
        return self.orchestrator.register_mrv_protocol(protocol_data, actor)

    def list_mrv_protocols(
        self, methodology_type: Optional[str] = None,
    ) -> List[MRVProtocol]:
        """List MRV protocols, optionally only those for a methodology type."""
        return self.orchestrator.list_mrv_protocols(methodology_type)

    def assess_mrv_compliance(
        self, result_id: str, protocol_name: str,
    ) -> MRVAssessment:
        """Assess a verification result against an MRV protocol."""
        return self.orchestrator.assess_mrv_compliance(result_id, protocol_name)

    # ------------------------------------------------------------------
    # Health and metrics
    # ------------------------------------------------------------------

    def get_health(self) -> Dict[str, Any]:
        """Health check for the verification service.

        Returns:
            Dictionary with ``status``, ``started``, registered
            methodologies, collaborator types, provenance chain validity and
            a UTC timestamp.
        """
        chain_valid = self.provenance.verify_chain()
        result = {
            "status": "healthy" if chain_valid else "degraded",
            "started": self._started,
            "methodologies": self.orchestrator.methodology_registry.method_ids(),
            "repository": type(self.repository).__name__,
            "evidence_store": type(self.evidence_store).__name__,
            "provenance_chain_valid": chain_valid,
            "provenance_entries": self.provenance.entry_count,
            "prometheus_available": PROMETHEUS_AVAILABLE,
            "timestamp": _utcnow_iso(),
        }
        logger.info(
            "Health check: status=%s chain_valid=%s", result["status"], chain_valid,
        )
        return result

    def get_metrics(self) -> Dict[str, Any]:
        """Current service counters as a dictionary."""
        results = self.repository.list_results()
        by_status = {status.value: 0 for status in VerificationStatus}
        for result in results:
            by_status[result.status.value] += 1
        return {
            "total_results": len(results),
            "results_by_status": by_status,
            "total_methodologies": len(self.repository.list_methods()),
            "provenance_entries": self.provenance.entry_count,
            "provenance_chain_valid": self.provenance.verify_chain(),
            "prometheus_available": PROMETHEUS_AVAILABLE,
        }

    def startup(self) -> None:
        """Start the verification service. Safe to call multiple times."""
        if self._started:
            logger.debug("VerificationService already started; skipping")
            return
        self._started = True
        update_active_results(
            len(self.repository.list_results(statuses=OPEN_STATUSES)),
        )
        logger.info("VerificationService startup complete")

    def shutdown(self) -> None:
        """Shut down the verification service."""
        if not self._started:
            return
        self._started = False
        update_active_results(0)
        logger.info("VerificationService shut down")


# ===================================================================
# Singleton
# ===================================================================

_singleton_instance: Optional[VerificationService] = None
_singleton_lock = threading.Lock()


def get_verification_service() -> VerificationService:
    """Get or create the singleton VerificationService instance."""
    global _singleton_instance
    if _singleton_instance is None:
        with _singleton_lock:
            if _singleton_instance is None:
                _singleton_instance = VerificationService()
    return _singleton_instance


def reset_verification_service() -> None:
    """Drop the singleton (primarily for test teardown)."""
    global _singleton_instance
    with _singleton_lock:
        if _singleton_instance is not None:
            _singleton_instance.shutdown()
        _singleton_instance = None


# ===================================================================
# FastAPI integration
# ===================================================================


async def configure_verification_service(
    app: Any,
    config: Optional[VerificationConfig] = None,
    service: Optional[VerificationService] = None,
) -> VerificationService:
    """Configure the verification service on a FastAPI application.

    Creates the VerificationService (unless one is given), stores it in
    ``app.state``, mounts the verification API router and starts the
    service.

    Args:
        app: FastAPI application instance.
        config: Optional verification config.
        service: Optional pre-built service.

    Returns:
        VerificationService instance.
    """
    global _singleton_instance

    service = service or VerificationService(config=config)
    with _singleton_lock:
        _singleton_instance = service

    app.state.verification_service = service
    app.include_router(get_router(service))
    logger.info("Verification API router mounted")

    service.startup()
    logger.info("Verification service configured on app")
    return service


def _http_status_for(exc: Exception) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, (DuplicateVerificationError, DuplicateMethodologyError)):
        return 409
    return 400


def _error_detail(exc: Exception) -> Dict[str, Any]:
    if isinstance(exc, VerificationException):
        return {
            "error_code": exc.error_code,
            "message": exc.message,
            "context": exc.context,
        }
    return {"error_code": "EV_INVALID_REQUEST", "message": str(exc)}


def _decode_content_map(raw: Optional[Mapping[str, str]]) -> Optional[Dict[str, bytes]]:
    if not raw:
        return None
    return {
        evidence_id: base64.b64decode(encoded, validate=True)
        for evidence_id, encoded in raw.items()
    }


def _decode_submission(item: Mapping[str, Any]) -> EvidenceSubmission:
    data = dict(item)
    data["content"] = base64.b64decode(data.get("content", ""), validate=True)
    return EvidenceSubmission(**data)


def get_router(service: Optional[VerificationService] = None) -> Any:
    """Build the verification API router.

    Creates a FastAPI APIRouter at prefix ``/api/v1/verification``. Route
    handlers use ``service`` when given, otherwise the singleton.

    Evidence bytes travel base64-encoded. ``NotFoundError`` maps to 404,
    duplicate submissions and methodologies to 409, and every other
    engine or validation error to 400.

    Args:
        service: Optional service instance bound to the routes.

    Returns:
        FastAPI APIRouter.
    """
    from fastapi import APIRouter, Body, HTTPException, Query

    router = APIRouter(
        prefix="/api/v1/verification",
        tags=["verification"],
    )

    def _svc() -> VerificationService:
        return service or get_verification_service()

    def _call(fn: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except (VerificationException, ValueError) as exc:
            status = _http_status_for(exc)
            logger.info("Request rejected with %d: %s", status, exc)
            raise HTTPException(
                status_code=status,
                detail=_error_detail(exc),
            )

    # ------------------------------------------------------------------
    # Methodologies
    # ------------------------------------------------------------------
    @router.post("/methods", status_code=201)
    async def post_register_method(request: Dict[str, Any]) -> Dict[str, Any]:
        """Register a verification methodology."""
        method = _call(_svc().register_methodology, request)
        return method.model_dump(mode="json")

    @router.get("/methods")
    async def get_list_methods(
        methodology_type: Optional[str] = Query(None),
        active: Optional[bool] = Query(None),
    ) -> List[Dict[str, Any]]:
        """List registered methodologies."""
        methods = _svc().list_methodologies(methodology_type, active)
        return [m.model_dump(mode="json") for m in methods]

    @router.post("/methods/{method_id}/activation")
    async def post_method_activation(
        method_id: str, request: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Activate or deactivate a methodology."""
        method = _call(
            _svc().set_methodology_active,
            method_id,
            bool(request.get("active", True)),
            request.get("actor", "system"),
        )
        return method.model_dump(mode="json")

    # ------------------------------------------------------------------
    # Submissions and status
    # ------------------------------------------------------------------
    @router.post("/submissions", status_code=201)
    async def post_submit_verification(request: Dict[str, Any]) -> Dict[str, Any]:
        """Submit a credit for verification."""
        result = _call(
            _svc().submit_verification,
            credit_id=str(request.get("credit_id", "")),
            method_id=str(request.get("method_id", "")),
            validator_address=str(request.get("validator_address", "")),
            validator_name=request.get("validator_name"),
            notes=request.get("notes"),
            metadata=request.get("metadata"),
        )
        return result.model_dump(mode="json")

    @router.get("/credits/{credit_id}/status")
    async def get_credit_status(credit_id: str) -> Dict[str, Any]:
        """Verification status summary for a credit."""
        return _svc().get_verification_status(credit_id).model_dump(mode="json")

    @router.get("/results/{result_id}")
    async def get_result_by_id(result_id: str) -> Dict[str, Any]:
        """Get a verification result with its evidence."""
        result = _call(_svc().get_result, result_id)
        evidence = _call(_svc().list_evidence, result_id)
        payload = result.model_dump(mode="json")
        payload["evidence"] = [e.model_dump(mode="json") for e in evidence]
        return payload

    # ------------------------------------------------------------------
    # Evidence
    # ------------------------------------------------------------------
    # Pipeline and store calls block, so these handlers are plain functions
    # and run in the FastAPI threadpool.
    @router.post("/results/{result_id}/evidence", status_code=201)
    def post_attach_evidence(
        result_id: str, request: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        """Attach base64-encoded evidence files to a verification result."""
        submissions = _call(
            lambda: [_decode_submission(f) for f in request.get("files", [])],
        )
        attached = _call(
            _svc().attach_evidence,
            result_id,
            submissions,
            request.get("uploaded_by", "system"),
        )
        return [e.model_dump(mode="json") for e in attached]

    @router.post("/results/{result_id}/evidence/process")
    def post_process_evidence(
        result_id: str, request: Optional[Dict[str, Any]] = Body(None),
    ) -> Dict[str, Any]:
        """Run the evidence validation pipeline."""
        content = _call(_decode_content_map, (request or {}).get("content"))
        outcome = _call(_svc().process_evidence, result_id, content)
        return outcome.model_dump(mode="json")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @router.post("/results/{result_id}/run")
    def post_run_verification(
        result_id: str, request: Optional[Dict[str, Any]] = Body(None),
    ) -> Dict[str, Any]:
        """Run the methodology calculation and evidence scoring."""
        content = _call(_decode_content_map, (request or {}).get("content"))
        result = _call(_svc().perform_verification, result_id, content)
        return result.model_dump(mode="json")

    @router.post("/results/{result_id}/review/start")
    async def post_start_review(
        result_id: str, request: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Move a pending verification into review."""
        result = _call(
            _svc().start_review, result_id, request.get("reviewer", "system"),
        )
        return result.model_dump(mode="json")

    @router.post("/results/{result_id}/review")
    async def post_review(result_id: str, request: Dict[str, Any]) -> Dict[str, Any]:
        """Approve or reject an in-review verification."""
        result = _call(
            _svc().review_verification,
            result_id,
            request.get("reviewer", ""),
            bool(request.get("approved", False)),
            request.get("review_notes"),
        )
        return result.model_dump(mode="json")

    @router.post("/results/{result_id}/revoke")
    async def post_revoke(result_id: str, request: Dict[str, Any]) -> Dict[str, Any]:
        """Revoke a verified result."""
        result = _call(
            _svc().revoke_verification,
            result_id,
            request.get("actor", "system"),
            request.get("reason", ""),
        )
        return result.model_dump(mode="json")

    # ------------------------------------------------------------------
    # MRV protocols
    # ------------------------------------------------------------------
    @router.get("/mrv/protocols")
    async def get_mrv_protocols(
        methodology_type: Optional[str] = Query(None),
    ) -> List[Dict[str, Any]]:
        """List MRV protocols."""
        protocols = _svc().list_mrv_protocols(methodology_type)
        return [p.model_dump(mode="json") for p in protocols]

    @router.post("/mrv/protocols", status_code=201)
    async def post_mrv_protocol(request: Dict[str, Any]) -> Dict[str, Any]:
        """Register or replace an MRV protocol."""
        protocol = _call(_svc().register_mrv_protocol, request)
        return protocol.model_dump(mode="json")

    @router.get("/results/{result_id}/mrv")
    def get_mrv_assessment(
        result_id: str, protocol: str = Query(...),
    ) -> Dict[str, Any]:
        """Assess a verification result against an MRV protocol."""
        assessment = _call(_svc().assess_mrv_compliance, result_id, protocol)
        return assessment.model_dump(mode="json")

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------
    @router.get("/health")
    async def get_health_check() -> Dict[str, Any]:
        """Health check for the verification service."""
        t0 = time.perf_counter()
        health = _svc().get_health()
        logger.debug("Health check served in %.2fms", (time.perf_counter() - t0) * 1000)
        return health

    return router


__all__ = [
    "VerificationService",
    "build_evidence_store",
    "configure_verification_service",
    "get_verification_service",
    "reset_verification_service",
    "get_router",
]
