# -*- coding: utf-8 -*-
"""
Verification Orchestrator

Facade over the verification engine. Accepts submissions, enforces
preconditions and idempotency, attaches evidence under upload policy,
dispatches methodology calculations through the methodology registry while
the evidence pipeline scores each file, and drives the verification
lifecycle:

    pending -> in_review -> {verified, rejected}
    verified -> {expired, revoked}

Pending, in-review and verified records block a new submission for the
same (credit, methodology); rejected, expired and revoked records do not.
Every mutation is recorded in the provenance chain.

Example:
    >>> from ecoverify.orchestrator import VerificationOrchestrator
    >>> from ecoverify.repository import InMemoryVerificationRepository
    >>> repo = InMemoryVerificationRepository(credit_ids=["42"])
    >>> orch = VerificationOrchestrator(repository=repo)
    >>> orch.register_methodology({"method_id": "vwba-v2"}).name
    'Volumetric Water Benefit Accounting'
    >>> orch.submit_verification("42", "vwba-v2", "0xvalidator").status.value
    'pending'
"""

from __future__ import annotations

import hashlib
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from ecoverify.config import VerificationConfig, get_config
from ecoverify.evidence_store import EvidenceStore
from ecoverify.exceptions import (
    DuplicateMethodologyError,
    DuplicateVerificationError,
    EvidencePolicyError,
    InvalidTransitionError,
    MethodologyUnavailableError,
    NotFoundError,
)
from ecoverify.metrics import record_outcome, record_submission, update_active_results
from ecoverify.methodologies.base import MethodologyHandler, compute_evidence_set_hash
from ecoverify.methodologies.registry import (
    MethodologyRegistry,
    build_default_methodology_registry,
)
from ecoverify.models import (
    ACTIVE_STATUSES,
    OPEN_STATUSES,
    CalculationOutcome,
    EvidenceFile,
    EvidenceProcessingResult,
    EvidenceSubmission,
    IssueSeverity,
    QualityGrade,
    ValidationIssue,
    VerificationMethod,
    VerificationRequest,
    VerificationResult,
    VerificationStatus,
    VerificationStatusSummary,
    _utcnow,
)
from ecoverify.mrv import (
    MRVAssessment,
    MRVProtocol,
    MRVProtocolRegistry,
    build_default_mrv_registry,
)
from ecoverify.pipeline import EvidenceValidationPipeline
from ecoverify.provenance import ProvenanceTracker, hash_payload
from ecoverify.repository import InMemoryVerificationRepository, VerificationRepository

logger = logging.getLogger(__name__)

# Allowed status transitions.
_TRANSITIONS: Dict[VerificationStatus, frozenset] = {
    VerificationStatus.PENDING: frozenset({VerificationStatus.IN_REVIEW}),
    VerificationStatus.IN_REVIEW: frozenset({
        VerificationStatus.VERIFIED, VerificationStatus.REJECTED,
    }),
    VerificationStatus.VERIFIED: frozenset({
        VerificationStatus.EXPIRED, VerificationStatus.REVOKED,
    }),
    VerificationStatus.REJECTED: frozenset(),
    VerificationStatus.EXPIRED: frozenset(),
    VerificationStatus.REVOKED: frozenset(),
}


class VerificationOrchestrator:
    """Coordinates submissions, evidence, calculations and lifecycle.

    Attributes:
        repository: Persistence gateway.
        methodology_registry: Immutable methodology id to handler mapping.
        pipeline: Evidence validation pipeline.
        provenance: Provenance tracker, or None when disabled.
    """

    def __init__(
        self,
        repository: Optional[VerificationRepository] = None,
        methodology_registry: Optional[MethodologyRegistry] = None,
        pipeline: Optional[EvidenceValidationPipeline] = None,
        evidence_store: Optional[EvidenceStore] = None,
        config: Optional[VerificationConfig] = None,
        provenance: Optional[ProvenanceTracker] = None,
        mrv_registry: Optional[MRVProtocolRegistry] = None,
    ) -> None:
        self._config = config or get_config()
        self.repository = repository or InMemoryVerificationRepository()
        self.methodology_registry = (
            methodology_registry or build_default_methodology_registry()
        )
        self.pipeline = pipeline or EvidenceValidationPipeline(
            self.repository, evidence_store=evidence_store, config=self._config,
        )
        self.mrv_registry = (
            mrv_registry if mrv_registry is not None else build_default_mrv_registry()
        )
        if provenance is not None:
            self.provenance: Optional[ProvenanceTracker] = provenance
        elif self._config.enable_provenance:
            self.provenance = ProvenanceTracker()
        else:
            self.provenance = None
        self._lock = threading.RLock()
        logger.info(
            "VerificationOrchestrator initialized: methodologies=%s, auto_resolve=%s",
            self.methodology_registry.method_ids(), self._config.auto_resolve,
        )

    # ==================================================================
    # Methodologies
    # ==================================================================

    def register_methodology(
        self, method_data: Union[Mapping[str, Any], VerificationMethod],
    ) -> VerificationMethod:
        """Validate and persist a new methodology.

        When a handler is registered for the id, omitted name, type,
        version, criteria, required evidence types and minimum confidence
        default from the handler.

        Raises:
            DuplicateMethodologyError: If the id is already registered.
            pydantic.ValidationError: If the data is invalid.
        """
        if isinstance(method_data, VerificationMethod):
            data = method_data.model_dump(exclude_unset=True)
        else:
            data = dict(method_data)

        handler = self.methodology_registry.get(data.get("method_id", ""))
        if handler is not None:
            data.setdefault("name", handler.name)
            data.setdefault("methodology_type", handler.methodology_type)
            data.setdefault("version", handler.version)
            data.setdefault("criteria", handler.criteria())
            data.setdefault(
                "required_evidence_types", sorted(handler.required_evidence_types()),
            )
            data.setdefault("minimum_confidence", handler.minimum_confidence())
        else:
            data.setdefault("minimum_confidence", self._config.confidence_threshold)

        method = VerificationMethod(**data)
        with self._lock:
            if self.repository.get_method(method.method_id) is not None:
                raise DuplicateMethodologyError(
                    f"Methodology {method.method_id} already exists",
                    method_id=method.method_id,
                )
            self.repository.save_method(method)
            self._record("methodology", method.method_id, "register", method)

        logger.info(
            "Registered methodology %s (%s v%s, handler=%s)",
            method.method_id, method.methodology_type, method.version,
            handler is not None,
        )
        return method

    def list_methodologies(
        self,
        methodology_type: Optional[str] = None,
        active: Optional[bool] = None,
    ) -> List[VerificationMethod]:
        """Return registered methodologies, optionally filtered."""
        return [
            m for m in self.repository.list_methods()
            if (methodology_type is None or m.methodology_type == methodology_type)
            and (active is None or m.active == active)
        ]

    def set_methodology_active(
        self, method_id: str, active: bool, actor: str = "system",
    ) -> VerificationMethod:
        """Activate or deactivate a methodology.

        Raises:
            NotFoundError: If the methodology does not exist.
        """
        with self._lock:
            method = self._require_method(method_id)
            method = method.model_copy(update={"active": active, "updated_at": _utcnow()})
            self.repository.save_method(method)
            self._record(
                "methodology", method_id, "activate" if active else "deactivate",
                method, actor,
            )
        logger.info("Methodology %s active=%s", method_id, active)
        return method

    # ==================================================================
    # Submission and queries
    # ==================================================================

    def submit_verification(
        self,
        credit_id: str,
        method_id: str,
        validator_address: str,
        validator_name: Optional[str] = None,
        notes: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> VerificationResult:
        """Create a pending verification record.

        ``metadata`` is stored on the record; MRV assessments read
        ``verifier_qualifications`` from it.

        Raises:
            NotFoundError: If the credit does not exist.
            MethodologyUnavailableError: If the methodology is unknown,
                inactive or has no handler.
            DuplicateVerificationError: If an active record already exists
                for the same credit and methodology.
        """
        if not self.repository.credit_exists(credit_id):
            record_submission(method_id, "not_found")
            raise NotFoundError(
                f"Credit {credit_id} not found",
                entity_type="credit", entity_id=credit_id,
            )

        method = self.repository.get_method(method_id)
        if method is None or not method.active:
            record_submission(method_id, "unavailable")
            raise MethodologyUnavailableError(
                f"Verification method {method_id} not found or inactive",
                method_id=method_id,
            )
        if self.methodology_registry.get(method_id) is None:
            record_submission(method_id, "unavailable")
            raise MethodologyUnavailableError(
                f"No handler registered for methodology {method_id}",
                method_id=method_id,
            )

        result = VerificationResult(
            credit_id=credit_id,
            method_id=method_id,
            validator_address=validator_address,
            validator_name=validator_name,
            notes=notes,
            metadata=dict(metadata or {}),
        )
        existing = self.repository.create_result_if_absent(result, ACTIVE_STATUSES)
        if existing is not None:
            record_submission(method_id, "duplicate")
            raise DuplicateVerificationError(
                f"Verification already exists for credit {credit_id} "
                f"with method {method_id}",
                context={"credit_id": credit_id, "method_id": method_id},
                existing_result_id=existing.result_id,
            )

        self._record(
            "verification_result", result.result_id, "submit", result, validator_address,
        )
        record_submission(method_id, "accepted")
        self._refresh_active_gauge()
        logger.info(
            "Verification %s submitted for credit %s with %s by %s",
            result.result_id, credit_id, method_id, validator_address,
        )
        return result

    def get_verification_status(self, credit_id: str) -> VerificationStatusSummary:
        """Summarise the verification state of a credit.

        ``verified`` is True when any record is currently verified;
        ``results`` holds resolved records and ``pending`` open ones.
        """
        records = self.repository.list_results(credit_id=credit_id)
        return VerificationStatusSummary(
            credit_id=credit_id,
            verified=any(r.status == VerificationStatus.VERIFIED for r in records),
            results=[r for r in records if r.status not in OPEN_STATUSES],
            pending=[r for r in records if r.status in OPEN_STATUSES],
        )

    def get_result(self, result_id: str) -> VerificationResult:
        """Return a verification result.

        Raises:
            NotFoundError: If it does not exist.
        """
        return self._require_result(result_id)

    def list_evidence(self, result_id: str) -> List[EvidenceFile]:
        """Return the evidence attached to a verification result."""
        self._require_result(result_id)
        return self.repository.list_evidence(result_id)

    # ==================================================================
    # Evidence
    # ==================================================================

    def attach_evidence(
        self,
        result_id: str,
        submissions: Iterable[EvidenceSubmission],
        uploaded_by: str = "system",
    ) -> List[EvidenceFile]:
        """Attach evidence files to an open verification result.

        All submissions are checked against the size and MIME policy before
        any is persisted.

        Raises:
            NotFoundError: If the result does not exist.
            InvalidTransitionError: If the result is no longer open.
            EvidencePolicyError: If a file breaks size or MIME policy.
        """
        submissions = list(submissions)
        result = self._require_result(result_id)
        if result.status not in OPEN_STATUSES:
            raise InvalidTransitionError(
                f"Cannot attach evidence to a {result.status.value} verification",
                current_status=result.status.value,
            )

        allowed = set(self._config.allowed_mime_types)
        for sub in submissions:
            if len(sub.content) > self._config.max_file_size_bytes:
                raise EvidencePolicyError(
                    f"File {sub.file_name} exceeds maximum size of "
                    f"{self._config.max_file_size_bytes} bytes",
                    context={"file_size": len(sub.content)},
                    file_name=sub.file_name,
                )
            if sub.mime_type not in allowed:
                raise EvidencePolicyError(
                    f"File type {sub.mime_type} not allowed",
                    context={"mime_type": sub.mime_type},
                    file_name=sub.file_name,
                )

        attached: List[EvidenceFile] = []
        for sub in submissions:
            evidence = EvidenceFile(
                verification_result_id=result_id,
                evidence_type=sub.evidence_type.value,
                file_name=sub.file_name,
                file_hash=hashlib.sha256(sub.content).hexdigest(),
                file_size=len(sub.content),
                mime_type=sub.mime_type,
                capture_date=sub.capture_date,
                capture_location=sub.capture_location,
                capture_device=sub.capture_device,
                metadata=sub.metadata,
                uploaded_by=uploaded_by,
            )
            self.repository.add_evidence(evidence)
            self._record("evidence", evidence.evidence_id, "attach", evidence, uploaded_by)
            attached.append(evidence)

        logger.info(
            "Attached %d evidence files to %s", len(attached), result_id,
        )
        return attached

    def process_evidence(
        self,
        result_id: str,
        content_by_evidence_id: Optional[Mapping[str, bytes]] = None,
    ) -> EvidenceProcessingResult:
        """Run the evidence pipeline and store grade and score on the result.

        Raises:
            NotFoundError: If the result does not exist.
        """
        self._require_result(result_id)
        outcome = self.pipeline.process_evidence(result_id, content_by_evidence_id)
        with self._lock:
            result = self._require_result(result_id)
            result = result.model_copy(update={
                "quality_grade": outcome.quality_grade,
                "quality_score": outcome.overall_score,
                "updated_at": _utcnow(),
            })
            self.repository.save_result(result)
            self._record("verification_result", result_id, "process_evidence", result)
        return outcome

    # ==================================================================
    # Verification run
    # ==================================================================

    def start_review(self, result_id: str, reviewer: str) -> VerificationResult:
        """Move a pending verification into review.

        Raises:
            InvalidTransitionError: If the record is not pending.
        """
        with self._lock:
            result = self._require_result(result_id)
            result = self._transition(
                result, VerificationStatus.IN_REVIEW, reviewer, "start_review",
                metadata={**result.metadata, "review_started_by": reviewer},
            )
        return result

    def perform_verification(
        self,
        result_id: str,
        content_by_evidence_id: Optional[Mapping[str, bytes]] = None,
    ) -> VerificationResult:
        """Run the methodology calculation and the evidence pipeline.

        A pending record is moved into review first. The handler and the
        pipeline run concurrently; a handler exception becomes a
        non-verified outcome. With ``auto_resolve`` configured the record
        is resolved to verified or rejected immediately.

        Raises:
            NotFoundError: If the result or its methodology does not exist.
            MethodologyUnavailableError: If no handler is registered.
            InvalidTransitionError: If the record is already resolved.
        """
        with self._lock:
            result = self._require_result(result_id)
            if result.status not in OPEN_STATUSES:
                raise InvalidTransitionError(
                    f"Cannot run a {result.status.value} verification",
                    current_status=result.status.value,
                    target_status=VerificationStatus.IN_REVIEW.value,
                )
            if result.status == VerificationStatus.PENDING:
                result = self._transition(
                    result, VerificationStatus.IN_REVIEW, "system", "start_review",
                )

        method = self._require_method(result.method_id)
        handler = self.methodology_registry.get(result.method_id)
        if handler is None:
            raise MethodologyUnavailableError(
                f"No handler registered for methodology {result.method_id}",
                method_id=result.method_id,
            )

        evidence = self.repository.list_evidence(result_id)
        request = VerificationRequest(
            credit_id=result.credit_id,
            method_id=result.method_id,
            validator_address=result.validator_address,
            validator_name=result.validator_name,
            notes=result.notes,
        )

        with ThreadPoolExecutor(max_workers=2) as executor:
            calc_future = executor.submit(self._run_handler, handler, request, evidence)
            quality_future = executor.submit(
                self._run_pipeline, result_id, content_by_evidence_id,
            )
            outcome = calc_future.result()
            quality = quality_future.result()

        verified = outcome.verified and outcome.confidence_score >= method.minimum_confidence
        calculation_data = dict(outcome.calculation_data)
        calculation_data["evidence_quality"] = {
            "grade": quality.quality_grade.value,
            "score": quality.overall_score,
            "errors": sum(1 for i in quality.issues if i.severity == IssueSeverity.ERROR),
            "warnings": sum(1 for i in quality.issues if i.severity == IssueSeverity.WARNING),
        }
        mrv_compliance = self._assess_mrv(
            method.methodology_type,
            result.model_copy(update={"confidence_score": outcome.confidence_score}),
        )
        if mrv_compliance:
            calculation_data["mrv_compliance"] = mrv_compliance

        with self._lock:
            current = self._require_result(result_id)
            if current.status != VerificationStatus.IN_REVIEW:
                raise InvalidTransitionError(
                    f"Verification {result_id} changed to {current.status.value} "
                    "during the run",
                    current_status=current.status.value,
                )
            now = _utcnow()
            current = current.model_copy(update={
                "verified": verified,
                "confidence_score": outcome.confidence_score,
                "calculation_data": calculation_data,
                "evidence_hash": outcome.evidence_hash,
                "quality_grade": quality.quality_grade,
                "quality_score": quality.overall_score,
                "verification_date": now,
                "notes": outcome.notes,
                "updated_at": now,
            })
            self.repository.save_result(current)
            self._record("verification_result", result_id, "calculate", current)

            if self._config.auto_resolve:
                current = self._resolve(current, verified, "system", None)

        record_outcome(result.method_id, verified, outcome.confidence_score)
        logger.info(
            "Verification %s run: verified=%s, confidence=%.3f, grade=%s",
            result_id, verified, outcome.confidence_score, quality.quality_grade.value,
        )
        return current

    # ==================================================================
    # Lifecycle
    # ==================================================================

    def review_verification(
        self,
        result_id: str,
        reviewer: str,
        approved: bool,
        review_notes: Optional[str] = None,
    ) -> VerificationResult:
        """Resolve an in-review verification.

        Approval is only possible when the calculation verified the claim.

        Raises:
            InvalidTransitionError: If the record is not in review, or
                approval is requested for an unverified calculation.
        """
        with self._lock:
            result = self._require_result(result_id)
            if result.status != VerificationStatus.IN_REVIEW:
                raise InvalidTransitionError(
                    f"Cannot review a {result.status.value} verification",
                    current_status=result.status.value,
                )
            if approved and not result.verified:
                raise InvalidTransitionError(
                    "Cannot approve a verification whose calculation did not "
                    "verify the claim",
                    current_status=result.status.value,
                    target_status=VerificationStatus.VERIFIED.value,
                )
            return self._resolve(result, approved, reviewer, review_notes)

    def expire_verification(self, result_id: str) -> VerificationResult:
        """Mark a verified record as expired."""
        with self._lock:
            result = self._require_result(result_id)
            return self._transition(
                result, VerificationStatus.EXPIRED, "system", "expire",
            )

    def revoke_verification(
        self, result_id: str, actor: str, reason: str,
    ) -> VerificationResult:
        """Revoke a verified record."""
        with self._lock:
            result = self._require_result(result_id)
            return self._transition(
                result, VerificationStatus.REVOKED, actor, "revoke",
                metadata={**result.metadata, "revoked_by": actor, "revocation_reason": reason},
            )

    def expire_due(self, now: Optional[datetime] = None) -> List[VerificationResult]:
        """Expire every verified record whose expiry date has passed."""
        now = now or datetime.now(timezone.utc)
        expired: List[VerificationResult] = []
        for result in self.repository.list_results(statuses=[VerificationStatus.VERIFIED]):
            if result.expiry_date is not None and result.expiry_date <= now:
                expired.append(self.expire_verification(result.result_id))
        if expired:
            logger.info("Expired %d verifications", len(expired))
        return expired

    @staticmethod
    def compute_evidence_set_hash(evidence: Iterable[EvidenceFile]) -> str:
        """Order-independent SHA-256 over declared evidence hashes."""
        return compute_evidence_set_hash(evidence)

    # ==================================================================
    # MRV protocols
    # ==================================================================

    def register_mrv_protocol(
        self,
        protocol: Union[Mapping[str, Any], MRVProtocol],
        actor: str = "system",
    ) -> MRVProtocol:
        """Validate and register an MRV protocol, replacing any with its name."""
        protocol = self.mrv_registry.register_protocol(protocol)
        self._record("mrv_protocol", protocol.name, "register", protocol, actor)
        return protocol

    def list_mrv_protocols(
        self, methodology_type: Optional[str] = None,
    ) -> List[MRVProtocol]:
        return self.mrv_registry.get_protocols(methodology_type)

    def assess_mrv_compliance(
        self, result_id: str, protocol_name: str,
    ) -> MRVAssessment:
        """Assess a verification result against a named MRV protocol.

        Raises:
            NotFoundError: If the result or the protocol does not exist.
        """
        result = self._require_result(result_id)
        return self.mrv_registry.assess_compliance(
            protocol_name, self.repository.list_evidence(result_id), result,
        )

    # ==================================================================
    # Internal helpers
    # ==================================================================

    def _require_result(self, result_id: str) -> VerificationResult:
        result = self.repository.get_result(result_id)
        if result is None:
            raise NotFoundError(
                f"Verification result {result_id} not found",
                entity_type="verification_result", entity_id=result_id,
            )
        return result

    def _require_method(self, method_id: str) -> VerificationMethod:
        method = self.repository.get_method(method_id)
        if method is None:
            raise NotFoundError(
                f"Verification method {method_id} not found",
                entity_type="methodology", entity_id=method_id,
            )
        return method

    def _transition(
        self,
        result: VerificationResult,
        target: VerificationStatus,
        actor: str,
        action: str,
        **updates: Any,
    ) -> VerificationResult:
        if target not in _TRANSITIONS[result.status]:
            raise InvalidTransitionError(
                f"Cannot move verification {result.result_id} from "
                f"{result.status.value} to {target.value}",
                current_status=result.status.value,
                target_status=target.value,
            )
        updates.update({"status": target, "updated_at": _utcnow()})
        result = result.model_copy(update=updates)
        self.repository.save_result(result)
        self._record("verification_result", result.result_id, action, result, actor)
        self._refresh_active_gauge()
        logger.info(
            "Verification %s -> %s by %s", result.result_id, target.value, actor,
        )
        return result

    def _resolve(
        self,
        result: VerificationResult,
        approved: bool,
        reviewer: str,
        review_notes: Optional[str],
    ) -> VerificationResult:
        now = _utcnow()
        updates: Dict[str, Any] = {
            "reviewed_by": reviewer,
            "reviewed_at": now,
            "review_notes": review_notes,
        }
        if approved:
            updates["expiry_date"] = self._expiry_for(result.method_id, now)
            target, action = VerificationStatus.VERIFIED, "approve"
        else:
            target, action = VerificationStatus.REJECTED, "reject"
        return self._transition(result, target, reviewer, action, **updates)

    def _expiry_for(self, method_id: str, now: datetime) -> Optional[datetime]:
        method = self.repository.get_method(method_id)
        days = (
            method.validation_period_days
            if method is not None and method.validation_period_days is not None
            else self._config.default_validation_period_days
        )
        return now + timedelta(days=days) if days > 0 else None

    def _run_handler(
        self,
        handler: MethodologyHandler,
        request: VerificationRequest,
        evidence: List[EvidenceFile],
    ) -> CalculationOutcome:
        try:
            return handler.validate(request, evidence)
        except Exception as exc:
            logger.error(
                "Methodology %s failed for credit %s: %s",
                request.method_id, request.credit_id, exc, exc_info=True,
            )
            return CalculationOutcome(
                verified=False,
                confidence_score=0.0,
                calculation_data={
                    "error": str(exc),
                    "provided_types": sorted({e.evidence_type for e in evidence}),
                },
                evidence_hash=compute_evidence_set_hash(evidence),
                notes=f"Calculation failed: {exc}",
            )

    def _run_pipeline(
        self,
        result_id: str,
        content_by_evidence_id: Optional[Mapping[str, bytes]],
    ) -> EvidenceProcessingResult:
        try:
            return self.pipeline.process_evidence(result_id, content_by_evidence_id)
        except Exception as exc:
            logger.error(
                "Evidence pipeline failed for %s: %s", result_id, exc, exc_info=True,
            )
            return EvidenceProcessingResult(
                processed=False,
                quality_grade=QualityGrade.F,
                issues=[ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    message=f"Evidence processing failed: {exc}",
                )],
            )

    def _assess_mrv(
        self, methodology_type: str, result: VerificationResult,
    ) -> Dict[str, Any]:
        protocols = self.mrv_registry.get_protocols(methodology_type)
        if not protocols:
            return {}
        evidence = self.repository.list_evidence(result.result_id)
        return {
            p.name: self.mrv_registry.assess_compliance(
                p.name, evidence, result,
            ).model_dump(mode="json")
            for p in protocols
        }

    def _record(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        payload: Any,
        actor: str = "system",
    ) -> None:
        if self.provenance is None:
            return
        self.provenance.record(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            data_hash=hash_payload(payload),
            user_id=actor,
        )

    def _refresh_active_gauge(self) -> None:
        update_active_results(len(self.repository.list_results(statuses=OPEN_STATUSES)))


__all__ = ["VerificationOrchestrator"]
