# -*- coding: utf-8 -*-
"""
EcoVerify: Environmental Credit Verification Engine
===================================================

This package verifies environmental benefit claims (water credits) against
registered accounting methodologies and the evidence submitted for them.
It supports:

- Methodology registration with a pluggable handler registry (VWBA v2.0
  built in)
- Submission with duplicate prevention per (credit, methodology)
- MRV protocol registry with measurement, reporting and verification
  compliance scoring
- Evidence upload policy (size, MIME type) and content hashing
- Evidence validation pipeline with per-type rules, structured-file
  parsing (JSON, CSV, Excel, text), quality scoring and A-F grading
- Archival of validated evidence to a content-addressable store (in-memory
  or IPFS)
- Verification lifecycle: pending, in review, verified or rejected, then
  expired or revoked
- SHA-256 provenance chain tracking for every record mutation
- Prometheus metrics with ev_verification_ prefix
- FastAPI REST API at /api/v1/verification
- Thread-safe configuration with ECOVERIFY_ env prefix

Key Components:
    - config: VerificationConfig with ECOVERIFY_ env prefix
    - models: pydantic models and enumerations
    - rules: evidence validation rules and rule registry
    - file_parser: structured evidence parsing
    - pipeline: evidence validation pipeline
    - methodologies: methodology handlers and registry
    - mrv: MRV protocol registry and compliance assessment
    - orchestrator: submission and lifecycle facade
    - repository: persistence gateway
    - evidence_store: content-addressable evidence storage
    - provenance: SHA-256 chain-hashed audit trails
    - metrics: Prometheus metrics
    - setup: VerificationService facade and REST router

Example:
    >>> from ecoverify import VerificationOrchestrator, InMemoryVerificationRepository
    >>> orch = VerificationOrchestrator(
    ...     repository=InMemoryVerificationRepository(credit_ids=["42"]),
    ... )
    >>> method = orch.register_methodology({"method_id": "vwba-v2"})
    >>> orch.submit_verification("42", "vwba-v2", "0xvalidator").status.value
    'pending'
"""

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
from ecoverify.config import (
    VerificationConfig,
    get_config,
    set_config,
    reset_config,
)

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------
from ecoverify.exceptions import (
    VerificationException,
    PreconditionError,
    NotFoundError,
    MethodologyUnavailableError,
    DuplicateVerificationError,
    DuplicateMethodologyError,
    InvalidTransitionError,
    EvidenceError,
    EvidencePolicyError,
    FileParseError,
    EvidenceStoreError,
    ConfigurationError,
)

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------
from ecoverify.models import (
    VerificationStatus,
    EvidenceType,
    IssueSeverity,
    QualityGrade,
    ParsedFormat,
    CaptureLocation,
    VerificationMethod,
    VerificationResult,
    EvidenceFile,
    ValidationIssue,
    ValidationResult,
    EvidenceProcessingResult,
    VerificationRequest,
    CalculationOutcome,
    EvidenceSubmission,
    ParsedData,
    VerificationStatusSummary,
)

# ---------------------------------------------------------------------------
# Engines
# ---------------------------------------------------------------------------
from ecoverify.rules import RuleRegistry, ValidationRule, build_default_rule_registry
from ecoverify.file_parser import FileParser, ParseOptions
from ecoverify.pipeline import EvidenceValidationPipeline, calculate_quality_grade
from ecoverify.methodologies import (
    MethodologyHandler,
    MethodologyRegistry,
    VWBAMethodologyHandler,
    VWBAPolicy,
    build_default_methodology_registry,
    compute_evidence_set_hash,
)
from ecoverify.mrv import (
    MRVProtocol,
    MRVAssessment,
    MRVProtocolRegistry,
    build_default_mrv_registry,
)
from ecoverify.orchestrator import VerificationOrchestrator

# ---------------------------------------------------------------------------
# Gateways
# ---------------------------------------------------------------------------
from ecoverify.repository import VerificationRepository, InMemoryVerificationRepository
from ecoverify.evidence_store import (
    EvidenceStore,
    InMemoryEvidenceStore,
    IPFSEvidenceStore,
    RetrievedEvidence,
)

# ---------------------------------------------------------------------------
# Provenance
# ---------------------------------------------------------------------------
from ecoverify.provenance import ProvenanceTracker

# ---------------------------------------------------------------------------
# Service setup
# ---------------------------------------------------------------------------
from ecoverify.setup import (
    VerificationService,
    configure_verification_service,
    get_verification_service,
    get_router,
)

__all__ = [
    "__version__",
    # Configuration
    "VerificationConfig",
    "get_config",
    "set_config",
    "reset_config",
    # Exceptions
    "VerificationException",
    "PreconditionError",
    "NotFoundError",
    "MethodologyUnavailableError",
    "DuplicateVerificationError",
    "DuplicateMethodologyError",
    "InvalidTransitionError",
    "EvidenceError",
    "EvidencePolicyError",
    "FileParseError",
    "EvidenceStoreError",
    "ConfigurationError",
    # Models
    "VerificationStatus",
    "EvidenceType",
    "IssueSeverity",
    "QualityGrade",
    "ParsedFormat",
    "CaptureLocation",
    "VerificationMethod",
    "VerificationResult",
    "EvidenceFile",
    "ValidationIssue",
    "ValidationResult",
    "EvidenceProcessingResult",
    "VerificationRequest",
    "CalculationOutcome",
    "EvidenceSubmission",
    "ParsedData",
    "VerificationStatusSummary",
    # Engines
    "RuleRegistry",
    "ValidationRule",
    "build_default_rule_registry",
    "FileParser",
    "ParseOptions",
    "EvidenceValidationPipeline",
    "calculate_quality_grade",
    "MethodologyHandler",
    "MethodologyRegistry",
    "VWBAMethodologyHandler",
    "VWBAPolicy",
    "build_default_methodology_registry",
    "compute_evidence_set_hash",
    "MRVProtocol",
    "MRVAssessment",
    "MRVProtocolRegistry",
    "build_default_mrv_registry",
    "VerificationOrchestrator",
    # Gateways
    "VerificationRepository",
    "InMemoryVerificationRepository",
    "EvidenceStore",
    "InMemoryEvidenceStore",
    "IPFSEvidenceStore",
    "RetrievedEvidence",
    # Provenance
    "ProvenanceTracker",
    # Service setup
    "VerificationService",
    "configure_verification_service",
    "get_verification_service",
    "get_router",
]
