# -*- coding: utf-8 -*-
"""
Verification Engine Data Models

Pydantic v2 data models for the verification engine. Persisted entities
(VerificationMethod, VerificationResult, EvidenceFile) mirror the records
held by the persistence gateway; the remaining models are transient values
passed between the orchestrator, methodology handlers and the evidence
validation pipeline.

Models:
    - Enums: VerificationStatus, EvidenceType, IssueSeverity, QualityGrade,
             ParsedFormat
    - Persisted: VerificationMethod, VerificationResult, EvidenceFile,
                 CaptureLocation
    - Validation: ValidationIssue, ValidationResult, EvidenceProcessingResult
    - Calculation: VerificationRequest, CalculationOutcome
    - Intake: EvidenceSubmission
    - Parsing: ParsedData
    - Queries: VerificationStatusSummary
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Enumerations
# =============================================================================


class VerificationStatus(str, Enum):
    """Lifecycle status of a verification result."""
    PENDING = "pending"
    IN_REVIEW = "in_review"
    VERIFIED = "verified"
    REJECTED = "rejected"
    EXPIRED = "expired"
    REVOKED = "revoked"


# Statuses that block a new submission for the same (credit, methodology).
ACTIVE_STATUSES: FrozenSet[VerificationStatus] = frozenset({
    VerificationStatus.PENDING,
    VerificationStatus.IN_REVIEW,
    VerificationStatus.VERIFIED,
})

# Statuses still awaiting a decision.
OPEN_STATUSES: FrozenSet[VerificationStatus] = frozenset({
    VerificationStatus.PENDING,
    VerificationStatus.IN_REVIEW,
})


class EvidenceType(str, Enum):
    """Fixed vocabulary of evidence roles."""
    WATER_MEASUREMENT_DATA = "water_measurement_data"
    BASELINE_ASSESSMENT = "baseline_assessment"
    SITE_VERIFICATION = "site_verification"
    GPS_COORDINATES = "gps_coordinates"
    METHODOLOGY_DOCUMENTATION = "methodology_documentation"
    SENSOR_DATA = "sensor_data"
    FIELD_REPORT = "field_report"
    CALCULATION_SHEET = "calculation_sheet"
    MEASUREMENT_LOG = "measurement_log"
    SITE_PHOTOS = "site_photos"


class IssueSeverity(str, Enum):
    """Severity of a validation issue."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class QualityGrade(str, Enum):
    """Letter grade summarising an evidence set."""
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"


class ParsedFormat(str, Enum):
    """Structured file formats recognised by the file parser."""
    JSON = "json"
    CSV = "csv"
    EXCEL = "excel"
    TEXT = "text"
    UNKNOWN = "unknown"


# =============================================================================
# Utility
# =============================================================================


def _utcnow() -> datetime:
    """Return current UTC datetime with microseconds zeroed."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def _generate_id(prefix: str) -> str:
    """Generate a unique identifier of the form ``{prefix}-{hex12}``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


# =============================================================================
# Persisted entities
# =============================================================================


class CaptureLocation(BaseModel):
    """Where a piece of evidence was captured.

    Ranges are not enforced here; out-of-range coordinates are
    a data-quality finding reported by the GPS validation rule.
    """

    latitude: float = Field(..., description="Latitude in decimal degrees")
    longitude: float = Field(..., description="Longitude in decimal degrees")
    altitude: Optional[float] = Field(
        None, description="Altitude in meters",
    )

    model_config = {"extra": "forbid"}


class VerificationMethod(BaseModel):
    """A registered accounting methodology."""

    method_id: str = Field(
        ..., min_length=1, description="Unique methodology identifier",
    )
    name: str = Field(
        ..., min_length=1, description="Human readable name",
    )
    description: Optional[str] = Field(
        None, description="Longer description of the methodology",
    )
    methodology_type: str = Field(
        ..., min_length=1, description="Methodology family (e.g. 'VWBA')",
    )
    version: str = Field(
        default="1.0", description="Semantic version of the methodology",
    )
    criteria: Dict[str, Any] = Field(
        default_factory=dict, description="Methodology acceptance criteria",
    )
    required_evidence_types: List[str] = Field(
        default_factory=list,
        description="Evidence types required to attempt a calculation",
    )
    minimum_confidence: float = Field(
        default=0.8, ge=0.0, le=1.0,
        description="Confidence below which a result is not verified",
    )
    validation_period_days: Optional[int] = Field(
        None, ge=0, description="Validity of a verified result in days",
    )
    approved_validators: List[str] = Field(
        default_factory=list,
        description="Validator addresses approved for this methodology",
    )
    metadata: Dict[str, Any] = Field(
        default_factory=dict, description="Additional methodology metadata",
    )
    active: bool = Field(
        default=True, description="Whether new submissions are accepted",
    )
    created_at: datetime = Field(
        default_factory=_utcnow, description="Registration timestamp",
    )
    updated_at: datetime = Field(
        default_factory=_utcnow, description="Last update timestamp",
    )

    model_config = {"extra": "forbid"}

    @field_validator("required_evidence_types")
    @classmethod
    def validate_evidence_types(cls, v: List[str]) -> List[str]:
        """Reject evidence types outside the fixed vocabulary."""
        known = {t.value for t in EvidenceType}
        unknown = [t for t in v if t not in known]
        if unknown:
            raise ValueError(f"Unknown evidence types: {unknown}")
        return sorted(set(v))


class VerificationResult(BaseModel):
    """One verification attempt for one credit under one methodology."""

    result_id: str = Field(
        default_factory=lambda: _generate_id("VER"),
        description="Unique verification result identifier",
    )
    credit_id: str = Field(..., description="Credit being verified")
    method_id: str = Field(..., description="Methodology used")
    verified: bool = Field(
        default=False, description="Outcome of the methodology calculation",
    )
    confidence_score: Optional[float] = Field(
        None, ge=0.0, le=1.0, description="Methodology confidence score",
    )
    calculation_data: Dict[str, Any] = Field(
        default_factory=dict, description="Methodology-specific payload",
    )
    evidence_hash: Optional[str] = Field(
        None, description="Evidence-set hash bound to the calculation",
    )
    quality_grade: Optional[QualityGrade] = Field(
        None, description="Evidence pipeline quality grade",
    )
    quality_score: Optional[float] = Field(
        None, ge=0.0, le=1.0, description="Evidence pipeline overall score",
    )
    validator_address: str = Field(
        ..., min_length=1, description="Identity of the submitting validator",
    )
    validator_name: Optional[str] = Field(
        None, description="Display name of the validator",
    )
    status: VerificationStatus = Field(
        default=VerificationStatus.PENDING, description="Lifecycle status",
    )
    verification_date: datetime = Field(
        default_factory=_utcnow, description="When verification was performed",
    )
    expiry_date: Optional[datetime] = Field(
        None, description="When a verified result lapses",
    )
    submitted_at: datetime = Field(
        default_factory=_utcnow, description="Submission timestamp",
    )
    updated_at: datetime = Field(
        default_factory=_utcnow, description="Last update timestamp",
    )
    notes: Optional[str] = Field(None, description="Submission or outcome notes")
    reviewed_by: Optional[str] = Field(None, description="Reviewer identity")
    reviewed_at: Optional[datetime] = Field(None, description="Review timestamp")
    review_notes: Optional[str] = Field(None, description="Reviewer notes")
    metadata: Dict[str, Any] = Field(
        default_factory=dict, description="Additional record metadata",
    )

    model_config = {"extra": "forbid"}

    @property
    def is_active(self) -> bool:
        """Return True if this record blocks a new submission."""
        return self.status in ACTIVE_STATUSES


class EvidenceFile(BaseModel):
    """One piece of supporting evidence attached to a verification result."""

    evidence_id: str = Field(
        default_factory=lambda: _generate_id("EVD"),
        description="Stable evidence identifier",
    )
    verification_result_id: str = Field(
        ..., description="Owning verification result",
    )
    evidence_type: str = Field(..., description="Evidence-type tag")
    file_name: str = Field(..., min_length=1, description="Stored file name")
    file_hash: str = Field(
        ..., description="Declared SHA-256 hex digest of the content",
    )
    file_size: int = Field(..., ge=0, description="Declared byte length")
    mime_type: Optional[str] = Field(None, description="MIME type")
    capture_date: Optional[datetime] = Field(
        None, description="When the evidence was captured",
    )
    capture_device: Optional[str] = Field(
        None, description="Device or sensor used for capture",
    )
    capture_location: Optional[CaptureLocation] = Field(
        None, description="Where the evidence was captured",
    )
    metadata: Optional[Dict[str, Any]] = Field(
        None, description="Structured evidence-specific metadata",
    )
    uploaded_by: str = Field(default="system", description="Uploader identity")
    uploaded_at: datetime = Field(
        default_factory=_utcnow, description="Upload timestamp",
    )
    processed: bool = Field(
        default=False, description="Whether the pipeline has run on this file",
    )
    verified: bool = Field(
        default=False, description="Whether every rule passed on retrieved bytes",
    )
    verified_at: Optional[datetime] = Field(
        None, description="When the file was last processed",
    )
    processing_error: Optional[str] = Field(
        None, description="Failure message from the last processing run",
    )
    storage_locator: Optional[str] = Field(
        None, description="Content-addressed storage locator",
    )

    model_config = {"extra": "forbid"}


# =============================================================================
# Validation models
# =============================================================================


class ValidationIssue(BaseModel):
    """A single finding produced by a validation rule."""

    severity: IssueSeverity = Field(..., description="Issue severity")
    message: str = Field(..., description="Human readable description")
    field: Optional[str] = Field(None, description="Offending field")
    suggestion: Optional[str] = Field(None, description="How to fix it")
    evidence_id: Optional[str] = Field(
        None, description="Evidence file the issue belongs to",
    )

    model_config = {"extra": "forbid"}


class ValidationResult(BaseModel):
    """Outcome of one rule run against one evidence file."""

    valid: bool = Field(..., description="False if any error was raised")
    score: float = Field(..., ge=0.0, le=1.0, description="Quality score")
    issues: List[ValidationIssue] = Field(
        default_factory=list, description="Findings",
    )
    metadata: Dict[str, Any] = Field(
        default_factory=dict, description="Derived data attached by the rule",
    )

    model_config = {"extra": "forbid"}

    @property
    def error_count(self) -> int:
        """Number of error-severity issues."""
        return sum(1 for i in self.issues if i.severity == IssueSeverity.ERROR)


class EvidenceProcessingResult(BaseModel):
    """Aggregate pipeline outcome for one verification request."""

    processed: bool = Field(..., description="Whether any file was processed")
    validation_results: List[ValidationResult] = Field(
        default_factory=list, description="Per-rule results across all files",
    )
    overall_score: float = Field(
        default=0.0, ge=0.0, le=1.0, description="Mean of per-rule scores",
    )
    quality_grade: QualityGrade = Field(..., description="Letter grade")
    issues: List[ValidationIssue] = Field(
        default_factory=list, description="All issues across all files",
    )
    processing_time_ms: float = Field(
        default=0.0, ge=0.0, description="Wall-clock processing time",
    )
    verified_evidence_ids: List[str] = Field(
        default_factory=list, description="Files marked verified in this run",
    )
    archived_locators: Dict[str, str] = Field(
        default_factory=dict,
        description="Evidence id -> storage locator for files archived in this run",
    )

    model_config = {"extra": "forbid"}


# =============================================================================
# Calculation models
# =============================================================================


class VerificationRequest(BaseModel):
    """The request context handed to a methodology handler."""

    credit_id: str = Field(..., description="Credit being verified")
    method_id: str = Field(..., description="Methodology identifier")
    validator_address: str = Field(..., description="Submitting validator")
    validator_name: Optional[str] = Field(None, description="Validator name")
    notes: Optional[str] = Field(None, description="Submission notes")

    model_config = {"extra": "forbid"}


class CalculationOutcome(BaseModel):
    """What a methodology handler returns from ``validate``."""

    verified: bool = Field(..., description="Whether the claim is verified")
    confidence_score: float = Field(
        ..., ge=0.0, le=1.0, description="Confidence in the computed benefit",
    )
    calculation_data: Dict[str, Any] = Field(
        default_factory=dict, description="Auditable calculation payload",
    )
    evidence_hash: str = Field(..., description="Evidence-set hash")
    notes: Optional[str] = Field(None, description="Explanatory notes")

    model_config = {"extra": "forbid"}


# =============================================================================
# Intake and parsing models
# =============================================================================


class EvidenceSubmission(BaseModel):
    """Raw evidence handed to ``attach_evidence``."""

    evidence_type: EvidenceType = Field(..., description="Evidence-type tag")
    file_name: str = Field(..., min_length=1, description="Original file name")
    content: bytes = Field(..., description="File bytes")
    mime_type: str = Field(..., description="Declared MIME type")
    capture_date: Optional[datetime] = Field(None, description="Capture time")
    capture_location: Optional[CaptureLocation] = Field(
        None, description="Capture location",
    )
    capture_device: Optional[str] = Field(None, description="Capture device")
    metadata: Optional[Dict[str, Any]] = Field(
        None, description="Structured metadata",
    )

    model_config = {"extra": "forbid"}


class ParsedData(BaseModel):
    """Structured view of an evidence file's content."""

    format: ParsedFormat = Field(..., description="Detected format")
    data: Any = Field(None, description="Parsed rows or document")
    row_count: Optional[int] = Field(None, ge=0, description="Row count")
    columns: List[str] = Field(default_factory=list, description="Column names")
    metadata: Dict[str, Any] = Field(
        default_factory=dict, description="Parse metadata",
    )

    model_config = {"extra": "forbid"}


class VerificationStatusSummary(BaseModel):
    """Answer to ``get_verification_status`` for one credit."""

    credit_id: str = Field(..., description="Credit queried")
    verified: bool = Field(
        ..., description="True if any result is currently verified",
    )
    results: List[VerificationResult] = Field(
        default_factory=list, description="Resolved results, newest first",
    )
    pending: List[VerificationResult] = Field(
        default_factory=list, description="Pending or in-review results",
    )

    model_config = {"extra": "forbid"}


__all__ = [
    # Enumerations
    "VerificationStatus",
    "EvidenceType",
    "IssueSeverity",
    "QualityGrade",
    "ParsedFormat",
    "ACTIVE_STATUSES",
    "OPEN_STATUSES",
    # Persisted
    "CaptureLocation",
    "VerificationMethod",
    "VerificationResult",
    "EvidenceFile",
    # Validation
    "ValidationIssue",
    "ValidationResult",
    "EvidenceProcessingResult",
    # Calculation
    "VerificationRequest",
    "CalculationOutcome",
    # Intake and parsing
    "EvidenceSubmission",
    "ParsedData",
    # Queries
    "VerificationStatusSummary",
]
