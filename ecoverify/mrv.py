# -*- coding: utf-8 -*-
"""
MRV Protocols - Measurement, Reporting and Verification Compliance

Registry of MRV protocols and the compliance assessment that scores a
verification result and its evidence against one of them. Each protocol
lists measurement, reporting and verification requirements; the assessment
checks every requirement against evidence metadata, parsed content and the
result record, and weights the three sections 40/30/30 into an overall
score.

Assessments are informational. They are attached to the calculation
payload of a verification run and never change the verified flag.

Example:
    >>> from ecoverify.mrv import build_default_mrv_registry
    >>> registry = build_default_mrv_registry()
    >>> [p.name for p in registry.get_protocols("VWBA")]
    ['Water Conservation MRV']
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, Field

from ecoverify.exceptions import NotFoundError
from ecoverify.models import EvidenceFile, VerificationResult, _utcnow

logger = logging.getLogger(__name__)

# Days between samples for each measurement frequency.
FREQUENCY_DAYS: Dict[str, int] = {
    "daily": 1,
    "weekly": 7,
    "monthly": 30,
    "quarterly": 91,
    "annually": 365,
}

MEASUREMENT_WEIGHT = 0.4
REPORTING_WEIGHT = 0.3
VERIFICATION_WEIGHT = 0.3
RECOMMENDATION_THRESHOLD = 0.8


# =============================================================================
# Protocol definitions
# =============================================================================


class CalibrationRequirement(BaseModel):
    """Equipment calibration demanded by a measurement requirement."""

    frequency: str = Field(..., description="Calibration interval")
    standard: str = Field(..., description="Calibration standard, e.g. ISO_4064")
    tolerance: float = Field(..., ge=0.0, description="Allowed relative error")
    record_keeping: str = Field("digital_log", description="How records are kept")

    model_config = {"extra": "forbid"}


class MeasurementRequirement(BaseModel):
    """One measured parameter and the evidence that must back it."""

    parameter: str = Field(..., min_length=1, description="Measured parameter")
    unit: str = Field(..., description="Unit of measurement")
    frequency: str = Field(..., description="Sampling frequency (daily, weekly, ...)")
    accuracy: float = Field(..., ge=0.0, le=1.0, description="Minimum accuracy")
    method: str = Field(..., description="Measurement method")
    evidence_types: List[str] = Field(
        ..., min_length=1, description="Evidence types carrying this measurement",
    )
    equipment: List[str] = Field(default_factory=list, description="Required equipment")
    calibration: Optional[CalibrationRequirement] = Field(
        None, description="Calibration requirement, if any",
    )

    model_config = {"extra": "forbid"}


class ReportingRequirement(BaseModel):
    """Report format, content and deadline."""

    format: str = Field(..., description="Report format")
    frequency: str = Field(..., description="Reporting frequency")
    template: Optional[str] = Field(None, description="Report template id")
    report_evidence_types: List[str] = Field(
        ..., min_length=1, description="Evidence types accepted as reports",
    )
    required_fields: List[str] = Field(
        default_factory=list, description="Fields that must appear in evidence metadata",
    )
    submission_deadline_days: int = Field(
        ..., ge=0, description="Days allowed between the last capture and submission",
    )

    model_config = {"extra": "forbid"}


class VerificationRequirement(BaseModel):
    """Verifier, documentation and confidence demands."""

    verifier_qualifications: List[str] = Field(
        default_factory=list, description="Qualifications the verifier must hold",
    )
    documentation_required: List[str] = Field(
        default_factory=list, description="Evidence types that must be present",
    )
    site_visit_required: bool = Field(False, description="Whether a site visit is required")
    site_visit_evidence_types: List[str] = Field(
        default_factory=lambda: ["site_verification", "field_report", "site_photos"],
        description="Evidence types that prove a site visit",
    )
    sampling_size: float = Field(0.1, ge=0.0, le=1.0, description="Audit sampling fraction")
    confidence_level: float = Field(..., ge=0.0, le=1.0, description="Minimum confidence")

    model_config = {"extra": "forbid"}


class MRVProtocol(BaseModel):
    """A named, versioned MRV framework."""

    name: str = Field(..., min_length=1, description="Unique protocol name")
    version: str = Field("1.0", description="Protocol version")
    methodology_types: List[str] = Field(
        default_factory=list, description="Methodology types the protocol applies to",
    )
    measurement_requirements: List[MeasurementRequirement] = Field(default_factory=list)
    reporting_requirements: List[ReportingRequirement] = Field(default_factory=list)
    verification_requirements: List[VerificationRequirement] = Field(default_factory=list)

    model_config = {"extra": "forbid"}


# =============================================================================
# Assessment results
# =============================================================================


class ComplianceResult(BaseModel):
    """Outcome of one MRV section."""

    compliant: bool = Field(..., description="True when no requirement failed")
    score: float = Field(..., ge=0.0, le=1.0, description="Passed checks over total checks")
    issues: List[str] = Field(default_factory=list, description="Failed checks")
    evidence: List[str] = Field(default_factory=list, description="Passed checks")

    model_config = {"extra": "forbid"}


class MRVAssessment(BaseModel):
    """Compliance of one verification result against one protocol."""

    protocol_name: str = Field(..., description="Assessed protocol")
    protocol_version: str = Field(..., description="Assessed protocol version")
    result_id: str = Field(..., description="Assessed verification result")
    measurement_compliance: ComplianceResult
    reporting_compliance: ComplianceResult
    verification_compliance: ComplianceResult
    overall_score: float = Field(..., ge=0.0, le=1.0, description="Weighted section score")
    recommendations: List[str] = Field(default_factory=list)
    assessed_at: datetime = Field(default_factory=_utcnow)

    model_config = {"extra": "forbid"}


class _Checklist:
    """Counts passed checks for one section."""

    def __init__(self) -> None:
        self.passed = 0
        self.total = 0
        self.issues: List[str] = []
        self.evidence: List[str] = []

    def check(self, ok: bool, passed: str, failed: str) -> None:
        self.total += 1
        if ok:
            self.passed += 1
            self.evidence.append(passed)
        else:
            self.issues.append(failed)

    def result(self) -> ComplianceResult:
        return ComplianceResult(
            compliant=not self.issues,
            score=round(self.passed / self.total, 9) if self.total else 0.0,
            issues=self.issues,
            evidence=self.evidence,
        )


# =============================================================================
# Evidence helpers
# =============================================================================


def _metadata(evidence: EvidenceFile) -> Mapping[str, Any]:
    return evidence.metadata or {}


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _has_field(evidence: EvidenceFile, name: str) -> bool:
    meta = _metadata(evidence)
    if name in meta:
        return True
    parsed = meta.get("parsed_data")
    if isinstance(parsed, Mapping):
        return name in (parsed.get("measurement_fields") or {})
    return False


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _sample_count(evidence: EvidenceFile) -> Optional[int]:
    meta = _metadata(evidence)
    count = _number(meta.get("sample_count"))
    if count is not None:
        return int(count)
    parsed = meta.get("parsed_data")
    if isinstance(parsed, Mapping) and parsed.get("row_count") is not None:
        return int(parsed["row_count"])
    return None


# =============================================================================
# Registry
# =============================================================================


class MRVProtocolRegistry:
    """Thread-safe registry of MRV protocols keyed by name.

    Registering a protocol under an existing name replaces it.
    """

    def __init__(self, protocols: Iterable[MRVProtocol] = ()) -> None:
        self._protocols: Dict[str, MRVProtocol] = {}
        self._lock = threading.Lock()
        for protocol in protocols:
            self.register_protocol(protocol)

    def register_protocol(
        self, protocol: Union[MRVProtocol, Mapping[str, Any]],
    ) -> MRVProtocol:
        """Validate and store a protocol.

        Raises:
            ValueError: If ``protocol`` is a mapping that fails validation.
        """
        if not isinstance(protocol, MRVProtocol):
            protocol = MRVProtocol(**protocol)
        with self._lock:
            replaced = protocol.name in self._protocols
            self._protocols[protocol.name] = protocol
        logger.info(
            "%s MRV protocol %s v%s",
            "Replaced" if replaced else "Registered", protocol.name, protocol.version,
        )
        return protocol

    def get_protocol(self, name: str) -> Optional[MRVProtocol]:
        with self._lock:
            return self._protocols.get(name)

    def get_protocols(self, methodology_type: Optional[str] = None) -> List[MRVProtocol]:
        """Registered protocols, optionally only those for a methodology type."""
        with self._lock:
            protocols = list(self._protocols.values())
        if methodology_type is None:
            return protocols
        return [p for p in protocols if methodology_type in p.methodology_types]

    def __len__(self) -> int:
        with self._lock:
            return len(self._protocols)

    # ------------------------------------------------------------------
    # Assessment
    # ------------------------------------------------------------------

    def assess_compliance(
        self,
        protocol_name: str,
        evidence: Sequence[EvidenceFile],
        result: VerificationResult,
    ) -> MRVAssessment:
        """Score a verification result and its evidence against a protocol.

        Raises:
            NotFoundError: If no protocol has that name.
        """
        protocol = self.get_protocol(protocol_name)
        if protocol is None:
            raise NotFoundError(
                f"MRV protocol {protocol_name} not found",
                entity_type="mrv_protocol", entity_id=protocol_name,
            )

        measurement = _assess_measurement(protocol.measurement_requirements, evidence)
        reporting = _assess_reporting(protocol.reporting_requirements, evidence, result)
        verification = _assess_verification(
            protocol.verification_requirements, evidence, result,
        )
        overall = round(
            measurement.score * MEASUREMENT_WEIGHT
            + reporting.score * REPORTING_WEIGHT
            + verification.score * VERIFICATION_WEIGHT,
            9,
        )
        assessment = MRVAssessment(
            protocol_name=protocol.name,
            protocol_version=protocol.version,
            result_id=result.result_id,
            measurement_compliance=measurement,
            reporting_compliance=reporting,
            verification_compliance=verification,
            overall_score=overall,
            recommendations=_recommendations(measurement, reporting, verification),
        )
        logger.info(
            "MRV %s for %s: overall=%.3f (measurement=%.2f, reporting=%.2f, "
            "verification=%.2f)",
            protocol.name, result.result_id, overall,
            measurement.score, reporting.score, verification.score,
        )
        return assessment


# =============================================================================
# Section checks
# =============================================================================


def _assess_measurement(
    requirements: Sequence[MeasurementRequirement],
    evidence: Sequence[EvidenceFile],
) -> ComplianceResult:
    checks = _Checklist()
    for req in requirements:
        relevant = [e for e in evidence if e.evidence_type in req.evidence_types]
        if not relevant:
            checks.total += 2 + (1 if req.calibration else 0)
            checks.issues.append(f"Missing evidence for {req.parameter} measurement")
            continue

        accuracies = [
            a for a in (_number(_metadata(e).get("accuracy")) for e in relevant)
            if a is not None
        ]
        checks.check(
            any(a >= req.accuracy for a in accuracies),
            f"{req.parameter} measurements verified",
            f"{req.parameter} measurements do not meet accuracy requirement "
            f"({req.accuracy:g})",
        )

        checks.check(
            any(_meets_frequency(e, req.frequency) for e in relevant),
            f"{req.parameter} frequency verified",
            f"{req.parameter} measurement frequency does not meet requirement "
            f"({req.frequency})",
        )

        if req.calibration is not None:
            checks.check(
                any(_is_calibrated(e, req.calibration) for e in relevant),
                f"{req.parameter} calibration verified",
                f"{req.parameter} equipment calibration does not meet requirements",
            )
    return checks.result()


def _meets_frequency(evidence: EvidenceFile, frequency: str) -> bool:
    samples = _sample_count(evidence)
    if not samples:
        return False
    period = _number(_metadata(evidence).get("measurement_period"))
    interval = FREQUENCY_DAYS.get(frequency)
    if period is None or interval is None:
        return True
    return samples >= math.ceil(period / interval)


def _is_calibrated(evidence: EvidenceFile, calibration: CalibrationRequirement) -> bool:
    meta = _metadata(evidence)
    if "calibration_date" not in meta:
        return False
    standard = meta.get("calibration_standard")
    return standard is None or standard == calibration.standard


def _assess_reporting(
    requirements: Sequence[ReportingRequirement],
    evidence: Sequence[EvidenceFile],
    result: VerificationResult,
) -> ComplianceResult:
    checks = _Checklist()
    for req in requirements:
        checks.check(
            any(e.evidence_type in req.report_evidence_types for e in evidence),
            "Report format compliance verified",
            f"Reports do not meet format requirement: {req.format}",
        )

        missing = [
            name for name in req.required_fields
            if not any(_has_field(e, name) for e in evidence)
        ]
        checks.check(
            not missing,
            "All required fields present",
            f"Missing required fields: {', '.join(missing)}",
        )

        captured = [
            _as_utc(e.capture_date) for e in evidence if e.capture_date is not None
        ]
        on_time = bool(captured) and (
            _as_utc(result.submitted_at) - max(captured)
            <= timedelta(days=req.submission_deadline_days)
        )
        checks.check(
            on_time,
            "Submission timing verified",
            "Report submission does not meet deadline requirement: "
            f"{req.submission_deadline_days} days after period",
        )
    return checks.result()


def _assess_verification(
    requirements: Sequence[VerificationRequirement],
    evidence: Sequence[EvidenceFile],
    result: VerificationResult,
) -> ComplianceResult:
    checks = _Checklist()
    provided = {e.evidence_type for e in evidence}
    held = set(result.metadata.get("verifier_qualifications") or [])
    for req in requirements:
        lacking = [q for q in req.verifier_qualifications if q not in held]
        checks.check(
            not lacking,
            "Verifier qualifications verified",
            "Verifier qualifications do not meet requirements",
        )

        missing_docs = [d for d in req.documentation_required if d not in provided]
        checks.check(
            not missing_docs,
            "Required documentation present",
            f"Missing required documentation: {', '.join(missing_docs)}",
        )

        if req.site_visit_required:
            checks.check(
                bool(provided.intersection(req.site_visit_evidence_types)),
                "Site visit evidence verified",
                "Site visit evidence not found",
            )

        confidence = result.confidence_score
        checks.check(
            confidence is not None and confidence >= req.confidence_level,
            "Confidence level meets requirements",
            f"Verification confidence level below requirement ({req.confidence_level:g})",
        )
    return checks.result()


def _recommendations(
    measurement: ComplianceResult,
    reporting: ComplianceResult,
    verification: ComplianceResult,
) -> List[str]:
    recommendations: List[str] = []
    if measurement.score < RECOMMENDATION_THRESHOLD:
        recommendations.append("Improve measurement protocols and equipment calibration")
        recommendations.append(
            "Increase measurement frequency to meet protocol requirements",
        )
    if reporting.score < RECOMMENDATION_THRESHOLD:
        recommendations.append("Ensure all required fields are included in reports")
        recommendations.append("Submit reports within specified deadlines")
    if verification.score < RECOMMENDATION_THRESHOLD:
        recommendations.append("Engage qualified verifiers with appropriate certifications")
        recommendations.append("Ensure comprehensive documentation is provided")
    if not recommendations:
        recommendations.append("MRV compliance is excellent - maintain current standards")
    return recommendations


# =============================================================================
# Built-in protocols
# =============================================================================


WATER_CONSERVATION_PROTOCOL = MRVProtocol(
    name="Water Conservation MRV",
    version="1.0",
    methodology_types=["VWBA"],
    measurement_requirements=[
        MeasurementRequirement(
            parameter="water_volume",
            unit="liters",
            frequency="monthly",
            accuracy=0.95,
            method="flow_meter",
            evidence_types=["water_measurement_data", "sensor_data", "measurement_log"],
            equipment=["calibrated_flow_meter", "data_logger"],
            calibration=CalibrationRequirement(
                frequency="monthly",
                standard="ISO_4064",
                tolerance=0.02,
                record_keeping="digital_log",
            ),
        ),
        MeasurementRequirement(
            parameter="water_quality",
            unit="various",
            frequency="weekly",
            accuracy=0.90,
            method="laboratory_analysis",
            evidence_types=["sensor_data", "field_report"],
            equipment=["sample_bottles", "preservation_chemicals"],
        ),
    ],
    reporting_requirements=[
        ReportingRequirement(
            format="structured_data",
            frequency="monthly",
            template="water_conservation_template_v1",
            report_evidence_types=[
                "field_report", "calculation_sheet", "methodology_documentation",
            ],
            required_fields=[
                "measurement_period",
                "baseline_water_volume",
                "project_water_volume",
                "calculation_method",
                "uncertainty_factor",
            ],
            submission_deadline_days=15,
        ),
    ],
    verification_requirements=[
        VerificationRequirement(
            verifier_qualifications=["certified_water_engineer", "environmental_auditor"],
            documentation_required=[
                "water_measurement_data", "methodology_documentation", "site_photos",
            ],
            site_visit_required=True,
            sampling_size=0.1,
            confidence_level=0.95,
        ),
    ],
)


def build_default_mrv_registry(
    extra: Iterable[MRVProtocol] = (),
) -> MRVProtocolRegistry:
    """Registry holding the built-in protocols plus ``extra``."""
    return MRVProtocolRegistry([WATER_CONSERVATION_PROTOCOL, *extra])


__all__ = [
    "FREQUENCY_DAYS",
    "CalibrationRequirement",
    "MeasurementRequirement",
    "ReportingRequirement",
    "VerificationRequirement",
    "MRVProtocol",
    "ComplianceResult",
    "MRVAssessment",
    "MRVProtocolRegistry",
    "WATER_CONSERVATION_PROTOCOL",
    "build_default_mrv_registry",
]
