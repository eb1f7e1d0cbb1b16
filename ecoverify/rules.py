# -*- coding: utf-8 -*-
"""
Evidence Validation Rules

Built-in data-quality checks run by the evidence validation pipeline and the
immutable registry that maps evidence types to the rules that apply to them.

Each rule is a frozen ``ValidationRule`` holding a pure check function that
receives a ``RuleContext`` (the evidence record plus optional retrieved
bytes and parsed content) and returns a ``ValidationResult``. Rules start at
a score of 1.0 and subtract fixed deductions per finding; any error-severity
issue makes the result invalid.

Built-in rules:
    - file_integrity (all types): re-hash retrieved bytes
    - metadata_completeness (all types): capture date/device and metadata
    - water_data_validation: water volume, period, units, accuracy
    - gps_validation: capture location ranges and GPS accuracy
    - document_validation: document MIME type and size

Example:
    >>> from ecoverify.rules import build_default_rule_registry
    >>> registry = build_default_rule_registry()
    >>> [r.name for r in registry.rules_for("gps_coordinates")]
    ['file_integrity', 'metadata_completeness', 'gps_validation']
"""

from __future__ import annotations

import hashlib
import logging
import numbers
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ecoverify.models import (
    EvidenceFile,
    EvidenceType,
    IssueSeverity,
    ParsedData,
    ParsedFormat,
    ValidationIssue,
    ValidationResult,
)

logger = logging.getLogger(__name__)

WILDCARD = "*"

MEASURED_PARAMETERS = ("water_volume", "flow_rate", "pressure", "temperature")

PREFERRED_DOCUMENT_MIME_TYPES = frozenset({
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "text/csv",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
})

MIN_DOCUMENT_BYTES = 1024
MAX_DOCUMENT_BYTES = 50 * 1024 * 1024
MAX_GPS_ACCURACY_METERS = 10.0
MIN_MEASUREMENT_ACCURACY = 0.8
MIN_PARSED_ROWS = 5

# Decimal places kept on scores so deductions land on exact grade bands.
SCORE_PRECISION = 9

# Column name fragments that identify a water measurement table.
MEASUREMENT_COLUMN_HINTS = (
    "volume", "date", "timestamp", "water_volume", "watervolume",
    "measurement_date", "time",
)


# ---------------------------------------------------------------------------
# Rule plumbing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuleContext:
    """Inputs visible to a rule check."""

    evidence: EvidenceFile
    content: Optional[bytes] = None
    parsed: Optional[ParsedData] = None


@dataclass(frozen=True)
class ValidationRule:
    """One independently testable check against one evidence item.

    Attributes:
        name: Stable rule identifier.
        description: Human readable summary.
        evidence_types: Types the rule applies to; ``("*",)`` for all.
        check: Function producing the rule's ValidationResult.
    """

    name: str
    description: str
    evidence_types: Tuple[str, ...]
    check: Callable[[RuleContext], ValidationResult]

    def run(self, context: RuleContext) -> ValidationResult:
        """Run the check and stamp rule identity onto the result.

        Exceptions from the check propagate; the pipeline converts them.
        """
        result = self.check(context)
        evidence_id = context.evidence.evidence_id
        issues = [
            issue if issue.evidence_id else issue.model_copy(
                update={"evidence_id": evidence_id},
            )
            for issue in result.issues
        ]
        metadata = dict(result.metadata)
        metadata["rule_name"] = self.name
        metadata["rule_description"] = self.description
        return result.model_copy(update={"issues": issues, "metadata": metadata})


class _Scorecard:
    """Accumulates issues and deductions for a single rule run."""

    def __init__(self) -> None:
        self.score = 1.0
        self.issues: List[ValidationIssue] = []

    def add(
        self,
        severity: IssueSeverity,
        message: str,
        deduction: float = 0.0,
        field: Optional[str] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.issues.append(ValidationIssue(
            severity=severity,
            message=message,
            field=field,
            suggestion=suggestion,
        ))
        self.score -= deduction

    def result(self, metadata: Optional[Dict[str, Any]] = None) -> ValidationResult:
        valid = not any(i.severity == IssueSeverity.ERROR for i in self.issues)
        return ValidationResult(
            valid=valid,
            score=round(min(1.0, max(0.0, self.score)), SCORE_PRECISION),
            issues=self.issues,
            metadata=metadata or {},
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _fatal(message: str, suggestion: Optional[str] = None) -> ValidationResult:
    return ValidationResult(
        valid=False,
        score=0.0,
        issues=[ValidationIssue(
            severity=IssueSeverity.ERROR, message=message, suggestion=suggestion,
        )],
    )


# ---------------------------------------------------------------------------
# Built-in checks
# ---------------------------------------------------------------------------


def check_file_integrity(context: RuleContext) -> ValidationResult:
    """Recompute SHA-256 and length of the retrieved bytes."""
    evidence = context.evidence
    card = _Scorecard()

    if context.content is None:
        card.add(
            IssueSeverity.INFO,
            "File content not available; integrity check skipped",
            field="file_hash",
            suggestion="Supply file content or a storage locator to verify integrity",
        )
        return card.result({"integrity_checked": False})

    computed_hash = hashlib.sha256(context.content).hexdigest()
    computed_size = len(context.content)

    if computed_hash != evidence.file_hash.lower():
        card.add(
            IssueSeverity.ERROR,
            "File hash mismatch - file may be corrupted",
            field="file_hash",
            suggestion="Re-upload the file",
        )
    if computed_size != evidence.file_size:
        card.add(
            IssueSeverity.ERROR,
            "File size mismatch",
            field="file_size",
        )
    if card.issues:
        card.score = 0.0

    return card.result({
        "integrity_checked": True,
        "computed_hash": computed_hash,
        "computed_size": computed_size,
    })


def check_metadata_completeness(context: RuleContext) -> ValidationResult:
    """Capture date, capture device and structured metadata presence."""
    evidence = context.evidence
    card = _Scorecard()

    if evidence.capture_date is None:
        card.add(
            IssueSeverity.WARNING,
            "Missing capture date",
            deduction=0.2,
            field="capture_date",
            suggestion="Include when the evidence was captured",
        )
    if not evidence.capture_device:
        card.add(
            IssueSeverity.INFO,
            "Missing capture device information",
            deduction=0.1,
            field="capture_device",
            suggestion="Include device/sensor information for better traceability",
        )
    if evidence.metadata is None:
        card.add(
            IssueSeverity.WARNING,
            "Missing or invalid metadata structure",
            deduction=0.3,
            field="metadata",
            suggestion="Include structured metadata relevant to evidence type",
        )
    return card.result()


def check_water_data(context: RuleContext) -> ValidationResult:
    """Water measurement fields, ranges and accuracy."""
    metadata = context.evidence.metadata
    if metadata is None:
        return _fatal(
            "No metadata found for water measurement data",
            suggestion="Include measurement values and parameters",
        )

    card = _Scorecard()
    for name in ("water_volume", "measurement_period", "units"):
        if name not in metadata:
            card.add(
                IssueSeverity.ERROR,
                f"Missing required field: {name}",
                deduction=0.3,
                field=name,
                suggestion=f"Include {name} in metadata",
            )

    volume = metadata.get("water_volume")
    if "water_volume" in metadata and (not _is_number(volume) or volume < 0):
        card.add(
            IssueSeverity.ERROR,
            "Invalid water volume value",
            deduction=0.4,
            field="water_volume",
            suggestion="Water volume must be a positive number",
        )

    period = metadata.get("measurement_period")
    if "measurement_period" in metadata and (not _is_number(period) or period <= 0):
        card.add(
            IssueSeverity.ERROR,
            "Invalid measurement period",
            deduction=0.3,
            field="measurement_period",
            suggestion="Measurement period must be a positive number",
        )

    if "accuracy" in metadata:
        accuracy = metadata["accuracy"]
        if not _is_number(accuracy) or accuracy < 0 or accuracy > 1:
            card.add(
                IssueSeverity.WARNING,
                "Invalid accuracy value",
                deduction=0.2,
                field="accuracy",
                suggestion="Accuracy should be between 0 and 1",
            )
        elif accuracy < MIN_MEASUREMENT_ACCURACY:
            card.add(
                IssueSeverity.WARNING,
                "Low measurement accuracy",
                deduction=0.1,
                field="accuracy",
                suggestion="Consider improving measurement methods or equipment",
            )

    return card.result({
        "data_quality_score": max(0.0, card.score),
        "measured_parameters": [k for k in MEASURED_PARAMETERS if k in metadata],
    })


def check_gps(context: RuleContext) -> ValidationResult:
    """Capture location ranges and GPS accuracy."""
    location = context.evidence.capture_location
    if location is None:
        return _fatal(
            "No GPS coordinates found",
            suggestion="Include latitude and longitude coordinates",
        )

    card = _Scorecard()
    if not -90 <= location.latitude <= 90:
        card.add(
            IssueSeverity.ERROR,
            "Invalid latitude value",
            deduction=0.5,
            field="latitude",
            suggestion="Latitude must be between -90 and 90 degrees",
        )
    if not -180 <= location.longitude <= 180:
        card.add(
            IssueSeverity.ERROR,
            "Invalid longitude value",
            deduction=0.5,
            field="longitude",
            suggestion="Longitude must be between -180 and 180 degrees",
        )

    metadata = context.evidence.metadata or {}
    gps_accuracy = metadata.get("gps_accuracy")
    if "gps_accuracy" in metadata:
        if not _is_number(gps_accuracy) or gps_accuracy < 0:
            card.add(
                IssueSeverity.WARNING,
                "Invalid GPS accuracy value",
                deduction=0.2,
                field="gps_accuracy",
            )
        elif gps_accuracy > MAX_GPS_ACCURACY_METERS:
            card.add(
                IssueSeverity.WARNING,
                "Low GPS accuracy",
                deduction=0.1,
                field="gps_accuracy",
                suggestion="GPS accuracy should be better than 10 meters for verification",
            )
    else:
        card.add(
            IssueSeverity.INFO,
            "GPS accuracy not provided",
            deduction=0.05,
            suggestion="Include GPS accuracy for better quality assessment",
        )

    return card.result({
        "coordinates": {
            "latitude": location.latitude,
            "longitude": location.longitude,
            "accuracy": gps_accuracy,
        },
    })


def check_document(context: RuleContext) -> ValidationResult:
    """Document MIME type and size bounds."""
    evidence = context.evidence
    card = _Scorecard()

    if evidence.mime_type not in PREFERRED_DOCUMENT_MIME_TYPES:
        card.add(
            IssueSeverity.WARNING,
            "Document format may not be optimal for verification",
            deduction=0.1,
            field="mime_type",
            suggestion="Use PDF, Word, or Excel formats for better compatibility",
        )

    if evidence.file_size < MIN_DOCUMENT_BYTES:
        card.add(
            IssueSeverity.WARNING,
            "Document file is very small",
            deduction=0.2,
            field="file_size",
            suggestion="Ensure document contains sufficient information",
        )
    elif evidence.file_size > MAX_DOCUMENT_BYTES:
        card.add(
            IssueSeverity.WARNING,
            "Document file is very large",
            deduction=0.1,
            field="file_size",
            suggestion="Consider compressing or splitting large documents",
        )

    return card.result({
        "document_type": evidence.evidence_type,
        "size": evidence.file_size,
        "format": evidence.mime_type,
    })


# ---------------------------------------------------------------------------
# Parsed content check
# ---------------------------------------------------------------------------

PARSED_DATA_RULE_NAME = "parsed_data_validation"
PARSED_DATA_RULE_DESCRIPTION = (
    "Validate parsed file content structure and data quality"
)

_MEASUREMENT_TYPES = frozenset({
    EvidenceType.WATER_MEASUREMENT_DATA.value,
    EvidenceType.SENSOR_DATA.value,
})


def _looks_numeric(value: Any) -> bool:
    if _is_number(value):
        return True
    if isinstance(value, str):
        try:
            float(value.strip())
        except ValueError:
            return False
        return True
    return False


def check_parsed_data(evidence: EvidenceFile, parsed: ParsedData) -> ValidationResult:
    """Structural checks over successfully parsed file content."""
    card = _Scorecard()

    if parsed.format == ParsedFormat.UNKNOWN:
        card.add(
            IssueSeverity.WARNING,
            "File format could not be determined",
            deduction=0.2,
            suggestion="Ensure file is in a supported format (JSON, CSV, Excel)",
        )

    if parsed.row_count == 0:
        card.add(
            IssueSeverity.ERROR,
            "No data rows found in file",
            suggestion="Ensure file contains measurement data",
        )
        card.score = 0.0
    elif parsed.row_count is not None and parsed.row_count < MIN_PARSED_ROWS:
        card.add(
            IssueSeverity.WARNING,
            "Very few data rows found",
            deduction=0.1,
            suggestion="Consider including more measurement data for better verification",
        )

    if evidence.evidence_type in _MEASUREMENT_TYPES and parsed.columns:
        lowered = [c.lower() for c in parsed.columns]
        if not any(hint in col for hint in MEASUREMENT_COLUMN_HINTS for col in lowered):
            card.add(
                IssueSeverity.WARNING,
                "No standard water measurement columns detected",
                deduction=0.2,
                field="columns",
                suggestion="Include columns for water volume, date/timestamp",
            )

    rows = parsed.data if isinstance(parsed.data, list) else None
    if rows and isinstance(rows[0], Mapping):
        first_row = rows[0]
        if not any(_looks_numeric(v) for v in first_row.values()):
            card.add(
                IssueSeverity.WARNING,
                "No numerical measurement data detected",
                deduction=0.3,
                suggestion="Ensure file contains numerical measurement values",
            )
        empty = [k for k, v in first_row.items() if v is None or v == ""]
        if empty:
            card.add(
                IssueSeverity.INFO,
                f"{len(empty)} empty fields detected in data",
                deduction=0.05,
                suggestion="Consider filling missing values where possible",
            )

    result = card.result({
        "rule_name": PARSED_DATA_RULE_NAME,
        "rule_description": PARSED_DATA_RULE_DESCRIPTION,
        "parsed_format": parsed.format.value,
        "row_count": parsed.row_count,
        "column_count": len(parsed.columns),
        "data_quality_score": max(0.0, card.score),
    })
    issues = [
        i.model_copy(update={"evidence_id": evidence.evidence_id})
        for i in result.issues
    ]
    return result.model_copy(update={"issues": issues})


# ---------------------------------------------------------------------------
# Built-in rule set
# ---------------------------------------------------------------------------

FILE_INTEGRITY_RULE = ValidationRule(
    name="file_integrity",
    description="Verify file hash and integrity",
    evidence_types=(WILDCARD,),
    check=check_file_integrity,
)

METADATA_COMPLETENESS_RULE = ValidationRule(
    name="metadata_completeness",
    description="Check required metadata fields",
    evidence_types=(WILDCARD,),
    check=check_metadata_completeness,
)

WATER_DATA_RULE = ValidationRule(
    name="water_data_validation",
    description="Validate water measurement data quality",
    evidence_types=(
        EvidenceType.WATER_MEASUREMENT_DATA.value,
        EvidenceType.SENSOR_DATA.value,
    ),
    check=check_water_data,
)

GPS_RULE = ValidationRule(
    name="gps_validation",
    description="Validate GPS coordinates accuracy",
    evidence_types=(
        EvidenceType.GPS_COORDINATES.value,
        EvidenceType.SITE_VERIFICATION.value,
    ),
    check=check_gps,
)

DOCUMENT_RULE = ValidationRule(
    name="document_validation",
    description="Validate document format and content",
    evidence_types=(
        EvidenceType.METHODOLOGY_DOCUMENTATION.value,
        EvidenceType.FIELD_REPORT.value,
        EvidenceType.CALCULATION_SHEET.value,
    ),
    check=check_document,
)

BUILTIN_RULES: Tuple[ValidationRule, ...] = (
    FILE_INTEGRITY_RULE,
    METADATA_COMPLETENESS_RULE,
    WATER_DATA_RULE,
    GPS_RULE,
    DOCUMENT_RULE,
)


# ---------------------------------------------------------------------------
# RuleRegistry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuleRegistry:
    """Immutable mapping of evidence type to applicable rules.

    Built once at construction; safe to share across worker threads.
    """

    wildcard: Tuple[ValidationRule, ...] = ()
    by_type: Mapping[str, Tuple[ValidationRule, ...]] = field(
        default_factory=lambda: MappingProxyType({}),
    )

    @classmethod
    def from_rules(cls, rules: Iterable[ValidationRule]) -> RuleRegistry:
        """Assemble a registry, preserving rule order within each bucket."""
        wildcard: List[ValidationRule] = []
        by_type: Dict[str, List[ValidationRule]] = {}
        for rule in rules:
            for evidence_type in rule.evidence_types:
                if evidence_type == WILDCARD:
                    wildcard.append(rule)
                else:
                    by_type.setdefault(evidence_type, []).append(rule)
            logger.debug(
                "Registered validation rule %s for %s",
                rule.name, ", ".join(rule.evidence_types),
            )
        return cls(
            wildcard=tuple(wildcard),
            by_type=MappingProxyType({k: tuple(v) for k, v in by_type.items()}),
        )

    def rules_for(self, evidence_type: str) -> Tuple[ValidationRule, ...]:
        """Wildcard rules followed by rules specific to ``evidence_type``."""
        return self.wildcard + self.by_type.get(evidence_type, ())

    def evidence_types(self) -> List[str]:
        """Evidence types that have at least one specific rule."""
        return sorted(self.by_type)


def build_default_rule_registry(
    extra_rules: Iterable[ValidationRule] = (),
) -> RuleRegistry:
    """Build the registry of built-in rules plus any extra rules."""
    registry = RuleRegistry.from_rules(BUILTIN_RULES + tuple(extra_rules))
    logger.info(
        "Rule registry built: %d wildcard rules, %d typed buckets",
        len(registry.wildcard), len(registry.by_type),
    )
    return registry


__all__ = [
    "WILDCARD",
    "RuleContext",
    "ValidationRule",
    "RuleRegistry",
    "BUILTIN_RULES",
    "FILE_INTEGRITY_RULE",
    "METADATA_COMPLETENESS_RULE",
    "WATER_DATA_RULE",
    "GPS_RULE",
    "DOCUMENT_RULE",
    "PARSED_DATA_RULE_NAME",
    "SCORE_PRECISION",
    "build_default_rule_registry",
    "check_file_integrity",
    "check_metadata_completeness",
    "check_water_data",
    "check_gps",
    "check_document",
    "check_parsed_data",
]
