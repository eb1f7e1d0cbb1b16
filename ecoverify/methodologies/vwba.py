# -*- coding: utf-8 -*-
"""
Volumetric Water Benefit Accounting (VWBA) v2.0

Computes the net volumetric water benefit of a project from its baseline
and project water volumes, with an uncertainty band and a confidence score
driven by measurement period completeness and the declared uncertainty
factor.

Calculation:
    net_benefit         = project_volume - baseline_volume
    benefit_per_hectare = net_benefit / project_area
    annualized_benefit  = net_benefit * 365 / measurement_period
    uncertainty_range   = [net * (1 - u), net * (1 + u)]
    confidence          = (0.8 + 0.2 * min(period / 365, 1)) * (1 - u)
                          * 0.5 when net_benefit <= 0

The reported volumetric water benefit is ``max(0, net_benefit)``; the raw
net benefit keeps its sign in the payload.

Example:
    >>> from ecoverify.methodologies.vwba import VWBAMethodologyHandler
    >>> handler = VWBAMethodologyHandler()
    >>> sorted(handler.required_evidence_types())[0]
    'baseline_assessment'
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from ecoverify.extraction import (
    FieldExtraction,
    NO_DEFAULT,
    extract_field,
    missing_fields,
    to_float,
    to_str,
)
from ecoverify.methodologies.base import MethodologyHandler, compute_evidence_set_hash
from ecoverify.models import (
    CalculationOutcome,
    EvidenceFile,
    EvidenceType,
    VerificationRequest,
)

logger = logging.getLogger(__name__)

METHODOLOGY_LABEL = "VWBA v2.0"
UNITS = "liters"
DAYS_PER_YEAR = 365


@dataclass(frozen=True)
class VWBAPolicy:
    """Acceptance criteria and penalty multipliers for VWBA inputs.

    Each failed criterion multiplies the running confidence by its penalty.
    """

    minimum_measurement_period_days: float = 30
    maximum_uncertainty: float = 0.20
    required_data_quality: float = 0.8
    spatial_accuracy_meters: float = 10
    minimum_confidence: float = 0.8
    short_period_days: float = 90

    period_penalty: float = 0.5
    baseline_volume_penalty: float = 0.3
    project_volume_penalty: float = 0.3
    project_area_penalty: float = 0.7
    coordinates_penalty: float = 0.6
    uncertainty_penalty: float = 0.8
    negative_uncertainty_penalty: float = 0.5
    non_positive_benefit_factor: float = 0.5

    def criteria(self) -> Dict[str, float]:
        """Criteria as recorded in calculation payloads."""
        return {
            "minimum_measurement_period": self.minimum_measurement_period_days,
            "maximum_uncertainty": self.maximum_uncertainty * 100,
            "required_data_quality": self.required_data_quality,
            "spatial_accuracy": self.spatial_accuracy_meters,
        }


@dataclass(frozen=True)
class VWBAInputs:
    """Calculation inputs extracted from VWBA evidence."""

    baseline_water_volume: float
    project_water_volume: float
    project_area: float
    measurement_period: float
    water_source: str
    latitude: float
    longitude: float
    watershed: Optional[str]
    methodology_version: str
    calculation_method: str
    uncertainty_factor: float

    def to_payload(self) -> Dict[str, Any]:
        return {
            "baseline_water_volume": self.baseline_water_volume,
            "project_water_volume": self.project_water_volume,
            "project_area": self.project_area,
            "measurement_period": self.measurement_period,
            "water_source": self.water_source,
            "location": {
                "latitude": self.latitude,
                "longitude": self.longitude,
                "watershed": self.watershed,
            },
            "methodology": {
                "version": self.methodology_version,
                "calculation_method": self.calculation_method,
                "uncertainty_factor": self.uncertainty_factor,
            },
        }


_Source = Tuple[Optional[str], Optional[Dict[str, Any]]]


def _metadata_sources(evidence: Sequence[EvidenceFile]) -> List[_Source]:
    return [(e.evidence_id, e.metadata) for e in evidence]


def _parsed_sources(evidence: Sequence[EvidenceFile]) -> List[_Source]:
    sources: List[_Source] = []
    for e in evidence:
        parsed = (e.metadata or {}).get("parsed_data")
        if isinstance(parsed, dict):
            sources.append((e.evidence_id, parsed.get("measurement_fields")))
    return sources


def _location_sources(evidence: Sequence[EvidenceFile]) -> List[_Source]:
    return [
        (e.evidence_id, e.capture_location.model_dump())
        for e in evidence if e.capture_location is not None
    ]


class VWBAMethodologyHandler(MethodologyHandler):
    """VWBA v2.0 calculation over water measurement evidence.

    Args:
        policy: Criteria and penalties; defaults to ``VWBAPolicy()``.
    """

    method_id = "vwba-v2"
    name = "Volumetric Water Benefit Accounting"
    methodology_type = "VWBA"
    version = "2.0"

    REQUIRED_EVIDENCE_TYPES = frozenset({
        EvidenceType.WATER_MEASUREMENT_DATA.value,
        EvidenceType.BASELINE_ASSESSMENT.value,
        EvidenceType.SITE_VERIFICATION.value,
        EvidenceType.GPS_COORDINATES.value,
        EvidenceType.METHODOLOGY_DOCUMENTATION.value,
    })

    def __init__(self, policy: Optional[VWBAPolicy] = None) -> None:
        self.policy = policy or VWBAPolicy()

    def required_evidence_types(self) -> FrozenSet[str]:
        return self.REQUIRED_EVIDENCE_TYPES

    def minimum_confidence(self) -> float:
        return self.policy.minimum_confidence

    def criteria(self) -> Dict[str, Any]:
        return self.policy.criteria()

    # ------------------------------------------------------------------
    # validate
    # ------------------------------------------------------------------

    def validate(
        self,
        request: VerificationRequest,
        evidence: List[EvidenceFile],
    ) -> CalculationOutcome:
        """Run the VWBA calculation for a verification request."""
        evidence_hash = compute_evidence_set_hash(evidence)
        provided = sorted({e.evidence_type for e in evidence})

        missing_types = self.missing_evidence_types(evidence)
        if missing_types:
            logger.info(
                "VWBA for credit %s missing evidence types: %s",
                request.credit_id, ", ".join(missing_types),
            )
            return CalculationOutcome(
                verified=False,
                confidence_score=0.0,
                calculation_data={
                    "error": "Missing required evidence types",
                    "missing_types": missing_types,
                    "provided_types": provided,
                    "evidence_hash": evidence_hash,
                },
                evidence_hash=evidence_hash,
                notes=f"Missing required evidence: {', '.join(missing_types)}",
            )

        extractions = self.extract_inputs(evidence)
        missing = missing_fields(extractions.values())
        if missing:
            logger.info(
                "VWBA for credit %s could not extract: %s",
                request.credit_id, ", ".join(missing),
            )
            return CalculationOutcome(
                verified=False,
                confidence_score=0.0,
                calculation_data={
                    "error": "Required calculation inputs could not be extracted",
                    "missing_fields": missing,
                    "extraction": {k: v.describe() for k, v in extractions.items()},
                    "provided_types": provided,
                    "evidence_hash": evidence_hash,
                },
                evidence_hash=evidence_hash,
                notes=f"Missing calculation inputs: {', '.join(missing)}",
            )

        inputs = self._build_inputs(extractions)
        errors, multiplier = self.validate_inputs(inputs)
        if errors:
            confidence = multiplier if multiplier >= self.minimum_confidence() else 0.0
            logger.info(
                "VWBA inputs for credit %s failed %d criteria (multiplier=%.3f)",
                request.credit_id, len(errors), multiplier,
            )
            return CalculationOutcome(
                verified=False,
                confidence_score=confidence,
                calculation_data={
                    "inputs": inputs.to_payload(),
                    "extraction": {k: v.describe() for k, v in extractions.items()},
                    "validation_errors": errors,
                    "penalty_multiplier": multiplier,
                    "criteria": self.policy.criteria(),
                    "methodology": METHODOLOGY_LABEL,
                    "evidence_hash": evidence_hash,
                },
                evidence_hash=evidence_hash,
                notes="; ".join(errors),
            )

        calculation, uncertainty_range, confidence, notes = self.calculate(inputs)
        verified = confidence >= self.minimum_confidence()
        logger.info(
            "VWBA for credit %s: net=%.2f %s, confidence=%.3f, verified=%s",
            request.credit_id, calculation["net_benefit"], UNITS, confidence, verified,
        )
        return CalculationOutcome(
            verified=verified,
            confidence_score=confidence,
            calculation_data={
                "inputs": inputs.to_payload(),
                "extraction": {k: v.describe() for k, v in extractions.items()},
                "calculation": calculation,
                "uncertainty_range": uncertainty_range,
                "methodology": METHODOLOGY_LABEL,
                "criteria": self.policy.criteria(),
                "volumetric_water_benefit": calculation["volumetric_water_benefit"],
                "units": UNITS,
                "evidence_hash": evidence_hash,
            },
            evidence_hash=evidence_hash,
            notes=notes,
        )

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def extract_inputs(self, evidence: Sequence[EvidenceFile]) -> Dict[str, FieldExtraction]:
        """Extract every VWBA input with an explicit outcome per field."""
        by_type: Dict[str, List[EvidenceFile]] = {}
        for item in sorted(evidence, key=lambda e: e.evidence_id):
            by_type.setdefault(item.evidence_type, []).append(item)

        measurement = by_type.get(EvidenceType.WATER_MEASUREMENT_DATA.value, [])
        baseline = by_type.get(EvidenceType.BASELINE_ASSESSMENT.value, [])
        site = by_type.get(EvidenceType.SITE_VERIFICATION.value, [])
        gps = by_type.get(EvidenceType.GPS_COORDINATES.value, [])
        docs = by_type.get(EvidenceType.METHODOLOGY_DOCUMENTATION.value, [])

        fields = [
            extract_field(
                "baseline_water_volume",
                _metadata_sources(baseline) + _parsed_sources(baseline),
                keys=("baseline_water_volume", "baseline_volume"),
                default=0.0, coerce=to_float,
            ),
            extract_field(
                "project_water_volume",
                _metadata_sources(measurement) + _parsed_sources(measurement),
                keys=("project_water_volume", "water_volume", "project_volume"),
                default=0.0, coerce=to_float,
            ),
            extract_field(
                "measurement_period",
                _metadata_sources(measurement) + _parsed_sources(measurement),
                keys=("measurement_period", "period"),
                default=0.0, coerce=to_float,
            ),
            extract_field(
                "project_area",
                _metadata_sources(site),
                keys=("project_area",),
                default=0.0, coerce=to_float,
            ),
            extract_field(
                "water_source",
                _metadata_sources(site),
                keys=("water_source",),
                default="groundwater", coerce=to_str,
            ),
            extract_field(
                "latitude",
                _metadata_sources(gps) + _location_sources(gps),
                keys=("latitude",),
                default=NO_DEFAULT, coerce=to_float,
            ),
            extract_field(
                "longitude",
                _metadata_sources(gps) + _location_sources(gps),
                keys=("longitude",),
                default=NO_DEFAULT, coerce=to_float,
            ),
            extract_field(
                "watershed",
                _metadata_sources(gps),
                keys=("watershed",),
                default=None, coerce=to_str,
            ),
            extract_field(
                "calculation_method",
                _metadata_sources(docs),
                keys=("calculation_method",),
                default="direct_measurement", coerce=to_str,
            ),
            extract_field(
                "uncertainty_factor",
                _metadata_sources(docs),
                keys=("uncertainty_factor",),
                default=0.15, coerce=to_float,
            ),
        ]
        return {f.name: f for f in fields}

    def _build_inputs(self, extractions: Dict[str, FieldExtraction]) -> VWBAInputs:
        values = {name: f.value for name, f in extractions.items()}
        return VWBAInputs(methodology_version=self.version, **values)

    # ------------------------------------------------------------------
    # Validation and calculation
    # ------------------------------------------------------------------

    def validate_inputs(self, inputs: VWBAInputs) -> Tuple[List[str], float]:
        """Check inputs against policy.

        Returns:
            Tuple of (error messages, compounded penalty multiplier).
        """
        p = self.policy
        errors: List[str] = []
        multiplier = 1.0

        if inputs.measurement_period < p.minimum_measurement_period_days:
            errors.append(
                f"Measurement period ({inputs.measurement_period:g} days) below "
                f"minimum ({p.minimum_measurement_period_days:g} days)"
            )
            multiplier *= p.period_penalty
        if inputs.baseline_water_volume <= 0:
            errors.append("Invalid baseline water volume")
            multiplier *= p.baseline_volume_penalty
        if inputs.project_water_volume <= 0:
            errors.append("Invalid project water volume")
            multiplier *= p.project_volume_penalty
        if inputs.project_area <= 0:
            errors.append("Invalid project area")
            multiplier *= p.project_area_penalty
        if abs(inputs.latitude) > 90 or abs(inputs.longitude) > 180:
            errors.append("Invalid GPS coordinates")
            multiplier *= p.coordinates_penalty
        if inputs.uncertainty_factor > p.maximum_uncertainty:
            errors.append(
                f"Uncertainty factor ({inputs.uncertainty_factor * 100:g}%) exceeds "
                f"maximum ({p.maximum_uncertainty * 100:g}%)"
            )
            multiplier *= p.uncertainty_penalty
        elif inputs.uncertainty_factor < 0:
            errors.append(
                f"Invalid uncertainty factor ({inputs.uncertainty_factor:g}); "
                "must not be negative"
            )
            multiplier *= p.negative_uncertainty_penalty

        return errors, multiplier

    def calculate(
        self, inputs: VWBAInputs,
    ) -> Tuple[Dict[str, float], Dict[str, float], float, str]:
        """Compute benefit figures, uncertainty band, confidence and notes."""
        p = self.policy
        u = inputs.uncertainty_factor
        net = inputs.project_water_volume - inputs.baseline_water_volume

        calculation = {
            "volumetric_water_benefit": max(0.0, net),
            "baseline_volume": inputs.baseline_water_volume,
            "project_volume": inputs.project_water_volume,
            "net_benefit": net,
            "benefit_per_hectare": net / inputs.project_area,
            "annualized_benefit": net * DAYS_PER_YEAR / inputs.measurement_period,
        }
        uncertainty_range = {"lower": net * (1 - u), "upper": net * (1 + u)}

        completeness = min(inputs.measurement_period / DAYS_PER_YEAR, 1.0)
        confidence = (0.8 + 0.2 * completeness) * (1 - u)
        if net <= 0:
            confidence *= p.non_positive_benefit_factor
        confidence = max(0.0, min(1.0, confidence))

        quality_notes = []
        if inputs.measurement_period < p.short_period_days:
            quality_notes.append("Short measurement period may affect accuracy")
        if net <= 0:
            quality_notes.append(
                "Negative water benefit detected - verify baseline calculations"
            )
        if u > p.maximum_uncertainty:
            quality_notes.append(
                "High uncertainty factor - consider additional measurements"
            )
        notes = (
            f"Quality notes: {'; '.join(quality_notes)}"
            if quality_notes else "VWBA calculation completed successfully"
        )
        return calculation, uncertainty_range, confidence, notes


__all__ = [
    "VWBAPolicy",
    "VWBAInputs",
    "VWBAMethodologyHandler",
    "METHODOLOGY_LABEL",
    "UNITS",
]
