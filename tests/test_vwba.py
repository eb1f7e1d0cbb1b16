# -*- coding: utf-8 -*-
"""Tests for the VWBA v2.0 methodology handler."""

import hashlib

import pytest

from ecoverify.extraction import ExtractionStatus
from ecoverify.methodologies.base import compute_evidence_set_hash
from ecoverify.methodologies.vwba import VWBAMethodologyHandler, VWBAPolicy
from ecoverify.models import CaptureLocation, EvidenceFile, VerificationRequest

REQUEST = VerificationRequest(
    credit_id="42", method_id="vwba-v2", validator_address="0xvalidator",
)


def _evidence(evidence_id, evidence_type, metadata=None, **overrides):
    fields = {
        "evidence_id": evidence_id,
        "verification_result_id": "VER-000000000001",
        "evidence_type": evidence_type,
        "file_name": f"{evidence_type}.bin",
        "file_hash": hashlib.sha256(evidence_id.encode()).hexdigest(),
        "file_size": 10,
        "metadata": metadata,
    }
    fields.update(overrides)
    return EvidenceFile(**fields)


def _evidence_set(
    baseline=100000,
    project=150000,
    period=365,
    area=10,
    uncertainty=0.1,
    gps=None,
    water_extra=None,
):
    water = {"project_water_volume": project, "measurement_period": period}
    if project is None:
        del water["project_water_volume"]
    water.update(water_extra or {})
    return [
        _evidence("EVD-a01", "water_measurement_data", water),
        _evidence("EVD-a02", "baseline_assessment", {"baseline_water_volume": baseline}),
        _evidence("EVD-a03", "site_verification", {"project_area": area}),
        _evidence(
            "EVD-a04", "gps_coordinates",
            gps if gps is not None else {
                "latitude": 12.9716, "longitude": 77.5946, "watershed": "Arkavathy",
            },
        ),
        _evidence("EVD-a05", "methodology_documentation", {"uncertainty_factor": uncertainty}),
    ]


@pytest.fixture
def handler():
    return VWBAMethodologyHandler()


class TestContract:
    """Handler identity and requirements."""

    def test_identity(self, handler):
        assert handler.method_id == "vwba-v2"
        assert handler.methodology_type == "VWBA"
        assert handler.version == "2.0"
        assert handler.minimum_confidence() == 0.8

    def test_required_types(self, handler):
        assert handler.required_evidence_types() == {
            "water_measurement_data",
            "baseline_assessment",
            "site_verification",
            "gps_coordinates",
            "methodology_documentation",
        }

    def test_criteria(self, handler):
        assert handler.criteria() == {
            "minimum_measurement_period": 30,
            "maximum_uncertainty": pytest.approx(20.0),
            "required_data_quality": 0.8,
            "spatial_accuracy": 10,
        }


class TestCalculation:
    """Benefit figures and confidence."""

    def test_full_year_benefit(self, handler):
        outcome = handler.validate(REQUEST, _evidence_set())

        assert outcome.verified is True
        assert outcome.confidence_score == pytest.approx(0.9)
        assert outcome.notes == "VWBA calculation completed successfully"

        data = outcome.calculation_data
        calc = data["calculation"]
        assert calc["net_benefit"] == pytest.approx(50000)
        assert calc["volumetric_water_benefit"] == pytest.approx(50000)
        assert calc["benefit_per_hectare"] == pytest.approx(5000)
        assert calc["annualized_benefit"] == pytest.approx(50000)
        assert data["uncertainty_range"] == {
            "lower": pytest.approx(45000), "upper": pytest.approx(55000),
        }
        assert data["units"] == "liters"
        assert data["methodology"] == "VWBA v2.0"
        assert data["inputs"]["water_source"] == "groundwater"
        assert data["inputs"]["location"]["watershed"] == "Arkavathy"
        assert data["evidence_hash"] == outcome.evidence_hash

    def test_half_year_annualizes(self, handler):
        outcome = handler.validate(REQUEST, _evidence_set(period=182.5))
        calc = outcome.calculation_data["calculation"]
        assert calc["annualized_benefit"] == pytest.approx(100000)
        assert outcome.confidence_score == pytest.approx((0.8 + 0.2 * 0.5) * 0.9)
        assert outcome.verified is True

    def test_short_period_note_and_lower_confidence(self, handler):
        outcome = handler.validate(REQUEST, _evidence_set(period=60))
        assert outcome.confidence_score == pytest.approx((0.8 + 0.2 * 60 / 365) * 0.9)
        assert outcome.verified is False
        assert "Short measurement period may affect accuracy" in outcome.notes

    def test_negative_benefit(self, handler):
        outcome = handler.validate(REQUEST, _evidence_set(baseline=150000, project=100000))

        calc = outcome.calculation_data["calculation"]
        assert calc["net_benefit"] == pytest.approx(-50000)
        assert calc["volumetric_water_benefit"] == 0.0
        assert outcome.confidence_score == pytest.approx(0.45)
        assert outcome.verified is False
        assert "Negative water benefit" in outcome.notes

    def test_confidence_without_uncertainty(self, handler):
        outcome = handler.validate(REQUEST, _evidence_set(uncertainty=0))
        assert outcome.confidence_score == pytest.approx(1.0)


class TestInputValidation:
    """Policy failures produce non-verified outcomes."""

    def test_excess_uncertainty(self, handler):
        outcome = handler.validate(REQUEST, _evidence_set(uncertainty=0.25))

        assert outcome.verified is False
        assert outcome.confidence_score == pytest.approx(0.8)
        assert outcome.notes == "Uncertainty factor (25%) exceeds maximum (20%)"
        assert outcome.calculation_data["penalty_multiplier"] == pytest.approx(0.8)
        assert "calculation" not in outcome.calculation_data

    def test_negative_uncertainty_rejected(self, handler):
        outcome = handler.validate(REQUEST, _evidence_set(uncertainty=-0.5))

        assert outcome.verified is False
        assert outcome.confidence_score == 0.0
        assert outcome.calculation_data["validation_errors"] == [
            "Invalid uncertainty factor (-0.5); must not be negative",
        ]
        assert outcome.calculation_data["penalty_multiplier"] == pytest.approx(0.5)
        assert "uncertainty_range" not in outcome.calculation_data

    def test_negative_uncertainty_penalty_is_configurable(self):
        handler = VWBAMethodologyHandler(VWBAPolicy(negative_uncertainty_penalty=0.9))
        outcome = handler.validate(REQUEST, _evidence_set(uncertainty=-0.1))
        assert outcome.verified is False
        assert outcome.confidence_score == pytest.approx(0.9)

    def test_short_period_below_minimum(self, handler):
        outcome = handler.validate(REQUEST, _evidence_set(period=20))
        assert outcome.verified is False
        assert outcome.confidence_score == 0.0
        assert outcome.calculation_data["validation_errors"] == [
            "Measurement period (20 days) below minimum (30 days)",
        ]

    def test_penalties_compound(self, handler):
        outcome = handler.validate(REQUEST, _evidence_set(baseline=0, area=0))
        assert outcome.calculation_data["validation_errors"] == [
            "Invalid baseline water volume",
            "Invalid project area",
        ]
        assert outcome.calculation_data["penalty_multiplier"] == pytest.approx(0.3 * 0.7)
        assert outcome.confidence_score == 0.0

    def test_out_of_range_coordinates(self, handler):
        outcome = handler.validate(
            REQUEST, _evidence_set(gps={"latitude": 95, "longitude": 10}),
        )
        assert "Invalid GPS coordinates" in outcome.calculation_data["validation_errors"]

    def test_custom_policy(self):
        handler = VWBAMethodologyHandler(VWBAPolicy(maximum_uncertainty=0.3))
        outcome = handler.validate(REQUEST, _evidence_set(uncertainty=0.25))
        assert outcome.verified is False
        assert outcome.confidence_score == pytest.approx(0.75)


class TestEvidenceRequirements:
    """Missing evidence and missing inputs."""

    def test_missing_evidence_types(self, handler):
        outcome = handler.validate(REQUEST, _evidence_set()[:1])

        assert outcome.verified is False
        assert outcome.confidence_score == 0.0
        assert outcome.calculation_data["missing_types"] == [
            "baseline_assessment",
            "gps_coordinates",
            "methodology_documentation",
            "site_verification",
        ]
        assert outcome.calculation_data["provided_types"] == ["water_measurement_data"]
        assert outcome.notes.startswith("Missing required evidence: baseline_assessment")

    def test_missing_coordinates_have_no_default(self, handler):
        outcome = handler.validate(REQUEST, _evidence_set(gps={"watershed": "Arkavathy"}))

        assert outcome.verified is False
        assert outcome.confidence_score == 0.0
        assert outcome.calculation_data["missing_fields"] == ["latitude", "longitude"]
        assert outcome.notes == "Missing calculation inputs: latitude, longitude"

    def test_coordinates_from_capture_location(self, handler):
        evidence = _evidence_set(gps={})
        evidence[3] = evidence[3].model_copy(update={
            "capture_location": CaptureLocation(latitude=12.9, longitude=77.6),
        })

        outcome = handler.validate(REQUEST, evidence)

        assert outcome.verified is True
        location = outcome.calculation_data["inputs"]["location"]
        assert location == {"latitude": 12.9, "longitude": 77.6, "watershed": None}

    def test_defaults_are_reported(self, handler):
        outcome = handler.validate(REQUEST, _evidence_set())
        extraction = outcome.calculation_data["extraction"]
        assert extraction["water_source"]["status"] == ExtractionStatus.DEFAULTED.value
        assert extraction["project_water_volume"] == {
            "status": "present", "value": 150000.0, "source": "EVD-a01",
        }

    def test_parsed_measurement_fields_fallback(self, handler):
        evidence = _evidence_set(
            project=None,
            water_extra={"parsed_data": {
                "format": "csv",
                "measurement_fields": {"water_volume": "150000"},
            }},
        )

        outcome = handler.validate(REQUEST, evidence)

        assert outcome.verified is True
        assert outcome.calculation_data["inputs"]["project_water_volume"] == 150000.0


class TestEvidenceSetHash:
    """compute_evidence_set_hash."""

    def test_order_independent(self):
        evidence = _evidence_set()
        assert compute_evidence_set_hash(evidence) == compute_evidence_set_hash(
            list(reversed(evidence)),
        )

    def test_value(self):
        evidence = _evidence_set()
        joined = "".join(e.file_hash for e in sorted(evidence, key=lambda e: e.evidence_id))
        assert compute_evidence_set_hash(evidence) == hashlib.sha256(joined.encode()).hexdigest()

    def test_changes_with_content(self):
        evidence = _evidence_set()
        changed = list(evidence)
        changed[0] = changed[0].model_copy(update={"file_hash": "0" * 64})
        assert compute_evidence_set_hash(evidence) != compute_evidence_set_hash(changed)
