# -*- coding: utf-8 -*-
"""Tests for the built-in validation rules and the rule registry."""

import hashlib

import pytest

from ecoverify.models import (
    CaptureLocation,
    EvidenceFile,
    IssueSeverity,
    ParsedData,
    ParsedFormat,
    ValidationResult,
)
from ecoverify.rules import (
    FILE_INTEGRITY_RULE,
    WILDCARD,
    RuleContext,
    RuleRegistry,
    ValidationRule,
    build_default_rule_registry,
    check_document,
    check_file_integrity,
    check_gps,
    check_metadata_completeness,
    check_parsed_data,
    check_water_data,
)

CONTENT = b"flow meter export"


def _evidence(**overrides):
    fields = {
        "evidence_id": "EVD-000000000001",
        "verification_result_id": "VER-000000000001",
        "evidence_type": "water_measurement_data",
        "file_name": "flow.csv",
        "file_hash": hashlib.sha256(CONTENT).hexdigest(),
        "file_size": len(CONTENT),
        "mime_type": "text/csv",
        "capture_device": "meter-3",
        "metadata": {},
    }
    fields.update(overrides)
    return EvidenceFile(**fields)


def _messages(result):
    return [i.message for i in result.issues]


class TestFileIntegrity:
    """check_file_integrity."""

    def test_matching_content(self):
        result = check_file_integrity(RuleContext(_evidence(), content=CONTENT))
        assert result.valid
        assert result.score == 1.0
        assert result.metadata["integrity_checked"] is True

    def test_uppercase_declared_hash_matches(self):
        evidence = _evidence(file_hash=hashlib.sha256(CONTENT).hexdigest().upper())
        assert check_file_integrity(RuleContext(evidence, content=CONTENT)).valid

    def test_hash_mismatch_is_error(self):
        result = check_file_integrity(RuleContext(_evidence(), content=b"tampered bytes!!!"))
        assert not result.valid
        assert result.score == 0.0
        assert "File hash mismatch - file may be corrupted" in _messages(result)

    def test_size_mismatch_is_error(self):
        evidence = _evidence(file_size=len(CONTENT) + 1)
        result = check_file_integrity(RuleContext(evidence, content=CONTENT))
        assert not result.valid
        assert _messages(result) == ["File size mismatch"]

    def test_without_content_is_informational(self):
        result = check_file_integrity(RuleContext(_evidence()))
        assert result.valid
        assert result.score == 1.0
        assert result.issues[0].severity == IssueSeverity.INFO
        assert result.metadata == {"integrity_checked": False}


class TestMetadataCompleteness:
    """check_metadata_completeness."""

    def test_complete(self):
        from datetime import datetime, timezone
        evidence = _evidence(capture_date=datetime(2024, 1, 1, tzinfo=timezone.utc))
        result = check_metadata_completeness(RuleContext(evidence))
        assert result.valid
        assert result.score == 1.0
        assert result.issues == []

    def test_everything_missing_still_valid(self):
        evidence = _evidence(capture_device=None, metadata=None)
        result = check_metadata_completeness(RuleContext(evidence))
        assert result.valid
        assert result.score == pytest.approx(0.4)
        assert [i.severity for i in result.issues] == [
            IssueSeverity.WARNING, IssueSeverity.INFO, IssueSeverity.WARNING,
        ]

    def test_empty_metadata_is_present(self):
        evidence = _evidence(metadata={})
        result = check_metadata_completeness(RuleContext(evidence))
        assert "Missing or invalid metadata structure" not in _messages(result)


class TestWaterData:
    """check_water_data."""

    def test_valid_measurement(self):
        evidence = _evidence(metadata={
            "water_volume": 1200, "measurement_period": 30, "units": "liters",
            "accuracy": 0.9, "flow_rate": 3.2,
        })
        result = check_water_data(RuleContext(evidence))
        assert result.valid
        assert result.score == 1.0
        assert result.metadata["measured_parameters"] == ["water_volume", "flow_rate"]

    def test_no_metadata_is_fatal(self):
        result = check_water_data(RuleContext(_evidence(metadata=None)))
        assert not result.valid
        assert result.score == 0.0
        assert _messages(result) == ["No metadata found for water measurement data"]

    def test_missing_required_fields(self):
        result = check_water_data(RuleContext(_evidence(metadata={"units": "liters"})))
        assert not result.valid
        assert "Missing required field: water_volume" in _messages(result)
        assert "Missing required field: measurement_period" in _messages(result)
        assert result.score == pytest.approx(0.4)

    def test_negative_volume_and_zero_period(self):
        evidence = _evidence(metadata={
            "water_volume": -5, "measurement_period": 0, "units": "liters",
        })
        result = check_water_data(RuleContext(evidence))
        assert "Invalid water volume value" in _messages(result)
        assert "Invalid measurement period" in _messages(result)
        assert result.score == pytest.approx(0.3)

    def test_low_accuracy_is_warning(self):
        evidence = _evidence(metadata={
            "water_volume": 10, "measurement_period": 10, "units": "m3", "accuracy": 0.5,
        })
        result = check_water_data(RuleContext(evidence))
        assert result.valid
        assert result.score == pytest.approx(0.9)
        assert _messages(result) == ["Low measurement accuracy"]


class TestGps:
    """check_gps."""

    def test_missing_location_is_fatal(self):
        result = check_gps(RuleContext(_evidence(evidence_type="gps_coordinates")))
        assert not result.valid
        assert _messages(result) == ["No GPS coordinates found"]

    def test_out_of_range_latitude(self):
        evidence = _evidence(
            evidence_type="gps_coordinates",
            capture_location=CaptureLocation(latitude=95, longitude=10),
            metadata={"gps_accuracy": 2},
        )
        result = check_gps(RuleContext(evidence))
        assert not result.valid
        assert _messages(result) == ["Invalid latitude value"]
        assert result.score == pytest.approx(0.5)

    def test_accuracy_not_provided(self):
        evidence = _evidence(
            evidence_type="gps_coordinates",
            capture_location=CaptureLocation(latitude=12.9, longitude=77.6),
        )
        result = check_gps(RuleContext(evidence))
        assert result.valid
        assert result.score == pytest.approx(0.95)

    def test_low_accuracy(self):
        evidence = _evidence(
            evidence_type="gps_coordinates",
            capture_location=CaptureLocation(latitude=12.9, longitude=77.6),
            metadata={"gps_accuracy": 25},
        )
        result = check_gps(RuleContext(evidence))
        assert _messages(result) == ["Low GPS accuracy"]


class TestDocument:
    """check_document."""

    def test_small_unusual_document(self):
        evidence = _evidence(
            evidence_type="field_report", mime_type="image/png", file_size=100,
        )
        result = check_document(RuleContext(evidence))
        assert result.valid
        assert result.score == pytest.approx(0.7)

    def test_normal_pdf(self):
        evidence = _evidence(
            evidence_type="methodology_documentation",
            mime_type="application/pdf",
            file_size=20_000,
        )
        result = check_document(RuleContext(evidence))
        assert result.issues == []


class TestParsedData:
    """check_parsed_data."""

    def test_zero_rows_is_error(self):
        parsed = ParsedData(format=ParsedFormat.CSV, data=[], row_count=0, columns=["date"])
        result = check_parsed_data(_evidence(), parsed)
        assert not result.valid
        assert result.score == 0.0
        assert result.metadata["rule_name"] == "parsed_data_validation"
        assert result.issues[0].evidence_id == "EVD-000000000001"

    def test_few_rows_and_no_measurement_columns(self):
        parsed = ParsedData(
            format=ParsedFormat.CSV,
            data=[{"site": "A", "note": "ok"}],
            row_count=1,
            columns=["site", "note"],
        )
        result = check_parsed_data(_evidence(), parsed)
        assert result.valid
        assert set(_messages(result)) == {
            "Very few data rows found",
            "No standard water measurement columns detected",
            "No numerical measurement data detected",
        }
        assert result.score == pytest.approx(0.4)

    def test_empty_fields_reported(self):
        rows = [{"date": "2024-01-01", "volume": "10", "note": ""}] * 6
        parsed = ParsedData(
            format=ParsedFormat.CSV, data=rows, row_count=6,
            columns=["date", "volume", "note"],
        )
        result = check_parsed_data(_evidence(), parsed)
        assert _messages(result) == ["1 empty fields detected in data"]


class TestValidationRule:
    """ValidationRule.run stamps identity onto results."""

    def test_run_stamps_rule_and_evidence(self):
        result = FILE_INTEGRITY_RULE.run(RuleContext(_evidence()))
        assert result.metadata["rule_name"] == "file_integrity"
        assert result.metadata["rule_description"] == "Verify file hash and integrity"
        assert all(i.evidence_id == "EVD-000000000001" for i in result.issues)


class TestRuleRegistry:
    """RuleRegistry assembly and lookup."""

    def test_default_rules_for_types(self):
        registry = build_default_rule_registry()
        names = lambda t: [r.name for r in registry.rules_for(t)]

        assert names("water_measurement_data") == [
            "file_integrity", "metadata_completeness", "water_data_validation",
        ]
        assert names("site_verification") == [
            "file_integrity", "metadata_completeness", "gps_validation",
        ]
        assert names("site_photos") == ["file_integrity", "metadata_completeness"]

    def test_evidence_types(self):
        registry = build_default_rule_registry()
        assert "calculation_sheet" in registry.evidence_types()
        assert "site_photos" not in registry.evidence_types()

    def test_extra_rules_appended(self):
        extra = ValidationRule(
            name="photo_exif",
            description="Check photo EXIF data",
            evidence_types=("site_photos",),
            check=lambda ctx: ValidationResult(valid=True, score=1.0),
        )
        registry = build_default_rule_registry([extra])
        assert [r.name for r in registry.rules_for("site_photos")][-1] == "photo_exif"

    def test_registry_is_immutable(self):
        registry = RuleRegistry.from_rules([FILE_INTEGRITY_RULE])
        assert registry.wildcard == (FILE_INTEGRITY_RULE,)
        with pytest.raises(TypeError):
            registry.by_type["gps_coordinates"] = ()
        assert FILE_INTEGRITY_RULE.evidence_types == (WILDCARD,)
