# -*- coding: utf-8 -*-
"""Pytest configuration and shared fixtures."""

import hashlib
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from ecoverify.config import VerificationConfig, reset_config, set_config
from ecoverify.evidence_store import InMemoryEvidenceStore
from ecoverify.models import (
    CaptureLocation,
    EvidenceFile,
    EvidenceSubmission,
    EvidenceType,
)
from ecoverify.orchestrator import VerificationOrchestrator
from ecoverify.pipeline import EvidenceValidationPipeline
from ecoverify.repository import InMemoryVerificationRepository

CAPTURE_DATE = datetime(2024, 6, 1, tzinfo=timezone.utc)

WATER_CSV = (
    b"date,water_volume,flow_rate\n"
    b"2024-01-01,25000,12.5\n"
    b"2024-03-01,25000,12.1\n"
    b"2024-05-01,25000,11.9\n"
    b"2024-07-01,25000,12.3\n"
    b"2024-09-01,25000,12.0\n"
    b"2024-11-01,25000,12.2\n"
)

BASELINE_JSON = b'{"baseline_water_volume": 100000, "assessment_year": 2023}'

METHODOLOGY_PDF = b"%PDF-1.4\n" + b"VWBA v2.0 methodology statement\n" * 64


@pytest.fixture(autouse=True)
def isolated_config():
    """Install a default config singleton, ignoring ECOVERIFY_* variables."""
    set_config(VerificationConfig())
    yield
    reset_config()


@pytest.fixture
def config():
    """Engine config with a small worker pool."""
    return VerificationConfig(max_workers=2, archive_retries=2)


@pytest.fixture
def repository():
    """Repository that knows credits 42 and 43."""
    return InMemoryVerificationRepository(credit_ids=["42", "43"])


@pytest.fixture
def evidence_store():
    """In-process evidence store."""
    return InMemoryEvidenceStore()


@pytest.fixture
def pipeline(repository, evidence_store, config):
    """Evidence pipeline wired to the in-memory gateways."""
    return EvidenceValidationPipeline(
        repository, evidence_store=evidence_store, config=config,
    )


@pytest.fixture
def orchestrator(repository, pipeline, config):
    """Orchestrator with the default methodology registry."""
    return VerificationOrchestrator(
        repository=repository, pipeline=pipeline, config=config,
    )


@pytest.fixture
def vwba_method(orchestrator):
    """The VWBA v2 methodology, registered with handler defaults."""
    return orchestrator.register_methodology({"method_id": "vwba-v2"})


@pytest.fixture
def make_evidence(repository):
    """Factory adding an EvidenceFile whose hash and size match ``content``."""

    def _make(
        result_id: str,
        evidence_type: str,
        content: bytes = b"evidence",
        metadata: Optional[Dict[str, Any]] = None,
        **overrides: Any,
    ) -> EvidenceFile:
        fields: Dict[str, Any] = {
            "verification_result_id": result_id,
            "evidence_type": evidence_type,
            "file_name": f"{evidence_type}.bin",
            "file_hash": hashlib.sha256(content).hexdigest(),
            "file_size": len(content),
            "mime_type": "application/octet-stream",
            "capture_date": CAPTURE_DATE,
            "capture_device": "field-kit-7",
            "metadata": metadata,
        }
        fields.update(overrides)
        evidence = EvidenceFile(**fields)
        repository.add_evidence(evidence)
        return evidence

    return _make


@pytest.fixture
def vwba_submissions() -> List[EvidenceSubmission]:
    """A complete VWBA evidence set.

    Baseline 100000 L, project 150000 L, 10 ha, 365 days, 10% uncertainty.
    """
    location = CaptureLocation(latitude=12.9716, longitude=77.5946)
    common = {"capture_date": CAPTURE_DATE, "capture_device": "field-kit-7"}
    return [
        EvidenceSubmission(
            evidence_type=EvidenceType.WATER_MEASUREMENT_DATA,
            file_name="flow_2024.csv",
            content=WATER_CSV,
            mime_type="text/csv",
            metadata={
                "project_water_volume": 150000,
                "water_volume": 150000,
                "measurement_period": 365,
                "units": "liters",
                "accuracy": 0.95,
            },
            **common,
        ),
        EvidenceSubmission(
            evidence_type=EvidenceType.BASELINE_ASSESSMENT,
            file_name="baseline.json",
            content=BASELINE_JSON,
            mime_type="application/json",
            metadata={"baseline_water_volume": 100000},
            **common,
        ),
        EvidenceSubmission(
            evidence_type=EvidenceType.SITE_VERIFICATION,
            file_name="site_visit.txt",
            content=b"Site visit completed; recharge structures inspected.",
            mime_type="text/plain",
            capture_location=location,
            metadata={"project_area": 10, "water_source": "groundwater", "gps_accuracy": 4},
            **common,
        ),
        EvidenceSubmission(
            evidence_type=EvidenceType.GPS_COORDINATES,
            file_name="gps.txt",
            content=b"12.9716,77.5946",
            mime_type="text/plain",
            capture_location=location,
            metadata={
                "latitude": 12.9716,
                "longitude": 77.5946,
                "watershed": "Arkavathy",
                "gps_accuracy": 3,
            },
            **common,
        ),
        EvidenceSubmission(
            evidence_type=EvidenceType.METHODOLOGY_DOCUMENTATION,
            file_name="methodology.pdf",
            content=METHODOLOGY_PDF,
            mime_type="application/pdf",
            metadata={"calculation_method": "direct_measurement", "uncertainty_factor": 0.1},
            **common,
        ),
    ]
