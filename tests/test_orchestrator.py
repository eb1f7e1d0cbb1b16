# -*- coding: utf-8 -*-
"""Tests for the verification orchestrator and lifecycle."""

import threading
from datetime import timedelta

import pytest

from ecoverify.exceptions import (
    DuplicateMethodologyError,
    DuplicateVerificationError,
    EvidencePolicyError,
    InvalidTransitionError,
    MethodologyUnavailableError,
    NotFoundError,
)
from ecoverify.methodologies import MethodologyRegistry, VWBAMethodologyHandler
from ecoverify.models import (
    EvidenceSubmission,
    EvidenceType,
    QualityGrade,
    VerificationStatus,
)
from ecoverify.mrv import MRVProtocolRegistry
from ecoverify.orchestrator import VerificationOrchestrator

VALIDATOR = "0xvalidator"


def _submit(orchestrator, credit_id="42", method_id="vwba-v2"):
    return orchestrator.submit_verification(
        credit_id, method_id, VALIDATOR, validator_name="Field Auditor",
    )


def _attach(orchestrator, result_id, submissions):
    attached = orchestrator.attach_evidence(result_id, submissions, uploaded_by=VALIDATOR)
    content = {e.evidence_id: s.content for e, s in zip(attached, submissions)}
    return attached, content


def _run(orchestrator, submissions, credit_id="42"):
    result = _submit(orchestrator, credit_id)
    _, content = _attach(orchestrator, result.result_id, submissions)
    return orchestrator.perform_verification(result.result_id, content)


class _BrokenHandler(VWBAMethodologyHandler):
    def validate(self, request, evidence):
        raise RuntimeError("division by zero in baseline model")


class TestMethodologies:
    """Registration, listing and activation."""

    def test_handler_defaults(self, vwba_method):
        assert vwba_method.name == "Volumetric Water Benefit Accounting"
        assert vwba_method.methodology_type == "VWBA"
        assert vwba_method.version == "2.0"
        assert vwba_method.minimum_confidence == 0.8
        assert vwba_method.required_evidence_types == sorted(
            VWBAMethodologyHandler.REQUIRED_EVIDENCE_TYPES,
        )
        assert vwba_method.criteria["minimum_measurement_period"] == 30
        assert vwba_method.active is True

    def test_explicit_values_win(self, orchestrator):
        method = orchestrator.register_methodology({
            "method_id": "vwba-v2", "name": "VWBA (strict)", "minimum_confidence": 0.95,
        })
        assert method.name == "VWBA (strict)"
        assert method.minimum_confidence == 0.95
        assert method.methodology_type == "VWBA"

    def test_without_handler_uses_config_threshold(self, orchestrator, config):
        method = orchestrator.register_methodology({
            "method_id": "custom-1", "name": "Custom", "methodology_type": "CUSTOM",
        })
        assert method.minimum_confidence == config.confidence_threshold
        assert method.required_evidence_types == []

    def test_duplicate(self, orchestrator, vwba_method):
        with pytest.raises(DuplicateMethodologyError) as excinfo:
            orchestrator.register_methodology({"method_id": "vwba-v2"})
        assert excinfo.value.message == "Methodology vwba-v2 already exists"
        assert excinfo.value.context["method_id"] == "vwba-v2"

    def test_invalid_data(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.register_methodology({
                "method_id": "x", "name": "X", "methodology_type": "X",
                "required_evidence_types": ["tea_leaves"],
            })

    def test_list_filters(self, orchestrator, vwba_method):
        orchestrator.register_methodology({
            "method_id": "custom-1", "name": "Custom", "methodology_type": "CUSTOM",
            "active": False,
        })
        assert [m.method_id for m in orchestrator.list_methodologies()] == [
            "vwba-v2", "custom-1",
        ]
        assert [m.method_id for m in orchestrator.list_methodologies("VWBA")] == ["vwba-v2"]
        assert [m.method_id for m in orchestrator.list_methodologies(active=False)] == [
            "custom-1",
        ]

    def test_deactivate_blocks_submission(self, orchestrator, vwba_method):
        method = orchestrator.set_methodology_active("vwba-v2", False, actor="admin")
        assert method.active is False
        with pytest.raises(MethodologyUnavailableError):
            _submit(orchestrator)

        orchestrator.set_methodology_active("vwba-v2", True)
        assert _submit(orchestrator).status == VerificationStatus.PENDING

    def test_activate_unknown(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.set_methodology_active("nope", True)


class TestSubmission:
    """Preconditions and idempotency."""

    def test_creates_pending_record(self, orchestrator, vwba_method):
        result = _submit(orchestrator)
        assert result.result_id.startswith("VER-")
        assert result.status == VerificationStatus.PENDING
        assert result.verified is False
        assert result.validator_name == "Field Auditor"
        assert orchestrator.get_result(result.result_id) == result

    def test_unknown_credit(self, orchestrator, vwba_method):
        with pytest.raises(NotFoundError) as excinfo:
            _submit(orchestrator, credit_id="99999")
        assert excinfo.value.context == {"entity_type": "credit", "entity_id": "99999"}

    def test_unknown_method(self, orchestrator):
        with pytest.raises(MethodologyUnavailableError):
            _submit(orchestrator)

    def test_method_without_handler(self, orchestrator):
        orchestrator.register_methodology({
            "method_id": "custom-1", "name": "Custom", "methodology_type": "CUSTOM",
        })
        with pytest.raises(MethodologyUnavailableError) as excinfo:
            _submit(orchestrator, method_id="custom-1")
        assert "No handler registered" in excinfo.value.message

    def test_duplicate_submission(self, orchestrator, vwba_method):
        first = _submit(orchestrator)
        with pytest.raises(DuplicateVerificationError) as excinfo:
            _submit(orchestrator)
        assert "already exists" in excinfo.value.message
        assert excinfo.value.context["existing_result_id"] == first.result_id

    def test_concurrent_submissions_create_one_record(
        self, orchestrator, repository, vwba_method,
    ):
        workers = 8
        barrier = threading.Barrier(workers)
        accepted, duplicates = [], []

        def submit():
            barrier.wait()
            try:
                accepted.append(_submit(orchestrator))
            except DuplicateVerificationError as exc:
                duplicates.append(exc)

        threads = [threading.Thread(target=submit) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(accepted) == 1
        assert len(duplicates) == workers - 1
        pending = repository.list_results(statuses=[VerificationStatus.PENDING])
        assert [r.result_id for r in pending] == [accepted[0].result_id]

    def test_other_credit_is_independent(self, orchestrator, vwba_method):
        _submit(orchestrator, credit_id="42")
        assert _submit(orchestrator, credit_id="43").credit_id == "43"

    def test_resubmit_after_rejection(self, orchestrator, vwba_method):
        first = _submit(orchestrator)
        orchestrator.start_review(first.result_id, "auditor")
        orchestrator.review_verification(first.result_id, "auditor", approved=False)

        second = _submit(orchestrator)
        assert second.result_id != first.result_id

    def test_unknown_result(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.get_result("VER-000000000000")


class TestEvidenceAttachment:
    """Upload policy and open-status requirement."""

    def test_attach_records_hash_and_size(self, orchestrator, vwba_method, vwba_submissions):
        result = _submit(orchestrator)
        attached, _ = _attach(orchestrator, result.result_id, vwba_submissions)

        assert len(attached) == 5
        first = attached[0]
        assert first.evidence_type == "water_measurement_data"
        assert first.file_size == len(vwba_submissions[0].content)
        assert first.uploaded_by == VALIDATOR
        assert first.processed is False
        assert [e.evidence_id for e in orchestrator.list_evidence(result.result_id)] == [
            e.evidence_id for e in attached
        ]

    def test_disallowed_mime_rejects_whole_batch(
        self, orchestrator, vwba_method, vwba_submissions,
    ):
        result = _submit(orchestrator)
        bad = EvidenceSubmission(
            evidence_type=EvidenceType.SITE_PHOTOS,
            file_name="site.zip",
            content=b"PK\x03\x04",
            mime_type="application/zip",
        )
        with pytest.raises(EvidencePolicyError) as excinfo:
            orchestrator.attach_evidence(result.result_id, vwba_submissions + [bad])
        assert excinfo.value.message == "File type application/zip not allowed"
        assert orchestrator.list_evidence(result.result_id) == []

    def test_oversize_file(self, orchestrator, vwba_method, vwba_submissions, config):
        config.max_file_size_bytes = 100
        result = _submit(orchestrator)
        with pytest.raises(EvidencePolicyError) as excinfo:
            orchestrator.attach_evidence(result.result_id, vwba_submissions)
        assert excinfo.value.context["file_name"] == "flow_2024.csv"

    def test_attach_to_resolved_result(self, orchestrator, vwba_method, vwba_submissions):
        result = _submit(orchestrator)
        orchestrator.start_review(result.result_id, "auditor")
        orchestrator.review_verification(result.result_id, "auditor", approved=False)
        with pytest.raises(InvalidTransitionError):
            orchestrator.attach_evidence(result.result_id, vwba_submissions)

    def test_process_evidence_stores_grade(
        self, orchestrator, vwba_method, vwba_submissions,
    ):
        result = _submit(orchestrator)
        _, content = _attach(orchestrator, result.result_id, vwba_submissions)

        outcome = orchestrator.process_evidence(result.result_id, content)

        assert outcome.quality_grade == QualityGrade.A
        stored = orchestrator.get_result(result.result_id)
        assert stored.quality_grade == QualityGrade.A
        assert stored.quality_score == pytest.approx(1.0)
        assert stored.status == VerificationStatus.PENDING


class TestPerformVerification:
    """Calculation plus evidence scoring."""

    def test_complete_evidence(self, orchestrator, vwba_method, vwba_submissions):
        run = _run(orchestrator, vwba_submissions)

        assert run.status == VerificationStatus.IN_REVIEW
        assert run.verified is True
        assert run.confidence_score == pytest.approx(0.9)
        assert run.quality_grade == QualityGrade.A
        assert run.notes == "VWBA calculation completed successfully"
        assert run.calculation_data["calculation"]["net_benefit"] == pytest.approx(50000)
        assert run.calculation_data["evidence_quality"] == {
            "grade": "A", "score": pytest.approx(1.0), "errors": 0, "warnings": 0,
        }
        evidence = orchestrator.list_evidence(run.result_id)
        assert run.evidence_hash == VerificationOrchestrator.compute_evidence_set_hash(evidence)
        assert all(e.verified and e.storage_locator for e in evidence)

    def test_missing_evidence(self, orchestrator, vwba_method):
        result = _submit(orchestrator)
        run = orchestrator.perform_verification(result.result_id)

        assert run.verified is False
        assert run.confidence_score == 0.0
        assert run.quality_grade == QualityGrade.F
        assert run.notes.startswith("Missing required evidence")
        assert run.calculation_data["evidence_quality"]["errors"] == 1

    def test_method_threshold_applies(self, orchestrator, vwba_submissions):
        orchestrator.register_methodology({"method_id": "vwba-v2", "minimum_confidence": 0.95})
        run = _run(orchestrator, vwba_submissions)
        assert run.confidence_score == pytest.approx(0.9)
        assert run.verified is False

    def test_handler_failure_is_an_outcome(self, repository, pipeline, config, vwba_submissions):
        orchestrator = VerificationOrchestrator(
            repository=repository,
            methodology_registry=MethodologyRegistry([_BrokenHandler()]),
            pipeline=pipeline,
            config=config,
        )
        orchestrator.register_methodology({"method_id": "vwba-v2"})

        run = _run(orchestrator, vwba_submissions)

        assert run.verified is False
        assert run.confidence_score == 0.0
        assert run.notes == "Calculation failed: division by zero in baseline model"
        assert run.quality_grade == QualityGrade.A

    def test_rerun_while_in_review(self, orchestrator, vwba_method, vwba_submissions):
        run = _run(orchestrator, vwba_submissions)
        again = orchestrator.perform_verification(run.result_id)
        assert again.status == VerificationStatus.IN_REVIEW
        assert again.verified is True

    def test_resolved_record_cannot_run(self, orchestrator, vwba_method, vwba_submissions):
        run = _run(orchestrator, vwba_submissions)
        orchestrator.review_verification(run.result_id, "auditor", approved=True)
        with pytest.raises(InvalidTransitionError):
            orchestrator.perform_verification(run.result_id)

    def test_auto_resolve(self, orchestrator, vwba_method, vwba_submissions, config):
        config.auto_resolve = True
        run = _run(orchestrator, vwba_submissions)
        assert run.status == VerificationStatus.VERIFIED
        assert run.reviewed_by == "system"
        assert run.expiry_date is not None

    def test_auto_resolve_rejects(self, orchestrator, vwba_method, config):
        config.auto_resolve = True
        result = _submit(orchestrator)
        run = orchestrator.perform_verification(result.result_id)
        assert run.status == VerificationStatus.REJECTED


class TestMRVCompliance:
    """MRV assessments attached to runs and on demand."""

    def test_run_carries_assessment(self, orchestrator, vwba_method, vwba_submissions):
        run = _run(orchestrator, vwba_submissions)

        assert run.verified is True
        mrv = run.calculation_data["mrv_compliance"]["Water Conservation MRV"]
        assert mrv["result_id"] == run.result_id
        # 6 rows over 365 days, no calibration record, no water quality data
        assert mrv["measurement_compliance"]["score"] == pytest.approx(1 / 5)
        # capture date is long past the 15 day reporting window
        assert mrv["reporting_compliance"]["score"] == pytest.approx(2 / 3)
        assert mrv["verification_compliance"]["score"] == pytest.approx(1 / 4)
        assert mrv["overall_score"] == pytest.approx(0.4 / 5 + 0.2 + 0.3 / 4)

    def test_submission_metadata_supplies_qualifications(
        self, orchestrator, vwba_method, vwba_submissions,
    ):
        result = orchestrator.submit_verification(
            "42", "vwba-v2", VALIDATOR,
            metadata={"verifier_qualifications": [
                "certified_water_engineer", "environmental_auditor",
            ]},
        )
        _, content = _attach(orchestrator, result.result_id, vwba_submissions)
        orchestrator.perform_verification(result.result_id, content)

        assessment = orchestrator.assess_mrv_compliance(
            result.result_id, "Water Conservation MRV",
        )
        assert "Verifier qualifications verified" in assessment.verification_compliance.evidence

    def test_registered_protocol_applies_to_runs(
        self, orchestrator, vwba_method, vwba_submissions,
    ):
        protocol = orchestrator.register_mrv_protocol({
            "name": "Basin Light MRV",
            "methodology_types": ["VWBA"],
            "reporting_requirements": [{
                "format": "structured_data",
                "frequency": "annually",
                "report_evidence_types": ["methodology_documentation"],
                "submission_deadline_days": 100000,
            }],
        })
        assert [p.name for p in orchestrator.list_mrv_protocols("VWBA")] == [
            "Water Conservation MRV", "Basin Light MRV",
        ]
        assert [e.action for e in orchestrator.provenance.get_chain(protocol.name)] == [
            "register",
        ]

        run = _run(orchestrator, vwba_submissions)

        light = run.calculation_data["mrv_compliance"]["Basin Light MRV"]
        assert light["reporting_compliance"]["compliant"] is True

    def test_empty_registry_disables_assessment(
        self, repository, pipeline, config, vwba_submissions,
    ):
        orchestrator = VerificationOrchestrator(
            repository=repository, pipeline=pipeline, config=config,
            mrv_registry=MRVProtocolRegistry(),
        )
        orchestrator.register_methodology({"method_id": "vwba-v2"})
        run = _run(orchestrator, vwba_submissions)
        assert "mrv_compliance" not in run.calculation_data

    def test_assess_unknown_protocol(self, orchestrator, vwba_method):
        result = _submit(orchestrator)
        with pytest.raises(NotFoundError):
            orchestrator.assess_mrv_compliance(result.result_id, "Unknown MRV")

    def test_assess_unknown_result(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.assess_mrv_compliance("VER-missing", "Water Conservation MRV")


class TestLifecycle:
    """Review, expiry and revocation."""

    def test_approve_sets_expiry(self, orchestrator, vwba_method, vwba_submissions):
        run = _run(orchestrator, vwba_submissions)
        approved = orchestrator.review_verification(
            run.result_id, "auditor", approved=True, review_notes="Meter logs reconcile",
        )

        assert approved.status == VerificationStatus.VERIFIED
        assert approved.reviewed_by == "auditor"
        assert approved.review_notes == "Meter logs reconcile"
        assert approved.expiry_date == approved.reviewed_at + timedelta(days=365)

        status = orchestrator.get_verification_status("42")
        assert status.verified is True
        assert [r.result_id for r in status.results] == [run.result_id]
        assert status.pending == []

    def test_zero_validation_period_never_expires(self, orchestrator, vwba_submissions):
        orchestrator.register_methodology({"method_id": "vwba-v2", "validation_period_days": 0})
        run = _run(orchestrator, vwba_submissions)
        approved = orchestrator.review_verification(run.result_id, "auditor", approved=True)
        assert approved.expiry_date is None

    def test_cannot_approve_unverified(self, orchestrator, vwba_method):
        result = _submit(orchestrator)
        orchestrator.perform_verification(result.result_id)
        with pytest.raises(InvalidTransitionError):
            orchestrator.review_verification(result.result_id, "auditor", approved=True)

        rejected = orchestrator.review_verification(
            result.result_id, "auditor", approved=False, review_notes="No evidence",
        )
        assert rejected.status == VerificationStatus.REJECTED
        assert rejected.expiry_date is None

    def test_review_requires_in_review(self, orchestrator, vwba_method):
        result = _submit(orchestrator)
        with pytest.raises(InvalidTransitionError):
            orchestrator.review_verification(result.result_id, "auditor", approved=False)

    def test_start_review(self, orchestrator, vwba_method):
        result = _submit(orchestrator)
        started = orchestrator.start_review(result.result_id, "auditor")
        assert started.status == VerificationStatus.IN_REVIEW
        assert started.metadata["review_started_by"] == "auditor"
        with pytest.raises(InvalidTransitionError):
            orchestrator.start_review(result.result_id, "auditor")

    def test_status_summary_pending(self, orchestrator, vwba_method):
        result = _submit(orchestrator)
        status = orchestrator.get_verification_status("42")
        assert status.verified is False
        assert [r.result_id for r in status.pending] == [result.result_id]
        assert status.results == []

    def test_revoke(self, orchestrator, vwba_method, vwba_submissions):
        run = _run(orchestrator, vwba_submissions)
        orchestrator.review_verification(run.result_id, "auditor", approved=True)

        revoked = orchestrator.revoke_verification(run.result_id, "registry-admin", "Double counted")

        assert revoked.status == VerificationStatus.REVOKED
        assert revoked.metadata["revoked_by"] == "registry-admin"
        assert revoked.metadata["revocation_reason"] == "Double counted"
        assert orchestrator.get_verification_status("42").verified is False
        assert _submit(orchestrator).status == VerificationStatus.PENDING

    def test_revoke_requires_verified(self, orchestrator, vwba_method):
        result = _submit(orchestrator)
        with pytest.raises(InvalidTransitionError) as excinfo:
            orchestrator.revoke_verification(result.result_id, "admin", "bad")
        assert excinfo.value.context == {
            "current_status": "pending", "target_status": "revoked",
        }

    def test_expire_due(self, orchestrator, vwba_method, vwba_submissions):
        run = _run(orchestrator, vwba_submissions)
        approved = orchestrator.review_verification(run.result_id, "auditor", approved=True)

        assert orchestrator.expire_due(now=approved.expiry_date - timedelta(seconds=1)) == []

        expired = orchestrator.expire_due(now=approved.expiry_date)
        assert [r.result_id for r in expired] == [run.result_id]
        assert orchestrator.get_result(run.result_id).status == VerificationStatus.EXPIRED


class TestProvenance:
    """Every mutation lands in the chain."""

    def test_actions_recorded_in_order(self, orchestrator, vwba_method, vwba_submissions):
        run = _run(orchestrator, vwba_submissions)
        orchestrator.review_verification(run.result_id, "auditor", approved=True)

        chain = orchestrator.provenance.get_chain(run.result_id)
        assert [e.action for e in chain] == ["submit", "start_review", "calculate", "approve"]
        assert chain[0].user_id == VALIDATOR
        assert chain[-1].user_id == "auditor"
        assert [e.action for e in orchestrator.provenance.get_chain("vwba-v2")] == ["register"]
        assert orchestrator.provenance.verify_chain() is True

    def test_disabled(self, repository, pipeline, config):
        config.enable_provenance = False
        orchestrator = VerificationOrchestrator(
            repository=repository, pipeline=pipeline, config=config,
        )
        orchestrator.register_methodology({"method_id": "vwba-v2"})
        assert orchestrator.provenance is None
        assert _submit(orchestrator).status == VerificationStatus.PENDING
