# -*- coding: utf-8 -*-
"""
Prometheus Metrics - Verification Engine

Prometheus metrics for the verification engine with graceful fallback when
prometheus_client is not installed.

Metrics:
    1. ev_verification_submissions_total (Counter)
    2. ev_verification_outcomes_total (Counter)
    3. ev_verification_confidence (Histogram)
    4. ev_verification_evidence_processed_total (Counter)
    5. ev_verification_rule_issues_total (Counter)
    6. ev_verification_quality_grades_total (Counter)
    7. ev_verification_processing_duration_seconds (Histogram)
    8. ev_verification_archive_failures_total (Counter)
    9. ev_verification_active_results (Gauge)
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Graceful prometheus_client import
# ---------------------------------------------------------------------------

try:
    from prometheus_client import Counter, Gauge, Histogram
    PROMETHEUS_AVAILABLE = True
except ImportError:
    PROMETHEUS_AVAILABLE = False
    logger.info(
        "prometheus_client not installed; verification metrics disabled"
    )


# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------

if PROMETHEUS_AVAILABLE:
    verification_submissions_total = Counter(
        "ev_verification_submissions_total",
        "Verification submissions by methodology and outcome",
        labelnames=["method_id", "result"],
    )

    verification_outcomes_total = Counter(
        "ev_verification_outcomes_total",
        "Methodology calculation outcomes",
        labelnames=["method_id", "verified"],
    )

    verification_confidence = Histogram(
        "ev_verification_confidence",
        "Distribution of methodology confidence scores",
        labelnames=["method_id"],
        buckets=(0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 0.95, 1.0),
    )

    verification_evidence_processed_total = Counter(
        "ev_verification_evidence_processed_total",
        "Evidence files processed by the validation pipeline",
        labelnames=["evidence_type", "verified"],
    )

    verification_rule_issues_total = Counter(
        "ev_verification_rule_issues_total",
        "Validation issues raised by rule and severity",
        labelnames=["rule", "severity"],
    )

    verification_quality_grades_total = Counter(
        "ev_verification_quality_grades_total",
        "Quality grades assigned to evidence sets",
        labelnames=["grade"],
    )

    verification_processing_duration_seconds = Histogram(
        "ev_verification_processing_duration_seconds",
        "Evidence pipeline processing duration in seconds",
        buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    )

    verification_archive_failures_total = Counter(
        "ev_verification_archive_failures_total",
        "Evidence archival attempts that exhausted their retries",
    )

    verification_active_results = Gauge(
        "ev_verification_active_results",
        "Verification results currently pending or in review",
    )

else:
    verification_submissions_total = None  # type: ignore[assignment]
    verification_outcomes_total = None  # type: ignore[assignment]
    verification_confidence = None  # type: ignore[assignment]
    verification_evidence_processed_total = None  # type: ignore[assignment]
    verification_rule_issues_total = None  # type: ignore[assignment]
    verification_quality_grades_total = None  # type: ignore[assignment]
    verification_processing_duration_seconds = None  # type: ignore[assignment]
    verification_archive_failures_total = None  # type: ignore[assignment]
    verification_active_results = None  # type: ignore[assignment]


# ---------------------------------------------------------------------------
# Helper functions (safe to call even without prometheus_client)
# ---------------------------------------------------------------------------


def record_submission(method_id: str, result: str) -> None:
    """Record a verification submission.

    Args:
        method_id: Methodology the submission targeted.
        result: "accepted" or the rejecting error code.
    """
    if not PROMETHEUS_AVAILABLE:
        return
    verification_submissions_total.labels(
        method_id=method_id, result=result,
    ).inc()


def record_outcome(method_id: str, verified: bool, confidence: float) -> None:
    """Record a methodology calculation outcome and its confidence."""
    if not PROMETHEUS_AVAILABLE:
        return
    verification_outcomes_total.labels(
        method_id=method_id, verified=str(verified).lower(),
    ).inc()
    verification_confidence.labels(method_id=method_id).observe(confidence)


def record_evidence_processed(evidence_type: str, verified: bool) -> None:
    """Record one evidence file passing through the pipeline."""
    if not PROMETHEUS_AVAILABLE:
        return
    verification_evidence_processed_total.labels(
        evidence_type=evidence_type, verified=str(verified).lower(),
    ).inc()


def record_rule_issue(rule: str, severity: str) -> None:
    """Record a validation issue raised by a rule."""
    if not PROMETHEUS_AVAILABLE:
        return
    verification_rule_issues_total.labels(rule=rule, severity=severity).inc()


def record_quality_grade(grade: str, duration_seconds: float) -> None:
    """Record the grade and duration of a pipeline run.

    Args:
        grade: Letter grade A-F.
        duration_seconds: Wall-clock duration of the run.
    """
    if not PROMETHEUS_AVAILABLE:
        return
    verification_quality_grades_total.labels(grade=grade).inc()
    verification_processing_duration_seconds.observe(duration_seconds)


def record_archive_failure() -> None:
    """Record an archival put that exhausted its retries."""
    if not PROMETHEUS_AVAILABLE:
        return
    verification_archive_failures_total.inc()


def update_active_results(count: int) -> None:
    """Set the gauge of pending and in-review results."""
    if not PROMETHEUS_AVAILABLE:
        return
    verification_active_results.set(count)


__all__ = [
    "PROMETHEUS_AVAILABLE",
    "record_submission",
    "record_outcome",
    "record_evidence_processed",
    "record_rule_issue",
    "record_quality_grade",
    "record_archive_failure",
    "update_active_results",
]
