# -*- coding: utf-8 -*-
"""
Evidence Validation Pipeline

Scores every evidence file attached to a verification result and summarises
the set as a 0-1 score and an A-F quality grade.

Per file the pipeline:
    1. Resolves bytes from the caller-supplied map or the evidence store
    2. Parses data-bearing evidence types into structured content
    3. Runs the wildcard and type-specific rules from the rule registry
    4. Runs structural checks over any parsed content
    5. Marks the file processed, and verified only when every rule passed
       on re-hashed bytes
    6. Archives newly verified files to the evidence store

Files are processed as independent tasks on a thread pool. A task never
raises: a failure is recorded on its own file and surfaces as an error
issue, and sibling files are unaffected.

Example:
    >>> from ecoverify.pipeline import EvidenceValidationPipeline
    >>> from ecoverify.repository import InMemoryVerificationRepository
    >>> pipeline = EvidenceValidationPipeline(InMemoryVerificationRepository())
    >>> outcome = pipeline.process_evidence("VER-000000000000")
    >>> outcome.processed, outcome.quality_grade.value
    (False, 'F')
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from ecoverify.config import VerificationConfig, get_config
from ecoverify.evidence_store import EvidenceStore
from ecoverify.exceptions import (
    EvidenceStoreError,
    FileParseError,
    VerificationException,
    format_exception_chain,
    is_retriable,
)
from ecoverify.file_parser import FileParser, ParseOptions, extract_measurement_fields
from ecoverify.metrics import (
    record_archive_failure,
    record_evidence_processed,
    record_quality_grade,
    record_rule_issue,
)
from ecoverify.models import (
    EvidenceFile,
    EvidenceProcessingResult,
    EvidenceType,
    IssueSeverity,
    ParsedData,
    QualityGrade,
    ValidationIssue,
    ValidationResult,
    _utcnow,
)
from ecoverify.repository import VerificationRepository
from ecoverify.rules import (
    SCORE_PRECISION,
    RuleContext,
    RuleRegistry,
    build_default_rule_registry,
    check_parsed_data,
)

logger = logging.getLogger(__name__)

# Evidence types whose content is parsed for structured data.
DATA_FILE_TYPES = frozenset({
    EvidenceType.WATER_MEASUREMENT_DATA.value,
    EvidenceType.BASELINE_ASSESSMENT.value,
    EvidenceType.CALCULATION_SHEET.value,
    EvidenceType.SENSOR_DATA.value,
    EvidenceType.MEASUREMENT_LOG.value,
})


# ---------------------------------------------------------------------------
# Grading
# ---------------------------------------------------------------------------


def calculate_quality_grade(
    score: float, issues: Sequence[ValidationIssue],
) -> QualityGrade:
    """Grade an evidence set from its mean score and issue counts.

    Any error-severity issue yields F. Otherwise A needs score >= 0.95 and
    no warnings, B >= 0.85 with at most 2 warnings, C >= 0.70 with at most
    5 warnings, D >= 0.60, and anything lower is F.
    """
    errors = sum(1 for i in issues if i.severity == IssueSeverity.ERROR)
    warnings = sum(1 for i in issues if i.severity == IssueSeverity.WARNING)

    if errors > 0:
        return QualityGrade.F
    if score >= 0.95 and warnings == 0:
        return QualityGrade.A
    if score >= 0.85 and warnings <= 2:
        return QualityGrade.B
    if score >= 0.70 and warnings <= 5:
        return QualityGrade.C
    if score >= 0.60:
        return QualityGrade.D
    return QualityGrade.F


# ---------------------------------------------------------------------------
# Per-file outcome
# ---------------------------------------------------------------------------


@dataclass
class _FileOutcome:
    """What a single file task hands back to the fan-in step."""

    evidence_id: str
    results: List[ValidationResult] = field(default_factory=list)
    extra_issues: List[ValidationIssue] = field(default_factory=list)
    verified: bool = False
    archived_locator: Optional[str] = None


# ---------------------------------------------------------------------------
# EvidenceValidationPipeline
# ---------------------------------------------------------------------------


class EvidenceValidationPipeline:
    """Runs validation rules over a verification result's evidence.

    Attributes:
        rule_registry: Immutable evidence-type to rules mapping.
        evidence_store: Optional content-addressable store for retrieval
            and archival.
    """

    def __init__(
        self,
        repository: VerificationRepository,
        rule_registry: Optional[RuleRegistry] = None,
        evidence_store: Optional[EvidenceStore] = None,
        file_parser: Optional[FileParser] = None,
        config: Optional[VerificationConfig] = None,
    ) -> None:
        self._repository = repository
        self._config = config or get_config()
        self.rule_registry = rule_registry or build_default_rule_registry()
        self.evidence_store = evidence_store
        self._parser = file_parser or FileParser(
            ParseOptions(max_rows=self._config.max_parse_rows),
        )
        logger.info(
            "EvidenceValidationPipeline initialized: workers=%d, store=%s",
            self._config.max_workers,
            type(evidence_store).__name__ if evidence_store else None,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process_evidence(
        self,
        result_id: str,
        content_by_evidence_id: Optional[Mapping[str, bytes]] = None,
    ) -> EvidenceProcessingResult:
        """Validate every evidence file attached to a verification result.

        Args:
            result_id: Owning verification result.
            content_by_evidence_id: Optional bytes per evidence id. Files
                without an entry are fetched from the evidence store when
                they carry a storage locator.

        Returns:
            EvidenceProcessingResult aggregated across all files.
        """
        start = time.monotonic()
        content_map = dict(content_by_evidence_id or {})
        evidence_files = self._repository.list_evidence(result_id)

        if not evidence_files:
            logger.warning("No evidence files found for %s", result_id)
            return EvidenceProcessingResult(
                processed=False,
                overall_score=0.0,
                quality_grade=QualityGrade.F,
                issues=[ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    message="No evidence files found for verification",
                )],
                processing_time_ms=(time.monotonic() - start) * 1000,
            )

        logger.info(
            "Processing %d evidence files for %s", len(evidence_files), result_id,
        )
        workers = max(1, min(self._config.max_workers, len(evidence_files)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(self._process_file, evidence, content_map)
                for evidence in evidence_files
            ]
            outcomes = [f.result() for f in futures]

        validation_results: List[ValidationResult] = []
        issues: List[ValidationIssue] = []
        for outcome in outcomes:
            validation_results.extend(outcome.results)
            for result in outcome.results:
                issues.extend(result.issues)
            issues.extend(outcome.extra_issues)

        overall = (
            round(
                math.fsum(r.score for r in validation_results) / len(validation_results),
                SCORE_PRECISION,
            )
            if validation_results else 0.0
        )
        grade = calculate_quality_grade(overall, issues)
        elapsed_ms = (time.monotonic() - start) * 1000

        record_quality_grade(grade.value, elapsed_ms / 1000)
        logger.info(
            "Evidence processing for %s completed: score=%.3f, grade=%s, "
            "issues=%d, %.1fms",
            result_id, overall, grade.value, len(issues), elapsed_ms,
        )
        return EvidenceProcessingResult(
            processed=True,
            validation_results=validation_results,
            overall_score=min(1.0, max(0.0, overall)),
            quality_grade=grade,
            issues=issues,
            processing_time_ms=elapsed_ms,
            verified_evidence_ids=[o.evidence_id for o in outcomes if o.verified],
            archived_locators={
                o.evidence_id: o.archived_locator
                for o in outcomes if o.archived_locator
            },
        )

    def validate_evidence_file(
        self,
        evidence: EvidenceFile,
        content: Optional[bytes] = None,
        parsed: Optional[ParsedData] = None,
    ) -> List[ValidationResult]:
        """Run every applicable rule against one file.

        A rule that raises yields an invalid, zero-score result naming the
        rule; remaining rules still run.
        """
        context = RuleContext(evidence=evidence, content=content, parsed=parsed)
        results: List[ValidationResult] = []

        for rule in self.rule_registry.rules_for(evidence.evidence_type):
            try:
                result = rule.run(context)
            except Exception as exc:
                logger.error(
                    "Validation rule %s failed on %s: %s",
                    rule.name, evidence.evidence_id, exc, exc_info=True,
                )
                result = ValidationResult(
                    valid=False,
                    score=0.0,
                    issues=[ValidationIssue(
                        severity=IssueSeverity.ERROR,
                        message=f"Validation rule '{rule.name}' failed: {exc}",
                        evidence_id=evidence.evidence_id,
                    )],
                    metadata={"rule_name": rule.name, "error": str(exc)},
                )
            results.append(result)

        if parsed is not None:
            results.append(check_parsed_data(evidence, parsed))

        for result in results:
            rule_name = result.metadata.get("rule_name", "unknown")
            for issue in result.issues:
                record_rule_issue(rule_name, issue.severity.value)
        return results

    # ------------------------------------------------------------------
    # Per-file task
    # ------------------------------------------------------------------

    def _process_file(
        self,
        evidence: EvidenceFile,
        content_map: Mapping[str, bytes],
    ) -> _FileOutcome:
        """Process one file; always returns an outcome."""
        try:
            return self._process_file_checked(evidence, content_map)
        except Exception as exc:
            logger.error(
                "Processing failed for evidence %s (%s): %s",
                evidence.evidence_id, evidence.file_name, exc, exc_info=True,
            )
            failed = evidence.model_copy(update={
                "processed": True,
                "verified": False,
                "verified_at": _utcnow(),
                "processing_error": str(exc),
            })
            try:
                self._repository.save_evidence(failed)
            except Exception as save_exc:
                logger.error(
                    "Could not record processing failure for %s: %s",
                    evidence.evidence_id, save_exc,
                )
            record_evidence_processed(evidence.evidence_type, False)
            return _FileOutcome(
                evidence_id=evidence.evidence_id,
                extra_issues=[ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    message=f"Processing failed for {evidence.file_name}: {exc}",
                    evidence_id=evidence.evidence_id,
                )],
            )

    def _process_file_checked(
        self,
        evidence: EvidenceFile,
        content_map: Mapping[str, bytes],
    ) -> _FileOutcome:
        content = self._resolve_content(evidence, content_map)

        parsed: Optional[ParsedData] = None
        if content is not None and evidence.evidence_type in DATA_FILE_TYPES:
            parsed = self._parse(evidence, content)

        results = self.validate_evidence_file(evidence, content, parsed)
        verified = content is not None and all(r.valid for r in results)

        updates: Dict[str, object] = {
            "processed": True,
            "verified": verified,
            "verified_at": _utcnow(),
            "processing_error": None,
        }
        if parsed is not None:
            metadata = dict(evidence.metadata or {})
            metadata["parsed_data"] = {
                "format": parsed.format.value,
                "row_count": parsed.row_count,
                "columns": list(parsed.columns),
                "measurement_fields": extract_measurement_fields(parsed),
            }
            updates["metadata"] = metadata

        archived: Optional[str] = None
        if verified and content is not None and not evidence.storage_locator:
            archived = self._archive(evidence, content)
            if archived:
                updates["storage_locator"] = archived

        self._repository.save_evidence(evidence.model_copy(update=updates))
        record_evidence_processed(evidence.evidence_type, verified)
        logger.debug(
            "Evidence %s processed: rules=%d, verified=%s",
            evidence.evidence_id, len(results), verified,
        )
        return _FileOutcome(
            evidence_id=evidence.evidence_id,
            results=results,
            verified=verified,
            archived_locator=archived,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_content(
        self,
        evidence: EvidenceFile,
        content_map: Mapping[str, bytes],
    ) -> Optional[bytes]:
        if evidence.evidence_id in content_map:
            return content_map[evidence.evidence_id]
        if self.evidence_store is None or not evidence.storage_locator:
            return None
        try:
            retrieved = self.evidence_store.get(
                evidence.storage_locator, expected_hash=evidence.file_hash,
            )
        except EvidenceStoreError as exc:
            logger.warning(
                "Could not retrieve evidence %s from %s: %s",
                evidence.evidence_id, evidence.storage_locator, exc,
            )
            return None
        logger.debug(
            "Retrieved evidence %s from store (store_verified=%s)",
            evidence.evidence_id, retrieved.verified,
        )
        return retrieved.content

    def _parse(self, evidence: EvidenceFile, content: bytes) -> Optional[ParsedData]:
        try:
            return self._parser.parse(content, evidence.file_name, evidence.mime_type)
        except FileParseError as exc:
            logger.error(
                "Failed to parse evidence %s (%s): %s",
                evidence.evidence_id, evidence.file_name, exc,
            )
            return None

    def _archive(self, evidence: EvidenceFile, content: bytes) -> Optional[str]:
        if self.evidence_store is None or not self._config.archive_verified_evidence:
            return None

        metadata = {
            "file_name": evidence.file_name,
            "evidence_type": evidence.evidence_type,
            "original_hash": evidence.file_hash,
            "file_size": evidence.file_size,
            "mime_type": evidence.mime_type,
            "capture_date": evidence.capture_date.isoformat() if evidence.capture_date else None,
            "capture_device": evidence.capture_device,
        }
        attempts = max(1, self._config.archive_retries)
        for attempt in range(1, attempts + 1):
            try:
                locator = self.evidence_store.put(content, metadata)
            except VerificationException as exc:
                if not is_retriable(exc):
                    logger.error(
                        "Archive of %s failed without retry:\n%s",
                        evidence.evidence_id, format_exception_chain(exc),
                    )
                    break
                logger.warning(
                    "Archive attempt %d/%d for %s failed: %s",
                    attempt, attempts, evidence.evidence_id, exc,
                )
                continue
            logger.info("Archived evidence %s at %s", evidence.evidence_id, locator)
            return locator

        record_archive_failure()
        logger.error(
            "Evidence %s validated but not archived after %d attempts",
            evidence.evidence_id, attempts,
        )
        return None


__all__ = [
    "DATA_FILE_TYPES",
    "EvidenceValidationPipeline",
    "calculate_quality_grade",
]
