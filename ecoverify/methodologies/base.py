# -*- coding: utf-8 -*-
"""
Methodology Handler Contract

A methodology handler turns a verification request plus its evidence into a
``CalculationOutcome``. Handlers are registered by methodology id in an
immutable ``MethodologyRegistry``; adding a methodology never changes the
orchestrator.

Every handler implements three operations:
    - required_evidence_types(): evidence tags that must be present
    - minimum_confidence(): confidence needed for a verified outcome
    - validate(request, evidence): run the calculation

Insufficient evidence, missing inputs and failed criteria are reported as
non-verified outcomes, never as exceptions.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from typing import Any, Dict, FrozenSet, Iterable, List

from ecoverify.models import CalculationOutcome, EvidenceFile, VerificationRequest


def compute_evidence_set_hash(evidence: Iterable[EvidenceFile]) -> str:
    """SHA-256 over declared file hashes ordered by evidence id.

    The result is independent of the order in which evidence is supplied.
    """
    ordered = sorted(evidence, key=lambda e: e.evidence_id)
    joined = "".join(e.file_hash for e in ordered)
    return hashlib.sha256(joined.encode()).hexdigest()


class MethodologyHandler(ABC):
    """Calculation strategy for one accounting methodology.

    Attributes:
        method_id: Methodology identifier the handler is registered under.
        name: Human readable methodology name.
        methodology_type: Methodology family.
        version: Methodology version.
    """

    method_id: str = ""
    name: str = ""
    methodology_type: str = ""
    version: str = "1.0"

    @abstractmethod
    def required_evidence_types(self) -> FrozenSet[str]:
        """Evidence tags that must all be present to attempt a calculation."""

    @abstractmethod
    def minimum_confidence(self) -> float:
        """Confidence at or above which an outcome is verified."""

    @abstractmethod
    def validate(
        self,
        request: VerificationRequest,
        evidence: List[EvidenceFile],
    ) -> CalculationOutcome:
        """Run the methodology calculation over the supplied evidence."""

    def criteria(self) -> Dict[str, Any]:
        """Acceptance criteria recorded on registered methods."""
        return {}

    def missing_evidence_types(self, evidence: Iterable[EvidenceFile]) -> List[str]:
        """Required tags absent from ``evidence``, sorted."""
        present = {e.evidence_type for e in evidence}
        return sorted(self.required_evidence_types() - present)


__all__ = [
    "MethodologyHandler",
    "compute_evidence_set_hash",
]
